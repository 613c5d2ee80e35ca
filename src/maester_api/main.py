# src/maester_api/main.py

from datetime import timedelta
from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from maester_api.api.routes import router, get_job_manager
from maester_api.engine.config import get_settings
from maester_api.engine.reaper import LifecycleReaper
from maester_api.utils.errors import sanitize_error
import logging
import uuid


settings = get_settings()

# Configure structured logging
logging.basicConfig(
    level=settings.log_level,
    format='%(asctime)s %(levelname)s %(name)s %(message)s'
)

app = FastAPI(title="Maester API")


@app.middleware("http")
async def add_trace_id_and_log(request: Request, call_next):
    trace_id = str(uuid.uuid4())
    request.state.trace_id = trace_id
    logging.info(f"[trace_id={trace_id}] Incoming request: {request.method} {request.url.path}")
    try:
        response = await call_next(request)
    except Exception as exc:
        logging.error(f"[trace_id={trace_id}] Unhandled error: {exc}")
        return JSONResponse(
            status_code=500,
            content={"success": False, "error": "Internal server error", "trace_id": trace_id}
        )
    response.headers["X-Trace-Id"] = trace_id
    return response

@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception):
    trace_id = getattr(request.state, "trace_id", str(uuid.uuid4()))
    logging.error(f"[trace_id={trace_id}] Exception: {exc}")
    return JSONResponse(
        status_code=500,
        content={"success": False, "error": sanitize_error(exc, settings.error_max_length), "trace_id": trace_id}
    )

app.include_router(router)

@app.on_event("startup")
def on_startup():
    app.state.reaper = LifecycleReaper(
        get_job_manager().store,
        stale_after=timedelta(minutes=settings.stale_after_minutes),
        completed_expiry=timedelta(minutes=settings.completed_expiry_minutes),
        hard_expiry=timedelta(hours=settings.hard_expiry_hours),
        interval=settings.reaper_interval_seconds,
    )
    app.state.reaper.start()
    logging.info(f"Maester API started. database={settings.db_path}")

@app.on_event("shutdown")
def on_shutdown():
    reaper = getattr(app.state, "reaper", None)
    if reaper is not None:
        reaper.stop()
