# src/maester_api/api/routes.py
from functools import lru_cache
from typing import Optional

from fastapi import APIRouter, Depends, Header
from fastapi.responses import JSONResponse

from maester_api.api.schemas import JobResponse, ScanRequest, StatsResponse, SubmitResponse, to_iso
from maester_api.engine.config import engine_settings, get_settings
from maester_api.engine.errors import JobConflictError
from maester_api.engine.job_manager import JobManager, job_to_response
from maester_api.engine.job_store import JobStore
from maester_api.engine.launcher import WorkerLauncher

router = APIRouter()


@lru_cache(maxsize=None)
def get_job_manager() -> JobManager:
    settings = get_settings()
    store = JobStore(settings.database_url, settings.db_lock_timeout)
    return JobManager(store, WorkerLauncher(), settings.max_running_per_tenant, engine_settings(settings))


def _bearer(authorization):
    if authorization and authorization.lower().startswith("bearer "):
        return authorization[7:].strip() or None
    return None


@router.get("/health")
def health_check():
    return {"status": "ok"}


@router.post(
    "/api/scan",
    summary="Submit a compliance scan job (async)",
    response_description="Job ID and submission status",
    tags=["Scan Jobs"],
    status_code=202,
    response_model=SubmitResponse,
    responses={
        202: {"description": "Job accepted and running"},
        409: {"description": "A scan is already running for this tenant"},
        500: {"description": "Internal server error"}
    },
)
def submit_scan(
    request: ScanRequest,
    authorization: Optional[str] = Header(None),
    manager: JobManager = Depends(get_job_manager),
):
    """
    Start a scan against the tenant and return immediately. The job runs in its
    own worker process; poll /api/scan/{job_id} for the result.
    """
    try:
        job = manager.submit(request, bearer_token=_bearer(authorization))
    except JobConflictError as e:
        return JSONResponse(
            status_code=409,
            content={"success": False, "error": str(e), "jobId": e.running_job_id},
        )
    return SubmitResponse(job_id=job.job_id, status=job.status, created_at=to_iso(job.created_at))


@router.get(
    "/api/scan/{job_id}",
    summary="Get scan job status and result",
    response_description="Scan job status, and the result or error once finished",
    tags=["Scan Jobs"],
    response_model=JobResponse,
    responses={
        200: {"description": "Job status and result"},
        404: {"description": "Job not found"},
        500: {"description": "Internal server error"}
    },
)
def get_scan_job(job_id: str, manager: JobManager = Depends(get_job_manager)):
    """
    Get the status of a scan job. A finished job is returned once and then
    removed; later polls for the same id return 404.
    """
    job = manager.poll(job_id)
    if job is None:
        return JSONResponse(status_code=404, content={"success": False, "error": "Job not found"})
    return job_to_response(job)


@router.get(
    "/api/stats",
    summary="Aggregate scan statistics",
    tags=["Scan Jobs"],
    response_model=StatsResponse,
)
def get_scan_stats(manager: JobManager = Depends(get_job_manager)):
    stats = manager.stats()
    stats["last_completed_at"] = to_iso(stats["last_completed_at"])
    return StatsResponse(**stats)
