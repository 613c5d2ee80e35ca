# src/maester_api/engine/worker.py
"""
Worker: everything a scan job does, run inside its own process.

acquire credentials -> run the compliance engine -> normalize -> one terminal
write. run_job() is the only place a job is marked failed for anything other
than a timeout.
"""
import logging
import time

from maester_api.engine.credentials import CredentialBundle, CredentialOrchestrator
from maester_api.engine.errors import EngineError
from maester_api.engine.job_store import JobStore
from maester_api.tools.maester_adapter import MaesterAdapter
from maester_api.tools.token_client import TokenClient
from maester_api.utils.errors import sanitize_error, DEFAULT_MAX_LENGTH
from maester_api.utils.normalizer import build_summary

logger = logging.getLogger(__name__)


def _elapsed_ms(started):
    return int((time.monotonic() - started) * 1000)


def run_job(bundle, store, orchestrator, adapter, error_max_length=DEFAULT_MAX_LENGTH):
    job_id = bundle["job_id"]
    suites = bundle.get("suites") or []
    severity = bundle.get("severity") or []
    started = time.monotonic()
    creds = None
    try:
        creds = orchestrator.acquire(
            CredentialBundle(
                bearer_token=bundle.get("bearer_token"),
                client_id=bundle.get("app_client_id"),
                client_secret=bundle.get("app_client_secret"),
                tenant_id=bundle.get("tenant_id") or "",
            ),
            job_id=job_id,
        )
        selection = adapter.build_selection(
            suites=suites,
            tags=bundle.get("tags"),
            severity=severity,
            include_long_running=bundle.get("include_long_running"),
            include_preview=bundle.get("include_preview"),
        )
        logger.info(f"[job_id={job_id}] Started scan job.")
        raw = adapter.run_scan(selection, creds.engine_env())
        if raw is None:
            raise EngineError("Compliance engine produced no result document")
        duration_ms = _elapsed_ms(started)
        summary = build_summary(raw, suites, severity, creds.diagnostics(), duration_ms)
        if store.complete_job(job_id, summary.model_dump_json(by_alias=True), duration_ms):
            logger.info(
                f"[job_id={job_id}] Completed scan job. total={summary.total_count} "
                f"passed={summary.passed_count} failed={summary.failed_count} skipped={summary.skipped_count}"
            )
    except Exception as e:
        error = sanitize_error(e, error_max_length)
        logger.error(f"[job_id={job_id}] Scan job failed: {error}")
        store.fail_job(job_id, error, _elapsed_ms(started))
    finally:
        if creds is not None:
            creds.discard()


def main(bundle):
    """Entry point of the spawned worker process."""
    settings = bundle["settings"]
    logging.basicConfig(
        level=settings.get("log_level", "INFO"),
        format='%(asctime)s %(levelname)s %(name)s %(message)s'
    )
    store = JobStore(settings["database_url"], settings.get("db_lock_timeout", 5.0))
    token_client = TokenClient(
        authority=settings["login_authority"],
        graph_url=settings["graph_url"],
        timeout=settings.get("token_timeout_seconds", 30.0),
    )
    adapter = MaesterAdapter(
        settings["engine_argv"],
        settings["tests_path"],
        timeout=settings.get("engine_timeout_seconds", 3600),
    )
    try:
        run_job(bundle, store, CredentialOrchestrator(token_client), adapter,
                settings.get("error_max_length", DEFAULT_MAX_LENGTH))
    finally:
        token_client.close()
        store.engine.dispose()
