# src/maester_api/engine/job_manager.py
"""
JobManager: admission, launch and polling for scan jobs.

Submission never waits for a scan: the row is created, a worker process is
started, and the caller gets the job id back. Polling a terminal job hands
back its final state once and retires it (history row, delete, reap).
"""

import logging
from typing import Optional

from maester_api.api.schemas import JobResponse, JobSummary, ScanRequest, to_iso
from maester_api.engine.config import engine_settings
from maester_api.engine.models import Job
from maester_api.tools.token_client import tenant_from_token

logger = logging.getLogger(__name__)


class JobManager:
    def __init__(self, store, launcher, max_running_per_tenant=1, settings=None):
        self.store = store
        self.launcher = launcher
        self.max_running_per_tenant = max_running_per_tenant
        self.settings = settings if settings is not None else engine_settings()

    def submit(self, request: ScanRequest, bearer_token=None) -> Job:
        """Raises JobConflictError when the tenant already has a scan running."""
        self.launcher.reap_finished()
        bearer_token = bearer_token or request.bearer_token
        # the gate keys on the tenant the worker will scan
        tenant_id = request.tenant_id or tenant_from_token(bearer_token) or ""
        job = self.store.create_job_if_admitted(
            tenant_id, request.suites, request.severity, limit=self.max_running_per_tenant
        )
        bundle = {
            "job_id": job.job_id,
            "tenant_id": tenant_id,
            "suites": list(request.suites or []),
            "severity": list(request.severity or []),
            "tags": list(request.tags or []),
            "include_long_running": bool(request.include_long_running),
            "include_preview": bool(request.include_preview),
            "app_client_id": request.app_client_id,
            "app_client_secret": request.app_client_secret,
            "bearer_token": bearer_token,
            "settings": dict(self.settings),
        }
        try:
            self.launcher.launch(bundle)
        except Exception:
            # nothing will ever finish this row; don't let it hold the tenant
            self.store.delete_job(job.job_id)
            raise
        logger.info(f"[job_id={job.job_id}] Submitted scan job. tenant='{tenant_id}' suites={request.suites} "
                    f"severity={request.severity}")
        return job

    def poll(self, job_id) -> Optional[Job]:
        job = self.store.read_job(job_id)
        if job is None:
            return None
        if job.is_terminal:
            self.store.retire(job)
            self.launcher.reap(job_id)
            logger.info(f"[job_id={job_id}] Delivered {job.status} result and retired job.")
        return job

    def stats(self) -> dict:
        return self.store.get_stats()


def job_to_response(job: Job) -> JobResponse:
    return JobResponse(
        job_id=job.job_id,
        status=job.status,
        created_at=to_iso(job.created_at),
        updated_at=to_iso(job.updated_at),
        result=JobSummary.model_validate_json(job.result) if job.result else None,
        error=job.error,
    )
