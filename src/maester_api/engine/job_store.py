# src/maester_api/engine/job_store.py
"""
JobStore: durable job rows and the append-only completion history.

Every call opens its own session, so a store built from the same database URL
can be used from the API process and from worker processes at the same time.
Writes run in IMMEDIATE transactions and wait up to the lock timeout for the
single SQLite writer slot; reads never block.
"""

import json
import logging
import uuid
from contextlib import contextmanager
from sqlalchemy import case, func, or_
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from maester_api.engine.db import make_engine, make_session_factory
from maester_api.engine.errors import JobConflictError
from maester_api.engine.models import Job, JobStat, RUNNING, COMPLETED, FAILED, TERMINAL_STATES, utcnow

logger = logging.getLogger(__name__)


class JobStore:
    def __init__(self, database_url, lock_timeout=5.0):
        self.database_url = database_url
        self.engine = make_engine(database_url, lock_timeout)
        self.SessionLocal = make_session_factory(self.engine)

    @contextmanager
    def _session(self, write=False):
        with self.engine.connect() as conn:
            if write:
                conn = conn.execution_options(sqlite_begin="IMMEDIATE")
            db = self.SessionLocal(bind=conn)
            try:
                yield db
            finally:
                db.close()

    def _new_job(self, tenant_id, suites, severity):
        now = utcnow()
        return Job(
            job_id=str(uuid.uuid4()),
            tenant_id=tenant_id or "",
            status=RUNNING,
            created_at=now,
            updated_at=now,
            suites=json.dumps(list(suites or [])),
            severity_filter=json.dumps(list(severity or [])),
        )

    def create_job(self, tenant_id, suites=None, severity=None) -> str:
        job = self._new_job(tenant_id, suites, severity)
        with self._session(write=True) as db:
            db.add(job)
            db.commit()
        logger.info(f"[job_id={job.job_id}] Created job row.")
        return job.job_id

    def create_job_if_admitted(self, tenant_id, suites=None, severity=None, limit=1) -> Job:
        """
        Count running jobs for the tenant and insert the new row inside one
        write transaction. Raises JobConflictError, creating nothing, when the
        tenant is at its limit.
        """
        job = self._new_job(tenant_id, suites, severity)
        with self._session(write=True) as db:
            running = (
                db.query(Job.job_id)
                .filter(Job.tenant_id == job.tenant_id, Job.status == RUNNING)
                .order_by(Job.created_at)
                .all()
            )
            if len(running) >= limit:
                db.rollback()
                raise JobConflictError(job.tenant_id, running[0].job_id)
            db.add(job)
            db.commit()
        logger.info(f"[job_id={job.job_id}] Created job row for tenant '{job.tenant_id}'.")
        return job

    def read_job(self, job_id):
        with self._session() as db:
            return db.get(Job, job_id)

    def count_running(self, tenant_id) -> int:
        with self._session() as db:
            return db.query(Job).filter(Job.tenant_id == (tenant_id or ""), Job.status == RUNNING).count()

    def _finish(self, job_id, status, result=None, error=None, duration_ms=None) -> bool:
        with self._session(write=True) as db:
            job = db.get(Job, job_id)
            if job is None:
                logger.info(f"[job_id={job_id}] Ignoring {status} write: job no longer exists.")
                return False
            if job.is_terminal:
                logger.info(f"[job_id={job_id}] Ignoring {status} write: job already {job.status}.")
                return False
            job.status = status
            job.result = result
            job.error = error
            job.duration_ms = duration_ms
            job.updated_at = max(utcnow(), job.created_at)
            db.commit()
        return True

    def complete_job(self, job_id, result_doc, duration_ms) -> bool:
        if not isinstance(result_doc, str):
            result_doc = json.dumps(result_doc)
        return self._finish(job_id, COMPLETED, result=result_doc, duration_ms=duration_ms)

    def fail_job(self, job_id, error_msg, duration_ms) -> bool:
        return self._finish(job_id, FAILED, error=error_msg, duration_ms=duration_ms)

    def delete_job(self, job_id) -> bool:
        with self._session(write=True) as db:
            deleted = db.query(Job).filter(Job.job_id == job_id).delete(synchronize_session=False)
            db.commit()
        return deleted > 0

    def archive_completion(self, job_id, status, duration_ms, suites):
        if suites is not None and not isinstance(suites, str):
            suites = json.dumps(list(suites))
        stmt = (
            sqlite_insert(JobStat)
            .values(job_id=job_id, status=status, duration_ms=duration_ms, suites=suites, completed_at=utcnow())
            .on_conflict_do_nothing(index_elements=["job_id"])
        )
        with self._session(write=True) as db:
            db.execute(stmt)
            db.commit()

    def retire(self, job):
        """Archive a terminal job into history, then delete its row."""
        self.archive_completion(job.job_id, job.status, job.duration_ms, job.suites)
        self.delete_job(job.job_id)

    def fail_stale_running(self, cutoff, message):
        """Mark every job still running since before ``cutoff`` as failed."""
        now = utcnow()
        failed = []
        with self._session(write=True) as db:
            stale = db.query(Job).filter(Job.status == RUNNING, Job.created_at < cutoff).all()
            for job in stale:
                job.status = FAILED
                job.error = message
                job.result = None
                job.duration_ms = int((now - job.created_at).total_seconds() * 1000)
                job.updated_at = max(now, job.created_at)
                failed.append(job.job_id)
            db.commit()
        return failed

    def expired_jobs(self, terminal_cutoff, hard_cutoff):
        """Terminal jobs finished before ``terminal_cutoff`` or created before ``hard_cutoff``."""
        with self._session() as db:
            return (
                db.query(Job)
                .filter(
                    Job.status.in_(TERMINAL_STATES),
                    or_(Job.updated_at < terminal_cutoff, Job.created_at < hard_cutoff),
                )
                .all()
            )

    def get_stats(self) -> dict:
        with self._session() as db:
            total, completed, failed, avg_ms, min_ms, max_ms, last = db.query(
                func.count(JobStat.id),
                func.sum(case((JobStat.status == COMPLETED, 1), else_=0)),
                func.sum(case((JobStat.status == FAILED, 1), else_=0)),
                func.avg(JobStat.duration_ms),
                func.min(JobStat.duration_ms),
                func.max(JobStat.duration_ms),
                func.max(JobStat.completed_at),
            ).one()
            running = db.query(Job).filter(Job.status == RUNNING).count()
        return {
            "total": total or 0,
            "completed": completed or 0,
            "failed": failed or 0,
            "running": running,
            "avg_duration_ms": int(avg_ms) if avg_ms is not None else None,
            "min_duration_ms": min_ms,
            "max_duration_ms": max_ms,
            "last_completed_at": last,
        }
