# src/maester_api/engine/reaper.py
"""
LifecycleReaper: background sweep over the job table.

- running jobs older than ``stale_after`` (capped at ``hard_expiry``) are
  marked failed (the worker process, if any, is left alone; its late
  terminal write is ignored)
- terminal jobs nobody polled within ``completed_expiry`` are archived and deleted
- terminal jobs older than ``hard_expiry`` are archived and deleted
"""
import logging
import threading
from datetime import timedelta

from maester_api.engine.models import utcnow

logger = logging.getLogger(__name__)


class LifecycleReaper:
    def __init__(self, store, stale_after=timedelta(minutes=30), completed_expiry=timedelta(minutes=60),
                 hard_expiry=timedelta(hours=24), interval=60.0):
        self.store = store
        self.stale_after = stale_after
        self.completed_expiry = completed_expiry
        self.hard_expiry = hard_expiry
        self.interval = interval
        self._stop = threading.Event()
        self._thread = None

    @property
    def run_limit(self):
        return min(self.stale_after, self.hard_expiry)

    def timeout_message(self):
        minutes = int(self.run_limit.total_seconds() // 60)
        return f"Job timed out after {minutes} minutes without completing"

    def sweep(self) -> dict:
        now = utcnow()
        timed_out = self.store.fail_stale_running(now - self.run_limit, self.timeout_message())
        for job_id in timed_out:
            logger.warning(f"[job_id={job_id}] Marked failed: running longer than {self.run_limit}.")

        expired = self.store.expired_jobs(now - self.completed_expiry, now - self.hard_expiry)
        for job in expired:
            self.store.retire(job)
            logger.info(f"[job_id={job.job_id}] Expired {job.status} job was never collected; removed.")
        return {"timed_out": len(timed_out), "expired": len(expired)}

    def _run(self):
        while not self._stop.wait(self.interval):
            try:
                self.sweep()
            except Exception as e:
                # the next tick retries; a locked or missing store must not kill the thread
                logger.error(f"Lifecycle sweep failed: {e}")

    def start(self):
        if self._thread is not None and self._thread.is_alive():
            return
        self._stop.clear()
        self._thread = threading.Thread(target=self._run, name="lifecycle-reaper", daemon=True)
        self._thread.start()
        logger.info(f"Lifecycle reaper started (interval={self.interval}s, stale_after={self.stale_after}).")

    def stop(self, timeout=5.0):
        self._stop.set()
        if self._thread is not None:
            self._thread.join(timeout)
            self._thread = None
