# src/maester_api/engine/launcher.py
"""
WorkerLauncher: one spawned OS process per job.

Spawn (not fork, not a thread) gives each worker a fresh interpreter; the
engine's dependencies and everything the scan allocated go back to the OS
when it exits. The argument bundle is pickled to the child over the process
pipe, so tokens never show up on a command line.
"""
import logging
import multiprocessing
import threading

from maester_api.engine import worker

logger = logging.getLogger(__name__)


class WorkerLauncher:
    def __init__(self, target=worker.main):
        self.target = target
        self.ctx = multiprocessing.get_context("spawn")
        self.handles = {}
        self.lock = threading.Lock()

    def launch(self, bundle):
        job_id = bundle["job_id"]
        process = self.ctx.Process(target=self.target, args=(dict(bundle),), name=f"scan-{job_id}")
        process.start()
        with self.lock:
            self.handles[job_id] = process
        logger.info(f"[job_id={job_id}] Launched worker pid={process.pid}.")
        return process

    def _release(self, job_id, process):
        process.join(timeout=0)
        logger.info(f"[job_id={job_id}] Reaped worker pid={process.pid} exitcode={process.exitcode}.")
        process.close()

    def reap(self, job_id) -> bool:
        """Reclaim a finished worker's handle. Never waits on a live worker."""
        with self.lock:
            process = self.handles.get(job_id)
            if process is None or process.is_alive():
                return False
            del self.handles[job_id]
        self._release(job_id, process)
        return True

    def reap_finished(self) -> int:
        with self.lock:
            finished = [(job_id, p) for job_id, p in self.handles.items() if not p.is_alive()]
            for job_id, _ in finished:
                del self.handles[job_id]
        for job_id, process in finished:
            self._release(job_id, process)
        return len(finished)

    def active_count(self) -> int:
        with self.lock:
            return sum(1 for p in self.handles.values() if p.is_alive())
