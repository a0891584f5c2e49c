# build_engine/executor/executor.py
"""Executor - claims build jobs from the queue and runs them on a fixed pool."""

import threading
import time
import logging
from typing import Dict, List, Optional

from build_engine.core.errors import JobLeaseError
from build_engine.core.models import BuildJob, BuildPhase, BuildResult, ErrorKind
from build_engine.core.repository import JobQueue
from build_engine.executor.config import WorkerConfig
from build_engine.executor.retry_service import RetryService
from build_engine.executor.slots import SlotManager
from build_engine.pipeline.orchestrator import BuildOrchestrator

logger = logging.getLogger(__name__)


class Executor:
    """
    Claims jobs and runs each one in its own thread, one job per slot.

    A worker owns its build end to end; leases of running jobs are renewed
    on every poll so no other worker picks them up.
    """

    def __init__(
        self,
        *,
        config: WorkerConfig,
        queue: JobQueue,
        orchestrator: BuildOrchestrator,
        retry_service: RetryService,
    ):
        self.config = config
        self.worker_id = config.worker_id
        self.queue = queue
        self.orchestrator = orchestrator
        self.retry_service = retry_service

        self.slots = SlotManager(config.pool_size)
        self._stop_event = threading.Event()
        self._thread: Optional[threading.Thread] = None

        # job_id -> thread
        self._running: Dict[str, threading.Thread] = {}
        self._running_lock = threading.Lock()

    def start(self):
        logger.info(f"[executor {self.worker_id}] 🚀 Starting executor")
        logger.info(f"[executor] Pool size: {self.slots.total_slots()}")
        logger.info(f"[executor] Poll interval: {self.config.poll_interval_seconds}s")
        logger.info(f"[executor] Lease duration: {self.config.lease_seconds}s")

        self._thread = threading.Thread(target=self._run_loop, daemon=True)
        self._thread.start()

    def stop(self, wait: bool = True):
        logger.info(f"[executor {self.worker_id}] Stopping executor")
        self._stop_event.set()
        if self._thread:
            self._thread.join()
        if wait:
            self.drain()

    def _run_loop(self):
        while not self._stop_event.is_set():
            try:
                self.run_once()
            except Exception as e:
                logger.error(f"[executor] Error in main loop: {e}", exc_info=True)

            self._stop_event.wait(self.config.poll_interval_seconds)

    def run_once(self) -> List[str]:
        """One poll: renew leases, then fill free slots. Returns started job ids."""
        self._renew_running_leases()
        return self._claim_and_execute()

    def drain(self, timeout: Optional[float] = None) -> None:
        """Wait for running jobs to finish."""
        with self._running_lock:
            threads = list(self._running.values())
        for thread in threads:
            thread.join(timeout)

    # ---------------------------------------------------------
    # Leases
    # ---------------------------------------------------------

    def _renew_running_leases(self):
        for job_id in self.slots.busy_jobs():
            try:
                self.queue.renew_lease(job_id, self.worker_id, self.config.lease_seconds)
            except JobLeaseError:
                # The build keeps running; settling it will fail and be logged.
                logger.warning(f"[executor] Lost lease for job {job_id}")
            except Exception as e:
                logger.error(f"[executor] Error renewing lease for {job_id}: {e}")

    # ---------------------------------------------------------
    # Claim / run
    # ---------------------------------------------------------

    def _claim_and_execute(self) -> List[str]:
        started = []

        while self.slots.has_free_slot():
            job = self.queue.claim_next(self.worker_id, self.config.lease_seconds)
            if job is None:
                break

            slot = self.slots.reserve(job.job_id)
            if slot is None:
                # Pool filled between the check and the claim.
                self.queue.retry_later(job.job_id, self.worker_id, 0, "no free slot")
                break

            thread = threading.Thread(
                target=self._execute_in_thread,
                args=(job,),
                daemon=True,
            )
            with self._running_lock:
                self._running[job.job_id] = thread
            thread.start()

            logger.info(
                f"[executor] ✅ Started job {job.job_id} (build {job.build_id}, "
                f"attempt {job.attempts}/{job.max_attempts}) in slot {slot.slot_id}"
            )
            started.append(job.job_id)

        return started

    def _execute_in_thread(self, job: BuildJob):
        started = time.monotonic()
        try:
            logger.info(f"[executor] [{job.job_id}] Running build {job.build_id}")

            try:
                result = self.orchestrator.handle_job(job)
            except Exception as e:
                logger.error(f"[executor] [{job.job_id}] ❌ Build crashed: {e}", exc_info=True)
                result = BuildResult.failed(BuildPhase.UNKNOWN, str(e), ErrorKind.INTERNAL, retryable=True)

            state = self.retry_service.settle(job, self.worker_id, result)
            logger.info(
                f"[executor] [{job.job_id}] Finished in {time.monotonic() - started:.1f}s -> {state.value}"
            )

        except JobLeaseError as e:
            logger.warning(f"[executor] [{job.job_id}] Could not settle, lease lost: {e}")
            if job.is_final_attempt():
                self._fail_abandoned(job)
        except Exception as e:
            logger.error(f"[executor] [{job.job_id}] Failed to settle job: {e}", exc_info=True)

        finally:
            self.slots.release(job.job_id)
            with self._running_lock:
                self._running.pop(job.job_id, None)

    def _fail_abandoned(self, job: BuildJob):
        # No other worker will pick the job up again
        try:
            self.retry_service.fail_abandoned_build(job)
        except Exception as e:
            logger.error(f"[executor] [{job.job_id}] Could not fail build {job.build_id}: {e}", exc_info=True)
