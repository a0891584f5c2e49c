# build_engine/executor/retry_service.py
"""Settles finished build jobs on the queue: done, retry later, or dead letter."""

import logging
from dataclasses import dataclass
from typing import Optional

from build_engine.core.models import BuildJob, BuildPhase, BuildResult, BuildStatus, JobState
from build_engine.core.repository import LOST_LEASE_ERROR, BuildRepository, JobQueue
from build_engine.core.state_machine import BuildStateMachine

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RetryPolicy:
    """Exponential backoff: base, 2*base, 4*base, ..."""

    base_seconds: float = 2.0
    max_delay_seconds: float = 300.0

    def delay_for(self, attempt: int) -> float:
        return min(self.base_seconds * 2 ** (max(attempt, 1) - 1), self.max_delay_seconds)


class RetryService:
    """
    Maps a BuildResult onto the queue.

    - success -> complete
    - retryable failure with attempts left -> re-queued after backoff
    - anything else -> dead letter

    Jobs abandoned on their final attempt fail their build here too.
    """

    def __init__(self, queue: JobQueue, policy: RetryPolicy, builds: Optional[BuildRepository] = None):
        self._queue = queue
        self._policy = policy
        self._builds = builds

    def settle(self, job: BuildJob, worker_id: str, result: BuildResult) -> JobState:
        if result.success:
            self._queue.complete(job.job_id, worker_id)
            logger.info(f"[retry] ✅ Job {job.job_id} done")
            return JobState.DONE

        if result.retryable and not job.is_final_attempt():
            delay = self._policy.delay_for(job.attempts)
            self._queue.retry_later(job.job_id, worker_id, delay, result.error or "")
            logger.info(
                f"[retry] Job {job.job_id} failed in {result.phase.value}, "
                f"retry in {delay:.0f}s (attempt {job.attempts}/{job.max_attempts})"
            )
            return JobState.QUEUED

        self._queue.dead_letter(job.job_id, worker_id, result.error or "")
        logger.warning(
            f"[retry] Job {job.job_id} dead-lettered after {job.attempts} attempt(s): {result.error}"
        )
        return JobState.DEAD

    def fail_abandoned_build(self, job: BuildJob) -> None:
        """Fail the build of a job that lost its lease on the final attempt."""
        if self._builds is None:
            return
        build = self._builds.get(job.build_id)
        if build is None or build.is_terminal():
            return
        BuildStateMachine.transition(
            build,
            BuildStatus.FAILED,
            error_message=LOST_LEASE_ERROR,
            error_phase=BuildPhase.UNKNOWN,
        )
        self._builds.update(build)
        logger.warning(f"[retry] ❌ Build {build.build_id} failed: {LOST_LEASE_ERROR}")
