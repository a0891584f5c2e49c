#build_engine\pipeline\submission.py

"""Build submission - records a pending build and queues its job."""

import logging
from typing import Any, Dict, Optional, Tuple

from build_engine.core.models import Build, BuildJob, BuildStatus
from build_engine.core.repository import BuildRepository, JobQueue
from build_engine.core.validation import parse_build_payload

logger = logging.getLogger(__name__)


class BuildSubmissionService:

    def __init__(self, builds: BuildRepository, queue: JobQueue, max_attempts: int = 3):
        self._builds = builds
        self._queue = queue
        self._max_attempts = max_attempts

    # -------------------------
    # SUBMIT
    # -------------------------

    def submit(self, payload: Dict[str, Any]) -> Tuple[Build, BuildJob]:
        """
        Validate a job payload, record the build as pending and enqueue it.

        Raises:
            BuildValidationError: malformed payload (nothing is recorded)
            RecordAlreadyExists: build id already submitted
        """
        request = parse_build_payload(payload)

        build = Build(
            build_id=request.build_id,
            tenant_id=request.tenant_id,
            source_key=request.source_key,
            framework=request.build_config.framework,
            output_dir=request.build_config.output_dir,
        )
        self._builds.create(build)

        job = BuildJob.for_request(request, max_attempts=self._max_attempts)
        self._queue.enqueue(job)

        logger.info(
            f"[submission] Build {build.build_id} queued for tenant {build.tenant_id} (job {job.job_id})"
        )
        return build, job

    # -------------------------
    # READ
    # -------------------------

    def get_build(self, build_id: str) -> Optional[Build]:
        return self._builds.get(build_id)

    def list_builds(self, tenant_id: str, status: Optional[BuildStatus] = None, limit: int = 50):
        return list(self._builds.list_by_tenant(tenant_id, status=status, limit=limit))
