# build_engine/core/repository.py

import logging
from abc import ABC, abstractmethod
from typing import Callable, Iterable, Optional

from build_engine.core.models import (
    Build,
    BuildJob,
    BuildStatus,
    Deployment,
    Strategy,
    TenantDistribution,
    TenantProfile,
)

logger = logging.getLogger(__name__)


class BuildRepository(ABC):
    """
    Persistence contract for builds.
    """

    @abstractmethod
    def create(self, build: Build) -> None:
        """
        Persist a new build.
        Must fail if build_id already exists.
        """
        raise NotImplementedError

    @abstractmethod
    def get(self, build_id: str) -> Optional[Build]:
        """
        Fetch build by ID.
        Returns None if not found.
        """
        raise NotImplementedError

    @abstractmethod
    def update(self, build: Build) -> None:
        """Persist updated build state."""
        raise NotImplementedError

    @abstractmethod
    def list_by_tenant(
        self,
        tenant_id: str,
        status: Optional[BuildStatus] = None,
        limit: int = 50,
    ) -> Iterable[Build]:
        """List a tenant's builds, newest first."""
        raise NotImplementedError


class DeploymentRepository(ABC):
    """
    Persistence contract for deployments.
    """

    @abstractmethod
    def create(self, deployment: Deployment) -> None:
        raise NotImplementedError

    @abstractmethod
    def get(self, deployment_id: str) -> Optional[Deployment]:
        raise NotImplementedError

    @abstractmethod
    def get_by_build(self, build_id: str) -> Optional[Deployment]:
        """Deployment created for a build, if any."""
        raise NotImplementedError

    @abstractmethod
    def update(self, deployment: Deployment) -> None:
        raise NotImplementedError

    @abstractmethod
    def latest_active(self, tenant_id: str) -> Optional[Deployment]:
        """Most recently activated deployment for a tenant."""
        raise NotImplementedError


class TenantDistributionRepository(ABC):
    """
    Persistence contract for provisioned (individual) distributions.
    """

    @abstractmethod
    def get(self, tenant_id: str) -> Optional[TenantDistribution]:
        raise NotImplementedError

    @abstractmethod
    def save(self, distribution: TenantDistribution) -> None:
        """Insert or replace the tenant's distribution record."""
        raise NotImplementedError

    @abstractmethod
    def delete(self, tenant_id: str) -> None:
        raise NotImplementedError

    @abstractmethod
    def count_by_strategy(self, strategy: Strategy) -> int:
        """Used for quota accounting."""
        raise NotImplementedError


class TenantDirectory(ABC):
    """
    Read access to tenant attributes owned by the tenant service.
    """

    @abstractmethod
    def get_profile(self, tenant_id: str) -> TenantProfile:
        """Return the tenant's profile, or a fallback profile if unknown."""
        raise NotImplementedError

    @abstractmethod
    def all_profiles(self) -> Iterable[TenantProfile]:
        """Every tenant with a stored profile (for strategy statistics)."""
        raise NotImplementedError

    @abstractmethod
    def set_deployment_strategy(self, tenant_id: str, strategy: Strategy) -> None:
        """Record the tenant's explicit strategy preference."""
        raise NotImplementedError


LOST_LEASE_ERROR = "worker lost lease on final attempt"


class JobQueue(ABC):
    """
    Durable at-least-once build job queue with leases.

    ``on_dead`` is called with each job that ``claim_next`` dead-letters
    because its lease expired on the final attempt.
    """

    on_dead: Optional[Callable[[BuildJob], None]] = None

    def _notify_dead(self, jobs) -> None:
        if self.on_dead is None:
            return
        for job in jobs:
            try:
                self.on_dead(job)
            except Exception as e:
                logger.error(f"[queue] Dead letter handler failed for job {job.job_id}: {e}", exc_info=True)

    @abstractmethod
    def enqueue(self, job: BuildJob) -> None:
        raise NotImplementedError

    @abstractmethod
    def get(self, job_id: str) -> Optional[BuildJob]:
        raise NotImplementedError

    @abstractmethod
    def claim_next(self, worker_id: str, lease_seconds: int) -> Optional[BuildJob]:
        """
        Atomically claim the oldest available job.
        Jobs whose lease expired are claimable again, except on the final
        attempt, where they are dead-lettered and passed to ``on_dead``.
        Increments the job's attempt counter.
        """
        raise NotImplementedError

    @abstractmethod
    def renew_lease(self, job_id: str, worker_id: str, lease_seconds: int) -> None:
        """Extend a held lease. Raises JobLeaseError if not held."""
        raise NotImplementedError

    @abstractmethod
    def complete(self, job_id: str, worker_id: str) -> None:
        raise NotImplementedError

    @abstractmethod
    def retry_later(
        self,
        job_id: str,
        worker_id: str,
        delay_seconds: float,
        error: str,
    ) -> None:
        """Release the lease and make the job available again after a delay."""
        raise NotImplementedError

    @abstractmethod
    def dead_letter(self, job_id: str, worker_id: str, error: str) -> None:
        raise NotImplementedError
