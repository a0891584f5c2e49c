# build_engine/infrastructure/memory/repository.py

import copy
from dataclasses import replace
from datetime import datetime, timedelta
from threading import Lock
from typing import Callable, Dict, Iterable, Optional, Sequence

from build_engine.core.errors import JobLeaseError, RecordAlreadyExists, RecordNotFound
from build_engine.core.models import (
    Build,
    BuildJob,
    BuildStatus,
    Deployment,
    DeploymentStatus,
    JobState,
    Strategy,
    TenantDistribution,
    TenantProfile,
    utcnow,
)
from build_engine.core.repository import (
    BuildRepository,
    DeploymentRepository,
    LOST_LEASE_ERROR,
    JobQueue,
    TenantDirectory,
    TenantDistributionRepository,
)


class InMemoryBuildRepository(BuildRepository):
    def __init__(self):
        self._store: Dict[str, Build] = {}
        self._lock = Lock()

    def create(self, build: Build) -> None:
        with self._lock:
            if build.build_id in self._store:
                raise RecordAlreadyExists(f"Build {build.build_id} already exists")
            self._store[build.build_id] = copy.deepcopy(build)

    def get(self, build_id: str) -> Optional[Build]:
        with self._lock:
            build = self._store.get(build_id)
            return copy.deepcopy(build) if build else None

    def update(self, build: Build) -> None:
        with self._lock:
            if build.build_id not in self._store:
                raise RecordNotFound(f"Build {build.build_id} not found")
            self._store[build.build_id] = copy.deepcopy(build)

    def list_by_tenant(
        self,
        tenant_id: str,
        status: Optional[BuildStatus] = None,
        limit: int = 50,
    ) -> Iterable[Build]:
        with self._lock:
            builds = [
                copy.deepcopy(b) for b in self._store.values()
                if b.tenant_id == tenant_id and (status is None or b.status == status)
            ]
        builds.sort(key=lambda b: b.created_at, reverse=True)
        return builds[:limit]


class InMemoryDeploymentRepository(DeploymentRepository):
    def __init__(self):
        self._store: Dict[str, Deployment] = {}
        self._lock = Lock()

    def create(self, deployment: Deployment) -> None:
        with self._lock:
            if deployment.deployment_id in self._store:
                raise RecordAlreadyExists(f"Deployment {deployment.deployment_id} already exists")
            self._store[deployment.deployment_id] = copy.deepcopy(deployment)

    def get(self, deployment_id: str) -> Optional[Deployment]:
        with self._lock:
            deployment = self._store.get(deployment_id)
            return copy.deepcopy(deployment) if deployment else None

    def get_by_build(self, build_id: str) -> Optional[Deployment]:
        with self._lock:
            matches = [d for d in self._store.values() if d.build_id == build_id]
        if not matches:
            return None
        return copy.deepcopy(max(matches, key=lambda d: d.created_at))

    def update(self, deployment: Deployment) -> None:
        with self._lock:
            if deployment.deployment_id not in self._store:
                raise RecordNotFound(f"Deployment {deployment.deployment_id} not found")
            self._store[deployment.deployment_id] = copy.deepcopy(deployment)

    def latest_active(self, tenant_id: str) -> Optional[Deployment]:
        with self._lock:
            active = [
                d for d in self._store.values()
                if d.tenant_id == tenant_id and d.status == DeploymentStatus.ACTIVE
            ]
        if not active:
            return None
        return copy.deepcopy(max(active, key=lambda d: d.activated_at or d.created_at))


class InMemoryTenantDistributionRepository(TenantDistributionRepository):
    def __init__(self):
        self._store: Dict[str, TenantDistribution] = {}
        self._lock = Lock()

    def get(self, tenant_id: str) -> Optional[TenantDistribution]:
        with self._lock:
            record = self._store.get(tenant_id)
            return copy.deepcopy(record) if record else None

    def save(self, distribution: TenantDistribution) -> None:
        with self._lock:
            self._store[distribution.tenant_id] = copy.deepcopy(distribution)

    def delete(self, tenant_id: str) -> None:
        with self._lock:
            self._store.pop(tenant_id, None)

    def count_by_strategy(self, strategy: Strategy) -> int:
        with self._lock:
            return sum(1 for d in self._store.values() if d.strategy == strategy)


class InMemoryTenantDirectory(TenantDirectory):
    def __init__(
        self,
        default_tier: str = "standard",
        enterprise_tenant_ids: Sequence[str] = (),
    ):
        self._profiles: Dict[str, TenantProfile] = {}
        self._default_tier = default_tier
        self._enterprise_ids = tuple(enterprise_tenant_ids)
        self._lock = Lock()

    def put(self, profile: TenantProfile) -> None:
        with self._lock:
            self._profiles[profile.tenant_id] = profile

    def all_profiles(self) -> Iterable[TenantProfile]:
        with self._lock:
            return list(self._profiles.values())

    def get_profile(self, tenant_id: str) -> TenantProfile:
        with self._lock:
            profile = self._profiles.get(tenant_id)
        return profile or TenantProfile.fallback(tenant_id, self._default_tier, self._enterprise_ids)

    def set_deployment_strategy(self, tenant_id: str, strategy: Strategy) -> None:
        profile = self.get_profile(tenant_id)
        self.put(replace(profile, deployment_strategy=strategy))


class InMemoryJobQueue(JobQueue):
    """
    Lease-based queue. Expired leases are claimable again; an expired lease
    on the final attempt sends the job to the dead letter state instead.
    """

    def __init__(
        self,
        clock: Callable[[], datetime] = utcnow,
        on_dead: Optional[Callable[[BuildJob], None]] = None,
    ):
        self._jobs: Dict[str, BuildJob] = {}
        self._lock = Lock()
        self._clock = clock
        self.on_dead = on_dead

    def enqueue(self, job: BuildJob) -> None:
        with self._lock:
            if job.job_id in self._jobs:
                raise RecordAlreadyExists(f"Job {job.job_id} already exists")
            self._jobs[job.job_id] = copy.deepcopy(job)

    def get(self, job_id: str) -> Optional[BuildJob]:
        with self._lock:
            job = self._jobs.get(job_id)
            return copy.deepcopy(job) if job else None

    def claim_next(self, worker_id: str, lease_seconds: int) -> Optional[BuildJob]:
        expired = []
        claimed = None

        with self._lock:
            now = self._clock()

            for job in sorted(self._jobs.values(), key=lambda j: j.created_at):
                if job.state == JobState.CLAIMED and job.lease_expires_at <= now:
                    if job.is_final_attempt():
                        job.state = JobState.DEAD
                        job.finished_at = now
                        job.last_error = LOST_LEASE_ERROR
                        job.lease_owner = None
                        job.version += 1
                        expired.append(copy.deepcopy(job))
                        continue
                elif not (job.state == JobState.QUEUED and job.available_at <= now):
                    continue

                job.state = JobState.CLAIMED
                job.lease_owner = worker_id
                job.lease_expires_at = now + timedelta(seconds=lease_seconds)
                job.attempts += 1
                job.version += 1
                claimed = copy.deepcopy(job)
                break

        self._notify_dead(expired)
        return claimed

    def _held(self, job_id: str, worker_id: str) -> BuildJob:
        job = self._jobs.get(job_id)
        if job is None:
            raise JobLeaseError(f"Job {job_id} not found")
        if job.state != JobState.CLAIMED or job.lease_owner != worker_id:
            raise JobLeaseError(f"Job {job_id} is not leased by {worker_id}")
        if job.lease_expires_at <= self._clock():
            raise JobLeaseError(f"Lease on job {job_id} expired")
        return job

    def renew_lease(self, job_id: str, worker_id: str, lease_seconds: int) -> None:
        with self._lock:
            job = self._held(job_id, worker_id)
            job.lease_expires_at = self._clock() + timedelta(seconds=lease_seconds)
            job.version += 1

    def complete(self, job_id: str, worker_id: str) -> None:
        with self._lock:
            job = self._held(job_id, worker_id)
            job.state = JobState.DONE
            job.finished_at = self._clock()
            job.lease_owner = None
            job.lease_expires_at = None
            job.version += 1

    def retry_later(self, job_id: str, worker_id: str, delay_seconds: float, error: str) -> None:
        with self._lock:
            job = self._held(job_id, worker_id)
            job.state = JobState.QUEUED
            job.available_at = self._clock() + timedelta(seconds=delay_seconds)
            job.last_error = error
            job.lease_owner = None
            job.lease_expires_at = None
            job.version += 1

    def dead_letter(self, job_id: str, worker_id: str, error: str) -> None:
        with self._lock:
            job = self._held(job_id, worker_id)
            job.state = JobState.DEAD
            job.finished_at = self._clock()
            job.last_error = error
            job.lease_owner = None
            job.lease_expires_at = None
            job.version += 1
