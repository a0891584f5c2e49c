#build_engine\infrastructure\postgres\repository.py

"""PostgreSQL repository implementations using SQLAlchemy."""

import logging
from datetime import datetime, timedelta
from typing import Callable, Iterable, Optional, Sequence

from sqlalchemy import and_, or_
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker

from build_engine.core.errors import (
    JobLeaseError,
    PersistenceError,
    RecordAlreadyExists,
    RecordNotFound,
)
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
    ensure_aware,
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
from build_engine.infrastructure.postgres.database import get_session_factory
from build_engine.infrastructure.postgres.models import (
    BuildJobORM,
    BuildORM,
    DeploymentORM,
    TenantDistributionORM,
    TenantProfileORM,
)

logger = logging.getLogger(__name__)

CLAIM_SCAN_LIMIT = 10


# ============================================
# Mapping Functions
# ============================================

def build_to_domain(orm: BuildORM) -> Build:
    return Build(
        build_id=orm.build_id,
        tenant_id=orm.tenant_id,
        source_key=orm.source_key,
        status=orm.status,
        framework=orm.framework,
        output_dir=orm.output_dir,
        created_at=ensure_aware(orm.created_at),
        started_at=ensure_aware(orm.started_at),
        finished_at=ensure_aware(orm.finished_at),
        error_message=orm.error_message,
        error_phase=orm.error_phase,
        build_path=orm.build_path,
    )


def build_to_orm(build: Build) -> BuildORM:
    return BuildORM(
        build_id=build.build_id,
        tenant_id=build.tenant_id,
        source_key=build.source_key,
        version=build.version,
        status=build.status,
        framework=build.framework,
        output_dir=build.output_dir,
        created_at=build.created_at,
        started_at=build.started_at,
        finished_at=build.finished_at,
        error_message=build.error_message,
        error_phase=build.error_phase,
        build_path=build.build_path,
    )


def deployment_to_domain(orm: DeploymentORM) -> Deployment:
    return Deployment(
        deployment_id=orm.deployment_id,
        tenant_id=orm.tenant_id,
        build_id=orm.build_id,
        version=orm.version,
        status=orm.status,
        invalidation_id=orm.invalidation_id,
        deployment_url=orm.deployment_url,
        notes=orm.notes,
        created_at=ensure_aware(orm.created_at),
        activated_at=ensure_aware(orm.activated_at),
    )


def deployment_to_orm(deployment: Deployment) -> DeploymentORM:
    return DeploymentORM(
        deployment_id=deployment.deployment_id,
        tenant_id=deployment.tenant_id,
        build_id=deployment.build_id,
        version=deployment.version,
        status=deployment.status,
        invalidation_id=deployment.invalidation_id,
        deployment_url=deployment.deployment_url,
        notes=deployment.notes,
        created_at=deployment.created_at,
        activated_at=deployment.activated_at,
    )


def distribution_to_domain(orm: TenantDistributionORM) -> TenantDistribution:
    return TenantDistribution(
        tenant_id=orm.tenant_id,
        strategy=orm.strategy,
        distribution_id=orm.distribution_id,
        domain=orm.domain,
        status=orm.status,
        created_at=ensure_aware(orm.created_at),
    )


def profile_to_domain(orm: TenantProfileORM) -> TenantProfile:
    return TenantProfile(
        tenant_id=orm.tenant_id,
        subscription_tier=orm.subscription_tier,
        plan_type=orm.plan_type,
        traffic_tier=orm.traffic_tier,
        monthly_page_views=orm.monthly_page_views,
        compliance_requirements=tuple(orm.compliance_requirements or ()),
        deployment_strategy=orm.deployment_strategy,
        custom_domain=orm.custom_domain,
    )


def job_to_domain(orm: BuildJobORM) -> BuildJob:
    return BuildJob(
        job_id=orm.job_id,
        build_id=orm.build_id,
        tenant_id=orm.tenant_id,
        payload=orm.payload,
        state=orm.state,
        attempts=orm.attempts,
        max_attempts=orm.max_attempts,
        created_at=ensure_aware(orm.created_at),
        available_at=ensure_aware(orm.available_at),
        finished_at=ensure_aware(orm.finished_at),
        lease_owner=orm.lease_owner,
        lease_expires_at=ensure_aware(orm.lease_expires_at),
        last_error=orm.last_error,
        version=orm.version,
    )


def job_to_orm(job: BuildJob) -> BuildJobORM:
    return BuildJobORM(
        job_id=job.job_id,
        build_id=job.build_id,
        tenant_id=job.tenant_id,
        payload=job.payload,
        state=job.state,
        attempts=job.attempts,
        max_attempts=job.max_attempts,
        created_at=job.created_at,
        available_at=job.available_at,
        finished_at=job.finished_at,
        lease_owner=job.lease_owner,
        lease_expires_at=job.lease_expires_at,
        last_error=job.last_error,
        version=job.version,
    )


# ============================================
# Base
# ============================================

class _SessionRepository:
    def __init__(self, session_factory: Optional[sessionmaker] = None):
        """
        Args:
            session_factory: SQLAlchemy session factory. If None, uses the production factory.
        """
        self._session_factory = session_factory or get_session_factory()

    def _get_session(self) -> Session:
        return self._session_factory()

    def _add(self, orm, label: str) -> None:
        session = self._get_session()
        try:
            session.add(orm)
            session.commit()
            logger.debug(f"[postgres] create {label} -> done")
        except IntegrityError as e:
            session.rollback()
            raise RecordAlreadyExists(f"{label} already exists") from e
        except SQLAlchemyError as e:
            session.rollback()
            raise PersistenceError(f"Failed to create {label}: {e}") from e
        finally:
            session.close()


# ============================================
# Builds
# ============================================

class PostgresBuildRepository(_SessionRepository, BuildRepository):

    def create(self, build: Build) -> None:
        self._add(build_to_orm(build), f"build {build.build_id}")

    def get(self, build_id: str) -> Optional[Build]:
        session = self._get_session()
        try:
            orm = session.get(BuildORM, build_id)
            return build_to_domain(orm) if orm else None
        finally:
            session.close()

    def update(self, build: Build) -> None:
        session = self._get_session()
        try:
            orm = session.query(BuildORM).filter(
                BuildORM.build_id == build.build_id
            ).with_for_update().first()

            if orm is None:
                raise RecordNotFound(f"Build {build.build_id} not found")

            orm.status = build.status
            orm.framework = build.framework
            orm.output_dir = build.output_dir
            orm.started_at = build.started_at
            orm.finished_at = build.finished_at
            orm.error_message = build.error_message
            orm.error_phase = build.error_phase
            orm.build_path = build.build_path

            session.commit()
            logger.debug(f"[postgres] update build {build.build_id} -> {build.status.value}")
        except RecordNotFound:
            session.rollback()
            raise
        except SQLAlchemyError as e:
            session.rollback()
            raise PersistenceError(f"Update failed: {e}") from e
        finally:
            session.close()

    def list_by_tenant(
        self,
        tenant_id: str,
        status: Optional[BuildStatus] = None,
        limit: int = 50,
    ) -> Iterable[Build]:
        session = self._get_session()
        try:
            query = session.query(BuildORM).filter(BuildORM.tenant_id == tenant_id)
            if status is not None:
                query = query.filter(BuildORM.status == status)
            rows = query.order_by(BuildORM.created_at.desc()).limit(limit).all()
            return [build_to_domain(orm) for orm in rows]
        finally:
            session.close()


# ============================================
# Deployments
# ============================================

class PostgresDeploymentRepository(_SessionRepository, DeploymentRepository):

    def create(self, deployment: Deployment) -> None:
        self._add(deployment_to_orm(deployment), f"deployment {deployment.deployment_id}")

    def get(self, deployment_id: str) -> Optional[Deployment]:
        session = self._get_session()
        try:
            orm = session.get(DeploymentORM, deployment_id)
            return deployment_to_domain(orm) if orm else None
        finally:
            session.close()

    def get_by_build(self, build_id: str) -> Optional[Deployment]:
        session = self._get_session()
        try:
            orm = session.query(DeploymentORM).filter(
                DeploymentORM.build_id == build_id
            ).order_by(DeploymentORM.created_at.desc()).first()
            return deployment_to_domain(orm) if orm else None
        finally:
            session.close()

    def update(self, deployment: Deployment) -> None:
        session = self._get_session()
        try:
            orm = session.get(DeploymentORM, deployment.deployment_id)
            if orm is None:
                raise RecordNotFound(f"Deployment {deployment.deployment_id} not found")

            orm.status = deployment.status
            orm.invalidation_id = deployment.invalidation_id
            orm.deployment_url = deployment.deployment_url
            orm.notes = deployment.notes
            orm.activated_at = deployment.activated_at

            session.commit()
        except RecordNotFound:
            session.rollback()
            raise
        except SQLAlchemyError as e:
            session.rollback()
            raise PersistenceError(f"Update failed: {e}") from e
        finally:
            session.close()

    def latest_active(self, tenant_id: str) -> Optional[Deployment]:
        session = self._get_session()
        try:
            orm = session.query(DeploymentORM).filter(
                and_(
                    DeploymentORM.tenant_id == tenant_id,
                    DeploymentORM.status == DeploymentStatus.ACTIVE,
                )
            ).order_by(DeploymentORM.activated_at.desc()).first()
            return deployment_to_domain(orm) if orm else None
        finally:
            session.close()


# ============================================
# Tenant distributions
# ============================================

class PostgresTenantDistributionRepository(_SessionRepository, TenantDistributionRepository):

    def get(self, tenant_id: str) -> Optional[TenantDistribution]:
        session = self._get_session()
        try:
            orm = session.get(TenantDistributionORM, tenant_id)
            return distribution_to_domain(orm) if orm else None
        finally:
            session.close()

    def save(self, distribution: TenantDistribution) -> None:
        session = self._get_session()
        try:
            session.merge(TenantDistributionORM(
                tenant_id=distribution.tenant_id,
                strategy=distribution.strategy,
                distribution_id=distribution.distribution_id,
                domain=distribution.domain,
                status=distribution.status,
                created_at=distribution.created_at,
            ))
            session.commit()
        except SQLAlchemyError as e:
            session.rollback()
            raise PersistenceError(f"Failed to save distribution: {e}") from e
        finally:
            session.close()

    def delete(self, tenant_id: str) -> None:
        session = self._get_session()
        try:
            session.query(TenantDistributionORM).filter(
                TenantDistributionORM.tenant_id == tenant_id
            ).delete()
            session.commit()
        except SQLAlchemyError as e:
            session.rollback()
            raise PersistenceError(f"Failed to delete distribution: {e}") from e
        finally:
            session.close()

    def count_by_strategy(self, strategy: Strategy) -> int:
        session = self._get_session()
        try:
            return session.query(TenantDistributionORM).filter(
                TenantDistributionORM.strategy == strategy
            ).count()
        finally:
            session.close()


# ============================================
# Tenant directory
# ============================================

class PostgresTenantDirectory(_SessionRepository, TenantDirectory):
    def __init__(
        self,
        session_factory: Optional[sessionmaker] = None,
        *,
        default_tier: str = "standard",
        enterprise_tenant_ids: Sequence[str] = (),
    ):
        super().__init__(session_factory)
        self._default_tier = default_tier
        self._enterprise_ids = tuple(enterprise_tenant_ids)

    def get_profile(self, tenant_id: str) -> TenantProfile:
        session = self._get_session()
        try:
            orm = session.get(TenantProfileORM, tenant_id)
            if orm is None:
                return TenantProfile.fallback(tenant_id, self._default_tier, self._enterprise_ids)
            return profile_to_domain(orm)
        finally:
            session.close()

    def all_profiles(self) -> Iterable[TenantProfile]:
        session = self._get_session()
        try:
            rows = session.query(TenantProfileORM).order_by(TenantProfileORM.tenant_id).all()
            return [profile_to_domain(orm) for orm in rows]
        finally:
            session.close()

    def put(self, profile: TenantProfile) -> None:
        session = self._get_session()
        try:
            session.merge(TenantProfileORM(
                tenant_id=profile.tenant_id,
                subscription_tier=profile.subscription_tier,
                plan_type=profile.plan_type,
                traffic_tier=profile.traffic_tier,
                monthly_page_views=profile.monthly_page_views,
                compliance_requirements=list(profile.compliance_requirements),
                deployment_strategy=profile.deployment_strategy,
                custom_domain=profile.custom_domain,
            ))
            session.commit()
        except SQLAlchemyError as e:
            session.rollback()
            raise PersistenceError(f"Failed to save tenant profile: {e}") from e
        finally:
            session.close()

    def set_deployment_strategy(self, tenant_id: str, strategy: Strategy) -> None:
        session = self._get_session()
        try:
            orm = session.get(TenantProfileORM, tenant_id)
            if orm is None:
                fallback = TenantProfile.fallback(tenant_id, self._default_tier, self._enterprise_ids)
                orm = TenantProfileORM(
                    tenant_id=tenant_id,
                    subscription_tier=fallback.subscription_tier,
                    plan_type=fallback.plan_type,
                    traffic_tier=fallback.traffic_tier,
                    monthly_page_views=0,
                    compliance_requirements=[],
                )
                session.add(orm)
            orm.deployment_strategy = strategy
            session.commit()
        except SQLAlchemyError as e:
            session.rollback()
            raise PersistenceError(f"Failed to set deployment strategy: {e}") from e
        finally:
            session.close()


# ============================================
# Job queue
# ============================================

class PostgresJobQueue(_SessionRepository, JobQueue):
    """
    Row-locked lease queue. Claims use FOR UPDATE SKIP LOCKED so concurrent
    workers never receive the same job.
    """

    def __init__(
        self,
        session_factory: Optional[sessionmaker] = None,
        clock: Callable[[], datetime] = utcnow,
        on_dead: Optional[Callable[[BuildJob], None]] = None,
    ):
        super().__init__(session_factory)
        self._clock = clock
        self.on_dead = on_dead

    def enqueue(self, job: BuildJob) -> None:
        self._add(job_to_orm(job), f"job {job.job_id}")

    def get(self, job_id: str) -> Optional[BuildJob]:
        session = self._get_session()
        try:
            orm = session.get(BuildJobORM, job_id)
            return job_to_domain(orm) if orm else None
        finally:
            session.close()

    # -------------------------
    # CLAIM
    # -------------------------

    def claim_next(self, worker_id: str, lease_seconds: int) -> Optional[BuildJob]:
        expired = []
        session = self._get_session()
        try:
            now = self._clock()

            candidates = session.query(BuildJobORM).filter(
                or_(
                    and_(
                        BuildJobORM.state == JobState.QUEUED,
                        BuildJobORM.available_at <= now,
                    ),
                    and_(
                        BuildJobORM.state == JobState.CLAIMED,
                        BuildJobORM.lease_expires_at <= now,
                    ),
                )
            ).order_by(
                BuildJobORM.created_at.asc()
            ).limit(CLAIM_SCAN_LIMIT).with_for_update(skip_locked=True).all()

            claimed = None
            for orm in candidates:
                if orm.state == JobState.CLAIMED and orm.attempts >= orm.max_attempts:
                    orm.state = JobState.DEAD
                    orm.finished_at = now
                    orm.last_error = LOST_LEASE_ERROR
                    orm.lease_owner = None
                    orm.version += 1
                    expired.append(job_to_domain(orm))
                    logger.warning(f"[postgres] job {orm.job_id} dead: lease expired on final attempt")
                    continue

                orm.state = JobState.CLAIMED
                orm.lease_owner = worker_id
                orm.lease_expires_at = now + timedelta(seconds=lease_seconds)
                orm.attempts += 1
                orm.version += 1
                claimed = job_to_domain(orm)
                break

            session.commit()

        except SQLAlchemyError as e:
            session.rollback()
            raise PersistenceError(f"Failed to claim job: {e}") from e
        finally:
            session.close()

        self._notify_dead(expired)

        if claimed is not None:
            logger.debug(f"[postgres] claim {claimed.job_id} by {worker_id} (attempt {claimed.attempts})")
        return claimed

    def _held(self, session: Session, job_id: str, worker_id: str) -> BuildJobORM:
        orm = session.query(BuildJobORM).filter(
            BuildJobORM.job_id == job_id
        ).with_for_update().first()

        if orm is None:
            raise JobLeaseError(f"Job {job_id} not found")
        if orm.state != JobState.CLAIMED or orm.lease_owner != worker_id:
            raise JobLeaseError(f"Job {job_id} owned by {orm.lease_owner}")
        if ensure_aware(orm.lease_expires_at) <= self._clock():
            raise JobLeaseError(f"Lease on job {job_id} expired")
        return orm

    def _settle(self, job_id: str, worker_id: str, apply) -> None:
        session = self._get_session()
        try:
            orm = self._held(session, job_id, worker_id)
            apply(orm, self._clock())
            orm.version += 1
            session.commit()
        except JobLeaseError:
            session.rollback()
            raise
        except SQLAlchemyError as e:
            session.rollback()
            raise JobLeaseError(f"Failed to update job {job_id}: {e}") from e
        finally:
            session.close()

    def renew_lease(self, job_id: str, worker_id: str, lease_seconds: int) -> None:
        def apply(orm, now):
            orm.lease_expires_at = now + timedelta(seconds=lease_seconds)

        self._settle(job_id, worker_id, apply)

    def complete(self, job_id: str, worker_id: str) -> None:
        def apply(orm, now):
            orm.state = JobState.DONE
            orm.finished_at = now
            orm.lease_owner = None
            orm.lease_expires_at = None

        self._settle(job_id, worker_id, apply)

    def retry_later(self, job_id: str, worker_id: str, delay_seconds: float, error: str) -> None:
        def apply(orm, now):
            orm.state = JobState.QUEUED
            orm.available_at = now + timedelta(seconds=delay_seconds)
            orm.last_error = error
            orm.lease_owner = None
            orm.lease_expires_at = None

        self._settle(job_id, worker_id, apply)

    def dead_letter(self, job_id: str, worker_id: str, error: str) -> None:
        def apply(orm, now):
            orm.state = JobState.DEAD
            orm.finished_at = now
            orm.last_error = error
            orm.lease_owner = None
            orm.lease_expires_at = None

        self._settle(job_id, worker_id, apply)
