#build_engine\infrastructure\postgres\models.py
"""SQLAlchemy ORM models for database tables."""

from sqlalchemy import (
    Column, String, Integer, DateTime, JSON, Enum as SQLEnum, Index, Text
)

from build_engine.core.models import (
    BuildPhase,
    BuildStatus,
    DeploymentStatus,
    JobState,
    Strategy,
    utcnow,
)
from build_engine.infrastructure.postgres.database import Base


class BuildORM(Base):
    """
    Builds table.

    Indexes:
    - Composite index on (tenant_id, created_at) for tenant history
    """

    __tablename__ = "builds"

    build_id = Column(String(128), primary_key=True)
    tenant_id = Column(String(128), nullable=False)
    source_key = Column(String(1024), nullable=False)
    version = Column(String(128), nullable=False)

    status = Column(
        SQLEnum(BuildStatus, name="build_status"),
        nullable=False,
        default=BuildStatus.PENDING,
        index=True
    )
    framework = Column(String(50), nullable=False, default="nextjs")
    output_dir = Column(String(255), nullable=True)

    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)
    started_at = Column(DateTime(timezone=True), nullable=True)
    finished_at = Column(DateTime(timezone=True), nullable=True)

    error_message = Column(Text, nullable=True)
    error_phase = Column(SQLEnum(BuildPhase, name="build_phase"), nullable=True)
    build_path = Column(String(1024), nullable=True)

    __table_args__ = (
        Index("ix_builds_tenant_created", "tenant_id", "created_at"),
    )

    def __repr__(self) -> str:
        return f"<BuildORM(id={self.build_id}, tenant={self.tenant_id}, status={self.status})>"


class DeploymentORM(Base):
    """Deployments table - one row per publish (including rollbacks)."""

    __tablename__ = "deployments"

    deployment_id = Column(String(64), primary_key=True)
    tenant_id = Column(String(128), nullable=False, index=True)
    build_id = Column(String(128), nullable=False, index=True)
    version = Column(String(128), nullable=False)

    status = Column(
        SQLEnum(DeploymentStatus, name="deployment_status"),
        nullable=False,
        default=DeploymentStatus.PENDING,
    )
    invalidation_id = Column(String(128), nullable=True)
    deployment_url = Column(String(1024), nullable=True)
    notes = Column(Text, nullable=True)

    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)
    activated_at = Column(DateTime(timezone=True), nullable=True)

    __table_args__ = (
        Index("ix_deployments_tenant_status", "tenant_id", "status"),
    )


class TenantDistributionORM(Base):
    """Provisioned (individual) distributions, one per tenant."""

    __tablename__ = "tenant_distributions"

    tenant_id = Column(String(128), primary_key=True)
    strategy = Column(SQLEnum(Strategy, name="distribution_strategy"), nullable=False, index=True)
    distribution_id = Column(String(64), nullable=True)
    domain = Column(String(255), nullable=True)
    status = Column(String(50), nullable=False, default="Deployed")
    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)


class TenantProfileORM(Base):
    """Tenant attributes relevant to the distribution strategy."""

    __tablename__ = "tenant_profiles"

    tenant_id = Column(String(128), primary_key=True)
    subscription_tier = Column(String(50), nullable=False, default="standard")
    plan_type = Column(String(50), nullable=False, default="standard")
    traffic_tier = Column(String(50), nullable=False, default="normal")
    monthly_page_views = Column(Integer, nullable=False, default=0)
    compliance_requirements = Column(JSON, nullable=False, default=list)
    deployment_strategy = Column(SQLEnum(Strategy, name="preferred_strategy"), nullable=True)
    custom_domain = Column(String(255), nullable=True)


class BuildJobORM(Base):
    """
    Build job queue.

    Indexes:
    - Composite index on (state, available_at) for claiming queued work
    - Composite index on (state, lease_expires_at) for reclaiming expired leases
    """

    __tablename__ = "build_jobs"

    job_id = Column(String(64), primary_key=True)
    build_id = Column(String(128), nullable=False, index=True)
    tenant_id = Column(String(128), nullable=False)
    payload = Column(JSON, nullable=False)

    state = Column(SQLEnum(JobState, name="job_state"), nullable=False, default=JobState.QUEUED)
    attempts = Column(Integer, nullable=False, default=0)
    max_attempts = Column(Integer, nullable=False, default=3)

    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)
    available_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)
    finished_at = Column(DateTime(timezone=True), nullable=True)

    lease_owner = Column(String(255), nullable=True)
    lease_expires_at = Column(DateTime(timezone=True), nullable=True)
    last_error = Column(Text, nullable=True)

    # Optimistic locking
    version = Column(Integer, nullable=False, default=0)

    __table_args__ = (
        Index("ix_build_jobs_state_available", "state", "available_at"),
        Index("ix_build_jobs_state_lease", "state", "lease_expires_at"),
    )
