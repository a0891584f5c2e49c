"""initial schema

Revision ID: 0001
Revises:
Create Date: 2026-10-18 09:00:00

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision: str = "0001"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None

# Enum columns store member names
build_status = sa.Enum("PENDING", "BUILDING", "SUCCESS", "FAILED", name="build_status")
build_phase = sa.Enum(
    "VALIDATION", "DOWNLOAD", "EXTRACTION", "INSTALL", "BUILD",
    "UPLOAD", "PUBLISH", "COMPLETE", "UNKNOWN",
    name="build_phase",
)
deployment_status = sa.Enum("PENDING", "ACTIVE", "FAILED", name="deployment_status")
distribution_strategy = sa.Enum("INDIVIDUAL", "SHARED", name="distribution_strategy")
preferred_strategy = sa.Enum("INDIVIDUAL", "SHARED", name="preferred_strategy")
job_state = sa.Enum("QUEUED", "CLAIMED", "DONE", "DEAD", name="job_state")


def upgrade() -> None:
    op.create_table(
        "builds",
        sa.Column("build_id", sa.String(128), primary_key=True),
        sa.Column("tenant_id", sa.String(128), nullable=False),
        sa.Column("source_key", sa.String(1024), nullable=False),
        sa.Column("version", sa.String(128), nullable=False),
        sa.Column("status", build_status, nullable=False),
        sa.Column("framework", sa.String(50), nullable=False),
        sa.Column("output_dir", sa.String(255), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("started_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("finished_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("error_message", sa.Text, nullable=True),
        sa.Column("error_phase", build_phase, nullable=True),
        sa.Column("build_path", sa.String(1024), nullable=True),
    )
    op.create_index("ix_builds_status", "builds", ["status"])
    op.create_index("ix_builds_tenant_created", "builds", ["tenant_id", "created_at"])

    op.create_table(
        "deployments",
        sa.Column("deployment_id", sa.String(64), primary_key=True),
        sa.Column("tenant_id", sa.String(128), nullable=False),
        sa.Column("build_id", sa.String(128), nullable=False),
        sa.Column("version", sa.String(128), nullable=False),
        sa.Column("status", deployment_status, nullable=False),
        sa.Column("invalidation_id", sa.String(128), nullable=True),
        sa.Column("deployment_url", sa.String(1024), nullable=True),
        sa.Column("notes", sa.Text, nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("activated_at", sa.DateTime(timezone=True), nullable=True),
    )
    op.create_index("ix_deployments_tenant_id", "deployments", ["tenant_id"])
    op.create_index("ix_deployments_build_id", "deployments", ["build_id"])
    op.create_index("ix_deployments_tenant_status", "deployments", ["tenant_id", "status"])

    op.create_table(
        "tenant_distributions",
        sa.Column("tenant_id", sa.String(128), primary_key=True),
        sa.Column("strategy", distribution_strategy, nullable=False),
        sa.Column("distribution_id", sa.String(64), nullable=True),
        sa.Column("domain", sa.String(255), nullable=True),
        sa.Column("status", sa.String(50), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
    )
    op.create_index("ix_tenant_distributions_strategy", "tenant_distributions", ["strategy"])

    op.create_table(
        "tenant_profiles",
        sa.Column("tenant_id", sa.String(128), primary_key=True),
        sa.Column("subscription_tier", sa.String(50), nullable=False),
        sa.Column("plan_type", sa.String(50), nullable=False),
        sa.Column("traffic_tier", sa.String(50), nullable=False),
        sa.Column("monthly_page_views", sa.Integer, nullable=False),
        sa.Column("compliance_requirements", sa.JSON, nullable=False),
        sa.Column("deployment_strategy", preferred_strategy, nullable=True),
        sa.Column("custom_domain", sa.String(255), nullable=True),
    )

    op.create_table(
        "build_jobs",
        sa.Column("job_id", sa.String(64), primary_key=True),
        sa.Column("build_id", sa.String(128), nullable=False),
        sa.Column("tenant_id", sa.String(128), nullable=False),
        sa.Column("payload", sa.JSON, nullable=False),
        sa.Column("state", job_state, nullable=False),
        sa.Column("attempts", sa.Integer, nullable=False),
        sa.Column("max_attempts", sa.Integer, nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("available_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("finished_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("lease_owner", sa.String(255), nullable=True),
        sa.Column("lease_expires_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("last_error", sa.Text, nullable=True),
        sa.Column("version", sa.Integer, nullable=False),
    )
    op.create_index("ix_build_jobs_build_id", "build_jobs", ["build_id"])
    op.create_index("ix_build_jobs_state_available", "build_jobs", ["state", "available_at"])
    op.create_index("ix_build_jobs_state_lease", "build_jobs", ["state", "lease_expires_at"])


def downgrade() -> None:
    op.drop_table("build_jobs")
    op.drop_table("tenant_profiles")
    op.drop_table("tenant_distributions")
    op.drop_table("deployments")
    op.drop_table("builds")

    bind = op.get_bind()
    for enum in (job_state, preferred_strategy, distribution_strategy,
                 deployment_status, build_phase, build_status):
        enum.drop(bind, checkfirst=True)
