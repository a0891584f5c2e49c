"""Core domain models for builds, deployments and distributions."""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, Optional, Tuple
from uuid import uuid4


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def ensure_aware(value: Optional[datetime]) -> Optional[datetime]:
    """Treat naive timestamps (e.g. read back from SQLite) as UTC."""
    if value is not None and value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


# ============================================
# ENUMS
# ============================================

class BuildStatus(Enum):
    """Build lifecycle status."""
    PENDING = "pending"
    BUILDING = "building"
    SUCCESS = "success"
    FAILED = "failed"


class DeploymentStatus(Enum):
    """Deployment lifecycle status."""
    PENDING = "pending"
    ACTIVE = "active"
    FAILED = "failed"


class Strategy(Enum):
    """CDN distribution assignment for a tenant."""
    INDIVIDUAL = "individual"
    SHARED = "shared"


class BuildPhase(Enum):
    """Pipeline stage a build result refers to."""
    VALIDATION = "validation"
    DOWNLOAD = "download"
    EXTRACTION = "extraction"
    INSTALL = "install"
    BUILD = "build"
    UPLOAD = "upload"
    PUBLISH = "publish"
    COMPLETE = "complete"
    UNKNOWN = "unknown"


class ErrorKind(Enum):
    """Failure classification carried by a build result."""
    VALIDATION = "validation"
    TRANSIENT = "transient"
    COMMAND_FAILED = "command_failed"
    PARTIAL_UPLOAD = "partial_upload"
    VERSION_POINTER = "version_pointer"
    INTERNAL = "internal"


class JobState(Enum):
    """Build job queue state."""
    QUEUED = "queued"
    CLAIMED = "claimed"
    DONE = "done"
    DEAD = "dead"


# ============================================
# BUILD INPUT
# ============================================

@dataclass
class BuildConfig:
    """Caller-supplied build settings."""
    framework: str = "nextjs"
    build_command: Optional[str] = None
    output_dir: Optional[str] = None
    runtime_version: Optional[str] = None
    environment_variables: Dict[str, str] = field(default_factory=dict)

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]]) -> "BuildConfig":
        data = data or {}
        env = data.get("environmentVariables", data.get("environment_variables")) or {}
        return cls(
            framework=data.get("framework") or "nextjs",
            build_command=data.get("buildCommand", data.get("build_command")),
            output_dir=data.get("outputDir", data.get("output_dir")),
            runtime_version=data.get("runtimeVersion", data.get("runtime_version")),
            environment_variables={str(k): str(v) for k, v in env.items()},
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "framework": self.framework,
            "buildCommand": self.build_command,
            "outputDir": self.output_dir,
            "runtimeVersion": self.runtime_version,
            "environmentVariables": dict(self.environment_variables),
        }


@dataclass
class BuildRequest:
    """Decoded queue message for one build."""
    build_id: str
    tenant_id: str
    source_key: str
    user_id: Optional[str] = None
    build_config: BuildConfig = field(default_factory=BuildConfig)

    @classmethod
    def from_payload(cls, payload: Dict[str, Any]) -> "BuildRequest":
        return cls(
            build_id=payload.get("buildId") or "",
            tenant_id=payload.get("tenantId") or "",
            source_key=payload.get("storageKey") or payload.get("sourceKey") or "",
            user_id=payload.get("userId"),
            build_config=BuildConfig.from_dict(payload.get("buildConfig")),
        )

    def to_payload(self) -> Dict[str, Any]:
        return {
            "buildId": self.build_id,
            "tenantId": self.tenant_id,
            "userId": self.user_id,
            "storageKey": self.source_key,
            "buildConfig": self.build_config.to_dict(),
        }


# ============================================
# RECORDS
# ============================================

@dataclass
class Build:
    """One attempt to turn an uploaded archive into static artifacts."""

    build_id: str
    tenant_id: str
    source_key: str

    status: BuildStatus = BuildStatus.PENDING
    framework: str = "nextjs"
    output_dir: Optional[str] = None

    created_at: datetime = field(default_factory=utcnow)
    started_at: Optional[datetime] = None
    finished_at: Optional[datetime] = None

    error_message: Optional[str] = None
    error_phase: Optional[BuildPhase] = None
    build_path: Optional[str] = None

    @property
    def version(self) -> str:
        """Artifacts are published under the build id."""
        return self.build_id

    def is_terminal(self) -> bool:
        return self.status in (BuildStatus.SUCCESS, BuildStatus.FAILED)


@dataclass
class Deployment:
    """Publishing record of one build as the tenant's live version."""

    deployment_id: str
    tenant_id: str
    build_id: str
    version: str
    status: DeploymentStatus = DeploymentStatus.PENDING
    invalidation_id: Optional[str] = None
    deployment_url: Optional[str] = None
    notes: Optional[str] = None
    created_at: datetime = field(default_factory=utcnow)
    activated_at: Optional[datetime] = None

    @classmethod
    def for_build(cls, build: Build) -> "Deployment":
        return cls(
            deployment_id=str(uuid4()),
            tenant_id=build.tenant_id,
            build_id=build.build_id,
            version=build.version,
            notes=f"Automated deployment for build {build.build_id}",
        )


@dataclass
class TenantDistribution:
    """CDN distribution a tenant is served from."""
    tenant_id: str
    strategy: Strategy
    distribution_id: Optional[str]
    domain: Optional[str]
    status: str = "Deployed"
    created_at: datetime = field(default_factory=utcnow)


@dataclass
class VersionPointer:
    """Logical tenant -> live version record."""
    tenant_id: str
    version: str
    timestamp: datetime = field(default_factory=utcnow)
    path: str = ""

    def to_dict(self) -> Dict[str, Any]:
        return {
            "tenantId": self.tenant_id,
            "version": self.version,
            "timestamp": self.timestamp.isoformat(),
            "path": self.path,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "VersionPointer":
        return cls(
            tenant_id=data["tenantId"],
            version=data["version"],
            timestamp=datetime.fromisoformat(data["timestamp"]),
            path=data.get("path", ""),
        )


@dataclass(frozen=True)
class TenantProfile:
    """Tenant attributes that drive the distribution strategy."""
    tenant_id: str
    subscription_tier: str = "standard"
    plan_type: str = "standard"
    traffic_tier: str = "normal"
    monthly_page_views: int = 0
    compliance_requirements: Tuple[str, ...] = ()
    deployment_strategy: Optional[Strategy] = None
    custom_domain: Optional[str] = None

    @classmethod
    def fallback(
        cls,
        tenant_id: str,
        default_tier: str = "standard",
        enterprise_tenant_ids: Tuple[str, ...] = (),
    ) -> "TenantProfile":
        """Profile used when the tenant service has no record."""
        tier = "enterprise" if tenant_id in enterprise_tenant_ids else default_tier
        return cls(tenant_id=tenant_id, subscription_tier=tier, plan_type=tier)


# ============================================
# RESULTS
# ============================================

@dataclass
class BuildResult:
    """Outcome of one pipeline run, returned instead of raised."""

    success: bool
    phase: BuildPhase
    deployment_url: Optional[str] = None
    build_path: Optional[str] = None
    error: Optional[str] = None
    error_kind: Optional[ErrorKind] = None
    retryable: bool = False

    @classmethod
    def ok(cls, deployment_url: Optional[str], build_path: str) -> "BuildResult":
        return cls(
            success=True,
            phase=BuildPhase.COMPLETE,
            deployment_url=deployment_url,
            build_path=build_path,
        )

    @classmethod
    def failed(
        cls,
        phase: BuildPhase,
        error: str,
        error_kind: ErrorKind,
        retryable: bool = False,
    ) -> "BuildResult":
        return cls(
            success=False,
            phase=phase,
            error=error,
            error_kind=error_kind,
            retryable=retryable,
        )


# ============================================
# QUEUE
# ============================================

@dataclass
class BuildJob:
    """Durable queue entry carrying one build request."""

    job_id: str
    build_id: str
    tenant_id: str
    payload: Dict[str, Any]

    state: JobState = JobState.QUEUED
    attempts: int = 0
    max_attempts: int = 3

    created_at: datetime = field(default_factory=utcnow)
    available_at: datetime = field(default_factory=utcnow)
    finished_at: Optional[datetime] = None

    lease_owner: Optional[str] = None
    lease_expires_at: Optional[datetime] = None
    last_error: Optional[str] = None

    # Optimistic concurrency
    version: int = 0

    @classmethod
    def for_request(cls, request: BuildRequest, max_attempts: int = 3) -> "BuildJob":
        return cls(
            job_id=str(uuid4()),
            build_id=request.build_id,
            tenant_id=request.tenant_id,
            payload=request.to_payload(),
            max_attempts=max_attempts,
        )

    def is_final_attempt(self) -> bool:
        return self.attempts >= self.max_attempts
