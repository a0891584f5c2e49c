from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field

from build_engine.core.models import Deployment, Strategy
from build_engine.distribution.service import MigrationResult


class RollbackRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    build_id: str = Field(alias="buildId")


class MigrateRequest(BaseModel):
    strategy: Strategy


class DeploymentResponse(BaseModel):
    deployment_id: str
    tenant_id: str
    build_id: str
    version: str
    status: str
    invalidation_id: Optional[str] = None
    deployment_url: Optional[str] = None
    notes: Optional[str] = None
    created_at: datetime
    activated_at: Optional[datetime] = None

    @classmethod
    def from_deployment(cls, deployment: Deployment) -> "DeploymentResponse":
        return cls(
            deployment_id=deployment.deployment_id,
            tenant_id=deployment.tenant_id,
            build_id=deployment.build_id,
            version=deployment.version,
            status=deployment.status.value,
            invalidation_id=deployment.invalidation_id,
            deployment_url=deployment.deployment_url,
            notes=deployment.notes,
            created_at=deployment.created_at,
            activated_at=deployment.activated_at,
        )


class MigrationResponse(BaseModel):
    tenant_id: str
    from_strategy: str
    to_strategy: str
    distribution_id: Optional[str] = None
    domain: Optional[str] = None
    invalidations: List[str] = []
    dns_change_id: Optional[str] = None
    warnings: List[str] = []

    @classmethod
    def from_result(cls, result: MigrationResult) -> "MigrationResponse":
        return cls(
            tenant_id=result.tenant_id,
            from_strategy=result.from_strategy.value,
            to_strategy=result.to_strategy.value,
            distribution_id=result.distribution.distribution_id,
            domain=result.distribution.domain,
            invalidations=result.invalidations,
            dns_change_id=result.dns_change_id,
            warnings=result.warnings,
        )
