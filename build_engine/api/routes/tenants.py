import logging
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException

from build_engine.api.container import get_deployment_service, get_submission_service
from build_engine.api.schemas.builds import BuildListResponse, BuildResponse
from build_engine.api.schemas.tenants import (
    DeploymentResponse,
    MigrateRequest,
    MigrationResponse,
    RollbackRequest,
)
from build_engine.core.errors import (
    BuildValidationError,
    DistributionNotFound,
    QuotaExceededError,
    TransientInfraError,
    VersionPointerError,
)
from build_engine.core.models import BuildStatus

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/tenants", tags=["tenants"])


@router.get("/{tenant_id}/deployment")
def get_deployment_status(
    tenant_id: str,
    service=Depends(get_deployment_service),
):
    return service.get_deployment_status(tenant_id)


@router.get("/{tenant_id}/strategy")
def get_strategy(
    tenant_id: str,
    service=Depends(get_deployment_service),
):
    _, decision = service.determine_strategy(tenant_id)
    return decision.to_dict()


@router.get("/{tenant_id}/builds", response_model=BuildListResponse)
def list_builds(
    tenant_id: str,
    status: Optional[BuildStatus] = None,
    limit: int = 50,
    service=Depends(get_submission_service),
):
    builds = service.list_builds(tenant_id, status=status, limit=limit)
    return BuildListResponse(builds=[BuildResponse.from_build(b) for b in builds])


@router.post("/{tenant_id}/rollback", response_model=DeploymentResponse)
def rollback(
    tenant_id: str,
    request: RollbackRequest,
    service=Depends(get_deployment_service),
):
    try:
        deployment = service.rollback(tenant_id, request.build_id)
    except BuildValidationError as e:
        raise HTTPException(status_code=400, detail=str(e))
    except VersionPointerError as e:
        logger.error(f"[api] Rollback of {tenant_id} to {request.build_id} failed: {e}")
        raise HTTPException(status_code=502, detail=str(e))

    return DeploymentResponse.from_deployment(deployment)


@router.post("/{tenant_id}/migrate", response_model=MigrationResponse)
def migrate(
    tenant_id: str,
    request: MigrateRequest,
    service=Depends(get_deployment_service),
):
    try:
        result = service.migrate_tenant(tenant_id, request.strategy)
    except BuildValidationError as e:
        raise HTTPException(status_code=400, detail=str(e))
    except QuotaExceededError as e:
        logger.warning(f"[api] Migration of {tenant_id} hit the distribution quota: {e}")
        raise HTTPException(status_code=409, detail=f"Distribution quota exceeded: {e}")
    except (DistributionNotFound, TransientInfraError) as e:
        logger.error(f"[api] Migration of {tenant_id} failed at the CDN: {e}")
        raise HTTPException(status_code=502, detail=str(e))

    return MigrationResponse.from_result(result)
