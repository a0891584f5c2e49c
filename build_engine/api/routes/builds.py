import logging

from fastapi import APIRouter, Depends, HTTPException

from build_engine.api.container import get_submission_service
from build_engine.api.schemas.builds import (
    BuildResponse,
    BuildSubmitRequest,
    BuildSubmitResponse,
)
from build_engine.core.errors import BuildValidationError, RecordAlreadyExists

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/builds", tags=["builds"])


@router.post("", response_model=BuildSubmitResponse, status_code=201)
def submit_build(
    request: BuildSubmitRequest,
    service=Depends(get_submission_service),
):
    try:
        build, job = service.submit(request.to_payload())
    except BuildValidationError as e:
        raise HTTPException(status_code=400, detail=str(e))
    except RecordAlreadyExists as e:
        raise HTTPException(status_code=409, detail=str(e))

    return BuildSubmitResponse(build=BuildResponse.from_build(build), job_id=job.job_id)


@router.get("/{build_id}", response_model=BuildResponse)
def get_build(
    build_id: str,
    service=Depends(get_submission_service),
):
    build = service.get_build(build_id)

    if not build:
        raise HTTPException(status_code=404, detail="Build not found")

    return BuildResponse.from_build(build)
