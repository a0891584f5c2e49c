#build_engine\api\container.py
from fastapi import Request

from build_engine.container import Container
from build_engine.distribution.service import DeploymentService
from build_engine.pipeline.submission import BuildSubmissionService


def get_container(request: Request) -> Container:
    return request.app.state.container


def get_submission_service(request: Request) -> BuildSubmissionService:
    return get_container(request).submissions


def get_deployment_service(request: Request) -> DeploymentService:
    return get_container(request).deployer
