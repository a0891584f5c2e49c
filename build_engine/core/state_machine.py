#build_engine\core\state_machine.py

from datetime import datetime
from typing import Optional

from build_engine.core.errors import BuildInvalidStateError
from build_engine.core.models import (
    Build,
    BuildPhase,
    BuildStatus,
    Deployment,
    DeploymentStatus,
    utcnow,
)


ALLOWED_BUILD_TRANSITIONS = {
    BuildStatus.PENDING: {
        BuildStatus.BUILDING,
        BuildStatus.FAILED,
    },
    BuildStatus.BUILDING: {
        BuildStatus.SUCCESS,
        BuildStatus.FAILED,
    },
}

ALLOWED_DEPLOYMENT_TRANSITIONS = {
    DeploymentStatus.PENDING: {
        DeploymentStatus.ACTIVE,
        DeploymentStatus.FAILED,
    },
}


class BuildStateMachine:
    @staticmethod
    def transition(
        build: Build,
        new_status: BuildStatus,
        *,
        now: Optional[datetime] = None,
        error_message: Optional[str] = None,
        error_phase: Optional[BuildPhase] = None,
    ) -> Build:
        now = now or utcnow()

        current = build.status

        # Re-delivered jobs mark an in-flight build as building again.
        if current == new_status and not build.is_terminal():
            return build

        allowed = ALLOWED_BUILD_TRANSITIONS.get(current, set())
        if new_status not in allowed:
            raise BuildInvalidStateError(
                f"Build {build.build_id}: cannot transition from {current.value} to {new_status.value}"
            )

        if new_status == BuildStatus.BUILDING:
            build.started_at = now

        elif new_status in (BuildStatus.SUCCESS, BuildStatus.FAILED):
            build.finished_at = now

        if new_status == BuildStatus.FAILED:
            build.error_message = error_message
            build.error_phase = error_phase

        build.status = new_status
        return build


class DeploymentStateMachine:
    @staticmethod
    def transition(
        deployment: Deployment,
        new_status: DeploymentStatus,
        *,
        now: Optional[datetime] = None,
    ) -> Deployment:
        now = now or utcnow()

        current = deployment.status

        if current == new_status:
            return deployment

        allowed = ALLOWED_DEPLOYMENT_TRANSITIONS.get(current, set())
        if new_status not in allowed:
            raise BuildInvalidStateError(
                f"Deployment {deployment.deployment_id}: cannot transition "
                f"from {current.value} to {new_status.value}"
            )

        if new_status == DeploymentStatus.ACTIVE:
            deployment.activated_at = now

        deployment.status = new_status
        return deployment
