#build_engine\core\validation.py
import re
from typing import Any, Dict

from build_engine.core.models import BuildRequest
from build_engine.core.errors import BuildValidationError


ENV_KEY_PATTERN = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*$")


def validate_build_request(request: BuildRequest) -> None:
    # -------------------------
    # Identity
    # -------------------------
    if not request.build_id:
        raise BuildValidationError("Missing required field: buildId")

    if not request.tenant_id:
        raise BuildValidationError("Missing required field: tenantId")

    if not request.source_key:
        raise BuildValidationError("Missing required field: storageKey")

    # -------------------------
    # Build config
    # -------------------------
    config = request.build_config

    for key, value in config.environment_variables.items():
        if not ENV_KEY_PATTERN.match(key):
            raise BuildValidationError(f"Invalid environment variable name: {key!r}")
        if "\n" in value or "\r" in value:
            raise BuildValidationError(
                f"Environment variable {key} must not contain line breaks"
            )

    if config.output_dir and (
        config.output_dir.startswith("/") or ".." in config.output_dir.split("/")
    ):
        raise BuildValidationError("outputDir must be a relative path inside the project")


def parse_build_payload(payload: Dict[str, Any]) -> BuildRequest:
    """Decode and validate a queue message."""
    if not isinstance(payload, dict):
        raise BuildValidationError("Invalid job: missing job data")

    request = BuildRequest.from_payload(payload)
    validate_build_request(request)
    return request
