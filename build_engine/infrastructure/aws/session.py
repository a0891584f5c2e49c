#build_engine\infrastructure\aws\session.py

"""Shared boto3 client construction and error classification."""

import logging
from typing import Optional

import boto3
from botocore.config import Config
from botocore.exceptions import BotoCoreError, ClientError, EndpointConnectionError

from build_engine.core.errors import TransientInfraError

logger = logging.getLogger(__name__)

# Error codes AWS returns for throttling or temporary unavailability
TRANSIENT_CODES = frozenset({
    "Throttling",
    "ThrottlingException",
    "RequestLimitExceeded",
    "SlowDown",
    "ServiceUnavailable",
    "InternalError",
    "RequestTimeout",
    "RequestTimeoutException",
})


def make_client(
    service: str,
    region: str,
    *,
    connect_timeout: int = 5,
    read_timeout: int = 30,
    max_attempts: int = 3,
    endpoint_url: Optional[str] = None,
):
    """Create a boto3 client with bounded timeouts and standard retries."""
    config = Config(
        region_name=region,
        connect_timeout=connect_timeout,
        read_timeout=read_timeout,
        retries={"max_attempts": max_attempts, "mode": "standard"},
    )
    return boto3.client(service, config=config, endpoint_url=endpoint_url)


def error_code(error: ClientError) -> str:
    return error.response.get("Error", {}).get("Code", "")


def is_transient(error: Exception) -> bool:
    if isinstance(error, EndpointConnectionError):
        return True
    if isinstance(error, ClientError):
        return error_code(error) in TRANSIENT_CODES
    return isinstance(error, BotoCoreError)


def reraise_transient(error: Exception, action: str) -> None:
    """Raise TransientInfraError for retryable AWS failures, otherwise do nothing."""
    if is_transient(error):
        logger.warning(f"[aws] transient failure during {action}: {error}")
        raise TransientInfraError(f"{action} failed: {error}") from error
