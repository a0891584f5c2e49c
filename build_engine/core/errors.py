# build_engine/core/errors.py

# -----------------------------
# Base Errors
# -----------------------------

class BuildEngineError(Exception):
    """Base class for all build engine errors."""
    pass


# -----------------------------
# Validation / Domain Errors
# -----------------------------

class BuildValidationError(BuildEngineError):
    """Malformed job, unsafe archive or unsupported project shape. Never retried."""
    pass


class BuildInvalidStateError(BuildEngineError):
    """Illegal status transition attempted."""
    pass


# -----------------------------
# Infrastructure Errors
# -----------------------------

class TransientInfraError(BuildEngineError):
    """Network timeout, throttling or subprocess timeout. Retryable."""
    pass


class PartialUploadError(BuildEngineError):
    """Too many artifact files failed to upload."""

    def __init__(self, message: str, failed: int = 0, total: int = 0):
        super().__init__(message)
        self.failed = failed
        self.total = total


class VersionPointerError(BuildEngineError):
    """The version pointer or its physical mirror could not be updated."""
    pass


class CommandFailedError(BuildEngineError):
    """A project command exited non-zero."""

    def __init__(self, message: str, returncode: int = 1):
        super().__init__(message)
        self.returncode = returncode


# -----------------------------
# Distribution Errors
# -----------------------------

class QuotaExceededError(BuildEngineError):
    """Individual distribution quota exhausted. Triggers a downgrade to shared."""
    pass


class DistributionNotFound(BuildEngineError):
    """The CDN provider does not know the requested distribution."""
    pass


class ObjectNotFound(BuildEngineError):
    """Object store key does not exist."""
    pass


# -----------------------------
# Queue / Lease Errors
# -----------------------------

class JobLeaseError(BuildEngineError):
    """Lease missing, expired, or owned by another worker."""
    pass


# -----------------------------
# Persistence Errors
# -----------------------------

class PersistenceError(BuildEngineError):
    pass


class RecordAlreadyExists(PersistenceError):
    pass


class RecordNotFound(PersistenceError):
    pass


class ConcurrencyError(PersistenceError):
    pass
