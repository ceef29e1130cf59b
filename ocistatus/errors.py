"""
Error taxonomy for ocistatus.

Configuration problems are fatal at construction time. Write-path failures
carry the stage that failed. Verification and decode failures are raised
internally and handled inside reads; callers never see them from
``Session.observed_state``.
"""

from __future__ import annotations

from enum import Enum
from typing import Optional


class StatusManagerError(Exception):
    """Base exception for all ocistatus failures."""
    pass


class ConfigurationError(StatusManagerError):
    """Invalid or incomplete Manager configuration."""
    pass


class ReadOnlyError(StatusManagerError):
    """A write was attempted through a read-only Manager."""

    def __init__(self, message: str = "status manager is read-only"):
        super().__init__(message)


class InvalidStatusError(StatusManagerError):
    """The status passed to a write is unusable."""
    pass


class PayloadTooLargeError(StatusManagerError):
    """Serialized status exceeds what the transparency log accepts."""

    def __init__(self, size: int, limit: int):
        self.size = size
        self.limit = limit
        super().__init__(
            f"status size {size / (1024 * 1024):.2f} MB ({size} bytes) exceeds limit of "
            f"{limit / (1024 * 1024):.2f} MB ({limit} bytes)"
        )


class PublishStage(Enum):
    """Ordered stages of the write path."""
    ENCODE = "encode"
    STATEMENT = "statement"
    SIGN = "sign"
    LOG = "log"
    PUBLISH = "publish"


class PublishError(StatusManagerError):
    """A write failed at a specific stage. Nothing is retried."""

    def __init__(self, stage: PublishStage, cause: BaseException):
        self.stage = stage
        self.cause = cause
        super().__init__(f"{_STAGE_LABELS[stage]}: {cause}")


_STAGE_LABELS = {
    PublishStage.ENCODE: "marshaling status",
    PublishStage.STATEMENT: "creating statement",
    PublishStage.SIGN: "signing statement",
    PublishStage.LOG: "recording in transparency log",
    PublishStage.PUBLISH: "writing attestation",
}


class SigningError(StatusManagerError):
    """The certificate authority refused to certify the signing key."""
    pass


class TransparencyLogError(StatusManagerError):
    """The transparency log did not accept the signed statement."""
    pass


class TransportError(StatusManagerError):
    """Network failure talking to the registry, the trust source or the token source."""

    def __init__(self, message: str, status_code: Optional[int] = None):
        self.status_code = status_code
        super().__init__(message)


class NotFoundError(TransportError):
    """The requested remote object does not exist (HTTP 404)."""

    def __init__(self, message: str):
        super().__init__(message, status_code=404)


class VerificationError(StatusManagerError):
    """A bundle failed chain-of-trust, log, identity or claim checks."""
    pass


class DecodeError(StatusManagerError):
    """A verified statement could not be decoded into a Status."""
    pass
