"""
Error taxonomy for volume provisioning.

Every failure the command can report derives from EBSAutoscaleError so the
CLI can log the full detail and print a single line. Provider-level failures
(raw EC2 API errors) are ProviderError in providers.base and are wrapped by
the errors below once they reach the provisioning flow.
"""

from enum import Enum


class EBSAutoscaleError(Exception):
    """Base exception for provisioning failures."""

    def __init__(self, message: str, details: dict | None = None):
        self.message = message
        self.details = details or {}
        super().__init__(message)


class UsageError(EBSAutoscaleError):
    """Bad or missing command-line arguments. Raised before any cloud call."""

    def __init__(self, message: str, usage: str = ""):
        self.usage = usage
        super().__init__(message)


class ConfigurationError(EBSAutoscaleError):
    """Configuration file could not be parsed or holds invalid values."""
    pass


class MetadataError(EBSAutoscaleError):
    """Instance metadata service could not be reached or returned garbage."""
    pass


class LimitKind(Enum):
    TOTAL_SIZE = "total-size"
    CREATED_COUNT = "created-count"
    ATTACHED_COUNT = "attached-count"


class LimitExceeded(EBSAutoscaleError):
    """A per-instance ceiling is already met or exceeded. Nothing was created."""

    def __init__(self, kind: LimitKind, current: int, limit: int):
        self.kind = kind
        self.current = current
        self.limit = limit
        descriptions = {
            LimitKind.TOTAL_SIZE: "total size of created volumes",
            LimitKind.CREATED_COUNT: "number of created volumes",
            LimitKind.ATTACHED_COUNT: "number of attached volumes",
        }
        super().__init__(
            f"{kind.value} limit reached: {descriptions[kind]} is {current}, "
            f"limit is {limit}",
            details={"kind": kind.value, "current": current, "limit": limit},
        )


class DeviceNamespaceExhausted(EBSAutoscaleError):
    """Every candidate device name is occupied. Nothing was created."""

    def __init__(self, candidates: list[str]):
        self.candidates = candidates
        super().__init__(
            f"no free device name: all {len(candidates)} candidates "
            f"({candidates[0]}..{candidates[-1]}) are in use",
            details={"candidates": candidates},
        )


class ProvisioningError(EBSAutoscaleError):
    """
    Volume creation failed.

    details carries the raw provider error payload (code, message, response)
    so it can be inspected when the command ran unattended.
    """
    pass


class AttachmentError(EBSAutoscaleError):
    """
    Attaching the freshly created volume failed.

    A compensating delete of the volume was attempted before this was raised;
    compensated records whether that delete was accepted.
    """

    def __init__(self, message: str, volume_id: str, cause: Exception | None = None,
                 compensated: bool = False, details: dict | None = None):
        self.volume_id = volume_id
        self.cause = cause
        self.compensated = compensated
        details = dict(details or {})
        details.update({"volume_id": volume_id, "compensated": compensated})
        super().__init__(message, details)


class PolicyError(EBSAutoscaleError):
    """Delete-on-termination could not be set. The attachment still stands."""
    pass


class WaitTimeout(EBSAutoscaleError):
    """A blocking wait did not see its condition before the deadline."""

    def __init__(self, description: str, timeout: float, details: dict | None = None):
        self.description = description
        self.timeout = timeout
        super().__init__(f"timed out after {timeout:g}s waiting for {description}", details)


class WaitCancelled(EBSAutoscaleError):
    """A blocking wait was cancelled from outside (signal or caller)."""

    def __init__(self, description: str, details: dict | None = None):
        self.description = description
        super().__init__(f"cancelled while waiting for {description}", details)
