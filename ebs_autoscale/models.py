"""
Value types passed through the provisioning flow.

All of them are frozen: a request, its limits and the instance context are
resolved once per invocation and handed down explicitly.
"""

from dataclasses import dataclass, replace
from enum import Enum

from .errors import UsageError

# EBS hard ceiling for gp2/gp3/io1/io2/st1/sc1 volumes
MAX_VOLUME_SIZE_GB = 16384

VOLUME_TYPES = ("standard", "gp2", "gp3", "io1", "io2", "st1", "sc1")
PROVISIONED_IOPS_TYPES = ("io1", "io2")
# Types that accept an explicit IOPS value (mandatory for PROVISIONED_IOPS_TYPES)
IOPS_CAPABLE_TYPES = ("gp3", "io1", "io2")
THROUGHPUT_CAPABLE_TYPES = ("gp3",)


class VolumeState(Enum):
    CREATING = "creating"
    AVAILABLE = "available"
    ATTACHED = "attached"
    DELETE_ON_TERMINATION = "delete-on-termination-enabled"
    DELETED = "deleted"


@dataclass(frozen=True)
class VolumeRequest:
    """What to create: size in GiB, EBS volume type and performance knobs."""
    size_gb: int | None
    volume_type: str = "gp3"
    iops: int | None = None
    throughput: int | None = None
    encrypted: bool = True

    @property
    def requires_iops(self) -> bool:
        return self.volume_type in PROVISIONED_IOPS_TYPES

    def validate(self) -> "VolumeRequest":
        """
        Check the request before any cloud call is made.

        Returns the request itself so callers can chain it.

        Raises:
            UsageError: If size is missing or out of range, the type is
                unknown, or a provisioned-IOPS type has no IOPS value
        """
        if self.size_gb is None:
            raise UsageError("volume size is required")
        if isinstance(self.size_gb, bool) or not isinstance(self.size_gb, int):
            raise UsageError(f"volume size must be an integer, got {self.size_gb!r}")
        if self.size_gb <= 0:
            raise UsageError(f"volume size must be positive, got {self.size_gb}")
        if self.size_gb > MAX_VOLUME_SIZE_GB:
            raise UsageError(
                f"volume size {self.size_gb} GiB exceeds the EBS maximum of "
                f"{MAX_VOLUME_SIZE_GB} GiB"
            )
        if self.volume_type not in VOLUME_TYPES:
            raise UsageError(
                f"unknown volume type '{self.volume_type}' "
                f"(expected one of: {', '.join(VOLUME_TYPES)})"
            )
        if self.requires_iops and not self.iops:
            raise UsageError(f"volume type '{self.volume_type}' requires --iops")
        for name in ("iops", "throughput"):
            value = getattr(self, name)
            if value is None:
                continue
            if isinstance(value, bool) or not isinstance(value, int):
                raise UsageError(f"{name} must be an integer, got {value!r}")
            if value <= 0:
                raise UsageError(f"{name} must be positive, got {value}")
        return self


@dataclass(frozen=True)
class ResourceLimits:
    """Per-instance ceilings, checked against live provider state."""
    max_total_created_size_gb: int = 8000
    max_attached_volumes: int = 16
    max_created_volumes: int = 16

    def validate(self) -> "ResourceLimits":
        for name in ("max_total_created_size_gb", "max_attached_volumes", "max_created_volumes"):
            value = getattr(self, name)
            if isinstance(value, bool) or not isinstance(value, int) or value <= 0:
                raise UsageError(f"{name} must be a positive integer, got {value!r}")
        return self


@dataclass(frozen=True)
class InstanceContext:
    instance_id: str
    availability_zone: str
    region: str


@dataclass(frozen=True)
class VolumeHandle:
    """A volume this invocation created, and how far it got."""
    volume_id: str
    state: VolumeState
    device: str | None = None
    size_gb: int | None = None

    def advance(self, state: VolumeState, **changes) -> "VolumeHandle":
        return replace(self, state=state, **changes)
