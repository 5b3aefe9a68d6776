"""
ebs-autoscale: grow an instance's storage by provisioning and attaching EBS
volumes within per-instance limits.
"""

__version__ = "0.4.0"

from .errors import (
    AttachmentError,
    ConfigurationError,
    DeviceNamespaceExhausted,
    EBSAutoscaleError,
    LimitExceeded,
    LimitKind,
    MetadataError,
    PolicyError,
    ProvisioningError,
    UsageError,
    WaitCancelled,
    WaitTimeout,
)
from .models import InstanceContext, ResourceLimits, VolumeHandle, VolumeRequest, VolumeState

__all__ = [
    "__version__",
    # Errors
    "EBSAutoscaleError",
    "UsageError",
    "ConfigurationError",
    "MetadataError",
    "LimitExceeded",
    "LimitKind",
    "DeviceNamespaceExhausted",
    "ProvisioningError",
    "AttachmentError",
    "PolicyError",
    "WaitTimeout",
    "WaitCancelled",
    # Models
    "VolumeRequest",
    "ResourceLimits",
    "InstanceContext",
    "VolumeHandle",
    "VolumeState",
]
