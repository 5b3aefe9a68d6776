"""
Cloud Provider Factory

Returns the StorageProvider the provisioning flow talks to.

Usage:
    from ebs_autoscale.providers import get_storage_provider

    provider = get_storage_provider(region='us-east-2')
    volume = provider.create_volume(size_gb=100, availability_zone='us-east-2a')

Configuration:
    Set CLOUD_PROVIDER environment variable:
    - 'aws' (default): Amazon Web Services
"""

import logging
import os

from .base import (
    DeviceInUseError,
    ProviderError,
    StorageProvider,
    ThrottledError,
    VolumeInfo,
    VolumeNotFoundError,
)

logger = logging.getLogger(__name__)


def get_storage_provider(provider_name: str | None = None, **kwargs) -> StorageProvider:
    """
    Get a storage provider instance.

    Args:
        provider_name: Override the provider (defaults to CLOUD_PROVIDER env var)
        **kwargs: Provider-specific configuration options (region, ec2_client)

    Returns:
        StorageProvider instance

    Raises:
        ValueError: If provider name is not recognized
    """
    name = (provider_name or os.environ.get("CLOUD_PROVIDER", "aws")).lower()

    logger.debug(f"Initializing cloud provider: {name}")

    if name == "aws":
        from .aws import AWSProvider
        region = kwargs.get("region") or os.environ.get("AWS_REGION", "us-east-1")
        return AWSProvider(region=region, ec2_client=kwargs.get("ec2_client"))

    raise ValueError(f"Unknown cloud provider: {name}. Valid options: aws")


__all__ = [
    "get_storage_provider",
    "StorageProvider",
    "VolumeInfo",
    "ProviderError",
    "VolumeNotFoundError",
    "DeviceInUseError",
    "ThrottledError",
]
