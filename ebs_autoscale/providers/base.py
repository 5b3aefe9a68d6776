"""
Abstract interface for the cloud volume/instance API.

The provisioning flow only talks to StorageProvider, so tests can swap in a
fake and other clouds could be added without touching the core sequence.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field


@dataclass
class VolumeInfo:
    """Standardized volume information across providers."""
    volume_id: str
    size_gb: int
    state: str  # 'creating', 'available', 'in-use', 'deleting', 'deleted', 'error'
    availability_zone: str
    volume_type: str | None = None
    encrypted: bool = False
    attached_instance: str | None = None
    attached_device: str | None = None
    tags: dict[str, str] = field(default_factory=dict)

    @property
    def is_attached(self) -> bool:
        return self.attached_instance is not None


class StorageProvider(ABC):
    """
    Abstract interface for the block storage operations provisioning needs.

    Implementations:
    - AWS: EBS volumes (providers.aws.AWSProvider)

    Example usage:
        provider = get_storage_provider(region='us-east-1')
        volume = provider.create_volume(size_gb=100, availability_zone='us-east-1a')
        provider.attach_volume(volume.volume_id, 'i-12345', '/dev/xvdba')
    """

    @abstractmethod
    def name(self) -> str:
        """Short provider name used in error messages."""
        pass

    @abstractmethod
    def list_volumes(
        self,
        tags: dict[str, str] | None = None,
        attached_to: str | None = None,
    ) -> list[VolumeInfo]:
        """
        List volumes matching filters. Reads live provider state.

        Args:
            tags: Filter by tag key-value pairs
            attached_to: Only volumes attached to this instance

        Returns:
            List of matching VolumeInfo objects

        Raises:
            ProviderError: If the describe call fails
        """
        pass

    @abstractmethod
    def create_volume(
        self,
        size_gb: int,
        availability_zone: str,
        volume_type: str = "gp3",
        tags: dict[str, str] | None = None,
        iops: int | None = None,
        throughput: int | None = None,
        encrypted: bool = False,
    ) -> VolumeInfo:
        """
        Create a new block storage volume.

        Args:
            size_gb: Volume size in gigabytes
            availability_zone: Zone for volume placement
            volume_type: Storage class (gp3, io2, ...)
            tags: Key-value tags applied at creation
            iops: Provisioned IOPS, only sent when given
            throughput: Provisioned throughput MB/s, only sent when given
            encrypted: Request an encrypted volume

        Returns:
            VolumeInfo with created volume details (usually state 'creating')

        Raises:
            ProviderError: If volume creation fails
        """
        pass

    @abstractmethod
    def get_volume(self, volume_id: str) -> VolumeInfo | None:
        """
        Get volume details by ID.

        Returns:
            VolumeInfo if found, None if the provider does not (yet) know it
        """
        pass

    @abstractmethod
    def attach_volume(self, volume_id: str, instance_id: str, device: str) -> None:
        """
        Attach volume to a compute instance at the given device name.

        Raises:
            DeviceInUseError: If the device name is already taken on the instance
            ProviderError: For any other attach failure
        """
        pass

    @abstractmethod
    def delete_volume(self, volume_id: str) -> bool:
        """
        Delete a volume. Best effort.

        Returns:
            True if the provider accepted the delete, False otherwise
        """
        pass

    @abstractmethod
    def set_delete_on_termination(self, instance_id: str, device: str, volume_id: str) -> None:
        """
        Mark the volume attached at device for deletion when the instance terminates.

        Raises:
            ProviderError: If the block device mapping could not be modified
        """
        pass


class ProviderError(Exception):
    """Base exception for provider errors."""

    def __init__(self, message: str, provider: str, operation: str, details: dict | None = None):
        self.provider = provider
        self.operation = operation
        self.details = details or {}
        super().__init__(f"[{provider}] {operation}: {message}")

    @property
    def code(self) -> str | None:
        return self.details.get("code")


class VolumeNotFoundError(ProviderError):
    """Volume does not exist."""
    pass


class DeviceInUseError(ProviderError):
    """Requested device name is already used on the instance."""
    pass


class ThrottledError(ProviderError):
    """Provider kept rate limiting after all retries."""
    pass
