"""
AWS Cloud Provider Implementation

EBS volume and EC2 instance operations on top of a boto3 EC2 client.
"""

import logging
import random
import time
import uuid
from typing import Any, Callable

import boto3
from botocore.exceptions import BotoCoreError, ClientError

from .base import (
    DeviceInUseError,
    ProviderError,
    StorageProvider,
    ThrottledError,
    VolumeInfo,
    VolumeNotFoundError,
)

logger = logging.getLogger(__name__)

THROTTLING_ERROR_CODES = ("RequestLimitExceeded", "Throttling", "TooManyRequestsException")
NOT_FOUND_ERROR_CODES = ("InvalidVolume.NotFound",)


def _error_details(e: ClientError) -> dict[str, Any]:
    """Keep the raw provider payload; it is the only diagnostic on unattended runs."""
    error = e.response.get("Error", {})
    return {
        "code": error.get("Code", ""),
        "message": error.get("Message", str(e)),
        "request_id": e.response.get("ResponseMetadata", {}).get("RequestId"),
        "response": e.response,
    }


def _volume_info_from_aws(vol: dict) -> VolumeInfo:
    tags = {t["Key"]: t["Value"] for t in vol.get("Tags", [])}
    attachments = [a for a in vol.get("Attachments", []) if a.get("State") in ("attaching", "attached", None)]
    attachment = attachments[0] if attachments else None
    return VolumeInfo(
        volume_id=vol["VolumeId"],
        size_gb=vol["Size"],
        state=vol["State"],
        availability_zone=vol["AvailabilityZone"],
        volume_type=vol.get("VolumeType"),
        encrypted=vol.get("Encrypted", False),
        attached_instance=attachment["InstanceId"] if attachment else None,
        attached_device=attachment["Device"] if attachment else None,
        tags=tags,
    )


class AWSProvider(StorageProvider):
    """AWS implementation of StorageProvider (EBS)."""

    def __init__(self, region: str = "us-east-1", ec2_client=None, max_retries: int = 5):
        self.region = region
        self.max_retries = max_retries
        self._ec2 = ec2_client

    @property
    def ec2(self):
        if self._ec2 is None:
            self._ec2 = boto3.client("ec2", region_name=self.region)
        return self._ec2

    def name(self) -> str:
        return "aws"

    def _call(self, operation: str, fn: Callable[[], Any]) -> Any:
        """
        Run an EC2 call, retrying on API throttling with exponential backoff + jitter.

        Raises:
            ThrottledError: If still throttled after max_retries attempts
            ProviderError: On transport/credential errors (no HTTP response)
            ClientError: Any non-throttling error, untouched for the caller to map
        """
        for attempt in range(self.max_retries):
            try:
                return fn()
            except BotoCoreError as e:
                logger.error(f"AWS {operation} failed before a response: {e}")
                raise ProviderError(
                    str(e), self.name(), operation,
                    {"code": type(e).__name__, "message": str(e)},
                ) from e
            except ClientError as e:
                error_code = e.response.get("Error", {}).get("Code", "")
                if error_code not in THROTTLING_ERROR_CODES:
                    raise

                if attempt < self.max_retries - 1:
                    base_wait = 2 ** attempt
                    jitter = random.uniform(0, 0.5 * base_wait)
                    wait_time = base_wait + jitter
                    logger.warning(
                        f"AWS API throttling on {operation} "
                        f"(attempt {attempt + 1}/{self.max_retries}), "
                        f"waiting {wait_time:.2f}s before retry"
                    )
                    time.sleep(wait_time)
                    continue

                logger.error(f"AWS API throttling on {operation}: max retries ({self.max_retries}) exhausted")
                raise ThrottledError(
                    f"max retries ({self.max_retries}) exhausted",
                    self.name(), operation, _error_details(e),
                ) from e

    # === Block Storage (EBS) ===

    def list_volumes(
        self,
        tags: dict[str, str] | None = None,
        attached_to: str | None = None,
    ) -> list[VolumeInfo]:
        """List EBS volumes matching tag and attachment filters."""
        aws_filters = []
        if tags:
            for key, value in tags.items():
                aws_filters.append({"Name": f"tag:{key}", "Values": [value]})
        if attached_to:
            aws_filters.append({"Name": "attachment.instance-id", "Values": [attached_to]})

        def _describe():
            volumes = []
            paginator = self.ec2.get_paginator("describe_volumes")
            for page in paginator.paginate(Filters=aws_filters):
                for vol in page.get("Volumes", []):
                    volumes.append(_volume_info_from_aws(vol))
            return volumes

        try:
            return self._call("DescribeVolumes", _describe)
        except ClientError as e:
            details = _error_details(e)
            logger.error(f"Failed to list volumes: {details['code']} - {details['message']}")
            raise ProviderError(details["message"], self.name(), "DescribeVolumes", details) from e

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
        """Create an EBS volume, tagged at creation."""
        params = {
            "AvailabilityZone": availability_zone,
            "Size": size_gb,
            "VolumeType": volume_type,
            # Makes the throttling retry idempotent
            "ClientToken": str(uuid.uuid4()),
        }
        if encrypted:
            params["Encrypted"] = True
        if iops is not None:
            params["Iops"] = iops
        if throughput is not None:
            params["Throughput"] = throughput
        if tags:
            params["TagSpecifications"] = [{
                "ResourceType": "volume",
                "Tags": [{"Key": k, "Value": v} for k, v in tags.items()],
            }]

        try:
            response = self._call("CreateVolume", lambda: self.ec2.create_volume(**params))
        except ClientError as e:
            details = _error_details(e)
            logger.error(f"Failed to create volume: {details['code']} - {details['message']}")
            raise ProviderError(details["message"], self.name(), "CreateVolume", details) from e

        return VolumeInfo(
            volume_id=response["VolumeId"],
            size_gb=response["Size"],
            state=response["State"],
            availability_zone=response["AvailabilityZone"],
            volume_type=response.get("VolumeType", volume_type),
            encrypted=response.get("Encrypted", encrypted),
            tags=tags or {},
        )

    def get_volume(self, volume_id: str) -> VolumeInfo | None:
        """Get EBS volume information, None if EC2 does not know the id (yet)."""
        try:
            response = self._call(
                "DescribeVolumes",
                lambda: self.ec2.describe_volumes(VolumeIds=[volume_id]),
            )
        except ClientError as e:
            details = _error_details(e)
            if details["code"] in NOT_FOUND_ERROR_CODES:
                return None
            raise ProviderError(details["message"], self.name(), "DescribeVolumes", details) from e

        if response["Volumes"]:
            return _volume_info_from_aws(response["Volumes"][0])
        return None

    def attach_volume(self, volume_id: str, instance_id: str, device: str) -> None:
        """Attach EBS volume to EC2 instance."""
        try:
            self._call(
                "AttachVolume",
                lambda: self.ec2.attach_volume(
                    VolumeId=volume_id,
                    InstanceId=instance_id,
                    Device=device,
                ),
            )
        except ClientError as e:
            details = _error_details(e)
            logger.error(f"Failed to attach volume {volume_id} at {device}: {details['code']} - {details['message']}")
            if details["code"] == "InvalidParameterValue" and "already in use" in details["message"]:
                raise DeviceInUseError(details["message"], self.name(), "AttachVolume", details) from e
            if details["code"] in NOT_FOUND_ERROR_CODES:
                raise VolumeNotFoundError(details["message"], self.name(), "AttachVolume", details) from e
            raise ProviderError(details["message"], self.name(), "AttachVolume", details) from e

    def delete_volume(self, volume_id: str) -> bool:
        """Delete an EBS volume."""
        try:
            self._call("DeleteVolume", lambda: self.ec2.delete_volume(VolumeId=volume_id))
            return True
        except (ClientError, ProviderError) as e:
            logger.error(f"Failed to delete volume {volume_id}: {e}")
            return False

    def set_delete_on_termination(self, instance_id: str, device: str, volume_id: str) -> None:
        """Flip DeleteOnTermination on the instance's block device mapping."""
        try:
            self._call(
                "ModifyInstanceAttribute",
                lambda: self.ec2.modify_instance_attribute(
                    InstanceId=instance_id,
                    BlockDeviceMappings=[{
                        "DeviceName": device,
                        "Ebs": {"DeleteOnTermination": True, "VolumeId": volume_id},
                    }],
                ),
            )
        except ClientError as e:
            details = _error_details(e)
            logger.error(
                f"Failed to set DeleteOnTermination for {volume_id} at {device}: "
                f"{details['code']} - {details['message']}"
            )
            raise ProviderError(details["message"], self.name(), "ModifyInstanceAttribute", details) from e
