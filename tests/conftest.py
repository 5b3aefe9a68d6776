"""
Shared pytest fixtures for the ebs-autoscale test suite

Provides:
- AWS mocking (EC2 via moto)
- In-memory fake storage provider and block device namespace
- Instance context and settings fixtures
"""

import os
from itertools import count

import boto3
import pytest
from moto import mock_aws

from ebs_autoscale.config import Settings
from ebs_autoscale.models import InstanceContext, ResourceLimits, VolumeRequest
from ebs_autoscale.providers.base import StorageProvider, VolumeInfo


# Test configuration
TEST_AWS_REGION = "us-west-1"
TEST_ZONE = f"{TEST_AWS_REGION}a"
TEST_INSTANCE_ID = "i-0123456789abcdef0"


@pytest.fixture(scope="session")
def aws_credentials():
    """Mock AWS credentials for moto"""
    os.environ["AWS_ACCESS_KEY_ID"] = "testing"
    os.environ["AWS_SECRET_ACCESS_KEY"] = "testing"
    os.environ["AWS_SECURITY_TOKEN"] = "testing"
    os.environ["AWS_SESSION_TOKEN"] = "testing"
    os.environ["AWS_DEFAULT_REGION"] = TEST_AWS_REGION


@pytest.fixture
def ec2_mock(aws_credentials):
    """Mock EC2 client"""
    with mock_aws():
        ec2 = boto3.client("ec2", region_name=TEST_AWS_REGION)
        yield ec2


# Fakes

class FakeBlockDevices:
    """
    Stand-in for the instance's /dev namespace.

    Callable as an is_present predicate. Devices registered with
    appear_after() only show up after that many negative checks.
    """

    def __init__(self, present=()):
        self.present = set(present)
        self.pending = {}
        self.checks = []

    def appear_after(self, device, checks):
        if checks <= 0:
            self.present.add(device)
        else:
            self.pending[device] = checks

    def checks_for(self, device):
        return [c for c in self.checks if c == device]

    def __call__(self, path):
        self.checks.append(path)
        if path in self.pending:
            if self.pending[path] <= 0:
                self.present.add(path)
                del self.pending[path]
            else:
                self.pending[path] -= 1
        return path in self.present


class FakeProvider(StorageProvider):
    """In-memory StorageProvider that records every call."""

    def __init__(self, devices=None, zone=TEST_ZONE):
        self.devices = devices if devices is not None else FakeBlockDevices()
        self.zone = zone
        self.volumes = {}
        self.calls = []
        self._ids = count(1)
        # Failure injection
        self.create_error = None
        self.attach_errors = []
        self.delete_result = True
        self.policy_error = None
        # Number of get_volume checks that still report 'creating'
        self.available_after = 0
        # Number of device checks before an attached device shows up
        self.device_delay = 0
        # Accept attach calls, then drop the attachment as EC2 does when it fails later
        self.attach_fails_later = False
        self._creating_checks = {}

    def name(self):
        return "fake"

    def calls_to(self, name):
        return [c for c in self.calls if c[0] == name]

    def add_volume(self, size_gb=100, tags=None, attached_to=None, device=None, state=None):
        """Seed a pre-existing volume."""
        volume_id = f"vol-seed{next(self._ids):04d}"
        self.volumes[volume_id] = VolumeInfo(
            volume_id=volume_id,
            size_gb=size_gb,
            state=state or ("in-use" if attached_to else "available"),
            availability_zone=self.zone,
            attached_instance=attached_to,
            attached_device=device,
            tags=dict(tags or {}),
        )
        return self.volumes[volume_id]

    def list_volumes(self, tags=None, attached_to=None):
        self.calls.append(("list_volumes", tags, attached_to))
        result = []
        for vol in self.volumes.values():
            if tags and any(vol.tags.get(k) != v for k, v in tags.items()):
                continue
            if attached_to and vol.attached_instance != attached_to:
                continue
            result.append(vol)
        return result

    def create_volume(self, size_gb, availability_zone, volume_type="gp3", tags=None,
                      iops=None, throughput=None, encrypted=False):
        self.calls.append(("create_volume", {
            "size_gb": size_gb,
            "availability_zone": availability_zone,
            "volume_type": volume_type,
            "tags": tags,
            "iops": iops,
            "throughput": throughput,
            "encrypted": encrypted,
        }))
        if self.create_error:
            raise self.create_error
        volume_id = f"vol-{next(self._ids):08x}"
        self.volumes[volume_id] = VolumeInfo(
            volume_id=volume_id,
            size_gb=size_gb,
            state="creating",
            availability_zone=availability_zone,
            volume_type=volume_type,
            encrypted=encrypted,
            tags=dict(tags or {}),
        )
        self._creating_checks[volume_id] = self.available_after
        return self.volumes[volume_id]

    def get_volume(self, volume_id):
        self.calls.append(("get_volume", volume_id))
        vol = self.volumes.get(volume_id)
        if vol is not None and vol.state == "creating":
            if self._creating_checks.get(volume_id, 0) <= 0:
                vol.state = "available"
            else:
                self._creating_checks[volume_id] -= 1
        return vol

    def attach_volume(self, volume_id, instance_id, device):
        self.calls.append(("attach_volume", volume_id, instance_id, device))
        if self.attach_errors:
            raise self.attach_errors.pop(0)
        vol = self.volumes[volume_id]
        vol.state = "in-use"
        vol.attached_instance = instance_id
        vol.attached_device = device
        if self.attach_fails_later:
            vol.state = "available"
            vol.attached_instance = None
            vol.attached_device = None
            return
        self.devices.appear_after(device, self.device_delay)

    def delete_volume(self, volume_id):
        self.calls.append(("delete_volume", volume_id))
        if self.delete_result:
            self.volumes.pop(volume_id, None)
        return self.delete_result

    def set_delete_on_termination(self, instance_id, device, volume_id):
        self.calls.append(("set_delete_on_termination", instance_id, device, volume_id))
        if self.policy_error:
            raise self.policy_error


@pytest.fixture
def block_devices():
    return FakeBlockDevices()


@pytest.fixture
def fake_provider(block_devices):
    return FakeProvider(devices=block_devices)


@pytest.fixture
def instance_ctx():
    return InstanceContext(
        instance_id=TEST_INSTANCE_ID,
        availability_zone=TEST_ZONE,
        region=TEST_AWS_REGION,
    )


@pytest.fixture
def make_settings(tmp_path):
    """Factory for Settings with fast polling and a private lock file"""
    def _make(size_gb=20, volume_type="standard", iops=None, throughput=None, encrypted=True,
              limits=None, **kwargs):
        params = {
            "volume_poll_interval": 0,
            "device_poll_interval": 0,
            "volume_available_timeout": 5,
            "device_visible_timeout": 5,
            "device_lock_file": str(tmp_path / "device.lock"),
        }
        params.update(kwargs)
        return Settings(
            request=VolumeRequest(
                size_gb=size_gb,
                volume_type=volume_type,
                iops=iops,
                throughput=throughput,
                encrypted=encrypted,
            ).validate(),
            limits=limits or ResourceLimits(),
            **params,
        )
    return _make
