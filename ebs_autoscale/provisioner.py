"""
Volume lifecycle steps: create, attach, set delete-on-termination.

Each step blocks until its effect is confirmed (volume available, device
visible) before returning. A volume that never reaches the attached state is
deleted again before the error propagates, so a failed run leaves nothing
billable behind.
"""

import logging
import threading
import time
from typing import Callable

from .devices import is_block_device, next_device, wait_for_device
from .errors import (
    AttachmentError,
    DeviceNamespaceExhausted,
    PolicyError,
    ProvisioningError,
    WaitCancelled,
    WaitTimeout,
)
from .models import (
    IOPS_CAPABLE_TYPES,
    THROUGHPUT_CAPABLE_TYPES,
    InstanceContext,
    VolumeHandle,
    VolumeRequest,
    VolumeState,
)
from .providers.base import DeviceInUseError, ProviderError, StorageProvider
from .quota import CREATION_TIME_TAG, SOURCE_INSTANCE_TAG
from .waiting import poll_until

logger = logging.getLogger(__name__)

FAILED_VOLUME_STATES = ("error", "deleting", "deleted")


def build_tags(ctx: InstanceContext, now: Callable[[], float] = time.time) -> dict[str, str]:
    return {
        SOURCE_INSTANCE_TAG: ctx.instance_id,
        CREATION_TIME_TAG: str(int(now())),
    }


def compensate(provider: StorageProvider, volume_id: str, reason: str) -> bool:
    """
    Best-effort delete of a volume this run created but could not attach.

    Never raises. The outcome is logged as a structured compensating_delete
    event so an orphaned volume can be found and reconciled later through its
    source-instance tag.

    Returns:
        True if the provider accepted the delete
    """
    logger.warning(f"Deleting volume {volume_id}: {reason}")
    try:
        deleted = provider.delete_volume(volume_id)
    except ProviderError as e:
        logger.error(f"Delete of {volume_id} raised: {e}")
        deleted = False

    event = {
        "event": "compensating_delete",
        "volume_id": volume_id,
        "reason": reason,
        "success": deleted,
    }
    if deleted:
        logger.info(f"Compensating delete of {volume_id} accepted", extra=event)
    else:
        logger.error(
            f"Compensating delete of {volume_id} FAILED; volume may be orphaned "
            f"and must be removed manually",
            extra=event,
        )
    return deleted


def _creation_params(request: VolumeRequest) -> dict:
    """Only pass performance knobs the volume type understands."""
    params = {}
    if request.iops is not None:
        if request.volume_type in IOPS_CAPABLE_TYPES:
            params["iops"] = request.iops
        else:
            logger.warning(f"Ignoring iops={request.iops}: not supported for volume type {request.volume_type}")
    if request.throughput is not None:
        if request.volume_type in THROUGHPUT_CAPABLE_TYPES:
            params["throughput"] = request.throughput
        else:
            logger.warning(
                f"Ignoring throughput={request.throughput}: not supported for volume type {request.volume_type}"
            )
    return params


def wait_until_available(
    provider: StorageProvider,
    volume_id: str,
    interval: float = 5.0,
    timeout: float | None = None,
    cancel: threading.Event | None = None,
) -> None:
    """
    Block until the provider reports the volume as available.

    A volume the provider does not know yet counts as still creating.

    Raises:
        ProvisioningError: If the volume ends up in a failed state
        WaitTimeout, WaitCancelled: From the underlying poll
    """
    def _check():
        info = provider.get_volume(volume_id)
        if info is None:
            logger.debug(f"Volume {volume_id} not visible yet")
            return False
        if info.state in FAILED_VOLUME_STATES:
            raise ProvisioningError(
                f"volume {volume_id} entered state '{info.state}' while being created",
                details={"volume_id": volume_id, "state": info.state},
            )
        return info.state == "available"

    poll_until(
        _check,
        description=f"volume {volume_id} to become available",
        interval=interval,
        timeout=timeout,
        cancel=cancel,
    )


def create_volume(
    provider: StorageProvider,
    ctx: InstanceContext,
    request: VolumeRequest,
    interval: float = 5.0,
    timeout: float | None = None,
    cancel: threading.Event | None = None,
) -> VolumeHandle:
    """
    Create a volume in the instance's zone and wait for it to become available.

    Args:
        provider: Storage provider
        ctx: Instance the volume is created for (zone, owner tag)
        request: Validated volume request
        interval: Seconds between availability checks
        timeout: Seconds to wait for availability, None waits forever
        cancel: Event aborting the availability wait

    Returns:
        Handle in AVAILABLE state

    Raises:
        ProvisioningError: If the create call fails (raw provider error in details)
            or the volume fails while creating (after a compensating delete)
        WaitTimeout, WaitCancelled: After a compensating delete
    """
    logger.info(
        f"Creating {request.size_gb} GiB {request.volume_type} volume in {ctx.availability_zone} "
        f"(encrypted={request.encrypted})"
    )
    try:
        info = provider.create_volume(
            size_gb=request.size_gb,
            availability_zone=ctx.availability_zone,
            volume_type=request.volume_type,
            tags=build_tags(ctx),
            encrypted=request.encrypted,
            **_creation_params(request),
        )
    except ProviderError as e:
        raw = e.details.get("message", str(e))
        logger.error(f"create-volume failed: {raw}", extra={"event": "create_volume_failed", "provider_error": e.details})
        raise ProvisioningError(f"could not create volume: {raw}", details=e.details) from e

    handle = VolumeHandle(volume_id=info.volume_id, state=VolumeState.CREATING, size_gb=info.size_gb)
    logger.info(f"Created volume {handle.volume_id} (state: {info.state})")

    try:
        wait_until_available(provider, handle.volume_id, interval=interval, timeout=timeout, cancel=cancel)
    except (ProvisioningError, WaitTimeout, WaitCancelled) as e:
        compensate(provider, handle.volume_id, reason=str(e))
        raise
    except ProviderError as e:
        compensate(provider, handle.volume_id, reason=str(e))
        raise ProvisioningError(
            f"could not confirm volume {handle.volume_id} became available: {e}",
            details=e.details,
        ) from e

    logger.info(f"Volume {handle.volume_id} is available")
    return handle.advance(VolumeState.AVAILABLE)


def attach_volume(
    provider: StorageProvider,
    ctx: InstanceContext,
    handle: VolumeHandle,
    device: str,
    is_present: Callable[[str], bool] = is_block_device,
    interval: float = 1.0,
    timeout: float | None = None,
    cancel: threading.Event | None = None,
) -> VolumeHandle:
    """
    Attach the volume at device and wait for the device to show up locally.

    If the provider rejects the device name because it is already in use on
    the instance (another invocation won the race), the next free name is
    allocated and the attach retried. Any other attach failure deletes the
    volume once and raises AttachmentError.

    Returns:
        Handle in ATTACHED state, device set to the name actually used

    Raises:
        AttachmentError: If the attach call failed (volume deletion attempted)
        WaitTimeout, WaitCancelled: If the device did not appear. details
            carries volume_id, device and attached; a volume the provider no
            longer shows attached to the instance is deleted first
    """
    rejected = []
    while True:
        logger.info(f"Attaching volume {handle.volume_id} to {ctx.instance_id} at {device}")
        try:
            provider.attach_volume(handle.volume_id, ctx.instance_id, device)
            break
        except DeviceInUseError as e:
            rejected.append(device)
            logger.warning(f"Device {device} already in use on {ctx.instance_id}, trying next free name")
            try:
                device = next_device(is_present, exclude=rejected)
                continue
            except DeviceNamespaceExhausted:
                cause = e
        except ProviderError as e:
            cause = e

        compensated = compensate(provider, handle.volume_id, reason=f"attach failed: {cause}")
        raise AttachmentError(
            f"could not attach volume {handle.volume_id} at {device}: {cause}",
            volume_id=handle.volume_id,
            cause=cause,
            compensated=compensated,
            details={"device": device, "provider_error": cause.details},
        ) from cause

    try:
        wait_for_device(device, is_present=is_present, interval=interval, timeout=timeout, cancel=cancel)
    except (WaitTimeout, WaitCancelled) as e:
        attached = _still_attached(provider, ctx, handle.volume_id)
        e.details.update({"volume_id": handle.volume_id, "device": device, "attached": attached})
        if not attached:
            e.details["compensated"] = compensate(
                provider, handle.volume_id, reason=f"attachment at {device} did not hold: {e}"
            )
        raise

    return handle.advance(VolumeState.ATTACHED, device=device)


def _still_attached(provider: StorageProvider, ctx: InstanceContext, volume_id: str) -> bool:
    """
    Whether the provider still shows the volume attached to this instance.

    An accepted attach can fail asynchronously and put the volume back to
    'available'. If the provider cannot be asked, the attachment is assumed
    to stand so it is not deleted out from under the instance.
    """
    try:
        info = provider.get_volume(volume_id)
    except ProviderError as e:
        logger.error(f"Could not re-check attachment of {volume_id}, assuming it is attached: {e}")
        return True
    if info is None or info.attached_instance != ctx.instance_id:
        logger.error(
            f"Volume {volume_id} is no longer attached to {ctx.instance_id} "
            f"(state: {info.state if info else 'unknown'})"
        )
        return False
    return True


def enable_delete_on_termination(
    provider: StorageProvider,
    ctx: InstanceContext,
    handle: VolumeHandle,
) -> VolumeHandle:
    """
    Have the volume deleted with the instance.

    Raises:
        PolicyError: If the block device mapping could not be modified. The
            attachment is left as is.
    """
    logger.info(f"Setting DeleteOnTermination for {handle.volume_id} at {handle.device}")
    try:
        provider.set_delete_on_termination(ctx.instance_id, handle.device, handle.volume_id)
    except ProviderError as e:
        raise PolicyError(
            f"could not set delete-on-termination for {handle.volume_id} at {handle.device}: {e}",
            details=e.details,
        ) from e
    return handle.advance(VolumeState.DELETE_ON_TERMINATION)
