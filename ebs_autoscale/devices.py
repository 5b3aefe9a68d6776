"""
Block device naming on the instance.

New volumes are attached under /dev/xvdb[a-z]. That range stays clear of the
root and primary volumes (/dev/xvda, /dev/xvdb, ...) on Xen instance types
that only support the xvd naming scheme.
"""

import fcntl
import logging
import os
import stat
import string
import threading
from contextlib import contextmanager
from typing import Callable, Iterable, Iterator

from .errors import DeviceNamespaceExhausted
from .waiting import poll_until

logger = logging.getLogger(__name__)

DEVICE_PREFIX = "/dev/xvdb"
CANDIDATE_DEVICES = [f"{DEVICE_PREFIX}{suffix}" for suffix in string.ascii_lowercase]

DEFAULT_LOCK_FILE = "/var/lock/ebs-autoscale-device.lock"


def is_block_device(path: str) -> bool:
    """True if path exists and is a block device (shell `[ -b path ]`)."""
    try:
        return stat.S_ISBLK(os.stat(path).st_mode)
    except OSError:
        return False


def next_device(
    is_present: Callable[[str], bool] = is_block_device,
    exclude: Iterable[str] = (),
) -> str:
    """
    Pick the first candidate device name with no block device behind it.

    This is a point-in-time check, not a reservation; callers that can race
    hold device_lock() until the attached device shows up.

    Args:
        is_present: Predicate telling whether a device path is occupied
        exclude: Names to skip even if they look free (e.g. rejected by the provider)

    Raises:
        DeviceNamespaceExhausted: If every candidate is occupied or excluded
    """
    excluded = set(exclude)
    for device in CANDIDATE_DEVICES:
        if device in excluded:
            continue
        if not is_present(device):
            logger.debug(f"Allocated device name {device}")
            return device

    logger.error(f"No free device name in {CANDIDATE_DEVICES[0]}..{CANDIDATE_DEVICES[-1]}")
    raise DeviceNamespaceExhausted(CANDIDATE_DEVICES)


def wait_for_device(
    device: str,
    is_present: Callable[[str], bool] = is_block_device,
    interval: float = 1.0,
    timeout: float | None = None,
    cancel: threading.Event | None = None,
) -> str:
    """
    Block until device appears in the OS.

    The attach API call returns before the kernel exposes the device, by an
    unspecified delay.

    Raises:
        WaitTimeout: If timeout is set and the device does not appear in time
        WaitCancelled: If cancel is set while waiting
    """
    logger.info(f"Waiting for block device {device} to appear")
    poll_until(
        lambda: is_present(device),
        description=f"block device {device}",
        interval=interval,
        timeout=timeout,
        cancel=cancel,
    )
    logger.info(f"Block device {device} is present")
    return device


@contextmanager
def device_lock(lock_file: str | None = DEFAULT_LOCK_FILE) -> Iterator[None]:
    """
    Hold an instance-wide advisory lock on lock_file.

    Concurrent invocations on one instance serialize device allocation
    through attachment on this lock. lock_file=None disables locking.
    """
    if not lock_file:
        yield
        return

    os.makedirs(os.path.dirname(lock_file) or ".", exist_ok=True)
    with open(lock_file, "a") as f:
        logger.debug(f"Acquiring device lock {lock_file}")
        fcntl.flock(f.fileno(), fcntl.LOCK_EX)
        logger.debug(f"Acquired device lock {lock_file}")
        try:
            yield
        finally:
            fcntl.flock(f.fileno(), fcntl.LOCK_UN)
            logger.debug(f"Released device lock {lock_file}")
