"""
Bounded, cancellable polling.

Both blocking waits in the provisioning flow (volume becoming available,
block device appearing in the OS) go through poll_until().
"""

import logging
import threading
import time
from typing import Callable, TypeVar

from .errors import WaitCancelled, WaitTimeout

logger = logging.getLogger(__name__)

T = TypeVar("T")


def poll_until(
    check: Callable[[], T],
    description: str,
    interval: float = 1.0,
    timeout: float | None = None,
    cancel: threading.Event | None = None,
    clock: Callable[[], float] = time.monotonic,
) -> T:
    """
    Call check() every interval seconds until it returns something truthy.

    Args:
        check: Condition to poll. Its first truthy result is returned.
            Exceptions propagate immediately.
        description: What is being waited for, used in logs and errors
        interval: Seconds between checks
        timeout: Seconds before giving up. None or 0 waits forever.
        cancel: Event that aborts the wait when set
        clock: Monotonic time source

    Returns:
        The first truthy value returned by check()

    Raises:
        WaitTimeout: If the deadline passes first
        WaitCancelled: If cancel is set first
    """
    cancel = cancel or threading.Event()
    start = clock()
    deadline = start + timeout if timeout else None
    attempt = 0

    while True:
        if cancel.is_set():
            raise WaitCancelled(description)

        attempt += 1
        result = check()
        if result:
            if attempt > 1:
                logger.debug(f"{description}: ready after {attempt} checks ({clock() - start:.1f}s)")
            return result

        if deadline is not None and clock() >= deadline:
            raise WaitTimeout(description, timeout, details={"attempts": attempt})

        logger.debug(f"Waiting for {description} (check {attempt}, {clock() - start:.1f}s elapsed)")

        # Event.wait doubles as an interruptible sleep
        if cancel.wait(interval):
            raise WaitCancelled(description)
