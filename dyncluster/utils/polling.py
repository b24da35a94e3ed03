"""
Bounded, cancellable polling shared by every blocking wait in dyncluster
"""
import threading
import time
from typing import Callable, Optional
from ..errors import CancellationError


def wait_until(
    predicate: Callable[[], bool],
    interval: float,
    timeout: Optional[float] = None,
    cancel: Optional[threading.Event] = None,
    description: str = "condition",
) -> None:
    """
    Poll predicate every interval seconds until it returns True.

    At least one of timeout or cancel must be given. Raises CancellationError
    when the cancel event is set or the timeout elapses; exceptions raised by
    the predicate propagate unchanged.
    """
    if timeout is None and cancel is None:
        raise ValueError("wait_until needs a timeout or a cancel event")
    if interval <= 0:
        raise ValueError(f"poll interval must be positive, got {interval}")

    deadline = time.monotonic() + timeout if timeout is not None else None
    # An unset private event gives an interruptible sleep when no cancel is passed
    waiter = cancel if cancel is not None else threading.Event()

    while True:
        if waiter.is_set():
            raise CancellationError(f"cancelled while waiting for {description}")

        if predicate():
            return

        sleep_for = interval
        if deadline is not None:
            remaining = deadline - time.monotonic()
            if remaining <= 0:
                raise CancellationError(f"timed out after {timeout:.2f}s waiting for {description}")
            sleep_for = min(interval, remaining)

        if waiter.wait(sleep_for):
            raise CancellationError(f"cancelled while waiting for {description}")
