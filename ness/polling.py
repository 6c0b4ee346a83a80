"""
Cancellable fixed-interval waiting used by every polling loop.
"""

import threading
import time
from typing import Optional

from .errors import DeploymentCancelled


class CancelToken:
    """Cooperative cancellation flag shared between a caller and an orchestration run."""

    def __init__(self):
        self._event = threading.Event()

    def cancel(self) -> None:
        self._event.set()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def raise_if_cancelled(self) -> None:
        if self._event.is_set():
            raise DeploymentCancelled("Deployment cancelled")

    def wait(self, seconds: float) -> bool:
        """Sleep up to `seconds`; returns True if cancelled meanwhile."""
        return self._event.wait(seconds)


def wait_or_cancel(seconds: float, token: Optional[CancelToken] = None) -> None:
    """
    Block for a poll interval, waking early if the run is cancelled.

    Args:
        seconds: Interval to wait
        token: Optional cancellation token

    Raises:
        DeploymentCancelled: If the token is (or becomes) cancelled
    """
    if token is None:
        if seconds > 0:
            time.sleep(seconds)
        return

    token.raise_if_cancelled()
    if seconds > 0 and token.wait(seconds):
        token.raise_if_cancelled()


class Deadline:
    """Tracks an optional timeout for a polling loop."""

    def __init__(self, seconds: Optional[float]):
        self._expires = None if seconds is None else time.monotonic() + seconds

    @property
    def expired(self) -> bool:
        return self._expires is not None and time.monotonic() >= self._expires
