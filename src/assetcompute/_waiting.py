"""
Bounded waits.

A `BoundedWait` is a one-shot future raced against a deadline that starts when
the wait is created. Whichever comes first (`resolve`, `reject` or the
deadline) settles it, and the cleanup callbacks registered with `on_settle`
run exactly once on every exit path. Listeners attached for the wait are
therefore never left behind, even across thousands of sequential waits.

Example:
    >>> waiter = BoundedWait(timeout=60.0, description="Request abc")
    >>> subscription = bus.subscribe(Topic.DRAINED, lambda _: waiter.resolve(None))
    >>> waiter.on_settle(subscription.cancel)
    >>> waiter.result()
"""

from __future__ import annotations

import logging
import threading
import time
from collections.abc import Callable
from typing import Generic, TypeVar

from assetcompute._errors import WaitTimeoutError

logger = logging.getLogger(__name__)

T = TypeVar("T")

_UNSET = object()


class BoundedWait(Generic[T]):
    """
    One-shot, thread-safe future with a deadline.

    Args:
        timeout: Seconds the wait may last, counted from construction.
        description: Used in the timeout message ("<description> timed out after ...").
    """

    def __init__(self, timeout: float, description: str = "Wait"):
        assert timeout is not None, "Timeout can not be None."
        assert timeout >= 0, "Timeout must be >= 0."

        self.timeout = timeout
        self.description = description
        self._started_at = time.monotonic()
        self._deadline = self._started_at + timeout

        self._condition = threading.Condition()
        self._settled = False
        self._value: T | object = _UNSET
        self._error: BaseException | None = None
        self._cleanups: list[Callable[[], None]] = []

    @property
    def settled(self) -> bool:
        with self._condition:
            return self._settled

    def on_settle(self, cleanup: Callable[[], None]) -> None:
        """Registers a cleanup callback; runs immediately if the wait is already settled."""
        with self._condition:
            if not self._settled:
                self._cleanups.append(cleanup)
                return
        self._run_cleanup(cleanup)

    def resolve(self, value: T) -> bool:
        """Settles the wait with a value. Returns False if it was already settled."""
        return self._settle(value=value)

    def reject(self, error: BaseException) -> bool:
        """Settles the wait with an error. Returns False if it was already settled."""
        return self._settle(error=error)

    def result(self) -> T:
        """
        Blocks until the wait is settled or its deadline passes.

        Returns:
            The resolved value.

        Raises:
            WaitTimeoutError: If the deadline passed first.
            Exception: The error given to `reject()`.
        """
        with self._condition:
            while not self._settled:
                remaining = self._deadline - time.monotonic()
                if remaining <= 0:
                    break
                self._condition.wait(remaining)

        if not self.settled:
            elapsed = time.monotonic() - self._started_at
            self.reject(WaitTimeoutError(self.description, self.timeout, elapsed))

        with self._condition:
            if self._error is not None:
                raise self._error
            return self._value  # type: ignore[return-value]

    def _settle(self, value: T | object = _UNSET, error: BaseException | None = None) -> bool:
        with self._condition:
            if self._settled:
                return False
            self._settled = True
            self._value = value
            self._error = error
            cleanups, self._cleanups = self._cleanups, []
            self._condition.notify_all()

        for cleanup in cleanups:
            self._run_cleanup(cleanup)
        return True

    def _run_cleanup(self, cleanup: Callable[[], None]) -> None:
        try:
            cleanup()
        except Exception as e:
            logger.warning(f"{self.description} | cleanup callback raised an exception: {e}")
