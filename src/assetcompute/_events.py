"""
In-process publish/subscribe registry used by the client.

Topics carry rendition events from the journal thread to whoever waits for
them (`wait_activation`, `wait`) and to user callbacks registered with
`AssetComputeClient.subscribe()`.

Listeners are read-only observers: an exception raised by one listener is
logged and never reaches the publisher, so a faulty callback can not stop the
journal polling thread.
"""

from __future__ import annotations

import enum
import logging
import threading
from collections.abc import Callable
from typing import Any

logger = logging.getLogger(__name__)

Listener = Callable[[Any], None]


class Topic(enum.StrEnum):
    """Topics published by the client."""

    RENDITION_CREATED = "rendition_created"
    RENDITION_FAILED = "rendition_failed"
    ERROR = "error"
    DRAINED = "drained"

    def __str__(self) -> str:
        return self.value


class Subscription:
    """
    Handle returned by `EventBus.subscribe()`.

    `cancel()` removes the listener; calling it more than once is a no-op.
    """

    def __init__(self, bus: EventBus, topic: str, listener: Listener):
        self._bus = bus
        self.topic = topic
        self.listener = listener
        self._active = True

    @property
    def active(self) -> bool:
        return self._active

    def cancel(self) -> None:
        if self._active:
            self._active = False
            self._bus._remove(self)

    def __repr__(self) -> str:
        return f"Subscription(topic={self.topic!r}, active={self._active})"


class EventBus:
    """
    Thread-safe topic registry.

    Example:
        >>> bus = EventBus()
        >>> subscription = bus.subscribe(Topic.DRAINED, lambda _: print("drained"))
        >>> bus.publish(Topic.DRAINED)
        drained
        >>> subscription.cancel()
    """

    def __init__(self) -> None:
        self._listeners: dict[str, list[Subscription]] = {}
        self._lock = threading.Lock()

    def subscribe(self, topic: str, listener: Listener) -> Subscription:
        """Registers `listener` for `topic` and returns its subscription handle."""
        assert topic, "Topic can not be empty."
        assert callable(listener), "Listener must be callable."

        subscription = Subscription(self, str(topic), listener)
        with self._lock:
            self._listeners.setdefault(subscription.topic, []).append(subscription)
        return subscription

    def publish(self, topic: str, payload: Any = None) -> int:
        """
        Delivers `payload` to the listeners of `topic` registered at call time.

        Returns:
            Number of listeners the payload was delivered to.
        """
        with self._lock:
            subscriptions = list(self._listeners.get(str(topic), ()))

        delivered = 0
        for subscription in subscriptions:
            if not subscription.active:
                continue
            try:
                subscription.listener(payload)
            except Exception as e:
                listener_name = getattr(subscription.listener, "__qualname__", repr(subscription.listener))
                logger.warning(f"Event listener `{listener_name}` for topic '{topic}' raised an exception: {e}")
            delivered += 1
        return delivered

    def listener_count(self, topic: str) -> int:
        with self._lock:
            return len(self._listeners.get(str(topic), ()))

    def _remove(self, subscription: Subscription) -> None:
        with self._lock:
            subscriptions = self._listeners.get(subscription.topic)
            if subscriptions and subscription in subscriptions:
                subscriptions.remove(subscription)
                if not subscriptions:
                    del self._listeners[subscription.topic]
