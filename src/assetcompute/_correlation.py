"""
Correlation of journal events with the requests that produced them.

Every rendition sent to `/process` is stamped with its position in the batch
(`{"index": i, "length": n}`) and the batch's user data is stamped with the
client identity. The service echoes both back in each `rendition_created` /
`rendition_failed` event, which lets a client:

- ignore events that belong to other clients sharing the same journal;
- place every event at the position of the rendition that produced it;
- know when all renditions of a request have reported.
"""

from __future__ import annotations

import enum
import json
import logging
import threading
from collections.abc import Mapping, Sequence
from dataclasses import dataclass, field
from typing import Any

from assetcompute._errors import ProtocolViolationError

logger = logging.getLogger(__name__)

# Key under which the correlation metadata is stored in `userData`
CLIENT_METADATA_KEY = "assetComputeClient"


class RenditionEventType(enum.StrEnum):
    """Types of journal events related to renditions."""

    CREATED = "rendition_created"
    FAILED = "rendition_failed"

    def __str__(self) -> str:
        return self.value


# ======================
# Outgoing stamping
# ======================

def stamp_renditions(renditions: Sequence[Mapping[str, Any]]) -> list[dict[str, Any]]:
    """
    Returns copies of `renditions` tagged with their batch position.

    The caller's objects are not modified; any existing rendition `userData`
    is preserved next to the correlation metadata.

    Example:
        >>> stamp_renditions([{"fmt": "png"}, {"fmt": "jpg"}])[1]
        {'fmt': 'jpg', 'userData': {'assetComputeClient': {'index': 1, 'length': 2}}}
    """
    length = len(renditions)
    return [
        {
            **rendition,
            "userData": {
                **(rendition.get("userData") or {}),
                CLIENT_METADATA_KEY: {"index": index, "length": length},
            },
        }
        for index, rendition in enumerate(renditions)
    ]


def stamp_user_data(user_data: Mapping[str, Any] | None, client_id: str) -> dict[str, Any]:
    """Returns a copy of the batch `user_data` tagged with the client identity."""
    return {
        **(user_data or {}),
        CLIENT_METADATA_KEY: {"id": client_id},
    }


def get_client_id(event: Mapping[str, Any] | None) -> str | None:
    """Returns the client identity echoed back in an event, if any."""
    if not isinstance(event, Mapping):
        return None
    user_data = event.get("userData")
    if not isinstance(user_data, Mapping):
        return None
    metadata = user_data.get(CLIENT_METADATA_KEY)
    if not isinstance(metadata, Mapping):
        return None
    return metadata.get("id")


# ======================
# Incoming events
# ======================

def _is_int(value: Any) -> bool:
    return isinstance(value, int) and not isinstance(value, bool)


@dataclass(frozen=True)
class RenditionEvent:
    """
    A `rendition_created` or `rendition_failed` event delivered by the journal.

    Attributes:
        raw: The event payload as received.

    Example:
        >>> event = RenditionEvent(raw=payload)
        >>> event.type, event.request_id
        (<RenditionEventType.CREATED: 'rendition_created'>, 'req-1')
        >>> event.correlation()
        (0, 2)
    """

    raw: dict[str, Any] = field(repr=False)

    @property
    def type(self) -> RenditionEventType | None:
        try:
            return RenditionEventType(self.raw.get("type"))
        except ValueError:
            return None

    @property
    def request_id(self) -> str | None:
        return self.raw.get("requestId")

    @property
    def user_data(self) -> dict[str, Any]:
        return self.raw.get("userData") or {}

    @property
    def rendition(self) -> dict[str, Any]:
        return self.raw.get("rendition") or {}

    @property
    def client_id(self) -> str | None:
        return get_client_id(self.raw)

    def is_failure(self) -> bool:
        return self.type == RenditionEventType.FAILED

    def correlation(self) -> tuple[int, int]:
        """
        Returns the `(index, length)` echoed back with the rendition.

        Raises:
            ProtocolViolationError: If the metadata is missing or malformed.
        """
        rendition = self.raw.get("rendition")
        user_data = rendition.get("userData") if isinstance(rendition, Mapping) else None
        metadata = user_data.get(CLIENT_METADATA_KEY) if isinstance(user_data, Mapping) else None

        if not isinstance(metadata, Mapping):
            raise self._violation("expect userData with rendition")
        index, length = metadata.get("index"), metadata.get("length")
        if not _is_int(index):
            raise self._violation("expect index with rendition")
        if not _is_int(length):
            raise self._violation("expect length with rendition")
        if length <= 0 or not (0 <= index < length):
            raise self._violation(f"index {index} out of range for length {length}")
        return index, length

    def _violation(self, reason: str) -> ProtocolViolationError:
        return ProtocolViolationError(
            f"Request {self.request_id}, {reason}: {_dump(self.raw)}",
            request_id=self.request_id,
            event=self.raw,
        )

    def __str__(self) -> str:
        return f"RenditionEvent(type={self.type}, request_id={self.request_id})"


def _dump(data: Any) -> str:
    return json.dumps(data, default=str, sort_keys=True)


# ======================
# Request tracking
# ======================

class RequestRecord:
    """
    Mutable tracker of the events received for one request.

    Holds one slot per rendition of the batch. Each slot may be filled once;
    the record is complete when every slot is filled.

    Attributes:
        request_id: The request identifier returned by `/process`.
        expected_count: Number of renditions in the batch.
        remaining: Slots still empty.
    """

    def __init__(self, request_id: str, expected_count: int):
        assert request_id, "Request ID can not be empty."
        assert expected_count > 0, f"Expected count must be greater than 0, got {expected_count}."

        self.request_id = request_id
        self.expected_count = expected_count
        self.remaining = expected_count
        self._slots: list[RenditionEvent | None] = [None] * expected_count

    def fill(self, event: RenditionEvent) -> bool:
        """
        Places `event` in the slot of its index.

        Returns:
            True if this fill completed the record.

        Raises:
            ProtocolViolationError: On malformed metadata, a batch length that does
                not match this record, or a second event for the same index.
        """
        index, length = event.correlation()
        if length != self.expected_count:
            raise ProtocolViolationError(
                f"Request {self.request_id}, expect length {self.expected_count} with rendition: {_dump(event.raw)}",
                request_id=self.request_id,
                event=event.raw,
            )

        previous = self._slots[index]
        if previous is not None:
            raise ProtocolViolationError(
                f"Request {self.request_id}, duplicate event: {_dump(event.raw)}, previous: {_dump(previous.raw)}",
                request_id=self.request_id,
                event=event.raw,
            )

        self._slots[index] = event
        self.remaining -= 1
        return self.remaining == 0

    def is_complete(self) -> bool:
        return self.remaining == 0

    def events(self) -> list[RenditionEvent]:
        """Returns the events ordered like the renditions of the request."""
        assert self.is_complete(), \
            f"🌀 Sanity check | Request {self.request_id} still waits for {self.remaining} event(s)."
        return [event for event in self._slots if event is not None]

    def __repr__(self) -> str:
        return f"RequestRecord(request_id={self.request_id!r}, remaining={self.remaining}/{self.expected_count})"


class PendingWorkCounter:
    """
    Number of renditions submitted by a client whose event has not arrived yet.

    Thread-safe. The value must never drop below zero; `complete_one()`
    reports an underflow by returning the negative value, leaving the decision
    of how to surface it to the caller.
    """

    def __init__(self) -> None:
        self._value = 0
        self._lock = threading.Lock()

    @property
    def value(self) -> int:
        with self._lock:
            return self._value

    def add(self, count: int) -> int:
        assert count >= 0, f"Count must be >= 0, got {count}."
        with self._lock:
            self._value += count
            return self._value

    def subtract(self, count: int) -> int:
        assert count >= 0, f"Count must be >= 0, got {count}."
        with self._lock:
            self._value -= count
            return self._value

    def complete_one(self) -> int:
        return self.subtract(1)

    def reset(self) -> int:
        """Sets the counter back to zero and returns the value it had."""
        with self._lock:
            previous, self._value = self._value, 0
            return previous
