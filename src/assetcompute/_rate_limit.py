"""
Server-side rate limiting (HTTP 429) support.

The Asset Compute gateway answers HTTP 429 with a `retry-after` header that is
either a number of seconds or an absolute HTTP date. `TooManyRequestsError`
normalizes both shapes into `retry_after` seconds so the retry engine can
schedule the next attempt without inspecting the message.

Example:
    >>> error = TooManyRequestsError("Unable to invoke /process: 429 ...", "3")
    >>> error.retry_after
    3
    >>> TooManyRequestsError("...", "Wed, 21 Oct 2015 07:28:00 GMT").retry_after
    1
"""

from __future__ import annotations

import re
import time
from datetime import UTC, datetime
from email.utils import parsedate_to_datetime
from typing import Any

from assetcompute._errors import AssetComputeHttpError

TOO_MANY_REQUESTS_ERROR = "TooManyRequestsError"
TOO_MANY_REQUESTS_ERROR_CODE = 429

_SECONDS_PATTERN = re.compile(r"\s*(\d+)(?:\.\d*)?\s*")
# e.g. "Fri Oct 17 2026 22:05:00 GMT+0000 (Coordinated Universal Time)"
_JS_DATE_FORMAT = "%a %b %d %Y %H:%M:%S GMT%z"


def _parse_seconds(value: str) -> int | None:
    match = _SECONDS_PATTERN.fullmatch(value)
    return int(match.group(1)) if match else None


def _parse_date(value: str) -> datetime | None:
    """Parses an HTTP-date, an ISO-8601 timestamp or a JavaScript `Date.toString()` value."""
    text = value.strip()
    if not text:
        return None

    try:
        return datetime.strptime(text.split(" (")[0], _JS_DATE_FORMAT)
    except ValueError:
        pass

    try:
        return parsedate_to_datetime(text)
    except (TypeError, ValueError, IndexError):
        pass

    try:
        parsed = datetime.fromisoformat(text.replace("Z", "+00:00"))
        return parsed if parsed.tzinfo else parsed.replace(tzinfo=UTC)
    except ValueError:
        return None


def parse_retry_after(header: Any, now: float | None = None) -> int | None:
    """
    Converts a raw `retry-after` header into a number of seconds to wait.

    Args:
        header: The raw header value. Only strings are interpreted.
        now: Current Unix time, defaults to `time.time()`.

    Returns:
        The number of seconds to wait, clamped to 1 when the header is a date
        that already passed, or None when the header cannot be interpreted.
    """
    if not isinstance(header, str):
        return None

    seconds = _parse_seconds(header)
    if seconds is not None:
        return seconds

    target = _parse_date(header)
    if target is None:
        return None

    if target.tzinfo is None:
        target = target.replace(tzinfo=UTC)
    current = time.time() if now is None else now
    seconds_until = round(target.timestamp() - current)
    return seconds_until if seconds_until > 0 else 1


class TooManyRequestsError(AssetComputeHttpError):
    """
    Raised when the service answers HTTP 429 (Too Many Requests).

    Attributes:
        name: Fixed discriminator, always "TooManyRequestsError".
        code: Fixed discriminator, always 429.
        retry_after: Seconds to wait before retrying, or None if the header
            was missing or could not be interpreted.

    Example:
        >>> try:
        ...     client.process(source, renditions)
        ... except TooManyRequestsError as e:
        ...     print(f"Rate limited, retry in {e.retry_after}s")
    """

    name = TOO_MANY_REQUESTS_ERROR
    code = TOO_MANY_REQUESTS_ERROR_CODE

    def __init__(self, message: str, retry_after_header: Any = None, body: str | None = None):
        super().__init__(message, status_code=TOO_MANY_REQUESTS_ERROR_CODE, body=body)
        self.retry_after_header = retry_after_header
        self.retry_after: int | None = parse_retry_after(retry_after_header)


def is_too_many_requests_error(error: BaseException) -> bool:
    """Recognizes a 429 error by its discriminators rather than by its message."""
    return (
        getattr(error, "code", None) == TOO_MANY_REQUESTS_ERROR_CODE
        and getattr(error, "name", None) == TOO_MANY_REQUESTS_ERROR
    )
