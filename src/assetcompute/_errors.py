"""
Exceptions shared across the assetcompute SDK.

Rate-limit, retry, auth and integration errors live next to the code that
raises them; this module holds the base class, the HTTP error raised for
non-2xx answers and the errors of the client lifecycle and correlation logic.
"""

from __future__ import annotations


class AssetComputeError(Exception):
    """Base class for every error raised by the assetcompute SDK."""

    pass


class AssetComputeHttpError(AssetComputeError):
    """
    Raised when an Asset Compute endpoint answers with a non-2xx status.

    Attributes:
        status_code: The HTTP status code of the response.
        body: The response body text, verbatim.

    Example:
        >>> try:
        ...     client.unregister()
        ... except AssetComputeHttpError as e:
        ...     print(e.status_code, e.body)
    """

    def __init__(self, message: str, status_code: int | None = None, body: str | None = None):
        super().__init__(message)
        self.message = message
        self.status_code = status_code
        self.body = body


class NotRegisteredError(AssetComputeError):
    """
    Raised when `process()` is called while the client is not registered.

    Raised synchronously, before any network call is attempted. Call
    `register()` first, or build the client with `AssetComputeClient.create()`.
    """

    def __init__(self, message: str = "Must call register before calling /process"):
        super().__init__(message)


class ProtocolViolationError(AssetComputeError):
    """
    Raised when an inbound rendition event cannot be correlated.

    The service must echo back the correlation metadata sent with each
    rendition. A missing or malformed `index`/`length`, or a second event for
    an index that was already filled, is reported with this error.

    Attributes:
        request_id: The request the offending event belongs to.
        event: The raw event payload.
    """

    def __init__(self, message: str, request_id: str | None = None, event: dict | None = None):
        super().__init__(message)
        self.request_id = request_id
        self.event = event


class WaitTimeoutError(AssetComputeError, TimeoutError):
    """
    Raised when a bounded wait expires.

    Any partially collected results are discarded.

    Attributes:
        timeout: The configured timeout in seconds.
        elapsed: Seconds actually waited.
    """

    def __init__(self, description: str, timeout: float, elapsed: float):
        super().__init__(f"{description} timed out after {timeout} seconds (waited {elapsed:.2f}s)")
        self.timeout = timeout
        self.elapsed = elapsed


class PendingWorkUnderflowError(AssetComputeError):
    """
    Internal consistency fault: more rendition events arrived than were requested.

    Never raised into the event source; it is published on the client's
    `error` channel so the caller can decide whether it is fatal.
    """

    def __init__(self, value: int):
        super().__init__(f"Internal error, pending renditions < 0: {value}")
        self.value = value
