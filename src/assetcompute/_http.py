"""
HTTP client abstraction for the assetcompute SDK.

Available implementations:
    - HttpClient: Abstract base class for HTTP clients.
    - StandaloneHttpClient: Uses an AuthProvider for bearer authentication and
      retries transient failures (connection errors, timeouts, 408 and 5xx).

HTTP 429 responses are returned untouched: turning them into
`TooManyRequestsError` is the job of `AssetComputeApi`, and retrying them is
the job of `retry_on_rate_limit()`.

Example:
    >>> from assetcompute._auth import StaticTokenAuthProvider
    >>> from assetcompute._http import StandaloneHttpClient
    >>> client = StandaloneHttpClient(auth_provider=StaticTokenAuthProvider("token"))
    >>> response = client.post("https://asset-compute.adobe.io/register")
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from typing import TYPE_CHECKING, Any, override

import requests

from assetcompute._retry import TRANSIENT_STATUS_CODES, RetryableError, Retrying

logger = logging.getLogger(__name__)

if TYPE_CHECKING:
    from assetcompute._auth import AuthProvider


class TransientHttpError(RetryableError):
    """
    Raised internally when a response carries a transient status code.

    Extends RetryableError so the Retrying loop schedules another attempt.

    Attributes:
        response: The transient HTTP response.
    """

    def __init__(self, response: requests.Response):
        self.response = response
        super().__init__(f"Transient HTTP failure ({response.status_code})")


# =============================================================================
# Abstract Base Class
# =============================================================================


class HttpClient(ABC):
    """
    Transport seam between the SDK and Asset Compute.

    Implementations add credentials and may resend on transient failures, but
    hand back whatever response they got last: status codes are for the
    caller to interpret.

    Example:
        >>> class MyHttpClient(HttpClient):
        ...     def get(self, url, headers=None, timeout=30):
        ...         return requests.get(url, headers=headers, timeout=timeout)
        ...     def post(self, url, data=None, headers=None, timeout=30):
        ...         return requests.post(url, json=data, headers=headers, timeout=timeout)
    """

    @abstractmethod
    def get(
        self,
        url: str,
        headers: dict[str, str] | None = None,
        timeout: int = 30,
    ) -> requests.Response:
        """GET `url`; `headers` are sent on top of the credentials."""

    @abstractmethod
    def post(
        self,
        url: str,
        data: dict[str, Any] | None = None,
        headers: dict[str, str] | None = None,
        timeout: int = 30,
    ) -> requests.Response:
        """
        POST `data` to `url` as a JSON body.

        Raises:
            requests.RequestException: When no response could be obtained.
        """


# =============================================================================
# Standalone Implementation
# =============================================================================


class StandaloneHttpClient(HttpClient):
    """
    HTTP client using an AuthProvider for bearer authentication.

    Every request is sent through a `requests.Session` and retried on transient
    failures with exponential backoff. When the last attempt still gets a
    transient status, that response is returned so the caller can report it.

    Example:
        >>> client = StandaloneHttpClient(auth_provider=auth, max_retries=3)
        >>> response = client.post(url, data={"key": "value"})

    Args:
        auth_provider: Provider for authorization tokens.
        session: Optional pre-configured `requests.Session`.
        max_retries: Retries for transient failures (0 disables them).
        backoff_factor: Exponential backoff base in seconds.
    """

    def __init__(
        self,
        auth_provider: AuthProvider,
        session: requests.Session | None = None,
        max_retries: int = 3,
        backoff_factor: float = 0.5,
    ):
        from assetcompute._auth import AuthProvider

        assert auth_provider is not None, "auth_provider cannot be None"
        assert isinstance(auth_provider, AuthProvider), "auth_provider must be an AuthProvider instance"
        assert max_retries >= 0, "max_retries must be >= 0"
        assert backoff_factor > 0, "backoff_factor must be greater than 0"

        self._auth = auth_provider
        self._session = session or requests.Session()
        self.max_retries = max_retries
        self.backoff_factor = backoff_factor

    @override
    def get(
        self,
        url: str,
        headers: dict[str, str] | None = None,
        timeout: int = 30,
    ) -> requests.Response:
        return self._send("GET", url, headers=headers, timeout=timeout)

    @override
    def post(
        self,
        url: str,
        data: dict[str, Any] | None = None,
        headers: dict[str, str] | None = None,
        timeout: int = 30,
    ) -> requests.Response:
        return self._send("POST", url, data=data, headers=headers, timeout=timeout)

    def _send(
        self,
        method: str,
        url: str,
        data: dict[str, Any] | None = None,
        headers: dict[str, str] | None = None,
        timeout: int = 30,
    ) -> requests.Response:
        """
        Sends one request through the retry loop.

        Raises:
            MaxRetriesExceededError: When transient network failures persist.
            AuthenticationError: When no token could be obtained.
        """
        assert url, "url must not be empty"
        assert timeout and timeout > 0, f"timeout must be > 0, got {timeout}"

        for attempt in Retrying(
            max_retries=self.max_retries,
            backoff_factor=self.backoff_factor,
            logger_prefix=f"{method} {url}",
        ):
            with attempt as retry_attempt:
                merged_headers = {**self._auth.get_auth_headers(), **(headers or {})}
                response = self._session.request(
                    method,
                    url,
                    json=data,
                    headers=merged_headers,
                    timeout=timeout,
                )
                if response.status_code in TRANSIENT_STATUS_CODES and not retry_attempt.is_last_attempt:
                    raise TransientHttpError(response)
                return response

        # It should never happen
        raise RuntimeError(f"Unexpected error while sending {method} {url}: retry loop ended without a response.")
