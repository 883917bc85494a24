"""
Retry utilities for the assetcompute SDK.

Two retry policies live here:

- `retry_on_rate_limit()`: the HTTP 429 backoff engine applied uniformly to
  register/process/unregister. It waits for the server's `retry-after` (plus a
  sub-second jitter) or a random 30-60s when the server gave no hint.
- `Retrying`: a Tenacity-inspired context manager with exponential backoff used
  by the HTTP transport for transient failures (connection errors, timeouts,
  408 and 5xx). It never handles HTTP 429.

Example:
    >>> from assetcompute._retry import RetryOptions, retry_on_rate_limit
    >>> response = retry_on_rate_limit(
    ...     lambda ctx: api.process(ctx["source"], ctx["renditions"], ctx["user_data"]),
    ...     context={"source": source, "renditions": renditions, "user_data": user_data},
    ...     options=RetryOptions(max_attempts=2),
    ... )
"""

from __future__ import annotations

import logging
import random
import time
from collections.abc import Callable, Generator
from copy import deepcopy
from dataclasses import dataclass, field
from typing import Any, TypeVar

import requests

from assetcompute._config import OverridableConfig
from assetcompute._errors import AssetComputeError
from assetcompute._rate_limit import is_too_many_requests_error
from assetcompute._utils import log_prefix, sleep_with_jitter

logger = logging.getLogger(__name__)

T = TypeVar("T")

# Maximum/minimum time to wait before retrying when no `retry-after` header is sent
MAX_RETRY_WAIT_TIME_MS = 60_000
MIN_RETRY_WAIT_TIME_MS = 30_000


# =============================================================================
# Exceptions
# =============================================================================


class RetryableError(Exception):
    """Opt-in marker for errors the transport may retry as transient failures."""

    pass


class MaxRetriesExceededError(AssetComputeError):
    """
    Raised by `Retrying` when all transient retry attempts are exhausted.

    Attributes:
        last_exception: The original exception from the last retry attempt.
    """

    def __init__(self, message: str, last_exception: Exception | None = None):
        super().__init__(message)
        self.last_exception = last_exception


class RetryExhaustedError(AssetComputeError):
    """
    Raised by `retry_on_rate_limit()` when the HTTP 429 retry budget is spent.

    This is never the original rate-limit error: callers that branch on
    `TooManyRequestsError` only see it when retries are disabled.

    Attributes:
        attempts: Total number of attempts made (first call included).
        last_exception: The rate-limit error raised by the last attempt.

    Example:
        >>> try:
        ...     client.register()
        ... except RetryExhaustedError as e:
        ...     print(f"Gave up after {e.attempts} attempts: {e.last_exception}")
    """

    def __init__(self, attempts: int, last_exception: Exception):
        super().__init__(f"Gave up after {attempts} attempts: {last_exception}")
        self.attempts = attempts
        self.last_exception = last_exception


# =============================================================================
# HTTP 429 retry engine
# =============================================================================


@dataclass(frozen=True)
class RetryOptions(OverridableConfig):
    """
    Retry budget for a single call.

    Attributes:
        max_attempts: Number of retries granted after rate-limited attempts.
            A call is attempted at most `max_attempts + 1` times.
        disabled: When True, the first rate-limit error is raised as-is.

    Example:
        >>> defaults = RetryOptions()
        >>> per_call = defaults.with_overrides({"max_attempts": 1})
    """

    max_attempts: int = field(default=4)
    disabled: bool = field(default=False)

    def __post_init__(self) -> None:
        assert self.max_attempts is not None, "max_attempts can not be None."
        assert self.max_attempts >= 0, f"max_attempts must be >= 0, got {self.max_attempts}"

    @classmethod
    def from_config(cls) -> RetryOptions:
        """Builds the options from the global `ASSET_COMPUTE.config.retry` section."""
        from assetcompute._config import ASSET_COMPUTE

        cfg = ASSET_COMPUTE.config.retry
        return cls(max_attempts=cfg.max_attempts, disabled=cfg.disabled)


def retry_wait_time(retry_after: int | None) -> float:
    """
    Determine how long to wait before the next attempt.

    Args:
        retry_after: Optional number of seconds suggested by the server.

    Returns:
        Seconds to wait: `retry_after` plus up to 999ms of jitter, or a random
        duration between 30 and 60 seconds when the server gave no hint.
    """
    if retry_after is not None:
        return (retry_after * 1000 + random.randint(0, 999)) / 1000
    return random.randint(MIN_RETRY_WAIT_TIME_MS, MAX_RETRY_WAIT_TIME_MS) / 1000


def should_retry(attempt: int, error: BaseException, options: RetryOptions) -> bool:
    """Returns True only for a rate-limit error with retries enabled and budget left."""
    if options.disabled:
        return False
    if not is_too_many_requests_error(error):
        return False
    return attempt < options.max_attempts


def retry_on_rate_limit(
    operation: Callable[[Any], T],
    context: Any = None,
    options: RetryOptions | None = None,
    sleep: Callable[[float], None] | None = None,
    tracking_id: str | None = None,
) -> T:
    """
    Invokes `operation(context)`, retrying it when it is rate limited (HTTP 429).

    The context is deep-copied on entry and every attempt receives its own
    copy, so neither the caller's later mutations nor a previous attempt's
    in-place changes are observed by a retry.

    Args:
        operation: The callable to invoke; receives a copy of `context`.
        context: Invocation context passed to the operation.
        options: Retry budget; defaults to the global configuration.
        sleep: Callable used to wait between attempts (default: `time.sleep`).
        tracking_id: Identifier used as log prefix.

    Returns:
        Whatever the first successful attempt returned.

    Raises:
        RetryExhaustedError: When the last allowed attempt was rate limited.
        Exception: Any other error raised by the operation, unchanged.
    """
    options = options or RetryOptions.from_config()
    sleep = sleep or time.sleep
    snapshot = deepcopy(context)
    prefix = f"{log_prefix(tracking_id)} " if tracking_id else ""

    attempt = 0
    while True:
        if attempt > 0:
            logger.warning(f"{prefix}Attempting retry {attempt}...")
        try:
            return operation(deepcopy(snapshot))
        except Exception as error:
            if should_retry(attempt, error, options):
                wait_time = retry_wait_time(getattr(error, "retry_after", None))
                logger.warning(
                    f"{prefix}Waiting {wait_time:.3f} seconds to attempt retry {attempt + 1}, failure: {error}"
                )
                sleep(wait_time)
                attempt += 1
                continue

            if is_too_many_requests_error(error) and not options.disabled:
                logger.error(f"{prefix}Gave up after {attempt + 1} attempts. Last error: {error}")
                raise RetryExhaustedError(attempts=attempt + 1, last_exception=error) from error
            raise


# =============================================================================
# Transient failures retry (transport level)
# =============================================================================

# 429 is absent on purpose: rate limits belong to `retry_on_rate_limit()`
TRANSIENT_STATUS_CODES = frozenset({408, 500, 502, 503, 504})


def is_transient_failure(error: BaseException) -> bool:
    """
    Tells whether the transport may simply send the request again.

    True for connection errors, timeouts, HTTP errors carrying a transient
    status and any `RetryableError`.
    """
    if isinstance(error, requests.RequestException):
        response = getattr(error, "response", None)
        if response is not None:
            return response.status_code in TRANSIENT_STATUS_CODES
        return isinstance(error, (requests.Timeout, requests.ConnectionError))
    return isinstance(error, RetryableError)


@dataclass(frozen=True)
class RetryAttempt:
    """
    A single attempt handed out by `Retrying`.

    Attributes:
        attempt_number: Zero-based index of the attempt.
        max_retries: Retries granted after the first attempt.
    """

    attempt_number: int
    max_retries: int

    @property
    def is_last_attempt(self) -> bool:
        return self.attempt_number >= self.max_retries


class Retrying:
    """
    Retry loop for transient transport failures, with exponential backoff.

    Each attempt is a context manager: a transient failure raised inside it
    is swallowed and the loop goes on after `backoff_factor * 2**attempt`
    seconds (jittered). Any other error leaves the loop untouched.

    Example:
        >>> for attempt in Retrying(max_retries=3, backoff_factor=0.5):
        ...     with attempt:
        ...         response = session.post(url, json=payload)
        ...         break

    Args:
        max_retries: Retries after the first attempt; 0 disables retrying and
            lets the original error through.
        backoff_factor: Base of the exponential backoff, in seconds.
        logger_prefix: Prepended to the log lines (method and URL, usually).

    Raises:
        MaxRetriesExceededError: When the last attempt failed transiently.
    """

    def __init__(self, max_retries: int = 3, backoff_factor: float = 0.5, logger_prefix: str = ""):
        assert max_retries >= 0, f"max_retries must be >= 0, got {max_retries}"
        assert backoff_factor > 0, f"backoff_factor must be > 0, got {backoff_factor}"

        self.max_retries = max_retries
        self.backoff_factor = backoff_factor
        self.logger_prefix = logger_prefix

    def __iter__(self) -> Generator[_AttemptScope, None, None]:
        for attempt_number in range(self.max_retries + 1):
            yield _AttemptScope(self, RetryAttempt(attempt_number, self.max_retries))

    def _prefix(self) -> str:
        return f"{self.logger_prefix} | " if self.logger_prefix else ""

    def _backoff(self, attempt: RetryAttempt, error: Exception) -> None:
        delay = self.backoff_factor * (2 ** attempt.attempt_number)
        logger.warning(
            f"{self._prefix()}Attempt {attempt.attempt_number + 1}/{self.max_retries + 1} failed: {error}. "
            f"Retrying in {delay:.1f}s..."
        )
        sleep_with_jitter(delay)

    def _give_up(self, error: Exception) -> None:
        logger.error(f"{self._prefix()}Max retries ({self.max_retries}) exceeded. Last error: {error}")
        raise MaxRetriesExceededError(
            message=f"Max retries exceeded. Last error: {error}",
            last_exception=error,
        ) from error


class _AttemptScope:
    """Context manager deciding what happens to the error raised by one attempt."""

    def __init__(self, retrying: Retrying, attempt: RetryAttempt):
        self._retrying = retrying
        self._attempt = attempt

    def __enter__(self) -> RetryAttempt:
        return self._attempt

    def __exit__(self, exc_type: Any, exc_val: BaseException | None, exc_tb: Any) -> bool:
        if not isinstance(exc_val, Exception) or not is_transient_failure(exc_val):
            return False
        if self._retrying.max_retries == 0:
            return False
        if self._attempt.is_last_attempt:
            self._retrying._give_up(exc_val)
        self._retrying._backoff(self._attempt, exc_val)
        return True
