"""
Event sources feeding rendition events to the client.

`JournalEventSource` polls the Adobe I/O Events journal returned by
`/register` on a daemon thread:

- HTTP 200: every entry's `event` is delivered, then the `Link: rel="next"`
  URL is followed right away;
- HTTP 204: the journal is drained, the same URL is polled again after the
  `retry-after` header (or the poll interval);
- anything else, including network errors, is reported to `on_error` and
  polling resumes from the same position after the poll interval.

Callbacks run on the polling thread. An exception raised by `on_event` is
reported to `on_error` and never stops the thread.
"""

from __future__ import annotations

import logging
import threading
from abc import ABC, abstractmethod
from collections.abc import Callable
from typing import Any, override
from urllib.parse import urljoin

import requests

from assetcompute._errors import AssetComputeHttpError
from assetcompute._http import HttpClient
from assetcompute._rate_limit import parse_retry_after
from assetcompute._utils import log_prefix, with_jitter

logger = logging.getLogger(__name__)

EventCallback = Callable[[dict[str, Any]], None]
ErrorCallback = Callable[[Exception], None]


class EventSource(ABC):
    """
    Abstract stream of journal events.

    Example:
        >>> class ListEventSource(EventSource):
        ...     def start(self, on_event, on_error):
        ...         for event in self.events:
        ...             on_event(event)
        ...     def close(self):
        ...         pass
    """

    @abstractmethod
    def start(self, on_event: EventCallback, on_error: ErrorCallback) -> None:
        """Starts delivering events. Must not block the caller."""
        pass

    @abstractmethod
    def close(self) -> None:
        """Stops delivering events. Calling it more than once is a no-op."""
        pass


EventSourceFactory = Callable[[str], EventSource]


class JournalEventSource(EventSource):
    """
    Polls an Adobe I/O Events journal on a background thread.

    Args:
        http_client: Authenticated HTTP client.
        journal_url: Journal URL returned by `/register`.
        org: IMS organization id, sent as `x-ims-org-id`.
        api_key: Optional API key, sent as `x-api-key`.
        poll_interval: Seconds between two polls of a drained journal.
        request_timeout: HTTP timeout in seconds.
    """

    def __init__(
        self,
        http_client: HttpClient,
        journal_url: str,
        org: str,
        api_key: str | None = None,
        poll_interval: float = 2.0,
        request_timeout: int = 30,
    ):
        assert http_client is not None, "http_client can not be None."
        assert journal_url, "journal_url can not be empty."
        assert org, "org can not be empty."
        assert poll_interval > 0, "poll_interval must be greater than 0."

        self.http_client = http_client
        self.journal_url = journal_url
        self.org = org
        self.api_key = api_key
        self.poll_interval = poll_interval
        self.request_timeout = request_timeout

        self._stopped = threading.Event()
        self._thread: threading.Thread | None = None
        self._lock = threading.Lock()

    @property
    def running(self) -> bool:
        return self._thread is not None and self._thread.is_alive() and not self._stopped.is_set()

    @override
    def start(self, on_event: EventCallback, on_error: ErrorCallback) -> None:
        with self._lock:
            assert self._thread is None, "Journal event source can only be started once."
            self._thread = threading.Thread(
                target=self._run,
                args=(on_event, on_error),
                name="assetcompute-journal",
                daemon=True,
            )
            self._thread.start()
        logger.info(f"{log_prefix('journal')} Started polling {self.journal_url}")

    @override
    def close(self) -> None:
        if self._stopped.is_set():
            return
        self._stopped.set()

        thread = self._thread
        if thread is not None and thread is not threading.current_thread():
            thread.join(timeout=self.request_timeout)
        logger.info(f"{log_prefix('journal')} Stopped polling {self.journal_url}")

    def headers(self) -> dict[str, str]:
        headers = {"x-ims-org-id": self.org}
        if self.api_key:
            headers["x-api-key"] = self.api_key
        return headers

    def poll_once(self, url: str, on_event: EventCallback, on_error: ErrorCallback) -> tuple[str, float]:
        """
        Reads one page of the journal and delivers its events.

        Returns:
            The URL to poll next and the number of seconds to wait before doing so.

        Raises:
            AssetComputeHttpError: If the journal answers with an unexpected status.
            requests.RequestException: If the HTTP request fails.
        """
        response = self.http_client.get(url, headers=self.headers(), timeout=self.request_timeout)
        assert isinstance(response, requests.Response), \
            f"🌀 Sanity check | Object returned by `get` method is not an instance of `requests.Response`. ({response.__class__})"

        if response.status_code == 204:
            retry_after = parse_retry_after(response.headers.get("retry-after"))
            return url, float(retry_after) if retry_after is not None else self.poll_interval

        if not response.ok:
            raise AssetComputeHttpError(
                f"Unable to poll event journal: {response.status_code} {response.text}",
                status_code=response.status_code,
                body=response.text,
            )

        data = response.json() or {}
        for entry in data.get("events") or []:
            event = entry.get("event") if isinstance(entry, dict) else None
            if event is None:
                continue
            try:
                on_event(event)
            except Exception as e:
                self._report(on_error, e)

        next_link = response.links.get("next", {}).get("url")
        if next_link:
            return urljoin(url, next_link), 0.0
        return url, self.poll_interval

    def _run(self, on_event: EventCallback, on_error: ErrorCallback) -> None:
        url = self.journal_url
        while not self._stopped.is_set():
            try:
                url, delay = self.poll_once(url, on_event, on_error)
            except Exception as e:
                self._report(on_error, e)
                delay = self.poll_interval

            if delay > 0:
                self._stopped.wait(with_jitter(delay))

    def _report(self, on_error: ErrorCallback, error: Exception) -> None:
        try:
            on_error(error)
        except Exception as e:
            logger.warning(f"{log_prefix('journal')} ⚠️ Error callback raised an exception: {e}")
