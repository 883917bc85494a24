"""
High-level Asset Compute client.

`AssetComputeClient` drives the `register -> process* -> unregister`
lifecycle, retries rate-limited calls and correlates journal events with the
requests that produced them.

Example:
    >>> from assetcompute import AssetComputeClient, load_integration
    >>> with AssetComputeClient.create(load_integration()) as client:
    ...     response = client.process(
    ...         {"url": "https://example.com/photo.jpg"},
    ...         [{"fmt": "png", "target": "https://example.com/photo.png"}],
    ...     )
    ...     events = client.wait_activation(response.request_id)
    ...     print([event.type for event in events])
"""

from __future__ import annotations

import enum
import logging
import threading
from collections import OrderedDict
from collections.abc import Callable, Mapping, Sequence
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, Self

from ulid import ULID

from assetcompute._api import ApiResponse, AssetComputeApi
from assetcompute._auth import AuthProvider, create_auth_provider
from assetcompute._correlation import (
    PendingWorkCounter,
    RenditionEvent,
    RenditionEventType,
    RequestRecord,
    get_client_id,
    stamp_renditions,
    stamp_user_data,
)
from assetcompute._errors import NotRegisteredError, PendingWorkUnderflowError, ProtocolViolationError
from assetcompute._events import EventBus, Listener, Subscription, Topic
from assetcompute._http import HttpClient, StandaloneHttpClient
from assetcompute._integration import Integration, parse_integration
from assetcompute._journal import EventSource, EventSourceFactory, JournalEventSource
from assetcompute._retry import RetryOptions, retry_on_rate_limit
from assetcompute._utils import log_prefix
from assetcompute._waiting import BoundedWait

if TYPE_CHECKING:
    from assetcompute._config import AssetComputeConfig

logger = logging.getLogger(__name__)

_TOPICS_BY_EVENT_TYPE = {
    RenditionEventType.CREATED: Topic.RENDITION_CREATED,
    RenditionEventType.FAILED: Topic.RENDITION_FAILED,
}

# Outcomes nobody waited for yet, kept for a late `wait_activation()`
UNCLAIMED_RESULTS_LIMIT = 256
# Settled request ids whose late events are dropped
SETTLED_REQUESTS_LIMIT = 1024


class ClientState(enum.StrEnum):
    """
    Lifecycle states of an AssetComputeClient.

    Processing is not a state on its own: `process()` may be called any
    number of times while the client is REGISTERED.
    """

    UNINITIALIZED = "UNINITIALIZED"
    REGISTERED = "REGISTERED"
    UNREGISTERED = "UNREGISTERED"

    def __str__(self) -> str:
        return self.value


@dataclass(frozen=True)
class AssetComputeOptions:
    """
    Configuration options for the AssetComputeClient.

    Fields set to None use values from global config (ASSET_COMPUTE.config).

    Attributes:
        url: Base URL of the Asset Compute service.
        api_key: Overrides the `x-api-key` header (defaults to the integration's client id).
        ims_endpoint: IMS host used to authenticate.
        request_timeout: HTTP timeout in seconds.
        poll_interval: Seconds between two polls of a drained event journal.
        wait_timeout: Default timeout in seconds of `wait()` and `wait_activation()`.
        transport_max_retries: Retries for transient transport failures.
        transport_backoff_factor: Exponential backoff base for transient failures.
        retry: Default HTTP 429 retry budget of register/process/unregister.

    Example:
        >>> options = AssetComputeOptions(wait_timeout=120, retry=RetryOptions(max_attempts=2))
        >>> client = AssetComputeClient(integration, options=options)
    """

    url: str | None = None
    api_key: str | None = None
    ims_endpoint: str | None = None
    request_timeout: int | None = None
    poll_interval: float | None = None
    wait_timeout: float | None = None
    transport_max_retries: int | None = None
    transport_backoff_factor: float | None = None
    retry: RetryOptions | None = None

    def with_defaults_from(self, cfg: AssetComputeConfig) -> AssetComputeOptions:
        """
        Returns a new AssetComputeOptions with None values filled from config.

        `api_key` and `ims_endpoint` stay None when neither the options nor the
        config define them; the integration supplies them later.
        """
        client = cfg.client
        return AssetComputeOptions(
            url=self.url if self.url is not None else client.url,
            api_key=self.api_key if self.api_key is not None else client.api_key,
            ims_endpoint=self.ims_endpoint,
            request_timeout=self.request_timeout if self.request_timeout is not None else client.request_timeout,
            poll_interval=self.poll_interval if self.poll_interval is not None else client.poll_interval,
            wait_timeout=self.wait_timeout if self.wait_timeout is not None else client.wait_timeout,
            transport_max_retries=(
                self.transport_max_retries if self.transport_max_retries is not None else client.transport_max_retries
            ),
            transport_backoff_factor=(
                self.transport_backoff_factor
                if self.transport_backoff_factor is not None
                else client.transport_backoff_factor
            ),
            retry=self.retry if self.retry is not None else RetryOptions(
                max_attempts=cfg.retry.max_attempts,
                disabled=cfg.retry.disabled,
            ),
        )


RetryOverrides = RetryOptions | Mapping[str, Any] | None
RequestOutcome = list[RenditionEvent] | ProtocolViolationError


class AssetComputeClient:
    """
    Synchronous, thread-safe Asset Compute client.

    Blocking calls (`register`, `process`, `unregister`, `wait_activation`,
    `wait`) run on the caller's thread. Journal events are polled on a daemon
    thread opened by the first `process()` after each registration.

    Rate-limited calls (HTTP 429) are retried according to `options.retry`,
    which can be overridden per call with `retry_options`.

    Attributes:
        id: Client identity (ULID), echoed back in every event of this client.
        integration: The validated integration.
        options: The resolved options.
        state: Current lifecycle state.
        journal: Journal URL of the current registration, if any.
    """

    def __init__(
        self,
        integration: Integration | Mapping[str, Any],
        options: AssetComputeOptions | None = None,
        *,
        auth_provider: AuthProvider | None = None,
        http_client: HttpClient | None = None,
        event_source_factory: EventSourceFactory | None = None,
        sleep: Callable[[float], None] | None = None,
    ):
        """
        Initialize the client. No network call is made.

        Args:
            integration: Integration descriptor (mapping or dataclass), validated eagerly.
            options: Client options. If None, uses defaults from global config.
                Partial options are merged with config defaults via with_defaults_from().
            auth_provider: Custom auth provider. If None, one is created from the integration.
            http_client: Custom HTTP client. If None, a StandaloneHttpClient is created.
            event_source_factory: Builds the event source for a journal URL.
                If None, a JournalEventSource polling the journal is used.
            sleep: Callable used to wait between rate-limit retries (default: `time.sleep`).

        Raises:
            IntegrationError: If the integration is missing or incomplete.
        """
        from assetcompute._config import ASSET_COMPUTE

        self.integration: Integration = parse_integration(integration)
        self.options = (options or AssetComputeOptions()).with_defaults_from(ASSET_COMPUTE.config)
        self.id = str(ULID())

        self._auth_provider = auth_provider
        self._http_client = http_client
        self._event_source_factory = event_source_factory or self._default_event_source
        self._sleep = sleep

        self.api: AssetComputeApi | None = None
        self.state = ClientState.UNINITIALIZED
        self.journal: str | None = None

        self._lock = threading.RLock()
        self._bus = EventBus()
        self._pending = PendingWorkCounter()
        self._generation = 0
        self._in_flight = 0
        self._records: dict[str, RequestRecord] = {}
        self._unclaimed: OrderedDict[str, RequestOutcome] = OrderedDict()
        self._settled: OrderedDict[str, None] = OrderedDict()
        self._waiters: dict[str, list[BoundedWait[list[RenditionEvent]]]] = {}
        self._event_source: EventSource | None = None

    @classmethod
    def create(
        cls,
        integration: Integration | Mapping[str, Any],
        options: AssetComputeOptions | None = None,
        **kwargs: Any,
    ) -> Self:
        """
        Builds a client and registers it.

        Raises:
            IntegrationError: If the integration is missing or incomplete.
            Exception: Whatever `register()` raised; no client is returned in that case.
        """
        client = cls(integration, options, **kwargs)
        client.register()
        return client

    # ======================
    # Lifecycle
    # ======================

    @property
    def registered(self) -> bool:
        return self.state == ClientState.REGISTERED

    @property
    def pending_renditions(self) -> int:
        """Renditions submitted by this client whose event has not arrived yet."""
        return self._pending.value

    def initialize(self) -> AssetComputeApi:
        """
        Sets up authentication and the API client. Runs once; later calls are no-ops.

        Raises:
            AuthenticationError: If no access token can be obtained.
        """
        with self._lock:
            if self.api is not None:
                return self.api

            if self._http_client is None:
                if self._auth_provider is None:
                    self._auth_provider = create_auth_provider(self.integration, self.options.ims_endpoint)
                # Fails fast on bad credentials
                self._auth_provider.get_access_token()
                self._http_client = StandaloneHttpClient(
                    auth_provider=self._auth_provider,
                    max_retries=self.options.transport_max_retries,
                    backoff_factor=self.options.transport_backoff_factor,
                )

            self.api = AssetComputeApi(
                http_client=self._http_client,
                org=self.integration.org,
                api_key=self.options.api_key or self.integration.client_id,
                url=self.options.url,
                request_timeout=self.options.request_timeout,
            )
            logger.debug(f"{log_prefix(self.id)} Initialized client for {self.api.url}")
            return self.api

    def register(self, retry_options: RetryOverrides = None) -> ApiResponse:
        """
        Registers I/O events and creates the journal.

        Must be called before the first `process()` and again after `unregister()`.
        A new registration closes the event subscription of the previous one and
        forgets its in-flight requests: `wait_activation()` calls still outstanding
        end by timeout, while a running `wait()` returns since nothing is pending
        anymore.

        Args:
            retry_options: Per-call overrides of the HTTP 429 retry budget.

        Returns:
            The `/register` response, holding the journal URL.
        """
        api = self.initialize()
        response = retry_on_rate_limit(
            lambda _: api.register(),
            options=self._retry_options(retry_options),
            sleep=self._sleep,
            tracking_id=self.id,
        )

        with self._lock:
            previous_source, self._event_source = self._event_source, None
            self.journal = response.journal
            self.state = ClientState.REGISTERED
            self._generation += 1
            self._records.clear()
            self._unclaimed.clear()
            self._settled.clear()
            forgotten = self._pending.reset()

        if previous_source is not None:
            previous_source.close()
        if forgotten > 0:
            self._bus.publish(Topic.DRAINED)
        logger.info(f"{log_prefix(self.id)} Registered, journal={self.journal}")
        return response

    def process(
        self,
        source: Any,
        renditions: Sequence[Mapping[str, Any]] | None = None,
        user_data: Mapping[str, Any] | None = None,
        retry_options: RetryOverrides = None,
    ) -> ApiResponse:
        """
        Asynchronously processes an asset. Results arrive as rendition events.

        Renditions are sent as tagged copies; the caller's objects are not modified.

        Args:
            source: Source URL, or a mapping with its `url`. A list is accepted for
                the legacy `process(renditions, user_data)` form.
            renditions: Requested renditions.
            user_data: Data echoed back in every event of the request.
            retry_options: Per-call overrides of the HTTP 429 retry budget.

        Returns:
            The `/process` response; its `request_id` identifies the request in
            `wait_activation()`.

        Raises:
            NotRegisteredError: If the client is not registered. No network call is made.
        """
        if isinstance(source, (list, tuple)):
            source, renditions, user_data = None, source, renditions  # type: ignore[assignment]

        stamped = stamp_renditions(list(renditions or []))
        context = {
            "source": source,
            "renditions": stamped,
            "user_data": stamp_user_data(user_data, self.id),
        }

        with self._lock:
            if not self.registered or self.api is None:
                raise NotRegisteredError()
            api = self.api
            self._ensure_event_source()
            generation = self._generation
            self._in_flight += 1
            # Counted before the call, so an event beating the response never underflows
            self._pending.add(len(stamped))

        try:
            response = retry_on_rate_limit(
                lambda ctx: api.process(ctx["source"], ctx["renditions"], ctx["user_data"]),
                context=context,
                options=self._retry_options(retry_options),
                sleep=self._sleep,
                tracking_id=self.id,
            )
        except Exception:
            with self._lock:
                self._in_flight -= 1
                # A registration in between already reset the counter
                rolled_back = bool(stamped) and generation == self._generation
                remaining = self._pending.subtract(len(stamped)) if rolled_back else None
            if remaining == 0:
                self._bus.publish(Topic.DRAINED)
            raise

        request_id = response.request_id
        with self._lock:
            self._in_flight -= 1
            if (
                request_id
                and stamped
                and generation == self._generation
                and request_id not in self._unclaimed
                and request_id not in self._settled
            ):
                self._records.setdefault(request_id, RequestRecord(request_id, len(stamped)))
        logger.info(
            f"{log_prefix(response.request_id or self.id)} Processing {len(stamped)} rendition(s) "
            f"(pending={self._pending.value})"
        )
        return response

    def unregister(self, retry_options: RetryOverrides = None) -> ApiResponse:
        """
        Removes the I/O events registration and its journal.

        The network call is always attempted, even without a prior `register()`;
        the service's error (such as a 404) then propagates unchanged.

        Args:
            retry_options: Per-call overrides of the HTTP 429 retry budget.
        """
        api = self.initialize()
        response = retry_on_rate_limit(
            lambda _: api.unregister(),
            options=self._retry_options(retry_options),
            sleep=self._sleep,
            tracking_id=self.id,
        )

        with self._lock:
            self.state = ClientState.UNREGISTERED
            source, self._event_source = self._event_source, None
        if source is not None:
            source.close()
        logger.info(f"{log_prefix(self.id)} Unregistered")
        return response

    def close(self) -> None:
        """Stops the event subscription. Does not change the registration state."""
        with self._lock:
            source, self._event_source = self._event_source, None
        if source is not None:
            source.close()

    def __enter__(self) -> Self:
        return self

    def __exit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        self.close()

    def is_event_journal_ready(self) -> bool:
        """Returns True if the journal of the current registration can be read."""
        if not self.journal:
            return False
        try:
            self.initialize()
            assert self._http_client is not None
            response = self._http_client.get(
                self.journal,
                headers={"x-ims-org-id": self.integration.org},
                timeout=self.options.request_timeout,
            )
        except Exception as e:
            logger.debug(f"{log_prefix(self.id)} Event journal is not ready: {e}")
            return False
        return bool(response.ok)

    # ======================
    # Waiting
    # ======================

    def wait_activation(self, request_id: str, timeout: float | None = None) -> list[RenditionEvent]:
        """
        Waits for every rendition event of a request.

        Several callers may wait on the same request; all of them get the result.
        A request that completed before anyone waited keeps its result for the
        first later caller only, and only for the most recent requests
        (see `UNCLAIMED_RESULTS_LIMIT`). Once the result was handed out or the
        wait timed out, the request is forgotten and late events are ignored.

        Args:
            request_id: The identifier returned by `process()`.
            timeout: Seconds to wait (default: `options.wait_timeout`).

        Returns:
            The events, in the order of the renditions passed to `process()`.

        Raises:
            ProtocolViolationError: On a malformed or duplicate event for this request.
            WaitTimeoutError: If not every event arrived in time. Partial results are discarded.
        """
        assert request_id, "Request ID can not be empty."
        timeout = timeout if timeout is not None else self.options.wait_timeout
        waiter: BoundedWait[list[RenditionEvent]] = BoundedWait(timeout, description=f"Request {request_id}")

        with self._lock:
            outcome = self._unclaimed.pop(request_id, None)
            if outcome is None:
                self._waiters.setdefault(request_id, []).append(waiter)

        if isinstance(outcome, ProtocolViolationError):
            waiter.reject(outcome)
        elif outcome is not None:
            waiter.resolve(outcome)
        waiter.on_settle(lambda: self._release(request_id, waiter))

        return waiter.result()

    def wait(self, timeout: float | None = None) -> None:
        """
        Waits until no rendition of this client is pending.

        Returns immediately when nothing is pending.

        Raises:
            PendingWorkUnderflowError: If the pending counter went negative.
            WaitTimeoutError: If renditions are still pending after `timeout` seconds.
        """
        timeout = timeout if timeout is not None else self.options.wait_timeout

        pending = self._pending.value
        if pending < 0:
            raise PendingWorkUnderflowError(pending)
        if pending == 0:
            return

        waiter: BoundedWait[None] = BoundedWait(timeout, description=f"Waiting for {pending} pending rendition(s)")
        subscription = self._bus.subscribe(Topic.DRAINED, lambda _: waiter.resolve(None))
        waiter.on_settle(subscription.cancel)
        # Drained between the first check and the subscription
        if self._pending.value <= 0:
            waiter.resolve(None)
        waiter.result()

    def subscribe(self, topic: Topic | str, listener: Listener) -> Subscription:
        """
        Registers a callback for client events.

        Topics:
            - `rendition_created` / `rendition_failed`: receives a RenditionEvent.
            - `error`: receives the exception (journal polling failures, pending
              counter underflow). When nobody listens, errors are logged.
            - `drained`: fired when no rendition is pending anymore.

        Callbacks run on the journal polling thread and must not block.

        Returns:
            A Subscription; call `cancel()` to remove the callback.
        """
        return self._bus.subscribe(Topic(topic), listener)

    # ======================
    # Event dispatch (journal thread)
    # ======================

    def _on_journal_event(self, raw: dict[str, Any]) -> None:
        if get_client_id(raw) != self.id:
            return

        event = RenditionEvent(raw=raw)
        topic = _TOPICS_BY_EVENT_TYPE.get(event.type)
        if topic is None:
            logger.debug(f"{log_prefix(self.id)} Ignoring event of type {raw.get('type')!r}")
            return

        remaining = self._pending.complete_one()
        self._correlate(event)
        self._bus.publish(topic, event)

        if remaining == 0:
            self._bus.publish(Topic.DRAINED)
        elif remaining < 0:
            self._on_journal_error(PendingWorkUnderflowError(remaining))

    def _on_journal_error(self, error: Exception) -> None:
        if self._bus.publish(Topic.ERROR, error) == 0:
            logger.warning(f"{log_prefix(self.id)} Error polling event journal: {error}")

    def _correlate(self, event: RenditionEvent) -> None:
        request_id = event.request_id
        if not request_id:
            logger.warning(f"{log_prefix(self.id)} ⚠️ Rendition event without requestId: {event}")
            return

        outcome: RequestOutcome
        with self._lock:
            if request_id in self._settled or request_id in self._unclaimed:
                logger.debug(f"{log_prefix(request_id)} Ignoring late event: {event}")
                return
            record = self._records.get(request_id)
            try:
                if record is None:
                    if self._in_flight == 0:
                        logger.debug(f"{log_prefix(request_id)} Ignoring event of an unknown request: {event}")
                        return
                    # The event beat the `/process` response
                    _, length = event.correlation()
                    record = self._records[request_id] = RequestRecord(request_id, length)
                if not record.fill(event):
                    return
                outcome = record.events()
            except ProtocolViolationError as e:
                outcome = e

            self._records.pop(request_id, None)
            waiters = self._waiters.pop(request_id, [])
            if waiters:
                self._remember_settled(request_id)
            else:
                self._keep_unclaimed(request_id, outcome)

        if isinstance(outcome, ProtocolViolationError):
            logger.warning(f"{log_prefix(request_id)} ⚠️ {outcome}")
            for waiter in waiters:
                waiter.reject(outcome)
        else:
            logger.info(f"{log_prefix(request_id)} ✅ All {len(outcome)} rendition event(s) received")
            for waiter in waiters:
                waiter.resolve(outcome)

    def _release(self, request_id: str, waiter: BoundedWait[list[RenditionEvent]]) -> None:
        """Detaches a settled waiter; the request is forgotten once its last waiter is gone."""
        with self._lock:
            waiters = self._waiters.get(request_id)
            if waiters is not None:
                if waiter in waiters:
                    waiters.remove(waiter)
                if waiters:
                    return
                del self._waiters[request_id]
            self._records.pop(request_id, None)
            self._unclaimed.pop(request_id, None)
            self._remember_settled(request_id)

    def _keep_unclaimed(self, request_id: str, outcome: RequestOutcome) -> None:
        """Buffers an outcome for a later `wait_activation()`. Caller holds the lock."""
        self._unclaimed[request_id] = outcome
        while len(self._unclaimed) > UNCLAIMED_RESULTS_LIMIT:
            evicted, _ = self._unclaimed.popitem(last=False)
            logger.debug(f"{log_prefix(evicted)} Dropping unclaimed result")
            self._remember_settled(evicted)

    def _remember_settled(self, request_id: str) -> None:
        """Caller holds the lock."""
        self._settled[request_id] = None
        self._settled.move_to_end(request_id)
        while len(self._settled) > SETTLED_REQUESTS_LIMIT:
            self._settled.popitem(last=False)

    # ======================
    # Helpers
    # ======================

    def _ensure_event_source(self) -> None:
        """Opens the event subscription of the current journal. Caller holds the lock."""
        if self._event_source is not None:
            return
        assert self.journal, "🌀 Sanity check | Journal URL not available while registered."

        source = self._event_source_factory(self.journal)
        self._event_source = source
        source.start(self._on_journal_event, self._on_journal_error)

    def _default_event_source(self, journal: str) -> EventSource:
        assert self._http_client is not None, "🌀 Sanity check | HTTP client not initialized."
        return JournalEventSource(
            http_client=self._http_client,
            journal_url=journal,
            org=self.integration.org,
            api_key=self.options.api_key or self.integration.client_id,
            poll_interval=self.options.poll_interval,
            request_timeout=self.options.request_timeout,
        )

    def _retry_options(self, overrides: RetryOverrides) -> RetryOptions:
        if isinstance(overrides, RetryOptions):
            return overrides
        assert self.options.retry is not None, "🌀 Sanity check | Retry options not resolved."
        return self.options.retry.with_overrides(dict(overrides) if overrides else None)

    def __repr__(self) -> str:
        return f"AssetComputeClient(id={self.id!r}, state={self.state}, pending={self.pending_renditions})"
