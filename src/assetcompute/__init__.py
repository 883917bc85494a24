"""
Adobe Asset Compute client for Python.

Drives the Asset Compute service (`/register`, `/process`, `/unregister`) and
correlates the rendition events of its I/O Events journal with the requests
that produced them.

Quick Start:
    >>> from assetcompute import AssetComputeClient, IntegrationSource, load_integration
    >>> integration = load_integration(IntegrationSource(integration_file="integration.yaml"))
    >>> with AssetComputeClient.create(integration) as client:
    ...     response = client.process(
    ...         {"url": "https://example.com/photo.jpg"},
    ...         [{"fmt": "png", "target": "https://example.com/photo.png"}],
    ...     )
    ...     events = client.wait_activation(response.request_id)

Global Configuration:
    >>> from assetcompute import ASSET_COMPUTE
    >>>
    >>> # Pre-loaded with defaults + env vars
    >>> timeout = ASSET_COMPUTE.config.client.wait_timeout
    >>>
    >>> # Custom configuration
    >>> ASSET_COMPUTE.configure(
    ...     client={"url": "https://asset-compute-stage.adobe.io", "wait_timeout": 120},
    ...     retry={"max_attempts": 2},
    ... )

Main Classes:
    - AssetComputeClient: High-level client (lifecycle, retries, event correlation).
    - AssetComputeOptions: Per-client options.
    - AssetComputeApi: Low-level access to the three endpoints.
    - RenditionEvent: A `rendition_created` / `rendition_failed` event.

Integration:
    - load_integration / IntegrationSource: Load an integration from disk.
    - parse_integration: Validate an integration descriptor.
    - convert_integration: Convert a Developer Console export to YAML.

Errors:
    - AssetComputeError: Base class of every SDK error.
    - TooManyRequestsError, RetryExhaustedError, AssetComputeHttpError,
      NotRegisteredError, ProtocolViolationError, WaitTimeoutError,
      PendingWorkUnderflowError, IntegrationError, AuthenticationError.
"""

from importlib.metadata import version as _get_version

__version__ = _get_version("asset-compute-client")

from assetcompute._api import ApiResponse, AssetComputeApi
from assetcompute._auth import (
    AuthenticationError,
    AuthProvider,
    JwtAuthProvider,
    OAuthServerToServerAuthProvider,
    StaticTokenAuthProvider,
    create_auth_provider,
)
from assetcompute._client import AssetComputeClient, AssetComputeOptions, ClientState
from assetcompute._config import (
    ASSET_COMPUTE,
    AssetComputeConfig,
    AuthConfig,
    ClientConfig,
    ConfigEnvVarError,
    ConfigValidationError,
    RetryConfig,
)
from assetcompute._correlation import RenditionEvent, RenditionEventType
from assetcompute._errors import (
    AssetComputeError,
    AssetComputeHttpError,
    NotRegisteredError,
    PendingWorkUnderflowError,
    ProtocolViolationError,
    WaitTimeoutError,
)
from assetcompute._events import Subscription, Topic
from assetcompute._http import HttpClient, StandaloneHttpClient
from assetcompute._integration import (
    IntegrationError,
    IntegrationSource,
    JwtIntegration,
    OAuthServerToServerIntegration,
    TechnicalAccount,
    convert_integration,
    load_integration,
    parse_integration,
)
from assetcompute._journal import EventSource, JournalEventSource
from assetcompute._rate_limit import TooManyRequestsError
from assetcompute._retry import (
    MaxRetriesExceededError,
    RetryableError,
    RetryExhaustedError,
    RetryOptions,
    Retrying,
    retry_on_rate_limit,
)

__all__ = [
    "__version__",
    # Client
    "AssetComputeClient",
    "AssetComputeOptions",
    "ClientState",
    "AssetComputeApi",
    "ApiResponse",
    "RenditionEvent",
    "RenditionEventType",
    "Topic",
    "Subscription",
    # Configuration
    "ASSET_COMPUTE",
    "AssetComputeConfig",
    "AuthConfig",
    "ClientConfig",
    "RetryConfig",
    "ConfigEnvVarError",
    "ConfigValidationError",
    # Integration
    "IntegrationError",
    "IntegrationSource",
    "JwtIntegration",
    "OAuthServerToServerIntegration",
    "TechnicalAccount",
    "convert_integration",
    "load_integration",
    "parse_integration",
    # Authentication
    "AuthProvider",
    "StaticTokenAuthProvider",
    "OAuthServerToServerAuthProvider",
    "JwtAuthProvider",
    "AuthenticationError",
    "create_auth_provider",
    # HTTP Client
    "HttpClient",
    "StandaloneHttpClient",
    # Event sources
    "EventSource",
    "JournalEventSource",
    # Retry
    "RetryOptions",
    "retry_on_rate_limit",
    "Retrying",
    "RetryableError",
    "MaxRetriesExceededError",
    "RetryExhaustedError",
    # Errors
    "AssetComputeError",
    "AssetComputeHttpError",
    "TooManyRequestsError",
    "NotRegisteredError",
    "ProtocolViolationError",
    "WaitTimeoutError",
    "PendingWorkUnderflowError",
]
