"""
Global configuration for the assetcompute SDK.

Every setting has a working default, so nothing needs configuring up front.
Call ASSET_COMPUTE.configure() once at startup to change the process-wide
values that every new client picks up.

Where a value comes from, first match wins:
1. AssetComputeOptions passed to the client constructor
2. Values set via ASSET_COMPUTE.configure()
3. Environment variables (ASSET_COMPUTE_*) - when allow_env_override=True
4. Hardcoded defaults (in dataclass fields)

Example:
    >>> from assetcompute import ASSET_COMPUTE
    >>>
    >>> # defaults already merged with ASSET_COMPUTE_* variables
    >>> timeout = ASSET_COMPUTE.config.client.wait_timeout
    >>>
    >>> # point every client at stage
    >>> ASSET_COMPUTE.configure(
    ...     client={"url": "https://asset-compute-stage.adobe.io"},
    ...     retry={"max_attempts": 2},
    ... )
"""

from __future__ import annotations

import os
from collections.abc import Callable
from dataclasses import dataclass, field, fields, replace
from typing import Any, Self

DEFAULT_ASSET_COMPUTE_URL = "https://asset-compute.adobe.io"
DEFAULT_IMS_ENDPOINT = "https://ims-na1.adobelogin.com"


# =============================================================================
# Exceptions
# =============================================================================


class ConfigEnvVarError(ValueError):
    """Raised when an environment variable has an invalid value."""

    def __init__(
        self,
        env_var: str,
        value: str,
        expected_type: str,
        cause: Exception | None = None,
    ):
        self.env_var = env_var
        self.value = value
        self.expected_type = expected_type
        super().__init__(f"Invalid value for {env_var}: '{value}' (expected {expected_type})")
        self.__cause__ = cause


class ConfigValidationError(ValueError):
    """Raised when a configuration value fails validation."""

    def __init__(
        self,
        field: str,
        value: Any,
        message: str,
        section: str | None = None,
    ):
        self.field = field
        self.value = value
        self.section = section
        prefix = f"[{section}] " if section else ""
        super().__init__(f"{prefix}Invalid value for '{field}': {value!r}. {message}")


# =============================================================================
# Environment Variables
# =============================================================================


class EnvVars:
    """
    Typed access to `ASSET_COMPUTE_*` environment variables.

    Example:
        >>> EnvVars.get("ASSET_COMPUTE_RETRY_MAX_ATTEMPTS", type_hint=int)
        4
        >>> EnvVars.get("UNDEFINED_VAR")
        None
    """

    @staticmethod
    def get(
        var_name: str,
        type_hint: Any = str,
        converter: Callable[[str], Any] | None = None,
    ) -> Any:
        """
        Look up `var_name` and convert it.

        Args:
            var_name: Variable to read.
            type_hint: Field type; picks int, float, bool or str conversion.
            converter: Explicit conversion, wins over `type_hint`.

        Returns:
            The converted value; None when the variable is unset or blank.

        Raises:
            ConfigEnvVarError: If the value cannot be converted.
        """
        raw_value = os.environ.get(var_name)
        if not raw_value:
            return None

        actual_converter = converter or EnvVars._infer_converter(type_hint)
        try:
            return actual_converter(raw_value)
        except (ValueError, TypeError) as e:
            raise ConfigEnvVarError(
                env_var=var_name,
                value=raw_value,
                expected_type=type_hint.__name__ if hasattr(type_hint, "__name__") else str(type_hint),
                cause=e,
            ) from e

    @staticmethod
    def _infer_converter(type_hint: Any) -> Callable[[str], Any]:
        """Maps a field type, or its postponed string form, to a converter."""
        type_str = str(type_hint)

        if type_hint is int or type_str == "int":
            return int
        if type_hint is float or type_str == "float":
            return float
        if type_hint is bool or type_str == "bool":
            return lambda v: v.lower() in ("true", "1", "yes")
        return str


# =============================================================================
# Base Class
# =============================================================================


@dataclass(frozen=True)
class OverridableConfig:
    """
    Mixin for the frozen config sections.

    Sections are never mutated: `with_overrides()` and `with_env_vars()` hand
    back a copy, and a misspelled field name fails loudly instead of being
    ignored.

    Example:
        >>> config = RetryConfig()
        >>> custom = config.with_overrides({"max_attempts": 1})
        >>> custom.max_attempts
        1
    """

    def with_overrides(
        self,
        overrides: dict[str, Any] | None,
        allow_none_fields: set[str] | None = None,
    ) -> Self:
        """
        Copy of this section with `overrides` applied.

        Args:
            overrides: Field name to value. None values are skipped unless
                the field is listed in `allow_none_fields`.
            allow_none_fields: Fields that may be explicitly cleared.

        Raises:
            ValueError: On a field name the section does not declare.
        """
        if not overrides:
            return self

        valid_fields = {f.name for f in fields(self)}
        invalid_fields = set(overrides.keys()) - valid_fields

        if invalid_fields:
            raise ValueError(
                f"Unknown config fields: {invalid_fields}. "
                f"Valid fields are: {valid_fields}"
            )

        allow_none = allow_none_fields or set()
        filtered = {k: v for k, v in overrides.items() if v is not None or k in allow_none}
        return replace(self, **filtered) if filtered else self

    def with_env_vars(self) -> Self:
        """
        Copy of this section with the `env` variables from field metadata applied.

        Raises:
            ConfigEnvVarError: If an env var has an invalid value.
        """
        overrides: dict[str, Any] = {}
        for f in fields(self):
            env_var = f.metadata.get("env")
            if env_var:
                value = EnvVars.get(
                    var_name=env_var,
                    type_hint=f.type,
                    converter=f.metadata.get("converter"),
                )
                if value is not None:
                    overrides[f.name] = value
        return self.with_overrides(overrides)


# =============================================================================
# Configuration Dataclasses
# =============================================================================


@dataclass(frozen=True)
class AuthConfig(OverridableConfig):
    """
    Authentication configuration.

    Attributes:
        ims_endpoint: Adobe IMS host used to exchange credentials for an access token.
            The integration's own `imsEndpoint` takes precedence when present.
            Env var: ASSET_COMPUTE_IMS_ENDPOINT
    """

    ims_endpoint: str = field(default=DEFAULT_IMS_ENDPOINT, metadata={"env": "ASSET_COMPUTE_IMS_ENDPOINT"})

    def validate(self) -> Self:
        """Validate auth configuration fields."""
        if not _is_http_url(self.ims_endpoint):
            raise ConfigValidationError(
                "ims_endpoint", self.ims_endpoint,
                "Must start with 'http://' or 'https://'.", section="auth"
            )
        return self


@dataclass(frozen=True)
class ClientConfig(OverridableConfig):
    """
    Configuration for AssetComputeClient instances.

    Attributes:
        url: Base URL of the Asset Compute service.
            Env var: ASSET_COMPUTE_URL

        api_key: Overrides the API key sent as `x-api-key`. Only meant for non-production
            environments; defaults to the integration's client id.
            Env var: ASSET_COMPUTE_API_KEY

        request_timeout: HTTP request timeout in seconds for every API call.
            Env var: ASSET_COMPUTE_REQUEST_TIMEOUT

        poll_interval: Seconds to wait between two polls of an empty event journal.
            Env var: ASSET_COMPUTE_POLL_INTERVAL

        wait_timeout: Default number of seconds `wait()` and `wait_activation()` block.
            Env var: ASSET_COMPUTE_WAIT_TIMEOUT

        transport_max_retries: Retries for transient transport failures
            (connection errors, timeouts, 408 and 5xx). HTTP 429 is not covered here.
            Env var: ASSET_COMPUTE_TRANSPORT_MAX_RETRIES

        transport_backoff_factor: Exponential backoff base for transient failures.
            Env var: ASSET_COMPUTE_TRANSPORT_BACKOFF_FACTOR
    """

    url: str = field(default=DEFAULT_ASSET_COMPUTE_URL, metadata={"env": "ASSET_COMPUTE_URL"})
    api_key: str | None = field(default=None, metadata={"env": "ASSET_COMPUTE_API_KEY"})
    request_timeout: int = field(default=30, metadata={"env": "ASSET_COMPUTE_REQUEST_TIMEOUT"})
    poll_interval: float = field(default=2.0, metadata={"env": "ASSET_COMPUTE_POLL_INTERVAL"})
    wait_timeout: float = field(default=60.0, metadata={"env": "ASSET_COMPUTE_WAIT_TIMEOUT"})
    transport_max_retries: int = field(default=3, metadata={"env": "ASSET_COMPUTE_TRANSPORT_MAX_RETRIES"})
    transport_backoff_factor: float = field(default=0.5, metadata={"env": "ASSET_COMPUTE_TRANSPORT_BACKOFF_FACTOR"})

    def validate(self) -> Self:
        """Validate client configuration fields."""
        if not _is_http_url(self.url):
            raise ConfigValidationError(
                "url", self.url,
                "Must start with 'http://' or 'https://'.", section="client"
            )
        if self.api_key is not None and self.api_key == "":
            raise ConfigValidationError(
                "api_key", self.api_key,
                "Must not be empty string.", section="client"
            )
        if self.request_timeout <= 0:
            raise ConfigValidationError(
                "request_timeout", self.request_timeout,
                "Must be greater than 0.", section="client"
            )
        if self.poll_interval <= 0:
            raise ConfigValidationError(
                "poll_interval", self.poll_interval,
                "Must be greater than 0.", section="client"
            )
        if self.wait_timeout <= 0:
            raise ConfigValidationError(
                "wait_timeout", self.wait_timeout,
                "Must be greater than 0.", section="client"
            )
        if self.transport_max_retries < 0:
            raise ConfigValidationError(
                "transport_max_retries", self.transport_max_retries,
                "Must be >= 0.", section="client"
            )
        if self.transport_backoff_factor <= 0:
            raise ConfigValidationError(
                "transport_backoff_factor", self.transport_backoff_factor,
                "Must be greater than 0.", section="client"
            )
        return self


@dataclass(frozen=True)
class RetryConfig(OverridableConfig):
    """
    Defaults for the HTTP 429 retry budget of register/process/unregister.

    Attributes:
        max_attempts: Number of retries granted after a rate-limited attempt.
            With 4, a call is attempted at most 5 times.
            Env var: ASSET_COMPUTE_RETRY_MAX_ATTEMPTS

        disabled: Disables retries on HTTP 429; the rate-limit error is raised as-is.
            Env var: ASSET_COMPUTE_RETRY_DISABLED
    """

    max_attempts: int = field(default=4, metadata={"env": "ASSET_COMPUTE_RETRY_MAX_ATTEMPTS"})
    disabled: bool = field(default=False, metadata={"env": "ASSET_COMPUTE_RETRY_DISABLED"})

    def validate(self) -> Self:
        """Validate retry configuration fields."""
        if self.max_attempts < 0:
            raise ConfigValidationError(
                "max_attempts", self.max_attempts,
                "Must be >= 0.", section="retry"
            )
        return self


def _is_http_url(value: str | None) -> bool:
    return value is not None and value.startswith(("http://", "https://"))


@dataclass(frozen=True)
class AssetComputeConfig:
    """
    Root configuration aggregating every section.

    Attributes:
        auth: Authentication settings.
        client: Client and transport settings.
        retry: HTTP 429 retry defaults.
    """

    auth: AuthConfig = field(default_factory=AuthConfig)
    client: ClientConfig = field(default_factory=ClientConfig)
    retry: RetryConfig = field(default_factory=RetryConfig)

    def with_env_vars(self) -> AssetComputeConfig:
        """Return a new config with environment variables applied to every section."""
        return AssetComputeConfig(
            auth=self.auth.with_env_vars(),
            client=self.client.with_env_vars(),
            retry=self.retry.with_env_vars(),
        )

    def with_section_overrides(
        self,
        auth: dict[str, Any] | None = None,
        client: dict[str, Any] | None = None,
        retry: dict[str, Any] | None = None,
    ) -> AssetComputeConfig:
        """Return a new config with per-section overrides applied."""
        return AssetComputeConfig(
            auth=self.auth.with_overrides(auth),
            client=self.client.with_overrides(client, allow_none_fields={"api_key"}),
            retry=self.retry.with_overrides(retry),
        )


# =============================================================================
# Global Configuration Singleton
# =============================================================================


class _AssetComputeSettings:
    """
    Singleton for SDK configuration.

    Use `ASSET_COMPUTE.configure()` to customize settings and `ASSET_COMPUTE.config`
    to access current configuration.

    Example:
        >>> from assetcompute import ASSET_COMPUTE
        >>> ASSET_COMPUTE.configure(retry={"disabled": True})
        >>> print(ASSET_COMPUTE.config.client.url)
    """

    def __init__(self) -> None:
        self._config: AssetComputeConfig = AssetComputeConfig().with_env_vars()

    def configure(
        self,
        *,
        auth: dict[str, Any] | None = None,
        client: dict[str, Any] | None = None,
        retry: dict[str, Any] | None = None,
        allow_env_override: bool = True,
    ) -> AssetComputeConfig:
        """
        Configure SDK settings.

        Args:
            auth: Authentication config overrides (ims_endpoint).
            client: Client config overrides (url, timeouts, polling).
            retry: HTTP 429 retry overrides (max_attempts, disabled).
            allow_env_override: If True (default), env vars are used as fallback
                for fields NOT provided. If False, ignores env vars entirely.

        Returns:
            The configured AssetComputeConfig instance.

        Raises:
            ValueError: If any dict contains unknown field names.
            ConfigValidationError: If any config value fails validation.
        """
        base = AssetComputeConfig()
        if allow_env_override:
            base = base.with_env_vars()

        self._config = base.with_section_overrides(
            auth=auth,
            client=client,
            retry=retry,
        )
        return self.validate()

    @property
    def config(self) -> AssetComputeConfig:
        """Access current configuration (read-only)."""
        return self._config

    def reset(self) -> AssetComputeConfig:
        """
        Reset configuration to defaults + env vars.

        Useful for testing to ensure clean state between tests.
        """
        self._config = AssetComputeConfig().with_env_vars()
        return self.validate()

    def validate(self) -> AssetComputeConfig:
        """
        Validate current configuration.

        Raises:
            ConfigValidationError: If any config value is invalid.
        """
        self._config.auth.validate()
        self._config.client.validate()
        self._config.retry.validate()
        return self._config

    def __repr__(self) -> str:
        return f"ASSET_COMPUTE(config={self._config!r})"


# Global singleton instance - always reflects current configuration
ASSET_COMPUTE: _AssetComputeSettings = _AssetComputeSettings()
ASSET_COMPUTE.validate()
