"""
Authentication providers for the assetcompute SDK.

The main classes are:
- AuthProvider: Source of IMS bearer tokens for every outgoing request.
- StaticTokenAuthProvider: Wraps an access token obtained elsewhere.
- OAuthServerToServerAuthProvider: Adobe IMS client credentials flow, trying each
  configured client secret in order.
- JwtAuthProvider: Adobe IMS JWT exchange for service account integrations.

Example:
    >>> from assetcompute._auth import create_auth_provider
    >>> auth = create_auth_provider(integration)
    >>> headers = auth.get_auth_headers()
    >>> # {"Authorization": "Bearer eyJ..."}
"""

from __future__ import annotations

import logging
import threading
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import override

import jwt
import requests

from assetcompute._errors import AssetComputeError
from assetcompute._integration import Integration, JwtIntegration, OAuthServerToServerIntegration

logger = logging.getLogger(__name__)


# =============================================================================
# Exceptions
# =============================================================================


class AuthenticationError(AssetComputeError):
    """
    IMS refused to issue a token, or could not be reached.

    Attributes:
        message: What went wrong.
        cause: Error raised by the token exchange, when there was one.
    """

    def __init__(self, message: str, cause: Exception | None = None):
        super().__init__(message)
        self.message = message
        self.cause = cause


# =============================================================================
# Data Classes
# =============================================================================


@dataclass
class TokenInfo:
    """
    An IMS access token and the moment it stops being valid.

    Attributes:
        access_token: The IMS access token.
        expires_at: Unix timestamp when the token expires.
    """

    access_token: str
    expires_at: float


# =============================================================================
# Abstract Base Class
# =============================================================================


class AuthProvider(ABC):
    """
    Hands out the bearer token sent with each Asset Compute request.

    Clients share one provider across threads, so `get_access_token()` must be
    safe to call concurrently.
    """

    @abstractmethod
    def get_access_token(self) -> str:
        """
        The raw token, without the `Bearer` scheme.

        Raises:
            AuthenticationError: When no usable token can be produced.
        """

    def get_auth_headers(self) -> dict[str, str]:
        """`Authorization` header for the current token."""
        return {"Authorization": f"Bearer {self.get_access_token()}"}


# =============================================================================
# Implementations
# =============================================================================


class StaticTokenAuthProvider(AuthProvider):
    """Auth provider returning a fixed access token."""

    def __init__(self, access_token: str):
        assert access_token, "access_token cannot be empty"
        self._access_token = access_token

    @override
    def get_access_token(self) -> str:
        return self._access_token


class CachingAuthProvider(AuthProvider):
    """
    Base class for providers that fetch expiring tokens from IMS.

    Features:
        - One token is reused until `refresh_margin` seconds before it expires.
        - Refreshes are serialized by a lock, so concurrent callers trigger a
          single IMS exchange.
    """

    DEFAULT_REFRESH_MARGIN = 60
    DEFAULT_EXPIRES_IN = 86_399

    def __init__(self, ims_endpoint: str, refresh_margin: int = DEFAULT_REFRESH_MARGIN):
        assert ims_endpoint, "ims_endpoint cannot be empty"
        self._ims_endpoint = ims_endpoint.rstrip("/")
        self._refresh_margin = refresh_margin
        self._token: TokenInfo | None = None
        self._lock = threading.Lock()

    @override
    def get_access_token(self) -> str:
        with self._lock:
            if self._is_token_valid():
                assert self._token is not None  # for type checker
                return self._token.access_token

            self._token = self._fetch_new_token()
            return self._token.access_token

    def _is_token_valid(self) -> bool:
        """False when no token was fetched yet or it is inside the refresh margin."""
        if self._token is None:
            return False
        return time.time() < (self._token.expires_at - self._refresh_margin)

    @abstractmethod
    def _fetch_new_token(self) -> TokenInfo:
        pass

    def _token_info_from(self, data: dict) -> TokenInfo:
        """Builds a TokenInfo from an IMS token response (`expires_in` is in milliseconds for v1 endpoints)."""
        if not data or not data.get("access_token"):
            raise AuthenticationError("Unexpected response from IMS")

        expires_in = data.get("expires_in", self.DEFAULT_EXPIRES_IN)
        if expires_in > 10 * self.DEFAULT_EXPIRES_IN:
            expires_in = expires_in / 1000
        return TokenInfo(access_token=data["access_token"], expires_at=time.time() + expires_in)


class OAuthServerToServerAuthProvider(CachingAuthProvider):
    """
    Adobe IMS OAuth Server-to-Server (client credentials) flow.

    Each client secret of the integration is tried in order. A secret rejected
    with `invalid_client` / `invalid client_secret parameter` is skipped with a
    warning; any other failure stops the flow.

    Args:
        integration: The OAuth Server-to-Server integration.
        ims_endpoint: IMS host, such as "https://ims-na1.adobelogin.com".
        session: Optional `requests.Session` used for the token calls.
    """

    def __init__(
        self,
        integration: OAuthServerToServerIntegration,
        ims_endpoint: str,
        session: requests.Session | None = None,
    ):
        super().__init__(ims_endpoint=ims_endpoint)
        assert integration is not None, "integration cannot be None"
        self._integration = integration
        self._session = session or requests.Session()

    @override
    def _fetch_new_token(self) -> TokenInfo:
        integration = self._integration
        url = f"{self._ims_endpoint}/ims/token/v4"
        scopes = ",".join(integration.scopes)

        for index, client_secret in enumerate(integration.client_secrets):
            try:
                response = self._session.post(
                    url,
                    params={"client_id": integration.client_id},
                    data={
                        "client_secret": client_secret,
                        "grant_type": "client_credentials",
                        "scope": scopes,
                    },
                    timeout=30,
                )
            except requests.RequestException as e:
                raise AuthenticationError(f"Unable to create access token: {e}", cause=e) from e

            if response.ok:
                return self._token_info_from(_json_or_empty(response))

            body = _json_or_empty(response)
            if (
                response.status_code == 400
                and body.get("error") == "invalid_client"
                and body.get("error_description") == "invalid client_secret parameter"
            ):
                logger.warning(
                    f"Invalid client_secret (#{index + 1}/{len(integration.client_secrets)}), trying next one"
                )
                continue

            raise AuthenticationError(
                f"Unable to create access token: {response.status_code} {response.reason} {body or response.text}"
            )

        raise AuthenticationError("Unable to create access token, all client_secret tokens failed")


class JwtAuthProvider(CachingAuthProvider):
    """
    Adobe IMS JWT exchange for service account integrations.

    Signs a short-lived RS256 JWT with the technical account's private key,
    carrying one claim per metascope, and exchanges it for an access token.

    Args:
        integration: The JWT integration.
        ims_endpoint: IMS host, such as "https://ims-na1.adobelogin.com".
        session: Optional `requests.Session` used for the token calls.
    """

    JWT_EXPIRATION = 300

    def __init__(
        self,
        integration: JwtIntegration,
        ims_endpoint: str,
        session: requests.Session | None = None,
    ):
        super().__init__(ims_endpoint=ims_endpoint)
        assert integration is not None, "integration cannot be None"
        self._integration = integration
        self._session = session or requests.Session()

    def build_jwt(self, now: float | None = None) -> str:
        """Creates the signed JWT to exchange with IMS."""
        account = self._integration.technical_account
        issued_at = int(now if now is not None else time.time())
        claims: dict[str, object] = {
            "exp": issued_at + self.JWT_EXPIRATION,
            "iss": account.org,
            "sub": account.id,
            "aud": f"{self._ims_endpoint}/c/{account.client_id}",
        }
        for metascope in self._integration.metascopes:
            claims[f"{self._ims_endpoint}/s/{metascope}"] = True

        try:
            return jwt.encode(claims, account.private_key, algorithm="RS256")
        except (ValueError, TypeError, jwt.PyJWTError) as e:
            raise AuthenticationError(f"Unable to sign JWT for technical account {account.id}: {e}", cause=e) from e

    @override
    def _fetch_new_token(self) -> TokenInfo:
        account = self._integration.technical_account
        try:
            response = self._session.post(
                f"{self._ims_endpoint}/ims/exchange/jwt",
                data={
                    "client_id": account.client_id,
                    "client_secret": account.client_secret,
                    "jwt_token": self.build_jwt(),
                },
                timeout=30,
            )
            response.raise_for_status()
            return self._token_info_from(response.json())
        except requests.HTTPError as e:
            raise AuthenticationError(
                f"Failed to obtain access token (HTTP {e.response.status_code}): {e.response.text}",
                cause=e,
            ) from e
        except requests.RequestException as e:
            raise AuthenticationError(f"Failed to obtain access token: {e}", cause=e) from e


def _json_or_empty(response: requests.Response) -> dict:
    try:
        data = response.json()
    except ValueError:
        return {}
    return data if isinstance(data, dict) else {}


# =============================================================================
# Helper Functions
# =============================================================================


def create_auth_provider(integration: Integration, ims_endpoint: str | None = None) -> AuthProvider:
    """
    Create the auth provider matching an integration.

    The IMS endpoint is resolved as: explicit argument > integration's own
    endpoint > `ASSET_COMPUTE.config.auth.ims_endpoint`.

    Args:
        integration: A validated integration.
        ims_endpoint: Optional IMS host override.

    Returns:
        An OAuthServerToServerAuthProvider or a JwtAuthProvider.
    """
    from assetcompute._config import ASSET_COMPUTE

    endpoint = ims_endpoint or integration.ims_endpoint or ASSET_COMPUTE.config.auth.ims_endpoint
    if isinstance(integration, OAuthServerToServerIntegration):
        return OAuthServerToServerAuthProvider(integration=integration, ims_endpoint=endpoint)
    return JwtAuthProvider(integration=integration, ims_endpoint=endpoint)
