"""
Low-level access to the Asset Compute endpoints.

`AssetComputeApi` maps the three logical endpoints (`/register`, `/process`,
`/unregister`) onto an `HttpClient` and converts non-2xx answers into errors:
HTTP 429 becomes `TooManyRequestsError` (carrying the `retry-after` header),
everything else becomes `AssetComputeHttpError` with the status and body text.

It performs no retry on rate limits and keeps no state besides its settings.
"""

from __future__ import annotations

import logging
from collections.abc import Mapping, Sequence
from dataclasses import dataclass, field
from typing import Any

import requests

from assetcompute._config import DEFAULT_ASSET_COMPUTE_URL
from assetcompute._errors import AssetComputeHttpError
from assetcompute._http import HttpClient
from assetcompute._rate_limit import TOO_MANY_REQUESTS_ERROR_CODE, TooManyRequestsError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ApiResponse:
    """
    Response of an Asset Compute endpoint.

    Attributes:
        request_id: The request (activation) identifier assigned by the service.
        journal: Journal URL; only returned by `/register`.
        raw: The full JSON body.
    """

    request_id: str | None
    journal: str | None = None
    raw: dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_json(cls, data: Any) -> ApiResponse:
        data = data if isinstance(data, dict) else {}
        return cls(
            request_id=data.get("requestId"),
            journal=data.get("journal"),
            raw=data,
        )


class AssetComputeApi:
    """
    Asset Compute REST API.

    Example:
        >>> api = AssetComputeApi(http_client=client, org="org@AdobeOrg", api_key="client-id")
        >>> journal = api.register().journal
        >>> request_id = api.process(source_url, [{"fmt": "png", "target": target_url}]).request_id

    Args:
        http_client: Authenticated HTTP client.
        org: IMS organization id, sent as `x-gw-ims-org-id` and `x-ims-org-id`.
        api_key: API key, sent as `x-api-key`.
        url: Base URL of the service.
        request_timeout: HTTP timeout in seconds.
    """

    def __init__(
        self,
        http_client: HttpClient,
        org: str,
        api_key: str,
        url: str = DEFAULT_ASSET_COMPUTE_URL,
        request_timeout: int = 30,
    ):
        assert http_client is not None, "http_client can not be None."
        assert org, "org can not be empty."
        assert api_key, "api_key can not be empty."
        assert url, "url can not be empty."

        self.http_client = http_client
        self.org = org
        self.api_key = api_key
        self.url = url.rstrip("/")
        self.request_timeout = request_timeout

    def headers(self) -> dict[str, str]:
        """Organization and API key headers sent with every call."""
        return {
            "x-gw-ims-org-id": self.org,
            "x-ims-org-id": self.org,
            "x-api-key": self.api_key,
        }

    def register(self) -> ApiResponse:
        """Registers I/O events and creates the journal."""
        response = self._post("/register")
        return ApiResponse.from_json(response.json())

    def unregister(self) -> ApiResponse:
        """Removes the I/O events registration and its journal."""
        response = self._post("/unregister")
        return ApiResponse.from_json(_json_or_none(response))

    def process(
        self,
        source: Any,
        renditions: Sequence[Mapping[str, Any]] | None = None,
        user_data: Mapping[str, Any] | None = None,
    ) -> ApiResponse:
        """
        Asynchronously processes an asset. Results arrive as journal events.

        Args:
            source: Source URL, or a mapping whose `url` is used. May be None.
                A list is accepted for the legacy `process(renditions, user_data)` form.
            renditions: Requested renditions.
            user_data: Opaque data echoed back in every event of the request.

        Returns:
            ApiResponse holding the request identifier.
        """
        if isinstance(source, (list, tuple)):
            source, renditions, user_data = None, source, renditions  # type: ignore[assignment]

        if isinstance(source, Mapping):
            source = source.get("url") or source

        body = {
            "source": source,
            "renditions": list(renditions or []),
            "userData": user_data,
        }
        response = self._post("/process", body)
        return ApiResponse.from_json(response.json())

    def _post(self, path: str, body: dict[str, Any] | None = None) -> requests.Response:
        headers = self.headers()
        if body is not None:
            headers["content-type"] = "application/json"

        response = self.http_client.post(
            f"{self.url}{path}",
            data=body,
            headers=headers,
            timeout=self.request_timeout,
        )
        assert isinstance(response, requests.Response), \
            f"🌀 Sanity check | Object returned by `post` method is not an instance of `requests.Response`. ({response.__class__})"

        if response.ok:
            return response

        message = f"Unable to invoke {path}: {response.status_code} {response.text}"
        if response.status_code == TOO_MANY_REQUESTS_ERROR_CODE:
            raise TooManyRequestsError(message, response.headers.get("retry-after"), body=response.text)
        raise AssetComputeHttpError(message, status_code=response.status_code, body=response.text)


def _json_or_none(response: requests.Response) -> Any:
    try:
        return response.json()
    except ValueError:
        return None
