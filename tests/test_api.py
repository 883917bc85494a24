"""Tests for the low-level Asset Compute API."""

import json
import unittest

import requests

from assetcompute import (
    ApiResponse,
    AssetComputeApi,
    AssetComputeHttpError,
    HttpClient,
    TooManyRequestsError,
)


def make_response(status_code: int, body: object = None, headers: dict | None = None) -> requests.Response:
    response = requests.Response()
    response.status_code = status_code
    response.encoding = "utf-8"
    if body is None:
        response._content = b""
    elif isinstance(body, str):
        response._content = body.encode("utf-8")
    else:
        response._content = json.dumps(body).encode("utf-8")
    response.headers.update(headers or {})
    return response


class RecordingHttpClient(HttpClient):
    """HTTP client answering with queued responses and recording the calls."""

    def __init__(self, *responses: requests.Response):
        self.responses = list(responses)
        self.calls: list[dict] = []

    def get(self, url, headers=None, timeout=30):
        self.calls.append({"method": "GET", "url": url, "headers": headers, "timeout": timeout})
        return self.responses.pop(0)

    def post(self, url, data=None, headers=None, timeout=30):
        self.calls.append({"method": "POST", "url": url, "data": data, "headers": headers, "timeout": timeout})
        return self.responses.pop(0)


class TestApiResponse(unittest.TestCase):
    """Tests for ApiResponse."""

    def test_from_json(self):
        response = ApiResponse.from_json({"requestId": "r1", "journal": "https://journal"})
        self.assertEqual(response.request_id, "r1")
        self.assertEqual(response.journal, "https://journal")
        self.assertEqual(response.raw, {"requestId": "r1", "journal": "https://journal"})

    def test_from_non_object(self):
        response = ApiResponse.from_json(None)
        self.assertIsNone(response.request_id)
        self.assertEqual(response.raw, {})


class TestAssetComputeApi(unittest.TestCase):
    """Tests for AssetComputeApi."""

    def make_api(self, *responses: requests.Response) -> tuple[AssetComputeApi, RecordingHttpClient]:
        http_client = RecordingHttpClient(*responses)
        api = AssetComputeApi(
            http_client=http_client,
            org="org@AdobeOrg",
            api_key="api-key",
            url="https://asset-compute.adobe.io/",
            request_timeout=15,
        )
        return api, http_client

    def test_register(self):
        """Should POST /register with the organization and API key headers."""
        api, http_client = self.make_api(make_response(200, {"requestId": "r1", "journal": "https://journal"}))

        response = api.register()

        self.assertEqual(response.journal, "https://journal")
        call = http_client.calls[0]
        self.assertEqual(call["url"], "https://asset-compute.adobe.io/register")
        self.assertEqual(call["timeout"], 15)
        self.assertEqual(call["headers"]["x-gw-ims-org-id"], "org@AdobeOrg")
        self.assertEqual(call["headers"]["x-ims-org-id"], "org@AdobeOrg")
        self.assertEqual(call["headers"]["x-api-key"], "api-key")
        self.assertIsNone(call["data"])

    def test_process_body(self):
        """Should POST source, renditions and userData."""
        api, http_client = self.make_api(make_response(200, {"requestId": "r2"}))
        renditions = [{"fmt": "png"}]

        response = api.process("https://example.com/a.jpg", renditions, {"key": "value"})

        self.assertEqual(response.request_id, "r2")
        call = http_client.calls[0]
        self.assertEqual(call["url"], "https://asset-compute.adobe.io/process")
        self.assertEqual(call["headers"]["content-type"], "application/json")
        self.assertEqual(call["data"], {
            "source": "https://example.com/a.jpg",
            "renditions": [{"fmt": "png"}],
            "userData": {"key": "value"},
        })

    def test_process_reduces_source_mapping_to_url(self):
        """Should send the `url` of a source given as a mapping."""
        api, http_client = self.make_api(make_response(200, {"requestId": "r3"}))

        api.process({"url": "https://example.com/a.jpg", "name": "a.jpg"}, [{"fmt": "png"}])

        self.assertEqual(http_client.calls[0]["data"]["source"], "https://example.com/a.jpg")

    def test_process_legacy_signature(self):
        """Should treat a list as renditions when no source is given."""
        api, http_client = self.make_api(make_response(200, {"requestId": "r4"}))

        api.process([{"fmt": "png"}], {"key": "value"})

        self.assertEqual(http_client.calls[0]["data"], {
            "source": None,
            "renditions": [{"fmt": "png"}],
            "userData": {"key": "value"},
        })

    def test_unregister_tolerates_empty_body(self):
        """Should not fail when /unregister answers without a JSON body."""
        api, http_client = self.make_api(make_response(200))

        response = api.unregister()

        self.assertIsNone(response.request_id)
        self.assertEqual(http_client.calls[0]["url"], "https://asset-compute.adobe.io/unregister")

    def test_429_becomes_too_many_requests_error(self):
        """Should convert 429 using the retry-after header."""
        api, _ = self.make_api(make_response(429, "Too many requests", headers={"Retry-After": "7"}))

        with self.assertRaises(TooManyRequestsError) as ctx:
            api.process("https://example.com/a.jpg", [{"fmt": "png"}])

        self.assertEqual(ctx.exception.retry_after, 7)
        self.assertEqual(str(ctx.exception), "Unable to invoke /process: 429 Too many requests")

    def test_429_without_header(self):
        """Should leave retry_after unset without retry-after header."""
        api, _ = self.make_api(make_response(429, "Too many requests"))

        with self.assertRaises(TooManyRequestsError) as ctx:
            api.register()

        self.assertIsNone(ctx.exception.retry_after)

    def test_other_errors_keep_status_and_body(self):
        """Should raise AssetComputeHttpError with status and verbatim body."""
        api, _ = self.make_api(make_response(404, '{"message": "not found"}'))

        with self.assertRaises(AssetComputeHttpError) as ctx:
            api.unregister()

        self.assertNotIsInstance(ctx.exception, TooManyRequestsError)
        self.assertEqual(ctx.exception.status_code, 404)
        self.assertEqual(ctx.exception.body, '{"message": "not found"}')
        self.assertEqual(str(ctx.exception), 'Unable to invoke /unregister: 404 {"message": "not found"}')

    def test_requires_org_and_api_key(self):
        """Should validate its settings."""
        with self.assertRaises(AssertionError):
            AssetComputeApi(http_client=RecordingHttpClient(), org="", api_key="key")
        with self.assertRaises(AssertionError):
            AssetComputeApi(http_client=RecordingHttpClient(), org="org", api_key="")
