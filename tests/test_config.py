"""Tests for global configuration module."""

import os
import unittest
from unittest.mock import patch

from assetcompute import (
    ASSET_COMPUTE,
    AssetComputeConfig,
    AuthConfig,
    ClientConfig,
    ConfigEnvVarError,
    ConfigValidationError,
    RetryConfig,
)
from assetcompute._config import EnvVars


class TestDefaults(unittest.TestCase):
    """Tests for default configuration values."""

    def setUp(self):
        ASSET_COMPUTE.reset()

    def tearDown(self):
        ASSET_COMPUTE.reset()

    def test_client_defaults(self):
        """Should return sensible defaults for client config."""
        client = ASSET_COMPUTE.config.client
        self.assertEqual(client.url, "https://asset-compute.adobe.io")
        self.assertIsNone(client.api_key)
        self.assertEqual(client.request_timeout, 30)
        self.assertEqual(client.poll_interval, 2.0)
        self.assertEqual(client.wait_timeout, 60.0)
        self.assertEqual(client.transport_max_retries, 3)
        self.assertEqual(client.transport_backoff_factor, 0.5)

    def test_retry_defaults(self):
        """Should allow 4 retries (5 attempts) by default."""
        self.assertEqual(ASSET_COMPUTE.config.retry.max_attempts, 4)
        self.assertFalse(ASSET_COMPUTE.config.retry.disabled)

    def test_auth_defaults(self):
        self.assertEqual(ASSET_COMPUTE.config.auth.ims_endpoint, "https://ims-na1.adobelogin.com")


class TestConfigure(unittest.TestCase):
    """Tests for ASSET_COMPUTE.configure() method."""

    def setUp(self):
        ASSET_COMPUTE.reset()

    def tearDown(self):
        ASSET_COMPUTE.reset()

    def test_client_values(self):
        ASSET_COMPUTE.configure(client={"url": "https://asset-compute-stage.adobe.io", "wait_timeout": 120})

        self.assertEqual(ASSET_COMPUTE.config.client.url, "https://asset-compute-stage.adobe.io")
        self.assertEqual(ASSET_COMPUTE.config.client.wait_timeout, 120)
        self.assertEqual(ASSET_COMPUTE.config.client.request_timeout, 30)

    def test_retry_values(self):
        ASSET_COMPUTE.configure(retry={"max_attempts": 1, "disabled": True})

        self.assertEqual(ASSET_COMPUTE.config.retry.max_attempts, 1)
        self.assertTrue(ASSET_COMPUTE.config.retry.disabled)

    def test_returns_config(self):
        result = ASSET_COMPUTE.configure(auth={"ims_endpoint": "https://ims-stage"})

        self.assertIsInstance(result, AssetComputeConfig)
        self.assertIs(result, ASSET_COMPUTE.config)

    def test_unknown_field_raises(self):
        with self.assertRaises(ValueError) as ctx:
            ASSET_COMPUTE.configure(client={"wait_timout": 10})

        self.assertIn("wait_timout", str(ctx.exception))

    def test_invalid_value_raises(self):
        with self.assertRaises(ConfigValidationError) as ctx:
            ASSET_COMPUTE.configure(client={"url": "ftp://nope"})

        self.assertEqual(ctx.exception.section, "client")
        self.assertEqual(ctx.exception.field, "url")
        self.assertIn("[client] Invalid value for 'url'", str(ctx.exception))

    def test_reset_clears_config(self):
        ASSET_COMPUTE.configure(retry={"max_attempts": 0})

        ASSET_COMPUTE.reset()

        self.assertEqual(ASSET_COMPUTE.config.retry.max_attempts, 4)

    def test_repr(self):
        self.assertIn("ASSET_COMPUTE(config=", repr(ASSET_COMPUTE))


class TestEnvVars(unittest.TestCase):
    """Tests for environment variable overrides."""

    def setUp(self):
        ASSET_COMPUTE.reset()

    def tearDown(self):
        ASSET_COMPUTE.reset()

    @patch.dict(os.environ, {
        "ASSET_COMPUTE_URL": "https://asset-compute-stage.adobe.io",
        "ASSET_COMPUTE_API_KEY": "stage-key",
        "ASSET_COMPUTE_REQUEST_TIMEOUT": "15",
        "ASSET_COMPUTE_POLL_INTERVAL": "0.5",
        "ASSET_COMPUTE_WAIT_TIMEOUT": "300",
        "ASSET_COMPUTE_TRANSPORT_MAX_RETRIES": "1",
        "ASSET_COMPUTE_TRANSPORT_BACKOFF_FACTOR": "2",
    })
    def test_all_client_env_vars(self):
        client = ASSET_COMPUTE.reset().client

        self.assertEqual(client.url, "https://asset-compute-stage.adobe.io")
        self.assertEqual(client.api_key, "stage-key")
        self.assertEqual(client.request_timeout, 15)
        self.assertEqual(client.poll_interval, 0.5)
        self.assertEqual(client.wait_timeout, 300.0)
        self.assertEqual(client.transport_max_retries, 1)
        self.assertEqual(client.transport_backoff_factor, 2.0)

    @patch.dict(os.environ, {"ASSET_COMPUTE_RETRY_MAX_ATTEMPTS": "2", "ASSET_COMPUTE_RETRY_DISABLED": "yes"})
    def test_retry_env_vars(self):
        retry = ASSET_COMPUTE.reset().retry

        self.assertEqual(retry.max_attempts, 2)
        self.assertTrue(retry.disabled)

    @patch.dict(os.environ, {"ASSET_COMPUTE_RETRY_DISABLED": "false"})
    def test_bool_env_var_false(self):
        self.assertFalse(ASSET_COMPUTE.reset().retry.disabled)

    @patch.dict(os.environ, {"ASSET_COMPUTE_IMS_ENDPOINT": "https://ims-stage"})
    def test_auth_env_var(self):
        self.assertEqual(ASSET_COMPUTE.reset().auth.ims_endpoint, "https://ims-stage")

    @patch.dict(os.environ, {"ASSET_COMPUTE_WAIT_TIMEOUT": "300"})
    def test_configure_overrides_env_vars(self):
        ASSET_COMPUTE.configure(client={"wait_timeout": 10})

        self.assertEqual(ASSET_COMPUTE.config.client.wait_timeout, 10)

    @patch.dict(os.environ, {"ASSET_COMPUTE_WAIT_TIMEOUT": "300"})
    def test_env_vars_used_as_fallback(self):
        ASSET_COMPUTE.configure(client={"request_timeout": 10})

        self.assertEqual(ASSET_COMPUTE.config.client.wait_timeout, 300.0)

    @patch.dict(os.environ, {"ASSET_COMPUTE_WAIT_TIMEOUT": "300"})
    def test_configure_without_env_override(self):
        ASSET_COMPUTE.configure(client={"request_timeout": 10}, allow_env_override=False)

        self.assertEqual(ASSET_COMPUTE.config.client.wait_timeout, 60.0)

    @patch.dict(os.environ, {"ASSET_COMPUTE_REQUEST_TIMEOUT": "soon"})
    def test_invalid_env_var_raises(self):
        with self.assertRaises(ConfigEnvVarError) as ctx:
            ClientConfig().with_env_vars()

        self.assertEqual(ctx.exception.env_var, "ASSET_COMPUTE_REQUEST_TIMEOUT")
        self.assertEqual(ctx.exception.value, "soon")

    @patch.dict(os.environ, {"ASSET_COMPUTE_URL": ""})
    def test_empty_env_var_is_ignored(self):
        self.assertIsNone(EnvVars.get("ASSET_COMPUTE_URL"))


class TestWithOverrides(unittest.TestCase):
    """Tests for OverridableConfig.with_overrides()."""

    def test_returns_new_instance(self):
        config = RetryConfig()
        custom = config.with_overrides({"max_attempts": 1})

        self.assertIsNot(config, custom)
        self.assertEqual(config.max_attempts, 4)
        self.assertEqual(custom.max_attempts, 1)

    def test_empty_overrides_return_same_instance(self):
        config = ClientConfig()
        self.assertIs(config.with_overrides({}), config)
        self.assertIs(config.with_overrides(None), config)

    def test_none_values_ignored(self):
        self.assertEqual(ClientConfig().with_overrides({"url": None}).url, "https://asset-compute.adobe.io")

    def test_allow_none_fields(self):
        config = ClientConfig(api_key="key").with_overrides({"api_key": None}, allow_none_fields={"api_key"})
        self.assertIsNone(config.api_key)

    def test_invalid_field_raises(self):
        with self.assertRaises(ValueError):
            AuthConfig().with_overrides({"client_id": "x"})


class TestValidation(unittest.TestCase):
    """Tests for section validation."""

    def test_valid_defaults(self):
        AssetComputeConfig().client.validate()
        AssetComputeConfig().auth.validate()
        AssetComputeConfig().retry.validate()

    def test_client_rules(self):
        invalid = [
            {"url": "asset-compute.adobe.io"},
            {"api_key": ""},
            {"request_timeout": 0},
            {"poll_interval": 0},
            {"wait_timeout": -1},
            {"transport_max_retries": -1},
            {"transport_backoff_factor": 0},
        ]
        for overrides in invalid:
            with self.subTest(overrides=overrides):
                with self.assertRaises(ConfigValidationError):
                    ClientConfig().with_overrides(overrides).validate()

    def test_retry_rules(self):
        with self.assertRaises(ConfigValidationError):
            RetryConfig(max_attempts=-1).validate()
        RetryConfig(max_attempts=0).validate()

    def test_auth_rules(self):
        with self.assertRaises(ConfigValidationError):
            AuthConfig(ims_endpoint="ims-na1.adobelogin.com").validate()
