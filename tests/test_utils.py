"""Tests for internal utilities."""

import unittest
from unittest.mock import patch

from assetcompute._utils import log_prefix, sleep_with_jitter, with_jitter


class TestWithJitter(unittest.TestCase):
    """Tests for with_jitter()."""

    def test_stays_within_jitter_factor(self):
        for _ in range(100):
            value = with_jitter(10.0)
            self.assertGreaterEqual(value, 9.0)
            self.assertLessEqual(value, 11.0)

    def test_custom_factor(self):
        with patch("assetcompute._utils.random.uniform", return_value=0.5):
            self.assertEqual(with_jitter(10.0, jitter_factor=0.5), 15.0)

    def test_never_negative(self):
        with patch("assetcompute._utils.random.uniform", return_value=-2.0):
            self.assertEqual(with_jitter(1.0, jitter_factor=2.0), 0.0)

    def test_zero_stays_zero(self):
        self.assertEqual(with_jitter(0.0), 0.0)


class TestSleepWithJitter(unittest.TestCase):
    """Tests for sleep_with_jitter()."""

    @patch("assetcompute._utils.time.sleep")
    @patch("assetcompute._utils.random.uniform", return_value=0.1)
    def test_sleeps_jittered_duration(self, mock_uniform, mock_sleep):
        sleep_with_jitter(2.0)

        mock_uniform.assert_called_once_with(-0.1, 0.1)
        mock_sleep.assert_called_once()
        self.assertAlmostEqual(mock_sleep.call_args.args[0], 2.2)


class TestLogPrefix(unittest.TestCase):
    """Tests for log_prefix()."""

    def test_pads_short_ids(self):
        self.assertEqual(log_prefix("abc"), f"{'abc':<26} | AC |")

    def test_truncates_long_ids(self):
        self.assertEqual(log_prefix("x" * 40), f"{'x' * 26} | AC |")

    def test_unknown_id(self):
        self.assertTrue(log_prefix(None).startswith("unknown"))
