"""
Tests for per-endpoint rate limiting.
"""

import time
import unittest
from unittest.mock import MagicMock, patch

from fastapi import HTTPException

import sys
import os
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.dirname(os.path.abspath(__file__)))))

from abg_service.rate_limiter import (
    ENDPOINT_LIMITS,
    RateLimitConfig,
    RateLimiter,
    RateLimitManager,
    check_rate_limit,
)


def _request(host="127.0.0.1", headers=None):
    request = MagicMock()
    request.headers = headers or {}
    request.client.host = host
    return request


class TestRateLimiter(unittest.TestCase):

    def test_counts_down_then_blocks(self):
        limiter = RateLimiter(max_requests=3, window_seconds=60)
        for expected_remaining in (2, 1, 0):
            allowed, remaining, retry_after = limiter.is_allowed("10.1.1.1")
            self.assertTrue(allowed)
            self.assertEqual(remaining, expected_remaining)
            self.assertEqual(retry_after, 0)

        allowed, remaining, retry_after = limiter.is_allowed("10.1.1.1")
        self.assertFalse(allowed)
        self.assertEqual(remaining, 0)
        self.assertGreater(retry_after, 0)

    def test_clients_counted_separately(self):
        limiter = RateLimiter(max_requests=1, window_seconds=60)
        limiter.is_allowed("10.1.1.1")
        self.assertFalse(limiter.is_allowed("10.1.1.1")[0])
        self.assertTrue(limiter.is_allowed("10.1.1.2")[0])

    def test_window_expiration(self):
        limiter = RateLimiter(max_requests=1, window_seconds=1)
        limiter.is_allowed("127.0.0.1")
        self.assertFalse(limiter.is_allowed("127.0.0.1")[0])

        time.sleep(1.1)

        allowed, remaining, _ = limiter.is_allowed("127.0.0.1")
        self.assertTrue(allowed)
        self.assertEqual(remaining, 0)

    def test_reset(self):
        limiter = RateLimiter(max_requests=1, window_seconds=60)
        limiter.is_allowed("127.0.0.1")
        limiter.reset("127.0.0.1")
        self.assertTrue(limiter.is_allowed("127.0.0.1")[0])


class TestRateLimitManager(unittest.TestCase):

    def setUp(self):
        self.manager = RateLimitManager()

    def test_unknown_endpoint_gets_default(self):
        limiter = self.manager.get_limiter("unknown")
        self.assertEqual(limiter.max_requests, RateLimitConfig().max_requests)
        self.assertIs(limiter, self.manager.get_limiter("unknown"))

    def test_endpoint_config_applied(self):
        self.assertEqual(self.manager.get_limiter("start-ocr").max_requests, 10)
        self.assertEqual(self.manager.get_limiter("check-status").max_requests, 120)

    def test_headers_on_allowed_request(self):
        allowed, headers = self.manager.check_rate_limit("analyze", _request())
        self.assertTrue(allowed)
        self.assertEqual(headers["X-RateLimit-Limit"], "15")
        self.assertEqual(headers["X-RateLimit-Remaining"], "14")
        self.assertNotIn("Retry-After", headers)

    def test_exceeded_raises_429(self):
        for _ in range(10):
            self.manager.check_rate_limit("ocr", _request())
        with self.assertRaises(HTTPException) as context:
            self.manager.check_rate_limit("ocr", _request())
        self.assertEqual(context.exception.status_code, 429)
        self.assertIn("Retry-After", context.exception.headers)

    def test_forwarded_for_used_as_identifier(self):
        limiter = self.manager.get_limiter("analyze")
        request = _request(headers={"X-Forwarded-For": "10.0.0.1, 192.168.1.1"})
        with patch.object(limiter, "is_allowed", return_value=(True, 4, 0)) as mock_is_allowed:
            self.manager.check_rate_limit("analyze", request)
        mock_is_allowed.assert_called_once_with("10.0.0.1")

    def test_reset_all(self):
        self.manager.get_limiter("analyze")
        self.manager.reset_all()
        self.assertEqual(self.manager.limiters, {})


class TestEndpointLimits(unittest.TestCase):

    def test_every_route_configured(self):
        for endpoint in ("analyze", "ocr", "start-analysis", "start-ocr", "check-status"):
            self.assertIn(endpoint, ENDPOINT_LIMITS)

    def test_polling_cheaper_than_gemini_calls(self):
        self.assertLess(ENDPOINT_LIMITS["ocr"].max_requests, ENDPOINT_LIMITS["analyze"].max_requests)
        self.assertLess(ENDPOINT_LIMITS["analyze"].max_requests, ENDPOINT_LIMITS["check-status"].max_requests)


class TestCheckRateLimitFunction(unittest.TestCase):

    @patch("abg_service.rate_limiter.rate_limit_manager")
    def test_delegates_to_manager(self, mock_manager):
        request = MagicMock()
        mock_manager.check_rate_limit.return_value = (True, {"X-RateLimit-Limit": "15"})

        headers = check_rate_limit("analyze", request)

        mock_manager.check_rate_limit.assert_called_once_with("analyze", request)
        self.assertEqual(headers["X-RateLimit-Limit"], "15")


if __name__ == "__main__":
    unittest.main()
