"""Tests for the standardized error body."""

import unittest

from fastapi import HTTPException

from utils.error_handling import ApiError, ErrorCode, ErrorDetail, error_handler, upstream_error
from utils.upstream import RateLimitedError, UpstreamError


class TestApiError(unittest.TestCase):

    def test_detail_keeps_field_key_and_extras(self):
        detail = ErrorDetail(field="stop_id", value="12345", extra={"hint": "use NSR ids"})

        self.assertEqual(detail.to_dict(), {"field": "stop_id", "value": "12345", "hint": "use NSR ids"})
        self.assertEqual(ErrorDetail().to_dict(), {})

    def test_body_and_status(self):
        error = ApiError(ErrorCode.INVALID_ID_FORMAT, "Invalid value for stop_id", ErrorDetail(field="stop_id"))
        body = error.to_dict()["error"]

        self.assertEqual(error.status_code, 400)
        self.assertEqual(body["code"], "INVALID_ID_FORMAT")
        self.assertEqual(body["details"], {"field": "stop_id"})
        self.assertTrue(body["request_id"])
        self.assertTrue(body["timestamp"])

    def test_each_error_gets_its_own_request_id(self):
        self.assertNotEqual(ApiError("X", "a").request_id, ApiError("X", "b").request_id)

    def test_upstream_errors_are_503(self):
        self.assertEqual(upstream_error("Journey planner").status_code, 503)
        self.assertEqual(upstream_error("Journey planner", rate_limited=True).code, ErrorCode.UPSTREAM_RATE_LIMITED)


class TestErrorHandler(unittest.TestCase):

    def test_rate_limit_adds_retry_after(self):
        with self.assertRaises(HTTPException) as ctx:
            error_handler.handle_upstream_error("Journey planner", RateLimitedError())

        self.assertEqual(ctx.exception.status_code, 503)
        self.assertEqual(ctx.exception.headers, {"Retry-After": "60"})

    def test_plain_upstream_failure(self):
        with self.assertRaises(HTTPException) as ctx:
            error_handler.handle_upstream_error("Journey planner", UpstreamError("down", status_code=500))

        self.assertIsNone(ctx.exception.headers)
        self.assertEqual(ctx.exception.detail["error"]["code"], "UPSTREAM_ERROR")


if __name__ == '__main__':
    unittest.main()
