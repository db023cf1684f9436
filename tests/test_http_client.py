"""Tests for the resilient HTTP client."""

import random
from unittest import TestCase
from unittest.mock import MagicMock

import requests

from arxiv_coach.http_client import (
    FetchError,
    PolitenessDelay,
    ResilientClient,
    backoff_seconds,
    is_retryable_status,
    jitter,
)


def _response(status: int, text: str = "", reason: str = "") -> MagicMock:
    response = MagicMock()
    response.status_code = status
    response.text = text
    response.reason = reason
    return response


def _client(session, sleep=None, max_attempts=3) -> ResilientClient:
    return ResilientClient(
        timeout=5,
        max_attempts=max_attempts,
        backoff_initial=1.0,
        backoff_max=8.0,
        session=session,
        sleep=sleep or MagicMock(),
        rng=random.Random(0),
    )


class TestRetryClassification(TestCase):
    def test_transient_statuses(self):
        for status in (408, 429, 500, 502, 503, 504):
            self.assertTrue(is_retryable_status(status), status)

    def test_fatal_statuses(self):
        for status in (400, 401, 403, 404, 410):
            self.assertFalse(is_retryable_status(status), status)


class TestBackoff(TestCase):
    def test_backoff_grows_and_is_capped(self):
        rng = random.Random(1)
        for attempt in range(1, 10):
            base = min(8.0, 1.0 * 2 ** (attempt - 1))
            value = backoff_seconds(attempt, 1.0, 8.0, rng)
            self.assertGreaterEqual(value, base * 0.75)
            self.assertLessEqual(value, base * 1.5)

    def test_jitter_accepts_reversed_bounds(self):
        rng = random.Random(2)
        for _ in range(20):
            value = jitter(5.0, 3.0, rng)
            self.assertTrue(3.0 <= value <= 5.0)


class TestPolitenessDelay(TestCase):
    def test_first_call_is_not_delayed(self):
        sleep = MagicMock()
        delay = PolitenessDelay(3.0, 5.0, sleep=sleep, rng=random.Random(0))

        self.assertEqual(delay.wait(), 0.0)
        sleep.assert_not_called()

        slept = delay.wait()
        self.assertTrue(3.0 <= slept <= 5.0)
        sleep.assert_called_once_with(slept)

    def test_zero_range_never_sleeps(self):
        sleep = MagicMock()
        delay = PolitenessDelay(0.0, 0.0, sleep=sleep)
        delay.wait()
        delay.wait()
        sleep.assert_not_called()


class TestResilientClient(TestCase):
    def test_success_on_first_attempt(self):
        session = MagicMock()
        session.get.return_value = _response(200, text="<feed/>")
        sleep = MagicMock()

        body = _client(session, sleep).fetch_text("https://example.com/feed", params={"q": 1})

        self.assertEqual(body, "<feed/>")
        self.assertEqual(session.get.call_count, 1)
        kwargs = session.get.call_args.kwargs
        self.assertEqual(kwargs["params"], {"q": 1})
        self.assertEqual(kwargs["timeout"], 5)
        self.assertIn("User-Agent", kwargs["headers"])
        sleep.assert_not_called()

    def test_retries_429_then_succeeds(self):
        session = MagicMock()
        session.get.side_effect = [_response(429), _response(200, text="ok")]
        sleep = MagicMock()

        body = _client(session, sleep).fetch_text("https://example.com/feed")

        self.assertEqual(body, "ok")
        self.assertEqual(session.get.call_count, 2)
        self.assertEqual(sleep.call_count, 1)

    def test_exhausted_retries_raise_with_last_status(self):
        session = MagicMock()
        session.get.side_effect = [_response(429), _response(503), _response(429)]
        sleep = MagicMock()

        with self.assertRaises(FetchError) as ctx:
            _client(session, sleep, max_attempts=3).get("https://example.com/feed")

        self.assertEqual(ctx.exception.status, 429)
        self.assertFalse(ctx.exception.retryable)
        self.assertEqual(session.get.call_count, 3)
        # No sleep after the final attempt
        self.assertEqual(sleep.call_count, 2)

    def test_fatal_status_is_not_retried(self):
        session = MagicMock()
        session.get.return_value = _response(404, reason="Not Found")
        sleep = MagicMock()

        with self.assertRaises(FetchError) as ctx:
            _client(session, sleep).get("https://example.com/missing")

        self.assertEqual(ctx.exception.status, 404)
        self.assertEqual(ctx.exception.url, "https://example.com/missing")
        self.assertEqual(session.get.call_count, 1)
        sleep.assert_not_called()

    def test_timeout_is_retried(self):
        session = MagicMock()
        session.get.side_effect = [requests.exceptions.Timeout("slow"), _response(200, text="ok")]

        body = _client(session).fetch_text("https://example.com/feed")

        self.assertEqual(body, "ok")
        self.assertEqual(session.get.call_count, 2)

    def test_connection_errors_exhaust_without_status(self):
        session = MagicMock()
        session.get.side_effect = requests.exceptions.ConnectionError("refused")

        with self.assertRaises(FetchError) as ctx:
            _client(session, max_attempts=2).get("https://example.com/feed")

        self.assertIsNone(ctx.exception.status)
        self.assertEqual(session.get.call_count, 2)

    def test_broken_body_is_retried(self):
        session = MagicMock()
        session.get.side_effect = [
            requests.exceptions.ChunkedEncodingError("Connection broken: IncompleteRead"),
            requests.exceptions.ContentDecodingError("bad gzip"),
            _response(200, text="ok"),
        ]

        body = _client(session).fetch_text("https://example.com/feed")

        self.assertEqual(body, "ok")
        self.assertEqual(session.get.call_count, 3)

    def test_other_request_errors_become_fatal_fetch_errors(self):
        session = MagicMock()
        session.get.side_effect = requests.exceptions.TooManyRedirects("loop")

        with self.assertRaises(FetchError) as ctx:
            _client(session).get("https://example.com/feed")

        self.assertFalse(ctx.exception.retryable)
        self.assertIsInstance(ctx.exception.__cause__, requests.exceptions.TooManyRedirects)
        self.assertEqual(session.get.call_count, 1)

    def test_rejects_zero_attempts(self):
        with self.assertRaises(ValueError):
            ResilientClient(max_attempts=0, session=MagicMock())
