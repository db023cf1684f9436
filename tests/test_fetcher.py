"""Tests for the per-category feed fetcher."""

from unittest import TestCase
from unittest.mock import MagicMock

from arxiv_coach.fetcher import ARXIV_API_URL, ArxivFetcher, build_query_params
from arxiv_coach.http_client import FetchError


class TestArxivFetcher(TestCase):
    def test_query_params(self):
        params = build_query_params("cs.AI", 50)
        self.assertEqual(params["search_query"], "cat:cs.AI")
        self.assertEqual(params["max_results"], 50)
        self.assertEqual(params["sortBy"], "lastUpdatedDate")
        self.assertEqual(params["sortOrder"], "descending")

    def test_fetch_continues_after_failed_category(self):
        client = MagicMock()
        client.fetch_text.side_effect = [FetchError("503", status=503), "<feed/>"]
        delay = MagicMock()

        fetcher = ArxivFetcher(client, delay=delay, max_results=10)
        results = list(fetcher.fetch_categories(["cs.CL", "cs.AI"]))

        self.assertEqual([r.category for r in results], ["cs.CL", "cs.AI"])
        self.assertFalse(results[0].ok)
        self.assertEqual(results[0].error.status, 503)
        self.assertTrue(results[1].ok)
        self.assertEqual(results[1].payload, "<feed/>")
        self.assertEqual(delay.wait.call_count, 2)
        client.fetch_text.assert_called_with(ARXIV_API_URL, params=build_query_params("cs.AI", 10))
