"""arXiv Atom feed fetcher, one category at a time."""

import logging
from dataclasses import dataclass
from typing import Iterator, List, Optional

from .http_client import FetchError, PolitenessDelay, ResilientClient

logger = logging.getLogger(__name__)

ARXIV_API_URL = "https://export.arxiv.org/api/query"


@dataclass
class CategoryFetch:
    """Raw feed payload for one category, or the error that prevented it."""

    category: str
    payload: Optional[str] = None
    error: Optional[FetchError] = None

    @property
    def ok(self) -> bool:
        return self.error is None


def build_query_params(category: str, max_results: int = 100) -> dict:
    """Query parameters for the newest entries of a category."""
    return {
        "search_query": f"cat:{category}",
        "start": 0,
        "max_results": max_results,
        "sortBy": "lastUpdatedDate",
        "sortOrder": "descending",
    }


class ArxivFetcher:
    """Fetches raw Atom payloads from the arXiv API."""

    def __init__(
        self,
        client: ResilientClient,
        delay: Optional[PolitenessDelay] = None,
        max_results: int = 100,
        base_url: str = ARXIV_API_URL,
    ):
        """
        Initialize the fetcher.

        Args:
            client: Resilient HTTP client
            delay: Politeness delay shared with other outbound calls
            max_results: Max feed results per category
            base_url: arXiv API endpoint
        """
        self.client = client
        self.delay = delay or PolitenessDelay()
        self.max_results = max_results
        self.base_url = base_url

    def fetch_category(self, category: str) -> str:
        """
        Fetch the raw Atom XML for one category.

        Raises:
            FetchError: If the request ultimately fails
        """
        self.delay.wait()
        params = build_query_params(category, self.max_results)
        return self.client.fetch_text(self.base_url, params=params)

    def fetch_categories(self, categories: List[str]) -> Iterator[CategoryFetch]:
        """
        Fetch categories in configured order, continuing past failures.

        Args:
            categories: arXiv categories (e.g. "cs.AI")

        Yields:
            CategoryFetch per category, carrying either a payload or an error
        """
        for category in categories:
            logger.info(f"Fetching papers from category: {category}")
            try:
                payload = self.fetch_category(category)
            except FetchError as e:
                logger.warning(f"Discovery fetch failed for {category}: {e}")
                yield CategoryFetch(category=category, error=e)
                continue

            yield CategoryFetch(category=category, payload=payload)
