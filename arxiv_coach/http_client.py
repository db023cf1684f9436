"""HTTP client with timeout, retry classification and politeness pacing."""

import logging
import random
import time
from typing import Callable, Optional

import requests

logger = logging.getLogger(__name__)

DEFAULT_USER_AGENT = "arxiv-coach (+https://github.com/mindofindica/arxiv-coach)"

RETRYABLE_STATUSES = frozenset({408, 429})


class FetchError(RuntimeError):
    """Raised when an HTTP fetch fails.

    ``retryable`` tells whether the failure class is worth retrying; once the
    client gives up it always raises with ``retryable=False``.
    """

    def __init__(
        self,
        message: str,
        status: Optional[int] = None,
        retryable: bool = False,
        url: Optional[str] = None,
    ):
        super().__init__(message)
        self.status = status
        self.retryable = retryable
        self.url = url


def is_retryable_status(status: int) -> bool:
    """429/408 and any 5xx are transient; every other non-2xx is fatal."""
    return status in RETRYABLE_STATUSES or 500 <= status <= 599


def jitter(min_seconds: float, max_seconds: float, rng: Optional[random.Random] = None) -> float:
    """Random duration in [min, max] (bounds may be given in either order)."""
    low, high = min(min_seconds, max_seconds), max(min_seconds, max_seconds)
    return (rng or random).uniform(low, high)


def backoff_seconds(
    attempt: int,
    initial: float = 1.0,
    maximum: float = 60.0,
    rng: Optional[random.Random] = None,
) -> float:
    """Exponential backoff for the given 1-based attempt, with jitter in [0.75, 1.5]."""
    base = min(maximum, initial * 2 ** (attempt - 1))
    return base * (rng or random).uniform(0.75, 1.5)


class PolitenessDelay:
    """Randomized pause between successive outbound calls.

    The first call is never delayed; every later call waits a random time
    within the configured bounds.
    """

    def __init__(
        self,
        min_seconds: float = 3.0,
        max_seconds: float = 5.0,
        sleep: Callable[[float], None] = time.sleep,
        rng: Optional[random.Random] = None,
    ):
        self.min_seconds = min_seconds
        self.max_seconds = max_seconds
        self._sleep = sleep
        self._rng = rng
        self._has_called = False

    def wait(self) -> float:
        """Sleep if a previous call was made; return the seconds slept."""
        if not self._has_called:
            self._has_called = True
            return 0.0

        seconds = jitter(self.min_seconds, self.max_seconds, self._rng)
        if seconds > 0:
            logger.debug(f"Politeness delay: sleeping {seconds:.2f}s")
            self._sleep(seconds)
        return seconds


class ResilientClient:
    """GET client that retries transient failures with exponential backoff."""

    def __init__(
        self,
        timeout: float = 30.0,
        max_attempts: int = 5,
        backoff_initial: float = 1.0,
        backoff_max: float = 60.0,
        user_agent: str = DEFAULT_USER_AGENT,
        session: Optional[requests.Session] = None,
        sleep: Callable[[float], None] = time.sleep,
        rng: Optional[random.Random] = None,
    ):
        """
        Initialize the client.

        Args:
            timeout: Per-attempt timeout in seconds
            max_attempts: Attempt ceiling (including the first attempt)
            backoff_initial: Backoff for the first retry, before jitter
            backoff_max: Upper bound for a single backoff, before jitter
            user_agent: User-Agent header sent with every request
            session: Optional requests.Session (injected in tests)
            sleep: Sleep function used between attempts
            rng: Optional random generator for deterministic jitter
        """
        if max_attempts < 1:
            raise ValueError("max_attempts must be >= 1")

        self.timeout = timeout
        self.max_attempts = max_attempts
        self.backoff_initial = backoff_initial
        self.backoff_max = backoff_max
        self.session = session or requests.Session()
        self.headers = {"User-Agent": user_agent}
        self._sleep = sleep
        self._rng = rng

    @classmethod
    def from_config(cls, fetch_config, **kwargs) -> "ResilientClient":
        """Build a client from a FetchConfig."""
        return cls(
            timeout=fetch_config.timeout_seconds,
            max_attempts=fetch_config.max_attempts,
            backoff_initial=fetch_config.backoff_initial_seconds,
            backoff_max=fetch_config.backoff_max_seconds,
            user_agent=fetch_config.user_agent,
            **kwargs,
        )

    def get(
        self,
        url: str,
        params: Optional[dict] = None,
        stream: bool = False,
        timeout: Optional[float] = None,
    ) -> requests.Response:
        """
        Perform a GET, retrying transient failures.

        Args:
            url: Target URL
            params: Optional query parameters
            stream: Stream the body (used for document downloads)
            timeout: Override the per-attempt timeout

        Returns:
            The successful requests.Response

        Raises:
            FetchError: On a fatal status, or after the attempt ceiling
        """
        per_attempt_timeout = timeout if timeout is not None else self.timeout
        last_status: Optional[int] = None
        last_text = ""

        for attempt in range(1, self.max_attempts + 1):
            try:
                response = self.session.get(
                    url,
                    params=params,
                    headers=self.headers,
                    timeout=per_attempt_timeout,
                    stream=stream,
                )
            except (
                requests.exceptions.Timeout,
                requests.exceptions.ConnectionError,
                requests.exceptions.ChunkedEncodingError,
                requests.exceptions.ContentDecodingError,
            ) as e:
                last_status = None
                last_text = str(e)
                logger.warning(
                    f"Transport error fetching {url} (attempt {attempt}/{self.max_attempts}): {e}"
                )
            except requests.exceptions.RequestException as e:
                raise FetchError(f"GET {url} failed: {e}", retryable=False, url=url) from e
            else:
                if 200 <= response.status_code < 300:
                    return response

                last_status = response.status_code
                last_text = response.reason or ""
                if not is_retryable_status(response.status_code):
                    response.close()
                    raise FetchError(
                        f"GET {url} failed: {last_status} {last_text}".strip(),
                        status=last_status,
                        retryable=False,
                        url=url,
                    )

                response.close()
                logger.warning(
                    f"Retryable status {last_status} from {url} "
                    f"(attempt {attempt}/{self.max_attempts})"
                )

            if attempt < self.max_attempts:
                wait = backoff_seconds(attempt, self.backoff_initial, self.backoff_max, self._rng)
                logger.info(f"Backing off {wait:.1f}s before retrying {url}")
                self._sleep(wait)

        status_part = str(last_status) if last_status is not None else "no response"
        raise FetchError(
            f"GET {url} failed after {self.max_attempts} attempts: {status_part} {last_text}".strip(),
            status=last_status,
            retryable=False,
            url=url,
        )

    def fetch_text(self, url: str, params: Optional[dict] = None) -> str:
        """GET and return the decoded body."""
        response = self.get(url, params=params)
        return response.text
