"""
HTTP client with per-domain pacing and browser-like headers.

Retrying is left to the crawl controller: a fetch either returns a response
or raises one of BlockedError, FetchTimeoutError, NetworkError.
"""

import random
import threading
import time
from dataclasses import dataclass, field
from typing import Dict, List, Optional
from urllib.parse import urlparse

import requests
from requests.adapters import HTTPAdapter
from urllib3.util.retry import Retry

from directory_crawler.utils.errors import BlockedError, FetchTimeoutError, NetworkError
from directory_crawler.utils.logging import get_business_logger


logger = get_business_logger('crawler')

BLOCKING_STATUS_CODES = (403, 429)

BASE_HEADERS = {
    'Accept': 'text/html,application/xhtml+xml,application/xml;q=0.9,image/avif,image/webp,*/*;q=0.8',
    'Accept-Language': 'en-US,en;q=0.9',
    'Upgrade-Insecure-Requests': '1',
}


@dataclass
class RateLimitConfig:
    """Per-domain pacing configuration."""
    same_domain_delay: float = 0.2
    requests_per_second: float = 5.0


@dataclass
class FetchResponse:
    """What the crawl core needs from a fetched page."""
    status_code: int
    body: str
    content_type: str = ''
    url: str = ''
    elapsed: float = 0.0
    headers: Dict[str, str] = field(default_factory=dict)

    @property
    def is_html(self) -> bool:
        return not self.content_type or 'html' in self.content_type.lower()


def create_http_session(pool_size: int = 20) -> requests.Session:
    """New ``requests`` session without transport-level retries."""
    session = requests.Session()
    adapter = HTTPAdapter(
        max_retries=Retry(total=0, redirect=5, raise_on_status=False),
        pool_connections=pool_size,
        pool_maxsize=pool_size
    )
    session.mount("http://", adapter)
    session.mount("https://", adapter)
    return session


class UserAgentRotator:
    """Rotates user agents to avoid detection."""

    def __init__(self, user_agents: Optional[List[str]] = None):
        self.user_agents = user_agents or [
            'Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 (KHTML, like Gecko) Chrome/122.0.0.0 Safari/537.36',
            'Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 (KHTML, like Gecko) Chrome/121.0.0.0 Safari/537.36',
            'Mozilla/5.0 (Macintosh; Intel Mac OS X 10_15_7) AppleWebKit/537.36 (KHTML, like Gecko) Chrome/122.0.0.0 Safari/537.36',
            'Mozilla/5.0 (Windows NT 10.0; Win64; x64; rv:123.0) Gecko/20100101 Firefox/123.0',
            'Mozilla/5.0 (Macintosh; Intel Mac OS X 10_15_7) AppleWebKit/605.1.15 (KHTML, like Gecko) Version/17.3 Safari/605.1.15',
            'Mozilla/5.0 (X11; Linux x86_64) AppleWebKit/537.36 (KHTML, like Gecko) Chrome/122.0.0.0 Safari/537.36',
        ]
        self.current_index = 0
        self._lock = threading.Lock()

    def get_random_user_agent(self) -> str:
        return random.choice(self.user_agents)

    def get_next_user_agent(self) -> str:
        with self._lock:
            user_agent = self.user_agents[self.current_index]
            self.current_index = (self.current_index + 1) % len(self.user_agents)
            return user_agent


class RateLimiter:
    """Keeps requests to one domain at least ``same_domain_delay`` apart."""

    def __init__(self, config: RateLimitConfig):
        self.config = config
        self._next_slot: Dict[str, float] = {}
        self._lock = threading.Lock()

    @property
    def min_interval(self) -> float:
        per_second = 1.0 / self.config.requests_per_second if self.config.requests_per_second > 0 else 0.0
        return max(self.config.same_domain_delay, per_second)

    def reserve(self, url: str) -> float:
        """
        Reserve the next request slot for the URL's domain.

        Returns:
            Seconds the caller must wait before sending
        """
        domain = urlparse(url).netloc or 'unknown'
        with self._lock:
            now = time.monotonic()
            slot = max(now, self._next_slot.get(domain, now))
            self._next_slot[domain] = slot + self.min_interval
            return slot - now

    def wait_if_needed(self, url: str) -> None:
        delay = self.reserve(url)
        if delay > 0:
            time.sleep(delay)


class HTTPClient:
    """Fetch collaborator used by the crawl workers."""

    def __init__(self,
                 rate_limit_config: Optional[RateLimitConfig] = None,
                 timeout: float = 25.0,
                 pool_size: int = 20):
        """
        Initialize HTTP client.

        Args:
            rate_limit_config: Per-domain pacing configuration
            timeout: Request deadline in seconds
            pool_size: Connection pool size per host
        """
        self.rate_limit_config = rate_limit_config or RateLimitConfig()
        self.timeout = timeout
        self.pool_size = pool_size
        self.rate_limiter = RateLimiter(self.rate_limit_config)
        self.user_agent_rotator = UserAgentRotator()
        self.session = create_http_session(pool_size)

    def prepare_headers(self, headers: Optional[Dict[str, str]] = None) -> Dict[str, str]:
        """Browser-like defaults with the caller's headers on top."""
        final_headers = {'User-Agent': self.user_agent_rotator.get_random_user_agent(), **BASE_HEADERS}
        if headers:
            final_headers.update(headers)
        return final_headers

    def fetch(self,
              url: str,
              headers: Optional[Dict[str, str]] = None,
              session: Optional[requests.Session] = None,
              proxies: Optional[Dict[str, str]] = None) -> FetchResponse:
        """
        GET ``url`` once.

        Args:
            url: URL to fetch
            headers: Request headers (merged over browser defaults)
            session: Session carrying cookies for the caller's identity
            proxies: ``requests`` proxies mapping

        Returns:
            The fetched page

        Raises:
            BlockedError: On HTTP 403/429
            FetchTimeoutError: When the deadline passes
            NetworkError: On any other transport or HTTP failure
        """
        self.rate_limiter.wait_if_needed(url)

        http = session or self.session
        start = time.monotonic()
        try:
            response = http.get(
                url,
                headers=self.prepare_headers(headers),
                proxies=proxies,
                timeout=self.timeout
            )
        except requests.exceptions.Timeout as e:
            raise FetchTimeoutError(f"Timed out after {self.timeout}s", url, {"error": str(e)})
        except requests.exceptions.RequestException as e:
            raise NetworkError(f"Request failed: {e}", url, {"error": str(e)})

        elapsed = time.monotonic() - start

        if response.status_code in BLOCKING_STATUS_CODES:
            logger.warning(f"Blocking detected for {url}: status={response.status_code}")
            raise BlockedError(url, response.status_code, {
                "retry_after": response.headers.get('Retry-After')
            })

        if response.status_code >= 400:
            raise NetworkError(f"HTTP {response.status_code}", url, {"status_code": response.status_code})

        logger.debug(f"Fetched {url} (status={response.status_code}, size={len(response.content)}, "
                     f"elapsed={elapsed:.2f}s)")

        return FetchResponse(
            status_code=response.status_code,
            body=response.text,
            content_type=response.headers.get('Content-Type', ''),
            url=response.url or url,
            elapsed=elapsed,
            headers=dict(response.headers)
        )

    def close(self) -> None:
        if self.session:
            self.session.close()

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()
