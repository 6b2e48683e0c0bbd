"""
Rotating crawl identities: user agent, headers, proxy and cookie session.
"""

import itertools
import threading
from dataclasses import dataclass, field
from typing import Dict, List, Optional

import requests

from directory_crawler.crawlers.http_client import BASE_HEADERS, UserAgentRotator, create_http_session
from directory_crawler.utils.logging import get_business_logger
from directory_crawler.utils.proxy_pool import ProxyInfo, ProxyPool
from .models import DEFAULT_REFERER, RequestTask


logger = get_business_logger('session_pool')


@dataclass
class CrawlSession:
    """One network identity."""
    session_id: str
    user_agent: str
    http_session: requests.Session
    proxy: Optional[ProxyInfo] = None
    consecutive_failures: int = 0
    usage_count: int = 0
    retired: bool = False
    extra_headers: Dict[str, str] = field(default_factory=dict)

    @property
    def proxies(self) -> Optional[Dict[str, str]]:
        return self.proxy.as_requests_proxies if self.proxy else None

    def headers_for(self, task: RequestTask) -> Dict[str, str]:
        """Header set for a task sent through this identity."""
        return {
            **BASE_HEADERS,
            'User-Agent': self.user_agent,
            'Referer': task.referer or DEFAULT_REFERER,
            **self.extra_headers,
        }


class SessionPool:
    """
    Round-robin pool of crawl identities.

    A session is retired immediately on a block signal, or after
    ``max_consecutive_failures`` failures in a row; retired sessions are
    replaced on demand so the pool keeps ``pool_size`` live identities.
    """

    def __init__(self,
                 pool_size: int = 10,
                 max_consecutive_failures: int = 3,
                 proxy_pool: Optional[ProxyPool] = None,
                 user_agent_rotator: Optional[UserAgentRotator] = None,
                 connection_pool_size: int = 20):
        self.pool_size = max(1, pool_size)
        self.connection_pool_size = connection_pool_size
        self.max_consecutive_failures = max_consecutive_failures
        self.proxy_pool = proxy_pool
        self.user_agent_rotator = user_agent_rotator or UserAgentRotator()

        self._lock = threading.Lock()
        self._ids = itertools.count(1)
        self._sessions: List[CrawlSession] = []
        self._cursor = 0
        self.retired_count = 0

    def _create_session(self) -> CrawlSession:
        proxy = self.proxy_pool.get_next_proxy() if self.proxy_pool else None
        session = CrawlSession(
            session_id=f"session-{next(self._ids)}",
            user_agent=self.user_agent_rotator.get_next_user_agent(),
            http_session=create_http_session(self.connection_pool_size),
            proxy=proxy,
        )
        logger.debug(f"Created {session.session_id} "
                     f"(proxy={proxy.host + ':' + str(proxy.port) if proxy else 'none'})")
        return session

    def acquire(self) -> CrawlSession:
        """Next live session in rotation, creating one if the pool is short."""
        with self._lock:
            self._sessions = [s for s in self._sessions if not s.retired]
            if len(self._sessions) < self.pool_size:
                session = self._create_session()
                self._sessions.append(session)
            else:
                session = self._sessions[self._cursor % len(self._sessions)]
                self._cursor = (self._cursor + 1) % len(self._sessions)
            session.usage_count += 1
            return session

    def mark_good(self, session: CrawlSession, response_time: float = 0.0) -> None:
        with self._lock:
            session.consecutive_failures = 0
        if session.proxy and self.proxy_pool:
            self.proxy_pool.mark_proxy_success(session.proxy, response_time)

    def mark_failure(self, session: CrawlSession, error: str = "") -> None:
        """Count a failure; retire after too many in a row or once its proxy is disabled."""
        with self._lock:
            session.consecutive_failures += 1
            should_retire = session.consecutive_failures >= self.max_consecutive_failures
        if session.proxy and self.proxy_pool:
            self.proxy_pool.mark_proxy_failure(session.proxy, error)
            if not session.proxy.is_active:
                should_retire = True
        if should_retire:
            self.mark_bad(session, f"{session.consecutive_failures} consecutive failures")

    def mark_bad(self, session: CrawlSession, reason: str = "") -> None:
        """Retire a session now."""
        with self._lock:
            if session.retired:
                return
            session.retired = True
            self.retired_count += 1
        session.http_session.close()
        logger.info(f"Retired {session.session_id}: {reason}")

    def close(self) -> None:
        with self._lock:
            for session in self._sessions:
                session.http_session.close()
            self._sessions.clear()

    def get_statistics(self) -> Dict[str, int]:
        with self._lock:
            return {
                "live_sessions": len([s for s in self._sessions if not s.retired]),
                "retired_sessions": self.retired_count,
            }
