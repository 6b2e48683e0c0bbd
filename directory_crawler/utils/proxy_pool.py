"""
Proxy pool management.

Round-robin rotation over healthy HTTP/HTTPS/SOCKS proxies with failure
tracking and optional health checks.
"""

import time
import threading
from typing import List, Dict, Optional, Any
from dataclasses import dataclass
from datetime import datetime
from concurrent.futures import ThreadPoolExecutor, as_completed

import requests

from directory_crawler.utils.logging import get_business_logger


logger = get_business_logger('proxy_pool')


@dataclass
class ProxyInfo:
    """A single proxy and its health counters."""
    host: str
    port: int
    username: Optional[str] = None
    password: Optional[str] = None
    protocol: str = 'http'  # http, https, socks4, socks5
    country: Optional[str] = None

    is_active: bool = True
    last_used: Optional[datetime] = None
    last_checked: Optional[datetime] = None
    failure_count: int = 0  # consecutive
    avg_response_time: float = 0.0

    total_requests: int = 0
    failed_requests: int = 0

    @property
    def proxy_url(self) -> str:
        if self.username and self.password:
            return f"{self.protocol}://{self.username}:{self.password}@{self.host}:{self.port}"
        return f"{self.protocol}://{self.host}:{self.port}"

    @property
    def as_requests_proxies(self) -> Dict[str, str]:
        """Mapping accepted by ``requests`` for the ``proxies`` argument."""
        return {'http': self.proxy_url, 'https': self.proxy_url}

    @property
    def success_rate(self) -> float:
        if self.total_requests == 0:
            return 1.0
        return (self.total_requests - self.failed_requests) / self.total_requests

    def is_healthy(self, max_failure_count: int, min_success_rate: float) -> bool:
        return (
            self.is_active and
            self.success_rate >= min_success_rate and
            self.failure_count < max_failure_count
        )


class ProxyPool:
    """Proxy pool manager."""

    def __init__(self, config: Optional[Dict[str, Any]] = None):
        """
        Initialize the proxy pool.

        Args:
            config: Settings dictionary (health check url/timeout, thresholds)
        """
        self.config = config or {}
        self.proxies: List[ProxyInfo] = []
        self.current_index = 0
        self._lock = threading.Lock()

        self.health_check_timeout = self.config.get('health_check_timeout', 10)
        self.health_check_url = self.config.get('health_check_url', 'https://httpbin.org/ip')
        self.max_failure_count = self.config.get('max_failure_count', 5)
        self.min_success_rate = self.config.get('min_success_rate', 0.5)

    def add_proxy(self, host: str, port: int, username: Optional[str] = None,
                  password: Optional[str] = None, protocol: str = 'http',
                  country: Optional[str] = None) -> None:
        """Add a proxy to the pool."""
        proxy = ProxyInfo(
            host=host,
            port=int(port),
            username=username,
            password=password,
            protocol=protocol,
            country=country
        )
        with self._lock:
            self.proxies.append(proxy)
        logger.info(f"Proxy added: {proxy.host}:{proxy.port}")

    def load_proxies_from_config(self, proxy_list: List[Dict[str, Any]]) -> None:
        """
        Load proxies from a list of configuration dictionaries.

        Args:
            proxy_list: Proxy definitions (keyword arguments of ``add_proxy``)
        """
        for proxy_config in proxy_list:
            self.add_proxy(**proxy_config)

        logger.info(f"Loaded {len(proxy_list)} proxies from config")

    def _healthy(self) -> List[ProxyInfo]:
        return [p for p in self.proxies
                if p.is_healthy(self.max_failure_count, self.min_success_rate)]

    def get_next_proxy(self) -> Optional[ProxyInfo]:
        """
        Get the next healthy proxy in rotation.

        Returns:
            Proxy info; None only when the pool is empty. When nothing is
            healthy every proxy is reactivated first.
        """
        with self._lock:
            if not self.proxies:
                return None

            healthy_proxies = self._healthy()
            if not healthy_proxies:
                logger.warning("No healthy proxies available, reactivating")
                self._reactivate_proxies()
                healthy_proxies = list(self.proxies)

            proxy = healthy_proxies[self.current_index % len(healthy_proxies)]
            self.current_index = (self.current_index + 1) % len(healthy_proxies)
            proxy.last_used = datetime.now()

        logger.debug(f"Selected proxy: {proxy.host}:{proxy.port}")
        return proxy

    def mark_proxy_success(self, proxy: ProxyInfo, response_time: float = 0.0) -> None:
        """
        Record a successful request through a proxy.

        Args:
            proxy: Proxy info
            response_time: Response time in seconds
        """
        with self._lock:
            proxy.total_requests += 1
            proxy.failure_count = 0

            if proxy.avg_response_time == 0:
                proxy.avg_response_time = response_time
            else:
                proxy.avg_response_time = (proxy.avg_response_time + response_time) / 2

    def mark_proxy_failure(self, proxy: ProxyInfo, error: str = "") -> None:
        """
        Record a failed request through a proxy.

        Args:
            proxy: Proxy info
            error: Error description
        """
        with self._lock:
            if not proxy.is_active:
                return
            proxy.failure_count += 1
            proxy.total_requests += 1
            proxy.failed_requests += 1

            if proxy.failure_count >= self.max_failure_count:
                proxy.is_active = False
                logger.warning(f"Proxy disabled: {proxy.host}:{proxy.port} "
                               f"after {proxy.failure_count} consecutive failures")

        logger.debug(f"Proxy failure: {proxy.host}:{proxy.port}, error: {error}")

    def check_proxy_health(self, proxy: ProxyInfo) -> bool:
        """
        Check a single proxy against the health check URL.

        Args:
            proxy: Proxy info

        Returns:
            Whether the proxy answered with HTTP 200
        """
        try:
            start_time = time.time()
            response = requests.get(
                self.health_check_url,
                proxies=proxy.as_requests_proxies,
                timeout=self.health_check_timeout
            )
            response_time = time.time() - start_time

            proxy.last_checked = datetime.now()
            if response.status_code == 200:
                self.mark_proxy_success(proxy, response_time)
                return True
            self.mark_proxy_failure(proxy, f"HTTP {response.status_code}")
            return False

        except requests.exceptions.RequestException as e:
            self.mark_proxy_failure(proxy, str(e))
            return False

    def check_all_proxies_health(self) -> Dict[str, int]:
        """
        Check every proxy concurrently.

        Returns:
            Health check counts
        """
        if not self.proxies:
            return {'total': 0, 'healthy': 0, 'unhealthy': 0}

        healthy_count = 0
        with ThreadPoolExecutor(max_workers=10) as executor:
            futures = [executor.submit(self.check_proxy_health, proxy) for proxy in self.proxies]
            for future in as_completed(futures):
                if future.result():
                    healthy_count += 1

        stats = {
            'total': len(self.proxies),
            'healthy': healthy_count,
            'unhealthy': len(self.proxies) - healthy_count
        }
        logger.info(f"Proxy health check finished: {stats}")
        return stats

    def _reactivate_proxies(self) -> None:
        """Give every proxy another chance with fresh counters."""
        for proxy in self.proxies:
            proxy.is_active = True
            proxy.failure_count = 0
            proxy.total_requests = 0
            proxy.failed_requests = 0
        logger.info(f"Reactivated {len(self.proxies)} proxies")

    def get_statistics(self) -> Dict[str, Any]:
        """
        Get pool statistics.

        Returns:
            Statistics dictionary
        """
        with self._lock:
            total_requests = sum(p.total_requests for p in self.proxies)
            total_failed = sum(p.failed_requests for p in self.proxies)
            return {
                'total_proxies': len(self.proxies),
                'healthy_proxies': len(self._healthy()),
                'active_proxies': len([p for p in self.proxies if p.is_active]),
                'average_success_rate': (
                    (total_requests - total_failed) / total_requests if total_requests else 0.0
                ),
            }

    def __len__(self) -> int:
        return len(self.proxies)


def create_proxy_pool(proxy_config: Optional[Dict[str, Any]] = None) -> ProxyPool:
    """
    Build a proxy pool from configuration.

    Args:
        proxy_config: ``{"settings": {...}, "proxies": [...]}``

    Returns:
        Proxy pool instance (possibly empty)
    """
    proxy_config = proxy_config or {}
    pool = ProxyPool(proxy_config.get('settings', {}))

    if proxy_config.get('proxies'):
        pool.load_proxies_from_config(proxy_config['proxies'])

    return pool
