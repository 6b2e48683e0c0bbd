"""
Concurrent crawl framework.

Main Components:
- Frontier / CrawlState: shared work queue, budget and emitted keys
- WorkerPool: worker thread lifecycle
- RateController: adaptive concurrency and retry backoff
- SessionPool: rotating crawl identities

The orchestrating ``CrawlController`` lives in ``.controller``.
"""

from .models import (
    CrawlBudget,
    CrawlResult,
    RequestTask,
    TaskLabel,
    TaskResult,
    TaskStatus,
    WorkerState
)

from .thread_safe import ThreadSafeCounter
from .frontier import CrawlState, Frontier
from .rate_controller import RateController, clamp_concurrency, compute_backoff_delay
from .session_pool import CrawlSession, SessionPool
from .thread_pool import WorkerPool, WorkerThread

__all__ = [
    # Core models
    'CrawlBudget',
    'CrawlResult',
    'RequestTask',
    'TaskLabel',
    'TaskResult',
    'TaskStatus',
    'WorkerState',

    # Thread-safe utilities
    'ThreadSafeCounter',

    # Main components
    'CrawlState',
    'Frontier',
    'RateController',
    'clamp_concurrency',
    'compute_backoff_delay',
    'CrawlSession',
    'SessionPool',
    'WorkerPool',
    'WorkerThread'
]
