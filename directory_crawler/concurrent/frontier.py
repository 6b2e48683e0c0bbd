"""
Crawl frontier and the per-run crawl state.

The frontier owns the work queue; ``CrawlState`` owns the budget counters and
the emitted-key index. Both are shared by every worker and all of their
check-then-set operations happen under a lock.
"""

import heapq
import itertools
import threading
import time
from typing import Dict, List, Optional, Set, Tuple

from directory_crawler.data.identity import DedupIndex
from directory_crawler.utils.logging import get_business_logger
from .models import CrawlBudget, RequestTask, TaskLabel
from .thread_safe import ThreadSafeCounter


logger = get_business_logger('frontier')


class CrawlState:
    """Budget counters and emitted keys for one run."""

    def __init__(self, budget: CrawlBudget):
        self.budget = budget
        self.emitted = DedupIndex()
        self.stop_event = threading.Event()
        self._lock = threading.Lock()
        self._saved = 0

        self.list_pages_enqueued = ThreadSafeCounter()
        self.list_pages_processed = ThreadSafeCounter()
        self.detail_pages_enqueued = ThreadSafeCounter()
        self.detail_pages_enriched = ThreadSafeCounter()
        self.detail_pages_blocked = ThreadSafeCounter()
        self.detail_pages_degraded = ThreadSafeCounter()
        self.failed_list_tasks = ThreadSafeCounter()

    @property
    def saved(self) -> int:
        with self._lock:
            return self._saved

    @property
    def remaining(self) -> int:
        with self._lock:
            return max(0, self.budget.results_wanted - self._saved)

    @property
    def budget_reached(self) -> bool:
        with self._lock:
            return self._saved >= self.budget.results_wanted

    def try_reserve_emission(self, key: Optional[str]) -> bool:
        """
        Claim one output slot for ``key``.

        Refused when the budget is exhausted or the key was already emitted.
        The caller that gets True is the only one allowed to emit the key.
        """
        if not key:
            return False
        with self._lock:
            if self._saved >= self.budget.results_wanted:
                return False
            if not self.emitted.add_if_absent(key):
                return False
            self._saved += 1
            saved = self._saved

        if saved % 10 == 0 or saved == self.budget.results_wanted:
            logger.info(f"Saved {saved}/{self.budget.results_wanted}")
        if saved >= self.budget.results_wanted:
            self.stop_event.set()
        return True

    def is_emitted(self, key: str) -> bool:
        return key in self.emitted

    @property
    def stopped(self) -> bool:
        return self.stop_event.is_set()


class Frontier:
    """
    Work queue with unique task keys and delayed (backed-off) retries.

    A unique key is accepted once per run; retries of the same task go in
    through ``requeue`` with a ready time.
    """

    def __init__(self, state: CrawlState):
        self.state = state
        self._condition = threading.Condition()
        self._heap: List[Tuple[float, int, RequestTask]] = []
        self._sequence = itertools.count()
        self._seen_keys: Set[str] = set()
        self._in_flight = 0
        self._pages_by_seed: Dict[str, int] = {}
        self._closed = False

    def enqueue(self, task: RequestTask) -> bool:
        """
        Add new work.

        Returns:
            False for a duplicate key, after stop, or once the budget is reached
        """
        if self.state.stopped or self.state.budget_reached:
            return False
        key = task.unique_key
        with self._condition:
            if self._closed or key in self._seen_keys:
                return False
            self._seen_keys.add(key)
            if task.label == TaskLabel.LIST:
                seen_page = self._pages_by_seed.get(task.seed, 0)
                self._pages_by_seed[task.seed] = max(seen_page, task.page)
            heapq.heappush(self._heap, (time.monotonic(), next(self._sequence), task))
            self._condition.notify_all()

        if task.label == TaskLabel.LIST:
            self.state.list_pages_enqueued.increment()
        else:
            self.state.detail_pages_enqueued.increment()
        logger.debug(f"Enqueued {key}: {task.url}")
        return True

    def requeue(self, task: RequestTask, delay: float = 0.0) -> bool:
        """Put a retried task back, ready after ``delay`` seconds."""
        with self._condition:
            if self._closed or self.state.stopped:
                return False
            heapq.heappush(self._heap, (time.monotonic() + delay, next(self._sequence), task))
            self._condition.notify_all()
        logger.debug(f"Requeued {task.unique_key} (retry {task.retry_count}) in {delay:.2f}s")
        return True

    def get(self, timeout: float = 1.0) -> Optional[RequestTask]:
        """
        Next ready task, or None when nothing became ready within ``timeout``.

        A returned task counts as in flight until ``task_done``.
        """
        deadline = time.monotonic() + timeout
        with self._condition:
            while True:
                if self._closed:
                    return None
                now = time.monotonic()
                if self._heap and self._heap[0][0] <= now:
                    _, _, task = heapq.heappop(self._heap)
                    self._in_flight += 1
                    return task
                remaining = deadline - now
                if remaining <= 0:
                    return None
                wait = remaining
                if self._heap:
                    wait = min(wait, self._heap[0][0] - now)
                self._condition.wait(timeout=max(wait, 0.01))

    def task_done(self) -> None:
        with self._condition:
            self._in_flight = max(0, self._in_flight - 1)
            self._condition.notify_all()

    @property
    def drained(self) -> bool:
        """No queued, delayed or in-flight work left."""
        with self._condition:
            return not self._heap and self._in_flight == 0

    @property
    def pending(self) -> int:
        with self._condition:
            return len(self._heap)

    @property
    def in_flight(self) -> int:
        with self._condition:
            return self._in_flight

    def pages_for(self, seed: str) -> int:
        with self._condition:
            return self._pages_by_seed.get(seed, 0)

    def should_paginate(self, seed: str, page: int, records_found: int) -> bool:
        """
        Whether a listing lineage may continue past ``page``.

        Stops on budget, on the page cap, and on a page that yielded no
        records from either source.
        """
        if self.state.stopped or self.state.budget_reached:
            return False
        if page >= self.state.budget.max_pages:
            return False
        if records_found == 0:
            logger.info(f"Empty listing page {page} for seed {seed}, stopping pagination")
            return False
        return True

    def discard_pending(self) -> List[RequestTask]:
        """Drop every queued task and return them."""
        with self._condition:
            dropped = [task for _, _, task in self._heap]
            self._heap.clear()
            self._condition.notify_all()
        if dropped:
            logger.info(f"Discarded {len(dropped)} queued tasks")
        return dropped

    def wait_until_drained(self, stop_early: bool = True, poll_interval: float = 0.5) -> None:
        """Block until no work is left, or until the stop event fires when ``stop_early``."""
        with self._condition:
            while self._heap or self._in_flight:
                if stop_early and self.state.stopped:
                    return
                self._condition.wait(timeout=poll_interval)

    def close(self) -> None:
        with self._condition:
            self._closed = True
            self._condition.notify_all()
