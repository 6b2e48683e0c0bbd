"""
Property-based tests for the frontier and the crawl budget.

**Property: budget respected** - no more than ``results_wanted`` emissions are
ever reserved, regardless of how many keys are offered or by how many threads.
"""

import threading
import time

import pytest
from hypothesis import given, strategies as st, settings

from directory_crawler.concurrent.frontier import CrawlState, Frontier
from directory_crawler.concurrent.models import CrawlBudget, RequestTask, TaskLabel
from directory_crawler.utils.errors import ValidationError


def list_task(page=1, seed="seed"):
    return RequestTask(url=f"https://www.practo.com/search/doctors?page={page}",
                       label=TaskLabel.LIST, page=page, seed=seed)


def detail_task(key):
    return RequestTask(url=key, label=TaskLabel.DETAIL, dedup_key=key, max_retries=0)


class TestCrawlBudget:
    """Budget validation and backlog sizing."""

    @pytest.mark.parametrize("concurrency,expected", [(1, 20), (6, 20), (7, 21), (20, 60)])
    def test_backlog_limit(self, concurrency, expected):
        budget = CrawlBudget.for_concurrency(50, 10, concurrency)

        assert budget.detail_backlog_limit == expected

    def test_rejects_non_positive_limits(self):
        with pytest.raises(ValidationError) as exc_info:
            CrawlBudget(results_wanted=0, max_pages=-1)

        assert len(exc_info.value.details["errors"]) == 2


class TestEmissionReservation:
    """Atomic budget and dedup check for emissions."""

    @settings(max_examples=50, deadline=None)
    @given(wanted=st.integers(min_value=1, max_value=30),
           keys=st.lists(st.integers(min_value=0, max_value=50), max_size=80))
    def test_never_exceeds_budget(self, wanted, keys):
        state = CrawlState(CrawlBudget(results_wanted=wanted))

        reserved = [k for k in keys if state.try_reserve_emission(f"key-{k}")]

        assert len(reserved) == min(wanted, len(set(keys)))
        assert len(set(reserved)) == len(reserved)
        assert state.saved == len(reserved)
        assert state.stopped == (len(reserved) == wanted)

    def test_concurrent_reservations_respect_budget(self):
        state = CrawlState(CrawlBudget(results_wanted=25))
        granted = []
        lock = threading.Lock()

        def worker(offset):
            for i in range(20):
                if state.try_reserve_emission(f"k-{offset}-{i}"):
                    with lock:
                        granted.append(1)

        threads = [threading.Thread(target=worker, args=(n,)) for n in range(8)]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()

        assert len(granted) == 25
        assert state.saved == 25
        assert state.remaining == 0
        assert state.stop_event.is_set()

    def test_empty_key_refused(self):
        state = CrawlState(CrawlBudget(results_wanted=5))

        assert not state.try_reserve_emission(None)
        assert not state.try_reserve_emission("")
        assert state.saved == 0


class TestFrontier:
    """Work queue semantics."""

    def setup_method(self):
        self.state = CrawlState(CrawlBudget(results_wanted=10, max_pages=3))
        self.frontier = Frontier(self.state)

    def test_duplicate_unique_key_refused(self):
        assert self.frontier.enqueue(list_task(1))
        assert not self.frontier.enqueue(list_task(1))
        assert self.frontier.enqueue(detail_task("https://www.practo.com/doctor/a"))
        assert not self.frontier.enqueue(detail_task("https://www.practo.com/doctor/a"))

        assert self.state.list_pages_enqueued.get_value() == 1
        assert self.state.detail_pages_enqueued.get_value() == 1
        assert self.frontier.pending == 2

    def test_unique_keys(self):
        assert list_task(2, seed="s").unique_key == "LIST:s:2"
        assert detail_task("k").unique_key == "DETAIL:k"

    def test_enqueue_refused_after_stop(self):
        self.state.stop_event.set()

        assert not self.frontier.enqueue(list_task(1))
        assert self.frontier.pending == 0

    def test_get_tracks_in_flight(self):
        self.frontier.enqueue(list_task(1))

        task = self.frontier.get(timeout=0.1)

        assert task is not None
        assert self.frontier.in_flight == 1
        assert not self.frontier.drained
        self.frontier.task_done()
        assert self.frontier.drained

    def test_get_times_out_when_empty(self):
        assert self.frontier.get(timeout=0.05) is None

    def test_requeue_delays_task(self):
        task = list_task(1)
        self.frontier.enqueue(task)
        taken = self.frontier.get(timeout=0.1)
        self.frontier.task_done()

        assert self.frontier.requeue(taken.retried("boom"), delay=0.3)
        assert self.frontier.get(timeout=0.05) is None

        retried = self.frontier.get(timeout=1.0)
        assert retried is not None
        assert retried.retry_count == 1
        assert retried.error_message == "boom"

    def test_should_paginate(self):
        assert self.frontier.should_paginate("s", 1, records_found=5)
        assert not self.frontier.should_paginate("s", 3, records_found=5)
        assert not self.frontier.should_paginate("s", 1, records_found=0)

        self.state.stop_event.set()
        assert not self.frontier.should_paginate("s", 1, records_found=5)

    def test_pages_for_seed(self):
        self.frontier.enqueue(list_task(1, seed="a"))
        self.frontier.enqueue(list_task(2, seed="a"))

        assert self.frontier.pages_for("a") == 2
        assert self.frontier.pages_for("b") == 0

    def test_discard_pending(self):
        for page in range(1, 4):
            self.frontier.enqueue(list_task(page))

        dropped = self.frontier.discard_pending()

        assert len(dropped) == 3
        assert self.frontier.drained

    def test_wait_until_drained_returns_on_stop(self):
        self.frontier.enqueue(list_task(1))
        timer = threading.Timer(0.1, self.state.stop_event.set)
        timer.start()

        start = time.monotonic()
        self.frontier.wait_until_drained(stop_early=True, poll_interval=0.05)

        assert time.monotonic() - start < 2.0
        timer.join()

    def test_closed_frontier_returns_nothing(self):
        self.frontier.enqueue(list_task(1))
        self.frontier.close()

        assert self.frontier.get(timeout=0.05) is None
        assert not self.frontier.enqueue(list_task(2))
