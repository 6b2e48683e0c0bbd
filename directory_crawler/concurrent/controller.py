"""
Crawl controller.
Wires the frontier, worker pool, evasion policy, extraction and enrichment
into one budgeted crawl run.
"""

import threading
from datetime import datetime
from typing import List, Optional

from config import CrawlInput, CrawlerConfig
from directory_crawler.crawlers.extractor import (
    extract_rendered, extract_structured, parse_detail, parse_document
)
from directory_crawler.crawlers.http_client import HTTPClient, RateLimitConfig, UserAgentRotator, FetchResponse
from directory_crawler.crawlers.pagination import PaginationResolver, build_search_url, is_search_url
from directory_crawler.crawlers.reconciler import MergePrecedence, filter_records, reconcile
from directory_crawler.data.identity import dedup_key, to_absolute_url
from directory_crawler.data.models import EntityRecord
from directory_crawler.data.sink import MemorySink, OutputSink
from directory_crawler.services.enrichment import EnrichmentController, SkipReason
from directory_crawler.utils.errors import (
    BlockedError, DirectoryCrawlerError, FetchError, NetworkError, handle_error, is_degrading_failure
)
from directory_crawler.utils.logging import get_business_logger, log_business_operation
from directory_crawler.utils.proxy_pool import ProxyPool
from .frontier import CrawlState, Frontier
from .models import CrawlBudget, CrawlResult, DEFAULT_REFERER, RequestTask, TaskLabel, TaskResult
from .rate_controller import RateController, clamp_concurrency, compute_backoff_delay
from .session_pool import CrawlSession, SessionPool
from .thread_pool import WorkerPool


logger = get_business_logger('crawler')


class CrawlController:
    """Runs one crawl from seed URLs to a budgeted set of emitted records."""

    def __init__(self,
                 crawl_input: CrawlInput,
                 crawler_config: Optional[CrawlerConfig] = None,
                 sink: Optional[OutputSink] = None,
                 http_client: Optional[HTTPClient] = None,
                 proxy_pool: Optional[ProxyPool] = None):
        """
        Initialize crawl controller.

        Args:
            crawl_input: What to crawl; unusable limits fall back to defaults
            crawler_config: Fetching, retry and merge behaviour
            sink: Where emitted records go (in-memory when omitted)
            http_client: Fetch collaborator (a pooled ``HTTPClient`` when omitted)
            proxy_pool: Optional proxies for the crawl identities
        """
        self.config = crawler_config or CrawlerConfig()
        self.crawl_input = crawl_input.normalized(self.config.hard_max_concurrency)
        self.base_url = self.config.base_url
        self.concurrency = clamp_concurrency(self.crawl_input.max_concurrency, self.config.hard_max_concurrency)
        self.precedence = MergePrecedence(self.config.merge_precedence)

        self.budget = CrawlBudget.for_concurrency(
            self.crawl_input.results_wanted,
            self.crawl_input.max_pages,
            self.concurrency
        )
        self.state = CrawlState(self.budget)
        self.frontier = Frontier(self.state)
        self.sink = sink if sink is not None else MemorySink()

        self._owns_http_client = http_client is None
        self.http_client = http_client or HTTPClient(
            RateLimitConfig(
                same_domain_delay=self.config.same_domain_delay,
                requests_per_second=self.config.requests_per_second
            ),
            timeout=self.config.request_timeout,
            pool_size=self.config.hard_max_concurrency
        )
        self.session_pool = SessionPool(
            pool_size=self.concurrency,
            max_consecutive_failures=self.config.max_consecutive_failures,
            proxy_pool=proxy_pool,
            user_agent_rotator=UserAgentRotator(self.config.user_agents),
            connection_pool_size=self.concurrency
        )
        self.rate_controller = RateController(
            self.concurrency,
            min_concurrency=self.config.min_concurrency,
            recovery_successes=self.config.recovery_successes
        )
        self.enrichment = EnrichmentController(
            enabled=self.crawl_input.fetch_details,
            backlog_limit=self.budget.detail_backlog_limit,
            retry_on_failure=self.config.retry_detail_on_failure,
            detail_max_retries=self.config.detail_max_retries
        )
        self.resolver = PaginationResolver()

        self._errors: List[str] = []
        self._errors_lock = threading.Lock()

    # Seeds

    def build_seed_tasks(self) -> List[RequestTask]:
        """
        LIST tasks for every start URL.

        The built search URL is added when no start URL is a search URL.
        """
        urls = self.crawl_input.start_url_strings()
        if not any(is_search_url(url) for url in urls):
            urls.append(build_search_url(self.crawl_input.city, self.crawl_input.speciality, 1,
                                         locality=self.crawl_input.locality))

        tasks = []
        seen = set()
        for url in urls:
            absolute = to_absolute_url(url, self.base_url)
            if not absolute or absolute in seen:
                continue
            seen.add(absolute)
            tasks.append(RequestTask(
                url=absolute,
                label=TaskLabel.LIST,
                page=1,
                seed=absolute,
                referer=DEFAULT_REFERER,
                max_retries=self.config.list_max_retries
            ))
        return tasks

    # Run

    @log_business_operation('crawler', 'crawl run')
    def run(self) -> CrawlResult:
        """
        Crawl until the budget is reached or no work is left.

        Never raises for page-level failures; they are counted in the result.
        """
        result = CrawlResult()
        seeds = self.build_seed_tasks()
        for task in seeds:
            self.frontier.enqueue(task)
        logger.info(f"Crawl started: {len(seeds)} seeds, concurrency {self.concurrency}, "
                    f"target {self.budget.results_wanted} records, max {self.budget.max_pages} pages")

        pool = WorkerPool(
            self.frontier,
            self.process_task,
            max_workers=self.concurrency,
            result_callback=self._handle_task_result
        )
        pool.start()
        try:
            self.frontier.wait_until_drained(stop_early=self.config.abort_on_budget)
            if self.state.stopped and self.config.abort_on_budget:
                self.frontier.discard_pending()
        finally:
            self.frontier.close()
            pool.shutdown()

        result.flushed = self._flush_pending()
        self._close()

        result.saved = self.state.saved
        result.list_pages_enqueued = self.state.list_pages_enqueued.get_value()
        result.list_pages_processed = self.state.list_pages_processed.get_value()
        result.detail_pages_enqueued = self.state.detail_pages_enqueued.get_value()
        result.detail_pages_enriched = self.state.detail_pages_enriched.get_value()
        result.detail_pages_blocked = self.state.detail_pages_blocked.get_value()
        result.detail_pages_degraded = self.state.detail_pages_degraded.get_value()
        result.failed_list_tasks = self.state.failed_list_tasks.get_value()
        result.stopped_on_budget = self.state.budget_reached
        with self._errors_lock:
            result.errors = list(self._errors)
        result.completed_at = datetime.now()

        logger.info(
            f"Done. saved={result.saved}, listPagesEnqueued={result.list_pages_enqueued}, "
            f"detailPagesEnqueued={result.detail_pages_enqueued}, "
            f"detailBlocked={result.detail_pages_blocked}"
        )
        return result

    def _close(self) -> None:
        self.session_pool.close()
        if self._owns_http_client:
            self.http_client.close()

    def _flush_pending(self) -> int:
        """Emit still-pending listing records, up to the remaining budget."""
        flushed = 0
        for key, record in self.enrichment.flush():
            if self.state.try_reserve_emission(key):
                self.sink.emit(record)
                flushed += 1
        return flushed

    def _record_error(self, message: str) -> None:
        with self._errors_lock:
            self._errors.append(message)

    def _handle_task_result(self, result: TaskResult) -> None:
        if not result.success and result.error_message:
            self._record_error(f"{result.task.unique_key}: {result.error_message}")

    # Task processing

    def prepare_session(self, task: RequestTask) -> CrawlSession:
        """Pick the identity for a task; a task retried twice gets a fresh one."""
        session = self.session_pool.acquire()
        if task.retry_count >= 2:
            self.session_pool.mark_bad(session, f"{task.unique_key} retried {task.retry_count} times")
            session = self.session_pool.acquire()
        task.session_id = session.session_id
        return session

    def process_task(self, task: RequestTask, worker_id: str) -> TaskResult:
        """Fetch one task and hand the page to its handler."""
        if self.state.stopped and self.config.abort_on_budget:
            return TaskResult(task=task, worker_id=worker_id, success=True)

        session = self.prepare_session(task)
        headers = session.headers_for(task)

        self.rate_controller.acquire()
        try:
            response = self.http_client.fetch(
                task.url,
                headers=headers,
                session=session.http_session,
                proxies=session.proxies
            )
        except FetchError as e:
            return self.handle_failure(task, session, e, worker_id)
        finally:
            self.rate_controller.release()

        if not response.is_html:
            error = NetworkError(f"Unexpected content type {response.content_type!r}", task.url)
            return self.handle_failure(task, session, error, worker_id)

        self.session_pool.mark_good(session, response.elapsed)
        self.rate_controller.record_success()

        try:
            if task.label == TaskLabel.LIST:
                return self.handle_list(task, response, worker_id)
            return self.handle_detail(task, response, worker_id)
        except DirectoryCrawlerError as e:
            return self.handle_failure(task, session, e, worker_id)

    def handle_list(self, task: RequestTask, response: FetchResponse, worker_id: str) -> TaskResult:
        """Extract, reconcile, filter and emit or enrich listing records, then paginate."""
        self.state.list_pages_processed.increment()
        doc = parse_document(response.body)

        structured = extract_structured(doc, self.base_url)
        rendered = extract_rendered(doc, self.base_url)
        found = len(structured) + len(rendered)
        logger.debug(f"{task.url}: {len(structured)} structured, {len(rendered)} rendered records")

        records = reconcile(
            structured, rendered, self.precedence,
            city=self.crawl_input.city,
            speciality=self.crawl_input.speciality,
            base_url=self.base_url
        )
        records = filter_records(records, self.crawl_input.min_experience, self.crawl_input.min_rating)

        emitted = 0
        follow_ups = 0
        for record in records:
            if self.state.stopped:
                break
            key = dedup_key(record, self.base_url)
            if key is None or self.state.is_emitted(key):
                continue

            decision = self.enrichment.consider(record, key, referer=task.url)
            if decision.task is not None:
                if self.frontier.enqueue(decision.task):
                    follow_ups += 1
                    continue
                record = self.enrichment.cancel(key) or record
            elif decision.skip_reason == SkipReason.ALREADY_PENDING:
                continue

            if self._emit(key, record):
                emitted += 1

        if self.frontier.should_paginate(task.seed, task.page, found):
            next_url = self.resolver.resolve_next(doc, task.url, task.page)
            if next_url:
                next_task = RequestTask(
                    url=next_url,
                    label=TaskLabel.LIST,
                    page=task.page + 1,
                    seed=task.seed,
                    referer=task.url,
                    max_retries=self.config.list_max_retries
                )
                if self.frontier.enqueue(next_task):
                    follow_ups += 1

        return TaskResult(task=task, worker_id=worker_id, success=True,
                          records_emitted=emitted, follow_ups=follow_ups)

    def handle_detail(self, task: RequestTask, response: FetchResponse, worker_id: str) -> TaskResult:
        """Merge profile fields onto the pending listing record and emit it."""
        doc = parse_document(response.body)
        detail = parse_detail(doc, task.url, self.base_url)

        record = self.enrichment.complete(task.dedup_key, detail, fallback_url=task.url)
        if record is None:
            return TaskResult(task=task, worker_id=worker_id, success=True)

        self.state.detail_pages_enriched.increment()
        emitted = 1 if self._emit(task.dedup_key, record) else 0
        return TaskResult(task=task, worker_id=worker_id, success=True, records_emitted=emitted)

    def handle_failure(self,
                       task: RequestTask,
                       session: CrawlSession,
                       error: DirectoryCrawlerError,
                       worker_id: str) -> TaskResult:
        """
        Penalize the identity, then retry with backoff, degrade, or give up.

        DETAIL tasks degrade to the listing record once retries are spent;
        LIST tasks are counted as failed.
        """
        if isinstance(error, BlockedError):
            self.session_pool.mark_bad(session, error.message)
            self.rate_controller.record_block()
        elif isinstance(error, FetchError):
            self.session_pool.mark_failure(session, error.message)

        if task.can_retry:
            delay = compute_backoff_delay(
                task.retry_count,
                base=self.config.backoff_base,
                jitter=self.config.backoff_jitter,
                min_delay=self.config.backoff_min_delay,
                max_delay=self.config.backoff_max_delay
            )
            if self.frontier.requeue(task.retried(error.message), delay):
                return TaskResult(task=task, worker_id=worker_id, success=False, follow_ups=1)

        if task.label == TaskLabel.DETAIL:
            emitted = self._degrade_detail(task, error)
            return TaskResult(task=task, worker_id=worker_id, success=True, records_emitted=emitted)

        self.state.failed_list_tasks.increment()
        handle_error(error, logger, {"url": task.url, "page": task.page,
                                     "retries": task.retry_count}, reraise=False)
        return TaskResult(task=task, worker_id=worker_id, success=False,
                          error_message=f"{type(error).__name__}: {error.message}")

    def _degrade_detail(self, task: RequestTask, error: DirectoryCrawlerError) -> int:
        record = self.enrichment.degrade(task.dedup_key, error.message)
        if record is None:
            return 0
        if is_degrading_failure(error):
            self.state.detail_pages_blocked.increment()
        else:
            self.state.detail_pages_degraded.increment()
        logger.info(f"Detail fetch failed for {task.url} ({error.message}), keeping listing record")
        return 1 if self._emit(task.dedup_key, record) else 0

    def _emit(self, key: str, record: EntityRecord) -> bool:
        """Write ``record`` if its key still has an output slot."""
        if not self.state.try_reserve_emission(key):
            return False
        self.sink.emit(record)
        if self.state.stopped and self.config.abort_on_budget:
            self.frontier.discard_pending()
        return True

    def get_statistics(self) -> dict:
        return {
            "saved": self.state.saved,
            "pending_enrichments": self.enrichment.pending_count,
            "frontier_pending": self.frontier.pending,
            "in_flight": self.frontier.in_flight,
            "rate_controller": self.rate_controller.get_statistics(),
            "sessions": self.session_pool.get_statistics(),
        }
