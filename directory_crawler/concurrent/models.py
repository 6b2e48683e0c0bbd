"""
Data models for the crawl frontier and worker pool.
"""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional

from directory_crawler.utils.errors import ValidationError


HARD_MAX_CONCURRENCY = 20
DEFAULT_REFERER = "https://www.google.com/"


class TaskLabel(Enum):
    """Kind of crawl work."""
    LIST = "LIST"
    DETAIL = "DETAIL"


class TaskStatus(Enum):
    """Task execution status."""
    PENDING = "pending"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"
    RETRYING = "retrying"


class WorkerState(Enum):
    """Worker thread state."""
    STARTING = "starting"
    IDLE = "idle"
    WORKING = "working"
    STOPPED = "stopped"


@dataclass
class RequestTask:
    """One unit of crawl work."""
    url: str
    label: TaskLabel = TaskLabel.LIST
    page: int = 1
    seed: str = ""
    referer: str = DEFAULT_REFERER
    dedup_key: Optional[str] = None
    retry_count: int = 0
    max_retries: int = 3
    session_id: Optional[str] = None
    status: TaskStatus = TaskStatus.PENDING
    created_at: datetime = field(default_factory=datetime.now)
    error_message: Optional[str] = None

    @property
    def unique_key(self) -> str:
        if self.label == TaskLabel.DETAIL:
            return f"DETAIL:{self.dedup_key or self.url}"
        return f"LIST:{self.seed}:{self.page}"

    @property
    def can_retry(self) -> bool:
        return self.retry_count < self.max_retries

    def retried(self, error_message: str) -> "RequestTask":
        """The same work with the retry counter advanced."""
        return RequestTask(
            url=self.url,
            label=self.label,
            page=self.page,
            seed=self.seed,
            referer=self.referer,
            dedup_key=self.dedup_key,
            retry_count=self.retry_count + 1,
            max_retries=self.max_retries,
            status=TaskStatus.RETRYING,
            error_message=error_message,
        )


@dataclass
class CrawlBudget:
    """Result and page limits for one run."""
    results_wanted: int = 50
    max_pages: int = 10
    detail_backlog_limit: int = 30

    def __post_init__(self):
        self.validate()

    def validate(self) -> None:
        """
        Raises:
            ValidationError: If a limit is not positive
        """
        errors = []
        if self.results_wanted < 1:
            errors.append("results_wanted must be positive")
        if self.max_pages < 1:
            errors.append("max_pages must be positive")
        if self.detail_backlog_limit < 0:
            errors.append("detail_backlog_limit must not be negative")
        if errors:
            raise ValidationError("Crawl budget validation failed", {"errors": errors})

    @classmethod
    def for_concurrency(cls, results_wanted: int, max_pages: int, max_concurrency: int) -> "CrawlBudget":
        """Budget with the detail backlog sized from the worker count."""
        return cls(
            results_wanted=results_wanted,
            max_pages=max_pages,
            detail_backlog_limit=max(20, max_concurrency * 3)
        )


@dataclass
class TaskResult:
    """Outcome of one processed task."""
    task: RequestTask
    worker_id: str
    success: bool
    records_emitted: int = 0
    follow_ups: int = 0
    error_message: Optional[str] = None
    execution_time: float = 0.0


@dataclass
class CrawlResult:
    """Final report of a crawl run."""
    saved: int = 0
    list_pages_enqueued: int = 0
    list_pages_processed: int = 0
    detail_pages_enqueued: int = 0
    detail_pages_enriched: int = 0
    detail_pages_blocked: int = 0
    detail_pages_degraded: int = 0
    failed_list_tasks: int = 0
    flushed: int = 0
    stopped_on_budget: bool = False
    errors: List[str] = field(default_factory=list)
    started_at: datetime = field(default_factory=datetime.now)
    completed_at: Optional[datetime] = None

    @property
    def duration_seconds(self) -> float:
        if self.completed_at is None:
            return 0.0
        return (self.completed_at - self.started_at).total_seconds()

    def summary(self) -> Dict[str, Any]:
        return {
            "saved": self.saved,
            "list_pages_enqueued": self.list_pages_enqueued,
            "list_pages_processed": self.list_pages_processed,
            "detail_pages_enqueued": self.detail_pages_enqueued,
            "detail_pages_enriched": self.detail_pages_enriched,
            "detail_pages_blocked": self.detail_pages_blocked,
            "detail_pages_degraded": self.detail_pages_degraded,
            "failed_list_tasks": self.failed_list_tasks,
            "flushed": self.flushed,
            "stopped_on_budget": self.stopped_on_budget,
            "duration_seconds": round(self.duration_seconds, 2),
            "errors": len(self.errors),
        }
