"""
Best-effort profile enrichment.

Per dedup key: NEW -> PENDING_DETAIL -> ENRICHED | DEGRADED, or NEW ->
DEGRADED when the detail fetch is skipped. A degraded record is the listing
record unchanged; enrichment failures never fail the crawl.
"""

import threading
from collections import OrderedDict
from dataclasses import dataclass
from enum import Enum
from typing import Dict, List, Optional, Tuple

from directory_crawler.concurrent.models import RequestTask, TaskLabel
from directory_crawler.data.models import EntityRecord, is_absent
from directory_crawler.utils.logging import get_business_logger


logger = get_business_logger('enrichment')


class EnrichmentState(Enum):
    NEW = "new"
    PENDING_DETAIL = "pending_detail"
    ENRICHED = "enriched"
    DEGRADED = "degraded"


class SkipReason(Enum):
    DISABLED = "disabled"
    ALREADY_COMPLETE = "already_complete"
    NO_URL = "no_url"
    BACKLOG_FULL = "backlog_full"
    ALREADY_PENDING = "already_pending"


@dataclass
class EnrichmentDecision:
    """What to do with a fresh listing record."""
    key: str
    record: EntityRecord
    state: EnrichmentState
    task: Optional[RequestTask] = None
    skip_reason: Optional[SkipReason] = None

    @property
    def emit_now(self) -> bool:
        return self.state == EnrichmentState.DEGRADED


class EnrichmentController:
    """Owns the pending-enrichment map; no other component mutates it."""

    def __init__(self,
                 enabled: bool = True,
                 backlog_limit: int = 30,
                 retry_on_failure: bool = False,
                 detail_max_retries: int = 0):
        self.enabled = enabled
        self.backlog_limit = backlog_limit
        self.retry_on_failure = retry_on_failure
        self.detail_max_retries = detail_max_retries if retry_on_failure else 0

        self._pending: "OrderedDict[str, EntityRecord]" = OrderedDict()
        self._states: Dict[str, EnrichmentState] = {}
        self._lock = threading.Lock()

    @property
    def pending_count(self) -> int:
        with self._lock:
            return len(self._pending)

    def state_of(self, key: str) -> EnrichmentState:
        with self._lock:
            return self._states.get(key, EnrichmentState.NEW)

    def is_pending(self, key: str) -> bool:
        with self._lock:
            return key in self._pending

    def consider(self, record: EntityRecord, key: str, referer: str) -> EnrichmentDecision:
        """
        Decide between immediate emission and a detail fetch.

        A record already pending is reported as such and must not be emitted
        by the caller.
        """
        skip = self._skip_reason(record)
        if skip is not None:
            return self._degrade_now(key, record, skip)

        with self._lock:
            if key in self._pending:
                return EnrichmentDecision(key, record, EnrichmentState.PENDING_DETAIL,
                                          skip_reason=SkipReason.ALREADY_PENDING)
            if len(self._pending) >= self.backlog_limit:
                self._states[key] = EnrichmentState.DEGRADED
                return EnrichmentDecision(key, record, EnrichmentState.DEGRADED,
                                          skip_reason=SkipReason.BACKLOG_FULL)
            self._pending[key] = record
            self._states[key] = EnrichmentState.PENDING_DETAIL

        task = RequestTask(
            url=record.url,
            label=TaskLabel.DETAIL,
            referer=referer,
            dedup_key=key,
            max_retries=self.detail_max_retries,
        )
        return EnrichmentDecision(key, record, EnrichmentState.PENDING_DETAIL, task=task)

    def _skip_reason(self, record: EntityRecord) -> Optional[SkipReason]:
        if not self.enabled:
            return SkipReason.DISABLED
        if is_absent(record.url):
            return SkipReason.NO_URL
        if not is_absent(record.description) and not is_absent(record.profile_image):
            return SkipReason.ALREADY_COMPLETE
        return None

    def _degrade_now(self, key: str, record: EntityRecord, reason: SkipReason) -> EnrichmentDecision:
        with self._lock:
            self._states[key] = EnrichmentState.DEGRADED
        return EnrichmentDecision(key, record, EnrichmentState.DEGRADED, skip_reason=reason)

    def cancel(self, key: str) -> Optional[EntityRecord]:
        """Take back a pending entry whose detail task could not be queued."""
        with self._lock:
            record = self._pending.pop(key, None)
            if record is not None:
                self._states[key] = EnrichmentState.NEW
            return record

    def complete(self, key: str, detail: Dict[str, Optional[str]],
                 fallback_url: Optional[str] = None) -> Optional[EntityRecord]:
        """
        Merge detail fields onto the pending base record.

        Detail fields only win when non-empty. Returns None when the key is
        no longer pending (already flushed or degraded).
        """
        with self._lock:
            base = self._pending.pop(key, None)
            if base is None:
                return None
            self._states[key] = EnrichmentState.ENRICHED

        overlay = EntityRecord(**{k: v for k, v in detail.items() if not is_absent(v)})
        if is_absent(overlay.url):
            overlay.url = base.url or fallback_url
        enriched = base.overlay(overlay, base.source)
        logger.debug(f"Enriched {key}")
        return enriched

    def degrade(self, key: str, reason: str = "") -> Optional[EntityRecord]:
        """
        Give up on the detail fetch and return the base record unchanged.

        Returns None when the key is no longer pending.
        """
        with self._lock:
            base = self._pending.pop(key, None)
            if base is None:
                return None
            self._states[key] = EnrichmentState.DEGRADED
        logger.debug(f"Degraded {key}: {reason}")
        return base

    def flush(self) -> List[Tuple[str, EntityRecord]]:
        """Degrade everything still pending, oldest first."""
        with self._lock:
            flushed = list(self._pending.items())
            self._pending.clear()
            for key, _ in flushed:
                self._states[key] = EnrichmentState.DEGRADED
        if flushed:
            logger.info(f"Flushing {len(flushed)} pending enrichments as listing records")
        return flushed
