"""
Reconciliation of structured and rendered records, and the listing filter.
"""

from enum import Enum
from typing import Dict, Iterable, List, Optional, Tuple

from directory_crawler.data.identity import DEFAULT_BASE_URL, dedup_key
from directory_crawler.data.models import EntityRecord, RecordSource


class MergePrecedence(Enum):
    """Which source wins a field both sources provide."""
    STRUCTURED_FIRST = "structured_first"
    RENDERED_FIRST = "rendered_first"


def merge_records(primary: Iterable[EntityRecord],
                  secondary: Iterable[EntityRecord],
                  base_url: str = DEFAULT_BASE_URL) -> List[EntityRecord]:
    """
    Merge two record lists keyed by dedup key.

    Secondary records go in first; each primary record is overlaid field by
    field, so a field the primary lacks keeps the secondary's value. A key
    present in both lists is marked ``merged``.
    """
    by_key: Dict[str, EntityRecord] = {}

    for record in secondary:
        key = dedup_key(record, base_url)
        if key is None:
            continue
        existing = by_key.get(key)
        by_key[key] = existing.overlay(record, existing.source) if existing else record

    for record in primary:
        key = dedup_key(record, base_url)
        if key is None:
            continue
        existing = by_key.get(key)
        if existing is None:
            by_key[key] = record
        elif existing.source == record.source:
            by_key[key] = existing.overlay(record)
        else:
            by_key[key] = existing.overlay(record, RecordSource.MERGED)

    return list(by_key.values())


def order_sources(structured: List[EntityRecord],
                  rendered: List[EntityRecord],
                  precedence: MergePrecedence) -> Tuple[List[EntityRecord], List[EntityRecord]]:
    """(primary, secondary) for the configured precedence."""
    if precedence == MergePrecedence.RENDERED_FIRST:
        return rendered, structured
    return structured, rendered


def reconcile(structured: List[EntityRecord],
              rendered: List[EntityRecord],
              precedence: MergePrecedence = MergePrecedence.STRUCTURED_FIRST,
              city: Optional[str] = None,
              speciality: Optional[str] = None,
              base_url: str = DEFAULT_BASE_URL) -> List[EntityRecord]:
    """Merge both sources and fill city/speciality from the crawl input."""
    primary, secondary = order_sources(structured, rendered, precedence)
    merged = merge_records(primary, secondary, base_url)
    return apply_defaults(merged, city, speciality)


def apply_defaults(records: Iterable[EntityRecord],
                   city: Optional[str],
                   speciality: Optional[str]) -> List[EntityRecord]:
    """Fill empty city/speciality from the crawl input."""
    return [record.with_defaults(city, speciality) for record in records]


def passes_filter(record: EntityRecord, min_experience: float = 0, min_rating: Optional[float] = None) -> bool:
    """Experience at least ``min_experience`` and, when set, rating at least ``min_rating``."""
    if record.experience_years < (min_experience or 0):
        return False
    if min_rating:
        return float(record.rating or 0) >= min_rating
    return True


def filter_records(records: Iterable[EntityRecord],
                   min_experience: float = 0,
                   min_rating: Optional[float] = None) -> List[EntityRecord]:
    """Records passing the experience and rating thresholds."""
    return [r for r in records if passes_filter(r, min_experience, min_rating)]
