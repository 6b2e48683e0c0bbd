"""
Record identity: URL canonicalization, dedup keys and the emitted-key index.
"""

import threading
from typing import Optional, Set
from urllib.parse import urljoin, urlsplit

from directory_crawler.data.models import EntityRecord, is_absent


DEFAULT_BASE_URL = "https://www.practo.com"


def to_absolute_url(value: Optional[str], base: str = DEFAULT_BASE_URL) -> Optional[str]:
    """
    Resolve ``value`` against ``base``.

    Returns:
        Absolute URL, or None for empty or unusable input
    """
    if is_absent(value):
        return None
    value = value.strip()
    if value.startswith("http://") or value.startswith("https://"):
        return value
    try:
        absolute = urljoin(base, value)
    except ValueError:
        return None
    parts = urlsplit(absolute)
    if not parts.scheme or not parts.netloc:
        return None
    return absolute


def canonical_url(value: Optional[str], base: str = DEFAULT_BASE_URL) -> Optional[str]:
    """``origin + path`` of the absolute URL; query and fragment stripped."""
    absolute = to_absolute_url(value, base)
    if absolute is None:
        return None
    try:
        parts = urlsplit(absolute)
    except ValueError:
        return None
    if not parts.netloc:
        return None
    return f"{parts.scheme}://{parts.netloc}{parts.path or '/'}"


def dedup_key(record: EntityRecord, base: str = DEFAULT_BASE_URL) -> Optional[str]:
    """
    Stable identity for a record.

    Canonical URL when possible, the raw URL when canonicalization fails,
    the name when there is no URL at all.
    """
    if not is_absent(record.url):
        return canonical_url(record.url, base) or record.url.strip()
    if not is_absent(record.name):
        return record.name.strip()
    return None


class DedupIndex:
    """Set of keys already emitted in this run."""

    def __init__(self):
        self._keys: Set[str] = set()
        self._lock = threading.Lock()

    def add_if_absent(self, key: str) -> bool:
        """
        Atomically insert ``key``.

        Returns:
            True if the key was new
        """
        with self._lock:
            if key in self._keys:
                return False
            self._keys.add(key)
            return True

    def __contains__(self, key: str) -> bool:
        with self._lock:
            return key in self._keys

    def __len__(self) -> int:
        with self._lock:
            return len(self._keys)

    def snapshot(self) -> Set[str]:
        with self._lock:
            return set(self._keys)
