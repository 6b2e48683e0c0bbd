"""
Output sinks for emitted records.
"""

import json
import threading
from abc import ABC, abstractmethod
from pathlib import Path
from typing import List, Dict, Any

from directory_crawler.data.models import EntityRecord
from directory_crawler.utils.logging import get_logger


logger = get_logger(__name__)


class OutputSink(ABC):
    """Append-only record sink."""

    @abstractmethod
    def emit(self, record: EntityRecord) -> None:
        """Append one record."""
        pass

    def close(self) -> None:
        pass

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()


class MemorySink(OutputSink):
    """Collects records in memory."""

    def __init__(self):
        self._records: List[EntityRecord] = []
        self._lock = threading.Lock()

    def emit(self, record: EntityRecord) -> None:
        with self._lock:
            self._records.append(record)

    @property
    def records(self) -> List[EntityRecord]:
        with self._lock:
            return list(self._records)

    def to_output(self) -> List[Dict[str, Any]]:
        return [record.to_output() for record in self.records]


class JsonLinesSink(OutputSink):
    """
    Writes one JSON object per line.

    The file is truncated when the sink opens unless ``append`` is set.
    """

    def __init__(self, path: str, append: bool = False):
        self.path = Path(path)
        self.path.parent.mkdir(parents=True, exist_ok=True)
        self._file = open(self.path, 'a' if append else 'w', encoding='utf-8')
        self._lock = threading.Lock()
        self.count = 0

    def emit(self, record: EntityRecord) -> None:
        line = json.dumps(record.to_output(), ensure_ascii=False)
        with self._lock:
            self._file.write(line + "\n")
            self._file.flush()
            self.count += 1

    def close(self) -> None:
        with self._lock:
            if not self._file.closed:
                self._file.close()
                logger.info(f"Wrote {self.count} records to {self.path}")
