"""
Record model, identity and output sinks.
"""

from .models import EntityRecord, RecordSource
from .identity import DedupIndex, canonical_url, dedup_key
from .sink import JsonLinesSink, MemorySink, OutputSink

__all__ = [
    'EntityRecord',
    'RecordSource',
    'DedupIndex',
    'canonical_url',
    'dedup_key',
    'JsonLinesSink',
    'MemorySink',
    'OutputSink'
]
