"""
Service layer components.
"""

from .enrichment import EnrichmentController, EnrichmentDecision, EnrichmentState, SkipReason

__all__ = [
    'EnrichmentController',
    'EnrichmentDecision',
    'EnrichmentState',
    'SkipReason'
]
