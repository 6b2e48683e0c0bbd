"""
Fetching, extraction, reconciliation and pagination of directory listings.
"""

from .http_client import HTTPClient, FetchResponse, RateLimitConfig, UserAgentRotator
from .extractor import extract_rendered, extract_structured, parse_detail, parse_document, select_all
from .reconciler import MergePrecedence, filter_records, merge_records, reconcile
from .pagination import PaginationResolver, build_search_url

__all__ = [
    'HTTPClient',
    'FetchResponse',
    'RateLimitConfig',
    'UserAgentRotator',
    'extract_rendered',
    'extract_structured',
    'parse_detail',
    'parse_document',
    'select_all',
    'MergePrecedence',
    'filter_records',
    'merge_records',
    'reconcile',
    'PaginationResolver',
    'build_search_url'
]
