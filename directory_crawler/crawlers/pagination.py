"""
Next-page resolution for listing pages.

Tried in order, each one a fallback for the previous:
1. an explicit rel="next" link
2. an anchor labeled "next" that is not disabled
3. an anchor whose href already carries page=<current + 1>
4. the current URL with its page parameter set to current + 1
"""

import json
from typing import Optional
from urllib.parse import parse_qs, quote, urlencode, urljoin, urlsplit, urlunsplit

from bs4 import Tag

from directory_crawler.utils.errors import MalformedUrlError
from directory_crawler.utils.logging import get_business_logger


logger = get_business_logger('crawler')

SEARCH_URL = "https://www.practo.com/search/doctors"
NEXT_LABELS = {'next', 'next page', '›', '»', '>'}
NEXT_CLASS = 'next'


def build_search_url(city: str, speciality: str, page: int = 1, locality: Optional[str] = None) -> str:
    """Search endpoint URL for a city/speciality listing page, narrowed to a locality when given."""
    terms = [{"word": speciality, "autocompleted": True, "category": "subspeciality"}]
    if locality and locality.strip():
        terms.append({"word": locality.strip(), "autocompleted": True, "category": "locality"})
    query = json.dumps(terms, separators=(',', ':'))
    params = [
        ('results_type', 'doctor'),
        ('q', query),
        ('city', city),
        ('page', str(page)),
    ]
    return f"{SEARCH_URL}?{urlencode(params, quote_via=quote)}"


def is_search_url(url: str) -> bool:
    return '/search/doctors' in (url or '')


def set_page_param(url: str, page: int) -> str:
    """
    ``url`` with its ``page`` query parameter set to ``page``.

    Raises:
        MalformedUrlError: If the URL has no scheme/host or cannot be parsed
    """
    try:
        parts = urlsplit(url)
    except ValueError as e:
        raise MalformedUrlError(f"Cannot parse URL: {url}", {"error": str(e)})
    if not parts.scheme or not parts.netloc:
        raise MalformedUrlError(f"Not an absolute URL: {url}")

    params = [(k, v) for k, vs in parse_qs(parts.query, keep_blank_values=True).items()
              for v in vs if k != 'page']
    params.append(('page', str(page)))
    return urlunsplit((parts.scheme, parts.netloc, parts.path,
                       urlencode(params, quote_via=quote), ''))


def _is_disabled(node: Tag) -> bool:
    for element in (node, node.parent):
        if not isinstance(element, Tag):
            continue
        if element.has_attr('disabled'):
            return True
        if str(element.get('aria-disabled', '')).lower() == 'true':
            return True
        if 'disabled' in (element.get('class') or []):
            return True
    return False


def _is_next_label(anchor: Tag) -> bool:
    text = anchor.get_text(' ', strip=True).lower()
    if text in NEXT_LABELS:
        return True
    aria = str(anchor.get('aria-label', '')).strip().lower()
    if aria in NEXT_LABELS:
        return True
    return any(str(token).lower() == NEXT_CLASS for token in anchor.get('class') or [])


def _page_of(href: str) -> Optional[int]:
    try:
        values = parse_qs(urlsplit(href).query).get('page')
    except ValueError:
        return None
    if not values:
        return None
    try:
        return int(values[0])
    except ValueError:
        return None


class PaginationResolver:
    """Derives the next listing URL from the current listing page."""

    def resolve_next(self, doc, current_url: str, current_page: int) -> Optional[str]:
        """
        Next listing URL, or None when nothing usable can be built.

        Args:
            doc: Parsed listing document
            current_url: URL the document was fetched from
            current_page: 1-based page number of the document
        """
        next_page = current_page + 1

        for finder in (self._rel_next, self._labeled_next, self._page_anchor):
            href = finder(doc, next_page)
            if href:
                absolute = self._absolute(href, current_url)
                if absolute:
                    return absolute

        try:
            return set_page_param(current_url, next_page)
        except MalformedUrlError as e:
            logger.info(f"No next page for {current_url}: {e.message}")
            return None

    def _absolute(self, href: str, current_url: str) -> Optional[str]:
        try:
            absolute = urljoin(current_url, href.strip())
        except ValueError:
            return None
        parts = urlsplit(absolute)
        if parts.scheme not in ('http', 'https') or not parts.netloc:
            return None
        return absolute

    def _rel_next(self, doc, next_page: int) -> Optional[str]:
        for node in doc.select('a[rel], link[rel]'):
            rel = node.get('rel') or []
            rel_values = rel if isinstance(rel, list) else str(rel).split()
            if 'next' in [r.lower() for r in rel_values] and node.get('href') and not _is_disabled(node):
                return node['href']
        return None

    def _labeled_next(self, doc, next_page: int) -> Optional[str]:
        for anchor in doc.select('a[href]'):
            if _is_next_label(anchor) and not _is_disabled(anchor):
                return anchor['href']
        return None

    def _page_anchor(self, doc, next_page: int) -> Optional[str]:
        for anchor in doc.select('a[href*="page="]'):
            if _page_of(anchor['href']) == next_page:
                return anchor['href']
        return None
