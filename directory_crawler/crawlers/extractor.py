"""
Record extraction from listing and profile pages.

Two independent sources per page:
- JSON-LD structured-data blocks describing Physician/Person entities
- rendered doctor "cards" located with a prioritized list of CSS selectors
"""

import json
import math
import re
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Tuple

from bs4 import BeautifulSoup, Tag

from directory_crawler.data.identity import DEFAULT_BASE_URL, canonical_url, to_absolute_url
from directory_crawler.data.models import EntityRecord, RecordSource, is_absent
from directory_crawler.utils.errors import ParseError
from directory_crawler.utils.logging import get_business_logger


logger = get_business_logger('crawler')

PERSON_TYPES = frozenset({'physician', 'person'})

CARD_SELECTORS = (
    '[data-qa-id="doctor_card"]',
    '.listing-doctor-card',
    '.doctor-card',
)

NUMBER_PATTERN = re.compile(r'(\d+(?:\.\d+)?)')
WHITESPACE_PATTERN = re.compile(r'\s+')


def parse_document(body: str) -> BeautifulSoup:
    """Parse an HTML body into a queryable document."""
    return BeautifulSoup(body or '', 'lxml')


def select_all(doc, selector: str) -> List[Tag]:
    """All elements under ``doc`` matching a CSS selector."""
    return doc.select(selector)


def clean_text(text: Any) -> str:
    """Collapse whitespace."""
    if text is None:
        return ''
    return WHITESPACE_PATTERN.sub(' ', str(text)).strip()


def number_from_text(text: Any, default: Optional[float] = 0) -> Optional[float]:
    """
    First integer-or-decimal token in ``text`` after removing thousands separators.

    Args:
        text: Source text
        default: Value returned when no number is present

    Returns:
        Parsed number (int when integral) or ``default``
    """
    match = NUMBER_PATTERN.search(clean_text(text).replace(',', ''))
    if not match:
        return default
    value = float(match.group(1))
    return int(value) if value.is_integer() else value


def _first_text(node: Tag, selector: str) -> str:
    found = node.select_one(selector)
    return clean_text(found.get_text(' ')) if found is not None else ''


@dataclass
class StructuredEntity:
    """Explicit view over one decoded JSON-LD item."""
    raw: Dict[str, Any]

    @property
    def types(self) -> List[str]:
        value = self.raw.get('@type')
        if isinstance(value, list):
            return [str(t) for t in value]
        if value is None:
            return []
        return [str(value)]

    @property
    def is_person(self) -> bool:
        return any(t.strip().lower() in PERSON_TYPES for t in self.types)

    def text(self, *keys: str) -> Optional[str]:
        for key in keys:
            value = self.raw.get(key)
            if isinstance(value, (str, int, float)) and not is_absent(str(value)):
                return clean_text(value)
        return None

    def sub_object(self, key: str) -> Dict[str, Any]:
        value = self.raw.get(key)
        if isinstance(value, list) and value and isinstance(value[0], dict):
            return value[0]
        return value if isinstance(value, dict) else {}

    def address(self) -> Tuple[Optional[str], Optional[str]]:
        """(locality, region) from the address sub-object."""
        address = StructuredEntity(self.sub_object('address'))
        return address.text('addressLocality', 'streetAddress'), address.text('addressRegion')

    def image(self) -> Optional[str]:
        image = self.raw.get('image')
        if isinstance(image, str) and image.strip():
            return image
        if isinstance(image, dict) and isinstance(image.get('url'), str):
            return image['url']
        photo = self.raw.get('photo')
        if isinstance(photo, list) and photo and isinstance(photo[0], dict):
            url = photo[0].get('url')
            return url if isinstance(url, str) else None
        if isinstance(photo, dict) and isinstance(photo.get('url'), str):
            return photo['url']
        return None

    def number(self, value: Any) -> Optional[float]:
        if isinstance(value, bool):
            return None
        if isinstance(value, (int, float)):
            # JSON-LD may carry NaN or Infinity
            return value if math.isfinite(value) else None
        if isinstance(value, str):
            return number_from_text(value, None)
        return None

    def rating(self) -> Tuple[Optional[float], Optional[int]]:
        """(ratingValue, reviewCount) from the aggregateRating sub-object."""
        aggregate = self.sub_object('aggregateRating')
        rating = self.number(aggregate.get('ratingValue')) if aggregate else None
        reviews = self.number(aggregate.get('reviewCount')) if aggregate else None
        return rating, int(reviews) if reviews is not None else None

    def organization_name(self) -> Optional[str]:
        return StructuredEntity(self.sub_object('worksFor')).text('name')

    def to_record(self, base_url: str) -> EntityRecord:
        locality, region = self.address()
        rating, review_count = self.rating()
        return EntityRecord(
            name=self.text('name'),
            speciality=self.text('medicalSpecialty', 'specialty'),
            description=self.text('description'),
            consultation_fee=self.number(self.raw.get('priceRange')),
            location=locality,
            city=region,
            url=to_absolute_url(self.text('url'), base_url),
            profile_image=to_absolute_url(self.image(), base_url),
            rating=rating,
            patient_stories=review_count,
            clinic_name=self.organization_name(),
            source=RecordSource.STRUCTURED,
        )


def _decode_block(raw: str) -> List[Dict[str, Any]]:
    """
    Decode one JSON-LD block into its list of items.

    Raises:
        ParseError: If the block is not valid JSON
    """
    try:
        data = json.loads(raw)
    except ValueError as e:
        raise ParseError("Malformed structured-data block", {"error": str(e)})

    if isinstance(data, dict) and isinstance(data.get('@graph'), list):
        items = data['@graph']
    elif isinstance(data, list):
        items = data
    else:
        items = [data]
    return [item for item in items if isinstance(item, dict)]


def extract_structured(doc, base_url: str = DEFAULT_BASE_URL) -> List[EntityRecord]:
    """
    Records from every JSON-LD block on the page.

    A malformed block or item is skipped; the rest of the page is still read.
    """
    records = []
    for script in select_all(doc, 'script[type="application/ld+json"]'):
        raw = script.string or script.get_text()
        if not raw or not raw.strip():
            continue
        try:
            items = _decode_block(raw.strip())
        except ParseError as e:
            logger.debug(f"Skipping structured-data block: {e.details.get('error')}")
            continue

        for item in items:
            entity = StructuredEntity(item)
            if not entity.is_person:
                continue
            try:
                record = entity.to_record(base_url)
            except (TypeError, ValueError) as e:
                logger.debug(f"Skipping structured-data item: {e}")
                continue
            if record.has_identity:
                records.append(record)
    return records


def _card_elements(doc) -> List[Tag]:
    for selector in CARD_SELECTORS:
        cards = select_all(doc, selector)
        if cards:
            return cards
    return []


def _card_speciality(card: Tag) -> str:
    name_node = card.select_one('[data-qa-id="doctor_name"]')
    if name_node is not None:
        section = name_node.find_parent(class_='info-section')
        if section is not None:
            text = _first_text(section, '.u-grey_3-text span')
            if text:
                return text
    return _first_text(card, '[class*="speciality"]')


def parse_card(card: Tag, base_url: str = DEFAULT_BASE_URL) -> Optional[EntityRecord]:
    """
    One rendered card as a record.

    Returns:
        The record, or None when the card has neither a name nor a profile link
    """
    name = _first_text(card, '[data-qa-id="doctor_name"], .doctor-name')
    link = card.select_one('a[href*="/doctor/"]')
    url = to_absolute_url(link.get('href'), base_url) if link is not None else None

    if not name and not url:
        return None

    experience_text = _first_text(card, '[data-qa-id="doctor_experience"]')
    if experience_text:
        experience = number_from_text(experience_text, 0)
    else:
        experience = number_from_text(card.get_text(' '), 0)

    return EntityRecord(
        name=name or None,
        speciality=_card_speciality(card) or None,
        experience=experience,
        location=_first_text(card, '[data-qa-id="practice_locality"]') or None,
        city=_first_text(card, '[data-qa-id="practice_city"]') or None,
        consultation_fee=number_from_text(_first_text(card, '[data-qa-id="consultation_fee"]'), None),
        rating=number_from_text(_first_text(card, '[data-qa-id="doctor_recommendation"]'), None),
        patient_stories=number_from_text(_first_text(card, '[data-qa-id="total_feedback"]'), 0),
        clinic_name=_first_text(card, '[data-qa-id="doctor_clinic_name"]') or None,
        url=url,
        source=RecordSource.RENDERED,
    )


def extract_rendered(doc, base_url: str = DEFAULT_BASE_URL) -> List[EntityRecord]:
    """Records from the rendered doctor cards of a listing page."""
    records = []
    for card in _card_elements(doc):
        record = parse_card(card, base_url)
        if record is not None:
            records.append(record)
    return records


def parse_detail(doc, request_url: str, base_url: str = DEFAULT_BASE_URL) -> Dict[str, Optional[str]]:
    """
    Description and profile image from a profile page.

    Direct selectors first; the page's own structured data fills whatever
    they miss, preferring the entity whose URL matches ``request_url``.
    """
    description = _first_text(doc, 'p.c-profile__description') or None

    image_node = doc.select_one('img.c-profile__image')
    image = None
    if image_node is not None:
        image = to_absolute_url(image_node.get('src') or image_node.get('data-src'), base_url)

    if not description or not image:
        entities = extract_structured(doc, base_url)
        request_key = canonical_url(request_url, base_url)
        best = next(
            (e for e in entities if e.url and canonical_url(e.url, base_url) == request_key),
            entities[0] if entities else None
        )
        if best is not None:
            description = description or best.description
            image = image or best.profile_image

    return {'description': description, 'profile_image': image}
