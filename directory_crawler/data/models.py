"""
Data models for directory profile records.
"""

from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Any, Dict, Optional


class RecordSource(Enum):
    """Where a record's fields came from. Informational only."""
    STRUCTURED = "structured"
    RENDERED = "rendered"
    API = "api"
    MERGED = "merged"


# Fields that may be overlaid by another source during merge/enrichment.
ATTRIBUTE_FIELDS = (
    "url",
    "name",
    "speciality",
    "description",
    "experience",
    "profile_image",
    "location",
    "city",
    "consultation_fee",
    "rating",
    "patient_stories",
    "clinic_name",
)


def is_absent(value: Any) -> bool:
    """A field is absent when it is None or an empty/blank string."""
    if value is None:
        return True
    if isinstance(value, str) and not value.strip():
        return True
    return False


@dataclass
class EntityRecord:
    """One directory profile (a doctor), the unit of output."""
    url: Optional[str] = None
    name: Optional[str] = None
    speciality: Optional[str] = None
    description: Optional[str] = None
    experience: Optional[float] = None
    profile_image: Optional[str] = None
    location: Optional[str] = None
    city: Optional[str] = None
    consultation_fee: Optional[float] = None
    rating: Optional[float] = None
    patient_stories: Optional[int] = None
    clinic_name: Optional[str] = None
    source: RecordSource = RecordSource.RENDERED
    extra: Dict[str, Any] = field(default_factory=dict)

    @property
    def has_identity(self) -> bool:
        return not (is_absent(self.url) and is_absent(self.name))

    @property
    def experience_years(self) -> float:
        return float(self.experience or 0)

    def present_fields(self) -> Dict[str, Any]:
        """Attribute fields that carry a value."""
        return {
            name: getattr(self, name)
            for name in ATTRIBUTE_FIELDS
            if not is_absent(getattr(self, name))
        }

    def overlay(self, other: "EntityRecord", source: Optional[RecordSource] = None) -> "EntityRecord":
        """
        Return a copy of this record with ``other``'s present fields on top.

        Fields absent in ``other`` keep this record's value.
        """
        merged = replace(self, **other.present_fields())
        merged.extra = {**self.extra, **other.extra}
        merged.source = source or other.source
        return merged

    def with_defaults(self, city: Optional[str], speciality: Optional[str]) -> "EntityRecord":
        """Fill an empty city/speciality from the crawl input."""
        updates = {}
        if is_absent(self.city) and not is_absent(city):
            updates["city"] = city
        if is_absent(self.speciality) and not is_absent(speciality):
            updates["speciality"] = speciality
        return replace(self, **updates) if updates else self

    def to_output(self) -> Dict[str, Any]:
        """Render the output JSON object."""
        return {
            "name": self.name,
            "speciality": self.speciality,
            "experience": self.experience_years,
            "location": self.location,
            "city": self.city,
            "consultationFee": self.consultation_fee,
            "rating": self.rating,
            "patientStories": int(self.patient_stories or 0),
            "clinicName": self.clinic_name,
            "description": self.description,
            "profileImage": self.profile_image,
            "url": self.url,
            "source": self.source.value,
        }
