"""
Property-based tests for record reconciliation and filtering.

**Property: merge precedence** - a field absent from the primary source keeps
the secondary value; a field present in both takes the primary value.
**Property: filter boundary** - thresholds are inclusive.
"""

import pytest
from hypothesis import given, strategies as st, settings

from directory_crawler.crawlers.reconciler import (
    MergePrecedence,
    apply_defaults,
    filter_records,
    merge_records,
    passes_filter,
    reconcile,
)
from directory_crawler.data.models import EntityRecord, RecordSource


field_text = st.one_of(st.none(), st.text(alphabet="abcdefgh ", min_size=0, max_size=8))


@st.composite
def record_pair_strategy(draw):
    """A structured and a rendered record for the same profile URL."""
    path = draw(st.text(alphabet="abcdefghij", min_size=1, max_size=10))
    url = f"https://www.practo.com/doctor/{path}"
    structured = EntityRecord(
        url=url,
        name=draw(field_text),
        speciality=draw(field_text),
        clinic_name=draw(field_text),
        source=RecordSource.STRUCTURED,
    )
    rendered = EntityRecord(
        url=url + "?utm=listing",
        name=draw(field_text),
        speciality=draw(field_text),
        clinic_name=draw(field_text),
        source=RecordSource.RENDERED,
    )
    return structured, rendered


def is_present(value):
    return value is not None and value.strip() != ""


class TestMergePrecedence:
    """Shallow field override between sources."""

    @settings(max_examples=100, deadline=None)
    @given(pair=record_pair_strategy(), precedence=st.sampled_from(list(MergePrecedence)))
    def test_primary_wins_only_when_present(self, pair, precedence):
        structured, rendered = pair
        primary, secondary = (
            (structured, rendered) if precedence == MergePrecedence.STRUCTURED_FIRST
            else (rendered, structured)
        )

        merged = reconcile([structured], [rendered], precedence)

        assert len(merged) == 1
        record = merged[0]
        assert record.source == RecordSource.MERGED
        for name in ("name", "clinic_name"):
            expected = getattr(primary, name) if is_present(getattr(primary, name)) else getattr(secondary, name)
            assert getattr(record, name) == expected

    def test_overlap_and_distinct_keys(self):
        structured = [
            EntityRecord(url="https://www.practo.com/doctor/a", name="A", source=RecordSource.STRUCTURED),
            EntityRecord(url="https://www.practo.com/doctor/b", name="B", source=RecordSource.STRUCTURED),
        ]
        rendered = [
            EntityRecord(url="https://www.practo.com/doctor/b#reviews", name="B card",
                         experience=9, source=RecordSource.RENDERED),
            EntityRecord(url="https://www.practo.com/doctor/c", name="C", source=RecordSource.RENDERED),
        ]

        merged = {r.name: r for r in merge_records(structured, rendered)}

        assert set(merged) == {"A", "B", "C"}
        assert merged["B"].source == RecordSource.MERGED
        assert merged["B"].experience == 9
        assert merged["A"].source == RecordSource.STRUCTURED
        assert merged["C"].source == RecordSource.RENDERED

    def test_rendered_first_keeps_card_name(self):
        structured = [EntityRecord(url="https://www.practo.com/doctor/b", name="Structured B",
                                   source=RecordSource.STRUCTURED)]
        rendered = [EntityRecord(url="https://www.practo.com/doctor/b", name="Card B",
                                 source=RecordSource.RENDERED)]

        merged = reconcile(structured, rendered, MergePrecedence.RENDERED_FIRST)

        assert [r.name for r in merged] == ["Card B"]

    def test_records_without_identity_dropped(self):
        merged = merge_records([EntityRecord(description="orphan")], [])

        assert merged == []

    def test_name_used_as_key_without_url(self):
        merged = merge_records(
            [EntityRecord(name="Dr. X", rating=4.0, source=RecordSource.STRUCTURED)],
            [EntityRecord(name="Dr. X", experience=3, source=RecordSource.RENDERED)],
        )

        assert len(merged) == 1
        assert merged[0].rating == 4.0
        assert merged[0].experience == 3


class TestDefaults:
    """City and speciality defaults from the crawl input."""

    def test_fills_only_empty_fields(self):
        records = apply_defaults(
            [EntityRecord(name="A"), EntityRecord(name="B", city="Pune", speciality=" ")],
            city="bangalore",
            speciality="dermatologist",
        )

        assert (records[0].city, records[0].speciality) == ("bangalore", "dermatologist")
        assert (records[1].city, records[1].speciality) == ("Pune", "dermatologist")


class TestFilter:
    """Experience and rating thresholds."""

    @pytest.mark.parametrize("experience,passes", [(5, True), (4.9, False), (None, False), (30, True)])
    def test_experience_boundary(self, experience, passes):
        assert passes_filter(EntityRecord(name="X", experience=experience), min_experience=5) is passes

    def test_rating_threshold_ignored_when_zero(self):
        assert passes_filter(EntityRecord(name="X", rating=None), min_rating=0)

    def test_missing_rating_fails_threshold(self):
        assert not passes_filter(EntityRecord(name="X", rating=None), min_rating=3)

    def test_rating_boundary_inclusive(self):
        assert passes_filter(EntityRecord(name="X", rating=4.0), min_rating=4.0)

    @settings(max_examples=100, deadline=None)
    @given(
        experiences=st.lists(st.floats(min_value=0, max_value=60, allow_nan=False), max_size=20),
        threshold=st.floats(min_value=0, max_value=60, allow_nan=False)
    )
    def test_filter_keeps_exactly_qualifying_records(self, experiences, threshold):
        records = [EntityRecord(name=f"d{i}", experience=e) for i, e in enumerate(experiences)]

        kept = filter_records(records, min_experience=threshold)

        assert [r.name for r in kept] == [r.name for r in records if r.experience >= threshold]
