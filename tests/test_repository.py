"""
Tests for the entry and family repositories.

Every write is validated against the record shape of the active schema
version; these tests exercise each shape.
"""

import pytest
from hypothesis import given, settings, strategies as st

from uniprot_catalog.config import SystemConfig, DatabaseConfig
from uniprot_catalog.database.schema import (
    V1_ENTRIES, V2_REQUIRED_MEASURES, V3_ENTRIES_WITHOUT_FAMILY, V4_MEMBERSHIP
)
from uniprot_catalog.errors import DanglingReference, InvalidValue, NotFound, ShapeMismatch
from uniprot_catalog.models.entities import EntryRecordV3
from uniprot_catalog.store import open_store


def entry(accession="P12345", name="AATM_RABIT", mass=47409, seq_length=430, **extra):
    record = {"accession_number": accession, "entry_name": name, "mass": mass, "seq_length": seq_length}
    record.update(extra)
    return record


class TestUnversionedStore:
    """Test that repositories refuse to work before the first step."""

    def test_upsert_raises_shape_mismatch(self, store):
        with pytest.raises(ShapeMismatch):
            store.entries.upsert(entry())

    def test_reads_raise_shape_mismatch(self, store):
        with pytest.raises(ShapeMismatch):
            store.entries.get("P12345")
        with pytest.raises(ShapeMismatch):
            store.families.list()


class TestEntryRepository:
    """Test entry storage at the latest schema version."""

    def test_upsert_and_get(self, store_at):
        store = store_at(V4_MEMBERSHIP)
        stored = store.entries.upsert(entry())

        assert stored == entry()
        assert store.entries.get("P12345") == entry()
        assert store.entries.exists("P12345")

    def test_identical_upsert_leaves_store_unchanged(self, store_at):
        store = store_at(V4_MEMBERSHIP)
        store.entries.upsert(entry())
        store.entries.upsert(entry())

        assert store.entries.count() == 1
        assert store.entries.list() == [entry()]

    def test_upsert_replaces_all_fields(self, store_at):
        store = store_at(V4_MEMBERSHIP)
        store.entries.upsert(entry())
        store.entries.upsert({"accession_number": "P12345", "entry_name": "AATM_HUMAN"})

        assert store.entries.get("P12345") == entry(name="AATM_HUMAN", mass=None, seq_length=None)

    def test_text_fields_are_stripped(self, store_at):
        store = store_at(V4_MEMBERSHIP)
        store.entries.upsert(entry(accession="  P12345 ", name=" AATM_RABIT"))
        assert store.entries.get("P12345")["entry_name"] == "AATM_RABIT"

    def test_lookups_normalize_keys_like_writes(self, store_at):
        store = store_at(V4_MEMBERSHIP)
        store.entries.upsert(entry(accession=" P12345 "))
        store.families.upsert(" Kinase ")

        assert store.entries.exists(" P12345 ")
        assert store.entries.get(" P12345")["accession_number"] == "P12345"
        assert store.families.get("Kinase ") == {"name": "Kinase"}
        assert store.families.delete(" Kinase") is True
        assert store.entries.delete(" P12345 ") is True
        assert store.entries.count() == 0

    def test_pydantic_record_accepted(self, store_at):
        store = store_at(V4_MEMBERSHIP)
        store.entries.upsert(EntryRecordV3(accession_number="P12345", entry_name="AATM_RABIT", mass=47409))
        assert store.entries.get("P12345")["mass"] == 47409

    def test_get_missing_entry(self, store_at):
        store = store_at(V4_MEMBERSHIP)
        with pytest.raises(NotFound):
            store.entries.get("P00000")

    def test_delete(self, store_at):
        store = store_at(V4_MEMBERSHIP)
        store.entries.upsert(entry())

        assert store.entries.delete("P12345") is True
        assert not store.entries.exists("P12345")
        assert store.entries.delete("P12345") is False

    def test_list_is_ordered_and_limited(self, store_at):
        store = store_at(V4_MEMBERSHIP)
        for accession in ("Q00003", "P00002", "A00001"):
            store.entries.upsert(entry(accession=accession))

        assert [e["accession_number"] for e in store.entries.list()] == ["A00001", "P00002", "Q00003"]
        assert len(store.entries.list(limit=2)) == 2


class TestEntryValidation:
    """Test shape and value validation of entries."""

    def test_negative_sequence_length(self, store_at):
        store = store_at(V4_MEMBERSHIP)
        with pytest.raises(InvalidValue):
            store.entries.upsert(entry(seq_length=-5))
        assert store.entries.count() == 0

    def test_zero_mass(self, store_at):
        store = store_at(V4_MEMBERSHIP)
        with pytest.raises(InvalidValue):
            store.entries.upsert(entry(mass=0))

    @pytest.mark.parametrize("field", ["mass", "seq_length"])
    def test_value_beyond_integer_range(self, store_at, field):
        store = store_at(V4_MEMBERSHIP)
        with pytest.raises(InvalidValue):
            store.entries.upsert(entry(**{field: 2 ** 70}))
        assert store.entries.count() == 0

    def test_largest_integer_accepted(self, store_at):
        store = store_at(V4_MEMBERSHIP)
        store.entries.upsert(entry(mass=2 ** 63 - 1))
        assert store.entries.get("P12345")["mass"] == 2 ** 63 - 1

    def test_non_integer_mass(self, store_at):
        store = store_at(V4_MEMBERSHIP)
        with pytest.raises(InvalidValue):
            store.entries.upsert(entry(mass="47409"))

    def test_blank_entry_name(self, store_at):
        store = store_at(V4_MEMBERSHIP)
        with pytest.raises(InvalidValue):
            store.entries.upsert(entry(name="   "))

    def test_accession_too_long_for_version(self, store_at):
        store = store_at(V1_ENTRIES)
        with pytest.raises(InvalidValue):
            store.entries.upsert(entry(accession="A" * 30))

        store.apply_up(V3_ENTRIES_WITHOUT_FAMILY)
        store.entries.upsert(entry(accession="A" * 30))
        assert store.entries.exists("A" * 30)

    def test_field_not_in_current_shape(self, store_at):
        store = store_at(V4_MEMBERSHIP)
        with pytest.raises(ShapeMismatch) as exc_info:
            store.entries.upsert(entry(family="Kinase"))
        assert exc_info.value.unexpected_fields == ["family"]

    def test_required_field_missing(self, store_at):
        store = store_at(V4_MEMBERSHIP)
        with pytest.raises(ShapeMismatch) as exc_info:
            store.entries.upsert({"accession_number": "P12345"})
        assert exc_info.value.missing_fields == ["entry_name"]

    def test_not_a_mapping(self, store_at):
        store = store_at(V4_MEMBERSHIP)
        with pytest.raises(ShapeMismatch):
            store.entries.upsert(["P12345", "AATM_RABIT"])

    def test_required_measures_at_v2(self, store_at):
        store = store_at(V2_REQUIRED_MEASURES)
        store.families.upsert("Kinase")

        store.entries.upsert(entry(family="Kinase"))
        with pytest.raises(ShapeMismatch) as exc_info:
            store.entries.upsert({"accession_number": "P12345", "entry_name": "AATM_RABIT"})
        assert exc_info.value.missing_fields == ["family", "mass", "seq_length"]


class TestFamilyReferences:
    """Test the direct family column of the early schema versions."""

    def test_unknown_family_is_dangling(self, store_at):
        store = store_at(V1_ENTRIES)
        with pytest.raises(DanglingReference):
            store.entries.upsert(entry(family="Kinase"))
        assert store.entries.count() == 0

    def test_family_column_round_trip(self, store_at):
        store = store_at(V1_ENTRIES)
        store.families.upsert("Kinase")
        store.entries.upsert(entry(family="Kinase"))

        assert store.entries.get("P12345")["family"] == "Kinase"

    def test_referenced_family_cannot_be_deleted(self, store_at):
        store = store_at(V1_ENTRIES)
        store.families.upsert("Kinase")
        store.entries.upsert(entry(family="Kinase"))

        with pytest.raises(DanglingReference):
            store.families.delete("Kinase")
        assert store.families.exists("Kinase")

        store.entries.delete("P12345")
        assert store.families.delete("Kinase") is True


class TestFamilyRepository:
    """Test family storage."""

    def test_upsert_is_idempotent(self, store_at):
        store = store_at(V4_MEMBERSHIP)
        store.families.upsert("Kinase")
        store.families.upsert({"name": "Kinase"})

        assert store.families.list() == ["Kinase"]
        assert store.families.get("Kinase") == {"name": "Kinase"}

    def test_get_missing_family(self, store_at):
        store = store_at(V4_MEMBERSHIP)
        with pytest.raises(NotFound):
            store.families.get("Kinase")

    def test_name_length_limit(self, store_at):
        store = store_at(V4_MEMBERSHIP)
        with pytest.raises(InvalidValue):
            store.families.upsert("K" * 301)

    def test_no_families_between_steps(self, store_at):
        store = store_at(V3_ENTRIES_WITHOUT_FAMILY)
        with pytest.raises(ShapeMismatch):
            store.families.upsert("Kinase")


class TestUpsertProperty:
    """Property-based tests for upsert semantics."""

    @given(
        first=st.tuples(st.integers(min_value=1, max_value=10**7), st.integers(min_value=1, max_value=10**5)),
        second=st.tuples(st.integers(min_value=1, max_value=10**7), st.integers(min_value=1, max_value=10**5)),
    )
    @settings(max_examples=20, deadline=None)
    def test_last_write_wins(self, first, second):
        """For any two valid upserts of one accession, the stored entry equals the second."""
        config = SystemConfig(database=DatabaseConfig(path=":memory:"))
        with open_store(config) as store:
            store.entries.upsert(entry(mass=first[0], seq_length=first[1]))
            store.entries.upsert(entry(mass=second[0], seq_length=second[1]))

            assert store.entries.list() == [entry(mass=second[0], seq_length=second[1])]
