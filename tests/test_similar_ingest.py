"""
Tests for the similar.txt ingester.

Downloads go through httpx.MockTransport so no network access is needed.
"""

import pytest
import logging
import httpx

from uniprot_catalog.config import IngestConfig, RetryConfig
from uniprot_catalog.database.schema import V3_ENTRIES_WITHOUT_FAMILY, V4_MEMBERSHIP
from uniprot_catalog.errors import DatabaseError, DataError, MigrationInProgress, NetworkError, ShapeMismatch
from uniprot_catalog.ingest.similar import (
    SimilarEntry, parse_similar_listing, filter_by_species, fetch_similar_listing,
    load_similar_entries, ingest_similar
)
from uniprot_catalog.store import CatalogStore

KINASE = "Kinase superfamily. CAMK Ser/Thr protein kinase family"
URL = "https://example.org/similar.txt"


@pytest.fixture
def similar_text(test_data_dir):
    return (test_data_dir / "similar_sample.txt").read_text()


@pytest.fixture
def fast_retry():
    return RetryConfig(max_retries=2, initial_delay=0.0, backoff_multiplier=1.0, max_delay=0.0)


def mock_client(handler):
    return httpx.Client(transport=httpx.MockTransport(handler))


class TestParseSimilarListing:
    """Test parsing of the listing body."""

    def test_parses_families_and_entries(self, similar_text):
        entries = parse_similar_listing(similar_text)

        assert len(entries) == 9
        assert entries[0] == SimilarEntry("14-3-3 family", "1433B_HUMAN", "P31946")
        assert SimilarEntry("ABC transporter superfamily", "ABCA1_MOUSE", "P41233") in entries
        assert SimilarEntry(KINASE, "KCC2A_RAT", "P11275") in entries

    def test_entries_spanning_lines_keep_their_family(self, similar_text):
        entries = parse_similar_listing(similar_text)
        xenla = [e for e in entries if e.entry_name == "1433E_XENLA"]
        assert xenla == [SimilarEntry("14-3-3 family", "1433E_XENLA", "P62262")]

    def test_header_and_footer_are_skipped(self, similar_text):
        accessions = {e.accession_number for e in parse_similar_listing(similar_text)}
        assert "Q00000" not in accessions
        assert "Q11111" not in accessions

    def test_malformed_items_are_ignored(self, similar_text):
        names = {e.entry_name for e in parse_similar_listing(similar_text)}
        assert not any(name.startswith("XNAME") for name in names)

    def test_short_document_raises_data_error(self):
        with pytest.raises(DataError):
            parse_similar_listing("\n".join(["header"] * 16))

    def test_document_with_empty_body(self):
        text = "\n".join(["header"] * 16 + ["footer"] * 5)
        assert parse_similar_listing(text) == []


class TestFilterBySpecies:
    """Test species suffix filtering."""

    def test_single_species(self, similar_text):
        selected = filter_by_species(parse_similar_listing(similar_text), ["HUMAN"])
        assert [e.accession_number for e in selected] == ["P31946", "P62258", "O95477", "Q9UQM7"]

    def test_multiple_species(self, similar_text):
        selected = filter_by_species(parse_similar_listing(similar_text), ["HUMAN", "MOUSE"])
        assert len(selected) == 6

    def test_species_must_be_the_name_suffix(self):
        entries = [
            SimilarEntry("F", "HUMAN_ONLY", "P1"),
            SimilarEntry("F", "_HUMAN", "P2"),
            SimilarEntry("F", "ABC_HUMANX", "P3"),
            SimilarEntry("F", "ABC_HUMAN", "P4"),
        ]
        assert [e.accession_number for e in filter_by_species(entries, ["HUMAN"])] == ["P4"]


class TestFetchSimilarListing:
    """Test downloading the listing with retries."""

    def test_successful_download(self, similar_text, fast_retry):
        client = mock_client(lambda request: httpx.Response(200, text=similar_text))
        assert fetch_similar_listing(URL, client=client, retry_config=fast_retry) == similar_text

    def test_server_error_is_retried(self, similar_text, fast_retry):
        calls = []

        def handler(request):
            calls.append(request.url)
            if len(calls) == 1:
                return httpx.Response(503)
            return httpx.Response(200, text=similar_text)

        text = fetch_similar_listing(URL, client=mock_client(handler), retry_config=fast_retry)

        assert text == similar_text
        assert len(calls) == 2

    def test_client_error_is_not_retried(self, fast_retry):
        calls = []

        def handler(request):
            calls.append(request.url)
            return httpx.Response(404)

        with pytest.raises(NetworkError) as exc_info:
            fetch_similar_listing(URL, client=mock_client(handler), retry_config=fast_retry)

        assert len(calls) == 1
        assert exc_info.value.context.request_url == URL

    def test_connection_failures_exhaust_retries(self, fast_retry):
        calls = []

        def handler(request):
            calls.append(request.url)
            raise httpx.ConnectError("connection refused", request=request)

        with pytest.raises(NetworkError):
            fetch_similar_listing(URL, client=mock_client(handler), retry_config=fast_retry)

        assert len(calls) == fast_retry.max_retries + 1


class TestLoadSimilarEntries:
    """Test loading parsed entries into the store."""

    def test_ingest_into_membership_schema(self, store_at, similar_text, fast_retry):
        store = store_at(V4_MEMBERSHIP)
        config = IngestConfig(similar_url=URL, species=["HUMAN"], progress_every=2)
        client = mock_client(lambda request: httpx.Response(200, text=similar_text))

        stats = ingest_similar(store, config, retry_config=fast_retry, client=client)

        assert stats.entries_stored == 4
        assert stats.families_stored == 3
        assert stats.memberships_stored == 4
        assert stats.validation_errors == 0
        assert store.memberships.entries_of("14-3-3 family") == {"P31946", "P62258"}
        assert store.memberships.families_of("Q9UQM7") == {KINASE}
        assert store.entries.get("O95477") == {
            "accession_number": "O95477",
            "entry_name": "ABCA1_HUMAN",
            "mass": None,
            "seq_length": None,
        }

    def test_reloading_is_idempotent(self, store_at, similar_text):
        store = store_at(V4_MEMBERSHIP)
        entries = filter_by_species(parse_similar_listing(similar_text), ["HUMAN"])

        load_similar_entries(store, entries)
        stats = load_similar_entries(store, entries)

        assert stats.memberships_stored == 0
        assert store.entries.count() == 4
        assert store.families.list() == sorted(["14-3-3 family", "ABC transporter superfamily", KINASE])

    def test_entry_in_several_families(self, store_at):
        store = store_at(V4_MEMBERSHIP)
        entries = [
            SimilarEntry("Family A", "PROT_HUMAN", "P00001"),
            SimilarEntry("Family B", "PROT_HUMAN", "P00001"),
        ]

        stats = load_similar_entries(store, entries)

        assert stats.entries_stored == 2
        assert store.entries.count() == 1
        assert store.memberships.families_of("P00001") == {"Family A", "Family B"}

    def test_invalid_records_are_counted_and_skipped(self, store_at):
        store = store_at(V4_MEMBERSHIP)
        entries = [
            SimilarEntry("Family A", "GOOD_HUMAN", "P00001"),
            SimilarEntry("Family A", "BAD_HUMAN", "P" * 60),
        ]

        stats = load_similar_entries(store, entries)

        assert stats.entries_stored == 1
        assert stats.validation_errors == 1
        assert "P" * 60 in stats.errors[0]
        assert store.memberships.entries_of("Family A") == {"P00001"}

    def test_progress_is_logged(self, store_at, caplog):
        store = store_at(V4_MEMBERSHIP)
        entries = [SimilarEntry("Family A", f"P{i}_HUMAN", f"P{i:05d}") for i in range(5)]

        with caplog.at_level(logging.INFO, logger="uniprot_catalog.ingest.similar"):
            load_similar_entries(store, entries, progress_every=2)

        messages = [r.getMessage() for r in caplog.records]
        assert "Inserted 0/5" in messages
        assert "Inserted 2/5" in messages
        assert "Inserted 4/5" in messages
        assert "Finished inserting all entries" in messages

    def test_requires_membership_schema(self, store_at):
        store = store_at(V3_ENTRIES_WITHOUT_FAMILY)
        with pytest.raises(ShapeMismatch):
            load_similar_entries(store, [SimilarEntry("Family A", "PROT_HUMAN", "P00001")])

    def test_schema_check_respects_running_migration(self, test_config):
        test_config.migration.lock_policy = "fail_fast"
        with CatalogStore(test_config) as store:
            store.apply_up()
            with store.context.lock.exclusive("migration"):
                with pytest.raises(MigrationInProgress):
                    load_similar_entries(store, [SimilarEntry("Family A", "PROT_HUMAN", "P00001")])
            assert store.entries.count() == 0

    def test_store_failure_aborts_and_is_logged(self, store_at, monkeypatch, caplog):
        store = store_at(V4_MEMBERSHIP)
        entries = [
            SimilarEntry("Family A", "GOOD_HUMAN", "P00001"),
            SimilarEntry("Family A", "LOCKED_HUMAN", "P00002"),
            SimilarEntry("Family A", "NEVER_HUMAN", "P00003"),
        ]
        real_add = store.memberships.add_membership

        def add_membership(entry, family):
            if entry == "P00002":
                raise DatabaseError("database is locked")
            return real_add(entry, family)

        monkeypatch.setattr(store.memberships, "add_membership", add_membership)

        with caplog.at_level(logging.ERROR, logger="uniprot_catalog.ingest.similar"):
            with pytest.raises(DatabaseError):
                load_similar_entries(store, entries)

        record = caplog.records[-1]
        assert record.operation == "load_similar_entries"
        assert record.error_type == "DatabaseError"
        assert record.accession_number == "P00002"
        assert record.records_done == 1
        assert not store.entries.exists("P00003")
