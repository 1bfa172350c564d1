"""
Ingester for UniProt's sequence similarity family listing (similar.txt).

The listing is a plain text document: a fixed preamble, then blocks made of
a family header line (starting in column one) followed by indented lines of
comma-separated ``ENTRYNAME_SPECIES (ACCESSION)`` items, then a short footer.
Entries are filtered by species and loaded into a store whose schema has the
membership join table.
"""

import logging
import re
from dataclasses import dataclass, field
from datetime import datetime
from typing import Iterable, List, Optional, Sequence

import httpx

from ..config import IngestConfig, RetryConfig
from ..database.schema import MEMBERSHIP_TABLE_MODE
from ..errors import (
    CatalogStoreError, DataError, InvalidValue, NetworkError, ShapeMismatch, create_error_context
)
from ..logging_config import log_error_with_context
from ..retry import RetryController
from ..store import CatalogStore

logger = logging.getLogger(__name__)

HEADER_LINES = 16
FOOTER_LINES = 5

FAMILY_PATTERN = re.compile(r"^\S.*")
ENTRY_PATTERN = re.compile(r"^(?P<entry_name>[^(]+)\((?P<accession_number>[^)]+)\)$")


@dataclass(frozen=True)
class SimilarEntry:
    """One entry listed under a similarity family."""
    family: str
    entry_name: str
    accession_number: str


@dataclass
class LoadStats:
    """Statistics for one load of similarity entries."""
    total_attempted: int = 0
    entries_stored: int = 0
    families_stored: int = 0
    memberships_stored: int = 0
    validation_errors: int = 0
    errors: List[str] = field(default_factory=list)
    start_time: Optional[datetime] = None
    end_time: Optional[datetime] = None

    @property
    def duration_seconds(self) -> float:
        if self.start_time and self.end_time:
            return (self.end_time - self.start_time).total_seconds()
        return 0.0


def parse_similar_listing(text: str) -> List[SimilarEntry]:
    """
    Parse the body of a similar.txt document.

    Raises:
        DataError: The document is too short to contain any body
    """
    lines = text.splitlines()
    if len(lines) < HEADER_LINES + 1:
        raise DataError(
            f"Insufficient data: {len(lines)} lines, fewer than the {HEADER_LINES}-line header",
            context=create_error_context("parse_similar_listing", line_count=len(lines))
        )

    entries: List[SimilarEntry] = []
    family = ""
    for line in lines[HEADER_LINES:len(lines) - FOOTER_LINES]:
        if not line:
            continue

        if FAMILY_PATTERN.match(line):
            family = line.rstrip()
            continue

        for item in line.replace(" ", "").split(","):
            if not item:
                continue
            match = ENTRY_PATTERN.match(item)
            if match:
                entries.append(SimilarEntry(
                    family=family,
                    entry_name=match.group("entry_name"),
                    accession_number=match.group("accession_number"),
                ))

    logger.debug(f"Parsed {len(entries)} entries from similarity listing")
    return entries


def filter_by_species(entries: Iterable[SimilarEntry], species: Sequence[str]) -> List[SimilarEntry]:
    """Keep entries whose name ends with ``_<SPECIES>`` for one of ``species``."""
    pattern = re.compile(r"[^_]+_({})$".format("|".join(re.escape(s) for s in species)))
    return [entry for entry in entries if pattern.search(entry.entry_name)]


def fetch_similar_listing(
    url: str,
    client: Optional[httpx.Client] = None,
    timeout: float = 60,
    retry_config: Optional[RetryConfig] = None
) -> str:
    """
    Download the listing, retrying transient network failures.

    Raises:
        NetworkError: The listing could not be downloaded
    """
    owns_client = client is None
    http = client or httpx.Client(timeout=timeout, follow_redirects=True)
    controller = RetryController(retry_config or RetryConfig())

    def _get() -> str:
        response = http.get(url)
        response.raise_for_status()
        return response.text

    try:
        text = controller.execute_with_retry(_get, "uniprot", "fetch_similar_listing")
    except httpx.HTTPError as e:
        raise NetworkError(
            f"Failed to download similarity listing from {url}: {e}",
            context=create_error_context("fetch_similar_listing", request_url=url),
            original_exception=e
        ) from e
    finally:
        if owns_client:
            http.close()

    logger.info(f"Downloaded similarity listing ({len(text)} bytes)", extra={"request_url": url})
    return text


def load_similar_entries(store: CatalogStore, entries: Sequence[SimilarEntry],
                         progress_every: int = 1000) -> LoadStats:
    """
    Upsert families, entries and memberships for parsed listing entries.

    Entries that violate value constraints are counted and skipped; any other
    store error aborts the load.
    """
    with store.context.reading("load_similar_entries") as shape:
        if shape.membership != MEMBERSHIP_TABLE_MODE:
            raise ShapeMismatch(
                f"Loading similarity families needs the membership table, store is at {shape.label}",
                context=create_error_context("load_similar_entries", schema_version=shape.version)
            )

    stats = LoadStats(total_attempted=len(entries), start_time=datetime.now())
    known_families = set()

    logger.info(f"Starting to insert {len(entries)} entries")
    for index, entry in enumerate(entries):
        if index % progress_every == 0:
            logger.info(f"Inserted {index}/{len(entries)}")

        try:
            if entry.family not in known_families:
                store.families.upsert(entry.family)
                known_families.add(entry.family)
                stats.families_stored += 1

            store.entries.upsert({
                "accession_number": entry.accession_number,
                "entry_name": entry.entry_name,
                "mass": None,
                "seq_length": None,
            })
            stats.entries_stored += 1

            if store.memberships.add_membership(entry.accession_number, entry.family):
                stats.memberships_stored += 1
        except InvalidValue as e:
            stats.validation_errors += 1
            message = f"Skipping {entry.accession_number} in '{entry.family}': {e.message}"
            stats.errors.append(message)
            logger.warning(message)
        except CatalogStoreError as e:
            log_error_with_context(logger, e, "load_similar_entries",
                                   accession_number=entry.accession_number, family=entry.family,
                                   records_done=index)
            raise

    stats.end_time = datetime.now()
    logger.info(
        "Finished inserting all entries",
        extra={
            "entries_stored": stats.entries_stored,
            "families_stored": stats.families_stored,
            "memberships_stored": stats.memberships_stored,
            "validation_errors": stats.validation_errors,
            "duration_seconds": stats.duration_seconds
        }
    )
    return stats


def ingest_similar(store: CatalogStore, config: IngestConfig,
                   retry_config: Optional[RetryConfig] = None,
                   client: Optional[httpx.Client] = None) -> LoadStats:
    """Fetch, parse, filter and load the similarity listing."""
    text = fetch_similar_listing(config.similar_url, client=client,
                                 timeout=config.request_timeout, retry_config=retry_config)
    selected = filter_by_species(parse_similar_listing(text), config.species)
    logger.info(f"Selected {len(selected)} entries for species {', '.join(config.species)}")
    return load_similar_entries(store, selected, progress_every=config.progress_every)
