"""
Catalog ingesters that feed validated records into the store.
"""

from .similar import (
    SimilarEntry,
    LoadStats,
    parse_similar_listing,
    filter_by_species,
    fetch_similar_listing,
    load_similar_entries,
    ingest_similar,
)

__all__ = [
    "SimilarEntry",
    "LoadStats",
    "parse_similar_listing",
    "filter_by_species",
    "fetch_similar_listing",
    "load_similar_entries",
    "ingest_similar",
]
