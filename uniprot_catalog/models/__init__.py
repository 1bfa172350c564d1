"""
Record models for the UniProt Catalog Store.

This package provides one Pydantic model per schema shape for entries and
families, plus the membership pair model.
"""

from .entities import (
    CatalogRecord,
    EntryRecord,
    EntryRecordV1,
    EntryRecordV2,
    EntryRecordV3,
    FamilyRecord,
    SimilarityFamilyRecord,
    MembershipRecord,
    normalize_key,
    validate_record,
)

__all__ = [
    "CatalogRecord",
    "EntryRecord",
    "EntryRecordV1",
    "EntryRecordV2",
    "EntryRecordV3",
    "FamilyRecord",
    "SimilarityFamilyRecord",
    "MembershipRecord",
    "normalize_key",
    "validate_record",
]
