"""
Pydantic models for catalog records, one model per schema shape.

Each schema version accepts exactly one entry model. Models forbid unknown
fields, so a record carrying a column the active version does not declare is
rejected instead of silently dropped. ``validate_record`` turns pydantic's
error list into the store's ``ShapeMismatch`` / ``InvalidValue`` errors.
"""

from typing import Any, Dict, List, Mapping, Optional, Type, Union
from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from ..errors import InvalidValue, ShapeMismatch, create_error_context

# Largest value an SQLite INTEGER column can hold
SQLITE_MAX_INTEGER = 2 ** 63 - 1


class CatalogRecord(BaseModel):
    """Base for all catalog record models."""

    model_config = ConfigDict(extra="forbid", strict=True)

    @field_validator('*', mode='after')
    @classmethod
    def validate_text_fields(cls, v):
        """Text fields cannot be blank; surrounding whitespace is dropped."""
        if isinstance(v, str):
            if not v.strip():
                raise ValueError("Text fields cannot be empty or whitespace-only")
            return v.strip()
        return v


def normalize_key(value: Any) -> Any:
    """Normalize a lookup key the same way record validation stores it."""
    return value.strip() if isinstance(value, str) else value


class EntryRecordV1(CatalogRecord):
    """Entry with an optional direct family reference and optional measurements."""

    accession_number: str = Field(..., max_length=20, description="UniProt accession")
    entry_name: str = Field(..., max_length=100, description="UniProt entry name (id)")
    mass: Optional[int] = Field(None, gt=0, le=SQLITE_MAX_INTEGER, description="Molecular mass in Da")
    seq_length: Optional[int] = Field(None, gt=0, le=SQLITE_MAX_INTEGER, description="Sequence length")
    family: Optional[str] = Field(None, description="Name of the owning uniprot_families row")


class EntryRecordV2(CatalogRecord):
    """Entry whose measurements and family reference are mandatory."""

    accession_number: str = Field(..., max_length=20)
    entry_name: str = Field(..., max_length=100)
    mass: int = Field(..., gt=0, le=SQLITE_MAX_INTEGER)
    seq_length: int = Field(..., gt=0, le=SQLITE_MAX_INTEGER)
    family: str = Field(...)


class EntryRecordV3(CatalogRecord):
    """Entry without a family column; families are related through the join table."""

    accession_number: str = Field(..., max_length=50)
    entry_name: str = Field(..., max_length=50)
    mass: Optional[int] = Field(None, gt=0, le=SQLITE_MAX_INTEGER)
    seq_length: Optional[int] = Field(None, gt=0, le=SQLITE_MAX_INTEGER)

    model_config = ConfigDict(
        json_schema_extra={
            "example": {
                "accession_number": "P12345",
                "entry_name": "AATM_RABIT",
                "mass": 47409,
                "seq_length": 430
            }
        }
    )


class FamilyRecord(CatalogRecord):
    """Coarse family row (uniprot_families)."""

    name: str = Field(...)


class SimilarityFamilyRecord(CatalogRecord):
    """Sequence similarity family row."""

    name: str = Field(..., max_length=300)


class MembershipRecord(CatalogRecord):
    """One (entry, family) pair of the membership join table."""

    entry: str = Field(..., max_length=50)
    family: str = Field(..., max_length=300)


EntryRecord = Union[EntryRecordV1, EntryRecordV2, EntryRecordV3]

# Error types that mean the record has the wrong set of fields
_SHAPE_ERROR_TYPES = {"missing", "extra_forbidden"}


def _split_errors(errors: List[Dict[str, Any]]):
    unexpected, missing, invalid = [], [], []
    for error in errors:
        field_name = ".".join(str(part) for part in error.get("loc", ())) or "<record>"
        if error["type"] == "extra_forbidden":
            unexpected.append(field_name)
        elif error["type"] == "missing" or error.get("input", ...) is None:
            # A required column supplied as None is treated as absent
            missing.append(field_name)
        else:
            invalid.append(f"{field_name}: {error['msg']}")
    return unexpected, missing, invalid


def validate_record(
    model: Type[CatalogRecord],
    record: Union[Mapping[str, Any], BaseModel],
    schema_version: Optional[str] = None
) -> Dict[str, Any]:
    """
    Validate a record against a shape model.

    Args:
        model: Record model of the active schema version
        record: Mapping (or pydantic model) supplied by the caller
        schema_version: Active version, for error context

    Returns:
        Dictionary with every column of the shape, normalized

    Raises:
        ShapeMismatch: Unknown fields present or required fields missing
        InvalidValue: A field violates a value constraint
    """
    if isinstance(record, BaseModel):
        data = record.model_dump(exclude_unset=True)
    elif isinstance(record, Mapping):
        data = dict(record)
    else:
        raise ShapeMismatch(
            f"Expected a mapping for {model.__name__}, got {type(record).__name__}",
            context=create_error_context("validate_record", schema_version=schema_version)
        )

    try:
        return model.model_validate(data).model_dump()
    except ValidationError as e:
        unexpected, missing, invalid = _split_errors(e.errors())
        context = create_error_context(
            "validate_record",
            entity_id=str(data.get("accession_number") or data.get("name") or data.get("entry") or ""),
            entity_type=model.__name__,
            schema_version=schema_version
        )
        if unexpected or missing:
            parts = []
            if unexpected:
                parts.append(f"fields not in schema: {', '.join(sorted(unexpected))}")
            if missing:
                parts.append(f"required fields missing: {', '.join(sorted(missing))}")
            raise ShapeMismatch(
                f"Record does not match schema version {schema_version}: " + "; ".join(parts),
                unexpected_fields=sorted(unexpected),
                missing_fields=sorted(missing),
                context=context,
                original_exception=e
            ) from e
        raise InvalidValue(
            "Invalid field values: " + "; ".join(invalid),
            context=context,
            original_exception=e
        ) from e
