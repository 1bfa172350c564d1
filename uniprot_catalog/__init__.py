"""
UniProt Catalog Store - a schema-versioned store for UniProt protein entries.

This package keeps UniProt entries, protein families and entry/family
memberships in SQLite, evolves the schema through an ordered migration
ledger, and validates every write against the shape of the active version.
"""

__version__ = "0.1.0"
__author__ = "UniProt Catalog Store Team"
