"""
Models module - Pydantic schemas for org metadata.

This module defines:
- ObjectSummary / FieldSummary: strict rows parsed from executor output
- SchemaSnapshot / ObjectFieldEntry: cached values tagged with their fetch time
- CacheKeyState: lifecycle state reported for each cache key
"""
from schema_gateway.models.schema import (
    CacheKeyState,
    ObjectSummary,
    FieldSummary,
    SchemaSnapshot,
    ObjectFieldEntry,
    extract_records,
)

__all__ = [
    "CacheKeyState",
    "ObjectSummary",
    "FieldSummary",
    "SchemaSnapshot",
    "ObjectFieldEntry",
    "extract_records",
]
