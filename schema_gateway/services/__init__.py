"""
Services module - Public facade of the schema gateway.

Services contain the orchestration logic:
- No HTTP concerns (an outer HTTP layer calls into SchemaService)
- No process handling (that belongs in gateway/)
- No cache bookkeeping (that belongs in cache/)
"""
from schema_gateway.services.schema_service import (
    SchemaService,
    ORG_SCHEMA_KEY,
    ALL_SCOPE,
    SCHEMA_SCOPE,
    object_key,
    get_schema_service,
    reset_schema_service,
)

__all__ = [
    "SchemaService",
    "ORG_SCHEMA_KEY",
    "ALL_SCOPE",
    "SCHEMA_SCOPE",
    "object_key",
    "get_schema_service",
    "reset_schema_service",
]
