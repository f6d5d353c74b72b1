"""
Schema gateway package.

Stale-while-revalidate cache for org metadata, layered over a
line-delimited JSON-RPC bridge to an external query executor:
- core/      : Configuration, logging, errors and input validation
- models/    : Pydantic models for objects, fields and snapshots
- gateway/   : Executor subprocess bridge
- cache/     : Cache store, snapshot persistence, refresh coordination
- services/  : SchemaService facade called by an outer HTTP layer
"""
from schema_gateway.services.schema_service import SchemaService, get_schema_service

__version__ = "1.0.0"

__all__ = ["SchemaService", "get_schema_service", "__version__"]
