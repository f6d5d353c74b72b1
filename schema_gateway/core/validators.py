"""
Input Validators - Checks applied before anything reaches the executor.

Object names are interpolated into the field metadata query, so they are
restricted to API identifiers (letters, digits, underscores).
"""
import re

from schema_gateway.core.exceptions import ValidationError
from schema_gateway.core.logging_config import get_logger

logger = get_logger(__name__)

# Standard objects (Account), custom objects (Invoice__c), namespaced (ns__Thing__c)
OBJECT_NAME_PATTERN = re.compile(r"^[A-Za-z][A-Za-z0-9_]{0,79}$")

MAX_QUERY_LENGTH = 100_000


def validate_object_name(object_name: str) -> str:
    """
    Validate an object API name.

    Args:
        object_name: Name supplied by the caller

    Returns:
        The name with surrounding whitespace removed

    Raises:
        ValidationError: If the name is empty or not an API identifier
    """
    name = (object_name or "").strip()
    if not name:
        raise ValidationError("Object name is required", field="object_name")
    if not OBJECT_NAME_PATTERN.match(name) or name.endswith("_"):
        logger.warning(f"Rejected object name: {name[:40]!r}")
        raise ValidationError(f"Invalid object name: {name[:40]}", field="object_name")
    return name


def validate_query(query: str) -> str:
    """
    Validate an ad hoc query string.

    The query language itself is the executor's concern; only emptiness,
    null bytes and size are checked here.
    """
    if query is None or not query.strip():
        raise ValidationError("Query is required", field="query")
    if "\x00" in query:
        raise ValidationError("Query contains a null byte", field="query")
    if len(query) > MAX_QUERY_LENGTH:
        raise ValidationError(
            f"Query exceeds {MAX_QUERY_LENGTH} characters", field="query"
        )
    return query.strip()
