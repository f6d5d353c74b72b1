"""
Metadata models for org objects and their fields.

Executor rows arrive as loosely shaped JSON. These models are the strict
deserialization step between the executor and the cache:
- Rows use executor column names (QualifiedApiName, Label, IsCustom, DataType)
- Cached and persisted values use camelCase names (apiName, label, isCustom)
- A row with a missing column or a wrongly typed value raises RecordShapeError
"""
from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, StrictBool, StrictStr
from pydantic import ValidationError as PydanticValidationError

from schema_gateway.core.exceptions import RecordShapeError


class CacheKeyState(str, Enum):
    """Lifecycle state of one cache key."""
    EMPTY = "empty"
    FETCHING = "fetching"
    FRESH = "fresh"
    STALE = "stale"


class ObjectSummary(BaseModel):
    """One org object as listed by the entity query."""
    model_config = ConfigDict(frozen=True, populate_by_name=True, extra="ignore")

    api_name: StrictStr = Field(
        validation_alias=AliasChoices("apiName", "QualifiedApiName", "api_name"),
        serialization_alias="apiName",
    )
    label: StrictStr = Field(validation_alias=AliasChoices("label", "Label"))
    is_custom: StrictBool = Field(
        validation_alias=AliasChoices("isCustom", "IsCustom", "is_custom"),
        serialization_alias="isCustom",
    )


class FieldSummary(BaseModel):
    """One field of an object as listed by the field query."""
    model_config = ConfigDict(frozen=True, populate_by_name=True, extra="ignore")

    api_name: StrictStr = Field(
        validation_alias=AliasChoices("apiName", "QualifiedApiName", "api_name"),
        serialization_alias="apiName",
    )
    label: StrictStr = Field(validation_alias=AliasChoices("label", "Label"))
    data_type: StrictStr = Field(
        validation_alias=AliasChoices("dataType", "DataType", "data_type"),
        serialization_alias="dataType",
    )


class SchemaSnapshot(BaseModel):
    """
    The org object list produced by one successful entity query.

    Attributes:
        standard: Objects whose custom flag is false
        custom: Objects whose custom flag is true
        fetched_at: Epoch milliseconds when the fetch completed
        degraded: True only for the static fallback list
    """
    model_config = ConfigDict(frozen=True, populate_by_name=True)

    standard: List[ObjectSummary] = Field(default_factory=list)
    custom: List[ObjectSummary] = Field(default_factory=list)
    fetched_at: int = Field(
        validation_alias=AliasChoices("fetchedAt", "fetched_at"),
        serialization_alias="fetchedAt",
    )
    degraded: bool = False

    @classmethod
    def from_records(cls, records: List[Any], fetched_at: int) -> "SchemaSnapshot":
        """Partition entity rows into standard and custom objects."""
        standard: List[ObjectSummary] = []
        custom: List[ObjectSummary] = []
        for obj in parse_rows(ObjectSummary, records):
            if obj.is_custom:
                custom.append(obj)
            else:
                standard.append(obj)
        return cls(standard=standard, custom=custom, fetched_at=fetched_at)

    @classmethod
    def from_body(cls, body: Any, fetched_at: int) -> "SchemaSnapshot":
        """Rebuild a snapshot from its persisted body."""
        if not isinstance(body, dict):
            raise RecordShapeError("Snapshot body must be an object")
        try:
            return cls.model_validate({
                "standard": body.get("standard", []),
                "custom": body.get("custom", []),
                "fetched_at": fetched_at,
            })
        except PydanticValidationError as e:
            raise RecordShapeError("Snapshot body has an invalid shape", details=str(e))

    @property
    def object_count(self) -> int:
        return len(self.standard) + len(self.custom)

    def find(self, api_name: str) -> Optional[ObjectSummary]:
        """Look an object up by API name (case-insensitive)."""
        wanted = api_name.lower()
        for obj in self.standard + self.custom:
            if obj.api_name.lower() == wanted:
                return obj
        return None

    def body(self) -> Dict[str, Any]:
        """Persisted form: object lists only, the timestamp is stored beside it."""
        return {
            "standard": [obj.model_dump(by_alias=True) for obj in self.standard],
            "custom": [obj.model_dump(by_alias=True) for obj in self.custom],
        }

    def to_dict(self) -> Dict[str, Any]:
        return self.model_dump(by_alias=True)


class ObjectFieldEntry(BaseModel):
    """Field metadata for one object."""
    model_config = ConfigDict(frozen=True, populate_by_name=True)

    object_name: StrictStr = Field(
        validation_alias=AliasChoices("objectName", "object_name"),
        serialization_alias="objectName",
    )
    fields: List[FieldSummary] = Field(default_factory=list)
    fetched_at: int = Field(
        validation_alias=AliasChoices("fetchedAt", "fetched_at"),
        serialization_alias="fetchedAt",
    )

    @classmethod
    def from_records(
        cls, object_name: str, records: List[Any], fetched_at: int
    ) -> "ObjectFieldEntry":
        return cls(
            object_name=object_name,
            fields=parse_rows(FieldSummary, records),
            fetched_at=fetched_at,
        )

    def to_dict(self) -> Dict[str, Any]:
        return self.model_dump(by_alias=True)


def extract_records(payload: Any) -> List[Any]:
    """
    Pull the records list out of a query payload.

    Raises:
        RecordShapeError: If the payload is not a {records: [...]} object
    """
    if not isinstance(payload, dict):
        raise RecordShapeError(
            "Query payload is not an object",
            details=f"type={type(payload).__name__}",
        )
    records = payload.get("records")
    if not isinstance(records, list):
        raise RecordShapeError(
            "Query payload has no records list",
            details=f"keys={sorted(payload.keys())[:10]}",
        )
    return records


def parse_rows(model: type, records: List[Any]) -> list:
    """Validate every row against a model, failing on the first bad row."""
    parsed = []
    for index, record in enumerate(records):
        try:
            parsed.append(model.model_validate(record))
        except PydanticValidationError as e:
            raise RecordShapeError(
                f"Record {index} does not match {model.__name__}",
                details=str(e),
            )
    return parsed
