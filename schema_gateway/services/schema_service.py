"""
Schema Service - Public facade over the metadata cache and query gateway.

This is the only entry point an HTTP layer needs:
- get_org_schema()          : org object list, stale-while-revalidate
- get_object_schema(name)   : field list of one object, stale-while-revalidate
- refresh(scope) / clear(scope) : administrative cache control
- execute_query(text)       : ad hoc query, bypassing the cache
- stats()                   : cache state for health/diagnostic endpoints

Each service instance owns its store, coordinator, gateway and persistence
adapter. get_schema_service() returns a process-wide instance for callers
that do not build their own.
"""
from typing import Any, Dict, List, Optional

from schema_gateway.cache.coordinator import RefreshCoordinator
from schema_gateway.cache.persistence import SnapshotPersistence
from schema_gateway.cache.store import Clock, TTLCacheStore, epoch_ms
from schema_gateway.core.config import Settings, get_settings
from schema_gateway.core.exceptions import (
    ColdFetchFailure,
    GatewayFailure,
    GatewayTimeout,
    ObjectNotFoundError,
)
from schema_gateway.core.logging_config import get_logger, setup_logging
from schema_gateway.core.validators import validate_object_name, validate_query
from schema_gateway.gateway.executor import QueryGateway
from schema_gateway.models.schema import (
    ObjectFieldEntry,
    ObjectSummary,
    SchemaSnapshot,
    extract_records,
)

logger = get_logger(__name__)

ORG_SCHEMA_KEY = "org_schema"
OBJECT_KEY_PREFIX = "object:"

ALL_SCOPE = "all"
SCHEMA_SCOPE = "schema"

ENTITY_QUERY = (
    "SELECT QualifiedApiName, Label, IsCustom FROM EntityDefinition "
    "WHERE IsCustomizable = true ORDER BY IsCustom DESC, QualifiedApiName LIMIT {limit}"
)

FIELD_QUERY = (
    "SELECT QualifiedApiName, Label, DataType FROM FieldDefinition "
    "WHERE EntityDefinition.QualifiedApiName = '{object_name}' "
    "ORDER BY QualifiedApiName LIMIT {limit}"
)

# Served only when the very first org schema fetch fails
FALLBACK_OBJECTS = (
    ("Account", "Account"),
    ("Contact", "Contact"),
    ("Opportunity", "Opportunity"),
)


def object_key(object_name: str) -> str:
    return f"{OBJECT_KEY_PREFIX}{object_name}"


class SchemaService:
    """
    Answers org schema and object field questions from the cache.

    Example:
        >>> service = SchemaService()
        >>> service.start()
        >>> snapshot = service.get_org_schema()
        >>> [obj.api_name for obj in snapshot.custom]
        ['Invoice__c', ...]
        >>> entry = service.get_object_schema("Account")
        >>> entry.fields[0].data_type
        'Text(255)'
    """

    def __init__(
        self,
        settings: Optional[Settings] = None,
        gateway: Optional[QueryGateway] = None,
        store: Optional[TTLCacheStore] = None,
        persistence: Optional[SnapshotPersistence] = None,
        coordinator: Optional[RefreshCoordinator] = None,
        clock: Optional[Clock] = None,
    ):
        """
        Initialize the service and its collaborators.

        Args:
            settings: Configuration; defaults to get_settings()
            gateway: Query gateway; built from settings if not provided
            store: Cache store; ignored when a coordinator is provided
            persistence: Snapshot adapter; built from settings if not provided
            coordinator: Refresh coordinator; built around the store if not provided
            clock: Epoch-millisecond clock shared by every collaborator
        """
        self.settings = settings or get_settings()
        self._clock = clock or epoch_ms

        self.gateway = gateway or QueryGateway(
            command=self.settings.executor_command,
            env=self.settings.executor_environment(),
            timeout_seconds=self.settings.query_timeout_seconds,
            max_concurrent=self.settings.max_concurrent_queries,
            query_tool=self.settings.query_tool_name,
            query_argument=self.settings.query_argument,
            describe_tool=self.settings.describe_tool_name,
        )
        self.persistence = persistence or SnapshotPersistence(
            path=self.settings.cache_file_path,
            ttl_ms=self.settings.schema_cache_ttl_ms,
            enabled=self.settings.enable_persistent_cache,
            clock=self._clock,
        )
        if coordinator is not None:
            self.coordinator = coordinator
        else:
            self.coordinator = RefreshCoordinator(
                store or TTLCacheStore(clock=self._clock),
                clock=self._clock,
                sweep_interval_seconds=self.settings.sweep_interval_seconds,
                max_workers=self.settings.refresh_workers,
            )
        self.store = self.coordinator.store

        self.coordinator.register(
            ORG_SCHEMA_KEY,
            self._fetch_org_schema,
            ttl_ms=self.settings.schema_cache_ttl_ms,
            on_fetched=self._persist_snapshot,
        )
        self._started = False

        logger.info(
            f"SchemaService initialized: schema_ttl={self.settings.schema_cache_ttl_ms}ms, "
            f"object_ttl={self.settings.object_cache_ttl_ms}ms"
        )

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def start(self) -> None:
        """
        Load the persisted snapshot and start the staleness sweep.

        Without a valid snapshot, the org schema is fetched in the
        background (when warm_on_start is set); readers arriving before it
        completes wait on that same fetch.
        """
        if self._started:
            return

        snapshot = self.persistence.load()
        if snapshot is not None:
            self.store.set(ORG_SCHEMA_KEY, snapshot, snapshot.fetched_at)
        elif self.settings.warm_on_start:
            logger.info("No cached schema, fetching in the background")
            self.coordinator.trigger(ORG_SCHEMA_KEY)

        self.coordinator.start()
        self._started = True
        logger.info(f"{self.settings.app_name} schema service started")

    def shutdown(self) -> None:
        self.coordinator.shutdown()
        self._started = False

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def get_org_schema(self) -> SchemaSnapshot:
        """
        Get the org object list.

        Raises:
            ColdFetchFailure: Nothing cached, the fetch failed and the fallback is disabled
        """
        try:
            return self.coordinator.read(ORG_SCHEMA_KEY)
        except ColdFetchFailure as e:
            if not self.settings.schema_fallback_enabled:
                raise
            logger.warning(f"Serving fallback object list, org schema unavailable: {e.message}")
            return self._fallback_snapshot()

    def get_object_schema(self, object_name: str) -> ObjectFieldEntry:
        """
        Get the field list of one object.

        Raises:
            ValidationError: The name is not an API identifier
            ObjectNotFoundError: The executor cannot describe the object
            ColdFetchFailure: Nothing cached and the fetch failed
        """
        name = validate_object_name(object_name)
        key = self._register_object(name)
        try:
            return self.coordinator.read(key)
        except ColdFetchFailure as e:
            if isinstance(e.cause, ObjectNotFoundError):
                self.coordinator.unregister(key)
                raise e.cause from e
            raise

    def execute_query(self, query: str) -> Any:
        """Run an ad hoc query through the gateway without touching the cache."""
        return self.gateway.execute_query(validate_query(query))

    # ------------------------------------------------------------------
    # Administration
    # ------------------------------------------------------------------

    def refresh(
        self,
        scope: Optional[str] = None,
        wait: bool = False,
        timeout: Optional[float] = None,
    ) -> List[str]:
        """
        Refetch cached metadata in the background.

        Args:
            scope: None or "all" for every known key, "schema" for the org
                schema, otherwise an object name
            wait: Block until the triggered fetches finish
            timeout: Maximum seconds to wait per key

        Returns:
            Keys for which a fetch is (or was) in flight
        """
        key = self._scope_key(scope, register=True)
        futures = self.coordinator.refresh(key)
        if wait:
            for k in futures:
                self.coordinator.wait_for_refresh(k, timeout=timeout)
        return sorted(futures)

    def clear(self, scope: Optional[str] = None) -> int:
        """
        Drop cached metadata; the snapshot file goes too when the org schema is in scope.

        Returns:
            Number of cached values removed
        """
        key = self._scope_key(scope, register=False)
        removed = self.coordinator.clear(key)
        if key is None or key == ORG_SCHEMA_KEY:
            self.persistence.delete()
        return removed

    def stats(self) -> Dict[str, Any]:
        """Cache state summary for health and diagnostics endpoints."""
        schema_lookup = self.store.get(ORG_SCHEMA_KEY)
        schema_ttl = self.settings.schema_cache_ttl_ms
        snapshot = schema_lookup.value if schema_lookup.present else None

        objects = []
        for key in self.coordinator.keys():
            if key.startswith(OBJECT_KEY_PREFIX) and key in self.store:
                objects.append(key[len(OBJECT_KEY_PREFIX):])

        return {
            "schema": {
                "state": self.coordinator.state(ORG_SCHEMA_KEY).value,
                "cached": snapshot is not None,
                "age_ms": schema_lookup.age_ms,
                "ttl_ms": schema_ttl,
                "expires_in_ms": (
                    schema_ttl - schema_lookup.age_ms if schema_lookup.present else None
                ),
                "object_count": snapshot.object_count if snapshot is not None else 0,
            },
            "object_fields": {
                "cached": len(objects),
                "objects": sorted(objects),
            },
            "config": {
                "schema_cache_ttl_ms": schema_ttl,
                "object_cache_ttl_ms": self.settings.object_cache_ttl_ms,
                "sweep_interval_seconds": self.settings.sweep_interval_seconds,
                "persistent_cache_enabled": self.persistence.enabled,
                "query_timeout_seconds": self.settings.query_timeout_seconds,
                "max_concurrent_queries": self.settings.max_concurrent_queries,
            },
        }

    # ------------------------------------------------------------------
    # Fetch pipelines
    # ------------------------------------------------------------------

    def _fetch_org_schema(self) -> SchemaSnapshot:
        query = ENTITY_QUERY.format(limit=self.settings.entity_query_limit)
        records = extract_records(self.gateway.execute_query(query))
        snapshot = SchemaSnapshot.from_records(records, fetched_at=self._clock())
        logger.info(
            f"Fetched org schema: {len(snapshot.standard)} standard, "
            f"{len(snapshot.custom)} custom objects"
        )
        return snapshot

    def _fetch_object_fields(self, object_name: str) -> ObjectFieldEntry:
        query = FIELD_QUERY.format(
            object_name=object_name, limit=self.settings.field_query_limit
        )
        records = extract_records(self.gateway.execute_query(query))
        if not records:
            # Zero fields is ambiguous: ask the executor whether the object exists
            self._confirm_object_exists(object_name)
        entry = ObjectFieldEntry.from_records(object_name, records, fetched_at=self._clock())
        logger.info(f"Fetched {len(entry.fields)} fields for {object_name}")
        return entry

    def _confirm_object_exists(self, object_name: str) -> None:
        try:
            self.gateway.describe(object_name)
        except GatewayTimeout:
            raise
        except GatewayFailure as e:
            logger.info(f"Describe failed for {object_name}, treating as not found")
            raise ObjectNotFoundError(object_name, details=e.detail) from e

    def _persist_snapshot(self, snapshot: SchemaSnapshot) -> None:
        self.persistence.save(snapshot, snapshot.fetched_at)

    def _fallback_snapshot(self) -> SchemaSnapshot:
        return SchemaSnapshot(
            standard=[
                ObjectSummary(api_name=api_name, label=label, is_custom=False)
                for api_name, label in FALLBACK_OBJECTS
            ],
            custom=[],
            fetched_at=self._clock(),
            degraded=True,
        )

    # ------------------------------------------------------------------
    # Scopes
    # ------------------------------------------------------------------

    def _register_object(self, object_name: str) -> str:
        key = object_key(object_name)
        self.coordinator.register(
            key,
            lambda: self._fetch_object_fields(object_name),
            ttl_ms=self.settings.object_cache_ttl_ms,
        )
        return key

    def _scope_key(self, scope: Optional[str], register: bool) -> Optional[str]:
        if scope is None or scope == ALL_SCOPE:
            return None
        if scope == SCHEMA_SCOPE:
            return ORG_SCHEMA_KEY
        name = validate_object_name(scope)
        if register:
            return self._register_object(name)
        return object_key(name)


# Global singleton instance
_schema_service: Optional[SchemaService] = None


def get_schema_service() -> SchemaService:
    """Get or create the started SchemaService singleton."""
    global _schema_service
    if _schema_service is None:
        settings = get_settings()
        setup_logging(settings.log_level)
        _schema_service = SchemaService(settings=settings)
        _schema_service.start()
    return _schema_service


def reset_schema_service() -> None:
    """Shut down and forget the singleton (useful for testing)."""
    global _schema_service
    if _schema_service is not None:
        _schema_service.shutdown()
    _schema_service = None
