"""
Tests for the schema service facade.
"""
import json
from dataclasses import replace
from unittest.mock import Mock, patch

import pytest

from conftest import executor_command
from schema_gateway.core.exceptions import (
    ColdFetchFailure,
    GatewayFailure,
    GatewayTimeout,
    ObjectNotFoundError,
    RecordShapeError,
    ValidationError,
)
from schema_gateway.gateway.executor import QueryGateway
from schema_gateway.models.schema import CacheKeyState
from schema_gateway.services import schema_service as schema_service_module
from schema_gateway.services.schema_service import (
    ORG_SCHEMA_KEY,
    SchemaService,
    object_key,
)


def entity_payload(*objects):
    return {
        "totalSize": len(objects),
        "records": [
            {"QualifiedApiName": name, "Label": name.replace("__c", ""), "IsCustom": custom}
            for name, custom in objects
        ],
    }


def field_payload(*fields):
    return {
        "totalSize": len(fields),
        "records": [
            {"QualifiedApiName": name, "Label": name, "DataType": data_type}
            for name, data_type in fields
        ],
    }


ORG = entity_payload(("Account", False), ("Invoice__c", True), ("Contact", False))


@pytest.fixture
def gateway():
    gateway = Mock(spec=QueryGateway)
    gateway.execute_query.return_value = ORG
    return gateway


@pytest.fixture
def service(settings, gateway, clock):
    service = SchemaService(settings=settings, gateway=gateway, clock=clock)
    yield service
    service.shutdown()


class TestOrgSchema:

    def test_partitions_objects(self, service, gateway):
        snapshot = service.get_org_schema()
        assert [o.api_name for o in snapshot.standard] == ["Account", "Contact"]
        assert [o.api_name for o in snapshot.custom] == ["Invoice__c"]

        query = gateway.execute_query.call_args.args[0]
        assert "FROM EntityDefinition" in query
        assert "LIMIT 200" in query

    def test_second_read_is_served_from_cache(self, service, gateway, clock):
        service.get_org_schema()
        clock.advance(999)
        service.get_org_schema()
        assert gateway.execute_query.call_count == 1

    def test_fetched_snapshot_is_persisted(self, service, settings, clock):
        clock.set(1_234)
        service.get_org_schema()
        document = json.loads(settings.cache_file_path.read_text())
        assert document["timestamp"] == 1_234
        assert [o["apiName"] for o in document["schema"]["custom"]] == ["Invoice__c"]

    def test_fallback_when_first_fetch_fails(self, service, gateway, settings):
        gateway.execute_query.side_effect = GatewayFailure("Executor exited with status 1")
        snapshot = service.get_org_schema()

        assert snapshot.degraded is True
        assert [o.api_name for o in snapshot.standard] == ["Account", "Contact", "Opportunity"]
        assert service.coordinator.state(ORG_SCHEMA_KEY) == CacheKeyState.EMPTY
        assert not settings.cache_file_path.exists()

    def test_failure_without_fallback(self, settings, gateway, clock):
        gateway.execute_query.side_effect = GatewayFailure("Executor exited with status 1")
        service = SchemaService(
            settings=replace(settings, schema_fallback_enabled=False), gateway=gateway, clock=clock
        )
        with pytest.raises(ColdFetchFailure) as exc_info:
            service.get_org_schema()
        assert isinstance(exc_info.value.cause, GatewayFailure)
        assert exc_info.value.status_code == 503

    def test_bad_rows_fail_the_fetch(self, settings, gateway, clock):
        gateway.execute_query.return_value = {
            "records": [{"QualifiedApiName": "Account", "Label": "Account", "IsCustom": "no"}]
        }
        service = SchemaService(
            settings=replace(settings, schema_fallback_enabled=False), gateway=gateway, clock=clock
        )
        with pytest.raises(ColdFetchFailure) as exc_info:
            service.get_org_schema()
        assert isinstance(exc_info.value.cause, RecordShapeError)

    def test_stale_schema_is_revalidated(self, service, gateway, clock):
        first = service.get_org_schema()
        updated = entity_payload(("Account", False), ("Invoice__c", True), ("Delivery__c", True))

        def refetch(query):
            clock.set(1_250)
            return updated

        gateway.execute_query.side_effect = refetch
        clock.set(1_200)

        assert service.get_org_schema() is first
        assert service.coordinator.wait_for_refresh(ORG_SCHEMA_KEY, timeout=5)

        latest = service.get_org_schema()
        assert [o.api_name for o in latest.custom] == ["Invoice__c", "Delivery__c"]
        assert latest.fetched_at == 1_250
        assert gateway.execute_query.call_count == 2


class TestObjectSchema:

    def test_fields_are_cached_per_object(self, service, gateway):
        gateway.execute_query.return_value = field_payload(
            ("Amount__c", "Currency(16, 2)"), ("Name", "Text(80)")
        )
        entry = service.get_object_schema("Invoice__c")
        again = service.get_object_schema("Invoice__c")

        assert entry is again
        assert [f.api_name for f in entry.fields] == ["Amount__c", "Name"]
        query = gateway.execute_query.call_args.args[0]
        assert "EntityDefinition.QualifiedApiName = 'Invoice__c'" in query
        assert gateway.execute_query.call_count == 1

    def test_field_query_has_its_own_limit(self, settings, gateway, clock):
        gateway.execute_query.return_value = field_payload(("Name", "Text(80)"))
        service = SchemaService(
            settings=replace(settings, entity_query_limit=50, field_query_limit=900),
            gateway=gateway,
            clock=clock,
        )
        try:
            service.get_object_schema("Account")
        finally:
            service.shutdown()
        query = gateway.execute_query.call_args.args[0]
        assert "FROM FieldDefinition" in query
        assert query.endswith("LIMIT 900")

    def test_object_ttl_is_separate(self, service, gateway, clock):
        gateway.execute_query.return_value = field_payload(("Name", "Text(80)"))
        service.get_object_schema("Account")
        assert service.coordinator.ttl(object_key("Account")) == 2_000

        clock.advance(1_500)
        assert service.coordinator.state(object_key("Account")) == CacheKeyState.FRESH

    def test_zero_fields_for_existing_object(self, service, gateway):
        gateway.execute_query.return_value = field_payload()
        gateway.describe.return_value = {"name": "Empty__c"}

        entry = service.get_object_schema("Empty__c")
        assert entry.fields == []
        gateway.describe.assert_called_once_with("Empty__c")

    def test_unknown_object(self, service, gateway):
        gateway.execute_query.return_value = field_payload()
        gateway.describe.side_effect = GatewayFailure("Executor reported an error", detail="NOT_FOUND")

        with pytest.raises(ObjectNotFoundError) as exc_info:
            service.get_object_schema("Ghost__c")
        assert exc_info.value.status_code == 404
        assert exc_info.value.details == "NOT_FOUND"
        assert not service.coordinator.is_registered(object_key("Ghost__c"))

    def test_describe_timeout_is_not_not_found(self, service, gateway):
        gateway.execute_query.return_value = field_payload()
        gateway.describe.side_effect = GatewayTimeout(10)

        with pytest.raises(ColdFetchFailure) as exc_info:
            service.get_object_schema("Slow__c")
        assert isinstance(exc_info.value.cause, GatewayTimeout)

    @pytest.mark.parametrize("name", ["", "Account'; DELETE", "1Account", "Account__", "a b"])
    def test_invalid_names_never_reach_executor(self, service, gateway, name):
        with pytest.raises(ValidationError):
            service.get_object_schema(name)
        gateway.execute_query.assert_not_called()


class TestQueries:

    def test_execute_query_bypasses_cache(self, service, gateway):
        gateway.execute_query.return_value = {"records": [{"Id": "001"}]}
        assert service.execute_query("  SELECT Id FROM Account  ") == {"records": [{"Id": "001"}]}
        gateway.execute_query.assert_called_once_with("SELECT Id FROM Account")
        assert ORG_SCHEMA_KEY not in service.store

    def test_empty_query_is_rejected(self, service, gateway):
        with pytest.raises(ValidationError):
            service.execute_query("   ")
        gateway.execute_query.assert_not_called()


class TestAdministration:

    def test_clear_all_removes_values_and_file(self, service, gateway, settings):
        service.get_org_schema()
        gateway.execute_query.return_value = field_payload(("Name", "Text(80)"))
        service.get_object_schema("Account")

        assert service.clear() == 2
        assert len(service.store) == 0
        assert not settings.cache_file_path.exists()

    def test_clear_single_object_keeps_schema(self, service, gateway, settings):
        service.get_org_schema()
        gateway.execute_query.return_value = field_payload(("Name", "Text(80)"))
        service.get_object_schema("Account")

        assert service.clear("Account") == 1
        assert ORG_SCHEMA_KEY in service.store
        assert settings.cache_file_path.exists()

    def test_clear_schema_scope(self, service, settings):
        service.get_org_schema()
        assert service.clear("schema") == 1
        assert service.coordinator.state(ORG_SCHEMA_KEY) == CacheKeyState.EMPTY
        assert not settings.cache_file_path.exists()

    def test_refresh_and_wait(self, service, gateway, clock):
        service.get_org_schema()
        gateway.execute_query.return_value = entity_payload(("Account", False))
        clock.advance(10)

        assert service.refresh("schema", wait=True, timeout=5) == [ORG_SCHEMA_KEY]
        snapshot = service.get_org_schema()
        assert snapshot.custom == []
        assert snapshot.fetched_at == 10

    def test_refresh_object_scope_registers_key(self, service, gateway):
        gateway.execute_query.return_value = field_payload(("Name", "Text(80)"))
        assert service.refresh("Account", wait=True, timeout=5) == [object_key("Account")]
        assert object_key("Account") in service.store

    def test_refresh_rejects_bad_scope(self, service):
        with pytest.raises(ValidationError):
            service.refresh("not a scope")

    def test_stats(self, service, gateway, clock):
        service.get_org_schema()
        gateway.execute_query.return_value = field_payload(("Name", "Text(80)"))
        service.get_object_schema("Contact")
        clock.advance(400)

        stats = service.stats()
        assert stats["schema"]["state"] == "fresh"
        assert stats["schema"]["age_ms"] == 400
        assert stats["schema"]["expires_in_ms"] == 600
        assert stats["schema"]["object_count"] == 3
        assert stats["object_fields"] == {"cached": 1, "objects": ["Contact"]}
        assert stats["config"]["persistent_cache_enabled"] is True

    def test_stats_when_empty(self, service):
        stats = service.stats()
        assert stats["schema"]["state"] == "empty"
        assert stats["schema"]["cached"] is False
        assert stats["schema"]["expires_in_ms"] is None


class TestStartup:

    def test_start_loads_persisted_snapshot(self, settings, gateway, clock):
        clock.set(5_000)
        SchemaService(settings=settings, gateway=gateway, clock=clock).get_org_schema()
        gateway.execute_query.reset_mock()

        clock.set(5_500)
        restarted = SchemaService(settings=settings, gateway=gateway, clock=clock)
        restarted.start()
        try:
            snapshot = restarted.get_org_schema()
        finally:
            restarted.shutdown()

        assert snapshot.fetched_at == 5_000
        gateway.execute_query.assert_not_called()

    def test_start_survives_undecodable_snapshot(self, settings, gateway, clock):
        settings.cache_file_path.write_bytes(b'{"timestamp": 0, "schema": "\xff\xfe"}')
        service = SchemaService(settings=settings, gateway=gateway, clock=clock)
        service.start()
        try:
            assert ORG_SCHEMA_KEY not in service.store
            assert service.get_org_schema().object_count == 3
        finally:
            service.shutdown()

    def test_start_ignores_expired_snapshot(self, settings, gateway, clock):
        SchemaService(settings=settings, gateway=gateway, clock=clock).get_org_schema()

        clock.set(1_000)
        restarted = SchemaService(settings=settings, gateway=gateway, clock=clock)
        restarted.start()
        try:
            assert ORG_SCHEMA_KEY not in restarted.store
            assert restarted.get_org_schema().fetched_at == 1_000
        finally:
            restarted.shutdown()
        assert gateway.execute_query.call_count == 2

    def test_warm_start_fetches_once(self, settings, gateway, clock):
        service = SchemaService(
            settings=replace(settings, warm_on_start=True), gateway=gateway, clock=clock
        )
        service.start()
        try:
            snapshot = service.get_org_schema()
            service.coordinator.wait_for_refresh(ORG_SCHEMA_KEY, timeout=5)
        finally:
            service.shutdown()
        assert snapshot.object_count == 3
        assert gateway.execute_query.call_count == 1


class TestWithExecutorProcess:

    def test_org_schema_through_real_executor(self, settings, clock):
        assert settings.executor_command == tuple(executor_command("records"))
        service = SchemaService(settings=settings, clock=clock)
        try:
            snapshot = service.get_org_schema()
        finally:
            service.shutdown()
        assert [o.api_name for o in snapshot.custom] == ["Invoice__c"]
        assert snapshot.degraded is False


class TestSingleton:

    def test_get_and_reset(self, settings):
        with patch.object(schema_service_module, "get_settings", return_value=settings), \
                patch.object(schema_service_module, "setup_logging") as setup_logging:
            schema_service_module.reset_schema_service()
            try:
                first = schema_service_module.get_schema_service()
                assert schema_service_module.get_schema_service() is first
                setup_logging.assert_called_once_with("DEBUG")
            finally:
                schema_service_module.reset_schema_service()
            assert schema_service_module._schema_service is None
