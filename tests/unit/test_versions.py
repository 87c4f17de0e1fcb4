"""
Unit tests for schema version tracking
"""

import pytest
from unittest.mock import AsyncMock, MagicMock
from sqlalchemy.exc import IntegrityError, OperationalError, ProgrammingError
from core.exceptions import DatabaseConnectionError, DatabaseError, ProvisioningError, SchemaValidationError
from schemas.fields import parse_fields
from storage.versions import VersionManager, schema_key


class PgError(Exception):
    def __init__(self, sqlstate):
        super().__init__(f"pg error {sqlstate}")
        self.sqlstate = sqlstate


def _registry_with_connection():
    conn = AsyncMock()
    context = MagicMock()
    context.__aenter__ = AsyncMock(return_value=conn)
    context.__aexit__ = AsyncMock(return_value=False)
    engine = MagicMock()
    engine.begin.return_value = context
    engine.connect.return_value = context
    registry = MagicMock()
    registry.resolve = AsyncMock(return_value=engine)
    return registry, conn


def test_schema_key():
    assert schema_key(4) == "schema_v4"


class TestCurrentVersion:

    @pytest.mark.asyncio
    @pytest.mark.parametrize("stored,expected", [(None, 1), ("1", 1), ("7", 7), (3, 3)])
    async def test_parses_stored_value(self, stored, expected):
        manager = VersionManager(MagicMock())
        manager._read = AsyncMock(return_value=stored)

        assert await manager.current_version("p1") == expected
        manager._read.assert_awaited_once_with("p1", "version")

    @pytest.mark.asyncio
    async def test_bump_writes_next_version(self):
        manager = VersionManager(MagicMock())
        manager.current_version = AsyncMock(return_value=2)
        manager.set_version = AsyncMock()

        assert await manager.bump_version("p1") == 3
        manager.set_version.assert_awaited_once_with("p1", 3)

    @pytest.mark.asyncio
    async def test_reads_from_config_unit(self):
        registry, conn = _registry_with_connection()
        result = MagicMock()
        result.first.return_value = ("5",)
        conn.execute.return_value = result

        assert await VersionManager(registry).current_version("p1") == 5
        registry.resolve.assert_awaited_once_with("project_p1_config")


class TestSchemaSnapshots:

    @pytest.mark.asyncio
    async def test_round_trip_through_config_value(self, user_fields):
        manager = VersionManager(MagicMock())
        stored = {}

        async def write(project_id, key, value, description=None):
            stored[key] = value

        async def read(project_id, key):
            return stored.get(key)

        manager._write = AsyncMock(side_effect=write)
        manager._read = AsyncMock(side_effect=read)

        await manager.save_schema("p1", 2, user_fields)

        assert stored["schema_v2"][0] == {
            "key": "uid", "type": "text", "nullable": True, "primary": True, "unique": False
        }
        assert await manager.load_schema("p1", 2) == user_fields
        assert await manager.load_schema("p1", 3) is None


class TestProvisionDataUnit:

    @pytest.mark.asyncio
    async def test_runs_table_then_index_ddl(self, user_fields):
        registry, conn = _registry_with_connection()

        unit_name = await VersionManager(registry).provision_data_unit("p1", 2, user_fields)

        assert unit_name == "project_p1_data_v2"
        registry.resolve.assert_awaited_once_with("project_p1_data_v2")
        statements = [c.args[0] for c in conn.exec_driver_sql.call_args_list]
        assert statements[0].startswith("CREATE TABLE IF NOT EXISTS crawl_data")
        assert "version INTEGER DEFAULT 2 NOT NULL" in statements[0]
        assert len(statements) == 4
        assert all(s.startswith("CREATE") and "INDEX IF NOT EXISTS" in s for s in statements[1:])

    @pytest.mark.asyncio
    async def test_invalid_schema_touches_no_storage(self):
        registry, _ = _registry_with_connection()
        fields = parse_fields([{"key": "id", "type": "text"}])

        with pytest.raises(SchemaValidationError):
            await VersionManager(registry).provision_data_unit("p1", 1, fields)

        registry.resolve.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_ddl_failure_is_provisioning_error(self, user_fields):
        registry, conn = _registry_with_connection()
        conn.exec_driver_sql.side_effect = ProgrammingError("CREATE TABLE", {}, Exception("denied"))

        with pytest.raises(ProvisioningError):
            await VersionManager(registry).provision_data_unit("p1", 1, user_fields)

    @pytest.mark.asyncio
    @pytest.mark.parametrize("error", [
        ProgrammingError("CREATE TABLE", {}, PgError("42P07")),
        IntegrityError("CREATE TABLE", {}, PgError("23505")),
    ])
    async def test_lost_creation_race_is_absorbed(self, user_fields, error):
        registry, conn = _registry_with_connection()
        conn.exec_driver_sql.side_effect = error

        unit_name = await VersionManager(registry).provision_data_unit("p1", 1, user_fields)

        assert unit_name == "project_p1_data_v1"

    @pytest.mark.asyncio
    async def test_connection_failure_stays_retryable(self, user_fields):
        registry, conn = _registry_with_connection()
        conn.exec_driver_sql.side_effect = OperationalError("CREATE TABLE", {}, Exception("gone"))

        with pytest.raises(DatabaseConnectionError):
            await VersionManager(registry).provision_data_unit("p1", 1, user_fields)


class TestProvisionConfig:

    @pytest.mark.asyncio
    async def test_creates_table_and_seeds_version(self):
        registry, conn = _registry_with_connection()

        await VersionManager(registry).provision_config("p1")

        registry.resolve.assert_awaited_once_with("project_p1_config")
        conn.run_sync.assert_awaited_once()
        conn.execute.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_lost_creation_race_is_absorbed(self):
        registry, conn = _registry_with_connection()
        conn.run_sync.side_effect = IntegrityError("CREATE TABLE", {}, PgError("23505"))

        await VersionManager(registry).provision_config("p1")

    @pytest.mark.asyncio
    async def test_other_ddl_failure_propagates(self):
        registry, conn = _registry_with_connection()
        conn.run_sync.side_effect = ProgrammingError("CREATE TABLE", {}, PgError("42501"))

        with pytest.raises(DatabaseError):
            await VersionManager(registry).provision_config("p1")


class TestListAvailableVersions:

    @pytest.mark.asyncio
    async def test_skips_unprovisioned_versions(self):
        registry = MagicMock()
        existing = {"project_p1_data_v1", "project_p1_data_v3"}
        registry.unit_exists = AsyncMock(side_effect=lambda name: name in existing)

        versions = await VersionManager(registry).list_available_versions("p1", current_version=3)

        assert versions == [1, 3]
        assert registry.unit_exists.await_count == 3

    @pytest.mark.asyncio
    async def test_defaults_to_current_version(self):
        registry = MagicMock()
        registry.unit_exists = AsyncMock(return_value=True)
        manager = VersionManager(registry)
        manager.current_version = AsyncMock(return_value=2)

        assert await manager.list_available_versions("p1") == [1, 2]
