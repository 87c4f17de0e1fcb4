"""
Unit tests for the connection registry
"""

import asyncio
import uuid
import pytest
from unittest.mock import AsyncMock, MagicMock, patch
from sqlalchemy.exc import DBAPIError
from core.exceptions import EntityNotFoundError, ProvisioningError, SchemaValidationError
from storage.registry import ConnectionRegistry, config_unit_name, data_unit_name


class PgError(Exception):
    def __init__(self, sqlstate):
        super().__init__(f"pg error {sqlstate}")
        self.sqlstate = sqlstate


@pytest.fixture
def mock_create_engine():
    with patch("storage.registry.create_async_engine") as create:
        create.side_effect = lambda *args, **kwargs: MagicMock(dispose=AsyncMock())
        yield create


@pytest.fixture
def registry(mock_create_engine):
    return ConnectionRegistry()


def _autocommit_connection(registry, execute):
    conn = AsyncMock()
    conn.execute = execute
    context = MagicMock()
    context.__aenter__ = AsyncMock(return_value=conn)
    context.__aexit__ = AsyncMock(return_value=False)
    registry.main_engine.execution_options.return_value.connect.return_value = context
    return conn


def test_unit_names():
    project_id = uuid.UUID("123e4567-e89b-12d3-a456-426614174000")

    assert config_unit_name(project_id) == "project_123e4567-e89b-12d3-a456-426614174000_config"
    assert data_unit_name(project_id, 3) == "project_123e4567-e89b-12d3-a456-426614174000_data_v3"


def test_main_pool_settings(registry, mock_create_engine):
    kwargs = mock_create_engine.call_args.kwargs
    assert kwargs["pool_size"] == 20
    assert kwargs["max_overflow"] == 0
    assert kwargs["connect_args"] == {"timeout": 2.0}


class TestResolve:

    @pytest.mark.asyncio
    async def test_concurrent_first_use_is_single_flight(self, registry, mock_create_engine):
        async def slow_create(unit_name):
            await asyncio.sleep(0.01)

        registry.ensure_unit = AsyncMock(side_effect=slow_create)

        engines = await asyncio.gather(*[registry.resolve("project_p_data_v1") for _ in range(10)])

        assert all(engine is engines[0] for engine in engines)
        registry.ensure_unit.assert_awaited_once_with("project_p_data_v1")
        # Main engine plus exactly one tenant engine.
        assert mock_create_engine.call_count == 2
        assert mock_create_engine.call_args.kwargs["pool_size"] == 10
        assert registry.cached_units() == ["project_p_data_v1"]

    @pytest.mark.asyncio
    async def test_engine_targets_unit_database(self, registry, mock_create_engine):
        registry.ensure_unit = AsyncMock()

        await registry.resolve("project_p_config")

        url = mock_create_engine.call_args.args[0]
        assert url.database == "project_p_config"

    @pytest.mark.asyncio
    async def test_cached_engine_skips_provisioning(self, registry):
        registry.ensure_unit = AsyncMock()

        first = await registry.resolve("project_p_config")
        second = await registry.resolve("project_p_config")

        assert first is second
        registry.ensure_unit.assert_awaited_once()

    @pytest.mark.asyncio
    @pytest.mark.parametrize("name", ['bad"name', "x" * 64, "", "drop table;"])
    async def test_rejects_invalid_names(self, registry, name):
        with pytest.raises(SchemaValidationError):
            await registry.resolve(name)

    @pytest.mark.asyncio
    async def test_missing_unit_without_create(self, registry):
        registry.unit_exists = AsyncMock(return_value=False)
        registry.ensure_unit = AsyncMock()

        with pytest.raises(EntityNotFoundError):
            await registry.resolve("project_p_data_v9", create_missing=False)

        registry.ensure_unit.assert_not_awaited()
        assert registry.cached_units() == []


class TestEnsureUnit:

    @pytest.mark.asyncio
    async def test_existing_unit_is_not_recreated(self, registry):
        registry.unit_exists = AsyncMock(return_value=True)
        execute = AsyncMock()
        _autocommit_connection(registry, execute)

        await registry.ensure_unit("project_p_config")

        execute.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_creates_database(self, registry):
        registry.unit_exists = AsyncMock(return_value=False)
        execute = AsyncMock()
        _autocommit_connection(registry, execute)

        await registry.ensure_unit("project_p_config")

        registry.main_engine.execution_options.assert_called_with(isolation_level="AUTOCOMMIT")
        assert str(execute.call_args.args[0]) == 'CREATE DATABASE "project_p_config"'

    @pytest.mark.asyncio
    @pytest.mark.parametrize("sqlstate", ["42P04", "23505"])
    async def test_lost_creation_race_is_absorbed(self, registry, sqlstate):
        registry.unit_exists = AsyncMock(return_value=False)
        _autocommit_connection(
            registry, AsyncMock(side_effect=DBAPIError("CREATE DATABASE", None, PgError(sqlstate)))
        )

        await registry.ensure_unit("project_p_config")

    @pytest.mark.asyncio
    async def test_other_failures_raise(self, registry):
        registry.unit_exists = AsyncMock(return_value=False)
        _autocommit_connection(
            registry, AsyncMock(side_effect=DBAPIError("CREATE DATABASE", None, PgError("42501")))
        )

        with pytest.raises(ProvisioningError) as exc_info:
            await registry.ensure_unit("project_p_config")
        assert exc_info.value.context["unit_name"] == "project_p_config"


@pytest.mark.asyncio
async def test_close_all_disposes_every_pool(registry):
    registry.ensure_unit = AsyncMock()
    first = await registry.resolve("project_p_config")
    second = await registry.resolve("project_p_data_v1")

    await registry.close_all()

    first.dispose.assert_awaited_once()
    second.dispose.assert_awaited_once()
    registry.main_engine.dispose.assert_awaited_once()
    assert registry.cached_units() == []
