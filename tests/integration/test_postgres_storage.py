"""
Storage units against a real PostgreSQL server.

Set TEST_DATABASE_URL to a role that may CREATE DATABASE; every unit
created here is dropped afterwards.
"""

import os
import uuid
import pytest
import pytest_asyncio
from sqlalchemy import text
from sqlalchemy.ext.asyncio import create_async_engine
from core.config import Settings
from ingestion.dedup import Deduplicator
from ingestion.loaders.postgres_loader import PostgresLoader
from schemas.api import QueryFilter
from schemas.fields import parse_fields
from services.query import build_conditions
from storage.data_store import open_data_store
from storage.registry import ConnectionRegistry, config_unit_name, data_unit_name
from storage.versions import VersionManager

TEST_DATABASE_URL = os.getenv("TEST_DATABASE_URL")

pytestmark = [
    pytest.mark.integration,
    pytest.mark.skipif(not TEST_DATABASE_URL, reason="TEST_DATABASE_URL not set"),
]

FIELDS = parse_fields([
    {"key": "uid", "type": "text", "primary": True, "nullable": True},
    {"key": "name", "type": "text", "nullable": False},
    {"key": "score", "type": "decimal"},
    {"key": "status", "type": "select"},
])


async def _drop_units(project_id, versions):
    engine = create_async_engine(TEST_DATABASE_URL, isolation_level="AUTOCOMMIT")
    try:
        async with engine.connect() as conn:
            for name in [config_unit_name(project_id)] + [data_unit_name(project_id, v) for v in versions]:
                await conn.execute(text(f'DROP DATABASE IF EXISTS "{name}"'))
    finally:
        await engine.dispose()


@pytest_asyncio.fixture
async def storage():
    registry = ConnectionRegistry(Settings(DATABASE_URL=TEST_DATABASE_URL))
    manager = VersionManager(registry)
    project_id = uuid.uuid4()

    yield registry, manager, project_id

    await registry.close_all()
    await _drop_units(project_id, versions=(1, 2))


@pytest.mark.asyncio
async def test_config_unit_tracks_versions(storage):
    registry, manager, project_id = storage

    await manager.provision_config(project_id)
    await manager.provision_config(project_id)
    assert await manager.current_version(project_id) == 1

    await manager.save_schema(project_id, 1, FIELDS)
    assert await manager.bump_version(project_id) == 2
    assert await manager.current_version(project_id) == 2

    snapshot = await manager.load_schema(project_id, 1)
    assert [f.key for f in snapshot] == ["uid", "name", "score", "status"]
    assert await manager.load_schema(project_id, 2) is None


@pytest.mark.asyncio
async def test_ingest_dedup_and_read_back(storage):
    registry, manager, project_id = storage
    await manager.provision_config(project_id)
    await manager.provision_data_unit(project_id, 1, FIELDS)
    # Provisioning is idempotent.
    await manager.provision_data_unit(project_id, 1, FIELDS)

    store = await open_data_store(registry, project_id, 1, FIELDS)
    records = [
        {"uid": "1", "name": "a", "score": "9.5"},
        {"uid": "1", "name": "a", "score": "9.5"},
        {"uid": None, "name": "b"},
    ]

    staged = await Deduplicator(store, FIELDS).deduplicate(records)
    assert await PostgresLoader(store, batch_size=1).load(staged) == 2

    again = await Deduplicator(store, FIELDS).deduplicate(records)
    assert again == [{"uid": None, "name": "b"}]

    conditions = [
        store.table.c.version == 1,
        store.table.c.project_id == str(project_id),
    ] + build_conditions(
        store.table,
        {f.key: f.type for f in FIELDS},
        [QueryFilter(field="name", operator="IN", values=["a", "b"])],
    )
    assert await store.count(conditions) == 2

    rows = await store.select_rows(conditions, store.table.c.name.asc(), limit=10)
    assert [row["name"] for row in rows] == ["a", "b"]
    assert rows[0]["status"] is None
    assert rows[0]["normalized_data"]["score"] == "9.5"
    assert str(rows[0]["project_id"]) == str(project_id)


@pytest.mark.asyncio
async def test_versions_listed_only_when_provisioned(storage):
    registry, manager, project_id = storage
    await manager.provision_config(project_id)
    await manager.provision_data_unit(project_id, 1, FIELDS)

    assert await manager.list_available_versions(project_id, current_version=2) == [1]
    assert await registry.unit_exists(data_unit_name(project_id, 2)) is False
