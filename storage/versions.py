"""
Schema version tracking per project.

The current version lives in the project's configuration unit
(``project_<id>_config``) as the string-encoded integer under key
``version``. Each version's field list is snapshotted under
``schema_v<N>`` so that data written at version N can be read and
deduplicated with version N's columns later on.
"""

import logging
from datetime import datetime
from typing import List, Optional, Sequence

from sqlalchemy import Column, DateTime, MetaData, String, Table, Text, select, text, update
from sqlalchemy.dialects.postgresql import JSONB, insert

from core.exceptions import DatabaseConnectionError, DatabaseError, ProvisioningError
from schemas.fields import FieldDefinition, dump_models, parse_fields
from storage.compiler import build_data_table, compile_table, validate_field_definitions
from storage.data_store import db_errors
from storage.registry import (
    DUPLICATE_TABLE,
    UNIQUE_VIOLATION,
    ConnectionRegistry,
    config_unit_name,
    data_unit_name,
    sqlstate,
)

logger = logging.getLogger(__name__)

VERSION_KEY = "version"

config_metadata = MetaData()

project_config = Table(
    "project_config",
    config_metadata,
    Column("key", String(255), primary_key=True),
    Column("value", JSONB, nullable=False),
    Column("description", Text, nullable=True),
    Column("created_at", DateTime, server_default=text("NOW()")),
    Column("updated_at", DateTime, server_default=text("NOW()")),
)


def schema_key(version: int) -> str:
    return f"schema_v{version}"


class VersionManager:
    """Version pointer, schema snapshots and data unit provisioning."""

    def __init__(self, registry: ConnectionRegistry):
        self.registry = registry

    async def provision_config(self, project_id) -> None:
        """Create the configuration unit and seed version 1 (idempotent)."""
        unit_name = config_unit_name(project_id)
        engine = await self.registry.resolve(unit_name)

        seed = insert(project_config).values(
            key=VERSION_KEY, value="1", description="Current schema version"
        ).on_conflict_do_nothing(index_elements=["key"])

        try:
            with db_errors("DDL", unit_name):
                async with engine.begin() as conn:
                    await conn.run_sync(config_metadata.create_all)
                    await conn.execute(seed)
        except DatabaseError as e:
            # The concurrent creator also seeds the version row.
            if isinstance(e, DatabaseConnectionError) or sqlstate(e.original_exception) not in (
                DUPLICATE_TABLE, UNIQUE_VIOLATION
            ):
                raise
            logger.info(f"Configuration table in {unit_name} was created concurrently")

        logger.info(f"Project configuration unit ready: {unit_name}")

    async def _read(self, project_id, key: str):
        unit_name = config_unit_name(project_id)
        engine = await self.registry.resolve(unit_name)
        with db_errors("SELECT", unit_name):
            async with engine.connect() as conn:
                result = await conn.execute(
                    select(project_config.c.value).where(project_config.c.key == key)
                )
                row = result.first()
        return None if row is None else row[0]

    async def _write(self, project_id, key: str, value, description: Optional[str] = None) -> None:
        unit_name = config_unit_name(project_id)
        engine = await self.registry.resolve(unit_name)
        stmt = insert(project_config).values(key=key, value=value, description=description)
        stmt = stmt.on_conflict_do_update(
            index_elements=["key"],
            set_={"value": stmt.excluded.value, "updated_at": datetime.utcnow()},
        )
        with db_errors("UPSERT", unit_name):
            async with engine.begin() as conn:
                await conn.execute(stmt)

    async def current_version(self, project_id) -> int:
        """Current schema version, 1 when never recorded."""
        value = await self._read(project_id, VERSION_KEY)
        if value is None:
            return 1
        return int(str(value))

    async def set_version(self, project_id, version: int) -> None:
        unit_name = config_unit_name(project_id)
        engine = await self.registry.resolve(unit_name)
        stmt = (
            update(project_config)
            .where(project_config.c.key == VERSION_KEY)
            .values(value=str(version), updated_at=datetime.utcnow())
        )
        with db_errors("UPDATE", unit_name):
            async with engine.begin() as conn:
                result = await conn.execute(stmt)
                if result.rowcount == 0:
                    await conn.execute(
                        insert(project_config).values(
                            key=VERSION_KEY, value=str(version), description="Current schema version"
                        )
                    )

    async def bump_version(self, project_id) -> int:
        """Write ``current + 1`` and return it."""
        new_version = await self.current_version(project_id) + 1
        await self.set_version(project_id, new_version)
        logger.info(f"Project {project_id} moved to schema version {new_version}")
        return new_version

    async def save_schema(self, project_id, version: int, fields: Sequence[FieldDefinition]) -> None:
        await self._write(
            project_id,
            schema_key(version),
            dump_models(fields),
            description=f"Field definitions of schema version {version}",
        )

    async def load_schema(self, project_id, version: int) -> Optional[List[FieldDefinition]]:
        value = await self._read(project_id, schema_key(version))
        if value is None:
            return None
        return parse_fields(value)

    async def provision_data_unit(self, project_id, version: int, fields: Sequence[FieldDefinition]) -> str:
        """
        Create the data unit for (project, version) and its ``crawl_data`` table.

        Returns:
            The unit (database) name
        """
        validate_field_definitions(fields)
        unit_name = data_unit_name(project_id, version)
        engine = await self.registry.resolve(unit_name)
        table_ddl, index_ddl = compile_table(build_data_table(fields, version))

        try:
            with db_errors("DDL", unit_name):
                async with engine.begin() as conn:
                    # Compiled DDL runs as-is; DEFAULT literals may contain
                    # colons that text() would parse as bind parameters.
                    await conn.exec_driver_sql(table_ddl)
                    for statement in index_ddl:
                        await conn.exec_driver_sql(statement)
        except DatabaseConnectionError:
            raise
        except DatabaseError as e:
            if sqlstate(e.original_exception) in (DUPLICATE_TABLE, UNIQUE_VIOLATION):
                logger.info(f"Data table in {unit_name} was created concurrently")
                return unit_name
            raise ProvisioningError(
                "Failed to create data table",
                context={"unit_name": unit_name, "project_id": str(project_id), "version": version},
                original_exception=e.original_exception
            )

        logger.info(f"Project data table ready: {unit_name}.crawl_data")
        return unit_name

    async def list_available_versions(self, project_id, current_version: Optional[int] = None) -> List[int]:
        """
        Versions 1..current whose data unit exists.

        A version whose unit was never provisioned is skipped, not reported.
        """
        if current_version is None:
            current_version = await self.current_version(project_id)

        versions = []
        for version in range(1, current_version + 1):
            if await self.registry.unit_exists(data_unit_name(project_id, version)):
                versions.append(version)
        return versions
