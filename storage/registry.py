"""
Process-wide registry of connection pools, one per storage unit.

A storage unit is a PostgreSQL database. The main catalog lives in the
database named by ``settings.DATABASE_URL``; every project gets a
configuration database and one data database per schema version, all on
the same server. Each unit is served by its own ``AsyncEngine`` (a bounded
pool), created lazily on first resolution and shared by every caller.
"""

import asyncio
import logging
import re
from typing import Dict, Optional

from sqlalchemy import text
from sqlalchemy.engine import make_url
from sqlalchemy.exc import DBAPIError
from sqlalchemy.ext.asyncio import AsyncEngine, create_async_engine

from core.config import Settings, settings as default_settings
from core.exceptions import (
    DatabaseConnectionError,
    EntityNotFoundError,
    ProvisioningError,
    SchemaValidationError,
)

logger = logging.getLogger(__name__)

# SQLSTATEs raised when another session created the same database or table first.
DUPLICATE_DATABASE = "42P04"
UNIQUE_VIOLATION = "23505"
DUPLICATE_TABLE = "42P07"

UNIT_NAME_PATTERN = re.compile(r"^[A-Za-z0-9_-]{1,63}$")


def config_unit_name(project_id) -> str:
    return f"project_{project_id}_config"


def data_unit_name(project_id, version: int) -> str:
    return f"project_{project_id}_data_v{version}"


def sqlstate(exc: Exception) -> Optional[str]:
    orig = getattr(exc, "orig", None)
    return getattr(orig, "sqlstate", None) or getattr(orig, "pgcode", None)


class ConnectionRegistry:
    """
    Owns the main catalog engine and a cache of per-unit engines.

    ``resolve()`` is single-flight per unit name: concurrent first callers
    for the same name wait on one lock, so a unit is provisioned and its
    pool opened once. Creation itself is check-then-create and tolerates a
    concurrent creator in another process.
    """

    def __init__(self, config: Optional[Settings] = None):
        self.settings = config or default_settings
        self._base_url = make_url(self.settings.DATABASE_URL)
        self.main_engine: AsyncEngine = self._create_engine(
            self._base_url, pool_size=self.settings.MAIN_POOL_SIZE
        )
        self._engines: Dict[str, AsyncEngine] = {}
        self._locks: Dict[str, asyncio.Lock] = {}

    def _create_engine(self, url, pool_size: int) -> AsyncEngine:
        return create_async_engine(
            url,
            echo=False,
            pool_size=pool_size,
            max_overflow=0,
            pool_timeout=self.settings.POOL_TIMEOUT,
            pool_recycle=self.settings.POOL_RECYCLE,
            pool_pre_ping=True,
            connect_args={"timeout": self.settings.DB_CONNECT_TIMEOUT},
        )

    async def resolve(self, unit_name: str, create_missing: bool = True) -> AsyncEngine:
        """
        Return the shared engine for ``unit_name``, provisioning it on first use.

        Args:
            unit_name: Database name of the storage unit
            create_missing: When False an absent unit raises
                EntityNotFoundError instead of being created

        Returns:
            AsyncEngine bound to the unit
        """
        engine = self._engines.get(unit_name)
        if engine is not None:
            return engine

        if not UNIT_NAME_PATTERN.match(unit_name):
            raise SchemaValidationError(
                f"Invalid storage unit name: {unit_name!r}",
                context={"unit_name": unit_name}
            )

        lock = self._locks.setdefault(unit_name, asyncio.Lock())
        async with lock:
            engine = self._engines.get(unit_name)
            if engine is not None:
                return engine

            if create_missing:
                await self.ensure_unit(unit_name)
            elif not await self.unit_exists(unit_name):
                raise EntityNotFoundError(
                    f"Storage unit {unit_name} does not exist",
                    context={"entity": "storage_unit", "entity_id": unit_name}
                )

            engine = self._create_engine(
                self._base_url.set(database=unit_name),
                pool_size=self.settings.TENANT_POOL_SIZE,
            )
            self._engines[unit_name] = engine
            logger.info(f"Opened connection pool for {unit_name}")
            return engine

    async def unit_exists(self, unit_name: str) -> bool:
        """Check the system catalog for a database named ``unit_name``."""
        try:
            async with self.main_engine.connect() as conn:
                result = await conn.execute(
                    text("SELECT 1 FROM pg_database WHERE datname = :name"),
                    {"name": unit_name},
                )
                return result.first() is not None
        except DBAPIError as e:
            raise DatabaseConnectionError(
                "Failed to probe storage unit",
                context={"unit_name": unit_name, "operation": "SELECT"},
                original_exception=e
            )

    async def ensure_unit(self, unit_name: str) -> None:
        """Create the database for ``unit_name`` if it is absent."""
        if await self.unit_exists(unit_name):
            return

        try:
            autocommit = self.main_engine.execution_options(isolation_level="AUTOCOMMIT")
            async with autocommit.connect() as conn:
                # Database names cannot be bound parameters; unit names are
                # built from a UUID and an integer only.
                await conn.execute(text(f'CREATE DATABASE "{unit_name}"'))
            logger.info(f"Storage unit created: {unit_name}")

        except DBAPIError as e:
            if sqlstate(e) in (DUPLICATE_DATABASE, UNIQUE_VIOLATION):
                logger.info(f"Storage unit {unit_name} was created concurrently")
                return
            raise ProvisioningError(
                "Failed to create storage unit",
                context={"unit_name": unit_name, "operation": "CREATE DATABASE"},
                original_exception=e
            )

    def cached_units(self):
        return list(self._engines)

    async def close_all(self) -> None:
        """Dispose every cached pool and the main catalog pool."""
        for unit_name, engine in list(self._engines.items()):
            await engine.dispose()
            logger.debug(f"Closed connection pool for {unit_name}")
        self._engines.clear()
        self._locks.clear()
        await self.main_engine.dispose()
        logger.info("All connection pools closed")
