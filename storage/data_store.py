"""
Versioned data store: typed reads and writes against one ``crawl_data`` table.

Rows are plain ordered dicts keyed by schema column. Values from fetched
payloads are loosely typed JSON, so every value is coerced to what its
column accepts before it is bound; asyncpg rejects e.g. a string bound to
an INTEGER parameter.
"""

import json
import logging
import uuid
from contextlib import contextmanager
from datetime import date, datetime, time, timezone
from decimal import Decimal, InvalidOperation
from typing import Any, Dict, List, Mapping, Optional, Sequence

from sqlalchemy import Table, and_, func, insert, select
from sqlalchemy.exc import InterfaceError, OperationalError, SQLAlchemyError
from sqlalchemy.exc import TimeoutError as PoolTimeoutError
from sqlalchemy.ext.asyncio import AsyncEngine

from core.exceptions import (
    DatabaseConnectionError,
    DatabaseError,
    DataFormatError,
)
from models.base import FieldType
from schemas.fields import FieldDefinition
from storage.compiler import PAYLOAD_COLUMN, build_data_table
from storage.registry import ConnectionRegistry, data_unit_name

logger = logging.getLogger(__name__)

TRUE_STRINGS = {"true", "1", "yes", "y", "t", "on"}
FALSE_STRINGS = {"false", "0", "no", "n", "f", "off", ""}


@contextmanager
def db_errors(operation: str, unit_name: str):
    """Translate driver errors into the pipeline's exception types."""
    try:
        yield
    except (OperationalError, InterfaceError, PoolTimeoutError, OSError) as e:
        raise DatabaseConnectionError(
            f"Storage unavailable during {operation}",
            context={"operation": operation, "unit_name": unit_name},
            original_exception=e
        )
    except SQLAlchemyError as e:
        raise DatabaseError(
            f"Storage operation {operation} failed",
            context={"operation": operation, "unit_name": unit_name},
            original_exception=e
        )


def _to_bool(value: Any) -> bool:
    if isinstance(value, str):
        lowered = value.strip().lower()
        if lowered in TRUE_STRINGS:
            return True
        if lowered in FALSE_STRINGS:
            return False
        raise ValueError(f"not a boolean: {value!r}")
    return bool(value)


def _to_int(value: Any) -> int:
    if isinstance(value, bool):
        return int(value)
    if isinstance(value, int):
        return value
    number = Decimal(str(value).strip())
    if number != number.to_integral_value():
        raise ValueError(f"not an integer: {value!r}")
    return int(number)


def _to_datetime(value: Any) -> datetime:
    if isinstance(value, datetime):
        parsed = value
    elif isinstance(value, (int, float)) and not isinstance(value, bool):
        parsed = datetime.fromtimestamp(value, tz=timezone.utc)
    else:
        parsed = datetime.fromisoformat(str(value).strip().replace("Z", "+00:00"))

    # Columns are TIMESTAMP WITHOUT TIME ZONE; store UTC.
    if parsed.tzinfo is not None:
        parsed = parsed.astimezone(timezone.utc).replace(tzinfo=None)
    return parsed


def _to_date(value: Any) -> date:
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    raw = str(value).strip()
    if "T" in raw or " " in raw:
        return _to_datetime(raw).date()
    return date.fromisoformat(raw)


def _to_time(value: Any) -> time:
    if isinstance(value, time):
        return value
    return time.fromisoformat(str(value).strip())


def _to_json(value: Any) -> Any:
    if isinstance(value, str) and value.strip()[:1] in ("[", "{"):
        return json.loads(value)
    return value


def _to_text(value: Any) -> str:
    if isinstance(value, str):
        return value
    if isinstance(value, (dict, list)):
        return json.dumps(value, ensure_ascii=False)
    return str(value)


_COERCERS = {
    FieldType.NUMBER: _to_int,
    FieldType.DECIMAL: lambda v: Decimal(str(v).strip()),
    FieldType.BOOLEAN: _to_bool,
    FieldType.DATE: _to_date,
    FieldType.DATETIME: _to_datetime,
    FieldType.TIME: _to_time,
    FieldType.UUID: lambda v: str(uuid.UUID(str(v))),
    FieldType.JSON: _to_json,
    FieldType.ARRAY: _to_json,
    FieldType.MULTISELECT: _to_json,
    FieldType.CHECKBOX: _to_json,
}


def coerce_value(field_type: str, value: Any, field_name: Optional[str] = None) -> Any:
    """
    Convert a loosely typed value to the Python type its column binds.

    Raises:
        DataFormatError: If the value cannot represent the field type
    """
    if value is None:
        return None

    coercer = _COERCERS.get(FieldType(field_type), _to_text)
    try:
        return coercer(value)
    except (ValueError, TypeError, InvalidOperation, json.JSONDecodeError) as e:
        raise DataFormatError(
            f"Value for {field_name or 'field'} is not a valid {field_type}",
            context={"field_name": field_name, "field_type": field_type, "field_value": repr(value)[:200]},
            original_exception=e
        )


def build_row(
    fields: Sequence[FieldDefinition],
    record: Mapping[str, Any],
    extra_values: Optional[Mapping[str, Any]] = None,
) -> Dict[str, Any]:
    """
    Project a record onto the declared schema columns, in declaration order.

    Keys absent from the record become None; keys not in the schema are
    dropped (they survive in the payload column). ``extra_values`` supplies
    columns that do not come from the record, such as persisted request
    parameters.
    """
    extra_values = extra_values or {}
    row: Dict[str, Any] = {}
    for field in fields:
        if field.key in extra_values:
            raw = extra_values[field.key]
        else:
            raw = record.get(field.key)
        row[field.key] = coerce_value(field.type, raw, field.key)
    return row


class VersionedDataStore:
    """Reads and writes for one project's data unit at one schema version."""

    def __init__(
        self,
        engine: AsyncEngine,
        table: Table,
        fields: Sequence[FieldDefinition],
        project_id,
        version: int,
        unit_name: str,
    ):
        self.engine = engine
        self.table = table
        self.fields = list(fields)
        self.fields_by_key = {f.key: f for f in self.fields}
        self.project_id = str(project_id)
        self.version = version
        self.unit_name = unit_name

    async def exists_by_fields(self, values: Mapping[str, Any]) -> bool:
        """True if a row matches every given column value (AND-combined)."""
        conditions = [
            self.table.c[key] == coerce_value(self.fields_by_key[key].type, value, key)
            for key, value in values.items()
        ]
        stmt = select(self.table.c.id).where(and_(*conditions)).limit(1)
        with db_errors("SELECT", self.unit_name):
            async with self.engine.connect() as conn:
                result = await conn.execute(stmt)
                return result.first() is not None

    async def exists_by_payload(self, record: Mapping[str, Any]) -> bool:
        """True if a row's stored payload is structurally equal to ``record``."""
        stmt = (
            select(self.table.c.id)
            .where(self.table.c[PAYLOAD_COLUMN] == dict(record))
            .limit(1)
        )
        with db_errors("SELECT", self.unit_name):
            async with self.engine.connect() as conn:
                result = await conn.execute(stmt)
                return result.first() is not None

    async def insert_rows(self, rows: List[Dict[str, Any]]) -> int:
        """Insert ``rows`` with a single multi-row INSERT in one transaction."""
        if not rows:
            return 0

        values = [
            {"project_id": self.project_id, "version": self.version, **row}
            for row in rows
        ]
        with db_errors("INSERT", self.unit_name):
            async with self.engine.begin() as conn:
                await conn.execute(insert(self.table).values(values))
        return len(values)

    async def count(self, conditions: Sequence[Any] = ()) -> int:
        stmt = select(func.count()).select_from(self.table)
        if conditions:
            stmt = stmt.where(and_(*conditions))
        with db_errors("SELECT", self.unit_name):
            async with self.engine.connect() as conn:
                result = await conn.execute(stmt)
                return int(result.scalar() or 0)

    async def select_rows(
        self,
        conditions: Sequence[Any],
        order_by: Any,
        limit: Optional[int] = None,
        offset: Optional[int] = None,
    ) -> List[Dict[str, Any]]:
        stmt = select(self.table).where(and_(*conditions)).order_by(order_by)
        if limit:
            stmt = stmt.limit(limit)
            if offset:
                stmt = stmt.offset(offset)
        with db_errors("SELECT", self.unit_name):
            async with self.engine.connect() as conn:
                result = await conn.execute(stmt)
                return [dict(row._mapping) for row in result]


async def open_data_store(
    registry: ConnectionRegistry,
    project_id,
    version: int,
    fields: Sequence[FieldDefinition],
    create_missing: bool = True,
) -> VersionedDataStore:
    """Resolve the data unit for (project, version) and bind its table."""
    unit_name = data_unit_name(project_id, version)
    engine = await registry.resolve(unit_name, create_missing=create_missing)
    table = build_data_table(fields, version)
    return VersionedDataStore(engine, table, fields, project_id, version, unit_name)
