"""
Schema compiler: declarative field definitions -> PostgreSQL DDL.

A project's response schema is a list of FieldDefinition entries. Each
schema version gets its own ``crawl_data`` table, built here as a
SQLAlchemy Core ``Table`` so that the same object drives DDL generation,
inserts and filtered reads. Column names only ever come from validated
field keys, never from raw request input.
"""

import re
from typing import List, Sequence, Tuple

from sqlalchemy import (
    Boolean, Column, Date, DateTime, Index, Integer, MetaData,
    Numeric, String, Table, Text, Time, text,
)
from sqlalchemy.dialects.postgresql import asyncpg
from sqlalchemy.dialects.postgresql import JSONB, UUID
from sqlalchemy.schema import CreateIndex, CreateTable

from core.exceptions import SchemaValidationError
from models.base import CHOICE_TYPES, FieldType
from schemas.fields import FieldDefinition

DATA_TABLE_NAME = "crawl_data"

# System columns emitted ahead of the dynamic ones.
SYSTEM_COLUMNS = ("id", "project_id", "version")
# Holds the full fetched record; used for content deduplication.
PAYLOAD_COLUMN = "normalized_data"
RESERVED_KEYS = frozenset(SYSTEM_COLUMNS + (PAYLOAD_COLUMN,))

# Keeps generated index names (idx_unique_<key>) under PostgreSQL's 63 chars.
MAX_KEY_LENGTH = 50
KEY_PATTERN = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*$")

SUPPORTED_TYPES = frozenset(t.value for t in FieldType)

# The engines run on asyncpg; its paramstyle leaves "%" in DDL text untouched.
_DIALECT = asyncpg.dialect()


def native_type(field: FieldDefinition):
    """Map a logical field type to its column type."""
    field_type = FieldType(field.type)

    if field_type == FieldType.TEXT:
        return String(field.length or 255)

    return {
        FieldType.TEXTAREA: Text(),
        FieldType.NUMBER: Integer(),
        FieldType.DECIMAL: Numeric(10, 2),
        FieldType.BOOLEAN: Boolean(),
        FieldType.SELECT: String(100),
        FieldType.MULTISELECT: JSONB(none_as_null=True),
        FieldType.CHECKBOX: JSONB(none_as_null=True),
        FieldType.RADIO: String(50),
        FieldType.DATE: Date(),
        FieldType.DATETIME: DateTime(),
        FieldType.TIME: Time(),
        FieldType.EMAIL: String(255),
        FieldType.URL: Text(),
        FieldType.UUID: UUID(as_uuid=False),
        FieldType.JSON: JSONB(none_as_null=True),
        FieldType.ARRAY: JSONB(none_as_null=True),
    }[field_type]


def validate_field_definitions(fields: Sequence[FieldDefinition]) -> None:
    """
    Reject schemas that cannot be compiled.

    Raises:
        SchemaValidationError: On the first violated rule
    """
    if not fields:
        raise SchemaValidationError(
            "Field definitions must not be empty",
            context={"validation_rule": "non_empty"}
        )

    seen = set()
    for field in fields:
        key = field.key

        if not KEY_PATTERN.match(key) or len(key) > MAX_KEY_LENGTH:
            raise SchemaValidationError(
                f"Invalid field key: {key!r}",
                context={"field_name": key, "validation_rule": "identifier"}
            )

        if key in seen:
            raise SchemaValidationError(
                f"Duplicate field key: {key}",
                context={"field_name": key, "validation_rule": "unique_key"}
            )
        seen.add(key)

        if key in RESERVED_KEYS:
            raise SchemaValidationError(
                f"Field key {key} collides with a reserved system column",
                context={"field_name": key, "validation_rule": "reserved_key"}
            )

        # Primary fields must allow NULL: a record with a missing key is
        # stored rather than rejected, see ingestion.dedup.
        if field.primary and not field.nullable:
            raise SchemaValidationError(
                f"Primary field {key} must be nullable",
                context={"field_name": key, "validation_rule": "primary_nullable"}
            )

    for field in fields:
        if field.type not in SUPPORTED_TYPES:
            raise SchemaValidationError(
                f"Field {field.key} has unsupported type {field.type}. "
                f"Supported types: {', '.join(sorted(SUPPORTED_TYPES))}",
                context={"field_name": field.key, "validation_rule": "supported_type"}
            )

        if field.type in CHOICE_TYPES and field.options is not None and len(field.options) == 0:
            raise SchemaValidationError(
                f"Field {field.key} of type {field.type} requires a non-empty options list",
                context={"field_name": field.key, "validation_rule": "choice_options"}
            )


def _server_default(literal: str):
    # Emitted verbatim; colons are escaped so text() does not read them as binds.
    return text(literal.replace(":", r"\:"))


def build_data_table(fields: Sequence[FieldDefinition], version: int) -> Table:
    """
    Build the ``crawl_data`` table for one schema version.

    Fields are assumed validated. Each call uses a fresh MetaData so tables
    of different projects and versions never share state.
    """
    metadata = MetaData()

    columns: List[Column] = [
        Column("id", UUID(as_uuid=False), primary_key=True, server_default=text("gen_random_uuid()")),
        Column("project_id", UUID(as_uuid=False), nullable=False),
        Column("version", Integer, nullable=False, server_default=text(str(int(version)))),
        Column(PAYLOAD_COLUMN, JSONB(none_as_null=True), nullable=True),
    ]

    for field in fields:
        columns.append(
            Column(
                field.key,
                native_type(field),
                nullable=field.nullable or field.primary,
                server_default=_server_default(field.default) if field.default else None,
                unique=field.unique and not field.primary,
            )
        )

    table = Table(DATA_TABLE_NAME, metadata, *columns)

    Index("idx_project_id", table.c.project_id)
    Index("idx_version", table.c.version)
    for field in fields:
        if field.primary and field.key != "id":
            Index(f"idx_unique_{field.key}", table.c[field.key], unique=True)
        elif not field.primary and not field.nullable:
            Index(f"idx_{field.key}", table.c[field.key])

    return table


def compile_table(table: Table) -> Tuple[str, List[str]]:
    table_ddl = str(CreateTable(table, if_not_exists=True).compile(dialect=_DIALECT)).strip()
    index_ddl = [
        str(CreateIndex(index, if_not_exists=True).compile(dialect=_DIALECT)).strip()
        for index in sorted(table.indexes, key=lambda idx: idx.name)
    ]
    return table_ddl, index_ddl


def compile_schema(fields: Sequence[FieldDefinition], version: int) -> Tuple[str, List[str]]:
    """
    Compile field definitions into (table DDL, index DDL statements).

    Validates first; identical input always yields identical output.
    """
    validate_field_definitions(fields)
    return compile_table(build_data_table(fields, version))
