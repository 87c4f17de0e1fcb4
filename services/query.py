"""
Filtered reads from a project's versioned data units
"""

from typing import Any, Dict, List, Mapping, Optional, Sequence, Tuple
from sqlalchemy import Table, Text, cast
from sqlalchemy.ext.asyncio import AsyncSession
from core.exceptions import EntityNotFoundError, SchemaValidationError
from schemas.api import QueryFilter, QueryRequest
from schemas.fields import FieldDefinition
from services.projects import ProjectService, storage_fields
from storage.compiler import PAYLOAD_COLUMN
from storage.data_store import coerce_value, open_data_store
from storage.registry import ConnectionRegistry
from storage.versions import VersionManager
import logging

logger = logging.getLogger(__name__)

OPERATORS = ("=", "!=", ">", "<", ">=", "<=", "LIKE", "IN")

# Logical types of the system columns, for filter value coercion.
SYSTEM_FIELD_TYPES = {
    "id": "uuid",
    "project_id": "uuid",
    "version": "number",
    PAYLOAD_COLUMN: "json",
}


def _column(table: Table, name: str, purpose: str):
    if name not in table.c:
        raise SchemaValidationError(
            f"Unknown {purpose} field: {name}",
            context={"field_name": name, "validation_rule": f"{purpose}_field_must_exist"}
        )
    return table.c[name]


def build_conditions(
    table: Table,
    field_types: Mapping[str, str],
    filters: Sequence[QueryFilter],
) -> List[Any]:
    """
    Translate filters into SQL expressions, AND-combined by the caller.

    Field names must be columns of ``table``; values are coerced to the
    column's type and always bound as parameters.

    Raises:
        SchemaValidationError: Unknown field/operator or missing value(s)
    """
    conditions = []

    for f in filters:
        column = _column(table, f.field, "filter")
        field_type = field_types.get(f.field, "text")

        if f.operator not in OPERATORS:
            raise SchemaValidationError(
                f"Unsupported operator {f.operator!r} for field {f.field}",
                context={"field_name": f.field, "validation_rule": "operator"}
            )

        if f.operator == "IN":
            if not f.values:
                raise SchemaValidationError(
                    f"IN on field {f.field} requires a non-empty values list",
                    context={"field_name": f.field, "validation_rule": "in_requires_values"}
                )
            conditions.append(column.in_([coerce_value(field_type, v, f.field) for v in f.values]))
            continue

        if f.value is None:
            raise SchemaValidationError(
                f"{f.operator} on field {f.field} requires a value",
                context={"field_name": f.field, "validation_rule": "operator_requires_value"}
            )

        if f.operator == "LIKE":
            conditions.append(cast(column, Text).like(f"%{f.value}%"))
            continue

        value = coerce_value(field_type, f.value, f.field)
        if f.operator == "=":
            conditions.append(column == value)
        elif f.operator == "!=":
            conditions.append(column != value)
        elif f.operator == ">":
            conditions.append(column > value)
        elif f.operator == "<":
            conditions.append(column < value)
        elif f.operator == ">=":
            conditions.append(column >= value)
        else:
            conditions.append(column <= value)

    return conditions


class QueryService:
    """
    Args:
        db_session: Session on the main catalog
        registry: Connection registry for the data units
        versions: VersionManager (default: built on ``registry``)
    """

    def __init__(
        self,
        db_session: AsyncSession,
        registry: ConnectionRegistry,
        versions: Optional[VersionManager] = None
    ):
        self.registry = registry
        self.versions = versions or VersionManager(registry)
        self.projects = ProjectService(db_session, self.versions)

    async def _fields_for(self, project, version: int) -> List[FieldDefinition]:
        fields = await self.versions.load_schema(project.id, version)
        if fields:
            return fields
        if version == project.version:
            return storage_fields(project.response_structure, project.request_params)
        raise EntityNotFoundError(
            f"Version {version} of project {project.id} does not exist",
            context={"entity": "version", "entity_id": version, "project_id": str(project.id)}
        )

    async def query(self, request: QueryRequest) -> Tuple[List[Dict[str, Any]], int, int]:
        """
        Run a filtered, ordered, paginated read.

        Version defaults to the project's current one. Reading a version
        whose data unit was never provisioned raises EntityNotFoundError; it
        is never created by a read.

        Returns:
            (rows, total matching rows ignoring pagination, version read)
        """
        project = await self.projects.get(request.project_id)
        version = request.version or project.version
        if version > project.version:
            raise EntityNotFoundError(
                f"Version {version} of project {project.id} does not exist",
                context={"entity": "version", "entity_id": version, "project_id": str(project.id)}
            )

        fields = await self._fields_for(project, version)
        store = await open_data_store(self.registry, project.id, version, fields, create_missing=False)
        table = store.table

        field_types = dict(SYSTEM_FIELD_TYPES)
        field_types.update({f.key: f.type for f in fields})

        conditions = [
            table.c.version == version,
            table.c.project_id == str(project.id),
        ]
        conditions.extend(build_conditions(table, field_types, request.filters or []))

        if request.order_by:
            column = _column(table, request.order_by, "order_by")
            order_by = column.desc() if request.order == "DESC" else column.asc()
        else:
            order_by = table.c.id.desc()

        rows = await store.select_rows(conditions, order_by, request.limit, request.offset)
        total = await store.count(conditions)

        logger.info(
            f"Query on {store.unit_name}: {len(conditions) - 2} filters, "
            f"{len(rows)} of {total} rows returned"
        )
        return rows, total, version

    async def list_versions(self, project_id) -> List[int]:
        """Versions of the project whose data unit exists, ascending."""
        project = await self.projects.get(project_id)
        return await self.versions.list_available_versions(project.id, project.version)
