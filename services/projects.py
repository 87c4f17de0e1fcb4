"""
Project catalog operations and schema versioning.

A project's storage is laid out as one configuration unit plus one data
unit per schema version. Creating a project provisions version 1; changing
``response_structure`` (or which request parameters are persisted) moves the
project to the next version with a fresh, empty data unit. Older versions
stay queryable and are never migrated.
"""

from datetime import datetime
from typing import Any, Dict, Iterable, List, Optional
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession
from core.exceptions import EntityNotFoundError
from models.project import Project
from schemas.fields import FieldDefinition, dump_models, parse_fields, parse_params
from storage.compiler import SUPPORTED_TYPES, validate_field_definitions
from storage.versions import VersionManager
import logging

logger = logging.getLogger(__name__)

# Attributes that can change without a new schema version.
PLAIN_ATTRIBUTES = ("name", "api_url", "method", "target_chain")


def storage_fields(response_structure: Iterable[Any], request_params: Iterable[Any] = ()) -> List[FieldDefinition]:
    """
    Column list of a data unit: the response fields followed by the request
    parameters flagged ``save_to_database``.

    Persisted parameters become nullable, non-primary columns. A parameter
    whose key is already a response field does not add a second column.
    """
    fields = parse_fields(response_structure)
    keys = {f.key for f in fields}

    for param in parse_params(request_params):
        if not param.save_to_database or param.key in keys:
            continue
        fields.append(FieldDefinition(
            key=param.key,
            type=param.type if param.type in SUPPORTED_TYPES else "text",
            nullable=True,
            length=param.length,
        ))
        keys.add(param.key)

    return fields


def _persisted_param_keys(request_params: Iterable[Any]) -> List[str]:
    return [p.key for p in parse_params(request_params) if p.save_to_database]


class ProjectService:
    """
    Args:
        db_session: Session on the main catalog
        versions: VersionManager for storage provisioning; only needed by
            create() and update()
    """

    def __init__(self, db_session: AsyncSession, versions: Optional[VersionManager] = None):
        self.db = db_session
        self.versions = versions

    async def _provision_version(self, project_id, version: int, fields: List[FieldDefinition]) -> None:
        await self.versions.provision_data_unit(project_id, version, fields)
        await self.versions.save_schema(project_id, version, fields)

    async def create(self, data: Dict[str, Any]) -> Project:
        """
        Validate the schema, insert the catalog row at version 1 and provision
        the configuration unit and the version 1 data unit.
        """
        response_structure = parse_fields(data["response_structure"])
        request_params = parse_params(data.get("request_params"))
        fields = storage_fields(response_structure, request_params)
        validate_field_definitions(fields)

        project = Project(
            name=data["name"],
            api_url=data["api_url"],
            method=(data.get("method") or "GET").upper(),
            request_params=dump_models(request_params),
            target_chain=data.get("target_chain"),
            response_structure=dump_models(response_structure),
            version=1,
        )
        self.db.add(project)
        await self.db.commit()
        await self.db.refresh(project)

        await self.versions.provision_config(project.id)
        await self._provision_version(project.id, 1, fields)

        logger.info(f"Project {project.id} ({project.name}) created with {len(fields)} columns")
        return project

    async def get(self, project_id) -> Project:
        project = await self.db.get(Project, project_id)
        if project is None:
            raise EntityNotFoundError(
                f"Project {project_id} does not exist",
                context={"entity": "project", "entity_id": str(project_id)}
            )
        return project

    async def list(self) -> List[Project]:
        result = await self.db.execute(select(Project).order_by(Project.created_at.desc()))
        return list(result.scalars().all())

    async def update(self, project_id, data: Dict[str, Any]) -> Project:
        """
        Apply a partial update.

        A changed column set (response structure or persisted request
        parameters) bumps the version and provisions its data unit; any other
        change keeps the current version.
        """
        project = await self.get(project_id)

        new_structure = project.response_structure
        if data.get("response_structure") is not None:
            new_structure = dump_models(parse_fields(data["response_structure"]))

        new_params = project.request_params
        if data.get("request_params") is not None:
            new_params = dump_models(parse_params(data["request_params"]))

        structure_changed = (
            new_structure != project.response_structure
            or _persisted_param_keys(new_params) != _persisted_param_keys(project.request_params)
        )

        if structure_changed:
            fields = storage_fields(new_structure, new_params)
            validate_field_definitions(fields)

            new_version = await self.versions.bump_version(project.id)
            await self._provision_version(project.id, new_version, fields)
            project.version = new_version
            logger.info(f"Project {project.id} schema changed, now at version {new_version}")

        project.response_structure = new_structure
        project.request_params = new_params
        for attribute in PLAIN_ATTRIBUTES:
            if attribute in data and data[attribute] is not None:
                value = data[attribute]
                setattr(project, attribute, value.upper() if attribute == "method" else value)
        project.updated_at = datetime.utcnow()

        await self.db.commit()
        await self.db.refresh(project)
        return project

    async def remove(self, project_id) -> None:
        """Delete the catalog row; its storage units are retained."""
        project = await self.get(project_id)
        await self.db.delete(project)
        await self.db.commit()
        logger.info(f"Project {project_id} removed (storage units retained)")
