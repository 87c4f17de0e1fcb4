# ============================================================================
# File: ingestion/runner.py
# Description: Task orchestrator - fetch, extract, deduplicate, persist
# ============================================================================
"""
Task Runner - executes one crawl task end to end.

State machine: PENDING -> RUNNING -> COMPLETED | FAILED

- RUNNING is entered once and its timestamp recorded once
- COMPLETED records the number of rows written (zero included)
- FAILED records the error message; the error is re-raised so the
  scheduler can decide whether to retry
"""

from typing import Any, Dict, List, Optional
from sqlalchemy.exc import InterfaceError, OperationalError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession
import logging

from ingestion.dedup import Deduplicator
from ingestion.extractors.api_extractor import APIExtractor
from ingestion.extractors.records import extract_records
from ingestion.loaders.postgres_loader import PostgresLoader
from ingestion.params import merge_request_params
from models.base import TaskStatus
from models.project import Project
from models.task import Task
from schemas.fields import FieldDefinition, parse_params
from services.projects import ProjectService, storage_fields
from services.tasks import TaskService
from storage.data_store import open_data_store
from storage.registry import ConnectionRegistry
from storage.versions import VersionManager
from core.exceptions import (
    DatabaseConnectionError,
    DatabaseError,
    ETLException,
    EntityNotFoundError,
)

logger = logging.getLogger(__name__)


class TaskRunner:
    """
    Task orchestrator

    Args:
        db_session: Session on the main catalog (projects, tasks)
        registry: Connection registry for the project storage units
        versions: VersionManager (default: built on ``registry``)
        extractor: APIExtractor (default: one with settings timeouts)
    """

    def __init__(
        self,
        db_session: AsyncSession,
        registry: ConnectionRegistry,
        versions: Optional[VersionManager] = None,
        extractor: Optional[APIExtractor] = None
    ):
        self.db = db_session
        self.registry = registry
        self.versions = versions or VersionManager(registry)
        self.extractor = extractor or APIExtractor()
        self.tasks = TaskService(db_session)
        self.projects = ProjectService(db_session, self.versions)

    async def _schema_for(self, task: Task, project: Project) -> List[FieldDefinition]:
        """Column list of the task's version: its snapshot, else the project's current one."""
        fields = await self.versions.load_schema(project.id, task.version)
        if fields:
            return fields

        if task.version != project.version:
            raise EntityNotFoundError(
                f"No schema recorded for version {task.version} of project {project.id}",
                context={"entity": "version", "entity_id": task.version, "project_id": str(project.id)}
            )

        logger.warning(f"No schema snapshot for {project.id} v{task.version}, using current definition")
        return storage_fields(project.response_structure, project.request_params)

    async def run(self, task_id) -> Dict[str, Any]:
        """
        Run one task.

        Pipeline phases:
        1. Fetch - one request with merged project/task parameters
        2. Extract - locate the record list in the response
        3. Deduplicate - against the task version's stored rows
        4. Load - batched insert into the task version's data unit

        Returns:
            Dictionary with run statistics:
            - status: "completed"
            - records_extracted: Records found in the response
            - records_loaded: Rows written
            - records_skipped: Records dropped as duplicates

        Raises:
            EntityNotFoundError: If the task or its project does not exist
            ETLException: Any pipeline failure (after the task is marked FAILED)
        """
        task = await self.tasks.get(task_id)
        project = await self.projects.get(task.project_id)

        task_ref = str(task.id)
        project_ref = str(project.id)
        records_extracted = 0
        records_loaded = 0

        try:
            await self.tasks.update_status(task, TaskStatus.RUNNING)
            logger.info(f"Starting task {task.id} for project {project.name} (v{task.version})")

            # --------------------------------------------------
            # PHASE 1: FETCH
            # --------------------------------------------------
            params = merge_request_params(project.request_params, task.request_params)
            payload = await self.extractor.fetch(project.api_url, project.method, params)

            # --------------------------------------------------
            # PHASE 2: EXTRACT
            # --------------------------------------------------
            extracted = extract_records(payload, project.target_chain)
            records = [r for r in extracted if isinstance(r, dict)]
            if len(records) != len(extracted):
                logger.warning(
                    f"Task {task.id}: dropped {len(extracted) - len(records)} non-object records"
                )
            records_extracted = len(records)

            if not records:
                logger.warning(f"Task {task.id} fetched no records")
                await self.tasks.update_status(task, TaskStatus.COMPLETED, result_count=0)
                return {
                    "status": TaskStatus.COMPLETED.value,
                    "records_extracted": 0,
                    "records_loaded": 0,
                    "records_skipped": 0
                }

            # --------------------------------------------------
            # PHASE 3: DEDUPLICATE
            # --------------------------------------------------
            fields = await self._schema_for(task, project)
            await self.versions.provision_data_unit(project.id, task.version, fields)
            store = await open_data_store(self.registry, project.id, task.version, fields)

            staged = await Deduplicator(store, fields).deduplicate(records)

            # --------------------------------------------------
            # PHASE 4: LOAD
            # --------------------------------------------------
            saved_keys = {
                p.key for p in parse_params(project.request_params) if p.save_to_database
            }
            extra_values = {k: v for k, v in params.items() if k in saved_keys}

            records_loaded = await PostgresLoader(store).load(staged, extra_values)

            await self.tasks.update_status(task, TaskStatus.COMPLETED, result_count=records_loaded)

            result = {
                "status": TaskStatus.COMPLETED.value,
                "records_extracted": records_extracted,
                "records_loaded": records_loaded,
                "records_skipped": records_extracted - len(staged)
            }
            logger.info(
                f"Task {task.id} completed - Extracted: {records_extracted}, "
                f"Loaded: {records_loaded}, Skipped: {result['records_skipped']}"
            )
            return result

        except ETLException as e:
            logger.error(
                f"Task {task.id} failed: {e.message}",
                extra={"error_context": e.to_dict()}
            )
            await self._mark_failed(task, e.message)
            raise

        except (OperationalError, InterfaceError, OSError) as e:
            await self._mark_failed(task, str(e))
            raise DatabaseConnectionError(
                "Storage unavailable while running task",
                context={"task_id": task_ref, "project_id": project_ref},
                original_exception=e
            )

        except SQLAlchemyError as e:
            await self._mark_failed(task, str(e))
            raise DatabaseError(
                "Storage operation failed while running task",
                context={"task_id": task_ref, "project_id": project_ref},
                original_exception=e
            )

        except Exception as e:
            logger.exception(f"Unexpected error in task {task_ref}")
            await self._mark_failed(task, str(e))
            raise ETLException(
                "Unexpected error in task pipeline",
                context={
                    "task_id": task_ref,
                    "project_id": project_ref,
                    "records_extracted": records_extracted,
                    "records_loaded": records_loaded
                },
                original_exception=e
            )

    async def _mark_failed(self, task: Task, message: str) -> None:
        await self.db.rollback()
        # Rollback expires loaded attributes; reload before writing the outcome.
        await self.db.refresh(task)
        await self.tasks.update_status(task, TaskStatus.FAILED, error_message=message or "Task failed")
