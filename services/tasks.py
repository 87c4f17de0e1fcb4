"""
Task catalog operations
"""

from datetime import datetime
from typing import Any, List, Optional, Sequence
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession
from core.exceptions import EntityNotFoundError
from models.base import TaskStatus
from models.task import Task
from schemas.fields import dump_models, parse_params
from services.projects import ProjectService
import logging

logger = logging.getLogger(__name__)


class TaskService:
    """Create tasks pinned to a project's current version and track their status."""

    def __init__(self, db_session: AsyncSession):
        self.db = db_session

    async def create(self, project_id, request_params: Optional[Sequence[Any]] = None) -> Task:
        """
        Create a PENDING task.

        The project's version at this moment is captured; the task writes to
        that version's data unit even if the schema changes before it runs.
        """
        project = await ProjectService(self.db).get(project_id)

        task = Task(
            project_id=project.id,
            request_params=dump_models(parse_params(request_params)),
            version=project.version,
            status=TaskStatus.PENDING,
        )
        self.db.add(task)
        await self.db.commit()
        await self.db.refresh(task)

        logger.info(f"Task {task.id} created for project {project.id} at version {task.version}")
        return task

    async def get(self, task_id) -> Task:
        task = await self.db.get(Task, task_id)
        if task is None:
            raise EntityNotFoundError(
                f"Task {task_id} does not exist",
                context={"entity": "task", "entity_id": str(task_id)}
            )
        return task

    async def list(self, project_id=None, status: Optional[TaskStatus] = None) -> List[Task]:
        query = select(Task).order_by(Task.created_at.desc())
        if project_id is not None:
            query = query.where(Task.project_id == project_id)
        if status is not None:
            query = query.where(Task.status == status)
        result = await self.db.execute(query)
        return list(result.scalars().all())

    async def update_status(
        self,
        task: Task,
        status: TaskStatus,
        result_count: Optional[int] = None,
        error_message: Optional[str] = None
    ) -> Task:
        """
        Move ``task`` to ``status`` and commit.

        - RUNNING records started_at only the first time and clears the
          outcome of any earlier attempt
        - COMPLETED and FAILED record completed_at; COMPLETED clears the
          error of an earlier attempt
        - result_count / error_message are written only when given
        """
        task.status = status

        if status == TaskStatus.RUNNING:
            if task.started_at is None:
                task.started_at = datetime.utcnow()
            task.completed_at = None
            task.result_count = None
            task.error_message = None

        if status == TaskStatus.COMPLETED:
            task.error_message = None

        if status in (TaskStatus.COMPLETED, TaskStatus.FAILED):
            task.completed_at = datetime.utcnow()

        if result_count is not None:
            task.result_count = result_count

        if error_message:
            task.error_message = error_message

        await self.db.commit()
        logger.info(f"Task {task.id} -> {status.value}")
        return task
