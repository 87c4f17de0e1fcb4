"""
Task endpoints
"""

from fastapi import APIRouter, Depends, Query, Request, status
from typing import List, Optional
from uuid import UUID
from api.dependencies import get_scheduler, get_task_service
from models.base import TaskStatus
from schemas.api import TaskCreate, TaskResponse
from services.tasks import TaskService
import logging

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/tasks", tags=["Tasks"])


@router.post("", response_model=TaskResponse, status_code=status.HTTP_201_CREATED)
async def create_task(
    request: Request,
    payload: TaskCreate,
    service: TaskService = Depends(get_task_service),
    scheduler=Depends(get_scheduler)
):
    """Create a PENDING task pinned to the project's current version and queue it."""
    task = await service.create(
        payload.project_id,
        [p.model_dump(mode="json") for p in payload.request_params]
    )
    if scheduler is not None:
        scheduler.enqueue(task.id)
    else:
        logger.warning(f"[{request.state.request_id}] No scheduler running; task {task.id} left PENDING")
    return task


@router.get("", response_model=List[TaskResponse])
async def list_tasks(
    project_id: Optional[UUID] = Query(None, description="Only tasks of this project"),
    task_status: Optional[TaskStatus] = Query(None, alias="status"),
    service: TaskService = Depends(get_task_service)
):
    return await service.list(project_id=project_id, status=task_status)


@router.get("/{task_id}", response_model=TaskResponse)
async def get_task(task_id: UUID, service: TaskService = Depends(get_task_service)):
    return await service.get(task_id)
