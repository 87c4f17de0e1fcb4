"""
Project registration and schema versioning endpoints
"""

from fastapi import APIRouter, Depends, Request, status
from typing import List
from uuid import UUID
from api.dependencies import get_project_service, get_query_service
from schemas.api import ProjectCreate, ProjectResponse, ProjectUpdate, VersionsResponse
from services.projects import ProjectService
from services.query import QueryService
import logging

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/projects", tags=["Projects"])


@router.post("", response_model=ProjectResponse, status_code=status.HTTP_201_CREATED)
async def create_project(
    request: Request,
    payload: ProjectCreate,
    service: ProjectService = Depends(get_project_service)
):
    """
    Register a project.

    Provisions the project's configuration unit and the version 1 data unit.
    """
    logger.info(f"[{request.state.request_id}] POST /projects - {payload.name}")
    return await service.create(payload.model_dump(mode="json"))


@router.get("", response_model=List[ProjectResponse])
async def list_projects(service: ProjectService = Depends(get_project_service)):
    return await service.list()


@router.get("/{project_id}", response_model=ProjectResponse)
async def get_project(project_id: UUID, service: ProjectService = Depends(get_project_service)):
    return await service.get(project_id)


@router.patch("/{project_id}", response_model=ProjectResponse)
async def update_project(
    request: Request,
    project_id: UUID,
    payload: ProjectUpdate,
    service: ProjectService = Depends(get_project_service)
):
    """Apply a partial update; a schema change moves the project to a new version."""
    logger.info(f"[{request.state.request_id}] PATCH /projects/{project_id}")
    return await service.update(project_id, payload.model_dump(mode="json", exclude_unset=True))


@router.delete("/{project_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_project(project_id: UUID, service: ProjectService = Depends(get_project_service)):
    await service.remove(project_id)


@router.get("/{project_id}/versions", response_model=VersionsResponse)
async def list_versions(project_id: UUID, service: QueryService = Depends(get_query_service)):
    """Versions whose data unit exists, ascending."""
    versions = await service.list_versions(project_id)
    return VersionsResponse(project_id=project_id, versions=versions)
