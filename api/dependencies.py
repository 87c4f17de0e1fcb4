"""
FastAPI dependencies: catalog sessions, the shared registry and services
"""

from fastapi import Depends, Request
from sqlalchemy.ext.asyncio import AsyncSession
from core.database import async_session_maker, registry
from services.projects import ProjectService
from services.query import QueryService
from services.tasks import TaskService
from storage.registry import ConnectionRegistry
from storage.versions import VersionManager


async def get_db() -> AsyncSession:
    async with async_session_maker() as session:
        yield session


def get_registry() -> ConnectionRegistry:
    return registry


def get_versions(reg: ConnectionRegistry = Depends(get_registry)) -> VersionManager:
    return VersionManager(reg)


def get_project_service(
    db: AsyncSession = Depends(get_db),
    versions: VersionManager = Depends(get_versions)
) -> ProjectService:
    return ProjectService(db, versions)


def get_task_service(db: AsyncSession = Depends(get_db)) -> TaskService:
    return TaskService(db)


def get_query_service(
    db: AsyncSession = Depends(get_db),
    reg: ConnectionRegistry = Depends(get_registry),
    versions: VersionManager = Depends(get_versions)
) -> QueryService:
    return QueryService(db, reg, versions)


def get_scheduler(request: Request):
    """TaskScheduler attached to the app at startup (None if disabled)."""
    return getattr(request.app.state, "scheduler", None)
