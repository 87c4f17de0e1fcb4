"""
Health check endpoint with database and task status
"""

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select, func, text
from api.dependencies import get_db, get_registry, get_scheduler
from schemas.api import HealthCheckResponse
from models.task import Task
from storage.registry import ConnectionRegistry
from datetime import datetime
from sqlalchemy.exc import SQLAlchemyError
import logging

logger = logging.getLogger(__name__)
router = APIRouter(tags=["Health"])


@router.get("/health", response_model=HealthCheckResponse)
async def health_check(
    db: AsyncSession = Depends(get_db),
    registry: ConnectionRegistry = Depends(get_registry),
    scheduler=Depends(get_scheduler)
):
    """
    Health check endpoint.

    Returns:
    - Main catalog connectivity
    - Scheduler state and number of open storage unit pools
    - Task counts per status
    """
    db_connected = False
    tasks_by_status = {}

    try:
        await db.execute(text("SELECT 1"))
        db_connected = True

        result = await db.execute(select(Task.status, func.count()).group_by(Task.status))
        tasks_by_status = {row[0].value: row[1] for row in result}
    except (SQLAlchemyError, OSError) as e:
        logger.error(f"Database health check failed: {str(e)}")

    return HealthCheckResponse(
        status="healthy" if db_connected else "unhealthy",
        timestamp=datetime.utcnow(),
        database_connected=db_connected,
        scheduler_running=bool(scheduler and scheduler.scheduler.running),
        open_storage_units=len(registry.cached_units()),
        tasks_by_status=tasks_by_status
    )
