"""
Task scheduler: runs queued tasks on the event loop with APScheduler.

Each task is a one-shot job. Jobs run concurrently up to
``SCHEDULER_MAX_INSTANCES``; a task that fails with a RetryableError is
re-enqueued with exponential backoff until ``MAX_RETRIES`` attempts have
been made. Permanent failures are left FAILED.
"""

import asyncio
import logging
import uuid
from datetime import datetime, timedelta
from typing import Optional

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.date import DateTrigger
from sqlalchemy.ext.asyncio import async_sessionmaker

from core.config import settings
from core.exceptions import ETLException, RetryableError
from ingestion.runner import TaskRunner
from models.base import TaskStatus
from services.tasks import TaskService
from storage.registry import ConnectionRegistry

logger = logging.getLogger(__name__)


class TaskScheduler:
    """
    Args:
        session_maker: Factory for main catalog sessions (one per job)
        registry: Shared connection registry
        max_retries: Attempts per task (default: settings.MAX_RETRIES)
    """

    def __init__(
        self,
        session_maker: async_sessionmaker,
        registry: ConnectionRegistry,
        max_retries: Optional[int] = None
    ):
        self.session_maker = session_maker
        self.registry = registry
        self.max_retries = max_retries or settings.MAX_RETRIES
        self.scheduler = AsyncIOScheduler(
            job_defaults={"coalesce": False, "misfire_grace_time": None}
        )
        self._slots = asyncio.Semaphore(settings.SCHEDULER_MAX_INSTANCES)

    def enqueue(self, task_id, attempt: int = 1, delay: float = 0) -> str:
        """Schedule one execution of ``task_id`` after ``delay`` seconds."""
        job_id = f"task_{task_id}_{attempt}_{uuid.uuid4().hex[:8]}"
        self.scheduler.add_job(
            self.run_task_job,
            trigger=DateTrigger(run_date=datetime.now() + timedelta(seconds=delay)),
            args=[str(task_id), attempt],
            id=job_id,
            replace_existing=True
        )
        logger.info(f"Scheduler: task {task_id} queued (attempt {attempt}, delay {delay:.1f}s)")
        return job_id

    def backoff(self, error: RetryableError, attempt: int) -> float:
        return error.retry_delay * (2 ** (attempt - 1))

    async def run_task_job(self, task_id: str, attempt: int = 1) -> None:
        """Job body: run one task in its own session and re-queue transient failures."""
        logger.info(f"Scheduler: starting task {task_id} (attempt {attempt})")
        async with self._slots, self.session_maker() as session:
            try:
                await TaskRunner(session, self.registry).run(task_id)

            except RetryableError as e:
                if attempt < self.max_retries:
                    delay = self.backoff(e, attempt)
                    logger.warning(
                        f"Scheduler: task {task_id} failed with retryable error, "
                        f"retrying in {delay:.1f}s: {e.message}"
                    )
                    self.enqueue(task_id, attempt + 1, delay)
                else:
                    logger.error(f"Scheduler: task {task_id} gave up after {attempt} attempts")

            except ETLException as e:
                logger.error(f"Scheduler: task {task_id} failed - {e.message}")

    async def recover_pending(self) -> int:
        """Queue every task still PENDING, e.g. after a restart."""
        async with self.session_maker() as session:
            pending = await TaskService(session).list(status=TaskStatus.PENDING)
        for task in pending:
            self.enqueue(task.id)
        if pending:
            logger.info(f"Scheduler: recovered {len(pending)} pending tasks")
        return len(pending)

    def start(self):
        """Start the scheduler"""
        self.scheduler.start()
        logger.info("Task Scheduler started")

    def stop(self):
        if self.scheduler.running:
            self.scheduler.shutdown(wait=False)
        logger.info("Task Scheduler stopped")
