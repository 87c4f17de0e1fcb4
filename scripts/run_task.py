"""
Run one task synchronously, outside the scheduler

Usage:
    python scripts/run_task.py <task_id>
"""

import asyncio
import sys
import os
import logging

# Add current directory to path to allow imports from core, models, etc.
sys.path.append(os.getcwd())

from core.database import async_session_maker, registry
from core.exceptions import ETLException
from core.logging import setup_logging
from ingestion.runner import TaskRunner

logger = logging.getLogger(__name__)


async def run_task(task_id: str) -> int:
    """Run ``task_id`` and return a process exit code"""
    try:
        async with async_session_maker() as session:
            result = await TaskRunner(session, registry).run(task_id)
            logger.info(
                f"Task {task_id} completed: "
                f"Extracted={result['records_extracted']}, "
                f"Loaded={result['records_loaded']}, "
                f"Skipped={result['records_skipped']}"
            )
            return 0

    except ETLException as e:
        logger.error(f"Task {task_id} failed: {e}")
        return 1

    finally:
        await registry.close_all()


if __name__ == "__main__":
    if len(sys.argv) != 2:
        print(__doc__)
        sys.exit(2)

    setup_logging()
    sys.exit(asyncio.run(run_task(sys.argv[1])))
