"""
Create the main catalog tables (projects, tasks)

Project configuration and data units are created on demand by the
application and are not touched here.
"""

import asyncio
import logging
import sys
import os

# Add current directory to path to allow imports from core, models, etc.
sys.path.append(os.getcwd())

from core.database import registry
from core.logging import setup_logging
from models.base import Base
# Import all models to ensure they are registered
from models.project import Project
from models.task import Task

logger = logging.getLogger(__name__)


async def init_database():
    logger.info("Connecting to database...")

    try:
        async with registry.main_engine.begin() as conn:
            logger.info("Creating tables...")
            await conn.run_sync(Base.metadata.create_all)
            logger.info("Tables created successfully.")
    finally:
        await registry.close_all()


if __name__ == "__main__":
    setup_logging()
    asyncio.run(init_database())
