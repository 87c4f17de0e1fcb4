"""
Database session management with SQLAlchemy async

The main catalog engine is owned by the process-wide connection registry so
that catalog sessions and project storage units share one pool lifecycle.
"""

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker
from storage.registry import ConnectionRegistry


# Process-wide registry; closed by the API shutdown hook or the scripts.
registry = ConnectionRegistry()

# Create session factory
async_session_maker = async_sessionmaker(
    registry.main_engine,
    class_=AsyncSession,
    expire_on_commit=False,
    autoflush=False
)
