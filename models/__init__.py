"""
SQLAlchemy ORM models for the main catalog database.

Models:
    base: Base declarative class and shared enums (FieldType, HTTPMethod, TaskStatus)
    project: Crawl target configuration and current schema version
    task: Per-execution task record

Per-project storage units (configuration and versioned data databases)
are not ORM-mapped: their tables are built at runtime from each project's
field definitions, see storage.compiler.

Usage:
    from models.project import Project
    from models.task import Task
    from models.base import TaskStatus
"""

from models.base import Base, FieldType, HTTPMethod, TaskStatus
from models.project import Project
from models.task import Task

__all__ = [
    "Base",
    "FieldType",
    "HTTPMethod",
    "TaskStatus",
    "Project",
    "Task",
]
