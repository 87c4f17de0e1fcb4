"""
Catalog-level operations used by the API and the task runner.

Modules:
    projects: Project CRUD and schema version changes
    tasks: Task creation and status transitions
    query: Filtered reads from versioned data units
"""

__all__ = [
    "ProjectService",
    "TaskService",
    "QueryService",
]
