"""
Pydantic schemas for data validation and serialization.

Schemas:
    fields: Field definitions and request parameter entries, as stored in
        the catalog and the configuration units
    api: API endpoint request/response schemas

Usage:
    from schemas.fields import FieldDefinition, parse_fields
    from schemas.api import ProjectCreate, QueryRequest
"""

__all__ = [
    "FieldDefinition",
    "RequestParam",
    "ProjectCreate",
    "ProjectUpdate",
    "ProjectResponse",
    "TaskCreate",
    "TaskResponse",
    "QueryFilter",
    "QueryRequest",
    "QueryResponse",
    "HealthCheckResponse",
]
