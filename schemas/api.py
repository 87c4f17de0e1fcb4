"""
Pydantic schemas for API request/response models
"""

from pydantic import BaseModel, ConfigDict, Field, field_validator
from typing import Optional, List, Dict, Any, Literal
from datetime import datetime
from uuid import UUID
from models.base import HTTPMethod, TaskStatus
from schemas.fields import FieldDefinition, RequestParam


# ============================================================================
# Project Schemas
# ============================================================================

class ProjectCreate(BaseModel):
    """Project registration payload"""
    name: str = Field(..., min_length=1, max_length=255)
    api_url: str = Field(..., description="Endpoint fetched by every task of the project")
    method: HTTPMethod = Field(default=HTTPMethod.GET)
    request_params: List[RequestParam] = Field(default_factory=list, description="Parameter template")
    target_chain: Optional[List[str]] = Field(
        None, description="Key path to the record list in the response, e.g. ['data', 'list']"
    )
    response_structure: List[FieldDefinition] = Field(..., description="Field definitions of the data table")

    model_config = ConfigDict(
        json_schema_extra={
            "example": {
                "name": "users",
                "api_url": "https://api.example.com/users",
                "method": "GET",
                "request_params": [{"key": "page", "type": "number", "default": "1"}],
                "response_structure": [
                    {"key": "uid", "type": "text", "primary": True, "nullable": True},
                    {"key": "name", "type": "text"}
                ]
            }
        }
    )


class ProjectUpdate(BaseModel):
    """Partial project update; a changed response_structure creates a new version"""
    name: Optional[str] = Field(None, min_length=1, max_length=255)
    api_url: Optional[str] = None
    method: Optional[HTTPMethod] = None
    request_params: Optional[List[RequestParam]] = None
    target_chain: Optional[List[str]] = None
    response_structure: Optional[List[FieldDefinition]] = None


class ProjectResponse(BaseModel):
    """Project catalog entry"""
    id: UUID
    name: str
    api_url: str
    method: str
    request_params: List[Dict[str, Any]]
    target_chain: Optional[List[str]] = None
    response_structure: List[Dict[str, Any]]
    version: int
    created_at: datetime
    updated_at: datetime

    model_config = ConfigDict(from_attributes=True)


class VersionsResponse(BaseModel):
    project_id: UUID
    versions: List[int]


# ============================================================================
# Task Schemas
# ============================================================================

class TaskCreate(BaseModel):
    """Task creation payload; the task is queued immediately"""
    project_id: UUID
    request_params: List[RequestParam] = Field(default_factory=list, description="Overrides of the project template")


class TaskResponse(BaseModel):
    """Task status"""
    id: UUID
    project_id: UUID
    status: TaskStatus
    request_params: List[Dict[str, Any]]
    version: int
    result_count: Optional[int] = None
    error_message: Optional[str] = None
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    created_at: datetime

    model_config = ConfigDict(from_attributes=True, use_enum_values=True)


# ============================================================================
# Query Schemas
# ============================================================================

class QueryFilter(BaseModel):
    """One filter condition; conditions are AND-combined"""
    field: str
    operator: Literal["=", "!=", ">", "<", ">=", "<=", "LIKE", "IN"]
    value: Any = Field(None, description="Operand for every operator except IN")
    values: Optional[List[Any]] = Field(None, description="Operands for IN")


class QueryRequest(BaseModel):
    """Filtered read of one project version"""
    project_id: UUID
    version: Optional[int] = Field(None, ge=1, description="Defaults to the project's current version")
    filters: List[QueryFilter] = Field(default_factory=list)
    order_by: Optional[str] = None
    order: Literal["ASC", "DESC"] = "ASC"
    limit: Optional[int] = Field(None, ge=1, le=1000)
    offset: Optional[int] = Field(None, ge=0)

    @field_validator("order", mode="before")
    @classmethod
    def normalize_order(cls, v):
        return v.upper() if isinstance(v, str) else v


class QueryResponse(BaseModel):
    data: List[Dict[str, Any]]
    total: int
    version: int


# ============================================================================
# Health / Error Schemas
# ============================================================================

class HealthCheckResponse(BaseModel):
    """Health check response model"""
    status: str = Field(..., description="Overall system status: healthy, unhealthy")
    timestamp: datetime = Field(default_factory=datetime.utcnow)
    database_connected: bool
    scheduler_running: bool = False
    open_storage_units: int = 0
    tasks_by_status: Dict[str, int] = Field(default_factory=dict)


class ErrorResponse(BaseModel):
    """Error payload produced by the exception handlers"""
    error_type: str
    message: str
    context: Dict[str, Any] = Field(default_factory=dict)
    retryable: bool = False
    timestamp: datetime
    original_error: Optional[str] = None
    request_id: Optional[str] = None
