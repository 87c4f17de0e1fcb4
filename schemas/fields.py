"""
Pydantic schemas for field definitions and request parameter templates
"""

from pydantic import BaseModel, ConfigDict, Field
from typing import Optional, List, Any, Iterable, Dict


class FieldDefinition(BaseModel):
    """
    One column of a project's response schema.

    ``type`` is kept as a plain string so that unsupported types are
    reported by storage.compiler.validate_field_definitions together with
    the other schema rules.
    """
    model_config = ConfigDict(extra="ignore")

    key: str = Field(..., description="Column name, unique within the schema")
    type: str = Field(..., description="Logical field type, see models.base.FieldType")
    nullable: bool = Field(default=True, description="Allow NULL values")
    primary: bool = Field(default=False, description="Natural key used for deduplication")
    default: Optional[str] = Field(None, description="SQL DEFAULT literal, emitted verbatim")
    unique: bool = Field(default=False, description="Add a UNIQUE constraint")
    length: Optional[int] = Field(None, ge=1, le=10485760, description="VARCHAR length for text fields")
    options: Optional[List[str]] = Field(None, description="Choices for select/checkbox/radio")


class RequestParam(BaseModel):
    """
    Request parameter entry.

    On a project this is the template (``default`` is used when no value is
    given); on a task it is an override carrying ``value``.
    """
    model_config = ConfigDict(extra="ignore")

    key: str
    type: Optional[str] = None
    value: Any = None
    default: Optional[str] = None
    required: bool = False
    options: Optional[List[str]] = None
    length: Optional[int] = None
    save_to_database: bool = Field(
        default=False,
        description="Also store the merged value of this parameter as a column of every row"
    )


def parse_fields(raw: Iterable[Any]) -> List[FieldDefinition]:
    """Coerce stored JSON (or already-parsed models) into FieldDefinition objects."""
    return [
        item if isinstance(item, FieldDefinition) else FieldDefinition.model_validate(item)
        for item in raw or []
    ]


def parse_params(raw: Iterable[Any]) -> List[RequestParam]:
    return [
        item if isinstance(item, RequestParam) else RequestParam.model_validate(item)
        for item in raw or []
    ]


def dump_models(items: Iterable[BaseModel]) -> List[Dict[str, Any]]:
    """Serialize for JSONB storage, dropping unset optionals."""
    return [item.model_dump(exclude_none=True) for item in items]
