"""Pydantic schemas for report template endpoints."""

from datetime import datetime
from typing import Any, Literal, Optional

from pydantic import Field

from .base import CamelModel

Orientation = Literal["portrait", "landscape"]


class ConditionalVariable(CamelModel):
    """Derived boolean field, e.g. {"name": "isVip", "condition": "total > 1000000"}."""

    name: str = Field(..., min_length=1)
    condition: str = Field(..., min_length=1)


class TemplateBase(CamelModel):
    name: str = Field(..., min_length=1, max_length=255)
    description: Optional[str] = None
    category: Optional[str] = None
    css: Optional[str] = None
    js: Optional[str] = None
    orientation: Orientation = "portrait"
    placeholders: list[ConditionalVariable] = Field(default_factory=list)
    designer_state: Optional[dict[str, Any]] = None


class TemplateCreate(TemplateBase):
    """Schema for creating a template. `content` is the Handlebars HTML."""

    procedure_id: str = Field(..., min_length=1)
    content: str = Field(..., min_length=1)


class TemplateUpdate(CamelModel):
    """Schema for updating a template (all fields optional)."""

    name: Optional[str] = Field(None, min_length=1, max_length=255)
    description: Optional[str] = None
    category: Optional[str] = None
    procedure_id: Optional[str] = None
    content: Optional[str] = None
    css: Optional[str] = None
    js: Optional[str] = None
    orientation: Optional[Orientation] = None
    placeholders: Optional[list[ConditionalVariable]] = None
    designer_state: Optional[dict[str, Any]] = None


class ProcedureSummary(CamelModel):
    id: str
    name: str


class TemplateListItem(CamelModel):
    """Schema for a template in list responses."""

    id: str
    name: str
    description: Optional[str] = None
    category: Optional[str] = None
    orientation: str
    procedure_id: Optional[str] = None
    procedure: Optional[ProcedureSummary] = None
    created_at: datetime
    updated_at: Optional[datetime] = None


class TemplateResponse(TemplateListItem):
    """Full template, including content and designer state."""

    content: Optional[str] = None
    css: Optional[str] = None
    js: Optional[str] = None
    placeholders: Optional[list[dict[str, Any]]] = None
    detected_variables: Optional[list[str]] = None
    designer_state: Optional[dict[str, Any]] = None
    permissions: Optional[dict[str, list[str]]] = None
    created_by: Optional[str] = None


class PermissionsUpdate(CamelModel):
    user_ids: list[str]


class PermissionsResponse(CamelModel):
    users: list[str]
    roles: list[str]
