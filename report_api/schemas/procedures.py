"""Pydantic schemas for report procedure endpoints."""

from datetime import datetime
from typing import Any, Optional

from pydantic import Field

from .base import CamelModel


class ParameterInfo(CamelModel):
    name: str
    type: str


class ProcedureCreate(CamelModel):
    """Schema for registering a routine from its CREATE OR REPLACE definition."""

    sql: str = Field(..., min_length=1)
    name: Optional[str] = None
    description: Optional[str] = None


class ProcedureUpdate(ProcedureCreate):
    pass


class ValidateSQLRequest(CamelModel):
    sql: str


class ValidateSQLResponse(CamelModel):
    is_valid: bool
    errors: list[str] = []
    warnings: list[str] = []
    detected_parameters: list[ParameterInfo] = []
    return_columns: list[ParameterInfo] = []
    kind: Optional[str] = None
    name: Optional[str] = None


class ProcedureListItem(CamelModel):
    id: str
    name: str
    description: Optional[str] = None
    kind: str
    version: int
    parameters: list[ParameterInfo] = []
    created_at: datetime
    updated_at: Optional[datetime] = None


class ProcedureResponse(ProcedureListItem):
    """Full registration, including the SQL definition and cached variables."""

    sql_definition: str
    variables: Optional[list[dict[str, Any]]] = None
    created_by: Optional[str] = None


class ProcedureHistoryItem(CamelModel):
    id: str
    version: int
    sql_definition: str
    meta: Optional[dict[str, Any]] = None
    changed_by: Optional[str] = None
    created_at: datetime
