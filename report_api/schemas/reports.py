"""Pydantic schemas for report generation endpoints."""

from typing import Any, Optional

from pydantic import Field

from .base import CamelModel


class GenerateReportRequest(CamelModel):
    """Body of POST /reports/generate."""

    template_id: str = Field(..., min_length=1)
    parameters: dict[str, Any] = Field(default_factory=dict)


class GenerateReportResponse(CamelModel):
    file_name: str
    file_url: str
    generation_time_ms: int


class VariableItem(CamelModel):
    name: str
    type: str
    description: str = ""


class DiscoverVariablesResponse(CamelModel):
    data: list[VariableItem]
    sample: Optional[dict[str, Any]] = None


class HelperDoc(CamelModel):
    name: str
    usage: str
    description: str
    example: str


class SystemVariableDoc(CamelModel):
    name: str
    description: str


class HelpDocumentationResponse(CamelModel):
    helpers: list[HelperDoc]
    system_variables: list[SystemVariableDoc]


class SeedResponse(CamelModel):
    """Outcome of seeding the sample reports."""

    procedures: list[str]
    templates: list[str]
    errors: list[dict[str, str]] = []
