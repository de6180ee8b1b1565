"""Pydantic schemas for API request/response validation.

All schemas use CamelCase for JSON field names (via alias_generator).
"""

from .base import CamelModel, PaginatedResponse, PaginationMeta, ErrorResponse, MessageResponse
from .reports import (
    GenerateReportRequest,
    GenerateReportResponse,
    DiscoverVariablesResponse,
    HelpDocumentationResponse,
    SeedResponse,
)
from .templates import (
    TemplateCreate,
    TemplateUpdate,
    TemplateListItem,
    TemplateResponse,
    PermissionsUpdate,
    PermissionsResponse,
)
from .procedures import (
    ProcedureCreate,
    ProcedureUpdate,
    ProcedureListItem,
    ProcedureResponse,
    ProcedureHistoryItem,
    ValidateSQLRequest,
    ValidateSQLResponse,
)

__all__ = [
    # Base
    "CamelModel",
    "PaginatedResponse",
    "PaginationMeta",
    "ErrorResponse",
    "MessageResponse",
    # Reports
    "GenerateReportRequest",
    "GenerateReportResponse",
    "DiscoverVariablesResponse",
    "HelpDocumentationResponse",
    "SeedResponse",
    # Templates
    "TemplateCreate",
    "TemplateUpdate",
    "TemplateListItem",
    "TemplateResponse",
    "PermissionsUpdate",
    "PermissionsResponse",
    # Procedures
    "ProcedureCreate",
    "ProcedureUpdate",
    "ProcedureListItem",
    "ProcedureResponse",
    "ProcedureHistoryItem",
    "ValidateSQLRequest",
    "ValidateSQLResponse",
]
