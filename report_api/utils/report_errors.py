"""Typed errors for the reporting pipeline.

Every failure raised out of the data connector, template/procedure managers
and the report generator is a ReportError with a stable code and category,
so callers can tell an expected domain failure from an unexpected bug.
"""

import enum
from typing import Any, Optional


class ReportErrorCategory(str, enum.Enum):
    """Which stage of the pipeline failed."""

    PROCEDURE = "PROCEDURE"
    TEMPLATE = "TEMPLATE"
    GENERATION = "GENERATION"
    SYSTEM = "SYSTEM"


class ReportErrorCode(str, enum.Enum):
    """Machine-readable error codes."""

    # Procedure
    PROCEDURE_NOT_FOUND = "PROC_001"
    PROCEDURE_SYNTAX_ERROR = "PROC_002"
    PROCEDURE_EXECUTION_ERROR = "PROC_003"
    PROCEDURE_VALIDATION_FAILED = "PROC_004"

    # Template
    TEMPLATE_NOT_FOUND = "TEMP_001"
    TEMPLATE_INVALID_FORMAT = "TEMP_002"
    TEMPLATE_MISSING_PLACEHOLDERS = "TEMP_003"
    TEMPLATE_SAVE_FAILED = "TEMP_004"

    # Generation
    GENERATION_MAPPING_FAILED = "GEN_001"
    GENERATION_FILE_SYSTEM_ERROR = "GEN_002"
    GENERATION_DATABASE_ERROR = "GEN_003"
    GENERATION_PDF_RENDER_FAILED = "GEN_004"

    # System
    INTERNAL_SERVER_ERROR = "SYS_001"
    UNAUTHORIZED_ACCESS = "SYS_002"


# HTTP status per code; anything missing maps to 500
STATUS_BY_CODE = {
    ReportErrorCode.PROCEDURE_NOT_FOUND: 404,
    ReportErrorCode.TEMPLATE_NOT_FOUND: 404,
    ReportErrorCode.UNAUTHORIZED_ACCESS: 403,
    ReportErrorCode.PROCEDURE_SYNTAX_ERROR: 400,
    ReportErrorCode.PROCEDURE_VALIDATION_FAILED: 400,
    ReportErrorCode.PROCEDURE_EXECUTION_ERROR: 400,
    ReportErrorCode.TEMPLATE_INVALID_FORMAT: 400,
    ReportErrorCode.TEMPLATE_MISSING_PLACEHOLDERS: 400,
    ReportErrorCode.TEMPLATE_SAVE_FAILED: 400,
}


class ReportError(Exception):
    """Raised when any step of report management or generation fails."""

    def __init__(
        self,
        message: str,
        code: ReportErrorCode = ReportErrorCode.INTERNAL_SERVER_ERROR,
        category: ReportErrorCategory = ReportErrorCategory.SYSTEM,
        details: Optional[Any] = None,
    ):
        self.message = message
        self.code = code
        self.category = category
        self.details = details
        super().__init__(message)

    @property
    def status_code(self) -> int:
        return STATUS_BY_CODE.get(self.code, 500)

    def to_dict(self) -> dict[str, Any]:
        """Structured form used in API error bodies."""
        return {
            "code": self.code.value,
            "category": self.category.value,
            "message": self.message,
            "details": self.details,
        }

    def __repr__(self) -> str:
        return f"<ReportError({self.code.value}, {self.category.value}: {self.message})>"


def template_not_found(template_id: str) -> ReportError:
    return ReportError(
        "Template not found",
        ReportErrorCode.TEMPLATE_NOT_FOUND,
        ReportErrorCategory.TEMPLATE,
        {"template_id": template_id},
    )


def procedure_not_found(identifier: str) -> ReportError:
    return ReportError(
        "Procedure not found",
        ReportErrorCode.PROCEDURE_NOT_FOUND,
        ReportErrorCategory.PROCEDURE,
        {"procedure": identifier},
    )
