"""SQLAlchemy ORM models for the report API.

All models are imported here to ensure they're registered with Base.metadata
before any database operations.
"""

# Import base first
from report_api.config.database import Base

from .users import User
from .report_procedures import ReportProcedure, ReportProcedureHistory, ProcedureKind
from .report_templates import ReportTemplate

__all__ = [
    "Base",
    "User",
    "ReportProcedure",
    "ReportProcedureHistory",
    "ProcedureKind",
    "ReportTemplate",
]
