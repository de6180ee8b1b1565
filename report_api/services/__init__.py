"""Business logic services for the report API."""

from .token import create_token, create_user_token, decode_token, should_refresh_token
from .rbac import require_role, require_super_admin, get_current_user
from .data_connector import DataConnectorService
from .variable_manager import VariableManagerService, FieldType
from .report_generator import ReportGeneratorService, GeneratedReport
from .template_manager import TemplateManagerService
from .procedure_manager import ProcedureManagerService

__all__ = [
    "create_token",
    "create_user_token",
    "decode_token",
    "should_refresh_token",
    "require_role",
    "require_super_admin",
    "get_current_user",
    "DataConnectorService",
    "VariableManagerService",
    "FieldType",
    "ReportGeneratorService",
    "GeneratedReport",
    "TemplateManagerService",
    "ProcedureManagerService",
]
