"""Report generation, preview and designer support endpoints."""

import structlog
from fastapi import APIRouter, Depends, Request
from fastapi.responses import HTMLResponse
from sqlalchemy.orm import Session

from report_api.config.database import get_db
from report_api.endpoints.deps import (
    get_procedure_manager,
    get_report_generator,
    get_template_manager,
    get_variable_manager,
)
from report_api.middleware.error_handler import ValidationAPIError
from report_api.schemas.reports import (
    DiscoverVariablesResponse,
    GenerateReportRequest,
    GenerateReportResponse,
    HelpDocumentationResponse,
    SeedResponse,
)
from report_api.services.procedure_manager import ProcedureManagerService
from report_api.services.rbac import get_current_user, require_super_admin
from report_api.services.report_generator import ReportGeneratorService
from report_api.services.template_manager import TemplateManagerService
from report_api.services.variable_manager import VariableManagerService
from report_api.utils.report_seeder import seed_initial_reports

logger = structlog.get_logger()
router = APIRouter()

# Set from the token, never from the client
RESERVED_PARAMETERS = {"p_uid"}


@router.post("/generate", response_model=GenerateReportResponse)
async def generate_report(
    data: GenerateReportRequest,
    user: dict = Depends(get_current_user),
    generator: ReportGeneratorService = Depends(get_report_generator),
):
    """Generate a PDF for a template and return its download URL."""
    reserved = RESERVED_PARAMETERS & set(data.parameters)
    if reserved:
        raise ValidationAPIError(
            f"Parameter {sorted(reserved)[0]} is set from the signed-in user",
            field=f"parameters.{sorted(reserved)[0]}",
        )

    report = await generator.generate_report(
        template_id=data.template_id,
        parameters=data.parameters,
        user_id=user.get("sub"),
    )
    return GenerateReportResponse(
        file_name=report.file_name,
        file_url=report.file_url,
        generation_time_ms=report.generation_time_ms,
    )


@router.get("/preview/{template_id}", response_class=HTMLResponse)
async def preview_report(
    template_id: str,
    request: Request,
    user: dict = Depends(get_current_user),
    generator: ReportGeneratorService = Depends(get_report_generator),
):
    """Render a template to HTML; query string values are the routine parameters."""
    parameters = {
        key: value
        for key, value in request.query_params.items()
        if key not in RESERVED_PARAMETERS
    }
    html = generator.generate_preview(template_id, parameters, user_id=user.get("sub"))
    return HTMLResponse(content=html)


@router.get("/discover-variables/{procedure_id}", response_model=DiscoverVariablesResponse)
async def discover_variables(
    procedure_id: str,
    user: dict = Depends(require_super_admin),
    procedures: ProcedureManagerService = Depends(get_procedure_manager),
):
    """Variables available to templates bound to a procedure, with one sample row."""
    variables, sample = procedures.discover_variables(procedure_id, user_id=user.get("sub"))
    return DiscoverVariablesResponse(
        data=[v.to_dict() for v in variables],
        sample=sample,
    )


@router.get("/help", response_model=HelpDocumentationResponse)
async def help_documentation(
    user: dict = Depends(get_current_user),
    variable_manager: VariableManagerService = Depends(get_variable_manager),
):
    """Helper and system variable reference for the template designer."""
    return variable_manager.get_help_documentation()


@router.post("/seed", response_model=SeedResponse)
async def seed_reports(
    user: dict = Depends(require_super_admin),
    db: Session = Depends(get_db),
    procedures: ProcedureManagerService = Depends(get_procedure_manager),
    templates: TemplateManagerService = Depends(get_template_manager),
):
    """Create or refresh the sample routines and their default templates."""
    result = seed_initial_reports(db, procedures, templates, user_id=user.get("sub"))
    logger.info("Sample reports seeded", user=user.get("sub"), errors=len(result.errors))
    return SeedResponse(
        procedures=result.procedures,
        templates=result.templates,
        errors=result.errors,
    )
