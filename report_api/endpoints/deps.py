"""FastAPI dependencies that wire services to the request's database session."""

from fastapi import Depends, Request
from sqlalchemy.orm import Session

from report_api.config.database import get_db
from report_api.config.settings import settings
from report_api.services.data_connector import DataConnectorService
from report_api.services.procedure_manager import ProcedureManagerService
from report_api.services.report_generator import ReportGeneratorService
from report_api.services.template_manager import TemplateManagerService
from report_api.services.variable_manager import VariableManagerService
from report_api.utils.pdf_renderer import PdfRenderer


def get_variable_manager(request: Request) -> VariableManagerService:
    """Shared instance created at startup."""
    return request.app.state.variable_manager


def get_pdf_renderer(request: Request) -> PdfRenderer:
    """Shared instance created at startup; owns the render semaphore."""
    return request.app.state.pdf_renderer


def get_data_connector(db: Session = Depends(get_db)) -> DataConnectorService:
    return DataConnectorService(db)


def get_report_generator(
    db: Session = Depends(get_db),
    data_connector: DataConnectorService = Depends(get_data_connector),
    variable_manager: VariableManagerService = Depends(get_variable_manager),
    pdf_renderer: PdfRenderer = Depends(get_pdf_renderer),
) -> ReportGeneratorService:
    return ReportGeneratorService(
        db=db,
        data_connector=data_connector,
        variable_manager=variable_manager,
        pdf_renderer=pdf_renderer,
        output_dir=settings.REPORT_OUTPUT_DIR,
        public_url=settings.REPORT_PUBLIC_URL,
        super_admin_role=settings.SUPER_ADMIN_ROLE,
    )


def get_template_manager(db: Session = Depends(get_db)) -> TemplateManagerService:
    return TemplateManagerService(db, super_admin_role=settings.SUPER_ADMIN_ROLE)


def get_procedure_manager(
    db: Session = Depends(get_db),
    data_connector: DataConnectorService = Depends(get_data_connector),
    variable_manager: VariableManagerService = Depends(get_variable_manager),
) -> ProcedureManagerService:
    return ProcedureManagerService(db, data_connector, variable_manager)
