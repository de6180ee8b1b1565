"""Seeds the sample report routines and their default HTML templates."""

from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional

import structlog
from sqlalchemy.orm import Session

from report_api.models import ReportProcedure, ReportTemplate
from report_api.services.procedure_manager import ProcedureManagerService
from report_api.services.template_manager import TemplateManagerService
from report_api.utils.report_errors import ReportError

logger = structlog.get_logger()

TEMPLATES_DIR = Path(__file__).resolve().parent.parent / "config" / "templates"


@dataclass
class SeedRoutine:
    name: str
    description: str
    category: str = "Hệ thống"
    orientation: str = "portrait"

    @property
    def template_name(self) -> str:
        return f"Mẫu {self.name} (Mặc định)"

    def read(self, suffix: str) -> str:
        path = TEMPLATES_DIR / f"{self.name}{suffix}"
        return path.read_text(encoding="utf-8").strip() if path.exists() else ""


SEED_ROUTINES = (
    SeedRoutine(
        name="report_revenue_summary",
        description="Báo cáo tổng hợp doanh thu theo phòng và tháng.",
    ),
    SeedRoutine(
        name="report_occupancy_status",
        description="Trạng thái thuê phòng hiện tại và thông tin khách thuê.",
    ),
)


@dataclass
class SeedResult:
    procedures: list[str] = field(default_factory=list)
    templates: list[str] = field(default_factory=list)
    errors: list[dict[str, str]] = field(default_factory=list)


def _seed_procedure(
    db: Session,
    procedures: ProcedureManagerService,
    routine: SeedRoutine,
    user_id: Optional[str],
) -> Optional[ReportProcedure]:
    sql = routine.read(".sql")
    existing = (
        db.query(ReportProcedure)
        .filter(ReportProcedure.name == routine.name, ReportProcedure.is_active.is_(True))
        .first()
    )
    if not existing:
        return procedures.create_procedure(sql, routine.name, routine.description, user_id)

    if existing.sql_definition.strip() != sql or existing.description != routine.description:
        return procedures.update_procedure(existing.id, sql, routine.name, routine.description, user_id)
    return None


def _seed_template(
    db: Session,
    templates: TemplateManagerService,
    routine: SeedRoutine,
    procedure_id: str,
    user_id: Optional[str],
) -> ReportTemplate:
    data = {
        "name": routine.template_name,
        "description": f"Template mặc định cho {routine.name}",
        "category": routine.category,
        "procedure_id": procedure_id,
        "content": routine.read(".html"),
        "css": routine.read(".css"),
        "js": "",
        "orientation": routine.orientation,
    }
    existing = (
        db.query(ReportTemplate)
        .filter(ReportTemplate.name == routine.template_name, ReportTemplate.is_active.is_(True))
        .first()
    )
    if existing:
        return templates.update_template(existing.id, data)
    return templates.create_template(data, user_id)


def seed_initial_reports(
    db: Session,
    procedures: ProcedureManagerService,
    templates: TemplateManagerService,
    user_id: Optional[str] = None,
) -> SeedResult:
    """Create or refresh the sample routines and their default templates.

    A routine whose stored definition already matches is left alone. A
    failure on one routine is logged and recorded; the rest still seed.
    """
    logger.info("Starting report seeding")
    result = SeedResult()

    for routine in SEED_ROUTINES:
        try:
            saved = _seed_procedure(db, procedures, routine, user_id)
            if saved:
                result.procedures.append(routine.name)

            procedure = (
                db.query(ReportProcedure)
                .filter(ReportProcedure.name == routine.name, ReportProcedure.is_active.is_(True))
                .one()
            )
            template = _seed_template(db, templates, routine, procedure.id, user_id)
            result.templates.append(template.name)
        except ReportError as e:
            db.rollback()
            logger.warning("Failed to seed report", procedure=routine.name, error=e.message, code=e.code.value)
            result.errors.append({"procedure": routine.name, "code": e.code.value, "message": e.message})

    logger.info(
        "Report seeding completed",
        procedures=len(result.procedures),
        templates=len(result.templates),
        errors=len(result.errors),
    )
    return result
