"""Report generator service.

Drives one generation end to end:
template lookup -> permission check -> routine execution -> conditional
variables -> Handlebars render -> CSS/JS injection -> PDF render -> file write.

Each call is a single linear pass with no state kept between requests.
"""

import asyncio
import html as html_lib
import json
import re
import time
import unicodedata
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path
from typing import Any, Optional

import structlog
from babel.dates import format_datetime
from pybars import Compiler
from sqlalchemy.orm import Session

from report_api.models import ReportTemplate, User
from report_api.services.data_connector import DataConnectorService
from report_api.services.variable_manager import (
    FieldType,
    VariableManagerService,
    compare_values,
    strict_equals,
)
from report_api.utils.pdf_renderer import PdfRenderer
from report_api.utils.report_errors import (
    ReportError,
    ReportErrorCategory,
    ReportErrorCode,
    template_not_found,
)

logger = structlog.get_logger()

SYSTEM_USER_LABEL = "Hệ thống"
PREVIEW_USER_LABEL = "Xem trước"

ERROR_PANEL = """<div style="font-family: 'Segoe UI', Arial, sans-serif; margin: 24px; padding: 16px 20px; border: 1px solid #f5c2c7; border-left: 4px solid #dc3545; border-radius: 6px; background: #f8d7da; color: #842029;">
    <h3 style="margin: 0 0 8px 0; font-size: 16px;">Lỗi biên dịch mẫu báo cáo</h3>
    <pre style="margin: 0; white-space: pre-wrap; font-size: 13px;">{message}</pre>
</div>"""


@dataclass
class GeneratedReport:
    """Result of a successful PDF generation."""

    file_name: str
    file_url: str
    generation_time_ms: int


def sanitize_filename(name: Optional[str]) -> str:
    """Turn a template display name into an ASCII filename token.

    Diacritics are stripped, đ/Đ map to d/D, and every run of remaining
    non-alphanumeric characters becomes a single underscore.

    >>> sanitize_filename("Báo Cáo Đặc Biệt")
    'Bao_Cao_Dac_Biet'
    """
    decomposed = unicodedata.normalize("NFD", name or "")
    stripped = "".join(c for c in decomposed if not unicodedata.combining(c))
    stripped = stripped.replace("đ", "d").replace("Đ", "D")
    token = re.sub(r"[^A-Za-z0-9]+", "_", stripped).strip("_")
    return token or "Report"


def build_file_name(template_name: Optional[str]) -> str:
    return f"Report_{sanitize_filename(template_name)}_{int(time.time() * 1000)}.pdf"


def inject_assets(html: str, css: Optional[str] = None, js: Optional[str] = None) -> str:
    """Splice raw CSS before </head> and raw JS before </body>.

    Template authors are trusted; nothing is sanitized. Without a <head>
    the style is prepended, without a <body> the script is appended.
    """
    result = html
    if css:
        style = f"<style>{css}</style>"
        if "</head>" in result:
            result = result.replace("</head>", f"{style}</head>", 1)
        else:
            result = f"{style}{result}"
    if js:
        script = f"<script>{js}</script>"
        if "</body>" in result:
            result = result.replace("</body>", f"{script}</body>", 1)
        else:
            result = f"{result}{script}"
    return result


def render_error_panel(message: str) -> str:
    """Inline error block shown in the designer preview."""
    return ERROR_PANEL.format(message=html_lib.escape(message))


def build_helpers(variable_manager: VariableManagerService) -> dict[str, Any]:
    """Handlebars helpers available to every template."""

    def vn_currency(this, value):
        return variable_manager.format_value(value, FieldType.CURRENCY)

    def vn_date(this, value):
        return variable_manager.format_value(value, FieldType.DATE)

    def vn_number(this, value):
        return variable_manager.format_value(value, FieldType.NUMBER)

    def to_json(this, value):
        return json.dumps(value, ensure_ascii=False, indent=2, default=str)

    def add(this, a, b):
        # Text on either side concatenates; a missing number counts as 0
        if isinstance(a, str) or isinstance(b, str):
            return f"{'' if a is None else a}{'' if b is None else b}"
        try:
            return (0 if a is None else a) + (0 if b is None else b)
        except TypeError:
            return f"{a}{b}"

    return {
        "vnCurrency": vn_currency,
        "vnDate": vn_date,
        "vnNumber": vn_number,
        "eq": lambda this, a, b: strict_equals(a, b),
        "gt": lambda this, a, b: compare_values(a, ">", b),
        "lt": lambda this, a, b: compare_values(a, "<", b),
        "add": add,
        "json": to_json,
    }


class ReportGeneratorService:
    """Generates PDF reports and HTML previews from stored templates."""

    def __init__(
        self,
        db: Session,
        data_connector: DataConnectorService,
        variable_manager: VariableManagerService,
        pdf_renderer: PdfRenderer,
        output_dir: Path,
        public_url: str,
        super_admin_role: str = "SIEU_QUAN_TRI",
    ):
        """Initialize the report generator.

        Args:
            db: Database session for template and user lookups
            data_connector: Executes the template's bound routine
            variable_manager: Formatting and conditional variables
            pdf_renderer: Shared headless-browser renderer
            output_dir: Directory generated PDFs are written to
            public_url: URL prefix the output directory is served under
            super_admin_role: Role that bypasses per-template permissions
        """
        self.db = db
        self.data_connector = data_connector
        self.variable_manager = variable_manager
        self.pdf_renderer = pdf_renderer
        self.output_dir = Path(output_dir)
        self.public_url = public_url.rstrip("/")
        self.super_admin_role = super_admin_role
        self.compiler = Compiler()
        self.helpers = build_helpers(variable_manager)

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    async def generate_report(
        self,
        template_id: str,
        parameters: Optional[dict[str, Any]] = None,
        user_id: Optional[str] = None,
    ) -> GeneratedReport:
        """Generate a PDF report and write it to the public output directory.

        Args:
            template_id: Template to render
            parameters: Routine parameters keyed by declared name
            user_id: Requesting user, if authenticated

        Returns:
            GeneratedReport with file name, public URL and duration

        Raises:
            ReportError: Template, procedure or generation failure
        """
        start_time = time.perf_counter()
        try:
            template = self._resolve_template(template_id)
            user = self._load_user(user_id)
            self._authorize(template, user_id, user)

            rows = self._fetch_rows(template, parameters or {}, user_id)
            body = self._render_handlebars(
                template, rows, self._display_name(user, SYSTEM_USER_LABEL)
            )
            final_html = inject_assets(body, template.css, template.js)

            pdf = await self._render_pdf(template, final_html)

            file_name = build_file_name(template.name)
            await self._persist(file_name, pdf)

            generation_time_ms = int((time.perf_counter() - start_time) * 1000)
            logger.info(
                "Report generated",
                template_id=template_id,
                file_name=file_name,
                size=len(pdf),
                duration_ms=generation_time_ms,
            )
            return GeneratedReport(
                file_name=file_name,
                file_url=f"{self.public_url}/{file_name}",
                generation_time_ms=generation_time_ms,
            )
        except ReportError:
            raise
        except Exception as e:
            logger.exception(
                "Unexpected error in generate_report",
                template_id=template_id,
                error=str(e),
                error_type=type(e).__name__,
            )
            raise

    def generate_preview(
        self,
        template_id: str,
        parameters: Optional[dict[str, Any]] = None,
        user_id: Optional[str] = None,
    ) -> str:
        """Render a template to HTML for the designer, without PDF or file output.

        A Handlebars error is returned as an inline error panel so the
        designer stays usable while the author fixes the template.
        """
        try:
            template = self._resolve_template(template_id)
            user = self._load_user(user_id)
            self._authorize(template, user_id, user)

            rows = self._fetch_rows(template, parameters or {}, user_id)
            try:
                body = self._render_handlebars(
                    template,
                    rows,
                    self._display_name(user, PREVIEW_USER_LABEL),
                    preview=True,
                )
            except ReportError as e:
                if e.code != ReportErrorCode.GENERATION_MAPPING_FAILED:
                    raise
                logger.warning("Preview compile error", template_id=template_id, error=e.message)
                body = render_error_panel(e.message)

            return inject_assets(body, template.css, template.js)
        except ReportError:
            raise
        except Exception as e:
            logger.exception(
                "Unexpected error in generate_preview",
                template_id=template_id,
                error=str(e),
                error_type=type(e).__name__,
            )
            raise

    # ------------------------------------------------------------------
    # Steps
    # ------------------------------------------------------------------

    def _resolve_template(self, template_id: str) -> ReportTemplate:
        template = (
            self.db.query(ReportTemplate)
            .filter(ReportTemplate.id == template_id, ReportTemplate.is_active.is_(True))
            .first()
        )
        if not template:
            raise template_not_found(template_id)

        if not template.procedure or not template.procedure.is_active:
            raise ReportError(
                "No procedure linked to this template",
                ReportErrorCode.TEMPLATE_INVALID_FORMAT,
                ReportErrorCategory.TEMPLATE,
                {"template_id": template_id, "procedure_id": template.procedure_id},
            )

        if not (template.content or "").strip():
            raise ReportError(
                "Template content is empty",
                ReportErrorCode.TEMPLATE_INVALID_FORMAT,
                ReportErrorCategory.TEMPLATE,
                {"template_id": template_id},
            )
        return template

    def _load_user(self, user_id: Optional[str]) -> Optional[User]:
        if not user_id:
            return None
        return self.db.query(User).filter(User.id == user_id).first()

    def _authorize(self, template: ReportTemplate, user_id: Optional[str], user: Optional[User]) -> None:
        """Super-admins and users listed on the template may generate it."""
        if not user_id:
            return
        if user and user.role == self.super_admin_role:
            return

        permissions = template.permissions or {}
        if user_id in (permissions.get("users") or []):
            return
        if user and user.role in (permissions.get("roles") or []):
            return

        logger.warning("Report access denied", template_id=template.id, user_id=user_id)
        raise ReportError(
            "You do not have permission to generate this report",
            ReportErrorCode.UNAUTHORIZED_ACCESS,
            ReportErrorCategory.GENERATION,
            {"template_id": template.id},
        )

    @staticmethod
    def _display_name(user: Optional[User], fallback: str) -> str:
        return user.report_name if user else fallback

    def _fetch_rows(
        self,
        template: ReportTemplate,
        parameters: dict[str, Any],
        user_id: Optional[str],
    ) -> list[dict[str, Any]]:
        procedure = template.procedure
        declared = procedure.parameters or []

        # Routines scope their data by owner through p_uid
        enriched = dict(parameters)
        if user_id and any(p.get("name") == "p_uid" for p in declared):
            enriched["p_uid"] = user_id

        rows = self.data_connector.execute_procedure(procedure.name, enriched, declared)

        if isinstance(template.placeholders, list) and template.placeholders:
            rows = self.variable_manager.process_conditional_variables(rows, template.placeholders)
        return rows

    def _build_context(
        self,
        template: ReportTemplate,
        rows: list[dict[str, Any]],
        user_name: str,
        preview: bool = False,
    ) -> dict[str, Any]:
        metadata = {
            "templateName": template.name,
            "generatedAt": format_datetime(
                datetime.now(), "HH:mm:ss d/M/yyyy", locale=self.variable_manager.locale
            ),
            "totalCount": len(rows),
            "userName": user_name,
        }
        if preview:
            metadata["isPreview"] = True

        first_row = rows[0] if rows else {}
        return {**first_row, "data": rows, "metadata": metadata}

    def _render_handlebars(
        self,
        template: ReportTemplate,
        rows: list[dict[str, Any]],
        user_name: str,
        preview: bool = False,
    ) -> str:
        context = self._build_context(template, rows, user_name, preview)
        try:
            compiled = self.compiler.compile(template.content)
            # pybars returns a list of string chunks
            return "".join(compiled(context, helpers=self.helpers))
        except Exception as e:
            logger.error("Template compile error", template_id=template.id, error=str(e))
            raise ReportError(
                f"Failed to compile template: {e}",
                ReportErrorCode.GENERATION_MAPPING_FAILED,
                ReportErrorCategory.GENERATION,
                {"template_id": template.id, "error_type": type(e).__name__},
            ) from e

    async def _render_pdf(self, template: ReportTemplate, html: str) -> bytes:
        try:
            return await self.pdf_renderer.render(html, landscape=template.is_landscape)
        except asyncio.TimeoutError as e:
            logger.error("PDF render timed out", template_id=template.id)
            raise ReportError(
                "PDF rendering timed out",
                ReportErrorCode.GENERATION_PDF_RENDER_FAILED,
                ReportErrorCategory.GENERATION,
                {"timeout_seconds": getattr(self.pdf_renderer, "timeout_seconds", None)},
            ) from e
        except Exception as e:
            logger.error("HTML to PDF generation error", template_id=template.id, error=str(e))
            raise ReportError(
                f"Failed to generate PDF from HTML: {e}",
                ReportErrorCode.GENERATION_PDF_RENDER_FAILED,
                ReportErrorCategory.GENERATION,
            ) from e

    async def _persist(self, file_name: str, pdf: bytes) -> Path:
        path = self.output_dir / file_name
        try:
            await asyncio.to_thread(_write_file, path, pdf)
        except OSError as e:
            logger.error("Failed to save generated report", path=str(path), error=str(e))
            raise ReportError(
                f"Failed to save generated report: {e}",
                ReportErrorCode.GENERATION_FILE_SYSTEM_ERROR,
                ReportErrorCategory.GENERATION,
                {"file_name": file_name},
            ) from e
        return path


def _write_file(path: Path, data: bytes) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    # Exclusive create: a same-millisecond name collision fails instead of overwriting
    with open(path, "xb") as f:
        f.write(data)
