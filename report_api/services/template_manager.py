"""Template management: CRUD, placeholder parsing, copies and permissions."""

import re
from dataclasses import dataclass, field
from typing import Any, Optional

import structlog
from sqlalchemy import or_
from sqlalchemy.orm import Session

from report_api.models import ReportProcedure, ReportTemplate
from report_api.utils.report_errors import (
    ReportError,
    ReportErrorCategory,
    ReportErrorCode,
    procedure_not_found,
    template_not_found,
)

logger = structlog.get_logger()

PLACEHOLDER_RE = re.compile(r"\{\{([^}]+)\}\}")
NESTED_MUSTACHE_RE = re.compile(r"\{\{[^}]*\{\{[^}]*\}\}")

# Fields a client may set on create/update
EDITABLE_FIELDS = (
    "name",
    "description",
    "category",
    "procedure_id",
    "content",
    "css",
    "js",
    "orientation",
    "placeholders",
    "designer_state",
)

COPY_SUFFIX = "Bản sao"


@dataclass
class ParsedTemplate:
    """Simple {{variable}} references found in a template."""

    variables: list[str] = field(default_factory=list)


def validate_template(content: str) -> None:
    """Check mustache delimiters are balanced and not nested.

    Raises:
        ValueError: With a message suitable for the template author
    """
    opens = content.count("{{")
    closes = content.count("}}")
    if opens != closes:
        raise ValueError(
            f"Cú pháp template không hợp lệ: Số lượng thẻ mở '{{{{' ({opens}) "
            f"không khớp với thẻ đóng '}}}}' ({closes})."
        )
    if NESTED_MUSTACHE_RE.search(content):
        raise ValueError("Cú pháp template không hợp lệ: Phát hiện thẻ lồng nhau không đúng cách.")


def parse_template(content: Optional[str]) -> ParsedTemplate:
    """Validate a template and collect its unique simple placeholders.

    Helper calls (anything with a space), block tags and else are skipped.

    Raises:
        ReportError: TEMPLATE_INVALID_FORMAT if the syntax check fails
    """
    content = content or ""
    try:
        validate_template(content)
    except ValueError as e:
        raise ReportError(
            str(e),
            ReportErrorCode.TEMPLATE_INVALID_FORMAT,
            ReportErrorCategory.TEMPLATE,
        ) from e

    variables: list[str] = []
    for match in PLACEHOLDER_RE.finditer(content):
        name = match.group(1).strip()
        if " " in name or name.startswith(("#", "/", "else")):
            continue
        if name not in variables:
            variables.append(name)
    return ParsedTemplate(variables=variables)


class TemplateManagerService:
    """Stores report templates and their access lists."""

    def __init__(self, db: Session, super_admin_role: str = "SIEU_QUAN_TRI"):
        self.db = db
        self.super_admin_role = super_admin_role

    def _active_name_exists(self, name: str, exclude_id: Optional[str] = None) -> bool:
        query = self.db.query(ReportTemplate).filter(
            ReportTemplate.name == name,
            ReportTemplate.is_active.is_(True),
        )
        if exclude_id:
            query = query.filter(ReportTemplate.id != exclude_id)
        return query.first() is not None

    def _ensure_procedure(self, procedure_id: Optional[str]) -> None:
        if not procedure_id:
            return
        exists = (
            self.db.query(ReportProcedure)
            .filter(ReportProcedure.id == procedure_id, ReportProcedure.is_active.is_(True))
            .first()
        )
        if not exists:
            raise procedure_not_found(procedure_id)

    def _duplicate_name_error(self, name: str) -> ReportError:
        return ReportError(
            f'Tên mẫu báo cáo "{name}" đã tồn tại trong hệ thống.',
            ReportErrorCode.TEMPLATE_SAVE_FAILED,
            ReportErrorCategory.TEMPLATE,
            {"name": name},
        )

    def create_template(self, data: dict[str, Any], created_by: Optional[str] = None) -> ReportTemplate:
        """Create a template.

        Args:
            data: Editable fields (see EDITABLE_FIELDS)
            created_by: Id of the creating user

        Returns:
            The persisted template

        Raises:
            ReportError: TEMPLATE_SAVE_FAILED on a duplicate active name,
                PROCEDURE_NOT_FOUND for an unknown procedure,
                TEMPLATE_INVALID_FORMAT for broken mustache syntax
        """
        name = data["name"]
        if self._active_name_exists(name):
            raise self._duplicate_name_error(name)

        self._ensure_procedure(data.get("procedure_id"))
        parsed = parse_template(data.get("content"))

        template = ReportTemplate(
            **{key: data.get(key) for key in EDITABLE_FIELDS if key in data},
            detected_variables=parsed.variables,
            permissions={"users": [], "roles": [self.super_admin_role]},
            created_by=created_by,
            is_active=True,
        )
        if not template.orientation:
            template.orientation = "portrait"

        self.db.add(template)
        self.db.commit()
        self.db.refresh(template)

        logger.info("Report template created", template_id=template.id, name=template.name)
        return template

    def get_template(self, template_id: str) -> ReportTemplate:
        template = (
            self.db.query(ReportTemplate)
            .filter(ReportTemplate.id == template_id, ReportTemplate.is_active.is_(True))
            .first()
        )
        if not template:
            raise template_not_found(template_id)
        return template

    def list_templates(
        self,
        page: int = 1,
        limit: int = 10,
        search: Optional[str] = None,
    ) -> tuple[list[ReportTemplate], int]:
        """Active templates, newest first, filtered by name/category/description."""
        query = self.db.query(ReportTemplate).filter(ReportTemplate.is_active.is_(True))

        if search:
            pattern = f"%{search}%"
            query = query.filter(
                or_(
                    ReportTemplate.name.ilike(pattern),
                    ReportTemplate.category.ilike(pattern),
                    ReportTemplate.description.ilike(pattern),
                )
            )

        total = query.count()
        templates = (
            query.order_by(ReportTemplate.created_at.desc())
            .offset((page - 1) * limit)
            .limit(limit)
            .all()
        )
        return templates, total

    def update_template(self, template_id: str, data: dict[str, Any]) -> ReportTemplate:
        """Apply a partial update; only keys present in `data` change."""
        template = self.get_template(template_id)

        name = data.get("name")
        if name and name != template.name and self._active_name_exists(name, exclude_id=template_id):
            raise self._duplicate_name_error(name)

        if "procedure_id" in data:
            self._ensure_procedure(data["procedure_id"])

        if "content" in data:
            template.detected_variables = parse_template(data["content"]).variables

        for key in EDITABLE_FIELDS:
            # name is required; an explicit null leaves it unchanged
            if key in data and not (key == "name" and not data[key]):
                setattr(template, key, data[key])

        self.db.commit()
        self.db.refresh(template)

        logger.info("Report template updated", template_id=template.id, name=template.name)
        return template

    def delete_template(self, template_id: str) -> None:
        """Soft delete."""
        template = self.get_template(template_id)
        template.is_active = False
        self.db.commit()
        logger.info("Report template deleted", template_id=template_id, name=template.name)

    def copy_template(self, template_id: str, created_by: Optional[str] = None) -> ReportTemplate:
        """Duplicate a template under the first free "(Bản sao N)" name.

        Permissions are not copied; the copy starts visible to super-admins only.
        """
        original = self.get_template(template_id)

        new_name = f"{original.name} ({COPY_SUFFIX})"
        counter = 1
        while self._active_name_exists(new_name):
            counter += 1
            new_name = f"{original.name} ({COPY_SUFFIX} {counter})"

        copy = ReportTemplate(
            name=new_name,
            description=original.description,
            category=original.category,
            procedure_id=original.procedure_id,
            content=original.content,
            css=original.css,
            js=original.js,
            orientation=original.orientation,
            placeholders=original.placeholders or [],
            detected_variables=original.detected_variables or [],
            designer_state=original.designer_state,
            permissions={"users": [], "roles": [self.super_admin_role]},
            created_by=created_by,
            is_active=True,
        )
        self.db.add(copy)
        self.db.commit()
        self.db.refresh(copy)

        logger.info("Report template copied", source_id=template_id, template_id=copy.id, name=new_name)
        return copy

    def get_permissions(self, template_id: str) -> dict[str, list[str]]:
        template = self.get_template(template_id)
        permissions = template.permissions or {}
        return {
            "users": list(permissions.get("users") or []),
            "roles": list(permissions.get("roles") or [self.super_admin_role]),
        }

    def update_permissions(self, template_id: str, user_ids: list[str]) -> dict[str, list[str]]:
        """Replace the user access list. Super-admins always keep access."""
        template = self.get_template(template_id)
        template.permissions = {
            "users": list(dict.fromkeys(user_ids)),
            "roles": [self.super_admin_role],
        }
        self.db.commit()

        logger.info("Report permissions updated", template_id=template_id, user_count=len(user_ids))
        return template.permissions
