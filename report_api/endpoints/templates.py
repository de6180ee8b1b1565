"""Report template management endpoints (super-admin only)."""

from typing import Optional

import structlog
from fastapi import APIRouter, Depends, Query

from report_api.endpoints.deps import get_template_manager
from report_api.schemas.base import MessageResponse, PaginatedResponse, PaginationMeta
from report_api.schemas.templates import (
    PermissionsResponse,
    PermissionsUpdate,
    TemplateCreate,
    TemplateListItem,
    TemplateResponse,
    TemplateUpdate,
)
from report_api.services.rbac import require_super_admin
from report_api.services.template_manager import TemplateManagerService

logger = structlog.get_logger()
router = APIRouter()


@router.get("", response_model=PaginatedResponse[TemplateListItem])
async def list_templates(
    page: int = Query(1, ge=1),
    limit: int = Query(10, ge=1, le=100),
    search: Optional[str] = Query(None),
    user: dict = Depends(require_super_admin),
    templates: TemplateManagerService = Depends(get_template_manager),
):
    """List active templates, newest first, with optional search."""
    items, total = templates.list_templates(page=page, limit=limit, search=search)

    return PaginatedResponse(
        data=[TemplateListItem.model_validate(t) for t in items],
        meta=PaginationMeta(
            page=page,
            limit=limit,
            total=total,
            total_pages=(total + limit - 1) // limit,
        ),
    )


@router.post("", response_model=TemplateResponse, status_code=201)
async def create_template(
    data: TemplateCreate,
    user: dict = Depends(require_super_admin),
    templates: TemplateManagerService = Depends(get_template_manager),
):
    """Create a template bound to a registered procedure."""
    template = templates.create_template(data.model_dump(), created_by=user.get("sub"))
    return TemplateResponse.model_validate(template)


@router.get("/{template_id}", response_model=TemplateResponse)
async def get_template(
    template_id: str,
    user: dict = Depends(require_super_admin),
    templates: TemplateManagerService = Depends(get_template_manager),
):
    """Get a template with its content."""
    return TemplateResponse.model_validate(templates.get_template(template_id))


@router.patch("/{template_id}", response_model=TemplateResponse)
async def update_template(
    template_id: str,
    data: TemplateUpdate,
    user: dict = Depends(require_super_admin),
    templates: TemplateManagerService = Depends(get_template_manager),
):
    """Update a template; only fields present in the body change."""
    template = templates.update_template(template_id, data.model_dump(exclude_unset=True))
    return TemplateResponse.model_validate(template)


@router.delete("/{template_id}", response_model=MessageResponse)
async def delete_template(
    template_id: str,
    user: dict = Depends(require_super_admin),
    templates: TemplateManagerService = Depends(get_template_manager),
):
    """Soft-delete a template."""
    templates.delete_template(template_id)
    return MessageResponse(message="Template deleted")


@router.post("/{template_id}/copy", response_model=TemplateResponse, status_code=201)
async def copy_template(
    template_id: str,
    user: dict = Depends(require_super_admin),
    templates: TemplateManagerService = Depends(get_template_manager),
):
    """Duplicate a template under a unique "(Bản sao)" name."""
    copy = templates.copy_template(template_id, created_by=user.get("sub"))
    return TemplateResponse.model_validate(copy)


@router.get("/{template_id}/permissions", response_model=PermissionsResponse)
async def get_permissions(
    template_id: str,
    user: dict = Depends(require_super_admin),
    templates: TemplateManagerService = Depends(get_template_manager),
):
    """Users and roles allowed to generate this template."""
    return templates.get_permissions(template_id)


@router.patch("/{template_id}/permissions", response_model=PermissionsResponse)
async def update_permissions(
    template_id: str,
    data: PermissionsUpdate,
    user: dict = Depends(require_super_admin),
    templates: TemplateManagerService = Depends(get_template_manager),
):
    """Replace the list of users allowed to generate this template."""
    return templates.update_permissions(template_id, data.user_ids)
