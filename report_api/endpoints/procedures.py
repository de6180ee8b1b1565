"""Report procedure registry endpoints (super-admin only)."""

import structlog
from fastapi import APIRouter, Depends

from report_api.endpoints.deps import get_procedure_manager
from report_api.schemas.base import MessageResponse
from report_api.schemas.procedures import (
    ProcedureCreate,
    ProcedureHistoryItem,
    ProcedureListItem,
    ProcedureResponse,
    ProcedureUpdate,
    ValidateSQLRequest,
    ValidateSQLResponse,
)
from report_api.services.procedure_manager import ProcedureManagerService, validate_sql
from report_api.services.rbac import require_super_admin

logger = structlog.get_logger()
router = APIRouter()


@router.get("", response_model=list[ProcedureListItem])
async def list_procedures(
    user: dict = Depends(require_super_admin),
    procedures: ProcedureManagerService = Depends(get_procedure_manager),
):
    """List active procedures, newest first."""
    return [ProcedureListItem.model_validate(p) for p in procedures.list_procedures()]


@router.post("", response_model=ProcedureResponse, status_code=201)
async def create_procedure(
    data: ProcedureCreate,
    user: dict = Depends(require_super_admin),
    procedures: ProcedureManagerService = Depends(get_procedure_manager),
):
    """Create the routine in the database and register it."""
    procedure = procedures.create_procedure(
        data.sql,
        name=data.name,
        description=data.description,
        created_by=user.get("sub"),
    )
    return ProcedureResponse.model_validate(procedure)


@router.post("/validate", response_model=ValidateSQLResponse)
async def validate_procedure_sql(
    data: ValidateSQLRequest,
    user: dict = Depends(require_super_admin),
):
    """Check a definition without touching the database."""
    return ValidateSQLResponse.model_validate(validate_sql(data.sql))


@router.get("/{procedure_id}", response_model=ProcedureResponse)
async def get_procedure(
    procedure_id: str,
    user: dict = Depends(require_super_admin),
    procedures: ProcedureManagerService = Depends(get_procedure_manager),
):
    return ProcedureResponse.model_validate(procedures.get_procedure(procedure_id))


@router.put("/{procedure_id}", response_model=ProcedureResponse)
async def update_procedure(
    procedure_id: str,
    data: ProcedureUpdate,
    user: dict = Depends(require_super_admin),
    procedures: ProcedureManagerService = Depends(get_procedure_manager),
):
    """Replace the definition; bumps the version and records history."""
    procedure = procedures.update_procedure(
        procedure_id,
        data.sql,
        name=data.name,
        description=data.description,
        updated_by=user.get("sub"),
    )
    return ProcedureResponse.model_validate(procedure)


@router.delete("/{procedure_id}", response_model=MessageResponse)
async def delete_procedure(
    procedure_id: str,
    user: dict = Depends(require_super_admin),
    procedures: ProcedureManagerService = Depends(get_procedure_manager),
):
    """Soft-delete a procedure registration."""
    procedures.delete_procedure(procedure_id)
    return MessageResponse(message="Procedure deleted")


@router.get("/{procedure_id}/history", response_model=list[ProcedureHistoryItem])
async def get_procedure_history(
    procedure_id: str,
    user: dict = Depends(require_super_admin),
    procedures: ProcedureManagerService = Depends(get_procedure_manager),
):
    """Saved versions, newest first."""
    procedures.get_procedure(procedure_id)
    return [ProcedureHistoryItem.model_validate(h) for h in procedures.get_procedure_history(procedure_id)]
