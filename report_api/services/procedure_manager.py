"""Procedure management: registers report routines and keeps them in sync with the database.

Saving a routine runs its CREATE OR REPLACE DDL against the database and
records the definition in the registry with a version history. The
registry is the allow-list the data connector checks before running
anything.
"""

import re
from dataclasses import dataclass, field
from typing import Any, Optional

import structlog
from sqlalchemy.exc import DBAPIError
from sqlalchemy.orm import Session

from report_api.models import ProcedureKind, ReportProcedure, ReportProcedureHistory
from report_api.services.data_connector import (
    IDENTIFIER_RE,
    DataConnectorService,
    extract_sql_state,
    map_database_error,
)
from report_api.services.variable_manager import (
    DiscoveredVariable,
    VariableManagerService,
    field_type_from_sql,
)
from report_api.utils.report_errors import (
    ReportError,
    ReportErrorCategory,
    ReportErrorCode,
    procedure_not_found,
)

logger = structlog.get_logger()

# cannot change return type of existing function
RETURN_TYPE_CHANGED = "42P13"

ROUTINE_RE = re.compile(
    r"CREATE\s+OR\s+REPLACE\s+(FUNCTION|PROCEDURE)\s+([A-Za-z0-9_.\"]+)\s*\(",
    re.IGNORECASE,
)
RETURNS_TABLE_RE = re.compile(r"RETURNS\s+TABLE\s*\(", re.IGNORECASE)
DEFAULT_RE = re.compile(r"\s+DEFAULT\s+|\s*=\s*", re.IGNORECASE)
PARAM_MODES = {"IN", "OUT", "INOUT", "VARIADIC"}

P_UID_REQUIRED = (
    'Tham số "p_uid" là bắt buộc và duy nhất được chấp nhận để phân quyền '
    "(không dùng tên khác)."
)


@dataclass
class SQLValidationResult:
    is_valid: bool
    errors: list[str] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)
    detected_parameters: list[dict[str, str]] = field(default_factory=list)
    return_columns: list[dict[str, str]] = field(default_factory=list)
    kind: Optional[str] = None
    name: Optional[str] = None


def _balanced_group(sql: str, open_index: int) -> Optional[str]:
    """Text inside the parenthesis opening at open_index, nesting respected."""
    depth = 0
    for i in range(open_index, len(sql)):
        if sql[i] == "(":
            depth += 1
        elif sql[i] == ")":
            depth -= 1
            if depth == 0:
                return sql[open_index + 1 : i]
    return None


def _split_top_level(text: str) -> list[str]:
    """Split on commas that are not inside parentheses, e.g. NUMERIC(10,2)."""
    parts, depth, current = [], 0, []
    for char in text:
        if char == "(":
            depth += 1
        elif char == ")":
            depth -= 1
        if char == "," and depth == 0:
            parts.append("".join(current).strip())
            current = []
        else:
            current.append(char)
    parts.append("".join(current).strip())
    return [p for p in parts if p]


def _parse_declarations(group: Optional[str]) -> list[dict[str, str]]:
    """Parse "name type [DEFAULT ...]" declarations into name/type pairs."""
    if not group or not group.strip():
        return []

    declarations = []
    for declaration in _split_top_level(group):
        declaration = DEFAULT_RE.split(declaration, maxsplit=1)[0]
        tokens = [t for t in declaration.split() if t.upper() not in PARAM_MODES]
        if not tokens:
            continue
        declarations.append({
            "name": tokens[0],
            "type": " ".join(tokens[1:]) or "text",
        })
    return declarations


def parse_routine_name(sql: str) -> Optional[tuple[str, str]]:
    """(kind, name) of the routine a CREATE OR REPLACE statement defines.

    Unquoted names are folded to lower case as Postgres does. Quoted names
    are returned as written, quotes included.
    """
    match = ROUTINE_RE.search(sql or "")
    if not match:
        return None
    name = match.group(2)
    if '"' not in name:
        name = name.lower()
    return match.group(1).lower(), name


def detect_parameters(sql: str) -> list[dict[str, str]]:
    """Declared input parameters, in order, e.g. [{"name": "p_uid", "type": "TEXT"}]."""
    match = ROUTINE_RE.search(sql or "")
    if not match:
        return []
    return _parse_declarations(_balanced_group(sql, match.end() - 1))


def detect_return_columns(sql: str) -> list[dict[str, str]]:
    """Columns declared by RETURNS TABLE (...), empty for scalar returns and procedures."""
    match = RETURNS_TABLE_RE.search(sql or "")
    if not match:
        return []
    return _parse_declarations(_balanced_group(sql, match.end() - 1))


def generate_drop_sql(sql: str) -> Optional[str]:
    """DROP ... IF EXISTS statement matching the routine's name and argument types."""
    routine = parse_routine_name(sql)
    if not routine:
        return None
    kind, name = routine
    arg_types = ", ".join(p["type"] for p in detect_parameters(sql))
    return f"DROP {kind.upper()} IF EXISTS {name}({arg_types})"


def validate_sql(sql: Any) -> SQLValidationResult:
    """Structural checks on a routine definition.

    The statement must use CREATE OR REPLACE FUNCTION|PROCEDURE, name the
    routine with a plain identifier, and declare a p_uid parameter so the
    routine can scope its data to the requesting owner.
    """
    if not sql or not isinstance(sql, str):
        return SQLValidationResult(is_valid=False, errors=["SQL must be a non-empty string"])

    parameters = detect_parameters(sql)
    return_columns = detect_return_columns(sql)
    routine = parse_routine_name(sql)

    if not routine:
        return SQLValidationResult(
            is_valid=False,
            errors=['SQL must strictly use "CREATE OR REPLACE" syntax (FUNCTION or PROCEDURE).'],
            detected_parameters=parameters,
            return_columns=return_columns,
        )

    kind, name = routine
    errors = []
    if '"' in name:
        errors.append(f"Quoted routine names are not supported, use an unquoted name: {name}")
    elif not IDENTIFIER_RE.match(name):
        errors.append(f'Invalid routine name "{name}"')
    if not any(p["name"].lower() == "p_uid" for p in parameters):
        errors.append(P_UID_REQUIRED)

    warnings = []
    if kind == ProcedureKind.FUNCTION.value and not return_columns:
        warnings.append("Function does not declare RETURNS TABLE; variables cannot be detected statically")

    return SQLValidationResult(
        is_valid=not errors,
        errors=errors,
        warnings=warnings,
        detected_parameters=parameters,
        return_columns=return_columns,
        kind=kind,
        name=name,
    )


class ProcedureManagerService:
    """Creates, versions and inspects registered report routines."""

    def __init__(
        self,
        db: Session,
        data_connector: Optional[DataConnectorService] = None,
        variable_manager: Optional[VariableManagerService] = None,
    ):
        self.db = db
        self.data_connector = data_connector or DataConnectorService(db)
        self.variable_manager = variable_manager or VariableManagerService()

    # ------------------------------------------------------------------
    # DDL
    # ------------------------------------------------------------------

    def _validated(self, sql: str, name: Optional[str]) -> SQLValidationResult:
        validation = validate_sql(sql)
        if not validation.is_valid:
            raise ReportError(
                "SQL syntax is invalid",
                ReportErrorCode.PROCEDURE_SYNTAX_ERROR,
                ReportErrorCategory.PROCEDURE,
                {"errors": validation.errors},
            )
        if name and name.lower() != validation.name.lower():
            raise ReportError(
                f'Procedure name "{name}" does not match the routine defined in SQL ("{validation.name}")',
                ReportErrorCode.PROCEDURE_VALIDATION_FAILED,
                ReportErrorCategory.PROCEDURE,
                {"name": name, "routine": validation.name},
            )
        return validation

    def _ddl_error(self, error: DBAPIError, name: str) -> ReportError:
        return ReportError(
            f"Database error while saving routine: {getattr(error, 'orig', None) or error}",
            ReportErrorCode.PROCEDURE_EXECUTION_ERROR,
            ReportErrorCategory.PROCEDURE,
            {
                "procedure": name,
                "original_error": str(error),
                "sql_state": extract_sql_state(error),
                "hint": map_database_error(error),
            },
        )

    def _apply_ddl(self, sql: str, name: str) -> None:
        """Run the definition; a return-type change is handled by DROP + CREATE."""
        try:
            self.db.connection().exec_driver_sql(sql)
            logger.info("Routine created/replaced in database", procedure=name)
            return
        except DBAPIError as e:
            self.db.rollback()
            if extract_sql_state(e) != RETURN_TYPE_CHANGED:
                logger.error("Routine DDL failed", procedure=name, error=str(e))
                raise self._ddl_error(e, name) from e

        drop_sql = generate_drop_sql(sql)
        logger.warning("Return type changed, dropping and re-creating", procedure=name, drop_sql=drop_sql)
        try:
            connection = self.db.connection()
            connection.exec_driver_sql(drop_sql)
            connection.exec_driver_sql(sql)
        except DBAPIError as e:
            self.db.rollback()
            logger.error("Routine re-create failed", procedure=name, error=str(e))
            raise self._ddl_error(e, name) from e
        logger.info("Routine re-created after DROP", procedure=name)

    def _record_history(self, procedure: ReportProcedure, changed_by: Optional[str]) -> None:
        self.db.add(
            ReportProcedureHistory(
                procedure_id=procedure.id,
                version=procedure.version,
                sql_definition=procedure.sql_definition,
                meta={"name": procedure.name, "description": procedure.description},
                changed_by=changed_by,
            )
        )

    # ------------------------------------------------------------------
    # CRUD
    # ------------------------------------------------------------------

    def create_procedure(
        self,
        sql: str,
        name: Optional[str] = None,
        description: Optional[str] = None,
        created_by: Optional[str] = None,
    ) -> ReportProcedure:
        """Create the routine in the database and register it at version 1.

        A soft-deleted registration with the same name is revived as a new
        version rather than duplicated.

        Raises:
            ReportError: PROCEDURE_SYNTAX_ERROR / PROCEDURE_VALIDATION_FAILED
                for a bad definition, PROCEDURE_EXECUTION_ERROR if the
                database rejects it
        """
        validation = self._validated(sql, name)
        routine_name = validation.name

        existing = self.db.query(ReportProcedure).filter(ReportProcedure.name == routine_name).first()
        if existing and existing.is_active:
            raise ReportError(
                f'Procedure "{routine_name}" is already registered',
                ReportErrorCode.PROCEDURE_VALIDATION_FAILED,
                ReportErrorCategory.PROCEDURE,
                {"procedure_id": existing.id},
            )

        self._apply_ddl(sql, routine_name)

        if existing:
            procedure = existing
            procedure.version += 1
            procedure.is_active = True
        else:
            procedure = ReportProcedure(name=routine_name, version=1, created_by=created_by)
            self.db.add(procedure)

        procedure.description = description
        procedure.sql_definition = sql
        procedure.parameters = validation.detected_parameters
        procedure.kind = validation.kind
        procedure.variables = None
        self.db.flush()

        self._record_history(procedure, created_by)
        self.db.commit()
        self.db.refresh(procedure)

        logger.info("Procedure registered", procedure=routine_name, version=procedure.version)
        return procedure

    def update_procedure(
        self,
        procedure_id: str,
        sql: str,
        name: Optional[str] = None,
        description: Optional[str] = None,
        updated_by: Optional[str] = None,
    ) -> ReportProcedure:
        """Re-run a changed definition, bump the version and append history."""
        procedure = self.get_procedure(procedure_id)
        validation = self._validated(sql, name)

        if validation.name != procedure.name:
            clash = (
                self.db.query(ReportProcedure)
                .filter(ReportProcedure.name == validation.name, ReportProcedure.id != procedure_id)
                .first()
            )
            if clash:
                raise ReportError(
                    f'Procedure "{validation.name}" is already registered',
                    ReportErrorCode.PROCEDURE_VALIDATION_FAILED,
                    ReportErrorCategory.PROCEDURE,
                    {"procedure_id": clash.id},
                )

        self._apply_ddl(sql, validation.name)

        procedure.name = validation.name
        if description is not None:
            procedure.description = description
        procedure.sql_definition = sql
        procedure.parameters = validation.detected_parameters
        procedure.kind = validation.kind
        procedure.version = procedure.version + 1
        procedure.variables = None

        self._record_history(procedure, updated_by)
        self.db.commit()
        self.db.refresh(procedure)

        logger.info("Procedure updated", procedure=procedure.name, version=procedure.version)
        return procedure

    def delete_procedure(self, procedure_id: str) -> None:
        """Soft delete; the database routine itself is left in place."""
        procedure = self.get_procedure(procedure_id)
        procedure.is_active = False
        self.db.commit()
        logger.info("Procedure deleted", procedure=procedure.name)

    def list_procedures(self) -> list[ReportProcedure]:
        return (
            self.db.query(ReportProcedure)
            .filter(ReportProcedure.is_active.is_(True))
            .order_by(ReportProcedure.created_at.desc())
            .all()
        )

    def get_procedure(self, procedure_id: str) -> ReportProcedure:
        procedure = (
            self.db.query(ReportProcedure)
            .filter(ReportProcedure.id == procedure_id, ReportProcedure.is_active.is_(True))
            .first()
        )
        if not procedure:
            raise procedure_not_found(procedure_id)
        return procedure

    def get_procedure_history(self, procedure_id: str) -> list[ReportProcedureHistory]:
        return (
            self.db.query(ReportProcedureHistory)
            .filter(ReportProcedureHistory.procedure_id == procedure_id)
            .order_by(ReportProcedureHistory.version.desc())
            .all()
        )

    # ------------------------------------------------------------------
    # Variable discovery
    # ------------------------------------------------------------------

    def discover_variables(
        self,
        procedure_id: str,
        user_id: Optional[str] = None,
    ) -> tuple[list[DiscoveredVariable], Optional[dict[str, Any]]]:
        """Variables a template bound to this routine can use.

        Static types come from RETURNS TABLE; types inferred from one sample
        row override them. If the sample cannot be fetched the static list
        is returned on its own.

        Returns:
            (variables, sample row or None)
        """
        procedure = self.get_procedure(procedure_id)
        name = procedure.name
        schema_params = procedure.parameters or []

        merged: dict[str, DiscoveredVariable] = {}
        for column in detect_return_columns(procedure.sql_definition):
            merged[column["name"]] = DiscoveredVariable(
                name=column["name"],
                type=field_type_from_sql(column["type"]),
                description=f"Phân tích từ SQL ({column['name']})",
            )

        sample = None
        parameters = {"p_uid": user_id} if user_id else {}
        try:
            sample = self.data_connector.get_sample_data(name, schema_params, parameters)
        except ReportError as e:
            logger.warning(
                "Dynamic discovery failed, falling back to static analysis",
                procedure=name,
                error=e.message,
            )

        if sample:
            for variable in self.variable_manager.discover_variables(sample):
                merged[variable.name] = variable

        variables = list(merged.values())

        # Re-query: a failed sample rolls the session back
        procedure = self.get_procedure(procedure_id)
        procedure.variables = [v.to_dict() for v in variables]
        self.db.commit()

        logger.info("Variables discovered", procedure=name, count=len(variables), sampled=sample is not None)
        return variables, sample
