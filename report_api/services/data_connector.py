"""Data connector: executes registered report routines and returns raw rows."""

import re
from typing import Any, Iterable, Optional, Sequence

import structlog
from sqlalchemy import text
from sqlalchemy.orm import Session

from report_api.models import ReportProcedure
from report_api.utils.report_errors import (
    ReportError,
    ReportErrorCategory,
    ReportErrorCode,
    procedure_not_found,
)

logger = structlog.get_logger()

# Routine names are interpolated into SQL text, so only plain identifiers
# (optionally schema-qualified) that exist in the registry are accepted.
IDENTIFIER_RE = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*(\.[A-Za-z_][A-Za-z0-9_]*)?$")

DATABASE_ERROR_HINTS = {
    "42883": "Procedure không tìm thấy hoặc số lượng tham số không khớp.",
    "42P01": "Bảng hoặc Procedure không tồn tại trong database.",
    "42601": "Lỗi cú pháp trong câu lệnh SQL.",
}


def _parse_int(value: Any) -> int:
    # Missing values become 0, not NULL
    value = value or 0
    try:
        return int(value)
    except (TypeError, ValueError):
        return int(float(value))


def _parse_decimal(value: Any) -> float:
    return float(value or 0)


def coerce_parameters(
    schema_params: Iterable[dict[str, Any]],
    parameters: dict[str, Any],
) -> list[Any]:
    """Coerce supplied values to the declared parameter types, in declaration order.

    The declared type name is matched by substring: "int" parses an integer,
    "decimal" a float, "bool" compares against "true"; anything else is
    passed through. Numeric parameters that are missing or empty default to 0.

    Args:
        schema_params: Declared parameters, e.g. [{"name": "p_month", "type": "integer"}]
        parameters: Caller-supplied values keyed by parameter name

    Returns:
        Values ready to bind positionally
    """
    values = []
    for param in schema_params:
        declared = str(param.get("type") or "text").lower()
        value = parameters.get(param["name"])

        if "int" in declared:
            values.append(_parse_int(value))
        elif "decimal" in declared:
            values.append(_parse_decimal(value))
        elif "bool" in declared:
            values.append(value == "true" or value is True)
        else:
            values.append(value)
    return values


def extract_sql_state(error: Exception) -> Optional[str]:
    # psycopg2 exposes pgcode, psycopg 3 sqlstate
    orig = getattr(error, "orig", None)
    return getattr(orig, "pgcode", None) or getattr(orig, "sqlstate", None)


def map_database_error(error: Exception) -> str:
    """Translate a driver error into a message an operator can act on."""
    return DATABASE_ERROR_HINTS.get(extract_sql_state(error) or "", str(error))


class DataConnectorService:
    """Runs registered database routines for the report pipeline."""

    def __init__(self, db: Session):
        self.db = db

    def _lookup(self, procedure_name: str) -> ReportProcedure:
        if not procedure_name or not IDENTIFIER_RE.match(procedure_name):
            raise procedure_not_found(procedure_name)

        procedure = (
            self.db.query(ReportProcedure)
            .filter(ReportProcedure.name == procedure_name, ReportProcedure.is_active.is_(True))
            .first()
        )
        if not procedure:
            raise procedure_not_found(procedure_name)
        return procedure

    def execute_procedure(
        self,
        procedure_name: str,
        parameters: Optional[dict[str, Any]] = None,
        schema_params: Sequence[dict[str, Any]] = (),
        limit: Optional[int] = None,
    ) -> list[dict[str, Any]]:
        """Execute a registered routine with dynamic parameters.

        Args:
            procedure_name: Registered routine name
            parameters: Raw values keyed by declared parameter name
            schema_params: Declared parameters in order
            limit: Optional row limit (functions only)

        Returns:
            Result rows as plain dicts. Action procedures return a single
            synthetic success record.

        Raises:
            ReportError: PROCEDURE_NOT_FOUND for unregistered names,
                PROCEDURE_EXECUTION_ERROR for anything the database rejects
        """
        try:
            procedure = self._lookup(procedure_name)
            values = coerce_parameters(schema_params, parameters or {})
            binds = {f"p{i}": value for i, value in enumerate(values, start=1)}
            placeholders = ", ".join(f":{key}" for key in binds)

            if procedure.is_action:
                self.db.execute(text(f"CALL {procedure_name}({placeholders})"), binds)
                self.db.commit()
                rows = [{"status": "success", "message": f"Procedure {procedure_name} executed"}]
            else:
                sql = f"SELECT * FROM {procedure_name}({placeholders})"
                if limit:
                    sql += f" LIMIT {int(limit)}"
                result = self.db.execute(text(sql), binds)
                rows = [dict(row._mapping) for row in result]

            logger.info("Executed procedure", procedure=procedure_name, row_count=len(rows))
            return rows

        except ReportError:
            raise
        except Exception as e:
            self.db.rollback()
            logger.error("Database error in execute_procedure", procedure=procedure_name, error=str(e))
            raise ReportError(
                f"Procedure Execution Failed: {e}",
                ReportErrorCode.PROCEDURE_EXECUTION_ERROR,
                ReportErrorCategory.PROCEDURE,
                {
                    "original_error": str(e),
                    "sql_state": extract_sql_state(e),
                    "hint": map_database_error(e),
                },
            ) from e

    def get_sample_data(
        self,
        procedure_name: str,
        schema_params: Sequence[dict[str, Any]] = (),
        parameters: Optional[dict[str, Any]] = None,
    ) -> Optional[dict[str, Any]]:
        """Fetch one row, with default parameters unless given, for variable discovery."""
        rows = self.execute_procedure(procedure_name, parameters or {}, schema_params, limit=1)
        return rows[0] if rows else None
