"""
Tests for routine validation, registration and variable discovery.
"""

from types import SimpleNamespace
from unittest.mock import MagicMock

import pytest
from sqlalchemy.exc import DBAPIError

from report_api.services.procedure_manager import (
    ProcedureManagerService,
    detect_parameters,
    detect_return_columns,
    generate_drop_sql,
    parse_routine_name,
    validate_sql,
)
from report_api.services.variable_manager import FieldType
from report_api.utils.report_errors import ReportError, ReportErrorCode

from conftest import REVENUE_SQL, FakeDataConnector

OCCUPANCY_SQL = """CREATE OR REPLACE FUNCTION report_occupancy(
    IN p_uid TEXT,
    p_from DATE DEFAULT NULL,
    p_rate NUMERIC(10,2) = 0
) RETURNS TABLE (room_name TEXT, is_occupied BOOLEAN) AS $$
BEGIN
END;
$$ LANGUAGE plpgsql;"""

CLEANUP_SQL = """CREATE OR REPLACE PROCEDURE cleanup_reports(p_uid TEXT)
LANGUAGE plpgsql AS $$
BEGIN
END;
$$;"""


def db_error(pgcode):
    return DBAPIError("CREATE ...", {}, SimpleNamespace(pgcode=pgcode, args=("driver error",)))


@pytest.fixture
def manager(db_session):
    service = ProcedureManagerService(db_session)
    # SQLite cannot run plpgsql DDL
    service._apply_ddl = MagicMock()
    return service


class TestParsing:
    def test_routine_name(self):
        assert parse_routine_name(REVENUE_SQL) == ("function", "report_revenue_summary")
        assert parse_routine_name(CLEANUP_SQL) == ("procedure", "cleanup_reports")
        assert parse_routine_name("CREATE OR REPLACE FUNCTION Public.Report_X(a int)") == ("function", "public.report_x")
        assert parse_routine_name('create or replace function "public"."X"(a int)') == ("function", '"public"."X"')
        assert parse_routine_name("SELECT 1") is None

    def test_parameters_strip_modes_and_defaults(self):
        assert detect_parameters(OCCUPANCY_SQL) == [
            {"name": "p_uid", "type": "TEXT"},
            {"name": "p_from", "type": "DATE"},
            {"name": "p_rate", "type": "NUMERIC(10,2)"},
        ]

    def test_no_parameters(self):
        assert detect_parameters("CREATE OR REPLACE FUNCTION f() RETURNS int AS $$ $$") == []

    def test_return_columns(self):
        assert detect_return_columns(REVENUE_SQL) == [
            {"name": "room_name", "type": "TEXT"},
            {"name": "total_amount", "type": "DECIMAL"},
            {"name": "created_on", "type": "TIMESTAMP"},
        ]
        assert detect_return_columns(CLEANUP_SQL) == []

    def test_drop_sql_uses_argument_types(self):
        assert generate_drop_sql(OCCUPANCY_SQL) == (
            "DROP FUNCTION IF EXISTS report_occupancy(TEXT, DATE, NUMERIC(10,2))"
        )
        assert generate_drop_sql(CLEANUP_SQL) == "DROP PROCEDURE IF EXISTS cleanup_reports(TEXT)"
        assert generate_drop_sql("DROP TABLE x") is None


class TestValidateSql:
    def test_valid_function(self):
        result = validate_sql(REVENUE_SQL)

        assert result.is_valid
        assert result.kind == "function"
        assert result.name == "report_revenue_summary"
        assert result.warnings == []
        assert [p["name"] for p in result.detected_parameters] == ["p_uid", "p_month"]

    @pytest.mark.parametrize("sql", [None, "", 42])
    def test_not_a_string(self, sql):
        assert validate_sql(sql).errors == ["SQL must be a non-empty string"]

    def test_plain_create_is_rejected(self):
        result = validate_sql("CREATE FUNCTION f(p_uid text) RETURNS int AS $$ $$")

        assert not result.is_valid
        assert "CREATE OR REPLACE" in result.errors[0]

    def test_p_uid_is_required(self):
        result = validate_sql("CREATE OR REPLACE FUNCTION f(owner_id text) RETURNS TABLE (a int) AS $$ $$")

        assert not result.is_valid
        assert "p_uid" in result.errors[0]

    def test_invalid_routine_name(self):
        result = validate_sql("CREATE OR REPLACE FUNCTION 1bad(p_uid text) RETURNS TABLE (a int) AS $$ $$")

        assert not result.is_valid
        assert result.errors[0].startswith("Invalid routine name")

    def test_quoted_routine_name_is_rejected(self):
        result = validate_sql('CREATE OR REPLACE FUNCTION "Report_X"(p_uid text) RETURNS TABLE (a int) AS $$ $$')

        assert not result.is_valid
        assert result.errors[0].startswith("Quoted routine names are not supported")

    def test_scalar_function_warns(self):
        result = validate_sql("CREATE OR REPLACE FUNCTION f(p_uid text) RETURNS int AS $$ $$")

        assert result.is_valid
        assert len(result.warnings) == 1


class TestApplyDdl:
    def test_sqlite_rejects_plpgsql(self, db_session):
        with pytest.raises(ReportError) as exc_info:
            ProcedureManagerService(db_session).create_procedure(REVENUE_SQL)

        assert exc_info.value.code == ReportErrorCode.PROCEDURE_EXECUTION_ERROR
        assert exc_info.value.details["procedure"] == "report_revenue_summary"

    def test_return_type_change_drops_and_recreates(self):
        db = MagicMock()
        exec_sql = db.connection.return_value.exec_driver_sql
        exec_sql.side_effect = [db_error("42P13"), None, None]

        ProcedureManagerService(db)._apply_ddl(OCCUPANCY_SQL, "report_occupancy")

        statements = [c.args[0] for c in exec_sql.call_args_list]
        assert statements == [
            OCCUPANCY_SQL,
            "DROP FUNCTION IF EXISTS report_occupancy(TEXT, DATE, NUMERIC(10,2))",
            OCCUPANCY_SQL,
        ]
        db.rollback.assert_called_once()

    def test_other_database_errors_are_not_retried(self):
        db = MagicMock()
        exec_sql = db.connection.return_value.exec_driver_sql
        exec_sql.side_effect = [db_error("42601")]

        with pytest.raises(ReportError) as exc_info:
            ProcedureManagerService(db)._apply_ddl(REVENUE_SQL, "report_revenue_summary")

        assert exc_info.value.details["sql_state"] == "42601"
        assert exec_sql.call_count == 1

    def test_failed_recreate(self):
        db = MagicMock()
        exec_sql = db.connection.return_value.exec_driver_sql
        exec_sql.side_effect = [db_error("42P13"), None, db_error("42601")]

        with pytest.raises(ReportError) as exc_info:
            ProcedureManagerService(db)._apply_ddl(REVENUE_SQL, "report_revenue_summary")

        assert exc_info.value.code == ReportErrorCode.PROCEDURE_EXECUTION_ERROR
        assert db.rollback.call_count == 2


class TestCreateProcedure:
    def test_registers_version_one_with_history(self, manager, admin):
        procedure = manager.create_procedure(REVENUE_SQL, description="Doanh thu", created_by=admin.id)

        assert procedure.name == "report_revenue_summary"
        assert procedure.version == 1
        assert procedure.kind == "function"
        assert procedure.parameters[0] == {"name": "p_uid", "type": "TEXT"}
        manager._apply_ddl.assert_called_once_with(REVENUE_SQL, "report_revenue_summary")

        history = manager.get_procedure_history(procedure.id)
        assert [(h.version, h.changed_by) for h in history] == [(1, admin.id)]
        assert history[0].meta == {"name": "report_revenue_summary", "description": "Doanh thu"}

    def test_mixed_case_name_is_registered_lowercase(self, manager):
        sql = REVENUE_SQL.replace("report_revenue_summary", "Report_Revenue_Summary")

        procedure = manager.create_procedure(sql)

        assert procedure.name == "report_revenue_summary"
        manager._apply_ddl.assert_called_once_with(sql, "report_revenue_summary")

    def test_action_procedure_kind(self, manager):
        assert manager.create_procedure(CLEANUP_SQL).is_action

    def test_invalid_sql_never_reaches_database(self, manager):
        with pytest.raises(ReportError) as exc_info:
            manager.create_procedure("SELECT 1")

        assert exc_info.value.code == ReportErrorCode.PROCEDURE_SYNTAX_ERROR
        assert exc_info.value.details["errors"]
        manager._apply_ddl.assert_not_called()

    def test_name_mismatch(self, manager):
        with pytest.raises(ReportError) as exc_info:
            manager.create_procedure(REVENUE_SQL, name="other_name")

        assert exc_info.value.code == ReportErrorCode.PROCEDURE_VALIDATION_FAILED

    def test_duplicate_active_name(self, manager):
        manager.create_procedure(REVENUE_SQL)

        with pytest.raises(ReportError) as exc_info:
            manager.create_procedure(REVENUE_SQL)

        assert exc_info.value.code == ReportErrorCode.PROCEDURE_VALIDATION_FAILED

    def test_deleted_procedure_is_revived(self, manager):
        first = manager.create_procedure(REVENUE_SQL)
        manager.delete_procedure(first.id)

        revived = manager.create_procedure(REVENUE_SQL, description="again")

        assert revived.id == first.id
        assert revived.version == 2
        assert revived.is_active
        assert [h.version for h in manager.get_procedure_history(first.id)] == [2, 1]


class TestUpdateProcedure:
    def test_bumps_version_and_resets_variables(self, manager):
        procedure = manager.create_procedure(REVENUE_SQL)
        procedure.variables = [{"name": "old"}]

        updated = manager.update_procedure(procedure.id, OCCUPANCY_SQL.replace("report_occupancy", "report_revenue_summary"))

        assert updated.version == 2
        assert updated.variables is None
        assert [p["name"] for p in updated.parameters] == ["p_uid", "p_from", "p_rate"]
        assert updated.description is None

    def test_rename_onto_existing_routine(self, manager):
        manager.create_procedure(REVENUE_SQL)
        other = manager.create_procedure(OCCUPANCY_SQL)

        with pytest.raises(ReportError) as exc_info:
            manager.update_procedure(other.id, REVENUE_SQL)

        assert exc_info.value.code == ReportErrorCode.PROCEDURE_VALIDATION_FAILED

    def test_missing_procedure(self, manager):
        with pytest.raises(ReportError) as exc_info:
            manager.update_procedure("missing", REVENUE_SQL)

        assert exc_info.value.code == ReportErrorCode.PROCEDURE_NOT_FOUND


class TestListAndDelete:
    def test_deleted_procedures_are_hidden(self, manager):
        procedure = manager.create_procedure(REVENUE_SQL)
        manager.create_procedure(OCCUPANCY_SQL)

        manager.delete_procedure(procedure.id)

        assert [p.name for p in manager.list_procedures()] == ["report_occupancy"]
        with pytest.raises(ReportError):
            manager.get_procedure(procedure.id)


class TestDiscoverVariables:
    def test_sample_types_override_static_types(self, db_session, procedure, owner):
        connector = FakeDataConnector(rows=[{"room_name": "P101", "total_amount": 1500000, "extra": True}])
        manager = ProcedureManagerService(db_session, data_connector=connector)

        variables, sample = manager.discover_variables(procedure.id, user_id=owner.id)

        types = {v.name: v.type for v in variables}
        assert types == {
            "room_name": FieldType.STRING,
            "total_amount": FieldType.CURRENCY,
            "created_on": FieldType.DATE,
            "extra": FieldType.BOOLEAN,
        }
        assert sample["room_name"] == "P101"
        assert connector.calls[0]["parameters"] == {"p_uid": owner.id}
        assert connector.calls[0]["limit"] == 1
        assert manager.get_procedure(procedure.id).variables[0]["name"] == "room_name"

    def test_falls_back_to_static_analysis(self, db_session, procedure):
        error = ReportError("boom", ReportErrorCode.PROCEDURE_EXECUTION_ERROR)
        manager = ProcedureManagerService(db_session, data_connector=FakeDataConnector(error=error))

        variables, sample = manager.discover_variables(procedure.id)

        assert sample is None
        assert [(v.name, v.type) for v in variables] == [
            ("room_name", FieldType.STRING),
            ("total_amount", FieldType.NUMBER),
            ("created_on", FieldType.DATE),
        ]
        assert variables[0].description == "Phân tích từ SQL (room_name)"
