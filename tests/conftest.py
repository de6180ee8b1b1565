"""
Configuration for pytest.

The registry tables live in an in-memory SQLite database; the database
routines, the headless browser and the output directory are replaced with
fakes so the suite runs without Postgres or Chromium.
"""

import os
import tempfile

# Settings are read once at import time
os.environ.setdefault("DATABASE_URL", "sqlite:///./.pytest_reports.db")
os.environ.setdefault("REPORT_OUTPUT_DIR", tempfile.mkdtemp(prefix="reports-"))
os.environ.setdefault("SECRET_KEY", "test-secret")
os.environ["DEBUG"] = "false"

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from report_api.config.database import Base, get_db
from report_api.config.settings import settings
from report_api.endpoints.deps import get_data_connector, get_pdf_renderer
from report_api.main import app
from report_api.models import ProcedureKind, ReportProcedure, ReportTemplate, User
from report_api.services.token import create_user_token
from report_api.services.variable_manager import VariableManagerService

test_engine = create_engine(
    "sqlite://",
    connect_args={"check_same_thread": False},
    poolclass=StaticPool,
)

TestSessionLocal = sessionmaker(bind=test_engine, autocommit=False, autoflush=False)

REVENUE_SQL = """CREATE OR REPLACE FUNCTION report_revenue_summary(
    p_uid TEXT,
    p_month INTEGER DEFAULT 1
) RETURNS TABLE (
    room_name TEXT,
    total_amount DECIMAL,
    created_on TIMESTAMP
) AS $$
BEGIN
    RETURN QUERY SELECT 'P101'::text, 1500000::decimal, now()::timestamp;
END;
$$ LANGUAGE plpgsql;"""


class FakeDataConnector:
    """Records calls and returns canned rows instead of running routines."""

    def __init__(self, rows=None, error=None):
        self.rows = rows if rows is not None else []
        self.error = error
        self.calls = []

    def execute_procedure(self, procedure_name, parameters=None, schema_params=(), limit=None):
        self.calls.append({
            "procedure_name": procedure_name,
            "parameters": dict(parameters or {}),
            "schema_params": list(schema_params),
            "limit": limit,
        })
        if self.error:
            raise self.error
        rows = [dict(row) for row in self.rows]
        return rows[:limit] if limit else rows

    def get_sample_data(self, procedure_name, schema_params=(), parameters=None):
        rows = self.execute_procedure(procedure_name, parameters or {}, schema_params, limit=1)
        return rows[0] if rows else None


class FakePdfRenderer:
    """Returns fixed bytes and remembers the HTML it was asked to render."""

    timeout_seconds = 5.0

    def __init__(self, error=None):
        self.error = error
        self.calls = []

    async def render(self, html, landscape=False):
        self.calls.append({"html": html, "landscape": landscape})
        if self.error:
            raise self.error
        return b"%PDF-1.4 fake report"


@pytest.fixture
def db_session():
    """Fresh registry tables for every test."""
    Base.metadata.create_all(bind=test_engine)
    session = TestSessionLocal()
    try:
        yield session
    finally:
        session.close()
        Base.metadata.drop_all(bind=test_engine)


@pytest.fixture
def variable_manager():
    return VariableManagerService(locale="vi_VN", currency="VND")


@pytest.fixture
def fake_connector():
    return FakeDataConnector(rows=[
        {"room_name": "Phòng 101", "total_amount": 1500000, "status": "PAID"},
        {"room_name": "Phòng 102", "total_amount": 800000, "status": "UNPAID"},
    ])


@pytest.fixture
def fake_renderer():
    return FakePdfRenderer()


@pytest.fixture
def owner(db_session):
    user = User(username="chunha01", role="CHU_NHA", display_name="Nguyễn Văn An")
    db_session.add(user)
    db_session.commit()
    return user


@pytest.fixture
def admin(db_session):
    user = User(username="admin", role=settings.SUPER_ADMIN_ROLE)
    db_session.add(user)
    db_session.commit()
    return user


@pytest.fixture
def procedure(db_session):
    proc = ReportProcedure(
        name="report_revenue_summary",
        description="Doanh thu theo phòng",
        sql_definition=REVENUE_SQL,
        parameters=[{"name": "p_uid", "type": "TEXT"}, {"name": "p_month", "type": "INTEGER"}],
        kind=ProcedureKind.FUNCTION.value,
        version=1,
        is_active=True,
    )
    db_session.add(proc)
    db_session.commit()
    return proc


@pytest.fixture
def template(db_session, procedure, owner):
    tpl = ReportTemplate(
        name="Báo Cáo Doanh Thu",
        procedure_id=procedure.id,
        content=(
            "<html><head><title>{{metadata.templateName}}</title></head><body>"
            "<h1>{{metadata.templateName}}</h1>"
            "<p class=\"user\">{{metadata.userName}}</p>"
            "{{#each data}}<p>{{room_name}}: {{vnCurrency total_amount}}</p>{{/each}}"
            "<span class=\"count\">{{metadata.totalCount}}</span>"
            "</body></html>"
        ),
        css="h1 { color: #333; }",
        js="console.log('ready');",
        orientation="portrait",
        permissions={"users": [owner.id], "roles": [settings.SUPER_ADMIN_ROLE]},
        is_active=True,
    )
    db_session.add(tpl)
    db_session.commit()
    return tpl


def auth_headers(user: User) -> dict[str, str]:
    return {"Authorization": f"Bearer {create_user_token(user.id, user.username, user.role)}"}


@pytest.fixture
def client(db_session, fake_connector, fake_renderer):
    """Test client wired to the SQLite session and the fakes."""
    def override_get_db():
        yield db_session

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_data_connector] = lambda: fake_connector
    app.dependency_overrides[get_pdf_renderer] = lambda: fake_renderer

    with TestClient(app) as c:
        yield c

    app.dependency_overrides.clear()
