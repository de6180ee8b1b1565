"""
Tests for the report generator pipeline.
"""

import asyncio
import re

import pytest
from pybars import Compiler

from report_api.services.report_generator import (
    PREVIEW_USER_LABEL,
    SYSTEM_USER_LABEL,
    ReportGeneratorService,
    build_helpers,
    inject_assets,
    sanitize_filename,
)
from report_api.utils.report_errors import ReportError, ReportErrorCode

from conftest import FakeDataConnector, FakePdfRenderer


@pytest.fixture
def make_generator(db_session, variable_manager, tmp_path):
    def factory(connector, renderer=None, output_dir=None):
        return ReportGeneratorService(
            db=db_session,
            data_connector=connector,
            variable_manager=variable_manager,
            pdf_renderer=renderer or FakePdfRenderer(),
            output_dir=output_dir or tmp_path,
            public_url="/reports/generated/",
        )
    return factory


class TestSanitizeFilename:
    def test_strips_vietnamese_diacritics(self):
        assert sanitize_filename("Báo Cáo Đặc Biệt") == "Bao_Cao_Dac_Biet"

    def test_only_ascii_alphanumerics_and_underscores(self):
        token = sanitize_filename("Doanh thu (Quý 1/2024) - đợt #2")
        assert re.fullmatch(r"[A-Za-z0-9_]+", token)
        assert token == "Doanh_thu_Quy_1_2024_dot_2"

    def test_empty_name_falls_back(self):
        assert sanitize_filename("") == "Report"
        assert sanitize_filename("***") == "Report"
        assert sanitize_filename(None) == "Report"


class TestInjectAssets:
    def test_style_before_head_and_script_before_body(self):
        html = "<html><head></head><body><p>x</p></body></html>"
        result = inject_assets(html, "p{color:red}", "alert(1)")
        assert "<style>p{color:red}</style></head>" in result
        assert "<script>alert(1)</script></body>" in result

    def test_fragment_without_head_or_body(self):
        result = inject_assets("<p>x</p>", "p{}", "run()")
        assert result == "<style>p{}</style><p>x</p><script>run()</script>"

    def test_only_first_closing_tag_is_used(self):
        html = "<head></head><body></body><template><head></head></template>"
        result = inject_assets(html, "a{}", None)
        assert result.count("<style>") == 1
        assert result.startswith("<head><style>a{}</style></head>")

    def test_no_assets_leaves_html_unchanged(self):
        assert inject_assets("<p>x</p>", None, "") == "<p>x</p>"


class TestHelpers:
    def test_comparison_and_arithmetic(self, variable_manager):
        helpers = build_helpers(variable_manager)
        assert helpers["eq"](None, "PAID", "PAID") is True
        assert helpers["gt"](None, 5, 3) is True
        assert helpers["lt"](None, 5, 3) is False
        assert helpers["add"](None, 0, 1) == 1

    def test_eq_does_not_coerce(self, variable_manager):
        eq = build_helpers(variable_manager)["eq"]
        assert eq(None, 1, True) is False
        assert eq(None, 0, False) is False
        assert eq(None, "1", 1) is False
        assert eq(None, 1, 1.0) is True
        assert eq(None, None, None) is True

    def test_missing_values_in_comparisons_and_sums(self, variable_manager):
        helpers = build_helpers(variable_manager)
        assert helpers["gt"](None, None, 1000000) is False
        assert helpers["lt"](None, None, 1) is True
        assert helpers["gt"](None, "Phòng 101", 5) is False
        assert helpers["lt"](None, "900", 1000) is True
        assert helpers["add"](None, None, 2) == 2
        assert helpers["add"](None, "Phòng ", 101) == "Phòng 101"

    def test_block_condition_with_missing_value(self, variable_manager):
        compiled = Compiler().compile("{{#if (gt total 1000000)}}VIP{{else}}std{{/if}}")
        helpers = build_helpers(variable_manager)

        assert "".join(compiled({"total": None}, helpers=helpers)) == "std"
        assert "".join(compiled({"total": 2000000}, helpers=helpers)) == "VIP"

    def test_formatting_helpers(self, variable_manager):
        helpers = build_helpers(variable_manager)
        assert "1.500.000" in helpers["vnCurrency"](None, 1500000)
        assert helpers["vnNumber"](None, 1234.5) == "1.234,5"
        assert helpers["vnDate"](None, "2024-01-15") == "15/01/2024"
        assert '"a": 1' in helpers["json"](None, {"a": 1})


class TestGenerateReport:
    async def test_writes_pdf_and_returns_url(self, make_generator, fake_connector, template, owner, tmp_path):
        renderer = FakePdfRenderer()
        generator = make_generator(fake_connector, renderer)

        result = await generator.generate_report(template.id, {"p_month": "3"}, user_id=owner.id)

        assert re.fullmatch(r"Report_Bao_Cao_Doanh_Thu_\d+\.pdf", result.file_name)
        assert result.file_url == f"/reports/generated/{result.file_name}"
        assert result.generation_time_ms >= 0
        assert (tmp_path / result.file_name).read_bytes() == b"%PDF-1.4 fake report"

        html = renderer.calls[0]["html"]
        assert renderer.calls[0]["landscape"] is False
        assert "<style>h1 { color: #333; }</style></head>" in html
        assert "<script>console.log('ready');</script></body>" in html
        assert "Phòng 101: 1.500.000" in html
        assert '<p class="user">Nguyễn Văn An</p>' in html
        assert '<span class="count">2</span>' in html

    async def test_p_uid_is_set_from_user(self, make_generator, fake_connector, template, owner):
        await make_generator(fake_connector).generate_report(template.id, {"p_month": "3"}, user_id=owner.id)

        call = fake_connector.calls[0]
        assert call["procedure_name"] == "report_revenue_summary"
        assert call["parameters"] == {"p_month": "3", "p_uid": owner.id}

    async def test_landscape_orientation(self, make_generator, fake_connector, template, db_session):
        template.orientation = "landscape"
        db_session.commit()
        renderer = FakePdfRenderer()

        await make_generator(fake_connector, renderer).generate_report(template.id, {})

        assert renderer.calls[0]["landscape"] is True

    async def test_system_user_name_without_user(self, make_generator, fake_connector, template):
        renderer = FakePdfRenderer()
        await make_generator(fake_connector, renderer).generate_report(template.id, {})

        assert f'<p class="user">{SYSTEM_USER_LABEL}</p>' in renderer.calls[0]["html"]

    async def test_missing_template(self, make_generator, fake_connector):
        with pytest.raises(ReportError) as exc_info:
            await make_generator(fake_connector).generate_report("missing-id", {})

        assert exc_info.value.code == ReportErrorCode.TEMPLATE_NOT_FOUND
        assert fake_connector.calls == []

    async def test_soft_deleted_template(self, make_generator, fake_connector, template, db_session):
        template.is_active = False
        db_session.commit()

        with pytest.raises(ReportError) as exc_info:
            await make_generator(fake_connector).generate_report(template.id, {})

        assert exc_info.value.code == ReportErrorCode.TEMPLATE_NOT_FOUND
        assert fake_connector.calls == []

    async def test_template_without_procedure(self, make_generator, fake_connector, template, db_session):
        template.procedure_id = None
        db_session.commit()

        with pytest.raises(ReportError) as exc_info:
            await make_generator(fake_connector).generate_report(template.id, {})

        assert exc_info.value.code == ReportErrorCode.TEMPLATE_INVALID_FORMAT
        assert fake_connector.calls == []

    async def test_user_without_permission(self, make_generator, fake_connector, template, db_session):
        from report_api.models import User

        stranger = User(username="other", role="CHU_NHA")
        db_session.add(stranger)
        db_session.commit()

        with pytest.raises(ReportError) as exc_info:
            await make_generator(fake_connector).generate_report(template.id, {}, user_id=stranger.id)

        assert exc_info.value.code == ReportErrorCode.UNAUTHORIZED_ACCESS
        assert exc_info.value.status_code == 403
        assert fake_connector.calls == []

    async def test_super_admin_bypasses_permissions(self, make_generator, fake_connector, template, admin):
        result = await make_generator(fake_connector).generate_report(template.id, {}, user_id=admin.id)
        assert result.file_name.endswith(".pdf")

    async def test_data_errors_propagate_unchanged(self, make_generator, template):
        error = ReportError("boom", ReportErrorCode.PROCEDURE_EXECUTION_ERROR)
        renderer = FakePdfRenderer()

        with pytest.raises(ReportError) as exc_info:
            await make_generator(FakeDataConnector(error=error), renderer).generate_report(template.id, {})

        assert exc_info.value is error
        assert renderer.calls == []

    async def test_empty_result_still_renders(self, make_generator, template, tmp_path):
        renderer = FakePdfRenderer()
        result = await make_generator(FakeDataConnector(rows=[]), renderer).generate_report(template.id, {})

        assert (tmp_path / result.file_name).exists()
        assert '<span class="count">0</span>' in renderer.calls[0]["html"]

    async def test_compile_error(self, make_generator, fake_connector, template, db_session):
        template.content = "{{#each data}}<p>{{room_name}}</p>"
        db_session.commit()
        renderer = FakePdfRenderer()

        with pytest.raises(ReportError) as exc_info:
            await make_generator(fake_connector, renderer).generate_report(template.id, {})

        assert exc_info.value.code == ReportErrorCode.GENERATION_MAPPING_FAILED
        assert renderer.calls == []

    async def test_render_failure(self, make_generator, fake_connector, template):
        renderer = FakePdfRenderer(error=RuntimeError("browser crashed"))

        with pytest.raises(ReportError) as exc_info:
            await make_generator(fake_connector, renderer).generate_report(template.id, {})

        assert exc_info.value.code == ReportErrorCode.GENERATION_PDF_RENDER_FAILED
        assert "browser crashed" in exc_info.value.message

    async def test_render_timeout(self, make_generator, fake_connector, template):
        renderer = FakePdfRenderer(error=asyncio.TimeoutError())

        with pytest.raises(ReportError) as exc_info:
            await make_generator(fake_connector, renderer).generate_report(template.id, {})

        assert exc_info.value.code == ReportErrorCode.GENERATION_PDF_RENDER_FAILED

    async def test_file_system_error(self, make_generator, fake_connector, template, tmp_path):
        not_a_dir = tmp_path / "occupied"
        not_a_dir.write_text("file, not a directory")

        with pytest.raises(ReportError) as exc_info:
            await make_generator(fake_connector, output_dir=not_a_dir).generate_report(template.id, {})

        assert exc_info.value.code == ReportErrorCode.GENERATION_FILE_SYSTEM_ERROR

    async def test_conditional_variables(self, make_generator, fake_connector, template, db_session):
        template.content = "{{#each data}}<p>{{room_name}}{{#if isVip}} VIP{{/if}}</p>{{/each}}"
        template.placeholders = [{"name": "isVip", "condition": "total_amount > 1000000"}]
        db_session.commit()
        renderer = FakePdfRenderer()

        await make_generator(fake_connector, renderer).generate_report(template.id, {})

        html = renderer.calls[0]["html"]
        assert "<p>Phòng 101 VIP</p>" in html
        assert "<p>Phòng 102</p>" in html


class TestGeneratePreview:
    def test_returns_html_without_rendering_pdf(self, make_generator, fake_connector, template, tmp_path):
        renderer = FakePdfRenderer()
        html = make_generator(fake_connector, renderer).generate_preview(template.id, {"p_month": "1"})

        assert "Phòng 102: 800.000" in html
        assert f'<p class="user">{PREVIEW_USER_LABEL}</p>' in html
        assert "<style>h1 { color: #333; }</style>" in html
        assert renderer.calls == []
        assert list(tmp_path.iterdir()) == []

    def test_preview_flag_in_metadata(self, make_generator, fake_connector, template, db_session):
        template.content = "{{#if metadata.isPreview}}PREVIEW{{/if}}"
        db_session.commit()

        assert "PREVIEW" in make_generator(fake_connector).generate_preview(template.id)

    def test_compile_error_becomes_inline_panel(self, make_generator, fake_connector, template, db_session):
        template.content = "{{#each data}}<b>unclosed"
        db_session.commit()

        html = make_generator(fake_connector).generate_preview(template.id)

        assert "Lỗi biên dịch mẫu báo cáo" in html
        assert "<b>unclosed" not in html

    def test_missing_template_still_raises(self, make_generator, fake_connector):
        with pytest.raises(ReportError) as exc_info:
            make_generator(fake_connector).generate_preview("missing-id")

        assert exc_info.value.code == ReportErrorCode.TEMPLATE_NOT_FOUND
