"""Tests for Stage 5 Rendering: asset readiness join, HTML, output path."""
import threading
from pathlib import Path
from unittest.mock import MagicMock, patch

from models.page_plan import PagePlan, PhotoCell, ReportPage, Section, TextBlock
from models.report_meta import ReportMeta
from pipeline.stage5_render import (
    _mark_missing_assets,
    _output_path,
    _render_html,
    _slugify,
    run,
    wait_for_assets,
)
from settings import Settings


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

def _settings(tmp_path) -> Settings:
    return Settings(project_dir=tmp_path, asset_timeout_s=2.0)


def _meta(name: str = "MV Aurora", inspection_date: str = "2026-02-09") -> ReportMeta:
    meta = ReportMeta(inspection_date=inspection_date)
    meta.vessel.name = name
    return meta


def _plan() -> PagePlan:
    return PagePlan(pages=[
        ReportPage(
            page_number=1,
            kind="cover",
            title="Vessel Inspection Report",
            sections=[Section(kind="cover", title="Index", bullets=["Disclaimer"])],
            footer="Generated by iShip Inspection AI • MV Aurora • Model: openai",
        ),
        ReportPage(
            page_number=2,
            kind="appendix",
            title="Appendix: All Photos",
            photo_cells=[
                PhotoCell(key="a", photo_id="a", image_url="https://x/uploads/a", condition="rust",
                          condition_label="Rust", notes="Flaking <paint>"),
                PhotoCell(key="b", photo_id="b", image_url="https://x/uploads/b"),
                PhotoCell(key="c", photo_id="c", image_url=None),
            ],
            part_index=1,
            part_count=1,
            totals={"photos": 3},
        ),
    ])


def _mock_weasyprint():
    mock_wp = MagicMock()
    mock_html_instance = MagicMock()
    mock_wp.HTML.return_value = mock_html_instance
    mock_html_instance.write_pdf.side_effect = lambda path, **kw: Path(path).write_bytes(b"%PDF")
    return patch("pipeline.stage5_render._weasyprint", mock_wp)


# ---------------------------------------------------------------------------
# wait_for_assets
# ---------------------------------------------------------------------------

class TestWaitForAssets:
    def test_all_results_reported(self):
        results = wait_for_assets(["u1", "u2", "u3"], lambda url, timeout: url != "u2")
        assert results == {"u1": True, "u2": False, "u3": True}

    def test_exception_counts_as_failure(self):
        def probe(url, timeout):
            if url == "boom":
                raise RuntimeError("network down")
            return True

        assert wait_for_assets(["ok", "boom"], probe) == {"ok": True, "boom": False}

    def test_slow_probe_times_out_without_blocking(self):
        release = threading.Event()

        def probe(url, timeout):
            if url == "slow":
                release.wait(5)
            return True

        try:
            results = wait_for_assets(["fast", "slow"], probe, max_workers=2, timeout=0.2)
        finally:
            release.set()
        assert results == {"fast": True, "slow": False}

    def test_empty_and_duplicates(self):
        calls = []

        def probe(url, timeout):
            calls.append(url)
            return True

        assert wait_for_assets([], probe) == {}
        assert wait_for_assets(["a", "a", "b"], probe) == {"a": True, "b": True}
        assert sorted(calls) == ["a", "b"]


class TestMarkMissingAssets:
    def test_broken_images_cleared_in_copy(self):
        plan = _plan()
        marked = _mark_missing_assets(plan, {"https://x/uploads/a": True, "https://x/uploads/b": False})
        cells = marked.pages[1].photo_cells
        assert cells[0].image_url == "https://x/uploads/a"
        assert cells[1].image_url is None
        assert cells[1].image_missing is True
        assert cells[2].image_missing is False
        assert plan.pages[1].photo_cells[1].image_url == "https://x/uploads/b"


# ---------------------------------------------------------------------------
# HTML
# ---------------------------------------------------------------------------

class TestRenderHtml:
    def test_titles_footer_and_cells(self):
        html = _render_html(_plan(), _meta())
        assert "Vessel Inspection Report" in html
        assert "Appendix: All Photos" in html
        assert "Generated by iShip Inspection AI • MV Aurora • Model: openai" in html
        assert 'src="https://x/uploads/a"' in html
        assert "Flaking &lt;paint&gt;" in html

    def test_missing_image_placeholder(self):
        plan = _mark_missing_assets(_plan(), {"https://x/uploads/a": True})
        html = _render_html(plan, _meta())
        assert "Image unavailable" in html
        assert "No photo" in html
        assert 'src="https://x/uploads/b"' not in html

    def test_body_text_rendered_as_markdown(self):
        plan = PagePlan(pages=[ReportPage(
            page_number=1, kind="executiveSummary", title="Executive Summary",
            sections=[Section(kind="executiveSummary", title="Executive Summary",
                              text_blocks=[TextBlock(content="**Key** point\nsecond line")])],
        )])
        html = _render_html(plan, _meta())
        assert "<strong>Key</strong>" in html
        assert "<br" in html


# ---------------------------------------------------------------------------
# Output path
# ---------------------------------------------------------------------------

class TestSlugify:
    def test_simple_name(self):
        assert _slugify("MV Aurora") == "mv_aurora"

    def test_special_chars_stripped(self):
        assert _slugify("M/V  Nord-Star (II)") == "m_v_nord_star_ii"

    def test_empty_string_fallback(self):
        assert _slugify("") == "vessel"

    def test_truncated_at_50_chars(self):
        assert len(_slugify("a" * 80)) == 50


class TestOutputPath:
    def test_with_date(self, tmp_path):
        s = _settings(tmp_path)
        assert _output_path(s, _meta()) == s.output_dir / "mv_aurora_inspection_report_20260209.pdf"

    def test_without_usable_date(self, tmp_path):
        s = _settings(tmp_path)
        assert _output_path(s, _meta(inspection_date="9th Feb")).name == "mv_aurora_inspection_report.pdf"


# ---------------------------------------------------------------------------
# run
# ---------------------------------------------------------------------------

class TestRun:
    def test_pdf_written_to_output_dir(self, tmp_path):
        s = _settings(tmp_path)
        with _mock_weasyprint():
            result = run(s, _plan(), _meta(), probe=lambda url, timeout: True)
        assert result.exists()
        assert result.suffix == ".pdf"
        assert result.parent == s.output_dir
        assert result.with_suffix(".html").exists()

    def test_html_only(self, tmp_path):
        s = _settings(tmp_path)
        with _mock_weasyprint() as mock_wp:
            result = run(s, _plan(), _meta(), pdf=False, probe=lambda url, timeout: False)
        mock_wp.HTML.assert_not_called()
        assert result.suffix == ".html"
        assert "Image unavailable" in result.read_text(encoding="utf-8")

    def test_broken_assets_do_not_abort(self, tmp_path):
        s = _settings(tmp_path)

        def probe(url, timeout):
            raise OSError("unreachable")

        with _mock_weasyprint():
            result = run(s, _plan(), _meta(), probe=probe)
        assert result.exists()
