"""Stage 5: PDF Rendering — convert PagePlan to a PDF via WeasyPrint + Jinja2.

Reads:  data/.cache/page_plan.json         (PagePlan)
        store[meta_key]                    (ReportMeta — vessel name, date)
Writes: data/output/<vessel>_inspection_report[_<date>].pdf
        data/output/<vessel>_inspection_report[_<date>].html

Before rendering, every image referenced by a photo cell is probed
concurrently. A failed or timed-out probe does not stop the run: the cell
loses its image and the template shows a placeholder instead.
"""
import logging
import re
from concurrent.futures import ThreadPoolExecutor, wait
from datetime import date
from pathlib import Path
from typing import Callable, Iterable

import markdown as _markdown_lib
from jinja2 import Environment, FileSystemLoader, select_autoescape
from markupsafe import Markup

try:
    import weasyprint as _weasyprint  # requires native Pango libs at runtime
except OSError:  # pragma: no cover  (native libs absent)
    _weasyprint = None  # type: ignore[assignment]

from models.page_plan import PagePlan
from models.report_meta import ReportMeta
from settings import Settings
from utils.assets import probe_asset

logger = logging.getLogger(__name__)

_TEMPLATE_DIR = Path(__file__).resolve().parent / "templates"

AssetProbe = Callable[[str, float], bool]


def run(
    settings: Settings,
    page_plan: PagePlan,
    meta: ReportMeta,
    pdf: bool = True,
    probe: AssetProbe = probe_asset,
) -> Path:
    """Render the PagePlan to HTML (and PDF) in the output directory.

    Returns the path of the PDF, or of the HTML file when `pdf` is False.
    """
    urls = {c.image_url for p in page_plan.pages for c in p.photo_cells if c.image_url}
    ready = wait_for_assets(
        urls, probe, max_workers=settings.asset_workers, timeout=settings.asset_timeout_s
    )
    page_plan = _mark_missing_assets(page_plan, ready)

    html = _render_html(page_plan, meta)

    output_path = _output_path(settings, meta)
    output_path.parent.mkdir(parents=True, exist_ok=True)
    html_path = output_path.with_suffix(".html")
    html_path.write_text(html, encoding="utf-8")

    if not pdf:
        logger.info("Stage 5 complete → %s", html_path)
        return html_path

    if _weasyprint is None:  # pragma: no cover
        raise RuntimeError(
            "WeasyPrint native libraries (Pango) are not available. "
            "Follow https://doc.courtbouillon.org/weasyprint/stable/first_steps.html"
        )
    _weasyprint.HTML(
        string=html,
        base_url=str(settings.project_dir.resolve()),
    ).write_pdf(str(output_path))

    logger.info("Stage 5 complete → %s", output_path)
    return output_path


# ---------------------------------------------------------------------------
# Asset readiness
# ---------------------------------------------------------------------------

def wait_for_assets(
    urls: Iterable[str],
    probe: AssetProbe,
    max_workers: int = 8,
    timeout: float = 10.0,
) -> dict[str, bool]:
    """Probe every URL concurrently and report which ones loaded.

    Each probe resolves to True or False; an exception counts as False, and
    so does a probe still running when `timeout` (seconds, overall) expires.
    """
    urls = list(dict.fromkeys(urls))
    if not urls:
        return {}

    results = {url: False for url in urls}
    executor = ThreadPoolExecutor(max_workers=max_workers)
    try:
        futures = {executor.submit(probe, url, timeout): url for url in urls}
        done, not_done = wait(futures, timeout=timeout)
        for future in done:
            url = futures[future]
            try:
                results[url] = bool(future.result())
            except Exception as exc:
                logger.debug("Asset probe for %s raised %s", url, exc)
        for future in not_done:
            future.cancel()
            logger.debug("Asset probe for %s timed out", futures[future])
    finally:
        # Do not join still-running probes; they finish in the background
        executor.shutdown(wait=False, cancel_futures=True)

    failed = sum(1 for ok in results.values() if not ok)
    if failed:
        logger.warning("%d of %d image(s) could not be loaded; they will be hidden.", failed, len(urls))
    return results


def _mark_missing_assets(page_plan: PagePlan, ready: dict[str, bool]) -> PagePlan:
    """Return a copy of the plan with unloadable images cleared."""
    plan = page_plan.model_copy(deep=True)
    for page in plan.pages:
        for cell in page.photo_cells:
            if cell.image_url and not ready.get(cell.image_url, False):
                cell.image_url = None
                cell.image_missing = True
    return plan


# ---------------------------------------------------------------------------
# HTML rendering
# ---------------------------------------------------------------------------

def _render_html(page_plan: PagePlan, meta: ReportMeta) -> str:
    """Render the Jinja2 template to an HTML string."""
    env = Environment(
        loader=FileSystemLoader(str(_TEMPLATE_DIR)),
        autoescape=select_autoescape(["html", "j2"]),
    )
    env.filters["markdown"] = lambda text: Markup(
        _markdown_lib.markdown(text or "", extensions=["extra", "nl2br"])
    )
    template = env.get_template("report.html.j2")
    return template.render(
        pages=page_plan.pages,
        vessel_name=meta.vessel.name,
        inspection_date=meta.inspection_date,
    )


# ---------------------------------------------------------------------------
# Output path
# ---------------------------------------------------------------------------

def _output_path(settings: Settings, meta: ReportMeta) -> Path:
    """Build the output PDF path from the vessel name and inspection date."""
    vessel_slug = _slugify(meta.vessel.name)
    date_str = _compact_date(meta.inspection_date)
    if date_str:
        filename = f"{vessel_slug}_inspection_report_{date_str}.pdf"
    else:
        filename = f"{vessel_slug}_inspection_report.pdf"
    return settings.output_dir / filename


def _compact_date(value: str) -> str:
    try:
        return date.fromisoformat((value or "").strip()).strftime("%Y%m%d")
    except ValueError:
        return ""


def _slugify(text: str) -> str:
    """Convert a vessel name to a safe ASCII filename slug."""
    text = (text or "").lower()
    text = re.sub(r"[^a-z0-9]+", "_", text)
    text = text.strip("_")
    return text[:50] or "vessel"
