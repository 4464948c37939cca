#!/usr/bin/env python3
"""Run the full inspection report pipeline end-to-end.

Usage:
    python run_pipeline.py                  # run all stages
    python run_pipeline.py --from-stage 3   # start from stage 3 (load earlier caches)
    python run_pipeline.py --from-stage 5   # re-render only
    python run_pipeline.py --html-only      # skip the PDF, write the HTML report
    python run_pipeline.py --no-narrative   # never call the narrative model
"""
import argparse
import json
import logging
import sys
from pathlib import Path

sys.path.insert(0, str(Path(__file__).resolve().parent))

from settings import Settings
from models.assessment import Assessment
from models.batch import InspectionBatch
from models.findings import FindingSet
from models.page_plan import PagePlan
from pipeline import stage1_ingest, stage2_findings, stage3_assess, stage4_layout, stage5_render
from utils.assets import make_url_resolver
from utils.store import JsonFileStore, load_report_meta

logger = logging.getLogger("run_pipeline")


def _load_json(path: Path, model):
    data = json.loads(path.read_text(encoding="utf-8"))
    return model.model_validate(data)


def main() -> None:
    parser = argparse.ArgumentParser()
    parser.add_argument("--from-stage", type=int, default=1, dest="from_stage",
                        help="Start from this stage number (1-5); earlier stages load from cache")
    parser.add_argument("--html-only", action="store_true", dest="html_only",
                        help="Write the HTML report without converting it to PDF")
    parser.add_argument("--no-narrative", action="store_true", dest="no_narrative",
                        help="Do not generate an executive-summary narrative")
    args = parser.parse_args()

    settings = Settings()
    logging.basicConfig(
        level=getattr(logging, settings.log_level.upper(), logging.INFO),
        format="%(asctime)s  %(levelname)-8s  %(name)s  %(message)s",
        datefmt="%H:%M:%S",
    )

    cache = settings.cache_dir  # data/.cache
    store = JsonFileStore(settings.store_dir)

    if args.from_stage <= 1:
        logger.info("=== Stage 1: Ingest ===")
        batch = stage1_ingest.run(settings, store)
    else:
        logger.info("=== Stage 1: loading from cache ===")
        batch = _load_json(cache / "batch.json", InspectionBatch)

    if args.from_stage <= 2:
        logger.info("=== Stage 2: Findings ===")
        finding_set = stage2_findings.run(settings, batch, store)
    else:
        logger.info("=== Stage 2: loading from cache ===")
        finding_set = _load_json(cache / "findings.json", FindingSet)

    if args.from_stage <= 3:
        logger.info("=== Stage 3: Assessment ===")
        meta = load_report_meta(store, settings.meta_key)
        assessment = stage3_assess.run(
            settings, batch, finding_set, meta, store, narrative=not args.no_narrative
        )
    else:
        logger.info("=== Stage 3: loading from cache ===")
        assessment = _load_json(cache / "assessment.json", Assessment)

    # Stage 3 may have stored a generated summary
    meta = load_report_meta(store, settings.meta_key)

    if args.from_stage <= 4:
        logger.info("=== Stage 4: Layout ===")
        page_plan = stage4_layout.run(
            settings, batch, finding_set, assessment, meta, make_url_resolver(settings)
        )
    else:
        logger.info("=== Stage 4: loading from cache ===")
        page_plan = _load_json(cache / "page_plan.json", PagePlan)

    logger.info("=== Stage 5: Render ===")
    output_path = stage5_render.run(settings, page_plan, meta, pdf=not args.html_only)

    logger.info("=== Done → %s ===", output_path)


if __name__ == "__main__":
    main()
