"""Tests for Stage 1 Ingest."""
import json

from models.batch import InspectionBatch
from pipeline.stage1_ingest import _unknown_tags, load_batch, run


def _blob() -> dict:
    return {
        "batch_summary": {"fire_hazard_count": 1, "trip_fall_count": 0, "none_count": 1},
        "per_image": [
            {"id": "a", "location": "Engine Room", "condition": "fire_hazard", "severity": "high"},
            {"id": "b", "location": "", "condition": "OK", "comments": "clean"},
        ],
    }


class TestLoadBatch:
    def test_plain_shape(self):
        batch = load_batch(_blob())
        assert [i.id for i in batch.images] == ["a", "b"]
        assert batch.batch_summary.fire_hazard_count == 1
        assert batch.images[1].raw_condition == "none"
        assert batch.images[1].comment == "clean"

    def test_bucketed_by_model(self):
        batch = load_batch({"results": {"openai": _blob(), "other": {"per_image": []}}}, "openai")
        assert len(batch.images) == 2

    def test_single_bucket_used_when_model_unknown(self):
        batch = load_batch({"results": {"gemini": _blob()}}, "openai")
        assert len(batch.images) == 2

    def test_missing_bucket_gives_empty_batch(self):
        batch = load_batch({"results": {"a": _blob(), "b": _blob()}}, "openai")
        assert batch == InspectionBatch()

    def test_none_and_garbage_give_empty_batch(self):
        assert load_batch(None).images == []
        assert load_batch("garbage").images == []
        assert load_batch({"per_image": "nope"}).images == []

    def test_malformed_items_skipped_positions_kept(self):
        blob = _blob()
        blob["per_image"].insert(1, "not a record")
        batch = load_batch(blob)
        assert [i.id for i in batch.images] == ["a", "b"]
        assert [i.source_index for i in batch.images] == [0, 2]

    def test_unknown_tags_reported_once(self):
        batch = load_batch({"per_image": [
            {"id": "a", "condition": "Oil Leak", "severity": "Severe"},
            {"id": "b", "condition": "oil leak", "priority": "asap"},
            {"id": "c", "condition": "rust", "severity": "high", "priority": "urgent"},
        ]})
        assert _unknown_tags(batch.images) == ["condition=oil leak", "severity=severe", "priority=asap"]

    def test_missing_summary_defaults(self):
        batch = load_batch({"per_image": [{}]})
        assert batch.batch_summary.fire_hazard_count == 0
        assert batch.images[0].id == "image_001"


class TestRun:
    def test_reads_store_and_writes_artifact(self, tmp_settings, store):
        store.set(tmp_settings.results_key, {"results": {"openai": _blob()}})
        batch = run(tmp_settings, store)
        artifact = tmp_settings.cache_dir / "batch.json"
        assert artifact.exists()
        assert InspectionBatch.model_validate_json(artifact.read_text(encoding="utf-8")) == batch
        assert len(batch.images) == 2

    def test_falls_back_to_seed_file(self, tmp_settings, store):
        tmp_settings.seed_results_path.write_text(json.dumps(_blob()), encoding="utf-8")
        batch = run(tmp_settings, store)
        assert [i.id for i in batch.images] == ["a", "b"]

    def test_nothing_stored_gives_empty_batch(self, tmp_settings, store):
        batch = run(tmp_settings, store)
        assert batch.images == []
        assert (tmp_settings.cache_dir / "batch.json").exists()

    def test_unreadable_seed_gives_empty_batch(self, tmp_settings, store):
        tmp_settings.seed_results_path.write_text("{broken", encoding="utf-8")
        assert run(tmp_settings, store).images == []
