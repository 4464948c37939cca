"""Tests for the key/value store helpers (overrides, report metadata, image edits)."""
import json

from models.report_meta import ReportMeta
from utils.store import (
    InMemoryStore,
    JsonFileStore,
    add_manual_finding,
    delete_finding,
    load_overrides,
    load_report_meta,
    patch_image_record,
    restore_finding,
    save_report_meta,
    update_finding,
)

KEY = "iship_defects_v1"
META_KEY = "iship_report_meta_v1"
RESULTS_KEY = "iship_results"


# ---------------------------------------------------------------------------
# Stores
# ---------------------------------------------------------------------------

class TestJsonFileStore:
    def test_missing_key_reads_none(self, tmp_path):
        assert JsonFileStore(tmp_path / "store").get("nothing") is None

    def test_set_then_get(self, tmp_path):
        s = JsonFileStore(tmp_path / "store")
        s.set("a/b key", {"x": [1, 2]})
        assert s.get("a/b key") == {"x": [1, 2]}
        assert len(list((tmp_path / "store").glob("*.json"))) == 1

    def test_corrupted_file_reads_none(self, tmp_path):
        s = JsonFileStore(tmp_path)
        s.set("k", {"x": 1})
        (tmp_path / "k.json").write_text("{not json", encoding="utf-8")
        assert s.get("k") is None


# ---------------------------------------------------------------------------
# Overrides
# ---------------------------------------------------------------------------

class TestLoadOverrides:
    def test_missing_blob_is_empty(self, store):
        assert load_overrides(store, KEY) == {}

    def test_malformed_json_is_empty(self):
        s = InMemoryStore()
        s.set_raw(KEY, "{oops")
        assert load_overrides(s, KEY) == {}

    def test_non_object_blob_is_empty(self, store):
        store.set(KEY, ["not", "a", "map"])
        assert load_overrides(store, KEY) == {}

    def test_malformed_entries_skipped_order_kept(self, store):
        store.set(KEY, {
            "b": {"hidden": True},
            "bad": "string entry",
            "a": {"area": "Deck"},
            "worse": {"hidden": {"nested": 1}},
        })
        overrides = load_overrides(store, KEY)
        assert list(overrides) == ["b", "a"]


class TestUpdateFinding:
    def test_shallow_merge(self, store):
        update_finding(store, KEY, "img_1", {"area": "Deck", "assignedTo": "Bosun"})
        update_finding(store, KEY, "img_1", {"area": "Bridge"})
        stored = store.get(KEY)["img_1"]
        assert stored == {"area": "Bridge", "assignedTo": "Bosun"}

    def test_snake_case_patch_replaces_camel_case_value(self, store):
        store.set(KEY, {"img_1": {"assignedTo": "Bosun"}})
        update_finding(store, KEY, "img_1", {"assigned_to": "C/O"})
        assert load_overrides(store, KEY)["img_1"].assigned_to == "C/O"

    def test_delete_derived_hides_and_restore_unhides(self, store):
        delete_finding(store, KEY, "img_1", manual=False)
        assert load_overrides(store, KEY)["img_1"].hidden is True
        restore_finding(store, KEY, "img_1")
        assert load_overrides(store, KEY)["img_1"].hidden is False

    def test_delete_manual_removes_entry(self, store):
        fid = add_manual_finding(store, KEY, area="Deck", now_ms=1000)
        delete_finding(store, KEY, fid, manual=True)
        assert fid not in load_overrides(store, KEY)


class TestAddManualFinding:
    def test_id_and_defaults(self, store):
        fid = add_manual_finding(store, KEY, description_text="Loose railing", now_ms=1700000000000)
        assert fid == "manual-1700000000000"
        entry = load_overrides(store, KEY)[fid]
        assert entry.manual is True
        assert entry.area == "—"
        assert entry.condition == "attention"
        assert store.get(KEY)[fid]["combined"] == "Loose railing"

    def test_collisions_get_suffixes(self, store):
        ids = [add_manual_finding(store, KEY, now_ms=42) for _ in range(3)]
        assert ids == ["manual-42", "manual-42-2", "manual-42-3"]


# ---------------------------------------------------------------------------
# Report metadata
# ---------------------------------------------------------------------------

class TestReportMetaStore:
    def test_missing_blob_gives_defaults(self, store):
        meta = load_report_meta(store, META_KEY)
        assert meta.vessel.name == ""
        assert meta.rating_override.use_override is False
        assert len(meta.area_ratings) == 5

    def test_invalid_blob_gives_defaults(self, store):
        store.set(META_KEY, {"distributionList": "not a list"})
        meta = load_report_meta(store, META_KEY)
        assert [d.role for d in meta.distribution_list] == ["Owner", "Manager", "Charterer"]

    def test_invalid_section_keeps_the_others(self, store):
        store.set(META_KEY, {
            "distributionList": "not a list",
            "vessel": {"name": "MV Aurora"},
            "summaryBlurb": "Kept blurb",
        })
        meta = load_report_meta(store, META_KEY)
        assert meta.vessel.name == "MV Aurora"
        assert meta.summary_blurb == "Kept blurb"
        assert [d.role for d in meta.distribution_list] == ["Owner", "Manager", "Charterer"]

    def test_snake_case_invalid_section_keeps_the_others(self, store):
        store.set(META_KEY, {"rating_override": [1, 2], "vessel": {"name": "MV Aurora"}})
        meta = load_report_meta(store, META_KEY)
        assert meta.vessel.name == "MV Aurora"
        assert meta.rating_override.use_override is False

    def test_numeric_imo_kept(self, store):
        store.set(META_KEY, {"vessel": {"name": "MV Aurora", "imo": 9321483}})
        meta = load_report_meta(store, META_KEY)
        assert meta.vessel.name == "MV Aurora"
        assert meta.vessel.imo == "9321483"

    def test_cleared_area_score_kept(self, store):
        store.set(META_KEY, {
            "vessel": {"name": "MV Aurora"},
            "areaRatings": {"Bridge": {"score": "", "rating": "Good"}, "Deck": {"score": 80}},
        })
        meta = load_report_meta(store, META_KEY)
        assert meta.vessel.name == "MV Aurora"
        assert meta.area_ratings["Bridge"].score == 0.0
        assert meta.area_ratings["Bridge"].rating == "Good"
        assert meta.average_area_score() == 40.0

    def test_save_and_load(self, store):
        meta = ReportMeta(inspection_date="2026-02-09")
        meta.vessel.name = "MV Aurora"
        save_report_meta(store, META_KEY, meta)
        assert store.get(META_KEY)["vessel"]["name"] == "MV Aurora"
        assert load_report_meta(store, META_KEY) == meta


# ---------------------------------------------------------------------------
# Image record edits
# ---------------------------------------------------------------------------

def _results_blob() -> dict:
    return {
        "results": {
            "openai": {
                "batch_summary": {"fire_hazard_count": 0, "trip_fall_count": 0, "none_count": 2},
                "per_image": [
                    {"id": "a", "location": "Bridge", "comment": "ok"},
                    {"id": "b", "location": "Deck", "comment": "wet"},
                ],
            }
        }
    }


class TestPatchImageRecord:
    def test_patch_by_id(self, store):
        store.set(RESULTS_KEY, _results_blob())
        assert patch_image_record(store, RESULTS_KEY, "b", {"comment": "dry now"}, "openai")
        per_image = store.get(RESULTS_KEY)["results"]["openai"]["per_image"]
        assert per_image[1]["comment"] == "dry now"
        assert per_image[0]["comment"] == "ok"

    def test_patch_by_index_splits_recommendations(self, store):
        store.set(RESULTS_KEY, _results_blob())
        assert patch_image_record(
            store, RESULTS_KEY, 0, {"recommendations": "Clean; Paint ;", "id": "hijack"}, "openai"
        )
        record = store.get(RESULTS_KEY)["results"]["openai"]["per_image"][0]
        assert record["recommendations"] == ["Clean", "Paint"]
        assert record["id"] == "a"

    def test_plain_blob_without_buckets(self, store):
        store.set(RESULTS_KEY, _results_blob()["results"]["openai"])
        assert patch_image_record(store, RESULTS_KEY, "a", {"location": "Wheelhouse"})
        assert store.get(RESULTS_KEY)["per_image"][0]["location"] == "Wheelhouse"

    def test_unknown_reference_returns_false(self, store):
        store.set(RESULTS_KEY, _results_blob())
        before = json.dumps(store.get(RESULTS_KEY))
        assert not patch_image_record(store, RESULTS_KEY, "zzz", {"comment": "x"}, "openai")
        assert not patch_image_record(store, RESULTS_KEY, 5, {"comment": "x"}, "openai")
        assert json.dumps(store.get(RESULTS_KEY)) == before

    def test_missing_blob_returns_false(self, store):
        assert not patch_image_record(store, RESULTS_KEY, 0, {"comment": "x"})
