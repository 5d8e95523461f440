"""Tests for services/progress_store.py and utils/persistence.py."""

import json

import pytest

from models.config import ProgressSettings
from services.progress_store import (
    DiskCacheProgressStore,
    JSONProgressStore,
    create_progress_store,
)
from utils.persistence import JSONStore


class TestJSONStore:
    def test_missing_file_returns_default(self, tmp_path):
        assert JSONStore(tmp_path / "nope.json").load() == {}

    def test_corrupt_file_returns_default(self, tmp_path):
        path = tmp_path / "bad.json"
        path.write_text("{not json")
        assert JSONStore(path).load({"fallback": True}) == {"fallback": True}

    def test_save_is_atomic_and_leaves_no_temp_files(self, tmp_path):
        store = JSONStore(tmp_path / "nested" / "data.json")
        store.save({"a": 1})
        store.save({"a": 2})
        assert json.loads((tmp_path / "nested" / "data.json").read_text()) == {"a": 2}
        assert [p.name for p in (tmp_path / "nested").iterdir()] == ["data.json"]

    def test_update(self, tmp_path):
        store = JSONStore(tmp_path / "data.json")
        store.update(lambda d: d.setdefault("items", []).append(1))
        store.update(lambda d: d["items"].append(2))
        assert store.load() == {"items": [1, 2]}


class TestJSONProgressStore:
    """Test the JSON backing."""

    def test_round_trip(self, tmp_path):
        store = JSONProgressStore(tmp_path / "progress.json")
        store.put("Dandadan", "3", 612.5, 1420, "Dandadan - Episode 3")

        assert store.get("Dandadan", "3") == (612.5, 1420.0)
        record = store.get_record("Dandadan", "3")
        assert record.title == "Dandadan - Episode 3"
        assert record.updated_at is not None

    def test_unknown_episode(self, tmp_path):
        store = JSONProgressStore(tmp_path / "progress.json")
        assert store.get("Dandadan", "99") is None

    def test_overwrite_and_records(self, tmp_path):
        store = JSONProgressStore(tmp_path / "progress.json")
        store.put("Show", "1", 10, 100)
        store.put("Show", "1", 20, 100)
        store.put("Show", "2", 5, 100)

        records = store.records("Show")
        assert set(records) == {"1", "2"}
        assert records["1"].position == 20

    def test_negative_position_clamped(self, tmp_path):
        store = JSONProgressStore(tmp_path / "progress.json")
        store.put("Show", "1", -3, 100)
        assert store.get("Show", "1") == (0.0, 100.0)


class TestDiskCacheProgressStore:
    def test_round_trip(self, temp_cache_dir):
        store = DiskCacheProgressStore(temp_cache_dir)
        try:
            store.put("Dandadan", "1", 42, 1440)
            assert store.get("Dandadan", "1") == (42.0, 1440.0)
            assert store.get("Dandadan", "2") is None
        finally:
            store.close()


class TestFactory:
    def test_json_backend(self, tmp_path):
        store = create_progress_store(ProgressSettings(backend="json", file=tmp_path / "p.json"))
        assert isinstance(store, JSONProgressStore)

    def test_diskcache_backend(self, tmp_path):
        store = create_progress_store(ProgressSettings(backend="diskcache", cache_dir=tmp_path / "c"))
        assert isinstance(store, DiskCacheProgressStore)
        store.close()

    def test_unknown_backend_rejected_by_settings(self):
        with pytest.raises(ValueError):
            ProgressSettings(backend="redis")
