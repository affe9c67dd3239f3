"""
Tests for the in-memory metric store.

============================================================
PURPOSE
============================================================
- Gauges overwrite, counters accumulate
- Counter updates commute under concurrent writers
- Snapshot round trip and missing-file load
- End-to-end store scenarios

============================================================
"""

import json
import threading

import pytest

from core.exceptions import MetricNotFoundError, MetricValidationError, StorageError
from core.models import Counter, Gauge
from storage.repositories.base import StoreState
from storage.repositories.memory import MemoryRepository


@pytest.fixture
def repo():
    return MemoryRepository()


class TestMergeSemantics:
    """Tests for gauge and counter update rules."""

    def test_gauge_last_write_wins(self, repo):
        repo.update_gauge("Alloc", 1.0)
        repo.update_gauge("Alloc", 2.5)
        assert repo.get_gauge("Alloc") == 2.5

    def test_counter_accumulates(self, repo):
        repo.update_counter("hits", 5)
        repo.update_counter("hits", 3)
        assert repo.get_counter("hits") == 8

    def test_counter_accepts_negative_delta(self, repo):
        repo.update_counter("hits", 5)
        repo.update_counter("hits", -2)
        assert repo.get_counter("hits") == 3

    def test_kinds_are_separate_namespaces(self, repo):
        repo.update_gauge("x", 1.5)
        repo.update_counter("x", 2)
        assert repo.get_gauge("x") == 1.5
        assert repo.get_counter("x") == 2

    def test_missing_gauge(self, repo):
        with pytest.raises(MetricNotFoundError) as exc_info:
            repo.get_gauge("nope")
        assert exc_info.value.kind == "gauge"
        assert exc_info.value.name == "nope"

    def test_missing_counter(self, repo):
        repo.update_gauge("only_gauge", 1.0)
        with pytest.raises(MetricNotFoundError):
            repo.get_counter("only_gauge")


class TestBatch:
    """Tests for update_batch."""

    def test_batch_applies_every_entry(self, repo):
        repo.update_batch([Gauge("g", 1.0), Counter("c", 2), Counter("c", 3)])
        assert repo.get_gauge("g") == 1.0
        assert repo.get_counter("c") == 5

    def test_invalid_entry_rejects_whole_batch(self, repo):
        with pytest.raises(MetricValidationError):
            repo.update_batch([Gauge("g", 1.0), "not a metric"])
        with pytest.raises(MetricNotFoundError):
            repo.get_gauge("g")

    def test_empty_batch_is_noop(self, repo):
        repo.update_batch([])
        assert repo.get_state() == StoreState()


class TestConcurrency:
    """Tests for concurrent writers."""

    def test_counter_updates_commute(self, repo):
        threads_count = 8
        updates_per_thread = 500

        def worker():
            for _ in range(updates_per_thread):
                repo.update_counter("hits", 1)

        threads = [threading.Thread(target=worker) for _ in range(threads_count)]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()

        assert repo.get_counter("hits") == threads_count * updates_per_thread

    def test_batches_interleave_without_loss(self, repo):
        def worker(index):
            for _ in range(100):
                repo.update_batch([Counter("total", 1), Gauge(f"g{index}", float(index))])

        threads = [threading.Thread(target=worker, args=(i,)) for i in range(4)]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()

        assert repo.get_counter("total") == 400
        assert {repo.get_gauge(f"g{i}") for i in range(4)} == {0.0, 1.0, 2.0, 3.0}


class TestMergedView:
    """Tests for get_all."""

    def test_get_all_contains_both_kinds(self, repo):
        repo.update_gauge("Alloc", 1.0)
        repo.update_counter("PollCount", 2)
        assert repo.get_all() == {"Alloc": 1.0, "PollCount": 2}

    def test_name_clash_shows_counter_and_warns(self, repo, caplog):
        repo.update_gauge("x", 1.5)
        repo.update_counter("x", 7)

        with caplog.at_level("WARNING"):
            merged = repo.get_all()

        assert merged == {"x": 7}
        assert "both gauge and counter" in caplog.text

    def test_get_state_keeps_both(self, repo):
        repo.update_gauge("x", 1.5)
        repo.update_counter("x", 7)
        state = repo.get_state()
        assert state.gauges == {"x": 1.5}
        assert state.counters == {"x": 7}


class TestSnapshots:
    """Tests for save_snapshot / load_snapshot."""

    def test_round_trip(self, repo, tmp_path):
        path = str(tmp_path / "metrics.json")
        repo.update_gauge("Alloc", 123.5)
        repo.update_counter("PollCount", 9)
        repo.save_snapshot(path)

        restored = MemoryRepository()
        restored.load_snapshot(path)

        assert restored.get_state() == repo.get_state()

    def test_file_format(self, repo, tmp_path):
        path = tmp_path / "metrics.json"
        repo.update_gauge("g", 1.0)
        repo.update_counter("c", 2)
        repo.save_snapshot(str(path))

        assert json.loads(path.read_text()) == {"gauges": {"g": 1.0}, "counters": {"c": 2}}

    def test_save_creates_parent_directory(self, repo, tmp_path):
        path = tmp_path / "nested" / "dir" / "metrics.json"
        repo.save_snapshot(str(path))
        assert path.exists()

    def test_save_leaves_no_temp_files(self, repo, tmp_path):
        repo.update_gauge("g", 1.0)
        repo.save_snapshot(str(tmp_path / "metrics.json"))
        repo.save_snapshot(str(tmp_path / "metrics.json"))
        assert [p.name for p in tmp_path.iterdir()] == ["metrics.json"]

    def test_empty_destination_is_noop(self, repo, tmp_path):
        repo.update_gauge("g", 1.0)
        repo.save_snapshot("")
        repo.save_snapshot(None)
        assert list(tmp_path.iterdir()) == []

    def test_load_missing_file_is_noop(self, repo, tmp_path):
        repo.update_counter("c", 1)
        repo.load_snapshot(str(tmp_path / "missing.json"))
        repo.load_snapshot(str(tmp_path / "missing.json"))
        assert repo.get_counter("c") == 1

    def test_load_replaces_state(self, repo, tmp_path):
        path = tmp_path / "metrics.json"
        path.write_text(json.dumps({"gauges": {"g": 2}, "counters": {}}))
        repo.update_counter("old", 1)

        repo.load_snapshot(str(path))

        assert repo.get_all() == {"g": 2.0}

    def test_load_corrupt_file_raises(self, repo, tmp_path):
        path = tmp_path / "metrics.json"
        path.write_text("{ not json")
        with pytest.raises(StorageError):
            repo.load_snapshot(str(path))

    def test_load_wrong_shape_raises(self, repo, tmp_path):
        path = tmp_path / "metrics.json"
        path.write_text(json.dumps([1, 2, 3]))
        with pytest.raises(StorageError):
            repo.load_snapshot(str(path))

    @pytest.mark.parametrize("value", [1.5, "5", True])
    def test_load_non_integral_counter_raises(self, repo, tmp_path, value):
        path = tmp_path / "metrics.json"
        path.write_text(json.dumps({"gauges": {}, "counters": {"c": value}}))
        repo.update_counter("c", 1)

        with pytest.raises(StorageError):
            repo.load_snapshot(str(path))

        assert repo.get_counter("c") == 1

    def test_load_integral_float_counter(self, repo, tmp_path):
        path = tmp_path / "metrics.json"
        path.write_text(json.dumps({"counters": {"c": 5.0}}))
        repo.load_snapshot(str(path))
        assert repo.get_counter("c") == 5
        assert isinstance(repo.get_counter("c"), int)


class TestScenarios:
    """End-to-end store scenarios."""

    def test_counter_accumulates_across_updates(self, repo):
        repo.update_counter("PollCount", 5)
        repo.update_counter("PollCount", 3)
        assert repo.get_counter("PollCount") == 8

    def test_gauge_overwrites_across_updates(self, repo):
        repo.update_gauge("RandomValue", 0.1)
        repo.update_gauge("RandomValue", 0.9)
        assert repo.get_gauge("RandomValue") == 0.9

    def test_restart_restores_state(self, repo, tmp_path):
        path = str(tmp_path / "metrics.json")
        repo.update_counter("PollCount", 10)
        repo.update_gauge("Alloc", 2048.0)
        repo.save_snapshot(path)

        restarted = MemoryRepository()
        restarted.load_snapshot(path)
        restarted.update_counter("PollCount", 5)

        assert restarted.get_counter("PollCount") == 15
        assert restarted.get_gauge("Alloc") == 2048.0

    def test_unknown_metric_is_not_found(self, repo):
        repo.update_gauge("Alloc", 1.0)
        with pytest.raises(MetricNotFoundError):
            repo.get_gauge("Unknown")
