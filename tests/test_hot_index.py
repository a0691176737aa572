"""
Tests for the in-memory hot index.
"""

import json
import os

import pytest

from ragtier.storage.hot_index import HotIndex, load_hot_index


class TestHotIndexBasics:

    def test_upsert_and_lookup(self, emb):
        hot = HotIndex(capacity=10)
        assert hot.upsert([emb("a", [1.0, 0.0]), emb("b", [0.0, 1.0])]) == 2
        assert hot.size() == len(hot) == 2
        assert hot.has("a") and "b" in hot
        assert hot.get("a").vector == [1.0, 0.0]
        assert hot.get("missing") is None

    def test_query_ranks_by_cosine(self, emb):
        hot = HotIndex(capacity=10)
        hot.upsert([emb("x", [1.0, 0.0]), emb("y", [0.7, 0.7]), emb("z", [-1.0, 0.0])])
        results = hot.query([1.0, 0.1], top_k=2)
        assert [e.id for _, e in results] == ["x", "y"]
        assert results[0][0] > results[1][0]

    def test_query_updates_usage_of_returned_only(self, emb):
        hot = HotIndex(capacity=10)
        hot.upsert([emb("x", [1.0, 0.0]), emb("z", [-1.0, 0.0])])
        hot.query([1.0, 0.0], top_k=1)
        assert hot.usage("x")[0] == 1
        assert hot.usage("z")[0] == 0

    def test_model_filter_and_dimension_mismatch(self, emb):
        hot = HotIndex(capacity=10)
        hot.upsert([
            emb("a", [1.0, 0.0], model="m1"),
            emb("b", [1.0, 0.0], model="m2"),
            emb("c", [1.0, 0.0, 0.0], model="m1"),
        ])
        assert [e.id for _, e in hot.query([1.0, 0.0], 5, model_filter="m1")] == ["a"]
        assert {e.id for _, e in hot.query([1.0, 0.0], 5, model_filter=["m1", "m2"])} == {"a", "b"}

    @pytest.mark.parametrize("vector,top_k", [([], 5), ([1.0, 0.0], 0)])
    def test_degenerate_queries_return_empty(self, emb, vector, top_k):
        hot = HotIndex(capacity=10)
        hot.upsert([emb("a", [1.0, 0.0])])
        assert hot.query(vector, top_k) == []
        assert HotIndex().query([1.0], 3) == []

    def test_delete_and_clear(self, emb):
        hot = HotIndex(capacity=10)
        hot.upsert([emb("a", [1.0]), emb("b", [2.0])])
        assert hot.delete("a") is True
        assert hot.delete("a") is False
        hot.clear()
        assert hot.size() == 0


class TestEviction:

    def test_least_used_evicted_first(self, emb):
        hot = HotIndex(capacity=2)
        hot.upsert([emb("A", [0.0, 1.0]), emb("B", [1.0, 0.0])])
        hot.query([1.0, 0.0], top_k=1)  # B used once
        hot.upsert([emb("C", [0.5, 0.5])])
        assert not hot.has("A")
        assert hot.has("B") and hot.has("C")

    def test_capacity_never_exceeded(self, emb):
        hot = HotIndex(capacity=3)
        for i in range(20):
            hot.upsert([emb(f"id{i}", [float(i), 1.0]), emb(f"dup{i % 4}", [1.0, float(i)])])
            assert hot.size() <= 3

    def test_batch_larger_than_capacity_keeps_tail(self, emb):
        hot = HotIndex(capacity=2)
        assert hot.upsert([emb(f"i{n}", [float(n + 1)]) for n in range(5)]) == 2
        assert hot.has("i3") and hot.has("i4")
        assert hot.size() == 2

    def test_never_evicts_current_batch(self, emb):
        hot = HotIndex(capacity=2)
        hot.upsert([emb("old", [1.0])])
        for _ in range(3):
            hot.query([1.0], 1)
        hot.upsert([emb("n1", [1.0]), emb("n2", [1.0])])
        assert hot.has("n1") and hot.has("n2")
        assert not hot.has("old")

    def test_replace_keeps_usage(self, emb):
        hot = HotIndex(capacity=5)
        hot.upsert([emb("a", [1.0, 0.0])])
        hot.query([1.0, 0.0], 1)
        hot.upsert([emb("a", [0.0, 1.0])])
        assert hot.usage("a")[0] == 1
        assert hot.get("a").vector == [0.0, 1.0]

    def test_resize_evicts(self, emb):
        hot = HotIndex(capacity=5)
        hot.upsert([emb(str(i), [1.0]) for i in range(5)])
        hot.resize(2)
        assert hot.size() == 2


class TestPersistence:

    def test_round_trip(self, tmp_path, emb):
        hot = HotIndex(dir=tmp_path, capacity=10)
        hot.upsert([emb("a", [1.0, 2.0], file_path="src/m.py", start_line=3, end_line=9)])
        hot.query([1.0, 2.0], 1)

        reloaded = HotIndex(dir=tmp_path, capacity=10)
        e = reloaded.get("a")
        assert e is not None
        assert e.vector == [1.0, 2.0]
        assert (e.file_path, e.start_line, e.end_line) == ("src/m.py", 3, 9)
        assert e.content == "content of a"
        assert reloaded.usage("a")[0] == 1

    def test_snapshot_format(self, tmp_path, emb):
        hot = HotIndex(dir=tmp_path, capacity=7)
        hot.upsert([emb("a", [1.0])])
        data = json.loads((tmp_path / "index.json").read_text())
        assert data["version"] == 1
        assert data["capacity"] == 7
        assert data["items"][0]["id"] == "a"

    @pytest.mark.skipif(os.name == "nt", reason="POSIX permissions")
    def test_snapshot_is_owner_only(self, tmp_path, emb):
        HotIndex(dir=tmp_path).upsert([emb("a", [1.0])])
        assert (tmp_path / "index.json").stat().st_mode & 0o777 == 0o600

    @pytest.mark.parametrize(
        "payload",
        [
            "{not json",
            json.dumps({"version": 99, "items": []}),
            json.dumps({"version": 1, "items": [{"bad": 1}]}),
            json.dumps({"version": 1, "items": [{"id": "a", "vector": [1.0], "chunk": "oops"}]}),
        ],
    )
    def test_corrupt_snapshot_starts_empty(self, tmp_path, payload):
        (tmp_path / "index.json").write_text(payload)
        hot = HotIndex(dir=tmp_path)
        assert hot.size() == 0

    def test_autosave_off_requires_flush(self, tmp_path, emb):
        hot = HotIndex(dir=tmp_path, autosave=False)
        hot.upsert([emb("a", [1.0])])
        assert not (tmp_path / "index.json").exists()
        hot.flush()
        assert HotIndex(dir=tmp_path).has("a")

    def test_load_hot_index_from_config(self, tmp_path):
        hot = load_hot_index({"hot_index": {"capacity": 12, "autosave": False}}, tmp_path)
        assert hot.capacity == 12
        assert hot.autosave is False
