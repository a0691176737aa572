"""
Tests for the Qdrant cold driver against qdrant-client's in-memory mode.
"""

import pytest

pytest.importorskip("qdrant_client")

from ragtier.storage.base import ColdDriverError
from ragtier.storage.qdrant import QdrantDriver, make_qdrant_driver, point_id_for

Q = [1.0, 0.0, 0.0]


@pytest.fixture
def qdrant():
    drv = QdrantDriver(location=":memory:", collection_name="test_chunks")
    yield drv
    drv.close()


class TestQdrantDriver:

    def test_search_before_any_upsert(self, qdrant):
        assert qdrant.search(Q) == []
        assert qdrant.delete_by_ids(["missing"]) == 0

    def test_upsert_and_search(self, qdrant, emb):
        written = qdrant.upsert([
            emb("near", [1.0, 0.1, 0.0], file_path="src/near.py", start_line=3, end_line=9),
            emb("far", [0.0, 1.0, 0.0]),
        ])
        assert written == 2

        hits = qdrant.search(Q, top_k=2)
        assert [h.id for h in hits] == ["near", "far"]
        assert hits[0].source == "qdrant"
        assert hits[0].score > hits[1].score
        top = hits[0].chunk
        assert (top.file_path, top.start_line, top.end_line) == ("src/near.py", 3, 9)
        assert top.content == "content of near"
        assert top.model == "fake-embed"
        assert len(top.vector) == 3

    def test_upsert_is_idempotent(self, qdrant, emb):
        item = emb("same", [1.0, 0.0, 0.0])
        qdrant.upsert([item])
        qdrant.upsert([item])
        assert qdrant.client.count(collection_name="test_chunks").count == 1

    def test_model_filter_and_threshold(self, qdrant, emb):
        qdrant.upsert([
            emb("m1", [1.0, 0.0, 0.0], model="m1"),
            emb("m2", [1.0, 0.0, 0.0], model="m2"),
            emb("weak", [0.0, 0.0, 1.0], model="m1"),
        ])
        assert [h.id for h in qdrant.search(Q, model_filter="m2")] == ["m2"]
        assert [h.id for h in qdrant.search(Q, model_filter="m1", score_threshold=0.5)] == ["m1"]

    def test_delete_by_ids(self, qdrant, emb):
        qdrant.upsert([emb("a", [1.0, 0.0, 0.0]), emb("b", [0.0, 1.0, 0.0])])
        assert qdrant.delete_by_ids(["a", "never-stored"]) == 2
        assert [h.id for h in qdrant.search(Q)] == ["b"]

    def test_dimension_mismatch(self, qdrant, emb):
        qdrant.upsert([emb("a", [1.0, 0.0, 0.0])])
        with pytest.raises(ValueError):
            qdrant.upsert([emb("b", [1.0, 0.0])])

    def test_reopen_discovers_dimension(self, emb):
        drv = QdrantDriver(location=":memory:", collection_name="reopen")
        drv.upsert([emb("a", [1.0, 0.0, 0.0])])
        other = QdrantDriver(client=drv.client, collection_name="reopen")
        other.init()
        assert other.have_collection and other.dim == 3

    def test_euclid_scores_are_higher_is_better(self):
        drv = QdrantDriver(location=":memory:", distance="Euclid")
        assert drv._to_score(0.0) == 1.0
        assert drv._to_score(1.0) == pytest.approx(0.5)

    def test_invalid_distance(self):
        with pytest.raises(ValueError):
            QdrantDriver(distance="Manhattan")

    def test_client_failure_is_wrapped(self, qdrant, emb):
        qdrant.upsert([emb("a", [1.0, 0.0, 0.0])])

        def broken(**kwargs):
            raise ConnectionError("connection refused")

        qdrant.client.query_points = broken
        with pytest.raises(ColdDriverError, match=r"\[qdrant\] search failed"):
            qdrant.search(Q)

    def test_close(self, emb):
        drv = QdrantDriver(location=":memory:")
        drv.upsert([emb("a", [1.0, 0.0, 0.0])])
        drv.close()
        assert drv.client is None and drv.have_collection is False

    def test_close_keeps_injected_client(self, emb):
        owner = QdrantDriver(location=":memory:", collection_name="shared")
        owner.upsert([emb("a", [1.0, 0.0, 0.0])])
        borrowed = QdrantDriver(client=owner.client, collection_name="shared")
        borrowed.close()
        assert borrowed.client is owner.client
        assert [h.id for h in borrowed.search(Q)] == ["a"]
        owner.close()


class TestPointIds:

    def test_stable_uuid(self):
        assert point_id_for("abc") == point_id_for("abc")
        assert point_id_for("abc") != point_id_for("abd")
        assert len(point_id_for("abc")) == 36


class TestMakeQdrantDriver:

    def test_reads_cold_section(self):
        drv = make_qdrant_driver({"cold": {"qdrant": {"host": "qdrant.internal", "port": "7000", "collection": "c", "distance": "Dot"}}})
        assert (drv.host, drv.port, drv.collection_name, drv.distance) == ("qdrant.internal", 7000, "c", "Dot")
        assert drv.client is None
