"""
Pytest configuration and shared fixtures.
"""

import hashlib
from pathlib import Path
from typing import Dict, List, Optional

import numpy as np
import pytest

from ragtier.core.embeddings import Embedder
from ragtier.core.models import Chunk, ChunkEmbedding, RetrievedChunk
from ragtier.storage.base import ColdDriverError, ColdIndexDriver, passes_threshold

DIM = 8


class FakeEmbedder(Embedder):
    """Deterministic hash-based embedder; counts every text it embeds."""

    def __init__(self, model: str = "fake-embed", dim: int = DIM):
        self._model = model
        self.dim = dim
        self.calls: List[List[str]] = []

    @property
    def model(self) -> str:
        return self._model

    def embed(self, texts: List[str]) -> List[List[float]]:
        self.calls.append(list(texts))
        return [vector_for(t, self.dim) for t in texts]

    @property
    def embedded_texts(self) -> List[str]:
        return [t for batch in self.calls for t in batch]


class InMemoryDriver(ColdIndexDriver):
    """Cold driver backed by a dict, recording every call."""

    def __init__(self, name: str = "memory", fail_on: Optional[str] = None):
        self.name = name
        self.fail_on = fail_on
        self.rows: Dict[str, ChunkEmbedding] = {}
        self.upsert_calls: List[List[str]] = []
        self.delete_calls: List[List[str]] = []
        self.search_calls = 0
        self.closed = False

    def _maybe_fail(self, operation: str) -> None:
        if self.fail_on == operation:
            raise ColdDriverError(self.name, operation, "simulated outage")

    def init(self) -> None:
        pass

    def upsert(self, chunks: List[ChunkEmbedding]) -> int:
        self._maybe_fail("upsert")
        self.upsert_calls.append([c.id for c in chunks])
        for c in chunks:
            self.rows[c.id] = c
        return len(chunks)

    def search(self, query_vector, top_k=8, model_filter=None, score_threshold=None) -> List[RetrievedChunk]:
        self._maybe_fail("search")
        self.search_calls += 1
        q = np.asarray(query_vector, dtype=float)
        hits = []
        for c in self.rows.values():
            if model_filter and c.model != model_filter:
                continue
            v = np.asarray(c.vector, dtype=float)
            score = float(v @ q / (np.linalg.norm(v) * np.linalg.norm(q) or 1e-12))
            if passes_threshold(score, score_threshold):
                hits.append(RetrievedChunk(score=score, chunk=c, source=self.name))
        hits.sort(key=lambda h: h.score, reverse=True)
        return hits[:top_k]

    def delete_by_ids(self, ids: List[str]) -> int:
        self._maybe_fail("delete")
        self.delete_calls.append(list(ids))
        for i in ids:
            self.rows.pop(i, None)
        return len(ids)

    def close(self) -> None:
        self.closed = True


def vector_for(text: str, dim: int = DIM) -> List[float]:
    digest = hashlib.sha256(text.encode("utf-8")).digest()
    return [(b - 127.5) / 127.5 for b in digest[:dim]]


def make_embedding(
    chunk_id: str,
    vector: List[float],
    model: str = "fake-embed",
    file_path: str = "src/a.py",
    start_line: int = 1,
    end_line: int = 3,
) -> ChunkEmbedding:
    chunk = Chunk(
        file_path=file_path,
        start_line=start_line,
        end_line=end_line,
        chunk_index=0,
        chunk_count=1,
        sha256=chunk_id,
        content=f"content of {chunk_id}",
        tokens_estimated=4,
    )
    return ChunkEmbedding(
        id=chunk_id,
        vector=[float(x) for x in vector],
        dim=len(vector),
        model=model,
        file_path=file_path,
        start_line=start_line,
        end_line=end_line,
        tokens_estimated=4,
        chunk=chunk,
    )


@pytest.fixture
def embedder() -> FakeEmbedder:
    return FakeEmbedder()


@pytest.fixture
def driver() -> InMemoryDriver:
    return InMemoryDriver()


@pytest.fixture
def make_driver():
    """Factory for extra in-memory drivers."""
    return InMemoryDriver


@pytest.fixture
def emb():
    """Factory for ChunkEmbedding test items."""
    return make_embedding


@pytest.fixture
def sample_project(tmp_path: Path) -> Path:
    """A small project with code, markdown and a file that must be skipped."""
    (tmp_path / "src").mkdir()
    (tmp_path / "docs").mkdir()
    (tmp_path / "node_modules" / "lib").mkdir(parents=True)

    (tmp_path / "src" / "main.py").write_text(
        "def main():\n    return calculate(1, 2)\n\n\ndef calculate(a, b):\n    return a + b\n"
    )
    (tmp_path / "docs" / "guide.md").write_text(
        "# Guide\n\nSome prose.\n\n```python\nprint('hi')\n```\n\n## Next\n\nMore prose.\n"
    )
    (tmp_path / "node_modules" / "lib" / "index.js").write_text("module.exports = 1;\n")
    (tmp_path / "blob.txt").write_bytes(b"\x89PNG\r\n\x1a\n\x00\x00\x00")
    return tmp_path


@pytest.fixture
def index_dirs(tmp_path: Path) -> Dict[str, Path]:
    """State directories under the default-excluded .ragtier folder."""
    base = tmp_path / ".ragtier"
    return {"manifest": base / "cold", "hot": base / "hot"}


@pytest.fixture
def embedder_factory():
    """Factory for fake embedders with a chosen model id."""
    return FakeEmbedder
