"""Abstract cold vector storage interface."""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Any, Dict, List, Optional

from ..core.models import ChunkEmbedding, RetrievedChunk, minimal_chunk_ref


class ColdDriverError(RuntimeError):
    """A cold backend call failed at runtime."""

    def __init__(self, driver: str, operation: str, message: str):
        super().__init__(f"[{driver}] {operation} failed: {message}")
        self.driver = driver
        self.operation = operation


class ColdIndexDriver(ABC):
    """Abstract base class for durable vector storage backends.

    Every method is idempotent by chunk id. Scores returned by ``search``
    are higher-is-better whatever the backend's native metric.
    """

    name: str = "cold"

    @abstractmethod
    def init(self) -> None:
        """Connect lazily and probe the collection; a missing one is not an error."""

    @abstractmethod
    def upsert(self, chunks: List[ChunkEmbedding]) -> int:
        """Insert or overwrite chunks by id; returns the number written."""

    @abstractmethod
    def search(
        self,
        query_vector: List[float],
        top_k: int = 8,
        model_filter: Optional[str] = None,
        score_threshold: Optional[float] = None,
    ) -> List[RetrievedChunk]:
        """Nearest-neighbour search, highest score first."""

    @abstractmethod
    def delete_by_ids(self, ids: List[str]) -> int:
        """Remove chunks by id; unknown ids are ignored."""

    def close(self) -> None:
        """Release backend resources (default: nothing to release)."""

    def __enter__(self) -> "ColdIndexDriver":
        return self

    def __exit__(self, *exc: Any) -> None:
        self.close()


def payload_for(chunk: ChunkEmbedding) -> Dict[str, Any]:
    """Row payload shared by all drivers."""
    return {
        "chunk_id": chunk.id,
        "model": chunk.model,
        "file_path": chunk.file_path,
        "start_line": int(chunk.start_line),
        "end_line": int(chunk.end_line),
        "dim": int(chunk.dim),
        "tokens_estimated": int(chunk.tokens_estimated),
        "content": chunk.content,
    }


def embedding_from_row(chunk_id: str, row: Dict[str, Any], vector: Optional[List[float]]) -> ChunkEmbedding:
    """Rebuild a ChunkEmbedding from a stored payload, tolerating missing fields."""
    vec = [float(x) for x in (vector or [])]
    file_path = str(row.get("file_path") or "")
    start_line = int(row.get("start_line") or 1)
    end_line = int(row.get("end_line") or start_line)
    tokens = int(row.get("tokens_estimated") or 0)
    return ChunkEmbedding(
        id=chunk_id,
        vector=vec,
        dim=int(row.get("dim") or len(vec)),
        model=str(row.get("model") or ""),
        file_path=file_path,
        start_line=start_line,
        end_line=end_line,
        tokens_estimated=tokens,
        chunk=minimal_chunk_ref(chunk_id, file_path, start_line, end_line, tokens, str(row.get("content") or "")),
    )


def passes_threshold(score: float, score_threshold: Optional[float]) -> bool:
    return score_threshold is None or score >= score_threshold
