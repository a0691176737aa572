"""Data models for ragtier."""

from __future__ import annotations

import dataclasses
from typing import Any, Dict, List, Optional

FILE_TYPES = ("markdown", "code", "json", "text")


@dataclasses.dataclass(frozen=True)
class Chunk:
    """A contiguous, content-addressed line range from one file."""

    file_path: str
    start_line: int
    end_line: int
    chunk_index: int
    chunk_count: int
    sha256: str
    content: str
    tokens_estimated: int
    file_type: str = "text"

    def to_dict(self) -> Dict[str, Any]:
        return {
            "filePath": self.file_path,
            "startLine": self.start_line,
            "endLine": self.end_line,
            "chunkIndex": self.chunk_index,
            "chunkCount": self.chunk_count,
            "sha256": self.sha256,
            "content": self.content,
            "tokensEstimated": self.tokens_estimated,
            "fileType": self.file_type,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Chunk":
        return cls(
            file_path=str(data.get("filePath", "")),
            start_line=int(data.get("startLine", 1)),
            end_line=int(data.get("endLine", 1)),
            chunk_index=int(data.get("chunkIndex", 0)),
            chunk_count=int(data.get("chunkCount", 0)),
            sha256=str(data.get("sha256", "")),
            content=str(data.get("content", "")),
            tokens_estimated=int(data.get("tokensEstimated", 0)),
            file_type=str(data.get("fileType", "text")),
        )


@dataclasses.dataclass
class ChunkEmbedding:
    """Vector representation of a chunk, as held by the hot and cold tiers."""

    id: str
    vector: List[float]
    dim: int
    model: str
    file_path: str
    start_line: int
    end_line: int
    tokens_estimated: int = 0
    chunk: Optional[Chunk] = None

    @property
    def content(self) -> str:
        return self.chunk.content if self.chunk is not None else ""

    @classmethod
    def from_chunk(cls, chunk: Chunk, vector: List[float], model: str) -> "ChunkEmbedding":
        vec = [float(x) for x in vector]
        return cls(
            id=chunk.sha256,
            vector=vec,
            dim=len(vec),
            model=model,
            file_path=chunk.file_path,
            start_line=chunk.start_line,
            end_line=chunk.end_line,
            tokens_estimated=chunk.tokens_estimated,
            chunk=chunk,
        )


def minimal_chunk_ref(
    chunk_id: str,
    file_path: str,
    start_line: int,
    end_line: int,
    tokens_estimated: int = 0,
    content: str = "",
) -> Chunk:
    """Rebuild a provenance-only chunk for rows read back from a cold store."""
    return Chunk(
        file_path=file_path,
        start_line=start_line,
        end_line=end_line,
        chunk_index=0,
        chunk_count=0,
        sha256=chunk_id,
        content=content,
        tokens_estimated=tokens_estimated,
        file_type="text",
    )


@dataclasses.dataclass
class RetrievedChunk:
    """A scored hit. ``source`` is ``"hot"`` or the cold driver's name."""

    score: float
    chunk: ChunkEmbedding
    source: str

    @property
    def id(self) -> str:
        return self.chunk.id


@dataclasses.dataclass
class ChunkingConfig:
    chunk_size_tokens: int = 800
    overlap_tokens: int = 200
    max_chunks_per_file: int = 200

    @classmethod
    def from_value(cls, value: Any) -> "ChunkingConfig":
        """Accept None, an existing config, or a (possibly partial) dict."""
        if value is None:
            return cls()
        if isinstance(value, cls):
            return value
        if isinstance(value, dict):
            base = cls()
            return cls(
                chunk_size_tokens=int(value.get("chunk_size_tokens", base.chunk_size_tokens)),
                overlap_tokens=int(value.get("overlap_tokens", base.overlap_tokens)),
                max_chunks_per_file=int(value.get("max_chunks_per_file", base.max_chunks_per_file)),
            )
        raise TypeError(f"Unsupported chunking config: {type(value).__name__}")
