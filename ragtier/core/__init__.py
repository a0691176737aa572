"""Core functionality for ragtier."""

from .models import Chunk, ChunkEmbedding, ChunkingConfig, RetrievedChunk
from .chunking import (
    Chunker,
    ChunksSummary,
    DefaultChunker,
    chunk_file_content,
    count_tokens,
    detect_file_type,
    ingest_and_chunk_paths,
)
from .embeddings import (
    Embedder,
    EmbeddingError,
    HttpEmbedder,
    SentenceTransformersEmbedder,
    embed_chunks,
    make_embedder,
)

__all__ = [
    "Chunk",
    "ChunkEmbedding",
    "ChunkingConfig",
    "RetrievedChunk",
    "Chunker",
    "ChunksSummary",
    "DefaultChunker",
    "chunk_file_content",
    "count_tokens",
    "detect_file_type",
    "ingest_and_chunk_paths",
    "Embedder",
    "EmbeddingError",
    "HttpEmbedder",
    "SentenceTransformersEmbedder",
    "embed_chunks",
    "make_embedder",
]
