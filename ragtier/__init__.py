"""Tiered (hot/cold) vector index for retrieval over project files."""

import logging

from .config import load_config
from .core import Chunk, ChunkEmbedding, RetrievedChunk, chunk_file_content, ingest_and_chunk_paths, make_embedder
from .indexing import IncrementalIndexResult, build_index, incremental_index
from .search import RetrievalResult, retrieve_by_embedding, retrieve_with_promotion
from .storage import ColdDriverError, ColdIndexDriver, HotIndex, create_cold_driver, create_cold_drivers

logging.getLogger(__name__).addHandler(logging.NullHandler())

__version__ = "0.1.0"

__all__ = [
    "Chunk",
    "ChunkEmbedding",
    "ColdDriverError",
    "ColdIndexDriver",
    "HotIndex",
    "IncrementalIndexResult",
    "RetrievalResult",
    "RetrievedChunk",
    "build_index",
    "chunk_file_content",
    "create_cold_driver",
    "create_cold_drivers",
    "incremental_index",
    "ingest_and_chunk_paths",
    "load_config",
    "make_embedder",
    "retrieve_by_embedding",
    "retrieve_with_promotion",
]
