"""Indexing functionality for ragtier."""

from .indexer import DefaultIndexer, IncrementalIndexResult, build_index, incremental_index
from .ingest import Attachment, IngestionSummary, ingest_paths
from .manifest import Manifest, ManifestEntry, load_manifest, save_manifest

__all__ = [
    "Attachment",
    "DefaultIndexer",
    "IncrementalIndexResult",
    "IngestionSummary",
    "Manifest",
    "ManifestEntry",
    "build_index",
    "incremental_index",
    "ingest_paths",
    "load_manifest",
    "save_manifest",
]
