"""Per-file record of the last successful indexing pass."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Set, Union

from ..utils import read_json, write_private_json

logger = logging.getLogger(__name__)

MANIFEST_FILENAME = "manifest.v1.json"
MANIFEST_VERSION = 1


@dataclass
class ManifestEntry:
    mtime_ms: float
    size: int
    model: str
    chunk_ids: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "mtimeMs": self.mtime_ms,
            "size": self.size,
            "model": self.model,
            "chunkIds": list(self.chunk_ids),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ManifestEntry":
        return cls(
            mtime_ms=float(data["mtimeMs"]),
            size=int(data["size"]),
            model=str(data.get("model", "")),
            chunk_ids=[str(i) for i in data.get("chunkIds", [])],
        )

    def matches(self, size: int, mtime_ms: float) -> bool:
        return self.size == size and self.mtime_ms == mtime_ms


@dataclass
class Manifest:
    files: Dict[str, ManifestEntry] = field(default_factory=dict)

    def live_chunk_ids(self) -> Set[str]:
        ids: Set[str] = set()
        for entry in self.files.values():
            ids.update(entry.chunk_ids)
        return ids

    def to_dict(self) -> Dict[str, Any]:
        return {
            "version": MANIFEST_VERSION,
            "files": {rel: entry.to_dict() for rel, entry in sorted(self.files.items())},
        }


def manifest_path(manifest_dir: Union[str, Path]) -> Path:
    return Path(manifest_dir) / MANIFEST_FILENAME


def load_manifest(manifest_dir: Union[str, Path]) -> Manifest:
    """Load the manifest; anything unreadable yields an empty one (full rebuild)."""
    path = manifest_path(manifest_dir)
    data = read_json(path)
    if data is None:
        return Manifest()
    if not isinstance(data, dict) or data.get("version") != MANIFEST_VERSION or not isinstance(data.get("files"), dict):
        logger.warning(f"Ignoring manifest with unknown format: {path}")
        return Manifest()
    try:
        files = {str(rel): ManifestEntry.from_dict(entry) for rel, entry in data["files"].items()}
    except (KeyError, TypeError, ValueError, AttributeError) as e:
        logger.warning(f"Manifest {path} is corrupt ({e}); rebuilding from scratch")
        return Manifest()
    return Manifest(files=files)


def save_manifest(manifest: Manifest, manifest_dir: Union[str, Path]) -> None:
    write_private_json(manifest_path(manifest_dir), manifest.to_dict())
