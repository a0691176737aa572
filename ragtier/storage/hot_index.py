"""Bounded in-memory vector cache (the hot tier)."""

from __future__ import annotations

import dataclasses
import logging
import time
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional, Sequence, Tuple, Union

import numpy as np

from ..core.models import Chunk, ChunkEmbedding
from ..utils import ensure_dir, read_json, write_private_json

logger = logging.getLogger(__name__)

SNAPSHOT_VERSION = 1
DEFAULT_CAPACITY = 50_000
DEFAULT_FILENAME = "index.json"


def _now_ms() -> float:
    return time.time() * 1000.0


def _l2norm(vector: np.ndarray) -> float:
    n = float(np.linalg.norm(vector))
    return n if n > 0 else 1e-12


@dataclasses.dataclass
class HotIndexItem:
    embedding: ChunkEmbedding
    vector: np.ndarray
    norm: float
    uses: int = 0
    last_used_at: float = 0.0
    inserted_at: float = 0.0

    def to_dict(self) -> Dict[str, Any]:
        e = self.embedding
        return {
            "id": e.id,
            "model": e.model,
            "filePath": e.file_path,
            "startLine": e.start_line,
            "endLine": e.end_line,
            "dim": e.dim,
            "vector": [float(x) for x in e.vector],
            "norm": self.norm,
            "tokensEstimated": e.tokens_estimated,
            "uses": self.uses,
            "lastUsedAt": self.last_used_at,
            "insertedAt": self.inserted_at,
            "chunk": e.chunk.to_dict() if e.chunk is not None else None,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "HotIndexItem":
        vector = [float(x) for x in data["vector"]]
        chunk = Chunk.from_dict(data["chunk"]) if data.get("chunk") else None
        embedding = ChunkEmbedding(
            id=str(data["id"]),
            vector=vector,
            dim=int(data.get("dim", len(vector))),
            model=str(data.get("model", "")),
            file_path=str(data.get("filePath", "")),
            start_line=int(data.get("startLine", 1)),
            end_line=int(data.get("endLine", 1)),
            tokens_estimated=int(data.get("tokensEstimated", 0)),
            chunk=chunk,
        )
        arr = np.asarray(vector, dtype=np.float64)
        return cls(
            embedding=embedding,
            vector=arr,
            norm=float(data.get("norm") or _l2norm(arr)),
            uses=int(data.get("uses", 0)),
            last_used_at=float(data.get("lastUsedAt", 0.0)),
            inserted_at=float(data.get("insertedAt", data.get("lastUsedAt", 0.0))),
        )


class HotIndex:
    """Capacity-bounded cosine index with usage-based eviction.

    Replacing an existing id keeps its ``uses`` and ``inserted_at`` and
    refreshes ``last_used_at``. Eviction drops the least used items first,
    then the least recently used, then the oldest inserted.
    """

    def __init__(
        self,
        dir: Optional[Union[str, Path]] = None,
        capacity: int = DEFAULT_CAPACITY,
        autosave: bool = True,
        filename: str = DEFAULT_FILENAME,
    ):
        self.capacity = max(1, int(capacity))
        self.autosave = autosave
        self.dir = Path(dir) if dir is not None else None
        self.file_path = self.dir / filename if self.dir is not None else None
        self._items: Dict[str, HotIndexItem] = {}
        self._load_if_exists()

    # -- persistence ---------------------------------------------------------

    def _load_if_exists(self) -> None:
        if self.file_path is None:
            return
        data = read_json(self.file_path)
        if data is None:
            return
        if not isinstance(data, dict) or data.get("version") != SNAPSHOT_VERSION or not isinstance(data.get("items"), list):
            logger.warning(f"Ignoring hot index snapshot with unknown format: {self.file_path}")
            return
        try:
            for raw in data["items"]:
                item = HotIndexItem.from_dict(raw)
                self._items[item.embedding.id] = item
        except (KeyError, TypeError, ValueError, AttributeError) as e:
            logger.warning(f"Hot index snapshot {self.file_path} is corrupt ({e}); starting empty")
            self._items.clear()
            return
        logger.debug(f"Loaded {len(self._items)} hot items from {self.file_path}")
        self._evict_if_needed()

    def _save(self) -> None:
        if self.file_path is None:
            return
        ensure_dir(self.file_path.parent)
        payload = {
            "version": SNAPSHOT_VERSION,
            "capacity": self.capacity,
            "items": [item.to_dict() for item in self._items.values()],
        }
        write_private_json(self.file_path, payload, indent=None)

    def _autosave(self) -> None:
        if self.autosave:
            self._save()

    def flush(self) -> None:
        """Persist immediately (handy if autosave is off)."""
        self._save()

    # -- eviction ------------------------------------------------------------

    def _evict_if_needed(self, protected: Iterable[str] = ()) -> List[str]:
        overflow = len(self._items) - self.capacity
        if overflow <= 0:
            return []
        keep = set(protected)
        candidates = [item for item in self._items.values() if item.embedding.id not in keep]
        # sorted() is stable, so equal keys keep insertion order
        victims = sorted(candidates, key=lambda it: (it.uses, it.last_used_at, it.inserted_at))[:overflow]
        for victim in victims:
            del self._items[victim.embedding.id]
        evicted = [v.embedding.id for v in victims]
        logger.debug(f"Evicted {len(evicted)} hot items (capacity={self.capacity})")
        return evicted

    # -- mutation ------------------------------------------------------------

    def upsert(self, items: Sequence[ChunkEmbedding]) -> int:
        """Insert or replace items by id; returns how many were written."""
        batch: Dict[str, ChunkEmbedding] = {}
        for emb in items:
            batch.pop(emb.id, None)
            batch[emb.id] = emb
        if not batch:
            return 0
        if len(batch) > self.capacity:
            logger.warning(
                f"Hot index upsert of {len(batch)} items exceeds capacity {self.capacity}; "
                f"keeping the last {self.capacity}"
            )
            batch = dict(list(batch.items())[-self.capacity:])

        now = _now_ms()
        for emb in batch.values():
            vector = np.asarray(emb.vector, dtype=np.float64)
            existing = self._items.get(emb.id)
            self._items[emb.id] = HotIndexItem(
                embedding=emb,
                vector=vector,
                norm=_l2norm(vector),
                uses=existing.uses if existing else 0,
                last_used_at=now,
                inserted_at=existing.inserted_at if existing else now,
            )

        self._evict_if_needed(protected=batch.keys())
        self._autosave()
        return len(batch)

    def resize(self, capacity: int) -> None:
        """Change the capacity, evicting to fit if needed."""
        self.capacity = max(1, int(capacity))
        self._evict_if_needed()
        self._autosave()

    def delete(self, chunk_id: str) -> bool:
        removed = self._items.pop(chunk_id, None) is not None
        if removed:
            self._autosave()
        return removed

    def clear(self) -> None:
        self._items.clear()
        self._autosave()

    # -- lookup --------------------------------------------------------------

    def has(self, chunk_id: str) -> bool:
        return chunk_id in self._items

    def get(self, chunk_id: str) -> Optional[ChunkEmbedding]:
        item = self._items.get(chunk_id)
        return item.embedding if item is not None else None

    def usage(self, chunk_id: str) -> Optional[Tuple[int, float]]:
        """Return ``(uses, last_used_at)`` for an id, or None."""
        item = self._items.get(chunk_id)
        return (item.uses, item.last_used_at) if item is not None else None

    def size(self) -> int:
        return len(self._items)

    def __len__(self) -> int:
        return len(self._items)

    def __contains__(self, chunk_id: object) -> bool:
        return chunk_id in self._items

    def query(
        self,
        vector: Sequence[float],
        top_k: int,
        model_filter: Optional[Union[str, Iterable[str]]] = None,
    ) -> List[Tuple[float, ChunkEmbedding]]:
        """Brute-force cosine search.

        Args:
            vector: Query vector
            top_k: Maximum number of results
            model_filter: Restrict to items embedded by this model (or models)

        Returns:
            List of (score, ChunkEmbedding) sorted by score, highest first
        """
        if top_k <= 0 or len(vector) == 0 or not self._items:
            return []

        if model_filter is None:
            models = None
        elif isinstance(model_filter, str):
            models = {model_filter}
        else:
            models = set(model_filter)

        query = np.asarray(vector, dtype=np.float64)
        dim = query.shape[0]
        candidates = [
            item for item in self._items.values()
            if item.vector.shape[0] == dim and (models is None or item.embedding.model in models)
        ]
        if not candidates:
            return []

        matrix = np.vstack([item.vector for item in candidates])
        norms = np.array([item.norm for item in candidates])
        scores = matrix @ query / (norms * _l2norm(query))

        # stable sort keeps insertion order among equal scores
        order = np.argsort(-scores, kind="stable")[:top_k]

        now = _now_ms()
        results: List[Tuple[float, ChunkEmbedding]] = []
        for idx in order:
            item = candidates[int(idx)]
            item.uses += 1
            item.last_used_at = now
            results.append((float(scores[idx]), item.embedding))

        self._autosave()
        return results


def load_hot_index(cfg: Dict, dir: Union[str, Path], capacity: Optional[int] = None) -> HotIndex:
    """Build a HotIndex from the ``hot_index`` config section."""
    hot_cfg = cfg.get("hot_index", {})
    return HotIndex(
        dir=dir,
        capacity=capacity or hot_cfg.get("capacity", DEFAULT_CAPACITY),
        autosave=hot_cfg.get("autosave", True),
        filename=hot_cfg.get("filename", DEFAULT_FILENAME),
    )
