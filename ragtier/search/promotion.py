"""Usage-gated promotion of cold hits into the hot tier."""

from __future__ import annotations

import logging
import time
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional, Sequence, Union

from ..core.models import ChunkEmbedding
from ..storage.base import ColdIndexDriver
from ..storage.hot_index import HotIndex
from ..utils import read_json, write_private_json
from .retrieval import HOT_SOURCE, RetrievalResult, retrieve_by_embedding

logger = logging.getLogger(__name__)

USAGE_FILENAME = "usage.v1.json"
USAGE_VERSION = 1


class UsageStore:
    """Per-chunk retrieval counters persisted as ``usage.v1.json``."""

    def __init__(self, base_dir: Union[str, Path]):
        self.base_dir = Path(base_dir)
        self.file_path = self.base_dir / USAGE_FILENAME
        self.counts: Dict[str, int] = {}
        self.last_access: Dict[str, float] = {}

    def load(self) -> "UsageStore":
        self.counts, self.last_access = {}, {}
        data = read_json(self.file_path)
        if data is None:
            return self
        if not isinstance(data, dict) or data.get("version") != USAGE_VERSION:
            logger.warning(f"Ignoring usage record with unknown format: {self.file_path}")
            return self
        counts = data.get("counts") or {}
        last_access = data.get("lastAccess") or {}
        if isinstance(counts, dict) and isinstance(last_access, dict):
            try:
                self.counts = {str(k): int(v) for k, v in counts.items()}
                self.last_access = {str(k): float(v) for k, v in last_access.items()}
            except (TypeError, ValueError) as e:
                logger.warning(f"Usage record {self.file_path} is corrupt ({e}); starting empty")
                self.counts, self.last_access = {}, {}
        return self

    def save(self) -> None:
        write_private_json(
            self.file_path,
            {"version": USAGE_VERSION, "counts": self.counts, "lastAccess": self.last_access},
        )

    def bump(self, ids: Iterable[str], now_ms: Optional[float] = None) -> None:
        now_ms = time.time() * 1000.0 if now_ms is None else now_ms
        for chunk_id in ids:
            self.counts[chunk_id] = self.counts.get(chunk_id, 0) + 1
            self.last_access[chunk_id] = now_ms

    def count(self, chunk_id: str) -> int:
        return self.counts.get(chunk_id, 0)

    def prune(self, ids: Iterable[str]) -> int:
        """Forget the given ids; returns how many entries were removed."""
        removed = 0
        for chunk_id in ids:
            if self.counts.pop(chunk_id, None) is not None:
                removed += 1
            self.last_access.pop(chunk_id, None)
        return removed


def default_usage_dir() -> Path:
    from ..config import DEFAULT_CONFIG, hot_index_dir

    return hot_index_dir(DEFAULT_CONFIG, Path.cwd())


def retrieve_with_promotion(
    vector: Sequence[float],
    hot: Optional[HotIndex] = None,
    colds: Optional[List[ColdIndexDriver]] = None,
    promote_threshold: int = 3,
    hot_capacity: int = 1000,
    base_dir: Optional[Union[str, Path]] = None,
    **retrieval_options: Any,
) -> RetrievalResult:
    """Retrieve, count every returned id, and promote popular cold hits.

    A returned item not sourced from hot and not yet in hot is upserted
    into hot once its usage count reaches ``promote_threshold``. The usage
    record is written through on every call.
    """
    if base_dir is None:
        base_dir = hot.dir if hot is not None and hot.dir is not None else default_usage_dir()
    base_dir = Path(base_dir)
    threshold = max(1, int(promote_threshold))

    usage = UsageStore(base_dir).load()
    if hot is None:
        hot = HotIndex(dir=base_dir, capacity=max(1, int(hot_capacity)))

    result = retrieve_by_embedding(vector, hot=hot, colds=colds, **retrieval_options)

    usage.bump(result.ids)
    usage.save()

    to_promote: List[ChunkEmbedding] = [
        h.chunk for h in result.hits
        if h.source != HOT_SOURCE and not hot.has(h.id) and usage.count(h.id) >= threshold
    ]
    if to_promote:
        hot.upsert(to_promote)
        logger.info(f"Promoted {len(to_promote)} chunks into the hot index (threshold={threshold})")

    return result
