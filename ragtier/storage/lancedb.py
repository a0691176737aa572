"""Embedded LanceDB backend."""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Any, Dict, List, Optional, Union

from ..core.models import ChunkEmbedding, RetrievedChunk
from ..utils import ensure_dir
from .base import ColdDriverError, ColdIndexDriver, embedding_from_row, passes_threshold, payload_for

logger = logging.getLogger(__name__)

DEFAULT_TABLE = "rag_chunks"
DEFAULT_SUBDIR = "lancedb"
DISTANCES = ("cosine", "dot", "l2")


def _quote(value: str) -> str:
    return "'" + value.replace("'", "''") + "'"


class LanceDBDriver(ColdIndexDriver):

    name = "lancedb"

    def __init__(
        self,
        base_dir: Union[str, Path],
        table: str = DEFAULT_TABLE,
        distance: str = "cosine",
    ):
        if distance not in DISTANCES:
            raise ValueError(f"Unsupported LanceDB distance {distance!r}; expected one of {DISTANCES}")
        self.base_dir = Path(base_dir)
        self.table_name = table
        self.distance = distance
        self.db: Any = None
        self.table: Any = None

    def init(self) -> None:
        if self.db is None:
            import lancedb

            ensure_dir(self.base_dir)
            self.db = lancedb.connect(str(self.base_dir))
        if self.table is None:
            try:
                self.table = self.db.open_table(self.table_name)
            except Exception:
                # created on first upsert, once the dimension is known
                self.table = None

    def _create_table(self, vector_dim: int) -> Any:
        import pyarrow as pa

        schema = pa.schema([
            pa.field("id", pa.string(), nullable=False),
            pa.field("vector", pa.list_(pa.float32(), vector_dim)),
            pa.field("model", pa.string()),
            pa.field("file_path", pa.string()),
            pa.field("start_line", pa.int32()),
            pa.field("end_line", pa.int32()),
            pa.field("dim", pa.int32()),
            pa.field("tokens_estimated", pa.int32()),
            pa.field("content", pa.string()),
        ])
        try:
            table = self.db.create_table(self.table_name, schema=schema, exist_ok=True)
        except Exception as e:
            raise ColdDriverError(self.name, "create_table", str(e)) from e
        logger.info(f"Created LanceDB table '{self.table_name}' in {self.base_dir} (dim={vector_dim})")
        return table

    def upsert(self, chunks: List[ChunkEmbedding]) -> int:
        if not chunks:
            return 0
        self.init()
        if self.table is None:
            self.table = self._create_table(chunks[0].dim or len(chunks[0].vector))

        rows = []
        for c in chunks:
            row = payload_for(c)
            row["id"] = row.pop("chunk_id")
            row["vector"] = [float(x) for x in c.vector]
            rows.append(row)

        try:
            (
                self.table.merge_insert("id")
                .when_matched_update_all()
                .when_not_matched_insert_all()
                .execute(rows)
            )
        except Exception as e:
            raise ColdDriverError(self.name, "upsert", str(e)) from e
        logger.debug(f"Merged {len(rows)} rows into '{self.table_name}'")
        return len(rows)

    def _to_score(self, distance: float) -> float:
        if self.distance == "l2":
            return 1.0 / (1.0 + distance)
        return 1.0 - distance

    def search(
        self,
        query_vector: List[float],
        top_k: int = 8,
        model_filter: Optional[str] = None,
        score_threshold: Optional[float] = None,
    ) -> List[RetrievedChunk]:
        self.init()
        if self.table is None or top_k <= 0 or not query_vector:
            return []

        try:
            query = self.table.search(list(query_vector)).distance_type(self.distance)
            if model_filter:
                query = query.where(f"model = {_quote(model_filter)}", prefilter=True)
            rows = query.limit(top_k).to_list()
        except Exception as e:
            raise ColdDriverError(self.name, "search", str(e)) from e

        hits: List[RetrievedChunk] = []
        for row in rows:
            score = self._to_score(float(row.get("_distance", 0.0)))
            if not passes_threshold(score, score_threshold):
                continue
            vector = row.get("vector")
            vector = vector.tolist() if hasattr(vector, "tolist") else list(vector or [])
            hits.append(RetrievedChunk(score=score, chunk=embedding_from_row(str(row["id"]), row, vector), source=self.name))
        hits.sort(key=lambda h: h.score, reverse=True)
        return hits

    def delete_by_ids(self, ids: List[str]) -> int:
        if not ids:
            return 0
        self.init()
        if self.table is None:
            return 0
        predicate = "id IN (" + ", ".join(_quote(i) for i in ids) + ")"
        try:
            self.table.delete(predicate)
        except Exception as e:
            raise ColdDriverError(self.name, "delete", str(e)) from e
        return len(ids)

    def close(self) -> None:
        self.table = None
        self.db = None


def make_lancedb_driver(cfg: Dict[str, Any], base_dir: Optional[Union[str, Path]] = None) -> LanceDBDriver:
    from ..config import cold_index_dir

    lance_cfg = cfg.get("cold", {}).get("lancedb", {})
    repo = cfg.get("repo")
    if base_dir is None:
        base_dir = lance_cfg.get("dir") or cold_index_dir(cfg, Path(repo) if repo else None) / DEFAULT_SUBDIR
    return LanceDBDriver(
        base_dir=base_dir,
        table=lance_cfg.get("table", DEFAULT_TABLE),
        distance=lance_cfg.get("distance", "cosine"),
    )
