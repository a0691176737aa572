"""PostgreSQL + pgvector backend, built on SQLAlchemy Core."""

from __future__ import annotations

import logging
import os
from typing import Any, Dict, List, Optional

from sqlalchemy import (
    Column,
    Index,
    Integer,
    MetaData,
    Table,
    Text,
    create_engine,
    delete,
    inspect,
    select,
    text,
)
from sqlalchemy.engine import Engine

from ..core.models import ChunkEmbedding, RetrievedChunk
from .base import ColdDriverError, ColdIndexDriver, embedding_from_row, passes_threshold, payload_for

logger = logging.getLogger(__name__)

DEFAULT_TABLE = "ragtier_chunks"

# distance -> (pgvector operator class, comparator method on the vector column)
DISTANCE_OPS = {
    "cosine": ("vector_cosine_ops", "cosine_distance"),
    "ip": ("vector_ip_ops", "max_inner_product"),
    "l2": ("vector_l2_ops", "l2_distance"),
}


def similarity_from_distance(distance: str, d: float) -> float:
    """Map a pgvector distance to a higher-is-better score.

    ``<=>`` is cosine distance, ``<#>`` is the negated inner product and
    ``<->`` is euclidean distance.
    """
    if distance == "cosine":
        return 1.0 - d
    if distance == "ip":
        return -d
    return 1.0 / (1.0 + d)


class PgVectorDriver(ColdIndexDriver):
    """Cold driver storing chunk vectors in a pgvector column.

    The extension, schema, table and indexes are created on the first
    upsert; the vector dimension comes from the first chunk unless ``dim``
    is given.
    """

    name = "pgvector"

    def __init__(
        self,
        url: Optional[str] = None,
        schema: Optional[str] = "public",
        table: str = DEFAULT_TABLE,
        distance: str = "cosine",
        dim: Optional[int] = None,
        create_ann_index: bool = True,
        ivf_lists: int = 100,
        batch_size: int = 500,
        engine: Optional[Engine] = None,
    ):
        if distance not in DISTANCE_OPS:
            raise ValueError(f"Unsupported pgvector distance {distance!r}; expected one of {sorted(DISTANCE_OPS)}")
        self.url = url
        self.schema = schema
        self.table_name = table
        self.distance = distance
        self.dim = dim if dim and dim > 0 else None
        self.create_ann_index = create_ann_index
        self.ivf_lists = max(1, int(ivf_lists))
        self.batch_size = max(1, batch_size)
        self.engine = engine
        self.have_table = False
        self._table: Optional[Table] = None

    def init(self) -> None:
        if self.engine is None:
            url = self.url or os.getenv("DATABASE_URL") or os.getenv("PGURL")
            if not url:
                raise ValueError("pgvector driver needs a connection url (cold.pgvector.url, DATABASE_URL or PGURL)")
            self.engine = create_engine(url, pool_pre_ping=True)
        if self.have_table:
            return
        try:
            self.have_table = inspect(self.engine).has_table(self.table_name, schema=self.schema)
        except Exception as e:
            # unreachable or not bootstrapped; upsert will try to create it
            logger.debug(f"pgvector table probe failed: {e}")
            self.have_table = False

    def _get_table(self) -> Table:
        if self._table is not None:
            return self._table

        from pgvector.sqlalchemy import Vector

        opclass, _ = DISTANCE_OPS[self.distance]
        metadata = MetaData(schema=self.schema)
        table = Table(
            self.table_name,
            metadata,
            Column("id", Text, primary_key=True),
            Column("vector", Vector(self.dim), nullable=False),
            Column("model", Text, nullable=False),
            Column("file_path", Text, nullable=False),
            Column("start_line", Integer, nullable=False),
            Column("end_line", Integer, nullable=False),
            Column("dim", Integer, nullable=False),
            Column("tokens_estimated", Integer, nullable=False),
            Column("content", Text, nullable=False, server_default=""),
            Index(f"{self.table_name}_model_idx", "model"),
        )
        if self.create_ann_index:
            Index(
                f"{self.table_name}_vector_ivfflat_idx",
                table.c.vector,
                postgresql_using="ivfflat",
                postgresql_with={"lists": self.ivf_lists},
                postgresql_ops={"vector": opclass},
            )
        self._table = table
        return table

    def _ensure_schema(self, vector_dim: int) -> None:
        self.dim = vector_dim
        self._table = None
        table = self._get_table()
        try:
            with self.engine.begin() as conn:
                conn.execute(text("CREATE EXTENSION IF NOT EXISTS vector"))
                if self.schema:
                    conn.execute(text(f'CREATE SCHEMA IF NOT EXISTS "{self.schema}"'))
                table.metadata.create_all(conn, tables=[table], checkfirst=True)
        except Exception as e:
            raise ColdDriverError(self.name, "create_table", str(e)) from e
        self.have_table = True
        logger.info(f"Created pgvector table '{self.table_name}' (dim={vector_dim}, distance={self.distance})")

    def upsert(self, chunks: List[ChunkEmbedding]) -> int:
        if not chunks:
            return 0
        self.init()

        vector_dim = self.dim or chunks[0].dim or len(chunks[0].vector)
        if not self.have_table:
            self._ensure_schema(vector_dim)

        from sqlalchemy.dialects.postgresql import insert

        table = self._get_table()
        rows = []
        for c in chunks:
            payload = payload_for(c)
            rows.append({
                "id": c.id,
                "vector": list(c.vector),
                "model": payload["model"],
                "file_path": payload["file_path"],
                "start_line": payload["start_line"],
                "end_line": payload["end_line"],
                "dim": payload["dim"],
                "tokens_estimated": payload["tokens_estimated"],
                "content": payload["content"],
            })

        try:
            with self.engine.begin() as conn:
                for i in range(0, len(rows), self.batch_size):
                    stmt = insert(table).values(rows[i:i + self.batch_size])
                    stmt = stmt.on_conflict_do_update(
                        index_elements=[table.c.id],
                        set_={col: stmt.excluded[col] for col in rows[0] if col != "id"},
                    )
                    conn.execute(stmt)
        except Exception as e:
            raise ColdDriverError(self.name, "upsert", str(e)) from e

        logger.info(f"Upserted {len(rows)} rows into '{self.table_name}'")
        return len(rows)

    def search(
        self,
        query_vector: List[float],
        top_k: int = 8,
        model_filter: Optional[str] = None,
        score_threshold: Optional[float] = None,
    ) -> List[RetrievedChunk]:
        self.init()
        if not self.have_table or top_k <= 0 or not query_vector:
            return []

        table = self._get_table()
        _, comparator = DISTANCE_OPS[self.distance]
        d = getattr(table.c.vector, comparator)(list(query_vector)).label("d")
        stmt = select(table, d)
        if model_filter:
            stmt = stmt.where(table.c.model == model_filter)
        stmt = stmt.order_by(d).limit(top_k)

        try:
            with self.engine.connect() as conn:
                rows = conn.execute(stmt).mappings().all()
        except Exception as e:
            raise ColdDriverError(self.name, "search", str(e)) from e

        hits: List[RetrievedChunk] = []
        for row in rows:
            score = similarity_from_distance(self.distance, float(row["d"]))
            if not passes_threshold(score, score_threshold):
                continue
            vector = row["vector"]
            vector = vector.tolist() if hasattr(vector, "tolist") else list(vector or [])
            chunk = embedding_from_row(str(row["id"]), dict(row), vector)
            hits.append(RetrievedChunk(score=score, chunk=chunk, source=self.name))
        return hits

    def delete_by_ids(self, ids: List[str]) -> int:
        if not ids:
            return 0
        self.init()
        if not self.have_table:
            return 0
        table = self._get_table()
        try:
            with self.engine.begin() as conn:
                conn.execute(delete(table).where(table.c.id.in_(list(ids))))
        except Exception as e:
            raise ColdDriverError(self.name, "delete", str(e)) from e
        return len(ids)

    def close(self) -> None:
        if self.engine is not None:
            self.engine.dispose()


def make_pgvector_driver(cfg: Dict[str, Any]) -> PgVectorDriver:
    pg_cfg = cfg.get("cold", {}).get("pgvector", {})
    return PgVectorDriver(
        url=pg_cfg.get("url"),
        schema=pg_cfg.get("schema", "public"),
        table=pg_cfg.get("table", DEFAULT_TABLE),
        distance=pg_cfg.get("distance", "cosine"),
        dim=pg_cfg.get("dim"),
        create_ann_index=pg_cfg.get("create_ann_index", True),
        ivf_lists=pg_cfg.get("ivf_lists", 100),
    )
