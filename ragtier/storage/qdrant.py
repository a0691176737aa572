"""Qdrant vector database backend."""

from __future__ import annotations

import logging
import uuid
from typing import Any, Dict, List, Optional

from ..core.models import ChunkEmbedding, RetrievedChunk
from .base import ColdDriverError, ColdIndexDriver, embedding_from_row, passes_threshold, payload_for

logger = logging.getLogger(__name__)

DEFAULT_COLLECTION = "ragtier_chunks"
DISTANCES = ("Cosine", "Dot", "Euclid")


def point_id_for(chunk_id: str) -> str:
    """Qdrant only accepts integer or UUID ids; derive a stable UUID from the chunk id."""
    return str(uuid.uuid5(uuid.NAMESPACE_URL, f"ragtier:{chunk_id}"))


class QdrantDriver(ColdIndexDriver):

    name = "qdrant"

    def __init__(
        self,
        url: Optional[str] = None,
        host: str = "localhost",
        port: int = 6333,
        api_key: Optional[str] = None,
        location: Optional[str] = None,
        path: Optional[str] = None,
        collection_name: str = DEFAULT_COLLECTION,
        distance: str = "Cosine",
        dim: Optional[int] = None,
        batch_size: int = 100,
        client: Any = None,
    ):
        if distance not in DISTANCES:
            raise ValueError(f"Unsupported Qdrant distance {distance!r}; expected one of {DISTANCES}")
        self.url = url
        self.host = host
        self.port = port
        self.api_key = api_key
        self.location = location
        self.path = path
        self.collection_name = collection_name
        self.distance = distance
        self.dim = dim
        self.batch_size = batch_size
        self.client = client
        self._owns_client = client is None
        self.have_collection = False

    def _connect(self) -> Any:
        from qdrant_client import QdrantClient

        if self.location:
            return QdrantClient(location=self.location)
        if self.path:
            return QdrantClient(path=self.path)
        if self.url:
            return QdrantClient(url=self.url, api_key=self.api_key)
        return QdrantClient(host=self.host, port=self.port, api_key=self.api_key)

    def init(self) -> None:
        if self.client is None:
            self.client = self._connect()
        if self.have_collection:
            return
        try:
            info = self.client.get_collection(collection_name=self.collection_name)
        except Exception:
            # not created yet; upsert creates it
            self.have_collection = False
            return
        self.have_collection = True
        size = getattr(getattr(info.config.params, "vectors", None), "size", None)
        if self.dim is None and isinstance(size, int):
            self.dim = size

    def _ensure_collection(self, vector_dim: int) -> None:
        from qdrant_client.models import Distance, VectorParams

        try:
            self.client.create_collection(
                collection_name=self.collection_name,
                vectors_config=VectorParams(size=vector_dim, distance=Distance(self.distance)),
            )
            logger.info(f"Created Qdrant collection '{self.collection_name}' (dim={vector_dim}, distance={self.distance})")
        except Exception as e:
            # another writer may have created it in the meantime
            if not self.client.collection_exists(collection_name=self.collection_name):
                raise ColdDriverError(self.name, "create_collection", str(e)) from e
        self.have_collection = True
        self.dim = vector_dim

    def upsert(self, chunks: List[ChunkEmbedding]) -> int:
        if not chunks:
            return 0
        self.init()

        vector_dim = self.dim or chunks[0].dim or len(chunks[0].vector)
        for c in chunks:
            if len(c.vector) != vector_dim:
                raise ValueError(
                    f"Chunk {c.id[:12]} at {c.file_path}:{c.start_line} has dimension "
                    f"{len(c.vector)}, expected {vector_dim}"
                )
        if not self.have_collection:
            self._ensure_collection(vector_dim)

        from qdrant_client.models import PointStruct

        points = [
            PointStruct(id=point_id_for(c.id), vector=list(c.vector), payload=payload_for(c))
            for c in chunks
        ]

        total_batches = (len(points) + self.batch_size - 1) // self.batch_size
        for i in range(0, len(points), self.batch_size):
            batch = points[i:i + self.batch_size]
            batch_num = i // self.batch_size + 1
            try:
                self.client.upsert(collection_name=self.collection_name, points=batch, wait=True)
                logger.debug(f"Uploaded batch {batch_num}/{total_batches}")
            except Exception as e:
                raise ColdDriverError(
                    self.name,
                    "upsert",
                    f"batch {batch_num}/{total_batches} (points {i}-{i + len(batch)}): {e}",
                ) from e

        logger.info(f"Upserted {len(points)} points into '{self.collection_name}'")
        return len(points)

    def _to_score(self, raw: float) -> float:
        if self.distance == "Euclid":
            return 1.0 / (1.0 + float(raw))
        return float(raw)

    def search(
        self,
        query_vector: List[float],
        top_k: int = 8,
        model_filter: Optional[str] = None,
        score_threshold: Optional[float] = None,
    ) -> List[RetrievedChunk]:
        self.init()
        if not self.have_collection or top_k <= 0 or not query_vector:
            return []

        from qdrant_client.models import FieldCondition, Filter, MatchValue

        query_filter = None
        if model_filter:
            query_filter = Filter(must=[FieldCondition(key="model", match=MatchValue(value=model_filter))])

        try:
            results = self.client.query_points(
                collection_name=self.collection_name,
                query=list(query_vector),
                limit=top_k,
                query_filter=query_filter,
                with_payload=True,
                with_vectors=True,
            )
        except Exception as e:
            raise ColdDriverError(self.name, "search", str(e)) from e

        hits: List[RetrievedChunk] = []
        for point in getattr(results, "points", []) or []:
            payload: Dict[str, Any] = point.payload or {}
            score = self._to_score(getattr(point, "score", 0.0))
            if not passes_threshold(score, score_threshold):
                continue
            vector = point.vector if isinstance(point.vector, list) else None
            chunk_id = str(payload.get("chunk_id") or point.id)
            hits.append(RetrievedChunk(score=score, chunk=embedding_from_row(chunk_id, payload, vector), source=self.name))

        hits.sort(key=lambda h: h.score, reverse=True)
        return hits

    def delete_by_ids(self, ids: List[str]) -> int:
        if not ids:
            return 0
        self.init()
        if not self.have_collection:
            return 0

        from qdrant_client.models import PointIdsList

        try:
            self.client.delete(
                collection_name=self.collection_name,
                points_selector=PointIdsList(points=[point_id_for(i) for i in ids]),
                wait=True,
            )
        except Exception as e:
            raise ColdDriverError(self.name, "delete", str(e)) from e
        logger.info(f"Deleted {len(ids)} points from '{self.collection_name}'")
        return len(ids)

    def close(self) -> None:
        """Close the client if this driver built it; an injected client stays with its owner."""
        self.have_collection = False
        if not self._owns_client:
            return
        close = getattr(self.client, "close", None)
        if callable(close):
            close()
        self.client = None


def make_qdrant_driver(cfg: Dict) -> QdrantDriver:
    qdrant_cfg = cfg.get("cold", {}).get("qdrant", {})
    return QdrantDriver(
        url=qdrant_cfg.get("url"),
        host=qdrant_cfg.get("host", "localhost"),
        port=int(qdrant_cfg.get("port", 6333)),
        api_key=qdrant_cfg.get("api_key"),
        location=qdrant_cfg.get("location"),
        path=qdrant_cfg.get("path"),
        collection_name=qdrant_cfg.get("collection") or DEFAULT_COLLECTION,
        distance=qdrant_cfg.get("distance", "Cosine"),
        dim=qdrant_cfg.get("dim"),
    )
