"""Embedding models for semantic search."""

from __future__ import annotations

import logging
import os
import random
import time
from dataclasses import dataclass
from typing import Callable, Dict, List, Optional

import requests

from .models import Chunk, ChunkEmbedding

logger = logging.getLogger(__name__)

DEFAULT_ST_MODEL = "sentence-transformers/all-MiniLM-L6-v2"


class EmbeddingError(RuntimeError):
    """Raised when the embedding backend fails after all retries."""


class Embedder:
    """Abstract base class for embedding models."""

    @property
    def model(self) -> str:
        """Identifier stamped on every ChunkEmbedding this embedder produces."""
        raise NotImplementedError

    def embed(self, texts: List[str]) -> List[List[float]]:
        """Embed multiple texts into vectors."""
        raise NotImplementedError

    def embed_one(self, text: str) -> List[float]:
        """Embed a single text into a vector."""
        return self.embed([text])[0]


class SentenceTransformersEmbedder(Embedder):
    """Embedder using SentenceTransformers library."""

    def __init__(self, model_name: str) -> None:
        from sentence_transformers import SentenceTransformer  # type: ignore
        self.model_name = model_name
        self._model = SentenceTransformer(model_name)

    @property
    def model(self) -> str:
        return self.model_name

    def embed(self, texts: List[str]) -> List[List[float]]:
        """Embed texts using SentenceTransformers model."""
        if not texts:
            return []
        arr = self._model.encode(texts, normalize_embeddings=True, show_progress_bar=False)
        return [row.tolist() for row in arr]


@dataclass
class HttpEmbedderConfig:
    api_base: str = "https://api.openai.com/v1"
    model: str = "text-embedding-3-large"
    api_key_env: str = "OPENAI_API_KEY"
    timeout: int = 60


class HttpEmbedder(Embedder):
    """Embedder for OpenAI-compatible ``/embeddings`` endpoints."""

    def __init__(self, config: HttpEmbedderConfig | None = None):
        self.config = config or HttpEmbedderConfig()
        api_key = os.getenv(self.config.api_key_env)
        self.headers = {"Content-Type": "application/json"}
        if api_key:
            self.headers["Authorization"] = f"Bearer {api_key}"

    @property
    def model(self) -> str:
        return self.config.model

    def embed(self, texts: List[str]) -> List[List[float]]:
        if not texts:
            return []
        url = f"{self.config.api_base.rstrip('/')}/embeddings"
        payload = {"model": self.config.model, "input": texts}
        response = requests.post(url, headers=self.headers, json=payload, timeout=self.config.timeout)
        response.raise_for_status()
        data = response.json()
        rows = data.get("data")
        if not isinstance(rows, list) or len(rows) != len(texts):
            raise EmbeddingError(f"Unexpected embeddings response format: {str(data)[:200]}")
        rows = sorted(rows, key=lambda r: r.get("index", 0))
        return [[float(x) for x in r["embedding"]] for r in rows]


def make_embedder(cfg: Dict) -> Embedder:
    """Create embedder from config.

    Args:
        cfg: Configuration dictionary

    Returns:
        Embedder instance

    Raises:
        ValueError: If the backend name is unknown
        EmbeddingError: If the backend cannot be loaded
    """
    emb_cfg = cfg.get("embedding", {})
    backend = str(emb_cfg.get("backend", "sentence_transformers")).strip().lower()

    if backend == "http":
        http_cfg = emb_cfg.get("http", {})
        defaults = HttpEmbedderConfig()
        return HttpEmbedder(
            HttpEmbedderConfig(
                api_base=http_cfg.get("api_base", defaults.api_base),
                model=http_cfg.get("model", defaults.model),
                api_key_env=http_cfg.get("api_key_env", defaults.api_key_env),
                timeout=int(http_cfg.get("timeout", defaults.timeout)),
            )
        )

    if backend != "sentence_transformers":
        raise ValueError(f"Invalid embedding.backend: {backend!r}")

    model_name = emb_cfg.get("sentence_transformers_model", DEFAULT_ST_MODEL)
    try:
        return SentenceTransformersEmbedder(model_name)
    except ImportError as e:
        raise EmbeddingError(
            "Could not load sentence-transformers. "
            "Install it with: pip install 'ragtier[local]'"
        ) from e


def batch_embed(
    embedder: Embedder,
    texts: List[str],
    batch_size: int = 64,
    max_retries: int = 2,
    backoff_base_ms: int = 200,
    jitter: bool = True,
    sleep: Optional[Callable[[float], None]] = None,
) -> List[List[float]]:
    """Embed ``texts`` in batches, retrying each batch with exponential backoff."""
    sleep = sleep or time.sleep
    batch_size = max(1, batch_size)
    out: List[List[float]] = []
    total_batches = (len(texts) + batch_size - 1) // batch_size

    for i in range(0, len(texts), batch_size):
        batch = texts[i:i + batch_size]
        batch_num = i // batch_size + 1
        attempt = 0
        while True:
            try:
                vectors = embedder.embed(batch)
                break
            except Exception as e:
                attempt += 1
                if attempt > max_retries:
                    raise EmbeddingError(
                        f"Failed to embed batch {batch_num}/{total_batches} "
                        f"after {attempt} attempts: {e}"
                    ) from e
                delay_ms = backoff_base_ms * 2 ** (attempt - 1)
                if jitter:
                    delay_ms += random.randint(0, backoff_base_ms)
                logger.warning(f"Embedding batch {batch_num}/{total_batches} failed ({e}); retrying in {delay_ms}ms")
                sleep(delay_ms / 1000.0)

        if len(vectors) != len(batch):
            raise EmbeddingError(
                f"Embedder returned {len(vectors)} vectors for {len(batch)} texts"
            )
        out.extend(vectors)
        logger.debug(f"Embedded batch {batch_num}/{total_batches}")

    return out


def embed_chunks(
    embedder: Embedder,
    chunks: List[Chunk],
    batch_size: int = 64,
    max_retries: int = 2,
    backoff_base_ms: int = 200,
    jitter: bool = True,
    sleep: Optional[Callable[[float], None]] = None,
) -> List[ChunkEmbedding]:
    """Embed chunks and stamp each result with the embedder's model id."""
    if not chunks:
        return []
    vectors = batch_embed(
        embedder,
        [c.content for c in chunks],
        batch_size=batch_size,
        max_retries=max_retries,
        backoff_base_ms=backoff_base_ms,
        jitter=jitter,
        sleep=sleep,
    )
    model = embedder.model
    return [ChunkEmbedding.from_chunk(c, v, model) for c, v in zip(chunks, vectors)]
