"""Semantic search functionality."""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Dict, List, Optional

from ..config import hot_index_dir
from ..core import Embedder, make_embedder
from ..core.models import RetrievedChunk
from ..storage import ColdIndexDriver, HotIndex, create_cold_drivers, load_hot_index
from .base import Searcher
from .promotion import retrieve_with_promotion
from .retrieval import RetrievalResult, retrieve_by_embedding

logger = logging.getLogger(__name__)


class DefaultSearcher(Searcher):
    """Embeds the query text and runs a tiered retrieval.

    Collaborators not passed in are built from config on first use.
    Usage-gated promotion is applied unless ``use_promotion`` is False.
    """

    def __init__(
        self,
        embedder: Optional[Embedder] = None,
        hot: Optional[HotIndex] = None,
        colds: Optional[List[ColdIndexDriver]] = None,
        use_promotion: bool = True,
    ):
        self.embedder = embedder
        self.hot = hot
        self.colds = colds
        self.use_promotion = use_promotion

    def search(
        self,
        repo: Path,
        cfg: Dict,
        query: str,
        top_k: Optional[int] = None,
    ) -> RetrievalResult:
        if self.embedder is None:
            self.embedder = make_embedder(cfg)
        if self.hot is None:
            self.hot = load_hot_index(cfg, hot_index_dir(cfg, repo))
        if self.colds is None:
            self.colds = create_cold_drivers(cfg)

        r_cfg = cfg.get("retrieval", {})
        options = dict(
            top_k=top_k or r_cfg.get("top_k", 8),
            top_k_hot=r_cfg.get("top_k_hot"),
            min_results=r_cfg.get("min_results"),
            score_threshold=r_cfg.get("score_threshold"),
            promote_from_cold=r_cfg.get("promote_from_cold", False),
            model_filter=self.embedder.model,
        )

        qv = self.embedder.embed_one(query)
        logger.debug(f"Searching for {query[:60]!r} with model {self.embedder.model}")
        if not self.use_promotion:
            return retrieve_by_embedding(qv, hot=self.hot, colds=self.colds, **options)
        return retrieve_with_promotion(
            qv,
            hot=self.hot,
            colds=self.colds,
            promote_threshold=r_cfg.get("promote_threshold", 3),
            hot_capacity=r_cfg.get("hot_capacity", 1000),
            **options,
        )


def search(repo: Path, cfg: Dict, query: str, top_k: Optional[int] = None) -> RetrievalResult:
    searcher = DefaultSearcher()
    return searcher.search(repo, cfg, query, top_k)


def format_hit(hit: RetrievedChunk, max_chars: int = 1200) -> str:
    snippet = hit.chunk.content
    if len(snippet) > max_chars:
        snippet = snippet[:max_chars] + "\n…(truncated)…\n"
    c = hit.chunk
    header = f"{hit.score:0.4f}  {c.file_path}:{c.start_line}-{c.end_line}  [{hit.source}]"
    return header + "\n" + snippet.rstrip() + "\n"
