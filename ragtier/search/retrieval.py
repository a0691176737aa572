"""Blend hot and cold tier results for one query vector."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Sequence

from ..core.models import RetrievedChunk
from ..storage.base import ColdIndexDriver, passes_threshold
from ..storage.hot_index import HotIndex

logger = logging.getLogger(__name__)

HOT_SOURCE = "hot"


@dataclass
class RetrievalResult:
    """Merged, ranked hits plus bookkeeping about where they came from."""

    hits: List[RetrievedChunk] = field(default_factory=list)
    used: Dict[str, int] = field(default_factory=lambda: {"from_hot": 0, "from_cold": 0})
    queried: Dict[str, int] = field(default_factory=lambda: {"hot": 0, "cold_drivers": 0})
    citations: List[str] = field(default_factory=list)

    @property
    def ids(self) -> List[str]:
        return [h.id for h in self.hits]


def format_citation(hit: RetrievedChunk) -> str:
    c = hit.chunk
    return f"{c.file_path}:{c.start_line}-{c.end_line} (via {hit.source})"


def _query_hot(hot: HotIndex, vector: Sequence[float], top_k: int, model_filter: Optional[str]) -> List[RetrievedChunk]:
    return [
        RetrievedChunk(score=score, chunk=emb, source=HOT_SOURCE)
        for score, emb in hot.query(vector, top_k, model_filter=model_filter)
    ]


def retrieve_by_embedding(
    vector: Sequence[float],
    hot: Optional[HotIndex] = None,
    colds: Optional[List[ColdIndexDriver]] = None,
    top_k_hot: Optional[int] = None,
    top_k: int = 8,
    min_results: Optional[int] = None,
    model_filter: Optional[str] = None,
    score_threshold: Optional[float] = None,
    promote_from_cold: bool = False,
) -> RetrievalResult:
    """Query the hot tier, fall back to every cold driver, merge and rank.

    Cold drivers are only consulted when fewer than ``min_results`` hot hits
    pass ``score_threshold``; then all of them are queried in list order.
    On an id present in both tiers the hot hit is kept. Driver errors
    propagate to the caller.

    Args:
        vector: Query embedding
        hot: Hot tier (skipped when None)
        colds: Cold drivers
        top_k_hot: Hot candidates to fetch (defaults to ``top_k``)
        top_k: Number of merged hits to return
        min_results: Hot hits needed to skip the cold tier (defaults to ``min(4, top_k)``)
        model_filter: Only keep hits embedded by this model
        score_threshold: Drop hits scoring below this
        promote_from_cold: Upsert every surviving cold hit into ``hot``

    Returns:
        RetrievalResult with hits sorted by score, hot first on ties
    """
    result = RetrievalResult()
    if not len(vector) or top_k <= 0:
        return result

    colds = colds or []
    top_k_hot = top_k if top_k_hot is None else top_k_hot
    min_results = min(4, top_k) if min_results is None else max(0, min_results)

    # 1) hot
    hot_hits: List[RetrievedChunk] = []
    if hot is not None:
        result.queried["hot"] = 1
        if top_k_hot > 0:
            hot_hits = _query_hot(hot, vector, top_k_hot, model_filter)
    good_hot = [h for h in hot_hits if passes_threshold(h.score, score_threshold)]

    # 2) cold, only when hot falls short
    cold_hits: List[RetrievedChunk] = []
    if colds and len(good_hot) < min_results:
        for driver in colds:
            found = driver.search(
                list(vector),
                top_k=top_k,
                model_filter=model_filter,
                score_threshold=score_threshold,
            )
            result.queried["cold_drivers"] += 1
            logger.debug(f"Cold driver '{driver.name}' returned {len(found)} hits")
            cold_hits.extend(found)

    # 3) merge by id; hot is authoritative, first cold driver wins among colds
    merged: Dict[str, RetrievedChunk] = {}
    for hit in hot_hits:
        merged.setdefault(hit.id, hit)
    for hit in cold_hits:
        if hit.id not in merged:
            merged[hit.id] = hit

    # 4) final filter
    survivors = [
        h for h in merged.values()
        if passes_threshold(h.score, score_threshold)
        and (not model_filter or h.chunk.model == model_filter)
    ]

    # 5) rank
    survivors.sort(key=lambda h: (-h.score, 0 if h.source == HOT_SOURCE else 1))
    hits = survivors[:top_k]

    result.hits = hits
    result.used["from_hot"] = sum(1 for h in hits if h.source == HOT_SOURCE)
    result.used["from_cold"] = len(hits) - result.used["from_hot"]
    result.citations = [format_citation(h) for h in hits]

    # 6) unconditional write-through
    if promote_from_cold and hot is not None:
        promoted = [h.chunk for h in hits if h.source != HOT_SOURCE]
        if promoted:
            hot.upsert(promoted)
            logger.debug(f"Promoted {len(promoted)} cold hits into the hot index")

    logger.info(
        f"Retrieved {len(hits)} hits ({result.used['from_hot']} hot, {result.used['from_cold']} cold; "
        f"{result.queried['cold_drivers']} cold drivers queried)"
    )
    return result
