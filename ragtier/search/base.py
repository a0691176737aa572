"""Searcher Interface."""

from __future__ import annotations

from pathlib import Path
from typing import Dict, Optional

from .retrieval import RetrievalResult


class Searcher:
    """Abstract base class for text-query search over the tiered index."""

    def search(
        self,
        repo: Path,
        cfg: Dict,
        query: str,
        top_k: Optional[int] = None,
    ) -> RetrievalResult:
        """Search for chunks semantically similar to query.

        Args:
            repo: Repository root path
            cfg: Configuration dictionary
            query: Search query text
            top_k: Number of results to return (defaults to ``retrieval.top_k``)

        Returns:
            RetrievalResult sorted by relevance
        """
        raise NotImplementedError
