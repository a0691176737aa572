"""Tiered retrieval and promotion."""

from .base import Searcher
from .promotion import UsageStore, retrieve_with_promotion
from .retrieval import RetrievalResult, retrieve_by_embedding
from .searcher import DefaultSearcher, format_hit, search

__all__ = [
    "DefaultSearcher",
    "RetrievalResult",
    "Searcher",
    "UsageStore",
    "format_hit",
    "retrieve_by_embedding",
    "retrieve_with_promotion",
    "search",
]
