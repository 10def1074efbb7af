"""Hybrid context search with caching, reranking and work-context boosting."""

from typing import Any

from .errors import ContextError, InvalidInputError, UpstreamError

__all__ = [
    "ContextError",
    "InvalidInputError",
    "UpstreamError",
    "HybridRetriever",
    "SearchCache",
]


def __getattr__(name: str) -> Any:
    if name == "HybridRetriever":
        from .pipeline import HybridRetriever

        return HybridRetriever
    if name == "SearchCache":
        from .cache import SearchCache

        return SearchCache
    raise AttributeError(name)
