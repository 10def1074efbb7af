"""Hybrid search orchestration: cache, embed, store search, post-processing."""

from dataclasses import replace
import logging
import time
from typing import Any, Protocol, Sequence

from .cache import SearchCache
from .config import DEFAULT_RETRIEVAL_CONFIG, RetrievalConfig
from .errors import InvalidInputError, UpstreamError
from .ranker import ContextBooster, Reranker
from .types import (
    SearchFilters,
    SearchResponse,
    SearchResult,
    WorkContext,
    WorkContextFilters,
)

log = logging.getLogger(__name__)


class QueryEmbedder(Protocol):
    def embed(self, text: str) -> list[float]: ...


class SearchStore(Protocol):
    def search_hybrid(
        self,
        query: str,
        vector: Sequence[float],
        *,
        limit: int,
        offset: int = 0,
        filters: dict[str, Any] | None = None,
    ) -> list[SearchResult]: ...

    def count(self) -> int: ...


def build_store_filters(
    filters: SearchFilters | None,
    work_context: WorkContext | None,
) -> dict[str, Any]:
    """Translate request filters into the vector-store filter map.

    Request-level work context is applied last, so its branch replaces the
    filter-level branch when both are set.
    """
    store_filters: dict[str, Any] = {}

    if filters is not None:
        if filters.source_types:
            store_filters["source_types"] = list(filters.source_types)
        if filters.date_range is not None:
            store_filters["date_range"] = filters.date_range.to_filter()

        wc = filters.work_context
        if wc is not None:
            if wc.active_file:
                store_filters["related_files"] = wc.active_file
            if wc.git_branch:
                store_filters["git_branch"] = wc.git_branch
            if wc.open_ticket_ids:
                store_filters["ticket_ids"] = list(wc.open_ticket_ids)
            if wc.current_story_id:
                store_filters["story_ids"] = [wc.current_story_id]

    if work_context is not None:
        if work_context.active_file:
            store_filters["boost_file"] = work_context.active_file
        if work_context.git_branch:
            store_filters["git_branch"] = work_context.git_branch
        if work_context.open_ticket_ids:
            store_filters["boost_tickets"] = list(work_context.open_ticket_ids)

    return store_filters


def merge_work_context(
    filters: SearchFilters | None,
    work_context: WorkContext | None,
) -> WorkContextFilters | None:
    """Work context used for boosting; request-level fields win."""
    base = filters.work_context if filters is not None else None
    if work_context is None:
        return base
    if base is None:
        base = WorkContextFilters()

    return replace(
        base,
        active_file=work_context.active_file or base.active_file,
        git_branch=work_context.git_branch or base.git_branch,
        open_ticket_ids=work_context.open_ticket_ids or base.open_ticket_ids,
    )


class HybridRetriever:
    """Entry point for the context search tool."""

    def __init__(
        self,
        embedder: QueryEmbedder,
        store: SearchStore,
        cache: SearchCache | None = None,
        config: RetrievalConfig = DEFAULT_RETRIEVAL_CONFIG,
    ):
        self.embedder = embedder
        self.store = store
        self.cache = cache
        self.config = config
        self.reranker = Reranker(config)
        self.booster = ContextBooster(config)

    def search(
        self,
        query: str,
        *,
        top_k: int | None = None,
        offset: int | None = None,
        filters: SearchFilters | None = None,
        work_context: WorkContext | None = None,
    ) -> SearchResponse:
        if not query or not query.strip():
            raise InvalidInputError("query is required")

        limit = self.config.clamp_top_k(top_k)
        start = self.config.clamp_offset(offset)
        store_filters = build_store_filters(filters, work_context)
        cache_filters = {**store_filters, "limit": limit, "offset": start}
        started = time.perf_counter()

        cached = None
        if self.cache is not None:
            cached, _ = self.cache.get(query, cache_filters)

        if cached is not None:
            results = list(cached.results)
            query_vector = cached.query_vector
            query_time_ms = cached.query_time_ms
            log.debug(f"Search cache hit for '{query[:50]}'")
        else:
            try:
                query_vector = self.embedder.embed(query)
            except Exception as exc:
                log.error(f"Query embedding failed: {exc}")
                raise UpstreamError("embedding", str(exc)) from exc

            try:
                results = self.store.search_hybrid(
                    query,
                    query_vector,
                    limit=limit,
                    offset=start,
                    filters=store_filters,
                )
            except Exception as exc:
                log.error(f"Hybrid search failed: {exc}")
                raise UpstreamError("search", str(exc)) from exc

            query_time_ms = (time.perf_counter() - started) * 1000.0
            if self.cache is not None:
                self.cache.set(
                    query, cache_filters, results, query_time_ms, query_vector
                )

        boost_context = merge_work_context(filters, work_context)
        if boost_context is not None and boost_context.boost_active:
            results = self.booster.boost(results, boost_context)

        results = self.reranker.rerank(results, query_vector)

        try:
            total = self.store.count()
        except Exception as exc:
            log.warning(f"Vector store count failed, using page size: {exc}")
            total = len(results)

        log.info(
            f"Search: returned {len(results)}/{limit} results for '{query[:50]}' "
            f"(cache_hit={cached is not None})"
        )

        return SearchResponse(
            results=tuple(results),
            total_count=total,
            query_time_ms=query_time_ms,
            offset=start,
            limit=limit,
            has_more=start + len(results) < total,
            cache_hit=cached is not None,
        )
