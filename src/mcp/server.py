"""Context Engine MCP Server.

Exposes hybrid context search and related-info discovery as MCP tools.
"""

import logging
import time
from typing import Any

from mcp.server.fastmcp import FastMCP

from ..related.aggregator import RelatedInfoAggregator
from ..related.git_history import GitError, GitHistoryMiner
from ..retrieval.cache import SearchCache
from ..retrieval.config import DEFAULT_RETRIEVAL_CONFIG, RetrievalConfig
from ..retrieval.errors import ContextError
from ..retrieval.pipeline import HybridRetriever
from ..retrieval.types import SearchFilters, WorkContext
from ..vector.embedder import DEFAULT_MODEL, Embedder
from ..vector.store import DocumentStore

log = logging.getLogger(__name__)

mcp = FastMCP(
    "Context Engine",
    instructions="""
Context retrieval over an indexed codebase and its linked tickets, PRs and discussions.

Use context.search for hybrid semantic + keyword search. Pass work_context
(active_file, git_branch, open_ticket_ids) to boost results relevant to the
current task.
Use context.get_related_info with a file_path to find its tests, docs and
neighbouring code, or with a ticket_id to mine git history for that ticket.
""",
)

retriever: HybridRetriever | None = None
aggregator: RelatedInfoAggregator | None = None
config: RetrievalConfig = DEFAULT_RETRIEVAL_CONFIG


def init_server(
    db_path: str = "data/context.db",
    repo_path: str | None = None,
    embedding_model: str = DEFAULT_MODEL,
    retrieval_config: RetrievalConfig = DEFAULT_RETRIEVAL_CONFIG,
):
    """Initialize server with the embedder, document store and git miner."""
    global retriever, aggregator, config
    config = retrieval_config
    embedder = Embedder(embedding_model)
    store = DocumentStore(db_path, dimensions=embedder.dimensions, config=config)
    cache = SearchCache(config.cache_ttl_seconds, config.cache_capacity)

    retriever = HybridRetriever(embedder, store, cache=cache, config=config)
    aggregator = RelatedInfoAggregator(
        embedder,
        store,
        miner=GitHistoryMiner(config),
        repo_path=repo_path,
        config=config,
    )
    log.info(f"Context server ready: db={db_path}, repo={aggregator.repo_path}")


def _require_retriever() -> HybridRetriever:
    """Get retriever or raise error."""
    if retriever is None:
        raise RuntimeError("Server not initialized. Call init_server() first.")
    return retriever


def _require_aggregator() -> RelatedInfoAggregator:
    """Get aggregator or raise error."""
    if aggregator is None:
        raise RuntimeError("Server not initialized. Call init_server() first.")
    return aggregator


def _failure(exc: Exception) -> dict:
    error_type = getattr(exc, "error_type", "upstream_failure")
    return {"success": False, "error": str(exc), "error_type": error_type}


@mcp.tool(name="context.search")
def context_search(
    query: str,
    top_k: int = 20,
    offset: int = 0,
    filters: dict[str, Any] | None = None,
    work_context: dict[str, Any] | None = None,
) -> dict:
    """Search indexed code and documents.

    Args:
        query: Natural-language or identifier query
        top_k: Page size (default 20, at most 100)
        offset: Number of results to skip for pagination
        filters: Optional {source_types, date_range: {from, to}, work_context}
        work_context: Optional {active_file, git_branch, open_ticket_ids}; these
            override the same fields inside filters.work_context

    Returns:
        Dict with results [{id, content, score, source_type, metadata}],
        total_count, query_time_ms, offset, limit, has_more
    """
    r = _require_retriever()
    try:
        response = r.search(
            query,
            top_k=top_k,
            offset=offset,
            filters=SearchFilters.from_dict(filters),
            work_context=WorkContext.from_dict(work_context),
        )
    except ContextError as exc:
        return _failure(exc)

    return {"success": True, **response.to_dict()}


@mcp.tool(name="context.get_related_info")
def get_related_info(
    file_path: str | None = None,
    ticket_id: str | None = None,
) -> dict:
    """Find information related to a file or a ticket.

    Provide exactly one identifier. A file path returns its tests, docs,
    symbol definitions and nearby code. A ticket ID mines git branches and
    commit messages for the ticket and returns chunks of the files it touched
    plus linked PRs, issues and discussions.

    Args:
        file_path: Indexed file path, relative to the indexed root
        ticket_id: Ticket identifier such as PROJ-123

    Returns:
        Dict with summary, related_prs, related_issues, discussions, related_items
    """
    a = _require_aggregator()
    deadline = time.monotonic() + config.git_timeout_seconds
    try:
        response = a.get_related_info(
            file_path=file_path, ticket_id=ticket_id, deadline=deadline
        )
    except (ContextError, GitError) as exc:
        return _failure(exc)

    return {"success": True, **response.to_dict()}


def run(transport: str = "stdio"):
    """Serve over stdio (default) or SSE."""
    import asyncio

    if transport == "sse":
        asyncio.run(mcp.run_sse_async())
    else:
        asyncio.run(mcp.run_stdio_async())


def main():
    """Run the MCP server (stdio transport)."""
    import os

    init_server(
        db_path=os.environ.get("CONTEXT_DB", "data/context.db"),
        repo_path=os.environ.get("CONTEXT_REPO_PATH") or None,
        embedding_model=os.environ.get("CONTEXT_EMBEDDING_MODEL", DEFAULT_MODEL),
    )

    run(os.environ.get("CONTEXT_TRANSPORT", "stdio"))


if __name__ == "__main__":
    main()
