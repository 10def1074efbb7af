"""Configuration for context retrieval and related-info discovery."""

from dataclasses import dataclass


@dataclass(frozen=True)
class RetrievalConfig:
    """Constants controlling search, ranking and relationship discovery."""

    default_top_k: int = 20
    max_top_k: int = 100

    cache_ttl_seconds: float = 300.0
    cache_capacity: int = 100

    rerank_original_weight: float = 0.7
    rerank_semantic_weight: float = 0.3
    context_boost_factor: float = 1.2

    # Store-side fusion of vector similarity and lexical overlap.
    vector_weight: float = 0.7
    keyword_weight: float = 0.3

    related_items_limit: int = 50
    chunk_fetch_workers: int = 8

    ticket_results_per_file: int = 5
    ticket_provenance_boost: float = 0.3
    ticket_search_limit: int = 20
    summary_commit_limit: int = 5
    commit_message_max_chars: int = 80
    discussion_summary_chars: int = 200

    max_commits: int = 1000
    git_timeout_seconds: float = 30.0

    def clamp_top_k(self, top_k: int | None) -> int:
        """Apply default and upper bound to a requested page size."""
        if top_k is None or top_k <= 0:
            return self.default_top_k
        if top_k > self.max_top_k:
            return self.max_top_k
        return top_k

    def clamp_offset(self, offset: int | None) -> int:
        """Negative or missing offsets start at the first result."""
        if offset is None or offset < 0:
            return 0
        return offset


DEFAULT_RETRIEVAL_CONFIG = RetrievalConfig()
