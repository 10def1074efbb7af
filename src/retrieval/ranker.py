"""Post-retrieval rescoring: semantic rerank and work-context boosting."""

from dataclasses import replace
import logging
import math
from typing import Sequence

from .config import DEFAULT_RETRIEVAL_CONFIG, RetrievalConfig
from .types import SearchResult, WorkContextFilters

log = logging.getLogger(__name__)


def cosine_similarity(a: Sequence[float], b: Sequence[float]) -> float:
    """Cosine of two vectors; 0.0 for empty, mismatched or zero-norm input."""
    if not a or not b or len(a) != len(b):
        return 0.0

    dot = 0.0
    norm_a = 0.0
    norm_b = 0.0
    for x, y in zip(a, b):
        dot += x * y
        norm_a += x * x
        norm_b += y * y

    if norm_a == 0.0 or norm_b == 0.0:
        return 0.0
    return dot / (math.sqrt(norm_a) * math.sqrt(norm_b))


def sort_by_score(results: Sequence[SearchResult]) -> list[SearchResult]:
    """Descending by score; equal scores keep their incoming order."""
    return sorted(results, key=lambda r: -r.score)


class Reranker:
    """Blend the store's score with query/document cosine similarity."""

    def __init__(self, config: RetrievalConfig = DEFAULT_RETRIEVAL_CONFIG):
        self.original_weight = config.rerank_original_weight
        self.semantic_weight = config.rerank_semantic_weight

    def rerank(
        self,
        results: Sequence[SearchResult],
        query_vector: Sequence[float] | None,
    ) -> list[SearchResult]:
        if len(results) <= 1:
            return list(results)
        if not query_vector:
            log.debug("Rerank skipped: no query embedding")
            return list(results)

        rescored: list[SearchResult] = []
        for result in results:
            doc_vector = result.document.vector
            if doc_vector:
                similarity = cosine_similarity(query_vector, doc_vector)
                result = replace(
                    result,
                    score=result.score * self.original_weight
                    + similarity * self.semantic_weight,
                )
            rescored.append(result)

        return sort_by_score(rescored)


class ContextBooster:
    """Multiply scores of results that touch the caller's active work.

    Each matching criterion (active file, open ticket, branch) applies the
    boost factor independently, so a result matching all three gets factor**3.
    """

    def __init__(self, config: RetrievalConfig = DEFAULT_RETRIEVAL_CONFIG):
        self.factor = config.context_boost_factor

    def boost(
        self,
        results: Sequence[SearchResult],
        work_context: WorkContextFilters | None,
    ) -> list[SearchResult]:
        if work_context is None:
            return list(results)

        open_tickets = set(work_context.open_ticket_ids)
        boosted: list[SearchResult] = []
        for result in results:
            info = result.document.info
            score = result.score

            if work_context.active_file and info.file_path == work_context.active_file:
                score *= self.factor
            if open_tickets and info.ticket_id and info.ticket_id in open_tickets:
                score *= self.factor
            if work_context.git_branch and info.git_branch == work_context.git_branch:
                score *= self.factor

            boosted.append(replace(result, score=score))

        return sort_by_score(boosted)
