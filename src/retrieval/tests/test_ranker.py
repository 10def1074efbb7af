import pytest

from src.retrieval.ranker import ContextBooster, Reranker, cosine_similarity
from src.retrieval.types import Document, SearchResult, WorkContextFilters


def _result(
    doc_id: str,
    score: float,
    *,
    vector: tuple[float, ...] = (),
    **metadata,
) -> SearchResult:
    return SearchResult(
        document=Document(id=doc_id, content=doc_id, vector=vector, metadata=metadata),
        score=score,
    )


def _ids(results: list[SearchResult]) -> list[str]:
    return [r.document.id for r in results]


def test_cosine_similarity_edge_cases():
    assert cosine_similarity([1.0, 0.0], [1.0, 0.0]) == pytest.approx(1.0)
    assert cosine_similarity([1.0, 0.0], [0.0, 1.0]) == pytest.approx(0.0)
    assert cosine_similarity([1.0, 0.0], [1.0, 0.0, 0.0]) == 0.0
    assert cosine_similarity([], [1.0]) == 0.0
    assert cosine_similarity([0.0, 0.0], [1.0, 0.0]) == 0.0


class TestReranker:
    def test_empty_results(self):
        assert Reranker().rerank([], [1.0, 0.0]) == []

    def test_single_result_is_unchanged(self):
        results = [_result("a", 0.4, vector=(0.0, 1.0))]

        reranked = Reranker().rerank(results, [1.0, 0.0])

        assert reranked[0].score == 0.4

    def test_missing_query_vector_is_silent_noop(self):
        results = [_result("a", 0.4, vector=(1.0, 0.0)), _result("b", 0.9)]

        reranked = Reranker().rerank(results, None)

        assert _ids(reranked) == ["a", "b"]
        assert [r.score for r in reranked] == [0.4, 0.9]

    def test_blends_original_and_semantic_scores(self):
        results = [
            _result("a", 0.9, vector=(0.0, 1.0)),
            _result("b", 0.8, vector=(1.0, 0.0)),
        ]

        reranked = Reranker().rerank(results, [1.0, 0.0])

        assert _ids(reranked) == ["b", "a"]
        assert reranked[0].score == pytest.approx(0.8 * 0.7 + 0.3)
        assert reranked[1].score == pytest.approx(0.9 * 0.7)

    def test_results_without_vectors_keep_their_score(self):
        results = [_result("a", 0.5), _result("b", 0.6, vector=(1.0, 0.0, 0.0))]

        reranked = Reranker().rerank(results, [1.0, 0.0])

        by_id = {r.document.id: r.score for r in reranked}
        assert by_id["a"] == 0.5
        assert by_id["b"] == pytest.approx(0.6 * 0.7)

    def test_ties_keep_original_order(self):
        results = [
            _result("first", 0.5, vector=(1.0, 0.0)),
            _result("second", 0.5, vector=(1.0, 0.0)),
            _result("third", 0.5, vector=(1.0, 0.0)),
        ]

        reranked = Reranker().rerank(results, [1.0, 0.0])

        assert _ids(reranked) == ["first", "second", "third"]


class TestContextBooster:
    def test_no_context_is_noop(self):
        results = [_result("a", 0.2), _result("b", 0.5)]

        assert _ids(ContextBooster().boost(results, None)) == ["a", "b"]

    def test_boosts_compound_per_matching_criterion(self):
        context = WorkContextFilters(
            active_file="src/auth.go",
            git_branch="feature/login",
            open_ticket_ids=("PROJ-1",),
        )
        results = [
            _result("plain", 0.9),
            _result(
                "all",
                0.5,
                file_path="src/auth.go",
                ticket_id="PROJ-1",
                git_branch="feature/login",
            ),
            _result("file", 0.5, file_path="src/auth.go"),
        ]

        boosted = ContextBooster().boost(results, context)

        by_id = {r.document.id: r.score for r in boosted}
        assert by_id["all"] == pytest.approx(0.5 * 1.2**3)
        assert by_id["file"] == pytest.approx(0.6)
        assert by_id["plain"] == 0.9
        assert _ids(boosted) == ["plain", "all", "file"]

    def test_boost_reorders_results(self):
        context = WorkContextFilters(open_ticket_ids=("PROJ-9",))
        results = [_result("other", 0.55), _result("ticket", 0.5, ticket_id="PROJ-9")]

        boosted = ContextBooster().boost(results, context)

        assert _ids(boosted) == ["ticket", "other"]

    def test_does_not_mutate_input(self):
        context = WorkContextFilters(active_file="a.py")
        results = [_result("a", 0.5, file_path="a.py")]

        ContextBooster().boost(results, context)

        assert results[0].score == 0.5
