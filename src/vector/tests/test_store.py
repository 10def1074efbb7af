"""Tests for sqlite-vec document storage."""

from datetime import datetime, timezone
import sqlite3

import pytest

sqlite_vec = pytest.importorskip("sqlite_vec")

from src.retrieval.types import Document  # noqa: E402
from src.vector.store import DocumentStore, matches_filters  # noqa: E402


def _sqlite_vec_loads() -> bool:
    conn = sqlite3.connect(":memory:")
    try:
        conn.enable_load_extension(True)
        sqlite_vec.load(conn)
        return True
    except (AttributeError, sqlite3.OperationalError):
        return False
    finally:
        conn.close()


requires_sqlite_vec = pytest.mark.skipif(
    not _sqlite_vec_loads(), reason="sqlite-vec extension cannot be loaded"
)


def _doc(
    doc_id: str,
    vector: tuple[float, ...],
    content: str = "",
    **metadata,
) -> Document:
    return Document(
        id=doc_id,
        content=content or doc_id,
        vector=vector,
        metadata=metadata,
    )


@requires_sqlite_vec
class TestDocumentStore:
    """Tests for document storage and hybrid search."""

    @pytest.fixture
    def store(self, tmp_path):
        """Create a temporary 4-dimensional store."""
        return DocumentStore(tmp_path / "context.db", dimensions=4)

    def test_upsert_and_get(self, store):
        store.upsert(
            _doc(
                "a",
                (1.0, 0.0, 0.0, 0.0),
                "func Login()",
                file_path="src/auth.go",
                start_line=3,
            )
        )

        doc = store.get("a")
        assert doc is not None
        assert doc.content == "func Login()"
        assert doc.info.file_path == "src/auth.go"
        assert doc.info.start_line == 3
        assert doc.vector == pytest.approx((1.0, 0.0, 0.0, 0.0))
        assert doc.created_at is not None
        assert store.count() == 1

    def test_upsert_replaces_existing_id(self, store):
        store.upsert(_doc("a", (1.0, 0.0, 0.0, 0.0), "old", file_path="a.go"))
        store.upsert(_doc("a", (0.0, 1.0, 0.0, 0.0), "new", file_path="a.go"))

        assert store.count() == 1
        doc = store.get("a")
        assert doc.content == "new"
        assert doc.vector == pytest.approx((0.0, 1.0, 0.0, 0.0))

    def test_rejects_wrong_dimensions(self, store):
        with pytest.raises(ValueError):
            store.upsert(_doc("a", (1.0, 0.0)))

    def test_list_indexed_files(self, store):
        store.upsert_many(
            [
                _doc("b1", (1.0, 0.0, 0.0, 0.0), file_path="src/b.go"),
                _doc("a1", (1.0, 0.0, 0.0, 0.0), file_path="src/a.go"),
                _doc("a2", (1.0, 0.0, 0.0, 0.0), file_path="src/a.go"),
                _doc("pr", (1.0, 0.0, 0.0, 0.0), source_type="github_pr"),
            ]
        )

        assert store.list_indexed_files() == ["src/a.go", "src/b.go"]

    def test_get_file_chunks_sorted_by_start_line(self, store):
        store.upsert_many(
            [
                _doc("c3", (1.0, 0.0, 0.0, 0.0), file_path="a.go", start_line=101),
                _doc("c1", (1.0, 0.0, 0.0, 0.0), file_path="a.go", start_line=1),
                _doc("c2", (1.0, 0.0, 0.0, 0.0), file_path="a.go", start_line=51.0),
            ]
        )

        chunks = store.get_file_chunks("a.go")

        assert [c.id for c in chunks] == ["c1", "c2", "c3"]

    def test_delete_file_and_clear(self, store):
        store.upsert_many(
            [
                _doc("a1", (1.0, 0.0, 0.0, 0.0), file_path="a.go"),
                _doc("b1", (0.0, 1.0, 0.0, 0.0), file_path="b.go"),
            ]
        )

        assert store.delete_file("a.go") == 1
        assert store.list_indexed_files() == ["b.go"]

        store.clear()
        assert store.count() == 0

    def test_replace_file_swaps_chunks(self, store):
        store.upsert_many(
            [
                _doc("a#L1-L60", (1.0, 0.0, 0.0, 0.0), file_path="a.go"),
                _doc("a#L51-L90", (1.0, 0.0, 0.0, 0.0), file_path="a.go"),
            ]
        )

        written = store.replace_file(
            "a.go", [_doc("a#L1-L20", (0.0, 1.0, 0.0, 0.0), file_path="a.go")]
        )

        assert written == 1
        assert [c.id for c in store.get_file_chunks("a.go")] == ["a#L1-L20"]

    def test_failed_replace_keeps_old_chunks(self, store):
        store.upsert(_doc("old", (1.0, 0.0, 0.0, 0.0), "old body", file_path="a.go"))

        with pytest.raises(ValueError):
            store.replace_file(
                "a.go",
                [
                    _doc("new1", (1.0, 0.0, 0.0, 0.0), file_path="a.go"),
                    _doc("new2", (1.0, 0.0), file_path="a.go"),
                ],
            )

        assert [c.id for c in store.get_file_chunks("a.go")] == ["old"]
        assert store.count() == 1

    def test_search_hybrid_fuses_vector_and_keyword_scores(self, store):
        store.upsert_many(
            [
                _doc("auth", (1.0, 0.0, 0.0, 0.0), "auth login handler"),
                _doc("db", (0.0, 1.0, 0.0, 0.0), "database pool"),
            ]
        )

        results = store.search_hybrid("auth", [1.0, 0.0, 0.0, 0.0], limit=10)

        assert [r.document.id for r in results] == ["auth", "db"]
        assert results[0].score == pytest.approx(1.0, abs=1e-5)
        assert results[1].score == pytest.approx(0.0, abs=1e-5)
        assert results[0].document.vector == pytest.approx((1.0, 0.0, 0.0, 0.0))

    def test_search_hybrid_pagination(self, store):
        store.upsert_many(
            [
                _doc("near", (1.0, 0.0, 0.0, 0.0)),
                _doc("mid", (1.0, 1.0, 0.0, 0.0)),
                _doc("far", (0.0, 1.0, 0.0, 0.0)),
            ]
        )

        page = store.search_hybrid("zzz", [1.0, 0.0, 0.0, 0.0], limit=1, offset=1)

        assert [r.document.id for r in page] == ["mid"]

    def test_search_hybrid_filters(self, store):
        store.upsert_many(
            [
                _doc("file", (1.0, 0.0, 0.0, 0.0), file_path="a.go"),
                _doc(
                    "pr",
                    (0.9, 0.1, 0.0, 0.0),
                    source_type="github_pr",
                    ticket_id="PROJ-1",
                ),
            ]
        )
        vector = [1.0, 0.0, 0.0, 0.0]

        by_source = store.search_hybrid(
            "x", vector, limit=10, filters={"source_types": ["github_pr"]}
        )
        by_ticket = store.search_hybrid(
            "x", vector, limit=10, filters={"ticket_id": "PROJ-1"}
        )
        by_path = store.search_hybrid(
            "x", vector, limit=10, filters={"file_path": "a.go"}
        )
        boost_only = store.search_hybrid(
            "x", vector, limit=10, filters={"boost_file": "zzz.go"}
        )

        assert [r.document.id for r in by_source] == ["pr"]
        assert [r.document.id for r in by_ticket] == ["pr"]
        assert [r.document.id for r in by_path] == ["file"]
        assert len(boost_only) == 2

    def test_zero_limit_returns_nothing(self, store):
        store.upsert(_doc("a", (1.0, 0.0, 0.0, 0.0)))

        assert store.search_hybrid("a", [1.0, 0.0, 0.0, 0.0], limit=0) == []


class TestMatchesFilters:
    def test_story_and_branch_filters(self):
        doc = Document(
            id="d",
            content="",
            metadata={"git_branch": "main"},
            story_ids=("S-1",),
        )

        assert matches_filters(doc, {"story_ids": ["S-1", "S-2"], "git_branch": "main"})
        assert not matches_filters(doc, {"story_ids": ["S-3"]})
        assert not matches_filters(doc, {"git_branch": "dev"})

    def test_related_files_match_path_or_metadata(self):
        own = Document(id="a", content="", metadata={"file_path": "a.go"})
        linked = Document(
            id="b", content="", metadata={"related_files": ["a.go", "c.go"]}
        )
        other = Document(id="c", content="", metadata={"file_path": "c.go"})

        assert matches_filters(own, {"related_files": "a.go"})
        assert matches_filters(linked, {"related_files": "a.go"})
        assert not matches_filters(other, {"related_files": "a.go"})

    def test_date_range(self):
        doc = Document(
            id="d",
            content="",
            updated_at=datetime(2024, 3, 15, tzinfo=timezone.utc),
        )

        assert matches_filters(doc, {"date_range": {"from": "2024-03-01", "to": ""}})
        assert matches_filters(
            doc, {"date_range": {"from": "2024-03-15", "to": "2024-03-15T23:59:59Z"}}
        )
        assert not matches_filters(doc, {"date_range": {"from": "2024-04-01"}})

    def test_unknown_keys_compare_metadata(self):
        doc = Document(id="d", content="", metadata={"language": "go"})

        assert matches_filters(doc, {"language": "go"})
        assert not matches_filters(doc, {"language": "python"})
        assert matches_filters(doc, {})
