"""SQLite-vec document storage with hybrid (vector + keyword) search."""

from datetime import datetime, timezone
import json
import logging
import sqlite3
import struct
from pathlib import Path
from typing import Any, Iterable, Iterator, Sequence

import sqlite_vec

from ..retrieval.config import DEFAULT_RETRIEVAL_CONFIG, RetrievalConfig
from ..retrieval.tokenize import keyword_overlap_score
from ..retrieval.types import Document, SearchResult

log = logging.getLogger(__name__)

# Filter keys consumed by result boosting rather than by the store.
BOOST_ONLY_FILTERS = frozenset({"boost_file", "boost_tickets"})
MIN_CANDIDATE_POOL = 50

_COLUMNS = (
    "d.id, d.content, d.metadata, d.created_at, d.updated_at, "
    "d.story_ids, d.pr_numbers, v.embedding"
)


def serialize_vector(vec: Sequence[float]) -> bytes:
    """Serialize a vector to bytes for sqlite-vec."""
    return struct.pack(f"{len(vec)}f", *vec)


def deserialize_vector(blob: bytes | None) -> tuple[float, ...]:
    if not blob:
        return ()
    return struct.unpack(f"{len(blob) // 4}f", blob)


def _parse_time(value: str | None) -> datetime | None:
    if not value:
        return None
    try:
        return datetime.fromisoformat(value)
    except ValueError:
        return None


def _format_time(value: datetime | None) -> str:
    return (value or datetime.now(timezone.utc)).isoformat()


def _as_list(value: Any) -> list[Any]:
    if value is None:
        return []
    if isinstance(value, (list, tuple, set, frozenset)):
        return list(value)
    return [value]


def matches_filters(document: Document, filters: dict[str, Any] | None) -> bool:
    """Metadata filtering applied to each candidate document.

    Unrecognized keys fall back to equality against the metadata value.
    """
    if not filters:
        return True

    info = document.info
    for key, expected in filters.items():
        if key in BOOST_ONLY_FILTERS or expected in (None, "", [], ()):
            continue

        if key == "source_types":
            if info.source_type not in _as_list(expected):
                return False
        elif key == "file_path":
            if info.file_path != expected:
                return False
        elif key == "related_files":
            related = _as_list(document.metadata.get("related_files"))
            if info.file_path != expected and expected not in related:
                return False
        elif key == "git_branch":
            if info.git_branch != expected:
                return False
        elif key == "ticket_id":
            if info.ticket_id != expected:
                return False
        elif key == "ticket_ids":
            if info.ticket_id not in _as_list(expected):
                return False
        elif key == "story_ids":
            if not set(document.story_ids) & set(_as_list(expected)):
                return False
        elif key == "date_range":
            if not _in_date_range(document, expected):
                return False
        elif document.metadata.get(key) != expected:
            return False

    return True


def _in_date_range(document: Document, date_range: dict[str, str]) -> bool:
    stamp = document.updated_at or document.created_at
    if stamp is None:
        return False
    value = stamp.date().isoformat()
    lower = (date_range.get("from") or "")[:10]
    upper = (date_range.get("to") or "")[:10]
    if lower and value < lower:
        return False
    if upper and value > upper:
        return False
    return True


class DocumentStore:
    """SQLite-vec backed storage for indexed chunks and connector documents."""

    def __init__(
        self,
        db_path: Path | str,
        dimensions: int = 384,
        config: RetrievalConfig = DEFAULT_RETRIEVAL_CONFIG,
    ):
        self.db_path = Path(db_path)
        self.dimensions = dimensions
        self.config = config
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        self._init_db()

    def _init_db(self):
        """Initialize the database schema."""
        conn = self._get_conn()
        try:
            conn.execute("""
                CREATE TABLE IF NOT EXISTS documents (
                    pk INTEGER PRIMARY KEY,
                    id TEXT UNIQUE NOT NULL,
                    content TEXT NOT NULL,
                    file_path TEXT NOT NULL DEFAULT '',
                    source_type TEXT NOT NULL DEFAULT 'file',
                    metadata TEXT NOT NULL DEFAULT '{}',
                    created_at TEXT,
                    updated_at TEXT,
                    story_ids TEXT NOT NULL DEFAULT '[]',
                    pr_numbers TEXT NOT NULL DEFAULT '[]'
                )
            """)
            conn.execute("""
                CREATE INDEX IF NOT EXISTS idx_documents_file_path
                ON documents(file_path)
            """)
            conn.execute(f"""
                CREATE VIRTUAL TABLE IF NOT EXISTS document_vectors USING vec0(
                    embedding float[{self.dimensions}]
                )
            """)
            conn.commit()
        finally:
            conn.close()

    def _get_conn(self) -> sqlite3.Connection:
        """Get a connection with sqlite-vec loaded."""
        conn = sqlite3.connect(self.db_path)
        conn.enable_load_extension(True)
        sqlite_vec.load(conn)
        conn.enable_load_extension(False)
        return conn

    # =========================================================================
    # WRITES
    # =========================================================================

    def upsert(self, document: Document) -> None:
        """Insert or replace a single document and its vector."""
        self.upsert_many([document])

    def upsert_many(self, documents: Iterable[Document]) -> int:
        """Insert or replace documents in one transaction.

        Returns:
            Number of documents written
        """
        conn = self._get_conn()
        written = 0
        try:
            cursor = conn.cursor()
            for document in documents:
                self._write(cursor, document)
                written += 1
            conn.commit()
        finally:
            conn.close()
        return written

    def _write(self, cursor: sqlite3.Cursor, document: Document) -> None:
        if len(document.vector) != self.dimensions:
            raise ValueError(
                f"Document {document.id} has {len(document.vector)} dimensions, "
                f"store expects {self.dimensions}"
            )

        info = document.info
        now = datetime.now(timezone.utc)
        cursor.execute(
            """
            INSERT INTO documents (
                id, content, file_path, source_type, metadata,
                created_at, updated_at, story_ids, pr_numbers
            )
            VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
            ON CONFLICT(id) DO UPDATE SET
                content = excluded.content,
                file_path = excluded.file_path,
                source_type = excluded.source_type,
                metadata = excluded.metadata,
                updated_at = excluded.updated_at,
                story_ids = excluded.story_ids,
                pr_numbers = excluded.pr_numbers
            """,
            (
                document.id,
                document.content,
                info.file_path,
                info.source_type,
                json.dumps(document.metadata, default=str),
                _format_time(document.created_at or now),
                _format_time(document.updated_at or now),
                json.dumps(list(document.story_ids)),
                json.dumps(list(document.pr_numbers)),
            ),
        )
        cursor.execute("SELECT pk FROM documents WHERE id = ?", (document.id,))
        row_id = cursor.fetchone()[0]

        # vec0 has no upsert
        cursor.execute("DELETE FROM document_vectors WHERE rowid = ?", (row_id,))
        cursor.execute(
            "INSERT INTO document_vectors (rowid, embedding) VALUES (?, ?)",
            (row_id, serialize_vector(document.vector)),
        )

    def delete_file(self, file_path: str) -> int:
        """Delete every chunk of a file.

        Returns:
            Number of documents removed
        """
        conn = self._get_conn()
        try:
            removed = self._delete_file(conn.cursor(), file_path)
            conn.commit()
        finally:
            conn.close()
        return removed

    def replace_file(self, file_path: str, documents: Iterable[Document]) -> int:
        """Swap a file's chunks for ``documents`` in one transaction.

        Nothing is removed if any write fails.

        Returns:
            Number of documents written
        """
        conn = self._get_conn()
        written = 0
        try:
            cursor = conn.cursor()
            self._delete_file(cursor, file_path)
            for document in documents:
                self._write(cursor, document)
                written += 1
            conn.commit()
        finally:
            conn.close()
        return written

    @staticmethod
    def _delete_file(cursor: sqlite3.Cursor, file_path: str) -> int:
        cursor.execute("SELECT pk FROM documents WHERE file_path = ?", (file_path,))
        row_ids = [row[0] for row in cursor.fetchall()]
        for row_id in row_ids:
            cursor.execute("DELETE FROM document_vectors WHERE rowid = ?", (row_id,))
        cursor.execute("DELETE FROM documents WHERE file_path = ?", (file_path,))
        return len(row_ids)

    def clear(self):
        """Clear all documents and vectors."""
        conn = self._get_conn()
        try:
            conn.execute("DELETE FROM documents")
            conn.execute("DELETE FROM document_vectors")
            conn.commit()
        finally:
            conn.close()

    # =========================================================================
    # READS
    # =========================================================================

    def count(self) -> int:
        """Get the number of stored documents."""
        conn = self._get_conn()
        try:
            return conn.execute("SELECT COUNT(*) FROM documents").fetchone()[0]
        finally:
            conn.close()

    def get(self, document_id: str) -> Document | None:
        conn = self._get_conn()
        try:
            row = conn.execute(
                f"""
                SELECT {_COLUMNS}
                FROM documents d
                LEFT JOIN document_vectors v ON v.rowid = d.pk
                WHERE d.id = ?
                """,
                (document_id,),
            ).fetchone()
        finally:
            conn.close()
        return self._row_to_document(row) if row else None

    def list_indexed_files(self) -> list[str]:
        """Distinct non-empty file paths, sorted."""
        conn = self._get_conn()
        try:
            rows = conn.execute(
                """
                SELECT DISTINCT file_path FROM documents
                WHERE file_path != ''
                ORDER BY file_path
                """
            ).fetchall()
        finally:
            conn.close()
        return [row[0] for row in rows]

    def get_file_chunks(self, file_path: str) -> list[Document]:
        """All chunks of a file, ordered by start line."""
        conn = self._get_conn()
        try:
            rows = conn.execute(
                f"""
                SELECT {_COLUMNS}
                FROM documents d
                LEFT JOIN document_vectors v ON v.rowid = d.pk
                WHERE d.file_path = ?
                """,
                (file_path,),
            ).fetchall()
        finally:
            conn.close()

        chunks = [self._row_to_document(row) for row in rows]
        chunks.sort(key=lambda doc: (doc.info.start_line, doc.id))
        return chunks

    def search_hybrid(
        self,
        query: str,
        vector: Sequence[float],
        *,
        limit: int,
        offset: int = 0,
        filters: dict[str, Any] | None = None,
    ) -> list[SearchResult]:
        """Hybrid search over filtered documents.

        Candidates are the nearest documents by cosine distance that pass the
        filters. Each candidate is scored as
        ``vector_weight * similarity + keyword_weight * keyword_overlap`` and
        the fused ranking is paginated with ``offset``/``limit``.

        Args:
            query: Raw query text for keyword scoring
            vector: Query embedding
            limit: Page size
            offset: Number of fused results to skip
            filters: Store filter map

        Returns:
            SearchResults sorted by fused score
        """
        if limit <= 0:
            return []
        if len(vector) != self.dimensions:
            raise ValueError(
                f"Query vector has {len(vector)} dimensions, store expects "
                f"{self.dimensions}"
            )

        pool_size = max(MIN_CANDIDATE_POOL, (offset + limit) * 2)
        candidates: list[tuple[Document, float]] = []
        for document, distance in self._nearest(vector, filters):
            if not matches_filters(document, filters):
                continue
            similarity = min(1.0, max(0.0, 1.0 - distance))
            candidates.append((document, similarity))
            if len(candidates) >= pool_size:
                break

        weights = self.config
        results = []
        for document, similarity in candidates:
            keyword = keyword_overlap_score(query, document.content)
            score = weights.vector_weight * similarity + weights.keyword_weight * keyword
            results.append(SearchResult(document=document, score=score))

        results.sort(key=lambda r: r.score, reverse=True)
        log.debug(
            f"Hybrid search: {len(candidates)} candidates, "
            f"returning {offset}..{offset + limit}"
        )
        return results[offset : offset + limit]

    def _nearest(
        self, vector: Sequence[float], filters: dict[str, Any] | None
    ) -> Iterator[tuple[Document, float]]:
        """Stream documents by ascending cosine distance.

        Column-backed filters are pushed into SQL; the rest are checked by the
        caller.
        """
        clauses = []
        params: list[Any] = [serialize_vector(vector)]
        if filters:
            source_types = _as_list(filters.get("source_types"))
            if source_types:
                placeholders = ",".join("?" * len(source_types))
                clauses.append(f"d.source_type IN ({placeholders})")
                params.extend(source_types)
            if filters.get("file_path"):
                clauses.append("d.file_path = ?")
                params.append(filters["file_path"])

        where = f"WHERE {' AND '.join(clauses)}" if clauses else ""
        conn = self._get_conn()
        try:
            cursor = conn.execute(
                f"""
                SELECT {_COLUMNS},
                    vec_distance_cosine(v.embedding, ?) AS distance
                FROM documents d
                JOIN document_vectors v ON v.rowid = d.pk
                {where}
                ORDER BY distance
                """,
                params,
            )
            for row in cursor:
                yield self._row_to_document(row[:-1]), row[-1]
        finally:
            conn.close()

    @staticmethod
    def _row_to_document(row: Sequence[Any]) -> Document:
        doc_id, content, metadata, created, updated, stories, prs, embedding = row
        return Document(
            id=doc_id,
            content=content,
            vector=deserialize_vector(embedding),
            metadata=json.loads(metadata or "{}"),
            created_at=_parse_time(created),
            updated_at=_parse_time(updated),
            story_ids=tuple(json.loads(stories or "[]")),
            pr_numbers=tuple(json.loads(prs or "[]")),
        )
