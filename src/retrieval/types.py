"""Typed contracts for the search pipeline."""

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

DEFAULT_SOURCE_TYPE = "file"


def _as_str(value: Any) -> str:
    return value if isinstance(value, str) else ""


def _as_int(value: Any) -> int:
    if isinstance(value, bool):
        return 0
    if isinstance(value, int):
        return value
    if isinstance(value, float):
        return int(value)
    return 0


def _as_str_tuple(value: Any) -> tuple[str, ...]:
    if isinstance(value, str):
        return (value,) if value else ()
    if isinstance(value, (list, tuple)):
        return tuple(str(v) for v in value if v is not None and str(v))
    return ()


@dataclass(frozen=True)
class DocumentInfo:
    """Typed view over the metadata keys the ranking code reads."""

    file_path: str = ""
    source_type: str = DEFAULT_SOURCE_TYPE
    chunk_type: str = ""
    symbol_name: str | None = None
    language: str = ""
    ticket_id: str = ""
    git_branch: str = ""
    start_line: int = 0
    end_line: int = 0
    pr_number: str = ""
    issue_id: str = ""
    channel: str = ""
    timestamp: str = ""

    @classmethod
    def from_metadata(cls, metadata: dict[str, Any]) -> "DocumentInfo":
        symbol = metadata.get("symbol_name")
        chunk_type = _as_str(metadata.get("chunk_type")) or _as_str(
            metadata.get("type")
        )
        pr_number = metadata.get("pr_number")
        issue_id = metadata.get("issue_id")
        return cls(
            file_path=_as_str(metadata.get("file_path")),
            source_type=_as_str(metadata.get("source_type")) or DEFAULT_SOURCE_TYPE,
            chunk_type=chunk_type,
            symbol_name=str(symbol) if symbol is not None else None,
            language=_as_str(metadata.get("language")),
            ticket_id=_as_str(metadata.get("ticket_id")),
            git_branch=_as_str(metadata.get("git_branch")),
            start_line=_as_int(metadata.get("start_line")),
            end_line=_as_int(metadata.get("end_line")),
            pr_number=str(pr_number) if pr_number not in (None, "") else "",
            issue_id=str(issue_id) if issue_id not in (None, "") else "",
            channel=_as_str(metadata.get("channel")),
            timestamp=_as_str(metadata.get("timestamp")),
        )


@dataclass(frozen=True)
class Document:
    """A stored chunk. Owned by the vector store; read-only here."""

    id: str
    content: str
    vector: tuple[float, ...] = ()
    metadata: dict[str, Any] = field(default_factory=dict)
    created_at: datetime | None = None
    updated_at: datetime | None = None
    story_ids: tuple[str, ...] = ()
    pr_numbers: tuple[str, ...] = ()
    info: DocumentInfo = field(init=False, repr=False, compare=False)

    def __post_init__(self) -> None:
        object.__setattr__(self, "info", DocumentInfo.from_metadata(self.metadata))


@dataclass(frozen=True)
class SearchResult:
    document: Document
    score: float


@dataclass(frozen=True)
class CacheEntry:
    results: tuple[SearchResult, ...]
    query_time_ms: float
    query_vector: tuple[float, ...] | None = None
    created_at: float = 0.0


@dataclass(frozen=True)
class WorkContext:
    """Request-level description of what the caller is working on."""

    active_file: str = ""
    git_branch: str = ""
    open_ticket_ids: tuple[str, ...] = ()

    @classmethod
    def from_dict(cls, data: dict[str, Any] | None) -> "WorkContext | None":
        if not data:
            return None
        return cls(
            active_file=_as_str(data.get("active_file")),
            git_branch=_as_str(data.get("git_branch")),
            open_ticket_ids=_as_str_tuple(data.get("open_ticket_ids")),
        )


@dataclass(frozen=True)
class WorkContextFilters:
    """Filter-level work context; also drives result boosting."""

    active_file: str = ""
    git_branch: str = ""
    open_ticket_ids: tuple[str, ...] = ()
    current_story_id: str = ""
    boost_active: bool = True

    @classmethod
    def from_dict(cls, data: dict[str, Any] | None) -> "WorkContextFilters | None":
        if not data:
            return None
        boost = data.get("boost_active")
        return cls(
            active_file=_as_str(data.get("active_file")),
            git_branch=_as_str(data.get("git_branch")),
            open_ticket_ids=_as_str_tuple(data.get("open_ticket_ids")),
            current_story_id=_as_str(data.get("current_story_id")),
            boost_active=True if boost is None else bool(boost),
        )


@dataclass(frozen=True)
class DateRange:
    from_date: str = ""
    to_date: str = ""

    def to_filter(self) -> dict[str, str]:
        return {"from": self.from_date, "to": self.to_date}


@dataclass(frozen=True)
class SearchFilters:
    source_types: tuple[str, ...] = ()
    date_range: DateRange | None = None
    work_context: WorkContextFilters | None = None

    @classmethod
    def from_dict(cls, data: dict[str, Any] | None) -> "SearchFilters | None":
        if not data:
            return None
        raw_range = data.get("date_range")
        date_range = None
        if isinstance(raw_range, dict):
            date_range = DateRange(
                from_date=_as_str(raw_range.get("from")),
                to_date=_as_str(raw_range.get("to")),
            )
        return cls(
            source_types=_as_str_tuple(data.get("source_types")),
            date_range=date_range,
            work_context=WorkContextFilters.from_dict(data.get("work_context")),
        )


@dataclass(frozen=True)
class SearchResponse:
    results: tuple[SearchResult, ...]
    total_count: int
    query_time_ms: float
    offset: int
    limit: int
    has_more: bool
    cache_hit: bool = False

    def to_dict(self) -> dict[str, Any]:
        return {
            "results": [
                {
                    "id": r.document.id,
                    "content": r.document.content,
                    "score": r.score,
                    "source_type": r.document.info.source_type,
                    "metadata": r.document.metadata,
                }
                for r in self.results
            ],
            "total_count": self.total_count,
            "query_time_ms": self.query_time_ms,
            "offset": self.offset,
            "limit": self.limit,
            "has_more": self.has_more,
        }
