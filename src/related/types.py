"""Typed contracts for related-info discovery."""

from dataclasses import asdict, dataclass, field
from typing import Any

from .relationships import RelationType


@dataclass(frozen=True)
class CommitInfo:
    hash: str
    message: str
    author: str
    date: str
    files: tuple[str, ...] = ()


@dataclass
class GitTicketInfo:
    """Evidence for one ticket gathered from branch names and commit messages."""

    ticket_id: str
    branches: list[str] = field(default_factory=list)
    commits: list[CommitInfo] = field(default_factory=list)
    modified_files: list[str] = field(default_factory=list)
    pr_descriptions: list[str] = field(default_factory=list)
    commits_scanned: int = 0
    reached_commit_limit: bool = False

    @property
    def has_evidence(self) -> bool:
        return bool(self.branches or self.commits)


@dataclass(frozen=True)
class RelatedItem:
    id: str
    content: str
    score: float
    source_type: str
    file_path: str = ""
    relation_type: RelationType = RelationType.UNKNOWN
    start_line: int = 0
    end_line: int = 0
    metadata: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        payload = asdict(self)
        payload["relation_type"] = self.relation_type.value
        return payload


@dataclass(frozen=True)
class DiscussionSummary:
    channel: str
    timestamp: str
    summary: str


@dataclass(frozen=True)
class RelatedInfoResponse:
    summary: str
    related_prs: tuple[str, ...] = ()
    related_issues: tuple[str, ...] = ()
    discussions: tuple[DiscussionSummary, ...] = ()
    related_items: tuple[RelatedItem, ...] = ()

    def to_dict(self) -> dict[str, Any]:
        return {
            "summary": self.summary,
            "related_prs": list(self.related_prs),
            "related_issues": list(self.related_issues),
            "discussions": [asdict(d) for d in self.discussions],
            "related_items": [item.to_dict() for item in self.related_items],
        }
