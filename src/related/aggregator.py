"""Related-info discovery for a file or a ticket.

File flow: classify every indexed file against the target, fetch the chunks of
the related ones and score them from the relation table.

Ticket flow: mine git for the ticket, look up chunks of the files its commits
touched, then run one broad query for the ticket ID to pick up PRs, issues and
discussions.
"""

from concurrent.futures import ThreadPoolExecutor
import logging
import os
import threading
from pathlib import Path
from typing import Any, Iterable, Protocol

from ..retrieval.config import DEFAULT_RETRIEVAL_CONFIG, RetrievalConfig
from ..retrieval.errors import InvalidInputError, UpstreamError
from ..retrieval.pipeline import QueryEmbedder, SearchStore
from ..retrieval.types import Document, SearchResult
from .git_history import (
    GitCommandError,
    GitHistoryMiner,
    MiningCancelledError,
    RepositoryNotFoundError,
    check_cancelled,
    validate_ticket_id,
)
from .relationships import RelationType, detect_relation_type, relation_sort_key
from .types import DiscussionSummary, GitTicketInfo, RelatedInfoResponse, RelatedItem

log = logging.getLogger(__name__)

PR_SOURCE_TYPES = frozenset({"github_pr"})
ISSUE_SOURCE_TYPES = frozenset({"github_issue", "jira"})
DISCUSSION_SOURCE_TYPES = frozenset({"slack"})


class RelatedStore(SearchStore, Protocol):
    def list_indexed_files(self) -> list[str]: ...

    def get_file_chunks(self, file_path: str) -> list[Document]: ...


def item_from_document(
    document: Document,
    score: float,
    relation: RelationType = RelationType.UNKNOWN,
) -> RelatedItem:
    info = document.info
    return RelatedItem(
        id=document.id,
        content=document.content,
        score=score,
        source_type=info.source_type,
        file_path=info.file_path,
        relation_type=relation,
        start_line=info.start_line,
        end_line=info.end_line,
        metadata=document.metadata,
    )


class _Grouping:
    """First-seen-order PR, issue and discussion references."""

    def __init__(self, discussion_chars: int):
        self.discussion_chars = discussion_chars
        self.prs: dict[str, None] = {}
        self.issues: dict[str, None] = {}
        self.discussions: dict[tuple[str, str, str], DiscussionSummary] = {}

    def add(self, item: RelatedItem) -> None:
        metadata = item.metadata
        if item.source_type in PR_SOURCE_TYPES:
            pr = metadata.get("pr_number")
            if pr not in (None, ""):
                self.prs.setdefault(str(pr), None)
        elif item.source_type in ISSUE_SOURCE_TYPES:
            issue = metadata.get("issue_id")
            if issue not in (None, ""):
                self.issues.setdefault(str(issue), None)
        elif item.source_type in DISCUSSION_SOURCE_TYPES:
            discussion = DiscussionSummary(
                channel=str(metadata.get("channel") or ""),
                timestamp=str(metadata.get("timestamp") or ""),
                summary=item.content[: self.discussion_chars],
            )
            key = (discussion.channel, discussion.timestamp, discussion.summary)
            self.discussions.setdefault(key, discussion)

    def head_line(self, subject: str, item_count: int) -> str:
        return (
            f"Related information for {subject}: {item_count} items "
            f"({len(self.prs)} PRs, {len(self.issues)} issues, "
            f"{len(self.discussions)} discussions)"
        )


class RelatedInfoAggregator:
    """Entry point for the related-info tool."""

    def __init__(
        self,
        embedder: QueryEmbedder,
        store: RelatedStore,
        miner: GitHistoryMiner | None = None,
        repo_path: str | Path | None = None,
        config: RetrievalConfig = DEFAULT_RETRIEVAL_CONFIG,
    ):
        self.embedder = embedder
        self.store = store
        self.config = config
        self.miner = miner or GitHistoryMiner(config)
        self.repo_path = str(repo_path) if repo_path else os.getcwd()

    def get_related_info(
        self,
        file_path: str | None = None,
        ticket_id: str | None = None,
        *,
        cancel: threading.Event | None = None,
        deadline: float | None = None,
    ) -> RelatedInfoResponse:
        """Related items for a file path, or for a ticket ID when no path is given."""
        if file_path:
            return self.related_to_file(file_path, cancel=cancel, deadline=deadline)
        if ticket_id:
            return self.related_to_ticket(ticket_id, cancel=cancel, deadline=deadline)
        raise InvalidInputError("either file_path or ticket_id must be provided")

    # File flow

    def related_to_file(
        self,
        file_path: str,
        *,
        cancel: threading.Event | None = None,
        deadline: float | None = None,
    ) -> RelatedInfoResponse:
        try:
            indexed = self.store.list_indexed_files()
        except Exception as exc:
            log.error(f"Listing indexed files failed: {exc}")
            raise UpstreamError("search", str(exc)) from exc

        candidates = []
        for candidate in indexed:
            if candidate == file_path:
                continue
            if detect_relation_type(file_path, candidate) is not RelationType.UNKNOWN:
                candidates.append(candidate)

        log.debug(
            f"{len(candidates)} of {len(indexed)} indexed files relate to {file_path}"
        )

        items: list[RelatedItem] = []
        for candidate, chunks in self._fetch_chunks(candidates, cancel, deadline):
            for chunk in chunks:
                info = chunk.info
                relation = detect_relation_type(
                    file_path,
                    info.file_path or candidate,
                    info.chunk_type,
                    chunk.metadata,
                )
                items.append(item_from_document(chunk, relation.base_score, relation))

        items.sort(key=lambda item: relation_sort_key(item.score, item.relation_type))
        items = items[: self.config.related_items_limit]

        grouping = self._group(items)
        lines = [grouping.head_line(file_path, len(items))]
        lines.extend(_relation_breakdown(items))
        return self._response("\n".join(lines), grouping, items)

    def _fetch_chunks(
        self,
        paths: list[str],
        cancel: threading.Event | None = None,
        deadline: float | None = None,
    ) -> list[tuple[str, list[Document]]]:
        """Fetch chunks for each path concurrently; results keep input order."""
        if not paths:
            return []

        workers = max(1, min(self.config.chunk_fetch_workers, len(paths)))
        with ThreadPoolExecutor(max_workers=workers) as pool:
            futures = [
                (path, pool.submit(self._file_chunks, path, cancel, deadline))
                for path in paths
            ]

        fetched = []
        for path, future in futures:
            try:
                fetched.append((path, future.result()))
            except MiningCancelledError:
                raise
            except Exception as exc:
                log.warning(f"Fetching chunks for {path} failed: {exc}")
        return fetched

    def _file_chunks(
        self,
        path: str,
        cancel: threading.Event | None,
        deadline: float | None,
    ) -> list[Document]:
        check_cancelled(cancel, deadline, "related-info lookup")
        return self.store.get_file_chunks(path)

    # Ticket flow

    def related_to_ticket(
        self,
        ticket_id: str,
        *,
        cancel: threading.Event | None = None,
        deadline: float | None = None,
    ) -> RelatedInfoResponse:
        validate_ticket_id(ticket_id)

        git_info = self._mine(ticket_id, cancel=cancel, deadline=deadline)

        best: dict[str, RelatedItem] = {}
        if git_info is not None:
            for modified in git_info.modified_files:
                check_cancelled(cancel, deadline, "related-info lookup")
                for result in self._search(
                    modified,
                    limit=self.config.ticket_results_per_file,
                    filters={"file_path": modified},
                ):
                    _keep_best(
                        best,
                        item_from_document(
                            result.document,
                            result.score + self.config.ticket_provenance_boost,
                            RelationType.COMMIT_HISTORY,
                        ),
                    )

        check_cancelled(cancel, deadline, "related-info lookup")
        for result in self._search(
            ticket_id,
            limit=self.config.ticket_search_limit,
            filters={"ticket_id": ticket_id},
        ):
            _keep_best(best, item_from_document(result.document, result.score))

        items = sorted(
            best.values(),
            key=lambda item: relation_sort_key(item.score, item.relation_type),
        )
        grouping = self._group(items)
        lines = [grouping.head_line(f"ticket {ticket_id}", len(items))]
        lines.extend(self._git_summary(ticket_id, git_info))
        return self._response("\n".join(lines), grouping, items)

    def _mine(
        self,
        ticket_id: str,
        *,
        cancel: threading.Event | None,
        deadline: float | None,
    ) -> GitTicketInfo | None:
        try:
            root = self.miner.get_repo_root(self.repo_path)
        except RepositoryNotFoundError as exc:
            log.warning(f"No git repository for ticket lookup: {exc}")
            return None

        try:
            return self.miner.find_ticket_in_git(
                ticket_id, root, cancel=cancel, deadline=deadline
            )
        except RepositoryNotFoundError as exc:
            log.warning(f"Git repository unavailable: {exc}")
            return None
        except GitCommandError as exc:
            log.error(f"Git history walk failed: {exc}")
            raise UpstreamError("git", str(exc)) from exc

    def _search(
        self, query: str, *, limit: int, filters: dict[str, Any]
    ) -> list[SearchResult]:
        """One enrichment query; embedding or search failures skip the item."""
        try:
            vector = self.embedder.embed(query)
        except Exception as exc:
            log.warning(f"Embedding failed for '{query}', skipping: {exc}")
            return []

        try:
            return self.store.search_hybrid(query, vector, limit=limit, filters=filters)
        except Exception as exc:
            log.warning(f"Search failed for '{query}', skipping: {exc}")
            return []

    def _git_summary(self, ticket_id: str, git_info: GitTicketInfo | None) -> list[str]:
        if git_info is None or not git_info.has_evidence:
            lines = [f"No git history found for ticket {ticket_id}"]
        else:
            lines = []
            if git_info.branches:
                lines.append(f"Branches: {', '.join(git_info.branches)}")
            if git_info.commits:
                lines.append("Recent commits:")
                limit = self.config.commit_message_max_chars
                for commit in git_info.commits[: self.config.summary_commit_limit]:
                    message = commit.message.splitlines()[0] if commit.message else ""
                    lines.append(
                        f"  {commit.hash[:8]} {message[:limit]} ({commit.author})"
                    )
            if git_info.modified_files:
                lines.append(f"Modified files: {len(git_info.modified_files)}")

        if git_info is not None and git_info.reached_commit_limit:
            lines.append(
                f"Commit scan stopped at the {git_info.commits_scanned}-commit limit"
            )
        return lines

    # Shared

    def _group(self, items: Iterable[RelatedItem]) -> _Grouping:
        grouping = _Grouping(self.config.discussion_summary_chars)
        for item in items:
            grouping.add(item)
        return grouping

    @staticmethod
    def _response(
        summary: str, grouping: _Grouping, items: list[RelatedItem]
    ) -> RelatedInfoResponse:
        return RelatedInfoResponse(
            summary=summary,
            related_prs=tuple(grouping.prs),
            related_issues=tuple(grouping.issues),
            discussions=tuple(grouping.discussions.values()),
            related_items=tuple(items),
        )


def _keep_best(best: dict[str, RelatedItem], item: RelatedItem) -> None:
    current = best.get(item.id)
    if current is None or item.score > current.score:
        best[item.id] = item


def _relation_breakdown(items: list[RelatedItem]) -> list[str]:
    counts: dict[RelationType, int] = {}
    for item in items:
        counts[item.relation_type] = counts.get(item.relation_type, 0) + 1

    ordered = sorted(counts, key=lambda relation: relation.priority)
    return [
        f"  {relation.value or 'unknown'}: {counts[relation]}" for relation in ordered
    ]
