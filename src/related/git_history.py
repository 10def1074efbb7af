"""Bounded mining of git branches and commit messages for ticket evidence.

Repository access shells out to the ``git`` binary. The miner only depends on
the small ``GitProvider`` protocol so tests can substitute an in-memory history.
"""

from dataclasses import dataclass
import logging
import os
from pathlib import Path
import re
import subprocess
import threading
import time
from typing import Callable, Iterator, Protocol

from ..retrieval.config import DEFAULT_RETRIEVAL_CONFIG, RetrievalConfig
from ..retrieval.errors import InvalidInputError
from .types import CommitInfo, GitTicketInfo

log = logging.getLogger(__name__)

TICKET_ID_RE = re.compile(r"^[a-zA-Z0-9._-]+$")
MAX_TICKET_ID_LENGTH = 100

_FIELD_SEP = "\x1f"
_RECORD_SEP = "\x1e"
_LOG_FORMAT = _FIELD_SEP.join(["%H", "%P", "%an", "%ad", "%B"]) + _RECORD_SEP
_DATE_FORMAT = "format:%Y-%m-%d %H:%M:%S"


class GitError(RuntimeError):
    """Base class for repository access failures."""


class RepositoryNotFoundError(GitError):
    pass


class GitCommandError(GitError):
    pass


class MiningCancelledError(GitError):
    """The caller cancelled mining or its deadline passed."""


@dataclass(frozen=True)
class CommitRecord:
    hash: str
    parents: tuple[str, ...]
    author: str
    date: str
    message: str


class GitProvider(Protocol):
    def branches(self) -> list[str]: ...

    def iter_commits(self, max_count: int | None = None) -> Iterator[CommitRecord]: ...

    def changed_files(self, commit: CommitRecord) -> list[str]: ...


def validate_ticket_id(ticket_id: str) -> None:
    if not ticket_id or len(ticket_id) > MAX_TICKET_ID_LENGTH:
        raise InvalidInputError(f"invalid ticket ID format: {ticket_id!r}")
    if not TICKET_ID_RE.fullmatch(ticket_id):
        raise InvalidInputError(f"invalid ticket ID format: {ticket_id!r}")


def ticket_pattern(ticket_id: str) -> re.Pattern[str]:
    """Whole-word, case-insensitive matcher: PROJ-1 matches feature/proj-1."""
    return re.compile(rf"\b{re.escape(ticket_id)}\b", re.IGNORECASE)


class GitRepository:
    """GitProvider backed by the git command line."""

    def __init__(self, root: str | Path, timeout: float | None = None):
        self.root = Path(root)
        self.timeout = timeout

    @classmethod
    def open(cls, path: str | Path, timeout: float | None = None) -> "GitRepository":
        """Open ``path`` as a repository; it must be the work-tree root."""
        candidate = Path(path)
        if not candidate.is_dir():
            raise RepositoryNotFoundError(f"Not a directory: {candidate}")

        repo = cls(candidate, timeout=timeout)
        try:
            toplevel = repo._run("rev-parse", "--show-toplevel").strip()
        except GitCommandError as exc:
            raise RepositoryNotFoundError(f"Not a git repository: {candidate}") from exc

        if not toplevel or Path(toplevel).resolve() != candidate.resolve():
            raise RepositoryNotFoundError(f"Not a repository root: {candidate}")
        return repo

    def _command(self, *args: str) -> list[str]:
        return ["git", "-C", str(self.root), *args]

    def _run(self, *args: str) -> str:
        try:
            completed = subprocess.run(
                self._command(*args),
                capture_output=True,
                text=True,
                encoding="utf-8",
                errors="replace",
                timeout=self.timeout,
            )
        except FileNotFoundError as exc:
            raise GitCommandError("git executable not found") from exc
        except subprocess.TimeoutExpired as exc:
            raise GitCommandError(f"git {args[0]} timed out") from exc

        if completed.returncode != 0:
            stderr = (completed.stderr or "").strip()
            raise GitCommandError(f"git {args[0]} failed: {stderr or 'unknown error'}")
        return completed.stdout

    def has_commits(self) -> bool:
        try:
            self._run("rev-parse", "--verify", "--quiet", "HEAD")
        except GitCommandError:
            return False
        return True

    def branches(self) -> list[str]:
        output = self._run("for-each-ref", "--format=%(refname:short)", "refs/heads")
        return [line.strip() for line in output.splitlines() if line.strip()]

    def iter_commits(self, max_count: int | None = None) -> Iterator[CommitRecord]:
        """Stream commits from HEAD, newest committer time first."""
        if not self.has_commits():
            return

        args = ["log", f"--date={_DATE_FORMAT}"]
        args.append(f"--format={_LOG_FORMAT}")
        if max_count is not None:
            args.append(f"--max-count={max_count}")
        args.append("HEAD")

        try:
            proc = subprocess.Popen(
                self._command(*args),
                stdout=subprocess.PIPE,
                stderr=subprocess.PIPE,
                text=True,
                encoding="utf-8",
                errors="replace",
            )
        except FileNotFoundError as exc:
            raise GitCommandError("git executable not found") from exc

        finished = False
        try:
            if proc.stdout is None:
                raise GitCommandError("git log produced no output stream")
            buffer = ""
            for chunk in proc.stdout:
                buffer += chunk
                while _RECORD_SEP in buffer:
                    raw, buffer = buffer.split(_RECORD_SEP, 1)
                    record = _parse_log_record(raw)
                    if record is not None:
                        yield record
            finished = True
        finally:
            if not finished and proc.poll() is None:
                proc.kill()
            _, stderr = proc.communicate()

        if proc.returncode != 0:
            raise GitCommandError(f"git log failed: {(stderr or '').strip()}")

    def changed_files(self, commit: CommitRecord) -> list[str]:
        if commit.parents:
            output = self._run(
                "diff-tree",
                "--no-commit-id",
                "--name-only",
                "-r",
                "-z",
                commit.parents[0],
                commit.hash,
            )
        else:
            output = self._run("ls-tree", "-r", "--name-only", "-z", commit.hash)
        return [name for name in output.split("\0") if name]


def _parse_log_record(raw: str) -> CommitRecord | None:
    raw = raw.lstrip("\n")
    if not raw:
        return None
    parts = raw.split(_FIELD_SEP, 4)
    if len(parts) != 5:
        log.debug(f"Skipping malformed git log record: {raw[:80]!r}")
        return None
    commit_hash, parents, author, date, message = parts
    return CommitRecord(
        hash=commit_hash.strip(),
        parents=tuple(parents.split()),
        author=author,
        date=date,
        message=message.strip(),
    )


def _default_opener(timeout: float | None) -> Callable[[str], GitProvider]:
    def opener(path: str) -> GitProvider:
        return GitRepository.open(path, timeout=timeout)

    return opener


def get_repo_root(
    start_path: str | Path,
    opener: Callable[[str], GitProvider] | None = None,
) -> str:
    """Walk up from ``start_path`` until a directory opens as a repository."""
    open_repo = opener or _default_opener(DEFAULT_RETRIEVAL_CONFIG.git_timeout_seconds)
    path = os.path.normpath(os.path.abspath(str(start_path)))

    while True:
        try:
            open_repo(path)
            return path
        except RepositoryNotFoundError:
            pass

        parent = os.path.dirname(path)
        if parent == path:
            raise RepositoryNotFoundError(
                f"not a git repository (or any parent up to root): {start_path}"
            )
        path = parent


class GitHistoryMiner:
    """Find branches and commits that mention a ticket ID.

    The commit walk visits at most ``config.max_commits`` commits. Hitting that
    cap ends the walk normally and sets ``reached_commit_limit`` on the result.
    """

    def __init__(
        self,
        config: RetrievalConfig = DEFAULT_RETRIEVAL_CONFIG,
        opener: Callable[[str], GitProvider] | None = None,
    ):
        self.max_commits = config.max_commits
        self.timeout = config.git_timeout_seconds
        self._open = opener or _default_opener(self.timeout)

    def get_repo_root(self, start_path: str | Path) -> str:
        return get_repo_root(start_path, opener=self._open)

    def find_ticket_in_git(
        self,
        ticket_id: str,
        repo_path: str | Path,
        *,
        cancel: threading.Event | None = None,
        deadline: float | None = None,
    ) -> GitTicketInfo:
        """Collect branches, matching commits and the files they touched.

        Args:
            ticket_id: Ticket identifier, validated before the repository is opened
            repo_path: Repository root
            cancel: Optional event; mining stops with MiningCancelledError once set
            deadline: Optional ``time.monotonic()`` value after which mining stops

        Returns:
            GitTicketInfo with deduplicated modified files
        """
        validate_ticket_id(ticket_id)
        repo = self._open(str(repo_path))
        pattern = ticket_pattern(ticket_id)
        info = GitTicketInfo(ticket_id=ticket_id)

        try:
            info.branches = [b for b in repo.branches() if pattern.search(b)]
        except GitCommandError as exc:
            log.warning(f"Branch listing failed in {repo_path}: {exc}")

        modified: dict[str, None] = {}
        visited = 0
        for commit in repo.iter_commits(max_count=self.max_commits):
            check_cancelled(cancel, deadline)
            visited += 1

            if pattern.search(commit.message):
                try:
                    files = repo.changed_files(commit)
                except GitCommandError as exc:
                    log.debug(f"Could not diff {commit.hash[:8]}: {exc}")
                    files = []
                for name in files:
                    modified.setdefault(name, None)
                info.commits.append(
                    CommitInfo(
                        hash=commit.hash,
                        message=commit.message,
                        author=commit.author,
                        date=commit.date,
                        files=tuple(files),
                    )
                )

            if visited >= self.max_commits:
                info.reached_commit_limit = True
                break

        info.commits_scanned = visited
        info.modified_files = list(modified)

        log.info(
            f"Ticket {ticket_id}: {len(info.branches)} branches, "
            f"{len(info.commits)} commits, {len(info.modified_files)} files "
            f"(scanned {visited} commits)"
        )
        return info


def check_cancelled(
    cancel: threading.Event | None,
    deadline: float | None,
    stage: str = "git mining",
) -> None:
    """Raise MiningCancelledError once the event is set or the deadline passes."""
    if cancel is not None and cancel.is_set():
        raise MiningCancelledError(f"{stage} cancelled")
    if deadline is not None and time.monotonic() > deadline:
        raise MiningCancelledError(f"{stage} deadline exceeded")
