"""Corpus indexer: chunk source files, embed them and store the chunks."""

import logging
from pathlib import Path
from typing import Iterable, Iterator, Protocol

from ..retrieval.types import Document
from .store import DocumentStore

log = logging.getLogger(__name__)

MAX_FILE_BYTES = 1_000_000

LANGUAGES = {
    ".go": "go",
    ".py": "python",
    ".js": "javascript",
    ".jsx": "javascript",
    ".mjs": "javascript",
    ".cjs": "javascript",
    ".ts": "typescript",
    ".tsx": "typescript",
    ".java": "java",
    ".kt": "kotlin",
    ".rs": "rust",
    ".rb": "ruby",
    ".php": "php",
    ".cs": "csharp",
    ".c": "c",
    ".h": "c",
    ".cpp": "cpp",
    ".hpp": "cpp",
    ".swift": "swift",
    ".scala": "scala",
    ".clj": "clojure",
    ".md": "markdown",
    ".rst": "restructuredtext",
    ".txt": "text",
}


class BatchEmbedder(Protocol):
    def embed_batch(self, texts: list[str]) -> Iterable[list[float]]: ...


def split_lines(
    lines: list[str], window: int, overlap: int
) -> Iterator[tuple[int, int, str]]:
    """Yield ``(start_line, end_line, text)`` windows, 1-based and inclusive."""
    if not lines:
        return
    step = max(1, window - overlap)
    start = 0
    while start < len(lines):
        end = min(start + window, len(lines))
        yield start + 1, end, "".join(lines[start:end])
        if end == len(lines):
            break
        start += step


class CorpusIndexer:
    """Walks a source tree and indexes every text file as line windows."""

    def __init__(
        self,
        embedder: BatchEmbedder,
        store: DocumentStore,
        window: int = 60,
        overlap: int = 10,
    ):
        if overlap >= window:
            raise ValueError("overlap must be smaller than window")
        self.embedder = embedder
        self.store = store
        self.window = window
        self.overlap = overlap

    def index_directory(self, root_path: str | Path) -> dict:
        """Index all text files under ``root_path``.

        Args:
            root_path: Directory to index; stored paths are relative to it

        Returns:
            Stats about the run (processed, chunks, errors, error_details)
        """
        root = Path(root_path)
        if not root.is_dir():
            return {"success": False, "error": f"Directory not found: {root}"}

        stats = {
            "processed": 0,
            "chunks": 0,
            "errors": 0,
            "error_details": [],
        }

        log.info(f"Starting index of {root}")

        for file_path in self._find_files(root):
            relative = file_path.relative_to(root).as_posix()
            try:
                written = self.index_file(file_path, relative)
            except Exception as e:
                log.error(f"Failed to index {relative}: {e}")
                stats["errors"] += 1
                stats["error_details"].append(f"{relative}: {e}")
                continue

            if written is None:
                continue
            stats["processed"] += 1
            stats["chunks"] += written

        log.info(f"Index complete. Stats: {stats}")
        return stats

    def index_file(self, file_path: Path, relative: str) -> int | None:
        """Replace the stored chunks of one file.

        Returns:
            Number of chunks written, or None when the file is not text
        """
        raw = file_path.read_bytes()
        if len(raw) > MAX_FILE_BYTES or b"\0" in raw[:8192]:
            log.debug(f"Skipping non-text or oversized file {relative}")
            return None
        try:
            text = raw.decode("utf-8")
        except UnicodeDecodeError:
            log.debug(f"Skipping non-UTF-8 file {relative}")
            return None

        windows = list(
            split_lines(text.splitlines(keepends=True), self.window, self.overlap)
        )
        windows = [w for w in windows if w[2].strip()]

        language = LANGUAGES.get(file_path.suffix.lower(), "")
        vectors = self.embedder.embed_batch([text for _, _, text in windows])
        documents = [
            Document(
                id=f"{relative}#L{start}-L{end}",
                content=chunk,
                vector=tuple(vector),
                metadata={
                    "file_path": relative,
                    "language": language,
                    "type": "block",
                    "start_line": start,
                    "end_line": end,
                    "source_type": "file",
                },
            )
            for (start, end, chunk), vector in zip(windows, vectors)
        ]
        return self.store.replace_file(relative, documents)

    def _find_files(self, root: Path) -> Iterator[Path]:
        """Recursively find files, ignoring hidden directories and files."""
        for path in sorted(root.rglob("*")):
            if not path.is_file():
                continue
            # Skip .git, .venv, etc.
            if any(part.startswith(".") for part in path.relative_to(root).parts):
                continue
            yield path
