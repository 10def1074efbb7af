"""Heuristic classification of how a candidate file relates to a target file.

Rules are evaluated in a fixed priority order and the first match wins:

1. test_file      language-specific test naming conventions
2. documentation  doc extensions, doc directories, README files
3. symbol_ref     chunk is a definition or carries a symbol name
4. import         same extension and same or nested directory
5. similar_code   same recognized code extension
6. unknown        nothing matched

The test, import and similar-code rules need both paths; the documentation
and symbol rules look only at the candidate.
"""

from dataclasses import dataclass
from enum import Enum
import posixpath
from typing import Any


class RelationType(Enum):
    TEST_FILE = "test_file"
    DOCUMENTATION = "documentation"
    SYMBOL_REF = "symbol_ref"
    IMPORT = "import"
    COMMIT_HISTORY = "commit_history"
    SIMILAR_CODE = "similar_code"
    UNKNOWN = ""

    @property
    def base_score(self) -> float:
        return RELATION_TABLE[self].base_score

    @property
    def priority(self) -> int:
        return RELATION_TABLE[self].priority


@dataclass(frozen=True)
class RelationSpec:
    base_score: float
    priority: int


RELATION_TABLE: dict[RelationType, RelationSpec] = {
    RelationType.TEST_FILE: RelationSpec(1.0, 1),
    RelationType.DOCUMENTATION: RelationSpec(0.9, 2),
    RelationType.SYMBOL_REF: RelationSpec(0.8, 3),
    RelationType.IMPORT: RelationSpec(0.7, 4),
    RelationType.COMMIT_HISTORY: RelationSpec(0.6, 5),
    RelationType.SIMILAR_CODE: RelationSpec(0.5, 6),
    RelationType.UNKNOWN: RelationSpec(0.3, 99),
}

DOC_EXTENSIONS = frozenset({".md", ".rst", ".txt", ".adoc", ".asciidoc"})
DOC_DIR_MARKERS = ("docs", "documentation", "wiki")
SYMBOL_CHUNK_TYPES = frozenset({"function", "class", "struct", "interface", "method"})
JS_TS_EXTENSIONS = frozenset({".js", ".jsx", ".ts", ".tsx", ".mjs", ".cjs"})
CODE_EXTENSIONS = frozenset(
    {
        ".go",
        ".java",
        ".py",
        ".js",
        ".ts",
        ".jsx",
        ".tsx",
        ".c",
        ".cpp",
        ".h",
        ".hpp",
        ".rs",
        ".rb",
        ".php",
        ".cs",
        ".swift",
        ".kt",
        ".scala",
        ".clj",
    }
)
_JS_TEST_MARKERS = (".test", ".spec")
_JS_STRIP_MARKERS = (".test", ".spec", ".min")


def _extension(path: str) -> str:
    """Extension including the dot, taken from the last dot of the file name."""
    name = posixpath.basename(path)
    dot = name.rfind(".")
    return name[dot:] if dot >= 0 else ""


def _stem(path: str) -> str:
    name = posixpath.basename(path)
    ext = _extension(path)
    return name[: len(name) - len(ext)] if ext else name


def _directory(path: str) -> str:
    return posixpath.normpath(posixpath.dirname(path) or ".")


def _strip_js_markers(stem: str) -> str:
    for marker in _JS_STRIP_MARKERS:
        stem = stem.replace(marker, "")
    return stem


def _paired(a: str, b: str, *, prefix: str = "", suffix: str = "") -> bool:
    """True if ``b`` is ``a`` with the given prefix/suffix added, either way round."""
    for test, impl in ((a, b), (b, a)):
        if prefix and test.startswith(prefix) and test[len(prefix) :] == impl:
            return True
        if suffix and test.endswith(suffix) and test[: -len(suffix)] == impl:
            return True
    return False


def is_test_pair(target_path: str, candidate_path: str) -> bool:
    if not target_path or not candidate_path:
        return False

    exts = {_extension(target_path).lower(), _extension(candidate_path).lower()}
    target = _stem(target_path).lower()
    candidate = _stem(candidate_path).lower()

    if ".go" in exts and _paired(target, candidate, suffix="_test"):
        return True

    if exts & {".java", ".kt"} and _paired(
        target, candidate, prefix="test", suffix="test"
    ):
        return True

    if ".py" in exts and _paired(target, candidate, prefix="test_", suffix="_test"):
        return True

    if exts & JS_TS_EXTENSIONS:
        target_full = _stem(target_path)
        candidate_full = _stem(candidate_path)
        target_marked = any(m in target_full for m in _JS_TEST_MARKERS)
        candidate_marked = any(m in candidate_full for m in _JS_TEST_MARKERS)
        if target_marked != candidate_marked:
            if (
                _strip_js_markers(target_full).lower()
                == _strip_js_markers(candidate_full).lower()
            ):
                return True

    if ".rs" in exts and (
        "/tests/" in candidate_path or candidate_path.startswith("tests/")
    ):
        if target == candidate:
            return True

    return False


def is_documentation(candidate_path: str) -> bool:
    if _extension(candidate_path).lower() in DOC_EXTENSIONS:
        return True

    directory = posixpath.dirname(candidate_path).lower()
    if any(marker in directory for marker in DOC_DIR_MARKERS):
        return True

    return posixpath.basename(candidate_path).upper().startswith("README")


def has_symbol_reference(chunk_type: str, metadata: dict[str, Any] | None) -> bool:
    if chunk_type in SYMBOL_CHUNK_TYPES:
        return True
    return bool(metadata) and "symbol_name" in metadata


def is_potential_import(target_path: str, candidate_path: str) -> bool:
    if not target_path or not candidate_path:
        return False
    if _extension(target_path).lower() != _extension(candidate_path).lower():
        return False

    target_dir = _directory(target_path)
    candidate_dir = _directory(candidate_path)
    if target_dir == candidate_dir:
        return True
    return candidate_dir.startswith(target_dir) or target_dir.startswith(candidate_dir)


def is_similar_code(target_path: str, candidate_path: str) -> bool:
    if not target_path or not candidate_path:
        return False
    ext = _extension(candidate_path).lower()
    return _extension(target_path).lower() == ext and ext in CODE_EXTENSIONS


def detect_relation_type(
    target_path: str,
    candidate_path: str,
    chunk_type: str = "",
    metadata: dict[str, Any] | None = None,
) -> RelationType:
    """Classify ``candidate_path`` relative to ``target_path``.

    Deterministic and total: every input maps to exactly one RelationType.
    """
    if is_test_pair(target_path, candidate_path):
        return RelationType.TEST_FILE
    if is_documentation(candidate_path):
        return RelationType.DOCUMENTATION
    if has_symbol_reference(chunk_type, metadata):
        return RelationType.SYMBOL_REF
    if is_potential_import(target_path, candidate_path):
        return RelationType.IMPORT
    if is_similar_code(target_path, candidate_path):
        return RelationType.SIMILAR_CODE
    return RelationType.UNKNOWN


def relation_sort_key(score: float, relation: RelationType) -> tuple[float, int]:
    """Score descending, then relation priority ascending."""
    return (-score, relation.priority)
