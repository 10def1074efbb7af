"""Query normalisation and identifier-aware lexical scoring."""

from collections import Counter
import re

_WS_RE = re.compile(r"\s+")
_WORD_RE = re.compile(r"[A-Za-z0-9]+")
# Splits camelCase / PascalCase / acronym boundaries: "parseHTTPRequest" -> parse, HTTP, Request
_CAMEL_RE = re.compile(r"[A-Z]+(?=[A-Z][a-z])|[A-Z]?[a-z]+|[A-Z]+|[0-9]+")


def normalize_whitespace(text: str | None) -> str:
    """Collapse whitespace to single spaces."""
    if text is None:
        return ""
    return _WS_RE.sub(" ", text).strip()


def normalize_query(query: str | None) -> str:
    """Canonical form of a query for cache keys."""
    return normalize_whitespace(query).lower()


def tokenize(text: str | None) -> tuple[str, ...]:
    """Lowercase tokens, with code identifiers split into their parts.

    ``getUserName`` yields ``get``, ``user``, ``name`` and also the joined
    ``getusername`` so exact identifier queries still match.
    """
    tokens: list[str] = []
    for word in _WORD_RE.findall(normalize_whitespace(text)):
        parts = _CAMEL_RE.findall(word)
        lowered = word.lower()
        if len(parts) > 1:
            tokens.extend(p.lower() for p in parts)
            tokens.append(lowered)
        else:
            tokens.append(lowered)
    return tuple(tokens)


def keyword_overlap_score(query: str, candidate: str) -> float:
    """Share of query tokens present in the candidate, in [0, 1]."""
    q_tokens = tokenize(query)
    if not q_tokens:
        return 0.0
    c_counter = Counter(tokenize(candidate))
    if not c_counter:
        return 0.0

    q_counter = Counter(q_tokens)
    overlap = sum(min(count, c_counter[t]) for t, count in q_counter.items())
    return min(1.0, overlap / len(q_tokens))
