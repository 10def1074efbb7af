import pytest

from src.retrieval.tokenize import (
    keyword_overlap_score,
    normalize_query,
    normalize_whitespace,
    tokenize,
)


def test_tokenize_is_deterministic():
    text = "RL\tand\nIL!!!"
    first = tokenize(text)
    second = tokenize(text)

    assert first == second
    assert first == ("rl", "and", "il")


def test_tokenize_splits_identifiers():
    assert tokenize("getUserName") == ("get", "user", "name", "getusername")
    assert tokenize("parseHTTPRequest") == (
        "parse",
        "http",
        "request",
        "parsehttprequest",
    )
    assert tokenize("user_id") == ("user", "id")


def test_normalize_query_collapses_whitespace_and_case():
    assert normalize_whitespace("  a \n\t b ") == "a b"
    assert normalize_query("  Auth   FLOW ") == "auth flow"
    assert normalize_query(None) == ""


def test_keyword_overlap_matches_identifier_parts():
    assert keyword_overlap_score("get user", "def getUserName(self):") == 1.0


def test_keyword_overlap_partial_coverage():
    partial = keyword_overlap_score("reinforcement learning", "reinforcement")
    assert partial == pytest.approx(0.5)


def test_keyword_overlap_handles_empty_inputs():
    assert keyword_overlap_score("", "reinforcement") == 0.0
    assert keyword_overlap_score("reinforcement", "") == 0.0
    assert keyword_overlap_score("!!!", "reinforcement") == 0.0
