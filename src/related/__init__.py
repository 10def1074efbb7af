"""Related-info discovery: relationship heuristics, git mining, aggregation."""

from .aggregator import RelatedInfoAggregator
from .git_history import GitHistoryMiner, GitRepository, get_repo_root
from .relationships import RelationType, detect_relation_type

__all__ = [
    "RelatedInfoAggregator",
    "GitHistoryMiner",
    "GitRepository",
    "get_repo_root",
    "RelationType",
    "detect_relation_type",
]
