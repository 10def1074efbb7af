"""Embedding, storage and indexing of corpus chunks."""

from .embedder import Embedder
from .indexer import CorpusIndexer
from .store import DocumentStore

__all__ = ["Embedder", "DocumentStore", "CorpusIndexer"]
