"""Local embedding generation using sentence-transformers."""

import logging
from typing import Iterator

from sentence_transformers import SentenceTransformer

log = logging.getLogger(__name__)

# Options:
# - sentence-transformers/all-MiniLM-L6-v2: small and fast, English, 384 dims
# - BAAI/bge-base-en-v1.5: better code/prose recall, 768 dims
DEFAULT_MODEL = "sentence-transformers/all-MiniLM-L6-v2"
DEFAULT_DIMENSIONS = 384
MAX_INPUT_CHARS = 8000


class Embedder:
    """Generate embeddings using a local sentence-transformers model."""

    def __init__(self, model: str = DEFAULT_MODEL):
        log.info(f"Loading embedding model: {model}")
        self.model_name = model
        self.model = SentenceTransformer(model)
        self.dimensions = self.model.get_sentence_embedding_dimension()
        log.info(f"Model loaded. Dimensions: {self.dimensions}")

    def embed(self, text: str) -> list[float]:
        """Embed a query or a single chunk; input is truncated to 8000 chars."""
        embedding = self.model.encode(
            text[:MAX_INPUT_CHARS], normalize_embeddings=True
        )
        return embedding.tolist()

    def embed_batch(
        self, texts: list[str], batch_size: int = 32
    ) -> Iterator[list[float]]:
        """Generate embeddings for multiple texts.

        Args:
            texts: Chunk texts
            batch_size: Number of texts per encode call

        Yields:
            One embedding per input text, in order
        """
        texts = [t[:MAX_INPUT_CHARS] for t in texts]

        for i in range(0, len(texts), batch_size):
            batch = texts[i : i + batch_size]
            embeddings = self.model.encode(
                batch, normalize_embeddings=True, show_progress_bar=False
            )
            for emb in embeddings:
                yield emb.tolist()
