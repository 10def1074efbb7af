"""Error types surfaced by the search and related-info entry points."""


class ContextError(Exception):
    """Base class for retrieval failures reported to callers."""

    error_type = "context_error"


class InvalidInputError(ContextError, ValueError):
    """Caller supplied a missing or malformed argument."""

    error_type = "invalid_input"


class UpstreamError(ContextError, RuntimeError):
    """Embedding or primary vector-store search failed on the main path."""

    error_type = "upstream_failure"

    def __init__(self, stage: str, message: str):
        super().__init__(f"{stage} failed: {message}")
        self.stage = stage
