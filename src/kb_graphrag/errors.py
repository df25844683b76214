class GraphRAGError(Exception):
    """Base exception for retrieval engine errors."""


class SnapshotError(GraphRAGError):
    """Raised when a graph snapshot cannot be read or parsed."""


class SourceUnavailableError(GraphRAGError):
    """Raised when a search backend call fails."""


class SourceTimeoutError(SourceUnavailableError):
    """Raised when a search backend does not answer in time."""
