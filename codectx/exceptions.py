"""
Exception hierarchy for the code graph index.

Each exception carries the stage where it was raised so that the indexing
pipeline can report which step failed.
"""


class CodeGraphError(Exception):
    """
    Base exception for code graph errors.

    Args:
        stage: The stage where the error occurred
               (e.g., "storage", "embedding", "extraction")
        message: Human-readable error message
        original_error: The underlying exception, if any
    """

    def __init__(self, stage: str, message: str, original_error: Exception = None):
        self.stage = stage
        self.message = message
        self.original_error = original_error
        super().__init__(f"[{stage}] {message}")


class PointStoreError(CodeGraphError):
    """Error raised by the backing point store."""

    def __init__(self, message: str, original_error: Exception = None):
        super().__init__("storage", message, original_error)


class ResourceExistsError(PointStoreError):
    """A collection or payload index already exists."""


class ResourceNotFoundError(PointStoreError):
    """A collection does not exist."""


class EmbeddingError(CodeGraphError):
    """Error during embedding generation."""

    def __init__(self, message: str, original_error: Exception = None):
        super().__init__("embedding", message, original_error)


class ExtractionError(CodeGraphError):
    """Error while parsing a source file."""

    def __init__(self, message: str, original_error: Exception = None):
        super().__init__("extraction", message, original_error)
