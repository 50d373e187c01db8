"""Error taxonomy shared by the retrieval pipeline and its surfaces."""


class DocQAError(Exception):
    """Base error for the document Q&A service."""


class ValidationError(DocQAError, ValueError):
    """Bad caller input. Surfaced immediately, never retried."""


class CapabilityError(DocQAError):
    """The embedder or generator failed or returned a malformed response."""

    def __init__(self, message: str, rate_limited: bool = False):
        super().__init__(message)
        self.rate_limited = rate_limited


class BackendUnavailable(DocQAError):
    """The durable vector backend could not serve a request."""


class DimensionMismatchError(DocQAError, ValueError):
    """A vector does not match the dimension the index was built with."""

    def __init__(self, expected: int, actual: int):
        super().__init__(
            f"Embedding dimension mismatch: expected {expected}, got {actual}"
        )
        self.expected = expected
        self.actual = actual


class EmptyDocumentError(DocQAError):
    """A document produced no content to index."""
