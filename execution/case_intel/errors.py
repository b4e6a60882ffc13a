"""
Error kinds raised by the case intelligence pipeline.

Single-document operations raise these directly. Batch operations catch them
per document, record "document_id: message" strings, and only stop early on
the kinds listed in FATAL_BATCH_ERRORS.
"""


class CaseIntelError(Exception):
    """Base class for all case intelligence errors."""


class ExtractionUnavailable(CaseIntelError):
    """No text could be extracted from the raw document (scanned PDF, image)."""


class ModelServiceError(CaseIntelError):
    """The LLM or embedding service failed."""


class ModelRateLimited(ModelServiceError):
    """Upstream returned HTTP 429."""

    def __init__(self, message: str = "Rate limited"):
        super().__init__(message)


class ModelTimeout(ModelServiceError):
    """Upstream call exceeded the configured timeout."""

    def __init__(self, message: str = "Request timeout"):
        super().__init__(message)


class ModelAuthenticationError(ModelServiceError):
    """Upstream rejected the API key."""


class InvalidModelResponse(ModelServiceError):
    """The model returned something that is not the requested JSON object."""


class InvalidCategorySubtype(CaseIntelError, ValueError):
    """A (category, subtype) pair is not part of the taxonomy."""

    def __init__(self, category: str, subtype: str):
        self.category = category
        self.subtype = subtype
        super().__init__(f'Invalid subtype "{subtype}" for category "{category}"')


class DocumentNotFound(CaseIntelError, LookupError):
    """No document with the given id exists."""

    def __init__(self, document_id: str):
        self.document_id = document_id
        super().__init__(f"Document not found: {document_id}")


class ClassificationMissing(CaseIntelError):
    """A review action needs a classification but the document has none."""

    def __init__(self, document_id: str):
        self.document_id = document_id
        super().__init__(f"Document has no classification: {document_id}")


class EmbeddingStoreUnavailable(CaseIntelError):
    """The vector query failed (missing extension, index or connection)."""


class EmbeddingDimensionMismatch(CaseIntelError, ValueError):
    """An embedding does not match the configured index dimension."""

    def __init__(self, expected: int, actual: int):
        self.expected = expected
        self.actual = actual
        super().__init__(
            f"Embedding dimension mismatch: expected {expected}, got {actual}"
        )


# Errors that abort a batch: every later call would fail the same way.
FATAL_BATCH_ERRORS = (ModelRateLimited, ModelTimeout, ModelAuthenticationError)
