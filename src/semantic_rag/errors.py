"""Exception hierarchy for the RAG pipeline."""


class RAGError(Exception):
    """Base class for all pipeline errors."""


class InvalidInputError(RAGError):
    """The request is empty or malformed and can be corrected by the caller."""


class UnsupportedTypeError(InvalidInputError):
    """A document's MIME type has no text parser."""


class ProviderError(RAGError):
    """An embedding or generation call to the model provider failed."""


class StoreError(RAGError):
    """The vector store was unreachable or rejected an operation."""


class CacheError(RAGError):
    """A semantic cache operation failed."""
