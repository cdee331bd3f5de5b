"""Domain models for the RAG pipeline."""

from dataclasses import dataclass, field


@dataclass(frozen=True)
class Document:
    """A loaded document with its text content and metadata."""

    content: str
    metadata: dict = field(default_factory=dict)


@dataclass(frozen=True)
class Chunk:
    """A text chunk produced from a single source document."""

    content: str
    index: int
    total_in_group: int


@dataclass(frozen=True)
class StoredPassage:
    """A chunk persisted in the document index together with its embedding."""

    id: str
    content: str
    embedding: list[float]
    filename: str
    chunk_index: int
    total_chunks: int

    @property
    def metadata(self) -> dict:
        return {
            "filename": self.filename,
            "chunk_index": self.chunk_index,
            "total_chunks": self.total_chunks,
        }


@dataclass(frozen=True)
class CacheEntry:
    """A previously generated answer keyed by the prompt that produced it."""

    id: str
    prompt: str
    response: str
    embedding: list[float]
    timestamp: float
    ttl: int = 0

    @property
    def expires_at(self) -> float:
        """Absolute expiry time, or ``0.0`` when the entry never expires."""
        return self.timestamp + self.ttl if self.ttl > 0 else 0.0


@dataclass(frozen=True)
class SearchResult:
    """A nearest-neighbour hit from the document index.

    ``score`` is the cosine distance: lower means more similar.
    """

    content: str
    filename: str
    score: float


@dataclass(frozen=True)
class RetrievedContext:
    """A single retrieved context passage with relevance score."""

    text: str
    source: str
    relevance: float


@dataclass(frozen=True)
class CacheLookup:
    """Outcome of a semantic cache lookup."""

    hit: bool
    response: str | None = None
    similarity: float | None = None
    cached_prompt: str | None = None


@dataclass(frozen=True)
class ChatMessage:
    role: str
    content: str

    def to_dict(self) -> dict:
        return {"role": self.role, "content": self.content}


@dataclass(frozen=True)
class StreamEvent:
    """One item pulled from an answer stream.

    ``kind`` is one of ``cache_hit``, ``delta``, ``error`` or ``done``.
    """

    kind: str
    text: str = ""
    similarity: float | None = None


@dataclass(frozen=True)
class IngestResult:
    """Per-document outcome of an ingestion run."""

    filename: str
    status: str
    chunks: int = 0
    reason: str | None = None


@dataclass(frozen=True)
class RAGResponse:
    """The final, fully collected response from the RAG pipeline."""

    answer: str
    contexts: list[RetrievedContext] = field(default_factory=list)
    cached: bool = False
    error: bool = False
