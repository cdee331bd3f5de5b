"""Shared fixtures for the test suite."""

import hashlib
import re
import tempfile
from pathlib import Path

import chromadb
import numpy as np
import pytest

from semantic_rag.config import AppConfig, CacheConfig, VectorStoreConfig
from semantic_rag.events import LogBuffer
from semantic_rag.ingestion import Ingestor
from semantic_rag.models import Document
from semantic_rag.rag_engine import RAGEngine
from semantic_rag.semantic_cache import SemanticCache
from semantic_rag.services import Services
from semantic_rag.settings import SettingsStore
from semantic_rag.vector_store import PassageStore, VectorIndex

DIMS = 32


def vectorize(text: str) -> np.ndarray:
    """Deterministic bag-of-words embedding with a small constant component."""
    vec = np.zeros(DIMS, dtype=np.float32)
    vec[0] = 0.1
    for word in re.findall(r"[a-z0-9]+", text.lower()):
        idx = 1 + int(hashlib.md5(word.encode()).hexdigest(), 16) % (DIMS - 1)
        vec[idx] += 1.0
    return vec / np.linalg.norm(vec)


class FakeEmbedder:
    """Stands in for the Ollama-backed Embedder without network access."""

    dimensions = DIMS

    def __init__(self) -> None:
        self.calls: list[str] = []

    def embed(self, text: str) -> np.ndarray:
        self.calls.append(text)
        return vectorize(text)

    def embed_batch(self, texts: list[str]) -> list[np.ndarray]:
        self.calls.extend(texts)
        return [vectorize(t) for t in texts]


def ollama_chunks(*fragments: str) -> list[dict]:
    """Build the chunk dicts Ollama yields for a streamed chat."""
    return [{"message": {"role": "assistant", "content": f}} for f in fragments]


@pytest.fixture
def fake_embedder() -> FakeEmbedder:
    return FakeEmbedder()


@pytest.fixture
def events() -> LogBuffer:
    return LogBuffer(max_entries=100)


@pytest.fixture
def chroma_client(tmp_path):
    return chromadb.PersistentClient(path=str(tmp_path / "chroma_db"))


@pytest.fixture
def passage_store(chroma_client) -> PassageStore:
    store = PassageStore(chroma_client, "test_documents")
    store.ensure_index()
    return store


@pytest.fixture
def cache_index(chroma_client) -> VectorIndex:
    index = VectorIndex(chroma_client, "test_cache")
    index.ensure_index()
    return index


@pytest.fixture
def semantic_cache(fake_embedder, cache_index, events) -> SemanticCache:
    return SemanticCache(fake_embedder, cache_index, events, CacheConfig(ttl_seconds=0))


@pytest.fixture
def services(tmp_path, fake_embedder, passage_store, semantic_cache, events) -> Services:
    """Real pipeline components over a temporary ChromaDB and a fake embedder."""
    config = AppConfig(
        documents_dir=str(tmp_path / "docs"),
        vector_store=VectorStoreConfig(db_path=str(tmp_path / "chroma_db")),
    )
    return Services(
        config=config,
        events=events,
        settings=SettingsStore(),
        store=passage_store,
        cache=semantic_cache,
        engine=RAGEngine(fake_embedder, passage_store, semantic_cache, events),
        ingestor=Ingestor(fake_embedder, passage_store, events, config.chunk),
    )


@pytest.fixture
def sample_text() -> str:
    return (
        "Python is a high-level programming language. "
        "It was created by Guido van Rossum. "
        "Python supports multiple paradigms. "
        "It is widely used in data science and web development."
    )


@pytest.fixture
def sample_documents() -> list[Document]:
    return [
        Document(
            content="First document about Python programming.",
            metadata={"source": "doc1.txt", "mime_type": "text/plain"},
        ),
        Document(
            content="Second document about machine learning concepts.",
            metadata={"source": "doc2.txt", "mime_type": "text/plain"},
        ),
    ]


@pytest.fixture
def tmp_docs_dir() -> Path:
    """Create a temporary directory with sample documents."""
    with tempfile.TemporaryDirectory() as tmpdir:
        d = Path(tmpdir)

        (d / "sample.txt").write_text(
            "This is a sample text document for testing the RAG system.",
            encoding="utf-8",
        )
        (d / "notes.md").write_text(
            "# Notes\n\nThis is a **markdown** document with some content.",
            encoding="utf-8",
        )
        # Unsupported type, skipped by the loader.
        (d / "image.png").write_bytes(b"\x89PNG\r\n")

        yield d


@pytest.fixture
def empty_docs_dir() -> Path:
    """Create an empty temporary directory."""
    with tempfile.TemporaryDirectory() as tmpdir:
        yield Path(tmpdir)
