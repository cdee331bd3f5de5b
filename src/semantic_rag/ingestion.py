"""Ingestion pipeline: parse, chunk, embed and store documents."""

import logging
import uuid
from collections.abc import Iterable

from semantic_rag.config import ChunkConfig
from semantic_rag.document_loader import parse_to_text
from semantic_rag.events import EventSink
from semantic_rag.models import Document, IngestResult, StoredPassage
from semantic_rag.text_chunker import chunk_with_config
from semantic_rag.vector_store import PassageStore

logger = logging.getLogger(__name__)


class Ingestor:
    """Turns source documents into stored, embedded passages."""

    def __init__(
        self,
        embedder,
        store: PassageStore,
        events: EventSink,
        chunk_config: ChunkConfig | None = None,
    ) -> None:
        self.embedder = embedder
        self.store = store
        self.events = events
        self.chunk_config = chunk_config or ChunkConfig()

    def index_text(self, text: str, filename: str) -> IngestResult:
        """Chunk, embed and store one document's text.

        Raises:
            ProviderError: If embedding fails.
            StoreError: If the passages cannot be written.
        """
        chunks = chunk_with_config(text, self.chunk_config)
        if not chunks:
            self.events.publish("warning", "ingest", f"Skipped {filename}: no content")
            return IngestResult(filename=filename, status="skipped", reason="No content")

        embeddings = self.embedder.embed_batch([c.content for c in chunks])
        passages = [
            StoredPassage(
                id=str(uuid.uuid4()),
                content=chunk.content,
                embedding=embedding.tolist(),
                filename=filename,
                chunk_index=chunk.index,
                total_chunks=chunk.total_in_group,
            )
            for chunk, embedding in zip(chunks, embeddings)
        ]
        self.store.upsert_passages(passages)

        self.events.publish(
            "success",
            "ingest",
            f"Indexed {filename}",
            {"chunks": len(passages)},
        )
        return IngestResult(filename=filename, status="success", chunks=len(passages))

    def ingest_files(self, files: Iterable[tuple[bytes, str, str]]) -> list[IngestResult]:
        """Ingest ``(data, filename, mime_type)`` triples.

        A document that fails to parse, embed or store is recorded with
        status ``error`` and does not stop the rest of the batch.
        """
        results: list[IngestResult] = []
        for data, filename, mime_type in files:
            try:
                text = parse_to_text(data, mime_type)
                results.append(self.index_text(text, filename))
            except Exception as exc:
                logger.exception("Failed to ingest %s", filename)
                self.events.publish(
                    "error",
                    "ingest",
                    f"Failed to ingest {filename}",
                    {"error": str(exc), "mime_type": mime_type},
                )
                results.append(IngestResult(filename=filename, status="error", reason=str(exc)))
        return results

    def ingest_documents(self, documents: Iterable[Document]) -> list[IngestResult]:
        """Ingest already-loaded documents, isolating failures per document."""
        results: list[IngestResult] = []
        for doc in documents:
            filename = doc.metadata.get("source", "unknown")
            try:
                results.append(self.index_text(doc.content, filename))
            except Exception as exc:
                logger.exception("Failed to ingest %s", filename)
                self.events.publish(
                    "error", "ingest", f"Failed to ingest {filename}", {"error": str(exc)}
                )
                results.append(IngestResult(filename=filename, status="error", reason=str(exc)))
        return results
