"""Vector store: ChromaDB collections holding explicit embeddings.

The same :class:`VectorIndex` backs both the document index and the semantic
cache; they differ only in collection name and in what they put in metadata.
All distances are cosine distances: lower means more similar.
"""

import logging
from collections.abc import Iterator, Sequence
from contextlib import contextmanager
from dataclasses import dataclass

import chromadb

from semantic_rag.config import VectorStoreConfig
from semantic_rag.errors import StoreError
from semantic_rag.models import SearchResult, StoredPassage

logger = logging.getLogger(__name__)


def get_client(config: VectorStoreConfig | None = None) -> chromadb.PersistentClient:
    """Return a ChromaDB persistent client.

    Args:
        config: Vector store settings (db path, etc.).
            Uses defaults if not provided.

    Returns:
        A ChromaDB PersistentClient connected to the configured path.
    """
    cfg = config or VectorStoreConfig()
    return chromadb.PersistentClient(path=cfg.db_path)


@contextmanager
def _store_errors(action: str) -> Iterator[None]:
    try:
        yield
    except StoreError:
        raise
    except Exception as exc:
        raise StoreError(f"Vector store {action} failed: {exc}") from exc


@dataclass(frozen=True)
class IndexHit:
    id: str
    document: str
    metadata: dict
    distance: float


class VectorIndex:
    """A named cosine-distance collection of ``(id, embedding, document, metadata)``."""

    def __init__(self, client, name: str, batch_size: int = 100) -> None:
        self._client = client
        self.name = name
        self.batch_size = batch_size
        self._collection = None

    def ensure_index(self):
        """Create the collection if it is missing; never recreate an existing one.

        An existing collection is accepted as-is, even if it was created with
        different settings.
        """
        if self._collection is None:
            with _store_errors("create index"):
                self._collection = self._client.get_or_create_collection(
                    name=self.name,
                    embedding_function=None,
                    metadata={"hnsw:space": "cosine"},
                )
            logger.debug("Vector index %r ready", self.name)
        return self._collection

    def upsert(
        self,
        ids: Sequence[str],
        embeddings: Sequence[Sequence[float]],
        documents: Sequence[str],
        metadatas: Sequence[dict],
    ) -> int:
        """Insert or replace records in batches of ``batch_size``.

        Returns:
            Number of records written.
        """
        if not ids:
            return 0
        collection = self.ensure_index()
        with _store_errors("upsert"):
            for start in range(0, len(ids), self.batch_size):
                end = start + self.batch_size
                collection.upsert(
                    ids=list(ids[start:end]),
                    embeddings=[list(map(float, e)) for e in embeddings[start:end]],
                    documents=list(documents[start:end]),
                    metadatas=list(metadatas[start:end]),
                )
        return len(ids)

    def query(
        self,
        embedding: Sequence[float],
        n_results: int,
        where: dict | None = None,
    ) -> list[IndexHit]:
        """Return up to *n_results* nearest records, closest first."""
        collection = self.ensure_index()
        with _store_errors("query"):
            available = collection.count()
            if available == 0:
                return []
            kwargs = {
                "query_embeddings": [list(map(float, embedding))],
                "n_results": min(n_results, available),
                "include": ["documents", "metadatas", "distances"],
            }
            if where:
                kwargs["where"] = where
            results = collection.query(**kwargs)

        ids = (results.get("ids") or [[]])[0]
        documents = (results.get("documents") or [[]])[0]
        metadatas = (results.get("metadatas") or [[]])[0]
        distances = (results.get("distances") or [[]])[0]

        hits = [
            IndexHit(id=i, document=doc or "", metadata=meta or {}, distance=float(dist))
            for i, doc, meta, dist in zip(ids, documents, metadatas, distances)
        ]
        hits.sort(key=lambda h: h.distance)
        return hits

    def delete_where(self, where: dict) -> int:
        """Delete every record matching *where*; return how many were removed."""
        collection = self.ensure_index()
        with _store_errors("delete"):
            ids = collection.get(where=where, include=["metadatas"]).get("ids") or []
            if ids:
                collection.delete(ids=ids)
        return len(ids)

    def delete_all(self) -> int:
        """Delete every record but keep the collection itself."""
        collection = self.ensure_index()
        with _store_errors("delete"):
            ids = collection.get(include=["metadatas"]).get("ids") or []
            for start in range(0, len(ids), self.batch_size):
                collection.delete(ids=ids[start : start + self.batch_size])
        logger.info("Deleted %d records from %r", len(ids), self.name)
        return len(ids)

    def count(self) -> int:
        collection = self.ensure_index()
        with _store_errors("count"):
            return collection.count()


class PassageStore(VectorIndex):
    """The document index: stored passages and similarity search over them."""

    def upsert_passage(self, passage: StoredPassage) -> None:
        self.upsert_passages([passage])

    def upsert_passages(self, passages: Sequence[StoredPassage]) -> int:
        """Add passages to the collection in batches.

        Args:
            passages: Passages with their embeddings and metadata.

        Returns:
            Number of passages written (0 if the list is empty).
        """
        added = self.upsert(
            ids=[p.id for p in passages],
            embeddings=[p.embedding for p in passages],
            documents=[p.content for p in passages],
            metadatas=[p.metadata for p in passages],
        )
        if added:
            logger.info("Added %d passages to the vector store.", added)
        return added

    def search(self, query_embedding: Sequence[float], top_k: int) -> list[SearchResult]:
        """Find the *top_k* passages nearest to *query_embedding*.

        Returns:
            Results sorted by ascending cosine distance (``score``); empty if
            the index has no passages.

        Raises:
            StoreError: If the query fails. Partial results are never returned.
        """
        if top_k < 1:
            raise ValueError("top_k must be at least 1")
        return [
            SearchResult(
                content=hit.document,
                filename=hit.metadata.get("filename", "unknown"),
                score=hit.distance,
            )
            for hit in self.query(query_embedding, n_results=top_k)
        ]


def open_stores(
    config: VectorStoreConfig | None = None,
    client=None,
) -> tuple[PassageStore, VectorIndex]:
    """Open the document index and the cache index, creating them if absent."""
    cfg = config or VectorStoreConfig()
    client = client or get_client(cfg)
    passages = PassageStore(client, cfg.collection_name, cfg.batch_size)
    cache_index = VectorIndex(client, cfg.cache_collection_name, cfg.batch_size)
    passages.ensure_index()
    cache_index.ensure_index()
    return passages, cache_index
