"""Semantic response cache: reuses answers for prompts that mean the same thing.

Entries live in their own vector index, keyed by the embedding of the prompt
alone; the retrieved context is not part of the key, and ingesting new
documents does not invalidate anything. Clearing the cache is the only way
to drop stale answers.

The cache is an optimization: lookup and store never raise, failures are
reported to the event sink and treated as a miss or a no-op.
"""

import logging
import time
import uuid

from semantic_rag.config import CacheConfig
from semantic_rag.errors import CacheError, ProviderError, StoreError
from semantic_rag.events import EventSink
from semantic_rag.models import CacheEntry, CacheLookup
from semantic_rag.vector_store import VectorIndex

logger = logging.getLogger(__name__)


def similarity_from_distance(distance: float) -> float:
    """Cosine similarity for a cosine distance, rounded to four places.

    Rounding absorbs float32 noise from the index, so an identical prompt
    scores exactly 1.0.
    """
    return round(1.0 - distance, 4)


def _preview(text: str, length: int = 50) -> str:
    return text if len(text) <= length else text[:length] + "..."


class SemanticCache:
    """Prompt-to-answer cache backed by a dedicated vector index.

    Only the nearest live entry is considered on lookup. Entries carry an
    ``expires_at`` timestamp when the configured TTL is non-zero.
    """

    def __init__(
        self,
        embedder,
        index: VectorIndex,
        events: EventSink,
        config: CacheConfig | None = None,
    ) -> None:
        self._embedder = embedder
        self._index = index
        self._events = events
        self.config = config or CacheConfig()

    def lookup(self, prompt: str, similarity_threshold: float) -> CacheLookup:
        """Look up the cached answer of the nearest previous prompt.

        A hit requires ``round(1 - distance, 4) >= similarity_threshold``;
        the boundary is inclusive. Expired entries are never returned.

        Args:
            prompt: The raw user prompt.
            similarity_threshold: Minimum cosine similarity for a hit.

        Returns:
            A hit with the cached response and its similarity, or a miss.
        """
        try:
            if self._index.count() == 0:
                return self._miss(prompt, {"reason": "empty"})
            embedding = self._embedder.embed(prompt)
            hits = self._index.query(embedding, n_results=1, where=self._live_filter())
        except (ProviderError, StoreError) as exc:
            self._events.publish(
                "warning", "cache", "Cache lookup failed, treating as miss", {"error": str(exc)}
            )
            return CacheLookup(hit=False)

        if not hits:
            return self._miss(prompt, {"reason": "no live entries"})

        top = hits[0]
        similarity = similarity_from_distance(top.distance)
        if similarity >= similarity_threshold:
            cached_prompt = top.metadata.get("prompt")
            self._events.publish(
                "success",
                "cache",
                f'Cache HIT for: "{_preview(prompt)}"',
                {
                    "distance": top.distance,
                    "similarity": similarity,
                    "cached_prompt": cached_prompt,
                },
            )
            return CacheLookup(
                hit=True,
                response=top.document,
                similarity=similarity,
                cached_prompt=cached_prompt,
            )

        return self._miss(
            prompt,
            {
                "distance": top.distance,
                "similarity": similarity,
                "threshold": similarity_threshold,
            },
        )

    def _miss(self, prompt: str, details: dict) -> CacheLookup:
        self._events.publish("info", "cache", f'Cache MISS for: "{_preview(prompt)}"', details)
        return CacheLookup(hit=False)

    def store(self, prompt: str, response: str) -> bool:
        """Persist *response* under *prompt*.

        Returns:
            True if the entry was written, False if the write failed.
        """
        try:
            self.purge_expired()
            entry = CacheEntry(
                id=uuid.uuid4().hex,
                prompt=prompt,
                response=response,
                embedding=self._embedder.embed(prompt).tolist(),
                timestamp=time.time(),
                ttl=self.config.ttl_seconds,
            )
            self._index.upsert(
                ids=[entry.id],
                embeddings=[entry.embedding],
                documents=[entry.response],
                metadatas=[
                    {
                        "prompt": entry.prompt,
                        "timestamp": entry.timestamp,
                        "expires_at": entry.expires_at,
                    }
                ],
            )
        except (ProviderError, StoreError) as exc:
            self._events.publish("warning", "cache", "Cache store failed", {"error": str(exc)})
            return False

        self._events.publish(
            "info",
            "cache",
            f'Stored in cache: "{_preview(prompt)}"',
            {"ttl": entry.ttl or None},
        )
        return True

    def purge_expired(self) -> int:
        """Delete entries whose TTL has elapsed."""
        removed = self._index.delete_where(
            {"$and": [{"expires_at": {"$gt": 0.0}}, {"expires_at": {"$lte": time.time()}}]}
        )
        if removed:
            logger.debug("Purged %d expired cache entries", removed)
        return removed

    def clear(self) -> int:
        """Remove every cache entry.

        Returns:
            Number of entries removed.

        Raises:
            CacheError: If the cache index could not be cleared.
        """
        try:
            removed = self._index.delete_all()
        except StoreError as exc:
            self._events.publish("error", "cache", "Cache clear failed", {"error": str(exc)})
            raise CacheError(f"Could not clear cache: {exc}") from exc
        self._events.publish("info", "cache", f"Cleared {removed} cache entries")
        return removed

    def stats(self) -> dict:
        try:
            total = self._index.count()
        except StoreError as exc:
            raise CacheError(f"Could not read cache stats: {exc}") from exc
        return {
            "total_entries": total,
            "index": self._index.name,
            "ttl_seconds": self.config.ttl_seconds,
        }

    @staticmethod
    def _live_filter() -> dict:
        return {"$or": [{"expires_at": {"$eq": 0.0}}, {"expires_at": {"$gt": time.time()}}]}
