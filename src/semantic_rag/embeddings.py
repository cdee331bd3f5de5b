"""Embedding gateway: turns text into fixed-dimension vectors via Ollama."""

import logging

import numpy as np
import ollama

from semantic_rag.config import EmbeddingConfig
from semantic_rag.errors import ProviderError

logger = logging.getLogger(__name__)


class Embedder:
    """Calls the embedding model, batching requests to the provider limit.

    Every vector returned by one instance has the same dimension; when
    ``EmbeddingConfig.dimensions`` is set it is enforced, otherwise the first
    vector seen fixes it.
    """

    def __init__(self, config: EmbeddingConfig | None = None) -> None:
        self.config = config or EmbeddingConfig()
        self._dimensions = self.config.dimensions

    @property
    def dimensions(self) -> int | None:
        return self._dimensions

    def embed(self, text: str) -> np.ndarray:
        """Embed a single text."""
        try:
            vectors = self._call(text)
        except ProviderError:
            raise
        except Exception as exc:
            raise ProviderError(f"Embedding request failed: {exc}") from exc
        if len(vectors) != 1:
            raise ProviderError(f"Expected 1 embedding, provider returned {len(vectors)}")
        return vectors[0]

    def embed_batch(self, texts: list[str]) -> list[np.ndarray]:
        """Embed many texts, preserving input order.

        Texts are sent in sequential batches of ``batch_size``; results are
        concatenated in call order.

        Raises:
            ProviderError: If any batch fails. The message names the batch.
        """
        if not texts:
            return []

        size = self.config.batch_size
        result: list[np.ndarray] = []
        for batch_index, start in enumerate(range(0, len(texts), size)):
            batch = texts[start : start + size]
            try:
                vectors = self._call(batch)
            except Exception as exc:
                raise ProviderError(f"Embedding batch {batch_index} failed: {exc}") from exc
            if len(vectors) != len(batch):
                raise ProviderError(
                    f"Embedding batch {batch_index} returned {len(vectors)} vectors "
                    f"for {len(batch)} inputs"
                )
            result.extend(vectors)

        logger.debug("Embedded %d texts in %d batch(es)", len(texts), -(-len(texts) // size))
        return result

    def _call(self, payload: str | list[str]) -> list[np.ndarray]:
        response = ollama.embed(model=self.config.model, input=payload)
        vectors = [np.asarray(v, dtype=np.float32) for v in response["embeddings"]]
        for vector in vectors:
            self._check_dimensions(vector)
        return vectors

    def _check_dimensions(self, vector: np.ndarray) -> None:
        if vector.ndim != 1 or vector.size == 0:
            raise ProviderError(f"Malformed embedding with shape {vector.shape}")
        if self._dimensions is None:
            self._dimensions = int(vector.size)
        elif vector.size != self._dimensions:
            raise ProviderError(
                f"Embedding has {vector.size} dimensions, expected {self._dimensions}"
            )
