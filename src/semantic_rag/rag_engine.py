"""RAG engine: retrieves context, consults the semantic cache, and streams
answers generated via Ollama."""

import logging
from collections.abc import Iterator, Sequence

from semantic_rag import generation
from semantic_rag.errors import InvalidInputError, ProviderError
from semantic_rag.events import EventSink
from semantic_rag.generation import NO_DOCUMENTS_CONTEXT, build_system_prompt
from semantic_rag.models import (
    CacheLookup,
    ChatMessage,
    RAGResponse,
    RetrievedContext,
    SearchResult,
    StreamEvent,
)
from semantic_rag.settings import RAGSettings

logger = logging.getLogger(__name__)

GENERIC_ERROR = "An error occurred processing your request"

_CONTEXT_DELIMITER = "\n\n---\n\n"


def _parse_results(results: Sequence[SearchResult]) -> list[RetrievedContext]:
    """Convert distance-scored search hits into RetrievedContext objects.

    Cosine distances are converted to similarity scores (1 - distance).
    """
    return [
        RetrievedContext(
            text=r.content,
            source=r.filename,
            relevance=round(1 - r.score, 4),
        )
        for r in results
    ]


def _filter_contexts(
    contexts: list[RetrievedContext],
    score_threshold: float,
) -> list[RetrievedContext]:
    """Keep contexts whose relevance is at or above *score_threshold*."""
    return [c for c in contexts if c.relevance >= score_threshold]


def _build_context_string(contexts: list[RetrievedContext]) -> str:
    """Format retrieved contexts into a prompt-ready string.

    Each passage is labelled with its 1-based source number and filename,
    separated by horizontal rules. With no passages the result is the
    :data:`NO_DOCUMENTS_CONTEXT` sentinel.
    """
    if not contexts:
        return NO_DOCUMENTS_CONTEXT
    parts = [f"[Source {i}: {ctx.source}]\n{ctx.text}" for i, ctx in enumerate(contexts, 1)]
    return _CONTEXT_DELIMITER.join(parts)


def _latest_user_message(messages: Sequence[ChatMessage]) -> ChatMessage:
    if not messages:
        raise InvalidInputError("No messages provided")
    for message in reversed(messages):
        if message.role == "user":
            if not message.content.strip():
                raise InvalidInputError("Latest user message is empty")
            return message
    raise InvalidInputError("No user message found")


class AnswerStream:
    """Handle over one answer: a cached payload or a live generation.

    Iterating yields :class:`StreamEvent` objects. A cache hit produces a
    single ``cache_hit`` event. A live answer produces ``delta`` events
    followed by ``done``, or a terminal ``error`` event if generation fails.
    The full answer is written to the cache only after ``done``; a failed or
    cancelled stream is never cached.
    """

    def __init__(
        self,
        *,
        prompt: str,
        messages: list[ChatMessage],
        contexts: list[RetrievedContext],
        context: str,
        settings: RAGSettings,
        cache,
        events: EventSink,
        lookup: CacheLookup | None = None,
    ) -> None:
        self.prompt = prompt
        self.contexts = contexts
        self.context = context
        self._messages = messages
        self._settings = settings
        self._cache = cache
        self._events = events
        self._lookup = lookup
        self._generation: generation.GenerationStream | None = None
        self._cancelled = False
        self._started = False

    @property
    def cached(self) -> bool:
        return self._lookup is not None and self._lookup.hit

    @property
    def similarity(self) -> float | None:
        return self._lookup.similarity if self.cached else None

    def __iter__(self) -> Iterator[StreamEvent]:
        if self._started:
            raise RuntimeError("AnswerStream can only be iterated once")
        self._started = True
        if self.cached:
            return iter([StreamEvent("cache_hit", self._lookup.response, self._lookup.similarity)])
        return self._generate()

    def cancel(self) -> None:
        """Stop generation; nothing is cached for a cancelled answer."""
        self._cancelled = True
        if self._generation is not None:
            self._generation.cancel()

    def _generate(self) -> Iterator[StreamEvent]:
        gen_settings = self._settings.generation
        system_prompt = build_system_prompt(self.context, gen_settings)
        self._events.publish(
            "info",
            "llm",
            f"Calling {gen_settings.model}...",
            {"documents": len(self.contexts), "messages": len(self._messages)},
        )

        parts: list[str] = []
        try:
            self._generation = generation.stream_chat(self._messages, system_prompt, gen_settings)
            for fragment in self._generation:
                if self._cancelled:
                    break
                parts.append(fragment)
                yield StreamEvent("delta", fragment)
        except ProviderError as exc:
            self._events.publish("error", "llm", "Generation failed", {"error": str(exc)})
            yield StreamEvent("error", GENERIC_ERROR)
            return
        except GeneratorExit:
            self._cancelled = True
            if self._generation is not None:
                self._generation.cancel()
            raise

        if self._cancelled:
            self._events.publish("warning", "llm", "Generation cancelled by caller")
            return

        answer = "".join(parts)
        self._events.publish(
            "success",
            "llm",
            f"{gen_settings.model} response complete",
            {"fragments": len(parts), "chars": len(answer)},
        )
        if self._settings.cache.enabled:
            self._cache.store(self.prompt, answer)
        yield StreamEvent("done")


class RAGEngine:
    """Coordinates embedding, retrieval, cache lookup and generation."""

    def __init__(self, embedder, store, cache, events: EventSink) -> None:
        self.embedder = embedder
        self.store = store
        self.cache = cache
        self.events = events

    def retrieve(self, query: str, settings: RAGSettings) -> list[RetrievedContext]:
        """Embed *query*, search the document index, and apply the score threshold.

        Raises:
            ProviderError: If the query cannot be embedded.
            StoreError: If the vector search fails.
        """
        retrieval = settings.retrieval
        self.events.publish(
            "info",
            "retrieval",
            f'Searching for: "{query[:50]}"',
            {"top_k": retrieval.top_k, "score_threshold": retrieval.score_threshold},
        )
        embedding = self.embedder.embed(query)
        results = self.store.search(embedding, retrieval.top_k)
        contexts = _filter_contexts(_parse_results(results), retrieval.score_threshold)

        for ctx in contexts:
            self.events.publish(
                "info",
                "retrieval",
                f"Chunk from {ctx.source} (score: {ctx.relevance:.4f})",
                {"preview": ctx.text[:100]},
            )
        self.events.publish(
            "success",
            "retrieval",
            f"Found {len(contexts)} relevant chunks",
            {"searched": len(results), "kept": len(contexts)},
        )
        return contexts

    def answer(self, messages: Sequence[ChatMessage], settings: RAGSettings) -> AnswerStream:
        """Run retrieval and the cache check, and return the answer handle.

        Everything up to generation happens before this returns, so input,
        provider and store failures are raised here rather than mid-stream.

        Args:
            messages: Conversation history; the latest ``user`` message is
                the query.
            settings: Snapshot of the runtime settings for this request.

        Raises:
            InvalidInputError: If there is no usable user message.
            ProviderError: If the query cannot be embedded.
            StoreError: If the vector search fails.
        """
        history = list(messages)
        prompt = _latest_user_message(history).content

        contexts = self.retrieve(prompt, settings)
        context = _build_context_string(contexts)

        lookup = None
        if settings.cache.enabled:
            lookup = self.cache.lookup(prompt, settings.cache.similarity_threshold)

        return AnswerStream(
            prompt=prompt,
            messages=history,
            contexts=contexts,
            context=context,
            settings=settings,
            cache=self.cache,
            events=self.events,
            lookup=lookup,
        )

    def ask(self, messages: Sequence[ChatMessage], settings: RAGSettings) -> RAGResponse:
        """Full RAG pipeline collected into a single response."""
        stream = self.answer(messages, settings)
        parts: list[str] = []
        failed = False
        for event in stream:
            if event.kind in ("cache_hit", "delta"):
                parts.append(event.text)
            elif event.kind == "error":
                failed = True
                parts = [event.text]
        return RAGResponse(
            answer="".join(parts),
            contexts=stream.contexts,
            cached=stream.cached,
            error=failed,
        )
