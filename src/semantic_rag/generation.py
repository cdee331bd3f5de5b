"""Response generation: streams chat completions from Ollama."""

import logging
from collections.abc import Iterator

import ollama

from semantic_rag.errors import ProviderError
from semantic_rag.models import ChatMessage
from semantic_rag.settings import CONTEXT_PLACEHOLDER, GenerationSettings

logger = logging.getLogger(__name__)

NO_DOCUMENTS_CONTEXT = "No relevant documents found in the knowledge base."


def build_system_prompt(context: str, settings: GenerationSettings) -> str:
    """Pick the system prompt for *context*.

    The no-documents template is used when *context* is the
    :data:`NO_DOCUMENTS_CONTEXT` sentinel; otherwise the context template is
    filled in.
    """
    if context == NO_DOCUMENTS_CONTEXT:
        return settings.no_docs_prompt_template
    return settings.system_prompt_template.replace(CONTEXT_PLACEHOLDER, context)


class GenerationStream:
    """A pull-based handle over a streamed completion.

    Iterate to receive text fragments as the provider produces them. The
    sequence is finite and cannot be restarted. :meth:`cancel` stops the
    underlying request; iteration then ends without error.
    """

    def __init__(self, chunks: Iterator) -> None:
        self._chunks = chunks
        self._cancelled = False
        self._consumed = False

    @property
    def cancelled(self) -> bool:
        return self._cancelled

    def __iter__(self) -> Iterator[str]:
        if self._consumed:
            raise RuntimeError("GenerationStream can only be iterated once")
        self._consumed = True
        return self._fragments()

    def _fragments(self) -> Iterator[str]:
        try:
            for chunk in self._chunks:
                if self._cancelled:
                    return
                text = chunk["message"]["content"]
                if text:
                    yield text
        except Exception as exc:
            if self._cancelled:
                return
            raise ProviderError(f"Generation failed mid-stream: {exc}") from exc
        finally:
            self._close()

    def cancel(self) -> None:
        self._cancelled = True
        self._close()

    def _close(self) -> None:
        close = getattr(self._chunks, "close", None)
        if close is not None:
            try:
                close()
            except ValueError:
                # Closing a generator that is currently executing.
                pass


def stream_chat(
    messages: list[ChatMessage],
    system_prompt: str,
    settings: GenerationSettings,
) -> GenerationStream:
    """Start a streamed chat completion.

    Args:
        messages: Full conversation history, oldest first.
        system_prompt: Prompt placed before the history.
        settings: Model name, temperature and token limit.

    Returns:
        A :class:`GenerationStream` yielding text fragments.

    Raises:
        ProviderError: If the request cannot be started.
    """
    payload = [{"role": "system", "content": system_prompt}]
    payload.extend(m.to_dict() for m in messages)
    try:
        chunks = ollama.chat(
            model=settings.model,
            messages=payload,
            stream=True,
            options={"temperature": settings.temperature, "num_predict": settings.max_tokens},
        )
    except Exception as exc:
        raise ProviderError(f"Generation request failed: {exc}") from exc
    return GenerationStream(iter(chunks))
