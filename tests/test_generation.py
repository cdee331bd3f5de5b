"""Tests for streamed response generation."""

from unittest.mock import patch

import pytest

from semantic_rag.errors import ProviderError
from semantic_rag.generation import (
    NO_DOCUMENTS_CONTEXT,
    GenerationStream,
    build_system_prompt,
    stream_chat,
)
from semantic_rag.models import ChatMessage
from semantic_rag.settings import GenerationSettings

from conftest import ollama_chunks


class _ClosableChunks:
    """Iterator over chunk dicts that records whether it was closed."""

    def __init__(self, chunks: list[dict]) -> None:
        self._it = iter(chunks)
        self.closed = False

    def __iter__(self):
        return self

    def __next__(self) -> dict:
        return next(self._it)

    def close(self) -> None:
        self.closed = True


class TestBuildSystemPrompt:
    def test_fills_context_placeholder(self) -> None:
        settings = GenerationSettings(system_prompt_template="Use this:\n{{context}}\nEnd.")
        prompt = build_system_prompt("[Source 1: a.txt]\nfacts", settings)
        assert prompt == "Use this:\n[Source 1: a.txt]\nfacts\nEnd."

    def test_no_documents_uses_fallback_template(self) -> None:
        settings = GenerationSettings(no_docs_prompt_template="Nothing found.")
        assert build_system_prompt(NO_DOCUMENTS_CONTEXT, settings) == "Nothing found."

    def test_default_template_contains_context(self) -> None:
        prompt = build_system_prompt("The sky is blue.", GenerationSettings())
        assert "The sky is blue." in prompt
        assert "{{context}}" not in prompt


class TestStreamChat:
    def test_yields_non_empty_fragments(self) -> None:
        with patch("semantic_rag.generation.ollama") as mock_ollama:
            mock_ollama.chat.return_value = iter(ollama_chunks("Hel", "", "lo"))
            stream = stream_chat([ChatMessage("user", "hi")], "sys", GenerationSettings())
            assert list(stream) == ["Hel", "lo"]

    def test_sends_system_prompt_history_and_options(self) -> None:
        settings = GenerationSettings(model="llama3", temperature=0.2, max_tokens=128)
        history = [
            ChatMessage("user", "Hello"),
            ChatMessage("assistant", "Hi there"),
            ChatMessage("user", "What is RAG?"),
        ]
        with patch("semantic_rag.generation.ollama") as mock_ollama:
            mock_ollama.chat.return_value = iter([])
            list(stream_chat(history, "system text", settings))

        kwargs = mock_ollama.chat.call_args.kwargs
        assert kwargs["model"] == "llama3"
        assert kwargs["stream"] is True
        assert kwargs["options"] == {"temperature": 0.2, "num_predict": 128}
        assert kwargs["messages"][0] == {"role": "system", "content": "system text"}
        assert kwargs["messages"][1:] == [m.to_dict() for m in history]

    def test_start_failure_raises_provider_error(self) -> None:
        with patch("semantic_rag.generation.ollama") as mock_ollama:
            mock_ollama.chat.side_effect = ConnectionError("refused")
            with pytest.raises(ProviderError, match="Generation request failed"):
                stream_chat([ChatMessage("user", "hi")], "sys", GenerationSettings())


class TestGenerationStream:
    def test_mid_stream_failure_raises_provider_error(self) -> None:
        def broken():
            yield {"message": {"content": "partial"}}
            raise RuntimeError("connection dropped")

        received = []
        with pytest.raises(ProviderError, match="mid-stream"):
            for fragment in GenerationStream(broken()):
                received.append(fragment)
        assert received == ["partial"]

    def test_cancel_ends_iteration(self) -> None:
        chunks = _ClosableChunks(ollama_chunks("a", "b", "c"))
        stream = GenerationStream(chunks)
        it = iter(stream)

        assert next(it) == "a"
        stream.cancel()

        assert list(it) == []
        assert stream.cancelled is True
        assert chunks.closed is True

    def test_closes_source_when_exhausted(self) -> None:
        chunks = _ClosableChunks(ollama_chunks("x"))
        assert list(GenerationStream(chunks)) == ["x"]
        assert chunks.closed is True

    def test_single_iteration_only(self) -> None:
        stream = GenerationStream(iter(ollama_chunks("x")))
        list(stream)
        with pytest.raises(RuntimeError):
            iter(stream)
