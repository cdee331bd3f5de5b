"""Runtime settings: the administrator-tunable knobs read by every request.

Unlike :mod:`semantic_rag.config`, which is fixed at process start, these
values can be updated or reset while the server is running. Each request
takes one snapshot from the :class:`SettingsStore` and passes it through the
pipeline, so an update never changes the values an in-flight request sees.
"""

import logging
import threading
from collections.abc import Mapping

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from semantic_rag.config import LLMConfig
from semantic_rag.errors import InvalidInputError

logger = logging.getLogger(__name__)

CONTEXT_PLACEHOLDER = "{{context}}"

DEFAULT_SYSTEM_PROMPT = (
    "You are a helpful assistant that answers questions STRICTLY based on "
    "the provided document context.\n\n"
    "IMPORTANT RULES:\n"
    "1. ONLY use information from the provided context below to answer "
    "questions\n"
    "2. If the context doesn't fully answer the question, say \"Based on the "
    "available documents, I can only tell you that...\" and share what IS "
    "available\n"
    "3. Do NOT supplement with outside knowledge - if it's not in the "
    "context, don't include it\n"
    "4. Quote or reference specific sources when possible (e.g., \"According "
    "to [Source 1]...\")\n"
    "5. If the context is only tangentially related, acknowledge this "
    "limitation\n\n"
    "Context from retrieved documents:\n"
    f"{CONTEXT_PLACEHOLDER}"
)

DEFAULT_NO_DOCS_PROMPT = (
    "You are a helpful assistant for a document-based Q&A system. The user "
    "asked a question but NO relevant documents were found in the knowledge "
    "base.\n\n"
    "Your response MUST:\n"
    "1. Clearly inform the user that no relevant information was found in "
    "the available documents\n"
    "2. Suggest they try rephrasing their question or ask about topics that "
    "might be in the document collection\n"
    "3. Do NOT answer the question using your general knowledge - only "
    "information from the documents should be used\n\n"
    "Be concise and helpful in guiding them."
)


class _Section(BaseModel):
    model_config = ConfigDict(frozen=True, extra="forbid")


class RetrievalSettings(_Section):
    top_k: int = Field(default=5, ge=1)
    score_threshold: float = Field(default=0.7, ge=0.0, le=1.0)


class CacheSettings(_Section):
    enabled: bool = True
    similarity_threshold: float = Field(default=0.95, ge=0.0, le=1.0)


class GenerationSettings(_Section):
    model: str = "gemma3:1b"
    temperature: float = Field(default=0.7, ge=0.0, le=2.0)
    max_tokens: int = Field(default=2048, gt=0)
    system_prompt_template: str = DEFAULT_SYSTEM_PROMPT
    no_docs_prompt_template: str = DEFAULT_NO_DOCS_PROMPT


class RAGSettings(_Section):
    """Snapshot of every runtime setting."""

    retrieval: RetrievalSettings = Field(default_factory=RetrievalSettings)
    cache: CacheSettings = Field(default_factory=CacheSettings)
    generation: GenerationSettings = Field(default_factory=GenerationSettings)


def default_settings(llm: LLMConfig | None = None) -> RAGSettings:
    """Build the default runtime settings, seeding generation from *llm*."""
    cfg = llm or LLMConfig()
    return RAGSettings(
        generation=GenerationSettings(
            model=cfg.model,
            temperature=cfg.temperature,
            max_tokens=cfg.max_tokens,
        )
    )


class SettingsStore:
    """Copy-on-write holder for the current :class:`RAGSettings`.

    Snapshots are immutable, so readers never need the lock; writers build a
    new snapshot and swap the reference.
    """

    def __init__(self, defaults: RAGSettings | None = None) -> None:
        self._defaults = defaults or RAGSettings()
        self._current = self._defaults
        self._lock = threading.Lock()

    @property
    def defaults(self) -> RAGSettings:
        return self._defaults

    def get(self) -> RAGSettings:
        return self._current

    def update(self, patch: Mapping) -> RAGSettings:
        """Merge *patch* section by section into the current settings.

        Args:
            patch: Partial nested mapping such as
                ``{"retrieval": {"top_k": 10}}``.

        Returns:
            The new snapshot.

        Raises:
            InvalidInputError: If the patch is not a mapping or the merged
                settings fail validation. The current settings are kept.
        """
        if not isinstance(patch, Mapping):
            raise InvalidInputError("settings update must be an object")

        with self._lock:
            merged = self._current.model_dump()
            for section, values in patch.items():
                if isinstance(values, Mapping) and isinstance(merged.get(section), dict):
                    merged[section] = {**merged[section], **values}
                else:
                    merged[section] = values
            try:
                updated = RAGSettings.model_validate(merged)
            except ValidationError as exc:
                raise InvalidInputError(f"invalid settings: {exc}") from exc
            self._current = updated

        logger.info("Settings updated: %s", sorted(patch))
        return updated

    def reset(self) -> RAGSettings:
        with self._lock:
            self._current = self._defaults
        logger.info("Settings reset to defaults")
        return self._current
