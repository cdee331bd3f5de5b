"""Text chunker: splits document text into overlapping, sentence-aligned chunks."""

import logging
import re

from semantic_rag.config import ChunkConfig
from semantic_rag.models import Chunk

logger = logging.getLogger(__name__)

_WHITESPACE_RE = re.compile(r"\s+")

# A run ending in one or more terminators, or a trailing run with none.
_UNIT_RE = re.compile(r"[^.!?]*[.!?]+|[^.!?]+$")


def normalize_whitespace(text: str) -> str:
    """Collapse every whitespace run to a single space and trim the ends."""
    return _WHITESPACE_RE.sub(" ", text).strip()


def split_units(text: str) -> list[str]:
    """Split normalized text into sentence-like units.

    Units keep their leading space so that concatenating them reproduces
    the input exactly. Text without any terminator is a single unit.
    """
    if not text:
        return []
    return _UNIT_RE.findall(text) or [text]


def _overlap_words(chunk: str, overlap: int) -> list[str]:
    """Return the trailing words of *chunk* covering at least *overlap* chars.

    Words are collected backwards, each counting its length plus one
    separator, until the running total reaches *overlap*.
    """
    words = chunk.split(" ")
    taken: list[str] = []
    length = 0
    for word in reversed(words):
        if length >= overlap:
            break
        taken.append(word)
        length += len(word) + 1
    taken.reverse()
    return taken


def chunk_text(text: str, chunk_size: int = 1000, overlap: int = 200) -> list[Chunk]:
    """Split text into chunks of roughly *chunk_size* characters.

    Units are accumulated greedily; when the next unit would push the buffer
    past *chunk_size*, the buffer is closed and the next one is seeded with
    the closing chunk's trailing words (about *overlap* characters). A single
    unit longer than *chunk_size* is never split.

    Args:
        text: Raw extracted document text.
        chunk_size: Target maximum number of characters per chunk.
        overlap: Minimum number of characters carried into the next chunk,
            rounded up to whole words.

    Returns:
        Ordered chunks with ``index`` and ``total_in_group`` filled in.
        Returns an empty list for empty or whitespace-only input.
    """
    cleaned = normalize_whitespace(text)
    if not cleaned:
        return []

    units = split_units(cleaned)
    contents: list[str] = []
    buffer = ""

    for unit in units:
        if buffer and len(buffer) + len(unit) > chunk_size:
            closed = buffer.strip()
            contents.append(closed)
            carried = _overlap_words(closed, overlap) if overlap > 0 else []
            if carried:
                buffer = " ".join(carried) + " " + unit.lstrip()
            else:
                buffer = unit.lstrip()
        else:
            buffer += unit

    if buffer.strip():
        contents.append(buffer.strip())

    logger.debug(
        "Chunked %d chars into %d chunks (size=%d, overlap=%d)",
        len(cleaned),
        len(contents),
        chunk_size,
        overlap,
    )
    return [
        Chunk(content=content, index=i, total_in_group=len(contents))
        for i, content in enumerate(contents)
    ]


def chunk_with_config(text: str, config: ChunkConfig | None = None) -> list[Chunk]:
    """Chunk *text* using the sizes from *config* (defaults if omitted)."""
    cfg = config or ChunkConfig()
    return chunk_text(text, cfg.size, cfg.overlap)
