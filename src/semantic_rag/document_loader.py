"""Document loader: extracts plain text from PDF, DOCX, TXT and Markdown bytes."""

import io
import logging
import re
from pathlib import Path
from typing import Callable

import docx
import markdown
from pypdf import PdfReader

from semantic_rag.errors import UnsupportedTypeError
from semantic_rag.models import Document

logger = logging.getLogger(__name__)

PDF = "application/pdf"
DOCX = "application/vnd.openxmlformats-officedocument.wordprocessingml.document"
TEXT = "text/plain"
MARKDOWN = "text/markdown"
GOOGLE_DOC = "application/vnd.google-apps.document"


def _load_text(data: bytes) -> str:
    return data.decode("utf-8", errors="replace")


def _load_pdf(data: bytes) -> str:
    """Extract text from a PDF.

    Pages that yield no text (scanned images, empty pages) are treated as
    empty strings.
    """
    reader = PdfReader(io.BytesIO(data))
    pages = [page.extract_text() or "" for page in reader.pages]
    return "\n".join(pages)


def _load_docx(data: bytes) -> str:
    document = docx.Document(io.BytesIO(data))
    return "\n".join(p.text for p in document.paragraphs)


def _load_markdown(data: bytes) -> str:
    """Convert Markdown to HTML, then strip all tags to leave plain text."""
    html = markdown.markdown(_load_text(data))
    return re.sub(r"<[^>]+>", "", html)


# Supported MIME types mapped to their parser functions.
PARSERS: dict[str, Callable[[bytes], str]] = {
    PDF: _load_pdf,
    DOCX: _load_docx,
    TEXT: _load_text,
    MARKDOWN: _load_markdown,
    GOOGLE_DOC: _load_text,
}

EXTENSIONS: dict[str, str] = {
    ".pdf": PDF,
    ".docx": DOCX,
    ".txt": TEXT,
    ".md": MARKDOWN,
    ".markdown": MARKDOWN,
}


def guess_mime_type(filename: str) -> str | None:
    """Return the supported MIME type for *filename*'s extension, if any."""
    return EXTENSIONS.get(Path(filename).suffix.lower())


def parse_to_text(data: bytes, mime_type: str) -> str:
    """Extract the text of a document.

    Args:
        data: Raw file contents.
        mime_type: MIME type of *data*; parameters such as ``charset`` are
            ignored.

    Returns:
        The extracted text (possibly empty).

    Raises:
        UnsupportedTypeError: If no parser handles *mime_type*.
    """
    base_type = mime_type.split(";", 1)[0].strip().lower()
    parser = PARSERS.get(base_type)
    if parser is None:
        raise UnsupportedTypeError(f"Unsupported file type: {mime_type}")
    text = parser(data)
    logger.debug("Parsed %d bytes of %s into %d chars", len(data), base_type, len(text))
    return text


def load_documents(folder_path: str | Path) -> list[Document]:
    """Load all supported documents from a folder.

    Iterates over files in the directory, parsing each according to its
    extension. Empty files and files that fail to load are skipped with a
    warning.

    Args:
        folder_path: Path to the directory containing documents.

    Returns:
        List of Document objects sorted by filename, each containing
        the file's text content and metadata (source, mime_type).

    Raises:
        FileNotFoundError: If the folder does not exist.
        NotADirectoryError: If the path is not a directory.
    """
    folder = Path(folder_path)
    if not folder.exists():
        raise FileNotFoundError(f"Folder not found: {folder_path}")
    if not folder.is_dir():
        raise NotADirectoryError(f"Not a directory: {folder_path}")

    documents: list[Document] = []

    for file_path in sorted(folder.iterdir()):
        if not file_path.is_file():
            continue

        mime_type = guess_mime_type(file_path.name)
        if mime_type is None:
            continue

        try:
            content = parse_to_text(file_path.read_bytes(), mime_type)
            if not content.strip():
                logger.warning("Skipping empty file: %s", file_path.name)
                continue

            documents.append(
                Document(
                    content=content,
                    metadata={"source": file_path.name, "mime_type": mime_type},
                )
            )
            logger.info("Loaded: %s", file_path.name)
        except Exception:
            logger.exception("Failed to load %s", file_path.name)

    return documents
