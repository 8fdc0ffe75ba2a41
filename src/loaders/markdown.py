from __future__ import annotations

"""Markdown loader for ingestion."""

import re
from pathlib import Path

from src.loaders.text import load_text_bytes, load_text_file
from src.rag.types import IngestRecord

_HEADING_RE = re.compile(r"^#\s+(.+?)\s*#*\s*$", re.MULTILINE)

MARKDOWN_SUFFIXES = {".md", ".markdown"}
TEXT_SUFFIXES = {".txt", ".text"}


def markdown_title(content: str) -> str | None:
    """Return the first level-one heading, if any."""
    match = _HEADING_RE.search(content)
    return match.group(1).strip() if match else None


def _with_heading(record: IngestRecord) -> IngestRecord:
    record.metadata["source_type"] = "markdown"
    title = markdown_title(record.content)
    if title:
        record.metadata["title"] = title
    return record


def load_markdown_file(path: Path, metadata: dict[str, object] | None = None) -> IngestRecord:
    """Load a Markdown file from disk, titled by its first heading."""
    return _with_heading(load_text_file(path, metadata=metadata))


def load_markdown_bytes(
    data: bytes, source: str, metadata: dict[str, object] | None = None
) -> IngestRecord:
    """Load Markdown bytes, titled by the first heading."""
    return _with_heading(load_text_bytes(data, source=source, metadata=metadata))


def load_document_bytes(
    data: bytes, source: str, metadata: dict[str, object] | None = None
) -> IngestRecord:
    """Dispatch on the file suffix; only text and Markdown are supported."""
    suffix = Path(source).suffix.lower()
    if suffix in MARKDOWN_SUFFIXES:
        return load_markdown_bytes(data, source=source, metadata=metadata)
    if suffix in TEXT_SUFFIXES:
        return load_text_bytes(data, source=source, metadata=metadata)
    raise ValueError(f"Unsupported file type: {suffix or source}")


def load_document_file(path: Path, metadata: dict[str, object] | None = None) -> IngestRecord:
    suffix = path.suffix.lower()
    if suffix in MARKDOWN_SUFFIXES:
        return load_markdown_file(path, metadata=metadata)
    if suffix in TEXT_SUFFIXES:
        return load_text_file(path, metadata=metadata)
    raise ValueError(f"Unsupported file type: {suffix or path.name}")
