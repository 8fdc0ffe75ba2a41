from __future__ import annotations

"""Plain text loader for ingestion."""

from pathlib import Path

from src.rag.types import IngestRecord


def load_text_file(path: Path, metadata: dict[str, object] | None = None) -> IngestRecord:
    """Load a text file from disk into an ingestion record."""
    content = path.read_text(encoding="utf-8")
    return IngestRecord(
        content=content,
        metadata=_base_metadata(path.name, path.stem, "text", metadata),
    )


def load_text_bytes(
    data: bytes, source: str, metadata: dict[str, object] | None = None
) -> IngestRecord:
    """Load plain text bytes into an ingestion record."""
    content = data.decode("utf-8", errors="ignore")
    return IngestRecord(
        content=content,
        metadata=_base_metadata(source, Path(source).stem, "text", metadata),
    )


def _base_metadata(
    source: str, title: str, source_type: str, extra: dict[str, object] | None
) -> dict[str, object]:
    metadata: dict[str, object] = {"source": source, "title": title, "source_type": source_type}
    metadata.update(extra or {})
    return metadata
