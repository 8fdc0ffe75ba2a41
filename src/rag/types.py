from __future__ import annotations

"""Core data types for chunks, retrieval and pipeline responses."""

import math
from dataclasses import dataclass, field
from typing import Any


@dataclass(frozen=True)
class IngestRecord:
    """Raw document handed to the ingestion pipeline."""
    content: str
    metadata: dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class Chunk:
    """Contiguous slice of a source document."""
    content: str
    document_id: str
    chunk_index: int
    total_chunks: int
    content_type: str
    has_previous: bool
    has_next: bool
    strategy: str = "recursive"
    chunk_id: str | None = None
    metadata: dict[str, Any] = field(default_factory=dict)

    @property
    def title(self) -> str | None:
        title = self.metadata.get("title")
        return str(title) if title else None

    def to_payload(self) -> dict[str, Any]:
        """Serialize the chunk into a vector index payload."""
        metadata = dict(self.metadata)
        metadata.update(
            {
                "source_document": self.document_id,
                "chunk_index": self.chunk_index,
                "total_chunks": self.total_chunks,
                "content_type": self.content_type,
                "has_previous": self.has_previous,
                "has_next": self.has_next,
                "chunking_strategy": self.strategy,
            }
        )
        if self.chunk_id:
            metadata["chunk_id"] = self.chunk_id
        return {"content": self.content, "metadata": metadata}

    @classmethod
    def from_payload(cls, payload: dict[str, Any], chunk_id: str | None = None) -> "Chunk":
        """Rebuild a chunk from a stored payload."""
        metadata = dict(payload.get("metadata") or {})
        return cls(
            content=str(payload.get("content") or ""),
            document_id=str(metadata.get("source_document", "unknown")),
            chunk_index=int(metadata.get("chunk_index", 0)),
            total_chunks=int(metadata.get("total_chunks", 1)),
            content_type=str(metadata.get("content_type", "narrative")),
            has_previous=bool(metadata.get("has_previous", False)),
            has_next=bool(metadata.get("has_next", False)),
            strategy=str(metadata.get("chunking_strategy", "recursive")),
            chunk_id=chunk_id or metadata.get("chunk_id"),
            metadata=metadata,
        )


@dataclass(frozen=True)
class SearchResult:
    """Scored reference to a chunk."""
    chunk: Chunk
    score: float
    vector_score: float | None = None
    keyword_score: float | None = None

    def __post_init__(self) -> None:
        if not math.isfinite(self.score):
            raise ValueError(f"Search score must be finite, got {self.score}")


@dataclass(frozen=True)
class QueryOptions:
    """Per-query switches for the pipeline stages."""
    use_reranking: bool = True
    use_hybrid_search: bool = True


@dataclass
class RAGMetrics:
    """Stage latencies in milliseconds."""
    retrieval_time: float = 0.0
    reranking_time: float = 0.0
    generation_time: float = 0.0
    total_time: float = 0.0


@dataclass(frozen=True)
class RAGSource:
    """Cited source returned with an answer."""
    content: str
    metadata: dict[str, Any]
    relevance_score: float


@dataclass(frozen=True)
class RAGResponse:
    """Terminal artifact of a single query."""
    answer: str
    sources: list[RAGSource]
    metrics: RAGMetrics


@dataclass(frozen=True)
class StreamEvent:
    """Event emitted by the streaming query interface."""
    type: str
    data: dict[str, Any] | None = None
    chunk: str | None = None

    def to_dict(self) -> dict[str, Any]:
        payload: dict[str, Any] = {"type": self.type}
        if self.data is not None:
            payload["data"] = self.data
        if self.chunk is not None:
            payload["chunk"] = self.chunk
        return payload


@dataclass(frozen=True)
class ComparisonResult:
    """Outcome of one pipeline configuration in comparison mode."""
    configuration: str
    answer: str
    sources: int
    top_source: RAGSource | None
    metrics: RAGMetrics
