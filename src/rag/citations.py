from __future__ import annotations

"""Citation helpers for numbering context passages and listing sources."""

from src.rag.types import RAGSource, SearchResult


def source_label(result: SearchResult, position: int) -> str:
    """Return the label shown next to a citation number."""
    source = result.chunk.metadata.get("source")
    return str(source) if source else f"Source {position}"


def build_context_block(results: list[SearchResult]) -> str:
    """Number passages 1..n in rank order; the numbers are the citation keys."""
    blocks: list[str] = []
    for position, result in enumerate(results, start=1):
        label = source_label(result, position)
        blocks.append(f"[{position}] {label}:\n{result.chunk.content}")
    return "\n\n".join(blocks)


def build_sources(results: list[SearchResult]) -> list[RAGSource]:
    """Convert ranked results into cited sources."""
    return [
        RAGSource(
            content=result.chunk.content,
            metadata=dict(result.chunk.metadata),
            relevance_score=result.score,
        )
        for result in results
    ]


def source_to_dict(source: RAGSource) -> dict[str, object]:
    """Serialize a source for stream events."""
    return {
        "content": source.content,
        "metadata": source.metadata,
        "score": source.relevance_score,
    }
