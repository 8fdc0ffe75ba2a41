from __future__ import annotations

import math

import pytest

from src.rag.embeddings import (
    EmbeddingError,
    HashEmbedder,
    augment_with_metadata,
    resolve_openai_dimension,
    validate_vector,
)
from src.rag.types import Chunk


def _chunk(metadata: dict) -> Chunk:
    return Chunk(
        content="Body text.",
        document_id="doc",
        chunk_index=0,
        total_chunks=1,
        content_type="narrative",
        has_previous=False,
        has_next=False,
        metadata=metadata,
    )


def test_hash_embedder_is_normalized_and_deterministic() -> None:
    embedder = HashEmbedder(dimension=64)

    first = embedder.embed("Caching reduces latency")
    second = embedder.embed_batch(["Caching reduces latency", "other"])[0]

    assert first == second
    assert len(first) == 64
    assert math.isclose(math.sqrt(sum(value * value for value in first)), 1.0)
    assert all(value >= 0 for value in first)


def test_hash_embedder_handles_empty_text() -> None:
    assert HashEmbedder(dimension=8).embed("") == [0.0] * 8


def test_augment_with_metadata_prefixes_known_fields() -> None:
    chunk = _chunk({"title": "Guide", "category": "ops", "tags": ["cache", "perf"], "source": "a.md"})

    assert augment_with_metadata(chunk) == (
        "title: Guide category: ops tags: cache,perf\n\nBody text."
    )
    assert augment_with_metadata(_chunk({"source": "a.md"})) == "Body text."


def test_validate_vector_rejects_bad_values() -> None:
    assert validate_vector([1, 0.5], 2) == [1.0, 0.5]
    with pytest.raises(EmbeddingError):
        validate_vector([1.0], 2)
    with pytest.raises(EmbeddingError):
        validate_vector([1.0, float("nan")], 2)


def test_resolve_openai_dimension() -> None:
    assert resolve_openai_dimension("text-embedding-3-large") == 3072
    assert resolve_openai_dimension("unknown-model") is None
