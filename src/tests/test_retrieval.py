from __future__ import annotations

"""Hybrid retriever tests against the in-memory index."""

import pytest

from src.rag.embeddings import HashEmbedder
from src.rag.retrieval import HybridRetriever, keyword_terms
from src.rag.rewriter import DomainTermExpander, QueryExpander, QueryRewriteError
from src.rag.types import Chunk
from src.vectorstore.base import VectorPoint
from src.vectorstore.inmemory import InMemoryVectorStore

pytestmark = pytest.mark.anyio

DOCUMENTS = {
    "perf.md": "Performance tuning reduces latency with caching and connection pooling.",
    "security.md": "Security relies on authentication, authorization and encryption at rest.",
    "db.md": "Database indexes speed up SQL queries and keep the schema consistent.",
}


class FailingExpander(QueryExpander):
    async def expand(self, query: str) -> list[str]:
        raise QueryRewriteError("expansion offline")


def make_point(embedder: HashEmbedder, source: str, content: str) -> VectorPoint:
    chunk = Chunk(
        content=content,
        document_id=source,
        chunk_index=0,
        total_chunks=1,
        content_type="narrative",
        has_previous=False,
        has_next=False,
        metadata={"source": source},
    )
    return VectorPoint(id=source, vector=embedder.embed(content), payload=chunk.to_payload())


def build_retriever(expander: QueryExpander | None = None) -> HybridRetriever:
    embedder = HashEmbedder()
    index = InMemoryVectorStore(dimension=embedder.dimension)
    index.upsert(
        [make_point(embedder, source, content) for source, content in DOCUMENTS.items()]
    )
    return HybridRetriever(
        index=index,
        embedder=embedder,
        expander=expander or DomainTermExpander(),
    )


def test_keyword_terms_drop_short_words_and_punctuation() -> None:
    assert keyword_terms("What is the API performance?") == ["what", "the", "api", "performance"]
    assert keyword_terms("a an is") == []
    assert keyword_terms("cache, cache; CACHE") == ["cache"]


def test_keyword_terms_split_like_indexed_text() -> None:
    assert keyword_terms("rate-limiting for the café user's") == [
        "rate",
        "limiting",
        "for",
        "the",
        "café",
        "user",
    ]


@pytest.mark.parametrize(
    ("query", "content"),
    [
        ("rate-limiting", "Gateways apply rate-limiting per tenant."),
        ("café", "The café opens at noon."),
        ("user's", "Each user's session expires hourly."),
    ],
)
async def test_keyword_search_matches_literal_terms(query: str, content: str) -> None:
    retriever = build_retriever()
    retriever.index.upsert([make_point(retriever.embedder, "extra.md", content)])

    results = await retriever.keyword_search(query, limit=10)

    assert [result.chunk.document_id for result in results] == ["extra.md"]


async def test_keyword_search_scores_decay_by_position() -> None:
    retriever = build_retriever()

    results = await retriever.keyword_search("latency encryption", limit=10)

    assert [result.chunk.document_id for result in results] == ["perf.md", "security.md"]
    assert [result.score for result in results] == [1.0, 0.5]
    assert all(result.keyword_score == result.score for result in results)


async def test_keyword_search_without_terms_is_empty() -> None:
    retriever = build_retriever()
    assert await retriever.keyword_search("is a", limit=10) == []


async def test_vector_search_ranks_matching_document_first() -> None:
    retriever = build_retriever()

    results = await retriever.vector_search("database sql schema", limit=2)

    assert len(results) == 2
    assert results[0].chunk.document_id == "db.md"
    assert results[0].vector_score == results[0].score
    assert results[0].score >= results[1].score


async def test_hybrid_search_respects_limit_and_order() -> None:
    retriever = build_retriever()

    results = await retriever.hybrid_search("performance latency", limit=2)

    assert len(results) <= 2
    assert results[0].chunk.document_id == "perf.md"
    scores = [result.score for result in results]
    assert scores == sorted(scores, reverse=True)
    assert all(0.0 <= score <= 1.0 for score in scores)


async def test_hybrid_search_rejects_alpha_outside_unit_range() -> None:
    retriever = build_retriever()
    with pytest.raises(ValueError):
        await retriever.hybrid_search("performance", limit=3, alpha=1.5)
    with pytest.raises(ValueError):
        await retriever.hybrid_search("performance", limit=3, alpha=-0.1)


async def test_expansion_failure_falls_back_to_original_query() -> None:
    retriever = build_retriever(expander=FailingExpander())

    results = await retriever.vector_search("database sql schema", limit=1)

    assert results[0].chunk.document_id == "db.md"


async def test_non_positive_limit_returns_nothing() -> None:
    retriever = build_retriever()
    assert await retriever.vector_search("performance", limit=0) == []
    assert await retriever.hybrid_search("performance", limit=0) == []
