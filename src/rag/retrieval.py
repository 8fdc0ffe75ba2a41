from __future__ import annotations

"""Hybrid dense + keyword retrieval fused with Reciprocal Rank Fusion.

The vector list ranks chunks by cosine similarity to the (optionally
expanded) query embedding. The keyword list comes from an unranked payload
scan, so it is given a synthetic linear-decay score by position. Fusion only
uses each list's internal ordering, which makes ``alpha`` a clean trade-off
between lexical (0.0) and semantic (1.0) retrieval.
"""

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Awaitable, Sequence, TypeVar

from src.rag.embeddings import EmbeddingProvider
from src.rag.rewriter import NoopExpander, QueryExpander, QueryRewriteError
from src.rag.types import Chunk, SearchResult
from src.vectorstore.base import VectorHit, VectorIndex, tokenize

logger = logging.getLogger(__name__)

RRF_K = 60
FINGERPRINT_CHARS = 100
MIN_TERM_LENGTH = 3

T = TypeVar("T")


def keyword_terms(query: str) -> list[str]:
    """Return unique lower-cased query terms longer than two characters."""
    terms: list[str] = []
    for term in tokenize(query):
        if len(term) >= MIN_TERM_LENGTH and term not in terms:
            terms.append(term)
    return terms


async def gather_or_cancel(*coros: Awaitable[T]) -> list[T]:
    """Await every coroutine; on the first failure cancel and reap the rest, then re-raise."""
    tasks = [asyncio.ensure_future(coro) for coro in coros]
    try:
        return list(await asyncio.gather(*tasks))
    except BaseException:
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
        raise


def fingerprint(result: SearchResult) -> str:
    """Approximate chunk identity by its leading characters."""
    return result.chunk.content[:FINGERPRINT_CHARS]


@dataclass
class _FusedCandidate:
    chunk: Chunk
    score: float = 0.0
    vector_score: float | None = None
    keyword_score: float | None = None

    def to_result(self) -> SearchResult:
        return SearchResult(
            chunk=self.chunk,
            score=self.score,
            vector_score=self.vector_score,
            keyword_score=self.keyword_score,
        )


def reciprocal_rank_fusion(
    vector_results: Sequence[SearchResult],
    keyword_results: Sequence[SearchResult],
    alpha: float,
    limit: int,
    k: int = RRF_K,
) -> list[SearchResult]:
    """Fuse two ranked lists, weighting vector ranks by alpha and keyword ranks by 1 - alpha."""
    fused: dict[str, _FusedCandidate] = {}
    for rank, result in enumerate(vector_results):
        candidate = fused.setdefault(fingerprint(result), _FusedCandidate(chunk=result.chunk))
        candidate.score += alpha * (1.0 / (k + rank + 1))
        if candidate.vector_score is None:
            candidate.vector_score = result.vector_score
    for rank, result in enumerate(keyword_results):
        candidate = fused.setdefault(fingerprint(result), _FusedCandidate(chunk=result.chunk))
        candidate.score += (1.0 - alpha) * (1.0 / (k + rank + 1))
        if candidate.keyword_score is None:
            candidate.keyword_score = result.keyword_score
    ranked = sorted(fused.values(), key=lambda candidate: candidate.score, reverse=True)
    return [candidate.to_result() for candidate in ranked[:limit]]


def _hit_to_result(hit: VectorHit, score: float, component: str) -> SearchResult:
    chunk = Chunk.from_payload(hit.payload, chunk_id=hit.id)
    return SearchResult(chunk=chunk, score=score, **{component: score})


@dataclass
class HybridRetriever:
    """Run vector and keyword searches against a vector index and fuse them."""
    index: VectorIndex
    embedder: EmbeddingProvider
    expander: QueryExpander = field(default_factory=NoopExpander)
    default_alpha: float = 0.5

    async def embed_query(self, query: str) -> list[float]:
        """Embed the query, preferring the expanded form when expansion adds terms."""
        original = await asyncio.to_thread(self.embedder.embed, query)
        try:
            terms = await self.expander.expand(query)
        except QueryRewriteError:
            logger.warning("query_expansion_failed", extra={"query_length": len(query)})
            terms = []
        if not terms:
            return original
        expanded_query = f"{query} {' '.join(terms)}"
        logger.debug("query_expanded", extra={"terms": terms})
        return await asyncio.to_thread(self.embedder.embed, expanded_query)

    async def _vector_results(self, vector: list[float], limit: int) -> list[SearchResult]:
        hits = await asyncio.to_thread(self.index.search, vector, limit)
        return [_hit_to_result(hit, hit.score, "vector_score") for hit in hits]

    async def keyword_search(self, query: str, limit: int) -> list[SearchResult]:
        """Scan for any query term and score hits by linear positional decay."""
        terms = keyword_terms(query)
        if not terms:
            return []
        hits = await asyncio.to_thread(self.index.scan, terms, limit)
        count = len(hits)
        return [
            _hit_to_result(hit, 1.0 - (rank / count), "keyword_score")
            for rank, hit in enumerate(hits)
        ]

    async def vector_search(self, query: str, limit: int) -> list[SearchResult]:
        """Pure dense retrieval, scored by cosine similarity."""
        if limit <= 0:
            return []
        vector = await self.embed_query(query)
        results = await self._vector_results(vector, limit)
        logger.info(
            "retrieval_complete",
            extra={"mode": "vector", "results": len(results), "query_length": len(query)},
        )
        return results

    async def hybrid_search(
        self,
        query: str,
        limit: int,
        alpha: float | None = None,
    ) -> list[SearchResult]:
        """Fuse dense and keyword candidates into at most ``limit`` results."""
        weight = self.default_alpha if alpha is None else alpha
        if not 0.0 <= weight <= 1.0:
            raise ValueError(f"alpha must be within [0, 1], got {weight}")
        if limit <= 0:
            return []
        fetch = limit * 2

        async def _dense() -> list[SearchResult]:
            vector = await self.embed_query(query)
            return await self._vector_results(vector, fetch)

        vector_results, keyword_results = await gather_or_cancel(
            _dense(), self.keyword_search(query, fetch)
        )
        results = reciprocal_rank_fusion(vector_results, keyword_results, weight, limit)
        logger.info(
            "retrieval_complete",
            extra={
                "mode": "hybrid",
                "vector_hits": len(vector_results),
                "keyword_hits": len(keyword_results),
                "results": len(results),
                "alpha": weight,
            },
        )
        return results
