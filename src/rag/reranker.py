from __future__ import annotations

"""Cross-encoder reranking providers and the fallback-safe reranker."""

import logging
import re
from dataclasses import dataclass
from typing import Protocol

import httpx

from src.rag.types import SearchResult

logger = logging.getLogger(__name__)


class RerankError(RuntimeError):
    """Raised when a rerank provider fails or returns an invalid response."""
    pass


@dataclass(frozen=True)
class RerankHit:
    """Provider result pointing back at the submitted document index."""
    index: int
    relevance_score: float


class RerankProvider(Protocol):
    """Protocol for (query, documents) relevance scorers."""

    async def rerank(self, query: str, documents: list[str], top_n: int) -> list[RerankHit]:
        """Return up to top_n documents ordered by relevance."""
        raise NotImplementedError


@dataclass(frozen=True)
class CohereReranker:
    """Rerank provider backed by the Cohere rerank API."""
    api_key: str
    model: str
    base_url: str = "https://api.cohere.com"
    timeout: float = 30.0
    transport: httpx.AsyncBaseTransport | None = None

    async def rerank(self, query: str, documents: list[str], top_n: int) -> list[RerankHit]:
        """Score documents with the Cohere cross-encoder."""
        if not documents:
            return []
        payload = {
            "model": self.model,
            "query": query,
            "documents": documents,
            "top_n": min(top_n, len(documents)),
            "return_documents": False,
        }
        headers = {"Authorization": f"Bearer {self.api_key}"}
        try:
            async with httpx.AsyncClient(timeout=self.timeout, transport=self.transport) as client:
                response = await client.post(
                    f"{self.base_url}/v1/rerank",
                    json=payload,
                    headers=headers,
                )
                response.raise_for_status()
                data = response.json()
        except httpx.HTTPError as exc:
            raise RerankError(str(exc)) from exc

        results = data.get("results")
        if not isinstance(results, list):
            raise RerankError("Invalid Cohere rerank response")
        hits: list[RerankHit] = []
        for item in results:
            index = item.get("index")
            score = item.get("relevance_score")
            if not isinstance(index, int) or not 0 <= index < len(documents):
                raise RerankError("Invalid Cohere rerank index")
            if not isinstance(score, (int, float)):
                raise RerankError("Invalid Cohere relevance score")
            hits.append(RerankHit(index=index, relevance_score=float(score)))
        return hits


@dataclass(frozen=True)
class MockReranker:
    """Deterministic reranker scoring documents by query term frequency."""

    async def rerank(self, query: str, documents: list[str], top_n: int) -> list[RerankHit]:
        words = query.lower().split(" ")
        scored: list[RerankHit] = []
        for index, document in enumerate(documents):
            content = document.lower()
            frequency = sum(
                len(re.findall(re.escape(word), content)) for word in words if word
            )
            score = min(0.99, frequency / (len(words) * 5))
            scored.append(RerankHit(index=index, relevance_score=score))
        scored.sort(key=lambda hit: hit.relevance_score, reverse=True)
        return scored[:top_n]


def rerank_document(result: SearchResult) -> str:
    """Return chunk text prefixed with its title, when one is known."""
    title = result.chunk.title
    if title:
        return f"Title: {title}\n\n{result.chunk.content}"
    return result.chunk.content


@dataclass(frozen=True)
class ResilientReranker:
    """Rerank search results, falling back to fused order on provider failure."""
    provider: RerankProvider

    async def rerank(
        self, query: str, results: list[SearchResult], top_k: int
    ) -> list[SearchResult]:
        """Return at most top_k results ordered by provider relevance."""
        if not results or top_k <= 0:
            return []
        documents = [rerank_document(result) for result in results]
        try:
            hits = await self.provider.rerank(query, documents, min(top_k, len(results)))
            reranked = [
                SearchResult(chunk=results[hit.index].chunk, score=hit.relevance_score)
                for hit in hits[:top_k]
            ]
        except Exception as exc:
            logger.warning(
                "rerank_failed",
                extra={"error": type(exc).__name__, "fallback_results": min(top_k, len(results))},
            )
            return results[:top_k]
        reranked.sort(key=lambda result: result.score, reverse=True)
        return reranked


def build_reranker(
    *,
    mock_mode: bool,
    api_key: str | None,
    model: str,
    base_url: str,
    timeout: float,
) -> ResilientReranker:
    """Factory for the fallback-safe reranker."""
    if mock_mode:
        return ResilientReranker(provider=MockReranker())
    if not api_key:
        raise RerankError("COHERE_API_KEY is required for Cohere reranking")
    return ResilientReranker(
        provider=CohereReranker(
            api_key=api_key,
            model=model,
            base_url=base_url.rstrip("/"),
            timeout=timeout,
        )
    )
