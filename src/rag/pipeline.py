from __future__ import annotations

import asyncio
import logging
import time
import uuid
from dataclasses import dataclass, field, replace
from enum import Enum
from typing import AsyncIterator, Iterable

from src.loaders.chunking import ChunkingPipeline
from src.rag.citations import build_context_block, build_sources, source_to_dict
from src.rag.embeddings import augment_with_metadata
from src.rag.guardrails import NO_RESULTS_ANSWER, has_context, require_question
from src.rag.llm import AnswerGenerator
from src.rag.reranker import ResilientReranker
from src.rag.retrieval import HybridRetriever, gather_or_cancel
from src.rag.types import (
    ComparisonResult,
    IngestRecord,
    QueryOptions,
    RAGMetrics,
    RAGResponse,
    SearchResult,
    StreamEvent,
)
from src.vectorstore.base import VectorPoint

logger = logging.getLogger(__name__)


class Stage(str, Enum):
    RETRIEVAL = "retrieval"
    RERANKING = "reranking"
    GENERATION = "generation"
    COMPLETE = "complete"


class PipelineError(RuntimeError):
    """Raised when a query stage fails; carries the failing stage."""

    def __init__(self, stage: Stage, detail: str) -> None:
        super().__init__(f"{stage.value} stage failed: {detail}")
        self.stage = stage
        self.detail = detail


COMPARISON_CONFIGURATIONS: tuple[tuple[str, QueryOptions], ...] = (
    ("Vector Search Only", QueryOptions(use_reranking=False, use_hybrid_search=False)),
    ("Hybrid Search", QueryOptions(use_reranking=False, use_hybrid_search=True)),
    ("Hybrid + Reranking", QueryOptions(use_reranking=True, use_hybrid_search=True)),
)


def _elapsed_ms(start: float) -> float:
    return (time.perf_counter() - start) * 1000.0


def _stage_error(stage: Stage, exc: Exception) -> PipelineError:
    logger.error(
        "pipeline_stage_failed",
        extra={"stage": stage.value, "error": type(exc).__name__},
    )
    return PipelineError(stage, str(exc) or type(exc).__name__)


@dataclass
class RAGPipeline:
    """Retrieve, rerank and generate; each query keeps its state local."""
    retriever: HybridRetriever
    reranker: ResilientReranker
    generator: AnswerGenerator
    chunker: ChunkingPipeline = field(default_factory=ChunkingPipeline)
    top_k: int = 10
    rerank_top_k: int = 3
    alpha: float = 0.5

    async def ingest(self, records: Iterable[IngestRecord]) -> int:
        """Chunk, embed and upsert records; return the number of chunks stored."""
        chunks = [
            replace(chunk, chunk_id=str(uuid.uuid4()))
            for chunk in self.chunker.process_documents(records)
        ]
        if not chunks:
            return 0
        texts = [augment_with_metadata(chunk) for chunk in chunks]
        vectors = await asyncio.to_thread(self.retriever.embedder.embed_batch, texts)
        points = [
            VectorPoint(id=chunk.chunk_id or str(uuid.uuid4()), vector=vector, payload=chunk.to_payload())
            for chunk, vector in zip(chunks, vectors)
        ]
        written = await asyncio.to_thread(self.retriever.index.upsert, points)
        logger.info(
            "ingest_complete",
            extra={
                "chunks": written,
                "documents": len({chunk.document_id for chunk in chunks}),
            },
        )
        return written

    async def _retrieve(self, question: str, options: QueryOptions) -> list[SearchResult]:
        try:
            if options.use_hybrid_search:
                return await self.retriever.hybrid_search(question, self.top_k, self.alpha)
            return await self.retriever.vector_search(question, self.top_k)
        except Exception as exc:
            raise _stage_error(Stage.RETRIEVAL, exc) from exc

    async def _rerank(self, question: str, results: list[SearchResult]) -> list[SearchResult]:
        try:
            return await self.reranker.rerank(question, results, self.rerank_top_k)
        except Exception as exc:
            raise _stage_error(Stage.RERANKING, exc) from exc

    async def _generate(self, question: str, results: list[SearchResult]) -> str:
        try:
            return await self.generator.generate(question, build_context_block(results))
        except Exception as exc:
            raise _stage_error(Stage.GENERATION, exc) from exc

    async def query(self, question: str, options: QueryOptions | None = None) -> RAGResponse:
        """Answer a question in one shot with a per-stage timing breakdown."""
        question = require_question(question)
        options = options or QueryOptions()
        metrics = RAGMetrics()
        started = time.perf_counter()

        stage_started = time.perf_counter()
        results = await self._retrieve(question, options)
        metrics.retrieval_time = _elapsed_ms(stage_started)

        stage_started = time.perf_counter()
        if options.use_reranking and results:
            results = await self._rerank(question, results)
        metrics.reranking_time = _elapsed_ms(stage_started)

        stage_started = time.perf_counter()
        if has_context(results):
            answer = await self._generate(question, results)
        else:
            answer = NO_RESULTS_ANSWER
            results = []
        metrics.generation_time = _elapsed_ms(stage_started)

        metrics.total_time = _elapsed_ms(started)
        logger.info(
            "query_complete",
            extra={
                "sources": len(results),
                "hybrid": options.use_hybrid_search,
                "reranking": options.use_reranking,
                "total_ms": round(metrics.total_time, 2),
            },
        )
        return RAGResponse(answer=answer, sources=build_sources(results), metrics=metrics)

    async def stream_query(
        self, question: str, options: QueryOptions | None = None
    ) -> AsyncIterator[StreamEvent]:
        """Yield stage events, then answer fragments, then the final sources."""
        question = require_question(question)
        options = options or QueryOptions()

        yield StreamEvent(type=Stage.RETRIEVAL.value)
        results = await self._retrieve(question, options)
        yield StreamEvent(type=Stage.RETRIEVAL.value, data={"result_count": len(results)})

        if options.use_reranking and results:
            yield StreamEvent(type=Stage.RERANKING.value)
            results = await self._rerank(question, results)
            yield StreamEvent(type=Stage.RERANKING.value, data={"result_count": len(results)})

        yield StreamEvent(type=Stage.GENERATION.value)
        if has_context(results):
            context = build_context_block(results)
            try:
                async for fragment in self.generator.stream(question, context):
                    yield StreamEvent(type=Stage.GENERATION.value, chunk=fragment)
            except Exception as exc:
                raise _stage_error(Stage.GENERATION, exc) from exc
        else:
            results = []
            yield StreamEvent(type=Stage.GENERATION.value, chunk=NO_RESULTS_ANSWER)

        sources = [source_to_dict(source) for source in build_sources(results)]
        yield StreamEvent(type=Stage.COMPLETE.value, data={"sources": sources})

    async def compare(self, question: str) -> list[ComparisonResult]:
        """Run the vector, hybrid and hybrid+rerank configurations side by side."""
        question = require_question(question)
        responses = await gather_or_cancel(
            *(self.query(question, options) for _, options in COMPARISON_CONFIGURATIONS)
        )
        return [
            ComparisonResult(
                configuration=name,
                answer=response.answer,
                sources=len(response.sources),
                top_source=response.sources[0] if response.sources else None,
                metrics=response.metrics,
            )
            for (name, _), response in zip(COMPARISON_CONFIGURATIONS, responses)
        ]
