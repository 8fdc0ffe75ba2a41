from __future__ import annotations

from typing import Any

from pydantic import BaseModel, Field

from src.rag.types import ComparisonResult, RAGMetrics, RAGResponse, RAGSource


class QueryRequest(BaseModel):
    question: str = Field(min_length=1)
    use_reranking: bool = True
    use_hybrid_search: bool = True


class CompareRequest(BaseModel):
    question: str = Field(min_length=1)


class SourceChunk(BaseModel):
    content: str
    metadata: dict[str, Any]
    relevance_score: float

    @classmethod
    def from_source(cls, source: RAGSource) -> "SourceChunk":
        return cls(
            content=source.content,
            metadata=source.metadata,
            relevance_score=source.relevance_score,
        )


class MetricsModel(BaseModel):
    retrieval_time: float
    reranking_time: float
    generation_time: float
    total_time: float

    @classmethod
    def from_metrics(cls, metrics: RAGMetrics) -> "MetricsModel":
        return cls(
            retrieval_time=metrics.retrieval_time,
            reranking_time=metrics.reranking_time,
            generation_time=metrics.generation_time,
            total_time=metrics.total_time,
        )


class QueryResponse(BaseModel):
    answer: str
    sources: list[SourceChunk]
    metrics: MetricsModel
    request_id: str

    @classmethod
    def from_response(cls, response: RAGResponse, request_id: str) -> "QueryResponse":
        return cls(
            answer=response.answer,
            sources=[SourceChunk.from_source(source) for source in response.sources],
            metrics=MetricsModel.from_metrics(response.metrics),
            request_id=request_id,
        )


class ComparisonEntry(BaseModel):
    configuration: str
    answer: str
    sources: int
    top_source: SourceChunk | None = None
    metrics: MetricsModel

    @classmethod
    def from_result(cls, result: ComparisonResult) -> "ComparisonEntry":
        return cls(
            configuration=result.configuration,
            answer=result.answer,
            sources=result.sources,
            top_source=SourceChunk.from_source(result.top_source) if result.top_source else None,
            metrics=MetricsModel.from_metrics(result.metrics),
        )


class CompareResponse(BaseModel):
    question: str
    comparisons: list[ComparisonEntry]


class IngestDocument(BaseModel):
    content: str = Field(min_length=1)
    metadata: dict[str, Any] = Field(default_factory=dict)


class IngestRequest(BaseModel):
    documents: list[IngestDocument]


class IngestResponse(BaseModel):
    ingested: int


