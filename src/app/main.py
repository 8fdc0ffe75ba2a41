from __future__ import annotations

"""FastAPI application entrypoint for the hybrid RAG service."""

import asyncio
import json
import logging
import uuid
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import AsyncIterator

from fastapi import FastAPI, File, HTTPException, Request, UploadFile
from fastapi.responses import StreamingResponse

from src.app.dependencies import get_pipeline
from src.app.metrics import (
    metrics_middleware,
    metrics_response,
    observe_rag_metrics,
    record_pipeline_failure,
)
from src.app.schemas import (
    CompareRequest,
    CompareResponse,
    ComparisonEntry,
    IngestRequest,
    IngestResponse,
    QueryRequest,
    QueryResponse,
)
from src.app.settings import settings
from src.loaders.markdown import load_document_bytes
from src.rag.embeddings import EmbeddingError
from src.rag.guardrails import InvalidQuestionError, require_question
from src.rag.pipeline import PipelineError, RAGPipeline
from src.rag.types import IngestRecord, QueryOptions
from src.vectorstore.base import VectorStoreError

logger = logging.getLogger(__name__)


def _configure_logging() -> None:
    """Configure root logging using environment settings."""
    level_name = settings.log_level.strip().upper()
    level = getattr(logging, level_name, logging.INFO)
    root_logger = logging.getLogger()
    if not root_logger.handlers:
        logging.basicConfig(
            level=level,
            format="%(asctime)s %(levelname)s %(name)s %(message)s",
        )
    logger.setLevel(level)


_configure_logging()


@asynccontextmanager
async def lifespan(_: FastAPI) -> AsyncIterator[None]:
    """Build the pipeline once so configuration errors fail startup."""
    pipeline = get_pipeline()
    logger.info(
        "pipeline_ready",
        extra={
            "mock_mode": settings.mock_mode,
            "top_k": pipeline.top_k,
            "rerank_top_k": pipeline.rerank_top_k,
        },
    )
    yield


app = FastAPI(title="Hybrid RAG Engine", version="0.1.0", lifespan=lifespan)


def _request_id(http_request: Request) -> str:
    return getattr(http_request.state, "request_id", str(uuid.uuid4()))


def _validated_question(question: str) -> str:
    try:
        return require_question(question)
    except InvalidQuestionError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc


async def _ingest_records(records: list[IngestRecord], request_id: str) -> int:
    """Run ingestion, mapping embedding and index failures onto a 502 response."""
    try:
        return await get_pipeline().ingest(records)
    except (EmbeddingError, VectorStoreError) as exc:
        record_pipeline_failure("ingestion")
        logger.error(
            "ingest_failed",
            extra={"request_id": request_id, "error": type(exc).__name__},
        )
        raise HTTPException(
            status_code=502,
            detail={"stage": "ingestion", "error": str(exc)},
        ) from exc


def _pipeline_http_error(exc: PipelineError, request_id: str) -> HTTPException:
    """Map a failed query stage onto a 502 response."""
    record_pipeline_failure(exc.stage.value)
    logger.error(
        "query_failed",
        extra={"request_id": request_id, "stage": exc.stage.value},
    )
    return HTTPException(
        status_code=502,
        detail={"stage": exc.stage.value, "error": exc.detail},
    )


def _sse_frame(payload: dict[str, object]) -> str:
    return f"data: {json.dumps(payload)}\n\n"


async def _stream_frames(
    pipeline: RAGPipeline,
    question: str,
    options: QueryOptions,
    request_id: str,
) -> AsyncIterator[str]:
    """Render pipeline events as server-sent event frames."""
    try:
        async for event in pipeline.stream_query(question, options):
            yield _sse_frame(event.to_dict())
    except PipelineError as exc:
        record_pipeline_failure(exc.stage.value)
        logger.error(
            "stream_failed",
            extra={"request_id": request_id, "stage": exc.stage.value},
        )
        yield _sse_frame({"type": "error", "stage": exc.stage.value, "detail": exc.detail})


@app.middleware("http")
async def add_request_id(request: Request, call_next):
    """Attach or create a request ID for traceability."""
    request_id = request.headers.get("x-request-id") or str(uuid.uuid4())
    request.state.request_id = request_id
    response = await call_next(request)
    response.headers["X-Request-ID"] = request_id
    return response


@app.middleware("http")
async def record_metrics(request: Request, call_next):
    """Capture request metrics before returning the response."""
    return await metrics_middleware(request, call_next)


@app.get("/metrics")
async def metrics():
    """Expose Prometheus-style metrics."""
    return metrics_response()


@app.get("/health")
async def health() -> dict[str, str]:
    """Simple health probe for uptime checks."""
    return {"status": "healthy", "timestamp": datetime.now(timezone.utc).isoformat()}


@app.get("/api/stats")
async def stats() -> dict[str, object]:
    """Report vector index health and size."""
    index = get_pipeline().retriever.index
    report: dict[str, object] = dict(await asyncio.to_thread(index.health))
    if report.get("ok"):
        report.update(await asyncio.to_thread(index.stats))
    return report


@app.post("/api/query", response_model=QueryResponse)
async def query(request: QueryRequest, http_request: Request) -> QueryResponse:
    """Answer a question with retrieved, optionally reranked sources."""
    request_id = _request_id(http_request)
    question = _validated_question(request.question)
    options = QueryOptions(
        use_reranking=request.use_reranking,
        use_hybrid_search=request.use_hybrid_search,
    )
    try:
        response = await get_pipeline().query(question, options)
    except PipelineError as exc:
        raise _pipeline_http_error(exc, request_id) from exc
    observe_rag_metrics(response.metrics)
    return QueryResponse.from_response(response, request_id)


@app.post("/api/query/stream")
async def query_stream(request: QueryRequest, http_request: Request) -> StreamingResponse:
    """Stream stage events and answer fragments as server-sent events."""
    request_id = _request_id(http_request)
    question = _validated_question(request.question)
    options = QueryOptions(
        use_reranking=request.use_reranking,
        use_hybrid_search=request.use_hybrid_search,
    )
    return StreamingResponse(
        _stream_frames(get_pipeline(), question, options, request_id),
        media_type="text/event-stream",
        headers={"Cache-Control": "no-cache", "Connection": "keep-alive"},
    )


@app.post("/api/compare", response_model=CompareResponse)
async def compare(request: CompareRequest, http_request: Request) -> CompareResponse:
    """Run the three retrieval configurations side by side."""
    request_id = _request_id(http_request)
    question = _validated_question(request.question)
    try:
        results = await get_pipeline().compare(question)
    except PipelineError as exc:
        raise _pipeline_http_error(exc, request_id) from exc
    for result in results:
        observe_rag_metrics(result.metrics)
    return CompareResponse(
        question=question,
        comparisons=[ComparisonEntry.from_result(result) for result in results],
    )


@app.post("/api/ingest", response_model=IngestResponse)
async def ingest(request: IngestRequest, http_request: Request) -> IngestResponse:
    """Ingest raw text documents into the vector index."""
    records = [
        IngestRecord(content=doc.content, metadata=dict(doc.metadata))
        for doc in request.documents
        if doc.content.strip()
    ]
    if not records:
        raise HTTPException(status_code=400, detail="No documents provided")
    ingested = await _ingest_records(records, _request_id(http_request))
    logger.info(
        "documents_ingested",
        extra={"request_id": _request_id(http_request), "ingested": ingested},
    )
    return IngestResponse(ingested=ingested)


@app.post("/api/ingest/files", response_model=IngestResponse)
async def ingest_files(
    http_request: Request,
    files: list[UploadFile] = File(...),
) -> IngestResponse:
    """Ingest uploaded Markdown and plain text files."""
    records: list[IngestRecord] = []
    for idx, upload in enumerate(files, start=1):
        filename = upload.filename or f"upload-{idx}.txt"
        data = await upload.read()
        if not data:
            continue
        try:
            record = load_document_bytes(data, source=filename)
        except ValueError as exc:
            raise HTTPException(status_code=400, detail=str(exc)) from exc
        if record.content.strip():
            records.append(record)
    if not records:
        raise HTTPException(status_code=400, detail="No valid file content provided")
    ingested = await _ingest_records(records, _request_id(http_request))
    logger.info(
        "files_ingested",
        extra={
            "request_id": _request_id(http_request),
            "files": len(records),
            "ingested": ingested,
        },
    )
    return IngestResponse(ingested=ingested)
