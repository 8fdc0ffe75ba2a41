from __future__ import annotations

import time

from fastapi import Request
from prometheus_client import CONTENT_TYPE_LATEST, Counter, Histogram, generate_latest
from starlette.responses import Response

from src.app.settings import settings
from src.rag.types import RAGMetrics

REQUEST_COUNT = Counter(
    "http_requests_total",
    "Total HTTP requests",
    ["method", "path", "status"],
)
REQUEST_LATENCY = Histogram(
    "http_request_duration_seconds",
    "HTTP request duration in seconds",
    ["method", "path"],
)
STAGE_LATENCY = Histogram(
    "rag_stage_duration_seconds",
    "RAG pipeline stage duration in seconds",
    ["stage"],
)
PIPELINE_FAILURES = Counter(
    "rag_pipeline_failures_total",
    "RAG queries that failed, by stage",
    ["stage"],
)


async def metrics_middleware(request: Request, call_next):
    if not settings.metrics_enabled:
        return await call_next(request)
    path = request.url.path
    if path == "/metrics":
        return await call_next(request)
    start = time.monotonic()
    status = 500
    try:
        response = await call_next(request)
        status = response.status_code
        return response
    finally:
        duration = time.monotonic() - start
        REQUEST_COUNT.labels(request.method, path, str(status)).inc()
        REQUEST_LATENCY.labels(request.method, path).observe(duration)


def observe_rag_metrics(metrics: RAGMetrics) -> None:
    """Record per-stage timings (milliseconds) from a finished query."""
    if not settings.metrics_enabled:
        return
    for stage, value in (
        ("retrieval", metrics.retrieval_time),
        ("reranking", metrics.reranking_time),
        ("generation", metrics.generation_time),
        ("total", metrics.total_time),
    ):
        STAGE_LATENCY.labels(stage).observe(value / 1000.0)


def record_pipeline_failure(stage: str) -> None:
    if settings.metrics_enabled:
        PIPELINE_FAILURES.labels(stage).inc()


def metrics_response() -> Response:
    if not settings.metrics_enabled:
        return Response(status_code=404)
    return Response(generate_latest(), media_type=CONTENT_TYPE_LATEST)
