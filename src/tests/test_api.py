from __future__ import annotations

import json

import httpx
import pytest

from src.app import main as main_module
from src.app.dependencies import get_pipeline, reset_pipeline_cache
from src.app.main import app
from src.rag.embeddings import HashEmbedder
from src.rag.llm import LLMError, MockGenerator
from src.rag.pipeline import RAGPipeline
from src.rag.reranker import MockReranker, ResilientReranker
from src.rag.retrieval import HybridRetriever
from src.rag.types import IngestRecord
from src.vectorstore.inmemory import InMemoryVectorStore

pytestmark = pytest.mark.anyio

DOCUMENTS = [
    {
        "content": "Performance tuning starts with measuring latency and caching hot paths.",
        "metadata": {"source": "performance.md", "title": "Performance"},
    },
    {
        "content": "Security reviews cover authentication and encryption.",
        "metadata": {"source": "security.md"},
    },
]


def get_client() -> httpx.AsyncClient:
    reset_pipeline_cache()
    transport = httpx.ASGITransport(app=app)
    return httpx.AsyncClient(transport=transport, base_url="http://test")


def _frames(body: str) -> list[dict]:
    return [
        json.loads(line[len("data: ") :])
        for line in body.splitlines()
        if line.startswith("data: ")
    ]


class BrokenGenerator(MockGenerator):
    async def generate(self, question: str, context: str) -> str:
        raise LLMError("upstream timeout")

    async def stream(self, question: str, context: str):
        raise LLMError("upstream timeout")
        yield ""


def _broken_pipeline() -> RAGPipeline:
    embedder = HashEmbedder()
    index = InMemoryVectorStore(dimension=embedder.dimension)
    pipeline = RAGPipeline(
        retriever=HybridRetriever(index=index, embedder=embedder),
        reranker=ResilientReranker(provider=MockReranker()),
        generator=BrokenGenerator(),
    )
    return pipeline


async def test_health_endpoint() -> None:
    async with get_client() as client:
        response = await client.get("/health", headers={"X-Request-ID": "req-1"})
    assert response.status_code == 200
    assert response.json()["status"] == "healthy"
    assert response.headers["X-Request-ID"] == "req-1"


async def test_ingest_and_query() -> None:
    async with get_client() as client:
        ingest_response = await client.post("/api/ingest", json={"documents": DOCUMENTS})
        assert ingest_response.status_code == 200
        assert ingest_response.json()["ingested"] >= 2

        query_response = await client.post(
            "/api/query",
            json={"question": "How do I improve performance?", "use_reranking": False},
        )
    assert query_response.status_code == 200
    payload = query_response.json()
    assert payload["answer"]
    assert payload["sources"]
    assert payload["sources"][0]["metadata"]["source_document"] == "performance.md"
    assert set(payload["metrics"]) == {
        "retrieval_time",
        "reranking_time",
        "generation_time",
        "total_time",
    }
    assert payload["request_id"]


async def test_query_on_empty_index_returns_fixed_answer() -> None:
    async with get_client() as client:
        response = await client.post("/api/query", json={"question": "performance"})
    assert response.status_code == 200
    assert response.json()["sources"] == []
    assert response.json()["answer"].startswith("I couldn't find")


async def test_query_validation() -> None:
    async with get_client() as client:
        empty = await client.post("/api/query", json={"question": ""})
        blank = await client.post("/api/query", json={"question": "   "})
        missing = await client.post("/api/query", json={})
    assert empty.status_code == 422
    assert blank.status_code == 400
    assert missing.status_code == 422


async def test_stream_endpoint_emits_sse_frames() -> None:
    async with get_client() as client:
        await client.post("/api/ingest", json={"documents": DOCUMENTS})
        response = await client.post(
            "/api/query/stream", json={"question": "performance latency"}
        )
    assert response.status_code == 200
    assert response.headers["content-type"].startswith("text/event-stream")
    frames = _frames(response.text)
    assert frames[0] == {"type": "retrieval"}
    assert frames[-1]["type"] == "complete"
    assert any(frame.get("chunk") for frame in frames if frame["type"] == "generation")


async def test_stream_blank_question_rejected_before_streaming() -> None:
    async with get_client() as client:
        response = await client.post("/api/query/stream", json={"question": " "})
    assert response.status_code == 400


async def test_compare_endpoint() -> None:
    async with get_client() as client:
        await client.post("/api/ingest", json={"documents": DOCUMENTS})
        response = await client.post("/api/compare", json={"question": "performance"})
    assert response.status_code == 200
    payload = response.json()
    assert payload["question"] == "performance"
    assert [entry["configuration"] for entry in payload["comparisons"]] == [
        "Vector Search Only",
        "Hybrid Search",
        "Hybrid + Reranking",
    ]
    assert payload["comparisons"][0]["top_source"]["content"]


async def test_ingest_requires_documents() -> None:
    async with get_client() as client:
        response = await client.post("/api/ingest", json={"documents": []})
    assert response.status_code == 400


async def test_ingest_files_accepts_markdown_and_rejects_pdf() -> None:
    async with get_client() as client:
        ok = await client.post(
            "/api/ingest/files",
            files=[("files", ("guide.md", b"# Guide\n\nCaching improves latency.", "text/markdown"))],
        )
        bad = await client.post(
            "/api/ingest/files",
            files=[("files", ("report.pdf", b"%PDF-1.4", "application/pdf"))],
        )
    assert ok.status_code == 200
    assert ok.json()["ingested"] >= 1
    assert bad.status_code == 400
    points = get_pipeline().retriever.index.points.values()
    assert any(point.payload["metadata"].get("title") == "Guide" for point in points)


async def test_stats_reports_index() -> None:
    async with get_client() as client:
        await client.post("/api/ingest", json={"documents": DOCUMENTS})
        response = await client.get("/api/stats")
    assert response.status_code == 200
    payload = response.json()
    assert payload["ok"] is True
    assert payload["backend"] == "memory"
    assert payload["document_count"] >= 2


async def test_metrics_exposes_stage_histogram() -> None:
    async with get_client() as client:
        await client.post("/api/query", json={"question": "performance"})
        response = await client.get("/metrics")
    assert response.status_code == 200
    assert "rag_stage_duration_seconds" in response.text
    assert "http_requests_total" in response.text


async def test_generation_failure_maps_to_bad_gateway(monkeypatch) -> None:
    pipeline = _broken_pipeline()
    await pipeline.ingest(
        [
            IngestRecord(
                content=doc["content"], metadata=doc["metadata"]
            )
            for doc in DOCUMENTS
        ]
    )
    monkeypatch.setattr(main_module, "get_pipeline", lambda: pipeline)
    transport = httpx.ASGITransport(app=app)
    async with httpx.AsyncClient(transport=transport, base_url="http://test") as client:
        query = await client.post("/api/query", json={"question": "performance"})
        stream = await client.post("/api/query/stream", json={"question": "performance"})

    assert query.status_code == 502
    assert query.json()["detail"]["stage"] == "generation"
    frames = _frames(stream.text)
    assert frames[-1]["type"] == "error"
    assert frames[-1]["stage"] == "generation"
    assert "upstream timeout" in frames[-1]["detail"]


async def test_ingest_index_failure_maps_to_bad_gateway(monkeypatch) -> None:
    embedder = HashEmbedder()
    pipeline = RAGPipeline(
        retriever=HybridRetriever(index=InMemoryVectorStore(dimension=3), embedder=embedder),
        reranker=ResilientReranker(provider=MockReranker()),
        generator=MockGenerator(),
    )
    monkeypatch.setattr(main_module, "get_pipeline", lambda: pipeline)
    transport = httpx.ASGITransport(app=app)
    async with httpx.AsyncClient(transport=transport, base_url="http://test") as client:
        documents = await client.post("/api/ingest", json={"documents": DOCUMENTS})
        files = await client.post(
            "/api/ingest/files",
            files=[("files", ("notes.txt", b"Caching improves latency.", "text/plain"))],
        )

    for response in (documents, files):
        assert response.status_code == 502
        assert response.json()["detail"]["stage"] == "ingestion"
        assert "dimension mismatch" in response.json()["detail"]["error"]
