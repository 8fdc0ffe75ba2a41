from __future__ import annotations

"""In-memory vector index for mock mode, local testing and small datasets."""

import math
import threading
from dataclasses import dataclass, field

from src.vectorstore.base import VectorHit, VectorPoint, VectorStoreError, tokenize


@dataclass
class InMemoryVectorStore:
    """Simple in-memory vector index with cosine similarity search.

    Calls arrive on worker threads, so writes hold the lock and reads
    iterate over a snapshot of the stored points.
    """
    dimension: int = 256
    points: dict[str, VectorPoint] = field(default_factory=dict)
    _lock: threading.Lock = field(default_factory=threading.Lock, init=False, repr=False)

    def upsert(self, points: list[VectorPoint]) -> int:
        """Store points, replacing any with the same id."""
        for point in points:
            if len(point.vector) != self.dimension:
                raise VectorStoreError(
                    f"Vector dimension mismatch: expected {self.dimension}, got {len(point.vector)}"
                )
        with self._lock:
            for point in points:
                self.points[point.id] = point
        return len(points)

    def _snapshot(self) -> list[VectorPoint]:
        with self._lock:
            return list(self.points.values())

    def search(self, vector: list[float], limit: int) -> list[VectorHit]:
        """Rank stored points by cosine similarity to the vector."""
        if limit <= 0:
            return []
        scored = [
            VectorHit(
                id=point.id,
                payload=point.payload,
                score=self._cosine_similarity(vector, point.vector),
            )
            for point in self._snapshot()
        ]
        scored.sort(key=lambda hit: hit.score, reverse=True)
        return scored[:limit]

    def scan(self, terms: list[str], limit: int) -> list[VectorHit]:
        """Return points whose content contains any term, in insertion order."""
        if limit <= 0 or not terms:
            return []
        wanted = {term.lower() for term in terms}
        hits: list[VectorHit] = []
        for point in self._snapshot():
            tokens = set(tokenize(str(point.payload.get("content", ""))))
            if tokens.isdisjoint(wanted):
                continue
            hits.append(VectorHit(id=point.id, payload=point.payload))
            if len(hits) >= limit:
                break
        return hits

    def count(self) -> int:
        with self._lock:
            return len(self.points)

    def clear(self) -> None:
        with self._lock:
            self.points.clear()

    def _cosine_similarity(self, a: list[float], b: list[float]) -> float:
        """Compute cosine similarity between two vectors."""
        dot = sum(x * y for x, y in zip(a, b))
        norm_a = math.sqrt(sum(x * x for x in a))
        norm_b = math.sqrt(sum(y * y for y in b))
        if norm_a == 0.0 or norm_b == 0.0:
            return 0.0
        return dot / (norm_a * norm_b)

    def stats(self) -> dict[str, int | str]:
        """Return basic stats for the vector store."""
        return {
            "backend": "memory",
            "document_count": self.count(),
            "embedding_dimension": self.dimension,
        }

    def health(self) -> dict[str, str | bool]:
        """Return health information for the vector store."""
        return {
            "backend": "memory",
            "ok": True,
        }
