from __future__ import annotations

"""Vector index contract shared by the in-memory and Milvus stores."""

import re
from dataclasses import dataclass, field
from typing import Any, Protocol

_WORD_RE = re.compile(r"\w+")


def tokenize(text: str) -> list[str]:
    """Split text into lower-cased word tokens; used for both queries and stored content."""
    return _WORD_RE.findall(text.lower())


class VectorStoreError(RuntimeError):
    """Raised when the vector index cannot serve a request."""
    pass


@dataclass(frozen=True)
class VectorPoint:
    """Vector plus payload to upsert."""
    id: str
    vector: list[float]
    payload: dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class VectorHit:
    """Hit returned by search or scan."""
    id: str
    payload: dict[str, Any]
    score: float = 0.0


class VectorIndex(Protocol):
    """Protocol for vector indexes used by the retriever."""

    def upsert(self, points: list[VectorPoint]) -> int:
        """Insert or replace points; return how many were written."""
        raise NotImplementedError

    def search(self, vector: list[float], limit: int) -> list[VectorHit]:
        """Return nearest neighbours ranked by cosine similarity."""
        raise NotImplementedError

    def scan(self, terms: list[str], limit: int) -> list[VectorHit]:
        """Return unranked hits whose content matches any of the terms."""
        raise NotImplementedError

    def count(self) -> int:
        """Return the number of stored points."""
        raise NotImplementedError

    def health(self) -> dict[str, str | bool]:
        """Return backend health information."""
        raise NotImplementedError

    def stats(self) -> dict[str, int | str]:
        """Return backend, size and dimension details."""
        raise NotImplementedError
