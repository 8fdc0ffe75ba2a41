from __future__ import annotations

"""Embedding providers, metadata augmentation and validation."""

import hashlib
import math
import re
from dataclasses import dataclass, field
from typing import Any, Protocol

from src.rag.types import Chunk

_TOKEN_RE = re.compile(r"[a-z0-9]+")
_AUGMENT_FIELDS = ("title", "category", "tags")


class EmbeddingError(RuntimeError):
    """Raised when embeddings fail or are invalid."""
    pass


class EmbeddingConfigError(RuntimeError):
    """Raised when embedding configuration is invalid."""
    pass


class EmbeddingProvider(Protocol):
    """Protocol for embedding providers."""
    dimension: int

    def embed(self, text: str) -> list[float]:
        """Return an embedding vector for the provided text."""
        raise NotImplementedError

    def embed_batch(self, texts: list[str]) -> list[list[float]]:
        """Return embedding vectors for several texts, in order."""
        raise NotImplementedError


def validate_vector(vector: list[float], dimension: int) -> list[float]:
    """Validate and normalize embedding vectors."""
    if len(vector) != dimension:
        raise EmbeddingError(
            f"Embedding dimension mismatch: expected {dimension}, got {len(vector)}"
        )
    cleaned: list[float] = []
    for value in vector:
        if not isinstance(value, (int, float)):
            raise EmbeddingError("Embedding contains a non-numeric value")
        if not math.isfinite(value):
            raise EmbeddingError("Embedding contains a non-finite value")
        cleaned.append(float(value))
    return cleaned


def augment_with_metadata(chunk: Chunk) -> str:
    """Prefix chunk text with title, category and tags for embedding."""
    parts: list[str] = []
    for key in _AUGMENT_FIELDS:
        value = chunk.metadata.get(key)
        if value is None or value == "" or value == []:
            continue
        if isinstance(value, (list, tuple)):
            value = ",".join(str(item) for item in value)
        parts.append(f"{key}: {value}")
    if not parts:
        return chunk.content
    return f"{' '.join(parts)}\n\n{chunk.content}"


@dataclass
class HashEmbedder:
    """Deterministic hash-based embedder for mock mode and tests."""
    dimension: int = 256

    def embed(self, text: str) -> list[float]:
        """Embed text using token hashing and L2 normalization."""
        tokens = _TOKEN_RE.findall(text.lower())
        if not tokens:
            return validate_vector([0.0] * self.dimension, self.dimension)
        vector = [0.0] * self.dimension
        for token in tokens:
            digest = hashlib.sha256(token.encode("utf-8")).digest()
            idx = int.from_bytes(digest[:4], "big") % self.dimension
            vector[idx] += 1.0
        return validate_vector(self._l2_normalize(vector), self.dimension)

    def embed_batch(self, texts: list[str]) -> list[list[float]]:
        return [self.embed(text) for text in texts]

    def _l2_normalize(self, vector: list[float]) -> list[float]:
        """Normalize vector magnitude to 1.0."""
        norm = math.sqrt(sum(value * value for value in vector))
        if norm == 0.0:
            return vector
        return [value / norm for value in vector]


def resolve_openai_dimension(model: str) -> int | None:
    """Return the native dimension for an OpenAI embedding model."""
    mapping = {
        "text-embedding-3-small": 1536,
        "text-embedding-3-large": 3072,
        "text-embedding-ada-002": 1536,
    }
    return mapping.get(model)


@dataclass
class OpenAIEmbedder:
    """Embedding provider using OpenAI embeddings API."""
    api_key: str
    model: str
    dimension: int
    base_url: str | None = None
    client: Any = field(init=False, repr=False)

    def __post_init__(self) -> None:
        """Validate OpenAI configuration and create a client."""
        if not self.api_key:
            raise EmbeddingConfigError("OPENAI_API_KEY is required for OpenAIEmbedder")
        if not self.model:
            raise EmbeddingConfigError("OPENAI_EMBEDDING_MODEL is required for OpenAIEmbedder")
        native = resolve_openai_dimension(self.model)
        if self.dimension <= 0:
            if native is None:
                raise EmbeddingConfigError(
                    "EMBEDDING_DIMENSION must be set for OpenAI embeddings when model is unknown"
                )
            self.dimension = native
        elif self.model == "text-embedding-ada-002" and self.dimension != native:
            raise EmbeddingConfigError(
                f"EMBEDDING_DIMENSION should be {native} for model {self.model}"
            )
        try:
            from openai import OpenAI
        except ImportError as exc:
            raise EmbeddingError("openai package is required for OpenAIEmbedder") from exc
        self.client = OpenAI(api_key=self.api_key, base_url=self.base_url)

    def _request_kwargs(self) -> dict[str, Any]:
        kwargs: dict[str, Any] = {"model": self.model}
        if self.model.startswith("text-embedding-3"):
            kwargs["dimensions"] = self.dimension
        return kwargs

    def embed(self, text: str) -> list[float]:
        """Embed text using the OpenAI embeddings API."""
        return self.embed_batch([text])[0]

    def embed_batch(self, texts: list[str]) -> list[list[float]]:
        """Embed several texts in one OpenAI request."""
        if not texts:
            return []
        try:
            response = self.client.embeddings.create(input=texts, **self._request_kwargs())
        except Exception as exc:
            raise EmbeddingError(str(exc)) from exc
        ordered = sorted(response.data, key=lambda item: item.index)
        return [validate_vector(list(item.embedding), self.dimension) for item in ordered]
