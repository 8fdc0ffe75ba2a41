from __future__ import annotations

"""Milvus-backed vector index with full-text keyword scan."""

import json
from dataclasses import dataclass
from typing import Any

from src.vectorstore.base import VectorHit, VectorPoint, VectorStoreError, tokenize

_OUTPUT_FIELDS = ["id", "content", "metadata"]


class MilvusDependencyError(RuntimeError):
    """Raised when Milvus dependencies are missing."""
    pass


@dataclass
class MilvusConfig:
    """Configuration for Milvus connection and indexing."""
    uri: str
    token: str | None
    collection: str
    dimension: int
    consistency: str = "Strong"
    index_type: str = "HNSW"
    metric_type: str = "COSINE"
    nlist: int = 1024
    nprobe: int = 10
    hnsw_m: int = 16
    hnsw_ef_construction: int = 200
    hnsw_ef: int = 64
    max_content_length: int = 65535


@dataclass
class MilvusVectorStore:
    """Milvus collection storing chunk text, JSON metadata and dense vectors."""
    config: MilvusConfig

    def __post_init__(self) -> None:
        """Connect to Milvus and ensure collection exists."""
        try:
            from pymilvus import connections
        except ImportError as exc:
            raise MilvusDependencyError("pymilvus is required for MilvusVectorStore") from exc
        if self.config.dimension <= 0:
            raise VectorStoreError(
                "Embedding dimension must be set before initializing MilvusVectorStore"
            )
        try:
            connections.connect(
                alias="default",
                uri=self.config.uri,
                token=self.config.token,
            )
        except Exception as exc:
            raise VectorStoreError(f"Milvus is unreachable at {self.config.uri}") from exc
        self.ensure_collection()

    def ensure_collection(self) -> None:
        """Create collection schema and indexes when missing."""
        from pymilvus import Collection, CollectionSchema, DataType, FieldSchema, utility

        if utility.has_collection(self.config.collection):
            self.collection = Collection(
                self.config.collection, consistency_level=self.config.consistency
            )
            existing_dim = self._existing_embedding_dim()
            if existing_dim is not None and existing_dim != self.config.dimension:
                raise VectorStoreError(
                    "Milvus collection embedding dimension mismatch: "
                    f"{existing_dim} (collection) vs {self.config.dimension} (embedder). "
                    "Update EMBEDDING_DIMENSION or use a new MILVUS_COLLECTION."
                )
            return

        fields = [
            FieldSchema(
                name="id",
                dtype=DataType.VARCHAR,
                is_primary=True,
                max_length=64,
            ),
            FieldSchema(
                name="content",
                dtype=DataType.VARCHAR,
                max_length=self.config.max_content_length,
                enable_analyzer=True,
                enable_match=True,
            ),
            FieldSchema(name="metadata", dtype=DataType.JSON),
            FieldSchema(
                name="embedding",
                dtype=DataType.FLOAT_VECTOR,
                dim=self.config.dimension,
            ),
        ]
        schema = CollectionSchema(fields=fields, description="Hybrid RAG chunks")
        self.collection = Collection(
            self.config.collection,
            schema,
            consistency_level=self.config.consistency,
        )
        self._create_index()

    def _index_params(self) -> dict[str, Any]:
        if self.config.index_type.upper() == "HNSW":
            return {
                "index_type": "HNSW",
                "metric_type": self.config.metric_type,
                "params": {
                    "M": self.config.hnsw_m,
                    "efConstruction": self.config.hnsw_ef_construction,
                },
            }
        return {
            "index_type": self.config.index_type,
            "metric_type": self.config.metric_type,
            "params": {"nlist": self.config.nlist},
        }

    def _search_params(self) -> dict[str, Any]:
        if self.config.index_type.upper() == "HNSW":
            return {"metric_type": self.config.metric_type, "params": {"ef": self.config.hnsw_ef}}
        return {"metric_type": self.config.metric_type, "params": {"nprobe": self.config.nprobe}}

    def _create_index(self) -> None:
        """Create the dense index on the collection."""
        self.collection.create_index(field_name="embedding", index_params=self._index_params())

    def _existing_embedding_dim(self) -> int | None:
        """Read embedding dimension from existing collection schema."""
        for schema_field in self.collection.schema.fields:
            if schema_field.name != "embedding":
                continue
            params = getattr(schema_field, "params", None) or {}
            dim = params.get("dim") if isinstance(params, dict) else None
            if dim is None:
                dim = getattr(schema_field, "dim", None)
            return int(dim) if dim is not None else None
        return None

    def upsert(self, points: list[VectorPoint]) -> int:
        """Upsert points with their content and metadata payload."""
        rows: list[dict[str, Any]] = []
        for point in points:
            content = str(point.payload.get("content", ""))[: self.config.max_content_length]
            rows.append(
                {
                    "id": point.id,
                    "content": content,
                    "metadata": point.payload.get("metadata") or {},
                    "embedding": point.vector,
                }
            )
        if not rows:
            return 0
        try:
            self.collection.upsert(rows)
            self.collection.flush()
        except Exception as exc:
            raise VectorStoreError(f"Milvus upsert failed: {exc}") from exc
        return len(rows)

    def search(self, vector: list[float], limit: int) -> list[VectorHit]:
        """Dense nearest-neighbour search."""
        if limit <= 0:
            return []
        try:
            self.collection.load()
            results = self.collection.search(
                data=[vector],
                anns_field="embedding",
                param=self._search_params(),
                limit=limit,
                output_fields=_OUTPUT_FIELDS,
            )
        except Exception as exc:
            raise VectorStoreError(f"Milvus search failed: {exc}") from exc
        hits: list[VectorHit] = []
        for hit in results[0]:
            entity = hit.entity
            hits.append(
                VectorHit(
                    id=str(entity.get("id")),
                    payload=self._payload(entity.get("content"), entity.get("metadata")),
                    score=float(hit.score),
                )
            )
        return hits

    def scan(self, terms: list[str], limit: int) -> list[VectorHit]:
        """Return rows whose analyzed content matches any term (unranked)."""
        expr = self._build_match_expr(terms)
        if limit <= 0 or not expr:
            return []
        try:
            self.collection.load()
            rows = self.collection.query(expr=expr, limit=limit, output_fields=_OUTPUT_FIELDS)
        except Exception as exc:
            raise VectorStoreError(f"Milvus keyword scan failed: {exc}") from exc
        return [
            VectorHit(
                id=str(row.get("id")),
                payload=self._payload(row.get("content"), row.get("metadata")),
            )
            for row in rows
        ]

    def _build_match_expr(self, terms: list[str]) -> str | None:
        """Build a TEXT_MATCH expression (space-separated terms match with OR)."""
        cleaned: list[str] = []
        for term in terms:
            for token in tokenize(term):
                if token not in cleaned:
                    cleaned.append(token)
        if not cleaned:
            return None
        return f"TEXT_MATCH(content, '{' '.join(cleaned)}')"

    def _payload(self, content: Any, metadata: Any) -> dict[str, Any]:
        """Rebuild the stored payload."""
        if isinstance(metadata, str):
            try:
                metadata = json.loads(metadata)
            except json.JSONDecodeError:
                metadata = {"raw": metadata}
        return {"content": content or "", "metadata": metadata or {}}

    def count(self) -> int:
        try:
            return int(self.collection.num_entities)
        except Exception as exc:
            raise VectorStoreError(f"Milvus count failed: {exc}") from exc

    def stats(self) -> dict[str, int | str]:
        """Return collection stats."""
        return {
            "backend": "milvus",
            "document_count": self.count(),
            "embedding_dimension": self.config.dimension,
            "collection": self.config.collection,
        }

    def health(self) -> dict[str, str | bool]:
        """Return collection health info."""
        try:
            _ = self.collection.num_entities
        except Exception as exc:
            return {
                "backend": "milvus",
                "ok": False,
                "detail": str(exc),
            }
        return {
            "backend": "milvus",
            "ok": True,
            "collection": self.config.collection,
        }

