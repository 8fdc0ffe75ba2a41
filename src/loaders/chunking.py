from __future__ import annotations

"""Content-aware chunking strategies (recursive character and token based)."""

import logging
import re
from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from typing import Any, Iterable, Protocol

from src.rag.types import Chunk, IngestRecord

logger = logging.getLogger(__name__)

CODE_RATIO_THRESHOLD = 0.5
STRUCTURED_RATIO_THRESHOLD = 0.3
CODE_CHUNK_SIZE = 256
CODE_CHUNK_OVERLAP = 64
DEFAULT_SEPARATORS = ("\n\n", "\n", ". ", " ", "")

_CODE_RE = re.compile(
    r"\b(?:function|class|import|export|const|let|var|if|for|while|return)\s"
)
_STRUCTURED_RE = re.compile(r"\|.*\||\t|^\s*[-*]\s|^\d+\.", re.MULTILINE)


class TokenEncoding(Protocol):
    """Subset of the tiktoken Encoding API used for token windows."""

    def encode(self, text: str) -> list[int]:
        raise NotImplementedError

    def decode(self, tokens: list[int]) -> str:
        raise NotImplementedError


class ChunkingStrategy(Protocol):
    """Protocol for chunking strategies."""
    name: str

    def chunk(self, text: str, metadata: dict[str, Any] | None = None) -> list[Chunk]:
        """Split text into ordered chunks."""
        raise NotImplementedError


def detect_content_type(text: str) -> str:
    """Classify text as code, structured or narrative by pattern density."""
    length = len(text)
    if length == 0:
        return "narrative"
    per_hundred = length / 100
    code_ratio = len(_CODE_RE.findall(text)) / per_hundred
    structured_ratio = len(_STRUCTURED_RE.findall(text)) / per_hundred
    if code_ratio > CODE_RATIO_THRESHOLD:
        return "code"
    if structured_ratio > STRUCTURED_RATIO_THRESHOLD:
        return "structured"
    return "narrative"


def _resolve_overlap(size: int, overlap: int) -> int:
    """Clamp overlap below the window size."""
    if overlap < 0:
        return 0
    if overlap >= size:
        clamped = max(0, size // 4)
        logger.warning(
            "chunk_overlap_clamped",
            extra={"chunk_size": size, "requested": overlap, "overlap": clamped},
        )
        return clamped
    return overlap


def _split_keep_separator(text: str, separator: str) -> list[str]:
    """Split text keeping each separator at the end of the preceding piece."""
    if not separator:
        return list(text)
    pieces = text.split(separator)
    splits = [piece + separator for piece in pieces[:-1]]
    splits.append(pieces[-1])
    return [piece for piece in splits if piece]


def split_recursive(
    text: str,
    chunk_size: int,
    overlap: int,
    separators: Iterable[str] = DEFAULT_SEPARATORS,
) -> list[str]:
    """Split text on the coarsest separator that yields pieces under chunk_size."""
    if chunk_size <= 0:
        raise ValueError("chunk_size must be positive")
    overlap = _resolve_overlap(chunk_size, overlap)
    return _split_recursive(text, chunk_size, overlap, list(separators))


def _split_recursive(
    text: str, chunk_size: int, overlap: int, separators: list[str]
) -> list[str]:
    separator = separators[-1]
    remaining: list[str] = []
    for idx, candidate in enumerate(separators):
        if candidate == "":
            separator = candidate
            break
        if candidate in text:
            separator = candidate
            remaining = separators[idx + 1 :]
            break

    chunks: list[str] = []
    pending: list[str] = []
    for piece in _split_keep_separator(text, separator):
        if len(piece) < chunk_size:
            pending.append(piece)
            continue
        if pending:
            chunks.extend(_merge_pieces(pending, chunk_size, overlap))
            pending = []
        if remaining:
            chunks.extend(_split_recursive(piece, chunk_size, overlap, remaining))
        else:
            stripped = piece.strip()
            if stripped:
                chunks.append(stripped)
    if pending:
        chunks.extend(_merge_pieces(pending, chunk_size, overlap))
    return chunks


def _merge_pieces(pieces: list[str], chunk_size: int, overlap: int) -> list[str]:
    """Greedily pack small pieces into windows, carrying trailing overlap."""
    merged: list[str] = []
    window: list[str] = []
    total = 0
    for piece in pieces:
        size = len(piece)
        if window and total + size > chunk_size:
            text = "".join(window).strip()
            if text:
                merged.append(text)
            while window and (total > overlap or total + size > chunk_size):
                total -= len(window.pop(0))
        window.append(piece)
        total += size
    text = "".join(window).strip()
    if text:
        merged.append(text)
    return merged


def split_tokens(
    text: str,
    max_tokens: int,
    overlap: int,
    encoding: TokenEncoding,
) -> list[str]:
    """Split text into overlapping token windows."""
    if max_tokens <= 0:
        raise ValueError("max_tokens must be positive")
    overlap = _resolve_overlap(max_tokens, overlap)
    tokens = encoding.encode(text)
    if not tokens:
        return []
    step = max_tokens - overlap
    chunks: list[str] = []
    start = 0
    length = len(tokens)
    while start < length:
        end = min(length, start + max_tokens)
        chunk = encoding.decode(tokens[start:end]).strip()
        if chunk:
            chunks.append(chunk)
        if end >= length:
            break
        start += step
    return chunks


def _build_chunks(
    pieces: list[str],
    metadata: dict[str, Any] | None,
    content_type: str,
    strategy: str,
) -> list[Chunk]:
    """Attach ordinal and adjacency information to split pieces."""
    base = dict(metadata or {})
    document_id = str(base.get("source", "unknown"))
    total = len(pieces)
    return [
        Chunk(
            content=piece,
            document_id=document_id,
            chunk_index=idx,
            total_chunks=total,
            content_type=content_type,
            has_previous=idx > 0,
            has_next=idx < total - 1,
            strategy=strategy,
            metadata=dict(base),
        )
        for idx, piece in enumerate(pieces)
    ]


@dataclass
class RecursiveChunker:
    """Separator-aware character chunking for prose and code."""
    chunk_size: int = 512
    chunk_overlap: int = 128
    separators: tuple[str, ...] = DEFAULT_SEPARATORS
    content_type: str = "narrative"
    name: str = "semantic"

    def chunk(self, text: str, metadata: dict[str, Any] | None = None) -> list[Chunk]:
        if not text.strip():
            return []
        pieces = split_recursive(text, self.chunk_size, self.chunk_overlap, self.separators)
        return _build_chunks(pieces, metadata, self.content_type, self.name)


@dataclass
class TokenChunker:
    """Token-window chunking that respects tokenizer units."""
    chunk_size: int = 512
    chunk_overlap: int = 128
    encoding_name: str = "cl100k_base"
    encoding: TokenEncoding | None = None
    content_type: str = "structured"
    name: str = "token"

    def _get_encoding(self) -> TokenEncoding:
        if self.encoding is None:
            import tiktoken

            self.encoding = tiktoken.get_encoding(self.encoding_name)
        return self.encoding

    def chunk(self, text: str, metadata: dict[str, Any] | None = None) -> list[Chunk]:
        if not text.strip():
            return []
        pieces = split_tokens(text, self.chunk_size, self.chunk_overlap, self._get_encoding())
        return _build_chunks(pieces, metadata, self.content_type, self.name)


@dataclass
class AdaptiveChunker:
    """Choose a chunking strategy from the detected content type."""
    chunk_size: int = 512
    chunk_overlap: int = 128
    encoding: TokenEncoding | None = None
    name: str = "adaptive"

    def strategy_for(self, content_type: str) -> ChunkingStrategy:
        """Return the strategy used for a content type."""
        if content_type == "code":
            return RecursiveChunker(
                chunk_size=CODE_CHUNK_SIZE,
                chunk_overlap=CODE_CHUNK_OVERLAP,
                content_type="code",
            )
        if content_type == "structured":
            return TokenChunker(
                chunk_size=self.chunk_size,
                chunk_overlap=self.chunk_overlap,
                encoding=self.encoding,
            )
        return RecursiveChunker(chunk_size=self.chunk_size, chunk_overlap=self.chunk_overlap)

    def chunk(self, text: str, metadata: dict[str, Any] | None = None) -> list[Chunk]:
        if not text.strip():
            return []
        content_type = detect_content_type(text)
        chunks = self.strategy_for(content_type).chunk(text, metadata)
        logger.debug(
            "adaptive_chunking",
            extra={"content_type": content_type, "chunks": len(chunks)},
        )
        return chunks


@dataclass
class ChunkingPipeline:
    """Chunk ingestion records and stamp document-level metadata."""
    strategy: ChunkingStrategy = field(default_factory=AdaptiveChunker)

    def process_documents(self, records: Iterable[IngestRecord]) -> list[Chunk]:
        """Chunk every record and stamp source and ingestion timestamp."""
        chunks: list[Chunk] = []
        for record in records:
            source = str(record.metadata.get("source") or "unknown")
            timestamp = datetime.now(timezone.utc).isoformat()
            for chunk in self.strategy.chunk(record.content, record.metadata):
                metadata = dict(chunk.metadata)
                metadata.update({"source_document": source, "timestamp": timestamp})
                chunks.append(replace(chunk, document_id=source, metadata=metadata))
        return chunks

    def set_strategy(self, strategy: ChunkingStrategy) -> None:
        self.strategy = strategy
