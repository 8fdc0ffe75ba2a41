from __future__ import annotations

"""Shared pytest fixtures and test environment defaults."""

import os
import sys
from pathlib import Path

import pytest

PROJECT_ROOT = Path(__file__).resolve().parents[2]
if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))

os.environ["MOCK_MODE"] = "true"
os.environ.pop("OPENAI_API_KEY", None)
os.environ.pop("COHERE_API_KEY", None)
os.environ["RAG_QUERY_EXPANSION"] = "domain"
os.environ["RAG_LLM_PROVIDER"] = "openai"
os.environ.setdefault("RAG_METRICS_ENABLED", "true")


@pytest.fixture
def anyio_backend() -> str:
    return "asyncio"


class WhitespaceEncoding:
    """Word-level stand-in for a tiktoken encoding."""

    def __init__(self) -> None:
        self.vocab: dict[str, int] = {}
        self.words: list[str] = []

    def encode(self, text: str) -> list[int]:
        tokens: list[int] = []
        for word in text.split():
            if word not in self.vocab:
                self.vocab[word] = len(self.words)
                self.words.append(word)
            tokens.append(self.vocab[word])
        return tokens

    def decode(self, tokens: list[int]) -> str:
        return " ".join(self.words[token] for token in tokens)


@pytest.fixture
def whitespace_encoding() -> WhitespaceEncoding:
    return WhitespaceEncoding()
