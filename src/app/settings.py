from __future__ import annotations

import os
from dataclasses import dataclass

from dotenv import load_dotenv

load_dotenv()

_TRUE_VALUES = {"1", "true", "yes", "on"}
_FALSE_VALUES = {"0", "false", "no", "off"}


class ConfigError(RuntimeError):
    """Raised when settings cannot produce a working pipeline."""
    pass


@dataclass(frozen=True)
class Settings:
    mock_mode_raw: str = os.getenv("MOCK_MODE", "")
    log_level: str = os.getenv("RAG_LOG_LEVEL", "INFO")
    metrics_enabled: bool = os.getenv("RAG_METRICS_ENABLED", "true").lower() in _TRUE_VALUES
    openai_api_key_raw: str | None = os.getenv("OPENAI_API_KEY")
    openai_base_url: str = os.getenv("OPENAI_BASE_URL", "https://api.openai.com/v1")
    openai_embedding_model: str = os.getenv("OPENAI_EMBEDDING_MODEL", "text-embedding-3-large")
    openai_chat_model: str = os.getenv("OPENAI_CHAT_MODEL", "gpt-4-turbo-preview")
    embedding_provider: str = os.getenv("RAG_EMBEDDING_PROVIDER", "openai")
    embedding_dimension: int = int(os.getenv("EMBEDDING_DIMENSION", "1536"))
    mock_embedding_dimension: int = int(os.getenv("RAG_MOCK_EMBEDDING_DIMENSION", "256"))
    llm_provider: str = os.getenv("RAG_LLM_PROVIDER", "openai")
    ollama_base_url: str = os.getenv("OLLAMA_BASE_URL", "http://localhost:11434")
    ollama_model: str = os.getenv("OLLAMA_MODEL", "llama3.1")
    cohere_api_key_raw: str | None = os.getenv("COHERE_API_KEY")
    cohere_base_url: str = os.getenv("COHERE_BASE_URL", "https://api.cohere.com")
    cohere_rerank_model: str = os.getenv("COHERE_RERANK_MODEL", "rerank-english-v3.0")
    milvus_uri: str = os.getenv("MILVUS_URI", "http://localhost:19530")
    milvus_token: str | None = os.getenv("MILVUS_TOKEN")
    milvus_collection: str = os.getenv("MILVUS_COLLECTION", "advanced_rag_demo")
    milvus_consistency: str = os.getenv("MILVUS_CONSISTENCY", "Strong")
    milvus_index_type: str = os.getenv("MILVUS_INDEX_TYPE", "HNSW")
    milvus_metric_type: str = os.getenv("MILVUS_METRIC_TYPE", "COSINE")
    chunk_size: int = int(os.getenv("CHUNK_SIZE", "512"))
    chunk_overlap: int = int(os.getenv("CHUNK_OVERLAP", "128"))
    top_k: int = int(os.getenv("TOP_K", "10"))
    rerank_top_k: int = int(os.getenv("RERANK_TOP_K", "3"))
    hybrid_search_alpha: float = float(os.getenv("HYBRID_SEARCH_ALPHA", "0.5"))
    llm_temperature: float = float(os.getenv("RAG_LLM_TEMPERATURE", "0.2"))
    llm_max_tokens: int = int(os.getenv("RAG_LLM_MAX_TOKENS", "1024"))
    llm_timeout: float = float(os.getenv("RAG_LLM_TIMEOUT", "60"))
    query_expansion: str = os.getenv("RAG_QUERY_EXPANSION", "domain")

    @property
    def openai_api_key(self) -> str | None:
        return os.getenv("OPENAI_API_KEY", self.openai_api_key_raw or "") or None

    @property
    def cohere_api_key(self) -> str | None:
        return os.getenv("COHERE_API_KEY", self.cohere_api_key_raw or "") or None

    @property
    def mock_mode(self) -> bool:
        """Resolve mock mode; an explicit MOCK_MODE wins over key detection."""
        raw = os.getenv("MOCK_MODE", self.mock_mode_raw).strip().lower()
        if raw in _TRUE_VALUES:
            return True
        if raw in _FALSE_VALUES:
            missing = [
                name
                for name, value in (
                    ("OPENAI_API_KEY", self.openai_api_key),
                    ("COHERE_API_KEY", self.cohere_api_key),
                )
                if not value
            ]
            if missing:
                raise ConfigError(
                    f"MOCK_MODE=false requires {', '.join(missing)}"
                )
            return False
        if raw:
            raise ConfigError(f"Invalid MOCK_MODE value: {raw}")
        return not (self.openai_api_key and self.cohere_api_key)


settings = Settings()
