from __future__ import annotations

from functools import lru_cache

from src.app.settings import ConfigError, settings
from src.loaders.chunking import AdaptiveChunker, ChunkingPipeline
from src.rag.embeddings import (
    EmbeddingConfigError,
    EmbeddingProvider,
    HashEmbedder,
    OpenAIEmbedder,
)
from src.rag.llm import AnswerGenerator, LLMError, build_generator
from src.rag.pipeline import RAGPipeline
from src.rag.reranker import RerankError, ResilientReranker, build_reranker
from src.rag.retrieval import HybridRetriever
from src.rag.rewriter import QueryExpander, QueryRewriteError, build_expander
from src.vectorstore.base import VectorIndex
from src.vectorstore.inmemory import InMemoryVectorStore
from src.vectorstore.milvus import MilvusConfig, MilvusVectorStore


@lru_cache
def get_pipeline() -> RAGPipeline:
    mock_mode = settings.mock_mode
    embedder = build_embedder(mock_mode)
    retriever = HybridRetriever(
        index=build_vectorstore(embedder, mock_mode),
        embedder=embedder,
        expander=build_query_expander(mock_mode),
        default_alpha=settings.hybrid_search_alpha,
    )
    return RAGPipeline(
        retriever=retriever,
        reranker=build_rag_reranker(mock_mode),
        generator=build_answer_generator(mock_mode),
        chunker=ChunkingPipeline(
            strategy=AdaptiveChunker(
                chunk_size=settings.chunk_size,
                chunk_overlap=settings.chunk_overlap,
            )
        ),
        top_k=settings.top_k,
        rerank_top_k=settings.rerank_top_k,
        alpha=settings.hybrid_search_alpha,
    )


def reset_pipeline_cache() -> None:
    get_pipeline.cache_clear()


def build_embedder(mock_mode: bool) -> EmbeddingProvider:
    if mock_mode:
        return HashEmbedder(dimension=settings.mock_embedding_dimension)
    provider = settings.embedding_provider.lower().strip()
    if provider == "hash":
        return HashEmbedder(dimension=settings.embedding_dimension)
    if provider == "openai":
        try:
            return OpenAIEmbedder(
                api_key=settings.openai_api_key or "",
                model=settings.openai_embedding_model,
                dimension=settings.embedding_dimension,
                base_url=settings.openai_base_url,
            )
        except EmbeddingConfigError as exc:
            raise ConfigError(str(exc)) from exc
    raise ConfigError(f"Unsupported embedding provider: {provider}")


def build_vectorstore(embedder: EmbeddingProvider, mock_mode: bool) -> VectorIndex:
    if mock_mode:
        return InMemoryVectorStore(dimension=embedder.dimension)
    return MilvusVectorStore(config=build_milvus_config(embedder.dimension))


def build_milvus_config(dimension: int) -> MilvusConfig:
    return MilvusConfig(
        uri=settings.milvus_uri,
        token=settings.milvus_token,
        collection=settings.milvus_collection,
        dimension=dimension,
        consistency=settings.milvus_consistency,
        index_type=settings.milvus_index_type,
        metric_type=settings.milvus_metric_type,
    )


def build_query_expander(mock_mode: bool) -> QueryExpander:
    try:
        return build_expander(
            settings.query_expansion,
            mock_mode=mock_mode,
            api_key=settings.openai_api_key,
            base_url=settings.openai_base_url,
            model=settings.openai_chat_model,
            timeout=settings.llm_timeout,
        )
    except QueryRewriteError as exc:
        raise ConfigError(str(exc)) from exc


def build_rag_reranker(mock_mode: bool) -> ResilientReranker:
    try:
        return build_reranker(
            mock_mode=mock_mode,
            api_key=settings.cohere_api_key,
            model=settings.cohere_rerank_model,
            base_url=settings.cohere_base_url,
            timeout=settings.llm_timeout,
        )
    except RerankError as exc:
        raise ConfigError(str(exc)) from exc


def build_answer_generator(mock_mode: bool) -> AnswerGenerator:
    try:
        return build_generator(
            settings.llm_provider,
            mock_mode=mock_mode,
            api_key_openai=settings.openai_api_key,
            openai_base_url=settings.openai_base_url,
            openai_model=settings.openai_chat_model,
            ollama_base_url=settings.ollama_base_url,
            ollama_model=settings.ollama_model,
            temperature=settings.llm_temperature,
            max_tokens=settings.llm_max_tokens,
            timeout=settings.llm_timeout,
        )
    except LLMError as exc:
        raise ConfigError(str(exc)) from exc
