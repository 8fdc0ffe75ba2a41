from __future__ import annotations

from src.rag.types import SearchResult


NO_RESULTS_ANSWER = "I couldn't find any relevant information to answer your question."


class InvalidQuestionError(ValueError):
    """Raised when a question is rejected before any stage runs."""
    pass


def require_question(question: str) -> str:
    cleaned = question.strip() if isinstance(question, str) else ""
    if not cleaned:
        raise InvalidQuestionError("Question is required")
    return cleaned


def has_context(results: list[SearchResult]) -> bool:
    return any(result.chunk.content.strip() for result in results)
