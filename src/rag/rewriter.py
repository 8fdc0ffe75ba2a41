from __future__ import annotations

"""Query expansion helpers for retrieval."""

from dataclasses import dataclass, field

import httpx

DOMAIN_EXPANSIONS: dict[str, tuple[str, ...]] = {
    "performance": ("speed", "optimization", "efficiency", "latency"),
    "security": ("authentication", "authorization", "encryption", "vulnerability"),
    "api": ("endpoint", "rest", "graphql", "interface"),
    "database": ("sql", "nosql", "query", "index", "schema"),
}


class QueryRewriteError(RuntimeError):
    """Raised when query expansion fails."""
    pass


class QueryExpander:
    """Base class for query expanders."""
    async def expand(self, query: str) -> list[str]:
        """Return extra terms related to the query (possibly empty)."""
        raise NotImplementedError


@dataclass(frozen=True)
class NoopExpander(QueryExpander):
    """Expander that never adds terms."""
    async def expand(self, query: str) -> list[str]:
        return []


@dataclass(frozen=True)
class DomainTermExpander(QueryExpander):
    """Expand queries from a fixed table of domain terms."""
    expansions: dict[str, tuple[str, ...]] = field(
        default_factory=lambda: dict(DOMAIN_EXPANSIONS)
    )
    per_key: int = 2

    async def expand(self, query: str) -> list[str]:
        """Add up to per_key related terms for every domain key in the query."""
        lowered = query.lower()
        terms: list[str] = []
        for key, related in self.expansions.items():
            if key not in lowered:
                continue
            fresh = [term for term in related if term not in lowered and term not in terms]
            terms.extend(fresh[: self.per_key])
        return terms


@dataclass(frozen=True)
class OpenAIQueryExpander(QueryExpander):
    """Expander backed by OpenAI chat completions."""
    api_key: str
    base_url: str
    model: str
    temperature: float
    max_tokens: int
    timeout: float
    max_terms: int = 4

    async def expand(self, query: str) -> list[str]:
        """Ask the model for related search terms."""
        if not query.strip():
            return []
        payload = {
            "model": self.model,
            "messages": [
                {
                    "role": "system",
                    "content": (
                        "Suggest related search terms for the user query. "
                        f"Return at most {self.max_terms} single words or short phrases, "
                        "comma separated, with no other text."
                    ),
                },
                {"role": "user", "content": query},
            ],
            "temperature": self.temperature,
            "max_tokens": self.max_tokens,
        }
        headers = {"Authorization": f"Bearer {self.api_key}"}
        try:
            async with httpx.AsyncClient(timeout=self.timeout) as client:
                response = await client.post(
                    f"{self.base_url}/chat/completions",
                    json=payload,
                    headers=headers,
                )
                response.raise_for_status()
                data = response.json()
        except httpx.HTTPError as exc:
            raise QueryRewriteError(str(exc)) from exc

        choices = data.get("choices") or []
        if not choices:
            raise QueryRewriteError("Invalid OpenAI response")
        message = choices[0].get("message") or {}
        content = message.get("content")
        if not isinstance(content, str):
            raise QueryRewriteError("Invalid OpenAI response content")
        lowered = query.lower()
        terms: list[str] = []
        for raw in content.split(","):
            term = raw.strip().strip(".").lower()
            if term and term not in lowered and term not in terms:
                terms.append(term)
        return terms[: self.max_terms]


def build_expander(
    mode: str,
    *,
    mock_mode: bool,
    api_key: str | None,
    base_url: str,
    model: str | None,
    timeout: float,
) -> QueryExpander:
    """Factory for query expanders based on settings."""
    normalized = mode.strip().lower()
    if normalized in {"", "none", "off"}:
        return NoopExpander()
    if normalized == "llm" and not mock_mode:
        if not api_key or not model:
            raise QueryRewriteError("LLM query expansion requires OPENAI_API_KEY and OPENAI_CHAT_MODEL")
        return OpenAIQueryExpander(
            api_key=api_key,
            base_url=base_url.rstrip("/"),
            model=model,
            temperature=0.0,
            max_tokens=64,
            timeout=timeout,
        )
    return DomainTermExpander()
