from __future__ import annotations

"""Answer generators: OpenAI, Ollama and a deterministic mock."""

import asyncio
import hashlib
import json
from dataclasses import dataclass
from typing import AsyncIterator, Protocol

import httpx


class LLMError(RuntimeError):
    """Raised when LLM requests fail or responses are invalid."""
    pass


_SYSTEM_PROMPT = (
    "You are an advanced AI assistant with access to a knowledge base. "
    "Answer the question based on the provided context."
)

_ANSWER_TEMPLATE = (
    "Instructions:\n"
    "1. Provide a comprehensive yet concise answer\n"
    "2. Cite sources using [1], [2], etc. when referencing specific information\n"
    "3. If the context doesn't contain enough information, acknowledge this\n"
    "4. Maintain accuracy and don't hallucinate information\n\n"
    "Context:\n{context}\n\n"
    "Question: {question}\n\n"
    "Answer:"
)


def build_prompt(question: str, context: str) -> str:
    """Render the user prompt for grounded, cited answers."""
    return _ANSWER_TEMPLATE.format(context=context, question=question)


class AnswerGenerator(Protocol):
    """Protocol for answer generators."""

    async def generate(self, question: str, context: str) -> str:
        """Return a complete answer."""
        raise NotImplementedError

    def stream(self, question: str, context: str) -> AsyncIterator[str]:
        """Yield answer text fragments as they become available."""
        raise NotImplementedError


def _parse_openai_stream_line(line: str) -> tuple[bool, str]:
    """Parse one SSE line from the chat completions stream into (done, text)."""
    line = line.strip()
    if not line.startswith("data:"):
        return False, ""
    data = line[len("data:") :].strip()
    if data == "[DONE]":
        return True, ""
    try:
        payload = json.loads(data)
    except json.JSONDecodeError as exc:
        raise LLMError("Invalid OpenAI stream chunk") from exc
    choices = payload.get("choices") or []
    if not choices:
        return False, ""
    delta = choices[0].get("delta") or {}
    content = delta.get("content")
    return False, content if isinstance(content, str) else ""


@dataclass(frozen=True)
class OpenAIGenerator:
    """Answer generator backed by OpenAI chat completions."""
    api_key: str
    base_url: str
    model: str
    temperature: float
    max_tokens: int
    timeout: float
    system_prompt: str = _SYSTEM_PROMPT
    transport: httpx.AsyncBaseTransport | None = None

    def _payload(self, question: str, context: str, stream: bool) -> dict[str, object]:
        return {
            "model": self.model,
            "messages": [
                {"role": "system", "content": self.system_prompt},
                {"role": "user", "content": build_prompt(question, context)},
            ],
            "temperature": self.temperature,
            "max_tokens": self.max_tokens,
            "stream": stream,
        }

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(
            timeout=self.timeout,
            transport=self.transport,
            headers={"Authorization": f"Bearer {self.api_key}"},
        )

    async def generate(self, question: str, context: str) -> str:
        """Generate a grounded answer using OpenAI chat completions."""
        try:
            async with self._client() as client:
                response = await client.post(
                    f"{self.base_url}/chat/completions",
                    json=self._payload(question, context, stream=False),
                )
                response.raise_for_status()
                data = response.json()
        except httpx.HTTPError as exc:
            raise LLMError(str(exc)) from exc

        choices = data.get("choices") or []
        if not choices:
            raise LLMError("Invalid OpenAI response")
        message = choices[0].get("message") or {}
        content = message.get("content")
        if not isinstance(content, str):
            raise LLMError("Invalid OpenAI response content")
        return content.strip()

    async def stream(self, question: str, context: str) -> AsyncIterator[str]:
        """Stream answer deltas from the server-sent event response."""
        try:
            async with self._client() as client:
                async with client.stream(
                    "POST",
                    f"{self.base_url}/chat/completions",
                    json=self._payload(question, context, stream=True),
                ) as response:
                    response.raise_for_status()
                    async for line in response.aiter_lines():
                        done, text = _parse_openai_stream_line(line)
                        if done:
                            break
                        if text:
                            yield text
        except httpx.HTTPError as exc:
            raise LLMError(str(exc)) from exc


@dataclass(frozen=True)
class OllamaGenerator:
    """Answer generator backed by Ollama chat API."""
    base_url: str
    model: str
    temperature: float
    max_tokens: int
    timeout: float
    system_prompt: str = _SYSTEM_PROMPT
    transport: httpx.AsyncBaseTransport | None = None

    def _payload(self, question: str, context: str, stream: bool) -> dict[str, object]:
        return {
            "model": self.model,
            "messages": [
                {"role": "system", "content": self.system_prompt},
                {"role": "user", "content": build_prompt(question, context)},
            ],
            "stream": stream,
            "options": {
                "temperature": self.temperature,
                "num_predict": self.max_tokens,
            },
        }

    async def generate(self, question: str, context: str) -> str:
        """Generate a grounded answer using Ollama."""
        try:
            async with httpx.AsyncClient(timeout=self.timeout, transport=self.transport) as client:
                response = await client.post(
                    f"{self.base_url}/api/chat",
                    json=self._payload(question, context, stream=False),
                )
                response.raise_for_status()
                data = response.json()
        except httpx.HTTPError as exc:
            raise LLMError(str(exc)) from exc
        message = data.get("message") or {}
        content = message.get("content")
        if not isinstance(content, str):
            raise LLMError("Invalid LLM response")
        return content.strip()

    async def stream(self, question: str, context: str) -> AsyncIterator[str]:
        """Stream answer fragments from Ollama's newline-delimited JSON."""
        try:
            async with httpx.AsyncClient(timeout=self.timeout, transport=self.transport) as client:
                async with client.stream(
                    "POST",
                    f"{self.base_url}/api/chat",
                    json=self._payload(question, context, stream=True),
                ) as response:
                    response.raise_for_status()
                    async for line in response.aiter_lines():
                        if not line.strip():
                            continue
                        try:
                            data = json.loads(line)
                        except json.JSONDecodeError as exc:
                            raise LLMError("Invalid Ollama stream chunk") from exc
                        content = (data.get("message") or {}).get("content")
                        if isinstance(content, str) and content:
                            yield content
                        if data.get("done"):
                            break
        except httpx.HTTPError as exc:
            raise LLMError(str(exc)) from exc


_MOCK_RESPONSES = (
    (
        'Based on the provided context, here is an answer to "{question}":\n\n'
        "The retrieved documents cover several aspects relevant to your query. "
        "The approach they describe combines careful system design with measurable "
        "optimizations.\n\n"
        "Key points include:\n"
        "- Optimization strategies that improve efficiency [1]\n"
        "- Architecture patterns that keep systems maintainable [2]\n"
        "- Monitoring practices that surface issues early [3]"
    ),
    (
        'To address your question about "{question}":\n\n'
        "The context highlights three components:\n\n"
        "1. Performance: techniques for reducing latency and improving throughput [1].\n"
        "2. Scalability: clear service boundaries let the system grow [2].\n"
        "3. Observability: metrics and logging enable proactive detection [3]."
    ),
    (
        'Regarding "{question}":\n\n'
        "The provided sources indicate that:\n\n"
        "- Modern architectural patterns are essential for scalable systems [1]\n"
        "- Performance work requires a multi-faceted approach [2]\n"
        "- Monitoring keeps the system reliable [3]\n\n"
        "The recommended approach balances performance with maintainability."
    ),
)


def _stable_index(text: str, modulo: int) -> int:
    digest = hashlib.sha256(text.encode("utf-8")).digest()
    return int.from_bytes(digest[:8], "big") % modulo


@dataclass(frozen=True)
class MockGenerator:
    """Deterministic generator choosing a canned answer by question hash."""
    delay: float = 0.0

    async def generate(self, question: str, context: str) -> str:
        template = _MOCK_RESPONSES[_stable_index(question, len(_MOCK_RESPONSES))]
        return template.format(question=question)

    async def stream(self, question: str, context: str) -> AsyncIterator[str]:
        """Yield the canned answer word by word."""
        answer = await self.generate(question, context)
        words = answer.split(" ")
        for idx, word in enumerate(words):
            yield word if idx == len(words) - 1 else f"{word} "
            if self.delay:
                await asyncio.sleep(self.delay)


def build_generator(
    provider: str,
    *,
    mock_mode: bool,
    api_key_openai: str | None,
    openai_base_url: str,
    openai_model: str | None,
    ollama_base_url: str,
    ollama_model: str,
    temperature: float,
    max_tokens: int,
    timeout: float,
) -> OpenAIGenerator | OllamaGenerator | MockGenerator:
    """Factory for answer generators based on provider."""
    if mock_mode:
        return MockGenerator()
    normalized = provider.strip().lower()
    if normalized in {"", "openai"}:
        if not api_key_openai:
            raise LLMError("OPENAI_API_KEY is required for OpenAI provider")
        if not openai_model:
            raise LLMError("OPENAI_CHAT_MODEL is required for OpenAI provider")
        return OpenAIGenerator(
            api_key=api_key_openai,
            base_url=openai_base_url.rstrip("/"),
            model=openai_model,
            temperature=temperature,
            max_tokens=max_tokens,
            timeout=timeout,
        )
    if normalized == "ollama":
        return OllamaGenerator(
            base_url=ollama_base_url.rstrip("/"),
            model=ollama_model,
            temperature=temperature,
            max_tokens=max_tokens,
            timeout=timeout,
        )
    raise LLMError(f"Unsupported LLM provider: {provider}")
