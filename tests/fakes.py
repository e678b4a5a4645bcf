"""OpenAI-shaped chat client fakes and ready-made search results."""
from __future__ import annotations

import json
from types import SimpleNamespace
from unittest.mock import AsyncMock

from marginalia.llm_client import LLMClient
from marginalia.models.notes import SearchResult


def chat_response(content: str | dict | None, prompt_tokens: int = 12, completion_tokens: int = 8):
    if isinstance(content, dict):
        content = json.dumps(content)
    return SimpleNamespace(
        choices=[SimpleNamespace(message=SimpleNamespace(content=content))],
        usage=SimpleNamespace(prompt_tokens=prompt_tokens, completion_tokens=completion_tokens),
    )


def fake_openai(*responses) -> SimpleNamespace:
    """Object with ``chat.completions.create`` returning ``responses`` in order.

    Exceptions in ``responses`` are raised instead of returned.
    """
    side_effect = [r if isinstance(r, Exception) else chat_response(r) for r in responses]
    create = AsyncMock(side_effect=side_effect)
    return SimpleNamespace(chat=SimpleNamespace(completions=SimpleNamespace(create=create)))


def make_llm(*responses) -> tuple[LLMClient, AsyncMock]:
    client = fake_openai(*responses)
    return LLMClient(client, default_model="gpt-4o-mini", timeout_seconds=5), client.chat.completions.create


def make_results(count: int) -> list[SearchResult]:
    return [
        SearchResult(
            title=f"Result {i}",
            url=f"https://site{i}.example.edu/page",
            snippet=f"Snippet {i}",
            source="serper",
            retrieved_at="2026-01-01T00:00:00+00:00",
        )
        for i in range(count)
    ]
