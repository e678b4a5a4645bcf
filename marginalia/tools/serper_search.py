from __future__ import annotations

from datetime import datetime, timezone
from typing import Any

import httpx

from marginalia.config import Settings, settings as default_settings
from marginalia.errors import (
    NetworkError,
    UpstreamAuthError,
    UpstreamBadRequestError,
    UpstreamError,
    UpstreamRateLimitError,
    UpstreamServerError,
    ValidationError,
)
from marginalia.models.notes import SearchResult

SERPER_SEARCH_URL = "https://google.serper.dev/search"
SOURCE_TAG = "serper"


def _error_message(response: httpx.Response) -> str:
    try:
        payload = response.json()
    except ValueError:
        payload = None
    if isinstance(payload, dict) and payload.get("message"):
        return str(payload["message"])
    return response.reason_phrase or f"HTTP {response.status_code}"


def _map_status_error(response: httpx.Response) -> UpstreamError:
    status = response.status_code
    message = _error_message(response)
    if status in (401, 403):
        return UpstreamAuthError(
            "Serper API authentication failed: Invalid API key", upstream_status=status
        )
    if status == 429:
        return UpstreamRateLimitError("Serper API rate limit exceeded", upstream_status=status)
    if 400 <= status < 500:
        return UpstreamBadRequestError(f"Serper API bad request: {message}", upstream_status=status)
    return UpstreamServerError(f"Serper API error ({status}): {message}", upstream_status=status)


def normalize_results(payload: dict[str, Any], retrieved_at: str | None = None) -> list[SearchResult]:
    """Map Serper's organic results into ``SearchResult`` with field defaults."""
    stamp = retrieved_at or datetime.now(timezone.utc).isoformat()
    organic = payload.get("organic") or []
    if not isinstance(organic, list):
        return []

    results: list[SearchResult] = []
    for item in organic:
        if not isinstance(item, dict):
            continue
        results.append(
            SearchResult(
                title=item.get("title") or "Untitled",
                url=item.get("link") or item.get("url") or "",
                snippet=item.get("snippet") or "",
                source=SOURCE_TAG,
                retrieved_at=stamp,
            )
        )
    return results


class SerperSearchClient:
    """Web search through the Serper (Google Search) API.

    Validation happens before any network call. There are no retries here;
    callers own their resilience policy.
    """

    def __init__(
        self,
        api_key: str,
        *,
        base_url: str = SERPER_SEARCH_URL,
        timeout_seconds: float = 10.0,
    ):
        self.api_key = api_key
        self.base_url = base_url
        self.timeout_seconds = timeout_seconds

    async def search(
        self,
        query: str,
        max_results: int = 10,
        region: str = "us",
    ) -> list[SearchResult]:
        if not isinstance(query, str) or not query.strip():
            raise ValidationError("Search query must be a non-empty string")
        if isinstance(max_results, bool) or not isinstance(max_results, int) or not 1 <= max_results <= 100:
            raise ValidationError("Number of results must be an integer between 1 and 100")
        if not self.api_key:
            raise ValidationError("SERPER_API_KEY is not set in environment variables")

        body = {"q": query.strip(), "num": max_results, "gl": region}
        try:
            async with httpx.AsyncClient(timeout=self.timeout_seconds) as client:
                response = await client.post(
                    self.base_url,
                    json=body,
                    headers={
                        "X-API-KEY": self.api_key,
                        "Content-Type": "application/json",
                    },
                )
                response.raise_for_status()
                payload = response.json()
        except httpx.HTTPStatusError as exc:
            raise _map_status_error(exc.response) from exc
        except httpx.TimeoutException as exc:
            raise NetworkError("Serper API network error: request timed out") from exc
        except httpx.TransportError as exc:
            raise NetworkError("Serper API network error: No response received") from exc
        except Exception as exc:
            raise UpstreamError(f"Serper API request failed: {exc}") from exc

        if not isinstance(payload, dict):
            return []
        return normalize_results(payload)


def get_search_client(config: Settings | None = None) -> SerperSearchClient:
    config = config or default_settings
    return SerperSearchClient(
        config.serper_api_key,
        base_url=config.serper_base_url,
        timeout_seconds=config.search_timeout_seconds,
    )
