from __future__ import annotations

from unittest.mock import patch

import httpx
import pytest

from marginalia.errors import (
    NetworkError,
    UpstreamAuthError,
    UpstreamBadRequestError,
    UpstreamError,
    UpstreamRateLimitError,
    UpstreamServerError,
    ValidationError,
)
from marginalia.tools.serper_search import SERPER_SEARCH_URL, SerperSearchClient, normalize_results


def _response(status: int, payload=None, *, text: str | None = None) -> httpx.Response:
    request = httpx.Request("POST", SERPER_SEARCH_URL)
    if text is not None:
        return httpx.Response(status, text=text, request=request)
    return httpx.Response(status, json=payload, request=request)


class FakeClient:
    def __init__(self, response: httpx.Response | None = None, error: Exception | None = None):
        self.response = response
        self.error = error
        self.calls: list[dict] = []

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc, tb):
        return None

    async def post(self, url, **kwargs):
        self.calls.append({"url": url, **kwargs})
        if self.error is not None:
            raise self.error
        return self.response


def _client() -> SerperSearchClient:
    return SerperSearchClient("serper-key", timeout_seconds=3)


@pytest.mark.asyncio
async def test_search_posts_query_and_normalizes_results():
    fake = FakeClient(
        _response(
            200,
            {
                "organic": [
                    {"title": "Photosynthesis", "link": "https://bio.edu/p", "snippet": "Light reactions"},
                    {"url": "https://alt.example.com/x"},
                ]
            },
        )
    )

    with patch("marginalia.tools.serper_search.httpx.AsyncClient", return_value=fake) as client_cls:
        results = await _client().search("  photosynthesis  ", max_results=5, region="gb")

    client_cls.assert_called_once_with(timeout=3)
    call = fake.calls[0]
    assert call["url"] == SERPER_SEARCH_URL
    assert call["json"] == {"q": "photosynthesis", "num": 5, "gl": "gb"}
    assert call["headers"]["X-API-KEY"] == "serper-key"

    assert len(results) == 2
    assert results[0].title == "Photosynthesis"
    assert results[0].url == "https://bio.edu/p"
    assert results[0].source == "serper"
    assert results[1].title == "Untitled"
    assert results[1].url == "https://alt.example.com/x"
    assert results[1].snippet == ""


@pytest.mark.asyncio
async def test_missing_organic_list_yields_empty_results():
    fake = FakeClient(_response(200, {"searchParameters": {}}))
    with patch("marginalia.tools.serper_search.httpx.AsyncClient", return_value=fake):
        assert await _client().search("query") == []


@pytest.mark.asyncio
@pytest.mark.parametrize(
    ("query", "max_results"),
    [("", 10), ("   ", 10), (None, 10), ("q", 0), ("q", 101), ("q", True), ("q", 2.5)],
)
async def test_invalid_input_fails_before_any_request(query, max_results):
    with patch("marginalia.tools.serper_search.httpx.AsyncClient") as client_cls:
        with pytest.raises(ValidationError):
            await _client().search(query, max_results=max_results)
    client_cls.assert_not_called()


@pytest.mark.asyncio
async def test_missing_api_key_fails_before_any_request():
    with patch("marginalia.tools.serper_search.httpx.AsyncClient") as client_cls:
        with pytest.raises(ValidationError, match="SERPER_API_KEY"):
            await SerperSearchClient("").search("query")
    client_cls.assert_not_called()


@pytest.mark.asyncio
@pytest.mark.parametrize(
    ("status", "expected"),
    [
        (401, UpstreamAuthError),
        (403, UpstreamAuthError),
        (429, UpstreamRateLimitError),
        (400, UpstreamBadRequestError),
        (422, UpstreamBadRequestError),
        (500, UpstreamServerError),
        (503, UpstreamServerError),
    ],
)
async def test_http_status_mapping(status, expected):
    fake = FakeClient(_response(status, {"message": "nope"}))
    with patch("marginalia.tools.serper_search.httpx.AsyncClient", return_value=fake):
        with pytest.raises(expected) as exc_info:
            await _client().search("query")
    assert exc_info.value.upstream_status == status


@pytest.mark.asyncio
async def test_bad_request_carries_upstream_message():
    fake = FakeClient(_response(400, {"message": "Query too long"}))
    with patch("marginalia.tools.serper_search.httpx.AsyncClient", return_value=fake):
        with pytest.raises(UpstreamBadRequestError, match="Query too long"):
            await _client().search("query")


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "error",
    [
        httpx.ReadTimeout("timed out"),
        httpx.ConnectError("refused"),
    ],
)
async def test_no_response_maps_to_network_error(error):
    fake = FakeClient(error=error)
    with patch("marginalia.tools.serper_search.httpx.AsyncClient", return_value=fake):
        with pytest.raises(NetworkError):
            await _client().search("query")


@pytest.mark.asyncio
async def test_non_json_body_maps_to_upstream_error():
    fake = FakeClient(_response(200, text="<html>maintenance</html>"))
    with patch("marginalia.tools.serper_search.httpx.AsyncClient", return_value=fake):
        with pytest.raises(UpstreamError) as exc_info:
            await _client().search("query")
    assert not isinstance(exc_info.value, NetworkError)


def test_normalize_results_skips_non_dict_items():
    results = normalize_results({"organic": ["junk", {"title": "Ok", "link": "https://a.io"}]}, "stamp")
    assert [r.title for r in results] == ["Ok"]
    assert results[0].retrieved_at == "stamp"
