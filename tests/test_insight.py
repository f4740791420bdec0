"""Unit tests for the AI analysis request (payload, retries, degradation)."""

from __future__ import annotations

import asyncio
import json
from pathlib import Path
from typing import Any, Callable

import httpx
import pytest

from nilgiri.exceptions import NilgiriInsightError
from nilgiri.insight import (
    CURATED_METRICS,
    INSIGHT_PLACEHOLDER,
    SYSTEM_PROMPT,
    build_payload,
    build_prompt,
    fetch_insight,
    request_insight,
)
from nilgiri.models import InsightSettings, MetricsModel
from nilgiri.summary import load_summary

ANSWER = "<table border=\"1\"><tr><th>Metric</th></tr><tr><td>http_req_duration</td></tr></table>"


def _completion(content: str) -> httpx.Response:
    return httpx.Response(200, json={"choices": [{"message": {"role": "assistant", "content": content}}]})


@pytest.fixture
def model(summary_file: Path) -> MetricsModel:
    return load_summary(summary_file)


def test_build_prompt_includes_curated_metrics(model: MetricsModel) -> None:
    prompt = build_prompt(model)
    assert "<td>http_req_duration</td>" in prompt
    assert "p(95)=40.00" in prompt
    assert "<td>checks</td><td>passes=196, fails=4" in prompt
    # Only metrics present in the summary are listed
    assert "<td>tls_handshaking</td>" not in prompt
    assert "Fix/Suggestion" in prompt
    assert "http_req_blocked" not in CURATED_METRICS


def test_build_payload_shape(model: MetricsModel) -> None:
    payload = build_payload(model, 0.1)
    assert payload["temperature"] == 0.1
    assert [m["role"] for m in payload["messages"]] == ["system", "user"]
    assert payload["messages"][0]["content"] == SYSTEM_PROMPT


def test_fetch_insight_sends_key_and_returns_content(
    model: MetricsModel,
    insight_settings: InsightSettings,
    make_ai_client: Callable[..., httpx.AsyncClient],
) -> None:
    seen: list[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        return _completion(f"  {ANSWER}\n")

    async def go() -> str:
        async with make_ai_client(handler) as client:
            return await fetch_insight(model, insight_settings, client=client)

    text = asyncio.run(go())
    assert text == ANSWER
    assert len(seen) == 1
    req = seen[0]
    assert req.method == "POST"
    assert str(req.url) == insight_settings.endpoint
    assert req.headers["api-key"] == "test-key"
    assert req.headers["content-type"] == "application/json"
    body: dict[str, Any] = json.loads(req.content)
    assert body["messages"][1]["role"] == "user"


def test_fetch_insight_retries_server_error(
    model: MetricsModel,
    insight_settings: InsightSettings,
    make_ai_client: Callable[..., httpx.AsyncClient],
) -> None:
    calls = 0

    def handler(request: httpx.Request) -> httpx.Response:
        nonlocal calls
        calls += 1
        if calls == 1:
            return httpx.Response(503, text="busy")
        return _completion(ANSWER)

    async def go() -> str:
        async with make_ai_client(handler) as client:
            return await fetch_insight(model, insight_settings, client=client)

    assert asyncio.run(go()) == ANSWER
    assert calls == 2


def test_fetch_insight_does_not_retry_client_error(
    model: MetricsModel,
    insight_settings: InsightSettings,
    make_ai_client: Callable[..., httpx.AsyncClient],
) -> None:
    calls = 0

    def handler(request: httpx.Request) -> httpx.Response:
        nonlocal calls
        calls += 1
        return httpx.Response(401, json={"error": "bad key"})

    async def go() -> str:
        async with make_ai_client(handler) as client:
            return await fetch_insight(model, insight_settings, client=client)

    with pytest.raises(NilgiriInsightError, match="HTTP 401"):
        asyncio.run(go())
    assert calls == 1


def test_fetch_insight_malformed_body(
    model: MetricsModel,
    insight_settings: InsightSettings,
    make_ai_client: Callable[..., httpx.AsyncClient],
) -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, json={"unexpected": True})

    async def go() -> str:
        async with make_ai_client(handler) as client:
            return await fetch_insight(model, insight_settings, client=client)

    with pytest.raises(NilgiriInsightError, match="Malformed response"):
        asyncio.run(go())


def test_request_insight_placeholder_on_connect_error(
    model: MetricsModel,
    insight_settings: InsightSettings,
    make_ai_client: Callable[..., httpx.AsyncClient],
) -> None:
    calls = 0

    def handler(request: httpx.Request) -> httpx.Response:
        nonlocal calls
        calls += 1
        raise httpx.ConnectError("connection refused", request=request)

    async def go() -> tuple[str, bool]:
        async with make_ai_client(handler) as client:
            return await request_insight(model, insight_settings, client=client)

    text, available = asyncio.run(go())
    assert available is False
    assert text.startswith(INSIGHT_PLACEHOLDER)
    assert "ConnectError" in text
    assert calls == 2  # one retry


def test_request_insight_success(
    model: MetricsModel,
    insight_settings: InsightSettings,
    make_ai_client: Callable[..., httpx.AsyncClient],
) -> None:
    async def go() -> tuple[str, bool]:
        async with make_ai_client(lambda r: _completion(ANSWER)) as client:
            return await request_insight(model, insight_settings, client=client)

    assert asyncio.run(go()) == (ANSWER, True)


def test_fetch_insight_unbuildable_request(
    model: MetricsModel,
    insight_settings: InsightSettings,
    make_ai_client: Callable[..., httpx.AsyncClient],
) -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        raise ValueError("boom")

    async def go() -> str:
        async with make_ai_client(handler) as client:
            return await fetch_insight(model, insight_settings, client=client)

    with pytest.raises(NilgiriInsightError, match="Invalid AI request: ValueError"):
        asyncio.run(go())


def test_request_insight_non_ascii_key_degrades(
    model: MetricsModel,
    make_ai_client: Callable[..., httpx.AsyncClient],
) -> None:
    settings = InsightSettings(endpoint="https://ai.example.com/chat", api_key="clé-secrète", retries=0)

    async def go() -> tuple[str, bool]:
        async with make_ai_client(lambda r: _completion(ANSWER)) as client:
            return await request_insight(model, settings, client=client)

    text, available = asyncio.run(go())
    assert available is False
    assert text.startswith(INSIGHT_PLACEHOLDER)


def test_request_insight_unexpected_error_degrades(
    model: MetricsModel,
    insight_settings: InsightSettings,
    make_ai_client: Callable[..., httpx.AsyncClient],
) -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        raise RuntimeError("transport bug")

    async def go() -> tuple[str, bool]:
        async with make_ai_client(handler) as client:
            return await request_insight(model, insight_settings, client=client)

    text, available = asyncio.run(go())
    assert available is False
    assert text == f"{INSIGHT_PLACEHOLDER}: unexpected RuntimeError"
