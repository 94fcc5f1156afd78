"""Tests for HTTP-based adapters."""

import asyncio
import json

import httpx
import pytest

from wpp_gateway.adapters.webhook_client import HttpxWebhookClient


def test_webhook_client_posts_json() -> None:
    captured: list[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        captured.append(request)
        return httpx.Response(200, json={"ok": True})

    transport = httpx.MockTransport(handler)
    client = HttpxWebhookClient(http_client=httpx.AsyncClient(transport=transport))

    asyncio.run(
        client.post_json(
            "https://hooks.test/alpha",
            {"session": "alpha", "event": "message"},
            timeout=5.0,
        )
    )

    request = captured[0]
    assert request.method == "POST"
    assert request.url == "https://hooks.test/alpha"
    assert request.headers["Content-Type"] == "application/json"
    assert json.loads(request.content) == {"session": "alpha", "event": "message"}


def test_webhook_client_raises_on_error_status() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(503)

    transport = httpx.MockTransport(handler)
    client = HttpxWebhookClient(http_client=httpx.AsyncClient(transport=transport))

    with pytest.raises(httpx.HTTPStatusError) as exc_info:
        asyncio.run(client.post_json("https://hooks.test/a", {}, timeout=5.0))

    assert exc_info.value.response.status_code == 503


def test_webhook_client_close() -> None:
    client = HttpxWebhookClient.create()

    asyncio.run(client.close())

    assert client.http_client.is_closed
