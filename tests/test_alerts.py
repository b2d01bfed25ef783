"""Unit tests for the webhook alert notifier."""

from __future__ import annotations

import json

import httpx
import pytest

from src.services.alerts import WebhookAlertNotifier

FAILURES = [
    {"entity_id": "nasdaq", "name": "Nasdaq", "error": "fmp: quote error for NDAQ (HTTP 500)"},
    {"entity_id": "gmx", "name": "GMX", "error": "deadline exceeded"},
]


@pytest.mark.asyncio
async def test_send_failures_posts_text_and_failure_list() -> None:
    posted: list[dict] = []

    def handler(request: httpx.Request) -> httpx.Response:
        assert request.method == "POST"
        assert str(request.url) == "https://hooks.example.test/alerts"
        posted.append(json.loads(request.content))
        return httpx.Response(200, json={"ok": True})

    notifier = WebhookAlertNotifier("https://hooks.example.test/alerts", transport=httpx.MockTransport(handler))

    assert await notifier.send_failures(FAILURES) is True
    assert posted == [
        {
            "text": "Metrics Fetch: 2 failures",
            "failures": [
                {"name": "Nasdaq", "error": "fmp: quote error for NDAQ (HTTP 500)"},
                {"name": "GMX", "error": "deadline exceeded"},
            ],
        }
    ]


@pytest.mark.asyncio
async def test_delivery_failure_is_swallowed() -> None:
    def handler(_: httpx.Request) -> httpx.Response:
        return httpx.Response(500, json={})

    notifier = WebhookAlertNotifier("https://hooks.example.test/alerts", transport=httpx.MockTransport(handler))

    assert await notifier.send_failures(FAILURES) is False


@pytest.mark.asyncio
async def test_network_error_is_swallowed() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("connection refused", request=request)

    notifier = WebhookAlertNotifier("https://hooks.example.test/alerts", transport=httpx.MockTransport(handler))

    assert await notifier.send_failures(FAILURES) is False


@pytest.mark.asyncio
async def test_no_failures_sends_nothing() -> None:
    def handler(_: httpx.Request) -> httpx.Response:
        raise AssertionError("no request expected")

    notifier = WebhookAlertNotifier("https://hooks.example.test/alerts", transport=httpx.MockTransport(handler))

    assert await notifier.send_failures([]) is False
