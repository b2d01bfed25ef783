"""Webhook alert notifier for fetch-cycle failures.

Delivery is best-effort: errors are logged and never raised to the caller.
"""

from __future__ import annotations

from typing import Any, Iterable

import httpx

from src.core.log import get_logger


class WebhookAlertNotifier:
    def __init__(
        self,
        webhook_url: str,
        *,
        timeout_seconds: float = 10.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.webhook_url = webhook_url
        self._timeout = httpx.Timeout(timeout_seconds)
        self._transport = transport

    @staticmethod
    def build_payload(failures: list[dict[str, Any]]) -> dict[str, Any]:
        return {
            "text": f"Metrics Fetch: {len(failures)} failures",
            "failures": [{"name": f.get("name"), "error": f.get("error")} for f in failures],
        }

    async def send_failures(self, failures: Iterable[dict[str, Any]]) -> bool:
        """POST the failure list to the webhook. Returns True on a 2xx response."""
        logger = get_logger(__name__)
        failures = list(failures)
        if not failures:
            return False
        try:
            async with httpx.AsyncClient(timeout=self._timeout, transport=self._transport) as client:
                response = await client.post(self.webhook_url, json=self.build_payload(failures))
                response.raise_for_status()
        except httpx.HTTPError as exc:
            logger.error(f"Alert delivery failed: {exc}")
            return False
        logger.info(f"Sent alert for {len(failures)} failed entities")
        return True
