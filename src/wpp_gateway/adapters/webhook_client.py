"""Outbound webhook HTTP client."""

from dataclasses import dataclass
from typing import Protocol

import httpx


class WebhookClient(Protocol):
    """Interface for posting event payloads to webhook URLs."""

    async def post_json(
        self, url: str, payload: dict[str, object], timeout: float
    ) -> None:
        """POST a JSON payload; raise on transport errors or non-2xx replies."""


@dataclass
class HttpxWebhookClient(WebhookClient):
    """Webhook client implemented with httpx."""

    http_client: httpx.AsyncClient

    @classmethod
    def create(cls) -> "HttpxWebhookClient":
        """Create a webhook client with a managed httpx session."""
        return cls(http_client=httpx.AsyncClient())

    async def post_json(
        self, url: str, payload: dict[str, object], timeout: float
    ) -> None:
        """POST the payload and raise for any non-success status."""
        response = await self.http_client.post(
            url,
            json=payload,
            headers={"Content-Type": "application/json"},
            timeout=timeout,
        )
        response.raise_for_status()

    async def close(self) -> None:
        """Close the underlying HTTP client session."""
        await self.http_client.aclose()
