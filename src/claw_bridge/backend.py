from __future__ import annotations

import asyncio
import logging

import httpx

from .errors import BackendUnavailable

logger = logging.getLogger("claw_bridge.backend")


class DashboardBackend:
    """Relays inbound text to the dashboard's AI endpoint and returns the reply."""

    def __init__(
        self,
        base_urls: list[str],
        api_key: str,
        endpoint: str = "/api/whatsapp/home-bot-message",
        timeout: float = 120.0,
        empty_reply: str = "I couldn't generate a response.",
        client: httpx.AsyncClient | None = None,
    ):
        self.base_urls = [url.rstrip("/") for url in base_urls]
        self.api_key = api_key
        self.endpoint = endpoint
        self.timeout = timeout
        self.empty_reply = empty_reply
        self._client = client or httpx.AsyncClient(timeout=timeout)

    async def reply(self, sender: str, text: str, push_name: str | None) -> str:
        """Ask the backend for a reply, bounded by ``timeout`` in total.

        Each dashboard URL is tried in order. Raises BackendUnavailable when
        none answers successfully in time.
        """
        try:
            return await asyncio.wait_for(self._reply(sender, text, push_name), timeout=self.timeout)
        except asyncio.TimeoutError as exc:
            raise BackendUnavailable(f"AI response timed out after {self.timeout:.0f}s") from exc

    async def _reply(self, sender: str, text: str, push_name: str | None) -> str:
        last_error: Exception | None = None
        for base_url in self.base_urls:
            try:
                response = await self._client.post(
                    f"{base_url}{self.endpoint}",
                    json={"phone": sender, "text": text, "pushName": push_name},
                    headers={"X-API-Key": self.api_key},
                )
            except httpx.HTTPError as exc:
                last_error = exc
                logger.warning("Backend request to %s failed: %s", base_url, exc)
                continue
            if response.status_code >= 400:
                last_error = BackendUnavailable(f"API error {response.status_code}: {response.text[:200]}")
                logger.warning("Backend %s returned %s", base_url, response.status_code)
                continue
            try:
                data = response.json()
            except ValueError as exc:
                last_error = exc
                continue
            reply = data.get("reply") if isinstance(data, dict) else None
            return reply if isinstance(reply, str) and reply.strip() else self.empty_reply
        raise BackendUnavailable(str(last_error or "All dashboard URLs failed"))

    async def aclose(self) -> None:
        await self._client.aclose()
