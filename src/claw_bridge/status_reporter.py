"""Best-effort status push to the dashboard.

Reports are snapshots: a failed one is logged and superseded by the next
transition or the periodic refresh, never queued for retry.
"""

from __future__ import annotations

import asyncio
import logging
import socket

import httpx

from .models import ChallengeKind, Phase, SessionState, StatusReport

logger = logging.getLogger("claw_bridge.status_reporter")


def wire_state(state: SessionState) -> str:
    if state.phase is Phase.PAIRING_REQUIRED:
        if state.challenge is not None and state.challenge.kind is ChallengeKind.CODE:
            return "pairing_code_ready"
        return "qr_ready"
    return state.phase.value


class StatusReporter:
    def __init__(
        self,
        base_urls: list[str],
        api_key: str,
        runtime_tag: str,
        endpoint: str = "/api/whatsapp/home-bot-status",
        timeout: float = 8.0,
        client: httpx.AsyncClient | None = None,
        hostname: str | None = None,
    ):
        self.base_urls = [url.rstrip("/") for url in base_urls]
        self.api_key = api_key
        self.runtime_tag = runtime_tag
        self.endpoint = endpoint
        self.timeout = timeout
        self.hostname = hostname or socket.gethostname()
        self._client = client or httpx.AsyncClient(timeout=timeout)

    def build(self, state: SessionState) -> StatusReport:
        challenge = state.challenge if state.phase is Phase.PAIRING_REQUIRED else None
        return StatusReport(
            state=wire_state(state),
            phone=state.phone_identity,
            error=state.last_error,
            hostname=self.hostname,
            runtime=self.runtime_tag,
            qr_data_url=challenge.value if challenge and challenge.kind is ChallengeKind.QR else None,
            pairing_code=challenge.value if challenge and challenge.kind is ChallengeKind.CODE else None,
        )

    async def report(self, report: StatusReport) -> bool:
        """POST the report to every dashboard URL. Returns True if any accepted it.

        All URLs share one deadline of ``timeout`` seconds.
        """
        log = logger.debug if report.state == Phase.CONNECTING.value else logger.warning
        delivered = False
        try:
            async with asyncio.timeout(self.timeout):
                for base_url in self.base_urls:
                    try:
                        response = await self._client.post(
                            f"{base_url}{self.endpoint}",
                            json=report.to_payload(),
                            headers={"X-API-Key": self.api_key},
                        )
                        response.raise_for_status()
                        delivered = True
                    except Exception as exc:
                        log("Status report to %s failed: %s", base_url, exc)
        except TimeoutError:
            log("Status report timed out after %.1fs", self.timeout)
        return delivered

    async def aclose(self) -> None:
        await self._client.aclose()
