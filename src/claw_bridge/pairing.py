"""Pairing challenge tracking and rendering.

Each connection attempt may surface several pairing challenges as the
previous one expires. The manager counts them and gives up once the operator
has clearly not been present for ``max_cycles`` of them.
"""

from __future__ import annotations

import asyncio
import base64
import io
import logging
import re

import qrcode

from .models import ChallengeKind, PublishedChallenge
from .protocols import PairingCodeCapable, ProtocolClient

logger = logging.getLogger("claw_bridge.pairing")


def qr_data_url(data: str, width: int = 300, margin: int = 2) -> str:
    """Render ``data`` as a PNG QR code and return it as a data URL."""
    qr = qrcode.QRCode(border=margin)
    qr.add_data(data)
    qr.make(fit=True)
    modules = qr.modules_count + 2 * margin
    qr.box_size = max(1, width // modules)
    image = qr.make_image(fill_color="black", back_color="white")
    buffer = io.BytesIO()
    image.save(buffer, format="PNG")
    encoded = base64.b64encode(buffer.getvalue()).decode("ascii")
    return f"data:image/png;base64,{encoded}"


def format_pairing_code(code: str) -> str:
    """Group a raw pairing code in blocks of four: ``ABCD1234`` -> ``ABCD-1234``."""
    cleaned = re.sub(r"[^0-9A-Za-z]", "", code or "")
    if not cleaned:
        return code
    return "-".join(cleaned[i : i + 4] for i in range(0, len(cleaned), 4))


class PairingCycleManager:
    def __init__(
        self,
        max_cycles: int = 5,
        *,
        use_pairing_code: bool = False,
        phone_number: str = "",
        qr_width: int = 300,
    ):
        self.max_cycles = max_cycles
        self.use_pairing_code = use_pairing_code
        self.phone_number = phone_number
        self.qr_width = qr_width
        self.count = 0
        self._code_requested = False

    def reset(self) -> None:
        self.count = 0
        self._code_requested = False

    def register_challenge(self) -> bool:
        """Count a new challenge. Returns False once the cycle budget is spent."""
        self.count += 1
        return self.count <= self.max_cycles

    def wants_pairing_code(self, client: ProtocolClient) -> bool:
        return (
            self.use_pairing_code
            and bool(self.phone_number)
            and not self._code_requested
            and isinstance(client, PairingCodeCapable)
        )

    async def render(self, data: str, client: ProtocolClient) -> PublishedChallenge | None:
        """Turn a raw challenge into something the operator can act on."""
        if self.wants_pairing_code(client):
            self._code_requested = True
            try:
                code = await client.request_pairing_code(self.phone_number)
                formatted = format_pairing_code(code)
                logger.info("PAIRING CODE: %s — enter it in Linked Devices > Link with phone number", formatted)
                return PublishedChallenge(ChallengeKind.CODE, formatted)
            except Exception as exc:
                logger.error("Pairing code request failed: %s; falling back to QR code", exc)

        try:
            url = await asyncio.to_thread(qr_data_url, data, self.qr_width)
        except Exception as exc:
            logger.error("QR code generation failed: %s", exc)
            return None
        logger.info("QR code ready (cycle %s/%s) — scan with your phone or view in dashboard", self.count, self.max_cycles)
        return PublishedChallenge(ChallengeKind.QR, url)
