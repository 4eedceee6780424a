"""Inbound message handling: echo suppression, AI relay, reply delivery."""

from __future__ import annotations

import asyncio
import logging
import time
from collections import defaultdict
from typing import Callable

from .errors import BackendUnavailable
from .ledger import PendingSendLedger
from .models import BROADCAST_ADDRESS, MessageEnvelope, bare_address, direct_address
from .protocols import BackendProtocol, ProtocolClient

logger = logging.getLogger("claw_bridge.pipeline")


class MessagePipeline:
    def __init__(
        self,
        backend: BackendProtocol,
        ledger: PendingSendLedger,
        *,
        fallback_reply: str,
        own_identity: Callable[[], str | None] = lambda: None,
    ):
        self.backend = backend
        self.ledger = ledger
        self.fallback_reply = fallback_reply
        self._own_identity = own_identity
        self._sender_locks: dict[str, asyncio.Lock] = {}
        self._sender_waiting: defaultdict[str, int] = defaultdict(int)

    def skip_reason(self, envelope: MessageEnvelope) -> str | None:
        """Return why ``envelope`` must not be forwarded, or None to forward it."""
        if not envelope.chat or envelope.chat == BROADCAST_ADDRESS:
            return "broadcast"
        if not (envelope.text or "").strip():
            return "empty"
        if envelope.id in self.ledger:
            return "self_echo"
        if envelope.from_me:
            if envelope.is_group:
                return "from_me"
            own = bare_address(self._own_identity())
            if not own or self.resolve_sender(envelope) == own:
                return "from_me"
        return None

    @staticmethod
    def resolve_sender(envelope: MessageEnvelope) -> str:
        """Stable sender address; the participant for group chats."""
        if envelope.is_group:
            return bare_address(envelope.participant or envelope.chat)
        return bare_address(envelope.chat)

    async def handle(self, envelope: MessageEnvelope, client: ProtocolClient) -> str | None:
        """Process one inbound envelope. Returns the reply sent, or None if skipped."""
        reason = self.skip_reason(envelope)
        if reason is not None:
            logger.debug("Skipping message id=%s chat=%s reason=%s", envelope.id, envelope.chat, reason)
            return None

        sender = self.resolve_sender(envelope)
        if envelope.from_me:
            logger.info("Message from linked device %s", sender)
        lock = self._sender_locks.setdefault(sender, asyncio.Lock())
        self._sender_waiting[sender] += 1
        try:
            async with lock:
                return await self._relay(envelope, sender, client)
        finally:
            self._sender_waiting[sender] -= 1
            if self._sender_waiting[sender] <= 0:
                self._sender_waiting.pop(sender, None)
                self._sender_locks.pop(sender, None)

    async def _relay(self, envelope: MessageEnvelope, sender: str, client: ProtocolClient) -> str | None:
        text = envelope.text.strip()
        logger.info(
            "Message from %s (%s) in %s: %r",
            sender,
            envelope.push_name or "?",
            "group" if envelope.is_group else "DM",
            text[:80],
        )

        await self._presence(client, "composing", envelope.chat)
        started_at = time.monotonic()
        try:
            reply = await self.backend.reply(sender, text, envelope.push_name)
        except BackendUnavailable as exc:
            logger.error("Message processing failed for %s: %s", sender, exc)
            reply = self.fallback_reply
        except Exception as exc:
            logger.exception("Unexpected backend error for %s: %s", sender, exc)
            reply = self.fallback_reply
        logger.info("AI response for %s in %.2fs (%s chars)", sender, time.monotonic() - started_at, len(reply))
        await self._presence(client, "paused", envelope.chat)

        if not reply.strip():
            return None
        if await self._send(client, envelope.chat, reply):
            return reply
        alternate = direct_address(sender)
        logger.warning("Retrying reply to %s via %s", sender, alternate)
        if await self._send(client, alternate, reply):
            return reply
        logger.error("Failed to deliver reply to %s", sender)
        return None

    async def _send(self, client: ProtocolClient, recipient: str, text: str) -> bool:
        try:
            message_id = await client.send_text(recipient, text)
        except Exception as exc:
            logger.warning("Send to %s failed: %s", recipient, exc)
            return False
        self.ledger.add(message_id)
        logger.info("Reply sent to %s (%s chars)", recipient, len(text))
        return True

    @staticmethod
    async def _presence(client: ProtocolClient, state: str, recipient: str) -> None:
        try:
            await client.send_presence(state, recipient)
        except Exception as exc:
            logger.debug("Presence %s to %s failed: %s", state, recipient, exc)
