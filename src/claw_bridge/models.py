from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any

BROADCAST_ADDRESS = "status@broadcast"
USER_DOMAIN = "@s.whatsapp.net"
GROUP_DOMAIN = "@g.us"


class Phase(str, Enum):
    """Session phases owned by the supervisor."""

    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    PAIRING_REQUIRED = "pairing_required"
    CONNECTED = "connected"


class ChallengeKind(str, Enum):
    QR = "qr"
    CODE = "code"


@dataclass(slots=True, frozen=True)
class PublishedChallenge:
    """A rendered pairing challenge, as shown to the operator."""

    kind: ChallengeKind
    value: str


@dataclass(slots=True)
class SessionState:
    phase: Phase = Phase.DISCONNECTED
    phone_identity: str | None = None
    last_error: str | None = None
    reconnect_attempts: int = 0
    pairing_cycle_count: int = 0
    challenge: PublishedChallenge | None = None

    def snapshot(self) -> SessionState:
        return SessionState(
            phase=self.phase,
            phone_identity=self.phone_identity,
            last_error=self.last_error,
            reconnect_attempts=self.reconnect_attempts,
            pairing_cycle_count=self.pairing_cycle_count,
            challenge=self.challenge,
        )


@dataclass(slots=True)
class MessageEnvelope:
    id: str
    chat: str
    text: str
    from_me: bool = False
    participant: str | None = None
    push_name: str | None = None

    @property
    def is_group(self) -> bool:
        return self.chat.endswith(GROUP_DOMAIN)


@dataclass(slots=True, frozen=True)
class StatusReport:
    state: str
    phone: str | None
    error: str | None
    hostname: str
    runtime: str
    qr_data_url: str | None = None
    pairing_code: str | None = None

    def to_payload(self) -> dict[str, Any]:
        return {
            "state": self.state,
            "phone": self.phone,
            "error": self.error,
            "hostname": self.hostname,
            "runtime": self.runtime,
            "qrDataUrl": self.qr_data_url,
            "pairingCode": self.pairing_code,
        }


# ---------------------------------------------------------------------------
# Adapter events
# ---------------------------------------------------------------------------


@dataclass(slots=True, frozen=True)
class PairingChallenge:
    data: str


@dataclass(slots=True, frozen=True)
class ConnectionOpened:
    identity: str


@dataclass(slots=True, frozen=True)
class ConnectionClosed:
    code: int | None = None
    message: str = ""


@dataclass(slots=True, frozen=True)
class CredentialsUpdated:
    blob: dict[str, Any] = field(default_factory=dict)


@dataclass(slots=True, frozen=True)
class MessageReceived:
    envelope: MessageEnvelope


AdapterEvent = PairingChallenge | ConnectionOpened | ConnectionClosed | CredentialsUpdated | MessageReceived


def bare_address(address: str | None) -> str:
    """Strip device and domain suffixes: ``155512:3@s.whatsapp.net`` -> ``155512``."""
    if not address:
        return ""
    head = address.split("@", 1)[0]
    return head.split(":", 1)[0]


def direct_address(sender: str) -> str:
    """Canonical direct-chat address for a bare sender id."""
    if "@" in sender:
        return sender
    return f"{sender}{USER_DOMAIN}"
