"""Protocol interfaces for Claw Bridge components.

These protocols define what the supervisor needs from the messaging-network
client, the status reporter and the AI backend, so concrete libraries can be
swapped and tests can use fakes.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Callable, Protocol, runtime_checkable

from .models import AdapterEvent, SessionState, StatusReport

EmitFn = Callable[[AdapterEvent], None]


@dataclass(slots=True, frozen=True)
class AdapterOptions:
    """Connection options handed to an adapter factory."""

    display_name: str
    auth_dir: str
    socks_proxy: str = ""
    connect_timeout_seconds: float = 60.0


@runtime_checkable
class ProtocolClient(Protocol):
    """One connection attempt to the messaging network.

    Instances are single-use: the supervisor builds a new one for every
    attempt. ``connect`` must return once the attempt is underway; progress is
    reported through the ``emit`` callback given to the factory.
    """

    async def connect(self, credentials: dict[str, Any] | None) -> None:
        """Begin connecting, resuming ``credentials`` when present."""
        ...

    async def send_text(self, recipient: str, text: str) -> str:
        """Send a text message and return the network's message id."""
        ...

    async def send_presence(self, state: str, recipient: str | None = None) -> None:
        """Send a presence update (``available``, ``composing``, ``paused``)."""
        ...

    async def close(self) -> None:
        """Graceful, idempotent teardown."""
        ...

    def terminate(self) -> None:
        """Forcible teardown for a connection that no longer responds."""
        ...


@runtime_checkable
class PairingCodeCapable(Protocol):
    async def request_pairing_code(self, phone_number: str) -> str:
        """Request a numeric pairing code for ``phone_number``."""
        ...


class AdapterFactory(Protocol):
    def __call__(self, emit: EmitFn, options: AdapterOptions) -> ProtocolClient: ...


@runtime_checkable
class ReporterProtocol(Protocol):
    def build(self, state: SessionState) -> StatusReport:
        """Snapshot ``state`` into a wire report."""
        ...

    async def report(self, report: StatusReport) -> bool:
        """Deliver one status snapshot; never raises."""
        ...

    async def aclose(self) -> None: ...


@runtime_checkable
class BackendProtocol(Protocol):
    async def reply(self, sender: str, text: str, push_name: str | None) -> str:
        """Return the AI reply, or raise BackendUnavailable."""
        ...

    async def aclose(self) -> None: ...
