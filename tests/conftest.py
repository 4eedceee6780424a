"""Shared test fixtures for Claw Bridge tests."""

from __future__ import annotations

import asyncio
import sys
from pathlib import Path
from typing import Any

import pytest

ROOT = Path(__file__).resolve().parents[1]
SRC = ROOT / "src"
if str(SRC) not in sys.path:
    sys.path.insert(0, str(SRC))

from claw_bridge.config import BridgeConfig, BridgeSettings  # noqa: E402
from claw_bridge.credentials import CredentialStore  # noqa: E402
from claw_bridge.models import ConnectionClosed, SessionState, StatusReport  # noqa: E402
from claw_bridge.status_reporter import wire_state  # noqa: E402
from claw_bridge.supervisor import SessionSupervisor  # noqa: E402


class FakeAdapter:
    """Fake protocol client that records what the bridge asks of it."""

    def __init__(
        self,
        emit=None,
        options=None,
        connect_error: Exception | None = None,
        close_event: ConnectionClosed | None = None,
    ) -> None:
        self.emit = emit or (lambda event: None)
        self.options = options
        self.connect_error = connect_error
        # Emitted on close/terminate, like a real socket reporting its own teardown.
        self.close_event = close_event
        self.credentials: dict[str, Any] | None = None
        self.sent: list[tuple[str, str]] = []
        self.presence: list[tuple[str, str | None]] = []
        self.failing_recipients: set[str] = set()
        self.presence_error: Exception | None = None
        self.closed = False
        self.terminated = False
        self._counter = 0

    async def connect(self, credentials: dict[str, Any] | None) -> None:
        self.credentials = credentials
        if self.connect_error is not None:
            raise self.connect_error

    async def send_text(self, recipient: str, text: str) -> str:
        if recipient in self.failing_recipients:
            raise RuntimeError(f"cannot reach {recipient}")
        self._counter += 1
        self.sent.append((recipient, text))
        return f"sent-{self._counter}"

    async def send_presence(self, state: str, recipient: str | None = None) -> None:
        if self.presence_error is not None:
            raise self.presence_error
        self.presence.append((state, recipient))

    async def close(self) -> None:
        self.closed = True
        if self.close_event is not None:
            self.emit(self.close_event)

    def terminate(self) -> None:
        self.terminated = True
        if self.close_event is not None:
            self.emit(self.close_event)


class CodeCapableAdapter(FakeAdapter):
    def __init__(self, *args, code: str = "ABCD1234", code_error: Exception | None = None, **kwargs) -> None:
        super().__init__(*args, **kwargs)
        self.code = code
        self.code_error = code_error
        self.code_requests: list[str] = []

    async def request_pairing_code(self, phone_number: str) -> str:
        self.code_requests.append(phone_number)
        if self.code_error is not None:
            raise self.code_error
        return self.code


class AdapterRecorder:
    """Adapter factory that keeps every adapter it builds."""

    def __init__(self) -> None:
        self.adapters: list[FakeAdapter] = []
        self.connect_errors: list[Exception] = []
        self.close_event: ConnectionClosed | None = None

    def __call__(self, emit, options) -> FakeAdapter:
        error = self.connect_errors.pop(0) if self.connect_errors else None
        adapter = FakeAdapter(emit, options, connect_error=error, close_event=self.close_event)
        self.adapters.append(adapter)
        return adapter

    @property
    def latest(self) -> FakeAdapter:
        return self.adapters[-1]


class FakeReporter:
    def __init__(self) -> None:
        self.reports: list[StatusReport] = []
        self.closed = False

    def build(self, state: SessionState) -> StatusReport:
        challenge = state.challenge
        return StatusReport(
            state=wire_state(state),
            phone=state.phone_identity,
            error=state.last_error,
            hostname="test-host",
            runtime="test",
            qr_data_url=challenge.value if challenge and challenge.kind.value == "qr" else None,
            pairing_code=challenge.value if challenge and challenge.kind.value == "code" else None,
        )

    async def report(self, report: StatusReport) -> bool:
        self.reports.append(report)
        return True

    async def aclose(self) -> None:
        self.closed = True

    @property
    def states(self) -> list[str]:
        return [report.state for report in self.reports]


class FakeBackend:
    """Fake AI backend with optional gating to observe concurrency."""

    def __init__(self, reply: str = "hi there") -> None:
        self.reply_text = reply
        self.calls: list[tuple[str, str, str | None]] = []
        self.error: Exception | None = None
        self.gate: asyncio.Event | None = None
        self.in_flight: dict[str, int] = {}
        self.max_in_flight: dict[str, int] = {}
        self.closed = False

    async def reply(self, sender: str, text: str, push_name: str | None) -> str:
        self.calls.append((sender, text, push_name))
        self.in_flight[sender] = self.in_flight.get(sender, 0) + 1
        self.max_in_flight[sender] = max(self.max_in_flight.get(sender, 0), self.in_flight[sender])
        try:
            if self.gate is not None:
                await self.gate.wait()
            if self.error is not None:
                raise self.error
            return self.reply_text
        finally:
            self.in_flight[sender] -= 1

    async def aclose(self) -> None:
        self.closed = True


async def pump(supervisor: SessionSupervisor, timeout: float = 1.0) -> None:
    """Wait for the next queued event and dispatch it."""
    generation, event = await asyncio.wait_for(supervisor._queue.get(), timeout)
    await supervisor.dispatch(generation, event)


@pytest.fixture
def bridge_config() -> BridgeConfig:
    return BridgeConfig(dashboard_url="https://dash.example.com", api_key="sk-test-1234567890")


@pytest.fixture
def fast_settings(tmp_path) -> BridgeSettings:
    return BridgeSettings(
        config_path=tmp_path / "config.json",
        auth_dir=tmp_path / "auth_state",
        reconnect_base_seconds=0.01,
        reconnect_growth=1.5,
        reconnect_cap_seconds=0.05,
        restart_required_delay_seconds=0.005,
        start_timeout_seconds=30.0,
        keepalive_interval_seconds=60.0,
        status_interval_seconds=60.0,
        max_pairing_cycles=2,
    )


@pytest.fixture
def recorder() -> AdapterRecorder:
    return AdapterRecorder()


@pytest.fixture
def reporter() -> FakeReporter:
    return FakeReporter()


@pytest.fixture
def backend() -> FakeBackend:
    return FakeBackend()


@pytest.fixture
def make_supervisor(bridge_config, fast_settings, recorder, reporter, backend):
    def _make(config: BridgeConfig | None = None, settings: BridgeSettings | None = None) -> SessionSupervisor:
        settings = settings or fast_settings
        return SessionSupervisor(
            config or bridge_config,
            settings,
            recorder,
            reporter,
            backend,
            CredentialStore(settings.auth_dir),
        )

    return _make
