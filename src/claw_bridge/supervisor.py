"""Session supervisor: the state machine that owns one messaging session.

Adapter callbacks and timers never touch session state directly: they post
events into a single queue, and ``run()`` consumes that queue sequentially.
Every event is tagged with the generation of the connection attempt that
produced it, so late events from a torn-down adapter are dropped.

Phases::

    disconnected -> connecting -> (pairing_required <-> connecting) -> connected
    connected -> connecting (recoverable close) | disconnected (terminal close)
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Any, Coroutine

from .backoff import ReconnectPolicy
from .config import BridgeConfig, BridgeSettings
from .credentials import CredentialStore
from .errors import (
    AuthError,
    BridgeError,
    ConnectionDead,
    LoggedOut,
    PairingExpired,
    SessionConflict,
    StartTimeout,
    TransientNetworkError,
    classify_close,
    describe_close,
)
from .keepalive import LivenessMonitor
from .ledger import PendingSendLedger
from .models import (
    ConnectionClosed,
    ConnectionOpened,
    CredentialsUpdated,
    MessageEnvelope,
    MessageReceived,
    PairingChallenge,
    Phase,
    SessionState,
    bare_address,
)
from .pairing import PairingCycleManager
from .pipeline import MessagePipeline
from .protocols import AdapterFactory, AdapterOptions, BackendProtocol, ProtocolClient, ReporterProtocol
from .timers import TimerSet

logger = logging.getLogger("claw_bridge.supervisor")


@dataclass(slots=True, frozen=True)
class _ReconnectDue:
    pass


@dataclass(slots=True, frozen=True)
class _StartTimedOut:
    pass


@dataclass(slots=True, frozen=True)
class _LivenessLost:
    pass


@dataclass(slots=True, frozen=True)
class _Crashed:
    error: BaseException


_STOP = object()


class SessionSupervisor:
    def __init__(
        self,
        config: BridgeConfig,
        settings: BridgeSettings,
        adapter_factory: AdapterFactory,
        reporter: ReporterProtocol,
        backend: BackendProtocol,
        credentials: CredentialStore,
    ):
        self.config = config
        self.settings = settings
        self.adapter_factory = adapter_factory
        self.reporter = reporter
        self.backend = backend
        self.credentials = credentials

        self.state = SessionState()
        self.timers = TimerSet()
        self.policy = ReconnectPolicy.from_settings(settings)
        self.pairing = PairingCycleManager(
            settings.max_pairing_cycles,
            use_pairing_code=config.use_pairing_code,
            phone_number=config.phone_number,
            qr_width=settings.qr_image_width,
        )
        self.ledger = PendingSendLedger(settings.ledger_capacity, settings.ledger_trim_to)
        self.pipeline = MessagePipeline(
            backend,
            self.ledger,
            fallback_reply=settings.fallback_reply,
            own_identity=lambda: self.state.phone_identity,
        )
        self.monitor: LivenessMonitor | None = None

        self.adapter: ProtocolClient | None = None
        self.generation = 0
        self.is_starting = False
        self.auto_reconnect = config.auto_restart

        self._queue: asyncio.Queue[tuple[int, Any]] = asyncio.Queue()
        self._tasks: set[asyncio.Task] = set()
        self._loop: asyncio.AbstractEventLoop | None = None
        self._shutting_down = False

    # ------------------------------------------------------------------
    # Event intake
    # ------------------------------------------------------------------

    def post(self, generation: int, event: Any) -> None:
        """Queue an event; safe to call from adapter threads."""
        if self._loop is None:
            self._loop = asyncio.get_running_loop()
        try:
            running = asyncio.get_running_loop()
        except RuntimeError:
            running = None
        if running is self._loop:
            self._queue.put_nowait((generation, event))
        else:
            self._loop.call_soon_threadsafe(self._queue.put_nowait, (generation, event))

    def report_crash(self, error: BaseException) -> None:
        """Route an error caught outside the queue consumer into crash recovery."""
        self.post(self.generation, _Crashed(error))

    @property
    def stopping(self) -> bool:
        return self._shutting_down

    def _emitter(self, generation: int):
        def emit(event: Any) -> None:
            self.post(generation, event)

        return emit

    async def run(self) -> None:
        """Start the first attempt and consume events until shutdown."""
        self._loop = asyncio.get_running_loop()
        await self.start()
        while not self._shutting_down:
            generation, event = await self._queue.get()
            if event is _STOP:
                break
            try:
                await self.dispatch(generation, event)
            except Exception as exc:
                logger.exception("Unhandled error while handling %s: %s", type(event).__name__, exc)
                await self.recover_from_crash(exc)

    async def process_pending(self) -> None:
        """Dispatch every event already queued."""
        while not self._queue.empty():
            generation, event = self._queue.get_nowait()
            if event is _STOP:
                continue
            await self.dispatch(generation, event)

    async def dispatch(self, generation: int, event: Any) -> None:
        if self._shutting_down:
            return
        if generation != self.generation:
            logger.debug("Ignoring %s from superseded attempt %s", type(event).__name__, generation)
            return

        if isinstance(event, PairingChallenge):
            await self._on_pairing_challenge(event)
        elif isinstance(event, ConnectionOpened):
            self._on_open(event)
        elif isinstance(event, ConnectionClosed):
            await self._on_close(event)
        elif isinstance(event, CredentialsUpdated):
            self._on_credentials(event)
        elif isinstance(event, MessageReceived):
            self._spawn(self._handle_message(event.envelope))
        elif isinstance(event, _ReconnectDue):
            await self.start()
        elif isinstance(event, _StartTimedOut):
            await self._on_start_timeout()
        elif isinstance(event, _LivenessLost):
            await self._on_dead_connection()
        elif isinstance(event, _Crashed):
            await self.recover_from_crash(event.error)
        else:
            logger.warning("Unknown event type: %r", event)

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def start(self) -> None:
        if self._shutting_down:
            return
        if self.is_starting and self.adapter is not None:
            logger.info("Already starting, skip")
            return
        if self.is_starting:
            logger.warning("is_starting flag stuck without an adapter, resetting")

        self.is_starting = True
        self._stop_monitor()
        await self._release_adapter()
        self.pairing.reset()
        self.generation += 1
        generation = self.generation
        self.state.pairing_cycle_count = 0
        # A scheduled reconnect already published this connecting state.
        self._transition(Phase.CONNECTING, publish=self.state.phase is not Phase.CONNECTING)

        try:
            client = self.adapter_factory(self._emitter(generation), self._adapter_options())
            self.adapter = client
            self.timers.call_later(
                "start_timeout", self.settings.start_timeout_seconds, self.post, generation, _StartTimedOut()
            )
            logger.info("Starting connection... (existing auth: %s)", self.credentials.exists())
            await client.connect(self.credentials.load())
        except Exception as exc:
            logger.error("Failed to start: %s", exc)
            await self._release_adapter(force=True)
            self.is_starting = False
            self.state.last_error = f"Start failed: {exc}"
            self._transition(Phase.DISCONNECTED)
            if self.auto_reconnect:
                self._schedule_reconnect(TransientNetworkError("start error"))

    async def shutdown(self, reason: str = "Manual shutdown") -> None:
        """Publish a final status, release the adapter and stop ``run()``."""
        if self._shutting_down:
            return
        logger.info("Shutting down gracefully (%s)...", reason)
        self._shutting_down = True
        self.auto_reconnect = False
        self.timers.cancel_all()
        self._stop_monitor()
        self.state.phase = Phase.DISCONNECTED
        self.state.challenge = None
        self.state.last_error = reason
        try:
            await asyncio.wait_for(
                self.reporter.report(self.reporter.build(self.state)),
                timeout=self.settings.status_timeout_seconds + 1,
            )
        except Exception as exc:
            logger.warning("Final status report failed: %s", exc)
        finally:
            await self._release_adapter()
            await self._cancel_tasks()
            await self._close_clients()
            if self._loop is not None:
                self._queue.put_nowait((self.generation, _STOP))

    async def recover_from_crash(self, error: BaseException) -> None:
        """Report an unexpected error and schedule one reconnect."""
        logger.error("Uncaught error: %s", error)
        if self._shutting_down:
            return
        if self.is_starting and self.adapter is not None:
            logger.info("Crash during start; leaving recovery to the pending attempt")
            return
        self._stop_monitor()
        await self._release_adapter(force=True)
        self.is_starting = False
        self.state.last_error = f"Crash: {error}"
        self._transition(Phase.DISCONNECTED)
        self._schedule_reconnect(TransientNetworkError("uncaught exception"))

    # ------------------------------------------------------------------
    # Adapter events
    # ------------------------------------------------------------------

    async def _on_pairing_challenge(self, event: PairingChallenge) -> None:
        self.timers.cancel("start_timeout")
        within_budget = self.pairing.register_challenge()
        self.state.pairing_cycle_count = self.pairing.count
        if not within_budget:
            error = PairingExpired("pairing challenge expired")
            logger.warning("%s after %s cycles. Stopping.", error, self.pairing.max_cycles)
            await self._release_adapter()
            self.is_starting = False
            self.state.last_error = str(error)
            self._transition(Phase.DISCONNECTED)
            return

        client = self.adapter
        if client is None:
            return
        generation = self.generation
        challenge = await self.pairing.render(event.data, client)
        if challenge is None or generation != self.generation or self._shutting_down:
            return
        self.state.challenge = challenge
        self._transition(Phase.PAIRING_REQUIRED)

    def _on_open(self, event: ConnectionOpened) -> None:
        self.pairing.reset()
        self.state.phone_identity = bare_address(event.identity) or event.identity or "unknown"
        self.state.reconnect_attempts = 0
        self.state.pairing_cycle_count = 0
        self.state.last_error = None
        self.is_starting = False
        logger.info("Connected as +%s. Auth state saved — will auto-reconnect on restart.", self.state.phone_identity)
        self._transition(Phase.CONNECTED)
        self._start_liveness()
        self.timers.every("status", self.settings.status_interval_seconds, self._periodic_report)

    async def _on_close(self, event: ConnectionClosed) -> None:
        error = classify_close(event.code, event.message)
        logger.info("Connection closed: status=%s, reason=%r", event.code, event.message or "unknown")
        self._stop_monitor()
        await self._release_adapter()
        self.is_starting = False

        if isinstance(error, SessionConflict):
            logger.warning("Conflict — another session replaced this one. Not reconnecting.")
            self.state.reconnect_attempts = 0
            self.state.last_error = (
                "Another session replaced this connection. Restart the bridge to reconnect "
                "(make sure only one instance is running)."
            )
            self._transition(Phase.DISCONNECTED)
        elif isinstance(error, AuthError):
            logger.warning("Session invalid — clearing auth state")
            try:
                self.credentials.clear()
            except OSError as exc:
                logger.error("Failed to clear auth state: %s", exc)
            self.state.phone_identity = None
            self.state.reconnect_attempts = 0
            self.state.last_error = (
                "Logged out. Restart the bridge to pair again."
                if isinstance(error, LoggedOut)
                else "Bad session. Restart the bridge to pair again."
            )
            self._transition(Phase.DISCONNECTED)
        elif not self.auto_reconnect:
            self.state.last_error = f"Connection closed ({describe_close(error)})"
            self._transition(Phase.DISCONNECTED)
        else:
            self._schedule_reconnect(error)

    def _on_credentials(self, event: CredentialsUpdated) -> None:
        try:
            self.credentials.save(event.blob)
        except (OSError, TypeError, ValueError) as exc:
            logger.error("Failed to save credentials: %s", exc)

    async def _on_start_timeout(self) -> None:
        if self.state.phase is not Phase.CONNECTING or self.adapter is None:
            return
        logger.error(
            "Start timeout — no pairing or connection event received in %ss", self.settings.start_timeout_seconds
        )
        await self._release_adapter(force=True)
        self.is_starting = False
        if self.auto_reconnect:
            self._schedule_reconnect(StartTimeout("start timed out"))
        else:
            self.state.last_error = "Connection timed out. Restart the bridge to try again."
            self._transition(Phase.DISCONNECTED)

    async def _on_dead_connection(self) -> None:
        if self.state.phase is not Phase.CONNECTED:
            return
        self._stop_monitor()
        await self._release_adapter(force=True)
        self.is_starting = False
        if self.auto_reconnect:
            self._schedule_reconnect(ConnectionDead("connection dead"))
        else:
            self.state.last_error = "Connection closed (connection dead)"
            self._transition(Phase.DISCONNECTED)

    async def _handle_message(self, envelope: MessageEnvelope) -> None:
        client = self.adapter
        if client is None:
            logger.warning("Dropping message id=%s: no active connection", envelope.id)
            return
        await self.pipeline.handle(envelope, client)

    # ------------------------------------------------------------------
    # Transitions and timers
    # ------------------------------------------------------------------

    def _transition(self, phase: Phase, publish: bool = True) -> None:
        self.timers.cancel_all()
        if phase is not Phase.PAIRING_REQUIRED:
            self.state.challenge = None
        self.state.phase = phase
        if publish:
            self._publish()

    def _schedule_reconnect(self, error: BridgeError) -> None:
        self.state.reconnect_attempts += 1
        attempts = self.state.reconnect_attempts
        delay = self.policy.delay_for(error, attempts)
        reason = describe_close(error)
        logger.info("Reconnecting in %.1fs (attempt %s, reason: %s)", delay, attempts, reason)
        self.state.last_error = f"Reconnecting... ({reason})"
        self._transition(Phase.CONNECTING)
        self.timers.call_later("reconnect", delay, self.post, self.generation, _ReconnectDue())

    def _start_liveness(self) -> None:
        client = self.adapter
        generation = self.generation

        async def ping() -> None:
            if client is None:
                raise ConnectionDead("no adapter")
            await client.send_presence("available")

        self.monitor = LivenessMonitor(
            ping,
            lambda: self.post(generation, _LivenessLost()),
            interval_seconds=self.settings.keepalive_interval_seconds,
            dead_factor=self.settings.keepalive_dead_factor,
        )
        self.timers.every("keepalive", self.settings.keepalive_interval_seconds, self._keepalive_tick)

    async def _keepalive_tick(self) -> None:
        if self.monitor is None or self.state.phase is not Phase.CONNECTED:
            return
        await self.monitor.tick()

    def _stop_monitor(self) -> None:
        self.timers.cancel("keepalive")
        self.monitor = None

    async def _periodic_report(self) -> None:
        await self.reporter.report(self.reporter.build(self.state.snapshot()))

    def _publish(self) -> None:
        report = self.reporter.build(self.state.snapshot())
        self._spawn(self.reporter.report(report))

    # ------------------------------------------------------------------
    # Resources
    # ------------------------------------------------------------------

    def _adapter_options(self) -> AdapterOptions:
        return AdapterOptions(
            display_name=self.config.bot_name,
            auth_dir=str(self.settings.auth_dir),
            socks_proxy=self.config.socks_proxy,
        )

    async def _release_adapter(self, force: bool = False) -> None:
        client, self.adapter = self.adapter, None
        if client is None:
            return
        # Anything the detached client emits from here on, including the
        # close event for its own teardown, belongs to a superseded attempt.
        self.generation += 1
        if force:
            try:
                client.terminate()
            except Exception as exc:
                logger.debug("Adapter terminate failed: %s", exc)
            return
        try:
            await asyncio.wait_for(client.close(), timeout=5.0)
        except Exception as exc:
            logger.debug("Adapter close failed: %s", exc)
            try:
                client.terminate()
            except Exception:
                logger.debug("Adapter terminate after failed close also failed")

    def _spawn(self, coro: Coroutine[Any, Any, Any]) -> asyncio.Task:
        task = asyncio.get_running_loop().create_task(coro)
        self._tasks.add(task)
        task.add_done_callback(self._task_done)
        return task

    def _task_done(self, task: asyncio.Task) -> None:
        self._tasks.discard(task)
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None and not self._shutting_down:
            logger.error("Background task failed: %s", exc)
            self.post(self.generation, _Crashed(exc))

    async def drain(self) -> None:
        """Wait for in-flight background tasks (reports, message handling)."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    async def _close_clients(self) -> None:
        for client in (self.reporter, self.backend):
            try:
                await client.aclose()
            except Exception as exc:
                logger.debug("Client close failed: %s", exc)

    async def _cancel_tasks(self) -> None:
        current = asyncio.current_task()
        pending = [task for task in self._tasks if task is not current]
        for task in pending:
            task.cancel()
        if pending:
            await asyncio.gather(*pending, return_exceptions=True)
