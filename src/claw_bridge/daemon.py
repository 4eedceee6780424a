from __future__ import annotations

import asyncio
import logging
import signal

from .adapters import resolve_adapter_factory
from .backend import DashboardBackend
from .config import BridgeConfig, BridgeSettings, load_or_exit
from .credentials import CredentialStore
from .protocols import AdapterFactory
from .status_reporter import StatusReporter
from .supervisor import SessionSupervisor

logger = logging.getLogger("claw_bridge.daemon")

SHUTDOWN_REASONS = {
    signal.SIGINT: "Manual shutdown",
    signal.SIGTERM: "Service stopped",
}


def build_supervisor(
    config: BridgeConfig,
    settings: BridgeSettings,
    adapter_factory: AdapterFactory,
) -> SessionSupervisor:
    urls = config.dashboard_urls()
    reporter = StatusReporter(
        urls,
        config.api_key,
        settings.runtime_tag,
        endpoint=settings.status_endpoint,
        timeout=settings.status_timeout_seconds,
    )
    backend = DashboardBackend(
        urls,
        config.api_key,
        endpoint=settings.message_endpoint,
        timeout=settings.backend_timeout_seconds,
        empty_reply=settings.empty_reply,
    )
    return SessionSupervisor(
        config,
        settings,
        adapter_factory,
        reporter,
        backend,
        CredentialStore(settings.auth_dir),
    )


async def run(settings: BridgeSettings | None = None) -> None:
    settings = settings or BridgeSettings()
    logging.basicConfig(
        level=getattr(logging, settings.log_level.upper(), logging.INFO),
        format="%(asctime)s %(levelname)s %(message)s",
    )
    config = load_or_exit(settings.config_path)
    try:
        adapter_factory = resolve_adapter_factory(settings.adapter)
    except (ValueError, ImportError, AttributeError) as exc:
        logger.error("No usable messaging adapter: %s", exc)
        raise SystemExit(1) from exc

    supervisor = build_supervisor(config, settings, adapter_factory)
    loop = asyncio.get_running_loop()
    shutdown_tasks: list[asyncio.Task] = []

    def handle_signal(sig: signal.Signals) -> None:
        logger.info("Received signal %s", sig.name)
        shutdown_tasks.append(loop.create_task(supervisor.shutdown(SHUTDOWN_REASONS[sig])))

    for sig in SHUTDOWN_REASONS:
        loop.add_signal_handler(sig, handle_signal, sig)

    def handle_exception(loop: asyncio.AbstractEventLoop, context: dict) -> None:
        exc = context.get("exception")
        if exc is None or supervisor.stopping:
            loop.default_exception_handler(context)
            return
        logger.error("Uncaught error in event loop: %s", context.get("message") or exc)
        supervisor.report_crash(exc)

    loop.set_exception_handler(handle_exception)

    logger.info(
        "Claw Bridge running as %r (profile=%s, auto_restart=%s). Press Ctrl+C to stop.",
        config.bot_name,
        settings.profile,
        config.auto_restart,
    )
    try:
        await supervisor.run()
    finally:
        if shutdown_tasks:
            await asyncio.gather(*shutdown_tasks, return_exceptions=True)
        if not supervisor.stopping:
            await supervisor.shutdown("Service stopped")
        for sig in SHUTDOWN_REASONS:
            loop.remove_signal_handler(sig)
