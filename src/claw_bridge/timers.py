"""Named timer ownership.

Every scheduled callback is tracked by name. Arming a name cancels whatever
was armed under it before, and ``cancel_all`` is called on each phase
transition so no timer from a previous connection attempt can fire later.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Any, Awaitable, Callable

logger = logging.getLogger("claw_bridge.timers")


@dataclass(slots=True)
class _Armed:
    handle: asyncio.TimerHandle | asyncio.Task
    delay: float
    periodic: bool


class TimerSet:
    def __init__(self) -> None:
        self._timers: dict[str, _Armed] = {}

    def __contains__(self, name: str) -> bool:
        return name in self._timers

    def active(self) -> set[str]:
        return set(self._timers)

    def delay_of(self, name: str) -> float | None:
        armed = self._timers.get(name)
        return armed.delay if armed else None

    def call_later(self, name: str, delay: float, callback: Callable[..., Any], *args: Any) -> None:
        """Run ``callback(*args)`` once after ``delay`` seconds."""
        self.cancel(name)
        loop = asyncio.get_running_loop()

        def _fire() -> None:
            armed = self._timers.get(name)
            if armed is not None and armed.handle is handle:
                del self._timers[name]
            callback(*args)

        handle = loop.call_later(max(0.0, delay), _fire)
        self._timers[name] = _Armed(handle, delay, periodic=False)

    def every(self, name: str, interval: float, tick: Callable[[], Awaitable[Any]]) -> None:
        """Await ``tick()`` every ``interval`` seconds until cancelled."""
        self.cancel(name)

        async def _repeat() -> None:
            while True:
                await asyncio.sleep(interval)
                try:
                    await tick()
                except asyncio.CancelledError:
                    raise
                except Exception as exc:
                    logger.exception("Timer %s tick failed: %s", name, exc)

        task = asyncio.get_running_loop().create_task(_repeat(), name=f"timer:{name}")
        self._timers[name] = _Armed(task, interval, periodic=True)

    def cancel(self, name: str) -> bool:
        armed = self._timers.pop(name, None)
        if armed is None:
            return False
        armed.handle.cancel()
        return True

    def cancel_all(self) -> None:
        for name in list(self._timers):
            self.cancel(name)
