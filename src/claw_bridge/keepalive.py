from __future__ import annotations

import asyncio
import logging
import time
from typing import Awaitable, Callable

logger = logging.getLogger("claw_bridge.keepalive")


class LivenessMonitor:
    """Presence-ping keepalive for a connected session.

    A failed ping alone is not fatal. The connection is declared dead only
    when no ping has succeeded for ``dead_factor * interval`` seconds, and
    ``on_dead`` fires at most once per ``reset()``.
    """

    def __init__(
        self,
        ping: Callable[[], Awaitable[None]],
        on_dead: Callable[[], None],
        interval_seconds: float = 25.0,
        dead_factor: float = 3.0,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.ping = ping
        self.on_dead = on_dead
        self.interval_seconds = interval_seconds
        self.dead_factor = dead_factor
        self._clock = clock
        self.last_success = clock()
        self.escalated = False

    @property
    def dead_after_seconds(self) -> float:
        return self.interval_seconds * self.dead_factor

    def reset(self) -> None:
        self.last_success = self._clock()
        self.escalated = False

    async def tick(self) -> None:
        if self.escalated:
            return
        try:
            await asyncio.wait_for(self.ping(), timeout=self.interval_seconds)
        except asyncio.CancelledError:
            raise
        except Exception as exc:
            silent = self._clock() - self.last_success
            logger.warning("Keepalive failed (silent %ss): %s", round(silent), exc or type(exc).__name__)
            if silent > self.dead_after_seconds and not self.escalated:
                self.escalated = True
                logger.error("Connection dead — forcing reconnect")
                self.on_dead()
            return
        self.last_success = self._clock()
