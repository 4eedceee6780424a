from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING

from .errors import BridgeError, RestartRequired

if TYPE_CHECKING:
    from .config import BridgeSettings


@dataclass(slots=True, frozen=True)
class ReconnectPolicy:
    base_seconds: float = 3.0
    growth: float = 1.5
    cap_seconds: float = 60.0
    restart_required_seconds: float = 1.0

    @classmethod
    def from_settings(cls, settings: BridgeSettings) -> ReconnectPolicy:
        return cls(
            base_seconds=settings.reconnect_base_seconds,
            growth=settings.reconnect_growth,
            cap_seconds=settings.reconnect_cap_seconds,
            restart_required_seconds=settings.restart_required_delay_seconds,
        )

    def delay(self, attempts: int) -> float:
        """Backoff delay for the given (1-based) attempt count."""
        exponent = max(0, attempts - 1)
        try:
            raw = self.base_seconds * self.growth**exponent
        except OverflowError:
            return self.cap_seconds
        return min(raw, self.cap_seconds)

    def delay_for(self, error: BridgeError, attempts: int) -> float:
        if isinstance(error, RestartRequired):
            return self.restart_required_seconds
        return self.delay(attempts)
