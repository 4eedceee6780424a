from __future__ import annotations

from collections import OrderedDict


class PendingSendLedger:
    """Recently self-sent message ids, used to recognise echoes of our own sends.

    Holds at most ``capacity`` ids; when exceeded, only the newest ``trim_to``
    are kept.
    """

    def __init__(self, capacity: int = 500, trim_to: int = 250):
        if not 0 < trim_to <= capacity:
            raise ValueError("trim_to must be between 1 and capacity")
        self.capacity = capacity
        self.trim_to = trim_to
        self._ids: OrderedDict[str, None] = OrderedDict()

    def __contains__(self, message_id: object) -> bool:
        return message_id in self._ids

    def __len__(self) -> int:
        return len(self._ids)

    def add(self, message_id: str | None) -> None:
        if not message_id:
            return
        self._ids[message_id] = None
        self._ids.move_to_end(message_id)
        if len(self._ids) > self.capacity:
            while len(self._ids) > self.trim_to:
                self._ids.popitem(last=False)
