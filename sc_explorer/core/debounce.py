from __future__ import annotations

import time
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, Mapping, Optional

Clock = Callable[[], float]


@dataclass
class _Pending:
    values: Dict[str, Any] = field(default_factory=dict)
    deadline: float = 0.0


class Debouncer:
    """
    Coalesces rapid input changes per group: a group settles once no new value
    has been pushed for its window, and then yields only the latest values.

    Not tied to any UI framework: the owner pushes raw events and periodically
    asks which groups are due. The clock is injectable for tests.
    """

    def __init__(self, windows: Mapping[str, float], clock: Clock = time.monotonic) -> None:
        self._windows: Dict[str, float] = dict(windows)
        self._clock = clock
        self._pending: Dict[str, _Pending] = {}

    def window(self, group: str) -> float:
        return self._windows.get(group, 0.0)

    def push(self, group: str, values: Mapping[str, Any], now: Optional[float] = None) -> float:
        """Record new raw values for `group` and restart its timer. Returns the new deadline."""
        now = self._clock() if now is None else now
        pending = self._pending.setdefault(group, _Pending())
        pending.values.update(values)
        pending.deadline = now + self.window(group)
        return pending.deadline

    def due(self, now: Optional[float] = None) -> Dict[str, Dict[str, Any]]:
        """Pop and return every group whose deadline has passed."""
        now = self._clock() if now is None else now
        ready = [g for g, p in self._pending.items() if p.deadline <= now]
        return {g: self._pending.pop(g).values for g in ready}

    def is_pending(self, group: str) -> bool:
        return group in self._pending

    def next_deadline(self) -> Optional[float]:
        if not self._pending:
            return None
        return min(p.deadline for p in self._pending.values())

    def cancel(self, group: str) -> None:
        self._pending.pop(group, None)

    def clear(self) -> None:
        self._pending.clear()
