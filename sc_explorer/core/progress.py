from __future__ import annotations

import logging
from collections import deque
from contextlib import contextmanager
from dataclasses import dataclass
from typing import Callable, Deque, Iterator, List, Optional

logger = logging.getLogger(__name__)

STAGE_START = "start"
STAGE_RUNNING = "running"
STAGE_DONE = "done"


@dataclass(frozen=True)
class ProgressEvent:
    """
    Coarse progress notification for a long-running operation.

    - operation: what is running ("Find clusters using new resolution", ...)
    - stage: one of 'start', 'running', 'done'
    - fraction: completion in [0, 1]
    - message: detail for the current step
    """
    operation: str
    stage: str
    fraction: float
    message: str = ""


ProgressListener = Callable[[ProgressEvent], None]


class ProgressTask:
    """Handle for one running operation; yielded by ProgressReporter.task()."""

    def __init__(self, reporter: ProgressReporter, operation: str) -> None:
        self._reporter = reporter
        self.operation = operation
        self.fraction = 0.0

    def update(self, fraction: float, message: str = "") -> None:
        self.fraction = min(max(float(fraction), 0.0), 1.0)
        self._reporter.emit(ProgressEvent(self.operation, STAGE_RUNNING, self.fraction, message))

    def advance(self, amount: float, message: str = "") -> None:
        self.update(self.fraction + amount, message)


class ProgressReporter:
    """
    Fan-out of progress events to listeners (UI status line, logs).

    Listener errors are logged and never interrupt the computation being reported on.
    """

    def __init__(self, listeners: Optional[List[ProgressListener]] = None) -> None:
        self._listeners: List[ProgressListener] = list(listeners or [])

    def subscribe(self, listener: ProgressListener) -> None:
        self._listeners.append(listener)

    def unsubscribe(self, listener: ProgressListener) -> None:
        if listener in self._listeners:
            self._listeners.remove(listener)

    def emit(self, event: ProgressEvent) -> None:
        logger.debug(
            "progress",
            extra={
                "operation": event.operation,
                "stage": event.stage,
                "fraction": event.fraction,
                "detail": event.message,
            },
        )
        for listener in list(self._listeners):
            try:
                listener(event)
            except Exception:
                logger.exception("Progress listener failed for %s", event.operation)

    @contextmanager
    def task(self, operation: str, message: str = "") -> Iterator[ProgressTask]:
        """
        Report start (0.0) on entry and done (1.0) on clean exit.
        If the body raises, no 'done' event is emitted and the exception propagates.
        """
        handle = ProgressTask(self, operation)
        self.emit(ProgressEvent(operation, STAGE_START, 0.0, message))
        yield handle
        self.emit(ProgressEvent(operation, STAGE_DONE, 1.0, "Finish!"))


class ProgressLog:
    """Listener keeping the most recent events for display."""

    def __init__(self, maxlen: int = 20) -> None:
        self.events: Deque[ProgressEvent] = deque(maxlen=maxlen)

    def __call__(self, event: ProgressEvent) -> None:
        self.events.append(event)

    @property
    def last(self) -> Optional[ProgressEvent]:
        return self.events[-1] if self.events else None

    def clear(self) -> None:
        self.events.clear()


NULL_PROGRESS = ProgressReporter()
