from __future__ import annotations

import logging
import threading
import time
from collections import OrderedDict
from contextlib import contextmanager
from typing import Iterator, Optional

from sc_explorer.analysis.backend import AnalysisBackend
from sc_explorer.config.model import AnalysisSettings, DebounceSettings
from sc_explorer.core.debounce import Clock
from sc_explorer.core.genes import GeneResolver
from sc_explorer.core.session import SessionStateMachine
from sc_explorer.services.dataset_service import DatasetStore

logger = logging.getLogger(__name__)

# Sessions kept in memory. Past this the least recently used one is dropped;
# if its browser comes back it gets a fresh session plus an EXPIRED_MESSAGE notice.
DEFAULT_MAX_SESSIONS = 16

# Evicted ids remembered so a returning browser can be told its state was reset
EVICTED_MEMORY_FACTOR = 4

EXPIRED_MESSAGE = "Your session expired after a period of inactivity and was reset."


class _Entry:
    __slots__ = ("machine", "lock")

    def __init__(self, machine: SessionStateMachine) -> None:
        self.machine = machine
        self.lock = threading.RLock()


class SessionService:
    """
    Owns one SessionStateMachine per browser session.

    - machines are created lazily on first use
    - all events of one session are processed one at a time (per-session lock);
      different sessions never block each other
    - only the read-only catalog, alias tables and backend are shared
    - at most `max_sessions` are kept; the least recently used one is discarded
      and, if its id shows up again, the new machine starts with a warning notice
    """

    def __init__(
        self,
        store: DatasetStore,
        resolver: GeneResolver,
        backend: AnalysisBackend,
        settings: Optional[AnalysisSettings] = None,
        debounce: Optional[DebounceSettings] = None,
        max_sessions: int = DEFAULT_MAX_SESSIONS,
        clock: Clock = time.monotonic,
    ) -> None:
        self.store = store
        self.resolver = resolver
        self.backend = backend
        self.settings = settings or AnalysisSettings()
        self.debounce = debounce or DebounceSettings()
        self.max_sessions = max(1, int(max_sessions))
        self.clock = clock

        self._sessions: "OrderedDict[str, _Entry]" = OrderedDict()
        self._evicted: "OrderedDict[str, None]" = OrderedDict()
        self._registry_lock = threading.Lock()

    def __contains__(self, session_id: object) -> bool:
        return session_id in self._sessions

    def __len__(self) -> int:
        return len(self._sessions)

    def _entry(self, session_id: str) -> _Entry:
        evicted = []
        with self._registry_lock:
            entry = self._sessions.get(session_id)
            if entry is not None:
                self._sessions.move_to_end(session_id)
                return entry

            machine = SessionStateMachine(
                self.store,
                self.resolver,
                self.backend,
                settings=self.settings,
                debounce=self.debounce,
                clock=self.clock,
            )
            entry = _Entry(machine)
            self._sessions[session_id] = entry
            returning = session_id in self._evicted
            self._evicted.pop(session_id, None)
            while len(self._sessions) > self.max_sessions:
                old_id, old = self._sessions.popitem(last=False)
                evicted.append((old_id, old))
                self._evicted[old_id] = None
            while len(self._evicted) > self.max_sessions * EVICTED_MEMORY_FACTOR:
                self._evicted.popitem(last=False)

        if returning:
            machine.notify("warning", EXPIRED_MESSAGE, "session")
            logger.warning("Session re-created after eviction", extra={"session_id": session_id})

        logger.info("Session created", extra={"session_id": session_id, "n_sessions": len(self._sessions)})
        for old_id, old in evicted:
            with old.lock:
                old.machine.close()
            logger.info("Session evicted", extra={"session_id": old_id})
        return entry

    @contextmanager
    def use(self, session_id: str) -> Iterator[SessionStateMachine]:
        """Hold the session's lock while working with its state machine."""
        entry = self._entry(session_id)
        with entry.lock:
            yield entry.machine

    def discard(self, session_id: str) -> bool:
        """Forget a session and cancel its pending debounce timers."""
        with self._registry_lock:
            entry = self._sessions.pop(session_id, None)
        if entry is None:
            return False
        with entry.lock:
            entry.machine.close()
        logger.info("Session discarded", extra={"session_id": session_id})
        return True
