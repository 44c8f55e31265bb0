"""In-process session store with idle expiry and an LRU size bound."""

from __future__ import annotations

import logging
import threading
import time
from collections import OrderedDict
from dataclasses import dataclass
from typing import Callable

from ..models.adapter import ConversationState
from .base import BaseSessionStore


logger = logging.getLogger(__name__)


@dataclass
class _Entry:
    state: ConversationState
    last_access: float


class InMemorySessionStore(BaseSessionStore):
    """Thread-safe session cache.

    Entries expire after `idle_timeout_seconds` without a read or write, and
    the least recently used entry is evicted once `max_entries` is exceeded.
    Creation happens under the store lock, so two callers racing on the same
    new id always receive the same state object.
    """

    def __init__(
        self,
        *,
        idle_timeout_seconds: float,
        max_entries: int,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        if idle_timeout_seconds <= 0:
            raise ValueError("idle_timeout_seconds must be positive")
        if max_entries < 1:
            raise ValueError("max_entries must be at least 1")
        self.idle_timeout_seconds = float(idle_timeout_seconds)
        self.max_entries = int(max_entries)
        self._clock = clock
        self._entries: OrderedDict[str, _Entry] = OrderedDict()
        self._lock = threading.Lock()

    def _is_expired(self, entry: _Entry, now: float) -> bool:
        return now - entry.last_access > self.idle_timeout_seconds

    def _live_entry(self, session_id: str, now: float) -> _Entry | None:
        entry = self._entries.get(session_id)
        if entry is None:
            return None
        if self._is_expired(entry, now):
            del self._entries[session_id]
            logger.debug("Session %s expired after idle timeout", session_id)
            return None
        entry.last_access = now
        self._entries.move_to_end(session_id)
        return entry

    def _purge_expired(self, now: float) -> None:
        expired = [sid for sid, entry in self._entries.items() if self._is_expired(entry, now)]
        for sid in expired:
            del self._entries[sid]
        if expired:
            logger.debug("Purged %d idle sessions", len(expired))

    def get_or_create(
        self,
        session_id: str,
        factory: Callable[[], ConversationState],
    ) -> ConversationState:
        with self._lock:
            now = self._clock()
            entry = self._live_entry(session_id, now)
            if entry is not None:
                return entry.state

            state = factory()
            self._entries[session_id] = _Entry(state=state, last_access=now)
            self._purge_expired(now)
            while len(self._entries) > self.max_entries:
                evicted_id, _ = self._entries.popitem(last=False)
                logger.info("Evicted least recently used session %s", evicted_id)
            return state

    def get(self, session_id: str) -> ConversationState | None:
        with self._lock:
            entry = self._live_entry(session_id, self._clock())
            return entry.state if entry is not None else None

    def invalidate(self, session_id: str) -> None:
        with self._lock:
            self._entries.pop(session_id, None)

    def __len__(self) -> int:
        with self._lock:
            self._purge_expired(self._clock())
            return len(self._entries)
