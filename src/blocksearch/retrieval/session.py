"""Session cache for paginated result streams."""

from __future__ import annotations

import hashlib
import json
import logging
import threading
import time
import uuid
from collections.abc import Callable, Iterator, Sequence
from contextlib import contextmanager
from dataclasses import dataclass, field

from blocksearch.config import DEFAULT_TIMEOUT_SECONDS, SearchOptions
from blocksearch.types import ScoredResult

logger = logging.getLogger(__name__)

NEW_SESSION = "new"


def new_session_id() -> str:
    return uuid.uuid4().hex[:12]


def compute_fingerprint(query: str, options: SearchOptions, candidates: Sequence[str]) -> str:
    """Hash of everything that determines the full ranked sequence."""

    payload = {
        "query": query,
        "options": options.fingerprint_fields(),
        "candidates": sorted(candidates),
    }
    encoded = json.dumps(payload, sort_keys=True, default=str).encode("utf-8")
    return hashlib.sha1(encoded).hexdigest()


@dataclass(slots=True)
class SessionState:
    session_id: str
    fingerprint: str
    results: tuple[ScoredResult, ...]
    query_plan: dict = field(default_factory=dict)
    cursor: int = 0
    created_at: float = 0.0
    last_access: float = 0.0

    @property
    def exhausted(self) -> bool:
        return self.cursor >= len(self.results)

    def remaining(self) -> tuple[ScoredResult, ...]:
        return self.results[self.cursor :]


@dataclass(slots=True)
class _Slot:
    lock: threading.Lock = field(default_factory=threading.Lock)
    users: int = 0
    state: SessionState | None = None


class SessionLease:
    """Exclusive handle on one session id while its lock is held."""

    def __init__(self, session_id: str, slot: _Slot, clock: Callable[[], float]) -> None:
        self.session_id = session_id
        self._slot = slot
        self._clock = clock

    @property
    def state(self) -> SessionState | None:
        return self._slot.state

    def commit(self, state: SessionState) -> None:
        if state.session_id != self.session_id:
            raise ValueError("Session state does not belong to this lease")
        state.created_at = state.last_access = self._clock()
        self._slot.state = state

    def clear(self) -> None:
        self._slot.state = None


class SessionCache:
    """Session id -> ranked results plus a cursor.

    Each id has its own lock, so requests for one session are serialized
    while different sessions proceed in parallel. The shared lock only
    guards the slot table. Entries idle longer than `idle_seconds` are
    evicted lazily.
    """

    def __init__(
        self,
        idle_seconds: float = DEFAULT_TIMEOUT_SECONDS,
        *,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        if idle_seconds <= 0:
            raise ValueError("idle_seconds must be > 0")
        self.idle_seconds = idle_seconds
        self._clock = clock
        self._guard = threading.Lock()
        self._slots: dict[str, _Slot] = {}

    @contextmanager
    def lease(self, session_id: str) -> Iterator[SessionLease]:
        with self._guard:
            self._evict_expired_locked()
            slot = self._slots.setdefault(session_id, _Slot())
            slot.users += 1
        try:
            with slot.lock:
                if slot.state is not None and self._expired(slot.state):
                    logger.debug(f"Session {session_id} expired")
                    slot.state = None
                yield SessionLease(session_id, slot, self._clock)
                if slot.state is not None:
                    slot.state.last_access = self._clock()
        finally:
            with self._guard:
                slot.users -= 1
                if slot.users == 0 and slot.state is None:
                    self._slots.pop(session_id, None)

    def get(self, session_id: str) -> SessionState | None:
        with self._guard:
            slot = self._slots.get(session_id)
            if slot is None or slot.state is None or self._expired(slot.state):
                return None
            return slot.state

    def drop(self, session_id: str) -> bool:
        with self.lease(session_id) as lease:
            existed = lease.state is not None
            lease.clear()
        if existed:
            logger.info(f"Dropped session {session_id}")
        return existed

    def evict_expired(self) -> int:
        with self._guard:
            return self._evict_expired_locked()

    def __len__(self) -> int:
        with self._guard:
            return sum(1 for slot in self._slots.values() if slot.state is not None)

    def _expired(self, state: SessionState) -> bool:
        return self._clock() - state.last_access > self.idle_seconds

    def _evict_expired_locked(self) -> int:
        stale = [
            key
            for key, slot in self._slots.items()
            if slot.users == 0 and (slot.state is None or self._expired(slot.state))
        ]
        for key in stale:
            del self._slots[key]
        if stale:
            logger.debug(f"Evicted {len(stale)} idle sessions")
        return len(stale)
