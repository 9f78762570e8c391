"""
Thread-safe server-side session registry.

Terminal states are kept as tombstones so that, once a session has been
revoked or has expired, every later lookup for that id keeps reporting the
same state no matter how calls interleave or when ``purge`` last ran.
Expiry is never enforced by deletion: entries may outlive their
``expires_at`` until ``purge`` moves them to a tombstone, and callers always
re-check the clock.
"""

from __future__ import annotations

import threading
from dataclasses import dataclass
from datetime import datetime, timedelta
from enum import Enum
from typing import TYPE_CHECKING, Dict, List, Optional, Tuple

if TYPE_CHECKING:
    from .manager import DRMSession


class SessionState(str, Enum):
    NON_EXISTENT = "non_existent"
    ACTIVE = "active"
    EXPIRED = "expired"
    REVOKED = "revoked"


@dataclass(frozen=True)
class Tombstone:
    state: SessionState
    user_id: str
    at: datetime


class SessionRegistry:
    def __init__(self):
        self._lock = threading.Lock()
        self._sessions: Dict[str, "DRMSession"] = {}
        self._tombstones: Dict[str, Tombstone] = {}

    def add(self, session: "DRMSession") -> None:
        with self._lock:
            if session.session_id in self._sessions or session.session_id in self._tombstones:
                raise ValueError(f"Duplicate session id: {session.session_id}")
            self._sessions[session.session_id] = session

    def lookup(self, session_id: str, now: datetime) -> Tuple[SessionState, Optional["DRMSession"]]:
        """Return the state of ``session_id`` at ``now`` and the record if still held."""
        with self._lock:
            tombstone = self._tombstones.get(session_id)
            if tombstone is not None:
                return tombstone.state, None
            session = self._sessions.get(session_id)
        if session is None:
            return SessionState.NON_EXISTENT, None
        if now >= session.expires_at:
            return SessionState.EXPIRED, session
        return SessionState.ACTIVE, session

    def owner(self, session_id: str) -> Optional[str]:
        """User bound to ``session_id``, including tombstoned sessions."""
        with self._lock:
            tombstone = self._tombstones.get(session_id)
            if tombstone is not None:
                return tombstone.user_id
            session = self._sessions.get(session_id)
            return session.user_id if session is not None else None

    def revoke(self, session_id: str, now: datetime) -> bool:
        """Tombstone an Active ``session_id``. Returns True only on the first effective call.

        Expired sessions stay Expired.
        """
        with self._lock:
            if session_id in self._tombstones:
                return False
            session = self._sessions.get(session_id)
            if session is None or now >= session.expires_at:
                return False
            del self._sessions[session_id]
            self._tombstones[session_id] = Tombstone(SessionState.REVOKED, session.user_id, now)
            return True

    def purge(self, now: datetime, tombstone_ttl: timedelta) -> Tuple[int, int]:
        """Tombstone expired sessions and drop old tombstones.

        Returns:
            (sessions moved to Expired, tombstones removed)
        """
        with self._lock:
            expired = [s for s in self._sessions.values() if now >= s.expires_at]
            for session in expired:
                del self._sessions[session.session_id]
                self._tombstones[session.session_id] = Tombstone(SessionState.EXPIRED, session.user_id,
                                                                 session.expires_at)
            stale = [sid for sid, t in self._tombstones.items() if now - t.at >= tombstone_ttl]
            for sid in stale:
                del self._tombstones[sid]
        return len(expired), len(stale)

    def snapshot(self) -> Tuple[List["DRMSession"], Dict[SessionState, int]]:
        """Held sessions plus tombstone counts per terminal state."""
        with self._lock:
            counts = {SessionState.EXPIRED: 0, SessionState.REVOKED: 0}
            for tombstone in self._tombstones.values():
                counts[tombstone.state] += 1
            return list(self._sessions.values()), counts

    def __len__(self) -> int:
        with self._lock:
            return len(self._sessions)
