"""
qdb.sessions
~~~~~~~~~~~~
In-memory session store keyed by the ``qdb_session`` cookie.  Only
logged-in sessions are kept; anonymous requests get a throw-away
``Session`` that is stored once a login populates it.  Sessions idle for
longer than ``ttl`` seconds are dropped.
"""

from __future__ import annotations

import secrets
import threading
import time
from typing import Callable, Dict, Optional, Tuple

from .auth import Session

COOKIE_NAME = "qdb_session"
DEFAULT_TTL = 24 * 60 * 60


class SessionStore:
    def __init__(
        self,
        ttl: float = DEFAULT_TTL,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.ttl = ttl
        self._clock = clock
        self._sessions: Dict[str, Session] = {}
        self._last_seen: Dict[str, float] = {}
        self._lock = threading.Lock()

    def __len__(self) -> int:
        return len(self._sessions)

    def get(self, token: Optional[str]) -> Tuple[Optional[str], Session]:
        with self._lock:
            now = self._clock()
            self._prune(now)
            if token and token in self._sessions:
                self._last_seen[token] = now
                return token, self._sessions[token]
        return None, Session()

    def save(self, session: Session) -> str:
        token = secrets.token_urlsafe(32)
        with self._lock:
            now = self._clock()
            self._prune(now)
            self._sessions[token] = session
            self._last_seen[token] = now
        return token

    def discard(self, token: str) -> None:
        with self._lock:
            self._sessions.pop(token, None)
            self._last_seen.pop(token, None)

    def discard_user(self, user_id: int) -> None:
        """Drop every session logged in as *user_id*."""
        with self._lock:
            for token in [t for t, s in self._sessions.items() if s.user_id == user_id]:
                del self._sessions[token]
                del self._last_seen[token]

    def sync(self, token: Optional[str], session: Session) -> Optional[str]:
        """Reconcile the store with *session* after a request.

        Returns the cookie value to send: a new token after a login, ``""``
        to expire the cookie after logout, None when nothing changed.
        """
        if token is None and session.logged_in:
            return self.save(session)
        if token is not None and not session.logged_in:
            self.discard(token)
            return ""
        return None

    def _prune(self, now: float) -> None:
        cutoff = now - self.ttl
        for token in [t for t, seen in self._last_seen.items() if seen < cutoff]:
            del self._sessions[token]
            del self._last_seen[token]

    @staticmethod
    def cookie(value: str) -> str:
        if not value:
            return f"{COOKIE_NAME}=; Path=/; Max-Age=0; HttpOnly; SameSite=Lax"
        return f"{COOKIE_NAME}={value}; Path=/; HttpOnly; SameSite=Lax"
