"""
auth/sessions.py -- Server-side session lifecycle.

A session records one login and lives 30 days. It is independent of the
access token: the cookie carries a token, not a session id, and the two share
only the user id.

Expired rows are never returned -- find() treats "expired" exactly like "never
existed". Logout removes every session of the user in one statement; there is
no single-session revoke on the logout path.
"""

from __future__ import annotations

from collections.abc import Callable
from datetime import datetime, timedelta, timezone

from auth.models import Session
from auth.store import CredentialStore, utc_iso

SESSION_TTL = timedelta(days=30)


class SessionManager:
    def __init__(self, store: CredentialStore, clock: Callable[[], datetime] | None = None) -> None:
        self._store = store
        self._clock = clock or (lambda: datetime.now(timezone.utc))

    def create(self, user_id: str, ip: str | None = None, user_agent: str | None = None) -> Session:
        now = self._clock()
        return self._store.create_session(
            Session(
                user_id=user_id,
                created_at=utc_iso(now),
                expires_at=utc_iso(now + SESSION_TTL),
                ip=ip or None,
                user_agent=user_agent or None,
            )
        )

    def find(self, session_id: str) -> Session | None:
        """Return the live session, or None if it is missing or expired."""
        return self._store.get_live_session(session_id, utc_iso(self._clock()))

    def revoke_all(self, user_id: str) -> int:
        """Delete every session belonging to user_id. Returns rows removed."""
        return self._store.delete_sessions_for_user(user_id)

    def purge_expired(self) -> int:
        """Delete rows past expiry. Housekeeping only; lookups already hide them."""
        return self._store.delete_expired_sessions(utc_iso(self._clock()))
