"""
In-memory registry of live refinement sessions for the HTTP layer.

Sessions are lost on restart.  Idle sessions older than
``max_age_minutes`` are dropped by ``cleanup_expired``.
"""

from __future__ import annotations

from datetime import datetime, timedelta, timezone

from telemetry_copilot.core.errors import SessionNotFoundError
from telemetry_copilot.core.logging import get_logger
from telemetry_copilot.refinement.session import RefinementSession

logger = get_logger(__name__)


class SessionStore:
    def __init__(self, max_age_minutes: int = 24 * 60) -> None:
        self._sessions: dict[str, RefinementSession] = {}
        self._max_age = timedelta(minutes=max_age_minutes)

    def __len__(self) -> int:
        return len(self._sessions)

    def __contains__(self, session_id: str) -> bool:
        return session_id in self._sessions

    def add(self, session: RefinementSession) -> RefinementSession:
        self._sessions[session.id] = session
        return session

    def get(self, session_id: str) -> RefinementSession:
        try:
            return self._sessions[session_id]
        except KeyError:
            raise SessionNotFoundError(session_id) from None

    def end(self, session_id: str) -> RefinementSession:
        """Remove and return a session."""
        try:
            session = self._sessions.pop(session_id)
        except KeyError:
            raise SessionNotFoundError(session_id) from None
        logger.info("Session ended", extra={"session_id": session_id})
        return session

    def cleanup_expired(self, now: datetime | None = None) -> int:
        """Drop sessions idle for longer than the max age; returns how many."""
        cutoff = (now or datetime.now(timezone.utc)) - self._max_age
        expired = [sid for sid, s in self._sessions.items() if s.updated_at < cutoff]
        for sid in expired:
            del self._sessions[sid]
        if expired:
            logger.info("Cleaned up %d expired session(s)", len(expired))
        return len(expired)
