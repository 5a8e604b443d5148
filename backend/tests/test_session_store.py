from __future__ import annotations

from datetime import datetime, timedelta, timezone

import pytest

from telemetry_copilot.core.errors import SessionNotFoundError
from telemetry_copilot.refinement.models import Candidate
from telemetry_copilot.refinement.session import RefinementSession
from telemetry_copilot.refinement.state import Reviewing
from telemetry_copilot.refinement.store import SessionStore


def _session(**kwargs) -> RefinementSession:
    return RefinementSession("show me errors", Reviewing(Candidate("exceptions | take 10", 0.9)), **kwargs)


def test_add_get_end():
    store = SessionStore()
    session = store.add(_session())

    assert session.id in store
    assert store.get(session.id) is session
    assert store.end(session.id) is session
    assert session.id not in store
    assert len(store) == 0


def test_unknown_session_raises():
    store = SessionStore()
    with pytest.raises(SessionNotFoundError) as exc_info:
        store.get("missing")
    assert "missing" in str(exc_info.value)
    with pytest.raises(SessionNotFoundError):
        store.end("missing")


def test_cleanup_drops_only_idle_sessions():
    now = datetime(2024, 6, 1, 12, tzinfo=timezone.utc)
    store = SessionStore(max_age_minutes=60)
    stale = store.add(_session(updated_at=now - timedelta(minutes=61)))
    fresh = store.add(_session(updated_at=now - timedelta(minutes=5)))

    assert store.cleanup_expired(now) == 1
    assert stale.id not in store
    assert fresh.id in store


def test_touch_keeps_session_alive():
    store = SessionStore(max_age_minutes=60)
    session = store.add(_session(updated_at=datetime(2000, 1, 1, tzinfo=timezone.utc)))
    session.touch()
    assert store.cleanup_expired() == 0
    assert len(store) == 1
