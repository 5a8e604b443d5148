"""
Caller-owned refinement session.

The engine mutates ``state`` and ``history`` on the object it is handed;
it keeps no session registry of its own.  Holding sessions across
requests is ``SessionStore``'s job.
"""

from __future__ import annotations

import uuid
import asyncio
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any

from telemetry_copilot.refinement.models import ActionRecord, Candidate
from telemetry_copilot.refinement.state import RefinementState, is_terminal


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class RefinementSession:
    question: str
    state: RefinementState
    schema: dict[str, Any] | None = None
    history: tuple[ActionRecord, ...] = ()
    id: str = field(default_factory=lambda: uuid.uuid4().hex)
    created_at: datetime = field(default_factory=_utcnow)
    updated_at: datetime = field(default_factory=_utcnow)
    # Langfuse trace handle (no-op when tracing is off)
    trace: Any = field(default=None, repr=False, compare=False)
    # serialises actions on this session
    lock: asyncio.Lock = field(default_factory=asyncio.Lock, repr=False, compare=False)

    @property
    def candidate(self) -> Candidate:
        return self.state.candidate

    @property
    def is_terminal(self) -> bool:
        return is_terminal(self.state)

    def touch(self) -> None:
        self.updated_at = _utcnow()
