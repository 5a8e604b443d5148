"""
Refinement router.

Endpoints:
    POST   /api/refinements                → start a session from a question
    POST   /api/refinements/{id}/actions   → apply one review action
    GET    /api/refinements/{id}/history   → action history
    DELETE /api/refinements/{id}           → end a session
"""

from __future__ import annotations

from typing import Any

from fastapi import APIRouter, Depends, HTTPException, status
from pydantic import BaseModel, Field

from telemetry_copilot.analysis.models import AnalysisMode
from telemetry_copilot.api.dependencies import get_refinement_engine, get_session_store
from telemetry_copilot.core.errors import (
    DataSourceError,
    GenerationError,
    InvalidTransitionError,
    SessionNotFoundError,
)
from telemetry_copilot.core.logging import get_logger
from telemetry_copilot.refinement.engine import ActOutcome, RefinementEngine
from telemetry_copilot.refinement.models import ActionRecord, RefinementAction, TechnicalLevel
from telemetry_copilot.refinement.session import RefinementSession
from telemetry_copilot.refinement.state import Failed, Reviewing
from telemetry_copilot.refinement.store import SessionStore

logger = get_logger(__name__)

router = APIRouter(tags=["refinement"])


# ── Schemas ──────────────────────────────────────────────────────


class StartRequest(BaseModel):
    question: str = Field(min_length=1)


class ActionRequest(BaseModel):
    action: RefinementAction
    query: str | None = None
    index: int | None = None
    language: str | None = None
    technical_level: TechnicalLevel | None = None
    include_examples: bool | None = None
    analysis_mode: AnalysisMode | None = None

    def payload(self) -> dict[str, Any]:
        return self.model_dump(exclude={"action"}, exclude_none=True, mode="json")


class CandidateOut(BaseModel):
    query_text: str
    confidence: float
    reasoning: str | None = None


class HistoryEntryOut(BaseModel):
    query: str
    confidence: float
    action: str
    reason: str | None = None
    timestamp: str


class OutcomeOut(BaseModel):
    session_id: str
    state: str
    attempt_number: int | None = None
    candidate: CandidateOut
    available_actions: list[str]
    warnings: list[str] = []
    history: list[HistoryEntryOut] = []
    result: dict | None = None
    execution_time_ms: int | None = None
    explanation: str | None = None
    analysis: dict | None = None
    error: str | None = None


# ── Serialisation ────────────────────────────────────────────────


def _history_out(records: list[ActionRecord]) -> list[HistoryEntryOut]:
    return [
        HistoryEntryOut(
            query=r.query,
            confidence=r.confidence,
            action=r.action.value,
            reason=r.reason,
            timestamp=r.timestamp.isoformat(),
        )
        for r in records
    ]


def _outcome_out(session: RefinementSession, outcome: ActOutcome) -> OutcomeOut:
    state = outcome.state
    return OutcomeOut(
        session_id=session.id,
        state=state.name,
        attempt_number=state.attempt_number if isinstance(state, Reviewing) else None,
        candidate=CandidateOut(
            query_text=outcome.candidate.query_text,
            confidence=outcome.candidate.confidence,
            reasoning=outcome.candidate.reasoning,
        ),
        available_actions=[a.value for a in outcome.available_actions],
        warnings=outcome.warnings,
        history=_history_out(outcome.history),
        result=outcome.result.to_dict() if outcome.result is not None else None,
        execution_time_ms=outcome.execution_time_ms,
        explanation=outcome.explanation,
        analysis=outcome.analysis.to_dict() if outcome.analysis is not None else None,
        error=outcome.error,
    )


def _session_or_404(store: SessionStore, session_id: str) -> RefinementSession:
    try:
        return store.get(session_id)
    except SessionNotFoundError as exc:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc)) from exc


def _end_failed(store: SessionStore, session: RefinementSession) -> None:
    if isinstance(session.state, Failed) and session.id in store:
        store.end(session.id)


# ── Endpoints ────────────────────────────────────────────────────


@router.post("/refinements", response_model=OutcomeOut, status_code=status.HTTP_201_CREATED)
async def start_refinement(
    body: StartRequest,
    engine: RefinementEngine = Depends(get_refinement_engine),
    store: SessionStore = Depends(get_session_store),
) -> OutcomeOut:
    """Generate a first candidate query and open a review session."""
    store.cleanup_expired()
    try:
        session = await engine.start_refinement(body.question)
    except ValueError as exc:
        raise HTTPException(status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, detail=str(exc)) from exc
    except GenerationError as exc:
        raise HTTPException(status_code=status.HTTP_502_BAD_GATEWAY, detail=str(exc)) from exc

    store.add(session)
    return _outcome_out(session, engine.describe(session))


@router.post("/refinements/{session_id}/actions", response_model=OutcomeOut)
async def apply_action(
    session_id: str,
    body: ActionRequest,
    engine: RefinementEngine = Depends(get_refinement_engine),
    store: SessionStore = Depends(get_session_store),
) -> OutcomeOut:
    session = _session_or_404(store, session_id)
    try:
        outcome = await engine.act(session, body.action, body.payload())
    except InvalidTransitionError as exc:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(exc)) from exc
    except DataSourceError as exc:
        # Execution failures end the session
        _end_failed(store, session)
        raise HTTPException(status_code=status.HTTP_502_BAD_GATEWAY, detail=str(exc)) from exc
    except Exception:
        _end_failed(store, session)
        raise

    return _outcome_out(session, outcome)


@router.get("/refinements/{session_id}/history", response_model=list[HistoryEntryOut])
async def get_history(
    session_id: str,
    store: SessionStore = Depends(get_session_store),
) -> list[HistoryEntryOut]:
    session = _session_or_404(store, session_id)
    return _history_out(list(session.history))


@router.delete("/refinements/{session_id}")
async def end_refinement(
    session_id: str,
    store: SessionStore = Depends(get_session_store),
) -> dict:
    try:
        store.end(session_id)
    except SessionNotFoundError as exc:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc)) from exc
    return {"ended": session_id}
