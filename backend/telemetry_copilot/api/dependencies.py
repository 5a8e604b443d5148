"""
FastAPI dependencies for the shared engines and the session store.

Everything is built once in the app lifespan and parked on
``app.state``; a missing component means startup did not finish.
"""

from __future__ import annotations

from fastapi import HTTPException, Request

from telemetry_copilot.analysis.engine import AnalysisEngine
from telemetry_copilot.refinement.engine import RefinementEngine
from telemetry_copilot.refinement.store import SessionStore


def _from_state(request: Request, name: str, label: str):
    value = getattr(request.app.state, name, None)
    if value is None:
        raise HTTPException(status_code=503, detail=f"{label} not initialized")
    return value


def get_refinement_engine(request: Request) -> RefinementEngine:
    return _from_state(request, "refinement_engine", "Refinement engine")


def get_analysis_engine(request: Request) -> AnalysisEngine:
    return _from_state(request, "analysis_engine", "Analysis engine")


def get_session_store(request: Request) -> SessionStore:
    return _from_state(request, "session_store", "Session store")
