"""
Standalone result analysis.

    POST /api/analysis  {result, query, mode} → AnalysisResult
"""

from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException, status
from pydantic import BaseModel

from telemetry_copilot.analysis.engine import AnalysisEngine
from telemetry_copilot.analysis.models import AnalysisMode
from telemetry_copilot.api.dependencies import get_analysis_engine
from telemetry_copilot.services.results import ExecutionResult

router = APIRouter(tags=["analysis"])


class AnalysisRequest(BaseModel):
    result: dict
    query: str = ""
    mode: AnalysisMode = AnalysisMode.FULL


@router.post("/analysis")
async def analyze(
    body: AnalysisRequest,
    engine: AnalysisEngine = Depends(get_analysis_engine),
) -> dict:
    try:
        result = ExecutionResult.from_dict(body.result)
    except (AttributeError, TypeError, ValueError) as exc:
        raise HTTPException(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            detail=f"Invalid result: {exc}",
        ) from exc

    analysis = await engine.analyze(result, body.query, body.mode)
    return analysis.to_dict()
