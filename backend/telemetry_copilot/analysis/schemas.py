"""
Pydantic schemas for the JSON the model is asked to return.

Models are loose about casing (``affectedRows`` vs ``affected_rows``),
about ``null`` in place of an empty list, and about priority spelling,
so the schemas accept all of those.  Unknown keys are ignored.
"""

from __future__ import annotations

import math
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator

from telemetry_copilot.analysis.models import Priority

_SEVERITIES = {"low", "medium", "high"}


class _ModelPayload(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")


def _none_to_list(value: Any) -> Any:
    return [] if value is None else value


# ── Pattern analysis ─────────────────────────────────────────────


class TrendPayload(_ModelPayload):
    description: str
    confidence: float | None = Field(default=None, ge=0.0, le=1.0)
    visualization: str | None = None

    @field_validator("confidence", mode="before")
    @classmethod
    def _normalise_confidence(cls, v: Any) -> float | None:
        """Percentages (``85``) become fractions; junk becomes ``None``."""
        if v is None:
            return None
        try:
            value = float(v)
        except (TypeError, ValueError):
            return None
        if math.isnan(value):
            return None
        if value > 1.0:
            value /= 100.0
        return min(1.0, max(0.0, value))


class AnomalyPayload(_ModelPayload):
    type: str = "unknown"
    description: str
    severity: str = "medium"
    affected_rows: list[int] = Field(default_factory=list, alias="affectedRows")

    @field_validator("severity", mode="before")
    @classmethod
    def _normalise_severity(cls, v: Any) -> str:
        text = str(v or "").strip().lower()
        return text if text in _SEVERITIES else "medium"

    @field_validator("affected_rows", mode="before")
    @classmethod
    def _rows_or_empty(cls, v: Any) -> Any:
        return _none_to_list(v)


class CorrelationPayload(_ModelPayload):
    columns: list[str]
    coefficient: float | None = None
    significance: str | None = None


class PatternResponse(_ModelPayload):
    trends: list[TrendPayload] = Field(default_factory=list)
    anomalies: list[AnomalyPayload] = Field(default_factory=list)
    correlations: list[CorrelationPayload] = Field(default_factory=list)

    @field_validator("trends", "anomalies", "correlations", mode="before")
    @classmethod
    def _lists_or_empty(cls, v: Any) -> Any:
        return _none_to_list(v)


# ── Insights ─────────────────────────────────────────────────────


class FollowUpPayload(_ModelPayload):
    query: str
    purpose: str = ""
    priority: Priority = Priority.MEDIUM

    @field_validator("priority", mode="before")
    @classmethod
    def _normalise_priority(cls, v: Any) -> str:
        text = str(v or "").strip().lower()
        return text if text in Priority._value2member_map_ else Priority.MEDIUM.value


class InsightResponse(_ModelPayload):
    summary: str = ""
    key_findings: list[str] = Field(default_factory=list, alias="keyFindings")
    potential_issues: list[str] = Field(default_factory=list, alias="potentialIssues")
    opportunities: list[str] = Field(default_factory=list)
    recommendations: list[str] = Field(default_factory=list)
    follow_up_queries: list[FollowUpPayload] = Field(default_factory=list, alias="followUpQueries")

    @field_validator(
        "key_findings", "potential_issues", "opportunities",
        "recommendations", "follow_up_queries",
        mode="before",
    )
    @classmethod
    def _lists_or_empty(cls, v: Any) -> Any:
        return _none_to_list(v)
