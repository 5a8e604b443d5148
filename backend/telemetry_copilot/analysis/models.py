"""
Result types produced by the analysis engine.

``AnalysisResult`` is sparse: only the sub-records for the requested
mode are populated, everything else stays ``None``.
"""

from __future__ import annotations

from dataclasses import dataclass, field, fields, is_dataclass
from datetime import datetime
from enum import Enum
from typing import Any


class AnalysisMode(str, Enum):
    STATISTICAL = "statistical"
    PATTERNS = "patterns"
    ANOMALIES = "anomalies"
    INSIGHTS = "insights"
    FULL = "full"


class Priority(str, Enum):
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"

    @property
    def rank(self) -> int:
        return {"high": 0, "medium": 1, "low": 2}[self.value]


# ── Statistics ───────────────────────────────────────────────────


@dataclass
class Summary:
    total_rows: int = 0
    unique_values: dict[str, int] = field(default_factory=dict)
    null_percentage: dict[str, float] = field(default_factory=dict)


@dataclass
class NumericalStats:
    column: str
    mean: float
    median: float
    std_dev: float
    outliers: list[float] = field(default_factory=list)
    distribution: str = "unknown"  # normal | skewed | uniform | unknown


@dataclass
class TimeRange:
    start: datetime
    end: datetime


@dataclass
class Gap:
    start: datetime
    end: datetime

    @property
    def duration_seconds(self) -> float:
        return (self.end - self.start).total_seconds()


@dataclass
class TemporalStats:
    column: str
    time_range: TimeRange
    trend: str = "unknown"  # increasing | decreasing | stable | seasonal | unknown
    gaps: list[Gap] = field(default_factory=list)


@dataclass
class StatisticalAnalysis:
    summary: Summary
    numerical: NumericalStats | None = None
    temporal: TemporalStats | None = None


# ── AI-derived records ───────────────────────────────────────────


@dataclass
class Trend:
    description: str
    confidence: float | None = None
    visualization: str | None = None


@dataclass
class Anomaly:
    type: str
    description: str
    severity: str = "medium"
    affected_rows: list[int] = field(default_factory=list)


@dataclass
class Correlation:
    columns: list[str]
    coefficient: float | None = None
    significance: str | None = None


@dataclass
class PatternAnalysis:
    trends: list[Trend] = field(default_factory=list)
    anomalies: list[Anomaly] = field(default_factory=list)
    correlations: list[Correlation] = field(default_factory=list)


@dataclass
class DataQuality:
    completeness: float = 0.0
    consistency: list[str] = field(default_factory=list)
    recommendations: list[str] = field(default_factory=list)


@dataclass
class BusinessInsights:
    key_findings: list[str] = field(default_factory=list)
    potential_issues: list[str] = field(default_factory=list)
    opportunities: list[str] = field(default_factory=list)


@dataclass
class FollowUpQuery:
    query: str
    purpose: str
    priority: Priority = Priority.MEDIUM


@dataclass
class ContextualInsights:
    data_quality: DataQuality = field(default_factory=DataQuality)
    business_insights: BusinessInsights = field(default_factory=BusinessInsights)
    follow_up_queries: list[FollowUpQuery] = field(default_factory=list)


@dataclass
class AnalysisResult:
    statistical: StatisticalAnalysis | None = None
    patterns: PatternAnalysis | None = None
    insights: ContextualInsights | None = None
    ai_insights: str | None = None
    recommendations: list[str] | None = None
    follow_up_queries: list[FollowUpQuery] | None = None

    def to_dict(self) -> dict[str, Any]:
        """JSON-safe dict; absent sub-records are dropped."""
        return {k: v for k, v in _jsonable(self).items() if v is not None}


def sort_follow_ups(queries: list[FollowUpQuery]) -> list[FollowUpQuery]:
    """Highest priority first; order within a priority is preserved."""
    return sorted(queries, key=lambda q: q.priority.rank)


def _jsonable(value: Any) -> Any:
    if is_dataclass(value) and not isinstance(value, type):
        return {f.name: _jsonable(getattr(value, f.name)) for f in fields(value)}
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, datetime):
        return value.isoformat()
    if isinstance(value, dict):
        return {k: _jsonable(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [_jsonable(v) for v in value]
    return value
