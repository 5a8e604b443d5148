"""
AI-assisted pattern and insight extraction.

Sends a compact result summary to the text-completion collaborator and
turns whatever comes back into typed records.  Degradation rules:

    • no JSON object in the response   → the text itself is the insight
    • JSON that does not parse/validate → placeholder "unavailable" insight
    • provider exception               → placeholder "unavailable" insight

Neither public method raises.
"""

from __future__ import annotations

from dataclasses import dataclass, field

from telemetry_copilot.analysis.extraction import Malformed, parse_model_output
from telemetry_copilot.analysis.models import (
    Anomaly,
    BusinessInsights,
    Correlation,
    FollowUpQuery,
    PatternAnalysis,
    Trend,
)
from telemetry_copilot.analysis.schemas import InsightResponse, PatternResponse
from telemetry_copilot.core.logging import get_logger
from telemetry_copilot.services.collaborators import TextCompleter
from telemetry_copilot.services.prompts import (
    data_summary,
    insights_prompt,
    pattern_analysis_prompt,
)
from telemetry_copilot.services.results import ExecutionResult

logger = get_logger(__name__)

UNAVAILABLE_MESSAGE = "AI insights temporarily unavailable. Please try again later."


@dataclass
class InsightExtraction:
    ai_insights: str
    business_insights: BusinessInsights = field(default_factory=BusinessInsights)
    recommendations: list[str] = field(default_factory=list)
    follow_up_queries: list[FollowUpQuery] = field(default_factory=list)
    degraded: bool = False


class InsightExtractor:
    def __init__(
        self,
        completer: TextCompleter,
        *,
        dialect: str = "kql",
        sample_rows: int = 5,
        language: str | None = None,
    ) -> None:
        self._completer = completer
        self._dialect = dialect
        self._sample_rows = sample_rows
        self._language = language

    async def extract_patterns(
        self, result: ExecutionResult, original_query: str
    ) -> PatternAnalysis:
        prompt = pattern_analysis_prompt(data_summary(result, self._sample_rows), original_query)
        try:
            response = await self._completer.complete(prompt)
        except Exception:
            logger.warning("Pattern analysis call failed; returning empty patterns", exc_info=True)
            return PatternAnalysis()

        outcome = parse_model_output(response, PatternResponse)
        if isinstance(outcome, Malformed):
            logger.warning("Pattern analysis response unusable: %s", outcome.reason)
            return PatternAnalysis()

        payload = outcome.value
        return PatternAnalysis(
            trends=[
                Trend(description=t.description, confidence=t.confidence, visualization=t.visualization)
                for t in payload.trends
            ],
            anomalies=[
                Anomaly(
                    type=a.type,
                    description=a.description,
                    severity=a.severity,
                    affected_rows=list(a.affected_rows),
                )
                for a in payload.anomalies
            ],
            correlations=[
                Correlation(columns=list(c.columns), coefficient=c.coefficient, significance=c.significance)
                for c in payload.correlations
            ],
        )

    async def extract_insights(
        self, result: ExecutionResult, original_query: str
    ) -> InsightExtraction:
        prompt = insights_prompt(
            data_summary(result, self._sample_rows),
            original_query,
            self._dialect,
            self._language,
        )
        try:
            response = await self._completer.complete(prompt)
        except Exception:
            logger.warning("Insight generation call failed", exc_info=True)
            return InsightExtraction(ai_insights=UNAVAILABLE_MESSAGE, degraded=True)

        outcome = parse_model_output(response, InsightResponse)
        if isinstance(outcome, Malformed):
            if not outcome.had_json and outcome.raw_text.strip():
                # Plain prose answer: show it as-is
                return InsightExtraction(ai_insights=outcome.raw_text.strip())
            logger.warning("Insight response unusable: %s", outcome.reason)
            return InsightExtraction(ai_insights=UNAVAILABLE_MESSAGE, degraded=True)

        payload = outcome.value
        return InsightExtraction(
            ai_insights=payload.summary or _render_findings(payload),
            business_insights=BusinessInsights(
                key_findings=list(payload.key_findings),
                potential_issues=list(payload.potential_issues),
                opportunities=list(payload.opportunities),
            ),
            recommendations=list(payload.recommendations),
            follow_up_queries=[
                FollowUpQuery(query=f.query, purpose=f.purpose, priority=f.priority)
                for f in payload.follow_up_queries
                if f.query.strip()
            ],
        )


def _render_findings(payload: InsightResponse) -> str:
    """Fallback prose when the model omitted ``summary``."""
    lines = [f"• {finding}" for finding in payload.key_findings]
    lines += [f"• Issue: {issue}" for issue in payload.potential_issues]
    return "\n".join(lines) or "No notable insights were found in this result."
