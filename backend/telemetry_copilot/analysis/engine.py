"""
Analysis engine – composes statistics and AI extraction by mode.

    statistical → statistics only (no model call)
    patterns    → AI trends / anomalies / correlations
    anomalies   → AI anomalies only
    insights    → data quality + AI business insights
    full        → everything

Non-statistical modes also carry rule-based recommendations and
follow-up queries, merged with whatever the model suggested and sorted
by priority.
"""

from __future__ import annotations

import time
from dataclasses import dataclass, replace
from datetime import timedelta

from telemetry_copilot.analysis.insights import InsightExtractor
from telemetry_copilot.analysis.models import (
    AnalysisMode,
    AnalysisResult,
    ContextualInsights,
    DataQuality,
    FollowUpQuery,
    NumericalStats,
    PatternAnalysis,
    Priority,
    StatisticalAnalysis,
    TemporalStats,
    sort_follow_ups,
)
from telemetry_copilot.analysis.statistics import (
    StatisticsPolicy,
    bucket_hint,
    compute_statistics,
)
from telemetry_copilot.core.logging import get_logger
from telemetry_copilot.services.results import ExecutionResult

logger = get_logger(__name__)

LARGE_RESULT_ROWS = 10_000
OUTLIER_SHARE_LIMIT = 0.1
NULL_HEAVY_PERCENT = 50.0
COMPLETENESS_TARGET = 80.0


@dataclass(frozen=True)
class AnalysisOptions:
    include_recommendations: bool = True
    include_follow_ups: bool = True


class AnalysisEngine:
    def __init__(
        self,
        extractor: InsightExtractor,
        *,
        statistics_policy: StatisticsPolicy | None = None,
        dialect: str = "kql",
    ) -> None:
        self._extractor = extractor
        self._policy = statistics_policy or StatisticsPolicy()
        self._dialect = dialect

    async def analyze(
        self,
        result: ExecutionResult,
        original_query: str,
        mode: AnalysisMode | str,
        options: AnalysisOptions | None = None,
    ) -> AnalysisResult:
        """
        Run the sub-analyses *mode* asks for.

        Raises ValueError for an unknown mode; model failures only
        degrade the AI parts.
        """
        mode = AnalysisMode(mode)
        options = options or AnalysisOptions()
        t0 = time.perf_counter()

        stats = compute_statistics(result, self._policy)
        analysis = AnalysisResult()

        if mode in (AnalysisMode.STATISTICAL, AnalysisMode.FULL):
            analysis.statistical = stats

        if mode in (AnalysisMode.PATTERNS, AnalysisMode.FULL):
            analysis.patterns = await self._extractor.extract_patterns(result, original_query)
        elif mode is AnalysisMode.ANOMALIES:
            patterns = await self._extractor.extract_patterns(result, original_query)
            analysis.patterns = PatternAnalysis(anomalies=patterns.anomalies)

        ai_recommendations: list[str] = []
        ai_follow_ups: list[FollowUpQuery] = []
        if mode in (AnalysisMode.INSIGHTS, AnalysisMode.FULL):
            extraction = await self._extractor.extract_insights(result, original_query)
            ai_recommendations = extraction.recommendations
            ai_follow_ups = extraction.follow_up_queries
            analysis.ai_insights = extraction.ai_insights
            analysis.insights = ContextualInsights(
                data_quality=assess_data_quality(result, stats),
                business_insights=extraction.business_insights,
            )

        if mode is not AnalysisMode.STATISTICAL:
            if options.include_recommendations:
                analysis.recommendations = recommend(stats) + ai_recommendations
            if options.include_follow_ups:
                follow_ups = sort_follow_ups(
                    self._rule_follow_ups(stats, original_query) + ai_follow_ups
                )
                analysis.follow_up_queries = follow_ups
                if analysis.insights is not None:
                    analysis.insights = replace(analysis.insights, follow_up_queries=list(follow_ups))

        logger.info(
            "Analysis complete: mode=%s rows=%d ms=%d",
            mode.value, stats.summary.total_rows, round((time.perf_counter() - t0) * 1000),
        )
        return analysis

    # ── Rule-based follow-ups ────────────────────────────────────

    def _rule_follow_ups(self, stats: StatisticalAnalysis, original_query: str) -> list[FollowUpQuery]:
        base = original_query.strip().rstrip(";").rstrip()
        if not base:
            return []

        queries: list[FollowUpQuery] = []
        if stats.numerical is not None and stats.numerical.outliers:
            queries.append(FollowUpQuery(
                query=self._outlier_query(base, stats.numerical),
                purpose=f"Investigate outlier values in {stats.numerical.column}",
                priority=Priority.MEDIUM,
            ))
        if stats.temporal is not None:
            queries.append(FollowUpQuery(
                query=self._bucket_query(base, stats.temporal),
                purpose="Analyze temporal distribution",
                priority=Priority.LOW,
            ))
        return queries

    def _outlier_query(self, base: str, numerical: NumericalStats) -> str:
        threshold = round(numerical.mean + self._policy.outlier_multiplier * numerical.std_dev, 2)
        if self._dialect == "sql":
            return f'SELECT * FROM ({base}) AS q WHERE q."{numerical.column}" > {threshold}'
        return f"{base}\n| where {_kql_name(numerical.column)} > {threshold}"

    def _bucket_query(self, base: str, temporal: TemporalStats) -> str:
        bucket = bucket_hint(temporal.time_range)
        if self._dialect == "sql":
            return (
                f"SELECT date_trunc('{_sql_trunc_unit(bucket)}', q.\"{temporal.column}\") AS bucket, "
                f"count(*) AS events FROM ({base}) AS q GROUP BY 1 ORDER BY 1"
            )
        return f"{base}\n| summarize count() by bin({_kql_name(temporal.column)}, {_kql_timespan(bucket)})"


# ── Deterministic assessments ────────────────────────────────────


def recommend(stats: StatisticalAnalysis) -> list[str]:
    total = stats.summary.total_rows
    recommendations: list[str] = []
    if total == 0:
        recommendations.append("No data returned - consider adjusting your query criteria")
    elif total > LARGE_RESULT_ROWS:
        recommendations.append("Large dataset returned - consider adding filters to improve performance")

    outliers = len(stats.numerical.outliers) if stats.numerical else 0
    if outliers and outliers > total * OUTLIER_SHARE_LIMIT:
        recommendations.append("High number of outliers detected - investigate data quality")
    return recommendations


def assess_data_quality(result: ExecutionResult, stats: StatisticalAnalysis) -> DataQuality:
    """Completeness = share of columns that are at most half null."""
    table = result.first_table
    total_columns = len(table.columns) if table else 0
    null_heavy = sum(1 for p in stats.summary.null_percentage.values() if p > NULL_HEAVY_PERCENT)
    completeness = (total_columns - null_heavy) / total_columns * 100 if total_columns else 0.0

    consistency: list[str] = []
    recommendations: list[str] = []
    if total_columns and completeness < COMPLETENESS_TARGET:
        consistency.append("High percentage of null values detected")
        recommendations.append("Consider filtering out incomplete records")
    if stats.numerical is not None and stats.numerical.outliers:
        consistency.append("Outliers detected in numerical data")
        recommendations.append("Investigate outlier values for data quality issues")
    if stats.temporal is not None and stats.temporal.gaps:
        consistency.append(f"{len(stats.temporal.gaps)} gap(s) in the time series")
        recommendations.append("Check for ingestion delays or sampling around the gaps")

    return DataQuality(
        completeness=round(completeness, 1),
        consistency=consistency,
        recommendations=recommendations,
    )


# ── Dialect helpers ──────────────────────────────────────────────


def _kql_name(column: str) -> str:
    if column.replace("_", "").isalnum() and not column[:1].isdigit():
        return column
    return f"['{column}']"


def _kql_timespan(bucket: timedelta) -> str:
    seconds = int(bucket.total_seconds())
    for unit, size in (("d", 86400), ("h", 3600), ("m", 60)):
        if seconds % size == 0:
            return f"{seconds // size}{unit}"
    return f"{seconds}s"


def _sql_trunc_unit(bucket: timedelta) -> str:
    seconds = bucket.total_seconds()
    if seconds < 3600:
        return "minute"
    if seconds < 86400:
        return "hour"
    if seconds < 7 * 86400:
        return "day"
    return "week"
