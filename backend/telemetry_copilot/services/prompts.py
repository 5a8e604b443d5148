"""
Prompt builders for query generation, explanation and result analysis.

Everything here returns plain strings; the generator and the insight
extractor decide how to send them.
"""

from __future__ import annotations

import json
from typing import Any

from telemetry_copilot.refinement.models import (
    ExplanationOptions,
    RegenerationContext,
    TechnicalLevel,
)
from telemetry_copilot.services.results import ExecutionResult, serialise


# ── Query generation ─────────────────────────────────────────────


_KQL_SYSTEM = (
    "You are an expert in Azure Application Insights KQL (Kusto Query Language).\n"
    "Convert natural language questions into valid KQL queries for Application Insights.\n"
    "Rules:\n"
    "- Generate only valid KQL syntax. Read-only: no control commands (lines starting with '.').\n"
    "- Use the standard tables (requests, dependencies, exceptions, traces, pageViews, "
    "customEvents, performanceCounters, availabilityResults).\n"
    "- Filter early, e.g. 'where timestamp > ago(1h)', before summarize/sort.\n"
    "- Use summarize for aggregations and extend for calculated columns.\n"
    "- Keep result sets small (take/top) unless the question needs everything.\n"
)

_SQL_SYSTEM = (
    "You are a PostgreSQL query generator for an application telemetry store.\n"
    "Convert natural language questions into a single read-only SELECT statement.\n"
    "Rules:\n"
    "- One statement only. SELECT or WITH ... SELECT. No DDL/DML.\n"
    "- Filter on the timestamp column early and aggregate with GROUP BY where appropriate.\n"
    "- Alias computed columns with readable names.\n"
    "- Include ORDER BY and a reasonable LIMIT.\n"
)

_RESPONSE_FORMAT = (
    "Return JSON with exactly these keys:\n"
    '{{"query": "<the {dialect} query>", "confidence": 0.0-1.0, '
    '"reasoning": "<one or two sentences on the approach>"}}'
)


def dialect_label(dialect: str) -> str:
    return "SQL" if dialect == "sql" else "KQL"


def system_prompt(dialect: str, schema: dict[str, Any] | None = None) -> str:
    """System prompt for first generation and regeneration."""
    prompt = _SQL_SYSTEM if dialect == "sql" else _KQL_SYSTEM
    prompt += "\n" + _RESPONSE_FORMAT.format(dialect=dialect_label(dialect))
    if schema:
        prompt += "\n\nAvailable schema:\n" + json.dumps(schema, indent=2, default=str)
    return prompt


def generation_prompt(question: str) -> str:
    return f"Question: {question}"


def regeneration_prompt(question: str, context: RegenerationContext, dialect: str) -> str:
    """Ask for a meaningfully different query than the previous attempt."""
    lines = [
        f"Question: {question}",
        "",
        f"Previous {dialect_label(dialect)} (attempt {context.attempt_number - 1}):",
        context.previous_query_text,
    ]
    if context.previous_reasoning:
        lines += ["", f"Previous reasoning: {context.previous_reasoning}"]
    lines += [
        "",
        "Provide a DIFFERENT approach or query structure. Consider:",
        "- alternative tables or joins",
        "- different aggregation methods",
        "- alternative time ranges or filters",
        "- different performance trade-offs",
        "The new query must still answer the original question.",
    ]
    return "\n".join(lines)


# ── Explanation ──────────────────────────────────────────────────


_LANGUAGE_INSTRUCTIONS = {
    "ja": "日本語で回答してください。技術用語は英語と日本語の両方を併記してください。",
    "ko": "한국어로 답변해 주세요. 기술 용어는 영어와 한국어를 모두 병기해 주세요.",
    "zh": "请用中文回答。技术术语请同时提供英文和中文。",
    "es": "Responde en español. Para términos técnicos, incluye también la versión en inglés.",
    "fr": "Répondez en français. Pour les termes techniques, indiquez aussi la version anglaise.",
    "de": "Antworten Sie auf Deutsch. Geben Sie technische Begriffe auch auf Englisch an.",
    "en": "Respond in English.",
}

_LANGUAGE_ALIASES = {
    "japanese": "ja", "korean": "ko", "chinese": "zh",
    "spanish": "es", "french": "fr", "german": "de", "english": "en",
}

_LEVEL_INSTRUCTIONS = {
    TechnicalLevel.BEGINNER: (
        "Use simple language and explain basic concepts. Focus on what the "
        "query does rather than implementation details. Avoid jargon."
    ),
    TechnicalLevel.INTERMEDIATE: (
        "Describe what each part does, with some detail on how the operators "
        "work and basic performance considerations."
    ),
    TechnicalLevel.ADVANCED: (
        "Include performance implications, alternative approaches and their "
        "trade-offs, advanced features and likely edge cases."
    ),
}


def language_instruction(language: str) -> str:
    code = (language or "en").strip().lower()
    code = _LANGUAGE_ALIASES.get(code, code)
    return _LANGUAGE_INSTRUCTIONS.get(code, _LANGUAGE_INSTRUCTIONS["en"])


def explanation_system_prompt(options: ExplanationOptions, dialect: str) -> str:
    label = dialect_label(dialect)
    examples = (
        "Provide practical examples when helpful."
        if options.include_examples
        else "Keep it to explanations, without extended examples."
    )
    return (
        f"You are an expert in {label} for application telemetry.\n"
        f"Explain {label} queries clearly and accurately.\n\n"
        f"{language_instruction(options.language)}\n\n"
        f"{_LEVEL_INSTRUCTIONS[options.technical_level]}\n\n"
        "Cover:\n"
        "1. What the query does overall\n"
        "2. Each operator and function used\n"
        "3. What data it retrieves\n"
        "4. How the results are processed\n"
        "5. Any performance considerations\n\n"
        f"{examples}"
    )


def explanation_prompt(query: str) -> str:
    return f"Explain this query:\n\n{query}"


# ── Result analysis ──────────────────────────────────────────────


def data_summary(result: ExecutionResult, sample_rows: int = 5) -> dict[str, Any]:
    """Compact, JSON-safe description of a result for analysis prompts."""
    table = result.first_table
    if table is None:
        return {"tableCount": 0, "totalRows": 0}
    return {
        "tableCount": len(result.tables),
        "columns": [{"name": c.name, "type": c.type} for c in table.columns],
        "totalRows": result.total_rows,
        "sampleRows": [
            [serialise(v) for v in row] for row in table.rows[: max(0, sample_rows)]
        ],
    }


def pattern_analysis_prompt(summary: dict[str, Any], original_query: str) -> str:
    return (
        "Analyze this telemetry query result for patterns and anomalies.\n\n"
        f'Query: "{original_query}"\n'
        f"Data summary: {json.dumps(summary, indent=2, default=str)}\n\n"
        "Identify:\n"
        "1. Notable patterns or trends in the data\n"
        "2. Any anomalies or outliers (be specific about values and row indexes)\n"
        "3. Correlations between columns, if any\n\n"
        "Respond with JSON only:\n"
        "{\n"
        '  "trends": [{"description": "...", "confidence": 0.8, "visualization": "..."}],\n'
        '  "anomalies": [{"type": "spike", "description": "...", "severity": "medium", "affectedRows": [1, 2]}],\n'
        '  "correlations": [{"columns": ["col1", "col2"], "coefficient": 0.7, "significance": "moderate"}]\n'
        "}"
    )


def insights_prompt(
    summary: dict[str, Any], original_query: str, dialect: str, language: str | None = None
) -> str:
    label = dialect_label(dialect)
    lang = f"{language_instruction(language)}\n\n" if language else ""
    return (
        "Analyze this application telemetry query result and provide "
        "actionable monitoring insights.\n\n"
        f'Query: "{original_query}"\n'
        f"Data summary: {json.dumps(summary, indent=2, default=str)}\n\n"
        f"{lang}"
        "Respond with JSON only:\n"
        "{\n"
        '  "summary": "two or three sentences in plain, business-friendly language",\n'
        '  "keyFindings": ["..."],\n'
        '  "potentialIssues": ["..."],\n'
        '  "opportunities": ["..."],\n'
        '  "recommendations": ["..."],\n'
        f'  "followUpQueries": [{{"query": "<{label}>", "purpose": "...", "priority": "high|medium|low"}}]\n'
        "}"
    )
