"""
OpenAI-backed query generator.

Implements ``QueryGenerator`` (generate / regenerate / explain) and
``TextCompleter`` (free-form completion for result analysis) on top of
``services.llm``.  The dialect (KQL or SQL) is fixed per instance.
"""

from __future__ import annotations

from typing import Any

from telemetry_copilot.analysis.extraction import strip_fences
from telemetry_copilot.core.errors import GenerationError
from telemetry_copilot.core.logging import get_logger
from telemetry_copilot.refinement.models import (
    Candidate,
    ExplanationOptions,
    RegenerationContext,
)
from telemetry_copilot.services import llm, prompts
from telemetry_copilot.services.collaborators import QueryGenerator, TextCompleter

logger = get_logger(__name__)

# Confidence when the model does not report one
_FINISH_REASON_CONFIDENCE = {"stop": 0.85, "length": 0.6}
_DEFAULT_CONFIDENCE = 0.7

_ANALYST_SYSTEM = (
    "You are an application telemetry analyst. "
    "Follow the requested output format exactly."
)


def confidence_from(reported: Any, finish_reason: str | None) -> float:
    """Model-reported confidence clamped to [0, 1], else a finish-reason heuristic."""
    try:
        value = float(reported)
    except (TypeError, ValueError):
        return _FINISH_REASON_CONFIDENCE.get(finish_reason or "", _DEFAULT_CONFIDENCE)
    if value != value:  # NaN
        return _FINISH_REASON_CONFIDENCE.get(finish_reason or "", _DEFAULT_CONFIDENCE)
    return min(max(value, 0.0), 1.0)


def _query_from(payload: dict[str, Any]) -> str:
    for key in ("query", "kql", "sql"):
        value = payload.get(key)
        if isinstance(value, str) and value.strip():
            return strip_fences(value)
    return ""


class OpenAIQueryGenerator(QueryGenerator, TextCompleter):
    def __init__(self, *, dialect: str = "kql", model: str | None = None) -> None:
        self._dialect = dialect
        self._model = model

    async def _candidate(
        self, system: str, user: str, *, temperature: float, stage: str
    ) -> Candidate:
        try:
            resp = await llm.call_llm_json(system, user, model=self._model, temperature=temperature)
        except Exception as exc:
            logger.error("Query %s failed: %s", stage, exc)
            raise GenerationError(f"Query {stage} failed: {exc}") from exc

        payload = resp["result"]
        query = _query_from(payload)
        if not query:
            raise GenerationError(f"Model returned no query during {stage}")

        reasoning = payload.get("reasoning")
        candidate = Candidate(
            query_text=query,
            confidence=confidence_from(payload.get("confidence"), resp.get("finish_reason")),
            reasoning=str(reasoning) if reasoning else None,
        )
        logger.info(
            "Query %s: confidence=%.2f chars=%d", stage, candidate.confidence, len(query),
        )
        return candidate

    async def generate(self, question: str, schema: dict[str, Any] | None = None) -> Candidate:
        return await self._candidate(
            prompts.system_prompt(self._dialect, schema),
            prompts.generation_prompt(question),
            temperature=0.3,
            stage="generation",
        )

    async def regenerate(
        self,
        question: str,
        context: RegenerationContext,
        schema: dict[str, Any] | None = None,
    ) -> Candidate:
        # Higher temperature for a different approach
        return await self._candidate(
            prompts.system_prompt(self._dialect, schema),
            prompts.regeneration_prompt(question, context, self._dialect),
            temperature=0.5,
            stage="regeneration",
        )

    async def explain(self, query: str, options: ExplanationOptions) -> str:
        try:
            resp = await llm.call_llm_text(
                prompts.explanation_system_prompt(options, self._dialect),
                prompts.explanation_prompt(query),
                model=self._model,
                max_tokens=2000,
            )
        except Exception as exc:
            logger.error("Query explanation failed: %s", exc)
            raise GenerationError(f"Query explanation failed: {exc}") from exc

        text = resp["text"].strip()
        if not text:
            raise GenerationError("Model returned an empty explanation")
        return text

    async def complete(self, prompt: str) -> str:
        resp = await llm.call_llm_text(_ANALYST_SYSTEM, prompt, model=self._model, max_tokens=2000)
        return resp["text"]
