"""
Refinement engine – the I/O shell around the pure transitions.

Flow for one session:

    start_refinement ─► Reviewing ──┬─ explain / edit / regenerate / history ─► Reviewing
                                    ├─ execute ─► Executed  (optionally analysed)
                                    │           └─► Failed  (executor raised)
                                    └─ cancel  ─► Cancelled

Collaborator failures during explain/regenerate keep the previous
candidate and come back as ``ActOutcome.error``.  Execution failures
move the session to ``Failed`` and propagate to the caller unchanged.
Any action on a terminal session raises ``InvalidTransitionError``.
"""

from __future__ import annotations

import time
import uuid
from dataclasses import dataclass, field
from typing import Any

from telemetry_copilot.analysis.engine import AnalysisEngine
from telemetry_copilot.analysis.models import AnalysisMode, AnalysisResult
from telemetry_copilot.core.errors import GenerationError, InvalidTransitionError
from telemetry_copilot.core.logging import get_logger
from telemetry_copilot.refinement import transitions
from telemetry_copilot.refinement.models import (
    ActionKind,
    ActionRecord,
    Candidate,
    ExplanationOptions,
    RefinementAction,
    RefinementPolicy,
    TechnicalLevel,
)
from telemetry_copilot.refinement.session import RefinementSession
from telemetry_copilot.refinement.state import Executed, RefinementState, Reviewing
from telemetry_copilot.services.collaborators import DataExecutor, QueryGenerator
from telemetry_copilot.services.observability import NoOpTracer, get_tracer, span_scope
from telemetry_copilot.services.results import ExecutionResult

logger = get_logger(__name__)


@dataclass
class ActOutcome:
    """What the caller needs to render after one action."""

    state: RefinementState
    candidate: Candidate
    history: list[ActionRecord] = field(default_factory=list)
    available_actions: list[RefinementAction] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)
    result: ExecutionResult | None = None
    execution_time_ms: int | None = None
    explanation: str | None = None
    analysis: AnalysisResult | None = None
    error: str | None = None


class RefinementEngine:
    def __init__(
        self,
        generator: QueryGenerator,
        executor: DataExecutor,
        policy: RefinementPolicy | None = None,
        *,
        analysis_engine: AnalysisEngine | None = None,
        tracer: NoOpTracer | None = None,
    ) -> None:
        self._generator = generator
        self._executor = executor
        self._policy = policy or RefinementPolicy()
        self._analysis = analysis_engine
        self._tracer = tracer
        self._schema: dict[str, Any] | None = None
        self._schema_loaded = False

    @property
    def policy(self) -> RefinementPolicy:
        return self._policy

    @property
    def tracer(self) -> NoOpTracer:
        if self._tracer is None:
            self._tracer = get_tracer()
        return self._tracer

    # ── Session start ────────────────────────────────────────────

    async def start_refinement(
        self, question: str, schema: dict[str, Any] | None = None
    ) -> RefinementSession:
        """
        Generate the first candidate and open a session in ``Reviewing``.

        Raises ValueError for an empty question and GenerationError when
        the generator cannot produce a first candidate.
        """
        question = (question or "").strip()
        if not question:
            raise ValueError("Question must not be empty")

        if schema is None:
            schema = await self._load_schema()

        session_id = uuid.uuid4().hex
        session_trace = self.tracer.start_trace(
            name="refinement", session_id=session_id, metadata={"question_chars": len(question)},
        )
        span = self.tracer.start_span(session_trace, name="generate", input={"question": question})
        try:
            with span_scope(span):
                candidate = await self._generator.generate(question, schema)
        except Exception as exc:
            logger.error("Initial generation failed: %s", exc)
            self.tracer.end_span(span, level="ERROR", status_message=str(exc)[:500])
            self.tracer.finalize_trace(session_trace, level="ERROR")
            if isinstance(exc, GenerationError):
                raise
            raise GenerationError(f"Query generation failed: {exc}") from exc
        self.tracer.end_span(span, output={"query": candidate.query_text, "confidence": candidate.confidence})

        session = RefinementSession(
            id=session_id,
            question=question,
            schema=schema,
            state=Reviewing(candidate=candidate, attempt_number=1),
            trace=session_trace,
        )
        self._record(session, candidate, ActionKind.GENERATED)
        logger.info(
            "Refinement started: confidence=%.2f", candidate.confidence,
            extra={"session_id": session.id},
        )
        return session

    async def _load_schema(self) -> dict[str, Any] | None:
        if not self._schema_loaded:
            self._schema = await self._executor.get_schema()
            self._schema_loaded = True
        return self._schema

    # ── Actions ──────────────────────────────────────────────────

    async def act(
        self,
        session: RefinementSession,
        action: RefinementAction | str,
        payload: dict[str, Any] | None = None,
    ) -> ActOutcome:
        """
        Apply *action* to *session* and describe the result.

        Actions on one session run one at a time; an action that waited
        behind an execute or cancel sees the terminal state and fails.
        """
        action = RefinementAction(action)
        payload = payload or {}
        handler = {
            RefinementAction.EXECUTE: self._execute,
            RefinementAction.EXPLAIN: self._explain,
            RefinementAction.REGENERATE: self._regenerate,
            RefinementAction.EDIT: self._edit,
            RefinementAction.HISTORY: self._history,
            RefinementAction.CANCEL: self._cancel,
        }[action]

        async with session.lock:
            if session.is_terminal:
                raise InvalidTransitionError(
                    f"Cannot {action.value}: session is already {session.state.name}"
                )
            logger.info(
                "Refinement action", extra={"session_id": session.id, "action": action.value},
            )
            session.touch()
            return await handler(session, payload)

    def describe(self, session: RefinementSession, **extra: Any) -> ActOutcome:
        """Snapshot of *session* as an outcome (used after start and on reads)."""
        state = session.state
        outcome = ActOutcome(
            state=state,
            candidate=state.candidate,
            history=list(session.history),
            available_actions=transitions.available_actions(state, self._policy),
            **extra,
        )
        if isinstance(state, Reviewing):
            outcome.warnings = transitions.confidence_warnings(state.candidate, self._policy) + outcome.warnings
        if isinstance(state, Executed):
            outcome.result = state.result
            outcome.execution_time_ms = state.execution_time_ms
        return outcome

    async def _execute(self, session: RefinementSession, payload: dict[str, Any]) -> ActOutcome:
        mode = payload.get("analysis_mode")
        analysis_mode = AnalysisMode(mode) if mode else None

        candidate = session.candidate
        span = self.tracer.start_span(session.trace, name="execute", input={"query": candidate.query_text})
        t0 = time.perf_counter()
        try:
            result = await self._executor.execute(candidate.query_text)
        except Exception as exc:
            logger.error(
                "Query execution failed: %s", exc, extra={"session_id": session.id},
            )
            self.tracer.end_span(span, level="ERROR", status_message=str(exc)[:500])
            session.state = transitions.apply_failed(session.state, str(exc))
            self.tracer.finalize_trace(session.trace, output={"state": "failed"}, level="ERROR")
            raise
        elapsed_ms = round((time.perf_counter() - t0) * 1000)
        self.tracer.end_span(span, output={"rows": result.total_rows, "ms": elapsed_ms})

        session.state = transitions.apply_executed(
            session.state, result, elapsed_ms, candidate=candidate,
        )
        self._record(
            session, candidate, ActionKind.EXECUTED,
            reason=f"{result.total_rows} rows in {elapsed_ms} ms",
        )
        logger.info(
            "Query executed: rows=%d ms=%d", result.total_rows, elapsed_ms,
            extra={"session_id": session.id},
        )

        analysis = None
        warnings: list[str] = []
        if analysis_mode is not None:
            if self._analysis is None:
                warnings.append("Result analysis is not configured; skipped.")
            else:
                analysis = await self._analyze(session, result, analysis_mode)

        self.tracer.finalize_trace(session.trace, output={"state": "executed", "rows": result.total_rows})
        return self.describe(session, analysis=analysis, warnings=warnings)

    async def _analyze(
        self, session: RefinementSession, result: ExecutionResult, mode: AnalysisMode
    ) -> AnalysisResult:
        span = self.tracer.start_span(session.trace, name="analyze", input={"mode": mode.value})
        with span_scope(span):
            analysis = await self._analysis.analyze(result, session.candidate.query_text, mode)
        self.tracer.end_span(span, output={"sections": sorted(analysis.to_dict())})
        return analysis

    async def _explain(self, session: RefinementSession, payload: dict[str, Any]) -> ActOutcome:
        candidate = session.candidate
        try:
            options = self._explanation_options(payload)
        except ValueError as exc:
            return self.describe(session, error=str(exc))

        span = self.tracer.start_span(
            session.trace, name="explain",
            input={"language": options.language, "level": options.technical_level.value},
        )
        try:
            with span_scope(span):
                explanation = await self._generator.explain(candidate.query_text, options)
        except Exception as exc:
            logger.warning(
                "Explanation failed: %s", exc, extra={"session_id": session.id},
            )
            self.tracer.end_span(span, level="WARNING", status_message=str(exc)[:500])
            return self.describe(session, error=f"Explanation failed: {exc}")
        self.tracer.end_span(span, output={"chars": len(explanation)})

        self._record(session, candidate, ActionKind.EXPLAINED)
        return self.describe(session, explanation=explanation)

    def _explanation_options(self, payload: dict[str, Any]) -> ExplanationOptions:
        defaults = self._policy.explanation
        level = payload.get("technical_level")
        include = payload.get("include_examples")
        try:
            technical_level = TechnicalLevel(level) if level else defaults.technical_level
        except ValueError:
            raise ValueError(f"Unknown technical level: {level}") from None
        return ExplanationOptions(
            language=payload.get("language") or defaults.language,
            technical_level=technical_level,
            include_examples=defaults.include_examples if include is None else bool(include),
        )

    async def _regenerate(self, session: RefinementSession, payload: dict[str, Any]) -> ActOutcome:
        if not transitions.can_regenerate(session.state, self._policy):
            self.tracer.log_event(session.trace, name="regeneration_limit", level="WARNING")
            return self.describe(
                session,
                error=f"Regeneration limit reached ({self._policy.max_regeneration_attempts} attempts)",
            )

        context = transitions.next_regeneration_context(session.state, self._policy)
        logger.info(
            "Regenerating query", extra={"session_id": session.id, "attempt": context.attempt_number},
        )
        span = self.tracer.start_span(
            session.trace, name="regenerate", input={"attempt": context.attempt_number},
        )
        try:
            with span_scope(span):
                candidate = await self._generator.regenerate(session.question, context, session.schema)
        except Exception as exc:
            logger.warning(
                "Regeneration failed: %s", exc,
                extra={"session_id": session.id, "attempt": context.attempt_number},
            )
            self.tracer.end_span(span, level="WARNING", status_message=str(exc)[:500])
            session.state = transitions.consume_attempt(session.state, context)
            return self.describe(session, error=f"Regeneration failed: {exc}")
        self.tracer.end_span(span, output={"query": candidate.query_text, "confidence": candidate.confidence})

        session.state = transitions.apply_regenerated(session.state, context, candidate)
        self._record(
            session, candidate, ActionKind.REGENERATED, reason=f"attempt {context.attempt_number}",
        )
        return self.describe(session)

    async def _edit(self, session: RefinementSession, payload: dict[str, Any]) -> ActOutcome:
        if not self._policy.allow_editing:
            return self.describe(session, error="Query editing is disabled")

        new_state = transitions.apply_edit(session.state, payload.get("query"))
        if new_state is None:
            return self.describe(session, error="Edited query is empty or unchanged; nothing applied")

        session.state = new_state
        self._record(session, new_state.candidate, ActionKind.EDITED)
        return self.describe(session)

    async def _history(self, session: RefinementSession, payload: dict[str, Any]) -> ActOutcome:
        index = payload.get("index")
        if index is None:
            return self.describe(session)

        if isinstance(index, bool) or not isinstance(index, int) or not 0 <= index < len(session.history):
            return self.describe(session, error=f"No history entry at index {index}")

        record = session.history[index]
        session.state = transitions.apply_history_selection(session.state, record)
        self.tracer.log_event(session.trace, name="history_restore", metadata={"index": index})
        logger.info(
            "Restored query from history (%s)", record.action.value,
            extra={"session_id": session.id},
        )
        return self.describe(session)

    async def _cancel(self, session: RefinementSession, payload: dict[str, Any]) -> ActOutcome:
        session.state = transitions.apply_cancel(session.state)
        self.tracer.finalize_trace(session.trace, output={"state": "cancelled"})
        logger.info("Refinement cancelled", extra={"session_id": session.id})
        return self.describe(session)

    # ── History ──────────────────────────────────────────────────

    def _record(
        self,
        session: RefinementSession,
        candidate: Candidate,
        kind: ActionKind,
        reason: str | None = None,
    ) -> None:
        record = ActionRecord(
            query=candidate.query_text,
            confidence=candidate.confidence,
            action=kind,
            reason=reason,
        )
        session.history = transitions.append_record(
            session.history, record, self._policy.history_max_entries,
        )
