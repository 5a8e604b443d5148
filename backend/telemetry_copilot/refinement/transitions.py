"""
Pure transition functions for the refinement state machine.

Nothing here performs I/O.  The engine calls the collaborators and then
hands their output to these functions to compute the next state, so the
rules (regeneration ceiling, edit no-ops, terminal states) can be tested
without any fakes.

Applying a transition the current state does not allow raises
``InvalidTransitionError``; deciding whether to offer an action in the
first place is ``available_actions``' job.
"""

from __future__ import annotations

from telemetry_copilot.core.errors import InvalidTransitionError
from telemetry_copilot.refinement.models import (
    ActionRecord,
    Candidate,
    RefinementAction,
    RefinementPolicy,
    RegenerationContext,
)
from telemetry_copilot.refinement.state import (
    Cancelled,
    Executed,
    Failed,
    RefinementState,
    Reviewing,
)
from telemetry_copilot.services.results import ExecutionResult

LOW_CONFIDENCE_WARNING = (
    "This query has low confidence ({confidence:.0%}). "
    "Consider reviewing or regenerating it."
)


# ── Offers & warnings ────────────────────────────────────────────


def can_regenerate(state: RefinementState, policy: RefinementPolicy) -> bool:
    return (
        isinstance(state, Reviewing)
        and state.attempt_number < policy.max_regeneration_attempts
    )


def available_actions(state: RefinementState, policy: RefinementPolicy) -> list[RefinementAction]:
    """Actions to present for *state*, in menu order."""
    if not isinstance(state, Reviewing):
        return []

    actions = [RefinementAction.EXECUTE, RefinementAction.EXPLAIN]
    if can_regenerate(state, policy):
        actions.append(RefinementAction.REGENERATE)
    if policy.allow_editing:
        actions.append(RefinementAction.EDIT)
    actions.append(RefinementAction.HISTORY)
    actions.append(RefinementAction.CANCEL)
    return actions


def confidence_warnings(candidate: Candidate, policy: RefinementPolicy) -> list[str]:
    """Advisory only: a low score never blocks execution."""
    if candidate.confidence < policy.confidence_threshold:
        return [LOW_CONFIDENCE_WARNING.format(confidence=candidate.confidence)]
    return []


# ── Transitions ──────────────────────────────────────────────────


def _require_reviewing(state: RefinementState, action: RefinementAction) -> Reviewing:
    if not isinstance(state, Reviewing):
        raise InvalidTransitionError(
            f"Cannot {action.value}: session is already {state.name}"
        )
    return state


def next_regeneration_context(
    state: RefinementState, policy: RefinementPolicy
) -> RegenerationContext:
    """Context for the next regeneration attempt."""
    reviewing = _require_reviewing(state, RefinementAction.REGENERATE)
    if not can_regenerate(reviewing, policy):
        raise InvalidTransitionError(
            f"Regeneration limit reached ({policy.max_regeneration_attempts} attempts)"
        )
    return RegenerationContext(
        previous_query_text=reviewing.candidate.query_text,
        previous_reasoning=reviewing.candidate.reasoning,
        attempt_number=reviewing.attempt_number + 1,
    )


def apply_regenerated(
    state: RefinementState, context: RegenerationContext, candidate: Candidate
) -> Reviewing:
    _require_reviewing(state, RefinementAction.REGENERATE)
    return Reviewing(candidate=candidate, attempt_number=context.attempt_number)


def consume_attempt(state: RefinementState, context: RegenerationContext) -> Reviewing:
    """A failed regeneration keeps the candidate but still uses up the attempt."""
    reviewing = _require_reviewing(state, RefinementAction.REGENERATE)
    return Reviewing(candidate=reviewing.candidate, attempt_number=context.attempt_number)


def normalise_edit(state: RefinementState, query_text: str | None) -> str | None:
    """
    Return the trimmed replacement query, or ``None`` when the edit is a
    no-op (empty, or identical to the current query modulo whitespace).
    """
    reviewing = _require_reviewing(state, RefinementAction.EDIT)
    edited = (query_text or "").strip()
    if not edited or edited == reviewing.candidate.query_text.strip():
        return None
    return edited


def apply_edit(state: RefinementState, query_text: str | None) -> Reviewing | None:
    edited = normalise_edit(state, query_text)
    if edited is None:
        return None
    return Reviewing(candidate=Candidate.edited(edited), attempt_number=state.attempt_number)


def apply_history_selection(state: RefinementState, record: ActionRecord) -> Reviewing:
    reviewing = _require_reviewing(state, RefinementAction.HISTORY)
    candidate = Candidate(
        query_text=record.query,
        confidence=record.confidence,
        reasoning=f"Restored from history ({record.action.value})",
    )
    return Reviewing(candidate=candidate, attempt_number=reviewing.attempt_number)


def apply_executed(
    state: RefinementState,
    result: ExecutionResult,
    execution_time_ms: int,
    candidate: Candidate | None = None,
) -> Executed:
    """*candidate* is the query that actually ran; defaults to the current one."""
    reviewing = _require_reviewing(state, RefinementAction.EXECUTE)
    return Executed(
        candidate=candidate or reviewing.candidate,
        result=result,
        execution_time_ms=max(0, execution_time_ms),
    )


def apply_failed(state: RefinementState, error: str) -> Failed:
    reviewing = _require_reviewing(state, RefinementAction.EXECUTE)
    return Failed(candidate=reviewing.candidate, error=error)


def apply_cancel(state: RefinementState) -> Cancelled:
    reviewing = _require_reviewing(state, RefinementAction.CANCEL)
    return Cancelled(candidate=reviewing.candidate)


# ── History ──────────────────────────────────────────────────────


def append_record(
    history: tuple[ActionRecord, ...], record: ActionRecord, max_entries: int
) -> tuple[ActionRecord, ...]:
    """Append *record*, keeping only the most recent *max_entries*."""
    updated = history + (record,)
    if max_entries > 0 and len(updated) > max_entries:
        updated = updated[-max_entries:]
    return updated
