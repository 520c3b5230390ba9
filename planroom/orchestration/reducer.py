"""
State patch reducer.

Merges an agent's proposed patch into canonical state. The merge is
pure and total: invalid or missing fields are ignored, nothing raises.

Merge rules:
- Scalars (leading_option, stage) overwrite when supplied
- status_summary, suggested_next_steps, pending_decisions are replaced wholesale
- constraints and open_questions are append-with-dedup
- resolve_question_ids flips ``resolved``; unknown ids are ignored
"""

import logging
import re
import uuid
from typing import Any, Iterable, List, Optional

from pydantic import ValidationError

from planroom.shared.contracts.session_state import (
    STAGES,
    CanonicalState,
    Constraint,
    OpenQuestion,
    PendingDecision,
    utc_now_iso,
)
from planroom.shared.contracts.turn_output import (
    ConstraintInput,
    QuestionInput,
    StatePatch,
)


logger = logging.getLogger(__name__)

DEFAULT_PREFIX_LENGTH = 30
DEFAULT_MAX_NEXT_STEPS = 5

_WHITESPACE = re.compile(r"\s+")

# camelCase keys some engines emit for decisions
_DECISION_KEY_ALIASES = {
    "confirmedValue": "confirmed_value",
    "confirmationsNeeded": "confirmations_needed",
    "confirmationsReceived": "confirmations_received",
}


def new_question_id() -> str:
    """Generate a question id. Ids are never reused."""
    return f"q_{uuid.uuid4().hex[:12]}"


def normalize_question_text(text: str) -> str:
    return _WHITESPACE.sub(" ", text or "").strip().lower()


def is_similar_question(
    existing: str,
    candidate: str,
    prefix_length: int = DEFAULT_PREFIX_LENGTH,
) -> bool:
    """
    Prefix-containment heuristic for near-duplicate questions.

    Two questions match when the first ``prefix_length`` characters of
    either (case and whitespace normalized) appear inside the other.
    This over-merges questions that share a long opening clause and
    under-merges rephrasings; that imprecision is accepted.
    """
    a = normalize_question_text(existing)
    b = normalize_question_text(candidate)
    if not a or not b:
        return False
    return b[:prefix_length] in a or a[:prefix_length] in b


def find_similar_question(
    questions: Iterable[OpenQuestion],
    target: str,
    text: str,
    prefix_length: int = DEFAULT_PREFIX_LENGTH,
) -> Optional[OpenQuestion]:
    """First unresolved question for the same target that matches ``text``."""
    target_key = (target or "").strip().lower()
    for question in questions:
        if question.resolved:
            continue
        if question.target.strip().lower() != target_key:
            continue
        if is_similar_question(question.text, text, prefix_length):
            return question
    return None


def constraint_key(participant_id: str, text: str) -> tuple:
    """Dedup key for constraints: (participant id, lowercased text)."""
    return (participant_id or "", (text or "").strip().lower())


def effective_constraints(state: CanonicalState) -> List[Constraint]:
    """
    Constraints currently in force.

    A participant's stored preferences are superseded as soon as any
    session statement exists for that participant.
    """
    overridden = {
        c.participant_id for c in state.constraints if c.source == "session_statement"
    }
    return [
        c
        for c in state.constraints
        if c.source == "session_statement" or c.participant_id not in overridden
    ]


def seed_stored_preferences(
    state: CanonicalState,
    participant_id: str,
    items: Iterable[str],
) -> CanonicalState:
    """Add profile preferences as ``stored_preference`` constraints (deduplicated)."""
    new_state = state.model_copy(deep=True)
    existing = {constraint_key(c.participant_id, c.text) for c in new_state.constraints}
    for item in items:
        text = (item or "").strip()
        key = constraint_key(participant_id, text)
        if not text or key in existing:
            continue
        new_state.constraints.append(
            Constraint(participant_id=participant_id, text=text, source="stored_preference")
        )
        existing.add(key)
    return new_state


def _clean_strings(values: Any) -> Optional[List[str]]:
    if not isinstance(values, list):
        return None
    cleaned = []
    for value in values:
        if isinstance(value, (str, int, float)) and not isinstance(value, bool):
            text = str(value).strip()
            if text:
                cleaned.append(text)
    return cleaned


def coerce_state_patch(raw: Any) -> StatePatch:
    """
    Build a StatePatch from an untrusted payload, field by field.

    Anything malformed is dropped on its own; the rest of the patch
    survives. Accepts both snake_case and the camelCase keys engines
    sometimes produce for nested items.
    """
    if isinstance(raw, StatePatch):
        return raw
    if not isinstance(raw, dict):
        return StatePatch()

    data: dict = {}

    leading = raw.get("leading_option")
    if isinstance(leading, str) and leading.strip():
        data["leading_option"] = leading.strip()

    for key in ("status_summary", "suggested_next_steps", "resolve_question_ids"):
        cleaned = _clean_strings(raw.get(key))
        if cleaned is not None:
            data[key] = cleaned

    if isinstance(raw.get("add_constraints"), list):
        constraints = []
        for item in raw["add_constraints"]:
            if not isinstance(item, dict):
                continue
            text = item.get("constraint") or item.get("text")
            if not isinstance(text, str) or not text.strip():
                continue
            participant = item.get("participant_id") or item.get("participantId") or "All"
            constraints.append(
                ConstraintInput(participant_id=str(participant), constraint=text.strip())
            )
        data["add_constraints"] = constraints

    if isinstance(raw.get("add_questions"), list):
        questions = []
        for item in raw["add_questions"]:
            if not isinstance(item, dict):
                continue
            text = item.get("question") or item.get("text")
            if not isinstance(text, str) or not text.strip():
                continue
            target = item.get("target") or "All"
            questions.append(QuestionInput(target=str(target), question=text.strip()))
        data["add_questions"] = questions

    if isinstance(raw.get("pending_decisions"), list):
        decisions = []
        for item in raw["pending_decisions"]:
            if not isinstance(item, dict):
                continue
            normalized = {_DECISION_KEY_ALIASES.get(k, k): v for k, v in item.items()}
            try:
                decisions.append(PendingDecision.model_validate(normalized))
            except ValidationError:
                logger.debug(f"Dropping malformed pending decision: {item!r}")
        data["pending_decisions"] = decisions

    stage = raw.get("stage")
    if stage in STAGES:
        data["stage"] = stage

    return StatePatch(**data)


def apply_state_patch(
    state: CanonicalState,
    patch: Any,
    author_id: str,
    now: Optional[str] = None,
    max_next_steps: int = DEFAULT_MAX_NEXT_STEPS,
    prefix_length: int = DEFAULT_PREFIX_LENGTH,
) -> CanonicalState:
    """
    Merge ``patch`` into ``state`` and return the new state.

    The input state is not modified. ``last_updated_at`` and
    ``last_updated_by`` are always stamped, even for an empty patch.

    Args:
        state: Current canonical state
        patch: StatePatch or raw dict payload
        author_id: Participant (or "system") the patch comes from
        now: Timestamp override, mainly for tests
        max_next_steps: Longest suggested_next_steps list to keep
        prefix_length: Characters compared by the question dedup heuristic

    Returns:
        The merged canonical state
    """
    patch = coerce_state_patch(patch)
    timestamp = now or utc_now_iso()
    new_state = state.model_copy(deep=True)

    if patch.leading_option:
        new_state.leading_option = patch.leading_option

    if patch.stage:
        new_state.stage = patch.stage

    if patch.status_summary is not None:
        new_state.status_summary = list(patch.status_summary)

    if patch.suggested_next_steps is not None:
        new_state.suggested_next_steps = list(patch.suggested_next_steps)[:max_next_steps]

    if patch.pending_decisions is not None:
        new_state.pending_decisions = [d.model_copy() for d in patch.pending_decisions]

    if patch.add_constraints:
        existing = {constraint_key(c.participant_id, c.text) for c in new_state.constraints}
        for item in patch.add_constraints:
            key = constraint_key(item.participant_id, item.constraint)
            if key in existing:
                continue
            new_state.constraints.append(
                Constraint(
                    participant_id=item.participant_id,
                    text=item.constraint,
                    source="session_statement",
                    added_at=timestamp,
                )
            )
            existing.add(key)

    if patch.resolve_question_ids:
        to_resolve = set(patch.resolve_question_ids)
        for question in new_state.open_questions:
            if question.id in to_resolve:
                question.resolved = True

    if patch.add_questions:
        used_ids = {q.id for q in new_state.open_questions}
        for item in patch.add_questions:
            duplicate = find_similar_question(
                new_state.open_questions, item.target, item.question, prefix_length
            )
            if duplicate is not None:
                continue
            question_id = new_question_id()
            while question_id in used_ids:
                question_id = new_question_id()
            used_ids.add(question_id)
            new_state.open_questions.append(
                OpenQuestion(
                    id=question_id,
                    target=item.target,
                    text=item.question,
                    asked_by=author_id,
                    asked_at=timestamp,
                )
            )

    new_state.last_updated_at = timestamp
    new_state.last_updated_by = author_id
    return new_state
