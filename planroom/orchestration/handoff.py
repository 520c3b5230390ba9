"""
Human-facing texts produced when a run hands control back.

- cap handoff: the run hit its turn budget
- stall question: the run stopped making progress
- canonical summary: short digest of the plan carried on the done event
"""

from typing import List

from planroom.shared.contracts.session_state import CanonicalState
from planroom.shared.contracts.turn_output import QuestionInput, StatePatch


CAP_HANDOFF_AUTHOR_ID = "system"
CAP_HANDOFF_AUTHOR_NAME = "Planroom"

STALL_FALLBACK_TARGET = "All"
STALL_FALLBACK_QUESTION = (
    "We seem to be going in circles. What's most important to you for this decision?"
)

MAX_HANDOFF_QUESTIONS = 2


def build_cap_handoff_message(state: CanonicalState) -> str:
    """
    Handoff message for a run that reached its turn cap.

    Always non-empty. Lists at most two unresolved questions; with none
    left, asks the group to review the plan.
    """
    leading = state.leading_option or "No clear option yet"
    lines = [
        "We've been discussing for a while - let me summarize where we are.",
        "",
        f"**Current leading option**: {leading}",
        "",
    ]

    unresolved = state.unresolved_questions()[:MAX_HANDOFF_QUESTIONS]
    if unresolved:
        lines.append("**To move forward, we need your input on**:")
        lines.extend(f"- {q.text}" for q in unresolved)
    else:
        lines.append(
            "The plan looks ready for your review. "
            "Let us know if you'd like to proceed or make changes."
        )
    return "\n".join(lines)


def build_stall_patch(state: CanonicalState) -> StatePatch:
    """
    Patch that unblocks a stalled run.

    Re-asks the first unresolved question when there is one, otherwise a
    generic "what matters most" question for everybody. The reducer's
    question dedup means a re-asked question is not duplicated.
    """
    unresolved = state.unresolved_questions()
    if unresolved:
        question = QuestionInput(target=unresolved[0].target, question=unresolved[0].text)
    else:
        question = QuestionInput(target=STALL_FALLBACK_TARGET, question=STALL_FALLBACK_QUESTION)
    return StatePatch(add_questions=[question], stage="waiting_for_user")


def summarize_canonical_state(state: CanonicalState) -> str:
    """Plain-text digest of the plan; empty sections are left out."""
    parts: List[str] = []

    if state.goal:
        parts.append(f"Goal: {state.goal}")
    if state.leading_option:
        parts.append(f"Leading option: {state.leading_option}")
    if state.status_summary:
        parts.append("Status:\n" + "\n".join(f"- {s}" for s in state.status_summary))

    unresolved = state.unresolved_questions()
    if unresolved:
        parts.append(
            "Open questions:\n" + "\n".join(f"- ({q.target}) {q.text}" for q in unresolved)
        )
    if state.suggested_next_steps:
        parts.append(
            "Next steps:\n" + "\n".join(f"- {s}" for s in state.suggested_next_steps)
        )

    if not parts:
        return "No plan yet."
    return "\n\n".join(parts)
