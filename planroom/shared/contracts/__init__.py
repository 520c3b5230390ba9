"""Session state and turn output contracts shared across the package."""

from planroom.shared.contracts.session_state import (
    CanonicalState,
    ChatMessage,
    Citation,
    Constraint,
    OpenQuestion,
    Participant,
    PendingDecision,
)
from planroom.shared.contracts.turn_output import (
    AgentTurnResult,
    ConstraintInput,
    QuestionInput,
    StatePatch,
    TurnMeta,
)

__all__ = [
    "CanonicalState",
    "ChatMessage",
    "Citation",
    "Constraint",
    "OpenQuestion",
    "Participant",
    "PendingDecision",
    "AgentTurnResult",
    "ConstraintInput",
    "QuestionInput",
    "StatePatch",
    "TurnMeta",
]
