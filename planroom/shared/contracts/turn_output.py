"""
Agent turn output contract.

Defines the structured result an assistant produces at the end of its
turn: the proposed state patch, the control signal for the orchestrator,
and the message that goes to the group.
"""

from typing import Dict, List, Optional, Literal

from pydantic import BaseModel, Field

from planroom.shared.contracts.session_state import (
    Citation,
    PendingDecision,
    Stage,
)


NextAction = Literal["CONTINUE", "WAIT_FOR_USER", "DONE", "HANDOFF_DONE"]
NEXT_ACTIONS = ("CONTINUE", "WAIT_FOR_USER", "DONE", "HANDOFF_DONE")


class ConstraintInput(BaseModel):
    """A constraint proposed in a patch, before it is stamped by the reducer."""

    participant_id: str
    constraint: str


class QuestionInput(BaseModel):
    """A question proposed in a patch or addressed to a human."""

    target: str = "All"
    question: str


class StatePatch(BaseModel):
    """
    A partial, turn-scoped proposal to change canonical state.

    Every field is optional. ``None`` means "not supplied"; an empty list
    for a replaceable list field means "replace with nothing".
    """

    leading_option: Optional[str] = None
    status_summary: Optional[List[str]] = None
    add_constraints: Optional[List[ConstraintInput]] = None
    add_questions: Optional[List[QuestionInput]] = None
    resolve_question_ids: Optional[List[str]] = None
    pending_decisions: Optional[List[PendingDecision]] = None
    suggested_next_steps: Optional[List[str]] = None
    stage: Optional[Stage] = None

    def is_empty(self) -> bool:
        return not self.model_dump(exclude_none=True)


class TurnMeta(BaseModel):
    """Control metadata the orchestrator consumes after a turn."""

    next_action: NextAction = "CONTINUE"
    questions_for_user: List[QuestionInput] = Field(default_factory=list)
    state_patch: Optional[StatePatch] = None
    confidence: float = Field(default=0.5, ge=0.0, le=1.0)
    reason_brief: str = ""
    next_speaker: Optional[str] = None


class AgentTurnResult(BaseModel):
    """What one agent call returns to the orchestrator."""

    skipped: bool = False
    content: str = ""
    citations: List[Citation] = Field(default_factory=list)
    meta: Optional[TurnMeta] = None
    finalized: bool = Field(
        default=True,
        description="False when the engine never called the finalize capability",
    )
    rounds: int = 0
    usage: Dict[str, int] = Field(default_factory=dict)
