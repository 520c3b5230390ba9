"""
Canonical session state contract.

Defines the shared planning document that every assistant in a group
session reads and proposes changes to, plus the participant and message
records that travel alongside it.
"""

from datetime import datetime, timezone
from typing import List, Optional, Literal

from pydantic import BaseModel, Field, model_validator


Stage = Literal["negotiating", "searching", "waiting_for_user", "converged"]
STAGES = ("negotiating", "searching", "waiting_for_user", "converged")

ConstraintSource = Literal["stored_preference", "session_statement"]
DecisionStatus = Literal["proposed", "awaiting_confirmation", "confirmed"]


def utc_now_iso() -> str:
    """Current UTC time as an ISO-8601 string with a Z suffix."""
    return datetime.now(timezone.utc).isoformat().replace("+00:00", "Z")


class Constraint(BaseModel):
    """A requirement surfaced for one participant."""

    participant_id: str = Field(description="Participant this constraint belongs to")
    text: str = Field(description="The constraint, written naturally")
    source: ConstraintSource = Field(
        default="session_statement",
        description="Stored profile preference or something said in this session",
    )
    added_at: str = Field(default_factory=utc_now_iso)


class OpenQuestion(BaseModel):
    """A question waiting on a human. Resolved questions are kept for audit."""

    id: str = Field(description="Stable identifier, generated once")
    target: str = Field(description="Participant name or 'All'")
    text: str = Field(description="The question itself")
    asked_by: str = Field(description="Author id of the patch that added it")
    asked_at: str = Field(default_factory=utc_now_iso)
    resolved: bool = False


class PendingDecision(BaseModel):
    """A decision that needs explicit confirmation before it is built on."""

    topic: str = Field(description="What the decision is about, e.g. 'Travel dates'")
    status: DecisionStatus = "proposed"
    options: Optional[List[str]] = None
    confirmed_value: Optional[str] = None
    confirmations_needed: Optional[List[str]] = None
    confirmations_received: Optional[List[str]] = None


class CanonicalState(BaseModel):
    """
    The single mutable planning document for a session.

    Owned by the orchestrator; mutated only through
    ``apply_state_patch`` in the reducer module.
    """

    goal: str = ""
    leading_option: str = ""
    status_summary: List[str] = Field(default_factory=list)
    constraints: List[Constraint] = Field(default_factory=list)
    open_questions: List[OpenQuestion] = Field(default_factory=list)
    pending_decisions: List[PendingDecision] = Field(default_factory=list)
    suggested_next_steps: List[str] = Field(default_factory=list)
    completed_next_steps: List[str] = Field(default_factory=list)
    stage: Stage = "negotiating"
    last_updated_at: str = Field(default_factory=utc_now_iso)
    last_updated_by: str = "system"

    def unresolved_questions(self) -> List[OpenQuestion]:
        return [q for q in self.open_questions if not q.resolved]


class Participant(BaseModel):
    """
    A member of the group session.

    Every ``agent`` participant is owned by exactly one ``human``.
    """

    id: str
    kind: Literal["human", "agent"]
    display_name: str
    owner_id: Optional[str] = None
    has_calendar: bool = False
    has_mail: bool = False

    @model_validator(mode="after")
    def _check_owner(self) -> "Participant":
        if self.kind == "agent" and not self.owner_id:
            raise ValueError(f"agent participant '{self.id}' must have an owner_id")
        return self


class Citation(BaseModel):
    """A source referenced by an assistant message."""

    url: str
    title: Optional[str] = None
    cited_text: Optional[str] = None


class ChatMessage(BaseModel):
    """A message in the group conversation."""

    id: str
    session_id: str
    role: Literal["user", "assistant"]
    author_id: str
    author_name: str
    content: str
    citations: List[Citation] = Field(default_factory=list)
    created_at: str = Field(default_factory=utc_now_iso)
