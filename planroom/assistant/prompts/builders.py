"""
Prompt builders for the planning assistants.

These functions construct the prompts sent to the reasoning engine
from the session's participants, canonical state and conversation.
"""

from datetime import datetime
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field

from planroom.assistant.prompts.templates import (
    ASSISTANT_SYSTEM_PROMPT_TEMPLATE,
    CONVERSATION_START_TEXT,
    CONVERSATION_TEMPLATE,
    FINALIZE_TOOL_NAME,
    PRIVACY_FILTER_PROMPT_TEMPLATE,
    STEP_COMPLETION_PROMPT_TEMPLATE,
    AssistantPromptConfig,
)
from planroom.orchestration.reducer import effective_constraints
from planroom.shared.contracts.session_state import (
    STAGES,
    CanonicalState,
    ChatMessage,
    Participant,
)


class PromptContext(BaseModel):
    """
    Everything one assistant sees when taking a turn.

    Attributes:
        agent: The assistant taking the turn
        owner: The human it works for
        owner_profile: Stored profile facts about the owner
        participants: Everyone in the session, including agent and owner
        state: Current canonical state
        messages: Conversation so far, oldest first
        is_primary: True when the owner sent the triggering message
    """

    agent: Participant
    owner: Participant
    owner_profile: List[str] = Field(default_factory=list)
    participants: List[Participant] = Field(default_factory=list)
    state: CanonicalState = Field(default_factory=CanonicalState)
    messages: List[ChatMessage] = Field(default_factory=list)
    is_primary: bool = False

    def others(self) -> List[Participant]:
        return [p for p in self.participants if p.id not in (self.agent.id, self.owner.id)]


def format_current_datetime(now: Optional[datetime] = None) -> str:
    now = now or datetime.now()
    return now.strftime("%A, %B %d, %Y %I:%M %p")


def build_system_prompt(
    context: PromptContext,
    capability_lines: List[str],
    now: Optional[datetime] = None,
) -> str:
    """
    Build the assistant system prompt.

    Only constraints currently in force are shown, so a participant's
    stored preferences disappear once they state something in the session.
    """
    state = context.state
    others = context.others()

    config = AssistantPromptConfig(
        owner_name=context.owner.display_name,
        assistant_name=context.agent.display_name,
        current_datetime=format_current_datetime(now),
        is_primary=context.is_primary,
        profile_items=context.owner_profile,
        capability_lines=capability_lines,
        goal=state.goal,
        leading_option=state.leading_option,
        stage=state.stage,
        constraint_lines=[
            f"{c.participant_id}: {c.text}" for c in effective_constraints(state)
        ],
        open_question_lines=[
            f"{q.id}: {q.target} - {q.text}" for q in state.unresolved_questions()
        ],
        next_steps=state.suggested_next_steps,
        participant_lines=[f"{p.display_name} ({p.kind})" for p in others],
        other_assistants=[p.display_name for p in others if p.kind == "agent"],
        other_humans=[p.display_name for p in others if p.kind == "human"],
    )
    return config.format_prompt(ASSISTANT_SYSTEM_PROMPT_TEMPLATE)


def format_conversation(
    messages: List[ChatMessage],
    assistant_name: str,
    window: int = 20,
) -> str:
    """Render the last ``window`` messages as the turn's user prompt."""
    if not messages:
        return CONVERSATION_START_TEXT

    formatted = "\n\n".join(
        f"{'[human]' if m.role == 'user' else '[assistant]'} **{m.author_name}**: {m.content}"
        for m in messages[-window:]
    )
    return CONVERSATION_TEMPLATE.format(formatted=formatted, assistant_name=assistant_name)


def build_finalize_tool_schema(assistant_names: List[str]) -> Dict[str, Any]:
    """
    Schema of the mandatory finalize capability.

    ``assistant_names`` are the assistants the caller may hand over to
    through ``next_speaker``.
    """
    names = ", ".join(assistant_names) or "none"
    return {
        "type": "function",
        "function": {
            "name": FINALIZE_TOOL_NAME,
            "description": "Finish your turn: post your message and propose changes to the shared plan.",
            "parameters": {
                "type": "object",
                "properties": {
                    "skip_turn": {
                        "type": "boolean",
                        "description": "True if you have nothing to add this turn",
                    },
                    "public_message": {
                        "type": "string",
                        "description": "Your message to the group chat",
                    },
                    "next_action": {
                        "type": "string",
                        "enum": ["CONTINUE", "WAIT_FOR_USER", "HANDOFF_DONE"],
                        "description": (
                            "CONTINUE if another assistant should respond, WAIT_FOR_USER if "
                            "blocked on a human, HANDOFF_DONE if the plan is ready for review. "
                            f"Assistants: {names}"
                        ),
                    },
                    "questions_for_user": {
                        "type": "array",
                        "items": {
                            "type": "object",
                            "properties": {
                                "target": {"type": "string"},
                                "question": {"type": "string"},
                            },
                            "required": ["question"],
                        },
                    },
                    "state_patch": {
                        "type": "object",
                        "properties": {
                            "leading_option": {"type": "string"},
                            "status_summary": {"type": "array", "items": {"type": "string"}},
                            "add_constraints": {
                                "type": "array",
                                "items": {
                                    "type": "object",
                                    "properties": {
                                        "participant_id": {"type": "string"},
                                        "constraint": {"type": "string"},
                                    },
                                    "required": ["constraint"],
                                },
                            },
                            "add_questions": {
                                "type": "array",
                                "items": {
                                    "type": "object",
                                    "properties": {
                                        "target": {"type": "string"},
                                        "question": {"type": "string"},
                                    },
                                    "required": ["question"],
                                },
                            },
                            "resolve_question_ids": {"type": "array", "items": {"type": "string"}},
                            "pending_decisions": {
                                "type": "array",
                                "items": {
                                    "type": "object",
                                    "properties": {
                                        "topic": {"type": "string"},
                                        "status": {
                                            "type": "string",
                                            "enum": ["proposed", "awaiting_confirmation", "confirmed"],
                                        },
                                        "options": {"type": "array", "items": {"type": "string"}},
                                        "confirmed_value": {"type": "string"},
                                        "confirmations_needed": {"type": "array", "items": {"type": "string"}},
                                        "confirmations_received": {"type": "array", "items": {"type": "string"}},
                                    },
                                    "required": ["topic", "status"],
                                },
                            },
                            "suggested_next_steps": {"type": "array", "items": {"type": "string"}},
                            "stage": {"type": "string", "enum": list(STAGES)},
                        },
                    },
                    "confidence": {
                        "type": "number",
                        "description": "How confident you are that the plan can proceed without humans (0-1)",
                    },
                    "reason_brief": {"type": "string"},
                    "next_speaker": {
                        "type": "string",
                        "description": f"Assistant who should speak next. One of: {names}",
                    },
                },
                "required": ["skip_turn"],
            },
        },
    }


# =============================================================================
# Helper pass prompts
# =============================================================================


def _numbered(items: List[str]) -> str:
    if not items:
        return "(none)"
    return "\n".join(f"{i}. {item}" for i, item in enumerate(items, start=1))


def build_privacy_filter_prompt(
    message: str,
    state: CanonicalState,
    owner_name: str,
    recipient_names: List[str],
) -> str:
    return PRIVACY_FILTER_PROMPT_TEMPLATE.format(
        goal=state.goal or state.leading_option or "General planning/coordination",
        stage=state.stage,
        owner_name=owner_name,
        recipients=", ".join(recipient_names) or "the group",
        message=message,
    )


def build_step_completion_prompt(
    previous_steps: List[str],
    current_steps: List[str],
    disappeared_steps: List[str],
    recent_message: str,
) -> str:
    return STEP_COMPLETION_PROMPT_TEMPLATE.format(
        previous_steps=_numbered(previous_steps),
        current_steps=_numbered(current_steps),
        recent_message=(recent_message or "")[:1000],
        disappeared_steps=_numbered(disappeared_steps),
    )
