"""
Run event stream contract.

A run yields an ordered sequence of these events. Exactly one
DoneEvent terminates every stream, and a turn's MessageEvent always
precedes the StateUpdateEvent derived from the same turn.
"""

from typing import Annotated, Literal, Optional, Union

from pydantic import BaseModel, Field, TypeAdapter

from planroom.shared.contracts.session_state import CanonicalState, ChatMessage


class MessageEvent(BaseModel):
    type: Literal["message"] = "message"
    message: ChatMessage


class StateUpdateEvent(BaseModel):
    type: Literal["state_update"] = "state_update"
    state: CanonicalState
    author_id: str


class StatusEvent(BaseModel):
    """Progress notice, e.g. which assistant is thinking."""

    type: Literal["status"] = "status"
    text: str
    agent_id: Optional[str] = None


class ErrorEvent(BaseModel):
    type: Literal["error"] = "error"
    text: str
    agent_id: Optional[str] = None
    recoverable: bool = True


class DoneEvent(BaseModel):
    type: Literal["done"] = "done"
    stop_reason: str
    run_id: str
    turn_count: int = 0
    summary: str = ""


RunEvent = Annotated[
    Union[MessageEvent, StateUpdateEvent, StatusEvent, ErrorEvent, DoneEvent],
    Field(discriminator="type"),
]

run_event_adapter = TypeAdapter(RunEvent)


def event_to_json_line(event: BaseModel) -> str:
    """One NDJSON line for the streaming endpoint."""
    return event.model_dump_json() + "\n"
