"""
FastAPI endpoints for group planning sessions.

Provides REST API for creating sessions, reading and steering their
canonical state, and posting human messages. Posting a message starts a
run and streams its events back as NDJSON, one event per line.
"""

import logging
from typing import Dict, Iterator, List, Optional

from fastapi import APIRouter, Depends, HTTPException, status
from fastapi.responses import StreamingResponse
from pydantic import BaseModel, Field

from planroom.orchestration.config import DEFAULT_CONFIG
from planroom.orchestration.events import event_to_json_line
from planroom.orchestration.orchestrator import TurnOrchestrator
from planroom.orchestration.reducer import effective_constraints
from planroom.session.store import (
    GoalAlreadySetError,
    InMemorySessionStore,
    SessionNotFoundError,
)
from planroom.shared.contracts.session_state import (
    CanonicalState,
    ChatMessage,
    Constraint,
    Participant,
)


logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/sessions", tags=["sessions"])

# In-memory session storage (replace with a database-backed SessionStore in production)
_store = InMemorySessionStore()

# Orchestrator instance (shared across requests)
_orchestrator: Optional[TurnOrchestrator] = None


def get_store() -> InMemorySessionStore:
    return _store


def get_orchestrator() -> TurnOrchestrator:
    """Get or create the shared orchestrator."""
    global _orchestrator
    if _orchestrator is None:
        _orchestrator = TurnOrchestrator(_store, config=DEFAULT_CONFIG)
    return _orchestrator


# ============================================================================
# Request/Response Models
# ============================================================================


class CreateSessionRequest(BaseModel):
    """Request to create a group planning session."""

    participants: List[Participant] = Field(
        min_length=1, description="Humans and their assistants"
    )
    goal: str = Field(default="", description="What the group is planning")
    profiles: Dict[str, List[str]] = Field(
        default_factory=dict,
        description="Stored preferences per human participant id",
    )


class SessionResponse(BaseModel):
    """Session snapshot."""

    session_id: str
    participants: List[Participant]
    canonical_state: CanonicalState
    effective_constraints: List[Constraint]
    messages: List[ChatMessage]
    live_run_id: Optional[str] = None


class SetGoalRequest(BaseModel):
    goal: str = Field(min_length=1)
    override: bool = False


class PostMessageRequest(BaseModel):
    """A human message that starts a new run."""

    author_id: str = Field(description="Human participant id")
    content: str = Field(min_length=1)


# ============================================================================
# Helpers
# ============================================================================


def _session_response(
    store: InMemorySessionStore,
    orchestrator: TurnOrchestrator,
    session_id: str,
) -> SessionResponse:
    session = store.get_session(session_id)
    return SessionResponse(
        session_id=session.id,
        participants=session.participants,
        canonical_state=session.canonical_state,
        effective_constraints=effective_constraints(session.canonical_state),
        messages=session.messages,
        live_run_id=orchestrator.registry.live_run(session.id),
    )


def _not_found(session_id: str) -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_404_NOT_FOUND,
        detail=f"Session {session_id} not found",
    )


def _unprocessable(error: ValueError) -> HTTPException:
    return HTTPException(status_code=422, detail=str(error))


# ============================================================================
# Endpoints
# ============================================================================


@router.post("", response_model=SessionResponse, status_code=status.HTTP_201_CREATED)
def create_session(
    request: CreateSessionRequest,
    store: InMemorySessionStore = Depends(get_store),
    orchestrator: TurnOrchestrator = Depends(get_orchestrator),
):
    """Create a session; stored profile preferences become constraints."""
    try:
        session = store.create_session(
            request.participants, goal=request.goal, profiles=request.profiles
        )
    except ValueError as e:
        raise _unprocessable(e)

    logger.info(f"[session={session.id}] [api=create_session] Session created")
    return _session_response(store, orchestrator, session.id)


@router.get("/{session_id}", response_model=SessionResponse)
def get_session(
    session_id: str,
    store: InMemorySessionStore = Depends(get_store),
    orchestrator: TurnOrchestrator = Depends(get_orchestrator),
):
    try:
        return _session_response(store, orchestrator, session_id)
    except SessionNotFoundError:
        raise _not_found(session_id)


@router.put("/{session_id}/goal", response_model=CanonicalState)
def set_goal(
    session_id: str,
    request: SetGoalRequest,
    store: InMemorySessionStore = Depends(get_store),
):
    """Set the goal once; replacing it requires ``override``."""
    try:
        return store.set_goal(session_id, request.goal, override=request.override)
    except SessionNotFoundError:
        raise _not_found(session_id)
    except GoalAlreadySetError as e:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(e))


@router.post("/{session_id}/messages")
def post_message(
    session_id: str,
    request: PostMessageRequest,
    store: InMemorySessionStore = Depends(get_store),
    orchestrator: TurnOrchestrator = Depends(get_orchestrator),
):
    """
    Add a human message and run the assistants.

    The response streams run events as NDJSON. Any run still going for
    this session is superseded and ends with CANCELLED.
    """
    _log = f"[session={session_id}] [api=post_message] "
    try:
        store.add_human_message(session_id, request.author_id, request.content)
        events = orchestrator.start_run(session_id)
    except SessionNotFoundError:
        raise _not_found(session_id)
    except ValueError as e:
        raise _unprocessable(e)

    logger.info(f"{_log}Run started, streaming events")

    def stream() -> Iterator[str]:
        try:
            for event in events:
                yield event_to_json_line(event)
        finally:
            events.close()

    return StreamingResponse(stream(), media_type="application/x-ndjson")

