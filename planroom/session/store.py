"""
Session persistence.

The orchestrator only depends on the SessionStore protocol. The
in-memory implementation keeps sessions in a dict guarded by a lock and
hands out deep copies, so callers never share mutable state with it.
"""

import logging
import threading
import uuid
from typing import Dict, Iterable, List, Optional, Protocol

from pydantic import BaseModel, Field

from planroom.orchestration.reducer import seed_stored_preferences
from planroom.shared.contracts.session_state import (
    CanonicalState,
    ChatMessage,
    Participant,
    utc_now_iso,
)


logger = logging.getLogger(__name__)


class SessionNotFoundError(KeyError):
    """Raised when a session id is unknown to the store."""


class GoalAlreadySetError(ValueError):
    """Raised when changing an existing goal without ``override``."""


class Session(BaseModel):
    """A group planning session."""

    id: str
    created_at: str = Field(default_factory=utc_now_iso)
    participants: List[Participant] = Field(default_factory=list)
    messages: List[ChatMessage] = Field(default_factory=list)
    canonical_state: CanonicalState = Field(default_factory=CanonicalState)
    profiles: Dict[str, List[str]] = Field(
        default_factory=dict, description="Stored profile facts per human participant id"
    )

    def agents(self) -> List[Participant]:
        return [p for p in self.participants if p.kind == "agent"]

    def humans(self) -> List[Participant]:
        return [p for p in self.participants if p.kind == "human"]

    def participant(self, participant_id: str) -> Optional[Participant]:
        for p in self.participants:
            if p.id == participant_id:
                return p
        return None


class SessionStore(Protocol):
    """What the orchestrator needs from storage."""

    def get_session(self, session_id: str) -> Session:
        ...

    def load_canonical_state(self, session_id: str) -> CanonicalState:
        ...

    def save_canonical_state(self, session_id: str, state: CanonicalState) -> None:
        ...

    def add_message(self, session_id: str, message: ChatMessage) -> ChatMessage:
        ...


class InMemorySessionStore:
    """Thread-safe in-memory SessionStore."""

    def __init__(self):
        self._sessions: Dict[str, Session] = {}
        self._lock = threading.Lock()

    def _get(self, session_id: str) -> Session:
        session = self._sessions.get(session_id)
        if session is None:
            raise SessionNotFoundError(session_id)
        return session

    def create_session(
        self,
        participants: Iterable[Participant],
        goal: str = "",
        profiles: Optional[Dict[str, List[str]]] = None,
        session_id: Optional[str] = None,
    ) -> Session:
        """
        Create a session and seed stored preferences from owner profiles.

        Raises:
            ValueError: If an agent's owner is not a human in the session,
                or the session id is taken
        """
        participants = list(participants)
        humans = {p.id for p in participants if p.kind == "human"}
        for p in participants:
            if p.kind == "agent" and p.owner_id not in humans:
                raise ValueError(f"agent '{p.id}' is owned by unknown human '{p.owner_id}'")

        profiles = {k: list(v) for k, v in (profiles or {}).items()}
        state = CanonicalState(goal=goal.strip())
        for human_id in humans:
            state = seed_stored_preferences(state, human_id, profiles.get(human_id, []))

        session = Session(
            id=session_id or uuid.uuid4().hex,
            participants=participants,
            canonical_state=state,
            profiles=profiles,
        )
        with self._lock:
            if session.id in self._sessions:
                raise ValueError(f"session already exists: {session.id}")
            self._sessions[session.id] = session
        logger.info(
            f"[session={session.id}] Created | agents={len(session.agents())}, "
            f"humans={len(session.humans())}"
        )
        return session.model_copy(deep=True)

    def get_session(self, session_id: str) -> Session:
        with self._lock:
            return self._get(session_id).model_copy(deep=True)

    def list_sessions(self) -> List[str]:
        with self._lock:
            return list(self._sessions)

    def load_canonical_state(self, session_id: str) -> CanonicalState:
        with self._lock:
            return self._get(session_id).canonical_state.model_copy(deep=True)

    def save_canonical_state(self, session_id: str, state: CanonicalState) -> None:
        with self._lock:
            self._get(session_id).canonical_state = state.model_copy(deep=True)

    def add_message(self, session_id: str, message: ChatMessage) -> ChatMessage:
        with self._lock:
            self._get(session_id).messages.append(message.model_copy(deep=True))
        return message

    def add_human_message(self, session_id: str, author_id: str, content: str) -> ChatMessage:
        """
        Record a message from a human participant.

        Raises:
            SessionNotFoundError: Unknown session
            ValueError: Author is not a human in this session
        """
        session = self.get_session(session_id)
        author = session.participant(author_id)
        if author is None or author.kind != "human":
            raise ValueError(f"'{author_id}' is not a human participant of session {session_id}")

        message = ChatMessage(
            id=uuid.uuid4().hex,
            session_id=session_id,
            role="user",
            author_id=author.id,
            author_name=author.display_name,
            content=content,
        )
        return self.add_message(session_id, message)

    def set_goal(self, session_id: str, goal: str, override: bool = False) -> CanonicalState:
        """
        Set the session goal.

        The first goal sticks; replacing a different existing goal needs
        ``override``. Setting the same goal again is a no-op.

        Raises:
            GoalAlreadySetError: A different goal exists and override is False
        """
        goal = goal.strip()
        with self._lock:
            session = self._get(session_id)
            current = session.canonical_state.goal
            if current and current != goal and not override:
                raise GoalAlreadySetError(f"session {session_id} already has a goal")
            if current != goal:
                state = session.canonical_state.model_copy(deep=True)
                state.goal = goal
                state.last_updated_at = utc_now_iso()
                state.last_updated_by = "system"
                session.canonical_state = state
            return session.canonical_state.model_copy(deep=True)
