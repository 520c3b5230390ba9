"""Session storage and the live-run registry."""

from planroom.session.registry import RunRegistry
from planroom.session.store import (
    GoalAlreadySetError,
    InMemorySessionStore,
    Session,
    SessionNotFoundError,
    SessionStore,
)

__all__ = [
    "RunRegistry",
    "GoalAlreadySetError",
    "InMemorySessionStore",
    "Session",
    "SessionNotFoundError",
    "SessionStore",
]
