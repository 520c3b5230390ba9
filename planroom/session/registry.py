"""
Live-run registry.

Each session has one live-run slot. Registering a run overwrites the
slot unconditionally; a run that is no longer in the slot has been
superseded and must stop at its next check.
"""

import logging
import threading
import uuid
from typing import Dict, Optional


logger = logging.getLogger(__name__)


def new_run_id() -> str:
    return uuid.uuid4().hex


class RunRegistry:
    """Thread-safe map of session id to live run id."""

    def __init__(self):
        self._live: Dict[str, str] = {}
        self._lock = threading.Lock()

    def register(self, session_id: str, run_id: Optional[str] = None) -> str:
        """Make ``run_id`` (or a fresh id) the live run for the session."""
        run_id = run_id or new_run_id()
        with self._lock:
            previous = self._live.get(session_id)
            self._live[session_id] = run_id
        if previous is not None and previous != run_id:
            logger.info(
                f"[session={session_id}] Run {run_id[:8]} supersedes run {previous[:8]}"
            )
        return run_id

    def live_run(self, session_id: str) -> Optional[str]:
        with self._lock:
            return self._live.get(session_id)

    def is_live(self, session_id: str, run_id: str) -> bool:
        with self._lock:
            return self._live.get(session_id) == run_id

    def clear(self, session_id: str, run_id: str) -> bool:
        """
        Release the slot if ``run_id`` still holds it.

        Returns:
            True if the slot was released
        """
        with self._lock:
            if self._live.get(session_id) != run_id:
                return False
            del self._live[session_id]
            return True
