"""
JSON logging for run-level events.

Run-loop modules log plain text through module loggers. Transitions
worth machine-reading (a run stopping, for instance) go through
``log_state_transition``, which attaches a ``fields`` mapping that
StructuredFormatter merges into the JSON line.
"""

import json
import logging
from datetime import datetime, timezone
from typing import Any, Dict, Optional, TYPE_CHECKING

if TYPE_CHECKING:
    from planroom.shared.contracts.session_state import CanonicalState


class StructuredFormatter(logging.Formatter):
    """
    Formats a record as one JSON object.

    Keys: ``ts``, ``level``, ``logger``, ``message``, everything in the
    record's ``fields`` attribute, and ``exception`` when exc_info is set.
    """

    def format(self, record: logging.LogRecord) -> str:
        payload: Dict[str, Any] = {
            "ts": datetime.fromtimestamp(record.created, timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        payload.update(getattr(record, "fields", None) or {})
        if record.exc_info:
            payload["exception"] = self.formatException(record.exc_info)
        return json.dumps(payload, default=str)


def setup_logging(
    level: int = logging.INFO,
    log_file: Optional[str] = None,
    logger_name: str = "planroom",
) -> logging.Logger:
    """
    Send ``logger_name`` records to stderr, and optionally a file, as JSON.

    Replaces any handlers already on that logger.
    """
    target = logging.getLogger(logger_name)
    target.setLevel(level)
    target.handlers = []

    handlers = [logging.StreamHandler()]
    if log_file:
        handlers.append(logging.FileHandler(log_file, encoding="utf-8"))
    for handler in handlers:
        handler.setFormatter(StructuredFormatter())
        target.addHandler(handler)
    return target


def summarize_state_for_log(state: "CanonicalState") -> Dict[str, Any]:
    """Key canonical-state fields worth putting in a transition log."""
    return {
        "stage": state.stage,
        "leading_option": state.leading_option[:80],
        "open_questions": len(state.unresolved_questions()),
        "pending_decisions": len(state.pending_decisions),
        "last_updated_by": state.last_updated_by,
    }


def log_state_transition(
    event: str,
    state: "CanonicalState",
    extra: Optional[Dict[str, Any]] = None,
    logger: Optional[logging.Logger] = None,
) -> None:
    """
    Log a run transition with a canonical-state digest.

    Args:
        event: Transition name, e.g. "run_stopped:CAP_REACHED"
        state: Canonical state at the transition
        extra: Run context such as session_id, run_id, turn_count
        logger: Defaults to the "planroom" logger
    """
    fields: Dict[str, Any] = {"event": event, "state": summarize_state_for_log(state)}
    fields.update(extra or {})
    (logger or logging.getLogger("planroom")).info(
        f"Run transition: {event}", extra={"fields": fields}
    )
