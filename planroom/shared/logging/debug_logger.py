"""
Per-session debug trace of agent calls and run outcomes.

Each session appends JSON lines to ``<logs_dir>/<session_id>/session_logs.json``:
one ``agent_call`` entry per assistant turn and one ``run_summary`` entry
when a run stops. Token usage and an estimated cost accumulate across all
runs of the session.
"""

import json
from dataclasses import asdict, dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, Optional


# USD per million tokens (input, output)
MODEL_PRICES = {
    "gpt-4.1-mini": (0.40, 1.60),
    "gpt-4.1": (2.00, 8.00),
    "gpt-4o-mini": (0.15, 0.60),
    "gpt-5-mini": (0.25, 2.00),
}

_session_loggers: Dict[str, "DebugLogger"] = {}


def get_or_create_logger(session_id: str, logs_dir: str = "logs") -> "DebugLogger":
    """
    Shared DebugLogger for a session.

    Every run of the session writes through the same instance, so the
    usage totals span runs.
    """
    debug_logger = _session_loggers.get(session_id)
    if debug_logger is None:
        debug_logger = DebugLogger(session_id, logs_dir)
        _session_loggers[session_id] = debug_logger
    return debug_logger


def remove_logger(session_id: str) -> None:
    _session_loggers.pop(session_id, None)


def calculate_cost(model: str, input_tokens: int, output_tokens: int) -> float:
    """Estimated USD cost; models without a price cost nothing."""
    input_price, output_price = MODEL_PRICES.get(model, (0.0, 0.0))
    return (input_tokens * input_price + output_tokens * output_price) / 1_000_000


@dataclass
class UsageTotals:
    """Usage accumulated over every agent call of a session."""

    total_input_tokens: int = 0
    total_output_tokens: int = 0
    total_cost_usd: float = 0.0
    total_agent_duration_ms: float = 0.0
    agent_call_count: int = 0

    def add(self, input_tokens: int, output_tokens: int, cost: float, duration_ms: float) -> None:
        self.total_input_tokens += input_tokens
        self.total_output_tokens += output_tokens
        self.total_cost_usd += cost
        self.total_agent_duration_ms += duration_ms
        self.agent_call_count += 1

    def as_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data["total_tokens"] = self.total_input_tokens + self.total_output_tokens
        data["total_cost_usd"] = round(self.total_cost_usd, 6)
        data["total_agent_duration_ms"] = round(self.total_agent_duration_ms, 2)
        return data


class DebugLogger:
    """Appends JSON lines for one session's agent calls and run stops."""

    def __init__(self, session_id: str, logs_dir: str = "logs"):
        self.session_id = session_id
        self.log_file = Path(logs_dir) / session_id / "session_logs.json"
        self.log_file.parent.mkdir(parents=True, exist_ok=True)
        self.totals = UsageTotals()

    def _write(self, entry_type: str, run_id: str, **fields: Any) -> Dict[str, Any]:
        entry = {
            "type": entry_type,
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "session_id": self.session_id,
            "run_id": run_id,
            **fields,
        }
        with self.log_file.open("a", encoding="utf-8") as handle:
            handle.write(json.dumps(entry, ensure_ascii=False) + "\n")
        return entry

    def log_agent_call(
        self,
        run_id: str,
        turn: int,
        agent_id: str,
        duration_ms: float,
        rounds: int,
        input_tokens: int,
        output_tokens: int,
        model: str,
        skipped: bool = False,
        next_action: Optional[str] = None,
    ) -> None:
        """
        Record one assistant turn.

        Args:
            run_id: Run the turn belongs to
            turn: 1-indexed turn number within the run
            agent_id: Assistant that spoke
            duration_ms: Wall time of the whole agent call
            rounds: Engine requests issued during the turn
            input_tokens: Prompt tokens over all rounds
            output_tokens: Completion tokens over all rounds
            model: Model the assistant ran on
            skipped: Whether the assistant passed
            next_action: Control signal it returned
        """
        cost = calculate_cost(model, input_tokens, output_tokens)
        self.totals.add(input_tokens, output_tokens, cost, duration_ms)
        self._write(
            "agent_call",
            run_id,
            turn=turn,
            agent_id=agent_id,
            model=model,
            rounds=rounds,
            skipped=skipped,
            next_action=next_action,
            duration_ms=round(duration_ms, 2),
            input_tokens=input_tokens,
            output_tokens=output_tokens,
            cost_usd=round(cost, 6),
        )

    def log_run_summary(self, run_id: str, stop_reason: str, turn_count: int) -> Dict[str, Any]:
        """Record a run stop together with the session totals so far."""
        return self._write(
            "run_summary",
            run_id,
            stop_reason=stop_reason,
            turn_count=turn_count,
            **self.totals.as_dict(),
        )

    def get_accumulated_stats(self) -> Dict[str, Any]:
        return self.totals.as_dict()
