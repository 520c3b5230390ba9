"""
Configuration for the turn orchestrator.

Centralizes the stop-rule thresholds, retry policy and model choices so
the run loop can be tuned without modifying the graph wiring.
"""

import os
from dataclasses import dataclass, field, fields, replace

from dotenv import load_dotenv

load_dotenv()


@dataclass
class OrchestratorConfig:
    """
    Configuration for one orchestration run.

    Attributes:
        hard_cap: Maximum assistant turns per run before handing back to humans
        min_turns_for_early_stop: Turns that must elapse before an early stop is honored
        confidence_threshold: Below this, a turn with questions stops for the user
        stall_repeat_threshold: Prior occurrences of a state signature that declare a stall
        max_consecutive_errors: Failed agent calls in a row before the run aborts
        max_rate_limit_retries: Extra attempts for a rate-limited engine request
        retry_base_delay_seconds: Backoff before the first rate-limit retry
        max_tool_rounds: Engine requests allowed per agent turn
        conversation_window: Recent messages shown to an agent
        max_next_steps: Longest suggested_next_steps list kept on the state
        question_prefix_length: Characters compared by the question dedup heuristic
        assistant_model: Model used for agent turns
        filter_model: Model used by the privacy filter and step detector
        enable_privacy_filter: Run the privacy filter over drafted messages
        enable_step_detection: Detect completed next steps when the list changes
        enable_debug_log: Write per-session JSONL debug logs
        logs_dir: Directory for debug logs
    """

    # Run limits
    hard_cap: int = 12
    min_turns_for_early_stop: int = 2
    confidence_threshold: float = 0.55
    stall_repeat_threshold: int = 2
    max_consecutive_errors: int = 3

    # Retry configuration (used by with_retry in shared/llm/client.py)
    max_rate_limit_retries: int = 2
    retry_base_delay_seconds: float = 2.0

    # Agent call
    max_tool_rounds: int = 5
    conversation_window: int = 20
    assistant_model: str = field(
        default_factory=lambda: os.environ.get("ASSISTANT_MODEL", "gpt-4.1-mini")
    )
    temperature: float = 0.2

    # State shaping
    max_next_steps: int = 5
    question_prefix_length: int = 30

    # Optional passes
    filter_model: str = field(
        default_factory=lambda: os.environ.get("FILTER_MODEL", "gpt-4.1-mini")
    )
    enable_privacy_filter: bool = False
    enable_step_detection: bool = False

    # Debugging
    enable_debug_log: bool = False
    logs_dir: str = "logs"

    def recursion_limit(self) -> int:
        """
        Graph step budget for one run.

        Each loop iteration takes at most three graph steps. Iterations are
        bounded by successful turns (hard_cap) plus the failed calls that can
        sit between them without tripping the consecutive-error cap.
        """
        iterations = (self.hard_cap + 1) * max(self.max_consecutive_errors, 1) + 1
        return 3 * iterations + 10


# Default configuration instance
DEFAULT_CONFIG = OrchestratorConfig()


def get_config(**overrides) -> OrchestratorConfig:
    """
    Create a configuration with optional overrides.

    Overrides set to None are ignored so callers can pass request fields
    straight through.

    Raises:
        TypeError: If an override names an unknown setting
    """
    known = {f.name for f in fields(OrchestratorConfig)}
    unknown = set(overrides) - known
    if unknown:
        raise TypeError(f"Unknown orchestrator settings: {sorted(unknown)}")

    applied = {k: v for k, v in overrides.items() if v is not None}
    return replace(DEFAULT_CONFIG, **applied)
