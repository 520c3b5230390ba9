"""
Turn orchestration: the run loop and its pure helpers.

- reducer: merges state patches into canonical state
- signature: stall detection fingerprints
- stop_rules: per-turn stop decisions
- graph / orchestrator: the LangGraph run loop and its entry point
"""

from planroom.orchestration.config import DEFAULT_CONFIG, OrchestratorConfig, get_config
from planroom.orchestration.orchestrator import TurnOrchestrator
from planroom.orchestration.reducer import apply_state_patch
from planroom.orchestration.signature import compute_state_signature
from planroom.orchestration.stop_rules import evaluate_stop_rules

__all__ = [
    "DEFAULT_CONFIG",
    "OrchestratorConfig",
    "get_config",
    "TurnOrchestrator",
    "apply_state_patch",
    "compute_state_signature",
    "evaluate_stop_rules",
]
