"""
Planroom: personal assistants planning together in a group chat.

This package contains:
- shared/: Common infrastructure (LLM client, logging, contracts)
- session/: Session store and live-run registry
- tools/: Capabilities assistants can call during a turn
- assistant/: Agent call adapter, prompts and response parsing
- orchestration/: Turn orchestration run loop and its pure helpers
- api/: FastAPI endpoints
"""

from planroom.orchestration.orchestrator import TurnOrchestrator

__all__ = ["TurnOrchestrator"]
