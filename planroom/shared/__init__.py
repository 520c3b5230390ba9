"""
Shared infrastructure for the planning assistants.

Modules:
- llm: OpenAI client with rate-limit retry logic
- logging: Structured JSON logging and per-session debug logs
- contracts: Canonical state and turn output contracts
"""

from planroom.shared.llm.client import get_cached_client, call_llm, with_retry
from planroom.shared.logging.config import setup_logging, log_state_transition

__all__ = [
    "get_cached_client",
    "call_llm",
    "with_retry",
    "setup_logging",
    "log_state_transition",
]
