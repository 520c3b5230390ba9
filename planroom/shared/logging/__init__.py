"""Logging configuration and utilities."""

from planroom.shared.logging.config import (
    setup_logging,
    log_state_transition,
    StructuredFormatter,
)
from planroom.shared.logging.debug_logger import (
    DebugLogger,
    get_or_create_logger,
    remove_logger,
    calculate_cost,
)

__all__ = [
    "setup_logging",
    "log_state_transition",
    "StructuredFormatter",
    "DebugLogger",
    "get_or_create_logger",
    "remove_logger",
    "calculate_cost",
]
