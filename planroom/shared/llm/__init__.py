"""LLM client utilities."""

from planroom.shared.llm.client import (
    call_llm,
    get_cached_client,
    is_rate_limit_error,
    with_retry,
)

__all__ = ["call_llm", "get_cached_client", "is_rate_limit_error", "with_retry"]
