"""
OpenAI client with rate-limit retry logic.

Provides a cached client instance, the rate-limit classifier, and a
generic retry wrapper built on tenacity that backs off exponentially
on rate limiting and rethrows everything else immediately.
"""

import logging
import os
import time
from typing import Any, Callable, Dict, List, Optional, Tuple, TypeVar

from dotenv import load_dotenv
from openai import OpenAI, RateLimitError
from tenacity import (
    RetryCallState,
    Retrying,
    before_sleep_log,
    retry_if_exception,
    stop_after_attempt,
    wait_exponential,
)

load_dotenv()

logger = logging.getLogger(__name__)

T = TypeVar("T")

# Defaults for rate-limit retries
MAX_RATE_LIMIT_RETRIES = 2
RATE_LIMIT_BASE_DELAY_SECONDS = 2.0

# Module-level cache for OpenAI client
_client: Optional[OpenAI] = None


def get_cached_client() -> OpenAI:
    """
    Returns a cached instance of the OpenAI client.

    Uses OPENAI_API_KEY environment variable for authentication.
    The client is created once and reused for all subsequent calls.
    """
    global _client
    if _client is None:
        api_key = os.environ.get("OPENAI_API_KEY")
        if not api_key:
            raise ValueError(
                "OPENAI_API_KEY environment variable is not set. "
                "Please set it to your OpenAI API key."
            )
        # Retries are handled by with_retry so the backoff policy stays in one place
        _client = OpenAI(api_key=api_key, max_retries=0)
    return _client


def is_rate_limit_error(error: BaseException) -> bool:
    """
    Classify an exception as transient rate limiting.

    Recognises the OpenAI SDK's RateLimitError, any exception carrying
    an HTTP status code of 429, and error messages mentioning 429 or
    rate_limit.
    """
    if isinstance(error, RateLimitError):
        return True
    if getattr(error, "status_code", None) == 429:
        return True
    message = str(error).lower()
    return "429" in message or "rate_limit" in message


def with_retry(
    fn: Callable[[], T],
    max_retries: int = MAX_RATE_LIMIT_RETRIES,
    base_delay: float = RATE_LIMIT_BASE_DELAY_SECONDS,
    sleep: Callable[[float], None] = time.sleep,
    on_retry: Optional[Callable[[int, BaseException], None]] = None,
) -> T:
    """
    Call ``fn`` and retry it on rate limiting with exponential backoff.

    Waits ``base_delay * 2**attempt`` seconds before retry ``attempt``
    (0-indexed), for at most ``max_retries`` extra attempts. Errors that
    are not rate limiting propagate on the first failure. When retries
    run out the last rate-limit error is re-raised.

    Callers must only pass calls that are safe to repeat.

    Args:
        fn: Zero-argument callable performing the external call
        max_retries: Additional attempts allowed after the first
        base_delay: Delay in seconds before the first retry
        sleep: Sleep function (injectable for tests)
        on_retry: Called with (retry number, error) before each backoff sleep

    Returns:
        Whatever ``fn`` returns.
    """
    log_before_sleep = before_sleep_log(logger, logging.WARNING)

    def before_sleep(retry_state: RetryCallState) -> None:
        log_before_sleep(retry_state)
        if on_retry is not None:
            on_retry(retry_state.attempt_number, retry_state.outcome.exception())

    retryer = Retrying(
        stop=stop_after_attempt(max_retries + 1),
        wait=wait_exponential(multiplier=base_delay, exp_base=2, min=0),
        retry=retry_if_exception(is_rate_limit_error),
        before_sleep=before_sleep,
        sleep=sleep,
        reraise=True,
    )
    return retryer(fn)


def call_llm(
    messages: List[Dict[str, Any]],
    model: str = "gpt-4.1-mini",
    client: Optional[OpenAI] = None,
    temperature: Optional[float] = None,
    max_retries: int = MAX_RATE_LIMIT_RETRIES,
) -> str:
    """
    Call the OpenAI Chat Completion API with rate-limit retries.

    Args:
        messages: List of message dicts with 'role' and 'content' keys
        model: Model identifier to use (default: gpt-4.1-mini)
        client: Optional OpenAI client instance. If not provided, uses cached client.
        temperature: Optional sampling temperature
        max_retries: Rate-limit retries allowed

    Returns:
        The assistant's response content as a string.
    """
    content, _ = call_llm_with_usage(
        messages,
        model=model,
        client=client,
        temperature=temperature,
        max_retries=max_retries,
    )
    return content


def call_llm_with_usage(
    messages: List[Dict[str, Any]],
    model: str = "gpt-4.1-mini",
    client: Optional[OpenAI] = None,
    temperature: Optional[float] = None,
    max_retries: int = MAX_RATE_LIMIT_RETRIES,
) -> Tuple[str, Dict[str, int]]:
    """
    Call the OpenAI Chat Completion API and return content with token usage.

    Returns:
        Tuple of (response content, usage dict with input/output/total tokens)
    """
    if client is None:
        client = get_cached_client()

    kwargs: Dict[str, Any] = {"model": model, "messages": messages}
    if temperature is not None:
        kwargs["temperature"] = temperature

    response = with_retry(
        lambda: client.chat.completions.create(**kwargs),
        max_retries=max_retries,
    )

    content = (response.choices[0].message.content or "").strip()
    usage = usage_from_response(response)
    return content, usage


def usage_from_response(response: Any) -> Dict[str, int]:
    """Extract token usage from a chat completion, tolerating missing usage."""
    usage = getattr(response, "usage", None)
    if usage is None:
        return {"input_tokens": 0, "output_tokens": 0, "total_tokens": 0}
    return {
        "input_tokens": usage.prompt_tokens or 0,
        "output_tokens": usage.completion_tokens or 0,
        "total_tokens": usage.total_tokens or 0,
    }
