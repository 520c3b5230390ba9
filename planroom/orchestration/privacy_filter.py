"""
Privacy filter for outgoing assistant messages.

A lightweight LLM pass that redacts private details (event titles,
email content, unrelated amounts) before a message reaches the group.
Never blocks a message: any failure returns the original text.
"""

import logging
import re
from dataclasses import dataclass
from typing import Callable, Dict, List, Optional, Protocol

from planroom.assistant.prompts.builders import build_privacy_filter_prompt
from planroom.shared.contracts.session_state import CanonicalState
from planroom.shared.llm.client import call_llm


logger = logging.getLogger(__name__)

MIN_FILTER_LENGTH = 50

SENSITIVE_PATTERNS = [
    re.compile(r"calendar|schedule|appointment|meeting|event", re.IGNORECASE),
    re.compile(r"email|gmail|inbox|message from", re.IGNORECASE),
    re.compile(r"\$\d+|budget|cost|price|paid", re.IGNORECASE),
    re.compile(r"address|location|where.*live", re.IGNORECASE),
    re.compile(r"doctor|therapy|medical|health", re.IGNORECASE),
    re.compile(r"interview|job|work.*meeting", re.IGNORECASE),
]


@dataclass
class FilterResult:
    filtered_message: str
    was_modified: bool


class PrivacyFilter(Protocol):
    def filter(
        self,
        message: str,
        state: CanonicalState,
        owner_name: str,
        recipient_names: List[str],
    ) -> FilterResult:
        ...


def might_contain_sensitive_info(message: str) -> bool:
    """Cheap pre-check deciding whether the LLM pass is worth running."""
    if len(message) < MIN_FILTER_LENGTH:
        return False
    return any(pattern.search(message) for pattern in SENSITIVE_PATTERNS)


class LLMPrivacyFilter:
    """
    PrivacyFilter backed by a chat model.

    Args:
        model: Model used for the filter pass
        complete: Callable taking chat messages and returning the reply
            text; defaults to ``call_llm`` with this model
    """

    def __init__(
        self,
        model: str = "gpt-4.1-mini",
        complete: Optional[Callable[[List[Dict[str, str]]], str]] = None,
    ):
        self.model = model
        self._complete = complete or (
            lambda messages: call_llm(messages, model=self.model, temperature=0)
        )

    def filter(
        self,
        message: str,
        state: CanonicalState,
        owner_name: str,
        recipient_names: List[str],
    ) -> FilterResult:
        if not might_contain_sensitive_info(message):
            return FilterResult(message, False)

        prompt = build_privacy_filter_prompt(message, state, owner_name, recipient_names)
        try:
            filtered = self._complete([{"role": "user", "content": prompt}]).strip()
        except Exception as e:
            logger.error(f"Privacy filter failed, sending original message: {e}")
            return FilterResult(message, False)

        if not filtered:
            return FilterResult(message, False)
        return FilterResult(filtered, filtered != message)
