"""
Completed next-step detection.

When a patch replaces the suggested next steps, the steps that vanished
were either done, reworded or dropped. A helper LLM pass picks out the
ones that were actually completed.
"""

import logging
from typing import Callable, Dict, List, Optional

from planroom.assistant.prompts.builders import build_step_completion_prompt
from planroom.assistant.response_parser import ParseError, parse_json_object
from planroom.shared.llm.client import call_llm


logger = logging.getLogger(__name__)


def disappeared_steps(previous: List[str], current: List[str]) -> List[str]:
    """Previous steps with no case-insensitive match in ``current``."""
    current_keys = {s.strip().lower() for s in current}
    return [s for s in previous if s.strip().lower() not in current_keys]


class StepCompletionDetector:
    """
    Detects which vanished next steps were completed.

    Any failure yields no completed steps.
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

    def detect(self, previous: List[str], current: List[str], recent_message: str) -> List[str]:
        if not previous or previous == current:
            return []

        vanished = disappeared_steps(previous, current)
        if not vanished:
            return []

        prompt = build_step_completion_prompt(previous, current, vanished, recent_message)
        try:
            reply = self._complete([{"role": "user", "content": prompt}])
            data = parse_json_object(reply)
        except ParseError as e:
            logger.warning(f"Step detector returned unparseable output: {e}")
            return []
        except Exception as e:
            logger.error(f"Step detector failed: {e}")
            return []

        completed = data.get("completed")
        if not isinstance(completed, list):
            return []

        # Only steps that really vanished count
        vanished_keys = {s.strip().lower(): s for s in vanished}
        result = []
        for item in completed:
            if isinstance(item, str) and item.strip().lower() in vanished_keys:
                result.append(vanished_keys[item.strip().lower()])
        if result:
            logger.info(f"Completed steps: {result}")
        return result


def merge_completed_steps(existing: List[str], completed: List[str]) -> List[str]:
    """Append newly completed steps, skipping case-insensitive duplicates."""
    keys = {s.strip().lower() for s in existing}
    merged = list(existing)
    for step in completed:
        if step.strip().lower() not in keys:
            merged.append(step)
            keys.add(step.strip().lower())
    return merged
