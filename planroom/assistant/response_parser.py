"""
Response parser for the planning assistants.

Normalizes what the reasoning engine returns at the end of a turn:
- strips inline <cite> wrappers, keeping the wrapped text
- deduplicates citations by URL
- reads the finalize payload leniently, field by field

Also extracts JSON from plain-text replies of the helper passes
(privacy filter, step detector).
"""

import json
import logging
import re
from typing import Any, Dict, Iterable, List, Tuple

from planroom.orchestration.reducer import coerce_state_patch
from planroom.shared.contracts.session_state import Citation
from planroom.shared.contracts.turn_output import NEXT_ACTIONS, QuestionInput, TurnMeta


logger = logging.getLogger(__name__)

CITE_TAG_PATTERN = re.compile(r"<cite[^>]*>([\s\S]*?)</cite>")

DEFAULT_CONFIDENCE = 0.5


class ParseError(Exception):
    """Raised when response parsing fails."""

    pass


def strip_cite_tags(text: str) -> str:
    """Replace every <cite ...>x</cite> with x."""
    return CITE_TAG_PATTERN.sub(r"\1", text or "")


def dedupe_citations(citations: Iterable[Citation]) -> List[Citation]:
    """First citation per URL wins; order is preserved."""
    seen = set()
    unique = []
    for citation in citations:
        if citation.url in seen:
            continue
        seen.add(citation.url)
        unique.append(citation)
    return unique


def _as_bool(value: Any) -> bool:
    if isinstance(value, str):
        return value.strip().lower() in ("true", "yes", "1")
    return bool(value)


def _as_confidence(value: Any) -> float:
    if isinstance(value, bool) or not isinstance(value, (int, float, str)):
        return DEFAULT_CONFIDENCE
    try:
        number = float(value)
    except ValueError:
        return DEFAULT_CONFIDENCE
    if number != number:  # NaN
        return DEFAULT_CONFIDENCE
    return min(max(number, 0.0), 1.0)


def _as_questions(value: Any) -> List[QuestionInput]:
    if not isinstance(value, list):
        return []
    questions = []
    for item in value:
        if isinstance(item, str) and item.strip():
            questions.append(QuestionInput(question=item.strip()))
            continue
        if not isinstance(item, dict):
            continue
        text = item.get("question") or item.get("text")
        if isinstance(text, str) and text.strip():
            questions.append(
                QuestionInput(target=str(item.get("target") or "All"), question=text.strip())
            )
    return questions


def parse_finalize_payload(payload: Any) -> Tuple[bool, str, TurnMeta]:
    """
    Read a finalize payload without ever raising.

    Accepts snake_case (``skip_turn``, ``public_message``) and the
    camelCase spellings (``shouldSkip``, ``message``). Unknown next
    actions become CONTINUE; missing or invalid confidence becomes 0.5.

    Returns:
        (skipped, message text, turn metadata)
    """
    if not isinstance(payload, dict):
        payload = {}

    skipped = _as_bool(payload.get("skip_turn", payload.get("shouldSkip", False)))

    message = payload.get("public_message", payload.get("message"))
    message = message.strip() if isinstance(message, str) else ""

    next_action = payload.get("next_action", payload.get("nextAction"))
    if isinstance(next_action, str):
        next_action = next_action.strip().upper()
    if next_action not in NEXT_ACTIONS:
        next_action = "CONTINUE"

    raw_patch = payload.get("state_patch", payload.get("statePatch"))
    state_patch = coerce_state_patch(raw_patch) if raw_patch is not None else None

    next_speaker = payload.get("next_speaker", payload.get("nextSpeaker"))
    reason = payload.get("reason_brief")

    meta = TurnMeta(
        next_action=next_action,
        questions_for_user=_as_questions(
            payload.get("questions_for_user", payload.get("questionsForUser"))
        ),
        state_patch=state_patch,
        confidence=_as_confidence(payload.get("confidence", DEFAULT_CONFIDENCE)),
        reason_brief=reason.strip() if isinstance(reason, str) else "",
        next_speaker=next_speaker.strip() if isinstance(next_speaker, str) and next_speaker.strip() else None,
    )
    return skipped, message, meta


# =============================================================================
# Helper pass parsing
# =============================================================================


def extract_json_from_response(raw_response: str) -> str:
    """
    Extract JSON content from an LLM reply.

    Handles raw JSON, JSON in markdown code blocks, and JSON surrounded
    by prose (the first balanced object or array is taken).

    Raises:
        ParseError: If the reply contains no JSON object or array
    """
    content = (raw_response or "").strip()

    match = re.search(r"```(?:json)?\s*([\s\S]*?)```", content)
    if match:
        content = match.group(1).strip()

    starts = [i for i in (content.find("{"), content.find("[")) if i >= 0]
    if not starts:
        raise ParseError(f"No JSON found in response: {content[:200]!r}")
    content = content[min(starts):]

    opening = content[0]
    closing = "}" if opening == "{" else "]"
    depth = 0
    for i, char in enumerate(content):
        if char == opening:
            depth += 1
        elif char == closing:
            depth -= 1
            if depth == 0:
                return content[: i + 1]

    # Unbalanced; let the JSON parser report it
    return content


def parse_json_object(raw_response: str) -> Dict[str, Any]:
    """
    Parse the first JSON object in an LLM reply.

    Raises:
        ParseError: If no object can be parsed
    """
    json_str = extract_json_from_response(raw_response)
    try:
        data = json.loads(json_str)
    except json.JSONDecodeError as e:
        raise ParseError(f"Failed to parse response JSON: {e}\nContent: {json_str}")
    if not isinstance(data, dict):
        raise ParseError(f"Expected a JSON object, got {type(data).__name__}")
    return data


def join_text_fragments(fragments: Iterable[str]) -> str:
    return "\n".join(f.strip() for f in fragments if f and f.strip())
