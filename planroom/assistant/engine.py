"""
Reasoning engine boundary.

The adapter talks to the language model through the ReasoningEngine
protocol: one request in, one response out, with free text, capability
invocations and the optional finalize payload already separated.
OpenAIReasoningEngine implements it over the Chat Completions API
with function calling.
"""

import json
import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Protocol, runtime_checkable

from openai import OpenAI

from planroom.assistant.prompts.templates import FINALIZE_TOOL_NAME
from planroom.shared.contracts.session_state import Citation
from planroom.shared.llm.client import get_cached_client, usage_from_response
from planroom.tools.registry import CapabilityCall


logger = logging.getLogger(__name__)


@dataclass
class EngineRequest:
    """
    One request to the reasoning engine.

    Attributes:
        system_prompt: Rendered assistant system prompt
        transcript: Chat Completions messages after the system prompt
        tools: Function schemas offered this round (finalize included)
        force_finalize: Require the finalize capability and nothing else
    """

    system_prompt: str
    transcript: List[Dict[str, Any]]
    tools: List[Dict[str, Any]]
    force_finalize: bool = False


@dataclass
class EngineResponse:
    """
    One response, split into the pieces the adapter cares about.

    ``finalize_payload`` is None when the finalize capability was not
    invoked; when it was invoked more than once the last payload wins.
    ``finalize_call_ids`` lists every finalize invocation so each one can
    be answered. ``assistant_message`` is the raw message to append to the
    transcript before returning capability results.
    """

    text_fragments: List[str] = field(default_factory=list)
    invocations: List[CapabilityCall] = field(default_factory=list)
    finalize_payload: Optional[Dict[str, Any]] = None
    finalize_call_ids: List[str] = field(default_factory=list)
    citations: List[Citation] = field(default_factory=list)
    usage: Dict[str, int] = field(default_factory=dict)
    assistant_message: Dict[str, Any] = field(default_factory=dict)


@runtime_checkable
class ReasoningEngine(Protocol):
    """Implement this protocol to plug in another model provider."""

    def complete(self, request: EngineRequest) -> EngineResponse:
        ...


def decode_arguments(raw: Optional[str]) -> Any:
    """Decode tool-call arguments; malformed JSON decodes to None."""
    if not raw:
        return {}
    try:
        return json.loads(raw)
    except json.JSONDecodeError:
        logger.warning(f"Malformed tool arguments: {raw[:200]!r}")
        return None


class OpenAIReasoningEngine:
    """
    ReasoningEngine over OpenAI Chat Completions.

    Retries are not handled here; the adapter wraps each ``complete``
    call in ``with_retry``.
    """

    def __init__(
        self,
        model: str = "gpt-4.1-mini",
        client: Optional[OpenAI] = None,
        temperature: Optional[float] = None,
    ):
        self.model = model
        self.temperature = temperature
        self._client = client

    @property
    def client(self) -> OpenAI:
        if self._client is None:
            self._client = get_cached_client()
        return self._client

    def complete(self, request: EngineRequest) -> EngineResponse:
        messages = [{"role": "system", "content": request.system_prompt}, *request.transcript]
        kwargs: Dict[str, Any] = {"model": self.model, "messages": messages}
        if self.temperature is not None:
            kwargs["temperature"] = self.temperature

        if request.force_finalize:
            kwargs["tools"] = [
                t for t in request.tools if t["function"]["name"] == FINALIZE_TOOL_NAME
            ]
            kwargs["tool_choice"] = {"type": "function", "function": {"name": FINALIZE_TOOL_NAME}}
        elif request.tools:
            kwargs["tools"] = request.tools
            kwargs["tool_choice"] = "auto"

        logger.debug(
            f"Engine request: {len(messages)} messages, "
            f"{len(kwargs.get('tools', []))} tools, force_finalize={request.force_finalize}"
        )
        response = self.client.chat.completions.create(**kwargs)
        return self._to_engine_response(response)

    def _to_engine_response(self, response: Any) -> EngineResponse:
        message = response.choices[0].message
        result = EngineResponse(usage=usage_from_response(response))

        if message.content:
            result.text_fragments.append(message.content)

        raw_calls = []
        for call in message.tool_calls or []:
            name = call.function.name
            arguments = decode_arguments(call.function.arguments)
            raw_calls.append({
                "id": call.id,
                "type": "function",
                "function": {"name": name, "arguments": call.function.arguments or "{}"},
            })
            if name == FINALIZE_TOOL_NAME:
                result.finalize_payload = arguments if isinstance(arguments, dict) else {}
                result.finalize_call_ids.append(call.id)
            else:
                result.invocations.append(
                    CapabilityCall(call_id=call.id, name=name, arguments=arguments)
                )

        for annotation in getattr(message, "annotations", None) or []:
            url_citation = getattr(annotation, "url_citation", None)
            if url_citation is not None and getattr(url_citation, "url", None):
                result.citations.append(
                    Citation(url=url_citation.url, title=getattr(url_citation, "title", None))
                )

        result.assistant_message = {"role": "assistant", "content": message.content}
        if raw_calls:
            result.assistant_message["tool_calls"] = raw_calls
        return result
