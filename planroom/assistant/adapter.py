"""
Agent call adapter.

Runs one assistant turn against the reasoning engine as a bounded loop
of requests. Each round offers the finalize capability plus every
capability enabled for the assistant's owner; requested capabilities are
executed and their results sent back until the engine finalizes on its
own or the round budget runs out.

Only the engine requests are retried (rate limiting, via with_retry).
Capabilities are never retried.
"""

import logging
import time
from datetime import date
from typing import Any, Callable, Dict, List, Optional

from planroom.assistant.engine import EngineRequest, EngineResponse, ReasoningEngine
from planroom.assistant.prompts.builders import (
    PromptContext,
    build_finalize_tool_schema,
    build_system_prompt,
    format_conversation,
)
from planroom.assistant.response_parser import (
    dedupe_citations,
    join_text_fragments,
    parse_finalize_payload,
    strip_cite_tags,
)
from planroom.orchestration.config import DEFAULT_CONFIG, OrchestratorConfig
from planroom.shared.contracts.session_state import Citation
from planroom.shared.contracts.turn_output import AgentTurnResult, TurnMeta
from planroom.shared.llm.client import with_retry
from planroom.tools.external import CapabilityBackends, build_assistant_capabilities


logger = logging.getLogger(__name__)

FALLBACK_CONTENT = "I'm analyzing the options..."

DEFERRED_FINALIZE_RESULT = (
    "Not finalized yet: review the tool results above, then call emit_turn again."
)


class AgentCallAdapter:
    """
    Calls one assistant and returns its normalized turn.

    Usage:
        adapter = AgentCallAdapter(OpenAIReasoningEngine(model="gpt-4.1-mini"))
        result = adapter.call_agent(context)
    """

    def __init__(
        self,
        engine: ReasoningEngine,
        config: OrchestratorConfig = DEFAULT_CONFIG,
        backends: Optional[CapabilityBackends] = None,
        sleep: Callable[[float], None] = time.sleep,
        today: Callable[[], date] = date.today,
    ):
        self.engine = engine
        self.config = config
        self.backends = backends
        self._sleep = sleep
        self._today = today

    def call_agent(
        self,
        context: PromptContext,
        on_retry: Optional[Callable[[int, BaseException], None]] = None,
    ) -> AgentTurnResult:
        """
        Run one assistant turn.

        Args:
            context: What the assistant sees
            on_retry: Notified before each rate-limit backoff

        Returns:
            AgentTurnResult; ``finalized`` is False when the engine never
            called the finalize capability

        Raises:
            Exception: Whatever the engine raised once retries are exhausted
        """
        _log = f"[agent={context.agent.id}] [node=call_agent] "
        max_rounds = max(self.config.max_tool_rounds, 1)

        registry = build_assistant_capabilities(
            context.agent, context.owner.display_name, self.backends, self._today
        )
        enabled = registry.names()
        assistant_names = [
            p.display_name for p in context.participants
            if p.kind == "agent" and p.id != context.agent.id
        ]
        tools = registry.tool_schemas(enabled) + [build_finalize_tool_schema(assistant_names)]
        system_prompt = build_system_prompt(context, registry.prompt_lines(enabled))
        transcript: List[Dict[str, Any]] = [{
            "role": "user",
            "content": format_conversation(
                context.messages, context.agent.display_name, self.config.conversation_window
            ),
        }]

        fragments: List[str] = []
        citations: List[Citation] = []
        usage = {"input_tokens": 0, "output_tokens": 0, "total_tokens": 0}
        last_finalize: Optional[Dict[str, Any]] = None
        rounds = 0

        logger.info(f"{_log}Starting turn | capabilities={enabled}, max_rounds={max_rounds}")

        for round_index in range(max_rounds):
            force = round_index == max_rounds - 1 and max_rounds > 1
            request = EngineRequest(
                system_prompt=system_prompt,
                transcript=list(transcript),
                tools=tools,
                force_finalize=force,
            )
            response: EngineResponse = with_retry(
                lambda: self.engine.complete(request),
                max_retries=self.config.max_rate_limit_retries,
                base_delay=self.config.retry_base_delay_seconds,
                sleep=self._sleep,
                on_retry=on_retry,
            )
            rounds += 1
            for key in usage:
                usage[key] += response.usage.get(key, 0)
            fragments.extend(response.text_fragments)
            citations.extend(response.citations)

            if response.finalize_payload is not None:
                last_finalize = response.finalize_payload
                if not response.invocations:
                    logger.info(f"{_log}Finalized | round={rounds}")
                    return self._build_result(last_finalize, fragments, citations, rounds, usage)
                logger.info(
                    f"{_log}Finalize deferred | round={rounds}, "
                    f"pending_capabilities={len(response.invocations)}"
                )

            if not response.invocations and response.finalize_payload is None:
                # Nothing to execute; ask again and let the next round decide
                transcript.append(response.assistant_message or {"role": "assistant", "content": ""})
                transcript.append({"role": "user", "content": "Call emit_turn to finish your turn."})
                continue

            transcript.append(response.assistant_message)
            for call in response.invocations:
                result = registry.execute(call.name, call.arguments, enabled)
                logger.debug(f"{_log}Capability {call.name} -> {len(result)} chars")
                transcript.append({"role": "tool", "tool_call_id": call.call_id, "content": result})
            for call_id in response.finalize_call_ids:
                transcript.append({
                    "role": "tool",
                    "tool_call_id": call_id,
                    "content": DEFERRED_FINALIZE_RESULT,
                })

        if last_finalize is not None:
            logger.warning(f"{_log}Round budget exhausted, using deferred finalize")
            return self._build_result(last_finalize, fragments, citations, rounds, usage)

        logger.warning(f"{_log}Round budget exhausted without finalize | rounds={rounds}")
        return AgentTurnResult(
            skipped=False,
            content=strip_cite_tags(join_text_fragments(fragments)).strip() or FALLBACK_CONTENT,
            citations=dedupe_citations(citations),
            meta=TurnMeta(),
            finalized=False,
            rounds=rounds,
            usage=usage,
        )

    def _build_result(
        self,
        payload: Dict[str, Any],
        fragments: List[str],
        citations: List[Citation],
        rounds: int,
        usage: Dict[str, int],
    ) -> AgentTurnResult:
        skipped, message, meta = parse_finalize_payload(payload)
        content = message or join_text_fragments(fragments)
        content = strip_cite_tags(content).strip()
        if not content and not skipped:
            content = FALLBACK_CONTENT

        return AgentTurnResult(
            skipped=skipped,
            content="" if skipped else content,
            citations=dedupe_citations(citations),
            meta=meta,
            finalized=True,
            rounds=rounds,
            usage=usage,
        )
