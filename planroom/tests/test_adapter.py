"""
Tests for the agent call adapter and the OpenAI engine response mapping.

The adapter is driven by a scripted engine so no network is needed.
"""

from datetime import date
from types import SimpleNamespace

import pytest

from planroom.assistant.adapter import FALLBACK_CONTENT, AgentCallAdapter
from planroom.assistant.engine import EngineResponse, OpenAIReasoningEngine
from planroom.assistant.prompts.builders import PromptContext
from planroom.orchestration.config import get_config
from planroom.shared.contracts.session_state import Citation, Participant
from planroom.tools.registry import CapabilityCall


# ============================================================================
# Test Fixtures
# ============================================================================


class ScriptedEngine:
    """ReasoningEngine returning canned responses and recording requests."""

    def __init__(self, responses):
        self.responses = list(responses)
        self.requests = []

    def complete(self, request):
        self.requests.append(request)
        item = self.responses.pop(0)
        if isinstance(item, Exception):
            raise item
        return item


class RateLimited(Exception):
    status_code = 429


def _make_context() -> PromptContext:
    alice = Participant(id="u1", kind="human", display_name="Alice")
    bob = Participant(id="u2", kind="human", display_name="Bob")
    alice_agent = Participant(id="a1", kind="agent", display_name="Alice's Assistant", owner_id="u1")
    bob_agent = Participant(id="a2", kind="agent", display_name="Bob's Assistant", owner_id="u2")
    return PromptContext(
        agent=alice_agent,
        owner=alice,
        participants=[alice, bob, alice_agent, bob_agent],
    )


def _finalize(payload, call_ids=("fin",), invocations=(), fragments=(), citations=()):
    return EngineResponse(
        text_fragments=list(fragments),
        invocations=list(invocations),
        finalize_payload=payload,
        finalize_call_ids=list(call_ids),
        citations=list(citations),
        usage={"input_tokens": 10, "output_tokens": 5, "total_tokens": 15},
        assistant_message={"role": "assistant", "content": None},
    )


def _tool_call(name, arguments, call_id="c1"):
    return EngineResponse(
        invocations=[CapabilityCall(call_id=call_id, name=name, arguments=arguments)],
        assistant_message={"role": "assistant", "content": None},
    )


def _make_adapter(engine, **overrides) -> AgentCallAdapter:
    return AgentCallAdapter(
        engine,
        config=get_config(**overrides),
        sleep=lambda _: None,
        today=lambda: date(2026, 1, 15),
    )


def _tool_messages(request):
    return [m for m in request.transcript if m.get("role") == "tool"]


# ============================================================================
# Adapter
# ============================================================================


class TestFinalize:
    """Finalize handling."""

    def test_direct_finalize_returns_after_one_round(self):
        engine = ScriptedEngine([_finalize({
            "skip_turn": False,
            "public_message": "Let's do Porto.",
            "next_action": "WAIT_FOR_USER",
            "confidence": 0.8,
            "state_patch": {"leading_option": "Porto"},
        })])

        result = _make_adapter(engine).call_agent(_make_context())

        assert result.finalized is True
        assert result.rounds == 1
        assert result.content == "Let's do Porto."
        assert result.meta.next_action == "WAIT_FOR_USER"
        assert result.meta.state_patch.leading_option == "Porto"
        assert result.usage["total_tokens"] == 15

    def test_skip_turn_has_empty_content(self):
        engine = ScriptedEngine([_finalize({"skip_turn": True, "public_message": "nothing"})])

        result = _make_adapter(engine).call_agent(_make_context())

        assert result.skipped is True
        assert result.content == ""

    def test_empty_message_uses_text_fragments(self):
        engine = ScriptedEngine([_finalize({"skip_turn": False}, fragments=["From the text channel."])])

        result = _make_adapter(engine).call_agent(_make_context())

        assert result.content == "From the text channel."

    def test_cite_tags_stripped_and_citations_deduplicated(self):
        citations = [
            Citation(url="https://example.com/a", title="A"),
            Citation(url="https://example.com/a", title="A again"),
            Citation(url="https://example.com/b"),
        ]
        engine = ScriptedEngine([_finalize(
            {"skip_turn": False, "public_message": 'Try <cite index="1-2">the harbour hotel</cite>.'},
            citations=citations,
        )])

        result = _make_adapter(engine).call_agent(_make_context())

        assert result.content == "Try the harbour hotel."
        assert [c.url for c in result.citations] == ["https://example.com/a", "https://example.com/b"]
        assert result.citations[0].title == "A"


class TestCapabilityRounds:
    """Capability execution between rounds."""

    def test_capability_result_sent_back(self):
        engine = ScriptedEngine([
            _tool_call("date_get_day_of_week", {"date": "2026-01-15"}),
            _finalize({"skip_turn": False, "public_message": "Thursday works."}),
        ])

        result = _make_adapter(engine).call_agent(_make_context())

        assert result.rounds == 2
        tool_results = _tool_messages(engine.requests[1])
        assert tool_results[0]["tool_call_id"] == "c1"
        assert "Thursday" in tool_results[0]["content"]

    def test_unknown_capability_reported_not_raised(self):
        engine = ScriptedEngine([
            _tool_call("book_flight", {}),
            _finalize({"skip_turn": False, "public_message": "ok"}),
        ])

        _make_adapter(engine).call_agent(_make_context())

        assert _tool_messages(engine.requests[1])[0]["content"] == "Unknown tool: book_flight"

    def test_calendar_not_offered_without_backend(self):
        engine = ScriptedEngine([_finalize({"skip_turn": False, "public_message": "ok"})])

        _make_adapter(engine).call_agent(_make_context())

        names = [t["function"]["name"] for t in engine.requests[0].tools]
        assert "calendar_free_busy" not in names
        assert "date_get_day_of_week" in names
        assert names[-1] == "emit_turn"

    def test_finalize_alongside_capability_is_deferred(self):
        """The capability runs and the engine gets another round."""
        engine = ScriptedEngine([
            _finalize(
                {"skip_turn": False, "public_message": "draft"},
                invocations=[CapabilityCall("c1", "date_get_day_of_week", {"date": "2026-01-16"})],
            ),
            _finalize({"skip_turn": False, "public_message": "Friday it is."}, call_ids=("fin2",)),
        ])

        result = _make_adapter(engine).call_agent(_make_context())

        assert result.content == "Friday it is."
        assert result.rounds == 2
        replies = {m["tool_call_id"] for m in _tool_messages(engine.requests[1])}
        assert replies == {"c1", "fin"}

    def test_every_finalize_call_answered(self):
        """Two finalize calls in one response each get a tool reply."""
        engine = ScriptedEngine([
            _finalize(
                {"skip_turn": False, "public_message": "second draft"},
                call_ids=("fin-a", "fin-b"),
                invocations=[CapabilityCall("c1", "date_get_day_of_week", {"date": "2026-01-16"})],
            ),
            _finalize({"skip_turn": False, "public_message": "Friday it is."}, call_ids=("fin-c",)),
        ])

        result = _make_adapter(engine).call_agent(_make_context())

        assert result.content == "Friday it is."
        replies = [m["tool_call_id"] for m in _tool_messages(engine.requests[1])]
        assert sorted(replies) == ["c1", "fin-a", "fin-b"]

    def test_deferred_finalize_used_when_rounds_run_out(self):
        engine = ScriptedEngine([
            _finalize(
                {"skip_turn": False, "public_message": "draft"},
                invocations=[CapabilityCall("c1", "date_get_day_of_week", {"date": "2026-01-16"})],
            ),
        ])

        result = _make_adapter(engine, max_tool_rounds=1).call_agent(_make_context())

        assert result.finalized is True
        assert result.content == "draft"


class TestRoundBudget:
    """Behaviour when the engine never finalizes."""

    def test_last_round_forces_finalize(self):
        engine = ScriptedEngine([
            _tool_call("date_get_day_of_week", {"date": "2026-01-15"}),
            _tool_call("date_get_day_of_week", {"date": "2026-01-16"}, call_id="c2"),
            _finalize({"skip_turn": False, "public_message": "done"}),
        ])

        _make_adapter(engine, max_tool_rounds=3).call_agent(_make_context())

        assert [r.force_finalize for r in engine.requests] == [False, False, True]

    def test_never_finalizing_synthesizes_result(self):
        engine = ScriptedEngine([
            EngineResponse(text_fragments=["Thinking about it"], assistant_message={"role": "assistant", "content": "Thinking about it"}),
            EngineResponse(assistant_message={"role": "assistant", "content": ""}),
        ])

        result = _make_adapter(engine, max_tool_rounds=2).call_agent(_make_context())

        assert result.finalized is False
        assert result.content == "Thinking about it"
        assert result.meta.next_action == "CONTINUE"
        assert result.rounds == 2

    def test_synthesized_result_falls_back_to_placeholder(self):
        engine = ScriptedEngine([EngineResponse(assistant_message={"role": "assistant", "content": ""})])

        result = _make_adapter(engine, max_tool_rounds=1).call_agent(_make_context())

        assert result.content == FALLBACK_CONTENT


class TestEngineRetry:
    """Rate limiting around engine requests."""

    def test_rate_limit_retried_and_reported(self):
        notices = []
        engine = ScriptedEngine([
            RateLimited("429"),
            _finalize({"skip_turn": False, "public_message": "ok"}),
        ])

        result = _make_adapter(engine).call_agent(
            _make_context(), on_retry=lambda attempt, error: notices.append(attempt)
        )

        assert result.content == "ok"
        assert notices == [1]

    def test_other_engine_errors_propagate(self):
        engine = ScriptedEngine([RuntimeError("engine down")])

        with pytest.raises(RuntimeError):
            _make_adapter(engine).call_agent(_make_context())


# ============================================================================
# OpenAI response mapping
# ============================================================================


def _make_completion(content=None, tool_calls=None, annotations=None):
    message = SimpleNamespace(content=content, tool_calls=tool_calls, annotations=annotations)
    usage = SimpleNamespace(prompt_tokens=12, completion_tokens=3, total_tokens=15)
    return SimpleNamespace(choices=[SimpleNamespace(message=message)], usage=usage)


def _make_tool_call(call_id, name, arguments):
    return SimpleNamespace(id=call_id, function=SimpleNamespace(name=name, arguments=arguments))


class TestOpenAIEngineMapping:
    """OpenAIReasoningEngine._to_engine_response."""

    def test_splits_finalize_from_capabilities(self):
        engine = OpenAIReasoningEngine(client=object())
        completion = _make_completion(
            content="Checking dates",
            tool_calls=[
                _make_tool_call("c1", "date_get_day_of_week", '{"date": "2026-01-15"}'),
                _make_tool_call("c2", "emit_turn", '{"skip_turn": false}'),
            ],
        )

        response = engine._to_engine_response(completion)

        assert response.text_fragments == ["Checking dates"]
        assert [c.name for c in response.invocations] == ["date_get_day_of_week"]
        assert response.finalize_payload == {"skip_turn": False}
        assert response.finalize_call_ids == ["c2"]
        assert len(response.assistant_message["tool_calls"]) == 2
        assert response.usage == {"input_tokens": 12, "output_tokens": 3, "total_tokens": 15}

    def test_repeated_finalize_keeps_every_call_id(self):
        engine = OpenAIReasoningEngine(client=object())
        completion = _make_completion(
            tool_calls=[
                _make_tool_call("c1", "emit_turn", '{"public_message": "first"}'),
                _make_tool_call("c2", "emit_turn", '{"public_message": "second"}'),
            ],
        )

        response = engine._to_engine_response(completion)

        assert response.finalize_call_ids == ["c1", "c2"]
        assert response.finalize_payload == {"public_message": "second"}
        assert response.invocations == []

    def test_malformed_arguments_decode_to_none(self):
        engine = OpenAIReasoningEngine(client=object())
        completion = _make_completion(tool_calls=[_make_tool_call("c1", "web_search", "{not json")])

        response = engine._to_engine_response(completion)

        assert response.invocations[0].arguments is None

    def test_url_citations_collected(self):
        engine = OpenAIReasoningEngine(client=object())
        annotation = SimpleNamespace(url_citation=SimpleNamespace(url="https://example.com", title="Ex"))

        response = engine._to_engine_response(_make_completion(content="x", annotations=[annotation]))

        assert response.citations == [Citation(url="https://example.com", title="Ex")]
