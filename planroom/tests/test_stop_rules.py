"""
Unit tests for stop-rule evaluation.

Covers the minimum-turns guard, the low-confidence rule and the
handoff handshake.
"""

from planroom.orchestration.stop_rules import STAGE_FOR_STOP_REASON, evaluate_stop_rules
from planroom.shared.contracts.turn_output import QuestionInput, TurnMeta


AGENTS = ["a1", "a2"]


def _evaluate(turn_count, meta, author="a1", signaled=(), unresolved=0):
    return evaluate_stop_rules(
        turn_count=turn_count,
        handoff_signaled_by=signaled,
        meta=meta,
        author_id=author,
        all_agent_ids=AGENTS,
        unresolved_question_count=unresolved,
    )


class TestWaitForUser:
    """Explicit WAIT_FOR_USER and the minimum-turns guard."""

    def test_deferred_before_min_turns(self):
        decision = _evaluate(1, TurnMeta(next_action="WAIT_FOR_USER", confidence=0.9))

        assert decision.reason is None
        assert decision.deferred is True

    def test_stops_once_guard_satisfied(self):
        decision = _evaluate(2, TurnMeta(next_action="WAIT_FOR_USER", confidence=0.9))

        assert decision.reason == "WAIT_FOR_USER"

    def test_continue_never_stops(self):
        decision = _evaluate(5, TurnMeta(next_action="CONTINUE", confidence=0.9))

        assert decision.reason is None
        assert decision.deferred is False


class TestLowConfidence:
    """Low confidence with questions for the user."""

    def test_low_confidence_with_questions_stops(self):
        meta = TurnMeta(
            confidence=0.3,
            questions_for_user=[QuestionInput(question="Which date?")],
        )

        assert _evaluate(3, meta).reason == "WAIT_FOR_USER"

    def test_low_confidence_without_questions_continues(self):
        assert _evaluate(3, TurnMeta(confidence=0.3)).reason is None

    def test_threshold_is_exclusive(self):
        meta = TurnMeta(confidence=0.55, questions_for_user=[QuestionInput(question="Which date?")])

        assert _evaluate(3, meta).reason is None


class TestHandoff:
    """HANDOFF_DONE handshake."""

    def test_single_signal_before_guard_is_recorded_not_stopped(self):
        decision = _evaluate(1, TurnMeta(next_action="HANDOFF_DONE", confidence=0.9))

        assert decision.reason is None
        assert decision.handoff_signaled_by == frozenset({"a1"})

    def test_all_agents_signaled_stops_even_before_guard(self):
        decision = _evaluate(
            1,
            TurnMeta(next_action="HANDOFF_DONE", confidence=0.9),
            author="a2",
            signaled=["a1"],
        )

        assert decision.reason == "HANDOFF_DONE"

    def test_single_signal_after_guard_stops(self):
        decision = _evaluate(2, TurnMeta(next_action="HANDOFF_DONE", confidence=0.9))

        assert decision.reason == "HANDOFF_DONE"

    def test_unresolved_questions_block_handoff(self):
        decision = _evaluate(
            4,
            TurnMeta(next_action="HANDOFF_DONE", confidence=0.9),
            author="a2",
            signaled=["a1"],
            unresolved=1,
        )

        assert decision.reason is None
        assert decision.handoff_signaled_by == frozenset({"a1", "a2"})

    def test_done_is_an_alias(self):
        decision = _evaluate(2, TurnMeta(next_action="DONE", confidence=0.9))

        assert decision.reason == "HANDOFF_DONE"

    def test_signals_are_not_mutated(self):
        signaled = ["a1"]
        _evaluate(1, TurnMeta(next_action="HANDOFF_DONE"), author="a2", signaled=signaled)
        assert signaled == ["a1"]


class TestStageMapping:
    def test_cancelled_has_no_stage(self):
        assert "CANCELLED" not in STAGE_FOR_STOP_REASON
        assert STAGE_FOR_STOP_REASON["HANDOFF_DONE"] == "converged"
        assert STAGE_FOR_STOP_REASON["STALL_DETECTED"] == "waiting_for_user"
