"""
Tests for the privacy filter and completed-step detector.

Both take an injectable ``complete`` callable, so the model is faked.
"""

from planroom.orchestration.privacy_filter import LLMPrivacyFilter, might_contain_sensitive_info
from planroom.orchestration.step_completion import (
    StepCompletionDetector,
    disappeared_steps,
    merge_completed_steps,
)
from planroom.shared.contracts.session_state import CanonicalState


SENSITIVE = (
    "I checked Alice's calendar and she has a doctor appointment on Friday morning, "
    "so the afternoon works better."
)


def _make_complete(reply=None, error=None):
    calls = []

    def complete(messages):
        calls.append(messages)
        if error is not None:
            raise error
        return reply

    return complete, calls


class TestPrivacyFilter:
    """LLMPrivacyFilter."""

    def test_short_or_harmless_messages_skip_the_model(self):
        complete, calls = _make_complete("should not be used")
        privacy_filter = LLMPrivacyFilter(complete=complete)

        short = privacy_filter.filter("Friday works.", CanonicalState(), "Alice", ["Bob"])
        harmless = privacy_filter.filter(
            "Let's compare the two restaurants that everyone mentioned so far today.",
            CanonicalState(),
            "Alice",
            ["Bob"],
        )

        assert short.was_modified is False
        assert harmless.filtered_message.startswith("Let's compare")
        assert calls == []

    def test_rewrites_sensitive_message(self):
        complete, calls = _make_complete("Alice is busy Friday morning, so the afternoon works better.")
        privacy_filter = LLMPrivacyFilter(complete=complete)

        result = privacy_filter.filter(SENSITIVE, CanonicalState(), "Alice", ["Bob"])

        assert result.was_modified is True
        assert "doctor" not in result.filtered_message
        assert len(calls) == 1

    def test_failure_returns_original(self):
        complete, _ = _make_complete(error=RuntimeError("timeout"))

        result = LLMPrivacyFilter(complete=complete).filter(SENSITIVE, CanonicalState(), "Alice", ["Bob"])

        assert result.filtered_message == SENSITIVE
        assert result.was_modified is False

    def test_precheck(self):
        assert might_contain_sensitive_info(SENSITIVE)
        assert not might_contain_sensitive_info("short calendar note")


class TestStepCompletionDetector:
    """StepCompletionDetector and its helpers."""

    def test_disappeared_steps_case_insensitive(self):
        assert disappeared_steps(["Pick a date", "Book table"], ["book TABLE"]) == ["Pick a date"]

    def test_only_vanished_steps_returned(self):
        complete, _ = _make_complete('```json\n{"completed": ["pick a date", "Book table"]}\n```')
        detector = StepCompletionDetector(complete=complete)

        completed = detector.detect(["Pick a date", "Book table"], ["Book table"], "Friday is set.")

        assert completed == ["Pick a date"]

    def test_unchanged_list_skips_the_model(self):
        complete, calls = _make_complete('{"completed": []}')
        detector = StepCompletionDetector(complete=complete)

        assert detector.detect(["Book table"], ["Book table"], "") == []
        assert detector.detect([], ["Book table"], "") == []
        assert calls == []

    def test_unparseable_reply_yields_nothing(self):
        complete, _ = _make_complete("I think the first one is done")
        detector = StepCompletionDetector(complete=complete)

        assert detector.detect(["Pick a date"], [], "done") == []

    def test_model_failure_yields_nothing(self):
        complete, _ = _make_complete(error=RuntimeError("timeout"))
        detector = StepCompletionDetector(complete=complete)

        assert detector.detect(["Pick a date"], [], "done") == []

    def test_merge_skips_duplicates(self):
        assert merge_completed_steps(["Pick a date"], ["pick a date", "Book table"]) == [
            "Pick a date",
            "Book table",
        ]
