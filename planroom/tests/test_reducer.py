"""
Unit tests for the state patch reducer.

Tests constraint and question dedup, question resolution, list
replacement, lenient patch coercion and stored-preference handling.
"""

from planroom.orchestration.reducer import (
    apply_state_patch,
    coerce_state_patch,
    effective_constraints,
    is_similar_question,
    seed_stored_preferences,
)
from planroom.shared.contracts.session_state import CanonicalState, Constraint, OpenQuestion
from planroom.shared.contracts.turn_output import ConstraintInput, QuestionInput, StatePatch


NOW = "2026-03-01T10:00:00Z"


def _make_state(**kwargs) -> CanonicalState:
    return CanonicalState(goal="Weekend trip", **kwargs)


def _make_question(qid: str, text: str, target: str = "All", resolved: bool = False) -> OpenQuestion:
    return OpenQuestion(id=qid, target=target, text=text, asked_by="a1", resolved=resolved)


class TestScalarsAndStamps:
    """Scalar overwrite and audit stamping."""

    def test_leading_option_and_stage_overwrite(self):
        state = _make_state(leading_option="Lisbon")
        patch = StatePatch(leading_option="Porto", stage="searching")

        new_state = apply_state_patch(state, patch, "a1", now=NOW)

        assert new_state.leading_option == "Porto"
        assert new_state.stage == "searching"

    def test_empty_patch_still_stamps(self):
        """An empty patch changes nothing but the audit fields."""
        state = _make_state(leading_option="Lisbon")

        new_state = apply_state_patch(state, StatePatch(), "a2", now=NOW)

        assert new_state.leading_option == "Lisbon"
        assert new_state.last_updated_at == NOW
        assert new_state.last_updated_by == "a2"

    def test_input_state_not_mutated(self):
        state = _make_state()
        apply_state_patch(state, StatePatch(leading_option="Porto"), "a1", now=NOW)
        assert state.leading_option == ""


class TestConstraints:
    """Append-with-dedup for constraints."""

    def test_duplicate_constraint_ignored_case_insensitive(self):
        state = _make_state(constraints=[Constraint(participant_id="u1", text="No red-eye flights")])
        patch = StatePatch(add_constraints=[
            ConstraintInput(participant_id="u1", constraint="no RED-EYE flights"),
        ])

        new_state = apply_state_patch(state, patch, "a1", now=NOW)

        assert len(new_state.constraints) == 1

    def test_same_text_for_other_participant_is_kept(self):
        state = _make_state(constraints=[Constraint(participant_id="u1", text="Vegetarian")])
        patch = StatePatch(add_constraints=[ConstraintInput(participant_id="u2", constraint="Vegetarian")])

        new_state = apply_state_patch(state, patch, "a1", now=NOW)

        assert [c.participant_id for c in new_state.constraints] == ["u1", "u2"]
        assert new_state.constraints[1].source == "session_statement"
        assert new_state.constraints[1].added_at == NOW


class TestQuestions:
    """Question add, dedup and resolve."""

    def test_new_question_gets_id_and_author(self):
        patch = StatePatch(add_questions=[QuestionInput(target="Alice", question="Which weekend works?")])

        new_state = apply_state_patch(_make_state(), patch, "a1", now=NOW)

        question = new_state.open_questions[0]
        assert question.id.startswith("q_")
        assert question.asked_by == "a1"
        assert question.asked_at == NOW
        assert question.resolved is False

    def test_prefix_duplicate_same_target_ignored(self):
        state = _make_state(open_questions=[
            _make_question("q1", "What is your budget for the hotel per night?", target="Alice"),
        ])
        patch = StatePatch(add_questions=[
            QuestionInput(target="alice", question="What is your budget for the hotel, roughly?"),
        ])

        new_state = apply_state_patch(state, patch, "a1", now=NOW)

        assert len(new_state.open_questions) == 1

    def test_same_text_different_target_is_added(self):
        state = _make_state(open_questions=[_make_question("q1", "Which weekend works?", target="Alice")])
        patch = StatePatch(add_questions=[QuestionInput(target="Bob", question="Which weekend works?")])

        new_state = apply_state_patch(state, patch, "a1", now=NOW)

        assert len(new_state.open_questions) == 2

    def test_resolved_question_does_not_block_reask(self):
        state = _make_state(open_questions=[
            _make_question("q1", "Which weekend works?", resolved=True),
        ])
        patch = StatePatch(add_questions=[QuestionInput(question="Which weekend works?")])

        new_state = apply_state_patch(state, patch, "a1", now=NOW)

        assert len(new_state.open_questions) == 2
        assert new_state.open_questions[1].id != "q1"

    def test_resolve_known_and_unknown_ids(self):
        """Unknown ids are ignored, resolved questions are kept."""
        state = _make_state(open_questions=[
            _make_question("q1", "Which weekend works?"),
            _make_question("q2", "Hotel or Airbnb?"),
        ])
        patch = StatePatch(resolve_question_ids=["q1", "q_missing"])

        new_state = apply_state_patch(state, patch, "a1", now=NOW)

        assert [q.resolved for q in new_state.open_questions] == [True, False]
        assert len(new_state.unresolved_questions()) == 1

    def test_similarity_heuristic(self):
        assert is_similar_question("Which  weekend works for you?", "which weekend works")
        assert not is_similar_question("Which weekend works?", "Hotel or Airbnb?")
        assert not is_similar_question("", "Hotel or Airbnb?")


class TestReplaceableLists:
    """Wholesale replacement for summary, steps and decisions."""

    def test_next_steps_truncated_to_max(self):
        steps = [f"Step {i}" for i in range(8)]

        new_state = apply_state_patch(
            _make_state(), StatePatch(suggested_next_steps=steps), "a1", now=NOW
        )

        assert new_state.suggested_next_steps == steps[:5]

    def test_empty_list_clears(self):
        state = _make_state(status_summary=["Dates agreed"])

        new_state = apply_state_patch(state, StatePatch(status_summary=[]), "a1", now=NOW)

        assert new_state.status_summary == []

    def test_missing_field_keeps_value(self):
        state = _make_state(status_summary=["Dates agreed"])

        new_state = apply_state_patch(state, StatePatch(leading_option="Porto"), "a1", now=NOW)

        assert new_state.status_summary == ["Dates agreed"]


class TestCoerceStatePatch:
    """Lenient coercion of untrusted payloads."""

    def test_non_dict_gives_empty_patch(self):
        assert coerce_state_patch("nonsense").is_empty()
        assert coerce_state_patch(None).is_empty()

    def test_malformed_fields_dropped_individually(self):
        patch = coerce_state_patch({
            "leading_option": "Porto",
            "stage": "partying",
            "status_summary": "not a list",
            "add_questions": [{"question": "Which weekend?"}, {"target": "Bob"}, 42],
            "add_constraints": [{"participantId": "u1", "text": "Vegan"}],
            "pending_decisions": [
                {"topic": "Dates", "confirmationsNeeded": ["u1"]},
                {"status": "proposed"},
            ],
        })

        assert patch.leading_option == "Porto"
        assert patch.stage is None
        assert patch.status_summary is None
        assert [q.question for q in patch.add_questions] == ["Which weekend?"]
        assert patch.add_questions[0].target == "All"
        assert patch.add_constraints[0].participant_id == "u1"
        assert patch.add_constraints[0].constraint == "Vegan"
        assert len(patch.pending_decisions) == 1
        assert patch.pending_decisions[0].confirmations_needed == ["u1"]

    def test_raw_dict_applies(self):
        new_state = apply_state_patch(
            _make_state(), {"suggested_next_steps": ["Book", " ", 3]}, "a1", now=NOW
        )
        assert new_state.suggested_next_steps == ["Book", "3"]


class TestStoredPreferences:
    """Stored profile preferences and their session override."""

    def test_seed_deduplicates(self):
        state = seed_stored_preferences(_make_state(), "u1", ["Window seat", "window seat", ""])

        assert len(state.constraints) == 1
        assert state.constraints[0].source == "stored_preference"

    def test_session_statement_supersedes_stored_preferences(self):
        state = seed_stored_preferences(_make_state(), "u1", ["Window seat"])
        state = seed_stored_preferences(state, "u2", ["Vegetarian"])
        state = apply_state_patch(
            state,
            StatePatch(add_constraints=[ConstraintInput(participant_id="u1", constraint="Aisle seat")]),
            "a1",
            now=NOW,
        )

        texts = [c.text for c in effective_constraints(state)]

        assert texts == ["Vegetarian", "Aisle seat"]
        assert len(state.constraints) == 3
