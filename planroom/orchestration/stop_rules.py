"""
Stop-rule evaluation for the turn orchestrator.

Decides from one turn's metadata whether the run should stop. Pure:
the handoff bookkeeping is returned, not mutated.
"""

import logging
from dataclasses import dataclass
from typing import FrozenSet, Iterable, Literal, Optional

from planroom.shared.contracts.turn_output import TurnMeta


logger = logging.getLogger(__name__)


StopReason = Literal[
    "WAIT_FOR_USER",
    "HANDOFF_DONE",
    "CAP_REACHED",
    "STALL_DETECTED",
    "ERROR",
    "CANCELLED",
]

# Stage each stop reason leaves the session in. CANCELLED is absent: the
# run that superseded the cancelled one owns the stage.
STAGE_FOR_STOP_REASON = {
    "WAIT_FOR_USER": "waiting_for_user",
    "STALL_DETECTED": "waiting_for_user",
    "CAP_REACHED": "waiting_for_user",
    "ERROR": "waiting_for_user",
    "HANDOFF_DONE": "converged",
}

HANDOFF_ACTIONS = ("HANDOFF_DONE", "DONE")


@dataclass(frozen=True)
class StopDecision:
    """
    Outcome of evaluating one turn.

    Attributes:
        reason: Stop reason, or None to keep going
        handoff_signaled_by: Agents that have signaled handoff so far this run
        deferred: True when an early-stop signal was ignored because too few
            turns have elapsed
    """

    reason: Optional[StopReason]
    handoff_signaled_by: FrozenSet[str]
    deferred: bool = False


def evaluate_stop_rules(
    turn_count: int,
    handoff_signaled_by: Iterable[str],
    meta: TurnMeta,
    author_id: str,
    all_agent_ids: Iterable[str],
    unresolved_question_count: int,
    min_turns: int = 2,
    confidence_threshold: float = 0.55,
) -> StopDecision:
    """
    Evaluate stop rules after a completed turn.

    Rules, in order:
    1. WAIT_FOR_USER stops once ``min_turns`` have elapsed; earlier it is deferred.
    2. Confidence below the threshold with questions for the user stops once
       ``min_turns`` have elapsed, even without an explicit WAIT_FOR_USER.
    3. HANDOFF_DONE (or DONE) records the author. It stops when every agent
       has signaled and no question is unresolved, or, once ``min_turns``
       have elapsed, on a single signal with no unresolved questions.

    Args:
        turn_count: Turns completed in this run, including this one
        handoff_signaled_by: Agents that signaled handoff earlier in the run
        meta: This turn's metadata
        author_id: Agent that produced this turn
        all_agent_ids: Every agent in the session
        unresolved_question_count: Unresolved open questions after the patch
        min_turns: Minimum-turns guard
        confidence_threshold: Low-confidence cut-off

    Returns:
        StopDecision with the reason (or None) and updated handoff set
    """
    signaled = frozenset(handoff_signaled_by)
    guard_satisfied = turn_count >= min_turns
    deferred = False

    if meta.next_action == "WAIT_FOR_USER":
        if guard_satisfied:
            return StopDecision("WAIT_FOR_USER", signaled)
        deferred = True

    if (
        meta.confidence < confidence_threshold
        and meta.questions_for_user
    ):
        if guard_satisfied:
            return StopDecision("WAIT_FOR_USER", signaled)
        deferred = True

    if meta.next_action in HANDOFF_ACTIONS:
        signaled = signaled | {author_id}
        all_signaled = all(agent_id in signaled for agent_id in all_agent_ids)

        if unresolved_question_count == 0:
            if all_signaled:
                return StopDecision("HANDOFF_DONE", signaled)
            if guard_satisfied:
                return StopDecision("HANDOFF_DONE", signaled)
            deferred = True

    return StopDecision(None, signaled, deferred)
