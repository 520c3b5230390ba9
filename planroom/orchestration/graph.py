"""
Run loop graph.

One orchestration run is a LangGraph StateGraph looping over four nodes:

    guard -> speak -> apply_turn -> guard ... -> finalize -> END

- guard: liveness check, turn cap, next speaker selection
- speak: one agent call through the adapter (errors counted here)
- apply_turn: liveness re-check, message, patch, stall and stop rules
- finalize: stage on stop, final save, done event

Every node returns the events it produced under ``events``; the
orchestrator streams node updates and yields those events in order.
"""

import logging
import operator
import time
import uuid
from dataclasses import dataclass
from typing import Annotated, Any, Dict, List, Literal, Optional, TypedDict

from langgraph.graph import END, StateGraph

from planroom.assistant.adapter import AgentCallAdapter
from planroom.assistant.prompts.builders import PromptContext
from planroom.orchestration.config import OrchestratorConfig
from planroom.orchestration.events import (
    DoneEvent,
    ErrorEvent,
    MessageEvent,
    StateUpdateEvent,
    StatusEvent,
)
from planroom.orchestration.handoff import (
    CAP_HANDOFF_AUTHOR_ID,
    CAP_HANDOFF_AUTHOR_NAME,
    build_cap_handoff_message,
    build_stall_patch,
    summarize_canonical_state,
)
from planroom.orchestration.privacy_filter import PrivacyFilter
from planroom.orchestration.reducer import apply_state_patch
from planroom.orchestration.signature import compute_state_signature, count_and_record, is_stall
from planroom.orchestration.step_completion import StepCompletionDetector, merge_completed_steps
from planroom.orchestration.stop_rules import STAGE_FOR_STOP_REASON, evaluate_stop_rules
from planroom.session.registry import RunRegistry
from planroom.session.store import Session, SessionStore
from planroom.shared.contracts.session_state import CanonicalState, ChatMessage, Participant
from planroom.shared.contracts.turn_output import AgentTurnResult, StatePatch, TurnMeta
from planroom.shared.logging.config import log_state_transition
from planroom.shared.logging.debug_logger import get_or_create_logger


logger = logging.getLogger(__name__)


class RunState(TypedDict):
    """
    State flowing through the run graph.

    Created at run start, discarded at run end. ``canonical_state`` is the
    run's working copy; it is saved to the store after every change.
    """

    session_id: str
    run_id: str
    trigger_author_id: Optional[str]
    agent_order: List[str]

    canonical_state: CanonicalState
    turn_count: int
    consecutive_errors: int
    speaker_index: int
    current_speaker: Optional[str]
    next_speaker_hint: Optional[str]
    handoff_signaled_by: List[str]
    state_signatures: List[str]
    pending_result: Optional[AgentTurnResult]

    stop_reason: Optional[str]
    events: Annotated[List[Any], operator.add]


@dataclass
class RunDependencies:
    """Collaborators shared by every run of one orchestrator."""

    store: SessionStore
    registry: RunRegistry
    adapter: AgentCallAdapter
    config: OrchestratorConfig
    privacy_filter: Optional[PrivacyFilter] = None
    step_detector: Optional[StepCompletionDetector] = None


def order_agents(session: Session) -> List[str]:
    """
    Agent ids in speaking order.

    The agent owned by the author of the most recent human message goes
    first; the rest keep their session order.
    """
    agents = session.agents()
    trigger = next((m for m in reversed(session.messages) if m.role == "user"), None)
    owner_first = next(
        (a for a in agents if trigger is not None and a.owner_id == trigger.author_id), None
    )
    if owner_first is None:
        return [a.id for a in agents]
    return [owner_first.id] + [a.id for a in agents if a.id != owner_first.id]


def resolve_speaker_hint(hint: Optional[str], agents: List[Participant]) -> Optional[str]:
    """Match a speaker hint against agent ids, then display names (case-insensitive)."""
    if not hint:
        return None
    for agent in agents:
        if agent.id == hint:
            return agent.id
    key = hint.strip().lstrip("@").lower()
    for agent in agents:
        if agent.display_name.lower() == key:
            return agent.id
    return None


def _log_prefix(state: RunState, node: str) -> str:
    return f"[session={state['session_id']}] [run={state['run_id'][:8]}] [node={node}] "


def _apply_stop_stage(
    canonical: CanonicalState,
    stop_reason: str,
    max_next_steps: int,
) -> Optional[CanonicalState]:
    """State with the stage a stop reason implies, or None if unchanged."""
    stage = STAGE_FOR_STOP_REASON.get(stop_reason)
    if stage is None or canonical.stage == stage:
        return None
    return apply_state_patch(
        canonical, StatePatch(stage=stage), "system", max_next_steps=max_next_steps
    )


# =============================================================================
# Graph
# =============================================================================


def build_run_graph(deps: RunDependencies):
    """
    Build and compile the run-loop graph.

    Args:
        deps: Store, registry, adapter and optional helper passes

    Returns:
        Compiled graph ready for ``stream``
    """
    config = deps.config

    def save_state(session_id: str, state: CanonicalState) -> CanonicalState:
        """
        Persist the run's working copy and return what was saved.

        The goal belongs to the session, not the run: a goal set while the
        run is live is carried over instead of being overwritten.
        """
        stored_goal = deps.store.load_canonical_state(session_id).goal
        if stored_goal != state.goal:
            state = state.model_copy(update={"goal": stored_goal})
        deps.store.save_canonical_state(session_id, state)
        return state

    def guard_node(state: RunState) -> Dict[str, Any]:
        _log = _log_prefix(state, "guard")
        session_id = state["session_id"]

        if not deps.registry.is_live(session_id, state["run_id"]):
            logger.info(f"{_log}Run superseded -> CANCELLED")
            return {"stop_reason": "CANCELLED", "events": []}

        if state["turn_count"] >= config.hard_cap:
            logger.info(f"{_log}Turn cap reached | turns={state['turn_count']}")
            canonical = state["canonical_state"]
            handoff = ChatMessage(
                id=uuid.uuid4().hex,
                session_id=session_id,
                role="assistant",
                author_id=CAP_HANDOFF_AUTHOR_ID,
                author_name=CAP_HANDOFF_AUTHOR_NAME,
                content=build_cap_handoff_message(canonical),
            )
            deps.store.add_message(session_id, handoff)
            new_state = apply_state_patch(
                canonical,
                StatePatch(stage="waiting_for_user"),
                CAP_HANDOFF_AUTHOR_ID,
                max_next_steps=config.max_next_steps,
            )
            new_state = save_state(session_id, new_state)
            return {
                "stop_reason": "CAP_REACHED",
                "canonical_state": new_state,
                "events": [
                    MessageEvent(message=handoff),
                    StateUpdateEvent(state=new_state, author_id=CAP_HANDOFF_AUTHOR_ID),
                ],
            }

        order = state["agent_order"]
        hinted = state.get("next_speaker_hint")
        if hinted in order:
            speaker = hinted
        else:
            speaker = order[state["speaker_index"] % len(order)]
        logger.info(
            f"{_log}Next speaker {speaker} | turn={state['turn_count'] + 1}, "
            f"hinted={hinted is not None}"
        )
        return {"current_speaker": speaker, "events": []}

    def speak_node(state: RunState) -> Dict[str, Any]:
        _log = _log_prefix(state, "speak")
        session_id = state["session_id"]
        speaker_id = state["current_speaker"]
        session = deps.store.get_session(session_id)
        agent = session.participant(speaker_id)
        owner = session.participant(agent.owner_id)

        events: List[Any] = [
            StatusEvent(text=f"{agent.display_name} is thinking...", agent_id=agent.id)
        ]

        def on_retry(attempt: int, error: BaseException) -> None:
            events.append(ErrorEvent(
                text=(
                    f"Rate limited - waiting before retry "
                    f"({attempt}/{config.max_rate_limit_retries})"
                ),
                agent_id=agent.id,
            ))

        is_primary = (
            state["turn_count"] == 0
            and state["consecutive_errors"] == 0
            and owner.id == state.get("trigger_author_id")
        )
        context = PromptContext(
            agent=agent,
            owner=owner,
            owner_profile=session.profiles.get(owner.id, []),
            participants=session.participants,
            state=state["canonical_state"],
            messages=session.messages,
            is_primary=is_primary,
        )

        start_time = time.perf_counter()
        try:
            result = deps.adapter.call_agent(context, on_retry=on_retry)
        except Exception as e:
            errors = state["consecutive_errors"] + 1
            logger.exception(f"{_log}Agent call failed ({errors}/{config.max_consecutive_errors}): {e}")
            events.append(ErrorEvent(text=f"{agent.display_name} encountered an error", agent_id=agent.id))
            update: Dict[str, Any] = {
                "consecutive_errors": errors,
                "pending_result": None,
                "speaker_index": state["agent_order"].index(speaker_id) + 1,
                "next_speaker_hint": None,
                "events": events,
            }
            if errors >= config.max_consecutive_errors:
                events.append(ErrorEvent(text="Too many errors - stopping collaboration", recoverable=False))
                update["stop_reason"] = "ERROR"
            return update

        duration_ms = (time.perf_counter() - start_time) * 1000
        turn = state["turn_count"] + 1
        logger.info(
            f"{_log}Agent responded | turn={turn}, duration={duration_ms:.0f}ms, "
            f"rounds={result.rounds}, skipped={result.skipped}, finalized={result.finalized}, "
            f"next_action={result.meta.next_action if result.meta else None}"
        )
        if config.enable_debug_log:
            get_or_create_logger(session_id, config.logs_dir).log_agent_call(
                run_id=state["run_id"],
                turn=turn,
                agent_id=agent.id,
                duration_ms=duration_ms,
                rounds=result.rounds,
                input_tokens=result.usage.get("input_tokens", 0),
                output_tokens=result.usage.get("output_tokens", 0),
                model=config.assistant_model,
                skipped=result.skipped,
                next_action=result.meta.next_action if result.meta else None,
            )

        return {
            "turn_count": turn,
            "consecutive_errors": 0,
            "pending_result": result,
            "events": events,
        }

    def apply_turn_node(state: RunState) -> Dict[str, Any]:
        _log = _log_prefix(state, "apply_turn")
        session_id = state["session_id"]
        speaker_id = state["current_speaker"]
        result: AgentTurnResult = state["pending_result"]
        next_index = state["agent_order"].index(speaker_id) + 1

        if not deps.registry.is_live(session_id, state["run_id"]):
            logger.info(f"{_log}Run superseded before applying turn -> CANCELLED")
            return {"stop_reason": "CANCELLED", "pending_result": None, "events": []}

        if result.skipped:
            logger.info(f"{_log}{speaker_id} skipped")
            return {
                "pending_result": None,
                "speaker_index": next_index,
                "next_speaker_hint": None,
                "events": [],
            }

        session = deps.store.get_session(session_id)
        agent = session.participant(speaker_id)
        owner = session.participant(agent.owner_id)
        canonical = state["canonical_state"]
        meta = result.meta or TurnMeta()
        events: List[Any] = []

        content = result.content
        if config.enable_privacy_filter and deps.privacy_filter is not None:
            recipients = [p.display_name for p in session.participants if p.id != agent.id]
            filtered = deps.privacy_filter.filter(content, canonical, owner.display_name, recipients)
            if filtered.was_modified:
                logger.info(f"{_log}Privacy filter modified message")
            content = filtered.filtered_message

        message = ChatMessage(
            id=uuid.uuid4().hex,
            session_id=session_id,
            role="assistant",
            author_id=agent.id,
            author_name=agent.display_name,
            content=content,
            citations=result.citations,
        )
        deps.store.add_message(session_id, message)
        events.append(MessageEvent(message=message))

        patch = meta.state_patch or StatePatch()
        new_state = apply_state_patch(
            canonical,
            patch,
            agent.id,
            max_next_steps=config.max_next_steps,
            prefix_length=config.question_prefix_length,
        )
        if (
            config.enable_step_detection
            and deps.step_detector is not None
            and patch.suggested_next_steps is not None
        ):
            completed = deps.step_detector.detect(
                canonical.suggested_next_steps, new_state.suggested_next_steps, content
            )
            if completed:
                new_state.completed_next_steps = merge_completed_steps(
                    new_state.completed_next_steps, completed
                )
        new_state = save_state(session_id, new_state)
        events.append(StateUpdateEvent(state=new_state, author_id=agent.id))

        signature = compute_state_signature(new_state)
        repeats, signatures = count_and_record(state["state_signatures"], signature)
        if is_stall(repeats, config.stall_repeat_threshold):
            logger.info(f"{_log}Stall detected | repeats={repeats}, signature={signature[:12]}")
            stalled_state = apply_state_patch(
                new_state,
                build_stall_patch(new_state),
                "system",
                max_next_steps=config.max_next_steps,
                prefix_length=config.question_prefix_length,
            )
            stalled_state = save_state(session_id, stalled_state)
            events.append(StateUpdateEvent(state=stalled_state, author_id="system"))
            return {
                "canonical_state": stalled_state,
                "state_signatures": signatures,
                "pending_result": None,
                "stop_reason": "STALL_DETECTED",
                "events": events,
            }

        decision = evaluate_stop_rules(
            turn_count=state["turn_count"],
            handoff_signaled_by=state["handoff_signaled_by"],
            meta=meta,
            author_id=agent.id,
            all_agent_ids=state["agent_order"],
            unresolved_question_count=len(new_state.unresolved_questions()),
            min_turns=config.min_turns_for_early_stop,
            confidence_threshold=config.confidence_threshold,
        )
        if decision.deferred:
            logger.info(f"{_log}Early stop deferred by minimum-turns guard | turn={state['turn_count']}")
        if decision.reason:
            logger.info(f"{_log}Stop rule fired -> {decision.reason}")

        hint = resolve_speaker_hint(meta.next_speaker, session.agents())
        return {
            "canonical_state": new_state,
            "state_signatures": signatures,
            "handoff_signaled_by": sorted(decision.handoff_signaled_by),
            "pending_result": None,
            "speaker_index": next_index,
            "next_speaker_hint": hint if hint != agent.id else None,
            "stop_reason": decision.reason,
            "events": events,
        }

    def finalize_node(state: RunState) -> Dict[str, Any]:
        _log = _log_prefix(state, "finalize")
        session_id = state["session_id"]
        stop_reason = state["stop_reason"] or "ERROR"
        canonical = state["canonical_state"]
        events: List[Any] = []

        if stop_reason != "CANCELLED":
            staged = _apply_stop_stage(canonical, stop_reason, config.max_next_steps)
            canonical = save_state(session_id, staged or canonical)
            if staged is not None:
                events.append(StateUpdateEvent(state=canonical, author_id="system"))
            log_state_transition(
                f"run_stopped:{stop_reason}",
                canonical,
                extra={"session_id": session_id, "run_id": state["run_id"], "turn_count": state["turn_count"]},
                logger=logger,
            )
            if config.enable_debug_log:
                get_or_create_logger(session_id, config.logs_dir).log_run_summary(
                    state["run_id"], stop_reason, state["turn_count"]
                )

        logger.info(f"{_log}Run stopped | reason={stop_reason}, turns={state['turn_count']}")
        events.append(DoneEvent(
            stop_reason=stop_reason,
            run_id=state["run_id"],
            turn_count=state["turn_count"],
            summary="" if stop_reason == "CANCELLED" else summarize_canonical_state(canonical),
        ))
        return {"canonical_state": canonical, "stop_reason": stop_reason, "events": events}

    # Routers

    def route_after_guard(state: RunState) -> Literal["speak", "finalize"]:
        return "finalize" if state.get("stop_reason") else "speak"

    def route_after_speak(state: RunState) -> Literal["apply_turn", "guard", "finalize"]:
        if state.get("stop_reason"):
            return "finalize"
        if state.get("pending_result") is None:
            return "guard"
        return "apply_turn"

    def route_after_apply(state: RunState) -> Literal["guard", "finalize"]:
        return "finalize" if state.get("stop_reason") else "guard"

    graph = StateGraph(RunState)
    graph.add_node("guard", guard_node)
    graph.add_node("speak", speak_node)
    graph.add_node("apply_turn", apply_turn_node)
    graph.add_node("finalize", finalize_node)

    graph.set_entry_point("guard")
    graph.add_conditional_edges(
        "guard", route_after_guard, {"speak": "speak", "finalize": "finalize"}
    )
    graph.add_conditional_edges(
        "speak",
        route_after_speak,
        {"apply_turn": "apply_turn", "guard": "guard", "finalize": "finalize"},
    )
    graph.add_conditional_edges(
        "apply_turn", route_after_apply, {"guard": "guard", "finalize": "finalize"}
    )
    graph.add_edge("finalize", END)

    return graph.compile()


def initial_run_state(
    session: Session,
    run_id: str,
    canonical_state: CanonicalState,
) -> RunState:
    """Fresh RunState for a run over ``session``."""
    trigger = next((m for m in reversed(session.messages) if m.role == "user"), None)
    return RunState(
        session_id=session.id,
        run_id=run_id,
        trigger_author_id=trigger.author_id if trigger else None,
        agent_order=order_agents(session),
        canonical_state=canonical_state,
        turn_count=0,
        consecutive_errors=0,
        speaker_index=0,
        current_speaker=None,
        next_speaker_hint=None,
        handoff_signaled_by=[],
        state_signatures=[],
        pending_result=None,
        stop_reason=None,
        events=[],
    )
