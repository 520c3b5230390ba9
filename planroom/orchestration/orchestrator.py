"""
Turn orchestrator.

Entry point for running the assistants of a session until they hand
control back to the humans. ``start_run`` registers the run as the
session's live run immediately and returns a RunStream of run events;
iterating it drives the run graph to completion. Closing the stream
releases the session's live-run slot whether or not it was iterated.

Usage:
    orchestrator = TurnOrchestrator(store, adapter=AgentCallAdapter(engine))
    for event in orchestrator.start_run(session_id):
        print(event.type)
"""

import logging
from typing import Any, Generator, Iterator, Optional

from planroom.assistant.adapter import AgentCallAdapter
from planroom.assistant.engine import OpenAIReasoningEngine
from planroom.orchestration.config import DEFAULT_CONFIG, OrchestratorConfig
from planroom.orchestration.events import DoneEvent, ErrorEvent
from planroom.orchestration.graph import RunDependencies, build_run_graph, initial_run_state
from planroom.orchestration.privacy_filter import LLMPrivacyFilter, PrivacyFilter
from planroom.orchestration.reducer import apply_state_patch
from planroom.orchestration.step_completion import StepCompletionDetector
from planroom.session.registry import RunRegistry
from planroom.session.store import SessionStore
from planroom.shared.contracts.turn_output import StatePatch
from planroom.tools.external import CapabilityBackends


logger = logging.getLogger(__name__)


class RunStream:
    """
    Event iterator for one run.

    ``close()`` stops the run and releases its live-run slot, including
    when no event was ever consumed.
    """

    def __init__(
        self,
        events: Generator[Any, None, None],
        registry: RunRegistry,
        session_id: str,
        run_id: str,
    ):
        self._events = events
        self._registry = registry
        self.session_id = session_id
        self.run_id = run_id

    def __iter__(self) -> "RunStream":
        return self

    def __next__(self) -> Any:
        return next(self._events)

    def close(self) -> None:
        try:
            self._events.close()
        finally:
            self._registry.clear(self.session_id, self.run_id)


class TurnOrchestrator:
    """
    Runs assistant turns for sessions held in a SessionStore.

    One orchestrator can serve many sessions. Each session has a single
    live run; starting a new run supersedes the previous one, which stops
    at its next check with stop reason CANCELLED.
    """

    def __init__(
        self,
        store: SessionStore,
        adapter: Optional[AgentCallAdapter] = None,
        config: OrchestratorConfig = DEFAULT_CONFIG,
        registry: Optional[RunRegistry] = None,
        backends: Optional[CapabilityBackends] = None,
        privacy_filter: Optional[PrivacyFilter] = None,
        step_detector: Optional[StepCompletionDetector] = None,
    ):
        self.store = store
        self.config = config
        self.registry = registry or RunRegistry()

        if adapter is None:
            engine = OpenAIReasoningEngine(
                model=config.assistant_model, temperature=config.temperature
            )
            adapter = AgentCallAdapter(engine, config=config, backends=backends)
        if privacy_filter is None and config.enable_privacy_filter:
            privacy_filter = LLMPrivacyFilter(model=config.filter_model)
        if step_detector is None and config.enable_step_detection:
            step_detector = StepCompletionDetector(model=config.filter_model)

        self._deps = RunDependencies(
            store=store,
            registry=self.registry,
            adapter=adapter,
            config=config,
            privacy_filter=privacy_filter,
            step_detector=step_detector,
        )
        self._graph = None

    def get_graph(self):
        """Compiled run graph, built on first use."""
        if self._graph is None:
            self._graph = build_run_graph(self._deps)
        return self._graph

    def start_run(self, session_id: str, run_id: Optional[str] = None) -> RunStream:
        """
        Register a new live run for the session and return its event stream.

        Registration happens here, before the first event is consumed, so
        a run that was live for the session observes cancellation at its
        next check even if this stream is never iterated. Close the stream
        to give up on the run early.

        Raises:
            SessionNotFoundError: If the session does not exist
        """
        session = self.store.get_session(session_id)
        run_id = self.registry.register(session.id, run_id)
        logger.info(
            f"[session={session_id}] [run={run_id[:8]}] Run registered | "
            f"agents={len(session.agents())}"
        )
        return RunStream(self._run(session_id, run_id), self.registry, session_id, run_id)

    def run_to_completion(self, session_id: str) -> DoneEvent:
        """Drain a run and return its done event."""
        done = None
        events = self.start_run(session_id)
        try:
            for event in events:
                if isinstance(event, DoneEvent):
                    done = event
        finally:
            events.close()
        return done

    def _run(self, session_id: str, run_id: str) -> Iterator[Any]:
        _log = f"[session={session_id}] [run={run_id[:8]}] "
        try:
            session = self.store.get_session(session_id)
            if not session.agents():
                yield from self._abort(session_id, run_id, "No assistants in this session")
                return

            initial = initial_run_state(
                session, run_id, self.store.load_canonical_state(session_id)
            )
            done_seen = False
            try:
                for update in self.get_graph().stream(
                    initial,
                    config={"recursion_limit": self.config.recursion_limit()},
                    stream_mode="updates",
                ):
                    for delta in update.values():
                        for event in (delta or {}).get("events", []):
                            done_seen = done_seen or isinstance(event, DoneEvent)
                            yield event
            except Exception as e:
                if done_seen:
                    raise
                logger.exception(f"{_log}Run failed: {e}")
                yield from self._abort(session_id, run_id, "Run failed unexpectedly")
        finally:
            self.registry.clear(session_id, run_id)

    def _abort(self, session_id: str, run_id: str, text: str) -> Iterator[Any]:
        """Error event plus done(ERROR), leaving the session waiting for the user."""
        if self.registry.is_live(session_id, run_id):
            state = self.store.load_canonical_state(session_id)
            if state.stage != "waiting_for_user":
                state = apply_state_patch(
                    state,
                    StatePatch(stage="waiting_for_user"),
                    "system",
                    max_next_steps=self.config.max_next_steps,
                )
                self.store.save_canonical_state(session_id, state)
        yield ErrorEvent(text=text, recoverable=False)
        yield DoneEvent(stop_reason="ERROR", run_id=run_id)
