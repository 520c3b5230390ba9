"""
Unit tests for capabilities: the registry, the date tools and the
per-assistant capability sets.
"""

from datetime import date

import pytest
from pydantic import BaseModel

from planroom.shared.contracts.session_state import Participant
from planroom.tools.date_tools import get_day_of_week, get_days_between, get_upcoming_weekends
from planroom.tools.external import CapabilityBackends, build_assistant_capabilities
from planroom.tools.registry import (
    CapabilityRegistry,
    CapabilitySpec,
    InvalidArguments,
    ResolvedCapability,
    UnknownCapability,
)


class EchoArgs(BaseModel):
    text: str


def _make_spec(name="echo", handler=None) -> CapabilitySpec:
    return CapabilitySpec(
        name=name,
        description="Echo the text back",
        args_model=EchoArgs,
        handler=handler or (lambda args: args.text.upper()),
    )


class FakeCalendar:
    def free_busy(self, owner_id, time_min, time_max):
        return f"{owner_id} free"

    def list_events(self, owner_id, time_min, time_max, max_results):
        return f"{owner_id} events ({max_results})"


class FakeMail:
    def search(self, owner_id, query, max_results):
        return f"{owner_id} mail: {query}"


class TestCapabilityRegistry:
    """Resolution variants and execution."""

    def test_resolve_variants(self):
        registry = CapabilityRegistry([_make_spec()])

        assert isinstance(registry.resolve("echo", {"text": "hi"}), ResolvedCapability)
        assert isinstance(registry.resolve("missing", {}), UnknownCapability)
        assert isinstance(registry.resolve("echo", {}), InvalidArguments)
        assert isinstance(registry.resolve("echo", None), InvalidArguments)

    def test_disabled_capability_is_unknown(self):
        registry = CapabilityRegistry([_make_spec()])

        assert registry.execute("echo", {"text": "hi"}, enabled=[]) == "Unknown tool: echo"

    def test_execute_returns_strings_for_failures(self):
        def explode(args):
            raise RuntimeError("backend offline")

        registry = CapabilityRegistry([_make_spec(), _make_spec("boom", explode)])

        assert registry.execute("echo", {"text": "hi"}) == "HI"
        assert registry.execute("boom", {"text": "hi"}) == "Error executing boom: backend offline"
        assert registry.execute("echo", {}).startswith("Error executing echo: invalid arguments: text")

    def test_duplicate_names_rejected(self):
        registry = CapabilityRegistry([_make_spec()])

        with pytest.raises(ValueError):
            registry.register(_make_spec())

    def test_tool_schema_shape(self):
        schema = _make_spec().tool_schema()

        assert schema["type"] == "function"
        assert schema["function"]["name"] == "echo"
        assert "text" in schema["function"]["parameters"]["properties"]


class TestDateTools:
    """Calendar arithmetic."""

    def test_day_of_week(self):
        assert get_day_of_week("2026-01-15") == "2026-01-15 (January 15, 2026) is a **Thursday**"

    def test_upcoming_weekends_start_on_next_friday(self):
        text = get_upcoming_weekends(date(2026, 1, 15), 2)

        assert "**Weekend 1: January 16-18, 2026**" in text
        assert "**Weekend 2: January 23-25, 2026**" in text
        assert "Weekend 3" not in text

    def test_upcoming_weekends_count_capped(self):
        text = get_upcoming_weekends(date(2026, 1, 16), 50)

        assert "Weekend 12:" in text
        assert "Weekend 13:" not in text

    def test_days_between(self):
        text = get_days_between("2026-01-15", "2026-01-17")

        assert text.startswith("Date range: 2026-01-15 to 2026-01-17 (3 days)")
        assert "2026-01-17 (Saturday)" in text

    def test_days_between_truncates(self):
        text = get_days_between("2026-01-01", "2026-12-31")

        assert "(365 days)" in text
        assert text.endswith("... (truncated, showing first 60 days)")

    def test_days_between_reversed(self):
        assert get_days_between("2026-01-17", "2026-01-15") == "Error: End date must be after start date"

    def test_bad_date_reported_through_registry(self):
        registry = build_assistant_capabilities(
            Participant(id="a1", kind="agent", display_name="A", owner_id="u1"), "Alice"
        )

        result = registry.execute("date_get_day_of_week", {"date": "next friday"})

        assert result.startswith("Error executing date_get_day_of_week")

    def test_weekends_default_to_injected_today(self):
        registry = build_assistant_capabilities(
            Participant(id="a1", kind="agent", display_name="A", owner_id="u1"),
            "Alice",
            today=lambda: date(2026, 1, 15),
        )

        result = registry.execute("date_get_upcoming_weekends", {})

        assert result.startswith("Upcoming weekends from 2026-01-15")


class TestAssistantCapabilities:
    """Which capabilities each assistant gets."""

    def test_calendar_and_mail_need_flag_and_backend(self):
        backends = CapabilityBackends(calendar=FakeCalendar(), mail=FakeMail())
        with_access = Participant(
            id="a1", kind="agent", display_name="A", owner_id="u1", has_calendar=True, has_mail=True
        )
        without_access = Participant(id="a2", kind="agent", display_name="B", owner_id="u2")

        granted = build_assistant_capabilities(with_access, "Alice", backends).names()
        denied = build_assistant_capabilities(without_access, "Bob", backends).names()

        assert {"calendar_free_busy", "calendar_list_events", "gmail_search"} <= set(granted)
        assert "calendar_free_busy" not in denied
        assert "gmail_search" not in denied
        assert "date_days_between" in denied

    def test_calendar_scoped_to_owner(self):
        backends = CapabilityBackends(calendar=FakeCalendar())
        agent = Participant(id="a1", kind="agent", display_name="A", owner_id="u1", has_calendar=True)

        registry = build_assistant_capabilities(agent, "Alice", backends)

        assert registry.execute("calendar_free_busy", {"timeMax": "2026-01-20T00:00:00Z"}) == "u1 free"
