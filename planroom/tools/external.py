"""
External capabilities bound to injected backends.

The service does not talk to calendar, mail, maps or search providers
itself. Callers inject backend objects implementing the protocols
below; a capability is only offered when its backend is present and,
for calendar and mail, when the assistant's owner has connected it.
"""

import logging
from dataclasses import dataclass
from datetime import date, datetime, timezone
from typing import Callable, List, Optional, Protocol, runtime_checkable

from pydantic import BaseModel, ConfigDict, Field

from planroom.shared.contracts.session_state import Participant
from planroom.tools.date_tools import DATE_CAPABILITY_NAMES, build_date_capabilities
from planroom.tools.registry import CapabilityRegistry, CapabilitySpec


logger = logging.getLogger(__name__)


@runtime_checkable
class CalendarBackend(Protocol):
    def free_busy(self, owner_id: str, time_min: str, time_max: str) -> str:
        ...

    def list_events(self, owner_id: str, time_min: str, time_max: str, max_results: int) -> str:
        ...


@runtime_checkable
class MailBackend(Protocol):
    def search(self, owner_id: str, query: str, max_results: int) -> str:
        ...


@runtime_checkable
class MapsBackend(Protocol):
    def search_places(self, query: str, max_results: int) -> str:
        ...


@runtime_checkable
class WebSearchBackend(Protocol):
    def search(self, query: str) -> str:
        ...


@dataclass
class CapabilityBackends:
    """Backends available to this process. Any of them may be missing."""

    calendar: Optional[CalendarBackend] = None
    mail: Optional[MailBackend] = None
    maps: Optional[MapsBackend] = None
    web_search: Optional[WebSearchBackend] = None


# =============================================================================
# Argument models
# =============================================================================


class CalendarRangeArgs(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    time_min: Optional[str] = Field(
        default=None,
        alias="timeMin",
        description="Start of range in ISO format (e.g., '2026-01-15T00:00:00Z'). Defaults to now.",
    )
    time_max: str = Field(
        alias="timeMax",
        description="End of range in ISO format (e.g., '2026-01-22T23:59:59Z')",
    )


class CalendarListArgs(CalendarRangeArgs):
    max_results: int = Field(
        default=10, alias="maxResults", description="Maximum events to return (max 50)"
    )


class MailSearchArgs(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    query: str = Field(description="Gmail search query, e.g. 'from:airline subject:confirmation newer_than:1y'")
    max_results: int = Field(
        default=5, alias="maxResults", description="Maximum emails to return (max 20)"
    )


class PlaceSearchArgs(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    query: str = Field(
        description="Place type and location, e.g. 'vegetarian restaurants in Brooklyn'"
    )
    max_results: int = Field(
        default=5, alias="maxResults", description="Maximum results to return (max 10)"
    )


class WebSearchArgs(BaseModel):
    query: str = Field(description="What to search the web for")


def _utc_now_iso() -> str:
    return datetime.now(timezone.utc).isoformat().replace("+00:00", "Z")


# =============================================================================
# Capability builders
# =============================================================================


def calendar_capabilities(
    backend: CalendarBackend,
    owner_id: str,
    owner_name: str,
    now: Callable[[], str] = _utc_now_iso,
) -> List[CapabilitySpec]:
    def free_busy(args: CalendarRangeArgs) -> str:
        return backend.free_busy(owner_id, args.time_min or now(), args.time_max)

    def list_events(args: CalendarListArgs) -> str:
        return backend.list_events(
            owner_id, args.time_min or now(), args.time_max, min(args.max_results, 50)
        )

    return [
        CapabilitySpec(
            name="calendar_free_busy",
            description=f"Check when {owner_name} is busy or free during a time range.",
            args_model=CalendarRangeArgs,
            handler=free_busy,
            prompt_line=(
                f"calendar_free_busy (DEFAULT) - {owner_name}'s busy/free blocks, no event details"
            ),
        ),
        CapabilitySpec(
            name="calendar_list_events",
            description=(
                f"List {owner_name}'s calendar events with titles. Only when event "
                "details are needed, not for scheduling."
            ),
            args_model=CalendarListArgs,
            handler=list_events,
            prompt_line=(
                f"calendar_list_events - {owner_name}'s events with titles; "
                "only when they asked to share details"
            ),
        ),
    ]


def mail_capabilities(backend: MailBackend, owner_id: str, owner_name: str) -> List[CapabilitySpec]:
    return [
        CapabilitySpec(
            name="gmail_search",
            description=(
                f"Search {owner_name}'s Gmail for confirmations, reservations and receipts. "
                "Supports Gmail query syntax (from:, subject:, newer_than:, has:attachment)."
            ),
            args_model=MailSearchArgs,
            handler=lambda args: backend.search(owner_id, args.query, min(args.max_results, 20)),
            prompt_line=f"gmail_search - Search {owner_name}'s emails for confirmations and receipts",
        )
    ]


def maps_capabilities(backend: MapsBackend) -> List[CapabilitySpec]:
    return [
        CapabilitySpec(
            name="maps_search_places",
            description=(
                "Search for places, restaurants or venues. Include the location in the query."
            ),
            args_model=PlaceSearchArgs,
            handler=lambda args: backend.search_places(args.query, min(args.max_results, 10)),
            prompt_line="maps_search_places - Find places, restaurants and venues",
        )
    ]


def web_search_capabilities(backend: WebSearchBackend) -> List[CapabilitySpec]:
    return [
        CapabilitySpec(
            name="web_search",
            description="Search the web for flights, hotels, restaurants and activities.",
            args_model=WebSearchArgs,
            handler=lambda args: backend.search(args.query),
            prompt_line="web_search - Find flights, hotels, restaurants, activities; include links",
        )
    ]


def build_assistant_capabilities(
    agent: Participant,
    owner_name: str,
    backends: Optional[CapabilityBackends] = None,
    today: Callable[[], date] = date.today,
) -> CapabilityRegistry:
    """
    Registry of every capability enabled for one assistant.

    Date capabilities are always present. Calendar and mail require both
    the backend and the matching flag on the assistant; maps and web
    search only require their backend.
    """
    backends = backends or CapabilityBackends()
    owner_id = agent.owner_id or agent.id

    registry = CapabilityRegistry(build_date_capabilities(today))
    if backends.web_search is not None:
        for spec in web_search_capabilities(backends.web_search):
            registry.register(spec)
    if backends.calendar is not None and agent.has_calendar:
        for spec in calendar_capabilities(backends.calendar, owner_id, owner_name):
            registry.register(spec)
    if backends.mail is not None and agent.has_mail:
        for spec in mail_capabilities(backends.mail, owner_id, owner_name):
            registry.register(spec)
    if backends.maps is not None:
        for spec in maps_capabilities(backends.maps):
            registry.register(spec)

    logger.debug(
        f"Capabilities for {agent.id}: {registry.names()} "
        f"(date tools: {len(DATE_CAPABILITY_NAMES)})"
    )
    return registry
