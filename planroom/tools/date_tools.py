"""
Date capabilities.

Pure calendar arithmetic so assistants never guess what day a date
falls on. Always enabled, for every assistant.
"""

from datetime import date, timedelta
from typing import Callable, List, Optional

from pydantic import BaseModel, ConfigDict, Field

from planroom.tools.registry import CapabilitySpec


DEFAULT_WEEKEND_COUNT = 4
MAX_WEEKEND_COUNT = 12
MAX_LISTED_DAYS = 60

FRIDAY = 4


class DayOfWeekArgs(BaseModel):
    date: str = Field(description="Date in YYYY-MM-DD format (e.g., 2026-01-15)")


class UpcomingWeekendsArgs(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    start_date: Optional[str] = Field(
        default=None,
        alias="startDate",
        description="Start date in YYYY-MM-DD format (defaults to today)",
    )
    count: Optional[int] = Field(
        default=None, description="Number of weekends to return (default 4, max 12)"
    )


class DaysBetweenArgs(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    start_date: str = Field(alias="startDate", description="Start date in YYYY-MM-DD format")
    end_date: str = Field(alias="endDate", description="End date in YYYY-MM-DD format")


def parse_date(value: str) -> date:
    """Parse YYYY-MM-DD. Raises ValueError on anything else."""
    return date.fromisoformat(value.strip())


def _long_date(d: date) -> str:
    return f"{d:%B} {d.day}, {d.year}"


def get_day_of_week(value: str) -> str:
    d = parse_date(value)
    return f"{d.isoformat()} ({_long_date(d)}) is a **{d:%A}**"


def get_upcoming_weekends(start: date, count: Optional[int] = None) -> str:
    """
    Next ``count`` Friday-to-Sunday weekends on or after ``start``.

    ``count`` defaults to 4 and is capped at 12.
    """
    number = min(count or DEFAULT_WEEKEND_COUNT, MAX_WEEKEND_COUNT)
    friday = start + timedelta(days=(FRIDAY - start.weekday()) % 7)

    weekends = []
    for i in range(number):
        saturday = friday + timedelta(days=1)
        sunday = friday + timedelta(days=2)
        weekends.append(
            f"**Weekend {i + 1}: {friday:%B} {friday.day}-{sunday.day}, {friday.year}**\n"
            f"  - Friday {friday.isoformat()}: {friday:%A}\n"
            f"  - Saturday {saturday.isoformat()}: {saturday:%A}\n"
            f"  - Sunday {sunday.isoformat()}: {sunday:%A}"
        )
        friday += timedelta(days=7)

    return f"Upcoming weekends from {start.isoformat()}:\n\n" + "\n\n".join(weekends)


def get_days_between(start_value: str, end_value: str) -> str:
    """Every date from start to end inclusive, at most 60 listed."""
    start = parse_date(start_value)
    end = parse_date(end_value)
    if end < start:
        return "Error: End date must be after start date"

    total_days = (end - start).days + 1
    lines: List[str] = []
    for offset in range(min(total_days, MAX_LISTED_DAYS)):
        d = start + timedelta(days=offset)
        lines.append(f"{d.isoformat()} ({d:%A})")
    if total_days > MAX_LISTED_DAYS:
        lines.append(f"... (truncated, showing first {MAX_LISTED_DAYS} days)")

    return (
        f"Date range: {start.isoformat()} to {end.isoformat()} ({total_days} days)\n\n"
        + "\n".join(lines)
    )


def build_date_capabilities(today: Callable[[], date] = date.today) -> List[CapabilitySpec]:
    """Date capability specs. ``today`` is injectable for tests."""

    def upcoming_weekends(args: UpcomingWeekendsArgs) -> str:
        start = parse_date(args.start_date) if args.start_date else today()
        return get_upcoming_weekends(start, args.count)

    return [
        CapabilitySpec(
            name="date_get_day_of_week",
            description=(
                "Get the day of the week for a specific date. Use this instead of "
                "working out days of the week yourself."
            ),
            args_model=DayOfWeekArgs,
            handler=lambda args: get_day_of_week(args.date),
            prompt_line="date_get_day_of_week - What day a date falls on",
        ),
        CapabilitySpec(
            name="date_get_upcoming_weekends",
            description=(
                "Get the next N weekends from a start date, with Friday, Saturday "
                "and Sunday dates. Use when planning weekend trips or activities."
            ),
            args_model=UpcomingWeekendsArgs,
            handler=upcoming_weekends,
            prompt_line="date_get_upcoming_weekends - Upcoming Friday-Sunday weekends",
        ),
        CapabilitySpec(
            name="date_days_between",
            description=(
                "Count the days between two dates and list each date with its day of week."
            ),
            args_model=DaysBetweenArgs,
            handler=lambda args: get_days_between(args.start_date, args.end_date),
            prompt_line="date_days_between - Dates and weekdays in a range",
        ),
    ]


DATE_CAPABILITY_NAMES = (
    "date_get_day_of_week",
    "date_get_upcoming_weekends",
    "date_days_between",
)
