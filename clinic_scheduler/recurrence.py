from __future__ import annotations

from dataclasses import dataclass
from datetime import date, timedelta
from typing import Collection

from .errors import RecurrenceRangeError, ValidationError

DEFAULT_MAX_DAYS = 1000

WEEKDAY_NAMES = ("sunday", "monday", "tuesday", "wednesday", "thursday", "friday", "saturday")


@dataclass(frozen=True)
class Recurrence:
    end_date: date | None
    weekdays: frozenset[int]


def python_weekday_to_index(weekday: int) -> int:
    """Map Python's Monday=0 numbering to 0=Sunday .. 6=Saturday."""
    return (weekday + 1) % 7


def weekday_index(day: date) -> int:
    return python_weekday_to_index(day.weekday())


def parse_weekday(value: int | str) -> int:
    text = str(value).strip().lower()
    if not text.lstrip("-").isdigit():
        if len(text) >= 3:
            for index, candidate in enumerate(WEEKDAY_NAMES):
                if candidate.startswith(text):
                    return index
        raise ValidationError(f"Unknown weekday: {value!r}")

    index = int(text)
    if not 0 <= index <= 6:
        raise ValidationError(f"Weekday index must be between 0 (Sunday) and 6 (Saturday): {value!r}")
    return index


def validate_recurrence(anchor: date, recurrence: Recurrence) -> None:
    if recurrence.end_date is None or not recurrence.weekdays:
        raise ValidationError("Recurring bookings need an end date and at least one weekday.")
    if recurrence.end_date < anchor:
        raise ValidationError("Recurrence end date is before the booking date.")


def expand_recurrence(
    anchor: date,
    end_date: date,
    weekdays: Collection[int],
    max_days: int = DEFAULT_MAX_DAYS,
) -> list[date]:
    """Dates from ``anchor`` through ``end_date`` whose weekday is selected.

    Weekdays use 0=Sunday .. 6=Saturday. An empty weekday set or an end date
    before the anchor yields an empty list. Ranges longer than ``max_days``
    raise RecurrenceRangeError instead of being walked.
    """
    selected = frozenset(weekdays)
    if not selected or end_date < anchor:
        return []

    span = (end_date - anchor).days + 1
    if span > max_days:
        raise RecurrenceRangeError(
            f"Recurrence covers {span} days; the limit is {max_days} days."
        )

    dates: list[date] = []
    cursor = anchor
    for _ in range(span):
        if weekday_index(cursor) in selected:
            dates.append(cursor)
        cursor += timedelta(days=1)
    return dates
