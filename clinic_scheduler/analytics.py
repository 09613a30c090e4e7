from __future__ import annotations

from dataclasses import asdict, dataclass, field
from datetime import date, timedelta, tzinfo
from typing import Any, Iterable, Literal

import holidays as pyholidays

from .local_time import local_date
from .models import Reservation

Granularity = Literal["day", "week", "month"]

MAX_CAPACITY_DAYS = 1000
_HOLIDAY_CACHE: dict[tuple[str, int], set[date]] = {}


@dataclass(frozen=True)
class DayHours:
    open_hour: float
    close_hour: float
    is_open: bool = True

    @staticmethod
    def from_dict(data: dict[str, Any]) -> "DayHours":
        return DayHours(
            open_hour=float(data.get("open_hour", 0)),
            close_hour=float(data.get("close_hour", 0)),
            is_open=bool(data.get("is_open", True)),
        )


@dataclass(frozen=True)
class BusinessHours:
    """Opening hours per weekday group, used only for theoretical capacity."""

    weekdays: DayHours = DayHours(8, 20, True)
    friday: DayHours = DayHours(8, 16, True)
    saturday: DayHours = DayHours(9, 14, False)
    sunday: DayHours = DayHours(0, 0, False)

    def for_day(self, day: date) -> DayHours:
        weekday = day.weekday()
        if weekday <= 3:
            return self.weekdays
        if weekday == 4:
            return self.friday
        if weekday == 5:
            return self.saturday
        return self.sunday

    def to_dict(self) -> dict[str, dict[str, Any]]:
        return asdict(self)

    @staticmethod
    def from_dict(data: dict[str, Any]) -> "BusinessHours":
        defaults = BusinessHours()
        return BusinessHours(
            **{
                group: DayHours.from_dict(data[group]) if isinstance(data.get(group), dict) else getattr(defaults, group)
                for group in ("weekdays", "friday", "saturday", "sunday")
            }
        )


@dataclass(frozen=True)
class BoxOccupancy:
    name: str
    occupied: int
    capacity: int
    occupied_pct: float


@dataclass(frozen=True)
class AnalyticsSummary:
    active_count: int
    cancelled_count: int
    cancellation_rate: float
    capacity_per_box: int
    occupancy: list[BoxOccupancy] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


def is_public_holiday(day: date, country: str) -> bool:
    key = (country.upper(), day.year)
    if key not in _HOLIDAY_CACHE:
        holiday_map = pyholidays.country_holidays(key[0], years=[day.year])
        _HOLIDAY_CACHE[key] = set(holiday_map.keys())
    return day in _HOLIDAY_CACHE[key]


def capacity_per_box(
    start_date: date,
    end_date: date,
    hours: BusinessHours,
    slot_minutes: int = 30,
    holiday_country: str | None = None,
) -> int:
    """Bookable slots one box offers over the inclusive date range."""
    if slot_minutes <= 0:
        raise ValueError("slot_minutes must be greater than zero")

    total_slots = 0
    cursor = start_date
    for _ in range(MAX_CAPACITY_DAYS):
        if cursor > end_date:
            break
        config = hours.for_day(cursor)
        if config.is_open and not (holiday_country and is_public_holiday(cursor, holiday_country)):
            open_minutes = (config.close_hour - config.open_hour) * 60
            if open_minutes > 0:
                total_slots += int(open_minutes // slot_minutes)
        cursor += timedelta(days=1)
    return total_slots


def split_by_status(reservations: Iterable[Reservation]) -> tuple[list[Reservation], list[Reservation]]:
    active: list[Reservation] = []
    cancelled: list[Reservation] = []
    for reservation in reservations:
        (active if reservation.is_active else cancelled).append(reservation)
    return active, cancelled


def cancellation_rate(active_count: int, cancelled_count: int) -> float:
    total = active_count + cancelled_count
    if total == 0:
        return 0.0
    return round(cancelled_count / total * 100, 1)


def summarize(
    reservations: Iterable[Reservation],
    box_names: Iterable[str],
    start_date: date,
    end_date: date,
    hours: BusinessHours | None = None,
    slot_minutes: int = 30,
    holiday_country: str | None = None,
) -> AnalyticsSummary:
    active, cancelled = split_by_status(reservations)
    capacity = capacity_per_box(start_date, end_date, hours or BusinessHours(), slot_minutes, holiday_country)

    usage: dict[str, int] = {name: 0 for name in box_names}
    for reservation in active:
        if reservation.box_name in usage:
            usage[reservation.box_name] += 1

    occupancy = []
    for name, occupied in usage.items():
        pct = 0.0 if capacity == 0 else min(100.0, round(occupied / capacity * 100, 1))
        occupancy.append(BoxOccupancy(name=name, occupied=occupied, capacity=max(capacity, 1), occupied_pct=pct))
    occupancy.sort(key=lambda row: row.occupied_pct, reverse=True)

    return AnalyticsSummary(
        active_count=len(active),
        cancelled_count=len(cancelled),
        cancellation_rate=cancellation_rate(len(active), len(cancelled)),
        capacity_per_box=capacity,
        occupancy=occupancy,
    )


def timeline(reservations: Iterable[Reservation], granularity: Granularity, tz: tzinfo) -> list[tuple[str, int]]:
    """Active reservation counts per local day, week (keyed by Monday) or month."""
    if granularity not in ("day", "week", "month"):
        raise ValueError(f"unsupported granularity: {granularity}")

    counts: dict[str, int] = {}
    for reservation in reservations:
        if not reservation.is_active:
            continue
        day = local_date(reservation.start, tz)
        if granularity == "day":
            key = day.isoformat()
        elif granularity == "week":
            key = (day - timedelta(days=day.weekday())).isoformat()
        else:
            key = f"{day.year:04d}-{day.month:02d}"
        counts[key] = counts.get(key, 0) + 1
    return sorted(counts.items())
