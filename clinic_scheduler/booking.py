from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta, tzinfo
from typing import Any, Iterable, Literal

from .local_time import local_time_key, normalize_time_label
from .models import Reservation

logger = logging.getLogger(__name__)

Availability = Literal["available", "conflict"]


@dataclass(frozen=True)
class OccupancySlotInfo:
    reservation_id: str
    doctor_name: str
    observation: str | None
    box_id: str
    start: datetime

    def to_dict(self) -> dict[str, str | None]:
        return {
            "reservation_id": self.reservation_id,
            "doctor_name": self.doctor_name,
            "observation": self.observation,
            "box_id": self.box_id,
            "start": self.start.isoformat(timespec="seconds"),
        }


TimeSlotGrid = dict[str, dict[str, OccupancySlotInfo]]


def reservations_from_documents(documents: Iterable[dict[str, Any]]) -> list[Reservation]:
    """Parse stored documents, dropping the ones that cannot be read."""
    reservations: list[Reservation] = []
    for document in documents:
        try:
            reservations.append(Reservation.from_dict(document))
        except (KeyError, TypeError, ValueError) as error:
            logger.warning("Skipping malformed reservation %s: %s", document.get("id"), error)
    return reservations


def build_time_slot_grid(reservations: Iterable[Reservation], tz: tzinfo) -> TimeSlotGrid:
    """Map one day's reservations to ``box name -> HH:MM -> slot info``.

    Cancelled reservations never occupy a cell. The builder does not detect
    conflicts; a repeated (box, time) key keeps the last reservation seen.
    """
    grid: TimeSlotGrid = {}
    for reservation in reservations:
        if not reservation.is_active:
            continue
        try:
            time_key = local_time_key(reservation.start, tz)
        except (ValueError, OverflowError) as error:
            logger.warning("Skipping reservation %s with unusable start: %s", reservation.reservation_id, error)
            continue

        grid.setdefault(reservation.box_name, {})[time_key] = OccupancySlotInfo(
            reservation_id=reservation.reservation_id,
            doctor_name=reservation.doctor_name,
            observation=reservation.observation,
            box_id=reservation.box_id,
            start=reservation.start,
        )
    return grid


def find_conflicts(box_name: str, requested_times: Iterable[str], grid: TimeSlotGrid) -> list[str]:
    occupied = grid.get(box_name, {})
    return sorted({label for label in map(normalize_time_label, requested_times) if label in occupied})


def find_box_conflicts(box_id: str, requested_times: Iterable[str], grid: TimeSlotGrid) -> list[str]:
    """Like find_conflicts, but matches cells by box id under any stored box name."""
    occupied = {label for cells in grid.values() for label, info in cells.items() if info.box_id == box_id}
    return sorted({label for label in map(normalize_time_label, requested_times) if label in occupied})


def check_availability(box_name: str, requested_times: Iterable[str], grid: TimeSlotGrid) -> Availability:
    """Whole-request check: one occupied slot rejects every requested slot."""
    return "conflict" if find_conflicts(box_name, requested_times, grid) else "available"


def time_slot_labels(start_hour: int = 8, end_hour: int = 20, slot_minutes: int = 30) -> list[str]:
    if slot_minutes <= 0:
        raise ValueError("slot_minutes must be greater than zero")
    if end_hour <= start_hour:
        raise ValueError("end_hour must be later than start_hour")

    labels: list[str] = []
    cursor = datetime(2000, 1, 1, start_hour, 0)
    limit = datetime(2000, 1, 1, 0, 0) + timedelta(hours=end_hour)
    while cursor < limit:
        labels.append(cursor.strftime("%H:%M"))
        cursor += timedelta(minutes=slot_minutes)
    return labels


def has_time_overlap(new_start: datetime, new_end: datetime, exist_start: datetime, exist_end: datetime) -> bool:
    """Return True when two time intervals overlap by even one minute.

    Intervals are treated as half-open ranges: [start, end)
    so touching boundaries (e.g. 10:00-10:30 and 10:30-11:00) do not overlap.
    """
    if new_start >= new_end:
        raise ValueError("new_start must be earlier than new_end.")
    if exist_start >= exist_end:
        raise ValueError("exist_start must be earlier than exist_end.")

    return new_start < exist_end and new_end > exist_start


def find_double_bookings(reservations: Iterable[Reservation]) -> list[tuple[Reservation, Reservation]]:
    """Pairs of active reservations that occupy the same box at the same time."""
    by_box: dict[tuple[str, str], list[Reservation]] = {}
    for reservation in reservations:
        if reservation.is_active:
            by_box.setdefault((reservation.org_id, reservation.box_id), []).append(reservation)

    pairs: list[tuple[Reservation, Reservation]] = []
    for rows in by_box.values():
        rows.sort(key=lambda row: (row.start, row.created_at))
        for index, first in enumerate(rows):
            for second in rows[index + 1 :]:
                if second.start >= first.end:
                    break
                if has_time_overlap(second.start, second.end, first.start, first.end):
                    pairs.append((first, second))
    return pairs
