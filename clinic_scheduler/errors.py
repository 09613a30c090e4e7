from __future__ import annotations

from datetime import date
from typing import TYPE_CHECKING, Any, Sequence

if TYPE_CHECKING:
    from .models import Reservation


class SchedulingError(Exception):
    pass


class ValidationError(SchedulingError, ValueError):
    """Raised before any write when a request is incomplete or inconsistent."""


class RecurrenceRangeError(ValidationError):
    pass


class ReservationNotFoundError(SchedulingError, LookupError):
    pass


class SlotConflictError(SchedulingError):
    """One or more requested slots are already occupied.

    The caller is expected to refresh the day grid and retry; conflicting
    slots are never skipped silently.
    """

    def __init__(self, box_name: str, times: Sequence[str], day: date | None = None) -> None:
        self.box_name = box_name
        self.times = list(times)
        self.day = day
        when = f" on {day.isoformat()}" if day is not None else ""
        super().__init__(f"Slots {', '.join(self.times)} in {box_name}{when} are already booked.")


class PartialBookingError(SchedulingError):
    """A multi-slot create failed midway; earlier writes stay committed."""

    def __init__(
        self,
        dates_completed: int,
        reservations: Sequence["Reservation"],
        failed_date: date,
        failed_time: str,
    ) -> None:
        self.dates_completed = dates_completed
        self.reservations = list(reservations)
        self.failed_date = failed_date
        self.failed_time = failed_time
        super().__init__(
            f"Booking stopped at {failed_date.isoformat()} {failed_time}: "
            f"{len(self.reservations)} slots on {dates_completed} dates were already saved."
        )


class ImportAbortedError(SchedulingError):
    def __init__(self, committed: int, report: Any) -> None:
        self.committed = committed
        self.report = report
        super().__init__(f"Import aborted after {committed} committed records.")


class StorageError(RuntimeError):
    pass


class DuplicateDocumentError(StorageError):
    pass
