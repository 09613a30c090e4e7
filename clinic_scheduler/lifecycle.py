from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import date, datetime
from typing import Callable, Collection

from .booking import (
    TimeSlotGrid,
    build_time_slot_grid,
    find_box_conflicts,
    find_conflicts,
    find_double_bookings,
    reservations_from_documents,
)
from .config import Settings, settings as default_settings
from .directory import ReferenceDirectory, ResolutionContext
from .errors import (
    DuplicateDocumentError,
    PartialBookingError,
    ReservationNotFoundError,
    SlotConflictError,
    StorageError,
    ValidationError,
)
from .local_time import (
    format_instant,
    local_date,
    local_day_range,
    local_time_key,
    normalize_time_label,
    slot_bounds,
)
from .models import RESERVATIONS, STATUS_CANCELLED, Reservation
from .recurrence import Recurrence, expand_recurrence, validate_recurrence
from .yaml_store import MAX_BATCH_OPERATIONS, Filter, YamlDocumentStore, where

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class BookingRequest:
    org_id: str
    center_id: str
    box_name: str
    booking_date: date
    time_slots: Collection[str]
    user_id: str
    doctor_id: str | None = None
    new_doctor_name: str | None = None
    observation: str = ""
    recurrence: Recurrence | None = None


@dataclass(frozen=True)
class BookingResult:
    dates: list[date]
    reservations: list[Reservation] = field(default_factory=list)

    @property
    def dates_processed(self) -> int:
        return len(self.dates)


class ReservationLifecycle:
    """Create, cancel and annotate reservations against the document store."""

    def __init__(
        self,
        store: YamlDocumentStore,
        directory: ReferenceDirectory | None = None,
        settings: Settings | None = None,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self.store = store
        self.directory = directory or ReferenceDirectory(store)
        self.settings = settings or default_settings
        self.tz = self.settings.tzinfo
        self._clock = clock or (lambda: datetime.now(self.tz))

    async def create(self, request: BookingRequest) -> BookingResult:
        """Book the requested slots on one date or on every recurring date.

        Conflicts are checked only for the first target date, against freshly
        read data. Writes are issued one by one in date then time order; a
        storage failure raises PartialBookingError and earlier writes stay.
        """
        slots = self._validate_request(request)

        context = await self.directory.open_context(request.org_id)
        if request.center_id not in context.centers_by_id:
            raise ValidationError(f"Unknown center: {request.center_id}")

        doctor_name = await self._resolve_doctor_name(context, request)
        box = context.find_box(request.center_id, request.box_name)
        if box is None:
            raise ValidationError(f"Unknown box {request.box_name!r} in center {request.center_id}.")

        dates = self._target_dates(request)
        bounds = {
            (day, label): slot_bounds(day, label, self.tz, self.settings.slot_minutes) for day in dates for label in slots
        }

        grid = await self.get_day_grid(request.org_id, request.center_id, dates[0])
        # Older documents may carry a drifted box name; the id still identifies the box.
        conflicts = sorted(
            set(find_conflicts(box.name, slots, grid)) | set(find_box_conflicts(box.box_id, slots, grid))
        )
        if conflicts:
            logger.info("Rejected booking in %s on %s: %s already taken", box.name, dates[0], conflicts)
            raise SlotConflictError(box.name, conflicts, dates[0])

        created: list[Reservation] = []
        dates_done = 0
        for day in dates:
            for label in slots:
                start, end = bounds[(day, label)]
                reservation = Reservation(
                    reservation_id="",
                    org_id=request.org_id,
                    center_id=request.center_id,
                    box_id=box.box_id,
                    box_name=box.name,
                    doctor_name=doctor_name,
                    start=start,
                    end=end,
                    user_id=request.user_id,
                    created_at=self._clock(),
                    observation=request.observation or None,
                )
                unique_on = self._active_slot_key(reservation) if self.settings.strict_conflicts else ()
                try:
                    row = await self.store.create(RESERVATIONS, reservation.to_dict(), unique_on=unique_on)
                except DuplicateDocumentError as error:
                    conflict = SlotConflictError(box.name, [label], day)
                    if not created:
                        raise conflict from error
                    raise PartialBookingError(dates_done, created, day, label) from conflict
                except StorageError as error:
                    logger.error("Booking write failed at %s %s after %d slots", day, label, len(created))
                    raise PartialBookingError(dates_done, created, day, label) from error
                created.append(Reservation.from_dict(row))
            dates_done += 1

        self.store.log_event(
            "RESERVATIONS_CREATED",
            {
                "org_id": request.org_id,
                "center_id": request.center_id,
                "box_name": box.name,
                "doctor_name": doctor_name,
                "dates": [day.isoformat() for day in dates],
                "time_slots": slots,
                "count": len(created),
            },
        )
        logger.info("Booked %d slots on %d dates in %s", len(created), dates_done, box.name)
        return BookingResult(dates=dates, reservations=created)

    async def delete_single(self, reservation_id: str) -> Reservation:
        """Soft-delete one reservation. Repeating the call changes nothing."""
        row = await self.store.get(RESERVATIONS, reservation_id)
        if row is None:
            raise ReservationNotFoundError(f"Reservation {reservation_id} does not exist.")

        reservation = Reservation.from_dict(row)
        if not reservation.is_active:
            return reservation

        cancelled = reservation.cancel(self._clock())
        updated = await self.store.update(
            RESERVATIONS,
            reservation_id,
            {"status": STATUS_CANCELLED, "cancelled_at": format_instant(cancelled.cancelled_at)},
        )
        self.store.log_event(
            "RESERVATION_CANCELLED",
            {"reservation_id": reservation_id, "box_name": reservation.box_name, "start": format_instant(reservation.start)},
        )
        return Reservation.from_dict(updated)

    async def delete_range(
        self,
        org_id: str,
        center_id: str,
        box_id: str,
        doctor_name: str,
        target_time: str,
        start_date: date,
        end_date: date,
    ) -> int:
        """Cancel every active slot of one box/doctor at ``target_time`` in a date range.

        The local HH:MM match is applied after the equality query because it
        depends on the organization time zone of each stored instant.
        """
        if end_date < start_date:
            raise ValidationError("End date is before start date.")
        target = normalize_time_label(target_time)

        rows = await self.store.query(
            RESERVATIONS,
            where("org_id", "==", org_id),
            where("center_id", "==", center_id),
            where("box_id", "==", box_id),
            where("doctor_name", "==", doctor_name),
            where("status", "!=", STATUS_CANCELLED),
        )
        range_start, range_end = local_day_range(start_date, end_date, self.tz)
        matched = [
            reservation
            for reservation in reservations_from_documents(rows)
            if reservation.is_active
            and range_start <= reservation.start <= range_end
            and local_time_key(reservation.start, self.tz) == target
        ]
        if not matched:
            return 0

        changes = {"status": STATUS_CANCELLED, "cancelled_at": format_instant(self._clock())}
        cancelled = 0
        for offset in range(0, len(matched), MAX_BATCH_OPERATIONS):
            batch = self.store.batch()
            for reservation in matched[offset : offset + MAX_BATCH_OPERATIONS]:
                batch.update(RESERVATIONS, reservation.reservation_id, changes)
            try:
                cancelled += await batch.commit()
            except StorageError as error:
                raise StorageError(
                    f"Range cancellation failed after {cancelled} of {len(matched)} reservations were cancelled."
                ) from error

        self.store.log_event(
            "RESERVATION_RANGE_CANCELLED",
            {
                "org_id": org_id,
                "center_id": center_id,
                "box_id": box_id,
                "doctor_name": doctor_name,
                "time": target,
                "start_date": start_date.isoformat(),
                "end_date": end_date.isoformat(),
                "count": cancelled,
            },
        )
        return cancelled

    async def update_note(self, reservation_id: str, text: str) -> Reservation:
        if await self.store.get(RESERVATIONS, reservation_id) is None:
            raise ReservationNotFoundError(f"Reservation {reservation_id} does not exist.")

        updated = await self.store.update(RESERVATIONS, reservation_id, {"observation": text or ""})
        self.store.log_event("RESERVATION_NOTE_UPDATED", {"reservation_id": reservation_id})
        return Reservation.from_dict(updated)

    async def get_reservations_for_date(self, org_id: str, center_id: str, day: date) -> list[Reservation]:
        if not org_id:
            return []
        rows = await self.store.query(
            RESERVATIONS,
            where("org_id", "==", org_id),
            where("center_id", "==", center_id),
        )
        return [
            reservation
            for reservation in reservations_from_documents(rows)
            if reservation.is_active and local_date(reservation.start, self.tz) == day
        ]

    async def get_reservations_in_range(
        self,
        org_id: str,
        start_date: date,
        end_date: date,
        center_id: str | None = None,
    ) -> list[Reservation]:
        """Active and cancelled reservations whose local start date is in range."""
        if not org_id:
            return []
        filters = [where("org_id", "==", org_id)]
        if center_id:
            filters.append(where("center_id", "==", center_id))
        rows = await self.store.query(RESERVATIONS, *filters)
        range_start, range_end = local_day_range(start_date, end_date, self.tz)
        return sorted(
            (row for row in reservations_from_documents(rows) if range_start <= row.start <= range_end),
            key=lambda row: row.start,
        )

    async def get_day_grid(self, org_id: str, center_id: str, day: date) -> TimeSlotGrid:
        reservations = await self.get_reservations_for_date(org_id, center_id, day)
        return build_time_slot_grid(reservations, self.tz)

    async def find_double_bookings(self, org_id: str, center_id: str, day: date) -> list[tuple[Reservation, Reservation]]:
        """Active reservations sharing a box and time, left by concurrent writers."""
        pairs = find_double_bookings(await self.get_reservations_for_date(org_id, center_id, day))
        for first, second in pairs:
            logger.warning(
                "Double booking in %s at %s: %s and %s",
                first.box_name,
                format_instant(first.start),
                first.reservation_id,
                second.reservation_id,
            )
        return pairs

    def _validate_request(self, request: BookingRequest) -> list[str]:
        if not request.org_id:
            raise ValidationError("org_id is required.")
        if not request.center_id or not (request.box_name or "").strip():
            raise ValidationError("Select a center and a box.")
        if not request.doctor_id and not (request.new_doctor_name or "").strip():
            raise ValidationError("Select a doctor or enter a new doctor name.")
        if request.booking_date is None:
            raise ValidationError("Select a date.")
        if not request.time_slots:
            raise ValidationError("Select at least one time slot.")
        if request.recurrence is not None:
            validate_recurrence(request.booking_date, request.recurrence)

        return sorted({normalize_time_label(label) for label in request.time_slots})

    async def _resolve_doctor_name(self, context: ResolutionContext, request: BookingRequest) -> str:
        if request.doctor_id:
            doctor = context.find_doctor(request.doctor_id)
            if doctor is None:
                raise ValidationError(f"Unknown doctor: {request.doctor_id}")
            return doctor.name

        doctor = await context.resolve_doctor(request.center_id, (request.new_doctor_name or "").strip())
        return doctor.name

    def _target_dates(self, request: BookingRequest) -> list[date]:
        if request.recurrence is None:
            return [request.booking_date]

        dates = expand_recurrence(
            request.booking_date,
            request.recurrence.end_date,
            request.recurrence.weekdays,
            max_days=self.settings.recurrence_max_days,
        )
        if not dates:
            raise ValidationError("No date in the recurrence range falls on the selected weekdays.")
        return dates

    @staticmethod
    def _active_slot_key(reservation: Reservation) -> tuple[Filter, ...]:
        return (
            where("org_id", "==", reservation.org_id),
            where("box_id", "==", reservation.box_id),
            where("start_utc", "==", reservation.to_dict()["start_utc"]),
            where("status", "!=", STATUS_CANCELLED),
        )
