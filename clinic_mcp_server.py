from __future__ import annotations

from datetime import date
from pathlib import Path

from mcp.server.fastmcp import FastMCP

from clinic_scheduler import BookingRequest, Recurrence, ReferenceDirectory, ReservationLifecycle, YamlDocumentStore
from clinic_scheduler.booking import time_slot_labels
from clinic_scheduler.config import settings
from clinic_scheduler.recurrence import parse_weekday

mcp = FastMCP(
    "Clinic Scheduler MCP Server",
    instructions="Inspect and book clinic box schedules stored by the clinic_scheduler project.",
    json_response=True,
)

DATA_DIR = Path(__file__).parent / settings.data_dir
STORE = YamlDocumentStore(DATA_DIR)
DIRECTORY = ReferenceDirectory(STORE)
LIFECYCLE = ReservationLifecycle(STORE, DIRECTORY)


@mcp.tool()
async def list_centers(org_id: str) -> list[dict[str, str]]:
    """List the centers of an organization."""
    return [center.to_dict() for center in await DIRECTORY.get_centers(org_id)]


@mcp.tool()
async def list_boxes(org_id: str, center_id: str | None = None) -> list[dict[str, str]]:
    """List boxes of an organization, optionally limited to one center."""
    return [box.to_dict() for box in await DIRECTORY.get_boxes(org_id, center_id)]


@mcp.tool()
async def day_schedule(org_id: str, center_id: str, day: str) -> dict[str, object]:
    """Return the occupied slots of every box in a center for a YYYY-MM-DD date."""
    grid = await LIFECYCLE.get_day_grid(org_id, center_id, date.fromisoformat(day))
    return {
        "date": day,
        "time_slots": time_slot_labels(settings.day_start_hour, settings.day_end_hour, settings.slot_minutes),
        "grid": {box: {label: info.to_dict() for label, info in cells.items()} for box, cells in grid.items()},
    }


@mcp.tool()
async def book_slots(
    org_id: str,
    center_id: str,
    box_name: str,
    day: str,
    time_slots: list[str],
    user_id: str,
    doctor_id: str | None = None,
    new_doctor_name: str | None = None,
    observation: str = "",
    repeat_until: str | None = None,
    repeat_weekdays: list[str] | None = None,
) -> dict[str, object]:
    """Book slots in one box; pass repeat_until and repeat_weekdays for a recurring booking."""
    recurrence = None
    if repeat_until or repeat_weekdays:
        recurrence = Recurrence(
            end_date=date.fromisoformat(repeat_until) if repeat_until else None,
            weekdays=frozenset(parse_weekday(item) for item in repeat_weekdays or []),
        )
    result = await LIFECYCLE.create(
        BookingRequest(
            org_id=org_id,
            center_id=center_id,
            box_name=box_name,
            booking_date=date.fromisoformat(day),
            time_slots=time_slots,
            user_id=user_id,
            doctor_id=doctor_id,
            new_doctor_name=new_doctor_name,
            observation=observation,
            recurrence=recurrence,
        )
    )
    return {
        "dates_processed": result.dates_processed,
        "reservation_ids": [reservation.reservation_id for reservation in result.reservations],
    }


@mcp.tool()
async def cancel_reservation(reservation_id: str) -> dict[str, str]:
    """Soft-delete one reservation."""
    cancelled = await LIFECYCLE.delete_single(reservation_id)
    return {"reservation_id": cancelled.reservation_id, "status": cancelled.status}


@mcp.tool()
async def cancel_range(
    org_id: str,
    center_id: str,
    box_id: str,
    doctor_name: str,
    time: str,
    start_date: str,
    end_date: str,
) -> dict[str, int]:
    """Cancel every active slot of a box and doctor at one time of day across a date range."""
    count = await LIFECYCLE.delete_range(
        org_id,
        center_id,
        box_id,
        doctor_name,
        time,
        date.fromisoformat(start_date),
        date.fromisoformat(end_date),
    )
    return {"cancelled": count}


def main() -> None:
    mcp.run()


if __name__ == "__main__":
    main()
