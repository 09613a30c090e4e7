from __future__ import annotations

import logging
from datetime import date, datetime
from pathlib import Path
from typing import Any, Callable

from flask import Flask, jsonify, request

from .analytics import BusinessHours, summarize, timeline
from .booking import time_slot_labels
from .bulk_import import BulkImportReconciler
from .config import Settings, settings as default_settings
from .directory import ReferenceDirectory
from .errors import (
    ImportAbortedError,
    PartialBookingError,
    ReservationNotFoundError,
    SlotConflictError,
    StorageError,
    ValidationError,
)
from .lifecycle import BookingRequest, ReservationLifecycle
from .local_time import format_instant
from .models import Reservation
from .recurrence import Recurrence, parse_weekday
from .yaml_store import YamlDocumentStore

logger = logging.getLogger(__name__)

IMPORT_KINDS = {"infrastructure", "doctors", "reservations", "rescue"}


def create_app(
    data_dir: str | Path | None = None,
    settings: Settings | None = None,
    now_provider: Callable[[], datetime] | None = None,
) -> Flask:
    app = Flask(__name__)
    config = settings or default_settings
    clock: Callable[[], datetime] = now_provider or (lambda: datetime.now(config.tzinfo))

    store = YamlDocumentStore(data_dir if data_dir is not None else config.data_dir, clock=clock)
    directory = ReferenceDirectory(store)
    lifecycle = ReservationLifecycle(store, directory, settings=config, clock=clock)
    reconciler = BulkImportReconciler(store, directory, settings=config, clock=clock)

    @app.after_request
    def add_cors_headers(response: Any) -> Any:
        response.headers["Access-Control-Allow-Origin"] = "*"
        response.headers["Access-Control-Allow-Methods"] = "GET,POST,OPTIONS"
        response.headers["Access-Control-Allow-Headers"] = "Content-Type"
        return response

    @app.errorhandler(ValidationError)
    def handle_validation(error: ValidationError) -> Any:
        return jsonify({"ok": False, "message": str(error)}), 400

    @app.errorhandler(ReservationNotFoundError)
    def handle_not_found(error: ReservationNotFoundError) -> Any:
        return jsonify({"ok": False, "message": str(error)}), 404

    @app.errorhandler(SlotConflictError)
    def handle_conflict(error: SlotConflictError) -> Any:
        return (
            jsonify(
                {
                    "ok": False,
                    "message": str(error),
                    "box_name": error.box_name,
                    "conflicts": error.times,
                    "date": error.day.isoformat() if error.day else None,
                }
            ),
            409,
        )

    @app.errorhandler(PartialBookingError)
    def handle_partial_booking(error: PartialBookingError) -> Any:
        return (
            jsonify(
                {
                    "ok": False,
                    "message": str(error),
                    "dates_completed": error.dates_completed,
                    "reservations_created": len(error.reservations),
                }
            ),
            500,
        )

    @app.errorhandler(ImportAbortedError)
    def handle_import_aborted(error: ImportAbortedError) -> Any:
        report = error.report.to_dict() if error.report is not None else None
        return jsonify({"ok": False, "message": str(error), "committed": error.committed, "report": report}), 500

    @app.errorhandler(StorageError)
    def handle_storage(error: StorageError) -> Any:
        logger.error("Storage failure: %s", error)
        return jsonify({"ok": False, "message": "Storage is unavailable. Try again later."}), 503

    @app.get("/api/centers")
    async def list_centers() -> Any:
        centers = await directory.get_centers(_require_arg("org_id"))
        return jsonify({"ok": True, "centers": [center.to_dict() for center in centers]})

    @app.post("/api/centers")
    async def add_center() -> Any:
        payload = _json_payload()
        context = await directory.open_context(_require(payload, "org_id"))
        center = await context.resolve_center(_require(payload, "name"))
        return jsonify({"ok": True, "created": context.centers_created > 0, "center": center.to_dict()})

    @app.get("/api/boxes")
    async def list_boxes() -> Any:
        boxes = await directory.get_boxes(_require_arg("org_id"), request.args.get("center_id"))
        return jsonify({"ok": True, "boxes": [box.to_dict() for box in boxes]})

    @app.post("/api/boxes")
    async def add_box() -> Any:
        payload = _json_payload()
        context = await directory.open_context(_require(payload, "org_id"))
        center_id = _require(payload, "center_id")
        if center_id not in context.centers_by_id:
            raise ValidationError(f"Unknown center: {center_id}")
        box = await context.resolve_box(center_id, _require(payload, "name"))
        return jsonify({"ok": True, "created": context.boxes_created > 0, "box": box.to_dict()})

    @app.get("/api/doctors")
    async def list_doctors() -> Any:
        doctors = await directory.get_doctors(_require_arg("org_id"), request.args.get("center_id"))
        return jsonify({"ok": True, "doctors": [doctor.to_dict() for doctor in doctors]})

    @app.post("/api/doctors")
    async def add_doctor() -> Any:
        payload = _json_payload()
        context = await directory.open_context(_require(payload, "org_id"))
        center_id = _require(payload, "center_id")
        if center_id not in context.centers_by_id:
            raise ValidationError(f"Unknown center: {center_id}")
        doctor = await context.resolve_doctor(center_id, _require(payload, "name"))
        return jsonify({"ok": True, "created": context.doctors_created > 0, "doctor": doctor.to_dict()})

    @app.get("/api/schedule")
    async def get_schedule() -> Any:
        org_id = _require_arg("org_id")
        center_id = _require_arg("center_id")
        day = _parse_date(request.args.get("date"), "date") if request.args.get("date") else clock().date()

        grid = await lifecycle.get_day_grid(org_id, center_id, day)
        boxes = await directory.get_boxes(org_id, center_id)
        return jsonify(
            {
                "ok": True,
                "date": day.isoformat(),
                "time_slots": time_slot_labels(config.day_start_hour, config.day_end_hour, config.slot_minutes),
                "boxes": [box.name for box in boxes],
                "grid": {
                    box_name: {label: info.to_dict() for label, info in sorted(cells.items())}
                    for box_name, cells in grid.items()
                },
            }
        )

    @app.post("/api/reservations")
    async def create_reservations() -> Any:
        payload = _json_payload()
        time_slots = payload.get("time_slots") or []
        if not isinstance(time_slots, list):
            raise ValidationError("time_slots must be a list of HH:MM labels.")

        booking = BookingRequest(
            org_id=_require(payload, "org_id"),
            center_id=_require(payload, "center_id"),
            box_name=_require(payload, "box_name"),
            booking_date=_parse_date(payload.get("date"), "date"),
            time_slots=[str(label) for label in time_slots],
            user_id=str(payload.get("user_id", "")).strip(),
            doctor_id=str(payload.get("doctor_id") or "").strip() or None,
            new_doctor_name=str(payload.get("new_doctor_name") or "").strip() or None,
            observation=str(payload.get("observation") or ""),
            recurrence=_parse_recurrence(payload.get("recurrence")),
        )
        result = await lifecycle.create(booking)
        return jsonify(
            {
                "ok": True,
                "dates_processed": result.dates_processed,
                "dates": [day.isoformat() for day in result.dates],
                "reservations": [_serialize_reservation(row) for row in result.reservations],
            }
        )

    @app.post("/api/reservations/<reservation_id>/cancel")
    async def cancel_reservation(reservation_id: str) -> Any:
        cancelled = await lifecycle.delete_single(reservation_id)
        return jsonify({"ok": True, "reservation": _serialize_reservation(cancelled)})

    @app.post("/api/reservations/cancel-range")
    async def cancel_range() -> Any:
        payload = _json_payload()
        count = await lifecycle.delete_range(
            org_id=_require(payload, "org_id"),
            center_id=_require(payload, "center_id"),
            box_id=_require(payload, "box_id"),
            doctor_name=_require(payload, "doctor_name"),
            target_time=_require(payload, "time"),
            start_date=_parse_date(payload.get("start_date"), "start_date"),
            end_date=_parse_date(payload.get("end_date"), "end_date"),
        )
        return jsonify({"ok": True, "cancelled": count})

    @app.post("/api/reservations/<reservation_id>/note")
    async def update_note(reservation_id: str) -> Any:
        payload = _json_payload()
        updated = await lifecycle.update_note(reservation_id, str(payload.get("text") or ""))
        return jsonify({"ok": True, "reservation": _serialize_reservation(updated)})

    @app.get("/api/analytics")
    async def get_analytics() -> Any:
        org_id = _require_arg("org_id")
        center_id = request.args.get("center_id") or None
        start_date = _parse_date(request.args.get("start"), "start")
        end_date = _parse_date(request.args.get("end"), "end")
        if end_date < start_date:
            raise ValidationError("End date is before start date.")
        granularity = str(request.args.get("granularity", "day")).lower()
        if granularity not in ("day", "week", "month"):
            raise ValidationError(f"Unsupported granularity: {granularity}")

        reservations = await lifecycle.get_reservations_in_range(org_id, start_date, end_date, center_id)
        boxes = await directory.get_boxes(org_id, center_id)
        summary = summarize(
            reservations,
            [box.name for box in boxes],
            start_date,
            end_date,
            BusinessHours(),
            slot_minutes=config.slot_minutes,
            holiday_country=config.holiday_country,
        )
        return jsonify(
            {
                "ok": True,
                "summary": summary.to_dict(),
                "timeline": [
                    {"period": period, "count": count}
                    for period, count in timeline(reservations, granularity, config.tzinfo)
                ],
            }
        )

    @app.post("/api/import/<kind>")
    async def run_import(kind: str) -> Any:
        if kind not in IMPORT_KINDS:
            return jsonify({"ok": False, "message": f"Unknown import kind: {kind}"}), 404

        payload = _json_payload()
        org_id = _require(payload, "org_id")
        messages: list[str] = []

        if kind == "rescue":
            moved = await reconciler.rescue_orphan_data(org_id, on_log=messages.append)
            return jsonify({"ok": True, "migrated": moved, "log": messages})

        rows = payload.get("rows")
        if not isinstance(rows, list) or not all(isinstance(row, dict) for row in rows):
            raise ValidationError("rows must be a list of objects.")

        if kind == "infrastructure":
            report = await reconciler.import_infrastructure(rows, org_id, on_log=messages.append)
        elif kind == "doctors":
            report = await reconciler.import_doctors(rows, org_id, on_log=messages.append)
        else:
            report = await reconciler.import_reservations(
                rows, org_id, _require(payload, "user_id"), on_log=messages.append
            )
        return jsonify({"ok": True, "report": report.to_dict(), "log": messages})

    @app.get("/api/diagnostics/count")
    async def count_reservations() -> Any:
        org_id = request.args.get("org_id") or None
        return jsonify({"ok": True, "org_id": org_id, "count": await reconciler.count_reservations(org_id)})

    return app


def _json_payload() -> dict[str, Any]:
    payload = request.get_json(silent=True)
    return payload if isinstance(payload, dict) else {}


def _require(payload: dict[str, Any], key: str) -> str:
    value = str(payload.get(key) or "").strip()
    if not value:
        raise ValidationError(f"{key} is required.")
    return value


def _require_arg(key: str) -> str:
    return _require(request.args, key)


def _parse_date(value: Any, label: str) -> date:
    try:
        return date.fromisoformat(str(value or "").strip())
    except ValueError as error:
        raise ValidationError(f"{label} must be a YYYY-MM-DD date.") from error


def _parse_recurrence(value: Any) -> Recurrence | None:
    if not value:
        return None
    if not isinstance(value, dict):
        raise ValidationError("recurrence must be an object with end_date and weekdays.")

    end_date = _parse_date(value.get("end_date"), "recurrence.end_date") if value.get("end_date") else None
    weekdays = value.get("weekdays") or []
    if not isinstance(weekdays, list):
        raise ValidationError("recurrence.weekdays must be a list.")
    return Recurrence(end_date=end_date, weekdays=frozenset(parse_weekday(item) for item in weekdays))


def _serialize_reservation(reservation: Reservation) -> dict[str, Any]:
    return {
        "reservation_id": reservation.reservation_id,
        "center_id": reservation.center_id,
        "box_id": reservation.box_id,
        "box_name": reservation.box_name,
        "doctor_name": reservation.doctor_name,
        "start": format_instant(reservation.start),
        "end": format_instant(reservation.end),
        "status": reservation.status,
        "cancelled_at": format_instant(reservation.cancelled_at) if reservation.cancelled_at else None,
        "observation": reservation.observation,
    }


if __name__ == "__main__":
    logging.basicConfig(level=default_settings.log_level)
    app = create_app()
    app.run(host="127.0.0.1", port=5000, debug=False)
