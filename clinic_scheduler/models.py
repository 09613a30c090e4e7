from __future__ import annotations

from dataclasses import dataclass, replace
from datetime import datetime, timezone
from typing import Any, ClassVar

from .local_time import format_instant, parse_instant

CENTERS = "centers"
BOXES = "boxes"
DOCTORS = "doctors"
RESERVATIONS = "reservations"

STATUS_ACTIVE = "active"
STATUS_CANCELLED = "cancelled"


@dataclass(frozen=True)
class Active:
    status: ClassVar[str] = STATUS_ACTIVE


@dataclass(frozen=True)
class Cancelled:
    at: datetime
    status: ClassVar[str] = STATUS_CANCELLED


ReservationState = Active | Cancelled


def normalize_name(name: str | None) -> str:
    return (name or "").strip().lower()


@dataclass(frozen=True)
class Reservation:
    reservation_id: str
    org_id: str
    center_id: str
    box_id: str
    box_name: str
    doctor_name: str
    start: datetime
    end: datetime
    user_id: str
    created_at: datetime
    state: ReservationState = Active()
    observation: str | None = None
    original_event_id: str | None = None

    def __post_init__(self) -> None:
        if self.start.tzinfo is None or self.end.tzinfo is None:
            raise ValueError("Reservation start and end must carry a UTC offset.")
        if self.start >= self.end:
            raise ValueError("Reservation start time must be earlier than end time.")

    @property
    def is_active(self) -> bool:
        return isinstance(self.state, Active)

    @property
    def status(self) -> str:
        return self.state.status

    @property
    def cancelled_at(self) -> datetime | None:
        return self.state.at if isinstance(self.state, Cancelled) else None

    def cancel(self, at: datetime) -> "Reservation":
        if not self.is_active:
            return self
        return replace(self, state=Cancelled(at))

    def to_dict(self) -> dict[str, Any]:
        payload: dict[str, Any] = {
            "org_id": self.org_id,
            "center_id": self.center_id,
            "box_id": self.box_id,
            "box_name": self.box_name,
            "doctor_name": self.doctor_name,
            "observation": self.observation or "",
            "start_time": format_instant(self.start),
            "start_utc": format_instant(self.start.astimezone(timezone.utc)),
            "end_time": format_instant(self.end),
            "user_id": self.user_id,
            "created_at": format_instant(self.created_at),
            "status": self.status,
        }
        if self.cancelled_at is not None:
            payload["cancelled_at"] = format_instant(self.cancelled_at)
        if self.original_event_id:
            payload["original_event_id"] = self.original_event_id
        return payload

    @staticmethod
    def from_dict(data: dict[str, Any]) -> "Reservation":
        # Documents written before soft delete existed carry no status.
        status = data.get("status") or STATUS_ACTIVE
        if status == STATUS_CANCELLED:
            cancelled_at = data.get("cancelled_at")
            state: ReservationState = Cancelled(
                parse_instant(cancelled_at) if cancelled_at else parse_instant(str(data["created_at"]))
            )
        elif status == STATUS_ACTIVE:
            state = Active()
        else:
            raise ValueError(f"unknown reservation status: {status!r}")

        return Reservation(
            reservation_id=str(data["id"]),
            org_id=str(data["org_id"]),
            center_id=str(data["center_id"]),
            box_id=str(data["box_id"]),
            box_name=str(data["box_name"]),
            doctor_name=str(data["doctor_name"]),
            start=parse_instant(str(data["start_time"])),
            end=parse_instant(str(data["end_time"])),
            user_id=str(data.get("user_id") or ""),
            created_at=parse_instant(str(data["created_at"])),
            state=state,
            observation=(str(data.get("observation")) if data.get("observation") else None),
            original_event_id=(str(data.get("original_event_id")) if data.get("original_event_id") else None),
        )


@dataclass(frozen=True)
class Center:
    center_id: str
    name: str
    org_id: str

    def to_dict(self) -> dict[str, str]:
        return {"id": self.center_id, "name": self.name, "org_id": self.org_id}

    @staticmethod
    def from_dict(data: dict[str, Any]) -> "Center":
        return Center(center_id=str(data["id"]), name=str(data["name"]), org_id=str(data.get("org_id") or ""))


@dataclass(frozen=True)
class Box:
    box_id: str
    name: str
    center_id: str
    org_id: str

    def to_dict(self) -> dict[str, str]:
        return {"id": self.box_id, "name": self.name, "center_id": self.center_id, "org_id": self.org_id}

    @staticmethod
    def from_dict(data: dict[str, Any]) -> "Box":
        return Box(
            box_id=str(data["id"]),
            name=str(data["name"]),
            center_id=str(data.get("center_id") or ""),
            org_id=str(data.get("org_id") or ""),
        )


@dataclass(frozen=True)
class Doctor:
    doctor_id: str
    name: str
    center_id: str
    org_id: str

    def to_dict(self) -> dict[str, str]:
        return {"id": self.doctor_id, "name": self.name, "center_id": self.center_id, "org_id": self.org_id}

    @staticmethod
    def from_dict(data: dict[str, Any]) -> "Doctor":
        return Doctor(
            doctor_id=str(data["id"]),
            name=str(data["name"]),
            center_id=str(data.get("center_id") or ""),
            org_id=str(data.get("org_id") or ""),
        )
