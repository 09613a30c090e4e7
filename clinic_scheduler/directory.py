from __future__ import annotations

import logging
import re

from .errors import ValidationError
from .models import BOXES, CENTERS, DOCTORS, Box, Center, Doctor, normalize_name
from .yaml_store import YamlDocumentStore, where

logger = logging.getLogger(__name__)

_DIGITS_RE = re.compile(r"(\d+)")


def natural_key(name: str) -> list[object]:
    """Sort key that puts "Box 2" before "Box 10"."""
    return [int(part) if part.isdigit() else part.lower() for part in _DIGITS_RE.split(name)]


def _clean_name(name: str | None, label: str) -> str:
    cleaned = (name or "").strip()
    if not cleaned:
        raise ValidationError(f"{label} name must not be empty.")
    return cleaned


class ReferenceDirectory:
    """Centers, boxes and doctors of an organization."""

    def __init__(self, store: YamlDocumentStore) -> None:
        self.store = store

    async def get_centers(self, org_id: str) -> list[Center]:
        if not org_id:
            return []
        rows = await self.store.query(CENTERS, where("org_id", "==", org_id), order_by="name")
        return [Center.from_dict(row) for row in rows]

    async def get_boxes(self, org_id: str, center_id: str | None = None) -> list[Box]:
        if not org_id:
            return []
        filters = [where("org_id", "==", org_id)]
        if center_id:
            filters.append(where("center_id", "==", center_id))
        rows = await self.store.query(BOXES, *filters)
        return sorted((Box.from_dict(row) for row in rows), key=lambda box: natural_key(box.name))

    async def get_doctors(self, org_id: str, center_id: str | None = None) -> list[Doctor]:
        if not org_id:
            return []
        filters = [where("org_id", "==", org_id)]
        if center_id:
            filters.append(where("center_id", "==", center_id))
        rows = await self.store.query(DOCTORS, *filters)
        return sorted((Doctor.from_dict(row) for row in rows), key=lambda doctor: doctor.name.lower())

    async def add_center(self, name: str, org_id: str) -> Center:
        payload = {"name": _clean_name(name, "Center"), "org_id": org_id}
        row = await self.store.create(CENTERS, payload)
        return Center.from_dict(row)

    async def add_box(self, name: str, center_id: str, org_id: str) -> Box:
        payload = {"name": _clean_name(name, "Box"), "center_id": center_id, "org_id": org_id}
        row = await self.store.create(BOXES, payload)
        return Box.from_dict(row)

    async def add_doctor(self, name: str, center_id: str, org_id: str) -> Doctor:
        payload = {"name": _clean_name(name, "Doctor"), "center_id": center_id, "org_id": org_id}
        row = await self.store.create(DOCTORS, payload)
        return Doctor.from_dict(row)

    async def open_context(self, org_id: str) -> "ResolutionContext":
        """Load the organization's entities once for a single run."""
        if not org_id:
            raise ValidationError("org_id is required.")
        centers = await self.get_centers(org_id)
        boxes = await self.get_boxes(org_id)
        doctors = await self.get_doctors(org_id)
        return ResolutionContext(self, org_id, centers, boxes, doctors)


class ResolutionContext:
    """Resolve-or-create maps owned by exactly one import or booking call.

    Entities are matched by trimmed, lowercased name within their scope.
    The maps are not refreshed; open a new context to see other writers.
    """

    def __init__(
        self,
        directory: ReferenceDirectory,
        org_id: str,
        centers: list[Center],
        boxes: list[Box],
        doctors: list[Doctor],
    ) -> None:
        self.directory = directory
        self.org_id = org_id
        self.centers: dict[str, Center] = {normalize_name(center.name): center for center in centers}
        self.centers_by_id: dict[str, Center] = {center.center_id: center for center in centers}
        self.boxes: dict[tuple[str, str], Box] = {(box.center_id, normalize_name(box.name)): box for box in boxes}
        self.doctors: dict[tuple[str, str], Doctor] = {
            (doctor.center_id, normalize_name(doctor.name)): doctor for doctor in doctors
        }
        self.doctors_by_id: dict[str, Doctor] = {doctor.doctor_id: doctor for doctor in doctors}
        self.centers_created = 0
        self.boxes_created = 0
        self.doctors_created = 0

    def find_box(self, center_id: str, name: str) -> Box | None:
        return self.boxes.get((center_id, normalize_name(name)))

    def find_doctor(self, doctor_id: str) -> Doctor | None:
        return self.doctors_by_id.get(doctor_id)

    async def resolve_center(self, name: str) -> Center:
        key = normalize_name(name)
        if key in self.centers:
            return self.centers[key]

        center = await self.directory.add_center(name, self.org_id)
        self.centers[key] = center
        self.centers_by_id[center.center_id] = center
        self.centers_created += 1
        logger.info("Created center %s (%s) for org %s", center.name, center.center_id, self.org_id)
        return center

    async def resolve_box(self, center_id: str, name: str) -> Box:
        key = (center_id, normalize_name(name))
        if key in self.boxes:
            return self.boxes[key]

        box = await self.directory.add_box(name, center_id, self.org_id)
        self.boxes[key] = box
        self.boxes_created += 1
        return box

    async def resolve_doctor(self, center_id: str, name: str) -> Doctor:
        key = (center_id, normalize_name(name))
        if key in self.doctors:
            return self.doctors[key]

        doctor = await self.directory.add_doctor(name, center_id, self.org_id)
        self.doctors[key] = doctor
        self.doctors_by_id[doctor.doctor_id] = doctor
        self.doctors_created += 1
        return doctor
