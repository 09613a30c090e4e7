from __future__ import annotations

import asyncio
import logging
from dataclasses import asdict, dataclass
from datetime import datetime
from typing import Any, Awaitable, Callable, Iterable, Mapping

from .config import Settings, settings as default_settings
from .directory import ReferenceDirectory, ResolutionContext
from .errors import ImportAbortedError, StorageError
from .local_time import parse_external_timestamp
from .models import BOXES, CENTERS, DOCTORS, RESERVATIONS, Reservation
from .yaml_store import MAX_BATCH_OPERATIONS, WriteBatch, YamlDocumentStore, where

logger = logging.getLogger(__name__)

LogSink = Callable[[str], None]
Row = Mapping[str, Any]

DEFAULT_DOCTOR_NAME = "Sin Asignar"
DEFAULT_IMPORT_NOTE = "Imported"
ORPHAN_COLLECTIONS = (CENTERS, BOXES, DOCTORS, RESERVATIONS)

# Fields an upsert must not overwrite on a reservation that already exists.
_PRESERVED_ON_MERGE = ("status", "cancelled_at", "created_at")


@dataclass
class ImportReport:
    rows_total: int = 0
    rows_skipped: int = 0
    centers_created: int = 0
    boxes_created: int = 0
    doctors_created: int = 0
    reservations_written: int = 0

    def to_dict(self) -> dict[str, int]:
        return asdict(self)

    def absorb(self, context: ResolutionContext) -> None:
        self.centers_created = context.centers_created
        self.boxes_created = context.boxes_created
        self.doctors_created = context.doctors_created


def _field(row: Row, key: str) -> str:
    value = row.get(key)
    return str(value).strip() if value is not None else ""


class BulkImportReconciler:
    """Idempotent import of centers, boxes, doctors and reservations from CSV rows."""

    def __init__(
        self,
        store: YamlDocumentStore,
        directory: ReferenceDirectory | None = None,
        settings: Settings | None = None,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self.store = store
        self.directory = directory or ReferenceDirectory(store)
        self.settings = settings or default_settings
        self._sleep = sleep
        self._clock = clock or (lambda: datetime.now(self.settings.tzinfo))

    @property
    def batch_size(self) -> int:
        return max(1, min(self.settings.import_batch_size, MAX_BATCH_OPERATIONS))

    async def import_infrastructure(self, rows: Iterable[Row], org_id: str, on_log: LogSink | None = None) -> ImportReport:
        """Rows with ``cae`` (center) and ``box`` columns."""
        log = on_log or logger.info
        rows = list(rows)
        report = ImportReport(rows_total=len(rows))
        log(f"Processing {len(rows)} infrastructure rows...")

        context = await self.directory.open_context(org_id)
        try:
            for index, row in enumerate(rows, start=1):
                center_name = _field(row, "cae")
                box_name = _field(row, "box")
                if not center_name or not box_name:
                    report.rows_skipped += 1
                    log(f"[skip] row {index}: missing cae or box")
                    continue

                known_centers = context.centers_created
                center = await context.resolve_center(center_name)
                if context.centers_created > known_centers:
                    log(f"[+] New center: {center.name}")

                known_boxes = context.boxes_created
                await context.resolve_box(center.center_id, box_name)
                if context.boxes_created > known_boxes and context.boxes_created % 10 == 0:
                    log(f"[+] Added {context.boxes_created} boxes...")
        except StorageError as error:
            report.absorb(context)
            log(f"ERROR: {error}")
            raise ImportAbortedError(report.centers_created + report.boxes_created, report) from error

        report.absorb(context)
        log(f"DONE: created {report.centers_created} centers and {report.boxes_created} boxes.")
        self.store.log_event("IMPORT_INFRASTRUCTURE", {"org_id": org_id, **report.to_dict()})
        return report

    async def import_doctors(self, rows: Iterable[Row], org_id: str, on_log: LogSink | None = None) -> ImportReport:
        """Rows with ``cae`` (center) and ``medico`` (doctor) columns."""
        log = on_log or logger.info
        rows = list(rows)
        report = ImportReport(rows_total=len(rows))
        log(f"Processing {len(rows)} doctor rows...")

        context = await self.directory.open_context(org_id)
        try:
            for index, row in enumerate(rows, start=1):
                center_name = _field(row, "cae")
                doctor_name = _field(row, "medico")
                if not center_name or not doctor_name:
                    report.rows_skipped += 1
                    log(f"[skip] row {index}: missing cae or medico")
                    continue

                known_centers = context.centers_created
                center = await context.resolve_center(center_name)
                if context.centers_created > known_centers:
                    log(f"[+] New center created for doctor: {center.name}")

                known_doctors = context.doctors_created
                await context.resolve_doctor(center.center_id, doctor_name)
                if context.doctors_created > known_doctors and context.doctors_created % 5 == 0:
                    log(f"[+] Added {context.doctors_created} doctors...")
        except StorageError as error:
            report.absorb(context)
            log(f"ERROR: {error}")
            raise ImportAbortedError(report.centers_created + report.doctors_created, report) from error

        report.absorb(context)
        log(f"DONE: added {report.doctors_created} new doctors.")
        self.store.log_event("IMPORT_DOCTORS", {"org_id": org_id, **report.to_dict()})
        return report

    async def import_reservations(
        self,
        rows: Iterable[Row],
        org_id: str,
        user_id: str,
        on_log: LogSink | None = None,
    ) -> ImportReport:
        """Upsert exported reservations.

        Rows supplying ``id`` are merged into that document; other rows are
        inserted. Writes go out in batches with a pause in between. A failed
        batch aborts the run; batches committed before it stay.
        """
        log = on_log or logger.info
        rows = list(rows)
        report = ImportReport(rows_total=len(rows))
        log(f"Starting import of {len(rows)} reservations for org {org_id}...")

        context = await self.directory.open_context(org_id)
        owners = {row["id"]: row.get("org_id") for row in await self.store.query(RESERVATIONS)}
        existing_ids = {doc_id for doc_id, owner in owners.items() if not owner or owner == org_id}
        batch = self.store.batch()

        try:
            for index, row in enumerate(rows, start=1):
                center_name = _field(row, "location") or _field(row, "cae")
                description = _field(row, "description")
                box_name = description.split("-")[0].strip() if "-" in description else description
                if not center_name or not box_name or not _field(row, "start_time"):
                    report.rows_skipped += 1
                    log(f"[skip] row {index}: missing center, box or start_time")
                    continue

                external_id = _field(row, "id")
                if external_id and external_id in owners and external_id not in existing_ids:
                    report.rows_skipped += 1
                    log(f"[skip] row {index}: id {external_id} belongs to another organization")
                    continue

                try:
                    start = parse_external_timestamp(_field(row, "start_time"))
                    end = parse_external_timestamp(_field(row, "end_time"))
                except ValueError as error:
                    report.rows_skipped += 1
                    log(f"[skip] row {index}: unreadable timestamp ({error})")
                    continue
                if start >= end:
                    report.rows_skipped += 1
                    log(f"[skip] row {index}: start is not before end")
                    continue

                center = await context.resolve_center(center_name)
                box = await context.resolve_box(center.center_id, box_name)
                reservation = Reservation(
                    reservation_id="",
                    org_id=org_id,
                    center_id=center.center_id,
                    box_id=box.box_id,
                    box_name=box.name,
                    doctor_name=_field(row, "summary").replace('"', "").strip() or DEFAULT_DOCTOR_NAME,
                    start=start,
                    end=end,
                    user_id=user_id,
                    created_at=self._clock(),
                    observation=_field(row, "observation") or DEFAULT_IMPORT_NOTE,
                    original_event_id=_field(row, "event_id") or None,
                )

                payload = reservation.to_dict()
                if external_id and external_id in existing_ids:
                    for key in _PRESERVED_ON_MERGE:
                        payload.pop(key, None)
                batch.set(RESERVATIONS, payload, doc_id=external_id or None, merge=bool(external_id))
                if external_id:
                    existing_ids.add(external_id)

                if len(batch) >= self.batch_size:
                    report.reservations_written += await self._commit(batch, report, log)
                    log(
                        f"[PROGRESS] Saved {report.reservations_written} / {len(rows)}... "
                        f"pausing {self.settings.import_batch_pause_seconds:g}s"
                    )
                    await self._sleep(self.settings.import_batch_pause_seconds)
                    batch = self.store.batch()

            if len(batch):
                report.reservations_written += await self._commit(batch, report, log)
        except ImportAbortedError:
            report.absorb(context)
            raise
        except StorageError as error:
            report.absorb(context)
            log(f"ERROR: {error}")
            raise ImportAbortedError(report.reservations_written, report) from error

        report.absorb(context)
        log(f"SUCCESS: processed {report.reservations_written} reservations.")
        self.store.log_event("IMPORT_RESERVATIONS", {"org_id": org_id, **report.to_dict()})
        return report

    async def rescue_orphan_data(self, org_id: str, on_log: LogSink | None = None) -> int:
        """Assign documents that carry no organization to ``org_id``."""
        log = on_log or logger.info
        total = 0

        for collection in ORPHAN_COLLECTIONS:
            log(f"Checking collection: {collection}...")
            orphans = [row for row in await self.store.query(collection) if not row.get("org_id")]
            migrated = 0
            batch = self.store.batch()
            try:
                for row in orphans:
                    batch.update(collection, row["id"], {"org_id": org_id})
                    if len(batch) >= self.batch_size:
                        migrated += await batch.commit()
                        batch = self.store.batch()
                        await self._sleep(self.settings.import_batch_pause_seconds)
                if len(batch):
                    migrated += await batch.commit()
            except StorageError as error:
                log(f"ERROR: {error}")
                raise ImportAbortedError(total + migrated, None) from error

            total += migrated
            log(f"  > {migrated} documents assigned in {collection}")

        self.store.log_event("ORPHANS_RESCUED", {"org_id": org_id, "count": total})
        return total

    async def count_reservations(self, org_id: str | None = None) -> int:
        filters = [where("org_id", "==", org_id)] if org_id else []
        return await self.store.count(RESERVATIONS, *filters)

    async def _commit(self, batch: WriteBatch, report: ImportReport, log: LogSink) -> int:
        try:
            written = await batch.commit()
        except StorageError as error:
            log(f"ERROR: batch failed after {report.reservations_written} saved reservations: {error}")
            raise ImportAbortedError(report.reservations_written, report) from error
        self.store.log_event("IMPORT_BATCH_COMMITTED", {"count": written, "total": report.reservations_written + written})
        return written
