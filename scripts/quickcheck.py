from __future__ import annotations

import asyncio
from datetime import date
from pathlib import Path
import tempfile
import traceback

from clinic_scheduler import BookingRequest, ReferenceDirectory, ReservationLifecycle, SlotConflictError, YamlDocumentStore


async def check(data_dir: Path) -> int:
    store = YamlDocumentStore(data_dir)
    directory = ReferenceDirectory(store)
    lifecycle = ReservationLifecycle(store, directory)

    center = await directory.add_center("Centro Quickcheck", "org-quickcheck")
    box = await directory.add_box("Box 1", center.center_id, "org-quickcheck")
    print(f"[OK] Center and box created: {center.name} / {box.name}")

    request = BookingRequest(
        org_id="org-quickcheck",
        center_id=center.center_id,
        box_name=box.name,
        booking_date=date(2024, 7, 10),
        time_slots=["09:00", "09:30"],
        user_id="quickcheck",
        new_doctor_name="Dra. Prueba",
    )
    result = await lifecycle.create(request)
    print(f"[OK] Booked slots: {len(result.reservations)}")

    try:
        await lifecycle.create(request)
    except SlotConflictError as error:
        print(f"[OK] Second booking rejected: {error.times}")
    else:
        print("[ERROR] Second booking was not rejected.")
        return 1

    grid = await lifecycle.get_day_grid("org-quickcheck", center.center_id, date(2024, 7, 10))
    print(f"[OK] Grid for {box.name}: {sorted(grid.get(box.name, {}))}")

    cancelled = await lifecycle.delete_single(result.reservations[0].reservation_id)
    print(f"[OK] Cancelled {cancelled.reservation_id}: {cancelled.status}")
    print(f"[OK] Event Log YAML: {store.log_file.resolve()}")

    print("[DONE] Quick check completed successfully.")
    return 0


def main() -> int:
    print("[INFO] Clinic Scheduler Quick Check")
    with tempfile.TemporaryDirectory() as temp_dir:
        return asyncio.run(check(Path(temp_dir) / "data"))


if __name__ == "__main__":
    try:
        raise SystemExit(main())
    except Exception:
        print("[ERROR] Quick check failed.")
        traceback.print_exc()
        raise SystemExit(1)
