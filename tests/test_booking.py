import unittest
from datetime import datetime, timedelta, timezone
from zoneinfo import ZoneInfo

from clinic_scheduler import Cancelled, OccupancySlotInfo, Reservation, build_time_slot_grid, check_availability, find_conflicts, has_time_overlap
from clinic_scheduler.booking import find_box_conflicts, find_double_bookings, reservations_from_documents, time_slot_labels

SANTIAGO = ZoneInfo("America/Santiago")


def make_reservation(reservation_id: str, box_name: str, start: datetime, minutes: int = 30, **overrides) -> Reservation:
    values = {
        "reservation_id": reservation_id,
        "org_id": "org-1",
        "center_id": "center-1",
        "box_id": f"id-{box_name}",
        "box_name": box_name,
        "doctor_name": "Dr. Soto",
        "start": start,
        "end": start + timedelta(minutes=minutes),
        "user_id": "user-1",
        "created_at": datetime(2024, 7, 1, 9, 0, tzinfo=SANTIAGO),
    }
    values.update(overrides)
    return Reservation(**values)


class TestTimeOverlap(unittest.TestCase):
    def setUp(self) -> None:
        self.exist_start = datetime(2026, 2, 24, 10, 0)
        self.exist_end = datetime(2026, 2, 24, 11, 0)

    def test_non_overlapping_before_passes(self) -> None:
        self.assertFalse(
            has_time_overlap(
                datetime(2026, 2, 24, 9, 0),
                datetime(2026, 2, 24, 9, 59),
                self.exist_start,
                self.exist_end,
            )
        )

    def test_exactly_touching_boundary_passes(self) -> None:
        self.assertFalse(
            has_time_overlap(
                datetime(2026, 2, 24, 11, 0),
                datetime(2026, 2, 24, 12, 0),
                self.exist_start,
                self.exist_end,
            )
        )

    def test_one_minute_overlap_fails(self) -> None:
        self.assertTrue(
            has_time_overlap(
                datetime(2026, 2, 24, 10, 59),
                datetime(2026, 2, 24, 11, 30),
                self.exist_start,
                self.exist_end,
            )
        )

    def test_invalid_interval_raises(self) -> None:
        with self.assertRaises(ValueError):
            has_time_overlap(self.exist_end, self.exist_start, self.exist_start, self.exist_end)


class TestTimeSlotGrid(unittest.TestCase):
    def test_grid_keys_by_box_and_local_time(self) -> None:
        reservations = [
            make_reservation("r1", "Box 1", datetime(2024, 7, 10, 9, 0, tzinfo=SANTIAGO)),
            make_reservation("r2", "Box 1", datetime(2024, 7, 10, 9, 30, tzinfo=SANTIAGO), doctor_name="Dra. Rojas"),
            make_reservation("r3", "Box 2", datetime(2024, 7, 10, 13, 0, tzinfo=timezone.utc)),
        ]

        grid = build_time_slot_grid(reservations, SANTIAGO)

        self.assertEqual(sorted(grid), ["Box 1", "Box 2"])
        self.assertEqual(sorted(grid["Box 1"]), ["09:00", "09:30"])
        self.assertEqual(grid["Box 1"]["09:30"].doctor_name, "Dra. Rojas")
        # 13:00 UTC is 09:00 in Santiago during July
        self.assertEqual(list(grid["Box 2"]), ["09:00"])

    def test_cancelled_reservations_do_not_occupy_cells(self) -> None:
        start = datetime(2024, 7, 10, 9, 0, tzinfo=SANTIAGO)
        cancelled = make_reservation("r1", "Box 1", start, state=Cancelled(start))

        self.assertEqual(build_time_slot_grid([cancelled], SANTIAGO), {})

    def test_duplicate_key_keeps_one_association(self) -> None:
        start = datetime(2024, 7, 10, 9, 0, tzinfo=SANTIAGO)
        first = make_reservation("r1", "Box 1", start)
        second = make_reservation("r2", "Box 1", start)

        grid_before = build_time_slot_grid([first], SANTIAGO)
        self.assertEqual(check_availability("Box 1", ["09:00"], grid_before), "conflict")

        grid = build_time_slot_grid([first, second], SANTIAGO)
        self.assertEqual(len(grid["Box 1"]), 1)
        self.assertEqual(grid["Box 1"]["09:00"].reservation_id, "r2")

    def test_malformed_documents_are_skipped(self) -> None:
        good = make_reservation("r1", "Box 1", datetime(2024, 7, 10, 9, 0, tzinfo=SANTIAGO))
        documents = [
            {"id": "r1", **good.to_dict()},
            {"id": "broken", "box_name": "Box 1"},
            {"id": "naive", **{**good.to_dict(), "start_time": "2024-07-10T09:00:00"}},
        ]

        with self.assertLogs("clinic_scheduler.booking", level="WARNING"):
            parsed = reservations_from_documents(documents)

        self.assertEqual([row.reservation_id for row in parsed], ["r1"])


class TestConflictChecker(unittest.TestCase):
    def setUp(self) -> None:
        info = OccupancySlotInfo(
            reservation_id="r1",
            doctor_name="Dr. Soto",
            observation=None,
            box_id="id-Box A",
            start=datetime(2024, 7, 10, 9, 0, tzinfo=SANTIAGO),
        )
        self.grid = {"Box A": {"09:00": info}}

    def test_occupied_slot_conflicts(self) -> None:
        self.assertEqual(check_availability("Box A", ["09:00"], self.grid), "conflict")

    def test_free_slot_is_available(self) -> None:
        self.assertEqual(check_availability("Box A", ["09:30"], self.grid), "available")

    def test_any_occupied_slot_rejects_whole_request(self) -> None:
        self.assertEqual(check_availability("Box A", ["09:00", "09:30"], self.grid), "conflict")
        self.assertEqual(find_conflicts("Box A", ["09:30", "9:00"], self.grid), ["09:00"])

    def test_other_box_is_available(self) -> None:
        self.assertEqual(check_availability("Box B", ["09:00"], self.grid), "available")

    def test_box_id_matches_cells_under_another_name(self) -> None:
        self.assertEqual(find_box_conflicts("id-Box A", ["09:00", "09:30"], {"box a": self.grid["Box A"]}), ["09:00"])
        self.assertEqual(find_box_conflicts("id-Box B", ["09:00"], self.grid), [])


class TestSlotLabels(unittest.TestCase):
    def test_default_window_has_half_hour_slots(self) -> None:
        labels = time_slot_labels()

        self.assertEqual(len(labels), 24)
        self.assertEqual(labels[0], "08:00")
        self.assertEqual(labels[-1], "19:30")

    def test_invalid_window_raises(self) -> None:
        with self.assertRaises(ValueError):
            time_slot_labels(10, 10)
        with self.assertRaises(ValueError):
            time_slot_labels(slot_minutes=0)


class TestDoubleBookings(unittest.TestCase):
    def test_overlapping_active_reservations_are_paired(self) -> None:
        start = datetime(2024, 7, 10, 9, 0, tzinfo=SANTIAGO)
        first = make_reservation("r1", "Box 1", start)
        second = make_reservation("r2", "Box 1", start)
        adjacent = make_reservation("r3", "Box 1", start + timedelta(minutes=30))
        cancelled = make_reservation("r4", "Box 1", start, state=Cancelled(start))

        pairs = find_double_bookings([first, second, adjacent, cancelled])

        self.assertEqual([(a.reservation_id, b.reservation_id) for a, b in pairs], [("r1", "r2")])


if __name__ == "__main__":
    unittest.main()
