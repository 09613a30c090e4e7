import unittest
from datetime import date, datetime, timedelta
from zoneinfo import ZoneInfo

from clinic_scheduler.analytics import (
    BusinessHours,
    DayHours,
    capacity_per_box,
    cancellation_rate,
    summarize,
    timeline,
)
from clinic_scheduler.models import Cancelled, Reservation

SANTIAGO = ZoneInfo("America/Santiago")


def make_reservation(box_name: str, start: datetime, cancelled: bool = False) -> Reservation:
    reservation = Reservation(
        reservation_id=f"{box_name}-{start.isoformat()}",
        org_id="org-1",
        center_id="center-1",
        box_id=f"id-{box_name}",
        box_name=box_name,
        doctor_name="Dr. Soto",
        start=start,
        end=start + timedelta(minutes=30),
        user_id="user-1",
        created_at=start,
    )
    return reservation.cancel(start) if cancelled else reservation


class TestCapacity(unittest.TestCase):
    def test_default_hours_for_one_week(self) -> None:
        # Monday 2024-07-08 through Sunday 2024-07-14: 4 x 24 + 16 slots
        self.assertEqual(capacity_per_box(date(2024, 7, 8), date(2024, 7, 14), BusinessHours()), 112)

    def test_closed_days_and_custom_hours(self) -> None:
        hours = BusinessHours(saturday=DayHours(9, 14, True))

        self.assertEqual(capacity_per_box(date(2024, 7, 13), date(2024, 7, 13), hours), 10)
        self.assertEqual(capacity_per_box(date(2024, 7, 14), date(2024, 7, 14), hours), 0)
        self.assertEqual(capacity_per_box(date(2024, 7, 8), date(2024, 7, 8), hours, slot_minutes=60), 12)

    def test_public_holidays_are_skipped_when_requested(self) -> None:
        new_year = date(2024, 1, 1)

        self.assertEqual(capacity_per_box(new_year, new_year, BusinessHours()), 24)
        self.assertEqual(capacity_per_box(new_year, new_year, BusinessHours(), holiday_country="CL"), 0)

    def test_range_is_bounded(self) -> None:
        start = date(2024, 1, 1)
        bounded = capacity_per_box(start, start + timedelta(days=999), BusinessHours())

        self.assertEqual(capacity_per_box(start, start + timedelta(days=3000), BusinessHours()), bounded)

    def test_hours_from_dict_falls_back_to_defaults(self) -> None:
        hours = BusinessHours.from_dict({"friday": {"open_hour": 8, "close_hour": 20, "is_open": True}})

        self.assertEqual(hours.friday, DayHours(8, 20, True))
        self.assertEqual(hours.weekdays, BusinessHours().weekdays)


class TestSummary(unittest.TestCase):
    def test_cancellation_rate(self) -> None:
        self.assertEqual(cancellation_rate(3, 1), 25.0)
        self.assertEqual(cancellation_rate(2, 1), 33.3)
        self.assertEqual(cancellation_rate(0, 0), 0.0)

    def test_summary_sorts_occupancy_and_caps_it(self) -> None:
        monday = datetime(2024, 7, 8, 8, 0, tzinfo=SANTIAGO)
        reservations = [make_reservation("Box 1", monday + timedelta(minutes=30 * index)) for index in range(30)]
        reservations.append(make_reservation("Box 2", monday))
        reservations.append(make_reservation("Box 2", monday + timedelta(hours=1), cancelled=True))
        reservations.append(make_reservation("Box 9", monday))

        summary = summarize(reservations, ["Box 2", "Box 1", "Box 3"], date(2024, 7, 8), date(2024, 7, 8))

        self.assertEqual(summary.capacity_per_box, 24)
        self.assertEqual(summary.active_count, 32)
        self.assertEqual(summary.cancelled_count, 1)
        self.assertEqual(summary.cancellation_rate, 3.0)
        self.assertEqual([row.name for row in summary.occupancy], ["Box 1", "Box 2", "Box 3"])
        self.assertEqual(summary.occupancy[0].occupied_pct, 100.0)
        self.assertEqual(summary.occupancy[1].occupied_pct, 4.2)
        self.assertEqual(summary.to_dict()["occupancy"][2]["occupied"], 0)

    def test_summary_with_no_capacity(self) -> None:
        sunday = datetime(2024, 7, 14, 10, 0, tzinfo=SANTIAGO)

        summary = summarize([make_reservation("Box 1", sunday)], ["Box 1"], date(2024, 7, 14), date(2024, 7, 14))

        self.assertEqual(summary.capacity_per_box, 0)
        self.assertEqual(summary.occupancy[0].occupied_pct, 0.0)
        self.assertEqual(summary.occupancy[0].capacity, 1)


class TestTimeline(unittest.TestCase):
    def setUp(self) -> None:
        self.reservations = [
            make_reservation("Box 1", datetime(2024, 7, 8, 9, 0, tzinfo=SANTIAGO)),
            make_reservation("Box 1", datetime(2024, 7, 10, 9, 0, tzinfo=SANTIAGO)),
            make_reservation("Box 1", datetime(2024, 7, 10, 9, 30, tzinfo=SANTIAGO), cancelled=True),
            make_reservation("Box 1", datetime(2024, 8, 1, 9, 0, tzinfo=SANTIAGO)),
        ]

    def test_day_buckets(self) -> None:
        self.assertEqual(
            timeline(self.reservations, "day", SANTIAGO),
            [("2024-07-08", 1), ("2024-07-10", 1), ("2024-08-01", 1)],
        )

    def test_week_buckets_start_on_monday(self) -> None:
        self.assertEqual(timeline(self.reservations, "week", SANTIAGO), [("2024-07-08", 2), ("2024-07-29", 1)])

    def test_month_buckets(self) -> None:
        self.assertEqual(timeline(self.reservations, "month", SANTIAGO), [("2024-07", 2), ("2024-08", 1)])

    def test_unknown_granularity_raises(self) -> None:
        with self.assertRaises(ValueError):
            timeline(self.reservations, "year", SANTIAGO)


if __name__ == "__main__":
    unittest.main()
