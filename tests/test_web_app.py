import tempfile
import unittest
from datetime import datetime
from pathlib import Path
from zoneinfo import ZoneInfo

from clinic_scheduler.config import Settings
from clinic_scheduler.web_app import create_app

SANTIAGO = ZoneInfo("America/Santiago")
ORG = "org-1"


class TestWebApp(unittest.TestCase):
    def setUp(self) -> None:
        self._temp_dir = tempfile.TemporaryDirectory()
        self.addCleanup(self._temp_dir.cleanup)
        self.data_dir = Path(self._temp_dir.name) / "data"
        app = create_app(
            self.data_dir,
            settings=Settings(import_batch_pause_seconds=0.0),
            now_provider=lambda: datetime(2024, 7, 1, 9, 0, tzinfo=SANTIAGO),
        )
        self.client = app.test_client()

        center = self.client.post("/api/centers", json={"org_id": ORG, "name": "Centro Norte"}).get_json()
        self.center_id = center["center"]["id"]
        box = self.client.post(
            "/api/boxes", json={"org_id": ORG, "center_id": self.center_id, "name": "Box 1"}
        ).get_json()
        self.box_id = box["box"]["id"]

    def book(self, **overrides):
        payload = {
            "org_id": ORG,
            "center_id": self.center_id,
            "box_name": "Box 1",
            "date": "2024-07-10",
            "time_slots": ["09:00", "09:30"],
            "user_id": "user-1",
            "new_doctor_name": "Dra. Rojas",
        }
        payload.update(overrides)
        return self.client.post("/api/reservations", json=payload)

    def test_reference_data_is_resolved_not_duplicated(self) -> None:
        again = self.client.post("/api/centers", json={"org_id": ORG, "name": " centro norte "})
        self.assertFalse(again.get_json()["created"])

        centers = self.client.get(f"/api/centers?org_id={ORG}").get_json()["centers"]
        self.assertEqual([center["name"] for center in centers], ["Centro Norte"])

        boxes = self.client.get(f"/api/boxes?org_id={ORG}&center_id={self.center_id}").get_json()["boxes"]
        self.assertEqual([box["name"] for box in boxes], ["Box 1"])

        response = self.client.post("/api/doctors", json={"org_id": ORG, "center_id": "nowhere", "name": "Dr. X"})
        self.assertEqual(response.status_code, 400)

    def test_booking_shows_up_in_schedule(self) -> None:
        response = self.book()

        self.assertEqual(response.status_code, 200)
        payload = response.get_json()
        self.assertTrue(payload["ok"])
        self.assertEqual(payload["dates_processed"], 1)
        self.assertEqual(len(payload["reservations"]), 2)

        schedule = self.client.get(
            f"/api/schedule?org_id={ORG}&center_id={self.center_id}&date=2024-07-10"
        ).get_json()
        self.assertEqual(schedule["time_slots"][0], "08:00")
        self.assertEqual(schedule["boxes"], ["Box 1"])
        self.assertEqual(sorted(schedule["grid"]["Box 1"]), ["09:00", "09:30"])
        self.assertEqual(schedule["grid"]["Box 1"]["09:00"]["doctor_name"], "Dra. Rojas")

        doctors = self.client.get(f"/api/doctors?org_id={ORG}").get_json()["doctors"]
        self.assertEqual([doctor["name"] for doctor in doctors], ["Dra. Rojas"])

    def test_conflict_returns_409(self) -> None:
        self.book()

        response = self.book(time_slots=["09:30", "10:00"])

        self.assertEqual(response.status_code, 409)
        payload = response.get_json()
        self.assertFalse(payload["ok"])
        self.assertEqual(payload["conflicts"], ["09:30"])

    def test_recurring_booking(self) -> None:
        response = self.book(
            date="2024-05-06",
            time_slots=["10:00"],
            recurrence={"end_date": "2024-05-20", "weekdays": ["monday", 3]},
        )

        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.get_json()["dates_processed"], 5)

    def test_validation_errors_return_400(self) -> None:
        cases = [
            {"time_slots": []},
            {"date": "10/07/2024"},
            {"new_doctor_name": ""},
            {"time_slots": "09:00"},
            {"recurrence": {"end_date": "2024-07-20", "weekdays": ["someday"]}},
        ]
        for overrides in cases:
            with self.subTest(overrides=overrides):
                response = self.book(**overrides)
                self.assertEqual(response.status_code, 400)
                self.assertFalse(response.get_json()["ok"])

        response = self.client.get("/api/schedule?center_id=x")
        self.assertEqual(response.status_code, 400)

    def test_cancel_note_and_range(self) -> None:
        booked = self.book().get_json()["reservations"]
        first_id = booked[0]["reservation_id"]

        cancelled = self.client.post(f"/api/reservations/{first_id}/cancel")
        self.assertEqual(cancelled.get_json()["reservation"]["status"], "cancelled")
        repeated = self.client.post(f"/api/reservations/{first_id}/cancel")
        self.assertEqual(repeated.status_code, 200)
        self.assertEqual(
            repeated.get_json()["reservation"]["cancelled_at"], cancelled.get_json()["reservation"]["cancelled_at"]
        )

        note = self.client.post(f"/api/reservations/{booked[1]['reservation_id']}/note", json={"text": "Control"})
        self.assertEqual(note.get_json()["reservation"]["observation"], "Control")

        ranged = self.client.post(
            "/api/reservations/cancel-range",
            json={
                "org_id": ORG,
                "center_id": self.center_id,
                "box_id": self.box_id,
                "doctor_name": "Dra. Rojas",
                "time": "09:30",
                "start_date": "2024-07-01",
                "end_date": "2024-07-31",
            },
        )
        self.assertEqual(ranged.get_json(), {"ok": True, "cancelled": 1})

    def test_unknown_reservation_returns_404(self) -> None:
        self.assertEqual(self.client.post("/api/reservations/missing/cancel").status_code, 404)
        self.assertEqual(self.client.post("/api/reservations/missing/note", json={"text": "x"}).status_code, 404)

    def test_analytics(self) -> None:
        self.book()
        booked = self.book(time_slots=["11:00"]).get_json()["reservations"]
        self.client.post(f"/api/reservations/{booked[0]['reservation_id']}/cancel")

        response = self.client.get(
            f"/api/analytics?org_id={ORG}&center_id={self.center_id}&start=2024-07-08&end=2024-07-14&granularity=week"
        )

        self.assertEqual(response.status_code, 200)
        payload = response.get_json()
        self.assertEqual(payload["summary"]["active_count"], 2)
        self.assertEqual(payload["summary"]["cancelled_count"], 1)
        self.assertEqual(payload["summary"]["capacity_per_box"], 112)
        self.assertEqual(payload["timeline"], [{"period": "2024-07-08", "count": 2}])

        bad = self.client.get(f"/api/analytics?org_id={ORG}&start=2024-07-14&end=2024-07-08")
        self.assertEqual(bad.status_code, 400)

    def test_import_endpoints_and_count(self) -> None:
        infrastructure = self.client.post(
            "/api/import/infrastructure",
            json={"org_id": ORG, "rows": [{"cae": "Centro Sur", "box": "Box 7"}, {"cae": "centro norte", "box": "Box 1"}]},
        )
        self.assertEqual(infrastructure.get_json()["report"]["centers_created"], 1)
        self.assertEqual(infrastructure.get_json()["report"]["boxes_created"], 1)

        reservations = self.client.post(
            "/api/import/reservations",
            json={
                "org_id": ORG,
                "user_id": "admin",
                "rows": [
                    {
                        "id": "ext-1",
                        "location": "Centro Norte",
                        "description": "Box 1 - Control",
                        "summary": "Dr. House",
                        "start_time": "2024-07-10 18:00:00+00",
                        "end_time": "2024-07-10 18:30:00+00",
                    }
                ],
            },
        )
        self.assertEqual(reservations.status_code, 200)
        self.assertEqual(reservations.get_json()["report"]["reservations_written"], 1)

        count = self.client.get(f"/api/diagnostics/count?org_id={ORG}").get_json()
        self.assertEqual(count["count"], 1)

        self.assertEqual(self.client.post("/api/import/unknown", json={"org_id": ORG}).status_code, 404)
        self.assertEqual(self.client.post("/api/import/doctors", json={"org_id": ORG, "rows": "x"}).status_code, 400)

    def test_rescue_endpoint(self) -> None:
        response = self.client.post("/api/import/rescue", json={"org_id": ORG})

        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.get_json()["migrated"], 0)


if __name__ == "__main__":
    unittest.main()
