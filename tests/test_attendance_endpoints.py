from __future__ import annotations

import unittest
from typing import Any

from fastapi.testclient import TestClient
from sqlalchemy import select

from attendance_engine.db import get_db
from attendance_engine.main import app
from attendance_engine.models import AuditLog
from attendance_engine.security import require_employee
from tests.support import make_session_factory, seed_employee, seed_tenant


class AttendanceEndpointTests(unittest.TestCase):
    def setUp(self) -> None:
        self.session_factory = make_session_factory()
        with self.session_factory() as db:
            tenant = seed_tenant(db, countdown_seconds=300)
            employee = seed_employee(db, tenant=tenant, full_name="Ayse Kaya")
            self.tenant_id = tenant.id
            self.employee_id = employee.id

        def _override_get_db():  # type: ignore[no-untyped-def]
            db = self.session_factory()
            try:
                yield db
            finally:
                db.close()

        self.claims: dict[str, Any] = {
            "sub": f"employee:{self.employee_id}",
            "role": "employee",
            "tenant_id": self.tenant_id,
            "employee_id": self.employee_id,
        }
        app.dependency_overrides[get_db] = _override_get_db
        app.dependency_overrides[require_employee] = lambda: self.claims
        self.client = TestClient(app)

    def tearDown(self) -> None:
        app.dependency_overrides.clear()

    def _checkin(self) -> dict[str, Any]:
        response = self.client.post("/api/attendance/checkin", json={"lat": 41.0, "lon": 29.0, "accuracy_m": 5})
        self.assertEqual(response.status_code, 200, response.text)
        return response.json()

    def test_checkin_returns_session_and_rejects_second_open(self) -> None:
        body = self._checkin()
        self.assertTrue(body["ok"])
        self.assertEqual(body["session"]["employee_id"], self.employee_id)
        self.assertIsNone(body["session"]["check_out_at"])

        duplicate = self.client.post(
            "/api/attendance/checkin",
            json={},
            headers={"X-Request-Id": "req-dup-1"},
        )
        self.assertEqual(duplicate.status_code, 409)
        error = duplicate.json()["error"]
        self.assertEqual(error["code"], "DUPLICATE_OPEN_SESSION")
        self.assertEqual(error["request_id"], "req-dup-1")
        self.assertEqual(error["details"]["open_session_id"], body["session_id"])

        lookup = self.client.get("/api/attendance/open-session")
        self.assertEqual(lookup.status_code, 200)
        self.assertEqual(lookup.json()["session"]["id"], body["session_id"])

    def test_heartbeat_outside_zone_starts_countdown(self) -> None:
        session_id = self._checkin()["session_id"]

        response = self.client.post(
            "/api/attendance/heartbeat",
            json={"session_id": session_id, "in_zone": False, "gps_valid": True},
        )

        self.assertEqual(response.status_code, 200, response.text)
        body = response.json()
        self.assertEqual(body["decision"], "PENDING_CREATED")
        self.assertTrue(body["auto_checkout_enabled"])
        self.assertEqual(body["reason"], "OUTSIDE_ZONE")
        self.assertEqual(body["seconds_remaining"], 300)

        again = self.client.post(
            "/api/attendance/heartbeat",
            json={"session_id": session_id, "in_zone": True, "gps_valid": True},
        )
        self.assertEqual(again.json()["decision"], "PENDING_CANCELLED")

        with self.session_factory() as db:
            actions = db.scalars(select(AuditLog.action)).all()
        self.assertIn("AUTO_CHECKOUT_COUNTDOWN_STARTED", actions)

    def test_checkout_is_idempotent_and_closes_heartbeats(self) -> None:
        session_id = self._checkin()["session_id"]

        first = self.client.post("/api/attendance/checkout", json={"session_id": session_id})
        second = self.client.post("/api/attendance/checkout", json={"session_id": session_id})

        self.assertEqual(first.status_code, 200, first.text)
        self.assertEqual(first.json()["result"], "ACK")
        self.assertEqual(first.json()["session"]["checkout_type"], "MANUAL")
        self.assertEqual(second.json()["result"], "ALREADY_CLOSED")
        self.assertEqual(second.json()["session"]["check_out_at"], first.json()["session"]["check_out_at"])

        heartbeat = self.client.post(
            "/api/attendance/heartbeat",
            json={"session_id": session_id, "in_zone": True, "gps_valid": True},
        )
        self.assertEqual(heartbeat.status_code, 409)
        self.assertEqual(heartbeat.json()["error"]["code"], "SESSION_CLOSED")

        with self.session_factory() as db:
            checkout_audits = db.scalars(
                select(AuditLog).where(AuditLog.action == "ATTENDANCE_CHECKOUT")
            ).all()
        self.assertEqual(len(checkout_audits), 1)

    def test_unknown_session_is_not_found(self) -> None:
        response = self.client.post(
            "/api/attendance/heartbeat",
            json={"session_id": 4242, "in_zone": True, "gps_valid": True},
        )
        self.assertEqual(response.status_code, 404)
        self.assertEqual(response.json()["error"]["code"], "SESSION_NOT_FOUND")

        checkout = self.client.post("/api/attendance/checkout", json={"session_id": 4242})
        self.assertEqual(checkout.status_code, 404)

    def test_invalid_coordinates_are_rejected(self) -> None:
        response = self.client.post("/api/attendance/checkin", json={"lat": 123.0, "lon": 29.0})
        self.assertEqual(response.status_code, 422)
        self.assertEqual(response.json()["error"]["code"], "VALIDATION_ERROR")

    def test_missing_token_is_rejected(self) -> None:
        app.dependency_overrides.pop(require_employee)

        response = self.client.post("/api/attendance/checkin", json={})

        self.assertEqual(response.status_code, 401)
        self.assertEqual(response.json()["error"]["code"], "INVALID_TOKEN")


if __name__ == "__main__":
    unittest.main()
