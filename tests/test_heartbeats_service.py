from __future__ import annotations

import random
import unittest
from datetime import timedelta
from unittest.mock import patch

from sqlalchemy import func, select

from attendance_engine.errors import SessionClosed, SessionNotFound
from attendance_engine.models import (
    AuditLog,
    CheckoutType,
    FreeTask,
    PendingAutoCheckout,
    PendingStatus,
    PresenceHeartbeat,
)
from attendance_engine.services.heartbeats import DecisionKind, record_heartbeat, violation_reason_for
from attendance_engine.services.location import LocationEvidence
from attendance_engine.services.sessions import close_session, open_session
from tests.support import T0, as_utc, make_config, make_session_factory, seed_employee, seed_tenant


class HeartbeatProcessorTests(unittest.TestCase):
    def setUp(self) -> None:
        self.db = make_session_factory()()
        self.tenant = seed_tenant(self.db)
        self.employee = seed_employee(self.db, tenant=self.tenant, full_name="Ayse Kaya")
        self.config = make_config(self.tenant.id, countdown_seconds=300)
        self.session = open_session(
            self.db,
            tenant_id=self.tenant.id,
            employee_id=self.employee.id,
            evidence=LocationEvidence(),
            config=self.config,
            now_utc=T0,
        )

    def tearDown(self) -> None:
        self.db.close()

    def _beat(  # type: ignore[no-untyped-def]
        self,
        offset_seconds: int,
        *,
        in_zone: bool = True,
        gps_valid: bool = True,
        config=None,
        session_id=None,
        evidence=None,
    ):
        return record_heartbeat(
            self.db,
            tenant_id=self.tenant.id,
            employee_id=self.employee.id,
            session_id=session_id or self.session.id,
            in_zone=in_zone,
            gps_valid=gps_valid,
            evidence=evidence or LocationEvidence(lat=41.0, lon=29.0, accuracy_m=8.0),
            config=config or self.config,
            now_utc=T0 + timedelta(seconds=offset_seconds),
        )

    def _pending_rows(self) -> list[PendingAutoCheckout]:
        return list(self.db.scalars(select(PendingAutoCheckout).order_by(PendingAutoCheckout.id)).all())

    def test_violation_reason_prefers_gps(self) -> None:
        self.assertEqual(violation_reason_for(in_zone=False, gps_valid=False), "GPS_INVALID")
        self.assertEqual(violation_reason_for(in_zone=False, gps_valid=True), "OUTSIDE_ZONE")
        self.assertIsNone(violation_reason_for(in_zone=True, gps_valid=True))

    def test_countdown_scenario_executes_at_deadline(self) -> None:
        created = self._beat(0, in_zone=False)
        self.assertEqual(created.kind, DecisionKind.PENDING_CREATED)
        self.assertEqual(as_utc(created.deadline_at), T0 + timedelta(seconds=300))

        active = self._beat(100, in_zone=False)
        self.assertEqual(active.kind, DecisionKind.PENDING_ACTIVE)
        self.assertEqual(active.seconds_remaining, 200)

        executed = self._beat(310, in_zone=False)
        self.assertEqual(executed.kind, DecisionKind.CHECKOUT_EXECUTED)
        self.assertEqual(executed.reason, "OUTSIDE_ZONE")

        self.db.refresh(self.session)
        self.assertEqual(as_utc(self.session.check_out_at), T0 + timedelta(seconds=310))
        self.assertEqual(self.session.checkout_type, CheckoutType.AUTO)
        self.assertEqual(self.session.checkout_reason, "OUTSIDE_ZONE")
        self.assertEqual(self.session.total_working_seconds, 310)

        rows = self._pending_rows()
        self.assertEqual(len(rows), 1)
        self.assertEqual(rows[0].status, PendingStatus.COMPLETED)

        audit_actions = self.db.scalars(select(AuditLog.action)).all()
        self.assertIn("AUTO_CHECKOUT_EXECUTED", audit_actions)

    def test_recovery_cancels_then_next_clean_heartbeat_is_ok(self) -> None:
        self._beat(0, gps_valid=False)
        cancelled = self._beat(60)
        following = self._beat(90)

        self.assertEqual(cancelled.kind, DecisionKind.PENDING_CANCELLED)
        self.assertEqual(cancelled.reason, "GPS_INVALID")
        self.assertEqual(following.kind, DecisionKind.OK)
        self.assertEqual(self._pending_rows()[0].status, PendingStatus.CANCELLED)

    def test_new_violation_after_recovery_gets_fresh_deadline(self) -> None:
        first = self._beat(0, in_zone=False)
        self._beat(50)
        second = self._beat(120, in_zone=False)

        self.assertEqual(second.kind, DecisionKind.PENDING_CREATED)
        self.assertEqual(as_utc(second.deadline_at), T0 + timedelta(seconds=420))
        self.assertGreater(second.deadline_at, first.deadline_at)
        statuses = [row.status for row in self._pending_rows()]
        self.assertEqual(statuses, [PendingStatus.CANCELLED, PendingStatus.PENDING])

    def test_zero_countdown_checks_out_on_first_violation(self) -> None:
        decision = self._beat(30, in_zone=False, config=make_config(self.tenant.id, countdown_seconds=0))

        self.assertEqual(decision.kind, DecisionKind.CHECKOUT_EXECUTED)
        self.db.refresh(self.session)
        self.assertEqual(self.session.checkout_type, CheckoutType.AUTO)
        self.assertEqual(as_utc(self.session.check_out_at), T0 + timedelta(seconds=30))
        self.assertEqual(self._pending_rows()[0].status, PendingStatus.COMPLETED)

    def test_auto_checkout_records_the_triggering_heartbeat_location(self) -> None:
        decision = self._beat(
            30,
            in_zone=False,
            config=make_config(self.tenant.id, countdown_seconds=0),
            evidence=LocationEvidence(lat=41.5, lon=29.5, accuracy_m=9.0),
        )

        self.assertEqual(decision.kind, DecisionKind.CHECKOUT_EXECUTED)
        self.db.refresh(self.session)
        self.assertEqual(self.session.checkout_type, CheckoutType.AUTO)
        self.assertEqual(self.session.check_out_lat, 41.5)
        self.assertEqual(self.session.check_out_lon, 29.5)
        self.assertEqual(self.session.check_out_accuracy_m, 9.0)

    def test_failed_audit_write_keeps_the_auto_checkout(self) -> None:
        self._beat(0, in_zone=False)

        with patch("attendance_engine.audit.AuditLog", side_effect=RuntimeError("audit store down")):
            with self.assertLogs("attendance_engine.audit", level="ERROR") as logs:
                decision = self._beat(300, in_zone=False)

        self.assertEqual(decision.kind, DecisionKind.CHECKOUT_EXECUTED)
        self.assertTrue(any("audit_log_write_failed" in line for line in logs.output))
        self.db.refresh(self.session)
        self.assertEqual(self.session.checkout_type, CheckoutType.AUTO)
        self.assertEqual(self.session.checkout_reason, "OUTSIDE_ZONE")
        self.assertEqual(as_utc(self.session.check_out_at), T0 + timedelta(seconds=300))
        self.assertEqual(self._pending_rows()[0].status, PendingStatus.COMPLETED)
        self.assertEqual(self.db.scalar(select(func.count()).select_from(AuditLog)), 0)

    def test_disabled_auto_checkout_records_without_countdown(self) -> None:
        decision = self._beat(
            0,
            in_zone=False,
            gps_valid=False,
            config=make_config(self.tenant.id, auto_checkout_enabled=False),
        )

        self.assertEqual(decision.kind, DecisionKind.OK)
        self.assertFalse(decision.auto_checkout_enabled)
        self.assertEqual(self._pending_rows(), [])
        heartbeat = self.db.scalar(select(PresenceHeartbeat).where(PresenceHeartbeat.employee_id == self.employee.id))
        self.assertFalse(heartbeat.gps_valid)
        self.assertEqual(heartbeat.violation_reason, "GPS_INVALID")

    def test_heartbeat_row_is_overwritten_in_place(self) -> None:
        self._beat(0)
        self._beat(30, in_zone=False)

        count = self.db.scalar(select(func.count()).select_from(PresenceHeartbeat))
        heartbeat = self.db.scalar(select(PresenceHeartbeat))
        self.assertEqual(count, 1)
        self.assertEqual(as_utc(heartbeat.last_seen_at), T0 + timedelta(seconds=30))
        self.assertFalse(heartbeat.in_zone)

    def test_active_free_task_suppresses_countdown(self) -> None:
        self.db.add(
            FreeTask(
                tenant_id=self.tenant.id,
                employee_id=self.employee.id,
                start_at=T0 - timedelta(hours=1),
                end_at=T0 + timedelta(hours=4),
                is_active=True,
            )
        )
        self.db.commit()

        decision = self._beat(60, in_zone=False)

        self.assertEqual(decision.kind, DecisionKind.OK)
        self.assertTrue(decision.auto_checkout_enabled)
        self.assertEqual(self._pending_rows(), [])

    def test_heartbeat_for_closed_session_is_rejected_without_mutation(self) -> None:
        close_session(
            self.db,
            tenant_id=self.tenant.id,
            session_id=self.session.id,
            evidence=LocationEvidence(),
            now_utc=T0 + timedelta(hours=1),
        )

        with self.assertRaises(SessionClosed):
            self._beat(3700, in_zone=False)

        self.assertEqual(self._pending_rows(), [])
        self.assertIsNone(self.db.scalar(select(PresenceHeartbeat)))

    def test_heartbeat_for_foreign_or_unknown_session_is_not_found(self) -> None:
        other = seed_employee(self.db, tenant=self.tenant, full_name="Mehmet Demir")
        other_session = open_session(
            self.db,
            tenant_id=self.tenant.id,
            employee_id=other.id,
            evidence=LocationEvidence(),
            config=self.config,
            now_utc=T0,
        )

        with self.assertRaises(SessionNotFound):
            self._beat(10, session_id=other_session.id)
        with self.assertRaises(SessionNotFound):
            self._beat(10, session_id=987654)

    def test_random_heartbeat_sequences_keep_at_most_one_pending_row(self) -> None:
        for seed in range(5):
            rng = random.Random(seed)
            db = make_session_factory()()
            tenant = seed_tenant(db, name=f"Tenant {seed}")
            employee = seed_employee(db, tenant=tenant, full_name="Random Walker")
            config = make_config(tenant.id, countdown_seconds=rng.choice([0, 60, 300]))
            session = open_session(
                db,
                tenant_id=tenant.id,
                employee_id=employee.id,
                evidence=LocationEvidence(),
                config=config,
                now_utc=T0,
            )

            offset = 0
            for _ in range(60):
                offset += rng.randint(0, 120)
                try:
                    record_heartbeat(
                        db,
                        tenant_id=tenant.id,
                        employee_id=employee.id,
                        session_id=session.id,
                        in_zone=rng.random() < 0.6,
                        gps_valid=rng.random() < 0.8,
                        evidence=LocationEvidence(),
                        config=config,
                        now_utc=T0 + timedelta(seconds=offset),
                    )
                except SessionClosed:
                    break
                finally:
                    pending_count = db.scalar(
                        select(func.count())
                        .select_from(PendingAutoCheckout)
                        .where(
                            PendingAutoCheckout.session_id == session.id,
                            PendingAutoCheckout.status == PendingStatus.PENDING,
                        )
                    )
                    self.assertLessEqual(pending_count, 1, msg=f"seed={seed}")
            db.close()


if __name__ == "__main__":
    unittest.main()
