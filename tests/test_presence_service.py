from __future__ import annotations

import unittest
from datetime import datetime, time, timedelta, timezone

from attendance_engine.models import CheckoutType
from attendance_engine.services.location import LocationEvidence
from attendance_engine.services.presence import get_present_now, get_present_today
from attendance_engine.services.sessions import close_session, open_session
from tests.support import DAY, T0, make_config, make_session_factory, seed_branch, seed_employee, seed_shift, seed_tenant


class PresenceServiceTests(unittest.TestCase):
    def setUp(self) -> None:
        self.db = make_session_factory()()
        self.tenant = seed_tenant(self.db)
        self.config = make_config(self.tenant.id)
        self.branch = seed_branch(self.db, tenant=self.tenant)

    def tearDown(self) -> None:
        self.db.close()

    def _check_in(self, employee, at: datetime):  # type: ignore[no-untyped-def]
        return open_session(
            self.db,
            tenant_id=self.tenant.id,
            employee_id=employee.id,
            evidence=LocationEvidence(),
            config=self.config,
            now_utc=at,
        )

    def test_present_now_lists_only_open_sessions_of_the_day(self) -> None:
        staying = seed_employee(self.db, tenant=self.tenant, full_name="Ayse Kaya", branch=self.branch)
        leaving = seed_employee(self.db, tenant=self.tenant, full_name="Baris Oz")
        yesterday = seed_employee(self.db, tenant=self.tenant, full_name="Cansu Dun")

        self._check_in(staying, T0 + timedelta(minutes=25))
        left = self._check_in(leaving, T0)
        close_session(
            self.db,
            tenant_id=self.tenant.id,
            session_id=left.id,
            evidence=LocationEvidence(),
            now_utc=T0 + timedelta(hours=2),
        )
        self._check_in(yesterday, T0 - timedelta(days=1))

        now = T0 + timedelta(hours=3)
        present = get_present_now(self.db, tenant_id=self.tenant.id, config=self.config, now_utc=now)

        self.assertEqual([item.employee_id for item in present], [staying.id])
        self.assertEqual(present[0].minutes_late, 10)
        self.assertEqual(present[0].branch_id, self.branch.id)
        self.assertIsNone(present[0].check_out_at)

        by_branch = get_present_now(
            self.db,
            tenant_id=self.tenant.id,
            config=self.config,
            branch_id=self.branch.id + 1,
            now_utc=now,
        )
        self.assertEqual(by_branch, [])

    def test_present_today_includes_closed_sessions(self) -> None:
        early_shift = seed_shift(self.db, tenant=self.tenant, name="Early", start=time(7, 0), end=time(15, 0))
        first = seed_employee(self.db, tenant=self.tenant, full_name="Deniz Erken", shift=early_shift)
        second = seed_employee(self.db, tenant=self.tenant, full_name="Emre Gec")

        closed = self._check_in(first, T0)
        close_session(
            self.db,
            tenant_id=self.tenant.id,
            session_id=closed.id,
            evidence=LocationEvidence(),
            now_utc=T0 + timedelta(hours=6),
        )
        self._check_in(second, T0 + timedelta(minutes=5))

        today = get_present_today(self.db, tenant_id=self.tenant.id, config=self.config, day=DAY)

        self.assertEqual([item.employee_id for item in today], [first.id, second.id])
        self.assertEqual(today[0].checkout_type, CheckoutType.MANUAL)
        self.assertEqual(today[0].total_working_seconds, 6 * 3600)
        self.assertEqual(today[0].check_out_at, T0 + timedelta(hours=6))
        self.assertEqual(today[0].minutes_late, 105)
        self.assertEqual(today[1].minutes_late, 0)

    def test_local_day_follows_tenant_timezone(self) -> None:
        istanbul = make_config(self.tenant.id, timezone_name="Europe/Istanbul")
        employee = seed_employee(self.db, tenant=self.tenant, full_name="Fikret Gece")
        late_evening_utc = datetime(2026, 3, 1, 22, 30, tzinfo=timezone.utc)
        open_session(
            self.db,
            tenant_id=self.tenant.id,
            employee_id=employee.id,
            evidence=LocationEvidence(),
            config=istanbul,
            now_utc=late_evening_utc,
        )

        present = get_present_now(
            self.db,
            tenant_id=self.tenant.id,
            config=istanbul,
            now_utc=late_evening_utc + timedelta(minutes=30),
        )
        self.assertEqual(len(present), 1)
        self.assertEqual(present[0].local_day, DAY)


if __name__ == "__main__":
    unittest.main()
