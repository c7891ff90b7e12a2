from __future__ import annotations

import unittest
from unittest.mock import MagicMock, patch

from sqlalchemy.exc import OperationalError

from attendance_engine.errors import Busy, EmployeeInactive, EmployeeNotFound
from attendance_engine.services.locking import lock_employee, run_serialized
from attendance_engine.settings import Settings
from tests.support import make_session_factory, seed_employee, seed_tenant


def _lock_timeout() -> OperationalError:
    return OperationalError("SELECT ... FOR UPDATE", {}, Exception("lock timeout"))


class RunSerializedTests(unittest.TestCase):
    def setUp(self) -> None:
        self.db = make_session_factory()()
        self.tenant = seed_tenant(self.db)
        self.employee = seed_employee(self.db, tenant=self.tenant, full_name="Ayse Kaya")

    def tearDown(self) -> None:
        self.db.close()

    def test_operation_receives_locked_employee(self) -> None:
        result = run_serialized(
            self.db,
            tenant_id=self.tenant.id,
            employee_id=self.employee.id,
            operation=lambda employee: employee.full_name,
        )
        self.assertEqual(result, "Ayse Kaya")

    def test_lock_belongs_to_tenant(self) -> None:
        other = seed_tenant(self.db, name="Other")
        with self.assertRaises(EmployeeNotFound):
            lock_employee(self.db, tenant_id=other.id, employee_id=self.employee.id)

    def test_inactive_employee_can_be_locked_for_close_paths(self) -> None:
        self.employee.is_active = False
        self.db.commit()

        with self.assertRaises(EmployeeInactive):
            lock_employee(self.db, tenant_id=self.tenant.id, employee_id=self.employee.id)
        locked = lock_employee(
            self.db,
            tenant_id=self.tenant.id,
            employee_id=self.employee.id,
            require_active=False,
        )
        self.assertEqual(locked.id, self.employee.id)

    def test_lock_timeouts_retry_with_backoff_then_report_busy(self) -> None:
        fake_settings = Settings(lock_retry_attempts=3, lock_retry_backoff_ms=50)
        operation = MagicMock()

        with patch("attendance_engine.services.locking.get_settings", return_value=fake_settings), patch(
            "attendance_engine.services.locking.lock_employee",
            side_effect=_lock_timeout(),
        ) as lock_mock, patch("attendance_engine.services.locking.time.sleep") as sleep_mock:
            with self.assertRaises(Busy) as ctx:
                run_serialized(
                    self.db,
                    tenant_id=self.tenant.id,
                    employee_id=self.employee.id,
                    operation=operation,
                )

        self.assertEqual(ctx.exception.status_code, 503)
        self.assertEqual(lock_mock.call_count, 3)
        self.assertEqual([item.args[0] for item in sleep_mock.call_args_list], [0.05, 0.1])
        operation.assert_not_called()

    def test_transient_lock_timeout_recovers_on_retry(self) -> None:
        fake_settings = Settings(lock_retry_attempts=3, lock_retry_backoff_ms=0)

        with patch("attendance_engine.services.locking.get_settings", return_value=fake_settings), patch(
            "attendance_engine.services.locking.lock_employee",
            side_effect=[_lock_timeout(), self.employee],
        ):
            result = run_serialized(
                self.db,
                tenant_id=self.tenant.id,
                employee_id=self.employee.id,
                operation=lambda employee: employee.id,
            )

        self.assertEqual(result, self.employee.id)

    def test_failed_operation_rolls_back(self) -> None:
        def _rename_then_fail(employee):  # type: ignore[no-untyped-def]
            employee.full_name = "Changed"
            raise RuntimeError("boom")

        with self.assertRaises(RuntimeError):
            run_serialized(
                self.db,
                tenant_id=self.tenant.id,
                employee_id=self.employee.id,
                operation=_rename_then_fail,
            )

        self.db.refresh(self.employee)
        self.assertEqual(self.employee.full_name, "Ayse Kaya")


if __name__ == "__main__":
    unittest.main()
