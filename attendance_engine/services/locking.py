"""Per-employee serialization.

Every operation that touches an employee's sessions, heartbeat or countdowns
first locks that employee's row with ``SELECT ... FOR UPDATE``. The lock is held
until the caller commits or rolls back.
"""

from __future__ import annotations

import logging
import time
from collections.abc import Callable
from typing import TypeVar

from sqlalchemy import select, text
from sqlalchemy.exc import OperationalError
from sqlalchemy.orm import Session

from attendance_engine.errors import Busy, EmployeeInactive, EmployeeNotFound
from attendance_engine.models import Employee
from attendance_engine.settings import get_settings

logger = logging.getLogger("attendance_engine.locking")

T = TypeVar("T")


def _is_postgres(db: Session) -> bool:
    return db.get_bind().dialect.name == "postgresql"


def lock_employee(
    db: Session,
    *,
    tenant_id: int,
    employee_id: int,
    require_active: bool = True,
) -> Employee:
    if _is_postgres(db):
        timeout_ms = max(1, int(get_settings().lock_timeout_ms))
        db.execute(text(f"SET LOCAL lock_timeout = '{timeout_ms}ms'"))

    employee = db.scalar(
        select(Employee)
        .where(
            Employee.id == employee_id,
            Employee.tenant_id == tenant_id,
        )
        .with_for_update()
    )
    if employee is None:
        raise EmployeeNotFound()
    if require_active and not employee.is_active:
        raise EmployeeInactive()
    return employee


def run_serialized(
    db: Session,
    *,
    tenant_id: int,
    employee_id: int,
    operation: Callable[[Employee], T],
    require_active: bool = True,
) -> T:
    """Run ``operation`` while holding the employee lock, retrying lock timeouts with backoff.

    ``operation`` is responsible for committing. Anything it raises rolls the
    transaction back, which also releases the lock.
    """
    settings = get_settings()
    attempts = max(1, int(settings.lock_retry_attempts))
    backoff_seconds = max(0, int(settings.lock_retry_backoff_ms)) / 1000.0

    for attempt in range(1, attempts + 1):
        try:
            employee = lock_employee(
                db,
                tenant_id=tenant_id,
                employee_id=employee_id,
                require_active=require_active,
            )
        except OperationalError:
            db.rollback()
            logger.warning(
                "employee_lock_timeout",
                extra={
                    "tenant_id": tenant_id,
                    "employee_id": employee_id,
                    "attempt": attempt,
                    "max_attempts": attempts,
                },
            )
            if attempt < attempts and backoff_seconds:
                time.sleep(backoff_seconds * (2 ** (attempt - 1)))
            continue
        except Exception:
            db.rollback()
            raise

        try:
            return operation(employee)
        except Exception:
            db.rollback()
            raise

    raise Busy()
