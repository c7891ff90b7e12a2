from __future__ import annotations

from datetime import date, datetime

from sqlalchemy import select
from sqlalchemy.orm import Session

from attendance_engine.models import FreeTask, Leave, LeaveStatus
from attendance_engine.services.clock import normalize_ts


def employees_on_leave(db: Session, *, tenant_id: int, day: date) -> set[int]:
    stmt = select(Leave.employee_id).where(
        Leave.tenant_id == tenant_id,
        Leave.status == LeaveStatus.APPROVED,
        Leave.start_date <= day,
        Leave.end_date >= day,
    )
    return set(db.scalars(stmt).all())


def employees_on_task(
    db: Session,
    *,
    tenant_id: int,
    window_start_utc: datetime,
    window_end_utc: datetime,
) -> set[int]:
    stmt = select(FreeTask.employee_id).where(
        FreeTask.tenant_id == tenant_id,
        FreeTask.is_active.is_(True),
        FreeTask.start_at < normalize_ts(window_end_utc),
        FreeTask.end_at > normalize_ts(window_start_utc),
    )
    return set(db.scalars(stmt).all())


def has_active_free_task(
    db: Session,
    *,
    tenant_id: int,
    employee_id: int,
    at_utc: datetime,
) -> bool:
    ts_utc = normalize_ts(at_utc)
    task_id = db.scalar(
        select(FreeTask.id)
        .where(
            FreeTask.tenant_id == tenant_id,
            FreeTask.employee_id == employee_id,
            FreeTask.is_active.is_(True),
            FreeTask.start_at <= ts_utc,
            FreeTask.end_at >= ts_utc,
        )
        .limit(1)
    )
    return task_id is not None
