from __future__ import annotations

from dataclasses import dataclass
from datetime import date, datetime

from sqlalchemy import select
from sqlalchemy.orm import Session

from attendance_engine.models import AttendanceSession, CheckoutType, Employee, Shift
from attendance_engine.services.classifier import compute_minutes_late, resolve_shift_start
from attendance_engine.services.clock import local_day_of, local_time_on_day_utc, normalize_ts
from attendance_engine.services.tenant_config import TenantConfig


@dataclass(frozen=True, slots=True)
class SessionSummary:
    session_id: int
    employee_id: int
    full_name: str
    employee_code: str | None
    branch_id: int | None
    local_day: date
    check_in_at: datetime
    minutes_late: int
    check_out_at: datetime | None = None
    checkout_type: CheckoutType | None = None
    checkout_reason: str | None = None
    total_working_seconds: int | None = None


def _summaries_for_day(
    db: Session,
    *,
    tenant_id: int,
    day: date,
    config: TenantConfig,
    branch_id: int | None,
    open_only: bool,
) -> list[SessionSummary]:
    stmt = (
        select(AttendanceSession, Employee, Shift)
        .join(Employee, Employee.id == AttendanceSession.employee_id)
        .outerjoin(Shift, Shift.id == Employee.shift_id)
        .where(
            AttendanceSession.tenant_id == tenant_id,
            AttendanceSession.local_day == day,
            Employee.is_active.is_(True),
        )
        .order_by(Employee.full_name.asc(), Employee.id.asc())
    )
    if open_only:
        stmt = stmt.where(AttendanceSession.check_out_at.is_(None))
    if branch_id is not None:
        stmt = stmt.where(Employee.branch_id == branch_id)

    summaries: list[SessionSummary] = []
    for session, employee, shift in db.execute(stmt).all():
        shift_start_local, _source = resolve_shift_start(shift, config)
        shift_start_at = local_time_on_day_utc(day, shift_start_local, config.tz)
        check_in_at = normalize_ts(session.check_in_at)
        summaries.append(
            SessionSummary(
                session_id=session.id,
                employee_id=employee.id,
                full_name=employee.full_name,
                employee_code=employee.employee_code,
                branch_id=employee.branch_id,
                local_day=session.local_day,
                check_in_at=check_in_at,
                minutes_late=compute_minutes_late(check_in_at, shift_start_at, config.grace_period_minutes),
                check_out_at=normalize_ts(session.check_out_at) if session.check_out_at is not None else None,
                checkout_type=session.checkout_type,
                checkout_reason=session.checkout_reason,
                total_working_seconds=session.total_working_seconds,
            )
        )
    return summaries


def get_present_now(
    db: Session,
    *,
    tenant_id: int,
    config: TenantConfig,
    branch_id: int | None = None,
    now_utc: datetime | None = None,
) -> list[SessionSummary]:
    day = local_day_of(normalize_ts(now_utc), config.tz)
    return _summaries_for_day(
        db,
        tenant_id=tenant_id,
        day=day,
        config=config,
        branch_id=branch_id,
        open_only=True,
    )


def get_present_today(
    db: Session,
    *,
    tenant_id: int,
    config: TenantConfig,
    branch_id: int | None = None,
    day: date | None = None,
    now_utc: datetime | None = None,
) -> list[SessionSummary]:
    target_day = day or local_day_of(normalize_ts(now_utc), config.tz)
    return _summaries_for_day(
        db,
        tenant_id=tenant_id,
        day=target_day,
        config=config,
        branch_id=branch_id,
        open_only=False,
    )
