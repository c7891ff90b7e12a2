from __future__ import annotations

from dataclasses import dataclass
from datetime import date, datetime

from sqlalchemy import select
from sqlalchemy.orm import Session

from attendance_engine.models import AttendanceSession, Branch, Employee, Shift
from attendance_engine.services.classifier import (
    ClassificationStatus,
    DayClassification,
    ShiftClassificationInput,
    classify_employee_day,
    resolve_shift_start,
)
from attendance_engine.services.clock import local_day_bounds_utc, normalize_ts
from attendance_engine.services.day_status import resolve_day_status
from attendance_engine.services.leaves import employees_on_leave, employees_on_task
from attendance_engine.services.tenant_config import TenantConfig


@dataclass(frozen=True, slots=True)
class AbsenceDetail:
    employee_id: int
    full_name: str
    employee_code: str | None
    branch_id: int | None
    branch_name: str | None
    shift_name: str | None
    shift_start_at: datetime
    absence_deadline_at: datetime


def build_classification_inputs(
    db: Session,
    *,
    tenant_id: int,
    day: date,
    config: TenantConfig,
    branch_id: int | None = None,
) -> list[ShiftClassificationInput]:
    stmt = (
        select(Employee, Shift, Branch)
        .outerjoin(Shift, Shift.id == Employee.shift_id)
        .outerjoin(Branch, Branch.id == Employee.branch_id)
        .where(
            Employee.tenant_id == tenant_id,
            Employee.is_active.is_(True),
        )
        .order_by(Employee.full_name.asc(), Employee.id.asc())
    )
    if branch_id is not None:
        stmt = stmt.where(Employee.branch_id == branch_id)
    rows = db.execute(stmt).all()

    sessions_by_employee = {
        item.employee_id: item
        for item in db.scalars(
            select(AttendanceSession).where(
                AttendanceSession.tenant_id == tenant_id,
                AttendanceSession.local_day == day,
            )
        ).all()
    }
    day_start_utc, day_end_utc = local_day_bounds_utc(day, config.tz)
    on_leave = employees_on_leave(db, tenant_id=tenant_id, day=day)
    on_task = employees_on_task(
        db,
        tenant_id=tenant_id,
        window_start_utc=day_start_utc,
        window_end_utc=day_end_utc,
    )
    off_day = resolve_day_status(db, tenant_id=tenant_id, day=day, config=config).is_off_day

    inputs: list[ShiftClassificationInput] = []
    for employee, shift, branch in rows:
        shift_start_local, shift_source = resolve_shift_start(shift, config)
        session = sessions_by_employee.get(employee.id)
        inputs.append(
            ShiftClassificationInput(
                employee_id=employee.id,
                full_name=employee.full_name,
                employee_code=employee.employee_code,
                branch_id=employee.branch_id,
                branch_name=branch.name if branch is not None else None,
                shift_name=shift.name if shift_source == "SHIFT" else None,
                day=day,
                shift_start_local=shift_start_local,
                shift_source=shift_source,
                grace_minutes=config.grace_period_minutes,
                late_window_minutes=config.late_window_minutes,
                tz=config.tz,
                session_id=session.id if session is not None else None,
                check_in_at=normalize_ts(session.check_in_at) if session is not None else None,
                on_leave=employee.id in on_leave,
                on_task=employee.id in on_task,
                off_day=off_day,
            )
        )
    return inputs


def classify_day(
    db: Session,
    *,
    tenant_id: int,
    day: date,
    config: TenantConfig,
    now_utc: datetime | None = None,
    branch_id: int | None = None,
) -> list[DayClassification]:
    now = normalize_ts(now_utc)
    inputs = build_classification_inputs(
        db,
        tenant_id=tenant_id,
        day=day,
        config=config,
        branch_id=branch_id,
    )
    return [classify_employee_day(item, now_utc=now) for item in inputs]


def list_absent_employees(
    db: Session,
    *,
    tenant_id: int,
    day: date,
    config: TenantConfig,
    now_utc: datetime | None = None,
    branch_id: int | None = None,
) -> list[AbsenceDetail]:
    return [
        AbsenceDetail(
            employee_id=item.employee_id,
            full_name=item.full_name,
            employee_code=item.employee_code,
            branch_id=item.branch_id,
            branch_name=item.branch_name,
            shift_start_at=item.shift_start_at,
            absence_deadline_at=item.absence_deadline_at,
            shift_name=item.shift_name,
        )
        for item in classify_day(
            db,
            tenant_id=tenant_id,
            day=day,
            config=config,
            now_utc=now_utc,
            branch_id=branch_id,
        )
        if item.status == ClassificationStatus.ABSENT
    ]


def count_absent_employees(
    db: Session,
    *,
    tenant_id: int,
    day: date,
    config: TenantConfig,
    now_utc: datetime | None = None,
    branch_id: int | None = None,
) -> int:
    return len(
        list_absent_employees(
            db,
            tenant_id=tenant_id,
            day=day,
            config=config,
            now_utc=now_utc,
            branch_id=branch_id,
        )
    )
