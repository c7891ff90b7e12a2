"""Lateness and absence rules.

Everything here is pure: callers gather the inputs, these functions decide.
Counts and detail lists both go through ``classify_employee_day`` so they can
never disagree.
"""

from __future__ import annotations

import enum
from dataclasses import dataclass
from datetime import date, datetime, time, timedelta
from zoneinfo import ZoneInfo

from attendance_engine.models import Shift
from attendance_engine.services.clock import local_time_on_day_utc, normalize_ts
from attendance_engine.services.tenant_config import TenantConfig


class ClassificationStatus(str, enum.Enum):
    NOT_YET_DUE = "NOT_YET_DUE"
    ON_TIME = "ON_TIME"
    LATE = "LATE"
    ABSENT = "ABSENT"
    ON_LEAVE = "ON_LEAVE"
    ON_TASK = "ON_TASK"
    OFF_DAY = "OFF_DAY"


@dataclass(frozen=True, slots=True)
class ShiftClassificationInput:
    employee_id: int
    full_name: str
    day: date
    shift_start_local: time
    grace_minutes: int
    late_window_minutes: int
    tz: ZoneInfo
    employee_code: str | None = None
    branch_id: int | None = None
    branch_name: str | None = None
    shift_name: str | None = None
    shift_source: str = "SHIFT"
    session_id: int | None = None
    check_in_at: datetime | None = None
    on_leave: bool = False
    on_task: bool = False
    off_day: bool = False

    @property
    def shift_start_at(self) -> datetime:
        return local_time_on_day_utc(self.day, self.shift_start_local, self.tz)

    @property
    def absence_deadline_at(self) -> datetime:
        return self.shift_start_at + timedelta(minutes=self.grace_minutes + self.late_window_minutes)


@dataclass(frozen=True, slots=True)
class DayClassification:
    employee_id: int
    full_name: str
    employee_code: str | None
    branch_id: int | None
    status: ClassificationStatus
    shift_start_at: datetime
    absence_deadline_at: datetime
    shift_source: str
    minutes_late: int | None = None
    session_id: int | None = None
    check_in_at: datetime | None = None
    branch_name: str | None = None
    shift_name: str | None = None


def resolve_shift_start(shift: Shift | None, config: TenantConfig) -> tuple[time, str]:
    if shift is not None and shift.is_active:
        return shift.start_time_local, "SHIFT"
    return config.default_shift_start, "TENANT_DEFAULT"


def compute_minutes_late(check_in_at: datetime, shift_start_at: datetime, grace_minutes: int) -> int:
    threshold = normalize_ts(shift_start_at) + timedelta(minutes=max(0, grace_minutes))
    late_seconds = (normalize_ts(check_in_at) - threshold).total_seconds()
    if late_seconds <= 0:
        return 0
    return int(late_seconds // 60)


def classify_employee_day(item: ShiftClassificationInput, *, now_utc: datetime) -> DayClassification:
    shift_start_at = item.shift_start_at
    absence_deadline_at = item.absence_deadline_at

    def _result(status: ClassificationStatus, minutes_late: int | None = None) -> DayClassification:
        return DayClassification(
            employee_id=item.employee_id,
            full_name=item.full_name,
            employee_code=item.employee_code,
            branch_id=item.branch_id,
            branch_name=item.branch_name,
            shift_name=item.shift_name,
            status=status,
            shift_start_at=shift_start_at,
            absence_deadline_at=absence_deadline_at,
            shift_source=item.shift_source,
            minutes_late=minutes_late,
            session_id=item.session_id,
            check_in_at=normalize_ts(item.check_in_at) if item.check_in_at is not None else None,
        )

    if item.check_in_at is not None:
        minutes_late = compute_minutes_late(item.check_in_at, shift_start_at, item.grace_minutes)
        status = ClassificationStatus.LATE if minutes_late > 0 else ClassificationStatus.ON_TIME
        return _result(status, minutes_late)
    if item.on_leave:
        return _result(ClassificationStatus.ON_LEAVE)
    if item.on_task:
        return _result(ClassificationStatus.ON_TASK)
    if item.off_day:
        return _result(ClassificationStatus.OFF_DAY)

    if normalize_ts(now_utc) <= absence_deadline_at:
        return _result(ClassificationStatus.NOT_YET_DUE)
    return _result(ClassificationStatus.ABSENT)
