from __future__ import annotations

import enum
from dataclasses import dataclass
from datetime import date

from sqlalchemy import select
from sqlalchemy.orm import Session

from attendance_engine.models import Holiday
from attendance_engine.services.tenant_config import TenantConfig


class DayKind(str, enum.Enum):
    WORKDAY = "WORKDAY"
    OFFDAY = "OFFDAY"


@dataclass(frozen=True, slots=True)
class DayStatus:
    day: date
    kind: DayKind
    reason: str | None = None
    holiday_name: str | None = None

    @property
    def is_off_day(self) -> bool:
        return self.kind == DayKind.OFFDAY


def resolve_day_status(db: Session, *, tenant_id: int, day: date, config: TenantConfig) -> DayStatus:
    holiday = db.scalar(
        select(Holiday).where(
            Holiday.tenant_id == tenant_id,
            Holiday.holiday_date == day,
        )
    )
    if holiday is not None:
        return DayStatus(day=day, kind=DayKind.OFFDAY, reason="HOLIDAY", holiday_name=holiday.name)

    # weekday(): Monday == 0
    if day.weekday() in config.weekly_off_days:
        return DayStatus(day=day, kind=DayKind.OFFDAY, reason="WEEKLY_OFF")

    return DayStatus(day=day, kind=DayKind.WORKDAY)
