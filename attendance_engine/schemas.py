from datetime import date, datetime
from typing import Literal

from pydantic import BaseModel, ConfigDict, Field

from attendance_engine.models import CheckoutType
from attendance_engine.services.classifier import ClassificationStatus
from attendance_engine.services.day_status import DayKind
from attendance_engine.services.heartbeats import DecisionKind


class LocationEvidenceIn(BaseModel):
    lat: float | None = Field(default=None, ge=-90, le=90)
    lon: float | None = Field(default=None, ge=-180, le=180)
    accuracy_m: float | None = Field(default=None, ge=0)
    device_ts_utc: datetime | None = None


class AttendanceCheckinRequest(LocationEvidenceIn):
    pass


class AttendanceCheckoutRequest(LocationEvidenceIn):
    session_id: int = Field(ge=1)
    manual: bool = True


class AttendanceHeartbeatRequest(LocationEvidenceIn):
    session_id: int = Field(ge=1)
    in_zone: bool
    gps_valid: bool


class AttendanceSessionRead(BaseModel):
    id: int
    tenant_id: int
    employee_id: int
    branch_id: int | None = None
    local_day: date
    check_in_at: datetime
    check_in_distance_m: float | None = None
    check_out_at: datetime | None = None
    checkout_type: CheckoutType | None = None
    checkout_reason: str | None = None
    total_working_seconds: int | None = None

    model_config = ConfigDict(from_attributes=True)


class AttendanceCheckinResponse(BaseModel):
    ok: bool = True
    session_id: int
    session: AttendanceSessionRead


class AttendanceCheckoutResponse(BaseModel):
    ok: bool = True
    result: Literal["ACK", "ALREADY_CLOSED"]
    session: AttendanceSessionRead


class OpenSessionResponse(BaseModel):
    session: AttendanceSessionRead | None = None


class PresenceDecisionRead(BaseModel):
    decision: DecisionKind
    auto_checkout_enabled: bool
    session_id: int
    reason: str | None = None
    deadline_at: datetime | None = None
    seconds_remaining: int | None = None

    model_config = ConfigDict(from_attributes=True)


class SessionSummaryRead(BaseModel):
    session_id: int
    employee_id: int
    full_name: str
    employee_code: str | None = None
    branch_id: int | None = None
    local_day: date
    check_in_at: datetime
    minutes_late: int
    check_out_at: datetime | None = None
    checkout_type: CheckoutType | None = None
    checkout_reason: str | None = None
    total_working_seconds: int | None = None

    model_config = ConfigDict(from_attributes=True)


class PresenceListResponse(BaseModel):
    day: date
    count: int
    items: list[SessionSummaryRead] = Field(default_factory=list)


class AbsenceDetailRead(BaseModel):
    employee_id: int
    full_name: str
    employee_code: str | None = None
    branch_id: int | None = None
    branch_name: str | None = None
    shift_name: str | None = None
    shift_start_at: datetime
    absence_deadline_at: datetime

    model_config = ConfigDict(from_attributes=True)


class AbsenceListResponse(BaseModel):
    day: date
    count: int
    items: list[AbsenceDetailRead] = Field(default_factory=list)


class AbsenceCountResponse(BaseModel):
    day: date
    count: int


class DayClassificationRead(BaseModel):
    employee_id: int
    full_name: str
    employee_code: str | None = None
    branch_id: int | None = None
    branch_name: str | None = None
    shift_name: str | None = None
    status: ClassificationStatus
    shift_start_at: datetime
    absence_deadline_at: datetime
    shift_source: str
    minutes_late: int | None = None
    session_id: int | None = None
    check_in_at: datetime | None = None

    model_config = ConfigDict(from_attributes=True)


class DayClassificationResponse(BaseModel):
    day: date
    items: list[DayClassificationRead] = Field(default_factory=list)


class DayStatusRead(BaseModel):
    day: date
    kind: DayKind
    reason: str | None = None
    holiday_name: str | None = None

    model_config = ConfigDict(from_attributes=True)


class SweepResponse(BaseModel):
    executed: int
    executed_session_ids: list[int] = Field(default_factory=list)
    started_countdowns: int
    cancelled_countdowns: int
    busy_employee_ids: list[int] = Field(default_factory=list)
