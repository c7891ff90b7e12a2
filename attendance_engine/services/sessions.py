from __future__ import annotations

import enum
import logging
from dataclasses import dataclass
from datetime import date, datetime

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from attendance_engine.errors import DaySessionExists, DuplicateOpenSession, SessionNotFound
from attendance_engine.models import (
    AttendanceSession,
    CheckoutType,
    Employee,
    PendingAutoCheckout,
    PendingStatus,
)
from attendance_engine.services.clock import local_day_of, normalize_ts
from attendance_engine.services.locking import run_serialized
from attendance_engine.services.location import LocationEvidence, distance_to_branch_m, is_inside_branch_zone
from attendance_engine.services.tenant_config import TenantConfig

logger = logging.getLogger("attendance_engine.sessions")

SESSION_CLOSED_NOTE = "SESSION_CLOSED"


class CloseStatus(str, enum.Enum):
    ACK = "ACK"
    ALREADY_CLOSED = "ALREADY_CLOSED"


@dataclass(frozen=True, slots=True)
class CloseResult:
    status: CloseStatus
    session: AttendanceSession


def get_open_session(db: Session, *, tenant_id: int, employee_id: int) -> AttendanceSession | None:
    return db.scalar(
        select(AttendanceSession)
        .where(
            AttendanceSession.tenant_id == tenant_id,
            AttendanceSession.employee_id == employee_id,
            AttendanceSession.check_out_at.is_(None),
        )
        .order_by(AttendanceSession.check_in_at.desc(), AttendanceSession.id.desc())
        .limit(1)
    )


def _find_open_session(db: Session, *, tenant_id: int, employee_id: int) -> AttendanceSession | None:
    return get_open_session(db, tenant_id=tenant_id, employee_id=employee_id)


def _find_day_session(
    db: Session,
    *,
    tenant_id: int,
    employee_id: int,
    local_day: date,
) -> AttendanceSession | None:
    return db.scalar(
        select(AttendanceSession).where(
            AttendanceSession.tenant_id == tenant_id,
            AttendanceSession.employee_id == employee_id,
            AttendanceSession.local_day == local_day,
        )
    )


def open_session(
    db: Session,
    *,
    tenant_id: int,
    employee_id: int,
    evidence: LocationEvidence,
    config: TenantConfig,
    now_utc: datetime | None = None,
) -> AttendanceSession:
    ts_utc = normalize_ts(now_utc)
    local_day = local_day_of(ts_utc, config.tz)

    def _open(employee: Employee) -> AttendanceSession:
        existing_open = _find_open_session(db, tenant_id=tenant_id, employee_id=employee_id)
        if existing_open is not None:
            raise DuplicateOpenSession(existing_open.id)

        day_session = _find_day_session(
            db,
            tenant_id=tenant_id,
            employee_id=employee_id,
            local_day=local_day,
        )
        if day_session is not None:
            raise DaySessionExists(day_session.id)

        session = AttendanceSession(
            tenant_id=tenant_id,
            employee_id=employee_id,
            branch_id=employee.branch_id,
            local_day=local_day,
            check_in_at=ts_utc,
            check_in_device_at=normalize_ts(evidence.device_at) if evidence.device_at else None,
            check_in_lat=evidence.lat,
            check_in_lon=evidence.lon,
            check_in_accuracy_m=evidence.accuracy_m,
            check_in_ip=evidence.ip,
            check_in_distance_m=distance_to_branch_m(employee.branch, evidence),
        )
        db.add(session)
        try:
            db.flush()
        except IntegrityError:
            db.rollback()
            # Unique indexes caught a writer that slipped past the checks above.
            current_open = get_open_session(db, tenant_id=tenant_id, employee_id=employee_id)
            if current_open is not None:
                raise DuplicateOpenSession(current_open.id) from None
            current_day = _find_day_session(
                db,
                tenant_id=tenant_id,
                employee_id=employee_id,
                local_day=local_day,
            )
            if current_day is not None:
                raise DaySessionExists(current_day.id) from None
            raise DuplicateOpenSession(None) from None

        db.commit()
        db.refresh(session)
        logger.info(
            "session_opened",
            extra={
                "tenant_id": tenant_id,
                "employee_id": employee_id,
                "session_id": session.id,
                "local_day": local_day.isoformat(),
                "distance_m": session.check_in_distance_m,
                "in_zone": is_inside_branch_zone(employee.branch, evidence),
            },
        )
        return session

    return run_serialized(db, tenant_id=tenant_id, employee_id=employee_id, operation=_open)


def cancel_pending_for_session(
    db: Session,
    *,
    session_id: int,
    now_utc: datetime,
    note: str = SESSION_CLOSED_NOTE,
) -> int:
    pending_rows = list(
        db.scalars(
            select(PendingAutoCheckout).where(
                PendingAutoCheckout.session_id == session_id,
                PendingAutoCheckout.status == PendingStatus.PENDING,
            )
        ).all()
    )
    for pending in pending_rows:
        pending.status = PendingStatus.CANCELLED
        pending.resolved_at = now_utc
        pending.resolution_note = note
    return len(pending_rows)


def apply_checkout(
    db: Session,
    *,
    session: AttendanceSession,
    evidence: LocationEvidence | None,
    checkout_type: CheckoutType,
    reason: str | None,
    now_utc: datetime,
) -> CloseResult:
    """Close ``session`` inside the caller's transaction. The caller holds the employee lock and commits."""
    if not session.is_open:
        return CloseResult(status=CloseStatus.ALREADY_CLOSED, session=session)

    check_in_at = normalize_ts(session.check_in_at)
    session.check_out_at = now_utc
    session.checkout_type = checkout_type
    session.checkout_reason = reason if checkout_type == CheckoutType.AUTO else None
    session.total_working_seconds = max(0, int((now_utc - check_in_at).total_seconds()))
    if evidence is not None:
        session.check_out_device_at = normalize_ts(evidence.device_at) if evidence.device_at else None
        session.check_out_lat = evidence.lat
        session.check_out_lon = evidence.lon
        session.check_out_accuracy_m = evidence.accuracy_m
        session.check_out_ip = evidence.ip

    cancelled = cancel_pending_for_session(db, session_id=session.id, now_utc=now_utc)
    db.flush()
    logger.info(
        "session_closed",
        extra={
            "tenant_id": session.tenant_id,
            "employee_id": session.employee_id,
            "session_id": session.id,
            "checkout_type": checkout_type.value,
            "checkout_reason": session.checkout_reason,
            "total_working_seconds": session.total_working_seconds,
            "cancelled_countdowns": cancelled,
        },
    )
    return CloseResult(status=CloseStatus.ACK, session=session)


def close_session(
    db: Session,
    *,
    tenant_id: int,
    session_id: int,
    evidence: LocationEvidence | None,
    checkout_type: CheckoutType = CheckoutType.MANUAL,
    reason: str | None = None,
    employee_id: int | None = None,
    now_utc: datetime | None = None,
) -> CloseResult:
    ts_utc = normalize_ts(now_utc)
    target = db.scalar(
        select(AttendanceSession).where(
            AttendanceSession.id == session_id,
            AttendanceSession.tenant_id == tenant_id,
        )
    )
    if target is None or (employee_id is not None and target.employee_id != employee_id):
        raise SessionNotFound()

    def _close(_employee: Employee) -> CloseResult:
        session = db.scalar(
            select(AttendanceSession)
            .where(AttendanceSession.id == session_id)
            .execution_options(populate_existing=True)
        )
        if session is None:
            raise SessionNotFound()
        result = apply_checkout(
            db,
            session=session,
            evidence=evidence,
            checkout_type=checkout_type,
            reason=reason,
            now_utc=ts_utc,
        )
        if result.status == CloseStatus.ALREADY_CLOSED:
            db.rollback()
            return result
        db.commit()
        db.refresh(session)
        return result

    return run_serialized(
        db,
        tenant_id=tenant_id,
        employee_id=target.employee_id,
        operation=_close,
        require_active=False,
    )
