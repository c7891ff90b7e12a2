from __future__ import annotations

import enum
import logging
from dataclasses import dataclass
from datetime import datetime

from sqlalchemy import select
from sqlalchemy.orm import Session

from attendance_engine.errors import SessionClosed, SessionNotFound
from attendance_engine.models import AttendanceSession, Employee, PresenceHeartbeat, ViolationReason
from attendance_engine.services.auto_checkout import (
    CountdownAction,
    CountdownOutcome,
    advance_countdown,
    audit_auto_checkout,
)
from attendance_engine.services.clock import normalize_ts
from attendance_engine.services.leaves import has_active_free_task
from attendance_engine.services.locking import run_serialized
from attendance_engine.services.location import LocationEvidence
from attendance_engine.services.tenant_config import TenantConfig

logger = logging.getLogger("attendance_engine.heartbeats")


class DecisionKind(str, enum.Enum):
    OK = "OK"
    PENDING_CANCELLED = "PENDING_CANCELLED"
    PENDING_ACTIVE = "PENDING_ACTIVE"
    PENDING_CREATED = "PENDING_CREATED"
    CHECKOUT_EXECUTED = "CHECKOUT_EXECUTED"


_DECISION_BY_ACTION: dict[CountdownAction, DecisionKind] = {
    CountdownAction.NONE: DecisionKind.OK,
    CountdownAction.CANCEL: DecisionKind.PENDING_CANCELLED,
    CountdownAction.KEEP: DecisionKind.PENDING_ACTIVE,
    CountdownAction.START: DecisionKind.PENDING_CREATED,
    CountdownAction.EXECUTE: DecisionKind.CHECKOUT_EXECUTED,
}


@dataclass(frozen=True, slots=True)
class PresenceDecision:
    kind: DecisionKind
    auto_checkout_enabled: bool
    session_id: int
    reason: str | None = None
    deadline_at: datetime | None = None
    seconds_remaining: int | None = None


def violation_reason_for(*, in_zone: bool, gps_valid: bool) -> str | None:
    if not gps_valid:
        return ViolationReason.GPS_INVALID.value
    if not in_zone:
        return ViolationReason.OUTSIDE_ZONE.value
    return None


def _upsert_heartbeat(
    db: Session,
    *,
    tenant_id: int,
    employee_id: int,
    session_id: int,
    in_zone: bool,
    gps_valid: bool,
    violation_reason: str | None,
    evidence: LocationEvidence,
    now_utc: datetime,
) -> PresenceHeartbeat:
    heartbeat = db.scalar(select(PresenceHeartbeat).where(PresenceHeartbeat.employee_id == employee_id))
    if heartbeat is None:
        heartbeat = PresenceHeartbeat(employee_id=employee_id, tenant_id=tenant_id)
        db.add(heartbeat)

    heartbeat.tenant_id = tenant_id
    heartbeat.session_id = session_id
    heartbeat.last_seen_at = now_utc
    heartbeat.in_zone = in_zone
    heartbeat.gps_valid = gps_valid
    heartbeat.violation_reason = violation_reason
    heartbeat.lat = evidence.lat
    heartbeat.lon = evidence.lon
    heartbeat.accuracy_m = evidence.accuracy_m
    db.flush()
    return heartbeat


def _decision_from_outcome(outcome: CountdownOutcome, *, session_id: int) -> PresenceDecision:
    transition = outcome.transition
    kind = _DECISION_BY_ACTION[transition.action]
    if kind == DecisionKind.OK:
        return PresenceDecision(kind=kind, auto_checkout_enabled=True, session_id=session_id)
    if kind == DecisionKind.PENDING_CANCELLED:
        return PresenceDecision(kind=kind, auto_checkout_enabled=True, session_id=session_id, reason=transition.reason)
    if kind == DecisionKind.CHECKOUT_EXECUTED:
        return PresenceDecision(
            kind=kind,
            auto_checkout_enabled=True,
            session_id=session_id,
            reason=transition.reason,
            seconds_remaining=0,
        )
    return PresenceDecision(
        kind=kind,
        auto_checkout_enabled=True,
        session_id=session_id,
        reason=transition.reason,
        deadline_at=transition.deadline_at,
        seconds_remaining=transition.seconds_remaining,
    )


def record_heartbeat(
    db: Session,
    *,
    tenant_id: int,
    employee_id: int,
    session_id: int,
    in_zone: bool,
    gps_valid: bool,
    evidence: LocationEvidence,
    config: TenantConfig,
    now_utc: datetime | None = None,
) -> PresenceDecision:
    ts_utc = normalize_ts(now_utc)
    violation_reason = violation_reason_for(in_zone=in_zone, gps_valid=gps_valid)

    def _record(_employee: Employee) -> PresenceDecision | CountdownOutcome:
        session = db.scalar(
            select(AttendanceSession)
            .where(
                AttendanceSession.id == session_id,
                AttendanceSession.tenant_id == tenant_id,
            )
            .execution_options(populate_existing=True)
        )
        if session is None or session.employee_id != employee_id:
            raise SessionNotFound()
        if not session.is_open:
            raise SessionClosed(session.id)

        _upsert_heartbeat(
            db,
            tenant_id=tenant_id,
            employee_id=employee_id,
            session_id=session.id,
            in_zone=in_zone,
            gps_valid=gps_valid,
            violation_reason=violation_reason,
            evidence=evidence,
            now_utc=ts_utc,
        )

        if not config.auto_checkout_enabled:
            db.commit()
            return PresenceDecision(kind=DecisionKind.OK, auto_checkout_enabled=False, session_id=session.id)

        effective_violation = violation_reason
        if effective_violation is not None and has_active_free_task(
            db,
            tenant_id=tenant_id,
            employee_id=employee_id,
            at_utc=ts_utc,
        ):
            effective_violation = None

        outcome = advance_countdown(
            db,
            session=session,
            violation_reason=effective_violation,
            countdown_seconds=config.countdown_seconds,
            now_utc=ts_utc,
            evidence=evidence,
        )
        db.commit()
        return outcome

    result = run_serialized(db, tenant_id=tenant_id, employee_id=employee_id, operation=_record)
    if isinstance(result, PresenceDecision):
        decision = result
    else:
        audit_auto_checkout(db, result)
        decision = _decision_from_outcome(result, session_id=session_id)

    logger.info(
        "heartbeat_recorded",
        extra={
            "tenant_id": tenant_id,
            "employee_id": employee_id,
            "session_id": session_id,
            "in_zone": in_zone,
            "gps_valid": gps_valid,
            "decision": decision.kind.value,
            "auto_checkout_enabled": decision.auto_checkout_enabled,
        },
    )
    return decision
