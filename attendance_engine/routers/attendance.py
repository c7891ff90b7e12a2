from typing import Any

from fastapi import APIRouter, Depends, Request
from sqlalchemy.orm import Session

from attendance_engine.audit import log_audit
from attendance_engine.db import get_db
from attendance_engine.models import AuditActorType, CheckoutType
from attendance_engine.schemas import (
    AttendanceCheckinRequest,
    AttendanceCheckinResponse,
    AttendanceCheckoutRequest,
    AttendanceCheckoutResponse,
    AttendanceHeartbeatRequest,
    AttendanceSessionRead,
    LocationEvidenceIn,
    OpenSessionResponse,
    PresenceDecisionRead,
)
from attendance_engine.security import require_employee
from attendance_engine.services.heartbeats import DecisionKind, record_heartbeat
from attendance_engine.services.location import LocationEvidence
from attendance_engine.services.sessions import CloseStatus, close_session, get_open_session, open_session
from attendance_engine.services.tenant_config import load_tenant_config

router = APIRouter(tags=["attendance"])


def _client_ip(request: Request) -> str | None:
    forwarded_for = request.headers.get("x-forwarded-for")
    if forwarded_for:
        return forwarded_for.split(",")[0].strip()
    if request.client:
        return request.client.host
    return None


def _user_agent(request: Request) -> str | None:
    return request.headers.get("user-agent")


def _evidence(payload: LocationEvidenceIn, request: Request) -> LocationEvidence:
    return LocationEvidence(
        lat=payload.lat,
        lon=payload.lon,
        accuracy_m=payload.accuracy_m,
        device_at=payload.device_ts_utc,
        ip=_client_ip(request),
    )


@router.post("/api/attendance/checkin", response_model=AttendanceCheckinResponse)
def checkin(
    payload: AttendanceCheckinRequest,
    request: Request,
    claims: dict[str, Any] = Depends(require_employee),
    db: Session = Depends(get_db),
) -> AttendanceCheckinResponse:
    tenant_id = claims["tenant_id"]
    employee_id = claims["employee_id"]
    config = load_tenant_config(db, tenant_id)
    session = open_session(
        db,
        tenant_id=tenant_id,
        employee_id=employee_id,
        evidence=_evidence(payload, request),
        config=config,
    )
    request.state.employee_id = employee_id
    request.state.session_id = session.id
    log_audit(
        db,
        actor_type=AuditActorType.EMPLOYEE,
        actor_id=str(employee_id),
        action="ATTENDANCE_CHECKIN",
        success=True,
        tenant_id=tenant_id,
        entity_type="attendance_session",
        entity_id=str(session.id),
        ip=_client_ip(request),
        user_agent=_user_agent(request),
        details={
            "local_day": session.local_day.isoformat(),
            "distance_m": session.check_in_distance_m,
        },
        request_id=getattr(request.state, "request_id", None),
    )
    return AttendanceCheckinResponse(
        session_id=session.id,
        session=AttendanceSessionRead.model_validate(session),
    )


@router.post("/api/attendance/checkout", response_model=AttendanceCheckoutResponse)
def checkout(
    payload: AttendanceCheckoutRequest,
    request: Request,
    claims: dict[str, Any] = Depends(require_employee),
    db: Session = Depends(get_db),
) -> AttendanceCheckoutResponse:
    tenant_id = claims["tenant_id"]
    employee_id = claims["employee_id"]
    result = close_session(
        db,
        tenant_id=tenant_id,
        session_id=payload.session_id,
        evidence=_evidence(payload, request),
        checkout_type=CheckoutType.MANUAL,
        employee_id=employee_id,
    )
    request.state.employee_id = employee_id
    request.state.session_id = payload.session_id
    if result.status == CloseStatus.ACK:
        log_audit(
            db,
            actor_type=AuditActorType.EMPLOYEE,
            actor_id=str(employee_id),
            action="ATTENDANCE_CHECKOUT",
            success=True,
            tenant_id=tenant_id,
            entity_type="attendance_session",
            entity_id=str(payload.session_id),
            ip=_client_ip(request),
            user_agent=_user_agent(request),
            details={
                "manual": payload.manual,
                "total_working_seconds": result.session.total_working_seconds,
            },
            request_id=getattr(request.state, "request_id", None),
        )
    return AttendanceCheckoutResponse(
        result=result.status.value,
        session=AttendanceSessionRead.model_validate(result.session),
    )


@router.post("/api/attendance/heartbeat", response_model=PresenceDecisionRead)
def heartbeat(
    payload: AttendanceHeartbeatRequest,
    request: Request,
    claims: dict[str, Any] = Depends(require_employee),
    db: Session = Depends(get_db),
) -> PresenceDecisionRead:
    tenant_id = claims["tenant_id"]
    employee_id = claims["employee_id"]
    config = load_tenant_config(db, tenant_id)
    decision = record_heartbeat(
        db,
        tenant_id=tenant_id,
        employee_id=employee_id,
        session_id=payload.session_id,
        in_zone=payload.in_zone,
        gps_valid=payload.gps_valid,
        evidence=_evidence(payload, request),
        config=config,
    )
    request.state.employee_id = employee_id
    request.state.session_id = payload.session_id
    request.state.decision = decision.kind.value
    if decision.kind == DecisionKind.PENDING_CREATED:
        log_audit(
            db,
            actor_type=AuditActorType.EMPLOYEE,
            actor_id=str(employee_id),
            action="AUTO_CHECKOUT_COUNTDOWN_STARTED",
            success=True,
            tenant_id=tenant_id,
            entity_type="attendance_session",
            entity_id=str(payload.session_id),
            ip=_client_ip(request),
            user_agent=_user_agent(request),
            details={
                "reason": decision.reason,
                "deadline_at": decision.deadline_at.isoformat() if decision.deadline_at else None,
            },
            request_id=getattr(request.state, "request_id", None),
        )
    return PresenceDecisionRead(
        decision=decision.kind,
        auto_checkout_enabled=decision.auto_checkout_enabled,
        session_id=decision.session_id,
        reason=decision.reason,
        deadline_at=decision.deadline_at,
        seconds_remaining=decision.seconds_remaining,
    )


@router.get("/api/attendance/open-session", response_model=OpenSessionResponse)
def open_session_lookup(
    claims: dict[str, Any] = Depends(require_employee),
    db: Session = Depends(get_db),
) -> OpenSessionResponse:
    session = get_open_session(db, tenant_id=claims["tenant_id"], employee_id=claims["employee_id"])
    if session is None:
        return OpenSessionResponse(session=None)
    return OpenSessionResponse(session=AttendanceSessionRead.model_validate(session))
