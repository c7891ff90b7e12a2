from datetime import date
from typing import Any

from fastapi import APIRouter, Depends, Query, Request
from sqlalchemy.orm import Session

from attendance_engine.audit import log_audit
from attendance_engine.db import get_db
from attendance_engine.models import AuditActorType
from attendance_engine.schemas import (
    AbsenceCountResponse,
    AbsenceDetailRead,
    AbsenceListResponse,
    DayClassificationRead,
    DayClassificationResponse,
    DayStatusRead,
    PresenceListResponse,
    SessionSummaryRead,
    SweepResponse,
)
from attendance_engine.security import require_admin_permission
from attendance_engine.services.absence import classify_day, count_absent_employees, list_absent_employees
from attendance_engine.services.auto_checkout import sweep_expired_countdowns
from attendance_engine.services.clock import local_day_of, utc_now
from attendance_engine.services.day_status import resolve_day_status
from attendance_engine.services.presence import get_present_now, get_present_today
from attendance_engine.services.tenant_config import TenantConfig, load_tenant_config

router = APIRouter(tags=["admin"])


def _resolve_day(day: date | None, config: TenantConfig) -> date:
    if day is not None:
        return day
    return local_day_of(utc_now(), config.tz)


@router.get("/api/admin/presence/now", response_model=PresenceListResponse)
def presence_now(
    branch_id: int | None = Query(default=None, ge=1),
    claims: dict[str, Any] = Depends(require_admin_permission("presence")),
    db: Session = Depends(get_db),
) -> PresenceListResponse:
    config = load_tenant_config(db, claims["tenant_id"])
    now_utc = utc_now()
    items = get_present_now(
        db,
        tenant_id=claims["tenant_id"],
        config=config,
        branch_id=branch_id,
        now_utc=now_utc,
    )
    return PresenceListResponse(
        day=local_day_of(now_utc, config.tz),
        count=len(items),
        items=[SessionSummaryRead.model_validate(item) for item in items],
    )


@router.get("/api/admin/presence/today", response_model=PresenceListResponse)
def presence_today(
    branch_id: int | None = Query(default=None, ge=1),
    day: date | None = Query(default=None),
    claims: dict[str, Any] = Depends(require_admin_permission("presence")),
    db: Session = Depends(get_db),
) -> PresenceListResponse:
    config = load_tenant_config(db, claims["tenant_id"])
    target_day = _resolve_day(day, config)
    items = get_present_today(
        db,
        tenant_id=claims["tenant_id"],
        config=config,
        branch_id=branch_id,
        day=target_day,
    )
    return PresenceListResponse(
        day=target_day,
        count=len(items),
        items=[SessionSummaryRead.model_validate(item) for item in items],
    )


@router.get("/api/admin/absence/count", response_model=AbsenceCountResponse)
def absence_count(
    day: date | None = Query(default=None),
    branch_id: int | None = Query(default=None, ge=1),
    claims: dict[str, Any] = Depends(require_admin_permission("absence")),
    db: Session = Depends(get_db),
) -> AbsenceCountResponse:
    config = load_tenant_config(db, claims["tenant_id"])
    target_day = _resolve_day(day, config)
    count = count_absent_employees(
        db,
        tenant_id=claims["tenant_id"],
        day=target_day,
        config=config,
        branch_id=branch_id,
    )
    return AbsenceCountResponse(day=target_day, count=count)


@router.get("/api/admin/absence", response_model=AbsenceListResponse)
def absence_list(
    day: date | None = Query(default=None),
    branch_id: int | None = Query(default=None, ge=1),
    claims: dict[str, Any] = Depends(require_admin_permission("absence")),
    db: Session = Depends(get_db),
) -> AbsenceListResponse:
    config = load_tenant_config(db, claims["tenant_id"])
    target_day = _resolve_day(day, config)
    items = list_absent_employees(
        db,
        tenant_id=claims["tenant_id"],
        day=target_day,
        config=config,
        branch_id=branch_id,
    )
    return AbsenceListResponse(
        day=target_day,
        count=len(items),
        items=[AbsenceDetailRead.model_validate(item) for item in items],
    )


@router.get("/api/admin/classification", response_model=DayClassificationResponse)
def day_classification(
    day: date | None = Query(default=None),
    branch_id: int | None = Query(default=None, ge=1),
    claims: dict[str, Any] = Depends(require_admin_permission("absence")),
    db: Session = Depends(get_db),
) -> DayClassificationResponse:
    config = load_tenant_config(db, claims["tenant_id"])
    target_day = _resolve_day(day, config)
    items = classify_day(
        db,
        tenant_id=claims["tenant_id"],
        day=target_day,
        config=config,
        branch_id=branch_id,
    )
    return DayClassificationResponse(
        day=target_day,
        items=[DayClassificationRead.model_validate(item) for item in items],
    )


@router.get("/api/admin/day-status", response_model=DayStatusRead)
def day_status(
    day: date | None = Query(default=None),
    claims: dict[str, Any] = Depends(require_admin_permission("absence")),
    db: Session = Depends(get_db),
) -> DayStatusRead:
    config = load_tenant_config(db, claims["tenant_id"])
    status_value = resolve_day_status(
        db,
        tenant_id=claims["tenant_id"],
        day=_resolve_day(day, config),
        config=config,
    )
    return DayStatusRead.model_validate(status_value)


@router.post("/api/admin/auto-checkout/sweep", response_model=SweepResponse)
def trigger_sweep(
    request: Request,
    claims: dict[str, Any] = Depends(require_admin_permission("auto_checkout", write=True)),
    db: Session = Depends(get_db),
) -> SweepResponse:
    result = sweep_expired_countdowns(db, tenant_id=claims["tenant_id"])
    log_audit(
        db,
        actor_type=AuditActorType.ADMIN,
        actor_id=str(claims.get("sub") or "admin"),
        action="AUTO_CHECKOUT_SWEEP_TRIGGERED",
        success=True,
        tenant_id=claims["tenant_id"],
        details=result.to_dict(),
        request_id=getattr(request.state, "request_id", None),
    )
    return SweepResponse(**result.to_dict())
