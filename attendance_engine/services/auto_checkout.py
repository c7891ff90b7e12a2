"""Auto-checkout countdown.

A violating heartbeat starts a countdown for the session. A clean heartbeat
before the deadline cancels it. A violation observed at or after the deadline
(by a heartbeat or by the sweep) closes the session with ``checkout_type=AUTO``.
Terminal rows are never reopened; a later violation always starts a fresh
countdown from its own ``now``.
"""

from __future__ import annotations

import enum
import logging
import math
from dataclasses import dataclass, field
from datetime import datetime, timedelta

from sqlalchemy import select
from sqlalchemy.orm import Session

from attendance_engine.audit import log_audit
from attendance_engine.errors import ApiError
from attendance_engine.models import (
    AttendanceSession,
    AuditActorType,
    CheckoutType,
    Employee,
    PendingAutoCheckout,
    PendingStatus,
    PresenceHeartbeat,
    TenantSettings,
    ViolationReason,
)
from attendance_engine.services.clock import normalize_ts
from attendance_engine.services.leaves import has_active_free_task
from attendance_engine.services.location import LocationEvidence
from attendance_engine.services.locking import run_serialized
from attendance_engine.services.sessions import CloseStatus, apply_checkout
from attendance_engine.services.tenant_config import load_tenant_config, tenant_config_from_row

logger = logging.getLogger("attendance_engine.auto_checkout")

NOTE_VIOLATION_CLEARED = "VIOLATION_CLEARED"
NOTE_AUTO_CHECKOUT = "AUTO_CHECKOUT"
NOTE_SESSION_CLOSED = "SESSION_CLOSED"
NOTE_AUTO_CHECKOUT_DISABLED = "AUTO_CHECKOUT_DISABLED"
NOTE_FREE_TASK_ACTIVE = "FREE_TASK_ACTIVE"


class CountdownAction(str, enum.Enum):
    NONE = "NONE"
    CANCEL = "CANCEL"
    KEEP = "KEEP"
    START = "START"
    EXECUTE = "EXECUTE"


@dataclass(frozen=True, slots=True)
class CountdownTransition:
    action: CountdownAction
    reason: str | None = None
    deadline_at: datetime | None = None
    seconds_remaining: int | None = None


@dataclass(frozen=True, slots=True)
class CountdownOutcome:
    transition: CountdownTransition
    pending: PendingAutoCheckout | None = None
    session: AttendanceSession | None = None


@dataclass(slots=True)
class SweepResult:
    executed_session_ids: list[int] = field(default_factory=list)
    started_countdowns: int = 0
    cancelled_countdowns: int = 0
    busy_employee_ids: list[int] = field(default_factory=list)

    def to_dict(self) -> dict[str, object]:
        return {
            "executed": len(self.executed_session_ids),
            "executed_session_ids": list(self.executed_session_ids),
            "started_countdowns": self.started_countdowns,
            "cancelled_countdowns": self.cancelled_countdowns,
            "busy_employee_ids": list(self.busy_employee_ids),
        }


def evaluate_countdown(
    pending: PendingAutoCheckout | None,
    *,
    violation_reason: str | None,
    now_utc: datetime,
    countdown_seconds: int,
) -> CountdownTransition:
    now = normalize_ts(now_utc)

    if violation_reason is None:
        if pending is not None:
            return CountdownTransition(action=CountdownAction.CANCEL, reason=pending.reason)
        return CountdownTransition(action=CountdownAction.NONE)

    if pending is not None:
        deadline = normalize_ts(pending.deadline_at)
        if now >= deadline:
            return CountdownTransition(
                action=CountdownAction.EXECUTE,
                reason=pending.reason,
                deadline_at=deadline,
                seconds_remaining=0,
            )
        return CountdownTransition(
            action=CountdownAction.KEEP,
            reason=pending.reason,
            deadline_at=deadline,
            seconds_remaining=math.ceil((deadline - now).total_seconds()),
        )

    return CountdownTransition(
        action=CountdownAction.START,
        reason=violation_reason,
        deadline_at=now + timedelta(seconds=max(0, countdown_seconds)),
        seconds_remaining=max(0, countdown_seconds),
    )


def find_pending(db: Session, *, employee_id: int, session_id: int) -> PendingAutoCheckout | None:
    return db.scalar(
        select(PendingAutoCheckout)
        .where(
            PendingAutoCheckout.employee_id == employee_id,
            PendingAutoCheckout.session_id == session_id,
            PendingAutoCheckout.status == PendingStatus.PENDING,
        )
        .order_by(PendingAutoCheckout.id.desc())
        .limit(1)
    )


def _start_countdown(
    db: Session,
    *,
    session: AttendanceSession,
    reason: str,
    deadline_at: datetime,
    now_utc: datetime,
) -> PendingAutoCheckout:
    pending = PendingAutoCheckout(
        tenant_id=session.tenant_id,
        employee_id=session.employee_id,
        session_id=session.id,
        reason=reason,
        deadline_at=deadline_at,
        status=PendingStatus.PENDING,
        created_at=now_utc,
    )
    db.add(pending)
    db.flush()
    logger.info(
        "auto_checkout_countdown_started",
        extra={
            "tenant_id": session.tenant_id,
            "employee_id": session.employee_id,
            "session_id": session.id,
            "pending_id": pending.id,
            "reason": reason,
            "deadline_at": deadline_at.isoformat(),
        },
    )
    return pending


def _resolve_pending(
    pending: PendingAutoCheckout,
    *,
    status: PendingStatus,
    now_utc: datetime,
    note: str,
) -> None:
    pending.status = status
    pending.resolved_at = now_utc
    pending.resolution_note = note


def _execute_countdown(
    db: Session,
    *,
    pending: PendingAutoCheckout,
    session: AttendanceSession,
    now_utc: datetime,
    evidence: LocationEvidence | None = None,
) -> AttendanceSession:
    # Resolve first so the close path does not cancel this row as a side effect.
    _resolve_pending(pending, status=PendingStatus.COMPLETED, now_utc=now_utc, note=NOTE_AUTO_CHECKOUT)
    db.flush()
    result = apply_checkout(
        db,
        session=session,
        evidence=evidence,
        checkout_type=CheckoutType.AUTO,
        reason=pending.reason,
        now_utc=now_utc,
    )
    if result.status == CloseStatus.ALREADY_CLOSED:
        # Closed through another path; the countdown has nothing left to do.
        pending.status = PendingStatus.CANCELLED
        pending.resolution_note = NOTE_SESSION_CLOSED
        db.flush()
    return result.session


def advance_countdown(
    db: Session,
    *,
    session: AttendanceSession,
    violation_reason: str | None,
    countdown_seconds: int,
    now_utc: datetime,
    evidence: LocationEvidence | None = None,
) -> CountdownOutcome:
    """Evaluate and apply one countdown step. Caller holds the employee lock and commits.

    ``evidence`` is the location of the heartbeat that drove this step; an
    executed countdown records it as the checkout location. Sweeps pass None.
    """
    now = normalize_ts(now_utc)
    pending = find_pending(db, employee_id=session.employee_id, session_id=session.id)
    transition = evaluate_countdown(
        pending,
        violation_reason=violation_reason,
        now_utc=now,
        countdown_seconds=countdown_seconds,
    )

    if transition.action == CountdownAction.CANCEL and pending is not None:
        _resolve_pending(pending, status=PendingStatus.CANCELLED, now_utc=now, note=NOTE_VIOLATION_CLEARED)
        db.flush()
        logger.info(
            "auto_checkout_countdown_cancelled",
            extra={
                "tenant_id": session.tenant_id,
                "employee_id": session.employee_id,
                "session_id": session.id,
                "pending_id": pending.id,
                "reason": pending.reason,
            },
        )
        return CountdownOutcome(transition=transition, pending=pending, session=session)

    if transition.action == CountdownAction.START:
        pending = _start_countdown(
            db,
            session=session,
            reason=str(transition.reason),
            deadline_at=transition.deadline_at or now,
            now_utc=now,
        )
        # Zero-length countdown: the new row is already due.
        follow_up = evaluate_countdown(
            pending,
            violation_reason=violation_reason,
            now_utc=now,
            countdown_seconds=countdown_seconds,
        )
        if follow_up.action != CountdownAction.EXECUTE:
            return CountdownOutcome(transition=transition, pending=pending, session=session)
        transition = follow_up

    if transition.action == CountdownAction.EXECUTE and pending is not None:
        closed = _execute_countdown(db, pending=pending, session=session, now_utc=now, evidence=evidence)
        logger.info(
            "auto_checkout_executed",
            extra={
                "tenant_id": session.tenant_id,
                "employee_id": session.employee_id,
                "session_id": session.id,
                "pending_id": pending.id,
                "reason": pending.reason,
            },
        )
        return CountdownOutcome(transition=transition, pending=pending, session=closed)

    return CountdownOutcome(transition=transition, pending=pending, session=session)


def audit_auto_checkout(db: Session, outcome: CountdownOutcome, *, request_id: str | None = None) -> None:
    """Write the audit row for an executed countdown. Must run after the checkout committed."""
    if outcome.transition.action != CountdownAction.EXECUTE or outcome.session is None:
        return
    session = outcome.session
    log_audit(
        db,
        actor_type=AuditActorType.SYSTEM,
        actor_id="auto_checkout",
        action="AUTO_CHECKOUT_EXECUTED",
        success=True,
        tenant_id=session.tenant_id,
        entity_type="attendance_session",
        entity_id=str(session.id),
        details={
            "employee_id": session.employee_id,
            "reason": outcome.transition.reason,
            "pending_id": outcome.pending.id if outcome.pending is not None else None,
            "total_working_seconds": session.total_working_seconds,
        },
        request_id=request_id,
    )


def _sweep_expired_for_employee(
    db: Session,
    *,
    tenant_id: int,
    employee_id: int,
    now_utc: datetime,
    result: SweepResult,
) -> None:
    config = load_tenant_config(db, tenant_id)

    def _sweep(_employee: Employee) -> list[CountdownOutcome]:
        outcomes: list[CountdownOutcome] = []
        expired_rows = list(
            db.scalars(
                select(PendingAutoCheckout)
                .where(
                    PendingAutoCheckout.tenant_id == tenant_id,
                    PendingAutoCheckout.employee_id == employee_id,
                    PendingAutoCheckout.status == PendingStatus.PENDING,
                    PendingAutoCheckout.deadline_at <= now_utc,
                )
                .order_by(PendingAutoCheckout.id.asc())
            ).all()
        )
        for pending in expired_rows:
            session = db.get(AttendanceSession, pending.session_id)
            if session is None or not session.is_open:
                _resolve_pending(pending, status=PendingStatus.CANCELLED, now_utc=now_utc, note=NOTE_SESSION_CLOSED)
                result.cancelled_countdowns += 1
                continue
            if not config.auto_checkout_enabled:
                _resolve_pending(
                    pending,
                    status=PendingStatus.CANCELLED,
                    now_utc=now_utc,
                    note=NOTE_AUTO_CHECKOUT_DISABLED,
                )
                result.cancelled_countdowns += 1
                continue
            if has_active_free_task(db, tenant_id=tenant_id, employee_id=employee_id, at_utc=now_utc):
                _resolve_pending(pending, status=PendingStatus.CANCELLED, now_utc=now_utc, note=NOTE_FREE_TASK_ACTIVE)
                result.cancelled_countdowns += 1
                continue
            # A surviving PENDING row means no clean heartbeat arrived since it started.
            outcomes.append(
                advance_countdown(
                    db,
                    session=session,
                    violation_reason=pending.reason,
                    countdown_seconds=config.countdown_seconds,
                    now_utc=now_utc,
                )
            )
        db.commit()
        return outcomes

    outcomes = run_serialized(
        db,
        tenant_id=tenant_id,
        employee_id=employee_id,
        operation=_sweep,
        require_active=False,
    )
    for outcome in outcomes:
        if outcome.transition.action == CountdownAction.EXECUTE and outcome.session is not None:
            result.executed_session_ids.append(outcome.session.id)
            audit_auto_checkout(db, outcome)


def last_activity_at(session: AttendanceSession, heartbeat: PresenceHeartbeat | None) -> datetime:
    check_in_at = normalize_ts(session.check_in_at)
    if heartbeat is None or heartbeat.session_id != session.id:
        return check_in_at
    return max(check_in_at, normalize_ts(heartbeat.last_seen_at))


def _stale_heartbeat_candidates(
    db: Session,
    *,
    now_utc: datetime,
    tenant_id: int | None = None,
) -> list[tuple[int, int]]:
    candidates: list[tuple[int, int]] = []
    stmt = select(TenantSettings).where(TenantSettings.heartbeat_timeout_seconds > 0)
    if tenant_id is not None:
        stmt = stmt.where(TenantSettings.tenant_id == tenant_id)
    settings_rows = list(db.scalars(stmt).all())
    for row in settings_rows:
        config = tenant_config_from_row(row)
        if not config.auto_checkout_enabled:
            continue
        cutoff = now_utc - timedelta(seconds=config.heartbeat_timeout_seconds)
        stmt = (
            select(AttendanceSession, PresenceHeartbeat)
            .outerjoin(PresenceHeartbeat, PresenceHeartbeat.employee_id == AttendanceSession.employee_id)
            .where(
                AttendanceSession.tenant_id == row.tenant_id,
                AttendanceSession.check_out_at.is_(None),
                AttendanceSession.check_in_at < cutoff,
            )
        )
        for session, heartbeat in db.execute(stmt).all():
            if last_activity_at(session, heartbeat) < cutoff:
                candidates.append((session.tenant_id, session.employee_id))
    return candidates


def _sweep_stale_heartbeat(
    db: Session,
    *,
    tenant_id: int,
    employee_id: int,
    now_utc: datetime,
    result: SweepResult,
) -> None:
    config = load_tenant_config(db, tenant_id)
    timeout = timedelta(seconds=config.heartbeat_timeout_seconds)

    def _sweep(_employee: Employee) -> CountdownOutcome | None:
        session = db.scalar(
            select(AttendanceSession)
            .where(
                AttendanceSession.tenant_id == tenant_id,
                AttendanceSession.employee_id == employee_id,
                AttendanceSession.check_out_at.is_(None),
            )
            .execution_options(populate_existing=True)
        )
        if session is None:
            db.rollback()
            return None
        heartbeat = db.scalar(select(PresenceHeartbeat).where(PresenceHeartbeat.employee_id == employee_id))
        last_seen = last_activity_at(session, heartbeat)
        # Re-check under the lock; a heartbeat may have landed since the candidate scan.
        if now_utc - last_seen <= timeout:
            db.rollback()
            return None
        if has_active_free_task(db, tenant_id=tenant_id, employee_id=employee_id, at_utc=now_utc):
            db.rollback()
            return None
        outcome = advance_countdown(
            db,
            session=session,
            violation_reason=ViolationReason.HEARTBEAT_TIMEOUT.value,
            countdown_seconds=config.countdown_seconds,
            now_utc=now_utc,
        )
        db.commit()
        return outcome

    outcome = run_serialized(
        db,
        tenant_id=tenant_id,
        employee_id=employee_id,
        operation=_sweep,
        require_active=False,
    )
    if outcome is None:
        return
    if outcome.transition.action == CountdownAction.START:
        result.started_countdowns += 1
    if outcome.transition.action == CountdownAction.EXECUTE and outcome.session is not None:
        result.executed_session_ids.append(outcome.session.id)
        audit_auto_checkout(db, outcome)


def sweep_expired_countdowns(
    db: Session,
    *,
    now_utc: datetime | None = None,
    tenant_id: int | None = None,
) -> SweepResult:
    """Complete every PENDING countdown whose deadline has passed, then apply heartbeat timeouts.

    ``tenant_id`` limits the sweep to one tenant; the background worker passes
    None and covers every tenant.
    """
    now = normalize_ts(now_utc)
    result = SweepResult()

    expired_stmt = select(PendingAutoCheckout.tenant_id, PendingAutoCheckout.employee_id).where(
        PendingAutoCheckout.status == PendingStatus.PENDING,
        PendingAutoCheckout.deadline_at <= now,
    )
    if tenant_id is not None:
        expired_stmt = expired_stmt.where(PendingAutoCheckout.tenant_id == tenant_id)
    expired_pairs = db.execute(expired_stmt.distinct()).all()
    stale_pairs = _stale_heartbeat_candidates(db, now_utc=now, tenant_id=tenant_id)
    db.rollback()

    for pair_tenant_id, employee_id in expired_pairs:
        try:
            _sweep_expired_for_employee(
                db,
                tenant_id=int(pair_tenant_id),
                employee_id=int(employee_id),
                now_utc=now,
                result=result,
            )
        except ApiError as exc:
            result.busy_employee_ids.append(int(employee_id))
            logger.warning(
                "auto_checkout_sweep_skipped",
                extra={"tenant_id": pair_tenant_id, "employee_id": employee_id, "code": exc.code},
            )

    for pair_tenant_id, employee_id in dict.fromkeys(stale_pairs):
        try:
            _sweep_stale_heartbeat(
                db,
                tenant_id=pair_tenant_id,
                employee_id=employee_id,
                now_utc=now,
                result=result,
            )
        except ApiError as exc:
            result.busy_employee_ids.append(employee_id)
            logger.warning(
                "auto_checkout_sweep_skipped",
                extra={"tenant_id": pair_tenant_id, "employee_id": employee_id, "code": exc.code},
            )

    logger.info("auto_checkout_sweep_complete", extra={"scope_tenant_id": tenant_id, **result.to_dict()})
    return result
