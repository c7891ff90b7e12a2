from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import time
from zoneinfo import ZoneInfo

from sqlalchemy import select
from sqlalchemy.orm import Session

from attendance_engine.models import TenantSettings
from attendance_engine.services.clock import resolve_timezone
from attendance_engine.settings import get_settings

logger = logging.getLogger("attendance_engine.tenant_config")


@dataclass(frozen=True, slots=True)
class TenantConfig:
    """Per-tenant engine configuration, threaded explicitly into every engine call."""

    tenant_id: int
    auto_checkout_enabled: bool
    countdown_seconds: int
    grace_period_minutes: int
    late_window_minutes: int
    default_shift_start: time
    timezone_name: str
    weekly_off_days: frozenset[int] = field(default_factory=frozenset)
    heartbeat_timeout_seconds: int = 0
    is_fallback: bool = False

    @property
    def tz(self) -> ZoneInfo:
        return resolve_timezone(self.timezone_name)


def default_tenant_config(tenant_id: int) -> TenantConfig:
    settings = get_settings()
    return TenantConfig(
        tenant_id=tenant_id,
        auto_checkout_enabled=settings.default_auto_checkout_enabled,
        countdown_seconds=max(0, settings.default_countdown_seconds),
        grace_period_minutes=max(0, settings.default_grace_period_minutes),
        late_window_minutes=max(0, settings.default_late_window_minutes),
        default_shift_start=settings.default_shift_start,
        timezone_name=settings.attendance_timezone,
        is_fallback=True,
    )


def _coerce_off_days(raw: object) -> frozenset[int]:
    if not isinstance(raw, (list, tuple, set, frozenset)):
        return frozenset()
    days: set[int] = set()
    for item in raw:
        try:
            value = int(item)
        except (TypeError, ValueError):
            continue
        if 0 <= value <= 6:
            days.add(value)
    return frozenset(days)


def tenant_config_from_row(row: TenantSettings) -> TenantConfig:
    fallback = default_tenant_config(row.tenant_id)

    def _non_negative(value: int | None, default: int) -> int:
        if value is None:
            return default
        return max(0, int(value))

    return TenantConfig(
        tenant_id=row.tenant_id,
        auto_checkout_enabled=(
            fallback.auto_checkout_enabled if row.auto_checkout_enabled is None else bool(row.auto_checkout_enabled)
        ),
        countdown_seconds=_non_negative(row.countdown_seconds, fallback.countdown_seconds),
        grace_period_minutes=_non_negative(row.grace_period_minutes, fallback.grace_period_minutes),
        late_window_minutes=_non_negative(row.late_window_minutes, fallback.late_window_minutes),
        default_shift_start=row.default_shift_start or fallback.default_shift_start,
        timezone_name=(row.timezone_name or "").strip() or fallback.timezone_name,
        weekly_off_days=_coerce_off_days(row.weekly_off_days),
        heartbeat_timeout_seconds=_non_negative(row.heartbeat_timeout_seconds, 0),
    )


def load_tenant_config(db: Session, tenant_id: int) -> TenantConfig:
    row = db.scalar(select(TenantSettings).where(TenantSettings.tenant_id == tenant_id))
    if row is None:
        logger.warning("tenant_settings_missing", extra={"tenant_id": tenant_id})
        return default_tenant_config(tenant_id)
    return tenant_config_from_row(row)
