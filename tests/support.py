from __future__ import annotations

from datetime import date, datetime, time, timezone

from sqlalchemy import create_engine, event
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from attendance_engine import models  # noqa: F401
from attendance_engine.db import Base
from attendance_engine.models import Branch, Employee, Shift, Tenant, TenantSettings
from attendance_engine.services.tenant_config import TenantConfig

T0 = datetime(2026, 3, 2, 9, 0, tzinfo=timezone.utc)  # Monday
DAY = date(2026, 3, 2)


def make_session_factory() -> sessionmaker[Session]:
    engine = create_engine(
        "sqlite+pysqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )

    @event.listens_for(engine, "connect")
    def _enable_foreign_keys(dbapi_connection, _record):  # type: ignore[no-untyped-def]
        cursor = dbapi_connection.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()

    Base.metadata.create_all(engine)
    return sessionmaker(bind=engine, autoflush=False, expire_on_commit=False)


def make_config(tenant_id: int, **overrides) -> TenantConfig:  # type: ignore[no-untyped-def]
    values = {
        "tenant_id": tenant_id,
        "auto_checkout_enabled": True,
        "countdown_seconds": 300,
        "grace_period_minutes": 15,
        "late_window_minutes": 60,
        "default_shift_start": time(9, 0),
        "timezone_name": "UTC",
    }
    values.update(overrides)
    return TenantConfig(**values)


def seed_tenant(
    db: Session,
    *,
    name: str = "Acme",
    with_settings: bool = True,
    **settings_overrides,  # type: ignore[no-untyped-def]
) -> Tenant:
    tenant = Tenant(name=name)
    db.add(tenant)
    db.flush()
    if with_settings:
        values = {
            "auto_checkout_enabled": True,
            "countdown_seconds": 300,
            "grace_period_minutes": 15,
            "late_window_minutes": 60,
            "default_shift_start": time(9, 0),
            "timezone_name": "UTC",
            "weekly_off_days": [],
            "heartbeat_timeout_seconds": 0,
        }
        values.update(settings_overrides)
        db.add(TenantSettings(tenant_id=tenant.id, **values))
    db.commit()
    return tenant


def seed_shift(db: Session, *, tenant: Tenant, name: str, start: time, end: time, is_active: bool = True) -> Shift:
    shift = Shift(
        tenant_id=tenant.id,
        name=name,
        start_time_local=start,
        end_time_local=end,
        is_active=is_active,
    )
    db.add(shift)
    db.commit()
    return shift


def seed_branch(
    db: Session,
    *,
    tenant: Tenant,
    name: str = "HQ",
    lat: float | None = 41.0,
    lon: float | None = 29.0,
    radius_m: int = 150,
) -> Branch:
    branch = Branch(tenant_id=tenant.id, name=name, lat=lat, lon=lon, radius_m=radius_m)
    db.add(branch)
    db.commit()
    return branch


def seed_employee(
    db: Session,
    *,
    tenant: Tenant,
    full_name: str,
    shift: Shift | None = None,
    branch: Branch | None = None,
    is_active: bool = True,
) -> Employee:
    employee = Employee(
        tenant_id=tenant.id,
        full_name=full_name,
        shift_id=shift.id if shift is not None else None,
        branch_id=branch.id if branch is not None else None,
        is_active=is_active,
    )
    db.add(employee)
    db.commit()
    return employee


def as_utc(value: datetime | None) -> datetime | None:
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)
