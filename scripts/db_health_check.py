#!/usr/bin/env python
from __future__ import annotations

import json
import os
from datetime import datetime, timezone
from pathlib import Path

from sqlalchemy import create_engine, text


EXPECTED_HEAD = "0001_initial"
REQUIRED_TABLES = (
    "tenants",
    "tenant_settings",
    "employees",
    "attendance_sessions",
    "presence_heartbeats",
    "pending_auto_checkouts",
)


def load_env_if_exists() -> None:
    env_file = Path(".env")
    if not env_file.exists():
        return
    for raw_line in env_file.read_text(encoding="utf-8").splitlines():
        line = raw_line.strip()
        if not line or line.startswith("#") or "=" not in line:
            continue
        key, value = line.split("=", 1)
        os.environ.setdefault(key.strip(), value.strip())


def run() -> dict:
    load_env_if_exists()
    database_url = os.environ.get("DATABASE_URL")
    if not database_url:
        raise RuntimeError("DATABASE_URL not found (.env or env vars).")

    engine = create_engine(database_url)
    report: dict = {
        "generated_at_utc": datetime.now(timezone.utc).isoformat(),
        "checks": [],
    }

    def add(name: str, status: str, details: dict) -> None:
        report["checks"].append(
            {
                "name": name,
                "status": status,
                "details": details,
            }
        )

    with engine.connect() as conn:
        tables = set(
            conn.execute(
                text(
                    """
                    select table_name
                    from information_schema.tables
                    where table_schema='public'
                    """
                )
            ).scalars()
        )

        current_versions: list[str] = []
        if "alembic_version" in tables:
            current_versions = [
                row[0]
                for row in conn.execute(text("select version_num from alembic_version")).fetchall()
            ]
        add("alembic_version", "ok" if current_versions else "fail", {"current": current_versions})
        add(
            "migration_up_to_date",
            "ok" if EXPECTED_HEAD in current_versions else "warn",
            {"expected_head": EXPECTED_HEAD, "current": current_versions},
        )

        missing_tables = [table for table in REQUIRED_TABLES if table not in tables]
        add("missing_tables", "fail" if missing_tables else "ok", {"tables": missing_tables})
        if missing_tables:
            return report

        duplicate_open_sessions = conn.execute(
            text(
                """
                select tenant_id, employee_id, count(*)
                from attendance_sessions
                where check_out_at is null
                group by tenant_id, employee_id
                having count(*) > 1
                """
            )
        ).fetchall()
        add(
            "duplicate_open_sessions",
            "fail" if duplicate_open_sessions else "ok",
            {"rows": [list(row) for row in duplicate_open_sessions]},
        )

        duplicate_pending = conn.execute(
            text(
                """
                select employee_id, session_id, count(*)
                from pending_auto_checkouts
                where status = 'PENDING'
                group by employee_id, session_id
                having count(*) > 1
                """
            )
        ).fetchall()
        add(
            "duplicate_pending_countdowns",
            "fail" if duplicate_pending else "ok",
            {"rows": [list(row) for row in duplicate_pending]},
        )

        pending_on_closed = conn.execute(
            text(
                """
                select p.id
                from pending_auto_checkouts p
                join attendance_sessions s on s.id = p.session_id
                where p.status = 'PENDING'
                  and s.check_out_at is not null
                limit 20
                """
            )
        ).fetchall()
        add(
            "pending_countdown_on_closed_session",
            "fail" if pending_on_closed else "ok",
            {"sample_ids": [row[0] for row in pending_on_closed]},
        )

        auto_without_reason = conn.execute(
            text(
                """
                select id
                from attendance_sessions
                where checkout_type = 'AUTO'
                  and checkout_reason is null
                limit 20
                """
            )
        ).fetchall()
        add(
            "auto_checkout_without_reason",
            "warn" if auto_without_reason else "ok",
            {"sample_ids": [row[0] for row in auto_without_reason]},
        )

        orphan_sessions = conn.execute(
            text(
                """
                select s.id
                from attendance_sessions s
                left join employees e on e.id = s.employee_id
                where e.id is null
                limit 20
                """
            )
        ).fetchall()
        add(
            "attendance_orphan_employee",
            "fail" if orphan_sessions else "ok",
            {"sample_ids": [row[0] for row in orphan_sessions]},
        )

    return report


if __name__ == "__main__":
    print(json.dumps(run(), ensure_ascii=False, indent=2))
