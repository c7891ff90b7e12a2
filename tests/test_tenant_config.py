from __future__ import annotations

import unittest
from datetime import time
from unittest.mock import patch

from sqlalchemy import select

from attendance_engine.models import TenantSettings
from attendance_engine.services.clock import resolve_timezone
from attendance_engine.services.tenant_config import load_tenant_config
from attendance_engine.settings import Settings
from tests.support import make_session_factory, seed_tenant


class TenantConfigTests(unittest.TestCase):
    def setUp(self) -> None:
        self.db = make_session_factory()()

    def tearDown(self) -> None:
        self.db.close()

    def test_settings_row_is_used_when_present(self) -> None:
        tenant = seed_tenant(
            self.db,
            countdown_seconds=120,
            grace_period_minutes=10,
            timezone_name="Europe/Istanbul",
            weekly_off_days=[5, 6, 9, "x"],
        )

        config = load_tenant_config(self.db, tenant.id)

        self.assertFalse(config.is_fallback)
        self.assertEqual(config.countdown_seconds, 120)
        self.assertEqual(config.grace_period_minutes, 10)
        self.assertEqual(config.weekly_off_days, frozenset({5, 6}))
        self.assertEqual(str(config.tz), "Europe/Istanbul")

    def test_missing_row_falls_back_to_defaults_with_warning(self) -> None:
        tenant = seed_tenant(self.db, with_settings=False)
        fake_settings = Settings(
            default_countdown_seconds=600,
            default_grace_period_minutes=7,
            default_shift_start=time(8, 30),
            attendance_timezone="UTC",
        )

        with patch("attendance_engine.services.tenant_config.get_settings", return_value=fake_settings):
            with self.assertLogs("attendance_engine.tenant_config", level="WARNING") as logs:
                config = load_tenant_config(self.db, tenant.id)

        self.assertTrue(config.is_fallback)
        self.assertEqual(config.countdown_seconds, 600)
        self.assertEqual(config.grace_period_minutes, 7)
        self.assertEqual(config.default_shift_start, time(8, 30))
        self.assertTrue(any("tenant_settings_missing" in line for line in logs.output))

    def test_negative_values_are_clamped(self) -> None:
        tenant = seed_tenant(self.db)
        row = self.db.scalar(select(TenantSettings).where(TenantSettings.tenant_id == tenant.id))
        row.countdown_seconds = -30
        row.late_window_minutes = -1
        self.db.commit()

        config = load_tenant_config(self.db, tenant.id)

        self.assertEqual(config.countdown_seconds, 0)
        self.assertEqual(config.late_window_minutes, 0)

    def test_unknown_timezone_falls_back_to_utc(self) -> None:
        resolve_timezone.cache_clear()
        with self.assertLogs("attendance_engine.clock", level="WARNING"):
            self.assertEqual(str(resolve_timezone("Mars/Olympus")), "UTC")


if __name__ == "__main__":
    unittest.main()
