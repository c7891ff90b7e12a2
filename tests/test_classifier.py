from __future__ import annotations

import unittest
from datetime import date, datetime, time, timedelta, timezone
from zoneinfo import ZoneInfo

from attendance_engine.services.classifier import (
    ClassificationStatus,
    ShiftClassificationInput,
    classify_employee_day,
    compute_minutes_late,
)

DAY = date(2026, 3, 2)
UTC = ZoneInfo("UTC")


def _input(**overrides) -> ShiftClassificationInput:  # type: ignore[no-untyped-def]
    values = {
        "employee_id": 1,
        "full_name": "Ayse Kaya",
        "day": DAY,
        "shift_start_local": time(9, 0),
        "grace_minutes": 15,
        "late_window_minutes": 60,
        "tz": UTC,
    }
    values.update(overrides)
    return ShiftClassificationInput(**values)


def _at(hour: int, minute: int, second: int = 0) -> datetime:
    return datetime(2026, 3, 2, hour, minute, second, tzinfo=timezone.utc)


class ComputeMinutesLateTests(unittest.TestCase):
    def test_within_grace_is_zero(self) -> None:
        self.assertEqual(compute_minutes_late(_at(9, 10), _at(9, 0), 15), 0)

    def test_after_grace_counts_whole_minutes(self) -> None:
        self.assertEqual(compute_minutes_late(_at(9, 20), _at(9, 0), 15), 5)
        self.assertEqual(compute_minutes_late(_at(9, 15, 59), _at(9, 0), 15), 0)
        self.assertEqual(compute_minutes_late(_at(9, 16, 0), _at(9, 0), 15), 1)

    def test_early_check_in_is_never_negative(self) -> None:
        self.assertEqual(compute_minutes_late(_at(8, 0), _at(9, 0), 0), 0)

    def test_naive_timestamps_are_treated_as_utc(self) -> None:
        naive_check_in = datetime(2026, 3, 2, 9, 30)
        self.assertEqual(compute_minutes_late(naive_check_in, _at(9, 0), 15), 15)


class ClassifyEmployeeDayTests(unittest.TestCase):
    def test_no_check_in_by_end_of_day_is_absent(self) -> None:
        result = classify_employee_day(_input(), now_utc=_at(23, 59))
        self.assertEqual(result.status, ClassificationStatus.ABSENT)
        self.assertEqual(result.absence_deadline_at, _at(10, 15))

    def test_before_deadline_is_not_yet_due(self) -> None:
        self.assertEqual(
            classify_employee_day(_input(), now_utc=_at(10, 0)).status,
            ClassificationStatus.NOT_YET_DUE,
        )
        self.assertEqual(
            classify_employee_day(_input(), now_utc=_at(10, 15)).status,
            ClassificationStatus.NOT_YET_DUE,
        )
        self.assertEqual(
            classify_employee_day(_input(), now_utc=_at(10, 15, 1)).status,
            ClassificationStatus.ABSENT,
        )

    def test_check_in_within_grace_is_on_time(self) -> None:
        result = classify_employee_day(_input(check_in_at=_at(9, 10)), now_utc=_at(23, 0))
        self.assertEqual(result.status, ClassificationStatus.ON_TIME)
        self.assertEqual(result.minutes_late, 0)

    def test_check_in_after_grace_is_late(self) -> None:
        result = classify_employee_day(_input(check_in_at=_at(9, 20)), now_utc=_at(23, 0))
        self.assertEqual(result.status, ClassificationStatus.LATE)
        self.assertEqual(result.minutes_late, 5)

    def test_check_in_after_late_window_still_counts_as_present(self) -> None:
        result = classify_employee_day(_input(check_in_at=_at(12, 0)), now_utc=_at(23, 0))
        self.assertEqual(result.status, ClassificationStatus.LATE)
        self.assertEqual(result.minutes_late, 165)

    def test_exemptions_are_never_absent(self) -> None:
        late_now = _at(23, 0)
        self.assertEqual(
            classify_employee_day(_input(on_leave=True), now_utc=late_now).status,
            ClassificationStatus.ON_LEAVE,
        )
        self.assertEqual(
            classify_employee_day(_input(on_task=True), now_utc=late_now).status,
            ClassificationStatus.ON_TASK,
        )
        self.assertEqual(
            classify_employee_day(_input(off_day=True), now_utc=late_now).status,
            ClassificationStatus.OFF_DAY,
        )

    def test_shift_start_uses_tenant_timezone(self) -> None:
        istanbul = ZoneInfo("Europe/Istanbul")
        item = _input(tz=istanbul)
        self.assertEqual(item.shift_start_at, _at(6, 0))

        result = classify_employee_day(item, now_utc=_at(7, 15) + timedelta(seconds=1))
        self.assertEqual(result.status, ClassificationStatus.ABSENT)
        result = classify_employee_day(item, now_utc=_at(7, 15))
        self.assertEqual(result.status, ClassificationStatus.NOT_YET_DUE)


if __name__ == "__main__":
    unittest.main()
