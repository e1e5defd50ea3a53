from __future__ import annotations

import asyncio
import datetime
import sys
from decimal import Decimal
from pathlib import Path

import pytest

APP_DIR = Path(__file__).resolve().parents[1] / "app"
if str(APP_DIR) not in sys.path:
    sys.path.insert(0, str(APP_DIR))

import database as db  # noqa: E402
from errors import ConflictError, PermissionDenied, StoreError, ValidationError  # noqa: E402
from payroll.api import compute_payroll, payroll_for_actor  # noqa: E402
from payroll.records import ResolutionSource  # noqa: E402
from roles import Action  # noqa: E402
from settings import BUSINESS_TZ, DEFAULT_STORE_ID  # noqa: E402

MONDAY = datetime.date(2024, 3, 4)
SUNDAY = datetime.date(2024, 3, 10)


def local(year, month, day, hour=0, minute=0):
    return datetime.datetime(year, month, day, hour, minute, tzinfo=BUSINESS_TZ)


def _add_shift(factory, staff_id, start, end, break_minutes=30):
    with factory() as session:
        return db.upsert_shift(
            session,
            {
                "staff_id": staff_id,
                "store_id": DEFAULT_STORE_ID,
                "shift_start": start,
                "shift_end": end,
                "break_minutes": break_minutes,
            },
        ).id


def _add_punch(factory, **values):
    with factory() as session:
        return db.insert_punch(session, values).id


def test_roster_and_punches_are_reconciled(seeded, store):
    roster_only = _add_shift(seeded, "staff-0001", local(2024, 3, 4, 9), local(2024, 3, 4, 17))
    punched = _add_shift(seeded, "staff-0001", local(2024, 3, 5, 9), local(2024, 3, 5, 17))
    _add_punch(
        seeded,
        staff_id="staff-0001",
        clock_in_at=local(2024, 3, 5, 8, 55),
        clock_out_at=local(2024, 3, 5, 17, 10),
    )

    report = asyncio.run(compute_payroll(store, MONDAY, SUNDAY))
    rows = {row.shift.id: row for row in report.rows}
    assert rows[roster_only].source is ResolutionSource.ROSTER
    assert rows[roster_only].pay == Decimal("187.50")
    assert rows[punched].source is ResolutionSource.RAW
    assert rows[punched].resolved_minutes == 465
    assert rows[punched].pay == Decimal("193.75")
    assert report.store.total_minutes == 915


def test_punch_before_range_start_is_still_matched(seeded, store):
    shift_id = _add_shift(seeded, "staff-0001", local(2024, 3, 4, 0, 30), local(2024, 3, 4, 6, 30), 0)
    _add_punch(
        seeded,
        staff_id="staff-0001",
        clock_in_at=local(2024, 3, 3, 23, 50),
        clock_out_at=local(2024, 3, 4, 6, 30),
    )
    report = asyncio.run(compute_payroll(store, MONDAY, MONDAY))
    assert [row.shift.id for row in report.rows] == [shift_id]
    assert report.rows[0].source is ResolutionSource.RAW
    assert report.rows[0].resolved_minutes == 400


def test_repeated_reads_are_identical(seeded, store):
    _add_shift(seeded, "staff-0001", local(2024, 3, 4, 9), local(2024, 3, 4, 17))
    _add_shift(seeded, "staff-0002", local(2024, 3, 9, 9), local(2024, 3, 9, 13), 0)
    first = asyncio.run(compute_payroll(store, MONDAY, SUNDAY))
    second = asyncio.run(compute_payroll(store, MONDAY, SUNDAY))
    assert first.to_dict() == second.to_dict()


def test_staff_filter(seeded, store):
    _add_shift(seeded, "staff-0001", local(2024, 3, 4, 9), local(2024, 3, 4, 17))
    _add_shift(seeded, "staff-0002", local(2024, 3, 4, 9), local(2024, 3, 4, 17))
    report = asyncio.run(compute_payroll(store, MONDAY, SUNDAY, staff_id="staff-0002"))
    assert [row.shift.staff_id for row in report.rows] == ["staff-0002"]
    assert report.rows[0].pay is None
    assert report.store.unpriced_shift_count == 1
    assert report.per_staff[0].staff_name == "Tom Nguyen"


def test_inverted_range_is_rejected(store):
    with pytest.raises(ValidationError):
        asyncio.run(compute_payroll(store, SUNDAY, MONDAY))


class FailingPunchStore:
    """Answers every read except punches, which fail like a dropped connection."""

    def __init__(self) -> None:
        self.calls = []

    async def list_shifts(self, store_id, start, end, staff_id=None):
        self.calls.append("shifts")
        return []

    async def list_punches(self, staff_id, start, end):
        self.calls.append("punches")
        raise StoreError("list_punches failed: connection lost")

    async def list_profiles(self, store_id=None, only_active=False):
        await asyncio.sleep(0)
        self.calls.append("profiles")
        return []

    async def list_pay_rates(self, store_id):
        await asyncio.sleep(0)
        self.calls.append("pay_rates")
        raise StoreError("list_pay_rates failed: timeout")


def test_store_failure_propagates_after_all_reads_settle():
    fake = FailingPunchStore()
    with pytest.raises(StoreError, match="list_punches"):
        asyncio.run(compute_payroll(fake, MONDAY, SUNDAY))
    assert sorted(fake.calls) == ["pay_rates", "profiles", "punches", "shifts"]


def test_payroll_requires_management_role(seeded, store):
    with pytest.raises(PermissionDenied):
        asyncio.run(payroll_for_actor(store, "staff-0001", MONDAY, SUNDAY))
    with pytest.raises(PermissionDenied):
        asyncio.run(payroll_for_actor(store, "manager-0001", MONDAY, SUNDAY, action=Action.VIEW_STAFF_SUMMARY))
    report = asyncio.run(payroll_for_actor(store, "owner-0001", MONDAY, SUNDAY, action=Action.VIEW_STAFF_SUMMARY))
    assert report.rows == []


def test_second_open_punch_is_rejected_by_store(seeded, store):
    asyncio.run(store.insert_punch({"staff_id": "staff-0001", "clock_in_at": local(2024, 3, 4, 9)}))
    with pytest.raises(ConflictError):
        asyncio.run(store.insert_punch({"staff_id": "staff-0001", "clock_in_at": local(2024, 3, 4, 10)}))


def test_profiles_are_saved_through_store(store):
    saved = asyncio.run(store.save_profile({"id": "staff-0009", "full_name": "  ", "role": "staff"}))
    assert saved.role == "STAFF"
    assert saved.display_name == "staff-00"
    asyncio.run(store.save_profile({"id": "staff-0010", "full_name": "Left Last Year", "is_active": False}))
    active = asyncio.run(store.list_profiles(DEFAULT_STORE_ID, only_active=True))
    assert [profile.id for profile in active] == ["staff-0009"]
    with pytest.raises(ValidationError):
        asyncio.run(store.save_profile({"id": "staff-0011", "role": "CHEF"}))
