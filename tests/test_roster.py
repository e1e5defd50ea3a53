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
from errors import NotFoundError, PermissionDenied, ValidationError  # noqa: E402
from payroll.roster import clean_rates, remove_shift, save_pay_rate, save_shift  # noqa: E402
from settings import BUSINESS_TZ, DEFAULT_STORE_ID  # noqa: E402


def test_naive_times_are_business_local(seeded, store):
    saved = asyncio.run(
        save_shift(
            store,
            "manager-0001",
            {
                "staff_id": "staff-0001",
                "shift_start": datetime.datetime(2024, 6, 8, 9, 0),
                "shift_end": datetime.datetime(2024, 6, 8, 15, 0),
                "break_minutes": 15,
            },
        )
    )
    assert saved.shift_start == datetime.datetime(2024, 6, 8, 9, 0, tzinfo=BUSINESS_TZ)
    assert saved.break_minutes == 15
    assert saved.created_by == "manager-0001"
    assert saved.store_id == DEFAULT_STORE_ID


@pytest.mark.parametrize(
    "payload, message",
    [
        ({"staff_id": "staff-0001", "shift_start": None, "shift_end": None}, "start and end"),
        (
            {
                "staff_id": "staff-0001",
                "shift_start": datetime.datetime(2024, 6, 8, 15, tzinfo=BUSINESS_TZ),
                "shift_end": datetime.datetime(2024, 6, 8, 9, tzinfo=BUSINESS_TZ),
            },
            "End must be after Start",
        ),
        (
            {
                "staff_id": "staff-0001",
                "shift_start": datetime.datetime(2024, 6, 8, 9, tzinfo=BUSINESS_TZ),
                "shift_end": datetime.datetime(2024, 6, 8, 15, tzinfo=BUSINESS_TZ),
                "break_minutes": -5,
            },
            "negative",
        ),
        (
            {
                "shift_start": datetime.datetime(2024, 6, 8, 9, tzinfo=BUSINESS_TZ),
                "shift_end": datetime.datetime(2024, 6, 8, 15, tzinfo=BUSINESS_TZ),
            },
            "staff member",
        ),
    ],
)
def test_invalid_shift_is_rejected(seeded, store, payload, message):
    with pytest.raises(ValidationError, match=message):
        asyncio.run(save_shift(store, "manager-0001", payload))


def test_edit_and_remove_shift(seeded, store):
    start = datetime.datetime(2024, 3, 4, 9, tzinfo=BUSINESS_TZ)
    created = asyncio.run(
        save_shift(
            store,
            "manager-0001",
            {"staff_id": "staff-0002", "shift_start": start, "shift_end": start + datetime.timedelta(hours=8)},
        )
    )
    edited = asyncio.run(
        save_shift(
            store,
            "manager-0001",
            {"id": created.id, "shift_start": start, "shift_end": start + datetime.timedelta(hours=6)},
        )
    )
    assert edited.id == created.id
    assert edited.staff_id == "staff-0002"
    assert edited.shift_end == start + datetime.timedelta(hours=6)

    asyncio.run(remove_shift(store, "manager-0001", created.id))
    assert asyncio.run(store.get_shift(created.id)) is None
    with pytest.raises(NotFoundError):
        asyncio.run(remove_shift(store, "manager-0001", created.id))

    with seeded() as session:
        actions = [entry.action for entry in db.list_audit_log(session, target_type="Shift")]
    assert actions == ["SHIFT_CREATE", "SHIFT_EDIT", "SHIFT_DELETE"]


def test_roster_permissions(seeded, store):
    start = datetime.datetime(2024, 3, 4, 9, tzinfo=BUSINESS_TZ)
    payload = {"staff_id": "owner-0001", "shift_start": start, "shift_end": start + datetime.timedelta(hours=4)}
    with pytest.raises(PermissionDenied):
        asyncio.run(save_shift(store, "manager-0001", payload))
    with pytest.raises(PermissionDenied):
        asyncio.run(save_shift(store, "staff-0001", dict(payload, staff_id="staff-0001")))
    owner_shift = asyncio.run(save_shift(store, "owner-0001", payload))
    with pytest.raises(PermissionDenied):
        asyncio.run(remove_shift(store, "manager-0001", owner_shift.id))


def test_pay_rate_upsert(seeded, store):
    saved = asyncio.run(save_pay_rate(store, "owner-0001", "staff-0002", {"weekday_rate": "24.5"}))
    assert saved.weekday_rate == Decimal("24.50")
    assert saved.saturday_rate == Decimal("0")
    assert saved.sunday_rate == Decimal("0")

    updated = asyncio.run(
        save_pay_rate(store, "manager-0001", "staff-0002", {"weekday_rate": 26, "saturday_rate": 31.2})
    )
    assert updated.weekday_rate == Decimal("26.00")
    assert updated.saturday_rate == Decimal("31.20")
    rates = asyncio.run(store.list_pay_rates(DEFAULT_STORE_ID))
    assert [rate.staff_id for rate in rates] == ["staff-0001", "staff-0002"]


def test_pay_rate_validation_and_permissions(seeded, store):
    with pytest.raises(ValidationError):
        asyncio.run(save_pay_rate(store, "owner-0001", "staff-0002", {"weekday_rate": "-1"}))
    with pytest.raises(ValidationError):
        asyncio.run(save_pay_rate(store, "owner-0001", "staff-0002", {"sunday_rate": "lots"}))
    with pytest.raises(PermissionDenied):
        asyncio.run(save_pay_rate(store, "staff-0001", "staff-0001", {"weekday_rate": "99"}))
    with pytest.raises(PermissionDenied):
        asyncio.run(save_pay_rate(store, "manager-0001", "owner-0001", {"weekday_rate": "99"}))
    assert [rate.staff_id for rate in asyncio.run(store.list_pay_rates(DEFAULT_STORE_ID))] == ["staff-0001"]


def test_pay_rate_keeps_cents(seeded, store):
    saved = asyncio.run(
        save_pay_rate(store, "owner-0001", "staff-0002", {"weekday_rate": "25.13", "saturday_rate": "30.5"})
    )
    assert str(saved.weekday_rate) == "25.13"
    assert str(saved.saturday_rate) == "30.50"
    stored = {rate.staff_id: rate for rate in asyncio.run(store.list_pay_rates(DEFAULT_STORE_ID))}
    assert str(stored["staff-0001"].weekday_rate) == "25.00"
    with pytest.raises(ValidationError, match="2 decimal places"):
        asyncio.run(save_pay_rate(store, "owner-0001", "staff-0002", {"weekday_rate": "25.125"}))
    stored = {rate.staff_id: rate for rate in asyncio.run(store.list_pay_rates(DEFAULT_STORE_ID))}
    assert str(stored["staff-0002"].weekday_rate) == "25.13"


def test_clean_rates_defaults_to_zero():
    assert clean_rates({}) == {
        "weekday_rate": Decimal("0"),
        "saturday_rate": Decimal("0"),
        "sunday_rate": Decimal("0"),
    }
    with pytest.raises(ValidationError):
        clean_rates({"weekday_rate": "nan"})
