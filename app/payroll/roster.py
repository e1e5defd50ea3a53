from __future__ import annotations

import datetime
import logging
from decimal import Decimal, InvalidOperation
from typing import Any, Dict

from errors import NotFoundError, ValidationError
from roles import Action
from settings import BUSINESS_TZ, DEFAULT_STORE_ID

from .access import authorize
from .engine import round2
from .records import PayRateRecord, ShiftRecord

logger = logging.getLogger(__name__)

RATE_FIELDS = ("weekday_rate", "saturday_rate", "sunday_rate")


def _break_minutes(value) -> int:
    try:
        minutes = int(value or 0)
    except (TypeError, ValueError) as exc:
        raise ValidationError("Break minutes must be a whole number.") from exc
    if minutes < 0:
        raise ValidationError("Break minutes cannot be negative.")
    return minutes


def localize(value):
    """Naive roster times are wall-clock times in the business time zone."""
    if isinstance(value, datetime.datetime) and value.tzinfo is None:
        return value.replace(tzinfo=BUSINESS_TZ)
    return value


def validate_shift_times(start, end) -> None:
    if not isinstance(start, datetime.datetime) or not isinstance(end, datetime.datetime):
        raise ValidationError("Please fill start and end.")
    if end <= start:
        raise ValidationError("End must be after Start.")


async def save_shift(store, actor_id: str, payload: Dict[str, Any]) -> ShiftRecord:
    """Create a roster entry, or edit one when ``payload`` carries an ``id``."""
    start = localize(payload.get("shift_start"))
    end = localize(payload.get("shift_end"))
    validate_shift_times(start, end)
    break_minutes = _break_minutes(payload.get("break_minutes"))
    shift_id = payload.get("id")

    await authorize(store, actor_id, Action.EDIT_ROSTER)
    if shift_id:
        existing = await store.get_shift(shift_id)
        if existing is None:
            raise NotFoundError(f"Shift {shift_id} was not found.")
        staff_id = payload.get("staff_id") or existing.staff_id
        await authorize(store, actor_id, Action.EDIT_ROSTER, target_staff_id=existing.staff_id)
    else:
        staff_id = payload.get("staff_id")
        if not staff_id:
            raise ValidationError("Please choose a staff member.")
    await authorize(store, actor_id, Action.EDIT_ROSTER, target_staff_id=staff_id)

    saved = await store.save_shift(
        {
            "id": shift_id,
            "staff_id": staff_id,
            "store_id": payload.get("store_id") or DEFAULT_STORE_ID,
            "shift_start": start,
            "shift_end": end,
            "break_minutes": break_minutes,
            "created_by": actor_id,
        }
    )
    action = "SHIFT_EDIT" if shift_id else "SHIFT_CREATE"
    logger.info("%s shift %s for staff %s by %s", action, saved.id, saved.staff_id, actor_id)
    await store.record_audit(actor_id, action, "Shift", saved.id, {"staff_id": saved.staff_id})
    return saved


async def remove_shift(store, actor_id: str, shift_id: int) -> None:
    await authorize(store, actor_id, Action.EDIT_ROSTER)
    existing = await store.get_shift(shift_id)
    if existing is None:
        raise NotFoundError(f"Shift {shift_id} was not found.")
    await authorize(store, actor_id, Action.EDIT_ROSTER, target_staff_id=existing.staff_id)
    await store.delete_shift(shift_id)
    logger.info("Shift %s deleted by %s", shift_id, actor_id)
    await store.record_audit(actor_id, "SHIFT_DELETE", "Shift", shift_id, {"staff_id": existing.staff_id})


def clean_rates(rates: Dict[str, Any]) -> Dict[str, Decimal]:
    cleaned: Dict[str, Decimal] = {}
    for key in RATE_FIELDS:
        raw = rates.get(key)
        try:
            value = Decimal(str(raw)) if raw not in (None, "") else Decimal("0")
        except InvalidOperation as exc:
            raise ValidationError(f"{key} must be a number.") from exc
        if not value.is_finite() or value < 0:
            raise ValidationError(f"{key} must be zero or more.")
        if value != round2(value):
            raise ValidationError(f"{key} can have at most 2 decimal places.")
        cleaned[key] = round2(value)
    return cleaned


async def save_pay_rate(
    store,
    actor_id: str,
    staff_id: str,
    rates: Dict[str, Any],
    *,
    store_id: str = DEFAULT_STORE_ID,
) -> PayRateRecord:
    if not staff_id:
        raise ValidationError("Please choose a staff member.")
    cleaned = clean_rates(rates)
    await authorize(store, actor_id, Action.EDIT_PAY_RATE, target_staff_id=staff_id)
    saved = await store.upsert_pay_rate(staff_id, store_id, cleaned)
    logger.info("Pay rates for %s updated by %s", staff_id, actor_id)
    await store.record_audit(
        actor_id,
        "PAY_RATE_UPSERT",
        "StaffPayRate",
        None,
        {"staff_id": staff_id, **{key: str(value) for key, value in cleaned.items()}},
    )
    return saved
