"""Write paths for clock records: manual creation, adjustments and self-service punches.

Each step is its own round-trip to the store; nothing here is transactional
across steps. Adjustments are last-write-wins unless the caller passes the
version it last read.
"""

from __future__ import annotations

import datetime
import logging
from typing import List, Optional, Tuple

from errors import NotFoundError, PermissionDenied, ValidationError
from roles import Action
from settings import BUSINESS_TZ, MANUAL_DEVICE_TAG, WEB_DEVICE_TAG

from .access import authorize
from .engine import build_range, hours_from_minutes, match_punch, minutes_between, padded_window
from .records import ClockHistoryEntry, PunchRecord, ShiftRecord

logger = logging.getLogger(__name__)

UTC = datetime.timezone.utc


def _now() -> datetime.datetime:
    return datetime.datetime.now(UTC)


def copy_roster_to_edit(shift: ShiftRecord) -> Tuple[datetime.datetime, datetime.datetime]:
    """Propose adjusted in/out equal to the rostered times; nothing is written."""
    return shift.shift_start, shift.shift_end


def validate_adjustment(
    adjusted_in: Optional[datetime.datetime],
    adjusted_out: Optional[datetime.datetime],
    reason: Optional[str],
) -> str:
    if adjusted_in is None or adjusted_out is None:
        raise ValidationError("Please select both adjusted Clock In and Clock Out.")
    cleaned = (reason or "").strip()
    if not cleaned:
        raise ValidationError("Please enter a reason (required).")
    return cleaned


async def create_punch_from_shift(store, actor_id: str, shift_id: int) -> int:
    """Create a clock record for a shift nobody clocked, using the rostered times."""
    await authorize(store, actor_id, Action.CREATE_PUNCH)
    shift = await store.get_shift(shift_id)
    if shift is None:
        raise NotFoundError(f"Shift {shift_id} was not found.")
    await authorize(store, actor_id, Action.CREATE_PUNCH, target_staff_id=shift.staff_id)
    nearby = await store.list_punches(shift.staff_id, *padded_window(shift.shift_start, shift.shift_end))
    if match_punch(shift, nearby) is not None:
        raise ValidationError("A clock record already exists for this shift.")
    punch_id = await store.insert_punch(
        {
            "shift_id": shift.id,
            "staff_id": shift.staff_id,
            "clock_in_at": shift.shift_start,
            "clock_out_at": shift.shift_end,
            "device_tag": MANUAL_DEVICE_TAG,
        }
    )
    logger.info("Clock record %s created from shift %s by %s", punch_id, shift.id, actor_id)
    await store.record_audit(
        actor_id,
        "PUNCH_CREATE_FROM_SHIFT",
        "TimeClock",
        punch_id,
        {"shift_id": shift.id, "staff_id": shift.staff_id},
    )
    return punch_id


async def adjust_punch(
    store,
    punch_id: int,
    adjusted_in: Optional[datetime.datetime],
    adjusted_out: Optional[datetime.datetime],
    reason: Optional[str],
    actor_id: str,
    *,
    expected_version: Optional[int] = None,
) -> PunchRecord:
    """Record a manual correction on a clock record.

    Both adjusted times and a non-blank reason are required. An adjusted out
    at or before the adjusted in is accepted and resolves to zero minutes.
    """
    cleaned_reason = validate_adjustment(adjusted_in, adjusted_out, reason)
    await authorize(store, actor_id, Action.ADJUST_PUNCH)
    punch = await store.get_punch(punch_id)
    if punch is None:
        raise NotFoundError(f"Clock record {punch_id} was not found.")
    await authorize(store, actor_id, Action.ADJUST_PUNCH, target_staff_id=punch.staff_id)
    if adjusted_out <= adjusted_in:
        logger.warning(
            "Adjustment on clock record %s ends at or before it starts (%s -> %s)",
            punch_id,
            adjusted_in.isoformat(),
            adjusted_out.isoformat(),
        )
    updated = await store.update_punch(
        punch_id,
        {
            "adjusted_clock_in_at": adjusted_in,
            "adjusted_clock_out_at": adjusted_out,
            "adjusted_reason": cleaned_reason,
            "adjusted_by": actor_id,
            "adjusted_at": _now(),
        },
        expected_version=expected_version,
    )
    logger.info("Adjustment saved on clock record %s by %s", punch_id, actor_id)
    await store.record_audit(
        actor_id,
        "PUNCH_ADJUST",
        "TimeClock",
        punch_id,
        {
            "adjusted_clock_in_at": adjusted_in.isoformat(),
            "adjusted_clock_out_at": adjusted_out.isoformat(),
            "reason": cleaned_reason,
        },
    )
    return updated


async def clock_in(
    store,
    actor_id: str,
    *,
    shift_id: Optional[int] = None,
    device_tag: str = WEB_DEVICE_TAG,
) -> int:
    actor = await authorize(store, actor_id, Action.CLOCK_SELF)
    if await store.get_open_punch(actor.id):
        raise ValidationError("You are already clocked in.")
    if shift_id is not None:
        shift = await store.get_shift(shift_id)
        if shift is None or shift.staff_id != actor.id:
            raise PermissionDenied()
    punch_id = await store.insert_punch(
        {
            "shift_id": shift_id,
            "staff_id": actor.id,
            "clock_in_at": _now(),
            "device_tag": device_tag,
        }
    )
    logger.info("Staff %s clocked in (clock record %s)", actor.id, punch_id)
    await store.record_audit(actor.id, "CLOCK_IN", "TimeClock", punch_id, {"shift_id": shift_id})
    return punch_id


async def clock_out(store, actor_id: str) -> PunchRecord:
    actor = await authorize(store, actor_id, Action.CLOCK_SELF)
    open_punch = await store.get_open_punch(actor.id)
    if open_punch is None:
        raise ValidationError("No open shift found.")
    updated = await store.update_punch(open_punch.id, {"clock_out_at": _now()})
    logger.info("Staff %s clocked out (clock record %s)", actor.id, open_punch.id)
    await store.record_audit(actor.id, "CLOCK_OUT", "TimeClock", open_punch.id, {})
    return updated


async def clock_status(store, actor_id: str) -> Optional[PunchRecord]:
    """Return the actor's open clock record, or None when they are off the clock."""
    actor = await authorize(store, actor_id, Action.CLOCK_SELF)
    return await store.get_open_punch(actor.id)


def _punch_minutes(punch: PunchRecord) -> Optional[int]:
    if punch.adjusted_clock_in_at is not None and punch.adjusted_clock_out_at is not None:
        return minutes_between(punch.adjusted_clock_in_at, punch.adjusted_clock_out_at)
    return minutes_between(punch.clock_in_at, punch.clock_out_at)


async def clock_history(
    store,
    actor_id: str,
    since: datetime.date,
    *,
    until: Optional[datetime.date] = None,
) -> List[ClockHistoryEntry]:
    """List the actor's own clock records from ``since`` to ``until`` (today by default), newest first.

    Durations prefer a complete adjustment over the raw times; open records have none.
    """
    actor = await authorize(store, actor_id, Action.CLOCK_SELF)
    until = until or datetime.datetime.now(BUSINESS_TZ).date()
    if until < since:
        raise ValidationError("The start date must be on or before the end date.")
    start, end = build_range(since, until)
    punches = await store.list_punches(actor.id, start, end)
    entries = []
    for punch in reversed(punches):
        minutes = _punch_minutes(punch)
        entries.append(ClockHistoryEntry(punch=punch, minutes=minutes, hours=hours_from_minutes(minutes)))
    return entries
