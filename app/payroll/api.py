from __future__ import annotations

import asyncio
import datetime
import logging
from typing import Optional

from errors import ValidationError
from roles import Action
from settings import BUSINESS_TZ, DEFAULT_STORE_ID, MATCH_WINDOW_HOURS

from .access import authorize
from .engine import aggregate, build_range, padded_window
from .records import PayrollReport

logger = logging.getLogger(__name__)


async def compute_payroll(
    store,
    from_date: datetime.date,
    to_date: datetime.date,
    *,
    staff_id: Optional[str] = None,
    store_id: str = DEFAULT_STORE_ID,
    tz: datetime.tzinfo = BUSINESS_TZ,
) -> PayrollReport:
    """Recompute payroll for ``[from_date, to_date]`` straight from the store.

    Shifts, punches, profiles and pay rates are read concurrently. A failed
    read does not cancel the others; the first failure in that order is
    raised once all four have settled.
    """
    if from_date is None or to_date is None:
        raise ValidationError("Both from and to dates are required.")
    if to_date < from_date:
        raise ValidationError("The end date must not be before the start date.")
    start, end = build_range(from_date, to_date, tz)
    punch_start, punch_end = padded_window(start, end, MATCH_WINDOW_HOURS)

    results = await asyncio.gather(
        store.list_shifts(store_id, start, end, staff_id),
        store.list_punches(staff_id, punch_start, punch_end),
        store.list_profiles(store_id),
        store.list_pay_rates(store_id),
        return_exceptions=True,
    )
    for result in results:
        if isinstance(result, BaseException):
            raise result
    shifts, punches, profiles, pay_rates = results

    report = aggregate(
        shifts,
        punches,
        pay_rates,
        profiles,
        from_date=from_date,
        to_date=to_date,
        staff_id=staff_id,
        tz=tz,
    )
    logger.debug(
        "Payroll %s..%s staff=%s: %d shifts, %d minutes, pay %s",
        from_date,
        to_date,
        staff_id or "ALL",
        report.store.shift_count,
        report.store.total_minutes,
        report.store.total_pay,
    )
    return report


async def payroll_for_actor(
    store,
    actor_id: Optional[str],
    from_date: datetime.date,
    to_date: datetime.date,
    *,
    staff_id: Optional[str] = None,
    action: Action = Action.VIEW_PAYROLL,
) -> PayrollReport:
    await authorize(store, actor_id, action)
    return await compute_payroll(store, from_date, to_date, staff_id=staff_id)
