"""Payroll reconciliation: punch matching, worked-time resolution, rates and roll-ups.

Every function here is pure. Callers fetch shifts, punches, pay rates and
profiles from the store and hand them in; nothing is cached between calls.
"""

from __future__ import annotations

import datetime
import math
from collections import defaultdict
from decimal import ROUND_HALF_UP, Decimal
from typing import Dict, Iterable, List, Mapping, Optional, Sequence, Tuple

from settings import BUSINESS_TZ, MATCH_WINDOW_HOURS

from .records import (
    DayTotals,
    DayType,
    PayRateRecord,
    PayrollReport,
    ProfileRecord,
    PunchRecord,
    ResolutionSource,
    ResolvedShift,
    ShiftRecord,
    StaffTotals,
    StoreTotals,
    WorkedTime,
)

UTC = datetime.timezone.utc
CENT = Decimal("0.01")
MINUTES_PER_HOUR = Decimal(60)


def _ensure_aware(value: datetime.datetime) -> datetime.datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    return value


def round2(value) -> Decimal:
    """Half-up rounding to cents, matching how wages are displayed."""
    return Decimal(value).quantize(CENT, rounding=ROUND_HALF_UP)


def hours_from_minutes(minutes: Optional[int]) -> Optional[Decimal]:
    if minutes is None:
        return None
    return round2(Decimal(minutes) / MINUTES_PER_HOUR)


def minutes_between(
    start: Optional[datetime.datetime],
    end: Optional[datetime.datetime],
) -> Optional[int]:
    if start is None or end is None:
        return None
    seconds = (_ensure_aware(end) - _ensure_aware(start)).total_seconds()
    return max(0, int(math.floor(seconds / 60 + 0.5)))


def _worked(span: Optional[int], break_minutes: int) -> Optional[int]:
    if span is None:
        return None
    return max(0, span - break_minutes)


def build_range(
    from_date: datetime.date,
    to_date: datetime.date,
    tz: datetime.tzinfo = BUSINESS_TZ,
) -> Tuple[datetime.datetime, datetime.datetime]:
    """Return ``[from 00:00, (to + 1 day) 00:00)`` in business time, expressed in UTC."""
    start = datetime.datetime.combine(from_date, datetime.time.min, tzinfo=tz)
    end = datetime.datetime.combine(to_date + datetime.timedelta(days=1), datetime.time.min, tzinfo=tz)
    return start.astimezone(UTC), end.astimezone(UTC)


def padded_window(
    start: datetime.datetime,
    end: datetime.datetime,
    hours: float = MATCH_WINDOW_HOURS,
) -> Tuple[datetime.datetime, datetime.datetime]:
    padding = datetime.timedelta(hours=hours)
    return _ensure_aware(start) - padding, _ensure_aware(end) + padding


# ---------------------------------------------------------------------------
# Matching


def match_punch(
    shift: ShiftRecord,
    punches: Sequence[PunchRecord],
    window_hours: float = MATCH_WINDOW_HOURS,
) -> Optional[PunchRecord]:
    """Pick the punch that pays for ``shift``.

    An explicit ``shift_id`` link always wins. Otherwise the same staff
    member's punch whose clock-in lies within the padded shift window and is
    nearest the scheduled start is chosen; ties keep input order. Punches are
    not reserved, so overlapping shifts can claim the same punch.
    """
    for punch in punches:
        if punch.shift_id is not None and punch.shift_id == shift.id:
            return punch

    if shift.shift_start is None or shift.shift_end is None:
        return None
    scheduled_start = _ensure_aware(shift.shift_start)
    window_start, window_end = padded_window(scheduled_start, shift.shift_end, window_hours)

    candidates = [
        punch
        for punch in punches
        if punch.staff_id == shift.staff_id
        and punch.clock_in_at is not None
        and window_start <= _ensure_aware(punch.clock_in_at) <= window_end
    ]
    if not candidates:
        return None
    return min(candidates, key=lambda punch: abs(_ensure_aware(punch.clock_in_at) - scheduled_start))


# ---------------------------------------------------------------------------
# Worked time


def resolve_minutes(shift: ShiftRecord, punch: Optional[PunchRecord]) -> WorkedTime:
    break_minutes = max(0, int(shift.break_minutes or 0))
    roster = _worked(minutes_between(shift.shift_start, shift.shift_end), break_minutes)
    raw = None
    adjusted = None
    if punch is not None:
        raw = _worked(minutes_between(punch.clock_in_at, punch.clock_out_at), break_minutes)
        adjusted = _worked(
            minutes_between(punch.adjusted_clock_in_at, punch.adjusted_clock_out_at),
            break_minutes,
        )

    if adjusted is not None:
        resolved, source = adjusted, ResolutionSource.ADJUSTED
    elif raw is not None:
        resolved, source = raw, ResolutionSource.RAW
    elif roster is not None:
        resolved, source = roster, ResolutionSource.ROSTER
    else:
        resolved, source = None, ResolutionSource.NONE
    return WorkedTime(
        break_minutes=break_minutes,
        roster_minutes=roster,
        raw_minutes=raw,
        adjusted_minutes=adjusted,
        resolved_minutes=resolved,
        source=source,
    )


# ---------------------------------------------------------------------------
# Day type and rates


def local_date(moment: datetime.datetime, tz: datetime.tzinfo = BUSINESS_TZ) -> datetime.date:
    return _ensure_aware(moment).astimezone(tz).date()


def classify_day(moment, tz: datetime.tzinfo = BUSINESS_TZ) -> DayType:
    """Classify a timestamp (or a plain date) by its business-local weekday."""
    if isinstance(moment, datetime.datetime):
        day = local_date(moment, tz)
    else:
        day = moment
    weekday = day.weekday()  # 0 = Monday
    if weekday == 6:
        return DayType.SUNDAY
    if weekday == 5:
        return DayType.SATURDAY
    return DayType.WEEKDAY


def rate_for(pay_rate: Optional[PayRateRecord], day_type: DayType) -> Optional[Decimal]:
    if pay_rate is None:
        return None
    if day_type is DayType.SATURDAY:
        return pay_rate.saturday_rate
    if day_type is DayType.SUNDAY:
        return pay_rate.sunday_rate
    return pay_rate.weekday_rate


def compute_pay(minutes: Optional[int], rate: Optional[Decimal]) -> Optional[Decimal]:
    hours = hours_from_minutes(minutes)
    if hours is None or rate is None:
        return None
    return round2(hours * rate)


def staff_label(profiles: Mapping[str, ProfileRecord], staff_id: str) -> str:
    profile = profiles.get(staff_id)
    if profile is None:
        return staff_id[:8]
    return profile.display_name


def resolve_shift(
    shift: ShiftRecord,
    punches: Sequence[PunchRecord],
    pay_rates: Mapping[str, PayRateRecord],
    profiles: Mapping[str, ProfileRecord],
    *,
    tz: datetime.tzinfo = BUSINESS_TZ,
    window_hours: float = MATCH_WINDOW_HOURS,
) -> ResolvedShift:
    punch = match_punch(shift, punches, window_hours)
    worked = resolve_minutes(shift, punch)
    work_date = local_date(shift.shift_start, tz) if shift.shift_start else None
    day_type = classify_day(work_date) if work_date else DayType.WEEKDAY
    rate = rate_for(pay_rates.get(shift.staff_id), day_type)
    return ResolvedShift(
        shift=shift,
        punch=punch,
        worked=worked,
        day_type=day_type,
        work_date=work_date,
        staff_name=staff_label(profiles, shift.staff_id),
        rate=rate,
        hours=hours_from_minutes(worked.resolved_minutes),
        pay=compute_pay(worked.resolved_minutes, rate),
    )


# ---------------------------------------------------------------------------
# Aggregation


def _index_by(records: Iterable, attribute: str) -> Dict:
    index = {}
    for record in records:
        key = getattr(record, attribute)
        if key:
            index[key] = record
    return index


def summarize_staff(
    rows: Sequence[ResolvedShift],
    pay_rates: Mapping[str, PayRateRecord],
    profiles: Mapping[str, ProfileRecord],
) -> List[StaffTotals]:
    """Roll resolved rows up per staff member, split by day type.

    Minutes are summed as integers and only converted to hours and pay at the
    end, so per-staff pay is ``minutes / 60 * rate`` for each day type.
    """
    totals: Dict[str, StaffTotals] = {}
    for row in rows:
        staff_id = row.shift.staff_id
        entry = totals.get(staff_id)
        if entry is None:
            pay_rate = pay_rates.get(staff_id)
            entry = StaffTotals(
                staff_id=staff_id,
                staff_name=staff_label(profiles, staff_id),
                rates={day: rate_for(pay_rate, day) for day in DayType},
            )
            totals[staff_id] = entry
        entry.minutes[row.day_type] += row.resolved_minutes or 0
        entry.shift_count += 1

    for entry in totals.values():
        known_pay: List[Decimal] = []
        for day in DayType:
            minutes = entry.minutes[day]
            rate = entry.rates.get(day)
            entry.hours[day] = hours_from_minutes(minutes)
            if rate is None:
                entry.pay[day] = None
                continue
            entry.pay[day] = round2(Decimal(minutes) / MINUTES_PER_HOUR * rate)
            known_pay.append(entry.pay[day])
        entry.total_minutes = sum(entry.minutes.values())
        entry.total_hours = hours_from_minutes(entry.total_minutes)
        entry.total_pay = round2(sum(known_pay, Decimal("0"))) if known_pay else None

    return sorted(totals.values(), key=lambda item: (item.staff_name.casefold(), item.staff_id))


def summarize_store(rows: Sequence[ResolvedShift]) -> StoreTotals:
    total_minutes = 0
    total_pay = Decimal("0")
    unpriced = 0
    for row in rows:
        total_minutes += row.resolved_minutes or 0
        if row.pay is None:
            unpriced += 1
        else:
            total_pay += row.pay
    return StoreTotals(
        total_minutes=total_minutes,
        total_hours=hours_from_minutes(total_minutes),
        total_pay=round2(total_pay),
        shift_count=len(rows),
        unpriced_shift_count=unpriced,
    )


def summarize_days(rows: Sequence[ResolvedShift]) -> List[DayTotals]:
    buckets: Dict[datetime.date, Dict[str, object]] = defaultdict(
        lambda: {"count": 0, "minutes": 0, "pay": Decimal("0")}
    )
    for row in rows:
        if row.work_date is None:
            continue
        bucket = buckets[row.work_date]
        bucket["count"] += 1
        bucket["minutes"] += row.resolved_minutes or 0
        if row.pay is not None:
            bucket["pay"] += row.pay
    return [
        DayTotals(
            work_date=day,
            shift_count=info["count"],
            minutes=info["minutes"],
            hours=hours_from_minutes(info["minutes"]),
            pay=round2(info["pay"]),
        )
        for day, info in sorted(buckets.items())
    ]


def aggregate(
    shifts: Iterable[ShiftRecord],
    punches: Sequence[PunchRecord],
    pay_rates: Iterable[PayRateRecord],
    profiles: Iterable[ProfileRecord],
    *,
    from_date: datetime.date,
    to_date: datetime.date,
    staff_id: Optional[str] = None,
    tz: datetime.tzinfo = BUSINESS_TZ,
    window_hours: float = MATCH_WINDOW_HOURS,
) -> PayrollReport:
    """Resolve every shift starting inside ``[from_date, to_date]`` and roll the results up."""
    range_start, range_end = build_range(from_date, to_date, tz)
    rates_by_staff = _index_by(pay_rates, "staff_id")
    profiles_by_id = _index_by(profiles, "id")

    selected = [
        shift
        for shift in shifts
        if shift.shift_start is not None
        and range_start <= _ensure_aware(shift.shift_start) < range_end
        and (not staff_id or shift.staff_id == staff_id)
    ]
    selected.sort(key=lambda shift: (_ensure_aware(shift.shift_start), shift.id))

    rows = [
        resolve_shift(
            shift,
            punches,
            rates_by_staff,
            profiles_by_id,
            tz=tz,
            window_hours=window_hours,
        )
        for shift in selected
    ]
    return PayrollReport(
        from_date=from_date,
        to_date=to_date,
        staff_id=staff_id,
        rows=rows,
        per_staff=summarize_staff(rows, rates_by_staff, profiles_by_id),
        store=summarize_store(rows),
        days=summarize_days(rows),
    )
