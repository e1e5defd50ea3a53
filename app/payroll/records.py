from __future__ import annotations

import datetime
from dataclasses import dataclass, field
from decimal import Decimal
from enum import Enum
from typing import Any, Dict, List, Optional


class DayType(str, Enum):
    WEEKDAY = "WEEKDAY"
    SATURDAY = "SATURDAY"
    SUNDAY = "SUNDAY"


class ResolutionSource(str, Enum):
    ADJUSTED = "ADJUSTED"
    RAW = "RAW"
    ROSTER = "ROSTER"
    NONE = "NONE"


class PunchState(str, Enum):
    NOT_STARTED = "NOT_STARTED"
    OPEN = "OPEN"
    CLOSED = "CLOSED"


@dataclass(frozen=True)
class ShiftRecord:
    id: int
    store_id: str
    staff_id: str
    shift_start: Optional[datetime.datetime]
    shift_end: Optional[datetime.datetime]
    break_minutes: int = 0
    created_by: Optional[str] = None


@dataclass(frozen=True)
class PunchRecord:
    id: int
    staff_id: str
    shift_id: Optional[int] = None
    clock_in_at: Optional[datetime.datetime] = None
    clock_out_at: Optional[datetime.datetime] = None
    adjusted_clock_in_at: Optional[datetime.datetime] = None
    adjusted_clock_out_at: Optional[datetime.datetime] = None
    adjusted_reason: Optional[str] = None
    adjusted_by: Optional[str] = None
    adjusted_at: Optional[datetime.datetime] = None
    device_tag: Optional[str] = None
    version: int = 1

    @property
    def state(self) -> PunchState:
        if self.clock_in_at is None:
            return PunchState.NOT_STARTED
        if self.clock_out_at is None:
            return PunchState.OPEN
        return PunchState.CLOSED


@dataclass(frozen=True)
class ClockHistoryEntry:
    punch: PunchRecord
    minutes: Optional[int]
    hours: Optional[Decimal]

    def to_dict(self) -> Dict[str, Any]:
        punch = self.punch
        return {
            "punch_id": punch.id,
            "shift_id": punch.shift_id,
            "clock_in_at": punch.clock_in_at,
            "clock_out_at": punch.clock_out_at,
            "adjusted_clock_in_at": punch.adjusted_clock_in_at,
            "adjusted_clock_out_at": punch.adjusted_clock_out_at,
            "state": punch.state.value,
            "minutes": self.minutes,
            "hours": self.hours,
        }


@dataclass(frozen=True)
class PayRateRecord:
    staff_id: str
    store_id: str
    weekday_rate: Decimal = Decimal("0")
    saturday_rate: Decimal = Decimal("0")
    sunday_rate: Decimal = Decimal("0")


@dataclass(frozen=True)
class ProfileRecord:
    id: str
    full_name: Optional[str] = None
    preferred_name: Optional[str] = None
    role: Optional[str] = None
    is_active: bool = True
    store_id: Optional[str] = None

    @property
    def display_name(self) -> str:
        for candidate in (self.preferred_name, self.full_name):
            if candidate and candidate.strip():
                return candidate.strip()
        return self.id[:8]


@dataclass(frozen=True)
class WorkedTime:
    break_minutes: int
    roster_minutes: Optional[int]
    raw_minutes: Optional[int]
    adjusted_minutes: Optional[int]
    resolved_minutes: Optional[int]
    source: ResolutionSource


@dataclass(frozen=True)
class ResolvedShift:
    shift: ShiftRecord
    punch: Optional[PunchRecord]
    worked: WorkedTime
    day_type: DayType
    work_date: Optional[datetime.date]
    staff_name: str
    rate: Optional[Decimal]
    hours: Optional[Decimal]
    pay: Optional[Decimal]

    @property
    def resolved_minutes(self) -> Optional[int]:
        return self.worked.resolved_minutes

    @property
    def source(self) -> ResolutionSource:
        return self.worked.source

    def to_dict(self) -> Dict[str, Any]:
        punch = self.punch
        return {
            "shift_id": self.shift.id,
            "staff_id": self.shift.staff_id,
            "staff_name": self.staff_name,
            "shift_start": self.shift.shift_start,
            "shift_end": self.shift.shift_end,
            "break_minutes": self.worked.break_minutes,
            "work_date": self.work_date,
            "day_type": self.day_type.value,
            "punch_id": punch.id if punch else None,
            "punch_version": punch.version if punch else None,
            "clock_in_at": punch.clock_in_at if punch else None,
            "clock_out_at": punch.clock_out_at if punch else None,
            "adjusted_clock_in_at": punch.adjusted_clock_in_at if punch else None,
            "adjusted_clock_out_at": punch.adjusted_clock_out_at if punch else None,
            "adjusted_reason": punch.adjusted_reason if punch else None,
            "roster_minutes": self.worked.roster_minutes,
            "raw_minutes": self.worked.raw_minutes,
            "adjusted_minutes": self.worked.adjusted_minutes,
            "resolved_minutes": self.worked.resolved_minutes,
            "source": self.worked.source.value,
            "rate": self.rate,
            "hours": self.hours,
            "pay": self.pay,
        }


@dataclass
class StaffTotals:
    staff_id: str
    staff_name: str
    minutes: Dict[DayType, int] = field(default_factory=lambda: {day: 0 for day in DayType})
    rates: Dict[DayType, Optional[Decimal]] = field(default_factory=dict)
    pay: Dict[DayType, Optional[Decimal]] = field(default_factory=dict)
    shift_count: int = 0
    hours: Dict[DayType, Decimal] = field(default_factory=dict)
    total_minutes: int = 0
    total_hours: Decimal = Decimal("0.00")
    total_pay: Optional[Decimal] = None

    def to_dict(self) -> Dict[str, Any]:
        payload: Dict[str, Any] = {
            "staff_id": self.staff_id,
            "staff_name": self.staff_name,
            "shift_count": self.shift_count,
        }
        for day in DayType:
            prefix = day.value.lower()
            payload[f"{prefix}_minutes"] = self.minutes.get(day, 0)
            payload[f"{prefix}_hours"] = self.hours.get(day)
            payload[f"{prefix}_rate"] = self.rates.get(day)
            payload[f"{prefix}_pay"] = self.pay.get(day)
        payload["total_minutes"] = self.total_minutes
        payload["total_hours"] = self.total_hours
        payload["total_pay"] = self.total_pay
        return payload


@dataclass(frozen=True)
class DayTotals:
    work_date: datetime.date
    shift_count: int
    minutes: int
    hours: Decimal
    pay: Decimal

    def to_dict(self) -> Dict[str, Any]:
        return {
            "date": self.work_date,
            "shift_count": self.shift_count,
            "minutes": self.minutes,
            "hours": self.hours,
            "pay": self.pay,
        }


@dataclass(frozen=True)
class StoreTotals:
    total_minutes: int
    total_hours: Decimal
    total_pay: Decimal
    shift_count: int
    unpriced_shift_count: int

    def to_dict(self) -> Dict[str, Any]:
        return {
            "total_minutes": self.total_minutes,
            "total_hours": self.total_hours,
            "total_pay": self.total_pay,
            "shift_count": self.shift_count,
            "unpriced_shift_count": self.unpriced_shift_count,
        }


@dataclass(frozen=True)
class PayrollReport:
    from_date: datetime.date
    to_date: datetime.date
    staff_id: Optional[str]
    rows: List[ResolvedShift]
    per_staff: List[StaffTotals]
    store: StoreTotals
    days: List[DayTotals]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "from": self.from_date,
            "to": self.to_date,
            "staff_id": self.staff_id,
            "rows": [row.to_dict() for row in self.rows],
            "per_staff": [entry.to_dict() for entry in self.per_staff],
            "store": self.store.to_dict(),
            "days": [day.to_dict() for day in self.days],
        }
