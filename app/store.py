"""Async facade over the relational store.

Each call opens its own session and runs it in a worker thread, so the
payroll reads can be issued concurrently and joined in-process.
"""

from __future__ import annotations

import asyncio
import datetime
import logging
from decimal import Decimal
from typing import Any, Callable, Dict, List, Optional

from sqlalchemy.exc import IntegrityError, SQLAlchemyError

import database
from errors import ConflictError, NotFoundError, StoreError, ValidationError
from payroll.engine import round2
from payroll.records import PayRateRecord, ProfileRecord, PunchRecord, ShiftRecord

logger = logging.getLogger(__name__)


def _aware(value: Optional[datetime.datetime]) -> Optional[datetime.datetime]:
    if value is None:
        return None
    return database.ensure_utc(value)


def _decimal(value) -> Decimal:
    return round2(Decimal(str(value or 0)))


def shift_record(row: database.Shift) -> ShiftRecord:
    return ShiftRecord(
        id=row.id,
        store_id=row.store_id,
        staff_id=row.staff_id,
        shift_start=_aware(row.shift_start),
        shift_end=_aware(row.shift_end),
        break_minutes=int(row.break_minutes or 0),
        created_by=row.created_by,
    )


def punch_record(row: database.TimeClock) -> PunchRecord:
    return PunchRecord(
        id=row.id,
        staff_id=row.staff_id,
        shift_id=row.shift_id,
        clock_in_at=_aware(row.clock_in_at),
        clock_out_at=_aware(row.clock_out_at),
        adjusted_clock_in_at=_aware(row.adjusted_clock_in_at),
        adjusted_clock_out_at=_aware(row.adjusted_clock_out_at),
        adjusted_reason=row.adjusted_reason,
        adjusted_by=row.adjusted_by,
        adjusted_at=_aware(row.adjusted_at),
        device_tag=row.device_tag,
        version=int(row.version or 1),
    )


def pay_rate_record(row: database.StaffPayRate) -> PayRateRecord:
    return PayRateRecord(
        staff_id=row.staff_id,
        store_id=row.store_id,
        weekday_rate=_decimal(row.weekday_rate),
        saturday_rate=_decimal(row.saturday_rate),
        sunday_rate=_decimal(row.sunday_rate),
    )


def profile_record(row: database.Profile) -> ProfileRecord:
    return ProfileRecord(
        id=row.id,
        full_name=row.full_name,
        preferred_name=row.preferred_name,
        role=row.role,
        is_active=bool(row.is_active),
        store_id=row.store_id,
    )


class AttendanceStore:
    def __init__(self, session_factory: Optional[Callable] = None) -> None:
        self.session_factory = session_factory or database.SessionLocal

    async def _run(self, operation: str, func: Callable, *args, **kwargs):
        def call():
            with self.session_factory() as session:
                return func(session, *args, **kwargs)

        try:
            return await asyncio.to_thread(call)
        except IntegrityError as exc:
            logger.warning("Store rejected %s: %s", operation, exc.orig)
            raise ConflictError(f"{operation} conflicts with existing data.") from exc
        except SQLAlchemyError as exc:
            logger.exception("Store call %s failed", operation)
            raise StoreError(f"{operation} failed: {exc}") from exc

    # -- reads ---------------------------------------------------------------

    async def list_shifts(
        self,
        store_id: str,
        start: datetime.datetime,
        end: datetime.datetime,
        staff_id: Optional[str] = None,
    ) -> List[ShiftRecord]:
        def query(session):
            return [shift_record(row) for row in database.list_shifts(session, store_id, start, end, staff_id=staff_id)]

        return await self._run("list_shifts", query)

    async def get_shift(self, shift_id: int) -> Optional[ShiftRecord]:
        def query(session):
            row = database.get_shift(session, shift_id)
            return shift_record(row) if row else None

        return await self._run("get_shift", query)

    async def list_punches(
        self,
        staff_id: Optional[str],
        start: datetime.datetime,
        end: datetime.datetime,
    ) -> List[PunchRecord]:
        def query(session):
            return [punch_record(row) for row in database.list_punches(session, start, end, staff_id=staff_id)]

        return await self._run("list_punches", query)

    async def get_punch(self, punch_id: int) -> Optional[PunchRecord]:
        def query(session):
            row = database.get_punch(session, punch_id)
            return punch_record(row) if row else None

        return await self._run("get_punch", query)

    async def get_open_punch(self, staff_id: str) -> Optional[PunchRecord]:
        def query(session):
            row = database.get_open_punch(session, staff_id)
            return punch_record(row) if row else None

        return await self._run("get_open_punch", query)

    async def list_pay_rates(self, store_id: str) -> List[PayRateRecord]:
        def query(session):
            return [pay_rate_record(row) for row in database.list_pay_rates(session, store_id)]

        return await self._run("list_pay_rates", query)

    async def list_profiles(self, store_id: Optional[str] = None, only_active: bool = False) -> List[ProfileRecord]:
        def query(session):
            return [
                profile_record(row)
                for row in database.list_profiles(session, store_id, only_active=only_active)
            ]

        return await self._run("list_profiles", query)

    async def get_profile(self, profile_id: str) -> Optional[ProfileRecord]:
        def query(session):
            row = database.get_profile(session, profile_id)
            return profile_record(row) if row else None

        return await self._run("get_profile", query)

    # -- writes --------------------------------------------------------------

    async def save_shift(self, payload: Dict[str, Any]) -> ShiftRecord:
        def write(session):
            try:
                return shift_record(database.upsert_shift(session, payload))
            except LookupError as exc:
                raise NotFoundError(str(exc)) from exc
            except (TypeError, ValueError) as exc:
                raise ValidationError(str(exc)) from exc

        return await self._run("save_shift", write)

    async def delete_shift(self, shift_id: int) -> bool:
        return await self._run("delete_shift", database.delete_shift, shift_id)

    async def insert_punch(self, values: Dict[str, Any]) -> int:
        def write(session):
            return database.insert_punch(session, values).id

        return await self._run("insert_punch", write)

    async def update_punch(
        self,
        punch_id: int,
        values: Dict[str, Any],
        expected_version: Optional[int] = None,
    ) -> PunchRecord:
        def write(session):
            row = database.update_punch(session, punch_id, values, expected_version=expected_version)
            return punch_record(row) if row else None

        record = await self._run("update_punch", write)
        if record is not None:
            return record
        if expected_version is not None:
            raise ConflictError("Clock record was changed by someone else; reload and try again.")
        raise NotFoundError(f"Clock record {punch_id} was not found.")

    async def upsert_pay_rate(self, staff_id: str, store_id: str, rates: Dict[str, Any]) -> PayRateRecord:
        def write(session):
            return pay_rate_record(database.upsert_pay_rate(session, staff_id, store_id, rates))

        return await self._run("upsert_pay_rate", write)

    async def save_profile(self, payload: Dict[str, Any]) -> ProfileRecord:
        def write(session):
            try:
                return profile_record(database.upsert_profile(session, payload))
            except ValueError as exc:
                raise ValidationError(str(exc)) from exc

        return await self._run("save_profile", write)

    async def record_audit(
        self,
        user_id: str,
        action: str,
        target_type: str,
        target_id: Optional[int] = None,
        payload: Optional[Dict[str, Any]] = None,
    ) -> None:
        await self._run(
            "record_audit",
            database.record_audit_log,
            user_id,
            action,
            target_type=target_type,
            target_id=target_id,
            payload=payload,
        )
