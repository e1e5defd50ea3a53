from __future__ import annotations

import datetime
import json
from typing import Any, Dict, List, Optional

from sqlalchemy import (
    Boolean,
    DateTime,
    Float,
    ForeignKey,
    Index,
    Integer,
    String,
    UniqueConstraint,
    create_engine,
    select,
    text,
    update,
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, sessionmaker

from roles import Role, normalize_role
from settings import DATABASE_URL, DEFAULT_STORE_ID

UTC = datetime.timezone.utc


def _utcnow() -> datetime.datetime:
    return datetime.datetime.now(UTC)


def ensure_utc(value: datetime.datetime) -> datetime.datetime:
    """SQLite hands back naive values; everything is stored in UTC."""
    if value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    return value.astimezone(UTC)


def _optional_utc(value: Optional[datetime.datetime]) -> Optional[datetime.datetime]:
    if value is None:
        return None
    return ensure_utc(value)


class Base(DeclarativeBase):
    """Metadata for the back-office tables."""

    pass


class Profile(Base):
    __tablename__ = "profiles"

    id: Mapped[str] = mapped_column(String(36), primary_key=True)
    store_id: Mapped[str] = mapped_column(String(36), nullable=False, default=DEFAULT_STORE_ID)
    full_name: Mapped[str | None] = mapped_column(String(120), nullable=True)
    preferred_name: Mapped[str | None] = mapped_column(String(80), nullable=True)
    role: Mapped[str] = mapped_column(String(12), nullable=False, default=Role.STAFF.value)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    created_at: Mapped[datetime.datetime] = mapped_column(DateTime(timezone=True), default=_utcnow)


class Shift(Base):
    __tablename__ = "shifts"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    store_id: Mapped[str] = mapped_column(String(36), nullable=False, default=DEFAULT_STORE_ID)
    staff_id: Mapped[str] = mapped_column(String(36), nullable=False, index=True)
    shift_start: Mapped[datetime.datetime] = mapped_column(DateTime(timezone=True), nullable=False, index=True)
    shift_end: Mapped[datetime.datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    break_minutes: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    created_by: Mapped[str | None] = mapped_column(String(36), nullable=True)
    created_at: Mapped[datetime.datetime] = mapped_column(DateTime(timezone=True), default=_utcnow)
    updated_at: Mapped[datetime.datetime] = mapped_column(
        DateTime(timezone=True),
        default=_utcnow,
        onupdate=_utcnow,
    )


class TimeClock(Base):
    __tablename__ = "time_clock"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    shift_id: Mapped[int | None] = mapped_column(ForeignKey("shifts.id", ondelete="SET NULL"), nullable=True)
    staff_id: Mapped[str] = mapped_column(String(36), nullable=False, index=True)
    clock_in_at: Mapped[datetime.datetime | None] = mapped_column(DateTime(timezone=True), nullable=True, index=True)
    clock_out_at: Mapped[datetime.datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    adjusted_clock_in_at: Mapped[datetime.datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    adjusted_clock_out_at: Mapped[datetime.datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    adjusted_reason: Mapped[str | None] = mapped_column(String(255), nullable=True)
    adjusted_by: Mapped[str | None] = mapped_column(String(36), nullable=True)
    adjusted_at: Mapped[datetime.datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    device_tag: Mapped[str | None] = mapped_column(String(40), nullable=True)
    version: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    created_at: Mapped[datetime.datetime] = mapped_column(DateTime(timezone=True), default=_utcnow)

    __table_args__ = (
        # One open punch per staff member.
        Index(
            "uq_time_clock_open_per_staff",
            "staff_id",
            unique=True,
            sqlite_where=text("clock_out_at IS NULL"),
            postgresql_where=text("clock_out_at IS NULL"),
        ),
    )


class StaffPayRate(Base):
    __tablename__ = "staff_pay_rates"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    staff_id: Mapped[str] = mapped_column(String(36), nullable=False)
    store_id: Mapped[str] = mapped_column(String(36), nullable=False, default=DEFAULT_STORE_ID)
    weekday_rate: Mapped[float] = mapped_column(Float, nullable=False, default=0.0)
    saturday_rate: Mapped[float] = mapped_column(Float, nullable=False, default=0.0)
    sunday_rate: Mapped[float] = mapped_column(Float, nullable=False, default=0.0)
    updated_at: Mapped[datetime.datetime] = mapped_column(
        DateTime(timezone=True),
        default=_utcnow,
        onupdate=_utcnow,
    )

    __table_args__ = (
        UniqueConstraint("staff_id", "store_id", name="uq_staff_pay_rate_staff_store"),
    )


class AuditLog(Base):
    __tablename__ = "audit_log"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    user_id: Mapped[str] = mapped_column(String(60), nullable=False)
    action: Mapped[str] = mapped_column(String(60), nullable=False)
    target_type: Mapped[str] = mapped_column(String(32), nullable=False, default="TimeClock")
    target_id: Mapped[int | None] = mapped_column(Integer, nullable=True)
    payloadJSON: Mapped[str] = mapped_column(String(2000), nullable=False, default="{}")
    created_at: Mapped[datetime.datetime] = mapped_column(DateTime(timezone=True), default=_utcnow)


def build_engine(url: str = DATABASE_URL):
    connect_args = {"check_same_thread": False} if url.startswith("sqlite") else {}
    return create_engine(url, echo=False, future=True, connect_args=connect_args)


engine = build_engine()
SessionLocal = sessionmaker(bind=engine, expire_on_commit=False, future=True)


def init_database(bind=None) -> None:
    Base.metadata.create_all(bind or engine)


# ---------------------------------------------------------------------------
# Profiles


def list_profiles(session, store_id: Optional[str] = None, *, only_active: bool = False) -> List[Profile]:
    stmt = select(Profile)
    if store_id:
        stmt = stmt.where(Profile.store_id == store_id)
    if only_active:
        stmt = stmt.where(Profile.is_active.is_(True))
    stmt = stmt.order_by(Profile.full_name.asc(), Profile.id.asc())
    return list(session.scalars(stmt))


def get_profile(session, profile_id: str) -> Optional[Profile]:
    if not profile_id:
        return None
    return session.get(Profile, profile_id)


def upsert_profile(session, payload: Dict[str, Any]) -> Profile:
    profile_id = (payload.get("id") or "").strip()
    if not profile_id:
        raise ValueError("Profile id is required.")
    role = normalize_role(payload.get("role") or Role.STAFF)
    if role is None:
        raise ValueError(f"Unsupported role '{payload.get('role')}'.")
    profile = session.get(Profile, profile_id)
    if not profile:
        profile = Profile(id=profile_id)
        session.add(profile)
    profile.store_id = payload.get("store_id") or profile.store_id or DEFAULT_STORE_ID
    profile.full_name = payload.get("full_name", profile.full_name)
    profile.preferred_name = payload.get("preferred_name", profile.preferred_name)
    profile.role = role.value
    if "is_active" in payload:
        profile.is_active = bool(payload["is_active"])
    elif profile.is_active is None:
        profile.is_active = True
    session.commit()
    session.refresh(profile)
    return profile


# ---------------------------------------------------------------------------
# Shifts


def list_shifts(
    session,
    store_id: str,
    start: datetime.datetime,
    end: datetime.datetime,
    *,
    staff_id: Optional[str] = None,
) -> List[Shift]:
    stmt = (
        select(Shift)
        .where(
            Shift.store_id == store_id,
            Shift.shift_start >= ensure_utc(start),
            Shift.shift_start < ensure_utc(end),
        )
        .order_by(Shift.shift_start.asc(), Shift.id.asc())
    )
    if staff_id:
        stmt = stmt.where(Shift.staff_id == staff_id)
    return list(session.scalars(stmt))


def get_shift(session, shift_id: int) -> Optional[Shift]:
    return session.get(Shift, shift_id)


def upsert_shift(session, shift: Dict[str, Any]) -> Shift:
    shift_id = shift.get("id")
    start = shift.get("shift_start")
    end = shift.get("shift_end")
    if not isinstance(start, datetime.datetime) or not isinstance(end, datetime.datetime):
        raise TypeError("Shift start and end must be datetime instances.")
    start = ensure_utc(start)
    end = ensure_utc(end)
    if end <= start:
        raise ValueError("Shift end time must be after start time.")
    break_minutes = int(shift.get("break_minutes") or 0)
    if break_minutes < 0:
        raise ValueError("Break minutes cannot be negative.")

    if shift_id:
        db_shift = session.get(Shift, shift_id)
        if not db_shift:
            raise LookupError(f"Shift with id {shift_id} was not found.")
    else:
        staff_id = shift.get("staff_id")
        if not staff_id:
            raise ValueError("Shift staff_id is required.")
        db_shift = Shift(
            staff_id=staff_id,
            store_id=shift.get("store_id") or DEFAULT_STORE_ID,
            created_by=shift.get("created_by"),
        )
        session.add(db_shift)

    if shift_id and shift.get("staff_id"):
        db_shift.staff_id = shift["staff_id"]
    db_shift.shift_start = start
    db_shift.shift_end = end
    db_shift.break_minutes = break_minutes
    session.commit()
    session.refresh(db_shift)
    return db_shift


def delete_shift(session, shift_id: int) -> bool:
    db_shift = session.get(Shift, shift_id)
    if not db_shift:
        return False
    session.delete(db_shift)
    session.commit()
    return True


# ---------------------------------------------------------------------------
# Time clock


def list_punches(
    session,
    start: datetime.datetime,
    end: datetime.datetime,
    *,
    staff_id: Optional[str] = None,
) -> List[TimeClock]:
    stmt = (
        select(TimeClock)
        .where(
            TimeClock.clock_in_at >= ensure_utc(start),
            TimeClock.clock_in_at < ensure_utc(end),
        )
        .order_by(TimeClock.clock_in_at.asc(), TimeClock.id.asc())
    )
    if staff_id:
        stmt = stmt.where(TimeClock.staff_id == staff_id)
    return list(session.scalars(stmt))


def get_punch(session, punch_id: int) -> Optional[TimeClock]:
    return session.get(TimeClock, punch_id)


def get_open_punch(session, staff_id: str) -> Optional[TimeClock]:
    stmt = (
        select(TimeClock)
        .where(TimeClock.staff_id == staff_id, TimeClock.clock_out_at.is_(None))
        .order_by(TimeClock.clock_in_at.desc())
    )
    return session.scalars(stmt).first()


_PUNCH_TIMESTAMP_FIELDS = {
    "clock_in_at",
    "clock_out_at",
    "adjusted_clock_in_at",
    "adjusted_clock_out_at",
    "adjusted_at",
}
_PUNCH_WRITABLE_FIELDS = _PUNCH_TIMESTAMP_FIELDS | {
    "shift_id",
    "staff_id",
    "adjusted_reason",
    "adjusted_by",
    "device_tag",
}


def _punch_values(values: Dict[str, Any]) -> Dict[str, Any]:
    unknown = set(values) - _PUNCH_WRITABLE_FIELDS
    if unknown:
        raise ValueError(f"Unsupported time clock fields: {', '.join(sorted(unknown))}")
    cleaned = dict(values)
    for key in _PUNCH_TIMESTAMP_FIELDS & set(cleaned):
        cleaned[key] = _optional_utc(cleaned[key])
    return cleaned


def insert_punch(session, values: Dict[str, Any]) -> TimeClock:
    cleaned = _punch_values(values)
    if not cleaned.get("staff_id"):
        raise ValueError("Time clock staff_id is required.")
    punch = TimeClock(**cleaned)
    session.add(punch)
    session.commit()
    session.refresh(punch)
    return punch


def update_punch(
    session,
    punch_id: int,
    values: Dict[str, Any],
    *,
    expected_version: Optional[int] = None,
) -> Optional[TimeClock]:
    """Apply ``values`` and bump the version; None when no row matched.

    With ``expected_version`` the update only applies while the stored row is
    still at that version.
    """
    cleaned = _punch_values(values)
    stmt = update(TimeClock).where(TimeClock.id == punch_id)
    if expected_version is not None:
        stmt = stmt.where(TimeClock.version == expected_version)
    result = session.execute(
        stmt.values(**cleaned, version=TimeClock.version + 1).execution_options(synchronize_session=False)
    )
    session.commit()
    if result.rowcount == 0:
        return None
    return session.get(TimeClock, punch_id, populate_existing=True)


# ---------------------------------------------------------------------------
# Pay rates


def list_pay_rates(session, store_id: str) -> List[StaffPayRate]:
    stmt = select(StaffPayRate).where(StaffPayRate.store_id == store_id).order_by(StaffPayRate.staff_id.asc())
    return list(session.scalars(stmt))


def upsert_pay_rate(session, staff_id: str, store_id: str, rates: Dict[str, Any]) -> StaffPayRate:
    stmt = select(StaffPayRate).where(StaffPayRate.staff_id == staff_id, StaffPayRate.store_id == store_id)
    row = session.scalars(stmt).first()
    if not row:
        row = StaffPayRate(staff_id=staff_id, store_id=store_id)
        session.add(row)
    for key in ("weekday_rate", "saturday_rate", "sunday_rate"):
        setattr(row, key, float(rates.get(key) or 0))
    session.commit()
    session.refresh(row)
    return row


# ---------------------------------------------------------------------------
# Audit


def record_audit_log(
    session,
    user_id: str,
    action: str,
    target_type: str = "TimeClock",
    target_id: Optional[int] = None,
    payload: Optional[Dict[str, Any]] = None,
) -> AuditLog:
    log = AuditLog(
        user_id=user_id,
        action=action,
        target_type=target_type,
        target_id=target_id,
        payloadJSON=json.dumps(payload or {}, default=str),
    )
    session.add(log)
    session.commit()
    return log


def list_audit_log(session, *, target_type: Optional[str] = None, target_id: Optional[int] = None) -> List[AuditLog]:
    stmt = select(AuditLog).order_by(AuditLog.id.asc())
    if target_type:
        stmt = stmt.where(AuditLog.target_type == target_type)
    if target_id is not None:
        stmt = stmt.where(AuditLog.target_id == target_id)
    return list(session.scalars(stmt))
