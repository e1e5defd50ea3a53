from __future__ import annotations

import argparse
import asyncio
import datetime
import sys
from pathlib import Path
from typing import Dict, List

ROOT_DIR = Path(__file__).resolve().parents[1]
if str(ROOT_DIR) not in sys.path:
    sys.path.insert(0, str(ROOT_DIR))

from database import (  # noqa: E402
    SessionLocal,
    get_open_punch,
    init_database,
    insert_punch,
    list_shifts,
    upsert_pay_rate,
    upsert_profile,
    upsert_shift,
)
from exporter import write_payroll_export  # noqa: E402
from payroll.api import compute_payroll  # noqa: E402
from settings import BUSINESS_TZ, DEFAULT_STORE_ID, MANUAL_DEVICE_TAG, configure_logging  # noqa: E402
from store import AttendanceStore  # noqa: E402


SAMPLE_STAFF: List[Dict] = [
    {
        "id": "owner-0001",
        "full_name": "Helen Park",
        "role": "OWNER",
        "rates": None,
    },
    {
        "id": "manager-0001",
        "full_name": "Daniel Murphy",
        "preferred_name": "Dan",
        "role": "MANAGER",
        "rates": {"weekday_rate": "32.00", "saturday_rate": "38.40", "sunday_rate": "44.80"},
    },
    {
        "id": "staff-0001",
        "full_name": "Priya Shah",
        "role": "STAFF",
        "rates": {"weekday_rate": "25.00", "saturday_rate": "30.00", "sunday_rate": "35.00"},
    },
    {
        "id": "staff-0002",
        "full_name": "Tom Nguyen",
        "role": "STAFF",
        "rates": {"weekday_rate": "24.50", "saturday_rate": "29.40", "sunday_rate": "34.30"},
    },
    {
        "id": "staff-0003",
        "full_name": "Grace Liu",
        "role": "STAFF",
        # No pay rates on file: hours are reported, pay stays unknown.
        "rates": None,
    },
    {
        "id": "staff-0004",
        "full_name": "Sam Fraser",
        "role": "STAFF",
        "is_active": False,
        "rates": {"weekday_rate": "23.00", "saturday_rate": "27.60", "sunday_rate": "32.20"},
    },
]

# (staff id, day offset from week start, start, end, break minutes)
SAMPLE_ROSTER = [
    ("manager-0001", 0, "08:00", "16:30", 30),
    ("staff-0001", 0, "09:00", "17:00", 30),
    ("staff-0002", 1, "11:00", "19:00", 30),
    ("staff-0003", 2, "07:00", "13:00", 0),
    ("staff-0001", 3, "09:00", "17:00", 30),
    ("staff-0004", 4, "10:00", "15:00", 0),
    ("staff-0002", 5, "10:00", "18:00", 30),
    ("staff-0001", 6, "10:00", "16:00", 30),
]


def _default_week_start(today: datetime.date | None = None) -> datetime.date:
    base = today or datetime.date.today()
    return base - datetime.timedelta(days=base.weekday() + 7)


def _local(day: datetime.date, label: str) -> datetime.datetime:
    hour, minute = [int(part) for part in label.split(":", 1)]
    return datetime.datetime.combine(day, datetime.time(hour, minute), tzinfo=BUSINESS_TZ)


def seed_profiles(session) -> None:
    for entry in SAMPLE_STAFF:
        upsert_profile(
            session,
            {
                "id": entry["id"],
                "full_name": entry.get("full_name"),
                "preferred_name": entry.get("preferred_name"),
                "role": entry["role"],
                "is_active": entry.get("is_active", True),
                "store_id": DEFAULT_STORE_ID,
            },
        )
        if entry.get("rates"):
            upsert_pay_rate(session, entry["id"], DEFAULT_STORE_ID, entry["rates"])
    print(f"[seed] {len(SAMPLE_STAFF)} profiles ready.")


def seed_roster(session, week_start: datetime.date, actor: str) -> int:
    week_end = week_start + datetime.timedelta(days=7)
    existing = list_shifts(session, DEFAULT_STORE_ID, _local(week_start, "00:00"), _local(week_end, "00:00"))
    if existing:
        print(f"[seed] Week of {week_start} already has {len(existing)} shifts; leaving roster as is.")
        return 0
    created = 0
    for index, (staff_id, offset, start_label, end_label, break_minutes) in enumerate(SAMPLE_ROSTER):
        day = week_start + datetime.timedelta(days=offset)
        start = _local(day, start_label)
        end = _local(day, end_label)
        shift = upsert_shift(
            session,
            {
                "staff_id": staff_id,
                "store_id": DEFAULT_STORE_ID,
                "shift_start": start,
                "shift_end": end,
                "break_minutes": break_minutes,
                "created_by": actor,
            },
        )
        created += 1
        # Every other shift gets a clock record a few minutes off the roster.
        if index % 2 == 0 and not get_open_punch(session, staff_id):
            insert_punch(
                session,
                {
                    "staff_id": staff_id,
                    "clock_in_at": start - datetime.timedelta(minutes=4),
                    "clock_out_at": end + datetime.timedelta(minutes=7),
                    "device_tag": MANUAL_DEVICE_TAG if index == 0 else "kiosk",
                },
            )
    print(f"[seed] Created {created} shifts for week of {week_start}.")
    return created


def parse_args() -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        description="Seed demo staff, pay rates and a week of shifts, then print the payroll for that week."
    )
    parser.add_argument(
        "--week-start",
        help="ISO date (YYYY-MM-DD) for the week to seed. Defaults to last Monday.",
    )
    parser.add_argument("--actor", default="seed_staff", help="Audit trail actor name.")
    parser.add_argument("--export", choices=["csv", "xlsx"], help="Also write the payroll export file.")
    return parser.parse_args()


def main() -> None:
    configure_logging()
    init_database()
    args = parse_args()
    if args.week_start:
        try:
            week_start = datetime.date.fromisoformat(args.week_start)
        except ValueError as exc:
            raise SystemExit(f"Invalid --week-start value: {exc}") from exc
    else:
        week_start = _default_week_start()
    week_start = week_start - datetime.timedelta(days=week_start.weekday())

    with SessionLocal() as session:
        seed_profiles(session)
        seed_roster(session, week_start, args.actor)

    week_end = week_start + datetime.timedelta(days=6)
    report = asyncio.run(compute_payroll(AttendanceStore(), week_start, week_end))
    for entry in report.per_staff:
        pay = entry.total_pay if entry.total_pay is not None else "-"
        print(f"[seed] {entry.staff_name:<16} {entry.total_hours:>6} h  pay {pay}")
    print(f"[seed] Store total: {report.store.total_hours} h, pay {report.store.total_pay}")
    if args.export:
        path = write_payroll_export(report, args.export)
        print(f"[seed] Export written to {path}")


if __name__ == "__main__":
    main()
