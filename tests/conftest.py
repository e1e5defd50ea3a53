from __future__ import annotations

import sys
from pathlib import Path

import pytest
from sqlalchemy.orm import sessionmaker

APP_DIR = Path(__file__).resolve().parents[1] / "app"
if str(APP_DIR) not in sys.path:
    sys.path.insert(0, str(APP_DIR))

import database as db  # noqa: E402
from settings import DEFAULT_STORE_ID  # noqa: E402
from store import AttendanceStore  # noqa: E402

STAFF = [
    {"id": "owner-0001", "full_name": "Helen Park", "role": "OWNER"},
    {"id": "manager-0001", "full_name": "Daniel Murphy", "preferred_name": "Dan", "role": "MANAGER"},
    {"id": "manager-0002", "full_name": "Old Manager", "role": "MANAGER", "is_active": False},
    {"id": "staff-0001", "full_name": "Priya Shah", "role": "STAFF"},
    {"id": "staff-0002", "full_name": "Tom Nguyen", "role": "STAFF"},
]


@pytest.fixture()
def session_factory(tmp_path):
    engine = db.build_engine(f"sqlite:///{(tmp_path / 'payroll.db').as_posix()}")
    db.init_database(engine)
    factory = sessionmaker(bind=engine, expire_on_commit=False, future=True)
    yield factory
    engine.dispose()


@pytest.fixture()
def store(session_factory):
    return AttendanceStore(session_factory)


@pytest.fixture()
def seeded(session_factory):
    """Profiles for every role plus weekday/weekend rates for staff-0001 only."""
    with session_factory() as session:
        for entry in STAFF:
            db.upsert_profile(session, dict(entry, store_id=DEFAULT_STORE_ID))
        db.upsert_pay_rate(
            session,
            "staff-0001",
            DEFAULT_STORE_ID,
            {"weekday_rate": 25.0, "saturday_rate": 30.0, "sunday_rate": 35.0},
        )
    return session_factory
