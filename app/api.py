"""FastAPI surface over the payroll engine and the clock-record workflows.

Every endpoint recomputes from the store; nothing is cached between calls.
The acting profile is taken from the ``X-Actor-Id`` header.
"""

from __future__ import annotations

from contextlib import asynccontextmanager
import dataclasses
import datetime
import logging
import sys
from pathlib import Path
from typing import Any, Dict, Optional

from fastapi import Depends, FastAPI, Header, HTTPException, Query, Request
from fastapi.encoders import jsonable_encoder
from fastapi.responses import JSONResponse, Response

# Ensure absolute imports (e.g., "import database") resolve when served with --app-dir.
APP_DIR = Path(__file__).resolve().parent
if str(APP_DIR) not in sys.path:
    sys.path.insert(0, str(APP_DIR))

from database import init_database  # noqa: E402
from errors import BackOfficeError, NotFoundError  # noqa: E402
from exporter import export_filename, export_payroll_csv, export_payroll_xlsx  # noqa: E402
from payroll.access import authorize  # noqa: E402
from payroll.adjustments import (  # noqa: E402
    adjust_punch,
    clock_history,
    clock_in,
    clock_out,
    clock_status,
    copy_roster_to_edit,
    create_punch_from_shift,
)
from payroll.api import payroll_for_actor  # noqa: E402
from payroll.roster import remove_shift, save_pay_rate, save_shift  # noqa: E402
from roles import Action  # noqa: E402
from settings import BUSINESS_TZ, DEFAULT_STORE_ID, configure_logging  # noqa: E402
from store import AttendanceStore  # noqa: E402

logger = logging.getLogger(__name__)

STATUS_BY_KIND = {
    "validation": 400,
    "permission": 403,
    "not_found": 404,
    "conflict": 409,
    "store": 503,
}

XLSX_MEDIA_TYPE = "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet"


@asynccontextmanager
async def lifespan(_: FastAPI):
    configure_logging()
    init_database()
    yield


app = FastAPI(title="Payroll Back Office API", version="0.1", lifespan=lifespan)


@app.exception_handler(BackOfficeError)
async def back_office_error(_: Request, exc: BackOfficeError) -> JSONResponse:
    status = STATUS_BY_KIND.get(exc.kind, 500)
    if status >= 500:
        logger.error("Request failed: %s", exc.message)
    return JSONResponse(status_code=status, content={"error": exc.kind, "detail": exc.message})


def get_store() -> AttendanceStore:
    return AttendanceStore()


def get_actor(x_actor_id: Optional[str] = Header(None)) -> Optional[str]:
    return (x_actor_id or "").strip() or None


def _parse_date(value: Optional[str], name: str) -> datetime.date:
    if not value:
        raise HTTPException(status_code=400, detail=f"{name} is required")
    try:
        return datetime.date.fromisoformat(value)
    except ValueError:
        raise HTTPException(status_code=400, detail=f"{name} must be YYYY-MM-DD")


def _parse_timestamp(value: Any, name: str) -> Optional[datetime.datetime]:
    if value in (None, ""):
        return None
    try:
        moment = datetime.datetime.fromisoformat(str(value))
    except ValueError:
        raise HTTPException(status_code=400, detail=f"{name} must be an ISO 8601 timestamp")
    if moment.tzinfo is None:
        moment = moment.replace(tzinfo=BUSINESS_TZ)
    return moment


def _parse_int(value: Any, name: str) -> Optional[int]:
    if value in (None, ""):
        return None
    try:
        return int(value)
    except (TypeError, ValueError):
        raise HTTPException(status_code=400, detail=f"{name} must be an integer")


def _record(record) -> Dict[str, Any]:
    return jsonable_encoder(dataclasses.asdict(record))


@app.get("/health")
def health() -> Dict[str, str]:
    return {"status": "ok"}


@app.get("/api/v1/payroll")
async def payroll_report(
    from_: Optional[str] = Query(None, alias="from"),
    to: Optional[str] = Query(None),
    staff_id: Optional[str] = Query(None),
    store: AttendanceStore = Depends(get_store),
    actor_id: Optional[str] = Depends(get_actor),
) -> JSONResponse:
    from_date = _parse_date(from_, "from")
    to_date = _parse_date(to, "to")
    report = await payroll_for_actor(store, actor_id, from_date, to_date, staff_id=staff_id)
    return JSONResponse(content=jsonable_encoder(report.to_dict()))


@app.get("/api/v1/payroll/staff-summary")
async def payroll_staff_summary(
    from_: Optional[str] = Query(None, alias="from"),
    to: Optional[str] = Query(None),
    store: AttendanceStore = Depends(get_store),
    actor_id: Optional[str] = Depends(get_actor),
) -> JSONResponse:
    from_date = _parse_date(from_, "from")
    to_date = _parse_date(to, "to")
    report = await payroll_for_actor(store, actor_id, from_date, to_date, action=Action.VIEW_STAFF_SUMMARY)
    payload = {
        "from": report.from_date,
        "to": report.to_date,
        "per_staff": [entry.to_dict() for entry in report.per_staff],
        "store": report.store.to_dict(),
        "days": [day.to_dict() for day in report.days],
    }
    return JSONResponse(content=jsonable_encoder(payload))


@app.get("/api/v1/payroll/export")
async def payroll_export(
    from_: Optional[str] = Query(None, alias="from"),
    to: Optional[str] = Query(None),
    staff_id: Optional[str] = Query(None),
    format: str = Query("csv"),
    store: AttendanceStore = Depends(get_store),
    actor_id: Optional[str] = Depends(get_actor),
) -> Response:
    format = format.lower()
    if format not in {"csv", "xlsx"}:
        raise HTTPException(status_code=400, detail="format must be 'csv' or 'xlsx'")
    from_date = _parse_date(from_, "from")
    to_date = _parse_date(to, "to")
    report = await payroll_for_actor(store, actor_id, from_date, to_date, staff_id=staff_id)
    headers = {"Content-Disposition": f'attachment; filename="{export_filename(report, format)}"'}
    if format == "csv":
        return Response(content=export_payroll_csv(report), media_type="text/csv", headers=headers)
    return Response(content=export_payroll_xlsx(report), media_type=XLSX_MEDIA_TYPE, headers=headers)


@app.post("/api/v1/shifts/{shift_id}/punch")
async def create_punch_for_shift(
    shift_id: int,
    store: AttendanceStore = Depends(get_store),
    actor_id: Optional[str] = Depends(get_actor),
) -> JSONResponse:
    punch_id = await create_punch_from_shift(store, actor_id, shift_id)
    return JSONResponse(status_code=201, content={"punch_id": punch_id, "shift_id": shift_id})


@app.get("/api/v1/shifts/{shift_id}/roster-times")
async def roster_times(
    shift_id: int,
    store: AttendanceStore = Depends(get_store),
    actor_id: Optional[str] = Depends(get_actor),
) -> JSONResponse:
    await authorize(store, actor_id, Action.ADJUST_PUNCH)
    shift = await store.get_shift(shift_id)
    if shift is None:
        raise NotFoundError(f"Shift {shift_id} was not found.")
    await authorize(store, actor_id, Action.ADJUST_PUNCH, target_staff_id=shift.staff_id)
    start, end = copy_roster_to_edit(shift)
    return JSONResponse(
        content=jsonable_encoder({"shift_id": shift.id, "adjusted_clock_in_at": start, "adjusted_clock_out_at": end})
    )


@app.post("/api/v1/punches/{punch_id}/adjustment")
async def adjust_punch_endpoint(
    punch_id: int,
    payload: Dict[str, Any],
    store: AttendanceStore = Depends(get_store),
    actor_id: Optional[str] = Depends(get_actor),
) -> JSONResponse:
    updated = await adjust_punch(
        store,
        punch_id,
        _parse_timestamp(payload.get("adjusted_clock_in_at"), "adjusted_clock_in_at"),
        _parse_timestamp(payload.get("adjusted_clock_out_at"), "adjusted_clock_out_at"),
        payload.get("reason"),
        actor_id,
        expected_version=_parse_int(payload.get("expected_version"), "expected_version"),
    )
    return JSONResponse(content=_record(updated))


@app.post("/api/v1/clock/in")
async def clock_in_endpoint(
    payload: Dict[str, Any] | None = None,
    store: AttendanceStore = Depends(get_store),
    actor_id: Optional[str] = Depends(get_actor),
) -> JSONResponse:
    shift_id = _parse_int((payload or {}).get("shift_id"), "shift_id")
    punch_id = await clock_in(store, actor_id, shift_id=shift_id)
    return JSONResponse(status_code=201, content={"punch_id": punch_id})


@app.post("/api/v1/clock/out")
async def clock_out_endpoint(
    store: AttendanceStore = Depends(get_store),
    actor_id: Optional[str] = Depends(get_actor),
) -> JSONResponse:
    updated = await clock_out(store, actor_id)
    return JSONResponse(content=_record(updated))


@app.get("/api/v1/clock/status")
async def clock_status_endpoint(
    store: AttendanceStore = Depends(get_store),
    actor_id: Optional[str] = Depends(get_actor),
) -> JSONResponse:
    open_punch = await clock_status(store, actor_id)
    return JSONResponse(
        content={"on_shift": open_punch is not None, "open_punch": _record(open_punch) if open_punch else None}
    )


@app.get("/api/v1/clock/history")
async def clock_history_endpoint(
    since: Optional[str] = Query(None),
    until: Optional[str] = Query(None),
    store: AttendanceStore = Depends(get_store),
    actor_id: Optional[str] = Depends(get_actor),
) -> JSONResponse:
    since_date = _parse_date(since, "since")
    until_date = _parse_date(until, "until") if until else None
    entries = await clock_history(store, actor_id, since_date, until=until_date)
    return JSONResponse(content=jsonable_encoder({"history": [entry.to_dict() for entry in entries]}))


def _shift_payload(payload: Dict[str, Any]) -> Dict[str, Any]:
    return {
        "staff_id": payload.get("staff_id"),
        "shift_start": _parse_timestamp(payload.get("shift_start"), "shift_start"),
        "shift_end": _parse_timestamp(payload.get("shift_end"), "shift_end"),
        "break_minutes": payload.get("break_minutes") or 0,
    }


@app.post("/api/v1/shifts")
async def create_shift(
    payload: Dict[str, Any],
    store: AttendanceStore = Depends(get_store),
    actor_id: Optional[str] = Depends(get_actor),
) -> JSONResponse:
    saved = await save_shift(store, actor_id, _shift_payload(payload))
    return JSONResponse(status_code=201, content=_record(saved))


@app.put("/api/v1/shifts/{shift_id}")
async def update_shift(
    shift_id: int,
    payload: Dict[str, Any],
    store: AttendanceStore = Depends(get_store),
    actor_id: Optional[str] = Depends(get_actor),
) -> JSONResponse:
    values = _shift_payload(payload)
    values["id"] = shift_id
    saved = await save_shift(store, actor_id, values)
    return JSONResponse(content=_record(saved))


@app.delete("/api/v1/shifts/{shift_id}")
async def delete_shift(
    shift_id: int,
    store: AttendanceStore = Depends(get_store),
    actor_id: Optional[str] = Depends(get_actor),
) -> JSONResponse:
    await remove_shift(store, actor_id, shift_id)
    return JSONResponse(content={"deleted": shift_id})


@app.get("/api/v1/pay-rates")
async def pay_rates(
    store: AttendanceStore = Depends(get_store),
    actor_id: Optional[str] = Depends(get_actor),
) -> JSONResponse:
    await authorize(store, actor_id, Action.EDIT_PAY_RATE)
    profiles = await store.list_profiles(DEFAULT_STORE_ID, only_active=True)
    rates = {rate.staff_id: rate for rate in await store.list_pay_rates(DEFAULT_STORE_ID)}
    entries = []
    for profile in sorted(profiles, key=lambda item: (item.display_name.casefold(), item.id)):
        rate = rates.get(profile.id)
        entries.append(
            {
                "staff_id": profile.id,
                "staff_name": profile.display_name,
                "role": profile.role,
                "weekday_rate": rate.weekday_rate if rate else None,
                "saturday_rate": rate.saturday_rate if rate else None,
                "sunday_rate": rate.sunday_rate if rate else None,
            }
        )
    return JSONResponse(content=jsonable_encoder({"pay_rates": entries}))


@app.put("/api/v1/pay-rates/{staff_id}")
async def update_pay_rate(
    staff_id: str,
    payload: Dict[str, Any],
    store: AttendanceStore = Depends(get_store),
    actor_id: Optional[str] = Depends(get_actor),
) -> JSONResponse:
    saved = await save_pay_rate(store, actor_id, staff_id, payload)
    return JSONResponse(content=_record(saved))
