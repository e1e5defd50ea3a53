from __future__ import annotations

import csv
import datetime
import io
from decimal import Decimal
from pathlib import Path
from typing import Any, List, Sequence

from openpyxl import Workbook
from openpyxl.styles import Font, PatternFill
from openpyxl.utils import get_column_letter

from payroll.records import DayType, PayrollReport
from settings import BUSINESS_TZ, EXPORT_DIR

UNKNOWN = "-"
MONEY_FORMAT = "0.00"

SHIFT_HEADERS = [
    "Date",
    "Staff",
    "Day Type",
    "Rostered Start",
    "Rostered End",
    "Break (min)",
    "Clock In",
    "Clock Out",
    "Adjusted In",
    "Adjusted Out",
    "Source",
    "Minutes",
    "Hours",
    "Rate",
    "Pay",
]


def _cell(value: Any) -> Any:
    """Text form of a value, used for CSV cells and workbook dates."""
    if value is None:
        return UNKNOWN
    if isinstance(value, datetime.datetime):
        return value.astimezone(BUSINESS_TZ).strftime("%Y-%m-%d %H:%M")
    if isinstance(value, datetime.date):
        return value.isoformat()
    if isinstance(value, Decimal):
        return f"{value:.2f}"
    return value


def _sheet_value(value: Any) -> Any:
    if isinstance(value, Decimal):
        return float(value)
    return _cell(value)


def payroll_rows_table(report: PayrollReport) -> List[List[Any]]:
    table: List[List[Any]] = []
    for row in report.rows:
        punch = row.punch
        table.append(
            [
                row.work_date,
                row.staff_name,
                row.day_type.value,
                row.shift.shift_start,
                row.shift.shift_end,
                row.worked.break_minutes,
                punch.clock_in_at if punch else None,
                punch.clock_out_at if punch else None,
                punch.adjusted_clock_in_at if punch else None,
                punch.adjusted_clock_out_at if punch else None,
                row.source.value,
                row.resolved_minutes,
                row.hours,
                row.rate,
                row.pay,
            ]
        )
    return table


def staff_summary_table(report: PayrollReport) -> List[List[Any]]:
    table: List[List[Any]] = []
    for entry in report.per_staff:
        line: List[Any] = [entry.staff_name, entry.shift_count]
        for day in DayType:
            line.extend(
                [
                    entry.hours.get(day),
                    entry.rates.get(day),
                    entry.pay.get(day),
                ]
            )
        line.extend([entry.total_hours, entry.total_pay])
        table.append(line)
    return table


def _staff_headers() -> List[str]:
    headers = ["Staff", "Shifts"]
    for day in DayType:
        label = day.value.title()
        headers.extend([f"{label} Hours", f"{label} Rate", f"{label} Pay"])
    headers.extend(["Total Hours", "Total Pay"])
    return headers


def export_payroll_csv(report: PayrollReport) -> str:
    buffer = io.StringIO()
    writer = csv.writer(buffer)
    writer.writerow(SHIFT_HEADERS)
    writer.writerows([_cell(value) for value in line] for line in payroll_rows_table(report))
    return buffer.getvalue()


def _put(ws, row: int, column: int, value: Any):
    cell = ws.cell(row=row, column=column, value=_sheet_value(value))
    if isinstance(value, Decimal):
        cell.number_format = MONEY_FORMAT
    return cell


def _write_sheet(ws, headers: Sequence[str], table: Sequence[Sequence[Any]]) -> None:
    header_fill = PatternFill(start_color="366092", end_color="366092", fill_type="solid")
    header_font = Font(bold=True, color="FFFFFF")
    for col_idx, header in enumerate(headers, start=1):
        cell = ws.cell(row=1, column=col_idx, value=header)
        cell.font = header_font
        cell.fill = header_fill
        ws.column_dimensions[get_column_letter(col_idx)].width = max(12, len(header) + 2)
    for row_idx, line in enumerate(table, start=2):
        for col_idx, value in enumerate(line, start=1):
            _put(ws, row_idx, col_idx, value)


def export_payroll_xlsx(report: PayrollReport) -> bytes:
    """Workbook with a Shifts sheet and a Staff Summary sheet ending in a store total."""
    wb = Workbook()
    shifts = wb.active
    shifts.title = "Shifts"
    _write_sheet(shifts, SHIFT_HEADERS, payroll_rows_table(report))

    summary = wb.create_sheet("Staff Summary")
    headers = _staff_headers()
    _write_sheet(summary, headers, staff_summary_table(report))
    total_row = len(report.per_staff) + 2
    summary.cell(row=total_row, column=1, value="Store Total").font = Font(bold=True)
    summary.cell(row=total_row, column=2, value=report.store.shift_count).font = Font(bold=True)
    _put(summary, total_row, len(headers) - 1, report.store.total_hours).font = Font(bold=True)
    _put(summary, total_row, len(headers), report.store.total_pay).font = Font(bold=True)

    buffer = io.BytesIO()
    wb.save(buffer)
    return buffer.getvalue()


def export_filename(report: PayrollReport, format: str) -> str:
    scope = report.staff_id[:8] if report.staff_id else "all"
    return f"payroll_{report.from_date.isoformat()}_{report.to_date.isoformat()}_{scope}.{format}"


def write_payroll_export(report: PayrollReport, format: str = "csv", target_dir: Path = EXPORT_DIR) -> Path:
    format = format.lower()
    if format not in {"csv", "xlsx"}:
        raise ValueError("format must be 'csv' or 'xlsx'")
    target_dir.mkdir(parents=True, exist_ok=True)
    filename = target_dir / export_filename(report, format)
    if format == "csv":
        filename.write_text(export_payroll_csv(report), encoding="utf-8")
    else:
        filename.write_bytes(export_payroll_xlsx(report))
    return filename
