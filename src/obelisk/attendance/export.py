"""Attendance export for workshop hosts."""

from __future__ import annotations

import csv
import io
from collections.abc import Iterable

from obelisk.db.models import AttendanceRecord

CSV_COLUMNS = ["Name", "Email", "Check-in Time", "Method"]


def attendance_row(record: AttendanceRecord) -> dict[str, str]:
    user = record.user
    return {
        "Name": user.full_name if user else "",
        "Email": user.email if user else "",
        "Check-in Time": record.checked_in_at.isoformat() if record.checked_in_at else "",
        "Method": record.method,
    }


def attendance_csv(records: Iterable[AttendanceRecord]) -> str:
    """Render attendance rows as CSV text, header first."""
    buf = io.StringIO()
    writer = csv.DictWriter(buf, fieldnames=CSV_COLUMNS)
    writer.writeheader()
    for record in records:
        writer.writerow(attendance_row(record))
    return buf.getvalue()
