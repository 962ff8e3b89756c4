"""CSV export helpers shared by payroll and reports."""

from __future__ import annotations

import csv
import io
from dataclasses import dataclass
from datetime import date, datetime
from decimal import Decimal
from typing import Any


CSV_MIME_TYPE = "text/csv;charset=utf-8"


@dataclass(frozen=True)
class ExportFile:
    filename: str
    mime_type: str
    data: bytes


def to_csv_bytes(headers: list[str], rows: list[list[Any]]) -> bytes:
    """UTF-8 CSV without BOM, one header row."""
    out = io.StringIO()
    writer = csv.writer(out, lineterminator="\n")
    writer.writerow(headers)
    for row in rows:
        writer.writerow([_stringify(value) for value in row])
    return out.getvalue().encode("utf-8")


def csv_export(filename: str, headers: list[str], rows: list[list[Any]]) -> ExportFile:
    return ExportFile(filename=filename, mime_type=CSV_MIME_TYPE, data=to_csv_bytes(headers, rows))


def format_money(value: Decimal | float | int | None) -> str:
    return f"{Decimal(str(value or 0)):.2f}"


def _stringify(value: Any) -> str:
    if value is None:
        return ""
    if isinstance(value, datetime):
        return value.isoformat()
    if isinstance(value, date):
        return value.isoformat()
    if isinstance(value, bool):
        return "true" if value else "false"
    if hasattr(value, "value"):
        return str(value.value)
    return str(value)
