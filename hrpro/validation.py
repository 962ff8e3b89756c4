"""Input parsing helpers shared by the engines."""

from __future__ import annotations

import re
from datetime import date

from hrpro.errors import ValidationError


MONTH_PATTERN = re.compile(r"^\d{4}-\d{2}$")
DATE_PATTERN = re.compile(r"^\d{4}-\d{2}-\d{2}$")


def parse_iso_date(value: str | date | None, field: str = "date") -> date:
    if isinstance(value, date):
        return value
    text = (value or "").strip()
    if not text:
        raise ValidationError(f"{field} is required")
    if not DATE_PATTERN.match(text):
        raise ValidationError(f"{field} must be YYYY-MM-DD")
    try:
        return date.fromisoformat(text)
    except ValueError as exc:
        raise ValidationError(f"{field} must be YYYY-MM-DD") from exc


def parse_optional_date(value: str | date | None, field: str) -> date | None:
    if value is None or (isinstance(value, str) and not value.strip()):
        return None
    return parse_iso_date(value, field)


def normalize_optional(value: str | None) -> str | None:
    if value is None:
        return None
    trimmed = value.strip()
    return trimmed or None


def validate_month(value: str | None, field: str = "month") -> str:
    month = (value or "").strip()
    if not MONTH_PATTERN.match(month):
        raise ValidationError(f"{field} must be in YYYY-MM format")
    if not 1 <= int(month[5:7]) <= 12:
        raise ValidationError(f"{field} must be in YYYY-MM format")
    return month


def require_positive_id(value: int | None, field: str = "id") -> int:
    if value is None or value <= 0:
        raise ValidationError(f"{field} must be positive")
    return value
