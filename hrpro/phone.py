"""Phone number normalization to E.164."""

from __future__ import annotations

import re

from hrpro.errors import ValidationError


E164_PATTERN = re.compile(r"^\+[1-9][0-9]{6,14}$")
CALLING_CODE_PATTERN = re.compile(r"^\+[1-9][0-9]{0,3}$")
NON_DIGIT_PATTERN = re.compile(r"[^0-9]")
PHONE_INPUT_PATTERN = re.compile(r"^[0-9+()\-\s]{7,20}$")

CALLING_CODES_BY_ISO2 = {
    "UG": "+256",
    "TZ": "+255",
    "KE": "+254",
    "RW": "+250",
    "BI": "+257",
    "US": "+1",
}


def normalize_calling_code(value: str | None) -> str:
    trimmed = (value or "").strip()
    if not trimmed.startswith("+"):
        trimmed = "+" + NON_DIGIT_PATTERN.sub("", trimmed)
    return trimmed if CALLING_CODE_PATTERN.match(trimmed) else ""


def infer_calling_code(iso2: str | None) -> str:
    return CALLING_CODES_BY_ISO2.get((iso2 or "").strip().upper(), "")


def normalize_phone(value: str | None, default_iso2: str = "UG", default_calling_code: str = "+256") -> str:
    """Return the E.164 form of a phone number.

    Numbers starting with ``+`` or ``00`` are taken as international. Anything
    else is a national number: leading zeros are dropped and the default
    calling code is prepended.
    """
    trimmed = (value or "").strip()
    if not trimmed:
        raise ValidationError("phone is required")

    if trimmed.startswith("+"):
        candidate = "+" + NON_DIGIT_PATTERN.sub("", trimmed[1:])
        if not E164_PATTERN.match(candidate):
            raise ValidationError("phone is invalid")
        return candidate

    digits = NON_DIGIT_PATTERN.sub("", trimmed)
    if digits.startswith("00") and len(digits) > 2:
        candidate = "+" + digits[2:]
        if not E164_PATTERN.match(candidate):
            raise ValidationError("phone is invalid")
        return candidate

    calling_code = normalize_calling_code(default_calling_code) or infer_calling_code(default_iso2)
    if not calling_code:
        raise ValidationError("default country calling code is not configured")

    while digits.startswith("0") and len(digits) > 1:
        digits = digits[1:]
    candidate = calling_code + digits
    if not E164_PATTERN.match(candidate):
        raise ValidationError("phone is invalid")
    return candidate
