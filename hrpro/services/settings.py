"""Company-wide settings stored as JSON values keyed by name.

Reads fill any missing or invalid value with its default so callers always get
a complete snapshot. Writes are admin-only.
"""

from __future__ import annotations

import base64
import os
import re
from dataclasses import asdict, dataclass, field, fields, replace
from typing import Any
from urllib.parse import urlsplit, urlunsplit

from email_validator import EmailNotValidError, validate_email
from flask import current_app

from hrpro.authorization import Claims, Role, actor_id, require_claims, require_roles
from hrpro.errors import NotFoundError, ValidationError
from hrpro.extensions import db
from hrpro.models import AppSetting, now_utc
from hrpro.services.audit import AuditedService
from hrpro.storage import LogoStore, StoredFile, sniff_image_mime


KEY_COMPANY_PROFILE = "company_profile"
KEY_CURRENCY = "currency"
KEY_LUNCH_DEFAULTS = "lunch_defaults"
KEY_PAYROLL_DISPLAY = "payroll_display"
KEY_PHONE_DEFAULTS = "phone_defaults"

DEFAULT_COMPANY_NAME = "HISP HR System"
DEFAULT_CURRENCY_CODE = "TZS"
DEFAULT_CURRENCY_SYMBOL = "TZS"
DEFAULT_CURRENCY_DECIMALS = 0
DEFAULT_LUNCH_PLATE_COST_AMOUNT = 12000
DEFAULT_LUNCH_CONTRIBUTION_AMOUNT = 4000
DEFAULT_PAYROLL_DECIMALS = 2
DEFAULT_COUNTRY_NAME = "Uganda"
DEFAULT_COUNTRY_ISO2 = "UG"
DEFAULT_COUNTRY_CALLING_CODE = "+256"

ENV_DEFAULT_COUNTRY_NAME = "APP_DEFAULT_COUNTRY_NAME"
ENV_DEFAULT_COUNTRY_ISO2 = "APP_DEFAULT_COUNTRY_ISO2"
ENV_DEFAULT_COUNTRY_CALLING_CODE = "APP_DEFAULT_COUNTRY_CALLING_CODE"

MAX_LOGO_SIZE_BYTES = 5 * 1024 * 1024
LOGO_MIME_EXTENSIONS = {
    "image/png": ".png",
    "image/jpeg": ".jpg",
    "image/webp": ".webp",
}

CURRENCY_CODE_PATTERN = re.compile(r"^[A-Z0-9]{2,8}$")
SUPPORT_PHONE_PATTERN = re.compile(r"^[0-9+()\-\s]{5,32}$")
CALLING_CODE_PATTERN = re.compile(r"^\+[1-9][0-9]{0,3}$")

SETTINGS_ADMIN_ROLES = {Role.ADMIN}


@dataclass
class CompanyProfileSettings:
    name: str = DEFAULT_COMPANY_NAME
    logo_path: str = ""
    logo_updated_at: str | None = None
    support_email: str = ""
    support_phone: str = ""
    support_website: str = ""
    copyright_holder: str = ""


@dataclass
class CurrencySettings:
    code: str = DEFAULT_CURRENCY_CODE
    symbol: str = DEFAULT_CURRENCY_SYMBOL
    decimals: int = DEFAULT_CURRENCY_DECIMALS


@dataclass
class LunchDefaultsSettings:
    plate_cost_amount: int = DEFAULT_LUNCH_PLATE_COST_AMOUNT
    staff_contribution_amount: int = DEFAULT_LUNCH_CONTRIBUTION_AMOUNT


@dataclass
class PayrollDisplaySettings:
    decimals: int = DEFAULT_PAYROLL_DECIMALS
    rounding_enabled: bool = False


@dataclass
class PhoneDefaultsSettings:
    default_country_name: str = DEFAULT_COUNTRY_NAME
    default_country_iso2: str = DEFAULT_COUNTRY_ISO2
    default_country_calling_code: str = DEFAULT_COUNTRY_CALLING_CODE


@dataclass
class Settings:
    company: CompanyProfileSettings = field(default_factory=CompanyProfileSettings)
    currency: CurrencySettings = field(default_factory=CurrencySettings)
    lunch_defaults: LunchDefaultsSettings = field(default_factory=LunchDefaultsSettings)
    payroll_display: PayrollDisplaySettings = field(default_factory=PayrollDisplaySettings)
    phone_defaults: PhoneDefaultsSettings = field(default_factory=PhoneDefaultsSettings)


@dataclass
class CompanyProfileInput:
    name: str
    support_email: str = ""
    support_phone: str = ""
    support_website: str = ""
    copyright_holder: str = ""


@dataclass
class UpdateSettingsInput:
    company: CompanyProfileInput
    currency: CurrencySettings = field(default_factory=CurrencySettings)
    lunch_defaults: LunchDefaultsSettings = field(default_factory=LunchDefaultsSettings)
    payroll_display: PayrollDisplaySettings = field(default_factory=PayrollDisplaySettings)
    phone_defaults: PhoneDefaultsSettings = field(default_factory=PhoneDefaultsSettings)
    logo_path: str | None = None


@dataclass
class CompanyProfile:
    name: str
    logo_path: str = ""
    logo_data_url: str = ""
    logo_updated_at: str | None = None
    support_email: str = ""
    support_phone: str = ""
    support_website: str = ""
    copyright_holder: str = ""


def _as_int(value: Any, default: int) -> int:
    if isinstance(value, bool):
        return default
    try:
        return int(value)
    except (TypeError, ValueError):
        return default


def _overlay(default: Any, payload: dict[str, Any]) -> Any:
    """Copy known keys from a stored payload over a defaults dataclass."""
    values = {}
    for item in fields(default):
        if item.name not in payload:
            continue
        current = getattr(default, item.name)
        raw = payload[item.name]
        if isinstance(current, bool):
            values[item.name] = bool(raw)
        elif isinstance(current, int):
            values[item.name] = _as_int(raw, current)
        elif raw is None:
            values[item.name] = None if current is None else ""
        else:
            values[item.name] = str(raw)
    return replace(default, **values)


def normalize_url(raw: str | None) -> str:
    """Return an http(s) URL with a host, or raise ValidationError.

    A bare host such as ``example.com`` is treated as https.
    """
    trimmed = (raw or "").strip()
    if not trimmed:
        raise ValidationError("URL is required")
    parts = urlsplit(trimmed)
    if not parts.scheme and not parts.netloc and "." in trimmed:
        parts = urlsplit("https://" + trimmed)
    if parts.scheme.lower() not in ("http", "https"):
        raise ValidationError("URL must use http or https")
    if not parts.netloc.strip():
        raise ValidationError("URL host is required")
    return urlunsplit((parts.scheme.lower(), parts.netloc, parts.path or "/", parts.query, parts.fragment))


def normalize_optional_url(raw: str | None) -> str:
    if not (raw or "").strip():
        return ""
    try:
        return normalize_url(raw)
    except ValidationError:
        return ""


def normalize_currency(value: CurrencySettings) -> CurrencySettings:
    code = (value.code or "").strip().upper() or DEFAULT_CURRENCY_CODE
    symbol = (value.symbol or "").strip() or DEFAULT_CURRENCY_SYMBOL
    decimals = value.decimals if 0 <= value.decimals <= 6 else DEFAULT_CURRENCY_DECIMALS
    return CurrencySettings(code=code, symbol=symbol, decimals=decimals)


def normalize_phone_defaults(value: PhoneDefaultsSettings) -> PhoneDefaultsSettings:
    name = (value.default_country_name or "").strip() or DEFAULT_COUNTRY_NAME
    iso2 = (value.default_country_iso2 or "").strip().upper() or DEFAULT_COUNTRY_ISO2
    calling_code = (value.default_country_calling_code or "").strip() or DEFAULT_COUNTRY_CALLING_CODE
    if not calling_code.startswith("+"):
        calling_code = "+" + calling_code
    return PhoneDefaultsSettings(
        default_country_name=name, default_country_iso2=iso2, default_country_calling_code=calling_code
    )


def validate_company_profile(data: CompanyProfileInput) -> None:
    name = (data.name or "").strip()
    if not name:
        raise ValidationError("company name is required")
    if len(name) > 120:
        raise ValidationError("company name is too long")
    email = (data.support_email or "").strip()
    if email:
        try:
            validate_email(email, check_deliverability=False)
        except EmailNotValidError as exc:
            raise ValidationError("support email is invalid") from exc
    phone = (data.support_phone or "").strip()
    if phone and not SUPPORT_PHONE_PATTERN.match(phone):
        raise ValidationError("support phone is invalid")
    if (data.support_website or "").strip():
        try:
            normalize_url(data.support_website)
        except ValidationError as exc:
            raise ValidationError("support website must be a valid http(s) URL") from exc
    if len((data.copyright_holder or "").strip()) > 120:
        raise ValidationError("copyright holder is too long")


def validate_phone_defaults(value: PhoneDefaultsSettings) -> PhoneDefaultsSettings:
    value = normalize_phone_defaults(value)
    if len(value.default_country_iso2) != 2 or not value.default_country_iso2.isalpha():
        raise ValidationError("default country ISO2 must be 2 letters")
    if len(value.default_country_name) > 80:
        raise ValidationError("default country name is too long")
    if not CALLING_CODE_PATTERN.match(value.default_country_calling_code):
        raise ValidationError("default country calling code is invalid")
    return value


def validate_settings(data: UpdateSettingsInput) -> None:
    validate_company_profile(data.company)
    if not CURRENCY_CODE_PATTERN.match((data.currency.code or "").strip().upper()):
        raise ValidationError("currency code must be 2-8 uppercase letters/numbers")
    if not (data.currency.symbol or "").strip():
        raise ValidationError("currency symbol is required")
    if not 0 <= data.currency.decimals <= 6:
        raise ValidationError("currency decimals must be between 0 and 6")
    if data.lunch_defaults.plate_cost_amount <= 0:
        raise ValidationError("lunch plate cost must be positive")
    if data.lunch_defaults.staff_contribution_amount < 0:
        raise ValidationError("lunch staff contribution must be >= 0")
    if not 0 <= data.payroll_display.decimals <= 6:
        raise ValidationError("payroll decimals must be between 0 and 6")
    validate_phone_defaults(data.phone_defaults)


def validate_logo(mime_type: str | None, data: bytes | None) -> tuple[str, str]:
    """Check size and content type; return the sniffed MIME type and its extension."""
    if not data:
        raise ValidationError("logo file is required")
    if len(data) > MAX_LOGO_SIZE_BYTES:
        raise ValidationError(f"logo file exceeds {MAX_LOGO_SIZE_BYTES} bytes")

    provided = (mime_type or "").strip().lower().split(";", 1)[0].strip()
    detected = sniff_image_mime(data)
    if provided and provided not in LOGO_MIME_EXTENSIONS:
        raise ValidationError("unsupported image type")
    if detected not in LOGO_MIME_EXTENSIONS:
        raise ValidationError("unsupported image type")
    if provided and provided != detected:
        raise ValidationError("image content type mismatch")
    return detected, LOGO_MIME_EXTENSIONS[detected]


class SettingsService(AuditedService):
    def __init__(self, logo_store: LogoStore | None = None) -> None:
        super().__init__()
        self.logo_store = logo_store

    def set_logo_store(self, store: LogoStore | None) -> None:
        self.logo_store = store

    def get_settings(self, claims: Claims | None) -> Settings:
        require_claims(claims)
        return self.load_settings()

    def update_settings(self, claims: Claims | None, data: UpdateSettingsInput) -> Settings:
        require_roles(claims, SETTINGS_ADMIN_ROLES)
        validate_settings(data)
        current = self.load_settings()

        company = CompanyProfileSettings(
            name=data.company.name.strip(),
            logo_path=current.company.logo_path if data.logo_path is None else data.logo_path.strip(),
            logo_updated_at=current.company.logo_updated_at,
            support_email=(data.company.support_email or "").strip(),
            support_phone=(data.company.support_phone or "").strip(),
            support_website=normalize_optional_url(data.company.support_website),
            copyright_holder=(data.company.copyright_holder or "").strip(),
        )
        user_id = actor_id(claims)
        self._put(KEY_COMPANY_PROFILE, company, user_id)
        self._put(KEY_CURRENCY, normalize_currency(data.currency), user_id)
        self._put(KEY_LUNCH_DEFAULTS, data.lunch_defaults, user_id)
        self._put(KEY_PAYROLL_DISPLAY, data.payroll_display, user_id)
        self._put(KEY_PHONE_DEFAULTS, normalize_phone_defaults(data.phone_defaults), user_id)
        db.session.commit()

        self.audit.record(
            user_id, "settings.update", "settings", None,
            {
                "currency_code": data.currency.code.strip().upper(),
                "plate_cost_amount": data.lunch_defaults.plate_cost_amount,
                "staff_contribution_amount": data.lunch_defaults.staff_contribution_amount,
                "payroll_decimals": data.payroll_display.decimals,
            },
        )
        return self.load_settings()

    def get_company_profile(self, claims: Claims | None) -> CompanyProfile:
        require_claims(claims)
        return self._company_profile(self.load_settings().company)

    def save_company_profile(self, claims: Claims | None, data: CompanyProfileInput) -> CompanyProfile:
        require_roles(claims, SETTINGS_ADMIN_ROLES)
        validate_company_profile(data)

        company = self.load_settings().company
        company.name = data.name.strip()
        company.support_email = (data.support_email or "").strip()
        company.support_phone = (data.support_phone or "").strip()
        company.support_website = normalize_optional_url(data.support_website)
        company.copyright_holder = (data.copyright_holder or "").strip()
        self._put(KEY_COMPANY_PROFILE, company, actor_id(claims))
        db.session.commit()

        self.audit.record(actor_id(claims), "settings.company_profile.update", "settings", None, {"name": company.name})
        return self._company_profile(company)

    def upload_company_logo(
        self, claims: Claims | None, filename: str | None, mime_type: str | None, data: bytes | None
    ) -> CompanyProfile:
        require_roles(claims, SETTINGS_ADMIN_ROLES)
        detected, extension = validate_logo(mime_type, data)
        store = self._require_store()

        company = self.load_settings().company
        previous_path = company.logo_path.strip()
        logo_path = store.save_logo(extension, data)

        company.logo_path = logo_path
        company.logo_updated_at = now_utc().isoformat()
        company.name = company.name or DEFAULT_COMPANY_NAME
        try:
            self._put(KEY_COMPANY_PROFILE, company, actor_id(claims))
            db.session.commit()
        except Exception:
            db.session.rollback()
            self._delete_logo_quietly(logo_path)
            raise

        if previous_path and previous_path != logo_path:
            self._delete_logo_quietly(previous_path)
        self.audit.record(
            actor_id(claims), "settings.logo.upload", "settings", None,
            {"filename": (filename or "").strip(), "mime_type": detected, "size_bytes": len(data)},
        )
        return self._company_profile(company)

    def remove_company_logo(self, claims: Claims | None) -> CompanyProfile:
        require_roles(claims, SETTINGS_ADMIN_ROLES)
        company = self.load_settings().company
        previous_path = company.logo_path.strip()

        company.logo_path = ""
        company.logo_updated_at = None
        self._put(KEY_COMPANY_PROFILE, company, actor_id(claims))
        db.session.commit()

        if previous_path:
            self._delete_logo_quietly(previous_path)
        self.audit.record(actor_id(claims), "settings.logo.remove", "settings", None, {"logo_path": previous_path})
        return self._company_profile(company)

    def get_company_logo(self, claims: Claims | None) -> StoredFile:
        require_claims(claims)
        if self.logo_store is None:
            raise NotFoundError("logo not found")
        logo_path = self.load_settings().company.logo_path.strip()
        if not logo_path:
            raise NotFoundError("logo not found")
        return self.logo_store.read_logo(logo_path)

    def get_lunch_defaults(self) -> tuple[int, int]:
        lunch = self.load_settings().lunch_defaults
        return lunch.plate_cost_amount, lunch.staff_contribution_amount

    def get_currency_settings(self) -> CurrencySettings:
        return self.load_settings().currency

    def get_payroll_formatting(self) -> tuple[str, int, bool]:
        settings = self.load_settings()
        return settings.currency.symbol, settings.payroll_display.decimals, settings.payroll_display.rounding_enabled

    def get_phone_defaults(self) -> tuple[str, str]:
        phone = self.load_settings().phone_defaults
        return phone.default_country_iso2, phone.default_country_calling_code

    def load_settings(self) -> Settings:
        result = Settings(
            company=_overlay(CompanyProfileSettings(), self._read(KEY_COMPANY_PROFILE)),
            currency=_overlay(CurrencySettings(), self._read(KEY_CURRENCY)),
            lunch_defaults=_overlay(LunchDefaultsSettings(), self._read(KEY_LUNCH_DEFAULTS)),
            payroll_display=_overlay(PayrollDisplaySettings(), self._read(KEY_PAYROLL_DISPLAY)),
            phone_defaults=_overlay(PhoneDefaultsSettings(), self._read(KEY_PHONE_DEFAULTS)),
        )

        company = result.company
        company.name = company.name.strip() or DEFAULT_COMPANY_NAME
        company.logo_path = company.logo_path.strip()
        company.support_email = company.support_email.strip()
        company.support_phone = company.support_phone.strip()
        company.support_website = normalize_optional_url(company.support_website)
        company.copyright_holder = company.copyright_holder.strip()

        result.currency = normalize_currency(result.currency)
        if result.lunch_defaults.plate_cost_amount <= 0:
            result.lunch_defaults.plate_cost_amount = DEFAULT_LUNCH_PLATE_COST_AMOUNT
        if result.lunch_defaults.staff_contribution_amount < 0:
            result.lunch_defaults.staff_contribution_amount = DEFAULT_LUNCH_CONTRIBUTION_AMOUNT
        if not 0 <= result.payroll_display.decimals <= 6:
            result.payroll_display.decimals = DEFAULT_PAYROLL_DECIMALS

        phone = result.phone_defaults
        phone.default_country_name = os.getenv(ENV_DEFAULT_COUNTRY_NAME, "").strip() or phone.default_country_name
        phone.default_country_iso2 = os.getenv(ENV_DEFAULT_COUNTRY_ISO2, "").strip() or phone.default_country_iso2
        phone.default_country_calling_code = (
            os.getenv(ENV_DEFAULT_COUNTRY_CALLING_CODE, "").strip() or phone.default_country_calling_code
        )
        result.phone_defaults = normalize_phone_defaults(phone)
        return result

    def _read(self, key: str) -> dict[str, Any]:
        item = db.session.get(AppSetting, key)
        if item is None or item.value_json is None:
            return {}
        if not isinstance(item.value_json, dict):
            raise ValidationError(f"invalid {key} setting payload")
        return item.value_json

    def _put(self, key: str, value: Any, user_id: int | None) -> None:
        payload = asdict(value)
        item = db.session.get(AppSetting, key)
        if item is None:
            db.session.add(AppSetting(key=key, value_json=payload, updated_by_user_id=user_id))
            return
        item.value_json = payload
        item.updated_by_user_id = user_id
        item.updated_at = now_utc()

    def _company_profile(self, company: CompanyProfileSettings) -> CompanyProfile:
        result = CompanyProfile(
            name=company.name,
            logo_path=company.logo_path,
            logo_updated_at=company.logo_updated_at,
            support_email=company.support_email,
            support_phone=company.support_phone,
            support_website=company.support_website,
            copyright_holder=company.copyright_holder,
        )
        if not company.logo_path.strip() or self.logo_store is None:
            return result
        try:
            logo = self.logo_store.read_logo(company.logo_path)
        except (NotFoundError, OSError):
            current_app.logger.warning("failed to read company logo %s", company.logo_path, exc_info=True)
            return result
        if logo.data:
            encoded = base64.b64encode(logo.data).decode("ascii")
            result.logo_data_url = f"data:{logo.mime_type or 'application/octet-stream'};base64,{encoded}"
        return result

    def _require_store(self) -> LogoStore:
        if self.logo_store is None:
            raise RuntimeError("logo store is not configured")
        return self.logo_store

    def _delete_logo_quietly(self, logo_path: str) -> None:
        if self.logo_store is None:
            return
        try:
            self.logo_store.delete_logo(logo_path)
        except OSError:
            current_app.logger.warning("failed to delete logo file %s", logo_path, exc_info=True)
