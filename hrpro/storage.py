"""On-disk stores for employee contracts and the company logo.

Both stores keep relative paths in the database and refuse any path that
resolves outside their root directory.
"""

from __future__ import annotations

import os
import re
import secrets
import time
from dataclasses import dataclass
from pathlib import Path, PurePosixPath

from hrpro.errors import NotFoundError, ValidationError


DIR_MODE = 0o700
FILE_MODE = 0o600
CONTRACT_EXTENSIONS = {".pdf", ".doc", ".docx"}
_EXTENSION_SANITIZER = re.compile(r"[^a-zA-Z0-9._-]+")


class UnsafePathError(ValueError):
    pass


@dataclass(frozen=True)
class StoredFile:
    filename: str
    mime_type: str
    data: bytes


def _write_private(path: Path, data: bytes) -> None:
    fd = os.open(path, os.O_WRONLY | os.O_CREAT | os.O_TRUNC, FILE_MODE)
    with os.fdopen(fd, "wb") as handle:
        handle.write(data)


class LocalFileStore:
    def __init__(self, root_dir: str | Path) -> None:
        text = str(root_dir or "").strip()
        if not text:
            raise ValueError("store root directory is required")
        self.root = Path(text).resolve()
        self.root.mkdir(mode=DIR_MODE, parents=True, exist_ok=True)

    def resolve(self, relative_path: str) -> Path:
        cleaned = (relative_path or "").strip().replace("\\", "/").lstrip("/")
        if not cleaned:
            raise UnsafePathError("path is required")
        full = (self.root / PurePosixPath(cleaned)).resolve()
        if full != self.root and self.root not in full.parents:
            raise UnsafePathError("path escapes the store root")
        return full

    def relative(self, full_path: Path) -> str:
        return full_path.relative_to(self.root).as_posix()

    def delete(self, relative_path: str | None) -> None:
        if not (relative_path or "").strip():
            return
        self.resolve(relative_path).unlink(missing_ok=True)


class ContractStore(LocalFileStore):
    def save_contract(self, employee_id: int, extension: str, data: bytes) -> str:
        if employee_id is None or employee_id <= 0:
            raise ValidationError("employee id must be positive")
        if not data:
            raise ValidationError("contract file is required")
        ext = normalize_contract_extension(extension)
        if not ext:
            raise ValidationError("invalid contract extension")

        directory = self.root / "employees" / str(employee_id) / "contract"
        directory.mkdir(mode=DIR_MODE, parents=True, exist_ok=True)
        path = directory / f"{time.time_ns()}-{secrets.token_hex(4)}{ext}"
        _write_private(path, data)
        return self.relative(path)

    def read_contract(self, relative_path: str) -> bytes:
        try:
            path = self.resolve(relative_path)
        except UnsafePathError as exc:
            raise NotFoundError("contract file not found") from exc
        try:
            return path.read_bytes()
        except FileNotFoundError as exc:
            raise NotFoundError("contract file not found") from exc

    def delete_contract(self, relative_path: str | None) -> None:
        self.delete(relative_path)


class LogoStore(LocalFileStore):
    BRANDING_DIR = "branding"

    def __init__(self, root_dir: str | Path) -> None:
        super().__init__(root_dir)
        (self.root / self.BRANDING_DIR).mkdir(mode=DIR_MODE, parents=True, exist_ok=True)

    def save_logo(self, extension: str, data: bytes) -> str:
        ext = sanitize_logo_extension(extension) or ".bin"
        path = self.root / self.BRANDING_DIR / f"logo_{secrets.token_hex(8)}{ext}"
        _write_private(path, data)
        return self.relative(path)

    def read_logo(self, logo_path: str) -> StoredFile:
        path = self._branding_path(logo_path)
        try:
            data = path.read_bytes()
        except FileNotFoundError as exc:
            raise NotFoundError("logo not found") from exc
        return StoredFile(filename=path.name, mime_type=sniff_image_mime(data) or "application/octet-stream", data=data)

    def delete_logo(self, logo_path: str | None) -> None:
        try:
            path = self._branding_path(logo_path)
        except NotFoundError:
            return
        path.unlink(missing_ok=True)

    def _branding_path(self, logo_path: str | None) -> Path:
        cleaned = (logo_path or "").strip().replace("\\", "/").lstrip("/")
        if not cleaned.startswith(self.BRANDING_DIR + "/"):
            raise NotFoundError("logo not found")
        try:
            return self.resolve(cleaned)
        except UnsafePathError as exc:
            raise NotFoundError("logo not found") from exc


def normalize_contract_extension(value: str | None) -> str:
    ext = (value or "").strip().lower()
    if not ext:
        return ""
    if not ext.startswith("."):
        ext = "." + ext
    return ext if ext in CONTRACT_EXTENSIONS else ""


def sanitize_logo_extension(value: str | None) -> str:
    ext = (value or "").strip().lower()
    if not ext:
        return ""
    if not ext.startswith("."):
        ext = "." + ext
    ext = _EXTENSION_SANITIZER.sub("", ext)[:8]
    return ext if len(ext) > 1 else ""


def sniff_image_mime(data: bytes) -> str:
    if data.startswith(b"\x89PNG\r\n\x1a\n"):
        return "image/png"
    if data.startswith(b"\xff\xd8\xff"):
        return "image/jpeg"
    if len(data) >= 12 and data[:4] == b"RIFF" and data[8:12] == b"WEBP":
        return "image/webp"
    return ""
