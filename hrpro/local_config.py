"""Per-user configuration file: database connection and JWT secret.

The file lives at ``<config dir>/hrpro/config.json`` with mode 0600 inside a
0700 directory. Writes go through a temp file, a rename and a directory fsync
so that a crash never leaves a half-written file behind.
"""

from __future__ import annotations

import json
import os
from dataclasses import asdict, dataclass, field
from pathlib import Path
from urllib.parse import quote

from hrpro.errors import ConfigError
from hrpro.security import generate_jwt_secret


APP_DIR_NAME = "hrpro"
CONFIG_FILE_NAME = "config.json"
DIR_MODE = 0o700
FILE_MODE = 0o600


@dataclass
class DatabaseConfig:
    host: str = ""
    port: int = 5432
    database: str = ""
    user: str = ""
    password: str = ""
    sslmode: str = "disable"

    def normalized(self) -> "DatabaseConfig":
        return DatabaseConfig(
            host=self.host.strip(),
            port=self.port,
            database=self.database.strip(),
            user=self.user.strip(),
            password=self.password,
            sslmode=self.sslmode.strip(),
        )

    def validate(self) -> None:
        if not self.host.strip():
            raise ConfigError("database host is required")
        if not 1 <= int(self.port) <= 65535:
            raise ConfigError("database port must be between 1 and 65535")
        if not self.database.strip():
            raise ConfigError("database name is required")
        if not self.user.strip():
            raise ConfigError("database user is required")
        if not self.sslmode.strip():
            raise ConfigError("database sslmode is required")

    def connection_string(self) -> str:
        cfg = self.normalized()
        credentials = quote(cfg.user, safe="")
        if cfg.password:
            credentials += ":" + quote(cfg.password, safe="")
        return (
            f"postgresql+psycopg://{credentials}@{cfg.host}:{cfg.port}/"
            f"{quote(cfg.database, safe='')}?sslmode={quote(cfg.sslmode, safe='')}"
        )


@dataclass
class LocalConfig:
    database: DatabaseConfig | None = None
    jwt_secret: str = ""
    extra: dict = field(default_factory=dict)

    def to_json(self) -> dict:
        payload = dict(self.extra)
        if self.database is not None:
            payload["database"] = asdict(self.database)
        if self.jwt_secret:
            payload["jwtSecret"] = self.jwt_secret
        return payload


def parse_port(value: str | int) -> int:
    try:
        port = int(str(value).strip())
    except ValueError as exc:
        raise ConfigError("database port must be a number") from exc
    if not 1 <= port <= 65535:
        raise ConfigError("database port must be between 1 and 65535")
    return port


def user_config_dir() -> Path:
    override = os.getenv("APP_CONFIG_DIR", "").strip()
    if override:
        return Path(override)
    xdg = os.getenv("XDG_CONFIG_HOME", "").strip()
    if xdg:
        return Path(xdg)
    return Path.home() / ".config"


def app_config_dir() -> Path:
    return user_config_dir() / APP_DIR_NAME


def config_file_path() -> Path:
    return app_config_dir() / CONFIG_FILE_NAME


def load_local_config(path: Path | None = None) -> LocalConfig:
    path = path or config_file_path()
    try:
        raw = path.read_text(encoding="utf-8")
    except FileNotFoundError:
        return LocalConfig()
    except OSError as exc:
        raise ConfigError(f"read config file: {exc}") from exc

    if not raw.strip():
        return LocalConfig()
    try:
        payload = json.loads(raw)
    except json.JSONDecodeError as exc:
        raise ConfigError("config file is not valid JSON") from exc
    if not isinstance(payload, dict):
        raise ConfigError("config file must contain a JSON object")

    database = None
    db_payload = payload.pop("database", None)
    if isinstance(db_payload, dict):
        database = DatabaseConfig(
            host=str(db_payload.get("host", "")),
            port=parse_port(db_payload.get("port", 5432)),
            database=str(db_payload.get("database", "")),
            user=str(db_payload.get("user", "")),
            password=str(db_payload.get("password", "")),
            sslmode=str(db_payload.get("sslmode", "")),
        )
    jwt_secret = str(payload.pop("jwtSecret", "") or "").strip()
    return LocalConfig(database=database, jwt_secret=jwt_secret, extra=payload)


def save_local_config(config: LocalConfig, path: Path | None = None) -> Path:
    path = path or config_file_path()
    directory = path.parent
    directory.mkdir(mode=DIR_MODE, parents=True, exist_ok=True)
    os.chmod(directory, DIR_MODE)

    tmp_path = path.with_name(path.name + ".tmp")
    data = json.dumps(config.to_json(), indent=2).encode("utf-8")
    fd = os.open(tmp_path, os.O_WRONLY | os.O_CREAT | os.O_TRUNC, FILE_MODE)
    try:
        with os.fdopen(fd, "wb") as handle:
            handle.write(data)
            handle.flush()
            os.fsync(handle.fileno())
        os.replace(tmp_path, path)
    except OSError:
        tmp_path.unlink(missing_ok=True)
        raise

    _fsync_directory(directory)
    os.chmod(path, FILE_MODE)
    return path


def _fsync_directory(directory: Path) -> None:
    dir_fd = os.open(directory, os.O_RDONLY)
    try:
        os.fsync(dir_fd)
    finally:
        os.close(dir_fd)


def load_local_database_config() -> DatabaseConfig | None:
    return load_local_config().database


def save_local_database_config(database: DatabaseConfig) -> DatabaseConfig:
    database = database.normalized()
    database.validate()
    current = load_local_config()
    current.database = database
    save_local_config(current)
    return database


def resolve_jwt_secret() -> str:
    env_secret = os.getenv("APP_JWT_SECRET", "").strip()
    if env_secret:
        return env_secret
    return load_local_config().jwt_secret


def ensure_jwt_secret() -> str:
    secret = resolve_jwt_secret()
    if secret:
        return secret

    current = load_local_config()
    current.jwt_secret = generate_jwt_secret()
    save_local_config(current)
    return current.jwt_secret


def resolve_database_url() -> str:
    env_url = os.getenv("APP_DB_CONNECTION_STRING", "").strip()
    if env_url:
        return env_url
    database = load_local_database_config()
    if database is None:
        raise ConfigError("database is not configured")
    database.validate()
    return database.connection_string()
