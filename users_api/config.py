"""Configuration management for the users API."""
from __future__ import annotations

import os
from dataclasses import dataclass, fields, replace
from pathlib import Path
from typing import Dict, Mapping, Optional, Tuple

import yaml

from .database import MEMORY_PATH, DatabasePath, resolve_database_path

DEFAULT_HOST = "0.0.0.0"
DEFAULT_PORT = 8000
DEFAULT_SERVICE_NAME = "Users API"

CONFIG_ENV = "USERS_API_CONFIG"


def _parse_port(value: object) -> int:
    try:
        port = int(str(value).strip())
    except ValueError as exc:
        raise ValueError(f"Invalid port value {value!r}") from exc
    if not 1 <= port <= 65535:
        raise ValueError(f"Port {port} is outside the range 1-65535")
    return port


def _parse_origins(value: object) -> Tuple[str, ...]:
    if isinstance(value, str):
        items = value.split(",")
    else:
        items = [str(item) for item in value]  # type: ignore[union-attr]
    return tuple(item.strip() for item in items if item.strip())


def _resolve_path(raw: object, base_path: Optional[Path]) -> DatabasePath:
    text = str(raw)
    if text == MEMORY_PATH:
        return MEMORY_PATH
    candidate = Path(text).expanduser()
    if not candidate.is_absolute() and base_path is not None:
        candidate = base_path / candidate
    return candidate.resolve(strict=False)


@dataclass(frozen=True)
class Settings:
    """Runtime settings for the HTTP service and its database."""

    host: str = DEFAULT_HOST
    port: int = DEFAULT_PORT
    database_path: DatabasePath = resolve_database_path(None)
    cors_origins: Tuple[str, ...] = ("*",)
    log_level: str = "INFO"
    environment: str = "development"
    service_name: str = DEFAULT_SERVICE_NAME

    @staticmethod
    def from_dict(data: Mapping[str, object], base_path: Path | None = None) -> "Settings":
        """Create :class:`Settings` from raw mapping data, e.g. a YAML document."""

        known = {item.name for item in fields(Settings)}
        unknown = set(data) - known
        if unknown:
            raise ValueError(f"Unknown configuration fields: {', '.join(sorted(unknown))}")

        values: Dict[str, object] = {}
        if "host" in data:
            values["host"] = str(data["host"])
        if "port" in data:
            values["port"] = _parse_port(data["port"])
        if data.get("database_path"):
            values["database_path"] = _resolve_path(data["database_path"], base_path)
        if "cors_origins" in data:
            values["cors_origins"] = _parse_origins(data["cors_origins"])
        if "log_level" in data:
            values["log_level"] = str(data["log_level"]).upper()
        if "environment" in data:
            values["environment"] = str(data["environment"])
        if "service_name" in data:
            values["service_name"] = str(data["service_name"])
        return Settings(**values)  # type: ignore[arg-type]


def resolve_config_path(env_value: Optional[str]) -> Optional[Path]:
    """Resolve the path to the optional YAML configuration file."""

    if not env_value:
        return None
    return Path(env_value).expanduser().resolve(strict=False)


def _apply_environment(settings: Settings, environ: Mapping[str, str]) -> Settings:
    overrides: Dict[str, object] = {}
    if environ.get("USERS_API_HOST"):
        overrides["host"] = environ["USERS_API_HOST"].strip()
    if environ.get("USERS_API_PORT"):
        overrides["port"] = _parse_port(environ["USERS_API_PORT"])
    if environ.get("USERS_API_DB_PATH"):
        overrides["database_path"] = resolve_database_path(environ["USERS_API_DB_PATH"])
    if environ.get("USERS_API_CORS_ORIGINS"):
        overrides["cors_origins"] = _parse_origins(environ["USERS_API_CORS_ORIGINS"])
    if environ.get("USERS_API_LOG_LEVEL"):
        overrides["log_level"] = environ["USERS_API_LOG_LEVEL"].strip().upper()
    if environ.get("USERS_API_ENV"):
        overrides["environment"] = environ["USERS_API_ENV"].strip()
    if not overrides:
        return settings
    return replace(settings, **overrides)  # type: ignore[arg-type]


def load_settings(
    config_path: Optional[Path] = None,
    environ: Optional[Mapping[str, str]] = None,
) -> Settings:
    """Load settings from an optional YAML file, then apply environment overrides."""

    if environ is None:
        environ = os.environ

    path = config_path or resolve_config_path(environ.get(CONFIG_ENV))
    if path is not None:
        with path.open("r", encoding="utf-8") as handle:
            raw = yaml.safe_load(handle) or {}
        if not isinstance(raw, dict):
            raise ValueError("Configuration file must contain a mapping at the top level")
        settings = Settings.from_dict(raw, base_path=path.parent)
    else:
        settings = Settings()

    return _apply_environment(settings, environ)


__all__ = ["CONFIG_ENV", "Settings", "load_settings", "resolve_config_path"]
