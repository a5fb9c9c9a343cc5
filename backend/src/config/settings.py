"""
Application settings read from a JSON file.

The file path comes from the caller, then ``NEOSTOCK_CONFIG_PATH``, then
``backend/config/settings.local.json``. Each top-level section maps onto one
frozen dataclass; keys that are absent (or blank) fall back to the field
default, and a missing required key raises ``KeyError``.
"""

from __future__ import annotations

import json
import os
from dataclasses import MISSING, dataclass, fields
from pathlib import Path
from typing import Any, Callable, Dict, Optional, Type, TypeVar


CONFIG_PATH_ENV_VAR = "NEOSTOCK_CONFIG_PATH"
DEFAULT_CONFIG_PATH = Path(__file__).resolve().parents[2] / "config" / "settings.local.json"
DEFAULT_APPLICATION_NAME = "neostock_backend"
DEFAULT_TUSHARE_URL = "http://api.tushare.pro"

SettingsT = TypeVar("SettingsT")


@dataclass(frozen=True)
class TushareSettings:
    token: str
    base_url: str = DEFAULT_TUSHARE_URL
    request_timeout_seconds: float = 10.0
    requests_per_minute: int = 200
    requests_per_day: int = 100000


@dataclass(frozen=True)
class DataSourceSettings:
    switch_cooldown_seconds: float = 60.0
    retry_base_delay_seconds: float = 1.0
    retry_exponential_factor: float = 2.0
    retry_jitter: float = 0.1


@dataclass(frozen=True)
class PostgresSettings:
    database: str
    user: str
    password: str
    host: str = "localhost"
    port: int = 5432
    schema: str = "public"
    stock_table: str = "stock_basic"
    daily_trade_table: str = "daily_trade"
    connect_timeout: int = 3
    application_name: str = DEFAULT_APPLICATION_NAME
    statement_timeout_ms: Optional[int] = None
    idle_in_transaction_session_timeout_ms: Optional[int] = None


@dataclass(frozen=True)
class AppSettings:
    tushare: TushareSettings
    data_sources: DataSourceSettings
    postgres: Optional[PostgresSettings]


# Field annotations are strings under postponed evaluation.
_COERCERS: Dict[str, Callable[[Any], Any]] = {
    "str": lambda value: str(value).strip(),
    "int": int,
    "float": float,
    "Optional[int]": int,
}


def _is_blank(value: Any) -> bool:
    return value is None or (isinstance(value, str) and not value.strip())


def _build_section(cls: Type[SettingsT], section: str, values: Dict[str, Any]) -> SettingsT:
    """Instantiate ``cls`` from one JSON section, coercing values by field type."""
    kwargs: Dict[str, Any] = {}
    for field in fields(cls):
        value = values.get(field.name)
        if _is_blank(value):
            if field.default is MISSING:
                raise KeyError(f"Missing '{section}.{field.name}' in configuration file")
            continue
        kwargs[field.name] = _COERCERS[field.type](value)
    return cls(**kwargs)


def resolve_config_path(explicit_path: Optional[str] = None) -> Path:
    candidate = explicit_path or os.getenv(CONFIG_PATH_ENV_VAR)
    if candidate:
        return Path(candidate).expanduser().resolve()
    return DEFAULT_CONFIG_PATH


def _read_json(path: Path) -> Dict[str, Any]:
    try:
        payload = json.loads(path.read_text(encoding="utf-8-sig"))
    except FileNotFoundError as exc:
        raise FileNotFoundError(
            f"Configuration file not found at {path}. Copy settings.example.json to get started."
        ) from exc
    except json.JSONDecodeError as exc:
        raise ValueError(f"Invalid JSON content in configuration file: {path}") from exc
    if not isinstance(payload, dict):
        raise ValueError(f"Configuration file must contain a JSON object: {path}")
    return payload


def load_settings(path: Optional[str] = None) -> AppSettings:
    """
    Load application settings from disk.

    ``tushare`` is required and must carry a token. ``data_sources`` may be
    omitted entirely. ``postgres`` is ``None`` when the file has no such
    section, which disables persistence.
    """
    raw_config = _read_json(resolve_config_path(path))

    tushare_section = raw_config.get("tushare")
    if not isinstance(tushare_section, dict):
        raise KeyError("Missing 'tushare' section in configuration file")

    postgres_section = raw_config.get("postgres")
    return AppSettings(
        tushare=_build_section(TushareSettings, "tushare", tushare_section),
        data_sources=_build_section(
            DataSourceSettings, "data_sources", raw_config.get("data_sources") or {}
        ),
        postgres=_build_section(PostgresSettings, "postgres", postgres_section)
        if postgres_section
        else None,
    )


__all__ = [
    "AppSettings",
    "CONFIG_PATH_ENV_VAR",
    "DataSourceSettings",
    "PostgresSettings",
    "TushareSettings",
    "load_settings",
    "resolve_config_path",
]
