"""
Runtime configuration helpers for control panel-driven scheduler settings.
"""

from __future__ import annotations

import json
import threading
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, Optional

from apscheduler.triggers.cron import CronTrigger
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

CONFIG_FILE = Path(__file__).resolve().parents[2] / "config" / "control_config.json"
_LOCK = threading.Lock()

DEFAULT_CRON_EXPRESSION = "0 17 * * *"
DEFAULT_TIMEZONE = "Asia/Shanghai"


@dataclass(frozen=True)
class SchedulerConfig:
    cron_expression: str = DEFAULT_CRON_EXPRESSION
    batch_size: int = 100
    retry_attempts: int = 3
    enabled: bool = True
    batch_pause_seconds: float = 1.0
    poll_interval_seconds: int = 300
    timezone: str = DEFAULT_TIMEZONE

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]]) -> "SchedulerConfig":
        """Build a config from snake_case or camelCase keys, clamping bad values."""
        data = data or {}

        def _pick(snake: str, camel: str) -> Any:
            if snake in data:
                return data[snake]
            return data.get(camel)

        cron_value = _pick("cron_expression", "cronExpression")
        if not isinstance(cron_value, str) or not _validate_cron_expression(cron_value):
            cron_value = DEFAULT_CRON_EXPRESSION

        timezone_value = _pick("timezone", "timezone")
        if not isinstance(timezone_value, str) or not _validate_timezone(timezone_value):
            timezone_value = DEFAULT_TIMEZONE

        return cls(
            cron_expression=cron_value.strip(),
            batch_size=_sanitize_int(_pick("batch_size", "batchSize"), default=100, minimum=1),
            retry_attempts=_sanitize_int(_pick("retry_attempts", "retryAttempts"), default=3, minimum=0),
            enabled=_sanitize_bool(_pick("enabled", "enabled"), default=True),
            batch_pause_seconds=_sanitize_float(
                _pick("batch_pause_seconds", "batchPauseSeconds"), default=1.0, minimum=0.0
            ),
            poll_interval_seconds=_sanitize_int(
                _pick("poll_interval_seconds", "pollIntervalSeconds"), default=300, minimum=1
            ),
            timezone=timezone_value,
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "cron_expression": self.cron_expression,
            "batch_size": int(self.batch_size),
            "retry_attempts": int(self.retry_attempts),
            "enabled": bool(self.enabled),
            "batch_pause_seconds": float(self.batch_pause_seconds),
            "poll_interval_seconds": int(self.poll_interval_seconds),
            "timezone": self.timezone,
        }

    @property
    def tzinfo(self) -> ZoneInfo:
        return ZoneInfo(self.timezone)

    def build_trigger(self) -> CronTrigger:
        return CronTrigger.from_crontab(self.cron_expression, timezone=self.tzinfo)


def _validate_cron_expression(value: str) -> bool:
    try:
        CronTrigger.from_crontab(value.strip(), timezone=DEFAULT_TIMEZONE)
    except (TypeError, ValueError):
        return False
    return True


def _validate_timezone(value: str) -> bool:
    try:
        ZoneInfo(value)
    except (ZoneInfoNotFoundError, ValueError):
        return False
    return True


def load_scheduler_config() -> SchedulerConfig:
    with _LOCK:
        if CONFIG_FILE.exists():
            with CONFIG_FILE.open("r", encoding="utf-8") as f:
                data = json.load(f)
            return SchedulerConfig.from_dict(data.get("scheduler") if isinstance(data, dict) else None)
        config = SchedulerConfig()
        _write_locked(config)
        return config


def save_scheduler_config(config: SchedulerConfig) -> None:
    with _LOCK:
        _write_locked(config)


def _write_locked(config: SchedulerConfig) -> None:
    CONFIG_FILE.parent.mkdir(parents=True, exist_ok=True)
    with CONFIG_FILE.open("w", encoding="utf-8") as f:
        json.dump({"scheduler": config.to_dict()}, f, ensure_ascii=False, indent=2)


def _sanitize_float(value: Any, *, default: float, minimum: float) -> float:
    try:
        numeric = float(value)
    except (TypeError, ValueError):
        numeric = default
    if numeric < minimum:
        numeric = minimum
    return numeric


def _sanitize_int(value: Any, *, default: int, minimum: int) -> int:
    if isinstance(value, bool):
        return default
    try:
        numeric = int(value)
    except (TypeError, ValueError):
        numeric = default
    if numeric < minimum:
        numeric = minimum
    return numeric


def _sanitize_bool(value: Any, *, default: bool = False) -> bool:
    if isinstance(value, bool):
        return value
    if isinstance(value, (int, float)):
        return bool(value)
    if isinstance(value, str):
        lowered = value.strip().lower()
        if lowered in {"true", "1", "yes", "on"}:
            return True
        if lowered in {"false", "0", "no", "off"}:
            return False
    return default


__all__ = [
    "DEFAULT_CRON_EXPRESSION",
    "SchedulerConfig",
    "load_scheduler_config",
    "save_scheduler_config",
]
