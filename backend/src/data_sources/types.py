"""
Shared data model and error taxonomy for market data sources.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal, InvalidOperation
from enum import Enum
from typing import Any, Dict, List, Mapping, Optional, Tuple


class DataSourceErrorType(str, Enum):
    NETWORK_ERROR = "network_error"
    TIMEOUT_ERROR = "timeout_error"
    RATE_LIMIT_ERROR = "rate_limit_error"
    SERVER_ERROR_5XX = "server_error_5xx"
    AUTH_ERROR = "auth_error"
    INVALID_PARAMS = "invalid_params"
    CLIENT_ERROR_4XX = "client_error_4xx"
    DATA_FORMAT_ERROR = "data_format_error"
    API_QUOTA_EXCEEDED = "api_quota_exceeded"


class SwitchTrigger(str, Enum):
    PRIMARY_FAILURE = "primary_failure"
    HEALTH_CHECK_FAILURE = "health_check_failure"
    MANUAL_SWITCH = "manual_switch"
    RECOVERY_DETECTED = "recovery_detected"


class DataSourceError(Exception):
    """Failure raised by a data source, tagged with a classified error type."""

    def __init__(
        self,
        error_type: DataSourceErrorType,
        message: str,
        *,
        status_code: Optional[int] = None,
        source: Optional[str] = None,
    ) -> None:
        super().__init__(message)
        self.error_type = error_type
        self.message = message
        self.status_code = status_code
        self.source = source

    def __str__(self) -> str:
        return self.message


class SyncInProgressError(RuntimeError):
    """Raised when a sync pass is requested while another one is still running."""

    def __init__(self, message: str = "Data sync already in progress (数据同步正在进行中)") -> None:
        super().__init__(message)


def _to_decimal(value: Any) -> Decimal:
    if value is None or value == "":
        raise ValueError("price value is missing")
    try:
        return Decimal(str(value))
    except InvalidOperation as exc:
        raise ValueError(f"invalid price value: {value!r}") from exc


def _to_optional_float(value: Any) -> Optional[float]:
    if value is None or value == "":
        return None
    return float(value)


@dataclass(frozen=True)
class StockBasicInfo:
    ts_code: str
    symbol: str
    name: str
    area: Optional[str] = None
    industry: Optional[str] = None
    market: Optional[str] = None
    list_date: Optional[str] = None
    is_hs: Optional[str] = None

    @classmethod
    def from_record(cls, record: Mapping[str, Any]) -> "StockBasicInfo":
        try:
            ts_code = str(record["ts_code"])
            name = str(record["name"])
        except KeyError as exc:
            raise ValueError(f"stock basic record missing field {exc}") from exc
        symbol = record.get("symbol") or ts_code.split(".", 1)[0]
        return cls(
            ts_code=ts_code,
            symbol=str(symbol),
            name=name,
            area=record.get("area"),
            industry=record.get("industry"),
            market=record.get("market"),
            list_date=str(record["list_date"]) if record.get("list_date") else None,
            is_hs=record.get("is_hs"),
        )

    def to_record(self) -> Dict[str, Any]:
        return {
            "ts_code": self.ts_code,
            "symbol": self.symbol,
            "name": self.name,
            "area": self.area,
            "industry": self.industry,
            "market": self.market,
            "list_date": self.list_date,
            "is_hs": self.is_hs,
        }


@dataclass(frozen=True)
class StockDailyData:
    ts_code: str
    trade_date: str
    open: Decimal
    high: Decimal
    low: Decimal
    close: Decimal
    vol: Optional[float] = None
    amount: Optional[float] = None

    @classmethod
    def from_record(cls, record: Mapping[str, Any]) -> "StockDailyData":
        try:
            ts_code = str(record["ts_code"])
            trade_date = str(record["trade_date"])
        except KeyError as exc:
            raise ValueError(f"daily record missing field {exc}") from exc
        return cls(
            ts_code=ts_code,
            trade_date=trade_date,
            open=_to_decimal(record.get("open")),
            high=_to_decimal(record.get("high")),
            low=_to_decimal(record.get("low")),
            close=_to_decimal(record.get("close")),
            vol=_to_optional_float(record.get("vol")),
            amount=_to_optional_float(record.get("amount")),
        )

    def to_record(self) -> Dict[str, Any]:
        return {
            "ts_code": self.ts_code,
            "trade_date": self.trade_date,
            "open": float(self.open),
            "high": float(self.high),
            "low": float(self.low),
            "close": float(self.close),
            "vol": self.vol,
            "amount": self.amount,
        }


@dataclass(frozen=True)
class StockBasicResponse:
    data: List[StockBasicInfo]
    source: Optional[str] = None


@dataclass(frozen=True)
class RetryConfig:
    max_retries: int = 3
    base_delay: float = 1.0
    exponential_factor: float = 2.0
    jitter: float = 0.1
    retryable_errors: Tuple[DataSourceErrorType, ...] = (
        DataSourceErrorType.NETWORK_ERROR,
        DataSourceErrorType.TIMEOUT_ERROR,
        DataSourceErrorType.SERVER_ERROR_5XX,
        DataSourceErrorType.RATE_LIMIT_ERROR,
    )
    non_retryable_errors: Tuple[DataSourceErrorType, ...] = (
        DataSourceErrorType.AUTH_ERROR,
        DataSourceErrorType.INVALID_PARAMS,
        DataSourceErrorType.CLIENT_ERROR_4XX,
        DataSourceErrorType.API_QUOTA_EXCEEDED,
        DataSourceErrorType.DATA_FORMAT_ERROR,
    )


@dataclass(frozen=True)
class DataSourceConfig:
    name: str
    priority: int = 1
    enabled: bool = True
    timeout_seconds: float = 10.0
    retry: RetryConfig = field(default_factory=RetryConfig)
    requests_per_minute: Optional[int] = None
    requests_per_day: Optional[int] = None


@dataclass
class DataSourceHealth:
    name: str
    is_healthy: bool = True
    response_time: Optional[float] = None
    last_checked: Optional[datetime] = None
    consecutive_failures: int = 0
    error_message: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "isHealthy": self.is_healthy,
            "responseTime": self.response_time,
            "lastChecked": self.last_checked.isoformat() if self.last_checked else None,
            "consecutiveFailures": self.consecutive_failures,
            "errorMessage": self.error_message,
        }


@dataclass
class DataQualityResult:
    is_valid: bool
    issues: List[str] = field(default_factory=list)
    record_count: int = 0


@dataclass(frozen=True)
class SwitchEvent:
    timestamp: datetime
    from_source: Optional[str]
    to_source: str
    trigger: SwitchTrigger
    reason: str

    def to_dict(self) -> Dict[str, Any]:
        return {
            "timestamp": self.timestamp.isoformat(),
            "from": self.from_source,
            "to": self.to_source,
            "trigger": self.trigger.value,
            "reason": self.reason,
        }


__all__ = [
    "DataQualityResult",
    "DataSourceConfig",
    "DataSourceError",
    "DataSourceErrorType",
    "DataSourceHealth",
    "RetryConfig",
    "StockBasicInfo",
    "StockBasicResponse",
    "StockDailyData",
    "SwitchEvent",
    "SwitchTrigger",
    "SyncInProgressError",
]
