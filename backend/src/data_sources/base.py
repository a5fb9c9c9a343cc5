"""
Base class for market data sources.

Provides request-level retries with exponential backoff, error classification,
a local request budget and data quality checks shared by concrete sources.
"""

from __future__ import annotations

import asyncio
import logging
import random
import re
import time
from abc import ABC, abstractmethod
from collections import deque
from dataclasses import replace
from datetime import date, datetime, timezone
from typing import Awaitable, Callable, Deque, List, Optional, Tuple, TypeVar

import requests

from .types import (
    DataQualityResult,
    DataSourceConfig,
    DataSourceError,
    DataSourceErrorType,
    DataSourceHealth,
    StockBasicInfo,
    StockDailyData,
)

logger = logging.getLogger(__name__)

T = TypeVar("T")

STOCK_CODE_PATTERN = re.compile(r"^\d{6}\.(SH|SZ|BJ)$")
MAX_REASONABLE_PRICE = 10000
UNHEALTHY_AFTER_FAILURES = 3

_KEYWORD_RULES: Tuple[Tuple[DataSourceErrorType, Tuple[str, ...]], ...] = (
    (DataSourceErrorType.TIMEOUT_ERROR, ("timeout", "timed out", "etimedout")),
    (
        DataSourceErrorType.NETWORK_ERROR,
        ("network", "enotfound", "econnreset", "econnrefused", "connection"),
    ),
    (DataSourceErrorType.RATE_LIMIT_ERROR, ("rate limit", "too many requests")),
    (DataSourceErrorType.AUTH_ERROR, ("unauthorized", "forbidden", "token", "auth")),
    (DataSourceErrorType.INVALID_PARAMS, ("bad request", "invalid param", "required")),
    (DataSourceErrorType.API_QUOTA_EXCEEDED, ("quota", "daily limit", "exceeded")),
)


def classify_message(message: str) -> Optional[DataSourceErrorType]:
    lowered = message.lower()
    for error_type, keywords in _KEYWORD_RULES:
        if any(keyword in lowered for keyword in keywords):
            return error_type
    return None


def _status_code(exc: BaseException) -> Optional[int]:
    status = getattr(exc, "status_code", None)
    if isinstance(status, int):
        return status
    response = getattr(exc, "response", None)
    status = getattr(response, "status_code", None)
    return status if isinstance(status, int) else None


class BaseDataSource(ABC):
    """Common behaviour for all upstream market data sources."""

    def __init__(
        self,
        config: DataSourceConfig,
        *,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        clock: Callable[[], float] = time.monotonic,
        rng: Optional[random.Random] = None,
    ) -> None:
        self.config = config
        self._sleep = sleep
        self._clock = clock
        self._rng = rng or random.Random()
        self._minute_window: Deque[float] = deque()
        self._day_count = 0
        self._day_key: Optional[date] = None
        self._health = DataSourceHealth(name=config.name)

    @property
    def name(self) -> str:
        return self.config.name

    @property
    def priority(self) -> int:
        return self.config.priority

    @property
    def enabled(self) -> bool:
        return self.config.enabled

    @property
    def health(self) -> DataSourceHealth:
        return replace(self._health)

    # Operations implemented by concrete sources ------------------------------

    @abstractmethod
    async def _fetch_stock_basic(self) -> List[StockBasicInfo]:
        ...

    @abstractmethod
    async def _fetch_daily(self, symbol: str, start_date: str, end_date: str) -> List[StockDailyData]:
        ...

    async def _probe(self) -> None:
        await self._fetch_stock_basic()

    # Public API ---------------------------------------------------------------

    async def fetch_stock_basic_info(self) -> List[StockBasicInfo]:
        records = await self._tracked(self._fetch_stock_basic, "stock_basic")
        valid, quality = self.validate_stock_basic(records)
        if not quality.is_valid:
            logger.warning(
                "%s stock_basic quality issues (%s records): %s",
                self.name,
                quality.record_count,
                "; ".join(quality.issues[:5]),
            )
        return valid

    async def fetch_daily_data(self, symbol: str, start_date: str, end_date: str) -> List[StockDailyData]:
        records = await self._tracked(
            lambda: self._fetch_daily(symbol, start_date, end_date),
            f"daily {symbol}",
        )
        valid, quality = self.validate_daily(records)
        if not quality.is_valid:
            logger.warning(
                "%s daily quality issues for %s: %s",
                self.name,
                symbol,
                "; ".join(quality.issues[:5]),
            )
        return valid

    async def health_check(self) -> DataSourceHealth:
        started = time.perf_counter()
        try:
            await asyncio.wait_for(self._probe(), timeout=self.config.timeout_seconds)
        except Exception as exc:
            self._record_failure(self.to_data_source_error(exc))
            self._health.is_healthy = False
            logger.warning("%s health check failed: %s", self.name, exc)
        else:
            self._record_success()
        self._health.response_time = time.perf_counter() - started
        self._health.last_checked = datetime.now(timezone.utc)
        return self.health

    # Retry and classification -------------------------------------------------

    async def _tracked(self, operation: Callable[[], Awaitable[T]], context: str) -> T:
        try:
            result = await self.retry_operation(operation, context)
        except DataSourceError as exc:
            self._record_failure(exc)
            raise
        self._record_success()
        return result

    async def retry_operation(self, operation: Callable[[], Awaitable[T]], context: str) -> T:
        """Run ``operation`` with exponential backoff on retryable failures."""
        retry = self.config.retry
        attempts = max(int(retry.max_retries), 0) + 1
        last_error: Optional[DataSourceError] = None

        for attempt in range(1, attempts + 1):
            try:
                return await operation()
            except Exception as exc:
                error = self.to_data_source_error(exc)
                last_error = error
                if not self.is_retryable(error.error_type):
                    if error is exc:
                        raise
                    raise error from exc
                if attempt >= attempts:
                    break
                delay = self._backoff_delay(attempt)
                logger.warning(
                    "%s %s failed (attempt %s/%s, %s): %s; retrying in %.2fs",
                    self.name,
                    context,
                    attempt,
                    attempts,
                    error.error_type.value,
                    error,
                    delay,
                )
                await self._sleep(delay)

        assert last_error is not None
        raise DataSourceError(
            last_error.error_type,
            f"{context} failed after {attempts} attempts: {last_error}",
            status_code=last_error.status_code,
            source=self.name,
        ) from last_error

    def is_retryable(self, error_type: DataSourceErrorType) -> bool:
        retry = self.config.retry
        if error_type in retry.non_retryable_errors:
            return False
        return error_type in retry.retryable_errors

    def _backoff_delay(self, attempt: int) -> float:
        retry = self.config.retry
        delay = retry.base_delay * (retry.exponential_factor ** (attempt - 1))
        if retry.jitter > 0:
            delay += delay * retry.jitter * self._rng.random()
        return delay

    @staticmethod
    def classify_error(exc: BaseException) -> DataSourceErrorType:
        if isinstance(exc, DataSourceError):
            return exc.error_type
        if isinstance(exc, (asyncio.TimeoutError, TimeoutError, requests.Timeout)):
            return DataSourceErrorType.TIMEOUT_ERROR
        if isinstance(exc, (ConnectionError, requests.ConnectionError)):
            return DataSourceErrorType.NETWORK_ERROR

        by_message = classify_message(str(exc))
        if by_message is not None:
            return by_message

        status = _status_code(exc)
        if status is not None:
            if status >= 500:
                return DataSourceErrorType.SERVER_ERROR_5XX
            if status == 429:
                return DataSourceErrorType.RATE_LIMIT_ERROR
            if status in (401, 403):
                return DataSourceErrorType.AUTH_ERROR
            if status >= 400:
                return DataSourceErrorType.CLIENT_ERROR_4XX
        return DataSourceErrorType.NETWORK_ERROR

    def to_data_source_error(self, exc: BaseException) -> DataSourceError:
        if isinstance(exc, DataSourceError):
            if exc.source is None:
                exc.source = self.name
            return exc
        message = str(exc) or exc.__class__.__name__
        return DataSourceError(
            self.classify_error(exc),
            message,
            status_code=_status_code(exc),
            source=self.name,
        )

    # Local request budget -------------------------------------------------------

    def _check_rate_limit(self) -> None:
        """Reserve one request slot or raise a rate-limit error."""
        now = self._clock()
        while self._minute_window and now - self._minute_window[0] >= 60.0:
            self._minute_window.popleft()

        today = date.today()
        if self._day_key != today:
            self._day_key = today
            self._day_count = 0

        per_minute = self.config.requests_per_minute
        if per_minute and len(self._minute_window) >= per_minute:
            raise DataSourceError(
                DataSourceErrorType.RATE_LIMIT_ERROR,
                f"{self.name} rate limit of {per_minute} requests per minute reached",
                source=self.name,
            )
        per_day = self.config.requests_per_day
        if per_day and self._day_count >= per_day:
            raise DataSourceError(
                DataSourceErrorType.API_QUOTA_EXCEEDED,
                f"{self.name} daily quota of {per_day} requests exceeded",
                source=self.name,
            )
        self._minute_window.append(now)
        self._day_count += 1

    # Data quality ---------------------------------------------------------------

    @staticmethod
    def validate_stock_basic(records: List[StockBasicInfo]) -> Tuple[List[StockBasicInfo], DataQualityResult]:
        issues: List[str] = []
        valid: List[StockBasicInfo] = []
        seen: set[str] = set()
        for record in records:
            if not STOCK_CODE_PATTERN.match(record.ts_code):
                issues.append(f"Invalid stock code format: {record.ts_code}")
                continue
            if not record.name or not record.name.strip():
                issues.append(f"Missing stock name: {record.ts_code}")
                continue
            if record.ts_code in seen:
                issues.append(f"Duplicate stock code: {record.ts_code}")
                continue
            seen.add(record.ts_code)
            valid.append(record)
        return valid, DataQualityResult(is_valid=not issues, issues=issues, record_count=len(records))

    @staticmethod
    def validate_daily(records: List[StockDailyData]) -> Tuple[List[StockDailyData], DataQualityResult]:
        issues: List[str] = []
        valid: List[StockDailyData] = []
        for record in records:
            key = f"{record.ts_code}@{record.trade_date}"
            prices = (record.open, record.high, record.low, record.close)
            if any(price <= 0 or price > MAX_REASONABLE_PRICE for price in prices):
                issues.append(f"Price out of range: {key}")
                continue
            if record.high < max(record.open, record.close) or record.low > min(record.open, record.close):
                issues.append(f"Inconsistent high/low: {key}")
                continue
            if record.vol is not None and record.vol < 0:
                issues.append(f"Negative volume: {key}")
                continue
            valid.append(record)
        return valid, DataQualityResult(is_valid=not issues, issues=issues, record_count=len(records))

    # Health bookkeeping -----------------------------------------------------------

    def _record_success(self) -> None:
        self._health.consecutive_failures = 0
        self._health.is_healthy = True
        self._health.error_message = None

    def _record_failure(self, error: DataSourceError) -> None:
        self._health.consecutive_failures += 1
        self._health.error_message = str(error)
        if self._health.consecutive_failures >= UNHEALTHY_AFTER_FAILURES:
            self._health.is_healthy = False


__all__ = ["BaseDataSource", "STOCK_CODE_PATTERN", "classify_message"]
