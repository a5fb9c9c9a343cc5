"""
In-process stand-in for the Tushare Pro API with failure injection.

The mock serves a small fixed universe plus deterministic daily bars and can be
switched into any of the failure scenarios the sync pipeline has to survive:
transport errors and stalls raise, while quota, auth, outage, parameter and
rate-limit problems come back as error-coded envelopes.
"""

from __future__ import annotations

import asyncio
import logging
import random
import time
from collections import deque
from datetime import date, datetime, timedelta
from enum import Enum
from typing import Any, Callable, Deque, Dict, List, Optional, Sequence
from zoneinfo import ZoneInfo

from ..api_clients.tushare_api import (
    CODE_DAILY_LIMIT,
    CODE_INVALID_PARAMS,
    CODE_INVALID_TOKEN,
    CODE_OK,
    CODE_RATE_LIMIT,
    CODE_SERVICE_UNAVAILABLE,
    DAILY_TRADE_FIELDS,
    STOCK_BASIC_FIELDS,
    TushareResponse,
)
from ..config.runtime_config import DEFAULT_TIMEZONE

logger = logging.getLogger(__name__)

DATE_FORMAT = "%Y%m%d"
RATE_LIMIT_WINDOW_SECONDS = 60.0
SAMPLE_DAYS = 30


class FailureScenario(str, Enum):
    NETWORK_ERROR = "network_error"
    API_LIMIT_EXCEEDED = "api_limit_exceeded"
    INVALID_TOKEN = "invalid_token"
    SERVICE_UNAVAILABLE = "service_unavailable"
    TIMEOUT = "timeout"
    INVALID_PARAMS = "invalid_params"


DEFAULT_STOCKS: Sequence[Dict[str, Any]] = (
    {
        "ts_code": "000001.SZ",
        "symbol": "000001",
        "name": "平安银行",
        "area": "深圳",
        "industry": "银行",
        "market": "主板",
        "list_date": "19910403",
        "is_hs": "S",
    },
    {
        "ts_code": "000002.SZ",
        "symbol": "000002",
        "name": "万科A",
        "area": "深圳",
        "industry": "房地产开发",
        "market": "主板",
        "list_date": "19910129",
        "is_hs": "S",
    },
    {
        "ts_code": "600000.SH",
        "symbol": "600000",
        "name": "浦发银行",
        "area": "上海",
        "industry": "银行",
        "market": "主板",
        "list_date": "19991110",
        "is_hs": "H",
    },
    {
        "ts_code": "600036.SH",
        "symbol": "600036",
        "name": "招商银行",
        "area": "深圳",
        "industry": "银行",
        "market": "主板",
        "list_date": "20020409",
        "is_hs": "H",
    },
)


class TushareAPIMock:
    """Fake Tushare endpoint implementing the ``TushareClient`` protocol."""

    def __init__(
        self,
        *,
        daily_limit: int = 10000,
        response_delay: float = 0.0,
        rate_limit_per_minute: int = 100,
        timeout_stall_seconds: float = 30.0,
        backup_success_rate: float = 0.9,
        backup_switch_delay: float = 1.0,
        seed: int = 20240101,
        anchor_date: Optional[date] = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._failure_mode: Optional[FailureScenario] = None
        self._response_delay = max(float(response_delay), 0.0)
        self._daily_limit = int(daily_limit)
        self._request_count = 0
        self._rate_limit_per_minute = int(rate_limit_per_minute)
        self._rate_windows: Dict[str, Deque[float]] = {}
        self._timeout_stall_seconds = timeout_stall_seconds
        self._backup_success_rate = backup_success_rate
        self._backup_switch_delay = backup_switch_delay
        self._seed = seed
        self._rng = random.Random(seed)
        # Market calendar day, matching the trade date the scheduler requests.
        self._anchor_date = anchor_date or datetime.now(ZoneInfo(DEFAULT_TIMEZONE)).date()
        self._clock = clock
        self._stocks: List[Dict[str, Any]] = [dict(stock) for stock in DEFAULT_STOCKS]
        self._daily_cache: Dict[str, List[Dict[str, Any]]] = {
            stock["ts_code"]: self._generate_daily_bars(stock["ts_code"]) for stock in self._stocks
        }

    # Control surface ---------------------------------------------------

    def set_failure_mode(self, mode: Optional[FailureScenario]) -> None:
        self._failure_mode = FailureScenario(mode) if mode is not None else None
        logger.debug("Mock failure mode set to %s", self._failure_mode)

    @property
    def failure_mode(self) -> Optional[FailureScenario]:
        return self._failure_mode

    def set_response_delay(self, seconds: float) -> None:
        self._response_delay = max(float(seconds), 0.0)

    def set_daily_limit(self, limit: int) -> None:
        self._daily_limit = int(limit)

    def reset_request_count(self) -> None:
        self._request_count = 0

    @property
    def request_count(self) -> int:
        return self._request_count

    def add_stock(self, record: Dict[str, Any]) -> None:
        """Register an extra instrument so tests can grow the universe."""
        if "ts_code" not in record or "name" not in record:
            raise ValueError("Mock stock record requires 'ts_code' and 'name'.")
        stock = {field: record.get(field) for field in STOCK_BASIC_FIELDS}
        stock["symbol"] = stock.get("symbol") or str(record["ts_code"]).split(".", 1)[0]
        self._stocks.append(stock)
        self._daily_cache[stock["ts_code"]] = self._generate_daily_bars(stock["ts_code"])

    # Endpoints -----------------------------------------------------------

    async def query(
        self,
        api_name: str,
        fields: Optional[Sequence[str]] = None,
        **params: Any,
    ) -> TushareResponse:
        if api_name == "stock_basic":
            return await self.stock_basic(**params)
        if api_name == "daily":
            return await self.daily(**params)
        self._request_count += 1
        return TushareResponse.error(CODE_INVALID_PARAMS, f"Unknown api_name: {api_name}")

    async def stock_basic(self, **params: Any) -> TushareResponse:
        rejected = await self._admit("stock_basic")
        if rejected is not None:
            return rejected

        filtered = list(self._stocks)
        ts_code = params.get("ts_code")
        name = params.get("name")
        market = params.get("market")
        if ts_code:
            filtered = [stock for stock in filtered if stock["ts_code"] == ts_code]
        if name:
            filtered = [stock for stock in filtered if name in (stock.get("name") or "")]
        if market:
            filtered = [stock for stock in filtered if stock.get("market") == market]

        fields = list(STOCK_BASIC_FIELDS)
        items = [[stock.get(field) for field in fields] for stock in filtered]
        return TushareResponse(code=CODE_OK, msg="Success", fields=fields, items=items)

    async def daily(self, **params: Any) -> TushareResponse:
        rejected = await self._admit("daily")
        if rejected is not None:
            return rejected

        ts_code = params.get("ts_code")
        if not ts_code:
            return TushareResponse.error(CODE_INVALID_PARAMS, "ts_code is required")

        rows = list(self._daily_cache.get(ts_code, []))
        trade_date = params.get("trade_date")
        start_date = params.get("start_date")
        end_date = params.get("end_date")
        if trade_date:
            rows = [row for row in rows if row["trade_date"] == trade_date]
        if start_date:
            rows = [row for row in rows if row["trade_date"] >= start_date]
        if end_date:
            rows = [row for row in rows if row["trade_date"] <= end_date]

        fields = list(DAILY_TRADE_FIELDS)
        items = [[row[field] for field in fields] for row in rows]
        return TushareResponse(code=CODE_OK, msg="Success", fields=fields, items=items)

    async def _admit(self, endpoint: str) -> Optional[TushareResponse]:
        """Apply injected failures, the sliding-window rate limit and the daily cap."""
        self._request_count += 1

        if self._failure_mode is not None:
            return await self._simulate_failure()

        if not self._check_rate_limit(endpoint):
            return TushareResponse.error(CODE_RATE_LIMIT, "Rate limit exceeded")

        if self._request_count > self._daily_limit:
            return TushareResponse.error(CODE_DAILY_LIMIT, "Daily limit exceeded")

        if self._response_delay > 0:
            await asyncio.sleep(self._response_delay)
        return None

    async def _simulate_failure(self) -> TushareResponse:
        if self._response_delay > 0:
            await asyncio.sleep(self._response_delay)

        mode = self._failure_mode
        if mode is FailureScenario.NETWORK_ERROR:
            raise ConnectionError("Network connection failed")
        if mode is FailureScenario.TIMEOUT:
            await asyncio.sleep(self._timeout_stall_seconds)
            raise TimeoutError("Request timeout")
        if mode is FailureScenario.API_LIMIT_EXCEEDED:
            return TushareResponse.error(CODE_DAILY_LIMIT, "API daily limit exceeded")
        if mode is FailureScenario.INVALID_TOKEN:
            return TushareResponse.error(CODE_INVALID_TOKEN, "Invalid token")
        if mode is FailureScenario.SERVICE_UNAVAILABLE:
            return TushareResponse.error(CODE_SERVICE_UNAVAILABLE, "Service temporarily unavailable")
        return TushareResponse.error(CODE_INVALID_PARAMS, "Invalid parameters")

    def _check_rate_limit(self, endpoint: str) -> bool:
        now = self._clock()
        window = self._rate_windows.setdefault(endpoint, deque())
        while window and now - window[0] >= RATE_LIMIT_WINDOW_SECONDS:
            window.popleft()
        if len(window) >= self._rate_limit_per_minute:
            return False
        window.append(now)
        return True

    # Diagnostics -----------------------------------------------------------

    def validate_data_quality(self, response: Any) -> List[str]:
        """Return the list of problems found in a response envelope (empty when clean)."""
        issues: List[str] = []
        if isinstance(response, TushareResponse):
            payload: Any = {
                "code": response.code,
                "msg": response.msg,
                "data": {"fields": response.fields, "items": response.items},
            }
        else:
            payload = response

        if not isinstance(payload, dict):
            return ["Invalid data format"]

        if payload.get("code") != CODE_OK:
            issues.append(f"API error: {payload.get('msg')}")

        data = payload.get("data")
        if (
            not isinstance(data, dict)
            or not isinstance(data.get("fields"), list)
            or not isinstance(data.get("items"), list)
        ):
            issues.append("Invalid data structure")
            return issues

        fields = data["fields"]
        items = data["items"]
        if any(not isinstance(item, (list, tuple)) or len(item) != len(fields) for item in items):
            issues.append("Data field mismatch")
            return issues

        if "ts_code" in fields and "name" in fields:
            code_idx = fields.index("ts_code")
            name_idx = fields.index("name")
            if any(not item[code_idx] or not item[name_idx] for item in items):
                issues.append("Missing required stock information")
        return issues

    async def switch_to_backup_source(self) -> bool:
        """Pretend to fail over to a backup feed; clears the failure mode on success."""
        await asyncio.sleep(self._backup_switch_delay)
        if self._rng.random() < self._backup_success_rate:
            self.set_failure_mode(None)
            logger.info("Mock switched to backup source")
            return True
        logger.warning("Mock backup source switch failed")
        return False

    def get_mock_statistics(self) -> Dict[str, Any]:
        now = self._clock()
        return {
            "request_count": self._request_count,
            "daily_limit": self._daily_limit,
            "failure_mode": self._failure_mode.value if self._failure_mode else None,
            "response_delay": self._response_delay,
            "stock_count": len(self._stocks),
            "rate_limit_status": {
                endpoint: sum(1 for ts in window if now - ts < RATE_LIMIT_WINDOW_SECONDS)
                for endpoint, window in self._rate_windows.items()
            },
        }

    # Sample data -------------------------------------------------------------

    def _generate_daily_bars(self, ts_code: str) -> List[Dict[str, Any]]:
        rng = random.Random(f"{self._seed}:{ts_code}")
        price = 10 + rng.random() * 40
        bars: List[Dict[str, Any]] = []
        for offset in range(SAMPLE_DAYS - 1, -1, -1):
            trade_day = self._anchor_date - timedelta(days=offset)
            price = max(0.01, price * (1 + (rng.random() - 0.5) * 0.1))
            open_price = price
            close_price = open_price * (1 + (rng.random() - 0.5) * 0.05)
            high_price = max(open_price, close_price) * (1 + rng.random() * 0.03)
            low_price = min(open_price, close_price) * (1 - rng.random() * 0.03)
            vol = rng.randrange(10_000_000)
            bars.append(
                {
                    "ts_code": ts_code,
                    "trade_date": trade_day.strftime(DATE_FORMAT),
                    "open": round(open_price, 2),
                    "high": round(high_price, 2),
                    "low": round(low_price, 2),
                    "close": round(close_price, 2),
                    "vol": vol,
                    "amount": round(vol * (high_price + low_price) / 2),
                }
            )
            price = close_price
        return bars


__all__ = ["FailureScenario", "TushareAPIMock"]
