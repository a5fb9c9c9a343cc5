"""
Data source backed by a Tushare-compatible client (HTTP or mock).
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Callable, Dict, List, Optional, TypeVar

from ..api_clients.tushare_api import (
    CODE_DAILY_LIMIT,
    CODE_INVALID_PARAMS,
    CODE_INVALID_TOKEN,
    CODE_RATE_LIMIT,
    CODE_SERVICE_UNAVAILABLE,
    TushareClient,
    TushareResponse,
)
from .base import BaseDataSource, classify_message
from .types import (
    DataSourceConfig,
    DataSourceError,
    DataSourceErrorType,
    StockBasicInfo,
    StockDailyData,
)

logger = logging.getLogger(__name__)

R = TypeVar("R")

PROBE_TS_CODE = "000001.SZ"

_CODE_ERROR_TYPES: Dict[int, DataSourceErrorType] = {
    CODE_DAILY_LIMIT: DataSourceErrorType.API_QUOTA_EXCEEDED,
    CODE_INVALID_TOKEN: DataSourceErrorType.AUTH_ERROR,
    CODE_SERVICE_UNAVAILABLE: DataSourceErrorType.SERVER_ERROR_5XX,
    CODE_INVALID_PARAMS: DataSourceErrorType.INVALID_PARAMS,
    CODE_RATE_LIMIT: DataSourceErrorType.RATE_LIMIT_ERROR,
}


def error_type_for_code(code: int, message: str) -> DataSourceErrorType:
    mapped = _CODE_ERROR_TYPES.get(code)
    if mapped is not None:
        return mapped
    return classify_message(message) or DataSourceErrorType.CLIENT_ERROR_4XX


class TushareDataSource(BaseDataSource):
    """Checks both failure channels of a Tushare client: raised errors and error codes."""

    def __init__(
        self,
        client: TushareClient,
        config: Optional[DataSourceConfig] = None,
        **kwargs: Any,
    ) -> None:
        super().__init__(config or DataSourceConfig(name="tushare", priority=1), **kwargs)
        self._client = client

    @property
    def client(self) -> TushareClient:
        return self._client

    async def _call(self, api_name: str, **params: Any) -> TushareResponse:
        self._check_rate_limit()
        timeout = self.config.timeout_seconds
        try:
            response = await asyncio.wait_for(self._client.query(api_name, **params), timeout=timeout)
        except asyncio.TimeoutError as exc:
            raise DataSourceError(
                DataSourceErrorType.TIMEOUT_ERROR,
                f"{api_name} request timeout after {timeout:.1f}s",
                source=self.name,
            ) from exc
        except ValueError as exc:
            raise DataSourceError(
                DataSourceErrorType.DATA_FORMAT_ERROR,
                f"{api_name} returned an invalid payload: {exc}",
                source=self.name,
            ) from exc

        if not isinstance(response, TushareResponse):
            raise DataSourceError(
                DataSourceErrorType.DATA_FORMAT_ERROR,
                f"{api_name} returned an unexpected response type {type(response).__name__}",
                source=self.name,
            )
        if not response.ok:
            raise DataSourceError(
                error_type_for_code(response.code, response.msg),
                f"Tushare {api_name} error {response.code}: {response.msg}",
                status_code=response.code,
                source=self.name,
            )
        return response

    def _parse(self, api_name: str, response: TushareResponse, factory: Callable[[Dict[str, Any]], R]) -> List[R]:
        try:
            return [factory(record) for record in response.records()]
        except (TypeError, ValueError) as exc:
            raise DataSourceError(
                DataSourceErrorType.DATA_FORMAT_ERROR,
                f"{api_name} data format error: {exc}",
                source=self.name,
            ) from exc

    async def _fetch_stock_basic(self) -> List[StockBasicInfo]:
        response = await self._call("stock_basic", list_status="L")
        return self._parse("stock_basic", response, StockBasicInfo.from_record)

    async def _fetch_daily(self, symbol: str, start_date: str, end_date: str) -> List[StockDailyData]:
        response = await self._call("daily", ts_code=symbol, start_date=start_date, end_date=end_date)
        bars = self._parse("daily", response, StockDailyData.from_record)
        logger.debug("%s returned %s daily rows for %s", self.name, len(bars), symbol)
        return bars

    async def _probe(self) -> None:
        await self._call("stock_basic", ts_code=PROBE_TS_CODE)


__all__ = ["TushareDataSource", "error_type_for_code"]
