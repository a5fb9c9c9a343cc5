"""
Persistence adapter that hands synced market data to the PostgreSQL DAOs.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Sequence

import pandas as pd

from ..api_clients.tushare_api import DAILY_TRADE_FIELDS, STOCK_BASIC_FIELDS
from ..dao import DailyTradeDAO, StockBasicDAO
from ..data_sources.types import StockBasicInfo, StockDailyData

logger = logging.getLogger(__name__)


def stock_basic_frame(stocks: Sequence[StockBasicInfo]) -> pd.DataFrame:
    return pd.DataFrame([stock.to_record() for stock in stocks], columns=list(STOCK_BASIC_FIELDS))


def daily_frame(bars: Sequence[StockDailyData]) -> pd.DataFrame:
    frame = pd.DataFrame([bar.to_record() for bar in bars], columns=list(DAILY_TRADE_FIELDS))
    return frame.drop_duplicates(subset=["ts_code", "trade_date"])


class PostgresMarketDataSink:
    """Upserts stock basics and daily bars without blocking the event loop."""

    def __init__(self, stock_basic_dao: StockBasicDAO, daily_trade_dao: DailyTradeDAO) -> None:
        self._stock_basic_dao = stock_basic_dao
        self._daily_trade_dao = daily_trade_dao

    async def store_stock_basic(self, stocks: Sequence[StockBasicInfo]) -> int:
        if not stocks:
            return 0
        frame = stock_basic_frame(stocks)
        loop = asyncio.get_running_loop()
        affected = await loop.run_in_executor(None, self._stock_basic_dao.upsert, frame)
        logger.info("Upserted %s stock_basic rows.", affected)
        return affected

    async def store_daily_data(self, ts_code: str, bars: Sequence[StockDailyData]) -> int:
        if not bars:
            logger.debug("No daily rows to store for %s", ts_code)
            return 0
        frame = daily_frame(bars)
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(None, self._daily_trade_dao.upsert, frame)


__all__ = ["PostgresMarketDataSink", "daily_frame", "stock_basic_frame"]
