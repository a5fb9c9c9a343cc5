"""Daily OHLCV bars, one row per (ts_code, trade_date)."""

from __future__ import annotations

from ..api_clients.tushare_api import DAILY_TRADE_FIELDS
from .base import PostgresDAOBase, TableSpec


class DailyTradeDAO(PostgresDAOBase):
    spec = TableSpec(
        settings_attr="daily_trade_table",
        ddl_file="daily_trade_schema.sql",
        columns=tuple(DAILY_TRADE_FIELDS),
        conflict_keys=("ts_code", "trade_date"),
        date_columns=("trade_date",),
    )


__all__ = ["DailyTradeDAO"]
