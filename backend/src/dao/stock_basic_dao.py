"""Listing metadata for the synced universe."""

from __future__ import annotations

from ..api_clients.tushare_api import DATE_COLUMNS, STOCK_BASIC_FIELDS
from .base import PostgresDAOBase, TableSpec


class StockBasicDAO(PostgresDAOBase):
    spec = TableSpec(
        settings_attr="stock_table",
        ddl_file="stock_basic_schema.sql",
        columns=tuple(STOCK_BASIC_FIELDS),
        conflict_keys=("ts_code",),
        date_columns=tuple(DATE_COLUMNS),
    )


__all__ = ["StockBasicDAO"]
