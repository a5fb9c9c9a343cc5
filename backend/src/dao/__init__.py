"""Data access objects for PostgreSQL persistence."""

from .base import PostgresDAOBase, TableSpec
from .daily_trade_dao import DailyTradeDAO
from .stock_basic_dao import StockBasicDAO

__all__ = ["DailyTradeDAO", "PostgresDAOBase", "StockBasicDAO", "TableSpec"]
