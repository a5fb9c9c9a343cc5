"""API client package exports."""

from .tushare_api import (
    CODE_DAILY_LIMIT,
    CODE_INVALID_PARAMS,
    CODE_INVALID_TOKEN,
    CODE_OK,
    CODE_RATE_LIMIT,
    CODE_SERVICE_UNAVAILABLE,
    DAILY_TRADE_FIELDS,
    DATE_COLUMNS,
    STOCK_BASIC_FIELDS,
    TushareClient,
    TushareHttpClient,
    TushareResponse,
)

__all__ = [
    "CODE_DAILY_LIMIT",
    "CODE_INVALID_PARAMS",
    "CODE_INVALID_TOKEN",
    "CODE_OK",
    "CODE_RATE_LIMIT",
    "CODE_SERVICE_UNAVAILABLE",
    "DAILY_TRADE_FIELDS",
    "DATE_COLUMNS",
    "STOCK_BASIC_FIELDS",
    "TushareClient",
    "TushareHttpClient",
    "TushareResponse",
]
