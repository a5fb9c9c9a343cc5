"""Market data sources, the failover manager and their shared types."""

from .base import BaseDataSource
from .manager import DataSourceManager
from .tushare_source import TushareDataSource
from .types import (
    DataQualityResult,
    DataSourceConfig,
    DataSourceError,
    DataSourceErrorType,
    DataSourceHealth,
    RetryConfig,
    StockBasicInfo,
    StockBasicResponse,
    StockDailyData,
    SwitchEvent,
    SwitchTrigger,
    SyncInProgressError,
)

__all__ = [
    "BaseDataSource",
    "DataQualityResult",
    "DataSourceConfig",
    "DataSourceError",
    "DataSourceErrorType",
    "DataSourceHealth",
    "DataSourceManager",
    "RetryConfig",
    "StockBasicInfo",
    "StockBasicResponse",
    "StockDailyData",
    "SwitchEvent",
    "SwitchTrigger",
    "SyncInProgressError",
    "TushareDataSource",
]
