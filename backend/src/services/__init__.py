"""Service layer exports."""

from .data_sync_service import build_data_source_manager, build_scheduler
from .market_data_sink import PostgresMarketDataSink

__all__ = ["PostgresMarketDataSink", "build_data_source_manager", "build_scheduler"]
