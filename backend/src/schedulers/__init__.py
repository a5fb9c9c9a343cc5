"""Background schedulers."""

from .data_sync_scheduler import DataSyncScheduler, MarketDataProvider, MarketDataSink, SyncResult

__all__ = ["DataSyncScheduler", "MarketDataProvider", "MarketDataSink", "SyncResult"]
