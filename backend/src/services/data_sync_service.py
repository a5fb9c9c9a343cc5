"""
Service layer that assembles the data source manager and the sync scheduler
from configuration.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Optional

from ..api_clients.tushare_api import TushareHttpClient
from ..config.runtime_config import SchedulerConfig, load_scheduler_config
from ..config.settings import AppSettings, DataSourceSettings, load_settings
from ..dao import DailyTradeDAO, StockBasicDAO
from ..data_sources import (
    DataSourceConfig,
    DataSourceManager,
    RetryConfig,
    TushareDataSource,
)
from ..mocks import TushareAPIMock
from ..schedulers import DataSyncScheduler
from .market_data_sink import PostgresMarketDataSink

if TYPE_CHECKING:
    from ..state import SyncMonitor

logger = logging.getLogger(__name__)


def _resolve_token(token: str | None, settings: AppSettings) -> str:
    resolved = token or settings.tushare.token
    if not resolved:
        raise RuntimeError(
            "Tushare token is required. Update the configuration file or pass it explicitly."
        )
    return resolved


def _retry_config(config: SchedulerConfig, source_settings: DataSourceSettings) -> RetryConfig:
    return RetryConfig(
        max_retries=config.retry_attempts,
        base_delay=source_settings.retry_base_delay_seconds,
        exponential_factor=source_settings.retry_exponential_factor,
        jitter=source_settings.retry_jitter,
    )


def build_data_source_manager(
    settings: Optional[AppSettings] = None,
    config: Optional[SchedulerConfig] = None,
    *,
    use_mock: bool = False,
    token: str | None = None,
) -> DataSourceManager:
    """
    Create a manager with the Tushare source registered.

    With ``use_mock`` the manager gets a primary and a backup mock source instead,
    so the whole pipeline can run without credentials or network access.
    """
    config = config or SchedulerConfig()
    source_settings = settings.data_sources if settings else DataSourceSettings()
    retry = _retry_config(config, source_settings)
    manager = DataSourceManager(switch_cooldown_seconds=source_settings.switch_cooldown_seconds)

    if use_mock:
        manager.register_data_source(
            TushareDataSource(TushareAPIMock(), DataSourceConfig(name="tushare_mock", priority=1, retry=retry))
        )
        manager.register_data_source(
            TushareDataSource(
                TushareAPIMock(seed=20240102),
                DataSourceConfig(name="tushare_mock_backup", priority=2, retry=retry),
            )
        )
        logger.info("Using mock Tushare data sources.")
        return manager

    if settings is None:
        settings = load_settings()
    client = TushareHttpClient(
        _resolve_token(token, settings),
        base_url=settings.tushare.base_url,
        timeout=settings.tushare.request_timeout_seconds,
    )
    manager.register_data_source(
        TushareDataSource(
            client,
            DataSourceConfig(
                name="tushare",
                priority=1,
                timeout_seconds=settings.tushare.request_timeout_seconds,
                retry=retry,
                requests_per_minute=settings.tushare.requests_per_minute,
                requests_per_day=settings.tushare.requests_per_day,
            ),
        )
    )
    return manager


def build_scheduler(
    settings: Optional[AppSettings] = None,
    config: Optional[SchedulerConfig] = None,
    *,
    use_mock: bool = False,
    monitor: Optional[SyncMonitor] = None,
    manager: Optional[DataSourceManager] = None,
    settings_path: str | None = None,
) -> DataSyncScheduler:
    """Build a ``DataSyncScheduler`` wired to the configured sources and storage."""
    config = config or load_scheduler_config()
    if settings is None and not use_mock:
        settings = load_settings(settings_path)

    if manager is None:
        manager = build_data_source_manager(settings, config, use_mock=use_mock)

    sink = None
    if settings is not None and settings.postgres is not None:
        sink = PostgresMarketDataSink(StockBasicDAO(settings.postgres), DailyTradeDAO(settings.postgres))
    else:
        logger.info("No postgres settings found; synced data will not be persisted.")

    return DataSyncScheduler(manager, config, sink=sink, monitor=monitor)


__all__ = ["build_data_source_manager", "build_scheduler"]
