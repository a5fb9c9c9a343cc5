"""Neostock backend: market data sync scheduler, data sources and admin API."""

from __future__ import annotations

from importlib import import_module
from typing import Any

_LAZY_EXPORTS = {
    "app": ".app",
    "DataSourceManager": ".data_sources",
    "DataSyncScheduler": ".schedulers",
    "TushareAPIMock": ".mocks",
}

__all__ = sorted(_LAZY_EXPORTS)


def __getattr__(name: str) -> Any:
    # Importing the app pulls in FastAPI and the persisted monitor state.
    module_name = _LAZY_EXPORTS.get(name)
    if module_name is None:
        raise AttributeError(f"module 'backend.src' has no attribute {name!r}")
    return getattr(import_module(module_name, __name__), name)


def __dir__() -> list[str]:
    return list(__all__)
