"""Test doubles for upstream market data APIs."""

from .tushare_api_mock import FailureScenario, TushareAPIMock

__all__ = ["FailureScenario", "TushareAPIMock"]
