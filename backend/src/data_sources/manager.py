"""
Data source manager with priority-ordered failover.

The scheduler only talks to this manager. It tries the current primary source
first, falls back to the remaining sources by priority, and promotes a working
fallback to primary when the primary fails for a reason another source could
plausibly avoid.
"""

from __future__ import annotations

import asyncio
import inspect
import logging
import time
from collections import deque
from datetime import datetime, timezone
from typing import Any, Awaitable, Callable, Deque, Dict, List, Optional, Set, Tuple, TypeVar

from .base import BaseDataSource
from .types import (
    DataSourceError,
    DataSourceErrorType,
    DataSourceHealth,
    StockBasicResponse,
    StockDailyData,
    SwitchEvent,
    SwitchTrigger,
)

logger = logging.getLogger(__name__)

T = TypeVar("T")

SwitchListener = Callable[[SwitchEvent], Any]

MAX_SWITCH_HISTORY = 100
DEFAULT_SWITCH_COOLDOWN_SECONDS = 60.0
_NO_SWITCH_ERRORS = (DataSourceErrorType.INVALID_PARAMS, DataSourceErrorType.DATA_FORMAT_ERROR)


class DataSourceManager:
    def __init__(
        self,
        *,
        switch_cooldown_seconds: float = DEFAULT_SWITCH_COOLDOWN_SECONDS,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._sources: Dict[str, BaseDataSource] = {}
        self._primary: Optional[str] = None
        self._history: Deque[SwitchEvent] = deque(maxlen=MAX_SWITCH_HISTORY)
        self._listeners: List[SwitchListener] = []
        self._listener_tasks: Set[asyncio.Future] = set()
        self._switch_cooldown = max(float(switch_cooldown_seconds), 0.0)
        self._clock = clock
        self._last_auto_switch: Optional[float] = None
        self._switch_count = 0

    # Registration ---------------------------------------------------------------

    def register_data_source(self, source: BaseDataSource) -> None:
        if source.name in self._sources:
            raise ValueError(f"Data source '{source.name}' is already registered")
        self._sources[source.name] = source
        current = self._sources.get(self._primary) if self._primary else None
        if source.enabled and (current is None or (self._switch_count == 0 and source.priority < current.priority)):
            self._primary = source.name
        logger.info("Registered data source %s (priority %s)", source.name, source.priority)

    def unregister_data_source(self, name: str) -> None:
        if self._sources.pop(name, None) is None:
            raise KeyError(f"Unknown data source '{name}'")
        if self._primary == name:
            remaining = self._ordered_sources()
            self._primary = remaining[0].name if remaining else None
        logger.info("Unregistered data source %s", name)

    def get_data_source(self, name: str) -> BaseDataSource:
        try:
            return self._sources[name]
        except KeyError as exc:
            raise KeyError(f"Unknown data source '{name}'") from exc

    @property
    def primary_source(self) -> Optional[str]:
        return self._primary

    def _ordered_sources(self) -> List[BaseDataSource]:
        enabled = [source for source in self._sources.values() if source.enabled]
        enabled.sort(key=lambda source: source.priority)
        if self._primary:
            enabled.sort(key=lambda source: source.name != self._primary)
        return enabled

    # Fetch operations -----------------------------------------------------------

    async def fetch_stock_basic_info(self) -> StockBasicResponse:
        data, source = await self._execute_with_fallback(
            "fetch_stock_basic_info",
            lambda src: src.fetch_stock_basic_info(),
        )
        return StockBasicResponse(data=data, source=source)

    async def fetch_daily_data(self, symbol: str, start_date: str, end_date: str) -> List[StockDailyData]:
        data, _ = await self._execute_with_fallback(
            f"fetch_daily_data({symbol})",
            lambda src: src.fetch_daily_data(symbol, start_date, end_date),
        )
        return data

    async def _execute_with_fallback(
        self,
        operation: str,
        call: Callable[[BaseDataSource], Awaitable[T]],
    ) -> Tuple[T, str]:
        candidates = self._ordered_sources()
        if not candidates:
            raise DataSourceError(DataSourceErrorType.NETWORK_ERROR, "No data sources available")

        primary_name = candidates[0].name
        primary_error: Optional[DataSourceError] = None
        failures: List[str] = []

        for source in candidates:
            try:
                result = await call(source)
            except DataSourceError as exc:
                failures.append(f"{source.name}: {exc}")
                if source.name == primary_name:
                    primary_error = exc
                logger.warning("Data source %s failed %s: %s", source.name, operation, exc)
                continue

            if primary_error is not None and source.name != primary_name:
                self._maybe_auto_switch(primary_name, source.name, primary_error)
            return result, source.name

        logger.error("All data sources failed %s", operation)
        raise DataSourceError(
            DataSourceErrorType.NETWORK_ERROR,
            "All data sources failed: " + "; ".join(failures),
        )

    # Switching ---------------------------------------------------------------------

    def _maybe_auto_switch(self, from_source: str, to_source: str, error: DataSourceError) -> None:
        if error.error_type in _NO_SWITCH_ERRORS:
            logger.debug("Not switching from %s on %s", from_source, error.error_type.value)
            return
        now = self._clock()
        if self._last_auto_switch is not None and now - self._last_auto_switch < self._switch_cooldown:
            logger.debug("Switch cooldown active; keeping %s as primary", from_source)
            return
        self._last_auto_switch = now
        self._switch(to_source, SwitchTrigger.PRIMARY_FAILURE, f"Primary {from_source} failed: {error}")

    def switch_to_data_source(
        self,
        name: str,
        *,
        trigger: SwitchTrigger = SwitchTrigger.MANUAL_SWITCH,
        reason: str = "Manual switch",
    ) -> bool:
        """Make ``name`` the primary source. Returns False when it already is."""
        source = self.get_data_source(name)
        if not source.enabled:
            raise ValueError(f"Data source '{name}' is disabled")
        if self._primary == name:
            return False
        self._switch(name, trigger, reason)
        return True

    def _switch(self, to_source: str, trigger: SwitchTrigger, reason: str) -> None:
        event = SwitchEvent(
            timestamp=datetime.now(timezone.utc),
            from_source=self._primary,
            to_source=to_source,
            trigger=trigger,
            reason=reason,
        )
        self._primary = to_source
        self._switch_count += 1
        self._history.append(event)
        logger.info(
            "Switched data source %s -> %s (%s): %s",
            event.from_source,
            to_source,
            trigger.value,
            reason,
        )
        self._notify(event)

    def _notify(self, event: SwitchEvent) -> None:
        for listener in list(self._listeners):
            try:
                outcome = listener(event)
                if inspect.isawaitable(outcome):
                    self._track_listener(outcome)
            except Exception as exc:
                logger.warning("Data source switch listener failed: %s", exc)

    def _track_listener(self, outcome: Awaitable[Any]) -> None:
        task = asyncio.ensure_future(outcome)
        self._listener_tasks.add(task)
        task.add_done_callback(self._on_listener_done)

    def _on_listener_done(self, task: asyncio.Future) -> None:
        self._listener_tasks.discard(task)
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            logger.warning("Data source switch listener failed: %s", exc)

    def add_switch_listener(self, listener: SwitchListener) -> None:
        self._listeners.append(listener)

    def remove_switch_listener(self, listener: SwitchListener) -> None:
        try:
            self._listeners.remove(listener)
        except ValueError:
            pass

    def get_switch_history(self, limit: Optional[int] = None) -> List[SwitchEvent]:
        events = list(reversed(self._history))
        if limit is not None:
            return events[: max(int(limit), 0)]
        return events

    # Health -------------------------------------------------------------------------

    async def check_health(self) -> Dict[str, DataSourceHealth]:
        """Probe every enabled source; fail over from an unhealthy primary or back to a recovered one."""
        sources = self._ordered_sources()
        results = await asyncio.gather(*(source.health_check() for source in sources))
        statuses = {health.name: health for health in results}

        by_priority = sorted(sources, key=lambda source: source.priority)
        best_healthy = next((source for source in by_priority if statuses[source.name].is_healthy), None)
        primary_health = statuses.get(self._primary) if self._primary else None

        if best_healthy is not None and best_healthy.name != self._primary:
            if primary_health is not None and not primary_health.is_healthy:
                self._switch(
                    best_healthy.name,
                    SwitchTrigger.HEALTH_CHECK_FAILURE,
                    f"Primary {self._primary} unhealthy: {primary_health.error_message}",
                )
            elif self._primary is None or best_healthy.priority < self._sources[self._primary].priority:
                self._switch(
                    best_healthy.name,
                    SwitchTrigger.RECOVERY_DETECTED,
                    f"Higher priority source {best_healthy.name} recovered",
                )
        return statuses

    def get_health_status(self) -> Dict[str, DataSourceHealth]:
        return {name: source.health for name, source in self._sources.items()}

    def get_data_source_summary(self) -> Dict[str, Any]:
        ordered = sorted(self._sources.values(), key=lambda source: source.priority)
        return {
            "primary": self._primary,
            "switchCount": self._switch_count,
            "sources": [
                {
                    "name": source.name,
                    "priority": source.priority,
                    "enabled": source.enabled,
                    "isPrimary": source.name == self._primary,
                    "health": source.health.to_dict(),
                }
                for source in ordered
            ],
        }


__all__ = ["DataSourceManager", "MAX_SWITCH_HISTORY"]
