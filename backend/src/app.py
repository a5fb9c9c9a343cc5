"""
FastAPI application exposing the Neostock data sync scheduler and data source
control APIs.
"""

from __future__ import annotations

import logging
import os
from typing import Any, Dict, List, Optional

from fastapi import Body, FastAPI, HTTPException, Query
from fastapi.middleware.cors import CORSMiddleware
from pydantic import BaseModel, Field

from .config.runtime_config import SchedulerConfig, load_scheduler_config
from .data_sources import DataSourceManager, SyncInProgressError
from .schedulers import DataSyncScheduler, SyncResult
from .services import build_data_source_manager, build_scheduler
from .state import monitor

logger = logging.getLogger(__name__)

USE_MOCK_ENV_VAR = "NEOSTOCK_USE_MOCK"

data_source_manager: Optional[DataSourceManager] = None
data_sync_scheduler: Optional[DataSyncScheduler] = None
scheduler_config: Optional[SchedulerConfig] = None


def _use_mock() -> bool:
    return os.getenv(USE_MOCK_ENV_VAR, "").strip().lower() in {"1", "true", "yes", "on"}


def get_scheduler_config() -> SchedulerConfig:
    # Shared so the sources retry with the same budget the scheduler reports.
    global scheduler_config
    if scheduler_config is None:
        scheduler_config = load_scheduler_config()
    return scheduler_config


def get_manager() -> DataSourceManager:
    global data_source_manager
    if data_source_manager is None:
        data_source_manager = build_data_source_manager(config=get_scheduler_config(), use_mock=_use_mock())
    return data_source_manager


def get_scheduler() -> DataSyncScheduler:
    global data_sync_scheduler
    if data_sync_scheduler is None:
        data_sync_scheduler = build_scheduler(
            config=get_scheduler_config(),
            use_mock=_use_mock(),
            monitor=monitor,
            manager=get_manager(),
        )
    return data_sync_scheduler


class JobStatusPayload(BaseModel):
    status: str
    started_at: Optional[str] = Field(None, alias="startedAt")
    finished_at: Optional[str] = Field(None, alias="finishedAt")
    progress: float
    completed: int = 0
    total: Optional[int] = None
    error_count: int = Field(0, alias="errorCount")
    total_rows: Optional[int] = Field(None, alias="totalRows")
    message: Optional[str] = None
    error: Optional[str] = None
    last_duration: Optional[float] = Field(None, alias="lastDuration")
    last_success_at: Optional[str] = Field(None, alias="lastSuccessAt")


class SyncResultPayload(BaseModel):
    success: bool
    processed_stocks: int = Field(..., alias="processedStocks")
    total_stocks: int = Field(..., alias="totalStocks")
    errors: List[str]
    duration: float
    timestamp: str


class SchedulerConfigPayload(BaseModel):
    cron_expression: str = Field(..., alias="cronExpression")
    batch_size: int = Field(..., alias="batchSize")
    retry_attempts: int = Field(..., alias="retryAttempts")
    enabled: bool
    batch_pause_seconds: float = Field(..., alias="batchPauseSeconds")
    poll_interval_seconds: int = Field(..., alias="pollIntervalSeconds")
    timezone: str


class ControlStatusResponse(BaseModel):
    scheduler_running: bool = Field(..., alias="schedulerRunning")
    sync_running: bool = Field(..., alias="syncRunning")
    jobs: Dict[str, JobStatusPayload]
    last_result: Optional[SyncResultPayload] = Field(None, alias="lastResult")
    config: SchedulerConfigPayload


class SwitchDataSourceRequest(BaseModel):
    name: str = Field(..., min_length=1)
    reason: Optional[str] = None


def _result_to_payload(result: SyncResult) -> SyncResultPayload:
    return SyncResultPayload(**result.to_dict())


def _control_status(scheduler: DataSyncScheduler) -> ControlStatusResponse:
    config = scheduler.config
    last_result = scheduler.last_result
    return ControlStatusResponse(
        schedulerRunning=scheduler.is_scheduler_running(),
        syncRunning=scheduler.is_sync_running(),
        jobs={name: JobStatusPayload(**payload) for name, payload in monitor.snapshot().items()},
        lastResult=_result_to_payload(last_result) if last_result else None,
        config=SchedulerConfigPayload(
            cronExpression=config.cron_expression,
            batchSize=config.batch_size,
            retryAttempts=config.retry_attempts,
            enabled=config.enabled,
            batchPauseSeconds=config.batch_pause_seconds,
            pollIntervalSeconds=config.poll_interval_seconds,
            timezone=config.timezone,
        ),
    )


app = FastAPI(title="Neostock API", version="0.1.0")

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.on_event("startup")
async def startup_event() -> None:
    scheduler = get_scheduler()
    scheduler.start()


@app.on_event("shutdown")
async def shutdown_event() -> None:
    if data_sync_scheduler is not None:
        data_sync_scheduler.stop()


@app.get("/health")
def health_check() -> dict[str, str]:
    """Simple health probe."""
    return {"status": "ok"}


@app.get("/control/status", response_model=ControlStatusResponse)
def get_control_status() -> ControlStatusResponse:
    return _control_status(get_scheduler())


@app.post("/control/scheduler/start", response_model=ControlStatusResponse)
async def start_scheduler() -> ControlStatusResponse:
    scheduler = get_scheduler()
    scheduler.start()
    return _control_status(scheduler)


@app.post("/control/scheduler/stop", response_model=ControlStatusResponse)
async def stop_scheduler() -> ControlStatusResponse:
    scheduler = get_scheduler()
    scheduler.stop()
    return _control_status(scheduler)


@app.post("/control/sync", response_model=SyncResultPayload)
async def trigger_sync() -> SyncResultPayload:
    scheduler = get_scheduler()
    try:
        result = await scheduler.trigger_manual_sync()
    except SyncInProgressError as exc:
        raise HTTPException(status_code=409, detail=str(exc)) from exc
    return _result_to_payload(result)


@app.get("/data-sources")
def get_data_sources() -> Dict[str, Any]:
    return get_manager().get_data_source_summary()


@app.get("/data-sources/health")
async def get_data_source_health() -> Dict[str, Any]:
    statuses = await get_manager().check_health()
    return {name: health.to_dict() for name, health in statuses.items()}


@app.get("/data-sources/switch-history")
def get_switch_history(limit: int = Query(20, ge=1, le=100)) -> List[Dict[str, Any]]:
    return [event.to_dict() for event in get_manager().get_switch_history(limit)]


@app.post("/data-sources/switch")
def switch_data_source(payload: SwitchDataSourceRequest = Body(...)) -> Dict[str, Any]:
    manager = get_manager()
    try:
        switched = manager.switch_to_data_source(payload.name, reason=payload.reason or "Manual switch")
    except KeyError as exc:
        raise HTTPException(status_code=404, detail=f"Unknown data source '{payload.name}'") from exc
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    summary = manager.get_data_source_summary()
    summary["switched"] = switched
    return summary


__all__ = ["app", "get_manager", "get_scheduler", "get_scheduler_config"]
