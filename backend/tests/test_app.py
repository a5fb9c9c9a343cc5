import pytest
from fastapi.testclient import TestClient

import backend.src.app as app_module
from backend.src.config.runtime_config import SchedulerConfig
from backend.src.data_sources import SyncInProgressError
from backend.src.schedulers import DataSyncScheduler
from backend.src.services import build_data_source_manager
from backend.src.state import SyncMonitor


@pytest.fixture
def client(tmp_path, monkeypatch):
    monitor = SyncMonitor(state_file=tmp_path / "control_state.json")
    manager = build_data_source_manager(use_mock=True)
    scheduler = DataSyncScheduler(manager, SchedulerConfig(batch_pause_seconds=0.0), monitor=monitor)
    monkeypatch.setattr(app_module, "monitor", monitor)
    monkeypatch.setattr(app_module, "data_source_manager", manager)
    monkeypatch.setattr(app_module, "data_sync_scheduler", scheduler)
    with TestClient(app_module.app) as test_client:
        yield test_client


def test_health_endpoint(client):
    assert client.get("/health").json() == {"status": "ok"}


def test_control_status_reports_running_scheduler(client):
    payload = client.get("/control/status").json()

    assert payload["schedulerRunning"] is True
    assert payload["syncRunning"] is False
    assert payload["lastResult"] is None
    assert payload["config"]["batchSize"] == 100
    assert payload["jobs"]["daily_sync"]["status"] == "idle"


def test_manual_sync_runs_against_mock_sources(client):
    result = client.post("/control/sync").json()

    assert result["success"] is True
    assert result["processedStocks"] == 4
    assert result["totalStocks"] == 4

    status = client.get("/control/status").json()
    assert status["lastResult"]["processedStocks"] == 4
    assert status["jobs"]["daily_sync"]["status"] == "success"


def test_manual_sync_while_busy_returns_conflict(client, monkeypatch):
    async def busy():
        raise SyncInProgressError()

    monkeypatch.setattr(app_module.data_sync_scheduler, "trigger_manual_sync", busy)

    response = client.post("/control/sync")

    assert response.status_code == 409
    assert "in progress" in response.json()["detail"]


def test_scheduler_can_be_stopped_and_restarted(client):
    assert client.post("/control/scheduler/stop").json()["schedulerRunning"] is False
    assert client.post("/control/scheduler/start").json()["schedulerRunning"] is True


def test_data_source_summary_and_manual_switch(client):
    summary = client.get("/data-sources").json()
    assert summary["primary"] == "tushare_mock"
    assert [source["name"] for source in summary["sources"]] == ["tushare_mock", "tushare_mock_backup"]

    switched = client.post("/data-sources/switch", json={"name": "tushare_mock_backup", "reason": "drill"}).json()
    assert switched["switched"] is True
    assert switched["primary"] == "tushare_mock_backup"

    history = client.get("/data-sources/switch-history", params={"limit": 5}).json()
    assert history[0]["to"] == "tushare_mock_backup"
    assert history[0]["trigger"] == "manual_switch"
    assert history[0]["reason"] == "drill"


def test_switch_to_unknown_source_returns_not_found(client):
    response = client.post("/data-sources/switch", json={"name": "yahoo"})

    assert response.status_code == 404


def test_data_source_health_probes_every_source(client):
    payload = client.get("/data-sources/health").json()

    assert set(payload) == {"tushare_mock", "tushare_mock_backup"}
    assert all(entry["isHealthy"] for entry in payload.values())


def test_app_sources_use_retry_budget_from_control_file(tmp_path, monkeypatch):
    from backend.src.config import runtime_config

    monkeypatch.setattr(runtime_config, "CONFIG_FILE", tmp_path / "control_config.json")
    runtime_config.save_scheduler_config(SchedulerConfig(retry_attempts=0))
    monkeypatch.setenv(app_module.USE_MOCK_ENV_VAR, "1")
    monkeypatch.setattr(app_module, "monitor", SyncMonitor(state_file=tmp_path / "control_state.json"))
    monkeypatch.setattr(app_module, "scheduler_config", None)
    monkeypatch.setattr(app_module, "data_source_manager", None)
    monkeypatch.setattr(app_module, "data_sync_scheduler", None)

    scheduler = app_module.get_scheduler()
    manager = app_module.get_manager()

    assert scheduler.config.retry_attempts == 0
    retries = {
        name: manager.get_data_source(name).config.retry.max_retries
        for name in ("tushare_mock", "tushare_mock_backup")
    }
    assert retries == {"tushare_mock": 0, "tushare_mock_backup": 0}
