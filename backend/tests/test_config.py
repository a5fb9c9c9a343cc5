import json

import pytest

from backend.src.config import runtime_config
from backend.src.config.runtime_config import SchedulerConfig
from backend.src.config.settings import CONFIG_PATH_ENV_VAR, load_settings


def test_scheduler_config_defaults():
    config = SchedulerConfig()

    assert config.cron_expression == "0 17 * * *"
    assert config.batch_size == 100
    assert config.retry_attempts == 3
    assert config.enabled is True
    assert config.timezone == "Asia/Shanghai"


def test_scheduler_config_accepts_camel_case_keys():
    config = SchedulerConfig.from_dict(
        {
            "cronExpression": "30 16 * * 1-5",
            "batchSize": "25",
            "retryAttempts": 5,
            "enabled": "off",
            "batchPauseSeconds": 0.5,
            "pollIntervalSeconds": 60,
        }
    )

    assert config.cron_expression == "30 16 * * 1-5"
    assert config.batch_size == 25
    assert config.retry_attempts == 5
    assert config.enabled is False
    assert config.batch_pause_seconds == 0.5
    assert config.poll_interval_seconds == 60


def test_scheduler_config_sanitizes_invalid_values():
    config = SchedulerConfig.from_dict(
        {
            "cron_expression": "every day at five",
            "batch_size": 0,
            "retry_attempts": -2,
            "enabled": "maybe",
            "batch_pause_seconds": "slow",
            "poll_interval_seconds": True,
            "timezone": "Mars/Olympus",
        }
    )

    assert config.cron_expression == "0 17 * * *"
    assert config.batch_size == 1
    assert config.retry_attempts == 0
    assert config.enabled is True
    assert config.batch_pause_seconds == 1.0
    assert config.poll_interval_seconds == 300
    assert config.timezone == "Asia/Shanghai"


def test_scheduler_config_builds_cron_trigger():
    trigger = SchedulerConfig(cron_expression="0 17 * * *").build_trigger()

    assert "hour='17'" in str(trigger)


def test_scheduler_config_round_trips_through_control_file(tmp_path, monkeypatch):
    config_file = tmp_path / "control_config.json"
    monkeypatch.setattr(runtime_config, "CONFIG_FILE", config_file)

    assert runtime_config.load_scheduler_config() == SchedulerConfig()
    assert config_file.exists()

    updated = SchedulerConfig(batch_size=20, enabled=False)
    runtime_config.save_scheduler_config(updated)

    assert json.loads(config_file.read_text(encoding="utf-8"))["scheduler"]["batch_size"] == 20
    assert runtime_config.load_scheduler_config() == updated


def _write_settings(path, payload):
    path.write_text(json.dumps(payload), encoding="utf-8")
    return path


def test_load_settings_from_env_override(tmp_path, monkeypatch):
    settings_file = _write_settings(
        tmp_path / "settings.json",
        {
            "tushare": {"token": "abc", "requests_per_minute": 50},
            "data_sources": {"switch_cooldown_seconds": 5},
            "postgres": {"database": "neostock", "user": "svc", "password": "secret"},
        },
    )
    monkeypatch.setenv(CONFIG_PATH_ENV_VAR, str(settings_file))

    settings = load_settings()

    assert settings.tushare.token == "abc"
    assert settings.tushare.requests_per_minute == 50
    assert settings.tushare.base_url == "http://api.tushare.pro"
    assert settings.data_sources.switch_cooldown_seconds == 5.0
    assert settings.postgres is not None
    assert settings.postgres.schema == "public"
    assert settings.postgres.application_name == "neostock_backend"


def test_load_settings_without_postgres(tmp_path):
    settings_file = _write_settings(tmp_path / "settings.json", {"tushare": {"token": "abc"}})

    settings = load_settings(str(settings_file))

    assert settings.postgres is None
    assert settings.data_sources.retry_jitter == 0.1


def test_load_settings_requires_tushare_token(tmp_path):
    missing_section = _write_settings(tmp_path / "a.json", {"postgres": {}})
    missing_token = _write_settings(tmp_path / "b.json", {"tushare": {}})

    with pytest.raises(KeyError):
        load_settings(str(missing_section))
    with pytest.raises(KeyError):
        load_settings(str(missing_token))


def test_load_settings_reports_bad_files(tmp_path):
    broken = tmp_path / "broken.json"
    broken.write_text("{not json", encoding="utf-8")

    with pytest.raises(ValueError):
        load_settings(str(broken))
    with pytest.raises(FileNotFoundError):
        load_settings(str(tmp_path / "missing.json"))


def test_blank_postgres_values_fall_back_to_defaults(tmp_path):
    settings_file = _write_settings(
        tmp_path / "settings.json",
        {
            "tushare": {"token": "abc"},
            "postgres": {
                "database": "neostock",
                "user": "svc",
                "password": "secret",
                "port": "6543",
                "application_name": "  ",
                "statement_timeout_ms": "",
                "idle_in_transaction_session_timeout_ms": 2000,
            },
        },
    )

    postgres = load_settings(str(settings_file)).postgres

    assert postgres.port == 6543
    assert postgres.host == "localhost"
    assert postgres.application_name == "neostock_backend"
    assert postgres.statement_timeout_ms is None
    assert postgres.idle_in_transaction_session_timeout_ms == 2000


def test_postgres_section_requires_credentials(tmp_path):
    settings_file = _write_settings(
        tmp_path / "settings.json",
        {"tushare": {"token": "abc"}, "postgres": {"database": "neostock", "user": "svc"}},
    )

    with pytest.raises(KeyError, match="postgres.password"):
        load_settings(str(settings_file))
