import asyncio
import random
from datetime import date, datetime
from decimal import Decimal

import pytest
import requests
from zoneinfo import ZoneInfo

from backend.src.config.runtime_config import SchedulerConfig
from backend.src.data_sources import (
    BaseDataSource,
    DataSourceConfig,
    DataSourceError,
    DataSourceErrorType,
    DataSourceManager,
    RetryConfig,
    StockBasicInfo,
    StockDailyData,
    TushareDataSource,
)
from backend.src.data_sources.tushare_source import error_type_for_code
from backend.src.mocks import FailureScenario, TushareAPIMock
from backend.src.schedulers import DataSyncScheduler


class SleepRecorder:
    def __init__(self):
        self.delays = []

    async def __call__(self, seconds):
        self.delays.append(seconds)


class FlakySource(BaseDataSource):
    def __init__(self, errors, *, max_retries=3, jitter=0.0, sleep=None):
        self.recorder = sleep or SleepRecorder()
        super().__init__(
            DataSourceConfig(
                name="flaky",
                retry=RetryConfig(max_retries=max_retries, base_delay=1.0, exponential_factor=2.0, jitter=jitter),
            ),
            sleep=self.recorder,
            rng=random.Random(7),
        )
        self.errors = list(errors)
        self.calls = 0

    async def _fetch_stock_basic(self):
        self.calls += 1
        if self.errors:
            raise self.errors.pop(0)
        return [StockBasicInfo(ts_code="000001.SZ", symbol="000001", name="平安银行")]

    async def _fetch_daily(self, symbol, start_date, end_date):
        return []


def _mock_source(mock, name="tushare_mock", priority=1, *, max_retries=0, timeout=5.0, **config):
    return TushareDataSource(
        mock,
        DataSourceConfig(
            name=name,
            priority=priority,
            timeout_seconds=timeout,
            retry=RetryConfig(max_retries=max_retries, base_delay=0.0, jitter=0.0),
            **config,
        ),
        sleep=SleepRecorder(),
    )


def test_retryable_errors_back_off_exponentially_then_succeed():
    source = FlakySource([ConnectionError("Network connection failed"), TimeoutError("Request timeout")])

    stocks = asyncio.run(source.fetch_stock_basic_info())

    assert [stock.ts_code for stock in stocks] == ["000001.SZ"]
    assert source.calls == 3
    assert source.recorder.delays == [1.0, 2.0]
    assert source.health.consecutive_failures == 0


def test_jitter_only_lengthens_backoff():
    source = FlakySource([ConnectionError("reset")] * 3, jitter=0.1)

    asyncio.run(source.fetch_stock_basic_info())

    for expected, actual in zip([1.0, 2.0, 4.0], source.recorder.delays):
        assert expected <= actual <= expected * 1.1


def test_non_retryable_error_is_raised_after_one_attempt():
    auth_error = DataSourceError(DataSourceErrorType.AUTH_ERROR, "Invalid token")
    source = FlakySource([auth_error])

    with pytest.raises(DataSourceError) as excinfo:
        asyncio.run(source.fetch_stock_basic_info())

    assert excinfo.value is auth_error
    assert excinfo.value.source == "flaky"
    assert source.calls == 1
    assert source.recorder.delays == []


def test_exhausted_retries_report_attempt_count():
    source = FlakySource([ConnectionError("Network connection failed")] * 5, max_retries=3)

    with pytest.raises(DataSourceError) as excinfo:
        asyncio.run(source.fetch_stock_basic_info())

    assert source.calls == 4
    assert excinfo.value.error_type is DataSourceErrorType.NETWORK_ERROR
    assert "failed after 4 attempts" in str(excinfo.value)
    assert "Network connection failed" in str(excinfo.value)
    assert len(source.recorder.delays) == 3


def test_source_turns_unhealthy_after_consecutive_failures():
    source = FlakySource([ConnectionError("down")] * 3, max_retries=0)

    for _ in range(3):
        with pytest.raises(DataSourceError):
            asyncio.run(source.fetch_stock_basic_info())

    assert source.health.is_healthy is False
    assert source.health.consecutive_failures == 3

    asyncio.run(source.fetch_stock_basic_info())
    assert source.health.is_healthy is True


@pytest.mark.parametrize(
    "message,expected",
    [
        ("Request timeout", DataSourceErrorType.TIMEOUT_ERROR),
        ("connect ETIMEDOUT 1.2.3.4:80", DataSourceErrorType.TIMEOUT_ERROR),
        ("read ECONNRESET", DataSourceErrorType.NETWORK_ERROR),
        ("Too Many Requests", DataSourceErrorType.RATE_LIMIT_ERROR),
        ("401 Unauthorized", DataSourceErrorType.AUTH_ERROR),
        ("ts_code is required", DataSourceErrorType.INVALID_PARAMS),
        ("API daily limit exceeded", DataSourceErrorType.API_QUOTA_EXCEEDED),
        ("something odd happened", DataSourceErrorType.NETWORK_ERROR),
    ],
)
def test_classify_error_by_message(message, expected):
    assert BaseDataSource.classify_error(RuntimeError(message)) is expected


@pytest.mark.parametrize(
    "status,expected",
    [
        (503, DataSourceErrorType.SERVER_ERROR_5XX),
        (429, DataSourceErrorType.RATE_LIMIT_ERROR),
        (403, DataSourceErrorType.AUTH_ERROR),
        (404, DataSourceErrorType.CLIENT_ERROR_4XX),
    ],
)
def test_classify_error_by_http_status(status, expected):
    response = requests.Response()
    response.status_code = status

    assert BaseDataSource.classify_error(requests.HTTPError(response=response)) is expected


def test_classify_error_for_transport_exceptions():
    assert BaseDataSource.classify_error(asyncio.TimeoutError()) is DataSourceErrorType.TIMEOUT_ERROR
    assert BaseDataSource.classify_error(requests.ConnectionError()) is DataSourceErrorType.NETWORK_ERROR
    assert BaseDataSource.classify_error(requests.ReadTimeout()) is DataSourceErrorType.TIMEOUT_ERROR


@pytest.mark.parametrize(
    "code,expected",
    [
        (-2001, DataSourceErrorType.API_QUOTA_EXCEEDED),
        (-2002, DataSourceErrorType.AUTH_ERROR),
        (-2003, DataSourceErrorType.SERVER_ERROR_5XX),
        (-2004, DataSourceErrorType.INVALID_PARAMS),
        (-2005, DataSourceErrorType.RATE_LIMIT_ERROR),
    ],
)
def test_tushare_codes_map_to_error_types(code, expected):
    assert error_type_for_code(code, "") is expected


def test_unknown_tushare_code_falls_back_to_message():
    assert error_type_for_code(40203, "抱歉，您没有访问该接口的权限 token") is DataSourceErrorType.AUTH_ERROR
    assert error_type_for_code(-1, "unexpected") is DataSourceErrorType.CLIENT_ERROR_4XX


def test_invalid_token_envelope_is_not_retried():
    mock = TushareAPIMock()
    mock.set_failure_mode(FailureScenario.INVALID_TOKEN)
    source = _mock_source(mock, max_retries=3)

    with pytest.raises(DataSourceError) as excinfo:
        asyncio.run(source.fetch_stock_basic_info())

    assert excinfo.value.error_type is DataSourceErrorType.AUTH_ERROR
    assert excinfo.value.status_code == -2002
    assert mock.request_count == 1


def test_service_unavailable_envelope_is_retried():
    mock = TushareAPIMock()
    mock.set_failure_mode(FailureScenario.SERVICE_UNAVAILABLE)
    source = _mock_source(mock, max_retries=2)

    with pytest.raises(DataSourceError) as excinfo:
        asyncio.run(source.fetch_stock_basic_info())

    assert excinfo.value.error_type is DataSourceErrorType.SERVER_ERROR_5XX
    assert mock.request_count == 3


def test_mock_network_failure_is_classified_as_network_error():
    mock = TushareAPIMock()
    mock.set_failure_mode(FailureScenario.NETWORK_ERROR)
    source = _mock_source(mock)

    with pytest.raises(DataSourceError) as excinfo:
        asyncio.run(source.fetch_daily_data("000001.SZ", "20240102", "20240102"))

    assert excinfo.value.error_type is DataSourceErrorType.NETWORK_ERROR


def test_stalled_request_is_cut_off_by_source_timeout():
    mock = TushareAPIMock(timeout_stall_seconds=5)
    mock.set_failure_mode(FailureScenario.TIMEOUT)
    source = _mock_source(mock, timeout=0.05)

    with pytest.raises(DataSourceError) as excinfo:
        asyncio.run(source.fetch_stock_basic_info())

    assert excinfo.value.error_type is DataSourceErrorType.TIMEOUT_ERROR


def test_local_request_budget_raises_rate_limit():
    source = _mock_source(TushareAPIMock(), requests_per_minute=2)

    asyncio.run(source.fetch_stock_basic_info())
    asyncio.run(source.fetch_stock_basic_info())
    with pytest.raises(DataSourceError) as excinfo:
        asyncio.run(source.fetch_stock_basic_info())

    assert excinfo.value.error_type is DataSourceErrorType.RATE_LIMIT_ERROR


def test_local_daily_budget_raises_quota_exceeded():
    source = _mock_source(TushareAPIMock(), requests_per_day=1)

    asyncio.run(source.fetch_stock_basic_info())
    with pytest.raises(DataSourceError) as excinfo:
        asyncio.run(source.fetch_stock_basic_info())

    assert excinfo.value.error_type is DataSourceErrorType.API_QUOTA_EXCEEDED


def test_tushare_source_parses_mock_envelopes():
    mock = TushareAPIMock(anchor_date=date(2024, 3, 31))
    source = _mock_source(mock)

    stocks = asyncio.run(source.fetch_stock_basic_info())
    bars = asyncio.run(source.fetch_daily_data("600036.SH", "20240325", "20240331"))

    assert [stock.ts_code for stock in stocks] == ["000001.SZ", "000002.SZ", "600000.SH", "600036.SH"]
    assert stocks[0].is_hs == "S"
    assert [bar.trade_date for bar in bars] == [f"202403{day}" for day in range(25, 32)]
    assert all(isinstance(bar.close, Decimal) for bar in bars)


def test_stock_validation_drops_malformed_records():
    records = [
        StockBasicInfo(ts_code="000001.SZ", symbol="000001", name="平安银行"),
        StockBasicInfo(ts_code="AAPL", symbol="AAPL", name="Apple"),
        StockBasicInfo(ts_code="600000.SH", symbol="600000", name=" "),
        StockBasicInfo(ts_code="000001.SZ", symbol="000001", name="平安银行"),
        StockBasicInfo(ts_code="830799.BJ", symbol="830799", name="艾融软件"),
    ]

    valid, quality = BaseDataSource.validate_stock_basic(records)

    assert [record.ts_code for record in valid] == ["000001.SZ", "830799.BJ"]
    assert quality.is_valid is False
    assert quality.record_count == 5
    assert len(quality.issues) == 3


def test_daily_validation_rejects_inconsistent_bars():
    def bar(trade_date, open_, high, low, close, vol=1.0):
        return StockDailyData(
            ts_code="000001.SZ",
            trade_date=trade_date,
            open=Decimal(open_),
            high=Decimal(high),
            low=Decimal(low),
            close=Decimal(close),
            vol=vol,
        )

    records = [
        bar("20240102", "10", "11", "9", "10.5"),
        bar("20240103", "10", "9.5", "9", "10.5"),
        bar("20240104", "0", "11", "9", "10"),
        bar("20240105", "10", "11", "9", "10", vol=-1.0),
        bar("20240108", "10", "10001", "9", "10"),
    ]

    valid, quality = BaseDataSource.validate_daily(records)

    assert [record.trade_date for record in valid] == ["20240102"]
    assert len(quality.issues) == 4


def _end_to_end_scheduler(manager):
    return DataSyncScheduler(
        manager,
        SchedulerConfig(batch_size=2, batch_pause_seconds=0.0),
        now=lambda: datetime(2024, 3, 29, 17, 0, tzinfo=ZoneInfo("Asia/Shanghai")),
    )


def test_scheduler_syncs_mock_universe_end_to_end():
    manager = DataSourceManager()
    manager.register_data_source(_mock_source(TushareAPIMock(anchor_date=date(2024, 3, 31))))

    result = asyncio.run(_end_to_end_scheduler(manager).execute_daily_sync())

    assert result.success is True
    assert result.processed_stocks == 4
    assert result.total_stocks == 4


def test_scheduler_survives_primary_outage_through_backup():
    primary_mock = TushareAPIMock(anchor_date=date(2024, 3, 31))
    primary_mock.set_failure_mode(FailureScenario.NETWORK_ERROR)
    manager = DataSourceManager()
    manager.register_data_source(_mock_source(primary_mock, "tushare_mock", 1))
    manager.register_data_source(
        _mock_source(TushareAPIMock(seed=20240102, anchor_date=date(2024, 3, 31)), "tushare_mock_backup", 2)
    )

    result = asyncio.run(_end_to_end_scheduler(manager).execute_daily_sync())

    assert result.success is True
    assert result.processed_stocks == 4
    assert manager.primary_source == "tushare_mock_backup"
