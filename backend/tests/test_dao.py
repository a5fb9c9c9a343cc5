import datetime as dt

import pandas as pd

from backend.src.config.settings import PostgresSettings
from backend.src.dao import DailyTradeDAO, StockBasicDAO
from backend.src.dao import base as dao_base
from backend.src.dao.base import connection_kwargs, frame_to_rows


def _settings(**overrides) -> PostgresSettings:
    options = dict(
        host="db",
        port=5433,
        database="market",
        user="sync",
        password="secret",
        schema="neostock",
        stock_table="stocks",
        daily_trade_table="bars",
    )
    options.update(overrides)
    return PostgresSettings(**options)


def test_connection_kwargs_include_server_options_only_when_set():
    plain = connection_kwargs(_settings())
    tuned = connection_kwargs(_settings(statement_timeout_ms=5000, idle_in_transaction_session_timeout_ms=1000))

    assert plain["dbname"] == "market"
    assert plain["application_name"] == "neostock_backend"
    assert "options" not in plain
    assert tuned["options"] == "-c statement_timeout=5000 -c idle_in_transaction_session_timeout=1000"


def test_frame_to_rows_orders_columns_and_nulls_missing_values():
    frame = pd.DataFrame(
        [
            {"close": 10.5, "ts_code": "000001.SZ", "trade_date": "20240102", "vol": None},
            {"close": float("nan"), "ts_code": "000002.SZ", "trade_date": "bad", "vol": 10.0},
        ]
    )

    rows = frame_to_rows(frame, ("ts_code", "trade_date", "close", "vol", "amount"), ("trade_date",))

    assert rows[0] == ("000001.SZ", dt.date(2024, 1, 2), 10.5, None, None)
    assert rows[1][0] == "000002.SZ"
    assert rows[1][1] is None
    assert rows[1][2] is None


def test_frame_to_rows_handles_empty_frames():
    assert frame_to_rows(pd.DataFrame(), ("ts_code",)) == []
    assert frame_to_rows(None, ("ts_code",)) == []


def test_table_names_come_from_settings():
    settings = _settings()

    assert StockBasicDAO(settings).table_name == "stocks"
    assert DailyTradeDAO(settings).table_name == "bars"
    assert DailyTradeDAO.spec.conflict_keys == ("ts_code", "trade_date")


def test_upsert_of_empty_frame_never_connects(monkeypatch):
    def fail_connect(**kwargs):
        raise AssertionError("connect should not be called")

    monkeypatch.setattr(dao_base.psycopg2, "connect", fail_connect)

    assert DailyTradeDAO(_settings()).upsert(pd.DataFrame(columns=["ts_code", "trade_date"])) == 0
