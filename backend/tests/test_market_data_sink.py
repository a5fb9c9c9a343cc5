import asyncio
from decimal import Decimal

from backend.src.data_sources.types import StockBasicInfo, StockDailyData
from backend.src.services.market_data_sink import PostgresMarketDataSink, daily_frame, stock_basic_frame


class DummyDAO:
    def __init__(self):
        self.frames = []

    def upsert(self, dataframe):
        self.frames.append(dataframe)
        return len(dataframe.index)


def _bar(trade_date, close="10.5"):
    return StockDailyData(
        ts_code="000001.SZ",
        trade_date=trade_date,
        open=Decimal("10"),
        high=Decimal("11"),
        low=Decimal("9.8"),
        close=Decimal(close),
        vol=1500.0,
        amount=15750.0,
    )


def test_stock_basic_frame_uses_tushare_columns():
    frame = stock_basic_frame(
        [StockBasicInfo(ts_code="000001.SZ", symbol="000001", name="平安银行", list_date="19910403")]
    )

    assert list(frame.columns) == ["ts_code", "symbol", "name", "area", "industry", "market", "list_date", "is_hs"]
    assert frame.loc[0, "list_date"] == "19910403"


def test_daily_frame_drops_duplicate_trade_dates():
    frame = daily_frame([_bar("20240102"), _bar("20240102", close="10.6"), _bar("20240103")])

    assert list(frame["trade_date"]) == ["20240102", "20240103"]
    assert frame["close"].iloc[0] == 10.5


def test_sink_hands_frames_to_daos():
    stock_dao = DummyDAO()
    daily_dao = DummyDAO()
    sink = PostgresMarketDataSink(stock_dao, daily_dao)

    async def scenario():
        stored_stocks = await sink.store_stock_basic(
            [StockBasicInfo(ts_code="000001.SZ", symbol="000001", name="平安银行")]
        )
        stored_bars = await sink.store_daily_data("000001.SZ", [_bar("20240102"), _bar("20240103")])
        return stored_stocks, stored_bars

    assert asyncio.run(scenario()) == (1, 2)
    assert len(stock_dao.frames) == 1
    assert len(daily_dao.frames[0].index) == 2


def test_sink_skips_empty_batches():
    daily_dao = DummyDAO()
    sink = PostgresMarketDataSink(DummyDAO(), daily_dao)

    assert asyncio.run(sink.store_daily_data("000001.SZ", [])) == 0
    assert asyncio.run(sink.store_stock_basic([])) == 0
    assert daily_dao.frames == []
