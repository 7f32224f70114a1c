import pytest
from datetime import datetime
from unittest.mock import AsyncMock

from common_utils.market_data import Bar, BarSeries, api_error_message, fetch_bar_series


def test_bar_rejects_inconsistent_prices():
    with pytest.raises(ValueError):
        Bar(time=1, open=10.0, high=9.0, low=8.0, close=8.5)
    with pytest.raises(ValueError):
        Bar(time=1, open=10.0, high=12.0, low=10.5, close=11.0)
    with pytest.raises(ValueError):
        Bar(time=1, open=10.0, high=12.0, low=9.0, close=11.0, volume=-1)


def test_series_requires_strictly_increasing_times():
    a = Bar(100, 1.0, 1.0, 1.0, 1.0)
    b = Bar(100, 2.0, 2.0, 2.0, 2.0)
    with pytest.raises(ValueError):
        BarSeries([a, b])
    with pytest.raises(ValueError):
        BarSeries([Bar(200, 1.0, 1.0, 1.0, 1.0), a])


def test_apply_update_amends_latest_bar(bars_from):
    bars = bars_from([10.0, 11.0, 12.0])
    tick = Bar(bars.last.time, 12.0, 13.0, 11.5, 12.8, 2000)

    updated = bars.apply_update(tick)

    assert bars.classify_update(tick) == "amend"
    assert len(updated) == 3
    assert updated.last == tick
    assert bars.last.close == 12.0


def test_apply_update_appends_new_bar(bars_from):
    bars = bars_from([10.0, 11.0])
    tick = Bar(bars.last.time + 60, 11.0, 11.5, 10.5, 11.2)

    updated = bars.apply_update(tick)

    assert bars.classify_update(tick) == "append"
    assert len(updated) == 3
    assert len(bars) == 2


def test_apply_update_rejects_older_bar(bars_from):
    bars = bars_from([10.0, 11.0, 12.0])
    with pytest.raises(ValueError):
        bars.apply_update(Bar(bars[0].time, 10.0, 10.0, 10.0, 10.0))


def test_index_at_or_before(bars_from):
    bars = bars_from([1.0, 2.0, 3.0])
    assert bars.index_at_or_before(bars[0].time - 1) is None
    assert bars.index_at_or_before(bars[1].time) == 1
    assert bars.index_at_or_before(bars[2].time + 5) == 2


def test_from_records_sorts_and_dedupes():
    records = [
        {"time": 300, "open": 3, "high": 3, "low": 3, "close": 3, "volume": 30},
        {"time": 100, "open": 1, "high": 1, "low": 1, "close": 1, "volume": 10},
        {"time": 300, "open": 4, "high": 4, "low": 4, "close": 4, "volume": 40},
        {"time": 200, "open": None, "high": 2, "low": 2, "close": 2},
    ]
    bars = BarSeries.from_records(records)
    assert bars.times == [100, 300]
    assert bars.last.close == 4.0
    assert bars.last.volume == 40


def test_from_records_parses_timestamps():
    records = [{"timestamp": "2024-01-01T00:00:00", "open": 1, "high": 2, "low": 0.5, "close": 1.5}]
    bars = BarSeries.from_records(records)
    assert bars.times == [1704067200]
    assert bars[0].volume == 0


def test_from_records_without_time_column():
    with pytest.raises(ValueError, match="timestamp missing"):
        BarSeries.from_records([{"open": 1, "high": 1, "low": 1, "close": 1}])


def test_to_frame(bars_from):
    df = bars_from([5.0, 6.0]).to_frame()
    assert list(df.columns) == ["open", "high", "low", "close", "volume"]
    assert df.index.name == "time"
    assert df["close"].tolist() == [5.0, 6.0]


@pytest.mark.asyncio
async def test_fetch_bar_series():
    fetch_api = AsyncMock(return_value={"data": [
        {"time": 100, "open": 1, "high": 2, "low": 0.5, "close": 1.5, "volume": 10},
        {"time": 160, "open": 1.5, "high": 2, "low": 1, "close": 1.8, "volume": 12},
    ]})
    bars = await fetch_bar_series(fetch_api, "NSE_EQ|INE009A01021", datetime(2024, 1, 1), datetime(2024, 2, 1),
                                  unit="minute", endpoint="/historical")

    assert bars.times == [100, 160]
    fetch_api.assert_called_once()
    args, kwargs = fetch_api.call_args
    assert args[0] == "/historical"
    assert kwargs["params"]["from_date"] == "2024-01-01"
    assert kwargs["params"]["unit"] == "minute"


@pytest.mark.asyncio
@pytest.mark.parametrize("response", [
    {"error": {"code": "API_ERROR", "message": "boom"}, "status": 500},
    {"error": "plain failure"},
    {"data": []},
    {},
    None,
    {"data": [{"open": 1, "high": 1, "low": 1, "close": 1}]},
])
async def test_fetch_bar_series_returns_empty_on_bad_payload(response):
    fetch_api = AsyncMock(return_value=response)
    bars = await fetch_bar_series(fetch_api, "X", datetime(2024, 1, 1), datetime(2024, 1, 2))
    assert bars == BarSeries()


@pytest.mark.asyncio
async def test_fetch_bar_series_swallows_transport_errors():
    fetch_api = AsyncMock(side_effect=ConnectionError("down"))
    bars = await fetch_bar_series(fetch_api, "X", datetime(2024, 1, 1), datetime(2024, 1, 2))
    assert len(bars) == 0


@pytest.mark.parametrize("payload,expected", [
    ({"error": {"code": "API_ERROR", "message": "boom"}}, "boom"),
    ({"detail": "Not found"}, "Not found"),
    ({"error": "plain failure"}, "plain failure"),
    (["bad instrument", "bad range"], "bad instrument; bad range"),
    ("Internal Server Error", "Internal Server Error"),
    ({}, "Unknown API error"),
    ([], "Unknown API error"),
    (None, "Unknown API error"),
])
def test_api_error_message_handles_any_json_shape(payload, expected):
    assert api_error_message(payload) == expected


@pytest.mark.asyncio
async def test_fetch_bar_series_with_list_error_body():
    fetch_api = AsyncMock(return_value=["unexpected", "shape"])
    bars = await fetch_bar_series(fetch_api, "X", datetime(2024, 1, 1), datetime(2024, 1, 2))
    assert len(bars) == 0
