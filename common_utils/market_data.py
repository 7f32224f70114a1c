"""
Price bars consumed by the chart workstation.

A ``BarSeries`` is the immutable, time-ordered OHLCV input to every indicator
calculation. Live updates arrive one bar at a time and either amend the most
recent bar or append a new one; each update yields a new series.
"""
from __future__ import annotations

import logging
from bisect import bisect_right
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Dict, Iterable, Iterator, List, Optional, Sequence, Tuple

import pandas as pd

logger = logging.getLogger(__name__)

BAR_COLUMNS = ["open", "high", "low", "close", "volume"]

UPDATE_AMEND = "amend"
UPDATE_APPEND = "append"


@dataclass(frozen=True)
class Bar:
    """One OHLCV sample; ``time`` is a unix timestamp in seconds."""
    time: int
    open: float
    high: float
    low: float
    close: float
    volume: int = 0

    def __post_init__(self):
        if self.volume < 0:
            raise ValueError(f"Bar at {self.time} has negative volume {self.volume}")
        if self.low > min(self.open, self.close):
            raise ValueError(f"Bar at {self.time}: low {self.low} above open/close")
        if self.high < max(self.open, self.close):
            raise ValueError(f"Bar at {self.time}: high {self.high} below open/close")

    def to_candle(self) -> Dict[str, Any]:
        return {"time": self.time, "open": self.open, "high": self.high,
                "low": self.low, "close": self.close}


class BarSeries:
    """Immutable sequence of bars with strictly increasing ``time``."""

    def __init__(self, bars: Iterable[Bar] = ()):
        self._bars: Tuple[Bar, ...] = tuple(bars)
        for prev, cur in zip(self._bars, self._bars[1:]):
            if cur.time <= prev.time:
                raise ValueError(
                    f"Bars must be strictly increasing in time ({prev.time} -> {cur.time})"
                )

    def __len__(self) -> int:
        return len(self._bars)

    def __iter__(self) -> Iterator[Bar]:
        return iter(self._bars)

    def __getitem__(self, index):
        return self._bars[index]

    def __bool__(self) -> bool:
        return bool(self._bars)

    def __eq__(self, other) -> bool:
        if not isinstance(other, BarSeries):
            return NotImplemented
        return self._bars == other._bars

    def __repr__(self) -> str:
        if not self._bars:
            return "BarSeries([])"
        return f"BarSeries({len(self._bars)} bars, {self._bars[0].time}..{self._bars[-1].time})"

    @property
    def last(self) -> Optional[Bar]:
        return self._bars[-1] if self._bars else None

    @property
    def times(self) -> List[int]:
        return [b.time for b in self._bars]

    @property
    def closes(self) -> List[float]:
        return [b.close for b in self._bars]

    def index_at_or_before(self, time: int) -> Optional[int]:
        """Position of the last bar whose time is <= ``time``."""
        pos = bisect_right(self.times, time) - 1
        return pos if pos >= 0 else None

    def to_frame(self) -> pd.DataFrame:
        """DataFrame indexed by ``time`` with float OHLC and integer volume."""
        df = pd.DataFrame(
            [(b.time, b.open, b.high, b.low, b.close, b.volume) for b in self._bars],
            columns=["time"] + BAR_COLUMNS,
        )
        df = df.astype({"open": "float64", "high": "float64", "low": "float64",
                        "close": "float64", "volume": "int64"})
        return df.set_index("time")

    def classify_update(self, bar: Bar) -> str:
        last = self.last
        if last is None or bar.time > last.time:
            return UPDATE_APPEND
        if bar.time == last.time:
            return UPDATE_AMEND
        raise ValueError(f"Update at {bar.time} is older than the latest bar at {last.time}")

    def apply_update(self, bar: Bar) -> "BarSeries":
        """Return a new series with ``bar`` amending the latest bar or appended after it."""
        kind = self.classify_update(bar)
        if kind == UPDATE_AMEND:
            return BarSeries(self._bars[:-1] + (bar,))
        return BarSeries(self._bars + (bar,))

    @classmethod
    def from_records(cls, records: Sequence[Dict[str, Any]]) -> "BarSeries":
        """Build a series from backend candle dicts.

        Each record carries either ``time`` (epoch seconds) or ``timestamp``
        (anything ``pd.to_datetime`` understands). Rows missing OHLC values are
        dropped and duplicate timestamps keep the last occurrence.
        """
        if not records:
            return cls()
        df = pd.DataFrame(list(records))
        if "time" in df.columns:
            df["time"] = pd.to_numeric(df["time"], errors="coerce")
        elif "timestamp" in df.columns:
            df["time"] = _epoch_seconds(pd.to_datetime(df["timestamp"], errors="coerce"))
        else:
            raise ValueError("timestamp missing in data")
        if "volume" not in df.columns:
            df["volume"] = 0
        df = df[["time"] + BAR_COLUMNS].dropna(subset=["time", "open", "high", "low", "close"])
        df["volume"] = df["volume"].fillna(0)
        df = df.sort_values("time").drop_duplicates(subset="time", keep="last")
        return cls(
            Bar(
                time=int(row.time),
                open=float(row.open),
                high=float(row.high),
                low=float(row.low),
                close=float(row.close),
                volume=int(row.volume),
            )
            for row in df.itertuples(index=False)
        )


def _epoch_seconds(ts: pd.Series) -> pd.Series:
    if getattr(ts.dt, "tz", None) is not None:
        ts = ts.dt.tz_convert("UTC").dt.tz_localize(None)
    epoch = pd.Timestamp("1970-01-01")
    return (ts - epoch) // pd.Timedelta(seconds=1)


def api_error_message(payload: Any, default: str = "Unknown API error") -> str:
    """Readable message from an API error body of any JSON shape."""
    if isinstance(payload, dict):
        detail = payload.get("error") or payload.get("detail") or payload.get("message")
        if isinstance(detail, dict):
            detail = detail.get("message") or detail.get("detail")
        return str(detail) if detail else default
    if isinstance(payload, (list, tuple)):
        return "; ".join(str(item) for item in payload) or default
    return str(payload) if payload else default


async def fetch_bar_series(fetch_api, instrument: str, from_date: datetime, to_date: datetime,
                           unit: str = "day", interval: int = 1,
                           endpoint: str = "/historical-data/Upstox") -> BarSeries:
    """Fetch candles for ``instrument`` through the async ``fetch_api`` callable.

    Error payloads, empty responses and malformed candles produce an empty
    series; the chart then renders nothing instead of failing.
    """
    params = {
        "instrument": instrument,
        "from_date": from_date.strftime("%Y-%m-%d"),
        "to_date": to_date.strftime("%Y-%m-%d"),
        "interval": interval,
        "unit": unit,
        "source": "default",
    }
    try:
        resp = await fetch_api(endpoint, params=params)
    except Exception:
        logger.exception("Data fetch failed for %s", instrument)
        return BarSeries()

    if not isinstance(resp, dict) or not resp or resp.get("error"):
        logger.warning("Failed to fetch bars for %s: %s", instrument, api_error_message(resp, "No response"))
        return BarSeries()

    candles = resp.get("data", [])
    if not candles:
        logger.warning("No bars for %s between %s and %s", instrument,
                       params["from_date"], params["to_date"])
        return BarSeries()

    try:
        series = BarSeries.from_records(candles)
    except ValueError:
        logger.exception("Malformed candles for %s", instrument)
        return BarSeries()
    logger.debug("Fetched %d bars for %s", len(series), instrument)
    return series
