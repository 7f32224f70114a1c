"""
Technical indicator calculations over a ``BarSeries``.

Every function is pure: it reads closes (or full bars) and returns a fresh list
of points, never mutating its input. Insufficient data yields an empty list.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Callable, Dict, List, Sequence, Tuple

import numpy as np
import pandas as pd

from common_utils.market_data import BarSeries

logger = logging.getLogger(__name__)


class IndicatorKind(str, Enum):
    SMA = "SMA"
    EMA = "EMA"
    RSI = "RSI"
    MACD = "MACD"
    BOLLINGER = "BOLLINGER"
    VWAP = "VWAP"
    CUSTOM_SCRIPT = "SCRIPT"


DEFAULT_PERIODS = {
    IndicatorKind.SMA: 20,
    IndicatorKind.EMA: 20,
    IndicatorKind.RSI: 14,
    IndicatorKind.BOLLINGER: 20,
}
DEFAULT_MACD = (12, 26, 9)
DEFAULT_STD_DEV = 2.0

# Role names of the sub-series each kind renders; "" is the single-line role.
SERIES_ROLES: Dict[IndicatorKind, Tuple[str, ...]] = {
    IndicatorKind.SMA: ("",),
    IndicatorKind.EMA: ("",),
    IndicatorKind.RSI: ("",),
    IndicatorKind.MACD: ("line", "signal", "hist"),
    IndicatorKind.BOLLINGER: ("upper", "middle", "lower"),
    IndicatorKind.VWAP: ("",),
    IndicatorKind.CUSTOM_SCRIPT: ("",),
}


class UnsupportedIndicatorError(Exception):
    """Raised when an indicator kind has no calculation behind it."""

    def __init__(self, kind, indicator_id=None):
        self.kind = kind
        self.indicator_id = indicator_id
        label = getattr(kind, "value", kind)
        if indicator_id is not None:
            super().__init__(f"Indicator {indicator_id!r} of kind {label!r} is not supported")
        else:
            super().__init__(f"Indicator kind {label!r} is not supported")


@dataclass(frozen=True)
class ComputedPoint:
    time: int
    value: float


@dataclass(frozen=True)
class ConvergenceDivergencePoint:
    time: int
    main_value: float
    signal_value: float
    histogram_value: float

    @property
    def is_positive(self) -> bool:
        return self.histogram_value >= 0


@dataclass(frozen=True)
class BandPoint:
    time: int
    upper: float
    middle: float
    lower: float


def _check_period(name: str, period: int) -> None:
    if period is None or int(period) != period or period < 1:
        raise ValueError(f"{name} must be a positive integer, got {period!r}")


def _close_series(bars: BarSeries) -> pd.Series:
    return pd.Series(bars.closes, index=bars.times, dtype="float64")


def _ema_values(values: Sequence[float], period: int) -> np.ndarray:
    # Explicit recurrence: ewm(adjust=False) renormalises by (1-k)+k, which is
    # not always exactly 1.0 in floating point.
    k = 2.0 / (period + 1)
    out = np.empty(len(values), dtype=np.float64)
    if len(values) == 0:
        return out
    prev = float(values[0])
    out[0] = prev
    for i in range(1, len(values)):
        prev = float(values[i]) * k + prev * (1 - k)
        out[i] = prev
    return out


def simple_moving_average(bars: BarSeries, period: int) -> List[ComputedPoint]:
    """Mean of the trailing ``period`` closes, starting at index ``period - 1``."""
    _check_period("period", period)
    if period > len(bars):
        return []
    sma = _close_series(bars).rolling(window=period).mean().iloc[period - 1:]
    return [ComputedPoint(int(t), float(v)) for t, v in sma.items()]


def exponential_moving_average(bars: BarSeries, period: int) -> List[ComputedPoint]:
    """EMA seeded with the first close; one point per bar, no warm-up gap."""
    _check_period("period", period)
    if not bars:
        return []
    values = _ema_values(bars.closes, period)
    return [ComputedPoint(t, float(v)) for t, v in zip(bars.times, values)]


def _rsi_value(avg_gain: float, avg_loss: float) -> float:
    if avg_loss == 0:
        return 100.0
    rs = avg_gain / avg_loss
    return 100.0 - (100.0 / (1.0 + rs))


def relative_strength_index(bars: BarSeries, period: int = 14) -> List[ComputedPoint]:
    """Wilder RSI.

    The first ``period`` deltas seed the average gain/loss; every later bar is
    smoothed in and emitted, so the first point sits at index ``period + 1``.
    A zero average loss saturates the oscillator at 100.
    """
    _check_period("period", period)
    if len(bars) <= period + 1:
        return []
    closes = np.asarray(bars.closes, dtype=np.float64)
    deltas = np.diff(closes)
    gains = np.where(deltas > 0, deltas, 0.0)
    losses = np.where(deltas < 0, -deltas, 0.0)

    avg_gain = float(gains[:period].sum()) / period
    avg_loss = float(losses[:period].sum()) / period

    times = bars.times
    points = []
    for i in range(period + 1, len(closes)):
        avg_gain = (avg_gain * (period - 1) + float(gains[i - 1])) / period
        avg_loss = (avg_loss * (period - 1) + float(losses[i - 1])) / period
        points.append(ComputedPoint(times[i], _rsi_value(avg_gain, avg_loss)))
    return points


def moving_average_convergence_divergence(bars: BarSeries, fast: int = 12, slow: int = 26,
                                          signal: int = 9) -> List[ConvergenceDivergencePoint]:
    """MACD line, signal line and histogram.

    Fast and slow EMAs are joined on timestamp (inner join), never by position;
    timestamps missing from either side are dropped.
    """
    _check_period("fast", fast)
    _check_period("slow", slow)
    _check_period("signal", signal)
    fast_ema = exponential_moving_average(bars, fast)
    slow_ema = exponential_moving_average(bars, slow)
    if not fast_ema or not slow_ema:
        return []

    aligned = pd.concat(
        [
            pd.Series([p.value for p in fast_ema], index=[p.time for p in fast_ema]),
            pd.Series([p.value for p in slow_ema], index=[p.time for p in slow_ema]),
        ],
        axis=1,
        join="inner",
        keys=["fast", "slow"],
    ).sort_index()
    if aligned.empty:
        return []

    main = (aligned["fast"] - aligned["slow"]).to_numpy(dtype=np.float64)
    signal_line = _ema_values(main, signal)
    histogram = main - signal_line
    return [
        ConvergenceDivergencePoint(int(t), float(m), float(s), float(h))
        for t, m, s, h in zip(aligned.index, main, signal_line, histogram)
    ]


def bollinger_bands(bars: BarSeries, period: int = 20, std_dev: float = 2.0) -> List[BandPoint]:
    """Rolling mean of closes plus/minus ``std_dev`` sample standard deviations."""
    _check_period("period", period)
    if period < 2:
        raise ValueError(f"Bollinger bands need a period of at least 2, got {period}")
    if period > len(bars):
        return []
    closes = _close_series(bars)
    middle = closes.rolling(window=period).mean()
    spread = closes.rolling(window=period).std() * std_dev
    bands = pd.DataFrame({"upper": middle + spread, "middle": middle, "lower": middle - spread}).dropna()
    return [
        BandPoint(int(t), float(row.upper), float(row.middle), float(row.lower))
        for t, row in zip(bands.index, bands.itertuples(index=False))
    ]


def volume_weighted_average_price(bars: BarSeries) -> List[ComputedPoint]:
    """Cumulative VWAP of the typical price; bars before any volume trades are skipped."""
    if not bars:
        return []
    df = bars.to_frame()
    typical = (df["high"] + df["low"] + df["close"]) / 3.0
    cum_volume = df["volume"].cumsum()
    cum_value = (typical * df["volume"]).cumsum()
    vwap = (cum_value / cum_volume.where(cum_volume > 0)).dropna()
    return [ComputedPoint(int(t), float(v)) for t, v in vwap.items()]


def series_roles(kind) -> Tuple[str, ...]:
    try:
        return SERIES_ROLES[IndicatorKind(kind)]
    except (KeyError, ValueError):
        raise UnsupportedIndicatorError(kind) from None


def _period_of(spec) -> int:
    return spec.period or DEFAULT_PERIODS[IndicatorKind(spec.kind)]


def _single(points: List[ComputedPoint]) -> Dict[str, List[ComputedPoint]]:
    return {"": points}


def _macd_series(spec, bars: BarSeries) -> Dict[str, List[ComputedPoint]]:
    fast = getattr(spec, "fast", None) or DEFAULT_MACD[0]
    slow = getattr(spec, "slow", None) or DEFAULT_MACD[1]
    signal = getattr(spec, "signal", None) or DEFAULT_MACD[2]
    points = moving_average_convergence_divergence(bars, fast, slow, signal)
    return {
        "line": [ComputedPoint(p.time, p.main_value) for p in points],
        "signal": [ComputedPoint(p.time, p.signal_value) for p in points],
        "hist": [ComputedPoint(p.time, p.histogram_value) for p in points],
    }


def _bollinger_series(spec, bars: BarSeries) -> Dict[str, List[ComputedPoint]]:
    std_dev = getattr(spec, "std_dev", None) or DEFAULT_STD_DEV
    points = bollinger_bands(bars, _period_of(spec), std_dev)
    return {
        "upper": [ComputedPoint(p.time, p.upper) for p in points],
        "middle": [ComputedPoint(p.time, p.middle) for p in points],
        "lower": [ComputedPoint(p.time, p.lower) for p in points],
    }


def _custom_script(spec, bars: BarSeries):
    # Scripts are stored with the indicator but there is no interpreter for them yet.
    raise UnsupportedIndicatorError(spec.kind, spec.id)


_CALCULATORS: Dict[IndicatorKind, Callable] = {
    IndicatorKind.SMA: lambda spec, bars: _single(simple_moving_average(bars, _period_of(spec))),
    IndicatorKind.EMA: lambda spec, bars: _single(exponential_moving_average(bars, _period_of(spec))),
    IndicatorKind.RSI: lambda spec, bars: _single(relative_strength_index(bars, _period_of(spec))),
    IndicatorKind.MACD: _macd_series,
    IndicatorKind.BOLLINGER: _bollinger_series,
    IndicatorKind.VWAP: lambda spec, bars: _single(volume_weighted_average_price(bars)),
    IndicatorKind.CUSTOM_SCRIPT: _custom_script,
}


def compute_indicator(spec, bars: BarSeries) -> Dict[str, List[ComputedPoint]]:
    """Compute every sub-series of ``spec`` keyed by role name.

    ``spec`` needs ``id``, ``kind`` and ``period`` attributes, plus the
    MACD/Bollinger parameters for those kinds.
    """
    try:
        calculator = _CALCULATORS[IndicatorKind(spec.kind)]
    except (KeyError, ValueError):
        raise UnsupportedIndicatorError(spec.kind, getattr(spec, "id", None)) from None
    result = calculator(spec, bars)
    logger.debug("Computed %s for %s: %s", getattr(spec, "kind", "?"), getattr(spec, "id", "?"),
                 {role: len(points) for role, points in result.items()})
    return result
