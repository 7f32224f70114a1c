import os
import sys

import pytest

project_root = os.path.abspath(os.path.join(os.path.dirname(__file__), ".."))
if project_root not in sys.path:
    sys.path.insert(0, project_root)

from common_utils.market_data import Bar, BarSeries
from frontend.chart_settings import UnpaddedChartSettings
from frontend.pane_layout import PaneLayoutAllocator
from frontend.series_reconciler import SeriesReconciler
from tests.mock_renderer import RecordingRenderer

START_TIME = 1_700_000_000
DAY = 86_400


def make_bars(closes, start=START_TIME, step=DAY, volume=1000):
    bars = []
    for i, close in enumerate(closes):
        bars.append(Bar(time=start + i * step, open=close, high=close + 0.5,
                        low=close - 0.5, close=close, volume=volume))
    return BarSeries(bars)


@pytest.fixture
def rising_bars():
    """30 bars closing at 100, 101, ..., 129"""
    return make_bars([100.0 + i for i in range(30)])


@pytest.fixture
def renderer():
    return RecordingRenderer()


@pytest.fixture
def settings():
    return UnpaddedChartSettings()


@pytest.fixture
def reconciler(renderer, settings):
    return SeriesReconciler(renderer, PaneLayoutAllocator(settings.pane_height), settings)


@pytest.fixture
def bars_from():
    """Factory fixture: bars_from([closes...]) -> BarSeries"""
    return make_bars
