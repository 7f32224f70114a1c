"""
Chart workstation state and its reconciliation triggers.

The workstation keeps the current bars, indicator configuration and optional
comparison symbol. Every state change goes through one of the trigger methods
below, each of which runs exactly one reconciliation pass before returning.
"""
import logging
from typing import Dict, Optional

from common_utils.market_data import Bar, BarSeries
from frontend.indicator_config import IndicatorConfigSet, IndicatorSpec, new_indicator
from frontend.series_reconciler import ReconcileReport, SeriesReconciler

logger = logging.getLogger(__name__)


class ChartWorkstation:
    def __init__(self, reconciler: SeriesReconciler, symbol: str = "",
                 indicators: Optional[IndicatorConfigSet] = None):
        self.reconciler = reconciler
        self.symbol = symbol
        self.bars = BarSeries()
        self.indicators = indicators or IndicatorConfigSet()
        self.comparison_symbol: Optional[str] = None
        self.comparison_bars: Optional[BarSeries] = None
        self.last_report: Optional[ReconcileReport] = None

    def refresh(self) -> ReconcileReport:
        comparison = self.comparison_bars if self.comparison_symbol else None
        self.last_report = self.reconciler.reconcile(self.bars, self.indicators, comparison)
        return self.last_report

    # Bar feed

    def load_bars(self, bars: BarSeries, symbol: Optional[str] = None) -> ReconcileReport:
        if symbol is not None:
            self.symbol = symbol
        self.bars = bars
        logger.info("Loaded %d bars for %s", len(bars), self.symbol or "<unnamed>")
        return self.refresh()

    def apply_tick(self, bar: Bar) -> ReconcileReport:
        """Amend the latest bar or append a new one, then reconcile."""
        kind = self.bars.classify_update(bar)
        self.bars = self.bars.apply_update(bar)
        logger.debug("%s tick at %s (%s)", self.symbol, bar.time, kind)
        return self.refresh()

    # Indicator configuration

    def set_indicators(self, config: IndicatorConfigSet) -> ReconcileReport:
        self.indicators = config
        return self.refresh()

    def add_indicator(self, kind, **overrides) -> IndicatorSpec:
        spec = new_indicator(kind, existing=self.indicators, **overrides)
        self.set_indicators(self.indicators.add(spec))
        return spec

    def remove_indicator(self, indicator_id: str) -> ReconcileReport:
        return self.set_indicators(self.indicators.remove(indicator_id))

    def toggle_indicator(self, indicator_id: str, visible: Optional[bool] = None) -> ReconcileReport:
        if visible is None:
            visible = not self.indicators.get(indicator_id).visible
        return self.set_indicators(self.indicators.set_visible(indicator_id, visible))

    def edit_indicator(self, indicator_id: str, **changes) -> ReconcileReport:
        return self.set_indicators(self.indicators.update(indicator_id, **changes))

    # Comparison overlay

    def set_comparison(self, symbol: str, bars: BarSeries) -> ReconcileReport:
        self.comparison_symbol = symbol
        self.comparison_bars = bars
        return self.refresh()

    def clear_comparison(self) -> ReconcileReport:
        self.comparison_symbol = None
        self.comparison_bars = None
        return self.refresh()

    def legend(self, time: int) -> Dict[str, float]:
        return self.reconciler.legend_values(time)
