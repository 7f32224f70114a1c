"""
TradingView Lightweight Charts backend for the series reconciler.

Every renderer call becomes a small JS snippet run in the browser through
NiceGUI. Snippets operate on a per-chart context ``window._lwCharts[<id>]``;
commands issued before the library has loaded are queued on that context and
replayed in order once the chart exists.
"""
from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional

from nicegui import ui

from frontend.chart_settings import ChartSettings

logger = logging.getLogger(__name__)

LWC_CDN_URL = "https://unpkg.com/lightweight-charts@4/dist/lightweight-charts.standalone.production.js"
LWC_LOCAL_URL = "/static/lightweight-charts.standalone.production.js"

SERIES_METHODS = {
    "candlestick": "addCandlestickSeries",
    "line": "addLineSeries",
    "histogram": "addHistogramSeries",
}

COMMAND_TEMPLATE = r"""
(function() {
  var reg = window._lwCharts = window._lwCharts || {};
  var ctx = reg[__CHART_ID__] = reg[__CHART_ID__] || { chart: null, series: {}, queue: [] };
  var run = function(ctx) { __BODY__ };
  if (ctx.chart) { run(ctx); } else { ctx.queue.push(run); }
})();
"""

BOOTSTRAP_TEMPLATE = r"""
(function() {
  var reg = window._lwCharts = window._lwCharts || {};
  var ctx = reg[__CHART_ID__] = reg[__CHART_ID__] || { chart: null, series: {}, queue: [] };
  var el = document.getElementById(__CHART_ID__);
  if (!el || ctx.chart) return;

  function start(attempt) {
    attempt = attempt || 0;
    if (typeof window.LightweightCharts === 'undefined') {
      if (attempt === 0) {
        var s = document.createElement('script');
        s.src = __CDN_URL__;
        s.onerror = function() {
          var c = document.createElement('script');
          c.src = __LOCAL_URL__;
          document.head.appendChild(c);
        };
        document.head.appendChild(s);
      }
      if (attempt < 40) {
        return setTimeout(function() { start(attempt + 1); }, 150);
      }
      el.innerHTML = '<div style="height:100%;display:flex;align-items:center;justify-content:center;color:#94a3b8;">Lightweight Charts library not loaded</div>';
      return;
    }
    ctx.chart = LightweightCharts.createChart(el, __CHART_OPTIONS__);
    var pending = ctx.queue;
    ctx.queue = [];
    pending.forEach(function(run) { run(ctx); });
    ctx.chart.timeScale().fitContent();
  }
  start(0);
})();
"""


@dataclass(frozen=True)
class LightweightSeriesHandle:
    key: str
    series_type: str


class LightweightChartsRenderer:
    """ChartRenderer that drives a Lightweight Charts instance in the browser."""

    def __init__(self, chart_id: str, settings: Optional[ChartSettings] = None,
                 run_javascript: Optional[Callable[[str], Any]] = None):
        self.chart_id = chart_id
        self.settings = settings or ChartSettings()
        self._run_javascript = run_javascript or ui.run_javascript

    def chart_options(self) -> Dict[str, Any]:
        s = self.settings
        return {
            "layout": {"background": {"type": "solid", "color": s.background_color}, "textColor": s.text_color},
            "grid": {"vertLines": {"color": s.grid_color}, "horzLines": {"color": s.grid_color}},
            "crosshair": {"mode": 0},
            "timeScale": {"timeVisible": True, "secondsVisible": False},
            "rightPriceScale": {"borderColor": s.grid_color},
            "autoSize": True,
        }

    def bootstrap_script(self) -> str:
        return (
            BOOTSTRAP_TEMPLATE
            .replace("__CHART_ID__", json.dumps(self.chart_id))
            .replace("__CDN_URL__", json.dumps(LWC_CDN_URL))
            .replace("__LOCAL_URL__", json.dumps(LWC_LOCAL_URL))
            .replace("__CHART_OPTIONS__", json.dumps(self.chart_options()))
        )

    def bootstrap(self) -> None:
        self._run_javascript(self.bootstrap_script())

    def _command(self, body: str) -> str:
        return COMMAND_TEMPLATE.replace("__CHART_ID__", json.dumps(self.chart_id)).replace("__BODY__", body)

    def _dispatch(self, body: str) -> None:
        self._run_javascript(self._command(body))

    def create_series(self, key: str, series_type: str, options: Dict[str, Any]) -> LightweightSeriesHandle:
        try:
            method = SERIES_METHODS[series_type]
        except KeyError:
            raise ValueError(f"Unknown series type {series_type!r}") from None
        self._dispatch(f"ctx.series[{json.dumps(key)}] = ctx.chart.{method}({json.dumps(options)});")
        logger.debug("Created %s series %s on %s", series_type, key, self.chart_id)
        return LightweightSeriesHandle(key, series_type)

    def set_data(self, handle: LightweightSeriesHandle, data: List[Dict[str, Any]]) -> None:
        self._dispatch(
            f"var s = ctx.series[{json.dumps(handle.key)}]; if (s) s.setData({json.dumps(data)});"
        )

    def remove_series(self, handle: LightweightSeriesHandle) -> None:
        key = json.dumps(handle.key)
        self._dispatch(
            f"var s = ctx.series[{key}]; if (s) {{ ctx.chart.removeSeries(s); delete ctx.series[{key}]; }}"
        )
        logger.debug("Removed series %s from %s", handle.key, self.chart_id)

    def apply_price_scale_margins(self, scale_id: str, top: float, bottom: float,
                                  visible: bool = True) -> None:
        options = {"scaleMargins": {"top": top, "bottom": bottom}, "visible": visible, "borderVisible": False}
        self._dispatch(f"ctx.chart.priceScale({json.dumps(scale_id)}).applyOptions({json.dumps(options)});")
