"""
Series reconciliation between the indicator configuration and the chart.

``SeriesReconciler`` is the only owner of rendered series handles. Each call to
``reconcile`` is one synchronous pass:

1. create any missing series for the main candles, the comparison symbol and
   every visible indicator (one key per sub-series role),
2. recompute and push full datasets to each of them,
3. remove series whose owning indicator is hidden, deleted or re-shaped,
4. re-apply the pane layout to the price scales.

Running a pass twice on unchanged inputs issues no further create/remove calls.
"""
import logging
from bisect import bisect_right
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Protocol, Set, Tuple

from common_utils.indicators import (
    ComputedPoint,
    IndicatorKind,
    UnsupportedIndicatorError,
    compute_indicator,
    series_roles,
)
from common_utils.market_data import BarSeries
from frontend.chart_settings import ChartSettings
from frontend.indicator_config import (
    COMPARISON_SERIES_KEY,
    MAIN_SERIES_KEY,
    IndicatorConfigSet,
    IndicatorSpec,
    series_key,
)
from frontend.pane_layout import PaneLayout, PaneLayoutAllocator, scale_id_for

logger = logging.getLogger(__name__)

SERIES_CANDLESTICK = "candlestick"
SERIES_LINE = "line"
SERIES_HISTOGRAM = "histogram"

# Lightweight Charts LineStyle values
LINE_SOLID = 0
LINE_DASHED = 2


class ChartRenderer(Protocol):
    """What the reconciler needs from a chart backend."""

    def create_series(self, key: str, series_type: str, options: Dict[str, Any]) -> Any:
        ...

    def set_data(self, handle: Any, data: List[Dict[str, Any]]) -> None:
        ...

    def remove_series(self, handle: Any) -> None:
        ...

    def apply_price_scale_margins(self, scale_id: str, top: float, bottom: float,
                                  visible: bool = True) -> None:
        ...


ROLE_SUFFIXES: Tuple[str, ...] = tuple(
    sorted({f"_{role}" for roles in
            (series_roles(kind) for kind in IndicatorKind) for role in roles if role},
           key=len, reverse=True)
)


def owner_of(key: str, known_ids: Optional[Set[str]] = None) -> str:
    """Recover the indicator id behind a rendering key by stripping its role suffix."""
    if known_ids and key in known_ids:
        return key
    for suffix in ROLE_SUFFIXES:
        if key.endswith(suffix):
            return key[: -len(suffix)]
    return key


@dataclass
class _LiveSeries:
    handle: Any
    series_type: str
    options: Dict[str, Any]
    data: List[Dict[str, Any]] = field(default_factory=list)


@dataclass
class ReconcileReport:
    created: List[str] = field(default_factory=list)
    updated: List[str] = field(default_factory=list)
    removed: List[str] = field(default_factory=list)
    restyled: List[str] = field(default_factory=list)
    unsupported: List[UnsupportedIndicatorError] = field(default_factory=list)
    layout: Optional[PaneLayout] = None

    @property
    def changed_structure(self) -> bool:
        return bool(self.created or self.removed or self.restyled)


class SeriesReconciler:
    def __init__(self, renderer: ChartRenderer, allocator: Optional[PaneLayoutAllocator] = None,
                 settings: Optional[ChartSettings] = None):
        self.renderer = renderer
        self.settings = settings or ChartSettings()
        self.allocator = allocator or PaneLayoutAllocator(self.settings.pane_height)
        self._series: Dict[str, _LiveSeries] = {}
        self._layout: Optional[PaneLayout] = None
        self._in_pass = False

    @property
    def layout(self) -> Optional[PaneLayout]:
        return self._layout

    def live_keys(self) -> Set[str]:
        return set(self._series)

    def series_data(self, key: str) -> List[Dict[str, Any]]:
        """Copy of the dataset last pushed for ``key``."""
        return [dict(point) for point in self._series[key].data]

    def reconcile(self, bars: BarSeries, config: IndicatorConfigSet,
                  comparison: Optional[BarSeries] = None) -> ReconcileReport:
        """Run one full create/update/remove/relayout pass."""
        if self._in_pass:
            raise RuntimeError("A reconciliation pass is already running")
        self._in_pass = True
        try:
            return self._run_pass(bars, config, comparison)
        finally:
            self._in_pass = False

    def _run_pass(self, bars: BarSeries, config: IndicatorConfigSet,
                  comparison: Optional[BarSeries]) -> ReconcileReport:
        report = ReconcileReport()
        layout = self.allocator.allocate(config)

        self._ensure(report, MAIN_SERIES_KEY, SERIES_CANDLESTICK, self._main_options())
        self._push(report, MAIN_SERIES_KEY, [bar.to_candle() for bar in bars])

        if comparison is not None:
            self._ensure(report, COMPARISON_SERIES_KEY, SERIES_LINE, self._comparison_options())
            self._push(report, COMPARISON_SERIES_KEY,
                       [{"time": bar.time, "value": bar.close} for bar in comparison])
        elif COMPARISON_SERIES_KEY in self._series:
            self._drop(report, COMPARISON_SERIES_KEY)

        visible = config.visible()
        required: Dict[str, Set[str]] = {}
        for spec in visible:
            required[spec.id] = self._materialize(report, spec, bars)

        visible_ids = set(required)
        for key in list(self._series):
            if key in (MAIN_SERIES_KEY, COMPARISON_SERIES_KEY):
                continue
            owner = owner_of(key, visible_ids)
            if owner not in visible_ids or key not in required[owner]:
                self._drop(report, key)

        self._apply_layout(layout, comparison is not None)
        self._layout = layout
        report.layout = layout

        log = logger.info if report.changed_structure else logger.debug
        log("Reconciled %d indicators: created=%s removed=%s restyled=%s panes=%s",
            len(visible), report.created, report.removed, report.restyled, layout.pane_indices)
        return report

    def _materialize(self, report: ReconcileReport, spec: IndicatorSpec, bars: BarSeries) -> Set[str]:
        roles = series_roles(spec.kind)
        try:
            computed = compute_indicator(spec, bars)
        except UnsupportedIndicatorError as exc:
            logger.warning("%s; rendering it without data", exc)
            report.unsupported.append(exc)
            computed = {role: [] for role in roles}

        scale_id = scale_id_for(spec.pane_index, self.settings.main_scale_id)
        keys = set()
        for role in roles:
            key = series_key(spec.id, role)
            keys.add(key)
            series_type, options = self._indicator_style(spec, role, scale_id)
            self._ensure(report, key, series_type, options)
            self._push(report, key, self._render_points(role, computed.get(role, [])))
        return keys

    def _ensure(self, report: ReconcileReport, key: str, series_type: str, options: Dict[str, Any]) -> None:
        live = self._series.get(key)
        if live is not None:
            if live.series_type == series_type and live.options == options:
                return
            # Static style changed: swap the series within this pass
            self.renderer.remove_series(live.handle)
            del self._series[key]
            report.restyled.append(key)
        handle = self.renderer.create_series(key, series_type, dict(options))
        self._series[key] = _LiveSeries(handle, series_type, dict(options))
        if key not in report.restyled:
            report.created.append(key)

    def _push(self, report: ReconcileReport, key: str, data: List[Dict[str, Any]]) -> None:
        live = self._series[key]
        live.data = data
        self.renderer.set_data(live.handle, data)
        report.updated.append(key)

    def _drop(self, report: ReconcileReport, key: str) -> None:
        live = self._series.pop(key)
        self.renderer.remove_series(live.handle)
        report.removed.append(key)

    def _apply_layout(self, layout: PaneLayout, with_comparison: bool) -> None:
        padding = self.settings.scale_padding
        main = layout.main.scale_margins(padding)
        self.renderer.apply_price_scale_margins(self.settings.main_scale_id, main["top"], main["bottom"], True)
        for allocation in layout.stacked:
            margins = allocation.scale_margins(padding)
            self.renderer.apply_price_scale_margins(
                scale_id_for(allocation.pane_index, self.settings.main_scale_id),
                margins["top"], margins["bottom"], True,
            )
        if with_comparison:
            # Hidden scale so the overlay never rescales the candles
            margins = self.settings.comparison_margins
            self.renderer.apply_price_scale_margins(
                self.settings.comparison_scale_id, margins["top"], margins["bottom"], False,
            )

    def _main_options(self) -> Dict[str, Any]:
        s = self.settings
        return {
            "upColor": s.up_color,
            "downColor": s.down_color,
            "borderVisible": False,
            "wickUpColor": s.up_color,
            "wickDownColor": s.down_color,
            "priceScaleId": s.main_scale_id,
        }

    def _comparison_options(self) -> Dict[str, Any]:
        return {
            "color": self.settings.comparison_color,
            "lineWidth": 2,
            "priceScaleId": self.settings.comparison_scale_id,
        }

    def _indicator_style(self, spec: IndicatorSpec, role: str, scale_id: str) -> Tuple[str, Dict[str, Any]]:
        if role == "hist":
            return SERIES_HISTOGRAM, {"priceScaleId": scale_id}
        options = {
            "color": spec.color,
            "lineWidth": spec.line_width,
            "lineStyle": LINE_SOLID,
            "priceScaleId": scale_id,
        }
        if role == "signal":
            options.update(color=self.settings.signal_color, lineWidth=1, lineStyle=LINE_DASHED)
        elif role == "middle":
            options.update(lineWidth=1, lineStyle=LINE_DASHED)
        elif role in ("upper", "lower"):
            options.update(lineWidth=1)
        return SERIES_LINE, options

    def _render_points(self, role: str, points: List[ComputedPoint]) -> List[Dict[str, Any]]:
        if role == "hist":
            up, down = self.settings.histogram_up_color, self.settings.histogram_down_color
            return [{"time": p.time, "value": p.value, "color": up if p.value >= 0 else down}
                    for p in points]
        return [{"time": p.time, "value": p.value} for p in points]

    def legend_values(self, time: int) -> Dict[str, float]:
        """Last value at or before ``time`` for every live key; the main series reports its close."""
        values: Dict[str, float] = {}
        for key, live in self._series.items():
            times = [point["time"] for point in live.data]
            pos = bisect_right(times, time) - 1
            if pos < 0:
                continue
            point = live.data[pos]
            values[key] = point["close"] if "close" in point else point["value"]
        return values

    def clear(self) -> None:
        """Remove every rendered series, e.g. before the chart is torn down."""
        for key in list(self._series):
            self.renderer.remove_series(self._series.pop(key).handle)
        self._layout = None
