"""
TradingView Lightweight Charts workstation page with NiceGUI

The page is thin glue: sidebar controls edit the workstation state and every
edit triggers one reconciliation pass against the Lightweight Charts renderer.

Usage:
    await render_tradingview_page(fetch_api, settings, instruments)
"""

from __future__ import annotations

import logging
import uuid
from datetime import datetime, timedelta
from typing import Dict, Optional

from nicegui import ui

from common_utils.indicators import IndicatorKind
from common_utils.market_data import fetch_bar_series
from frontend.chart_settings import TIMEFRAMES, ChartSettings
from frontend.chart_workstation import ChartWorkstation
from frontend.indicator_config import COMPARISON_SERIES_KEY, MAIN_SERIES_KEY, IndicatorConfigSet, new_indicator
from frontend.lightweight_renderer import LightweightChartsRenderer
from frontend.pane_layout import PaneLayoutAllocator
from frontend.series_reconciler import SeriesReconciler

logger = logging.getLogger(__name__)

SELECT_STYLE = 'background: #1e293b; border: 1px solid #475569; border-radius: 0.5rem;'
INDICATOR_CHOICES = [kind.value for kind in IndicatorKind]


def default_indicators() -> IndicatorConfigSet:
    config = IndicatorConfigSet()
    config = config.add(new_indicator(IndicatorKind.SMA, config, indicator_id='sma-20', color='#f59e0b'))
    config = config.add(new_indicator(IndicatorKind.RSI, config, indicator_id='rsi-14', color='#a855f7'))
    return config


def build_workstation(chart_id: str, settings: ChartSettings, run_javascript=None) -> ChartWorkstation:
    renderer = LightweightChartsRenderer(chart_id, settings, run_javascript=run_javascript)
    reconciler = SeriesReconciler(renderer, PaneLayoutAllocator(settings.pane_height), settings)
    renderer.bootstrap()
    return ChartWorkstation(reconciler, indicators=default_indicators())


def format_legend(workstation: ChartWorkstation, time: Optional[int] = None) -> str:
    """One-line legend of the values at ``time`` (latest bar by default)."""
    if time is None:
        last = workstation.bars.last
        if last is None:
            return ''
        time = last.time
    values = workstation.legend(time)
    parts = []
    if MAIN_SERIES_KEY in values:
        parts.append(f"{workstation.symbol} {values[MAIN_SERIES_KEY]:.2f}")
    if workstation.comparison_symbol and COMPARISON_SERIES_KEY in values:
        parts.append(f"vs {workstation.comparison_symbol} {values[COMPARISON_SERIES_KEY]:.2f}")
    for spec in workstation.indicators.visible():
        shown = [f"{values[k]:.2f}" for k in spec.render_keys if k in values]
        if shown:
            parts.append(f"{spec.label} {' / '.join(shown)}")
    return '   '.join(parts)


async def render_tradingview_page(fetch_api, settings: ChartSettings, instruments: Dict[str, str]):
    """Render the chart workstation.

    Args:
        fetch_api: async callable to fetch backend endpoints
        settings: chart settings
        instruments: mapping of symbol -> instrument token
    """
    chart_id = f"tv_chart_{uuid.uuid4().hex}"
    symbols = sorted(instruments.keys())

    with ui.row().classes('w-full gap-2 items-start no-wrap').style('padding: 8px; flex-wrap: nowrap;'):
        # Sidebar
        with ui.column().classes('q-pa-sm').style('width: 320px; min-width: 300px; background: rgba(15,23,42,0.7); border: 1px solid #334155; border-radius: 10px;'):
            ui.label('Chart Workstation').classes('text-subtitle1').style('color: #e2e8f0;')
            symbol_select = ui.select(options=symbols, with_input=True, value=symbols[0] if symbols else None,
                                      label='Symbol').classes('w-full').style(SELECT_STYLE)
            timeframe = ui.select(options=TIMEFRAMES, value='day', label='Timeframe').classes('w-full').style(SELECT_STYLE)
            from_date = ui.input('From', value=(datetime.now() - timedelta(days=365)).strftime('%Y-%m-%d')).props('dense type=date').classes('w-full')
            to_date = ui.input('To', value=datetime.now().strftime('%Y-%m-%d')).props('dense type=date').classes('w-full')
            live_switch = ui.switch('Live Updates', value=False)

            with ui.expansion('Compare').classes('w-full'):
                compare_select = ui.select(options=[''] + symbols, value='', label='Compare with').classes('w-full').style(SELECT_STYLE)

            with ui.expansion('Add Indicator').classes('w-full'):
                ind_type = ui.select(INDICATOR_CHOICES, value=IndicatorKind.SMA.value, label='Indicator').classes('w-full').style(SELECT_STYLE)
                with ui.row().classes('gap-2'):
                    period_input = ui.number('Period', value=20, min=1, max=1000, step=1).classes('w-24')
                    pane_input = ui.number('Pane', value=0, min=0, max=8, step=1).classes('w-24')
                with ui.row().classes('gap-2'):
                    fast_input = ui.number('Fast', value=12, min=1, max=1000, step=1).classes('w-20')
                    slow_input = ui.number('Slow', value=26, min=1, max=1000, step=1).classes('w-20')
                    signal_input = ui.number('Signal', value=9, min=1, max=1000, step=1).classes('w-20')
                    std_input = ui.number('Std', value=2.0, min=0.5, max=5, step=0.5).classes('w-20')
                with ui.row().classes('gap-2'):
                    width_input = ui.number('Width', value=settings.default_line_width, min=1, max=5, step=1).classes('w-24')
                    color_pick = ui.color_input('Color', value='#2596be').classes('w-28')
                    add_btn = ui.button('Add', icon='add').classes('bg-emerald-700')

            with ui.expansion('Current Indicators', value=True).classes('w-full'):
                ind_list_container = ui.column().classes('gap-1 w-full')

        # Chart area
        with ui.column().classes('q-pa-sm').style('flex: 1; min-width: 0; background: rgba(15,23,42,0.35); border: 1px solid #334155; border-radius: 10px;'):
            legend_label = ui.label('').classes('text-xs font-mono').style('color: #94a3b8;')
            ui.element('div').props(f'id={chart_id}').style('height: 78vh; min-height: 520px; width: 100%;')

    workstation = build_workstation(chart_id, settings)

    def report_unsupported(report):
        for exc in report.unsupported:
            ui.notify(str(exc), type='warning')

    def after_pass(report):
        report_unsupported(report)
        legend_label.set_text(format_legend(workstation))

    def render_indicator_list():
        ind_list_container.clear()
        with ind_list_container:
            for spec in workstation.indicators.indicators:
                with ui.row().classes('items-center gap-2 w-full').style('background: rgba(30,41,59,0.4); padding: 6px; border-radius: 6px;'):
                    ui.label(f"{spec.label} -> pane {spec.pane_index}").classes('text-sm').style(f'color: {spec.color};')
                    ui.switch('Show', value=spec.visible).on(
                        'update:model-value', lambda e, _id=spec.id: toggle_indicator(_id))
                    ui.button(icon='close').props('flat dense').on('click', lambda e, _id=spec.id: remove_indicator(_id))

    def toggle_indicator(indicator_id: str):
        after_pass(workstation.toggle_indicator(indicator_id))

    def remove_indicator(indicator_id: str):
        after_pass(workstation.remove_indicator(indicator_id))
        render_indicator_list()

    def add_indicator():
        kind = IndicatorKind(ind_type.value)
        overrides = {
            'color': color_pick.value or '#2596be',
            'line_width': int(width_input.value or settings.default_line_width),
        }
        if kind in (IndicatorKind.SMA, IndicatorKind.EMA, IndicatorKind.RSI, IndicatorKind.BOLLINGER):
            overrides['period'] = int(period_input.value or 20)
        if kind == IndicatorKind.MACD:
            overrides.update(fast=int(fast_input.value or 12), slow=int(slow_input.value or 26),
                             signal=int(signal_input.value or 9))
        if kind == IndicatorKind.BOLLINGER:
            overrides['std_dev'] = float(std_input.value or 2.0)
        if pane_input.value is not None and kind not in (IndicatorKind.RSI, IndicatorKind.MACD):
            overrides['pane_index'] = int(pane_input.value)
        try:
            workstation.add_indicator(kind, **overrides)
        except ValueError as e:
            ui.notify(f'Invalid indicator: {e}', type='negative')
            return
        after_pass(workstation.last_report)
        render_indicator_list()

    def date_range():
        try:
            return (datetime.strptime(from_date.value, '%Y-%m-%d'),
                    datetime.strptime(to_date.value, '%Y-%m-%d'))
        except (TypeError, ValueError):
            ui.notify('Invalid date range', type='negative')
            return None

    async def load_symbol():
        symbol = symbol_select.value
        if not symbol or symbol not in instruments:
            ui.notify('Select a valid symbol', type='warning')
            return
        dates = date_range()
        if dates is None:
            return
        bars = await fetch_bar_series(fetch_api, instruments[symbol], dates[0], dates[1],
                                      unit=timeframe.value, endpoint=settings.historical_endpoint)
        if not bars:
            ui.notify(f'No data for {symbol} in selected range', type='warning')
        after_pass(workstation.load_bars(bars, symbol))

    async def load_comparison():
        other = compare_select.value
        if not other:
            after_pass(workstation.clear_comparison())
            return
        dates = date_range()
        if dates is None or other not in instruments:
            return
        bars = await fetch_bar_series(fetch_api, instruments[other], dates[0], dates[1],
                                      unit=timeframe.value, endpoint=settings.historical_endpoint)
        after_pass(workstation.set_comparison(other, bars))

    async def poll_latest_bar():
        if not live_switch.value or not workstation.bars:
            return
        latest = workstation.bars.last
        today = datetime.now()
        bars = await fetch_bar_series(fetch_api, instruments[workstation.symbol], today - timedelta(days=1), today,
                                      unit=timeframe.value, endpoint=settings.historical_endpoint)
        for bar in bars:
            if bar.time >= latest.time:
                after_pass(workstation.apply_tick(bar))

    symbol_select.on('update:model-value', lambda: ui.timer(0.05, load_symbol, once=True))
    timeframe.on('update:model-value', lambda: ui.timer(0.05, load_symbol, once=True))
    from_date.on('update:model-value', lambda: ui.timer(0.05, load_symbol, once=True))
    to_date.on('update:model-value', lambda: ui.timer(0.05, load_symbol, once=True))
    compare_select.on('update:model-value', lambda: ui.timer(0.05, load_comparison, once=True))
    add_btn.on('click', add_indicator)
    ui.timer(settings.live_refresh_seconds, poll_latest_bar)

    render_indicator_list()
    ui.timer(0.5, load_symbol, once=True)
    return workstation
