import json
import pytest
from unittest.mock import MagicMock

from frontend.chart_settings import ChartSettings
from frontend.lightweight_renderer import LWC_CDN_URL, LightweightChartsRenderer, LightweightSeriesHandle


@pytest.fixture
def run_js():
    return MagicMock()


@pytest.fixture
def lw_renderer(run_js):
    return LightweightChartsRenderer("tv_chart_test", ChartSettings(), run_javascript=run_js)


def last_script(run_js):
    return run_js.call_args[0][0]


def test_bootstrap_embeds_chart_and_library(lw_renderer, run_js):
    lw_renderer.bootstrap()

    script = last_script(run_js)
    assert json.dumps("tv_chart_test") in script
    assert LWC_CDN_URL in script
    assert "createChart" in script
    assert "__CHART_OPTIONS__" not in script
    assert json.dumps(lw_renderer.chart_options()) in script


def test_commands_are_queued_until_chart_exists(lw_renderer, run_js):
    lw_renderer.create_series("sma", "line", {"color": "#fff"})

    script = last_script(run_js)
    assert "ctx.queue.push(run)" in script
    assert 'ctx.series["sma"] = ctx.chart.addLineSeries({"color": "#fff"});' in script


def test_create_series_returns_handle(lw_renderer):
    handle = lw_renderer.create_series("macd_hist", "histogram", {"priceScaleId": "pane_1"})
    assert handle == LightweightSeriesHandle("macd_hist", "histogram")


def test_create_series_rejects_unknown_type(lw_renderer, run_js):
    with pytest.raises(ValueError):
        lw_renderer.create_series("x", "area", {})
    run_js.assert_not_called()


def test_set_data_serialises_points(lw_renderer, run_js):
    handle = LightweightSeriesHandle("rsi", "line")
    lw_renderer.set_data(handle, [{"time": 1, "value": 55.5}])
    assert '.setData([{"time": 1, "value": 55.5}])' in last_script(run_js)


def test_remove_series(lw_renderer, run_js):
    lw_renderer.remove_series(LightweightSeriesHandle("rsi", "line"))
    script = last_script(run_js)
    assert "ctx.chart.removeSeries(s)" in script
    assert 'delete ctx.series["rsi"]' in script


def test_price_scale_margins(lw_renderer, run_js):
    lw_renderer.apply_price_scale_margins("comparison", 0.1, 0.3, visible=False)
    script = last_script(run_js)
    assert 'ctx.chart.priceScale("comparison")' in script
    assert '"scaleMargins": {"top": 0.1, "bottom": 0.3}' in script
    assert '"visible": false' in script


def test_bootstrap_relies_on_auto_size(lw_renderer, run_js):
    lw_renderer.bootstrap()
    script = last_script(run_js)
    assert '"autoSize": true' in script
    assert "resize(" not in script
    assert "ResizeObserver" not in script
