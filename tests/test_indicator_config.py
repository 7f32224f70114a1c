import pytest
from pydantic import ValidationError

from common_utils.indicators import IndicatorKind
from frontend.chart_settings import INDICATOR_PALETTE
from frontend.indicator_config import IndicatorConfigSet, IndicatorSpec, new_indicator


def make_config(*specs):
    return IndicatorConfigSet(indicators=tuple(specs))


def test_new_indicator_defaults():
    rsi = new_indicator(IndicatorKind.RSI, indicator_id="r")
    sma = new_indicator("SMA", make_config(rsi), indicator_id="s")

    assert rsi.period == 14 and rsi.pane_index == 1 and rsi.visible
    assert sma.period == 20 and sma.pane_index == 0
    assert sma.color == INDICATOR_PALETTE[1]
    assert new_indicator(IndicatorKind.MACD).pane_index == 1


def test_new_indicator_generates_unique_ids():
    assert new_indicator(IndicatorKind.EMA).id != new_indicator(IndicatorKind.EMA).id


@pytest.mark.parametrize("bad_id", ["", "  ", "main", "comparison"])
def test_reserved_and_empty_ids_rejected(bad_id):
    with pytest.raises(ValidationError):
        IndicatorSpec(id=bad_id, kind=IndicatorKind.SMA)


@pytest.mark.parametrize("field,value", [("period", 0), ("pane_index", -1), ("line_width", 9)])
def test_field_bounds(field, value):
    with pytest.raises(ValueError):
        IndicatorSpec(id="a", kind=IndicatorKind.SMA, **{field: value})


def test_duplicate_ids_rejected():
    a = IndicatorSpec(id="a", kind=IndicatorKind.SMA)
    with pytest.raises(ValidationError):
        make_config(a, a)
    with pytest.raises(ValidationError):
        make_config(a).add(IndicatorSpec(id="a", kind=IndicatorKind.EMA))


def test_specs_are_immutable():
    spec = IndicatorSpec(id="a", kind=IndicatorKind.SMA)
    with pytest.raises(ValidationError):
        spec.period = 5


def test_update_revalidates_and_keeps_original():
    config = make_config(IndicatorSpec(id="a", kind=IndicatorKind.SMA, period=10))
    updated = config.update("a", period=30, color="#ffffff")

    assert updated.get("a").period == 30
    assert config.get("a").period == 10
    with pytest.raises(ValueError):
        config.update("a", period=-3)
    with pytest.raises(ValueError):
        config.update("a", id="b")
    with pytest.raises(KeyError):
        config.update("missing", period=3)


def test_remove_and_visibility():
    config = make_config(IndicatorSpec(id="a", kind=IndicatorKind.SMA),
                         IndicatorSpec(id="b", kind=IndicatorKind.RSI, pane_index=1))
    hidden = config.set_visible("b", False)

    assert [s.id for s in hidden.visible()] == ["a"]
    assert config.remove("a").ids == ["b"]
    with pytest.raises(KeyError):
        config.remove("zzz")
    assert "a" in config and "zzz" not in config


def test_overlays_and_stacked():
    config = make_config(
        IndicatorSpec(id="sma", kind=IndicatorKind.SMA),
        IndicatorSpec(id="rsi", kind=IndicatorKind.RSI, pane_index=1),
        IndicatorSpec(id="macd", kind=IndicatorKind.MACD, pane_index=2, visible=False),
    )
    assert [s.id for s in config.overlays()] == ["sma"]
    assert [s.id for s in config.stacked()] == ["rsi"]


def test_move_and_reorder():
    config = make_config(*(IndicatorSpec(id=i, kind=IndicatorKind.SMA) for i in "abc"))

    assert config.move("c", 0).ids == ["c", "a", "b"]
    assert config.move("a", 99).ids == ["b", "c", "a"]
    assert config.reorder(["b", "a", "c"]).ids == ["b", "a", "c"]
    with pytest.raises(ValueError):
        config.reorder(["a", "b"])


def test_labels():
    assert IndicatorSpec(id="a", kind=IndicatorKind.RSI, period=14).label == "RSI (14)"
    assert IndicatorSpec(id="m", kind=IndicatorKind.MACD).label == "MACD (12, 26, 9)"
    assert IndicatorSpec(id="v", kind=IndicatorKind.VWAP).label == "VWAP"


def test_render_keys_per_kind():
    assert IndicatorSpec(id="m", kind=IndicatorKind.MACD).render_keys == ["m_line", "m_signal", "m_hist"]
    assert IndicatorSpec(id="s", kind=IndicatorKind.SMA).render_keys == ["s"]


def test_colliding_series_keys_rejected():
    macd = IndicatorSpec(id="a", kind=IndicatorKind.MACD, pane_index=1)
    sma = IndicatorSpec(id="a_line", kind=IndicatorKind.SMA, period=5)

    with pytest.raises(ValidationError, match="a_line"):
        make_config(macd, sma)
    with pytest.raises(ValueError):
        make_config(sma).add(macd)
    # Both ids work on their own
    assert make_config(sma).ids == ["a_line"]
    assert make_config(macd).ids == ["a"]


def test_kind_change_that_collides_is_rejected():
    config = make_config(IndicatorSpec(id="b", kind=IndicatorKind.SMA),
                         IndicatorSpec(id="b_upper", kind=IndicatorKind.EMA))
    with pytest.raises(ValueError):
        config.update("b", kind=IndicatorKind.BOLLINGER)


def test_bollinger_needs_two_bar_period():
    with pytest.raises(ValidationError):
        IndicatorSpec(id="bb", kind=IndicatorKind.BOLLINGER, period=1)
    with pytest.raises(ValueError):
        make_config(IndicatorSpec(id="x", kind=IndicatorKind.SMA, period=1)).update(
            "x", kind=IndicatorKind.BOLLINGER)
    assert IndicatorSpec(id="bb", kind=IndicatorKind.BOLLINGER, period=2).period == 2
    assert IndicatorSpec(id="s", kind=IndicatorKind.SMA, period=1).period == 1
