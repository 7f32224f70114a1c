"""
Chart Settings - chart_settings.py
Configuration for the chart workstation: pane geometry, colours and data endpoint
"""

import logging
import os
from dataclasses import dataclass, field
from typing import Dict, List

from dotenv import load_dotenv

logger = logging.getLogger(__name__)

# Chart palette
CHART_BG_COLOR = "#0f172a"
GRID_COLOR = "#1e293b"
TEXT_COLOR = "#94a3b8"
UP_COLOR = "#22c55e"
DOWN_COLOR = "#ef4444"

DEFAULT_WATCHLIST = ["AAPL", "NVDA", "TSLA", "AMD", "MSFT", "GOOGL", "AMZN", "META", "SPY", "QQQ"]
TIMEFRAMES = ["minute", "day", "week", "month"]

# Colours handed out to new indicators in turn
INDICATOR_PALETTE = ["#f59e0b", "#a855f7", "#2596be", "#4ecdc4", "#ff6b6b", "#fdcb6e", "#00b894"]


@dataclass
class ChartSettings:
    """Chart geometry and styling used by the reconciler and renderer"""
    # Fraction of total chart height given to each stacked pane
    pane_height: float = 0.20
    # Breathing room inside each band, as a fraction of total height
    scale_padding: float = 0.05
    main_scale_id: str = "right"
    default_line_width: int = 2

    up_color: str = UP_COLOR
    down_color: str = DOWN_COLOR
    signal_color: str = "#ef4444"
    histogram_up_color: str = "#26a69a"
    histogram_down_color: str = "#ef5350"

    comparison_color: str = "#ec4899"
    comparison_scale_id: str = "comparison"
    comparison_margins: Dict[str, float] = field(default_factory=lambda: {"top": 0.1, "bottom": 0.3})

    background_color: str = CHART_BG_COLOR
    grid_color: str = GRID_COLOR
    text_color: str = TEXT_COLOR

    backend_url: str = "http://localhost:8000"
    historical_endpoint: str = "/historical-data/Upstox"
    # Seconds between live refreshes of the latest bar
    live_refresh_seconds: float = 5.0
    watchlist: List[str] = field(default_factory=lambda: list(DEFAULT_WATCHLIST))

    def validate(self) -> None:
        if not 0 < self.pane_height <= 1:
            raise ValueError(f"pane_height must be in (0, 1], got {self.pane_height}")
        if not 0 <= self.scale_padding < 1:
            raise ValueError(f"scale_padding must be in [0, 1), got {self.scale_padding}")
        if self.default_line_width < 1:
            raise ValueError("default_line_width must be at least 1")
        if self.live_refresh_seconds <= 0:
            raise ValueError("live_refresh_seconds must be positive")


@dataclass
class UnpaddedChartSettings(ChartSettings):
    """No padding so band margins map one-to-one onto scale margins"""
    scale_padding: float = 0.0


def _env_float(name: str, default: float) -> float:
    raw = os.getenv(name)
    if raw is None or raw == "":
        return default
    try:
        return float(raw)
    except ValueError:
        logger.warning("Ignoring %s=%r: not a number", name, raw)
        return default


def load_chart_settings() -> ChartSettings:
    """Build settings for the current environment, honouring .env overrides"""
    load_dotenv()
    env = os.getenv("CHART_ENVIRONMENT", "development").lower()
    settings = UnpaddedChartSettings() if env == "testing" else ChartSettings()

    settings.pane_height = _env_float("CHART_PANE_HEIGHT", settings.pane_height)
    settings.scale_padding = _env_float("CHART_SCALE_PADDING", settings.scale_padding)
    settings.live_refresh_seconds = _env_float("CHART_LIVE_REFRESH_SECONDS", settings.live_refresh_seconds)
    settings.backend_url = os.getenv("CHART_BACKEND_URL", settings.backend_url)
    settings.historical_endpoint = os.getenv("CHART_HISTORICAL_ENDPOINT", settings.historical_endpoint)
    watchlist = os.getenv("CHART_WATCHLIST")
    if watchlist:
        settings.watchlist = [s.strip().upper() for s in watchlist.split(",") if s.strip()]

    settings.validate()
    logger.debug("Chart settings (%s): %s", env, settings)
    return settings
