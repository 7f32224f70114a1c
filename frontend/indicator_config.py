"""
Indicator configuration set edited from the chart sidebar.

Each edit produces a new immutable snapshot; order within the set is the
insertion order and drives top-to-bottom placement of stacked panes.
"""
import uuid
from typing import Iterable, List, Optional, Tuple

from pydantic import BaseModel, Field, ValidationInfo, field_validator

from common_utils.indicators import DEFAULT_PERIODS, IndicatorKind, series_roles
from frontend.chart_settings import INDICATOR_PALETTE

MAIN_SERIES_KEY = "main"
COMPARISON_SERIES_KEY = "comparison"
RESERVED_IDS = {MAIN_SERIES_KEY, COMPARISON_SERIES_KEY}

# Oscillators default to their own pane below the price chart
STACKED_KINDS = {IndicatorKind.RSI, IndicatorKind.MACD}


def series_key(indicator_id: str, role: str = "") -> str:
    return f"{indicator_id}_{role}" if role else indicator_id


class IndicatorSpec(BaseModel):
    id: str
    kind: IndicatorKind
    period: Optional[int] = Field(None, gt=0)
    color: str = INDICATOR_PALETTE[0]
    visible: bool = True
    pane_index: int = Field(0, ge=0)
    line_width: int = Field(2, ge=1, le=5)
    # MACD
    fast: Optional[int] = Field(None, gt=0)
    slow: Optional[int] = Field(None, gt=0)
    signal: Optional[int] = Field(None, gt=0)
    # Bollinger
    std_dev: Optional[float] = Field(None, gt=0)
    # User script source; stored, not evaluated
    script: Optional[str] = None

    class Config:
        frozen = True

    @field_validator("id")
    def id_must_be_usable(cls, v):
        if not v or not v.strip():
            raise ValueError("Indicator id must not be empty")
        if v in RESERVED_IDS:
            raise ValueError(f"Indicator id {v!r} is reserved")
        return v

    @field_validator("period")
    def period_fits_kind(cls, v, info: ValidationInfo):
        # A one-bar window has no sample standard deviation
        if v is not None and v < 2 and info.data.get("kind") == IndicatorKind.BOLLINGER:
            raise ValueError("Bollinger bands need a period of at least 2")
        return v

    @property
    def is_stacked(self) -> bool:
        return self.pane_index > 0

    @property
    def render_keys(self) -> List[str]:
        """Chart series keys this indicator draws, one per sub-series role."""
        return [series_key(self.id, role) for role in series_roles(self.kind)]

    @property
    def label(self) -> str:
        if self.kind == IndicatorKind.MACD:
            return f"MACD ({self.fast or 12}, {self.slow or 26}, {self.signal or 9})"
        if self.period:
            return f"{self.kind.value} ({self.period})"
        return self.kind.value

    def with_changes(self, **changes) -> "IndicatorSpec":
        """Validated copy with ``changes`` applied; ``id`` cannot change."""
        if "id" in changes and changes["id"] != self.id:
            raise ValueError("Indicator id cannot be changed")
        return IndicatorSpec(**{**self.model_dump(), **changes})


class IndicatorConfigSet(BaseModel):
    indicators: Tuple[IndicatorSpec, ...] = ()

    class Config:
        frozen = True

    @field_validator("indicators")
    def ids_and_keys_must_be_unique(cls, v):
        seen = set()
        for spec in v:
            if spec.id in seen:
                raise ValueError(f"Duplicate indicator id {spec.id!r}")
            seen.add(spec.id)
        # Derived series keys must not collide across indicators
        owners = {}
        for spec in v:
            for key in spec.render_keys:
                if key in owners:
                    raise ValueError(
                        f"Indicator {spec.id!r} would draw series {key!r} already drawn by {owners[key]!r}"
                    )
                owners[key] = spec.id
        return v

    def __len__(self) -> int:
        return len(self.indicators)

    def __contains__(self, indicator_id) -> bool:
        return any(spec.id == indicator_id for spec in self.indicators)

    @property
    def ids(self) -> List[str]:
        return [spec.id for spec in self.indicators]

    def get(self, indicator_id: str) -> IndicatorSpec:
        for spec in self.indicators:
            if spec.id == indicator_id:
                return spec
        raise KeyError(indicator_id)

    def visible(self) -> List[IndicatorSpec]:
        return [spec for spec in self.indicators if spec.visible]

    def overlays(self) -> List[IndicatorSpec]:
        return [spec for spec in self.visible() if not spec.is_stacked]

    def stacked(self) -> List[IndicatorSpec]:
        return [spec for spec in self.visible() if spec.is_stacked]

    def _replace(self, indicators: Iterable[IndicatorSpec]) -> "IndicatorConfigSet":
        return IndicatorConfigSet(indicators=tuple(indicators))

    def add(self, spec: IndicatorSpec) -> "IndicatorConfigSet":
        return self._replace(self.indicators + (spec,))

    def remove(self, indicator_id: str) -> "IndicatorConfigSet":
        if indicator_id not in self:
            raise KeyError(indicator_id)
        return self._replace(s for s in self.indicators if s.id != indicator_id)

    def update(self, indicator_id: str, **changes) -> "IndicatorConfigSet":
        current = self.get(indicator_id)
        updated = current.with_changes(**changes)
        return self._replace(updated if s.id == indicator_id else s for s in self.indicators)

    def set_visible(self, indicator_id: str, visible: bool) -> "IndicatorConfigSet":
        return self.update(indicator_id, visible=visible)

    def move(self, indicator_id: str, position: int) -> "IndicatorConfigSet":
        spec = self.get(indicator_id)
        rest = [s for s in self.indicators if s.id != indicator_id]
        position = max(0, min(position, len(rest)))
        rest.insert(position, spec)
        return self._replace(rest)

    def reorder(self, ids: List[str]) -> "IndicatorConfigSet":
        if sorted(ids) != sorted(self.ids):
            raise ValueError("reorder() needs every indicator id exactly once")
        return self._replace(self.get(i) for i in ids)


def new_indicator(kind, existing: Optional[IndicatorConfigSet] = None,
                  indicator_id: Optional[str] = None, **overrides) -> IndicatorSpec:
    """Create an indicator with the workstation's defaults for ``kind``."""
    kind = IndicatorKind(kind)
    count = len(existing) if existing is not None else 0
    fields = {
        "id": indicator_id or str(uuid.uuid4()),
        "kind": kind,
        "period": DEFAULT_PERIODS.get(kind),
        "color": INDICATOR_PALETTE[count % len(INDICATOR_PALETTE)],
        "visible": True,
        "pane_index": 1 if kind in STACKED_KINDS else 0,
    }
    fields.update(overrides)
    return IndicatorSpec(**fields)
