"""
Vertical partitioning of the chart into the main price pane and stacked panes.

Margins are fractions of total chart height measured from the top and bottom
edges, matching Lightweight Charts ``scaleMargins``. Stacked panes get one
fixed-height band per distinct pane index, laid out below the main pane in the
order the indices first appear in the configuration set.
"""
import logging
from dataclasses import dataclass
from typing import Dict, Iterable, List, Optional, Tuple

logger = logging.getLogger(__name__)

MAIN_PANE_INDEX = 0


def scale_id_for(pane_index: int, main_scale_id: str = "right") -> str:
    return main_scale_id if pane_index == MAIN_PANE_INDEX else f"pane_{pane_index}"


@dataclass(frozen=True)
class PaneAllocation:
    pane_index: int
    top_margin: float
    bottom_margin: float

    @property
    def height(self) -> float:
        return max(0.0, 1.0 - self.top_margin - self.bottom_margin)

    @property
    def band(self) -> Tuple[float, float]:
        """(start, end) of the band measured from the top edge."""
        return self.top_margin, 1.0 - self.bottom_margin

    def scale_margins(self, padding: float = 0.0) -> Dict[str, float]:
        """Margins to hand to the renderer, with ``padding`` kept free at the top of the band."""
        pad = min(max(padding, 0.0), self.height)
        return {"top": self.top_margin + pad, "bottom": self.bottom_margin}


@dataclass(frozen=True)
class PaneLayout:
    main: PaneAllocation
    stacked: Tuple[PaneAllocation, ...] = ()

    @property
    def allocations(self) -> List[PaneAllocation]:
        return [self.main, *self.stacked]

    @property
    def pane_indices(self) -> List[int]:
        return [a.pane_index for a in self.stacked]

    @property
    def total_height(self) -> float:
        return sum(a.height for a in self.allocations)

    def get(self, pane_index: int) -> Optional[PaneAllocation]:
        for allocation in self.allocations:
            if allocation.pane_index == pane_index:
                return allocation
        return None


class PaneLayoutAllocator:
    def __init__(self, pane_height: float = 0.20):
        if not 0 < pane_height <= 1:
            raise ValueError(f"pane_height must be in (0, 1], got {pane_height}")
        self.pane_height = pane_height

    @staticmethod
    def pane_order(specs: Iterable) -> List[int]:
        """Distinct stacked pane indices of the visible specs, in first-appearance order."""
        seen_ids = set()
        order: List[int] = []
        for spec in specs:
            if spec.id in seen_ids:
                continue
            seen_ids.add(spec.id)
            if not spec.visible or spec.pane_index <= MAIN_PANE_INDEX:
                continue
            if spec.pane_index not in order:
                order.append(spec.pane_index)
        return order

    def allocate(self, config) -> PaneLayout:
        """Compute the layout for an ``IndicatorConfigSet`` or any iterable of specs."""
        specs = getattr(config, "indicators", config)
        panes = self.pane_order(specs)
        h = self.pane_height
        stack = min(len(panes) * h, 1.0)

        main = PaneAllocation(MAIN_PANE_INDEX, 0.0, stack)
        stacked = []
        for i, pane_index in enumerate(panes):
            bottom = max(0.0, stack - (i + 1) * h)
            top = min(1.0 - stack + i * h, 1.0 - bottom)
            stacked.append(PaneAllocation(pane_index, top, bottom))

        layout = PaneLayout(main, tuple(stacked))
        logger.debug("Pane layout: main bottom=%.3f, stacked=%s", stack,
                     [(a.pane_index, round(a.top_margin, 3), round(a.bottom_margin, 3)) for a in stacked])
        return layout
