"""
Layout engine for the multi-pane dashboard.

Geometry is a pure function of (preset, terminal dimensions, focused pane):
compute_geometry() never reads hidden state, which is what makes the
LayoutEngine cache safe.

Layout shapes (coordinates relative to the dashboard body):

single                 triple                 quad
+----------------+     +-----+----------+     +--------+-------+
|                |     |     |    p1    |     |   p0   |  p1   |
|       p0       |     | p0  +----------+     +--------+-------+
|                |     |     |    p2    |     |   p2   |  p3   |
+----------------+     +-----+----------+     +--------+-------+

full
+-------------------+--------+
|                   |   p1   |
|                   +--------+
|        p0         |   p2   |
|     (primary)     +--------+
|                   |   p3   |
|                   +--------+
|                   |   p4   |
+-------------------+--------+

The body is the terminal minus CHROME_WIDTH columns and CHROME_HEIGHT rows
reserved for borders, header and footer.
"""

from __future__ import annotations

import logging
import shutil
from collections.abc import Mapping, Sequence
from dataclasses import dataclass, replace
from typing import Any

from paneboard.errors import InvalidPresetError
from paneboard.presets import (
    DOWNGRADE_CHAIN,
    PRESETS,
    Preset,
    PresetInfo,
    find_fallback_preset,
)

logger = logging.getLogger(__name__)

CHROME_WIDTH = 4  # 2 columns of padding on each side
CHROME_HEIGHT = 6  # header, footer and borders

# Share of the body width given to the sidebar in the full shape
SIDEBAR_FRACTION = 0.4


@dataclass(frozen=True)
class TerminalDimensions:
    """Terminal size in character cells."""

    width: int
    height: int

    @classmethod
    def detect(cls, fallback: tuple[int, int] = (120, 30)) -> TerminalDimensions:
        """Read the current terminal size, using `fallback` when unknown."""
        size = shutil.get_terminal_size(fallback)
        return cls(width=size.columns, height=size.lines)


@dataclass(frozen=True)
class Rect:
    x: int
    y: int
    width: int
    height: int


@dataclass(frozen=True)
class PaneRegion:
    """
    Screen region assigned to one pane.

    Attributes:
        pane_id: Pane shown in this region
        rect: Origin and size within the dashboard body
        focused: True if this pane holds keyboard focus
    """

    pane_id: str
    rect: Rect
    focused: bool = False


@dataclass(frozen=True)
class Layout:
    """
    Computed layout for one (preset, dimensions) pair.

    Attributes:
        shape: Layout shape tag of the preset
        preset: Name of the preset the layout was computed for
        dimensions: Terminal size the layout was computed for
        panes: Regions in preset order
    """

    shape: str
    preset: str
    dimensions: TerminalDimensions
    panes: tuple[PaneRegion, ...]

    @property
    def pane_ids(self) -> list[str]:
        return [region.pane_id for region in self.panes]

    @property
    def focused_pane(self) -> str | None:
        for region in self.panes:
            if region.focused:
                return region.pane_id
        return None

    def region(self, pane_id: str) -> PaneRegion | None:
        for region in self.panes:
            if region.pane_id == pane_id:
                return region
        return None

    def with_focus(self, pane_id: str | None) -> Layout:
        """
        Return a copy with the focus flag moved to `pane_id`.

        A pane without a region hands the flag to the first region.
        """
        if pane_id is not None and self.panes and pane_id not in self.pane_ids:
            pane_id = self.panes[0].pane_id
        return replace(
            self,
            panes=tuple(
                replace(region, focused=region.pane_id == pane_id)
                for region in self.panes
            ),
        )


@dataclass(frozen=True)
class PresetChange:
    """
    Outcome of a set_preset() call.

    Attributes:
        requested: Preset the caller asked for
        selected: Preset that is now active
        previous: Preset that was active before the call
    """

    requested: str
    selected: str
    previous: str | None

    @property
    def downgraded(self) -> bool:
        """True if the terminal was too small for the requested preset."""
        return self.requested != self.selected


def apportion(total: int, weights: Sequence[float]) -> list[int]:
    """
    Split `total` cells into integer parts proportional to `weights`.

    Uses largest-remainder apportionment so the parts always sum to
    `total`. Ties go to the earlier part. Non-positive weight sums split
    evenly.

    Args:
        total: Cells to distribute (negative values are treated as zero)
        weights: Relative share of each part

    Returns:
        List of part sizes, same length as weights
    """
    total = max(0, total)
    if not weights:
        return []
    weight_sum = sum(weights)
    if weight_sum <= 0:
        weights = [1.0] * len(weights)
        weight_sum = float(len(weights))

    raw = [total * w / weight_sum for w in weights]
    parts = [int(r) for r in raw]
    leftover = total - sum(parts)
    by_remainder = sorted(
        range(len(weights)), key=lambda i: (-(raw[i] - parts[i]), i)
    )
    for i in by_remainder[:leftover]:
        parts[i] += 1
    return parts


def _single_rects(preset: Preset, width: int, height: int) -> list[Rect]:
    return [Rect(0, 0, width, height)]


def _triple_rects(preset: Preset, width: int, height: int) -> list[Rect]:
    p0, p1, p2 = preset.panes
    left_w, right_w = apportion(
        width, [preset.weight(p0), preset.weight(p1) + preset.weight(p2)]
    )
    top_h, bottom_h = apportion(height, [preset.weight(p1), preset.weight(p2)])
    return [
        Rect(0, 0, left_w, height),
        Rect(left_w, 0, right_w, top_h),
        Rect(left_w, top_h, right_w, bottom_h),
    ]


def _quad_rects(preset: Preset, width: int, height: int) -> list[Rect]:
    left_w = width // 2
    right_w = width - left_w
    top_h = height // 2
    bottom_h = height - top_h
    return [
        Rect(0, 0, left_w, top_h),
        Rect(left_w, 0, right_w, top_h),
        Rect(0, top_h, left_w, bottom_h),
        Rect(left_w, top_h, right_w, bottom_h),
    ]


def _full_rects(preset: Preset, width: int, height: int) -> list[Rect]:
    sidebar_w = int(width * SIDEBAR_FRACTION)
    primary_w = width - sidebar_w
    rects = [Rect(0, 0, primary_w, height)]
    heights = apportion(height, [preset.weight(p) for p in preset.panes[1:]])
    y = 0
    for h in heights:
        rects.append(Rect(primary_w, y, sidebar_w, h))
        y += h
    return rects


_SHAPE_BUILDERS = {
    "single": _single_rects,
    "triple": _triple_rects,
    "quad": _quad_rects,
    "full": _full_rects,
}


def compute_geometry(
    preset: Preset,
    dimensions: TerminalDimensions,
    focused: str | None = None,
) -> Layout:
    """
    Compute pane regions for a preset at a terminal size.

    Pure function: the result depends only on the arguments. Regions that
    end up with zero width or height (terminal smaller than the chrome) are
    left out; the remaining regions keep preset order. If the focused pane
    is among those left out, the first remaining region is marked focused
    instead. The engine's own focus is unchanged and returns to the pane
    once the terminal is large enough again.

    Args:
        preset: Preset to lay out
        dimensions: Terminal size
        focused: Pane id to mark as focused, if any

    Returns:
        Layout for the preset
    """
    body_w = max(0, dimensions.width - CHROME_WIDTH)
    body_h = max(0, dimensions.height - CHROME_HEIGHT)
    rects = _SHAPE_BUILDERS[preset.shape](preset, body_w, body_h)

    regions = tuple(
        PaneRegion(pane_id=pane_id, rect=rect, focused=pane_id == focused)
        for pane_id, rect in zip(preset.panes, rects)
        if rect.width > 0 and rect.height > 0
    )
    # The focused pane may have been dropped; focus stays on a visible region
    if focused is not None and regions and not any(r.focused for r in regions):
        regions = (replace(regions[0], focused=True),) + regions[1:]
    return Layout(
        shape=preset.shape,
        preset=preset.name,
        dimensions=dimensions,
        panes=regions,
    )


class LayoutEngine:
    """
    Owns the active preset, terminal dimensions, focus and layout cache.

    Layouts are cached by (preset, width, height). Any call that changes a
    key field clears the cache, so callers never see a stale layout and do
    not need to know the cache exists. Focus changes update the cached
    entry in place of recomputing geometry.

    Example:
        engine = LayoutEngine("development", TerminalDimensions(140, 40))
        layout = engine.compute_layout()
        engine.next_pane()  # "tasks"
    """

    def __init__(
        self,
        preset: str = "development",
        dimensions: TerminalDimensions | None = None,
        presets: Mapping[str, Preset] = PRESETS,
        chain: tuple[str, ...] = DOWNGRADE_CHAIN,
    ) -> None:
        """
        Initialize the engine and apply the initial preset.

        Args:
            preset: Initial preset name (downgraded if it does not fit)
            dimensions: Initial terminal size (detected when None)
            presets: Preset catalog
            chain: Downgrade order, largest first

        Raises:
            InvalidPresetError: If `preset` is not in the catalog
        """
        self._presets = dict(presets)
        self._chain = chain
        self._dimensions = dimensions if dimensions is not None else TerminalDimensions.detect()
        self._preset: str | None = None
        self._focused: str | None = None
        self._cache: dict[tuple[str, int, int], Layout] = {}
        self.set_preset(preset)

    @property
    def preset(self) -> Preset:
        assert self._preset is not None
        return self._presets[self._preset]

    @property
    def dimensions(self) -> TerminalDimensions:
        return self._dimensions

    @property
    def focused_pane(self) -> str | None:
        return self._focused

    @property
    def presets(self) -> Mapping[str, Preset]:
        return self._presets

    def set_preset(self, name: str) -> PresetChange:
        """
        Activate a preset, downgrading when the terminal is too small.

        Args:
            name: Preset name from the catalog

        Returns:
            PresetChange describing the requested and selected presets

        Raises:
            InvalidPresetError: If `name` is not in the catalog
        """
        if name not in self._presets:
            raise InvalidPresetError(name, list(self._presets))

        previous = self._preset
        width, height = self._dimensions.width, self._dimensions.height
        selected = name
        if not self._presets[name].fits(width, height):
            selected = find_fallback_preset(
                name, width, height, self._presets, self._chain
            )
            logger.warning(
                f"Terminal too small for {self._presets[name].title} "
                f"({width}x{height}), using {self._presets[selected].title} instead"
            )

        self._preset = selected
        self._cache.clear()

        panes = self._presets[selected].panes
        if self._focused not in panes:
            self._focused = panes[0] if panes else None

        return PresetChange(requested=name, selected=selected, previous=previous)

    def update_dimensions(self, width: int, height: int) -> None:
        """Replace the terminal size and invalidate the layout cache."""
        self._dimensions = TerminalDimensions(max(0, width), max(0, height))
        self._cache.clear()

    def _cache_key(self) -> tuple[str, int, int]:
        return (self.preset.name, self._dimensions.width, self._dimensions.height)

    def compute_layout(self) -> Layout:
        """
        Get the layout for the current preset and dimensions.

        Returns the cached object when inputs are unchanged.
        """
        key = self._cache_key()
        cached = self._cache.get(key)
        if cached is not None:
            return cached

        layout = compute_geometry(self.preset, self._dimensions, self._focused)
        self._cache[key] = layout
        return layout

    def focus_pane(self, pane_id: str) -> bool:
        """
        Move focus to a pane of the active preset.

        Returns:
            False if the pane is not part of the active preset
        """
        if pane_id not in self.preset.panes:
            return False

        self._focused = pane_id
        key = self._cache_key()
        if key in self._cache:
            self._cache[key] = self._cache[key].with_focus(pane_id)
        return True

    def _step_focus(self, step: int) -> str | None:
        panes = self.preset.panes
        if not panes:
            return None
        if self._focused in panes:
            index = (panes.index(self._focused) + step) % len(panes)
        else:
            index = 0
        self.focus_pane(panes[index])
        return self._focused

    def next_pane(self) -> str | None:
        """Focus the next pane, wrapping from last to first."""
        return self._step_focus(1)

    def previous_pane(self) -> str | None:
        """Focus the previous pane, wrapping from first to last."""
        return self._step_focus(-1)

    def list_available_presets(self) -> list[PresetInfo]:
        """List presets that fit the current terminal, flagging the active one."""
        width, height = self._dimensions.width, self._dimensions.height
        return [
            PresetInfo(
                name=name,
                title=preset.title,
                description=preset.description,
                pane_count=len(preset.panes),
                min_size=preset.min_size,
                current=name == self._preset,
            )
            for name, preset in self._presets.items()
            if preset.fits(width, height)
        ]

    def validate_terminal_for_preset(self, name: str) -> dict[str, Any]:
        """
        Check whether the current terminal meets a preset's minimum size.

        Returns:
            Dict with valid flag, required and actual sizes, and an error
            message (None when valid)
        """
        preset = self._presets.get(name)
        actual = {"width": self._dimensions.width, "height": self._dimensions.height}
        if preset is None:
            return {"valid": False, "preset": name, "error": f"Unknown preset: {name}"}

        valid = preset.fits(self._dimensions.width, self._dimensions.height)
        return {
            "valid": valid,
            "preset": name,
            "required": {"width": preset.min_width, "height": preset.min_height},
            "actual": actual,
            "error": None if valid else f"Terminal too small for {preset.title}",
        }

    def layout_info(self) -> dict[str, Any]:
        """Debugging summary of the engine state."""
        return {
            "preset": self.preset.name,
            "terminal_size": self._dimensions,
            "layout": self.compute_layout(),
            "focused_pane": self._focused,
            "available_presets": self.list_available_presets(),
        }
