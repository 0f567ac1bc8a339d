"""
Layout preset catalog.

Each preset defines:
- Which panes are shown and in what order
- The layout shape used to arrange them (single, triple, quad, full)
- Minimum terminal size requirements
- Relative weights used when a shape splits space unevenly

Presets are immutable and defined at process start. DOWNGRADE_CHAIN orders
them from largest to smallest; it is walked when the terminal is too small
for a requested preset.
"""

from collections.abc import Mapping
from dataclasses import dataclass, field

SHAPES = ("single", "triple", "quad", "full")

# Number of panes each shape arranges
SHAPE_PANE_COUNTS = {"single": 1, "triple": 3, "quad": 4, "full": 5}


@dataclass(frozen=True)
class Preset:
    """
    Immutable layout preset.

    Attributes:
        name: Catalog identifier (e.g., "development")
        title: Display title (e.g., "Development Mode")
        description: One-line explanation of the preset
        panes: Ordered pane ids shown by the preset
        shape: Layout shape tag, one of SHAPES
        min_width: Minimum terminal width in cells
        min_height: Minimum terminal height in cells
        weights: Relative share per pane id for uneven splits
    """

    name: str
    title: str
    description: str
    panes: tuple[str, ...]
    shape: str
    min_width: int
    min_height: int
    weights: Mapping[str, float] = field(default_factory=dict)

    def __post_init__(self) -> None:
        if self.shape not in SHAPES:
            raise ValueError(f"Preset {self.name!r} has unknown shape {self.shape!r}")
        if len(self.panes) != SHAPE_PANE_COUNTS[self.shape]:
            raise ValueError(
                f"Preset {self.name!r} shape {self.shape!r} needs "
                f"{SHAPE_PANE_COUNTS[self.shape]} panes, got {len(self.panes)}"
            )

    def fits(self, width: int, height: int) -> bool:
        """Check whether a terminal of the given size meets the minimum."""
        return width >= self.min_width and height >= self.min_height

    def weight(self, pane_id: str) -> float:
        return self.weights.get(pane_id, 1.0)

    @property
    def min_size(self) -> str:
        return f"{self.min_width}x{self.min_height}"


@dataclass(frozen=True)
class PresetInfo:
    """Summary of a preset for listing, with the active flag."""

    name: str
    title: str
    description: str
    pane_count: int
    min_size: str
    current: bool


PRESETS: dict[str, Preset] = {
    "quick": Preset(
        name="quick",
        title="Quick Mode",
        description="Single-pane compact view for essential status",
        panes=("progress",),
        shape="single",
        min_width=60,
        min_height=10,
        weights={"progress": 1.0},
    ),
    "development": Preset(
        name="development",
        title="Development Mode",
        description="3-pane layout for active development workflow",
        panes=("progress", "tasks", "capabilities"),
        shape="triple",
        min_width=120,
        min_height=24,
        weights={"progress": 0.3, "tasks": 0.45, "capabilities": 0.25},
    ),
    "monitoring": Preset(
        name="monitoring",
        title="Monitoring Mode",
        description="4-pane layout for workflow monitoring and debugging",
        panes=("progress", "tasks", "logs", "tools"),
        shape="quad",
        min_width=160,
        min_height=30,
        weights={"progress": 0.25, "tasks": 0.35, "logs": 0.25, "tools": 0.15},
    ),
    "debug": Preset(
        name="debug",
        title="Debug Mode",
        description="5-pane layout with all available information",
        panes=("progress", "tasks", "capabilities", "logs", "tools"),
        shape="full",
        min_width=180,
        min_height=35,
        weights={
            "progress": 0.2,
            "tasks": 0.3,
            "capabilities": 0.2,
            "logs": 0.2,
            "tools": 0.1,
        },
    ),
    "full": Preset(
        name="full",
        title="Full Mode",
        description="Every pane with a large primary view for ultra-wide terminals",
        panes=("progress", "tasks", "capabilities", "logs", "tools"),
        shape="full",
        min_width=200,
        min_height=50,
        weights={
            "progress": 0.4,
            "tasks": 0.25,
            "capabilities": 0.15,
            "logs": 0.1,
            "tools": 0.1,
        },
    ),
}

# Largest first; the last entry is the best-effort fallback
DOWNGRADE_CHAIN: tuple[str, ...] = ("full", "debug", "monitoring", "development", "quick")


def find_fallback_preset(
    requested: str,
    width: int,
    height: int,
    presets: Mapping[str, Preset] = PRESETS,
    chain: tuple[str, ...] = DOWNGRADE_CHAIN,
) -> str:
    """
    Pick the largest preset below `requested` in the chain that fits.

    Presets named in the chain but missing from the catalog are skipped.
    If the requested preset is not part of the chain, the whole chain is
    considered. When nothing fits, the smallest chain entry is returned.

    Args:
        requested: Preset that did not fit
        width: Terminal width in cells
        height: Terminal height in cells
        presets: Preset catalog
        chain: Downgrade order, largest first

    Returns:
        Name of the selected preset
    """
    known = [name for name in chain if name in presets]
    if not known:
        return requested

    start = known.index(requested) + 1 if requested in known else 0
    for name in known[start:]:
        if presets[name].fits(width, height):
            return name
    return known[-1]
