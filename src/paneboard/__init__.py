"""
paneboard: terminal dashboard coordination engine.

This package provides the building blocks for a multi-pane terminal dashboard:
- LayoutEngine: Preset-driven pane geometry with downgrade and caching
- PaneRegistry: Pane lifecycle, per-pane ordered updates and debounced batching
- KeyboardDispatcher: Key parsing and global/pane-scoped action dispatch
- UpdateCoordinator: Prioritized, batched pane updates from change events
- DashboardEngine: Facade wiring the four components together
- WatchfilesSource: File system change source
- DashboardController: Rich Live host loop
- render_snapshot: Rich rendering of engine snapshots
"""

from paneboard.config import Settings
from paneboard.controller import DashboardController
from paneboard.engine import DashboardEngine, DashboardSnapshot, create_dashboard
from paneboard.errors import (
    DuplicatePaneError,
    InvalidPresetError,
    PaneboardError,
    PaneInitializationError,
    UnknownPaneError,
    UnknownPaneTypeError,
    UpdateApplicationError,
)
from paneboard.keyboard import KeyboardDispatcher, KeyDispatch, KeyModifiers, parse_key
from paneboard.layout import Layout, LayoutEngine, PaneRegion, Rect, TerminalDimensions
from paneboard.panes import PANE_TYPES, PanePhase, PaneRegistry, PaneState, PaneType
from paneboard.presets import DOWNGRADE_CHAIN, PRESETS, Preset
from paneboard.render import render_snapshot
from paneboard.updater import ChangeKind, Priority, UpdateCoordinator, UpdateEvent
from paneboard.watcher import WatchfilesSource

__all__ = [
    "DOWNGRADE_CHAIN",
    "PANE_TYPES",
    "PRESETS",
    "ChangeKind",
    "DashboardController",
    "DashboardEngine",
    "DashboardSnapshot",
    "DuplicatePaneError",
    "InvalidPresetError",
    "KeyDispatch",
    "KeyModifiers",
    "KeyboardDispatcher",
    "Layout",
    "LayoutEngine",
    "PaneInitializationError",
    "PanePhase",
    "PaneRegion",
    "PaneRegistry",
    "PaneState",
    "PaneType",
    "PaneboardError",
    "Preset",
    "Priority",
    "Rect",
    "Settings",
    "TerminalDimensions",
    "UnknownPaneError",
    "UnknownPaneTypeError",
    "UpdateApplicationError",
    "UpdateCoordinator",
    "UpdateEvent",
    "WatchfilesSource",
    "create_dashboard",
    "parse_key",
    "render_snapshot",
]
