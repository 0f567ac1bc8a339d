"""
Dashboard engine: wires the layout engine, pane registry, keyboard
dispatcher and update coordinator together.

The engine is what a host process talks to:
- resize(), set_preset(): terminal and preset changes
- handle_key(): key events; global actions run here, pane-scoped actions
  go to the on_action callback
- watch(): attach a change source to the update coordinator
- snapshot(): everything a renderer needs, as one immutable value

Registry focus always follows layout focus, so exactly one visible pane is
focused once the engine has started.
"""

import asyncio
import logging
from collections.abc import Callable, Coroutine, Mapping
from dataclasses import dataclass
from typing import Any

from paneboard.config import Settings
from paneboard.help import HelpDocument
from paneboard.keyboard import KeyboardDispatcher, KeyboardMetrics, KeyDispatch, KeyModifiers
from paneboard.layout import Layout, LayoutEngine, PresetChange, TerminalDimensions
from paneboard.metrics import EngineMetrics
from paneboard.panes import PANE_TYPES, PaneRegistry, PaneStatus, PaneType, RegistryMetrics
from paneboard.presets import PRESETS, Preset
from paneboard.updater import (
    ChangeSource,
    CoordinatorHealth,
    PaneLoader,
    Subscription,
    UpdateCoordinator,
)

logger = logging.getLogger(__name__)

PRESET_ACTION_PREFIX = "set_preset_"

ActionHandler = Callable[[KeyDispatch, str | None], None]


@dataclass(frozen=True)
class DashboardSnapshot:
    """
    Render-ready view of the whole dashboard.

    Attributes:
        layout: Current computed layout
        preset: Active preset
        panes: Status of every registered pane
        help: Help document for the focused context, or None when hidden
        preset_change: Outcome of the most recent preset change
        registry: Pane registry metrics
        keyboard: Keyboard dispatcher metrics
        coordinator: Update coordinator health
        exiting: True once a quit action has been dispatched
    """

    layout: Layout
    preset: Preset
    panes: dict[str, PaneStatus]
    help: HelpDocument | None
    preset_change: PresetChange | None
    registry: RegistryMetrics
    keyboard: KeyboardMetrics
    coordinator: CoordinatorHealth
    exiting: bool

    @property
    def focused_pane(self) -> str | None:
        return self.layout.focused_pane

    def visible_panes(self) -> list[PaneStatus]:
        """Statuses of the panes in the layout, in layout order."""
        return [self.panes[pane_id] for pane_id in self.layout.pane_ids if pane_id in self.panes]


class DashboardEngine:
    """
    Coordinates the four dashboard components.

    Must be started and used from a running event loop.

    Example:
        engine = DashboardEngine(Settings(preset="monitoring"))
        await engine.start()
        engine.handle_key("tab")
        snapshot = engine.snapshot()
        await engine.cleanup()
    """

    def __init__(
        self,
        settings: Settings | None = None,
        dimensions: TerminalDimensions | None = None,
        presets: Mapping[str, Preset] = PRESETS,
        pane_types: Mapping[str, PaneType] = PANE_TYPES,
        loader: PaneLoader | None = None,
        on_action: ActionHandler | None = None,
    ) -> None:
        """
        Build the components from settings.

        Args:
            settings: Engine configuration (environment defaults if None)
            dimensions: Initial terminal size (detected if None)
            presets: Preset catalog
            pane_types: Pane type catalog
            loader: Builds pane payloads from change events
            on_action: Receives pane-scoped actions and the focused pane

        Raises:
            InvalidPresetError: If the configured preset does not exist
        """
        self.settings = settings if settings is not None else Settings()
        if dimensions is None:
            dimensions = TerminalDimensions.detect(
                (self.settings.terminal_width, self.settings.terminal_height)
            )
        self.metrics = EngineMetrics()
        self.layout = LayoutEngine(self.settings.preset, dimensions, presets)
        self.registry = PaneRegistry(
            pane_types,
            debounce_ms=self.settings.debounce_ms,
            max_concurrent_updates=self.settings.max_concurrent_updates,
            metrics=self.metrics,
        )
        self.keyboard = KeyboardDispatcher(
            history_size=self.settings.key_history_size,
            metrics=self.metrics,
        )
        self.coordinator = UpdateCoordinator(
            self.registry,
            loader=loader,
            debounce_ms=self.settings.debounce_ms,
            max_concurrent_updates=self.settings.max_concurrent_updates,
            max_pending_events=self.settings.max_pending_events,
            metrics=self.metrics,
        )
        self.on_action = on_action
        self.exit_event = asyncio.Event()

        # Preset the user asked for; resize() retries it when the terminal grows
        self._requested_preset = self.settings.preset
        self._last_change: PresetChange | None = None
        self._tasks: set[asyncio.Task[Any]] = set()
        self._started = False

    # Lifecycle

    async def start(self) -> None:
        """Register the active preset's panes and wait for their initialization."""
        new = self._sync_panes()
        self._started = True
        await asyncio.gather(*(self.registry.wait_ready(pane_id) for pane_id in new))
        logger.info(
            f"Dashboard started with {self.layout.preset.title} "
            f"({len(self.registry)} panes)"
        )

    async def watch(self, source: ChangeSource) -> Subscription:
        """Feed a change source into the update coordinator."""
        return await self.coordinator.start(source)

    async def cleanup(self) -> None:
        """Stop watchers, timers and background actions. Idempotent."""
        await self.coordinator.cleanup()
        tasks, self._tasks = list(self._tasks), set()
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
        await self.registry.close()

    def _sync_panes(self) -> list[str]:
        """Register panes shown by the active preset and align focus."""
        new = []
        for pane_id in self.layout.preset.panes:
            if pane_id not in self.registry:
                self.registry.register(pane_id)
                new.append(pane_id)
        self._sync_focus()
        return new

    def _sync_focus(self) -> None:
        focused = self.layout.focused_pane
        if focused is not None:
            self.registry.set_focus(focused, True)

    def _spawn(self, coro: Coroutine[Any, Any, Any]) -> None:
        task = asyncio.get_running_loop().create_task(coro)
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    # Terminal and preset

    def set_preset(self, name: str) -> PresetChange:
        """
        Switch preset, downgrading if the terminal is too small.

        Raises:
            InvalidPresetError: If the preset does not exist
        """
        change = self.layout.set_preset(name)
        self._requested_preset = name
        self._last_change = change
        if self._started:
            self._sync_panes()
        return change

    def resize(self, width: int, height: int) -> PresetChange:
        """Apply a new terminal size and re-select the requested preset."""
        self.layout.update_dimensions(width, height)
        change = self.layout.set_preset(self._requested_preset)
        if change.selected != change.previous:
            self._last_change = change
        if self._started:
            self._sync_panes()
        return change

    # Keyboard

    def handle_key(
        self,
        name: str,
        modifiers: KeyModifiers | Mapping[str, bool] | None = None,
    ) -> KeyDispatch | None:
        """
        Dispatch a key event and perform its action.

        Returns:
            The resolved dispatch, or None for unbound keys
        """
        focused = self.layout.focused_pane
        dispatch = self.keyboard.dispatch(name, modifiers, focused)
        if dispatch is None:
            return None

        if not dispatch.is_global or not self._run_global(dispatch.action):
            self._forward(dispatch, focused)
        return dispatch

    def _forward(self, dispatch: KeyDispatch, focused: str | None) -> None:
        if self.on_action is None:
            logger.debug(f"No handler for action {dispatch.action}")
            return
        self.on_action(dispatch, focused)

    def _run_global(self, action: str) -> bool:
        """Run a global action; returns False when the host should handle it."""
        if action == "focus_next_pane":
            self.layout.next_pane()
            self._sync_focus()
        elif action == "focus_previous_pane":
            self.layout.previous_pane()
            self._sync_focus()
        elif action in ("exit_dashboard", "force_exit"):
            self.exit_event.set()
        elif action == "toggle_help":
            self.keyboard.toggle_help()
        elif action == "refresh_all_panes":
            self._spawn(self.registry.refresh_all())
        elif action == "hard_refresh":
            dims = self.layout.dimensions
            self.resize(dims.width, dims.height)
            self._spawn(self.registry.refresh_all())
        elif action == "toggle_pane_collapse":
            focused = self.layout.focused_pane
            if focused is not None:
                self.registry.toggle_collapse(focused)
        elif action == "clear_selection" and self.keyboard.help_visible:
            self.keyboard.toggle_help()
        elif action.startswith(PRESET_ACTION_PREFIX):
            name = action[len(PRESET_ACTION_PREFIX) :]
            if name not in self.layout.presets:
                logger.warning(f"Key bound to unknown preset {name!r}")
                return True
            self.set_preset(name)
        else:
            return False
        return True

    # Rendering

    def snapshot(self) -> DashboardSnapshot:
        """Capture the current state for rendering."""
        focused = self.layout.focused_pane
        return DashboardSnapshot(
            layout=self.layout.compute_layout(),
            preset=self.layout.preset,
            panes=self.registry.statuses(),
            help=self.keyboard.contextual_help(focused) if self.keyboard.help_visible else None,
            preset_change=self._last_change,
            registry=self.registry.get_metrics(),
            keyboard=self.keyboard.get_metrics(),
            coordinator=self.coordinator.get_health(),
            exiting=self.exit_event.is_set(),
        )


def create_dashboard(
    preset: str | None = None,
    width: int | None = None,
    height: int | None = None,
    loader: PaneLoader | None = None,
    on_action: ActionHandler | None = None,
    **overrides: Any,
) -> DashboardEngine:
    """
    Convenience factory.

    Args:
        preset: Preset name (configured default if None)
        width: Terminal width (detected if None)
        height: Terminal height (detected if None)
        loader: Pane payload loader for change events
        on_action: Handler for pane-scoped actions
        **overrides: Other Settings fields

    Returns:
        Engine, not yet started
    """
    if preset is not None:
        overrides["preset"] = preset
    settings = Settings(**overrides)
    dimensions = None
    if width is not None or height is not None:
        dimensions = TerminalDimensions(
            width if width is not None else settings.terminal_width,
            height if height is not None else settings.terminal_height,
        )
    return DashboardEngine(settings, dimensions, loader=loader, on_action=on_action)
