"""
Keyboard handling for the dashboard.

This module provides:
- parse_key(): canonical combination strings ("C-c", "S-tab", "q")
- decode_key(): raw terminal input to (name, modifiers)
- KeyboardDispatcher: pure translation of key events into actions using a
  global binding table and one table per pane type
- KeyReader: async stdin reader for the host process

Resolution order: the focus-cycle keys (tab, S-tab) are always global; any
other combination is looked up in the global table first and only then in
the focused pane's table.

KeyReader never calls a blocking read in async context. It reads through
an executor with a select() timeout so the thread always returns quickly
and shutdown is clean.
"""

import asyncio
import logging
import select
import sys
import termios
import time
import tty
from collections.abc import Callable, Mapping
from dataclasses import dataclass
from types import MappingProxyType
from typing import TextIO

from paneboard.buffer import RingBuffer
from paneboard.help import HelpDocument, HelpSection, help_for
from paneboard.metrics import EngineMetrics

logger = logging.getLogger(__name__)

GLOBAL_SCOPE = "global"

GLOBAL_BINDINGS: dict[str, str] = {
    # Navigation
    "tab": "focus_next_pane",
    "S-tab": "focus_previous_pane",
    "q": "exit_dashboard",
    "h": "toggle_help",
    "r": "refresh_all_panes",
    # Layout control
    "1": "set_preset_quick",
    "2": "set_preset_development",
    "3": "set_preset_monitoring",
    "4": "set_preset_debug",
    "5": "set_preset_full",
    # Pane operations
    "space": "toggle_pane_collapse",
    "enter": "execute_pane_action",
    "escape": "clear_selection",
    # System
    "C-c": "force_exit",
    "C-r": "hard_refresh",
}

PANE_BINDINGS: dict[str, dict[str, str]] = {
    "progress": {
        "a": "advance_phase",
        "p": "report_progress",
        "r": "refresh_progress",
        "space": "toggle_phase_details",
        "enter": "view_phase_details",
    },
    "tasks": {
        "n": "generate_next_task",
        "p": "report_task_progress",
        "c": "complete_task",
        "enter": "view_task_details",
        "up": "select_previous_task",
        "down": "select_next_task",
    },
    "capabilities": {
        "c": "analyze_capabilities",
        "g": "show_gap_analysis",
        "d": "discover_agent",
        "enter": "view_tool_details",
        "up": "select_previous_tool",
        "down": "select_next_tool",
    },
    "logs": {
        "f": "filter_logs",
        "c": "clear_logs",
        "e": "show_errors",
        "enter": "view_log_details",
        "up": "scroll_up",
        "down": "scroll_down",
    },
    "tools": {
        "enter": "execute_selected_tool",
        "i": "show_tool_info",
        "h": "show_tool_help",
        "up": "select_previous_tool",
        "down": "select_next_tool",
    },
}

# Never shadowed by pane tables
FOCUS_CYCLE_KEYS: dict[str, str] = {
    "tab": "focus_next_pane",
    "S-tab": "focus_previous_pane",
}

KEY_ALIASES: dict[str, str] = {
    " ": "space",
    "\t": "tab",
    "\r": "enter",
    "\n": "enter",
    "return": "enter",
    "esc": "escape",
    "arrowup": "up",
    "arrowdown": "down",
    "arrowleft": "left",
    "arrowright": "right",
    "del": "delete",
}

# Escape sequences emitted by common terminals
ESCAPE_SEQUENCES: dict[str, str] = {
    "\x1b[A": "up",
    "\x1b[B": "down",
    "\x1b[C": "right",
    "\x1b[D": "left",
    "\x1b[H": "home",
    "\x1b[F": "end",
    "\x1b[3~": "delete",
}
SHIFT_TAB_SEQUENCE = "\x1b[Z"

# Seconds to wait for the rest of an escape sequence
ESCAPE_TIMEOUT = 0.05
MAX_SEQUENCE_LENGTH = 8


@dataclass(frozen=True)
class KeyModifiers:
    ctrl: bool = False
    shift: bool = False
    alt: bool = False
    meta: bool = False

    @classmethod
    def from_mapping(cls, flags: Mapping[str, bool]) -> "KeyModifiers":
        """Build from a flag mapping; accepts "control" and "option" aliases."""
        return cls(
            ctrl=bool(flags.get("ctrl") or flags.get("control")),
            shift=bool(flags.get("shift")),
            alt=bool(flags.get("alt") or flags.get("option")),
            meta=bool(flags.get("meta")),
        )


NO_MODIFIERS = KeyModifiers()


@dataclass(frozen=True)
class KeyBinding:
    """
    One row of a binding table.

    Attributes:
        combo: Canonical key combination
        action: Action identifier
        scope: "global" or a pane type id
    """

    combo: str
    action: str
    scope: str


@dataclass(frozen=True)
class KeyEvent:
    combo: str
    timestamp: float


@dataclass(frozen=True)
class KeyDispatch:
    """
    Result of resolving a key event.

    Attributes:
        combo: Canonical key combination
        action: Bound action identifier
        scope: "global" or the pane type that owns the binding
    """

    combo: str
    action: str
    scope: str

    @property
    def is_global(self) -> bool:
        return self.scope == GLOBAL_SCOPE


@dataclass(frozen=True)
class KeyboardMetrics:
    total_key_presses: int
    commands_dispatched: int
    unbound_keys: int
    history_size: int
    help_visible: bool


def canonical_key_name(name: str) -> str:
    """Normalize a key name; single printable characters are kept as-is."""
    if name in KEY_ALIASES:
        return KEY_ALIASES[name]
    if len(name) > 1:
        lowered = name.strip().lower()
        return KEY_ALIASES.get(lowered, lowered)
    return name


def parse_key(
    name: str,
    modifiers: KeyModifiers | Mapping[str, bool] | None = None,
) -> str:
    """
    Build the canonical combination string for a key event.

    Modifier tags are prefixed in a fixed order: control, shift, alt, meta.

    Examples:
        parse_key("c", {"ctrl": True})      # "C-c"
        parse_key("tab", {"shift": True})   # "S-tab"
        parse_key("q", {})                  # "q"
    """
    if modifiers is None:
        modifiers = NO_MODIFIERS
    elif not isinstance(modifiers, KeyModifiers):
        modifiers = KeyModifiers.from_mapping(modifiers)

    prefix = ""
    if modifiers.ctrl:
        prefix += "C-"
    if modifiers.shift:
        prefix += "S-"
    if modifiers.alt:
        prefix += "A-"
    if modifiers.meta:
        prefix += "M-"
    return prefix + canonical_key_name(name)


def decode_key(raw: str) -> tuple[str, KeyModifiers]:
    """
    Translate raw terminal input into a key name and modifiers.

    Args:
        raw: Character or escape sequence read from the terminal

    Returns:
        (name, modifiers), e.g. "\\x03" -> ("c", ctrl)
    """
    if raw == SHIFT_TAB_SEQUENCE:
        return "tab", KeyModifiers(shift=True)
    if raw in ESCAPE_SEQUENCES:
        return ESCAPE_SEQUENCES[raw], NO_MODIFIERS
    if raw.startswith("\x1b"):
        if len(raw) == 2 and raw[1].isprintable():
            return raw[1], KeyModifiers(alt=True)
        return "escape", NO_MODIFIERS
    if raw in ("\t", "\r", "\n", " "):
        return KEY_ALIASES[raw], NO_MODIFIERS
    if raw == "\x7f":
        return "backspace", NO_MODIFIERS
    if len(raw) == 1 and 1 <= ord(raw) <= 26:
        return chr(ord(raw) + 96), KeyModifiers(ctrl=True)
    return raw, NO_MODIFIERS


class KeyboardDispatcher:
    """
    Translates key events into action identifiers. No I/O.

    Binding tables are read-only after construction. Every parsed key is
    recorded in a bounded history for diagnostics.

    Example:
        dispatcher = KeyboardDispatcher()
        dispatch = dispatcher.dispatch("n", {}, focused_pane="tasks")
        dispatch.action  # "generate_next_task"
    """

    def __init__(
        self,
        global_bindings: Mapping[str, str] = GLOBAL_BINDINGS,
        pane_bindings: Mapping[str, Mapping[str, str]] = PANE_BINDINGS,
        history_size: int = 10,
        metrics: EngineMetrics | None = None,
    ) -> None:
        """
        Initialize dispatcher with binding tables.

        Args:
            global_bindings: combo -> action for every context
            pane_bindings: pane type -> (combo -> action)
            history_size: Capacity of the key history ring buffer
            metrics: Shared metrics (a private instance is created if None)
        """
        self._global = MappingProxyType(dict(global_bindings))
        self._panes = MappingProxyType(
            {pane: MappingProxyType(dict(table)) for pane, table in pane_bindings.items()}
        )
        self._history: RingBuffer[KeyEvent] = RingBuffer(maxlen=history_size)
        self._help_visible = False
        self.metrics = metrics if metrics is not None else EngineMetrics()

    def parse_key(
        self,
        name: str,
        modifiers: KeyModifiers | Mapping[str, bool] | None = None,
    ) -> str:
        """Canonicalize a key event and record it in the history."""
        combo = parse_key(name, modifiers)
        self._history.append(KeyEvent(combo=combo, timestamp=time.time()))
        self.metrics.key_presses.inc()
        return combo

    def resolve_global(self, combo: str) -> str | None:
        return self._global.get(combo)

    def resolve_pane_scoped(self, pane_type: str, combo: str) -> str | None:
        table = self._panes.get(pane_type)
        if table is None:
            return None
        return table.get(combo)

    def dispatch(
        self,
        name: str,
        modifiers: KeyModifiers | Mapping[str, bool] | None = None,
        focused_pane: str | None = None,
    ) -> KeyDispatch | None:
        """
        Parse a key event and resolve it to an action.

        Args:
            name: Key name as delivered by the host
            modifiers: Modifier flags
            focused_pane: Pane type holding focus, for pane-scoped bindings

        Returns:
            KeyDispatch, or None if the key is not bound in this context
        """
        combo = self.parse_key(name, modifiers)

        if combo in FOCUS_CYCLE_KEYS:
            action = self._global.get(combo, FOCUS_CYCLE_KEYS[combo])
            result = KeyDispatch(combo, action, GLOBAL_SCOPE)
        elif (action := self.resolve_global(combo)) is not None:
            result = KeyDispatch(combo, action, GLOBAL_SCOPE)
        elif focused_pane is not None and (
            action := self.resolve_pane_scoped(focused_pane, combo)
        ) is not None:
            result = KeyDispatch(combo, action, focused_pane)
        else:
            self.metrics.unbound_keys.inc()
            logger.debug(f"Unbound key {combo!r} (focus: {focused_pane})")
            return None

        self.metrics.commands.labels(scope="global" if result.is_global else "pane").inc()
        return result

    def bindings(self) -> list[KeyBinding]:
        """All bindings, global table first."""
        rows = [KeyBinding(combo, action, GLOBAL_SCOPE) for combo, action in self._global.items()]
        for pane, table in self._panes.items():
            rows.extend(KeyBinding(combo, action, pane) for combo, action in table.items())
        return rows

    def toggle_help(self) -> bool:
        """Flip help visibility and return the new value."""
        self._help_visible = not self._help_visible
        return self._help_visible

    @property
    def help_visible(self) -> bool:
        return self._help_visible

    def contextual_help(self, context: str | None) -> HelpDocument:
        """
        Help document for a context tag, with its shortcuts appended.

        Pane contexts get a section listing that pane's bindings; the
        dashboard context gets the global bindings. Unknown contexts fall
        back to the general document.
        """
        document = help_for(context)
        if context in self._panes:
            table = self._panes[context]
        elif context == "dashboard":
            table = self._global
        else:
            return document
        items = tuple(f"{combo}: {action.replace('_', ' ')}" for combo, action in table.items())
        return document.with_section(HelpSection("Shortcuts", items))

    @property
    def key_history(self) -> list[KeyEvent]:
        return self._history.get_items()

    def get_metrics(self) -> KeyboardMetrics:
        commands = self.metrics.value(
            "paneboard_commands_total", scope="global"
        ) + self.metrics.value("paneboard_commands_total", scope="pane")
        return KeyboardMetrics(
            total_key_presses=int(self.metrics.value("paneboard_key_presses_total")),
            commands_dispatched=int(commands),
            unbound_keys=int(self.metrics.value("paneboard_unbound_keys_total")),
            history_size=len(self._history),
            help_visible=self._help_visible,
        )


def _input_ready(stream: TextIO, timeout: float) -> bool:
    return bool(select.select([stream], [], [], timeout)[0])


def _sequence_complete(raw: str) -> bool:
    if raw in ESCAPE_SEQUENCES or raw == SHIFT_TAB_SEQUENCE:
        return True
    if len(raw) == 2:
        # ESC + char is Alt+char; ESC [ and ESC O introduce longer sequences
        return raw[1] not in "[O"
    return raw[-1].isalpha() or raw[-1] == "~"


def read_key(stream: TextIO, timeout: float) -> str | None:
    """
    Read one key from a stream in cbreak mode, waiting at most `timeout`.

    Escape sequences are read whole: after ESC, characters arriving within
    ESCAPE_TIMEOUT are appended until the sequence is complete, so
    "\\x1b[Z" or "\\x1b[3~" come back as one key. A lone ESC is returned as
    is. Terminal modes are left alone.

    Returns:
        Raw key text for decode_key(), or None if nothing arrived
    """
    if not _input_ready(stream, timeout):
        return None
    raw = stream.read(1)
    if raw != "\x1b":
        return raw or None
    while len(raw) < MAX_SEQUENCE_LENGTH and _input_ready(stream, ESCAPE_TIMEOUT):
        char = stream.read(1)
        if not char:
            break
        raw += char
        if _sequence_complete(raw):
            break
    return raw


class KeyReader:
    """
    Async keyboard reader for the host's TaskGroup.

    Decodes raw input with decode_key() and hands (name, modifiers) to the
    callback.

    Example:
        reader = KeyReader(on_key=engine.handle_key)
        tg.create_task(reader.run())
        # Later:
        reader.stop()
    """

    def __init__(self, on_key: Callable[[str, KeyModifiers], None]) -> None:
        self._on_key = on_key
        self._shutdown = asyncio.Event()

    async def run(self) -> None:
        """
        Main task loop. Sets cbreak mode once at startup, restores at shutdown.
        """
        loop = asyncio.get_running_loop()

        fd = sys.stdin.fileno()
        old_settings = termios.tcgetattr(fd)
        try:
            tty.setcbreak(fd)

            while not self._shutdown.is_set():
                try:
                    raw = await loop.run_in_executor(
                        None,
                        lambda: read_key(sys.stdin, 0.3),
                    )
                except asyncio.CancelledError:
                    break
                if raw is not None:
                    name, modifiers = decode_key(raw)
                    self._on_key(name, modifiers)
        finally:
            termios.tcsetattr(fd, termios.TCSADRAIN, old_settings)

    def stop(self) -> None:
        """Signal task to stop."""
        self._shutdown.set()
