"""Tests for key parsing, decoding and dispatch."""

import io
from unittest.mock import patch

import pytest

from paneboard.keyboard import (
    GLOBAL_BINDINGS,
    KeyboardDispatcher,
    KeyModifiers,
    KeyReader,
    decode_key,
    parse_key,
    read_key,
)


@pytest.fixture
def dispatcher():
    return KeyboardDispatcher(history_size=5)


class TestParseKey:
    def test_ctrl(self):
        assert parse_key("c", {"ctrl": True}) == "C-c"

    def test_shift_tab(self):
        assert parse_key("tab", {"shift": True}) == "S-tab"

    def test_plain(self):
        assert parse_key("q", {}) == "q"

    def test_no_modifiers(self):
        assert parse_key("q") == "q"

    def test_modifier_order(self):
        flags = {"meta": True, "alt": True, "shift": True, "ctrl": True}
        assert parse_key("x", flags) == "C-S-A-M-x"

    def test_modifier_aliases(self):
        assert parse_key("r", {"control": True}) == "C-r"
        assert parse_key("f", {"option": True}) == "A-f"

    def test_dataclass_modifiers(self):
        assert parse_key("tab", KeyModifiers(shift=True)) == "S-tab"

    @pytest.mark.parametrize(
        "name,expected",
        [
            (" ", "space"),
            ("Escape", "escape"),
            ("esc", "escape"),
            ("ArrowUp", "up"),
            ("Return", "enter"),
            ("A", "A"),
        ],
    )
    def test_canonical_names(self, name, expected):
        assert parse_key(name, {}) == expected


class TestDecodeKey:
    @pytest.mark.parametrize(
        "raw,combo",
        [
            ("\x03", "C-c"),
            ("\x12", "C-r"),
            ("\x1b[Z", "S-tab"),
            ("\x1b[A", "up"),
            ("\x1b[B", "down"),
            ("\x1b", "escape"),
            ("\t", "tab"),
            ("\r", "enter"),
            (" ", "space"),
            ("\x7f", "backspace"),
            ("q", "q"),
            ("\x1bf", "A-f"),
            ("\x1b[3~", "delete"),
        ],
    )
    def test_decode(self, raw, combo):
        name, modifiers = decode_key(raw)
        assert parse_key(name, modifiers) == combo


class TestDispatch:
    def test_global_binding(self, dispatcher):
        result = dispatcher.dispatch("q", {}, focused_pane="tasks")

        assert result.action == "exit_dashboard"
        assert result.is_global

    def test_pane_binding(self, dispatcher):
        result = dispatcher.dispatch("n", {}, focused_pane="tasks")

        assert result.action == "generate_next_task"
        assert result.scope == "tasks"

    def test_global_takes_precedence(self, dispatcher):
        # "r" is bound in both the global and the progress tables
        result = dispatcher.dispatch("r", {}, focused_pane="progress")

        assert result.action == "refresh_all_panes"
        assert result.is_global

    def test_focus_cycle_always_global(self, dispatcher):
        assert dispatcher.dispatch("tab", {}, "logs").action == "focus_next_pane"
        assert dispatcher.dispatch("tab", {"shift": True}, "logs").action == "focus_previous_pane"

    def test_focus_cycle_survives_missing_global_entry(self):
        dispatcher = KeyboardDispatcher(global_bindings={}, pane_bindings={"x": {"tab": "other"}})

        result = dispatcher.dispatch("tab", {}, "x")

        assert result.action == "focus_next_pane"
        assert result.is_global

    def test_same_key_differs_by_pane(self, dispatcher):
        assert dispatcher.dispatch("c", {}, "tasks").action == "complete_task"
        assert dispatcher.dispatch("c", {}, "logs").action == "clear_logs"
        assert dispatcher.dispatch("c", {}, "capabilities").action == "analyze_capabilities"

    def test_unbound_key(self, dispatcher):
        assert dispatcher.dispatch("z", {}, "tasks") is None
        assert dispatcher.get_metrics().unbound_keys == 1

    def test_pane_key_without_focus(self, dispatcher):
        assert dispatcher.dispatch("n", {}, None) is None

    def test_ctrl_c(self, dispatcher):
        assert dispatcher.dispatch("c", {"ctrl": True}, "tasks").action == "force_exit"

    def test_bindings_are_copied(self):
        bindings = dict(GLOBAL_BINDINGS)
        dispatcher = KeyboardDispatcher(global_bindings=bindings)
        bindings["z"] = "zoom"

        assert dispatcher.resolve_global("z") is None

    def test_resolve_unknown_pane_type(self, dispatcher):
        assert dispatcher.resolve_pane_scoped("weather", "n") is None

    def test_bindings_listing(self, dispatcher):
        rows = dispatcher.bindings()

        assert rows[0].scope == "global"
        assert any(row.scope == "tools" and row.action == "show_tool_info" for row in rows)


class TestHistoryAndMetrics:
    def test_history_bounded(self, dispatcher):
        for key in "abcdefghij":
            dispatcher.parse_key(key, {})

        history = dispatcher.key_history
        assert len(history) == 5
        assert [event.combo for event in history] == list("fghij")

    def test_metrics(self, dispatcher):
        dispatcher.dispatch("q", {}, None)
        dispatcher.dispatch("n", {}, "tasks")
        dispatcher.dispatch("z", {}, "tasks")

        metrics = dispatcher.get_metrics()
        assert metrics.total_key_presses == 3
        assert metrics.commands_dispatched == 2
        assert metrics.unbound_keys == 1
        assert metrics.history_size == 3


class TestHelp:
    def test_toggle(self, dispatcher):
        assert dispatcher.help_visible is False
        assert dispatcher.toggle_help() is True
        assert dispatcher.help_visible is True
        assert dispatcher.toggle_help() is False

    def test_pane_help_lists_shortcuts(self, dispatcher):
        document = dispatcher.contextual_help("tasks")

        assert document.title == "Task Management"
        shortcuts = document.sections[-1]
        assert shortcuts.title == "Shortcuts"
        assert "n: generate next task" in shortcuts.items

    def test_dashboard_help_lists_global_shortcuts(self, dispatcher):
        shortcuts = dispatcher.contextual_help("dashboard").sections[-1]
        assert "tab: focus next pane" in shortcuts.items

    def test_workflow_help(self, dispatcher):
        assert dispatcher.contextual_help("workflow").title == "Workflow Management"

    def test_unknown_context_falls_back(self, dispatcher):
        assert dispatcher.contextual_help("weather").context == "general"
        assert dispatcher.contextual_help(None).context == "general"


class TestKeyReader:
    @pytest.mark.asyncio
    async def test_decodes_and_delivers_keys(self):
        received = []
        keys = iter(["\x1b[A", "q"])

        def on_key(name, modifiers):
            received.append(parse_key(name, modifiers))
            if name == "q":
                reader.stop()

        reader = KeyReader(on_key=on_key)
        with (
            patch("paneboard.keyboard.sys"),
            patch("paneboard.keyboard.tty") as mock_tty,
            patch("paneboard.keyboard.termios") as mock_termios,
            patch(
                "paneboard.keyboard.read_key",
                side_effect=lambda stream, timeout: next(keys, None),
            ),
        ):
            await reader.run()

        assert received == ["up", "q"]
        mock_tty.setcbreak.assert_called_once()
        mock_termios.tcsetattr.assert_called_once()


def select_until_drained(stream):
    """select.select stand-in: readable while the StringIO has unread text."""

    def _select(rlist, wlist, xlist, timeout):
        ready = stream.tell() < len(stream.getvalue())
        return (rlist if ready else [], [], [])

    return _select


class TestReadKey:
    def read_all(self, text):
        stream = io.StringIO(text)
        keys = []
        with patch("paneboard.keyboard.select.select", select_until_drained(stream)):
            while (key := read_key(stream, 0.1)) is not None:
                keys.append(key)
        return keys

    def test_shift_tab_read_as_one_key(self):
        keys = self.read_all("\x1b[Zq")

        assert keys == ["\x1b[Z", "q"]
        assert parse_key(*decode_key(keys[0])) == "S-tab"

    def test_tilde_terminated_sequence(self):
        assert self.read_all("\x1b[3~\x1b[A") == ["\x1b[3~", "\x1b[A"]

    def test_alt_combination_stops_after_one_char(self):
        assert self.read_all("\x1bfx") == ["\x1bf", "x"]

    def test_lone_escape(self):
        assert self.read_all("\x1b") == ["\x1b"]

    def test_timeout_returns_none(self):
        assert self.read_all("") == []
