"""
DashboardController: runs a DashboardEngine in the terminal.

This module provides the host loop that:
- Registers SIGINT/SIGTERM handlers before anything else
- Starts the engine and attaches the file watcher
- Reads keys with KeyReader and hands them to the engine
- Redraws with Rich Live at a fixed rate, reacting to terminal resizes
- Cleans up the engine and restores the terminal on exit

Signal handlers are registered first so Ctrl+C works during startup. The
watcher is started before entering the Live context; a missing watch directory
only disables live updates.
"""

import asyncio
import functools
import logging
import signal
from pathlib import Path

from rich.console import Console
from rich.live import Live

from paneboard.engine import DashboardEngine
from paneboard.keyboard import KeyModifiers, KeyReader
from paneboard.render import render_snapshot
from paneboard.watcher import WatchfilesSource

logger = logging.getLogger(__name__)


class DashboardController:
    """
    Controls the dashboard lifecycle with signal handling.

    Uses the engine's exit_event for shutdown coordination and a TaskGroup
    for the keyboard reader, shutdown watcher and update loop.

    Example:
        controller = DashboardController(engine)
        await controller.run()  # Runs until q or Ctrl+C
    """

    def __init__(
        self,
        engine: DashboardEngine,
        console: Console | None = None,
        watch_root: Path | None = None,
        read_keys: bool = True,
    ) -> None:
        """
        Initialize dashboard controller.

        Args:
            engine: Engine to run (not yet started)
            console: Rich Console to use (creates default if None)
            watch_root: Project root (settings.project_root if None); the
                watched directory is its settings.watch_dir subdirectory
            read_keys: Read keys from stdin (disable when stdin is not a TTY)
        """
        self.engine = engine
        self.console = console if console is not None else Console()
        self.watch_root = watch_root if watch_root is not None else engine.settings.project_root
        self._keyboard: KeyReader | None = KeyReader(on_key=self._handle_key) if read_keys else None

    async def run(self) -> None:
        """
        Run the dashboard until exit is requested.

        Order:
        1. Register signal handlers
        2. Start the engine and the file watcher
        3. Enter Live context and run the TaskGroup
        4. Clean up the engine
        """
        loop = asyncio.get_running_loop()

        for sig in (signal.SIGINT, signal.SIGTERM):
            loop.add_signal_handler(sig, functools.partial(self._handle_signal, sig))

        try:
            await self.engine.start()
            await self._start_watcher()

            with Live(
                render_snapshot(self.engine.snapshot()),
                console=self.console,
                refresh_per_second=self.engine.settings.refresh_per_second,
                screen=True,
            ) as live:
                async with asyncio.TaskGroup() as tg:
                    if self._keyboard is not None:
                        tg.create_task(self._keyboard.run())
                    tg.create_task(self._stop_on_exit())
                    tg.create_task(self._update_loop(live))
        finally:
            for sig in (signal.SIGINT, signal.SIGTERM):
                loop.remove_signal_handler(sig)
            await self.engine.cleanup()

        self.console.print("[green]Dashboard closed[/green]")

    def watch_source(self) -> WatchfilesSource:
        """Change source for the project's watch directory."""
        settings = self.engine.settings
        return WatchfilesSource(
            self.watch_root,
            watch_dir=settings.watch_dir or None,
            retry_attempts=settings.watch_retry_attempts,
            retry_delay_ms=settings.watch_retry_delay_ms,
        )

    async def _start_watcher(self) -> None:
        source = self.watch_source()
        try:
            await self.engine.watch(source)
        except FileNotFoundError as e:
            logger.warning(f"Live updates disabled: {e}")

    async def _stop_on_exit(self) -> None:
        await self.engine.exit_event.wait()
        if self._keyboard is not None:
            self._keyboard.stop()

    async def _update_loop(self, live: Live) -> None:
        """
        Redraw until exit, applying terminal size changes first.

        Args:
            live: Rich Live context for refreshing display
        """
        interval = 1 / self.engine.settings.refresh_per_second
        exit_event = self.engine.exit_event
        while not exit_event.is_set():
            size = self.console.size
            dims = self.engine.layout.dimensions
            if (size.width, size.height) != (dims.width, dims.height):
                self.engine.resize(size.width, size.height)
            live.update(render_snapshot(self.engine.snapshot()))
            try:
                await asyncio.wait_for(exit_event.wait(), timeout=interval)
            except asyncio.TimeoutError:
                pass  # Normal refresh interval

    def _handle_key(self, name: str, modifiers: KeyModifiers) -> None:
        self.engine.handle_key(name, modifiers)

    def _handle_signal(self, sig: signal.Signals) -> None:
        """
        Request shutdown. Runs outside async context, so only sets events.

        Args:
            sig: Signal received (SIGINT or SIGTERM)
        """
        logger.debug(f"Received {sig.name}, shutting down")
        self.engine.exit_event.set()
        if self._keyboard is not None:
            self._keyboard.stop()
