"""paneboard CLI - terminal dashboard for project workflows.

Commands:
- presets: List layout presets and whether they fit a terminal size
- layout: Show the computed pane geometry for a preset
- run: Start the live dashboard
"""

import asyncio
import json
import logging
import sys
from dataclasses import asdict
from pathlib import Path

import typer
from rich.console import Console
from rich.table import Table

from paneboard.config import settings
from paneboard.controller import DashboardController
from paneboard.engine import create_dashboard
from paneboard.errors import InvalidPresetError
from paneboard.layout import LayoutEngine, TerminalDimensions
from paneboard.presets import PRESETS

app = typer.Typer(
    name="paneboard",
    help="Terminal dashboard for project workflows",
    no_args_is_help=True,
)


def _configure_logging(level: str) -> None:
    logging.basicConfig(
        level=level.upper(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
        stream=sys.stderr,
    )


@app.callback()
def main_callback(
    log_level: str = typer.Option(
        settings.log_level, "--log-level", "-l", help="Logging level (DEBUG, INFO, WARNING, ...)"
    ),
) -> None:
    """Terminal dashboard for project workflows."""
    _configure_logging(log_level)


@app.command("presets")
def list_presets(
    width: int = typer.Option(settings.terminal_width, "--width", "-w", help="Terminal width"),
    height: int = typer.Option(settings.terminal_height, "--height", "-h", help="Terminal height"),
) -> None:
    """List layout presets."""
    console = Console()
    table = Table(title=f"Layout Presets ({width}x{height})")
    table.add_column("Name", style="cyan")
    table.add_column("Title")
    table.add_column("Panes")
    table.add_column("Min Size", justify="right")
    table.add_column("Fits", justify="center")

    for name, preset in PRESETS.items():
        fits = "[green]yes[/green]" if preset.fits(width, height) else "[red]no[/red]"
        table.add_row(name, preset.title, ", ".join(preset.panes), preset.min_size, fits)

    console.print(table)


@app.command("layout")
def show_layout(
    preset: str = typer.Argument(settings.preset, help="Preset name"),
    width: int = typer.Option(settings.terminal_width, "--width", "-w", help="Terminal width"),
    height: int = typer.Option(settings.terminal_height, "--height", "-h", help="Terminal height"),
    json_output: bool = typer.Option(False, "--json", "-j", help="Output as JSON"),
) -> None:
    """Show the pane geometry for a preset at a terminal size."""
    try:
        engine = LayoutEngine(preset, TerminalDimensions(width, height))
    except InvalidPresetError as e:
        print(str(e))
        raise typer.Exit(1)

    layout = engine.compute_layout()

    if json_output:
        data = {
            "requested": preset,
            "preset": layout.preset,
            "shape": layout.shape,
            "panes": [asdict(region) for region in layout.panes],
        }
        print(json.dumps(data, indent=2))
        return

    console = Console()
    if layout.preset != preset:
        console.print(
            f"[yellow]Terminal too small for {preset}, using {layout.preset}[/yellow]"
        )

    table = Table(title=f"{engine.preset.title} ({layout.shape}, {width}x{height})")
    table.add_column("Pane", style="cyan")
    table.add_column("X", justify="right")
    table.add_column("Y", justify="right")
    table.add_column("Width", justify="right")
    table.add_column("Height", justify="right")
    table.add_column("Focus", justify="center")

    for region in layout.panes:
        rect = region.rect
        table.add_row(
            region.pane_id,
            str(rect.x),
            str(rect.y),
            str(rect.width),
            str(rect.height),
            "*" if region.focused else "",
        )

    console.print(table)


@app.command("run")
def run_dashboard(
    preset: str = typer.Option(settings.preset, "--preset", "-p", help="Initial preset"),
    root: Path = typer.Option(
        settings.project_root, "--root", "-r", help="Project root to watch for changes"
    ),
) -> None:
    """Start the live dashboard (q or Ctrl+C to quit)."""
    try:
        engine = create_dashboard(preset=preset, project_root=root)
    except InvalidPresetError as e:
        print(str(e))
        raise typer.Exit(1)

    controller = DashboardController(engine, read_keys=sys.stdin.isatty())
    asyncio.run(controller.run())


def main() -> None:
    """Entry point for the CLI."""
    app()


if __name__ == "__main__":
    main()
