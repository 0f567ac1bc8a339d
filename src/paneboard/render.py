"""
Rich rendering of a DashboardSnapshot.

render_snapshot() turns a snapshot into a rich Layout:

+------------------------------------------------+
|  Header: preset, terminal size, notices        |  (3 rows)
+------------------------------------------------+
|  Body: one panel per layout region             |
|  (plus a help column when help is visible)     |
+------------------------------------------------+
|  Footer: key hints and counters                |  (3 rows)
+------------------------------------------------+

Body regions are grouped into columns by x offset and stacked by y offset,
with fixed sizes taken from the computed geometry. The last column and the
last panel in each column flex to absorb rounding.

Border colors by pane state:
- error: red
- focused: bold cyan
- collapsed: dim
- otherwise: blue
"""

from collections.abc import Mapping
from typing import Any

from rich.layout import Layout
from rich.panel import Panel

from paneboard.buffer import LineBuffer
from paneboard.engine import DashboardSnapshot
from paneboard.help import HelpDocument
from paneboard.layout import PaneRegion
from paneboard.panes import PanePhase, PaneStatus

HEADER_ROWS = 3
FOOTER_ROWS = 3
HELP_COLUMNS = 44


def make_panel(content: Any, title: str, style: str = "blue") -> Panel:
    """
    Create a styled panel with content.

    Args:
        content: Text or renderable for the panel
        title: Panel title (will be bolded)
        style: Border style color (default "blue")

    Returns:
        Panel with formatted title and border style
    """
    return Panel(
        content,
        title=f"[bold]{title}[/bold]",
        border_style=style,
        padding=(0, 1),
    )


def format_data(data: Any, max_lines: int | None = None) -> str:
    """Plain-text rendering of pane data."""
    if isinstance(data, LineBuffer):
        return data.get_text(n=max_lines)
    if isinstance(data, Mapping):
        if "changes" in data:
            lines = [
                f"{change['kind']:<9} {change['path']} [dim]({change['priority']})[/dim]"
                for change in data["changes"]
            ]
        else:
            lines = [f"{key}: {value}" for key, value in data.items()]
    elif isinstance(data, (list, tuple)):
        lines = [str(item) for item in data]
    else:
        lines = str(data).splitlines()
    if max_lines is not None:
        lines = lines[-max_lines:] if max_lines > 0 else []
    return "\n".join(lines)


def pane_style(status: PaneStatus) -> str:
    if status.phase is PanePhase.ERROR:
        return "red"
    if status.focused:
        return "bold cyan"
    if status.collapsed:
        return "dim"
    return "blue"


def make_pane_panel(status: PaneStatus | None, region: PaneRegion) -> Panel:
    """
    Panel for one layout region.

    Content lines are limited to the region height minus the border.
    """
    if status is None:
        return make_panel("[dim]Not registered[/dim]", region.pane_id, "dim")

    title = f"> {status.title}" if status.focused else status.title
    if status.collapsed:
        content = "[dim](collapsed)[/dim]"
    elif status.phase is PanePhase.INITIALIZING:
        content = "Loading..."
    elif status.phase is PanePhase.ERROR:
        content = f"[red]{status.error}[/red]"
        if status.has_data:
            content += "\n\n" + format_data(status.data, max(0, region.rect.height - 4))
    else:
        content = format_data(status.data, max(0, region.rect.height - 2))
    return make_panel(content, title, pane_style(status))


def make_help_panel(document: HelpDocument) -> Panel:
    lines = [f"[italic]{document.description}[/italic]"]
    for section in document.sections:
        lines.append("")
        lines.append(f"[bold]{section.title}[/bold]")
        lines.extend(f"  {item}" for item in section.items)
    return make_panel("\n".join(lines), document.title, "magenta")


def _columns(regions: tuple[PaneRegion, ...]) -> list[list[PaneRegion]]:
    columns: dict[int, list[PaneRegion]] = {}
    for region in regions:
        columns.setdefault(region.rect.x, []).append(region)
    return [
        sorted(column, key=lambda r: r.rect.y)
        for _, column in sorted(columns.items())
    ]


def _body_layout(snapshot: DashboardSnapshot) -> Layout:
    body = Layout(name="panes")
    columns = _columns(snapshot.layout.panes)
    if not columns:
        body.update(make_panel("[dim]Terminal too small[/dim]", "Dashboard", "red"))
        return body

    column_layouts = []
    for i, column in enumerate(columns):
        last_column = i == len(columns) - 1
        width = None if last_column else column[0].rect.width
        if len(column) == 1:
            region = column[0]
            panel = make_pane_panel(snapshot.panes.get(region.pane_id), region)
            column_layouts.append(Layout(panel, name=region.pane_id, size=width))
            continue

        column_layout = Layout(name=f"column-{i}", size=width)
        cells = []
        for j, region in enumerate(column):
            height = None if j == len(column) - 1 else region.rect.height
            panel = make_pane_panel(snapshot.panes.get(region.pane_id), region)
            cells.append(Layout(panel, name=region.pane_id, size=height))
        column_layout.split_column(*cells)
        column_layouts.append(column_layout)

    if len(column_layouts) == 1:
        return column_layouts[0]
    body.split_row(*column_layouts)
    return body


def format_header(snapshot: DashboardSnapshot) -> str:
    dims = snapshot.layout.dimensions
    text = (
        f"[bold cyan]{snapshot.preset.title}[/bold cyan]  "
        f"[dim]{dims.width}x{dims.height}[/dim]"
    )
    change = snapshot.preset_change
    if change is not None and change.downgraded:
        text += f"  [yellow]terminal too small for {change.requested}[/yellow]"
    return text


def format_footer(snapshot: DashboardSnapshot) -> str:
    registry = snapshot.registry
    return (
        "Tab: next pane  h: help  r: refresh  1-5: layout  q: quit"
        f"  [dim]| updates {registry.updates_applied}"
        f"  failed {registry.updates_failed}"
        f"  watchers {snapshot.coordinator.active_watchers}[/dim]"
    )


def render_snapshot(snapshot: DashboardSnapshot) -> Layout:
    """
    Build the full-screen rich Layout for a snapshot.

    Access regions via:
    - layout["header"], layout["body"], layout["footer"]
    - layout["help"] when help is visible
    - layout[pane_id] for each pane panel
    """
    root = Layout(name="root")
    root.split_column(
        Layout(make_panel(format_header(snapshot), "Dashboard", "cyan"), name="header", size=HEADER_ROWS),
        Layout(name="body"),
        Layout(make_panel(format_footer(snapshot), "Keys", "dim"), name="footer", size=FOOTER_ROWS),
    )

    panes = _body_layout(snapshot)
    if snapshot.help is not None:
        root["body"].split_row(
            panes,
            Layout(make_help_panel(snapshot.help), name="help", size=HELP_COLUMNS),
        )
    else:
        root["body"].split_row(panes)
    return root
