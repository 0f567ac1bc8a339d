"""Tests for the dashboard host controller."""

from rich.console import Console

from paneboard.controller import DashboardController
from paneboard.engine import create_dashboard


def make_controller(tmp_path, **overrides):
    engine = create_dashboard(
        preset="quick", width=80, height=24, project_root=tmp_path, **overrides
    )
    return DashboardController(engine, console=Console(), read_keys=False)


def test_watch_source_scoped_to_watch_dir(tmp_path):
    controller = make_controller(tmp_path, watch_dir=".state", watch_retry_attempts=5)

    source = controller.watch_source()

    assert source.root == tmp_path.resolve()
    assert source.watch_path == tmp_path.resolve() / ".state"
    assert source.retry_attempts == 5


def test_empty_watch_dir_watches_project_root(tmp_path):
    controller = make_controller(tmp_path, watch_dir="")

    assert controller.watch_source().watch_path == tmp_path.resolve()


def test_default_watch_dir(tmp_path):
    controller = make_controller(tmp_path)

    assert controller.watch_source().watch_path == tmp_path.resolve() / ".guidant"
