"""Tests for change classification, batching and dispatch."""

import asyncio
from unittest.mock import AsyncMock, MagicMock

import pytest

from paneboard.errors import UpdateApplicationError
from paneboard.panes import PanePhase, PaneRegistry
from paneboard.updater import (
    ChangeKind,
    Priority,
    UpdateCoordinator,
    WatchRule,
    classify_priority,
    path_matches,
    resolve_targets,
    summarize_events,
)

ALL = ["progress", "tasks", "capabilities", "logs", "tools"]


@pytest.fixture
async def registry():
    registry = PaneRegistry(debounce_ms=1000)
    for pane_id in ALL:
        registry.register(pane_id)
    yield registry
    await registry.close()


@pytest.fixture
async def coordinator(registry):
    coordinator = UpdateCoordinator(registry, debounce_ms=1000, max_concurrent_updates=2)
    yield coordinator
    await coordinator.cleanup()


class TestClassification:
    @pytest.mark.parametrize(
        "path,priority",
        [
            (".guidant/workflow/current-phase.json", Priority.HIGH),
            (".guidant/context/current-task.json", Priority.HIGH),
            (".guidant/ai/capabilities.json", Priority.MEDIUM),
            (".guidant/project/config.json", Priority.MEDIUM),
            (".guidant/context/sessions.json", Priority.MEDIUM),
            (".guidant/context/decisions.json", Priority.LOW),
            (".guidant/ai/task-tickets/T-1.json", Priority.LOW),
        ],
    )
    def test_classify_priority(self, path, priority):
        assert classify_priority(path) is priority

    def test_rank_order(self):
        assert Priority.HIGH.rank < Priority.MEDIUM.rank < Priority.LOW.rank

    def test_directory_pattern(self):
        assert path_matches(".guidant/ai/agents/", ".guidant/ai/agents/claude.json")
        assert not path_matches(".guidant/ai/agents/", ".guidant/ai/agents-old/x.json")

    def test_glob_pattern(self):
        assert path_matches("*.json", "state.json")
        assert not path_matches("*.json", "state.yaml")

    def test_file_pattern_matches_suffix(self):
        assert path_matches("config.json", "nested/config.json")

    def test_leading_dot_slash_ignored(self):
        assert path_matches(".guidant/ai/", "./.guidant/ai/capabilities.json")


class TestResolveTargets:
    def test_watch_table(self):
        assert resolve_targets(".guidant/ai/task-tickets/T-1.json", ALL) == ("tasks",)

    def test_first_matching_rule_wins(self):
        # config.json matches its own rule before the project/ directory rule
        targets = resolve_targets(".guidant/project/config.json", ["tasks", "logs"])
        assert targets == ("progress", "tasks", "logs")

    def test_all_expands_to_registered(self):
        assert resolve_targets(".guidant/project/readme.md", ["tasks", "logs"]) == ("tasks", "logs")

    def test_unmatched_path(self):
        assert resolve_targets("src/main.py", ALL) == ()

    def test_explicit_targets_override(self):
        assert resolve_targets(".guidant/ai/capabilities.json", ALL, ["logs"]) == ("logs",)

    def test_explicit_all(self):
        assert resolve_targets("anything", ["a", "b"], ["all"]) == ("a", "b")

    def test_custom_table(self):
        table = [WatchRule("docs/", ("logs",)), WatchRule("docs/api/", ("tools",))]
        assert resolve_targets("docs/api/index.md", ALL, watch_table=table) == ("logs",)


class TestOnChange:
    @pytest.mark.asyncio
    async def test_event_recorded(self, coordinator):
        event = coordinator.on_change(ChangeKind.MODIFIED, ".guidant/ai/capabilities.json")

        assert event.targets == ("capabilities",)
        assert event.priority is Priority.MEDIUM
        assert coordinator.pending_events == [event]

    @pytest.mark.asyncio
    async def test_unmatched_not_queued(self, coordinator):
        event = coordinator.on_change(ChangeKind.CREATED, "README.md")

        assert event.targets == ()
        assert coordinator.pending_events == []

    @pytest.mark.asyncio
    async def test_listeners_notified_synchronously(self, coordinator):
        seen = []
        coordinator.add_listener(seen.append)

        event = coordinator.on_change(ChangeKind.MODIFIED, ".guidant/context/sessions.json")

        assert seen == [event]

    @pytest.mark.asyncio
    async def test_listener_removal(self, coordinator):
        seen = []
        remove = coordinator.add_listener(seen.append)
        remove()
        remove()

        coordinator.on_change(ChangeKind.MODIFIED, ".guidant/context/sessions.json")

        assert seen == []

    @pytest.mark.asyncio
    async def test_failing_listener_logged(self, coordinator, caplog):
        seen = []
        coordinator.add_listener(MagicMock(side_effect=RuntimeError("boom")))
        coordinator.add_listener(seen.append)

        coordinator.on_change(ChangeKind.MODIFIED, ".guidant/context/sessions.json")

        assert len(seen) == 1
        assert "Update listener failed" in caplog.text

    @pytest.mark.asyncio
    async def test_overflow_compacts_to_latest_per_pane(self, registry):
        coordinator = UpdateCoordinator(registry, debounce_ms=1000, max_pending_events=4)
        for i in range(10):
            coordinator.on_change(ChangeKind.MODIFIED, f".guidant/ai/task-tickets/T-{i}.json")

        pending = coordinator.pending_events
        assert len(pending) <= 4
        assert pending[-1].path == ".guidant/ai/task-tickets/T-9.json"
        await coordinator.cleanup()


class TestFlush:
    @pytest.mark.asyncio
    async def test_groups_events_per_pane(self, coordinator, registry):
        coordinator.on_change(ChangeKind.MODIFIED, ".guidant/ai/task-tickets/T-1.json")
        coordinator.on_change(ChangeKind.CREATED, ".guidant/ai/task-tickets/T-2.json")

        assert await coordinator.flush() == 1
        await registry.flush()

        data = registry.get("tasks").data
        assert data["updates"] == 2
        assert [change["path"] for change in data["changes"]] == ["T-1.json", "T-2.json"]

    @pytest.mark.asyncio
    async def test_high_tier_dispatched_first(self, registry):
        order = []

        async def loader(pane_id, events):
            order.append((pane_id, events[0].priority))
            return {"pane": pane_id}

        coordinator = UpdateCoordinator(registry, loader=loader, debounce_ms=1000)
        coordinator.on_change(ChangeKind.MODIFIED, ".guidant/context/decisions.json")
        coordinator.on_change(ChangeKind.MODIFIED, ".guidant/ai/capabilities.json")
        coordinator.on_change(ChangeKind.MODIFIED, ".guidant/workflow/current-phase.json")

        await coordinator.flush()

        assert order == [
            ("progress", Priority.HIGH),
            ("capabilities", Priority.MEDIUM),
            ("logs", Priority.LOW),
        ]
        await coordinator.cleanup()

    @pytest.mark.asyncio
    async def test_pane_dispatched_once_at_most_urgent_tier(self, registry):
        loader = AsyncMock(return_value={})
        coordinator = UpdateCoordinator(registry, loader=loader, debounce_ms=1000)
        coordinator.on_change(ChangeKind.MODIFIED, ".guidant/ai/task-tickets/T-1.json")
        coordinator.on_change(ChangeKind.MODIFIED, ".guidant/context/current-task.json")

        await coordinator.flush()

        loader.assert_awaited_once()
        pane_id, events = loader.await_args.args
        assert pane_id == "tasks"
        assert len(events) == 2
        await coordinator.cleanup()

    @pytest.mark.asyncio
    async def test_batches_respect_concurrency_limit(self, registry):
        active = 0
        peak = 0

        async def loader(pane_id, events):
            nonlocal active, peak
            active += 1
            peak = max(peak, active)
            await asyncio.sleep(0.01)
            active -= 1
            return {}

        coordinator = UpdateCoordinator(
            registry, loader=loader, debounce_ms=1000, max_concurrent_updates=2
        )
        coordinator.on_change(ChangeKind.MODIFIED, "x", explicit_targets=["all"])

        assert await coordinator.flush() == 5
        assert peak == 2
        await coordinator.cleanup()

    @pytest.mark.asyncio
    async def test_loader_failure_isolated(self, registry):
        async def loader(pane_id, events):
            if pane_id == "tasks":
                raise OSError("ticket file unreadable")
            return {"ok": pane_id}

        coordinator = UpdateCoordinator(
            registry, loader=loader, debounce_ms=1000, max_concurrent_updates=2
        )
        coordinator.on_change(ChangeKind.MODIFIED, "x", explicit_targets=["all"])

        assert await coordinator.flush() == 4
        await registry.flush()

        tasks = registry.get("tasks")
        assert tasks.phase is PanePhase.ERROR
        assert isinstance(tasks.last_error, UpdateApplicationError)
        assert registry.get("tools").data == {"ok": "tools"}

        health = coordinator.get_health()
        assert health.failed_updates == 1
        assert health.total_updates == 4
        assert health.recent_errors == ["tasks: ticket file unreadable"]
        await coordinator.cleanup()

    @pytest.mark.asyncio
    async def test_unregistered_pane_skipped(self, coordinator, registry):
        coordinator.on_change(ChangeKind.MODIFIED, ".guidant/context/sessions.json")
        registry.unregister("logs")

        assert await coordinator.flush() == 0

    @pytest.mark.asyncio
    async def test_debounced_flush(self, registry):
        coordinator = UpdateCoordinator(registry, debounce_ms=10)
        coordinator.on_change(ChangeKind.MODIFIED, ".guidant/ai/capabilities.json")

        await asyncio.sleep(0.1)

        assert coordinator.pending_events == []
        assert registry.queued_updates == 1
        await coordinator.cleanup()

    @pytest.mark.asyncio
    async def test_empty_flush(self, coordinator):
        assert await coordinator.flush() == 0

    @pytest.mark.asyncio
    async def test_change_during_slow_flush_waits_for_next_cycle(self, registry):
        active = 0
        peak = 0
        loaded = []

        async def loader(pane_id, events):
            nonlocal active, peak
            active += 1
            peak = max(peak, active)
            await asyncio.sleep(0.2)
            active -= 1
            loaded.append(pane_id)
            return {}

        coordinator = UpdateCoordinator(
            registry, loader=loader, debounce_ms=10, max_concurrent_updates=1
        )
        coordinator.on_change(ChangeKind.MODIFIED, ".guidant/ai/task-tickets/T-1.json")
        await asyncio.sleep(0.05)
        coordinator.on_change(ChangeKind.MODIFIED, ".guidant/ai/capabilities.json")

        await asyncio.sleep(0.6)

        assert peak == 1
        assert loaded == ["tasks", "capabilities"]
        assert coordinator.pending_events == []
        await coordinator.cleanup()

    @pytest.mark.asyncio
    async def test_explicit_flushes_do_not_overlap(self, registry):
        active = 0
        peak = 0

        async def loader(pane_id, events):
            nonlocal active, peak
            active += 1
            peak = max(peak, active)
            await asyncio.sleep(0.01)
            active -= 1
            return {}

        coordinator = UpdateCoordinator(
            registry, loader=loader, debounce_ms=1000, max_concurrent_updates=1
        )
        coordinator.on_change(ChangeKind.MODIFIED, ".guidant/ai/task-tickets/T-1.json")
        first = asyncio.ensure_future(coordinator.flush())
        await asyncio.sleep(0)
        coordinator.on_change(ChangeKind.MODIFIED, ".guidant/ai/capabilities.json")

        results = await asyncio.gather(first, coordinator.flush())

        assert results == [1, 1]
        assert peak == 1
        await coordinator.cleanup()

    @pytest.mark.asyncio
    async def test_cleanup_lets_running_flush_finish(self, registry):
        started = asyncio.Event()
        release = asyncio.Event()

        async def loader(pane_id, events):
            started.set()
            await release.wait()
            return {"loaded": pane_id}

        coordinator = UpdateCoordinator(registry, loader=loader, debounce_ms=0)
        coordinator.on_change(ChangeKind.MODIFIED, ".guidant/ai/capabilities.json")
        await started.wait()

        cleanup = asyncio.ensure_future(coordinator.cleanup())
        await asyncio.sleep(0.01)
        assert not cleanup.done()
        release.set()
        await cleanup

        assert registry.queued_updates == 1
        assert coordinator.get_health().active_updates == 0
        # No timer survives; new events are kept for an explicit flush
        coordinator.on_change(ChangeKind.MODIFIED, ".guidant/ai/capabilities.json")
        await asyncio.sleep(0.05)
        assert len(coordinator.pending_events) == 1


class TestSummarizeEvents:
    @pytest.mark.asyncio
    async def test_summary(self, coordinator):
        event = coordinator.on_change(ChangeKind.REMOVED, ".guidant/context/decisions.json")

        summary = await summarize_events("logs", [event])

        assert summary["pane_id"] == "logs"
        assert summary["changes"] == [
            {"kind": "removed", "path": "decisions.json", "priority": "low"}
        ]


class TestLifecycle:
    @pytest.mark.asyncio
    async def test_start_subscribes_with_watch_patterns(self, coordinator):
        subscription = MagicMock()
        subscription.close = AsyncMock()
        source = MagicMock()
        source.subscribe = AsyncMock(return_value=subscription)

        await coordinator.start(source)

        patterns, callback, on_error = source.subscribe.await_args.args
        assert ".guidant/ai/agents/" in patterns
        assert coordinator.get_health().active_watchers == 1
        assert coordinator.get_health().running

        callback(ChangeKind.CREATED, ".guidant/ai/agents/claude.json")
        assert coordinator.pending_events[0].targets == ("capabilities",)

    @pytest.mark.asyncio
    async def test_double_cleanup_is_safe(self, coordinator):
        subscription = MagicMock()
        subscription.close = AsyncMock()
        source = MagicMock()
        source.subscribe = AsyncMock(return_value=subscription)
        await coordinator.start(source)
        coordinator.on_change(ChangeKind.MODIFIED, ".guidant/ai/capabilities.json")

        await coordinator.cleanup()
        await coordinator.cleanup()

        subscription.close.assert_awaited_once()
        health = coordinator.get_health()
        assert health.active_watchers == 0
        assert not health.running
        # Pending state survives cancellation of the timer
        assert len(coordinator.pending_events) == 1

    @pytest.mark.asyncio
    async def test_cleanup_without_start(self, coordinator):
        await coordinator.cleanup()
        assert coordinator.get_health().active_watchers == 0

    @pytest.mark.asyncio
    async def test_failed_subscription_close_still_releases_watcher(self, coordinator):
        subscription = MagicMock()
        subscription.close = AsyncMock(side_effect=OSError("already gone"))
        source = MagicMock()
        source.subscribe = AsyncMock(return_value=subscription)
        await coordinator.start(source)

        await coordinator.cleanup()

        assert coordinator.get_health().active_watchers == 0

    @pytest.mark.asyncio
    async def test_source_failures_recorded(self, coordinator):
        subscription = MagicMock()
        subscription.close = AsyncMock()
        source = MagicMock()
        source.subscribe = AsyncMock(return_value=subscription)
        await coordinator.start(source)
        on_error = source.subscribe.await_args.args[2]

        on_error(OSError("watch root removed"), False)
        health = coordinator.get_health()
        assert health.active_watchers == 1
        assert health.running

        on_error(OSError("watch root removed"), True)
        health = coordinator.get_health()
        assert health.active_watchers == 0
        assert not health.running
        assert health.recent_errors == ["watcher: watch root removed"] * 2

        await coordinator.cleanup()
        subscription.close.assert_not_awaited()
        assert coordinator.get_health().active_watchers == 0
