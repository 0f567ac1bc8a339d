"""
Real-time update coordinator.

Turns change notifications (file created/modified/removed) into pane
updates:

    ChangeSource --(kind, path)--> on_change() --> pending queue
                                        |
                                        +--> listeners (synchronous)

    flush task (debounced) --> group by tier, then pane
                           --> loader(pane, events) --> registry.queue_update()

Events are classified into HIGH, MEDIUM and LOW tiers. Each flush drains
the pending queue and dispatches every HIGH group before any MEDIUM group,
and every MEDIUM group before any LOW group. A pane appears once per flush,
in the tier of its most urgent event, with all of its events passed to the
loader.

A failing loader marks only its own pane as failed; sibling panes in the
same batch and later batches still run.
"""

from __future__ import annotations

import asyncio
import fnmatch
import logging
import posixpath
import time
from collections.abc import Awaitable, Callable, Iterable, Sequence
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Protocol

from paneboard.buffer import RingBuffer
from paneboard.errors import UnknownPaneError
from paneboard.metrics import EngineMetrics
from paneboard.panes import PaneRegistry, drain_flush_task

logger = logging.getLogger(__name__)

ALL_PANES = "all"


class ChangeKind(Enum):
    CREATED = "created"
    MODIFIED = "modified"
    REMOVED = "removed"


class Priority(Enum):
    """Update tier; lower rank is dispatched first."""

    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"

    @property
    def rank(self) -> int:
        return _PRIORITY_RANK[self]


_PRIORITY_RANK = {Priority.HIGH: 0, Priority.MEDIUM: 1, Priority.LOW: 2}
TIERS = (Priority.HIGH, Priority.MEDIUM, Priority.LOW)


@dataclass(frozen=True)
class WatchRule:
    """
    Maps a path pattern to the panes it affects.

    Attributes:
        pattern: Directory prefix (ends in "/"), glob, or file path
        targets: Pane ids; "all" stands for every registered pane
    """

    pattern: str
    targets: tuple[str, ...]

    def matches(self, path: str) -> bool:
        return path_matches(self.pattern, path)


# Declared order matters: the first matching rule wins
WATCH_TABLE: tuple[WatchRule, ...] = (
    # Workflow state
    WatchRule(".guidant/workflow/current-phase.json", ("progress",)),
    WatchRule(".guidant/workflow/phases/", ("progress",)),
    WatchRule(".guidant/project/config.json", ("progress", ALL_PANES)),
    # Tasks
    WatchRule(".guidant/ai/task-tickets/", ("tasks",)),
    WatchRule(".guidant/context/current-task.json", ("tasks",)),
    # Capabilities
    WatchRule(".guidant/ai/capabilities.json", ("capabilities",)),
    WatchRule(".guidant/ai/agents/", ("capabilities",)),
    # Activity
    WatchRule(".guidant/context/sessions.json", ("logs",)),
    WatchRule(".guidant/context/decisions.json", ("logs",)),
    # Anything else under the project directory
    WatchRule(".guidant/project/", (ALL_PANES,)),
)

# Matched against the file name; first match wins, LOW otherwise
PRIORITY_RULES: tuple[tuple[Priority, tuple[str, ...]], ...] = (
    (Priority.HIGH, ("current-phase.json", "current-task.json")),
    (Priority.MEDIUM, ("capabilities.json", "config.json", "sessions.json")),
)


def normalize_path(path: str) -> str:
    """Forward slashes, no leading "./"."""
    path = path.replace("\\", "/")
    while path.startswith("./"):
        path = path[2:]
    return path


def _is_glob(pattern: str) -> bool:
    return any(ch in pattern for ch in "*?[")


def path_matches(pattern: str, path: str) -> bool:
    path = normalize_path(path)
    if pattern.endswith("/"):
        return path.startswith(pattern) or path == pattern.rstrip("/")
    if _is_glob(pattern):
        return fnmatch.fnmatchcase(path, pattern)
    return path == pattern or path.endswith("/" + pattern)


def classify_priority(path: str) -> Priority:
    """
    Assign an update tier from the file name.

    Examples:
        classify_priority(".guidant/workflow/current-phase.json")  # HIGH
        classify_priority(".guidant/context/decisions.json")       # LOW
    """
    name = posixpath.basename(normalize_path(path))
    for priority, patterns in PRIORITY_RULES:
        if any(fnmatch.fnmatchcase(name, pattern) for pattern in patterns):
            return priority
    return Priority.LOW


def resolve_targets(
    path: str,
    registered: Sequence[str],
    explicit_targets: Iterable[str] | None = None,
    watch_table: Sequence[WatchRule] = WATCH_TABLE,
) -> tuple[str, ...]:
    """
    Resolve the panes affected by a change.

    Explicit targets take precedence over the watch table. "all" expands
    to every registered pane. The result is de-duplicated, in first-seen
    order.

    Returns:
        Pane ids, empty when no rule matches
    """
    if explicit_targets is not None:
        targets: Iterable[str] = explicit_targets
    else:
        targets = ()
        for rule in watch_table:
            if rule.matches(path):
                targets = rule.targets
                break

    resolved: list[str] = []
    for target in targets:
        expanded = registered if target == ALL_PANES else (target,)
        for pane_id in expanded:
            if pane_id not in resolved:
                resolved.append(pane_id)
    return tuple(resolved)


@dataclass(frozen=True)
class UpdateEvent:
    """
    One change notification, consumed by the next flush.

    Attributes:
        path: Changed path, relative to the project root
        kind: Type of change
        targets: Pane ids to update
        priority: Dispatch tier
        timestamp: When the change was received
    """

    path: str
    kind: ChangeKind
    targets: tuple[str, ...]
    priority: Priority
    timestamp: datetime = field(default_factory=datetime.now)


ChangeCallback = Callable[[ChangeKind, str], None]
# (error, gave_up): gave_up is True when the source stopped for good
ErrorCallback = Callable[[Exception, bool], None]
PaneLoader = Callable[[str, Sequence[UpdateEvent]], Awaitable[Any]]
Listener = Callable[[UpdateEvent], None]


class Subscription(Protocol):
    async def close(self) -> None:
        """Stop delivering changes. Safe to call more than once."""
        ...


class ChangeSource(Protocol):
    async def subscribe(
        self,
        patterns: Sequence[str],
        callback: ChangeCallback,
        on_error: ErrorCallback | None = None,
    ) -> Subscription:
        """
        Deliver (kind, path) for changes matching any of the patterns.

        Failures of the underlying watch are reported through on_error
        instead of being raised.
        """
        ...


async def summarize_events(pane_id: str, events: Sequence[UpdateEvent]) -> dict[str, Any]:
    """Default loader: describe the changes that triggered the update."""
    return {
        "pane_id": pane_id,
        "updates": len(events),
        "last_update": datetime.now(),
        "changes": [
            {
                "kind": event.kind.value,
                "path": posixpath.basename(event.path),
                "priority": event.priority.value,
            }
            for event in events
        ],
    }


@dataclass(frozen=True)
class CoordinatorHealth:
    """Liveness snapshot. Diagnostics only, never used for control flow."""

    active_watchers: int
    events_received: int
    total_updates: int
    failed_updates: int
    queued_events: int
    active_updates: int
    mean_flush_ms: float
    last_flush: datetime | None
    recent_errors: list[str]
    running: bool


class UpdateCoordinator:
    """
    Classifies change events, batches them and pushes pane updates.

    Example:
        coordinator = UpdateCoordinator(registry, debounce_ms=100)
        await coordinator.start(WatchfilesSource(project_root))
        ...
        await coordinator.cleanup()
    """

    def __init__(
        self,
        registry: PaneRegistry,
        loader: PaneLoader | None = None,
        debounce_ms: int = 100,
        max_concurrent_updates: int = 3,
        max_pending_events: int = 1000,
        watch_table: Sequence[WatchRule] = WATCH_TABLE,
        metrics: EngineMetrics | None = None,
    ) -> None:
        """
        Initialize the coordinator.

        Args:
            registry: Registry that receives the pane updates
            loader: Builds a pane's payload from its events (default
                summarize_events)
            debounce_ms: Minimum interval between flushes
            max_concurrent_updates: Panes loaded concurrently per batch
            max_pending_events: Queue size that triggers compaction
            watch_table: Ordered path-to-pane rules
            metrics: Shared metrics (defaults to the registry's)
        """
        if max_concurrent_updates < 1:
            raise ValueError("max_concurrent_updates must be at least 1")
        if max_pending_events < 1:
            raise ValueError("max_pending_events must be at least 1")
        self.registry = registry
        self._loader = loader or summarize_events
        self._debounce = max(0, debounce_ms) / 1000
        self._max_concurrent = max_concurrent_updates
        self._max_pending = max_pending_events
        self._watch_table = tuple(watch_table)
        self.metrics = metrics if metrics is not None else registry.metrics

        self._pending: list[UpdateEvent] = []
        self._listeners: list[Listener] = []
        self._subscriptions: list[Subscription] = []
        self._flush_task: asyncio.Task[None] | None = None
        self._flush_lock = asyncio.Lock()
        self._active: set[str] = set()
        self._errors: RingBuffer[str] = RingBuffer(maxlen=50)
        self._last_flush: datetime | None = None
        self._closed = False

    @property
    def watch_patterns(self) -> list[str]:
        return [rule.pattern for rule in self._watch_table]

    @property
    def pending_events(self) -> list[UpdateEvent]:
        return list(self._pending)

    # Subscriptions

    async def start(self, source: ChangeSource) -> Subscription:
        """
        Subscribe to a change source using the watch table patterns.

        Source failures are recorded in the error history. A source that
        gives up no longer counts as an active watcher.
        """
        subscription: Subscription | None = None

        def on_error(error: Exception, gave_up: bool) -> None:
            self._on_source_error(subscription, error, gave_up)

        subscription = await source.subscribe(
            self.watch_patterns, self._on_source_change, on_error
        )
        self._subscriptions.append(subscription)
        self._closed = False
        self.metrics.active_watchers.inc()
        logger.info(f"Watching {len(self._watch_table)} patterns")
        return subscription

    def _on_source_change(self, kind: ChangeKind, path: str) -> None:
        self.on_change(kind, path)

    def _on_source_error(
        self, subscription: Subscription | None, error: Exception, gave_up: bool
    ) -> None:
        self._errors.append(f"watcher: {error}")
        if not gave_up:
            logger.warning(f"Change source failed, retrying: {error}")
            return
        logger.error(f"Change source stopped: {error}")
        if subscription is not None and subscription in self._subscriptions:
            self._subscriptions.remove(subscription)
            self.metrics.active_watchers.dec()

    def add_listener(self, listener: Listener) -> Callable[[], None]:
        """
        Register a synchronous observer of incoming events.

        Returns:
            Function that removes the listener
        """
        self._listeners.append(listener)

        def remove() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return remove

    # Intake

    def on_change(
        self,
        kind: ChangeKind,
        path: str,
        explicit_targets: Iterable[str] | None = None,
    ) -> UpdateEvent:
        """
        Record a change and schedule a flush.

        Listeners are notified before this returns, regardless of when the
        event is flushed. Events that resolve to no panes are reported to
        listeners but not queued.

        Args:
            kind: Type of change
            path: Changed path, relative to the project root
            explicit_targets: Pane ids overriding the watch table

        Returns:
            The recorded event
        """
        path = normalize_path(path)
        event = UpdateEvent(
            path=path,
            kind=kind,
            targets=resolve_targets(
                path, self.registry.pane_ids, explicit_targets, self._watch_table
            ),
            priority=classify_priority(path),
        )
        self.metrics.change_events.labels(priority=event.priority.value).inc()

        if event.targets:
            if len(self._pending) >= self._max_pending:
                self._compact()
            self._pending.append(event)
            self._schedule_flush()
        else:
            logger.debug(f"No panes affected by {path}")

        for listener in list(self._listeners):
            try:
                listener(event)
            except Exception:
                logger.exception(f"Update listener failed for {path}")
        return event

    def _compact(self) -> None:
        """Keep only the latest event per (tier, pane); drop oldest if still full."""
        latest: dict[tuple[Priority, str], int] = {}
        for index, event in enumerate(self._pending):
            for pane_id in event.targets:
                latest[(event.priority, pane_id)] = index
        keep = sorted(set(latest.values()))
        dropped = len(self._pending) - len(keep)
        self._pending = [self._pending[i] for i in keep]
        while len(self._pending) >= self._max_pending:
            self._pending.pop(0)
            dropped += 1
        logger.warning(f"Pending update queue full, compacted {dropped} events")

    # Flushing

    def _schedule_flush(self) -> None:
        if self._closed:
            return
        if self._flush_task is None or self._flush_task.done():
            loop = asyncio.get_running_loop()
            self._flush_task = loop.create_task(self._flush_after_delay())

    async def _flush_after_delay(self) -> None:
        # Stays scheduled while events keep arriving, so flushes never overlap
        while True:
            await asyncio.sleep(self._debounce)
            if self._closed:
                return
            await self.flush()
            if not self._pending or self._closed:
                return

    def _group(self, events: Sequence[UpdateEvent]) -> dict[Priority, dict[str, list[UpdateEvent]]]:
        tier_of: dict[str, Priority] = {}
        by_pane: dict[str, list[UpdateEvent]] = {}
        for event in events:
            for pane_id in event.targets:
                by_pane.setdefault(pane_id, []).append(event)
                current = tier_of.get(pane_id)
                if current is None or event.priority.rank < current.rank:
                    tier_of[pane_id] = event.priority

        grouped: dict[Priority, dict[str, list[UpdateEvent]]] = {tier: {} for tier in TIERS}
        for pane_id, pane_events in by_pane.items():
            grouped[tier_of[pane_id]][pane_id] = pane_events
        return grouped

    async def flush(self) -> int:
        """
        Drain the pending queue and dispatch grouped updates by tier.

        Concurrent calls run one after another, so at most
        max_concurrent_updates loaders are ever running.

        Returns:
            Number of panes whose update was queued on the registry
        """
        async with self._flush_lock:
            events, self._pending = self._pending, []
            if not events:
                return 0

            start = time.perf_counter()
            dispatched = 0
            for tier, panes in self._group(events).items():
                items = list(panes.items())
                for i in range(0, len(items), self._max_concurrent):
                    batch = items[i : i + self._max_concurrent]
                    results = await asyncio.gather(
                        *(self._dispatch(pane_id, pane_events) for pane_id, pane_events in batch)
                    )
                    dispatched += sum(1 for ok in results if ok)

            self._last_flush = datetime.now()
            self.metrics.flush_latency.observe(time.perf_counter() - start)
            self.metrics.flush_batch_size.observe(len(events))
            logger.debug(f"Flushed {len(events)} events to {dispatched} panes")
            return dispatched

    async def _dispatch(self, pane_id: str, events: Sequence[UpdateEvent]) -> bool:
        if pane_id not in self.registry:
            logger.debug(f"Skipping update for unregistered pane {pane_id}")
            return False

        self._active.add(pane_id)
        try:
            payload = await self._loader(pane_id, events)
            self.registry.queue_update(pane_id, payload)
        except UnknownPaneError:
            logger.debug(f"Pane {pane_id} was unregistered during load")
            return False
        except Exception as exc:
            self.registry.record_failure(pane_id, exc)
            self.metrics.coordinator_updates.labels(result="failed").inc()
            self._errors.append(f"{pane_id}: {exc}")
            logger.warning(f"Loading update for pane {pane_id} failed: {exc}")
            return False
        finally:
            self._active.discard(pane_id)

        self.metrics.coordinator_updates.labels(result="dispatched").inc()
        return True

    # Diagnostics and shutdown

    def get_health(self) -> CoordinatorHealth:
        events = sum(
            self.metrics.value("paneboard_change_events_total", priority=tier.value)
            for tier in TIERS
        )
        return CoordinatorHealth(
            active_watchers=int(self.metrics.value("paneboard_active_watchers")),
            events_received=int(events),
            total_updates=int(
                self.metrics.value("paneboard_coordinator_updates_total", result="dispatched")
            ),
            failed_updates=int(
                self.metrics.value("paneboard_coordinator_updates_total", result="failed")
            ),
            queued_events=len(self._pending),
            active_updates=len(self._active),
            mean_flush_ms=self.metrics.mean("paneboard_flush_duration_seconds") * 1000,
            last_flush=self._last_flush,
            recent_errors=self._errors.get_items(),
            running=bool(self._subscriptions),
        )

    async def cleanup(self) -> None:
        """
        Close subscriptions and stop the flush timer.

        Idempotent. A flush already dispatching is allowed to finish (see
        drain_flush_task). Pending events are kept; flush() still drains
        them.
        """
        self._closed = True
        subscriptions, self._subscriptions = self._subscriptions, []
        for subscription in subscriptions:
            try:
                await subscription.close()
            except Exception:
                logger.exception("Failed to close change subscription")
            self.metrics.active_watchers.dec()

        task, self._flush_task = self._flush_task, None
        await drain_flush_task(task, self._flush_lock)
