"""
Pane registry: per-pane lifecycle state and buffered data.

Lifecycle per pane:

    (unregistered) -> INITIALIZING -> READY
                           |            ^  |
                           v            |  v
                         ERROR ---------+ ERROR

A pane enters ERROR when its initializer or an update fails, and returns to
READY on the next successful update. Failures are captured into the pane's
last_error and counted; they never propagate to other panes.

Concurrency:
- Each pane has its own asyncio.Lock. asyncio locks are FIFO, so updates to
  one pane apply in arrival order while different panes proceed
  independently.
- queue_update() coalesces per pane (last write wins). A scheduled flush
  task drains the queue no more often than the debounce interval.
- Flushes never overlap. The flush task stays scheduled until the queue is
  empty, so updates queued during a slow flush go into the next cycle.
- Results of in-flight work for a pane that has been unregistered are
  discarded.
"""

from __future__ import annotations

import asyncio
import inspect
import logging
import time
from collections.abc import Awaitable, Callable, Mapping
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any

from paneboard.buffer import LineBuffer
from paneboard.errors import (
    DuplicatePaneError,
    PaneboardError,
    PaneInitializationError,
    UnknownPaneError,
    UnknownPaneTypeError,
    UpdateApplicationError,
)
from paneboard.metrics import EngineMetrics

logger = logging.getLogger(__name__)

Initializer = Callable[[str], Awaitable[Any]]
Reducer = Callable[[Any, Any], Any]

LOG_PANE_LINES = 200

# Seconds close() waits for a flush that is already applying updates
FLUSH_DRAIN_TIMEOUT = 2.0


class PanePhase(Enum):
    """Lifecycle phase of a registered pane."""

    INITIALIZING = "initializing"
    READY = "ready"
    ERROR = "error"


async def default_initializer(pane_id: str) -> dict[str, Any]:
    """Initial data for panes whose content arrives through updates."""
    return {"initialized": True, "pane_id": pane_id}


def replace_data(current: Any, payload: Any) -> Any:
    """Reducer that keeps only the latest payload."""
    return payload


def append_log_lines(current: Any, payload: Any) -> LineBuffer:
    """
    Reducer for the logs pane: append payload lines to a bounded buffer.

    Accepts a string, a sequence of strings, or an update summary with a
    "changes" list (as produced by the update coordinator).
    """
    buffer = current if isinstance(current, LineBuffer) else LineBuffer(maxlen=LOG_PANE_LINES)
    if isinstance(payload, str):
        lines = payload.splitlines() or [""]
    elif isinstance(payload, Mapping) and "changes" in payload:
        lines = [
            f"{change['kind']} {change['path']} [{change['priority']}]"
            for change in payload["changes"]
        ]
    elif isinstance(payload, (list, tuple)):
        lines = [str(line) for line in payload]
    else:
        lines = [str(payload)]
    for line in lines:
        buffer.append(line)
    return buffer


@dataclass(frozen=True)
class PaneType:
    """
    Static description of a kind of pane.

    Attributes:
        id: Pane identifier (one pane per type)
        title: Display title
        description: What the pane shows
        collapsible: Whether toggle_collapse() is allowed
        refreshable: Whether refresh_all() reloads this pane
        initializer: Async callable producing the initial data
        reducer: Combines (current data, payload) into new data; may
            return an awaitable
    """

    id: str
    title: str
    description: str
    collapsible: bool = True
    refreshable: bool = True
    initializer: Initializer = default_initializer
    reducer: Reducer = replace_data


PANE_TYPES: dict[str, PaneType] = {
    "progress": PaneType(
        id="progress",
        title="Progress",
        description="Project phase progression and completion status",
    ),
    "tasks": PaneType(
        id="tasks",
        title="Tasks",
        description="Current and upcoming tasks with dependencies",
    ),
    "capabilities": PaneType(
        id="capabilities",
        title="Capabilities",
        description="AI tools, coverage analysis, and gap recommendations",
    ),
    "logs": PaneType(
        id="logs",
        title="Logs",
        description="Real-time tool execution and system activity",
        refreshable=False,
        reducer=append_log_lines,
    ),
    "tools": PaneType(
        id="tools",
        title="MCP Tools",
        description="Direct tool execution and status monitoring",
    ),
}


@dataclass(frozen=True)
class PaneStatus:
    """Read-only view of a pane for rendering and diagnostics."""

    pane_id: str
    title: str
    phase: PanePhase
    collapsed: bool
    focused: bool
    data: Any
    error: str | None
    update_count: int
    failure_count: int
    last_update: datetime | None

    @property
    def has_data(self) -> bool:
        return self.data is not None


@dataclass
class PaneState:
    """
    Mutable state of one registered pane.

    Owned by PaneRegistry; other components read it but request changes
    through the registry.
    """

    pane_id: str
    pane_type: PaneType
    phase: PanePhase = PanePhase.INITIALIZING
    collapsed: bool = False
    focused: bool = False
    last_error: PaneboardError | None = None
    data: Any = None
    update_count: int = 0
    failure_count: int = 0
    last_update: datetime | None = None
    ready: asyncio.Event = field(default_factory=asyncio.Event, repr=False, compare=False)

    def status(self) -> PaneStatus:
        return PaneStatus(
            pane_id=self.pane_id,
            title=self.pane_type.title,
            phase=self.phase,
            collapsed=self.collapsed,
            focused=self.focused,
            data=self.data,
            error=str(self.last_error) if self.last_error is not None else None,
            update_count=self.update_count,
            failure_count=self.failure_count,
            last_update=self.last_update,
        )


@dataclass(frozen=True)
class RegistryMetrics:
    updates_applied: int
    updates_failed: int
    registered_panes: int
    mean_update_ms: float
    queued_updates: int
    active_updates: int


class PaneRegistry:
    """
    Owns every PaneState and serializes mutations per pane.

    Must be used from a running asyncio event loop: registration schedules
    initialization as a task.

    Example:
        registry = PaneRegistry(debounce_ms=50)
        registry.register("tasks")
        await registry.wait_ready("tasks")
        await registry.update("tasks", {"current": "T-12"})
    """

    def __init__(
        self,
        pane_types: Mapping[str, PaneType] = PANE_TYPES,
        debounce_ms: int = 100,
        max_concurrent_updates: int = 3,
        metrics: EngineMetrics | None = None,
    ) -> None:
        """
        Initialize an empty registry.

        Args:
            pane_types: Catalog of known pane types
            debounce_ms: Minimum interval between queued-update flushes
            max_concurrent_updates: Panes updated concurrently per flush batch
            metrics: Shared metrics (a private instance is created if None)
        """
        if max_concurrent_updates < 1:
            raise ValueError("max_concurrent_updates must be at least 1")
        self._pane_types = dict(pane_types)
        self._debounce = max(0, debounce_ms) / 1000
        self._max_concurrent = max_concurrent_updates
        self.metrics = metrics if metrics is not None else EngineMetrics()

        self._panes: dict[str, PaneState] = {}
        self._locks: dict[str, asyncio.Lock] = {}
        self._init_tasks: dict[str, asyncio.Task[None]] = {}
        self._queue: dict[str, Any] = {}
        self._flush_task: asyncio.Task[None] | None = None
        self._flush_lock = asyncio.Lock()
        self._active: set[str] = set()
        self._closed = False

    # Registration

    def register(self, pane_id: str) -> PaneState:
        """
        Register a pane and start its initialization.

        Returns the state immediately, still INITIALIZING. Use wait_ready()
        to await the outcome.

        Raises:
            DuplicatePaneError: If the pane is already registered
            UnknownPaneTypeError: If no pane type exists for the id
        """
        if pane_id in self._panes:
            raise DuplicatePaneError(pane_id)
        pane_type = self._pane_types.get(pane_id)
        if pane_type is None:
            raise UnknownPaneTypeError(pane_id)

        loop = asyncio.get_running_loop()
        state = PaneState(pane_id=pane_id, pane_type=pane_type)
        state.focused = not any(s.focused for s in self._panes.values())
        self._panes[pane_id] = state
        self._locks[pane_id] = asyncio.Lock()
        self._init_tasks[pane_id] = loop.create_task(self._initialize(state))
        logger.debug(f"Registered pane {pane_id}")
        return state

    async def _initialize(self, state: PaneState) -> None:
        try:
            data = await state.pane_type.initializer(state.pane_id)
        except asyncio.CancelledError:
            raise
        except Exception as exc:
            if self._is_current(state):
                error = PaneInitializationError(state.pane_id, str(exc))
                state.phase = PanePhase.ERROR
                state.last_error = error
                state.failure_count += 1
                self.metrics.pane_updates.labels(result="init_failed").inc()
                logger.warning(str(error))
        else:
            if self._is_current(state):
                state.data = data
                state.phase = PanePhase.READY
        finally:
            state.ready.set()
            if self._init_tasks.get(state.pane_id) is asyncio.current_task():
                del self._init_tasks[state.pane_id]

    def unregister(self, pane_id: str) -> bool:
        """
        Remove a pane, cancelling its pending queued update.

        Returns:
            True if the pane was registered, False otherwise
        """
        state = self._panes.pop(pane_id, None)
        if state is None:
            return False

        self._queue.pop(pane_id, None)
        self._locks.pop(pane_id, None)
        task = self._init_tasks.pop(pane_id, None)
        if task is not None:
            task.cancel()
        # Release anything waiting on initialization; they see the pane is gone
        state.ready.set()

        if state.focused and self._panes:
            next(iter(self._panes.values())).focused = True
        logger.debug(f"Unregistered pane {pane_id}")
        return True

    async def wait_ready(self, pane_id: str) -> PaneState:
        """
        Wait until a pane's initialization has finished (successfully or not).

        Raises:
            UnknownPaneError: If the pane is not registered
        """
        state = self._require(pane_id)
        await state.ready.wait()
        return state

    # Queries

    def get(self, pane_id: str) -> PaneState | None:
        return self._panes.get(pane_id)

    @property
    def pane_ids(self) -> list[str]:
        """Registered pane ids in registration order."""
        return list(self._panes)

    def __contains__(self, pane_id: object) -> bool:
        return pane_id in self._panes

    def __len__(self) -> int:
        return len(self._panes)

    def statuses(self) -> dict[str, PaneStatus]:
        return {pane_id: state.status() for pane_id, state in self._panes.items()}

    @property
    def focused_pane(self) -> str | None:
        for pane_id, state in self._panes.items():
            if state.focused:
                return pane_id
        return None

    def _require(self, pane_id: str) -> PaneState:
        state = self._panes.get(pane_id)
        if state is None:
            raise UnknownPaneError(pane_id)
        return state

    def _is_current(self, state: PaneState) -> bool:
        return self._panes.get(state.pane_id) is state

    # Updates

    async def update(self, pane_id: str, payload: Any) -> bool:
        """
        Apply a payload to a pane through its reducer.

        Updates to the same pane are serialized in arrival order. A reducer
        failure is captured as UpdateApplicationError in last_error.

        Returns:
            True if applied, False if it failed or the pane was unregistered
            while the update was in flight

        Raises:
            UnknownPaneError: If the pane is not registered
        """
        state = self._require(pane_id)
        reducer = state.pane_type.reducer
        return await self._apply(state, lambda: reducer(state.data, payload))

    async def refresh(self, pane_id: str) -> bool:
        """
        Reload a pane from its initializer, replacing its data.

        Raises:
            UnknownPaneError: If the pane is not registered
        """
        state = self._require(pane_id)
        return await self._apply(state, lambda: state.pane_type.initializer(pane_id))

    async def refresh_all(self) -> int:
        """Refresh every refreshable pane; returns how many succeeded."""
        refreshed = 0
        for pane_id in self.pane_ids:
            state = self._panes.get(pane_id)
            if state is not None and state.pane_type.refreshable:
                if await self.refresh(pane_id):
                    refreshed += 1
        return refreshed

    async def _apply(self, state: PaneState, produce: Callable[[], Any]) -> bool:
        lock = self._locks[state.pane_id]
        async with lock:
            await state.ready.wait()
            if not self._is_current(state):
                return False

            start = time.perf_counter()
            self._active.add(state.pane_id)
            try:
                data = produce()
                if inspect.isawaitable(data):
                    data = await data
            except Exception as exc:
                if self._is_current(state):
                    self._fail(state, UpdateApplicationError(state.pane_id, str(exc)))
                return False
            finally:
                self._active.discard(state.pane_id)

            if not self._is_current(state):
                logger.debug(f"Discarding update for unregistered pane {state.pane_id}")
                return False

            state.data = data
            state.update_count += 1
            state.last_update = datetime.now()
            state.phase = PanePhase.READY
            state.last_error = None
            self.metrics.pane_updates.labels(result="applied").inc()
            self.metrics.update_latency.observe(time.perf_counter() - start)
            return True

    def _fail(self, state: PaneState, error: PaneboardError) -> None:
        state.phase = PanePhase.ERROR
        state.last_error = error
        state.failure_count += 1
        self.metrics.pane_updates.labels(result="failed").inc()
        logger.warning(str(error))

    def record_failure(self, pane_id: str, error: Exception) -> bool:
        """
        Record a failure produced outside the registry (e.g. a data loader).

        Returns:
            False if the pane is not registered
        """
        state = self._panes.get(pane_id)
        if state is None:
            return False
        if not isinstance(error, PaneboardError):
            error = UpdateApplicationError(pane_id, str(error))
        self._fail(state, error)
        return True

    def queue_update(self, pane_id: str, payload: Any) -> None:
        """
        Queue a payload for the next debounced flush.

        Multiple queued payloads for one pane collapse to the last one.

        Raises:
            UnknownPaneError: If the pane is not registered
        """
        self._require(pane_id)
        self._queue[pane_id] = payload
        self._schedule_flush()

    @property
    def queued_updates(self) -> int:
        return len(self._queue)

    def _schedule_flush(self) -> None:
        if self._closed:
            return
        if self._flush_task is None or self._flush_task.done():
            loop = asyncio.get_running_loop()
            self._flush_task = loop.create_task(self._flush_after_delay())

    async def _flush_after_delay(self) -> None:
        # Updates queued while a flush runs are picked up by the next pass
        while True:
            await asyncio.sleep(self._debounce)
            if self._closed:
                return
            await self.flush()
            if not self._queue or self._closed:
                return

    async def flush(self) -> int:
        """
        Apply all queued updates now, in batches of max_concurrent_updates.

        Concurrent calls run one after another, never interleaved.

        Returns:
            Number of updates applied successfully
        """
        async with self._flush_lock:
            pending = list(self._queue.items())
            self._queue.clear()
            applied = 0
            for i in range(0, len(pending), self._max_concurrent):
                batch = pending[i : i + self._max_concurrent]
                results = await asyncio.gather(
                    *(self._apply_queued(pane_id, payload) for pane_id, payload in batch)
                )
                applied += sum(1 for ok in results if ok)
            return applied

    async def _apply_queued(self, pane_id: str, payload: Any) -> bool:
        try:
            return await self.update(pane_id, payload)
        except UnknownPaneError:
            logger.debug(f"Dropping queued update for unregistered pane {pane_id}")
            return False

    # Focus and collapse

    def set_focus(self, pane_id: str, focused: bool) -> bool:
        """
        Focus or unfocus a pane, keeping exactly one pane focused.

        Focusing a pane unfocuses all others. Unfocusing the focused pane
        hands focus to the next registered pane; the last remaining pane
        cannot be unfocused.

        Returns:
            False if the pane is unknown or the request could not be honored
        """
        state = self._panes.get(pane_id)
        if state is None:
            return False

        if focused:
            for other in self._panes.values():
                other.focused = other is state
            return True

        if not state.focused:
            return True
        ids = self.pane_ids
        if len(ids) == 1:
            return False
        successor = ids[(ids.index(pane_id) + 1) % len(ids)]
        state.focused = False
        self._panes[successor].focused = True
        return True

    def toggle_collapse(self, pane_id: str) -> bool:
        """
        Flip a pane's collapsed flag.

        Returns:
            False if the pane is unknown or not collapsible
        """
        state = self._panes.get(pane_id)
        if state is None or not state.pane_type.collapsible:
            return False
        state.collapsed = not state.collapsed
        return True

    # Metrics and shutdown

    def get_metrics(self) -> RegistryMetrics:
        return RegistryMetrics(
            updates_applied=int(self.metrics.value("paneboard_pane_updates_total", result="applied")),
            updates_failed=int(self.metrics.value("paneboard_pane_updates_total", result="failed")),
            registered_panes=len(self._panes),
            mean_update_ms=self.metrics.mean("paneboard_pane_update_duration_seconds") * 1000,
            queued_updates=len(self._queue),
            active_updates=len(self._active),
        )

    async def close(self) -> None:
        """
        Stop the flush timer and cancel initialization tasks. Idempotent.

        A flush already in progress is given FLUSH_DRAIN_TIMEOUT seconds to
        finish before it is cancelled. Queued updates are kept and no new
        timer is scheduled; an explicit flush() still applies them.
        """
        self._closed = True
        task, self._flush_task = self._flush_task, None
        await drain_flush_task(task, self._flush_lock)

        init_tasks = list(self._init_tasks.values())
        for init_task in init_tasks:
            init_task.cancel()
        await asyncio.gather(*init_tasks, return_exceptions=True)


async def drain_flush_task(task: asyncio.Task[None] | None, lock: asyncio.Lock) -> None:
    """
    Stop a debounced flush task.

    A task still waiting out its debounce is cancelled. One that holds
    `lock` (mid-flush) may finish, up to FLUSH_DRAIN_TIMEOUT seconds.
    """
    if task is None or task.done():
        return
    if lock.locked():
        try:
            await asyncio.wait_for(task, timeout=FLUSH_DRAIN_TIMEOUT)
            return
        except asyncio.TimeoutError:
            logger.warning("In-flight flush did not finish in time, cancelled")
            return
    task.cancel()
    await asyncio.gather(task, return_exceptions=True)
