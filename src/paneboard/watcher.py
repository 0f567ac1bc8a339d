"""
File system change source backed by watchfiles.

WatchfilesSource.subscribe() starts a background task iterating
watchfiles.awatch() over the watched directory. Each change is reported as
(ChangeKind, path relative to the project root) when the path matches one
of the subscribed patterns. Closing the subscription sets the awatch stop
event and waits for the task to finish.

If awatch fails (the directory was removed, the OS watch limit was hit)
the failure goes to the subscriber's error callback and the watch is
restarted after retry_delay_ms, up to retry_attempts times in a row. A
batch delivered successfully resets the count.
"""

import asyncio
import logging
from collections.abc import Sequence
from pathlib import Path

from watchfiles import Change, awatch

from paneboard.updater import (
    ChangeCallback,
    ChangeKind,
    ErrorCallback,
    normalize_path,
    path_matches,
)

logger = logging.getLogger(__name__)

CHANGE_KINDS = {
    Change.added: ChangeKind.CREATED,
    Change.modified: ChangeKind.MODIFIED,
    Change.deleted: ChangeKind.REMOVED,
}


class WatchSubscription:
    """Running awatch loop for one subscriber."""

    def __init__(self, task: asyncio.Task[None], stop_event: asyncio.Event) -> None:
        self._task = task
        self._stop_event = stop_event

    @property
    def active(self) -> bool:
        return not self._task.done()

    async def close(self) -> None:
        """Stop watching. Safe to call more than once."""
        self._stop_event.set()
        if not self._task.done():
            try:
                await asyncio.wait_for(self._task, timeout=2.0)
            except asyncio.TimeoutError:
                self._task.cancel()
                await asyncio.gather(self._task, return_exceptions=True)


class WatchfilesSource:
    """
    Change source watching a project directory.

    Example:
        source = WatchfilesSource(Path("."), watch_dir=".guidant")
        subscription = await source.subscribe([".guidant/ai/"], on_change)
        ...
        await subscription.close()
    """

    def __init__(
        self,
        root: Path,
        watch_dir: str | None = None,
        debounce_ms: int = 50,
        retry_attempts: int = 3,
        retry_delay_ms: int = 1000,
    ) -> None:
        """
        Args:
            root: Project root; reported paths are relative to it
            watch_dir: Subdirectory of root to watch recursively (all of
                root if None)
            debounce_ms: watchfiles grouping interval
            retry_attempts: Restarts allowed after consecutive failures
            retry_delay_ms: Wait before each restart
        """
        self.root = Path(root).resolve()
        self.watch_path = self.root / watch_dir if watch_dir else self.root
        self._debounce_ms = debounce_ms
        self.retry_attempts = retry_attempts
        self._retry_delay = max(0, retry_delay_ms) / 1000

    def relative_path(self, path: str) -> str:
        try:
            return normalize_path(Path(path).resolve().relative_to(self.root).as_posix())
        except ValueError:
            return normalize_path(path)

    def _accepts(self, patterns: Sequence[str], path: str) -> bool:
        relative = self.relative_path(path)
        return any(path_matches(pattern, relative) for pattern in patterns)

    async def subscribe(
        self,
        patterns: Sequence[str],
        callback: ChangeCallback,
        on_error: ErrorCallback | None = None,
    ) -> WatchSubscription:
        """
        Start watching and deliver matching changes to `callback`.

        Raises:
            FileNotFoundError: If the watched directory does not exist
        """
        if not self.watch_path.is_dir():
            raise FileNotFoundError(f"Watch directory does not exist: {self.watch_path}")

        patterns = list(patterns)
        stop_event = asyncio.Event()
        task = asyncio.get_running_loop().create_task(
            self._watch(patterns, callback, on_error, stop_event)
        )
        logger.debug(f"Watching {self.watch_path} for {len(patterns)} patterns")
        return WatchSubscription(task, stop_event)

    async def _watch(
        self,
        patterns: list[str],
        callback: ChangeCallback,
        on_error: ErrorCallback | None,
        stop_event: asyncio.Event,
    ) -> None:
        failures = 0
        while not stop_event.is_set():
            try:
                async for changes in awatch(
                    self.watch_path,
                    stop_event=stop_event,
                    debounce=self._debounce_ms,
                    watch_filter=lambda change, path: self._accepts(patterns, path),
                ):
                    failures = 0
                    self._deliver(changes, callback)
                return
            except Exception as exc:
                failures += 1
                gave_up = failures > self.retry_attempts
                if on_error is not None:
                    on_error(exc, gave_up)
                else:
                    logger.warning(f"Watching {self.watch_path} failed: {exc}")
                if gave_up:
                    return

            try:
                await asyncio.wait_for(stop_event.wait(), timeout=self._retry_delay)
            except asyncio.TimeoutError:
                logger.info(f"Restarting watch on {self.watch_path} (attempt {failures})")

    def _deliver(self, changes: set[tuple[Change, str]], callback: ChangeCallback) -> None:
        for change, path in sorted(changes, key=lambda item: item[1]):
            kind = CHANGE_KINDS.get(change)
            if kind is None:
                continue
            try:
                callback(kind, self.relative_path(path))
            except Exception:
                logger.exception(f"Change callback failed for {path}")
