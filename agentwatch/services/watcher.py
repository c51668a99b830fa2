#  Agent Watch - Watcher Registry
#
#  One watchdog Observer per monitoring session, keyed by session id.
#  Observer threads hand events to the event loop via call_soon_threadsafe
#  into a bounded asyncio.Queue. When the queue is full the OLDEST pending
#  event is dropped and counted, so a burst never blocks the observer.
#  A per-session consumer task drains the queue in order.
#
#  Depends on: config.py
#  Used by:    services/change_analyzer.py

import asyncio
import fnmatch
import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from pathlib import Path

from watchdog.events import FileSystemEventHandler
from watchdog.observers import Observer

from agentwatch.config import IGNORED_DIRS, WATCHER_JOIN_TIMEOUT, WATCHER_QUEUE_SIZE
from agentwatch.models.enums import ChangeType

logger = logging.getLogger("agentwatch.watcher")


@dataclass(frozen=True)
class FileEvent:
    session_id: str
    rel_path: str
    change_type: ChangeType


# process(event, dropped_total) -> awaitable
EventProcessor = Callable[[FileEvent, int], Awaitable[object]]


def matches_patterns(rel_path: str, patterns: list[str], ignored_dirs=IGNORED_DIRS) -> bool:
    """Glob match on a project-relative posix path.

    A leading "**/" also matches files at the project root.
    """
    parts = rel_path.split("/")
    if any(p in ignored_dirs for p in parts[:-1]):
        return False
    for pattern in patterns:
        if fnmatch.fnmatch(rel_path, pattern):
            return True
        if pattern.startswith("**/") and fnmatch.fnmatch(rel_path, pattern[3:]):
            return True
    return False


class _SessionHandler(FileSystemEventHandler):
    """Runs on the observer thread; never touches the loop directly."""

    def __init__(self, watcher: "SessionWatcher"):
        self._watcher = watcher

    def on_created(self, event):
        if not event.is_directory:
            self._watcher.notify(event.src_path, ChangeType.CREATE)

    def on_modified(self, event):
        if not event.is_directory:
            self._watcher.notify(event.src_path, ChangeType.MODIFY)

    def on_deleted(self, event):
        if not event.is_directory:
            self._watcher.notify(event.src_path, ChangeType.DELETE)

    def on_moved(self, event):
        if not event.is_directory:
            self._watcher.notify(event.src_path, ChangeType.DELETE)
            self._watcher.notify(event.dest_path, ChangeType.CREATE)


class SessionWatcher:
    """Observer + queue + consumer for a single monitoring session."""

    def __init__(
        self,
        session_id: str,
        project_path: str | Path,
        patterns: list[str],
        process: EventProcessor,
        loop: asyncio.AbstractEventLoop,
        observer_factory=Observer,
        queue_size: int = WATCHER_QUEUE_SIZE,
    ):
        self.session_id = session_id
        self.root = Path(project_path).resolve()
        self.patterns = list(patterns)
        self.dropped = 0
        self.processed = 0
        self._process = process
        self._loop = loop
        self._queue: asyncio.Queue = asyncio.Queue(maxsize=queue_size)
        self._observer = observer_factory()
        self._consumer: asyncio.Task | None = None
        self._closed = False

    def start(self):
        self._observer.schedule(_SessionHandler(self), str(self.root), recursive=True)
        self._observer.start()
        self._consumer = asyncio.create_task(self._consume(), name=f"watcher-{self.session_id}")

    def notify(self, src_path: str, change_type: ChangeType):
        """Thread-safe entry point for observer callbacks."""
        try:
            rel = Path(src_path).resolve().relative_to(self.root).as_posix()
        except ValueError:
            return  # outside the watched tree
        if not matches_patterns(rel, self.patterns):
            return
        event = FileEvent(self.session_id, rel, change_type)
        self._loop.call_soon_threadsafe(self._enqueue, event)

    def _enqueue(self, event: FileEvent):
        """Runs on the loop thread."""
        if self._closed:
            return
        if self._queue.full():
            try:
                stale = self._queue.get_nowait()
                self._queue.task_done()
                self.dropped += 1
                logger.warning("Session %s queue full, dropped %s event for %s",
                               self.session_id, stale.change_type.value, stale.rel_path)
            except asyncio.QueueEmpty:
                pass
        self._queue.put_nowait(event)

    async def _consume(self):
        while True:
            event = await self._queue.get()
            try:
                if event is None:
                    return
                try:
                    await self._process(event, self.dropped)
                    self.processed += 1
                except Exception:
                    # No replay capability: log and drop
                    logger.exception("Session %s failed to process %s", self.session_id, event.rel_path)
            finally:
                self._queue.task_done()

    async def stop(self, join_timeout: float = WATCHER_JOIN_TIMEOUT):
        """Stop the observer, then let already-queued events drain."""
        self._observer.stop()
        await asyncio.to_thread(self._observer.join, join_timeout)
        self._closed = True
        await self._queue.put(None)
        if self._consumer is not None:
            await self._consumer


class WatcherRegistry:
    """Live watchers keyed by session id. Lives only as long as the process."""

    def __init__(self, observer_factory=Observer, queue_size: int = WATCHER_QUEUE_SIZE,
                 join_timeout: float = WATCHER_JOIN_TIMEOUT):
        self._observer_factory = observer_factory
        self._queue_size = queue_size
        self._join_timeout = join_timeout
        self._watchers: dict[str, SessionWatcher] = {}

    def is_watching(self, session_id: str) -> bool:
        return session_id in self._watchers

    def live_sessions(self) -> set[str]:
        return set(self._watchers)

    def get(self, session_id: str) -> SessionWatcher | None:
        return self._watchers.get(session_id)

    async def start(self, session_id: str, project_path: str | Path, patterns: list[str],
                    process: EventProcessor) -> SessionWatcher:
        if session_id in self._watchers:
            return self._watchers[session_id]
        watcher = SessionWatcher(
            session_id, project_path, patterns, process,
            loop=asyncio.get_running_loop(),
            observer_factory=self._observer_factory,
            queue_size=self._queue_size,
        )
        watcher.start()
        self._watchers[session_id] = watcher
        logger.info("Watching %s for session %s (%s)", watcher.root, session_id, ", ".join(patterns))
        return watcher

    async def stop(self, session_id: str) -> SessionWatcher | None:
        """Detach and drain a watcher. Returns None if it was not live."""
        watcher = self._watchers.pop(session_id, None)
        if watcher is None:
            return None
        await watcher.stop(self._join_timeout)
        logger.info("Stopped watcher for session %s (%d processed, %d dropped)",
                    session_id, watcher.processed, watcher.dropped)
        return watcher

    async def stop_all(self):
        for session_id in list(self._watchers):
            await self.stop(session_id)
