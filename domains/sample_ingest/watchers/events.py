"""
Directory event source for the Sample Ingest domain.

Monitors the watch directory recursively and delivers file system changes to
an asyncio consumer. Uses watchdog library for cross-platform file system
event monitoring; the observer thread hands events to the event loop through
a bounded queue and never blocks on the consumer.
"""

import asyncio
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import AsyncIterator, Callable, Optional

from loguru import logger
from watchdog.events import FileSystemEvent, FileSystemEventHandler
from watchdog.observers import Observer

from domains.sample_ingest.errors import WatchSetupError
from librarian.utils.helpers import should_exclude_path


class EventKind(str, Enum):
    CREATED = "created"
    MODIFIED = "modified"
    ERROR = "error"


@dataclass(frozen=True)
class FileEvent:
    """A discrete change notification for one or more paths."""

    kind: EventKind
    paths: tuple[Path, ...] = ()
    error: Optional[str] = None

    @classmethod
    def watch_error(cls, message: str) -> "FileEvent":
        return cls(EventKind.ERROR, (), message)


class QueueingEventHandler(FileSystemEventHandler):
    """Watchdog handler that forwards file events into an asyncio queue."""

    def __init__(self, loop: asyncio.AbstractEventLoop, queue: asyncio.Queue):
        """
        Initialize event handler.

        Args:
            loop: Event loop owning ``queue``
            queue: Bounded queue consumed by the pipeline
        """
        super().__init__()
        self.loop = loop
        self.queue = queue

    def should_process(self, path: str) -> bool:
        return not should_exclude_path(Path(path))

    def _enqueue(self, event: FileEvent):
        try:
            self.queue.put_nowait(event)
        except asyncio.QueueFull:
            logger.warning(f"Event queue full, dropping {event.kind.value} {event.paths}")

    def submit(self, event: FileEvent):
        """Hand ``event`` to the event loop; safe to call from any thread."""
        if self.loop.is_closed():
            return
        try:
            self.loop.call_soon_threadsafe(self._enqueue, event)
        except RuntimeError:
            # Loop closed between the check and the call
            logger.debug(f"Event loop closed, discarding {event.paths}")

    def _forward(self, kind: EventKind, raw_path) -> None:
        try:
            path = Path(raw_path.decode() if isinstance(raw_path, bytes) else raw_path)
            if not self.should_process(str(path)):
                return
            self.submit(FileEvent(kind, (path,)))
        except Exception as e:
            logger.error(f"Failed to translate watch event for {raw_path}: {e}")
            self.submit(FileEvent.watch_error(f"{type(e).__name__}: {e}"))

    def on_created(self, event: FileSystemEvent):
        """Handle file creation."""
        if event.is_directory:
            return
        logger.debug(f"Created: {event.src_path}")
        self._forward(EventKind.CREATED, event.src_path)

    def on_modified(self, event: FileSystemEvent):
        """Handle file modification."""
        # Skip directory modifications (too noisy)
        if event.is_directory:
            return
        logger.debug(f"Modified: {event.src_path}")
        self._forward(EventKind.MODIFIED, event.src_path)

    def on_moved(self, event: FileSystemEvent):
        """Handle rename into place; the destination counts as a new file."""
        if event.is_directory:
            return
        logger.debug(f"Moved: {event.src_path} -> {event.dest_path}")
        self._forward(EventKind.CREATED, event.dest_path)


class DirectoryEventSource:
    """Owns the watchdog observer for one recursively watched root."""

    def __init__(
        self,
        root: Path,
        queue_size: int = 100,
        health_interval: float = 5.0,
        observer_factory: Callable[[], Observer] = Observer,
    ):
        """
        Initialize event source.

        Args:
            root: Directory to watch recursively
            queue_size: Capacity of the event queue
            health_interval: Seconds of idleness between observer health checks
            observer_factory: Creates observers; replaced in tests
        """
        self.root = Path(root)
        self.queue_size = queue_size
        self.health_interval = health_interval
        self.observer_factory = observer_factory

        self.queue: Optional[asyncio.Queue] = None
        self.handler: Optional[QueueingEventHandler] = None
        self.observer = None
        self._closed = False

    def _schedule(self):
        observer = self.observer_factory()
        observer.schedule(self.handler, str(self.root), recursive=True)
        observer.daemon = True
        observer.start()
        self.observer = observer

    def start(self, loop: Optional[asyncio.AbstractEventLoop] = None):
        """
        Start watching the root directory.

        Raises:
            WatchSetupError: If the root is missing, not a directory or cannot be watched
        """
        if not self.root.exists():
            raise WatchSetupError(f"Watch directory does not exist: {self.root}")
        if not self.root.is_dir():
            raise WatchSetupError(f"{self.root} exists but is not a directory")

        loop = loop or asyncio.get_running_loop()
        self._closed = False
        self.queue = asyncio.Queue(maxsize=self.queue_size)
        self.handler = QueueingEventHandler(loop, self.queue)

        try:
            self._schedule()
        except Exception as e:
            raise WatchSetupError(f"Failed to watch directory {self.root}: {e}") from e

        logger.success(f"Started watching: {self.root}")

    def _restart(self) -> FileEvent:
        """Replace a dead observer; returns the error event describing the outage."""
        logger.error(f"Observer for {self.root} stopped unexpectedly, restarting")
        event = FileEvent.watch_error(f"Observer for {self.root} stopped unexpectedly")
        try:
            self._schedule()
            logger.success(f"Observer restarted: {self.root}")
        except Exception as e:
            logger.error(f"Failed to restart observer for {self.root}: {e}")
            self.observer = None
        return event

    def is_alive(self) -> bool:
        return self.observer is not None and self.observer.is_alive()

    async def events(self) -> AsyncIterator[FileEvent]:
        """Yield events until ``close`` is called; watch errors never end the stream."""
        if self.queue is None:
            raise WatchSetupError("Event source has not been started")

        while not self._closed:
            try:
                event = await asyncio.wait_for(self.queue.get(), timeout=self.health_interval)
            except asyncio.TimeoutError:
                if not self._closed and not self.is_alive():
                    yield self._restart()
                continue
            if event is None:
                return
            yield event

    def close(self):
        """Wake the consumer and end the event stream. Call from the loop thread."""
        self._closed = True
        if self.queue is not None:
            try:
                self.queue.put_nowait(None)
            except asyncio.QueueFull:
                # Consumer sees _closed on its next wakeup
                pass

    def stop_observer(self):
        """Stop and join the observer thread. Blocking; safe to run in a worker thread."""
        observer, self.observer = self.observer, None
        if observer is not None:
            observer.stop()
            if observer.is_alive():
                observer.join()
            logger.info("File system observer stopped")

    def stop(self):
        """Stop watching."""
        self.close()
        self.stop_observer()