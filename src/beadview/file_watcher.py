# Copyright (c) 2025 Henru Wang
# All rights reserved.

"""Watches the issue tracker directory for changes to the issues file.

- Watchdog library for cross-platform file watching
- Only .jsonl files are considered
- Backup, merge and deletions files next to the issues file are ignored
- Bursts of events are debounced with a threading.Timer; one FileChangeEvent
  is emitted after debounce_ms of quiet

Callbacks run on the timer thread. A failing callback is logged and does not
prevent the others from running.
"""

import fnmatch
import logging
import threading
import time
from dataclasses import dataclass
from pathlib import Path
from typing import TYPE_CHECKING, Callable, List, Optional, Set

from watchdog.events import FileMovedEvent, FileSystemEvent, FileSystemEventHandler
from watchdog.observers import Observer

from .loader import is_ignored_issues_file

if TYPE_CHECKING:
    from watchdog.observers.api import BaseObserver

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class FileChangeEvent:
    """A debounced change to an issues file.

    Attributes:
        path: Last path that changed within the debounce window.
        timestamp: time.time() when the event was emitted.
    """

    path: str
    timestamp: float


ChangeCallback = Callable[[FileChangeEvent], None]


class FileWatcher:
    """Debounced watcher for the tracker's JSONL files.

    Usage:
        watcher = FileWatcher(".beads", debounce_ms=200)
        watcher.register_callback(worker.on_file_change)
        watcher.start()
        ...
        watcher.stop()
    """

    WATCHED_SUFFIX = ".jsonl"

    # Editor and VCS droppings that can carry a .jsonl name
    IGNORED_PATTERNS = {
        ".#*",
        "*~",
        "*.swp",
        "*.tmp",
    }

    def __init__(
        self,
        watch_dir: str,
        debounce_ms: int = 200,
        user_ignore_patterns: Optional[Set[str]] = None,
    ):
        """Initialize FileWatcher.

        Args:
            watch_dir: Directory holding the issues file.
            debounce_ms: Quiet period before a change is reported.
            user_ignore_patterns: Additional glob patterns to ignore.
        """
        self.watch_dir = Path(watch_dir).resolve()
        self.debounce_s = debounce_ms / 1000.0
        self.user_ignore_patterns = user_ignore_patterns or set()

        self._callbacks: List[ChangeCallback] = []
        self._lock = threading.Lock()
        self._timer: Optional[threading.Timer] = None
        self._pending_path: Optional[str] = None

        self._observer: Optional[BaseObserver] = None
        self._event_handler = _FileEventHandler(self)

        logger.info(f"FileWatcher initialized for {self.watch_dir}")

    def should_ignore(self, file_path: str) -> bool:
        """Check whether a path is not an issues file worth reloading for.

        Args:
            file_path: Absolute or relative file path

        Returns:
            True if the path should not trigger a reload
        """
        path = Path(file_path)
        if path.suffix != self.WATCHED_SUFFIX:
            return True
        if is_ignored_issues_file(path.name):
            return True
        for pattern in self.IGNORED_PATTERNS | self.user_ignore_patterns:
            if fnmatch.fnmatch(path.name, pattern):
                return True
        return False

    def register_callback(self, callback: ChangeCallback) -> None:
        """Register a callback for debounced change events.

        Args:
            callback: Function taking a FileChangeEvent. Runs on the timer
                thread and should return quickly.
        """
        if callback not in self._callbacks:
            self._callbacks.append(callback)
            logger.debug(f"Registered change callback: {callback}")

    def unregister_callback(self, callback: ChangeCallback) -> None:
        if callback in self._callbacks:
            self._callbacks.remove(callback)
            logger.debug(f"Unregistered change callback: {callback}")

    def notify_change(self, file_path: str) -> None:
        """Record a raw change and (re)start the debounce timer."""
        with self._lock:
            self._pending_path = file_path
            if self._timer is not None:
                self._timer.cancel()
            self._timer = threading.Timer(self.debounce_s, self._flush)
            self._timer.daemon = True
            self._timer.start()

    def _flush(self) -> None:
        with self._lock:
            file_path = self._pending_path
            self._pending_path = None
            self._timer = None
        if file_path is None:
            return

        event = FileChangeEvent(path=file_path, timestamp=time.time())
        logger.debug(f"Issues file changed: {file_path}")
        for callback in list(self._callbacks):
            try:
                callback(event)
            except Exception as e:
                # One failing callback must not starve the others
                logger.error(f"Change callback failed for {file_path}: {e}")

    def start(self) -> None:
        """Start watching.

        Raises:
            RuntimeError: If watcher is already running
        """
        if self._observer is not None and self._observer.is_alive():
            raise RuntimeError("FileWatcher is already running")

        self._observer = Observer()
        self._observer.schedule(  # type: ignore  # watchdog types vary by version
            self._event_handler, str(self.watch_dir), recursive=False
        )
        self._observer.start()  # type: ignore  # watchdog types vary by version

        logger.info(f"FileWatcher started, monitoring {self.watch_dir}")

    def stop(self) -> None:
        """Stop watching and discard any pending debounced change."""
        with self._lock:
            if self._timer is not None:
                self._timer.cancel()
                self._timer = None
            self._pending_path = None

        if self._observer is not None and self._observer.is_alive():
            self._observer.stop()  # type: ignore  # watchdog types vary by version
            self._observer.join(timeout=5.0)
            logger.info("FileWatcher stopped")

    def is_running(self) -> bool:
        return self._observer is not None and self._observer.is_alive()


class _FileEventHandler(FileSystemEventHandler):
    """Internal event handler for watchdog.

    Delegates filtering and debouncing to FileWatcher.
    """

    def __init__(self, watcher: FileWatcher):
        super().__init__()
        self.watcher = watcher

    def _handle_path(self, file_path: str, event_type: str) -> None:
        if self.watcher.should_ignore(file_path):
            return
        logger.debug(f"Event: {event_type} - {file_path}")
        self.watcher.notify_change(file_path)

    def _handle_event(self, event: FileSystemEvent) -> None:
        if event.is_directory:
            return
        # Convert path from Union[bytes, str] to str
        self._handle_path(str(event.src_path), event.event_type)

    def on_created(self, event: FileSystemEvent) -> None:
        self._handle_event(event)

    def on_modified(self, event: FileSystemEvent) -> None:
        self._handle_event(event)

    def on_deleted(self, event: FileSystemEvent) -> None:
        self._handle_event(event)

    def on_moved(self, event: FileSystemEvent) -> None:
        """Handle file move/rename events.

        Atomic writers replace the issues file with a rename, so the
        destination path counts as a change.
        """
        if event.is_directory:
            return

        if not isinstance(event, FileMovedEvent):
            return

        self._handle_path(str(event.dest_path), "moved_to")
