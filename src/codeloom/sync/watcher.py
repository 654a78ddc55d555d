"""Bridge watchdog file-system events into the sync service.

watchdog delivers events on its observer thread; they are debounced per
path and handed to the event loop with ``call_soon_threadsafe``.
"""

from __future__ import annotations

import asyncio
import logging
import threading
from pathlib import Path

from watchdog.events import FileSystemEvent, FileSystemEventHandler
from watchdog.observers import Observer

from codeloom.constants import ChangeKind
from codeloom.sync.scanner import load_ignore_spec, should_index
from codeloom.sync.service import FileChange, SyncService, coalesce

logger = logging.getLogger(__name__)


class _ChangeHandler(FileSystemEventHandler):
    """Collects changes and flushes them after a quiet period."""

    def __init__(self, watcher: WorkspaceWatcher) -> None:
        super().__init__()
        self._watcher = watcher

    def on_created(self, event: FileSystemEvent) -> None:
        if not event.is_directory:
            self._watcher.record(str(event.src_path), ChangeKind.CREATED)

    def on_modified(self, event: FileSystemEvent) -> None:
        if not event.is_directory:
            self._watcher.record(str(event.src_path), ChangeKind.MODIFIED)

    def on_deleted(self, event: FileSystemEvent) -> None:
        if not event.is_directory:
            self._watcher.record(str(event.src_path), ChangeKind.DELETED)

    def on_moved(self, event: FileSystemEvent) -> None:
        if not event.is_directory:
            self._watcher.record(str(event.src_path), ChangeKind.DELETED)
            self._watcher.record(str(event.dest_path), ChangeKind.CREATED)


class WorkspaceWatcher:
    """Watches ``sync.root`` and feeds debounced changes to ``sync``."""

    def __init__(
        self,
        sync: SyncService,
        loop: asyncio.AbstractEventLoop,
        *,
        debounce_seconds: float = 0.5,
    ) -> None:
        self._sync = sync
        self._loop = loop
        self._root = sync.root.resolve()
        self._debounce = debounce_seconds
        self._ignore_spec = load_ignore_spec(self._root)
        self._lock = threading.Lock()
        self._pending: dict[str, ChangeKind] = {}
        # Each path has its own quiet period; the token marks the live timer.
        self._timers: dict[str, tuple[threading.Timer, int]] = {}
        self._next_token = 0
        self._observer: Observer | None = None  # type: ignore[valid-type]

    def start(self) -> None:
        if self._observer is not None:
            return
        observer = Observer()
        observer.schedule(_ChangeHandler(self), str(self._root), recursive=True)
        observer.daemon = True
        observer.start()
        self._observer = observer
        logger.info("event=watcher_started root=%s", self._root)

    def stop(self) -> None:
        with self._lock:
            self._cancel_timers()
        observer, self._observer = self._observer, None
        if observer is not None:
            observer.stop()
            observer.join(timeout=5)
        logger.info("event=watcher_stopped root=%s", self._root)

    def record(self, raw_path: str, kind: ChangeKind) -> None:
        """Called on the observer thread for every relevant event."""
        path = Path(raw_path)
        if not should_index(
            path, self._root, self._sync.skip_dirs, self._ignore_spec
        ):
            return
        rel = path.relative_to(self._root).as_posix()
        with self._lock:
            previous = self._pending.get(rel)
            self._pending[rel] = coalesce(previous, kind)
            current = self._timers.get(rel)
            if current is not None:
                current[0].cancel()
            self._next_token += 1
            timer = threading.Timer(
                self._debounce, self._flush_path, args=(rel, self._next_token)
            )
            timer.daemon = True
            self._timers[rel] = (timer, self._next_token)
            timer.start()

    def _flush_path(self, rel: str, token: int) -> None:
        with self._lock:
            current = self._timers.get(rel)
            # A newer event for the path re-armed its timer.
            if current is None or current[1] != token:
                return
            del self._timers[rel]
            kind = self._pending.pop(rel, None)
        if kind is not None:
            self._loop.call_soon_threadsafe(
                self._sync.enqueue, FileChange(rel, kind)
            )

    def flush(self) -> None:
        """Hand every pending change to the sync service now."""
        with self._lock:
            changes, self._pending = self._pending, {}
            self._cancel_timers()
        for rel, kind in sorted(changes.items()):
            self._loop.call_soon_threadsafe(
                self._sync.enqueue, FileChange(rel, kind)
            )
        if changes:
            logger.debug("event=watcher_flushed changes=%d", len(changes))

    def _cancel_timers(self) -> None:
        for timer, _ in self._timers.values():
            timer.cancel()
        self._timers.clear()
