"""Debounced file watching on top of watchdog."""

from __future__ import annotations

import os
import threading
import time
from collections.abc import Callable
from pathlib import Path

from rich.console import Console
from watchdog.events import FileSystemEvent, FileSystemEventHandler
from watchdog.observers import Observer

from codemap.indexer.scanner import FileScanner

console = Console(stderr=True)

BatchSink = Callable[[list[str]], None]

_RELEVANT_EVENTS = frozenset({"created", "modified", "deleted", "moved"})


class ChangeBatcher(threading.Thread):
    """Collects changed paths and flushes them as one batch after a quiet period.

    Each added path pushes the single deadline out by ``delay`` seconds. Once
    the deadline passes with no further additions the whole pending set is
    handed to ``sink`` as a sorted list.

    Usage::

        batcher = ChangeBatcher(1.5, queue.put)
        batcher.start()
        batcher.add("/project/src/app.py")
    """

    def __init__(self, delay: float, sink: BatchSink) -> None:
        super().__init__(name="codemap-batcher", daemon=True)
        self.delay = delay
        self._sink = sink
        self._cond = threading.Condition()
        self._pending: set[str] = set()
        self._deadline: float | None = None
        self._stopped = False

    @property
    def pending(self) -> int:
        with self._cond:
            return len(self._pending)

    def add(self, path: str) -> None:
        with self._cond:
            if self._stopped:
                return
            self._pending.add(path)
            self._deadline = time.monotonic() + self.delay
            self._cond.notify()

    def run(self) -> None:
        while True:
            batch = self._next_batch()
            if batch is None:
                return
            try:
                self._sink(batch)
            except Exception as exc:  # noqa: BLE001
                console.print(f"[yellow]Warning[/yellow]: Change batch dropped: {exc}")

    def stop(self) -> None:
        """Drop pending changes and end the thread. Safe to call repeatedly."""
        with self._cond:
            self._stopped = True
            self._pending.clear()
            self._deadline = None
            self._cond.notify()
        if self.is_alive() and threading.current_thread() is not self:
            self.join()

    def _next_batch(self) -> list[str] | None:
        """Block until the deadline passes (returns the batch) or stop() (returns None)."""
        with self._cond:
            while True:
                if self._stopped:
                    return None
                if self._deadline is None:
                    self._cond.wait()
                    continue
                remaining = self._deadline - time.monotonic()
                if remaining > 0:
                    self._cond.wait(remaining)
                    continue
                batch = sorted(self._pending)
                self._pending.clear()
                self._deadline = None
                return batch


class _EventHandler(FileSystemEventHandler):
    def __init__(self, watcher: FileWatcher) -> None:
        super().__init__()
        self._watcher = watcher

    def on_any_event(self, event: FileSystemEvent) -> None:
        if event.event_type not in _RELEVANT_EVENTS:
            return
        self._watcher.handle(event.event_type, os.fsdecode(event.src_path), event.is_directory)
        if event.event_type == "moved":
            dest = os.fsdecode(getattr(event, "dest_path", "") or "")
            if dest:
                self._watcher.handle("created", dest, event.is_directory)


class FileWatcher:
    """Watches a project tree and reports debounced batches of changed paths.

    Every non-ignored directory is watched individually and non-recursively,
    so ignored trees such as node_modules are never subscribed to. Directories
    created later are picked up as they appear. Symlinks are not followed.

    Usage::

        watcher = FileWatcher(scanner, on_batch=print)
        watcher.start()
        ...
        watcher.stop()
    """

    def __init__(
        self,
        scanner: FileScanner,
        on_batch: BatchSink,
        debounce_seconds: float = 1.5,
    ) -> None:
        """Initialize the watcher.

        Args:
            scanner: Supplies the project root, ignore rules and file filter.
            on_batch: Receives each flushed batch of absolute paths.
            debounce_seconds: Quiet period before a batch is flushed.
        """
        self._scanner = scanner
        self._root = scanner.project_dir
        self._batcher = ChangeBatcher(debounce_seconds, on_batch)
        self._observer = Observer()
        self._handler = _EventHandler(self)
        self._watches: dict[str, object] = {}
        self._lock = threading.Lock()
        self._started = False
        self._stopped = False

    @property
    def watched_dirs(self) -> list[str]:
        with self._lock:
            return sorted(self._watches)

    def start(self) -> None:
        if self._started:
            return
        self._started = True
        self._watch_tree(self._root)
        self._batcher.start()
        self._observer.start()
        console.print(
            f"[green]Watcher[/green] watching [bold]{len(self._watches)}[/bold] directories"
        )

    def stop(self) -> None:
        """Stop watching; pending changes are dropped. Safe to call repeatedly."""
        if self._stopped:
            return
        self._stopped = True
        self._batcher.stop()
        if self._started:
            self._observer.stop()
            self._observer.join()

    def handle(self, event_type: str, path: str, is_directory: bool) -> None:
        """Route one filesystem event; called from the observer thread."""
        if self._stopped:
            return
        if is_directory:
            self._handle_directory(event_type, path)
            return
        if event_type != "deleted" and os.path.islink(path):
            return
        if self._scanner.is_candidate(Path(path)):
            self._batcher.add(path)

    def _handle_directory(self, event_type: str, path: str) -> None:
        full = Path(path)
        if event_type == "created":
            if full.is_symlink() or not self._scanner.is_candidate(full, is_dir=True):
                return
            # Files may have landed before the new watch was in place.
            for file in self._watch_tree(full):
                self._batcher.add(str(file))
        elif event_type in ("deleted", "moved"):
            self._unwatch_tree(path)
            if self._scanner.is_candidate(full, is_dir=True):
                self._batcher.add(path)

    def _watch_tree(self, top: Path) -> list[Path]:
        """Schedule top and its non-ignored subdirectories; return candidate files found."""
        found: list[Path] = []
        for dirpath_str, dirnames, filenames in os.walk(top, followlinks=False):
            dirpath = Path(dirpath_str)
            dirnames[:] = [
                d
                for d in dirnames
                if not (dirpath / d).is_symlink()
                and self._scanner.is_candidate(dirpath / d, is_dir=True)
            ]
            self._schedule(dirpath_str)
            found.extend(
                dirpath / f
                for f in filenames
                if not (dirpath / f).is_symlink() and self._scanner.is_candidate(dirpath / f)
            )
        return found

    def _schedule(self, directory: str) -> None:
        with self._lock:
            if directory in self._watches:
                return
            try:
                self._watches[directory] = self._observer.schedule(
                    self._handler, directory, recursive=False
                )
            except OSError as exc:
                console.print(f"[yellow]Warning[/yellow]: Cannot watch {directory}: {exc}")

    def _unwatch_tree(self, directory: str) -> None:
        prefix = directory.rstrip(os.sep) + os.sep
        with self._lock:
            for path in [p for p in self._watches if p == directory or p.startswith(prefix)]:
                watch = self._watches.pop(path)
                try:
                    self._observer.unschedule(watch)
                except (KeyError, OSError):
                    pass
