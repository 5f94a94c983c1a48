"""Tests for debounced change batching and the file watcher."""

from __future__ import annotations

import threading
import time
from pathlib import Path

import pytest
from conftest import write

from codemap.indexer.scanner import FileScanner
from codemap.indexer.watcher import ChangeBatcher, FileWatcher


class BatchRecorder:
    """Thread-safe sink that remembers every batch it receives."""

    def __init__(self) -> None:
        self.batches: list[list[str]] = []
        self._event = threading.Event()
        self._lock = threading.Lock()

    def __call__(self, batch: list[str]) -> None:
        with self._lock:
            self.batches.append(batch)
        self._event.set()

    def wait(self, timeout: float = 5.0) -> bool:
        return self._event.wait(timeout)

    def wait_for(self, predicate, timeout: float = 10.0) -> bool:
        deadline = time.monotonic() + timeout
        while time.monotonic() < deadline:
            with self._lock:
                if predicate([p for b in self.batches for p in b]):
                    return True
            time.sleep(0.05)
        return False


@pytest.fixture
def recorder() -> BatchRecorder:
    return BatchRecorder()


class TestChangeBatcher:
    def test_burst_of_events_yields_one_batch(self, recorder: BatchRecorder) -> None:
        batcher = ChangeBatcher(0.3, recorder)
        batcher.start()
        try:
            for _ in range(5):
                batcher.add("/p/src/app.ts")
                time.sleep(0.05)
            assert recorder.wait()
            time.sleep(0.5)
        finally:
            batcher.stop()

        assert recorder.batches == [["/p/src/app.ts"]]

    def test_batch_is_sorted_and_deduplicated(self, recorder: BatchRecorder) -> None:
        batcher = ChangeBatcher(0.1, recorder)
        batcher.start()
        try:
            for path in ("/p/b.py", "/p/a.py", "/p/b.py"):
                batcher.add(path)
            assert recorder.wait()
        finally:
            batcher.stop()

        assert recorder.batches[0] == ["/p/a.py", "/p/b.py"]

    def test_deadline_extends_with_each_add(self, recorder: BatchRecorder) -> None:
        batcher = ChangeBatcher(0.4, recorder)
        batcher.start()
        try:
            start = time.monotonic()
            for _ in range(4):
                batcher.add("/p/x.py")
                time.sleep(0.2)
            assert recorder.wait()
            elapsed = time.monotonic() - start
        finally:
            batcher.stop()

        # Last add lands at ~0.6s, so the flush cannot happen before ~1.0s.
        assert elapsed >= 0.9
        assert len(recorder.batches) == 1

    def test_separate_bursts_yield_separate_batches(self, recorder: BatchRecorder) -> None:
        batcher = ChangeBatcher(0.1, recorder)
        batcher.start()
        try:
            batcher.add("/p/one.py")
            assert recorder.wait_for(lambda paths: "/p/one.py" in paths)
            batcher.add("/p/two.py")
            assert recorder.wait_for(lambda paths: "/p/two.py" in paths)
        finally:
            batcher.stop()

        assert recorder.batches == [["/p/one.py"], ["/p/two.py"]]

    def test_stop_drops_pending_and_is_idempotent(self, recorder: BatchRecorder) -> None:
        batcher = ChangeBatcher(5.0, recorder)
        batcher.start()
        batcher.add("/p/x.py")
        assert batcher.pending == 1

        batcher.stop()
        batcher.stop()

        assert not batcher.is_alive()
        assert batcher.pending == 0
        assert recorder.batches == []

    def test_add_after_stop_is_ignored(self, recorder: BatchRecorder) -> None:
        batcher = ChangeBatcher(0.1, recorder)
        batcher.start()
        batcher.stop()
        batcher.add("/p/x.py")

        assert batcher.pending == 0

    def test_sink_error_does_not_kill_thread(self, recorder: BatchRecorder) -> None:
        calls: list[list[str]] = []

        def sink(batch: list[str]) -> None:
            calls.append(batch)
            if len(calls) == 1:
                raise RuntimeError("boom")
            recorder(batch)

        batcher = ChangeBatcher(0.1, sink)
        batcher.start()
        try:
            batcher.add("/p/first.py")
            deadline = time.monotonic() + 5.0
            while not calls and time.monotonic() < deadline:
                time.sleep(0.02)
            batcher.add("/p/second.py")
            assert recorder.wait()
        finally:
            batcher.stop()

        assert recorder.batches == [["/p/second.py"]]


class TestFileWatcherRouting:
    """Event routing exercised through handle(), independent of OS notifications."""

    @pytest.fixture
    def watcher(self, sample_project: Path, recorder: BatchRecorder):
        watcher = FileWatcher(FileScanner(sample_project), recorder, debounce_seconds=0.1)
        watcher.start()
        yield watcher
        watcher.stop()

    def test_watches_only_non_ignored_directories(self, watcher: FileWatcher, sample_project: Path) -> None:
        watched = watcher.watched_dirs

        assert str(sample_project.resolve()) in watched
        assert str(sample_project.resolve() / "src") in watched
        assert not any("node_modules" in d for d in watched)
        assert not any(d.endswith("generated") for d in watched)
        assert not any(d.endswith("build") for d in watched)

    def test_source_file_change_is_batched(
        self, watcher: FileWatcher, sample_project: Path, recorder: BatchRecorder
    ) -> None:
        path = str(sample_project.resolve() / "src" / "auth.ts")
        watcher.handle("modified", path, False)

        assert recorder.wait_for(lambda paths: path in paths)

    def test_ignored_and_non_source_files_are_dropped(
        self, watcher: FileWatcher, sample_project: Path, recorder: BatchRecorder
    ) -> None:
        root = sample_project.resolve()
        watcher.handle("modified", str(root / "node_modules" / "lib" / "index.js"), False)
        watcher.handle("modified", str(root / "logo.png"), False)
        watcher.handle("modified", str(root / "static" / "app.min.js"), False)
        time.sleep(0.4)

        assert recorder.batches == []

    def test_deleted_file_is_reported(
        self, watcher: FileWatcher, sample_project: Path, recorder: BatchRecorder
    ) -> None:
        path = sample_project.resolve() / "src" / "config.py"
        path.unlink()
        watcher.handle("deleted", str(path), False)

        assert recorder.wait_for(lambda paths: str(path) in paths)

    def test_new_directory_is_watched_and_its_files_reported(
        self, watcher: FileWatcher, sample_project: Path, recorder: BatchRecorder
    ) -> None:
        root = sample_project.resolve()
        new_file = write(root, "lib/extra/util.py", "def util():\n    pass\n")
        watcher.handle("created", str(root / "lib"), True)

        assert str(root / "lib") in watcher.watched_dirs
        assert str(root / "lib" / "extra") in watcher.watched_dirs
        assert recorder.wait_for(lambda paths: str(new_file) in paths)

    def test_deleted_directory_is_unwatched_and_reported(
        self, watcher: FileWatcher, sample_project: Path, recorder: BatchRecorder
    ) -> None:
        src = str(sample_project.resolve() / "src")
        watcher.handle("deleted", src, True)

        assert src not in watcher.watched_dirs
        assert recorder.wait_for(lambda paths: src in paths)

    def test_stop_is_idempotent_and_silences_events(
        self, watcher: FileWatcher, sample_project: Path, recorder: BatchRecorder
    ) -> None:
        watcher.stop()
        watcher.stop()
        watcher.handle("modified", str(sample_project.resolve() / "src" / "auth.ts"), False)
        time.sleep(0.3)

        assert recorder.batches == []


class TestFileWatcherFilesystem:
    def test_real_edit_is_detected(self, sample_project: Path, recorder: BatchRecorder) -> None:
        watcher = FileWatcher(FileScanner(sample_project), recorder, debounce_seconds=0.5)
        watcher.start()
        try:
            target = sample_project.resolve() / "src" / "auth.ts"
            for i in range(5):
                target.write_text(f"export function v{i}() {{}}\n", encoding="utf-8")
                time.sleep(0.02)

            assert recorder.wait_for(lambda paths: str(target) in paths, timeout=10.0)
            time.sleep(0.5)
        finally:
            watcher.stop()

        batches_with_target = [b for b in recorder.batches if str(target) in b]
        assert len(batches_with_target) == 1
