"""CodeMapService: owns the live index and answers queries against it.

One service instance wires the scanner, builder, store, watcher, embedding
service and search engine together. Queries never raise; they return a
QueryResult describing success or the reason for failure.
"""

from __future__ import annotations

import queue
import threading
from collections.abc import Collection, Iterable, Iterator
from concurrent.futures import ThreadPoolExecutor
from concurrent.futures import TimeoutError as FuturesTimeout
from contextlib import contextmanager
from dataclasses import asdict, dataclass
from pathlib import Path
from typing import TYPE_CHECKING, Any

from rich.console import Console

from codemap.config import CodeMapConfig
from codemap.exceptions import IndexStoreError, SearchError
from codemap.indexer.embeddings import (
    EmbeddingProvider,
    EmbeddingService,
    SentenceTransformerProvider,
)
from codemap.indexer.imports import file_imports, find_importers, symbol_import_usage
from codemap.indexer.index import CodeIndex, IndexBuilder, ScanProgress, UpdateSummary
from codemap.indexer.parser import ExtractorRegistry
from codemap.indexer.scanner import FileScanner, IgnoreRules
from codemap.indexer.search import DEFAULT_LIMIT, SearchEngine
from codemap.indexer.store import IndexStore
from codemap.indexer.watcher import FileWatcher

if TYPE_CHECKING:
    import numpy as np

console = Console(stderr=True)

_IDLE_BACKFILL_SECONDS = 60.0


class ReadWriteLock:
    """Writer-preferring readers/writer lock. Not reentrant."""

    def __init__(self) -> None:
        self._cond = threading.Condition()
        self._readers = 0
        self._writer = False
        self._writers_waiting = 0

    @contextmanager
    def read(self) -> Iterator[None]:
        with self._cond:
            while self._writer or self._writers_waiting:
                self._cond.wait()
            self._readers += 1
        try:
            yield
        finally:
            with self._cond:
                self._readers -= 1
                if self._readers == 0:
                    self._cond.notify_all()

    @contextmanager
    def write(self) -> Iterator[None]:
        with self._cond:
            self._writers_waiting += 1
            try:
                while self._writer or self._readers:
                    self._cond.wait()
            finally:
                self._writers_waiting -= 1
            self._writer = True
        try:
            yield
        finally:
            with self._cond:
                self._writer = False
                self._cond.notify_all()


@dataclass
class QueryResult:
    """Outcome of a query at the service boundary.

    Attributes:
        success: Whether the query succeeded.
        data: Query payload on success.
        error: Error description on failure.
        progress: Scan progress, set while a full scan is running.
    """

    success: bool
    data: Any = None
    error: str | None = None
    progress: dict[str, int] | None = None

    def to_dict(self) -> dict[str, Any]:
        result: dict[str, Any] = {"success": self.success}
        if self.success:
            result["data"] = self.data
        else:
            result["error"] = self.error
        if self.progress is not None:
            result["progress"] = self.progress
        return result


@dataclass
class IndexingProgress:
    """Whether a full scan is running and how far it got."""

    is_indexing: bool = False
    processed: int = 0
    total: int = 0

    @property
    def percent(self) -> int:
        if self.total == 0:
            return 0
        return round(self.processed * 100 / self.total)


class CodeMapService:
    """Live index of one project with search and import-graph queries.

    Usage::

        service = CodeMapService(load_config(Path.cwd()))
        service.start()
        result = service.search("parse config")
        service.stop()
    """

    def __init__(
        self,
        config: CodeMapConfig,
        embedding_provider: EmbeddingProvider | None = None,
        registry: ExtractorRegistry | None = None,
    ) -> None:
        """Wire the service's collaborators from config.

        Args:
            config: Resolved configuration.
            embedding_provider: Overrides the sentence-transformers provider.
            registry: Overrides the default extractor registry.
        """
        self.config = config
        project_dir = config.project_dir.resolve()

        extra = [*config.extra_ignore, f"/{config.cache_dir.as_posix().strip('/')}/"]
        self._ignore = IgnoreRules.for_project(project_dir, extra)
        self._scanner = FileScanner(
            project_dir,
            ignore_rules=self._ignore,
            registry=registry,
            max_file_size=config.max_file_size,
            verbose=config.verbose,
        )

        self._embedder: EmbeddingService | None = None
        if config.embeddings_enabled:
            provider = embedding_provider or SentenceTransformerProvider(config.embedding_model)
            self._embedder = EmbeddingService(provider, config.embedding_retry_seconds)

        self._builder = IndexBuilder(
            self._scanner,
            registry=registry,
            embedder=self._embedder,
            workers=config.scan_workers,
            verbose=config.verbose,
        )
        self._store = IndexStore(config.index_path)
        self._engine = SearchEngine(embed_query=self._embed_query)

        self._index: CodeIndex | None = None
        self._lock = ReadWriteLock()
        self._progress = IndexingProgress()
        self._progress_lock = threading.Lock()

        self._changes: queue.Queue[list[str] | None] = queue.Queue()
        self._watcher: FileWatcher | None = None
        self._worker: threading.Thread | None = None
        self._running = False

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    @property
    def index(self) -> CodeIndex | None:
        return self._index

    @property
    def store(self) -> IndexStore:
        return self._store

    @property
    def builder(self) -> IndexBuilder:
        return self._builder

    def start(self, watch: bool = True) -> None:
        """Load (or build) the index, then optionally begin watching for changes."""
        if self._running:
            return
        if self._embedder is not None:
            self._embedder.initialize()
        self.load_or_build()

        self._running = True
        if watch:
            self._worker = threading.Thread(
                target=self._run_updates, name="codemap-updates", daemon=True
            )
            self._worker.start()
            self._watcher = FileWatcher(
                self._scanner, self._changes.put, self.config.debounce_seconds
            )
            self._watcher.start()

    def stop(self) -> None:
        """Stop watching; an in-flight update batch finishes first. Idempotent."""
        if not self._running:
            return
        self._running = False
        if self._watcher is not None:
            self._watcher.stop()
            self._watcher = None
        if self._worker is not None:
            self._changes.put(None)
            self._worker.join()
            self._worker = None

    def __enter__(self) -> CodeMapService:
        self.start()
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.stop()

    def load_or_build(self) -> CodeIndex:
        """Use the persisted index, reconciled with disk, or build a new one."""
        try:
            loaded = self._store.load()
        except IndexStoreError as exc:
            console.print(f"[yellow]Warning[/yellow]: {exc}; rebuilding index")
            loaded = None

        if loaded is None:
            return self.rebuild()

        index = self._sync_with_timeout(loaded)
        with self._lock.write():
            self._index = index
        if index is not loaded:
            self._save(index)
        return index

    def rebuild(self) -> CodeIndex:
        """Run a full scan, swap the result in, and persist it."""
        with self._progress_lock:
            self._progress = IndexingProgress(is_indexing=True)
        try:
            index = self._builder.build(progress=self._on_progress)
        finally:
            with self._progress_lock:
                self._progress.is_indexing = False

        with self._lock.write():
            self._index = index
        self._save(index)
        return index

    def apply_changes(self, paths: Iterable[Path | str]) -> UpdateSummary:
        """Re-extract changed paths and splice the results into the live index.

        Extraction and embedding run without holding the lock; only the
        update worker mutates the live index, so reading it here is safe.
        """
        index = self._index
        if index is None:
            return UpdateSummary()

        updates = self._builder.prepare_updates(
            index, paths, budget=self.config.embedding_timeout
        )
        with self._lock.write():
            summary = self._builder.apply_updates(index, updates)

        filled = self._backfill(index)
        if summary.changed or filled:
            self._save(index)
        return summary

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def search(
        self,
        query: str,
        mode: str = "combined",
        kinds: Collection[str] | None = None,
        exported_only: bool = False,
        limit: int = DEFAULT_LIMIT,
    ) -> QueryResult:
        """Ranked symbol search; see SearchEngine.search for the modes."""
        not_ready = self._not_ready()
        if not_ready is not None:
            return not_ready
        if not query:
            return QueryResult(success=False, error="Query parameter is required")

        if mode == "semantic" and not self._embeddings_available():
            return QueryResult(success=False, error=self._semantic_unavailable_message())

        try:
            with self._lock.read():
                results = self._engine.search(
                    self._index, query, mode=mode, kinds=kinds,
                    exported_only=exported_only, limit=limit,
                )
        except SearchError as exc:
            return QueryResult(success=False, error=str(exc))
        return QueryResult(success=True, data=[r.to_dict() for r in results])

    def get_file_info(self, filepath: str) -> QueryResult:
        """Symbols, imports and exported names of one file."""
        not_ready = self._not_ready()
        if not_ready is not None:
            return not_ready
        if not filepath:
            return QueryResult(success=False, error="filepath parameter is required")

        file = self._normalize(filepath)
        with self._lock.read():
            symbols = list(self._index.symbols_by_file.get(file, []))
            imports = list(self._index.imports_by_file.get(file, []))
            exports = self._index.exports_of(file)
        return QueryResult(
            success=True,
            data={
                "file": file,
                "symbols": [asdict(s) for s in symbols],
                "imports": [asdict(e) for e in imports],
                "exports": exports,
            },
        )

    def query_imports(
        self,
        filepath: str | None = None,
        imported_module: str | None = None,
        symbol: str | None = None,
    ) -> QueryResult:
        """Import edges of a file, the importers of a module, or the edges a symbol uses."""
        not_ready = self._not_ready()
        if not_ready is not None:
            return not_ready
        if not filepath and not imported_module:
            return QueryResult(
                success=False,
                error="Either filepath or imported_module parameter is required",
            )

        if filepath:
            file = self._normalize(filepath)
            with self._lock.read():
                if symbol:
                    found = symbol_import_usage(self._index, file, symbol)
                else:
                    found = file_imports(self._index, file)
            if found is None:
                if symbol:
                    return QueryResult(
                        success=False, error=f"No imports used by {symbol} in file: {file}"
                    )
                return QueryResult(success=False, error=f"No imports found for file: {file}")
            return QueryResult(success=True, data=found.to_dict())

        with self._lock.read():
            importers = find_importers(self._index, imported_module)
        if not importers:
            return QueryResult(
                success=False, error=f"No files found importing: {imported_module}"
            )
        return QueryResult(success=True, data=[f.to_dict() for f in importers])

    def status(self) -> QueryResult:
        """Index statistics and embedding availability."""
        with self._progress_lock:
            progress = IndexingProgress(**vars(self._progress))

        data: dict[str, Any] = {
            "project": str(self.config.project_dir),
            "index_path": str(self.config.index_path),
            "indexing": progress.is_indexing,
            "embeddings_enabled": self._embedder is not None,
            "embeddings_available": self._embedder is not None and self._embedder.available,
        }
        if self._index is not None:
            with self._lock.read():
                meta = self._index.metadata
                data.update(
                    files=meta.file_count,
                    symbols=meta.symbol_count,
                    built_at=meta.built_at,
                    embeddings=len(self._index.embeddings),
                    missing_embeddings=len(self._index.missing_embeddings()),
                )
        return QueryResult(success=True, data=data)

    # ------------------------------------------------------------------
    # Private helpers
    # ------------------------------------------------------------------

    def _not_ready(self) -> QueryResult | None:
        with self._progress_lock:
            progress = IndexingProgress(**vars(self._progress))
        if progress.is_indexing:
            return QueryResult(
                success=False,
                error=(
                    f"Indexing in progress: {progress.percent}% "
                    f"({progress.processed}/{progress.total} files), "
                    "try again in a few seconds"
                ),
                progress={"processed": progress.processed, "total": progress.total},
            )
        if self._index is None:
            return QueryResult(success=False, error="Index not initialized")
        return None

    def _on_progress(self, state: ScanProgress) -> None:
        with self._progress_lock:
            self._progress.processed = state.processed_files
            self._progress.total = state.total_files

    def _normalize(self, filepath: str) -> str:
        return self._builder.relative(filepath) or filepath

    def _embeddings_available(self) -> bool:
        return self._embedder is not None and self._embedder.ensure_available()

    def _semantic_unavailable_message(self) -> str:
        if self._embedder is None:
            return (
                "Semantic search unavailable - embeddings are disabled. "
                "Use mode='exact' or mode='fuzzy' instead."
            )
        return (
            "Semantic search unavailable - embeddings model failed to load. "
            f"Retrying in {self._embedder.minutes_until_retry()} minutes. "
            "Use mode='exact' or mode='fuzzy' instead."
        )

    def _embed_query(self, text: str) -> np.ndarray | None:
        if not self._embeddings_available():
            return None
        return self._embedder.embed(text)

    def _sync_with_timeout(self, loaded: CodeIndex) -> CodeIndex:
        """Reconcile loaded with disk; keep it unchanged on timeout or error."""
        cancel = threading.Event()
        pool = ThreadPoolExecutor(max_workers=1, thread_name_prefix="codemap-sync")
        future = pool.submit(self._builder.validate_and_sync, loaded, cancel)
        try:
            return future.result(timeout=self.config.sync_timeout)
        except FuturesTimeout:
            cancel.set()
            console.print(
                f"[yellow]Warning[/yellow]: Index sync exceeded {self.config.sync_timeout:g}s; "
                "using the stored index"
            )
            return loaded
        except Exception as exc:  # noqa: BLE001
            console.print(f"[yellow]Warning[/yellow]: Index sync failed: {exc}; using the stored index")
            return loaded
        finally:
            pool.shutdown(wait=False)

    def _backfill(self, index: CodeIndex) -> int:
        if self._embedder is None or not index.missing_embeddings():
            return 0
        vectors = self._builder.backfill_embeddings(index, budget=self.config.embedding_timeout)
        if not vectors:
            return 0
        with self._lock.write():
            return index.merge_embeddings(vectors)

    def _save(self, index: CodeIndex) -> None:
        try:
            with self._lock.read():
                self._store.save(index)
        except IndexStoreError as exc:
            console.print(f"[yellow]Warning[/yellow]: {exc}")

    def _run_updates(self) -> None:
        while True:
            try:
                batch = self._changes.get(timeout=_IDLE_BACKFILL_SECONDS)
            except queue.Empty:
                self._idle_backfill()
                continue
            if batch is None:
                return
            try:
                summary = self.apply_changes(batch)
            except Exception as exc:  # noqa: BLE001
                console.print(f"[yellow]Warning[/yellow]: Update of {len(batch)} path(s) failed: {exc}")
                continue
            if summary.changed:
                console.print(
                    f"[green]codemap[/green] reindexed {len(summary.updated)} file(s), "
                    f"removed {len(summary.removed)}"
                )

    def _idle_backfill(self) -> None:
        index = self._index
        if index is not None and self._backfill(index):
            self._save(index)
