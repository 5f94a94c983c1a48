"""Code index model and builder: full scans, incremental updates, startup sync."""

from __future__ import annotations

import threading
import time
from collections.abc import Callable, Iterable, Iterator
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from pathlib import Path
from typing import NamedTuple

import numpy as np
from rich.console import Console

from codemap.exceptions import SyncCancelledError
from codemap.indexer.embeddings import EmbeddingService, symbol_embedding_text
from codemap.indexer.parser import ExtractorRegistry, ImportEdge, ParseResult, Symbol
from codemap.indexer.scanner import FileInfo, FileScanner

console = Console(stderr=True)

SCHEMA_VERSION = "1.0.0"


class SymbolKey(NamedTuple):
    """Composite identity of a symbol, used to correlate it with its embedding."""

    file: str
    name: str
    start_line: int

    @classmethod
    def of(cls, symbol: Symbol) -> SymbolKey:
        return cls(symbol.file, symbol.name, symbol.start_line)


@dataclass
class IndexMetadata:
    """Summary information stored alongside the index.

    Attributes:
        schema_version: Format version; a mismatch on load forces a rebuild.
        built_at: Epoch seconds of the last build or effective update.
        file_count: Distinct files holding symbols or imports.
        symbol_count: Total number of symbols.
    """

    schema_version: str = SCHEMA_VERSION
    built_at: float = 0.0
    file_count: int = 0
    symbol_count: int = 0


@dataclass
class CodeIndex:
    """In-memory symbol/import index of a project.

    Only files that yield at least one symbol or import are stored. An
    embedding value of None marks a vector that is explicitly absent and
    still to be computed.

    Attributes:
        symbols_by_file: Symbols per project-relative file, in line order.
        imports_by_file: Import edges per project-relative file.
        embeddings: Vectors of exported symbols keyed by SymbolKey.
        metadata: Schema version, build time and counts.
    """

    symbols_by_file: dict[str, list[Symbol]] = field(default_factory=dict)
    imports_by_file: dict[str, list[ImportEdge]] = field(default_factory=dict)
    embeddings: dict[SymbolKey, np.ndarray | None] = field(default_factory=dict)
    metadata: IndexMetadata = field(default_factory=IndexMetadata)

    def files(self) -> list[str]:
        """All indexed files: symbol files first, then import-only files."""
        seen = dict.fromkeys(self.symbols_by_file)
        seen.update(dict.fromkeys(self.imports_by_file))
        return list(seen)

    def iter_symbols(self) -> Iterator[Symbol]:
        for symbols in self.symbols_by_file.values():
            yield from symbols

    def refresh_metadata(self) -> None:
        """Recompute file and symbol counts from the stored entries."""
        self.metadata.file_count = len(self.files())
        self.metadata.symbol_count = sum(len(s) for s in self.symbols_by_file.values())

    def remove_file(self, file: str) -> bool:
        """Drop every symbol, import and embedding entry of a file.

        Returns:
            True if anything was removed.
        """
        removed = self.symbols_by_file.pop(file, None) is not None
        removed = self.imports_by_file.pop(file, None) is not None or removed
        return self.drop_embeddings(file) > 0 or removed

    def drop_embeddings(self, file: str) -> int:
        """Delete every embedding entry of a file and return how many there were."""
        keys = [k for k in self.embeddings if k.file == file]
        for key in keys:
            del self.embeddings[key]
        return len(keys)

    def missing_embeddings(self) -> list[SymbolKey]:
        return [key for key, vector in self.embeddings.items() if vector is None]

    def merge_embeddings(self, vectors: dict[SymbolKey, np.ndarray]) -> int:
        """Fill absent embeddings for keys that are still indexed.

        Returns:
            Number of entries filled.
        """
        filled = 0
        for key, vector in vectors.items():
            if key in self.embeddings and self.embeddings[key] is None:
                self.embeddings[key] = vector
                filled += 1
        return filled

    def find_symbol(self, key: SymbolKey) -> Symbol | None:
        for symbol in self.symbols_by_file.get(key.file, []):
            if symbol.name == key.name and symbol.start_line == key.start_line:
                return symbol
        return None

    def exports_of(self, file: str) -> list[str]:
        return [s.name for s in self.symbols_by_file.get(file, []) if s.exported]

    def copy(self) -> CodeIndex:
        """Shallow copy whose dicts can be mutated without touching the original."""
        return CodeIndex(
            symbols_by_file=dict(self.symbols_by_file),
            imports_by_file=dict(self.imports_by_file),
            embeddings=dict(self.embeddings),
            metadata=IndexMetadata(**vars(self.metadata)),
        )


@dataclass
class ScanProgress:
    """Progress of a full scan, reported after each file."""

    processed_files: int = 0
    total_files: int = 0
    total_symbols: int = 0


@dataclass
class FileUpdate:
    """Prepared replacement entries for one file.

    Attributes:
        file: Project-relative path.
        symbols: New symbols (empty when the file was removed).
        imports: New import edges.
        embeddings: Vectors for the new exported symbols.
        removed: The file no longer exists or is no longer indexable.
        unchanged: Extraction matches the stored entries; nothing to apply.
    """

    file: str
    symbols: list[Symbol] = field(default_factory=list)
    imports: list[ImportEdge] = field(default_factory=list)
    embeddings: dict[SymbolKey, np.ndarray | None] = field(default_factory=dict)
    removed: bool = False
    unchanged: bool = False


@dataclass
class UpdateSummary:
    """Result of applying a batch of file updates."""

    updated: list[str] = field(default_factory=list)
    removed: list[str] = field(default_factory=list)
    unchanged: int = 0

    @property
    def changed(self) -> bool:
        return bool(self.updated or self.removed)


ProgressCallback = Callable[[ScanProgress], None]


class IndexBuilder:
    """Builds and maintains a CodeIndex for one project tree."""

    def __init__(
        self,
        scanner: FileScanner,
        registry: ExtractorRegistry | None = None,
        embedder: EmbeddingService | None = None,
        workers: int = 1,
        verbose: bool = False,
    ) -> None:
        """Initialize the builder.

        Args:
            scanner: Discovers eligible files and owns the ignore rules.
            registry: Extractor registry used for every file.
            embedder: Optional embedding service for exported symbols.
            workers: Extraction threads used by full scans.
            verbose: Print per-file diagnostics.
        """
        self._scanner = scanner
        self._project_dir = scanner.project_dir
        self._registry = registry or ExtractorRegistry()
        self._embedder = embedder
        self._workers = max(1, workers)
        self._verbose = verbose

    @property
    def scanner(self) -> FileScanner:
        return self._scanner

    def relative(self, path: Path | str) -> str | None:
        """Normalise an absolute or project-relative path to a POSIX relative one."""
        return self._scanner.ignore_rules.relative(path) or None

    def build(self, progress: ProgressCallback | None = None) -> CodeIndex:
        """Full scan into a fresh index.

        Args:
            progress: Called with the running ScanProgress after each file.

        Returns:
            The newly built CodeIndex.
        """
        console.print("[bold blue]Indexer[/bold blue] building source code index...")

        files = self._scanner.scan()
        state = ScanProgress(total_files=len(files))
        index = CodeIndex()

        for fi, result in self._extract_all(files):
            if result.symbols:
                index.symbols_by_file[fi.path] = result.symbols
                index.embeddings.update(self._embed_symbols(result.symbols))
            if result.imports:
                index.imports_by_file[fi.path] = result.imports

            state.processed_files += 1
            state.total_symbols += len(result.symbols)
            if progress is not None:
                progress(state)

        index.metadata.built_at = time.time()
        index.refresh_metadata()
        console.print(
            f"[green]Indexer[/green] indexed [bold]{index.metadata.symbol_count}[/bold] "
            f"symbols across [bold]{index.metadata.file_count}[/bold] files"
        )
        return index

    def update(self, index: CodeIndex, paths: Iterable[Path | str]) -> UpdateSummary:
        """Re-extract the given paths and splice the results into index."""
        return self.apply_updates(index, self.prepare_updates(index, paths))

    def prepare_updates(
        self,
        index: CodeIndex,
        paths: Iterable[Path | str],
        budget: float | None = None,
    ) -> list[FileUpdate]:
        """Extract changed files without mutating the index.

        The index is only read. Embeddings are reused for symbols whose name
        and signature are unchanged; new vectors are computed until budget
        seconds have elapsed, after which they are left absent.

        Args:
            index: Index the updates will be applied to.
            paths: Changed paths, absolute or project-relative.
            budget: Seconds allowed for embedding work, or None for no limit.

        Returns:
            One FileUpdate per distinct path inside the project.
        """
        deadline = None if budget is None else time.monotonic() + budget
        rels: set[str] = set()
        for path in paths:
            rel = self.relative(path)
            if not rel:
                continue
            rels.add(rel)
            if rel not in index.symbols_by_file and rel not in index.imports_by_file:
                # A removed or renamed directory takes its indexed files with it.
                prefix = rel + "/"
                rels.update(f for f in index.files() if f.startswith(prefix))
        return [self._prepare_file(index, rel, deadline) for rel in sorted(rels)]

    def apply_updates(self, index: CodeIndex, updates: list[FileUpdate]) -> UpdateSummary:
        """Splice prepared updates into index.

        Existing files keep their position in the index. Metadata is
        recomputed and built_at advanced only when something changed.
        """
        summary = UpdateSummary()
        for upd in updates:
            if upd.unchanged:
                summary.unchanged += 1
                continue

            if upd.removed:
                index.remove_file(upd.file)
                summary.removed.append(upd.file)
                continue

            index.drop_embeddings(upd.file)
            _store(index.symbols_by_file, upd.file, upd.symbols)
            _store(index.imports_by_file, upd.file, upd.imports)
            index.embeddings.update(upd.embeddings)
            summary.updated.append(upd.file)

        if summary.changed:
            index.metadata.built_at = time.time()
            index.refresh_metadata()
            if self._verbose:
                console.print(
                    f"[green]Indexer[/green] updated {len(summary.updated)} file(s), "
                    f"removed {len(summary.removed)}"
                )
        return summary

    def validate_and_sync(
        self, index: CodeIndex, cancel: threading.Event | None = None
    ) -> CodeIndex:
        """Reconcile a loaded index with the files currently on disk.

        Detects files removed, added, or modified (mtime newer than the
        index's built_at) and returns an updated copy; index itself is not
        modified.

        Args:
            index: Index loaded from the store.
            cancel: Checked between files; when set the sync is abandoned.

        Returns:
            The reconciled index.

        Raises:
            SyncCancelledError: If cancel was set before the sync finished.
        """
        synced = index.copy()
        built_at = synced.metadata.built_at
        indexed = set(synced.files())
        current: dict[str, FileInfo] = {fi.path: fi for fi in self._scanner.scan()}

        stale = [f for f in indexed if f not in current]
        for path, fi in current.items():
            if path not in indexed or fi.mtime > built_at:
                stale.append(path)

        updates: list[FileUpdate] = []
        for rel in sorted(stale):
            if cancel is not None and cancel.is_set():
                raise SyncCancelledError(
                    f"Sync cancelled after {len(updates)}/{len(stale)} files"
                )
            updates.append(self._prepare_file(synced, rel, None))

        summary = self.apply_updates(synced, updates)
        if summary.changed:
            console.print(
                f"[green]Indexer[/green] synced index: {len(summary.updated)} updated, "
                f"{len(summary.removed)} removed"
            )
        return synced

    def backfill_embeddings(
        self, index: CodeIndex, budget: float | None = None
    ) -> dict[SymbolKey, np.ndarray]:
        """Compute vectors for embeddings marked absent, without mutating index.

        Args:
            index: Index to read absent keys and symbols from.
            budget: Seconds allowed for embedding work, or None for no limit.

        Returns:
            Computed vectors; merge them with CodeIndex.merge_embeddings.
        """
        if self._embedder is None or not self._embedder.ensure_available():
            return {}

        deadline = None if budget is None else time.monotonic() + budget
        vectors: dict[SymbolKey, np.ndarray] = {}
        for key in index.missing_embeddings():
            if deadline is not None and time.monotonic() >= deadline:
                break
            symbol = index.find_symbol(key)
            if symbol is None:
                continue
            vector = self._embedder.embed(symbol_embedding_text(symbol))
            if vector is not None:
                vectors[key] = vector
        return vectors

    # ------------------------------------------------------------------
    # Private helpers
    # ------------------------------------------------------------------

    def _extract(self, fi: FileInfo) -> ParseResult:
        result = self._registry.extract_file(self._project_dir / fi.path, fi.language, fi.path)
        if not result.ok:
            console.print(f"[yellow]Warning[/yellow]: Skipping {fi.path}: {result.error}")
        return result

    def _extract_all(self, files: list[FileInfo]) -> Iterator[tuple[FileInfo, ParseResult]]:
        """Extract files in path order, optionally on a thread pool."""
        if self._workers == 1 or len(files) < 2:
            for fi in files:
                yield fi, self._extract(fi)
            return
        with ThreadPoolExecutor(max_workers=self._workers) as pool:
            yield from zip(files, pool.map(self._extract, files))

    def _prepare_file(self, index: CodeIndex, rel: str, deadline: float | None) -> FileUpdate:
        fi = self._scanner.describe(Path(rel))
        if fi is None:
            known = rel in index.symbols_by_file or rel in index.imports_by_file
            return FileUpdate(file=rel, removed=True, unchanged=not known)

        result = self._extract(fi)
        old_symbols = index.symbols_by_file.get(rel, [])
        old_imports = index.imports_by_file.get(rel, [])
        if result.symbols == old_symbols and result.imports == old_imports:
            return FileUpdate(file=rel, unchanged=True)

        reuse: dict[tuple[str, str | None], np.ndarray] = {}
        for symbol in old_symbols:
            vector = index.embeddings.get(SymbolKey.of(symbol))
            if vector is not None:
                reuse[(symbol.name, symbol.signature)] = vector

        return FileUpdate(
            file=rel,
            symbols=result.symbols,
            imports=result.imports,
            embeddings=self._embed_symbols(result.symbols, reuse, deadline),
        )

    def _embed_symbols(
        self,
        symbols: list[Symbol],
        reuse: dict[tuple[str, str | None], np.ndarray] | None = None,
        deadline: float | None = None,
    ) -> dict[SymbolKey, np.ndarray | None]:
        """Vectors for exported symbols; None where none could be computed in time."""
        if self._embedder is None:
            return {}

        vectors: dict[SymbolKey, np.ndarray | None] = {}
        for symbol in symbols:
            if not symbol.exported:
                continue
            vector = (reuse or {}).get((symbol.name, symbol.signature))
            if vector is None and (deadline is None or time.monotonic() < deadline):
                vector = self._embedder.embed(symbol_embedding_text(symbol))
            vectors[SymbolKey.of(symbol)] = vector
        return vectors


def _store(mapping: dict, key: str, values: list) -> None:
    """Set or drop a per-file entry so empty lists are never stored."""
    if values:
        mapping[key] = values
    else:
        mapping.pop(key, None)
