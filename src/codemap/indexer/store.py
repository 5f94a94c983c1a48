"""MessagePack persistence of the code index under an exclusive file lock."""

from __future__ import annotations

import fcntl
import os
import tempfile
from collections.abc import Iterator
from contextlib import contextmanager
from pathlib import Path
from typing import Any

import msgpack
import numpy as np
from rich.console import Console

from codemap.exceptions import IndexStoreError
from codemap.indexer.index import SCHEMA_VERSION, CodeIndex, IndexMetadata, SymbolKey
from codemap.indexer.parser import ImportEdge, Symbol

console = Console(stderr=True)

_VECTOR_DTYPE = np.dtype("<f4")

_CORRUPT_ERRORS = (
    msgpack.exceptions.UnpackException,
    ValueError,
    TypeError,
    KeyError,
    IndexError,
    AttributeError,
)


class IndexStore:
    """Reads and writes a CodeIndex at a fixed path.

    Every load and save holds a blocking exclusive lock on ``<path>.lock`` so
    concurrent processes sharing one cache never observe a half-written file.

    Usage::

        store = IndexStore(config.index_path)
        index = store.load() or builder.build()
        store.save(index)
    """

    def __init__(self, path: Path) -> None:
        self.path = path
        self.lock_path = path.with_name(path.name + ".lock")

    def save(self, index: CodeIndex) -> None:
        """Persist index atomically.

        Raises:
            IndexStoreError: If the index cannot be encoded, the lock cannot be
                taken, or the write fails.
        """
        index.refresh_metadata()
        try:
            payload = msgpack.packb(_encode(index), use_bin_type=True)
        except (ValueError, TypeError) as exc:
            raise IndexStoreError(f"Cannot encode index {self.path}: {exc}") from exc

        with self._locked():
            tmp_name: str | None = None
            try:
                with tempfile.NamedTemporaryFile(
                    "wb", dir=self.path.parent, prefix=f".{self.path.name}.", delete=False
                ) as tmp:
                    tmp_name = tmp.name
                    tmp.write(payload)
                    tmp.flush()
                    os.fsync(tmp.fileno())
                os.replace(tmp_name, self.path)
            except OSError as exc:
                if tmp_name is not None and os.path.exists(tmp_name):
                    os.unlink(tmp_name)
                raise IndexStoreError(f"Cannot write index {self.path}: {exc}") from exc

    def load(self) -> CodeIndex | None:
        """Load the persisted index.

        Returns:
            The index, or None when the file is missing, corrupt, or was
            written with a different schema version.

        Raises:
            IndexStoreError: If the lock cannot be taken or the file cannot be read.
        """
        if not self.path.is_file():
            return None

        with self._locked():
            try:
                raw = self.path.read_bytes()
            except FileNotFoundError:
                return None
            except OSError as exc:
                raise IndexStoreError(f"Cannot read index {self.path}: {exc}") from exc

        try:
            data = msgpack.unpackb(raw, raw=False, strict_map_key=False)
            version = data.get("schema_version")
            if version != SCHEMA_VERSION:
                console.print(
                    f"[yellow]Warning[/yellow]: Index schema {version!r} does not match "
                    f"{SCHEMA_VERSION!r}; a full rebuild is required"
                )
                return None
            return _decode(data)
        except _CORRUPT_ERRORS as exc:
            console.print(f"[yellow]Warning[/yellow]: Corrupt index at {self.path}: {exc}")
            return None

    @contextmanager
    def _locked(self) -> Iterator[None]:
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            fd = os.open(self.lock_path, os.O_RDWR | os.O_CREAT, 0o644)
        except OSError as exc:
            raise IndexStoreError(f"Cannot open lock file {self.lock_path}: {exc}") from exc

        try:
            try:
                fcntl.flock(fd, fcntl.LOCK_EX)
            except OSError as exc:
                raise IndexStoreError(f"Cannot lock {self.lock_path}: {exc}") from exc
            try:
                yield
            finally:
                fcntl.flock(fd, fcntl.LOCK_UN)
        finally:
            os.close(fd)


def _encode(index: CodeIndex) -> dict[str, Any]:
    meta = index.metadata
    return {
        "schema_version": meta.schema_version,
        "built_at": meta.built_at,
        "file_count": meta.file_count,
        "symbol_count": meta.symbol_count,
        "symbols": [
            [file, [_encode_symbol(s) for s in symbols]]
            for file, symbols in index.symbols_by_file.items()
        ],
        "imports": [
            [file, [[e.source, list(e.imported), list(e.used_by)] for e in edges]]
            for file, edges in index.imports_by_file.items()
        ],
        "embeddings": [
            [list(key), None if vector is None else vector.astype(_VECTOR_DTYPE).tobytes()]
            for key, vector in index.embeddings.items()
        ],
    }


def _encode_symbol(symbol: Symbol) -> dict[str, Any]:
    return {
        "name": symbol.name,
        "kind": symbol.kind,
        "start_line": symbol.start_line,
        "end_line": symbol.end_line,
        "exported": symbol.exported,
        "signature": symbol.signature,
    }


def _decode(data: dict[str, Any]) -> CodeIndex:
    index = CodeIndex(
        metadata=IndexMetadata(
            schema_version=data["schema_version"],
            built_at=float(data["built_at"]),
            file_count=int(data["file_count"]),
            symbol_count=int(data["symbol_count"]),
        )
    )
    for file, symbols in data["symbols"]:
        index.symbols_by_file[file] = [
            Symbol(
                name=s["name"],
                kind=s["kind"],
                file=file,
                start_line=int(s["start_line"]),
                end_line=int(s["end_line"]),
                exported=bool(s["exported"]),
                signature=s.get("signature"),
            )
            for s in symbols
        ]
    for file, edges in data["imports"]:
        index.imports_by_file[file] = [
            ImportEdge(source=source, imported=tuple(imported), used_by=tuple(used_by))
            for source, imported, used_by in edges
        ]
    for (file, name, line), blob in data["embeddings"]:
        vector = None if blob is None else np.frombuffer(blob, dtype=_VECTOR_DTYPE).astype(np.float32)
        index.embeddings[SymbolKey(file, name, int(line))] = vector
    return index
