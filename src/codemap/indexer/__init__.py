"""Source indexer: extraction, scanning, persistence, watching and search."""

from __future__ import annotations

from codemap.indexer.index import CodeIndex, IndexBuilder, SymbolKey
from codemap.indexer.parser import ExtractorRegistry, ImportEdge, ParseResult, Symbol
from codemap.indexer.scanner import FileInfo, FileScanner, IgnoreRules
from codemap.indexer.search import SearchEngine, SearchResult
from codemap.indexer.store import IndexStore
from codemap.indexer.watcher import ChangeBatcher, FileWatcher

__all__ = [
    "ChangeBatcher",
    "CodeIndex",
    "ExtractorRegistry",
    "FileInfo",
    "FileScanner",
    "FileWatcher",
    "IgnoreRules",
    "ImportEdge",
    "IndexBuilder",
    "IndexStore",
    "ParseResult",
    "SearchEngine",
    "SearchResult",
    "Symbol",
    "SymbolKey",
]
