"""File discovery engine that walks a project tree respecting ignore rules."""

from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path
from typing import Final

import pathspec
from rich.console import Console

from codemap.exceptions import IndexerError
from codemap.indexer.languages import is_potentially_text, language_for
from codemap.indexer.parser import ExtractorRegistry

console = Console(stderr=True)

_MAX_FILE_SIZE = 1_048_576  # 1 MB

STANDARD_IGNORE_PATTERNS: Final[tuple[str, ...]] = (
    "node_modules/",
    ".venv/",
    "venv/",
    "env/",
    "__pycache__/",
    "vendor/",
    "target/",
    "dist/",
    "build/",
    "coverage/",
    "htmlcov/",
    ".git/",
    ".hg/",
    ".svn/",
    ".next/",
    ".nuxt/",
    ".tox/",
    ".eggs/",
    "*.egg-info/",
    ".mypy_cache/",
    ".pytest_cache/",
    ".ruff_cache/",
    ".codemap/",
    "*.min.js",
    "*.bundle.js",
)


class IgnoreRules:
    """Gitignore-style matcher shared by the scanner and the file watcher.

    Combines the standard excludes, the project's .gitignore and any extra
    patterns into one pathspec.
    """

    def __init__(self, project_dir: Path, patterns: list[str]) -> None:
        self._project_dir = project_dir.resolve()
        self.patterns = patterns
        self._spec = pathspec.GitIgnoreSpec.from_lines(patterns)

    @classmethod
    def for_project(cls, project_dir: Path, extra: list[str] | None = None) -> IgnoreRules:
        """Build rules from the standard excludes, .gitignore and extra patterns."""
        patterns = [*STANDARD_IGNORE_PATTERNS, *_load_gitignore(project_dir), *(extra or [])]
        return cls(project_dir, patterns)

    def relative(self, path: Path | str) -> str | None:
        """Return path relative to the project root (POSIX), or None if outside it."""
        candidate = Path(path)
        if not candidate.is_absolute():
            candidate = self._project_dir / candidate
        candidate = Path(os.path.normpath(candidate))
        try:
            rel = candidate.relative_to(self._project_dir)
        except ValueError:
            return None
        return rel.as_posix() if str(rel) != "." else ""

    def is_ignored(self, path: Path | str, is_dir: bool = False) -> bool:
        """Check whether path is excluded; paths outside the root always are."""
        rel = self.relative(path)
        if rel is None:
            return True
        if rel == "":
            return False
        return self._spec.match_file(f"{rel}/" if is_dir else rel)


def _load_gitignore(project_dir: Path) -> list[str]:
    """Load .gitignore patterns, returning empty list if missing."""
    gitignore_path = project_dir / ".gitignore"
    if not gitignore_path.is_file():
        return []

    lines: list[str] = []
    try:
        text = gitignore_path.read_text(encoding="utf-8", errors="replace")
    except OSError as exc:
        console.print(f"[yellow]Warning[/yellow]: Cannot read {gitignore_path}: {exc}")
        return []
    for raw_line in text.splitlines():
        line = raw_line.rstrip()
        if line.strip() and not line.lstrip().startswith("#"):
            lines.append(line)
    return lines


@dataclass(frozen=True, slots=True)
class FileInfo:
    """Metadata for a single discovered source file.

    Attributes:
        path: File path relative to the project root (POSIX separators).
        language: Detected language identifier, or None for unknown types.
        size: File size in bytes.
        mtime: Last modification time (epoch seconds).
    """

    path: str
    language: str | None
    size: int
    mtime: float


class FileScanner:
    """Discovers indexable files in a project, respecting ignore rules.

    Usage::

        scanner = FileScanner(Path("/my/project"))
        files = scanner.scan()
    """

    def __init__(
        self,
        project_dir: Path,
        ignore_rules: IgnoreRules | None = None,
        registry: ExtractorRegistry | None = None,
        max_file_size: int = _MAX_FILE_SIZE,
        verbose: bool = False,
    ) -> None:
        """Initialize the scanner.

        Args:
            project_dir: Path to the project root.
            ignore_rules: Shared ignore matcher; built from the project if omitted.
            registry: Used to skip languages that never yield symbols.
            max_file_size: Larger files are skipped.
            verbose: Print per-entry diagnostics.

        Raises:
            IndexerError: If project_dir does not exist.
        """
        self._project_dir = project_dir.resolve()
        if not self._project_dir.is_dir():
            raise IndexerError(f"Project directory does not exist: {self._project_dir}")
        self.ignore_rules = ignore_rules or IgnoreRules.for_project(self._project_dir)
        self._registry = registry or ExtractorRegistry()
        self._max_file_size = max_file_size
        self._verbose = verbose

    @property
    def project_dir(self) -> Path:
        return self._project_dir

    def scan(self) -> list[FileInfo]:
        """Walk the project tree and return indexable files.

        Unreadable directories and files are skipped with a warning.

        Returns:
            A list of FileInfo instances sorted by path.
        """
        results: list[FileInfo] = []
        for dirpath_str, dirnames, filenames in os.walk(
            self._project_dir, topdown=True, onerror=self._on_walk_error, followlinks=False
        ):
            dirpath = Path(dirpath_str)

            dirnames[:] = sorted(
                d
                for d in dirnames
                if not (dirpath / d).is_symlink()
                and not self.ignore_rules.is_ignored(dirpath / d, is_dir=True)
            )

            for fname in filenames:
                info = self.describe(dirpath / fname)
                if info is not None:
                    results.append(info)

        results.sort(key=lambda fi: fi.path)
        console.print(f"[green]Scanner[/green] found [bold]{len(results)}[/bold] source files")
        return results

    def describe(self, path: Path) -> FileInfo | None:
        """Return FileInfo if path is an indexable file, otherwise None.

        Args:
            path: Absolute or project-relative file path.
        """
        full = path if path.is_absolute() else self._project_dir / path
        rel = self.ignore_rules.relative(full)
        if not rel or self.ignore_rules.is_ignored(full):
            return None
        try:
            rel.encode("utf-8")
        except UnicodeEncodeError:
            console.print(f"[yellow]Warning[/yellow]: Skipping {rel!r}: file name is not valid UTF-8")
            return None
        if not is_potentially_text(full):
            return None

        language = language_for(full)
        if not self._registry.extracts(language):
            return None

        try:
            if full.is_symlink() or not full.is_file():
                return None
            stat = full.stat()
        except OSError as exc:
            if self._verbose:
                console.print(f"[yellow]Warning[/yellow]: Skipping {rel}: {exc}")
            return None

        if stat.st_size > self._max_file_size:
            return None
        return FileInfo(path=rel, language=language, size=stat.st_size, mtime=stat.st_mtime)

    def is_candidate(self, path: Path, is_dir: bool = False) -> bool:
        """Cheap filter for paths that may need reindexing, even if already deleted."""
        if self.ignore_rules.is_ignored(path, is_dir=is_dir):
            return False
        if is_dir:
            return True
        return is_potentially_text(path) and self._registry.extracts(language_for(path))

    @staticmethod
    def _on_walk_error(exc: OSError) -> None:
        console.print(f"[yellow]Warning[/yellow]: Skipping {exc.filename}: {exc.strerror}")
