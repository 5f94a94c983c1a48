"""Configuration management for codemap.

Settings are loaded from three sources in order of priority:
1. Environment variables (highest priority)
2. Project-level config: .codemap/config.toml
3. Global config: ~/.config/codemap/config.toml (lowest priority)
"""

from __future__ import annotations

import os
import tomllib
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from rich.console import Console

from codemap.exceptions import ConfigError

console = Console(stderr=True)

_GLOBAL_CONFIG_DIR = Path.home() / ".config" / "codemap"
_GLOBAL_CONFIG_PATH = _GLOBAL_CONFIG_DIR / "config.toml"

PROJECT_DIR_NAME = ".codemap"


@dataclass
class CodeMapConfig:
    """codemap configuration.

    Attributes:
        project_dir: Root of the indexed project tree.
        cache_dir: Directory (relative to project_dir) holding the index artifact.
        index_filename: File name of the persisted index inside cache_dir.
        debounce_seconds: Quiet period after the last file event before a batch flushes.
        sync_timeout: Maximum seconds spent reconciling a loaded index at startup.
        embeddings_enabled: If False, never load an embedding model.
        embedding_model: sentence-transformers model name.
        embedding_retry_seconds: Cooldown before retrying a failed model load.
        embedding_timeout: Per-batch budget for embedding work during incremental updates.
        max_file_size: Files larger than this many bytes are not indexed.
        scan_workers: Threads used for extraction during a full scan.
        extra_ignore: Additional gitignore-style patterns to exclude.
        log_level: Logging verbosity (DEBUG, INFO, WARNING, ERROR).
    """

    project_dir: Path = field(default_factory=Path.cwd)
    cache_dir: Path = field(default_factory=lambda: Path(PROJECT_DIR_NAME) / "cache")
    index_filename: str = "source-code-index.msgpack"
    debounce_seconds: float = 1.5
    sync_timeout: float = 30.0
    embeddings_enabled: bool = True
    embedding_model: str = "all-MiniLM-L6-v2"
    embedding_retry_seconds: float = 300.0
    embedding_timeout: float = 10.0
    max_file_size: int = 1_048_576
    scan_workers: int = 1
    extra_ignore: list[str] = field(default_factory=list)
    log_level: str = "INFO"

    @property
    def index_path(self) -> Path:
        """Absolute path to the persisted index artifact."""
        return self.project_dir / self.cache_dir / self.index_filename

    @property
    def verbose(self) -> bool:
        """Return True when per-file diagnostics should be printed."""
        return self.log_level == "DEBUG"


def load_config(project_dir: Path) -> CodeMapConfig:
    """Load configuration from env vars, project config, and global config.

    Priority: env vars > .codemap/config.toml > ~/.config/codemap/config.toml

    Args:
        project_dir: Root directory of the project.

    Returns:
        A fully resolved CodeMapConfig instance.

    Raises:
        ConfigError: If a setting has an invalid value.
    """
    config = CodeMapConfig(project_dir=project_dir.resolve())

    # Layer 1: Global config (lowest priority)
    _apply_toml(config, _load_toml(_GLOBAL_CONFIG_PATH))

    # Layer 2: Project config
    _apply_toml(config, _load_toml(config.project_dir / PROJECT_DIR_NAME / "config.toml"))

    # Layer 3: Environment variables (highest priority)
    _apply_env(config)

    _validate(config)
    return config


def _load_toml(path: Path) -> dict[str, Any]:
    """Load a TOML file, returning an empty dict if missing or invalid."""
    if not path.is_file():
        return {}
    try:
        return tomllib.loads(path.read_text(encoding="utf-8"))
    except (tomllib.TOMLDecodeError, OSError) as exc:
        console.print(f"[yellow]Warning:[/yellow] Could not parse {path}: {exc}")
        return {}


def _apply_toml(config: CodeMapConfig, settings: dict[str, Any]) -> None:
    """Merge TOML settings into a CodeMapConfig."""
    try:
        if "cache_dir" in settings:
            config.cache_dir = Path(str(settings["cache_dir"]))
        if "index_filename" in settings:
            config.index_filename = str(settings["index_filename"])
        if "debounce_seconds" in settings:
            config.debounce_seconds = float(settings["debounce_seconds"])
        if "sync_timeout" in settings:
            config.sync_timeout = float(settings["sync_timeout"])
        if "embeddings_enabled" in settings:
            config.embeddings_enabled = bool(settings["embeddings_enabled"])
        if "embedding_model" in settings:
            config.embedding_model = str(settings["embedding_model"])
        if "embedding_retry_seconds" in settings:
            config.embedding_retry_seconds = float(settings["embedding_retry_seconds"])
        if "embedding_timeout" in settings:
            config.embedding_timeout = float(settings["embedding_timeout"])
        if "max_file_size" in settings:
            config.max_file_size = int(settings["max_file_size"])
        if "scan_workers" in settings:
            config.scan_workers = int(settings["scan_workers"])
        if "extra_ignore" in settings:
            config.extra_ignore = [str(p) for p in settings["extra_ignore"]]
        if "log_level" in settings:
            config.log_level = str(settings["log_level"]).upper()
    except (TypeError, ValueError) as exc:
        raise ConfigError(f"Invalid configuration value: {exc}") from exc


def _apply_env(config: CodeMapConfig) -> None:
    """Override config with environment variables where set."""
    try:
        if cache_dir := os.environ.get("CODEMAP_CACHE_DIR"):
            config.cache_dir = Path(cache_dir)
        if debounce := os.environ.get("CODEMAP_DEBOUNCE_SECONDS"):
            config.debounce_seconds = float(debounce)
        if sync_timeout := os.environ.get("CODEMAP_SYNC_TIMEOUT"):
            config.sync_timeout = float(sync_timeout)
        if embeddings := os.environ.get("CODEMAP_EMBEDDINGS"):
            config.embeddings_enabled = embeddings.lower() in ("true", "1", "yes")
        if model := os.environ.get("CODEMAP_EMBEDDING_MODEL"):
            config.embedding_model = model
        if workers := os.environ.get("CODEMAP_SCAN_WORKERS"):
            config.scan_workers = int(workers)
        if log_level := os.environ.get("CODEMAP_LOG_LEVEL"):
            config.log_level = log_level.upper()
    except ValueError as exc:
        raise ConfigError(f"Invalid environment override: {exc}") from exc


def _validate(config: CodeMapConfig) -> None:
    """Reject settings that would make the indexer misbehave."""
    if config.debounce_seconds < 0:
        raise ConfigError("debounce_seconds must be >= 0")
    if config.sync_timeout <= 0:
        raise ConfigError("sync_timeout must be > 0")
    if config.scan_workers < 1:
        raise ConfigError("scan_workers must be >= 1")
    if config.max_file_size <= 0:
        raise ConfigError("max_file_size must be > 0")
