"""codemap exception hierarchy.

All exceptions inherit from CodeMapError so callers can catch the base
class when they want to handle any codemap-specific failure uniformly.
"""

from __future__ import annotations


class CodeMapError(Exception):
    """Base exception for all codemap errors."""


class ConfigError(CodeMapError):
    """Configuration-related errors (invalid values, unreadable settings, etc.)."""


class IndexerError(CodeMapError):
    """Errors during codebase scanning or index building."""


class SyncCancelledError(IndexerError):
    """Startup reconciliation was cancelled before it finished."""


class IndexStoreError(CodeMapError):
    """Errors reading, writing, or locking the persisted index."""


class EmbeddingError(CodeMapError):
    """The embedding provider failed to load or to embed a text."""


class SearchError(CodeMapError):
    """Invalid search request (unknown mode, negative limit, etc.)."""
