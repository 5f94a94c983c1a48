"""codemap: a source-code symbol index with exact, fuzzy and semantic search."""

from __future__ import annotations

__version__ = "0.1.0"
