"""Embedding provider boundary with graceful degradation.

The model is an external collaborator: it may be missing, slow, or fail to
load. EmbeddingService hides that behind an availability flag with a retry
cooldown so callers only ever see "vector" or "no vector".
"""

from __future__ import annotations

import threading
import time
from collections.abc import Sequence
from typing import TYPE_CHECKING, Any, Protocol

import numpy as np
from rich.console import Console

from codemap.exceptions import EmbeddingError

if TYPE_CHECKING:
    from codemap.indexer.parser import Symbol

console = Console(stderr=True)

DEFAULT_MODEL = "all-MiniLM-L6-v2"


class EmbeddingProvider(Protocol):
    """Anything that turns text into a fixed-length vector."""

    def load(self) -> None:
        """Prepare the model; raise EmbeddingError if it cannot be used."""
        ...

    def embed(self, text: str) -> Sequence[float]:
        """Return the embedding of text."""
        ...


class SentenceTransformerProvider:
    """Embedding provider backed by a sentence-transformers model.

    The library is imported lazily so the rest of codemap works without it.
    """

    def __init__(self, model_name: str = DEFAULT_MODEL) -> None:
        self.model_name = model_name
        self._model: Any = None

    def load(self) -> None:
        if self._model is not None:
            return
        try:
            from sentence_transformers import SentenceTransformer
        except ImportError as exc:
            raise EmbeddingError(
                "sentence-transformers is not installed. "
                "Install it with: pip install 'codemap[embeddings]'"
            ) from exc
        try:
            self._model = SentenceTransformer(self.model_name)
        except Exception as exc:  # noqa: BLE001
            raise EmbeddingError(
                f"Failed to load embedding model '{self.model_name}': {exc}"
            ) from exc

    def embed(self, text: str) -> Sequence[float]:
        if self._model is None:
            self.load()
        vector = self._model.encode(text, normalize_embeddings=True)
        return [float(x) for x in vector]


class EmbeddingService:
    """Availability-tracking wrapper around an EmbeddingProvider.

    A failed load marks the service unavailable; ensure_available() retries
    only after retry_seconds have elapsed since the last attempt.

    Attributes:
        retry_seconds: Cooldown between load attempts.
    """

    def __init__(self, provider: EmbeddingProvider, retry_seconds: float = 300.0) -> None:
        self._provider = provider
        self.retry_seconds = retry_seconds
        self._available = False
        self._last_attempt: float | None = None
        self._lock = threading.Lock()

    @property
    def available(self) -> bool:
        return self._available

    def initialize(self) -> bool:
        """Try to load the provider now, regardless of the cooldown.

        Returns:
            True if the provider is ready for use.
        """
        with self._lock:
            self._last_attempt = time.monotonic()
            try:
                self._provider.load()
            except EmbeddingError as exc:
                self._available = False
                console.print(
                    f"[yellow]Warning:[/yellow] Semantic search unavailable: {exc}"
                )
                return False
            self._available = True
            return True

    def ensure_available(self) -> bool:
        """Return availability, retrying the load once the cooldown has passed."""
        if self._available:
            return True
        if self.seconds_until_retry() > 0:
            return False
        return self.initialize()

    def seconds_until_retry(self) -> float:
        if self._available or self._last_attempt is None:
            return 0.0
        elapsed = time.monotonic() - self._last_attempt
        return max(0.0, self.retry_seconds - elapsed)

    def minutes_until_retry(self) -> int:
        return int(-(-self.seconds_until_retry() // 60))

    def embed(self, text: str) -> np.ndarray | None:
        """Embed text, returning None when the provider is unavailable or fails.

        Args:
            text: Text to embed.

        Returns:
            A float32 vector, or None.
        """
        if not self._available:
            return None
        try:
            vector = np.asarray(self._provider.embed(text), dtype=np.float32)
        except Exception as exc:  # noqa: BLE001
            console.print(f"[yellow]Warning:[/yellow] Embedding failed: {exc}")
            return None
        if vector.ndim != 1 or vector.size == 0:
            return None
        return vector


def symbol_embedding_text(symbol: Symbol) -> str:
    """Build the kind-aware text embedded for a symbol."""
    if symbol.kind == "function":
        return f"{symbol.name} {symbol.signature or ''}".strip()
    if symbol.kind == "class":
        return f"{symbol.name} class"
    if symbol.kind in ("interface", "type"):
        return f"{symbol.name} type"
    if symbol.kind == "const":
        return f"{symbol.name} constant"
    if symbol.kind == "enum":
        return f"{symbol.name} enum"
    return symbol.name


def cosine_similarity(a: np.ndarray, b: np.ndarray) -> float:
    """Cosine similarity of two vectors; 0.0 when either has zero norm or shapes differ."""
    if a.shape != b.shape:
        return 0.0
    norm = float(np.linalg.norm(a)) * float(np.linalg.norm(b))
    if norm == 0.0:
        return 0.0
    return float(np.dot(a, b) / norm)
