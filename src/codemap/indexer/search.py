"""Ranked symbol search: exact, fuzzy, semantic and combined strategies."""

from __future__ import annotations

from collections.abc import Callable, Collection, Iterator
from dataclasses import asdict, dataclass
from typing import Any, Final, Literal, get_args

import numpy as np
from rapidfuzz.distance import Levenshtein

from codemap.exceptions import SearchError
from codemap.indexer.embeddings import cosine_similarity
from codemap.indexer.index import CodeIndex, SymbolKey
from codemap.indexer.parser import SYMBOL_KINDS, Symbol

SearchMode = Literal["exact", "fuzzy", "semantic", "combined"]
SEARCH_MODES: Final[tuple[str, ...]] = get_args(SearchMode)

DEFAULT_LIMIT: Final[int] = 10
FUZZY_THRESHOLD: Final[float] = 0.5
SEMANTIC_THRESHOLD: Final[float] = 0.3

QueryEmbedder = Callable[[str], np.ndarray | None]


@dataclass
class SearchResult:
    """A symbol matched by a search, with its score and why it matched.

    Attributes:
        name: Symbol name.
        kind: Symbol kind.
        file: Project-relative path of the defining file.
        start_line: 1-based first line.
        end_line: 1-based last line.
        exported: Whether the symbol is exported.
        signature: Declaration signature, or None.
        score: Relevance; combined results may exceed 1.0.
        match_reason: Human-readable reason(s), joined with " + " when merged.
    """

    name: str
    kind: str
    file: str
    start_line: int
    end_line: int
    exported: bool
    signature: str | None
    score: float
    match_reason: str

    @classmethod
    def from_symbol(cls, symbol: Symbol, score: float, match_reason: str) -> SearchResult:
        return cls(
            name=symbol.name,
            kind=symbol.kind,
            file=symbol.file,
            start_line=symbol.start_line,
            end_line=symbol.end_line,
            exported=symbol.exported,
            signature=symbol.signature,
            score=score,
            match_reason=match_reason,
        )

    @property
    def key(self) -> SymbolKey:
        return SymbolKey(self.file, self.name, self.start_line)

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


class SearchEngine:
    """Stateless search over a CodeIndex.

    Usage::

        engine = SearchEngine(embed_query=embedding_service.embed)
        results = engine.search(index, "parse config", mode="combined")
    """

    def __init__(self, embed_query: QueryEmbedder | None = None) -> None:
        """Initialize the engine.

        Args:
            embed_query: Returns the query's vector, or None when embeddings
                are unavailable. Without it semantic matching yields nothing.
        """
        self._embed_query = embed_query

    def search(
        self,
        index: CodeIndex,
        query: str,
        mode: str = "combined",
        kinds: Collection[str] | None = None,
        exported_only: bool = False,
        limit: int = DEFAULT_LIMIT,
    ) -> list[SearchResult]:
        """Rank the index's symbols against query.

        Filters apply before scoring. Results are ordered by score, ties
        keeping scan order, and truncated to limit.

        Args:
            index: Index to search.
            query: Search text.
            mode: One of "exact", "fuzzy", "semantic", "combined".
            kinds: Only consider symbols of these kinds.
            exported_only: Only consider exported symbols.
            limit: Maximum number of results; 0 returns an empty list.

        Returns:
            Ranked results.

        Raises:
            SearchError: If mode or a kind is unknown, or limit is negative.
        """
        if mode not in SEARCH_MODES:
            raise SearchError(f"Unknown search mode {mode!r}; expected one of {', '.join(SEARCH_MODES)}")
        if limit < 0:
            raise SearchError(f"limit must be >= 0, got {limit}")
        unknown = sorted(set(kinds or ()) - SYMBOL_KINDS)
        if unknown:
            raise SearchError(
                f"Unknown symbol kind(s) {', '.join(unknown)}; expected one of {', '.join(sorted(SYMBOL_KINDS))}"
            )
        if limit == 0:
            return []

        candidates = list(_filtered(index, kinds, exported_only))
        order = {SymbolKey.of(s): i for i, s in enumerate(candidates)}

        if mode == "exact":
            results = exact_matches(candidates, query)
        elif mode == "fuzzy":
            results = fuzzy_matches(candidates, query)
        elif mode == "semantic":
            results = self._semantic(index, candidates, query)
        else:
            results = merge_results(
                exact_matches(candidates, query), self._semantic(index, candidates, query)
            )

        results.sort(key=lambda r: (-r.score, order[r.key]))
        return results[:limit]

    def _semantic(self, index: CodeIndex, candidates: list[Symbol], query: str) -> list[SearchResult]:
        if self._embed_query is None:
            return []
        query_vector = self._embed_query(query)
        if query_vector is None:
            return []
        return semantic_matches(index, candidates, query_vector)


def _filtered(
    index: CodeIndex, kinds: Collection[str] | None, exported_only: bool
) -> Iterator[Symbol]:
    for symbol in index.iter_symbols():
        if kinds and symbol.kind not in kinds:
            continue
        if exported_only and not symbol.exported:
            continue
        yield symbol


def exact_matches(symbols: list[Symbol], query: str) -> list[SearchResult]:
    """Case-insensitive name and path matching."""
    needle = query.lower()
    results: list[SearchResult] = []
    for symbol in symbols:
        name = symbol.name.lower()
        if name == needle:
            results.append(SearchResult.from_symbol(symbol, 1.0, "exact name match"))
        elif needle in name:
            results.append(SearchResult.from_symbol(symbol, 0.7, "partial name match"))
        elif needle in symbol.file.lower():
            results.append(SearchResult.from_symbol(symbol, 0.5, "file path match"))
    return results


def fuzzy_score(query: str, name: str) -> float:
    """1 - normalised Levenshtein distance, case-insensitive."""
    a, b = query.lower(), name.lower()
    longest = max(len(a), len(b))
    if longest == 0:
        return 0.0
    return 1.0 - Levenshtein.distance(a, b) / longest


def fuzzy_matches(symbols: list[Symbol], query: str) -> list[SearchResult]:
    results: list[SearchResult] = []
    for symbol in symbols:
        score = fuzzy_score(query, symbol.name)
        if score > FUZZY_THRESHOLD:
            results.append(SearchResult.from_symbol(symbol, score, "fuzzy match"))
    return results


def semantic_matches(
    index: CodeIndex, symbols: list[Symbol], query_vector: np.ndarray
) -> list[SearchResult]:
    """Cosine similarity against stored embeddings; absent vectors are skipped."""
    results: list[SearchResult] = []
    for symbol in symbols:
        vector = index.embeddings.get(SymbolKey.of(symbol))
        if vector is None:
            continue
        similarity = cosine_similarity(query_vector, vector)
        if similarity > SEMANTIC_THRESHOLD:
            results.append(SearchResult.from_symbol(symbol, similarity, "semantic similarity"))
    return results


def merge_results(*groups: list[SearchResult]) -> list[SearchResult]:
    """Union results by symbol identity, summing scores and joining reasons."""
    merged: dict[SymbolKey, SearchResult] = {}
    for group in groups:
        for result in group:
            existing = merged.get(result.key)
            if existing is None:
                merged[result.key] = result
                continue
            existing.score += result.score
            existing.match_reason = f"{existing.match_reason} + {result.match_reason}"
    return list(merged.values())
