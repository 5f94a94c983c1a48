"""Tests for ranked symbol search."""

from __future__ import annotations

import numpy as np
import pytest

from codemap.exceptions import SearchError
from codemap.indexer.index import CodeIndex, SymbolKey
from codemap.indexer.parser import Symbol
from codemap.indexer.search import (
    SEARCH_MODES,
    SearchEngine,
    exact_matches,
    fuzzy_score,
    merge_results,
)


def _sym(file: str, name: str, kind: str = "function", line: int = 1, exported: bool = True) -> Symbol:
    return Symbol(name=name, kind=kind, file=file, start_line=line, end_line=line + 2, exported=exported)


def _vec(*values: float) -> np.ndarray:
    return np.array(values, dtype=np.float32)


@pytest.fixture
def index() -> CodeIndex:
    idx = CodeIndex()
    idx.symbols_by_file["src/a.ts"] = [
        _sym("src/a.ts", "login", line=1),
        _sym("src/a.ts", "loginHelper", line=5, exported=False),
    ]
    idx.symbols_by_file["src/b.ts"] = [
        _sym("src/b.ts", "Login", kind="class", line=3),
        _sym("src/b.ts", "logout", line=9),
    ]
    idx.symbols_by_file["src/session/store.ts"] = [
        _sym("src/session/store.ts", "SessionStore", kind="class", line=1),
    ]
    idx.embeddings = {
        SymbolKey("src/a.ts", "login", 1): _vec(1.0, 1.0, 0.0),
        SymbolKey("src/b.ts", "Login", 3): _vec(1.0, 0.0, 0.0),
        SymbolKey("src/b.ts", "logout", 9): None,
        SymbolKey("src/session/store.ts", "SessionStore", 1): _vec(0.0, 0.0, 1.0),
    }
    return idx


def _engine(vector: np.ndarray | None = None) -> SearchEngine:
    return SearchEngine(embed_query=lambda _text: vector)


class TestExactSearch:
    def test_exact_name_ties_keep_scan_order(self, index: CodeIndex) -> None:
        results = SearchEngine().search(index, "login", mode="exact")

        assert [(r.file, r.name) for r in results[:2]] == [("src/a.ts", "login"), ("src/b.ts", "Login")]
        assert results[0].score == 1.0
        assert results[0].match_reason == "exact name match"
        assert results[1].score == 1.0

    def test_partial_and_path_matches(self, index: CodeIndex) -> None:
        results = SearchEngine().search(index, "login", mode="exact")
        by_name = {r.name: r for r in results}

        assert by_name["loginHelper"].score == 0.7
        assert by_name["loginHelper"].match_reason == "partial name match"
        assert "logout" not in by_name

        path_hits = SearchEngine().search(index, "session", mode="exact")
        assert path_hits[0].name == "SessionStore"
        assert path_hits[0].score == 0.7

        path_only = exact_matches(list(index.iter_symbols()), "src/b")
        assert {r.name for r in path_only} == {"Login", "logout"}
        assert all(r.score == 0.5 and r.match_reason == "file path match" for r in path_only)

    def test_exact_score_outranks_partial(self, index: CodeIndex) -> None:
        results = SearchEngine().search(index, "login", mode="exact")
        scores = [r.score for r in results]

        assert scores == sorted(scores, reverse=True)


class TestFuzzySearch:
    def test_fuzzy_score_is_normalised_levenshtein(self) -> None:
        assert fuzzy_score("login", "login") == 1.0
        assert fuzzy_score("logn", "login") == pytest.approx(0.8)
        assert fuzzy_score("LOGIN", "login") == 1.0
        assert fuzzy_score("", "") == 0.0

    def test_closer_queries_score_higher(self) -> None:
        assert fuzzy_score("logi", "login") > fuzzy_score("lgn", "login") > fuzzy_score("xyz", "login")

    def test_threshold_filters_distant_names(self, index: CodeIndex) -> None:
        results = SearchEngine().search(index, "logn", mode="fuzzy")
        names = [r.name for r in results]

        assert names[:2] == ["login", "Login"]
        assert "SessionStore" not in names
        assert all(r.score > 0.5 and r.match_reason == "fuzzy match" for r in results)


class TestSemanticSearch:
    def test_cosine_ranking(self, index: CodeIndex) -> None:
        results = _engine(_vec(1.0, 0.0, 0.0)).search(index, "sign in", mode="semantic")

        assert [r.name for r in results] == ["Login", "login"]
        assert results[0].score == pytest.approx(1.0)
        assert results[1].score == pytest.approx(1 / np.sqrt(2))
        assert results[0].match_reason == "semantic similarity"

    def test_absent_vectors_and_low_similarity_are_skipped(self, index: CodeIndex) -> None:
        results = _engine(_vec(0.0, 0.0, 1.0)).search(index, "cache", mode="semantic")

        assert [r.name for r in results] == ["SessionStore"]

    def test_without_embedder_returns_nothing(self, index: CodeIndex) -> None:
        assert SearchEngine().search(index, "login", mode="semantic") == []
        assert _engine(None).search(index, "login", mode="semantic") == []


class TestCombinedSearch:
    def test_combined_sums_exact_and_semantic(self, index: CodeIndex) -> None:
        engine = _engine(_vec(1.0, 0.0, 0.0))
        combined = engine.search(index, "login", mode="combined")
        exact = engine.search(index, "login", mode="exact")
        semantic = engine.search(index, "login", mode="semantic")

        top = combined[0]
        assert (top.file, top.name) == ("src/b.ts", "Login")
        assert top.score == pytest.approx(2.0)
        assert top.match_reason == "exact name match + semantic similarity"

        login = next(r for r in combined if r.name == "login")
        assert login.score == pytest.approx(1.0 + 1 / np.sqrt(2))
        assert login.score > max(r.score for r in exact if r.name == "login")
        assert login.score > max(r.score for r in semantic if r.name == "login")

    def test_combined_without_embeddings_equals_exact(self, index: CodeIndex) -> None:
        combined = SearchEngine().search(index, "login", mode="combined")
        exact = SearchEngine().search(index, "login", mode="exact")

        assert [r.to_dict() for r in combined] == [r.to_dict() for r in exact]

    def test_merge_keeps_unmatched_entries(self, index: CodeIndex) -> None:
        symbols = list(index.iter_symbols())
        merged = merge_results(exact_matches(symbols, "login"), exact_matches(symbols, "store"))

        assert {r.name for r in merged} == {"login", "loginHelper", "Login", "SessionStore"}


class TestLimitsAndFilters:
    @pytest.mark.parametrize("mode", SEARCH_MODES)
    def test_limit_zero_returns_empty(self, index: CodeIndex, mode: str) -> None:
        assert _engine(_vec(1.0, 0.0, 0.0)).search(index, "login", mode=mode, limit=0) == []

    def test_large_limit_returns_all_matches(self, index: CodeIndex) -> None:
        results = SearchEngine().search(index, "login", mode="exact", limit=1000)

        assert len(results) == 3

    def test_limit_truncates_after_ranking(self, index: CodeIndex) -> None:
        results = SearchEngine().search(index, "login", mode="exact", limit=1)

        assert [(r.file, r.name) for r in results] == [("src/a.ts", "login")]

    def test_negative_limit_raises(self, index: CodeIndex) -> None:
        with pytest.raises(SearchError, match="limit"):
            SearchEngine().search(index, "login", limit=-1)

    def test_unknown_mode_raises(self, index: CodeIndex) -> None:
        with pytest.raises(SearchError, match="Unknown search mode"):
            SearchEngine().search(index, "login", mode="regex")

    def test_unknown_kind_raises(self, index: CodeIndex) -> None:
        with pytest.raises(SearchError, match="Unknown symbol kind"):
            SearchEngine().search(index, "login", kinds=["method"])

    def test_kind_filter(self, index: CodeIndex) -> None:
        results = SearchEngine().search(index, "login", mode="exact", kinds=["class"])

        assert [r.name for r in results] == ["Login"]

    def test_exported_only_filter(self, index: CodeIndex) -> None:
        results = SearchEngine().search(index, "login", mode="exact", exported_only=True)

        assert "loginHelper" not in {r.name for r in results}

    def test_result_dict_shape(self, index: CodeIndex) -> None:
        result = SearchEngine().search(index, "login", mode="exact")[0].to_dict()

        assert set(result) == {
            "name", "kind", "file", "start_line", "end_line",
            "exported", "signature", "score", "match_reason",
        }
