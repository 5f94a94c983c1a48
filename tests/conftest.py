"""Shared test fixtures."""

from __future__ import annotations

import re
from collections.abc import Sequence
from pathlib import Path

import pytest

from codemap.config import CodeMapConfig
from codemap.exceptions import EmbeddingError
from codemap.indexer.embeddings import EmbeddingService
from codemap.indexer.index import IndexBuilder
from codemap.indexer.scanner import FileScanner

AUTH_TS = """\
import { hash } from "./crypto";
import express from "express";

export function login(user: string): boolean {
  return hash(user) !== "";
}

function helper() {
  return 1;
}

export class SessionStore {
  save(id: string) {
    return id;
  }
}
"""

CONFIG_PY = """\
import os
from pathlib import Path

DEFAULT_NAME = "app"


def parse_config(path: Path) -> dict:
    return {"path": os.fspath(path)}


class Settings:
    def load(self):
        return parse_config(Path("x"))


def _private():
    pass
"""

# Words mapped onto a handful of shared dimensions so related words embed close together.
_CONCEPTS = {
    "login": 0, "signin": 0, "authenticate": 0, "auth": 0, "credentials": 0,
    "user": 1, "account": 1,
    "parse": 2, "read": 2,
    "config": 3, "settings": 3,
    "session": 4, "store": 4, "cache": 4,
    "class": 5, "type": 6, "constant": 7, "enum": 8, "string": 9,
}
_DIM = 10


def concept_words(text: str) -> list[str]:
    spaced = re.sub(r"([a-z])([A-Z])", r"\1 \2", text)
    return re.findall(r"[a-z]+", spaced.lower())


class FakeEmbeddingProvider:
    """Deterministic bag-of-concepts embeddings; can be told to fail loading."""

    def __init__(self, fail_load: bool = False) -> None:
        self.fail_load = fail_load
        self.loads = 0
        self.calls: list[str] = []

    def load(self) -> None:
        self.loads += 1
        if self.fail_load:
            raise EmbeddingError("model unavailable")

    def embed(self, text: str) -> Sequence[float]:
        self.calls.append(text)
        vector = [0.0] * _DIM
        for word in concept_words(text):
            idx = _CONCEPTS.get(word)
            if idx is not None:
                vector[idx] += 1.0
        return vector


def write(root: Path, rel: str, text: str) -> Path:
    path = root / rel
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(text, encoding="utf-8")
    return path


@pytest.fixture
def sample_project(tmp_path: Path) -> Path:
    """A small mixed-language project with ignored and non-source files."""
    write(tmp_path, "src/auth.ts", AUTH_TS)
    write(tmp_path, "src/config.py", CONFIG_PY)
    write(tmp_path, "README.md", "# Sample\n")
    write(tmp_path, "node_modules/lib/index.js", "export function leaked() {}\n")
    write(tmp_path, "build/out.js", "export function built() {}\n")
    write(tmp_path, "static/app.min.js", "export function minified() {}\n")
    write(tmp_path, "generated/gen.ts", "export function generated() {}\n")
    write(tmp_path, ".gitignore", "generated/\n")
    return tmp_path


@pytest.fixture
def fake_provider() -> FakeEmbeddingProvider:
    return FakeEmbeddingProvider()


@pytest.fixture
def embedder(fake_provider: FakeEmbeddingProvider) -> EmbeddingService:
    service = EmbeddingService(fake_provider, retry_seconds=300.0)
    service.initialize()
    return service


@pytest.fixture
def builder(sample_project: Path) -> IndexBuilder:
    return IndexBuilder(FileScanner(sample_project))


@pytest.fixture
def embedding_builder(sample_project: Path, embedder: EmbeddingService) -> IndexBuilder:
    return IndexBuilder(FileScanner(sample_project), embedder=embedder)


@pytest.fixture
def test_config(sample_project: Path) -> CodeMapConfig:
    """Config pointing at sample_project with a short debounce."""
    return CodeMapConfig(
        project_dir=sample_project,
        debounce_seconds=0.2,
        sync_timeout=10.0,
        embedding_timeout=5.0,
    )
