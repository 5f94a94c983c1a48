"""Tests for file discovery and ignore rules."""

from __future__ import annotations

import os
import warnings
from pathlib import Path

import pytest
from conftest import write

from codemap.exceptions import IndexerError
from codemap.indexer.scanner import FileScanner, IgnoreRules


class TestIgnoreRules:
    def test_standard_patterns(self, tmp_path: Path) -> None:
        rules = IgnoreRules.for_project(tmp_path)

        assert rules.is_ignored("node_modules", is_dir=True)
        assert rules.is_ignored("pkg/node_modules/x.js")
        assert rules.is_ignored(".git", is_dir=True)
        assert rules.is_ignored("web/app.min.js")
        assert rules.is_ignored("web/vendor.bundle.js")
        assert rules.is_ignored("__pycache__", is_dir=True)
        assert not rules.is_ignored("src/app.js")
        assert not rules.is_ignored("src", is_dir=True)

    def test_gitignore_and_extra_patterns(self, tmp_path: Path) -> None:
        write(tmp_path, ".gitignore", "# comment\n\n*.gen.ts\nsecrets/\n")
        rules = IgnoreRules.for_project(tmp_path, extra=["fixtures/**"])

        assert rules.is_ignored("src/schema.gen.ts")
        assert rules.is_ignored("secrets", is_dir=True)
        assert rules.is_ignored("fixtures/data.py")
        assert not rules.is_ignored("src/schema.ts")

    def test_paths_outside_root_are_ignored(self, tmp_path: Path) -> None:
        rules = IgnoreRules.for_project(tmp_path / "proj")
        assert rules.is_ignored(tmp_path / "elsewhere.py")

    def test_relative_normalizes_absolute_paths(self, tmp_path: Path) -> None:
        rules = IgnoreRules.for_project(tmp_path)
        assert rules.relative(tmp_path.resolve() / "src" / "a.py") == "src/a.py"
        assert rules.relative("src/a.py") == "src/a.py"
        assert rules.relative(tmp_path.parent) is None

    def test_parent_segments_cannot_escape_root(self, tmp_path: Path) -> None:
        rules = IgnoreRules.for_project(tmp_path / "proj")

        assert rules.relative("../outside.py") is None
        assert rules.relative(tmp_path / "proj" / ".." / "outside.py") is None
        assert rules.relative("src/../a.py") == "a.py"
        assert rules.is_ignored("../outside.py")

    def test_compiling_rules_emits_no_deprecation_warning(self, tmp_path: Path) -> None:
        with warnings.catch_warnings():
            warnings.simplefilter("error", DeprecationWarning)
            rules = IgnoreRules.for_project(tmp_path, ["fixtures/"])

        assert rules.is_ignored("fixtures/data.py")


class TestFileScanner:
    def test_scan_skips_ignored_and_non_source(self, sample_project: Path) -> None:
        files = FileScanner(sample_project).scan()
        assert [f.path for f in files] == ["src/auth.ts", "src/config.py"]

    def test_file_info(self, sample_project: Path) -> None:
        files = {f.path: f for f in FileScanner(sample_project).scan()}
        info = files["src/config.py"]

        assert info.language == "python"
        assert info.size == (sample_project / "src/config.py").stat().st_size
        assert info.mtime > 0

    def test_results_sorted(self, tmp_path: Path) -> None:
        for name in ("z.py", "a.py", "m/b.py"):
            write(tmp_path, name, "def f():\n    pass\n")
        paths = [f.path for f in FileScanner(tmp_path).scan()]
        assert paths == sorted(paths)

    def test_skips_large_files(self, tmp_path: Path) -> None:
        write(tmp_path, "small.py", "x = 1\n")
        write(tmp_path, "big.py", "x = 1\n" * 100)
        files = FileScanner(tmp_path, max_file_size=50).scan()
        assert [f.path for f in files] == ["small.py"]

    def test_skips_binary_extensions(self, tmp_path: Path) -> None:
        (tmp_path / "logo.png").write_bytes(b"\x89PNG")
        write(tmp_path, "app.py", "pass\n")
        assert [f.path for f in FileScanner(tmp_path).scan()] == ["app.py"]

    @pytest.mark.skipif(not hasattr(os, "symlink"), reason="symlinks unsupported")
    def test_skips_symlinks(self, tmp_path: Path) -> None:
        outside = tmp_path / "outside"
        write(outside, "lib.py", "def lib():\n    pass\n")
        project = tmp_path / "proj"
        write(project, "main.py", "def main():\n    pass\n")
        (project / "linked").symlink_to(outside, target_is_directory=True)
        (project / "alias.py").symlink_to(project / "main.py")

        assert [f.path for f in FileScanner(project).scan()] == ["main.py"]

    def test_missing_project_raises(self, tmp_path: Path) -> None:
        with pytest.raises(IndexerError):
            FileScanner(tmp_path / "nope")

    def test_describe(self, sample_project: Path) -> None:
        scanner = FileScanner(sample_project)

        assert scanner.describe(Path("src/auth.ts")) is not None
        assert scanner.describe(sample_project / "node_modules/lib/index.js") is None
        assert scanner.describe(Path("src/deleted.ts")) is None
        assert scanner.describe(Path("README.md")) is None

    def test_is_candidate_accepts_deleted_paths(self, sample_project: Path) -> None:
        scanner = FileScanner(sample_project)

        assert scanner.is_candidate(sample_project / "src/gone.py")
        assert not scanner.is_candidate(sample_project / "build/gone.py")
        assert not scanner.is_candidate(sample_project / "notes.md")

    def test_skips_names_that_are_not_utf8(
        self, sample_project: Path, capsys: pytest.CaptureFixture[str]
    ) -> None:
        bad = sample_project / "src" / os.fsdecode(b"bad\xff.py")
        bad.write_text("def broken():\n    pass\n", encoding="utf-8")

        paths = [f.path for f in FileScanner(sample_project).scan()]

        assert paths == ["src/auth.ts", "src/config.py"]
        assert "not valid UTF-8" in capsys.readouterr().err

    def test_unreadable_directory_is_skipped(
        self,
        sample_project: Path,
        monkeypatch: pytest.MonkeyPatch,
        capsys: pytest.CaptureFixture[str],
    ) -> None:
        real_walk = os.walk
        locked = str(sample_project / "locked")

        def walk(top, topdown=True, onerror=None, followlinks=False):
            onerror(PermissionError(13, "Permission denied", locked))
            yield from real_walk(top, topdown=topdown, onerror=onerror, followlinks=followlinks)

        monkeypatch.setattr(os, "walk", walk)
        paths = [f.path for f in FileScanner(sample_project).scan()]

        assert paths == ["src/auth.ts", "src/config.py"]
        err = capsys.readouterr().err
        assert "Skipping" in err
        assert "Permission" in err
