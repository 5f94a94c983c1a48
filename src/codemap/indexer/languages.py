"""Static language table: file extension / basename -> language identifier."""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import PurePath
from typing import Final


@dataclass(frozen=True, slots=True)
class Language:
    """A language known to the extractor registry.

    Attributes:
        name: Language identifier used to select an extractor.
        extensions: File suffixes (including the dot).
        basenames: Conventional extensionless file names (e.g. "Makefile").
    """

    name: str
    extensions: tuple[str, ...] = ()
    basenames: tuple[str, ...] = ()


LANGUAGES: Final[tuple[Language, ...]] = (
    # Web & JavaScript ecosystem
    Language("javascript", (".js", ".jsx", ".mjs", ".cjs")),
    Language("typescript", (".ts", ".tsx", ".mts", ".cts")),
    Language("html", (".html", ".htm")),
    Language("css", (".css", ".scss", ".less")),
    Language("vue", (".vue",)),
    Language("svelte", (".svelte",)),
    # Systems
    Language("c", (".c", ".h")),
    Language("cpp", (".cpp", ".hpp", ".cc", ".cxx", ".hxx", ".hh")),
    Language("rust", (".rs",)),
    Language("go", (".go",)),
    Language("zig", (".zig",)),
    # JVM / .NET
    Language("java", (".java",)),
    Language("kotlin", (".kt", ".kts")),
    Language("scala", (".scala", ".sc")),
    Language("groovy", (".groovy", ".gradle"), ("Jenkinsfile",)),
    Language("clojure", (".clj", ".cljs", ".cljc", ".edn")),
    Language("csharp", (".cs",)),
    Language("fsharp", (".fs", ".fsi", ".fsx")),
    # Scripting
    Language("python", (".py", ".pyi"), ("SConstruct", "SConscript")),
    Language("ruby", (".rb", ".rake", ".gemspec"), ("Rakefile", "Gemfile", "Podfile")),
    Language("php", (".php",)),
    Language("perl", (".pl", ".pm")),
    Language("lua", (".lua",)),
    Language("bash", (".sh", ".bash", ".zsh")),
    # Functional
    Language("haskell", (".hs", ".lhs")),
    Language("ocaml", (".ml", ".mli")),
    Language("elixir", (".ex", ".exs")),
    Language("erlang", (".erl", ".hrl")),
    Language("elm", (".elm",)),
    Language("lisp", (".lisp", ".cl", ".scm", ".ss", ".rkt")),
    # Mobile & application
    Language("swift", (".swift",)),
    Language("objc", (".m", ".mm")),
    Language("dart", (".dart",)),
    # Data & scientific
    Language("r", (".r", ".R")),
    Language("julia", (".jl",)),
    Language("fortran", (".f", ".f90", ".f95", ".for")),
    Language("cobol", (".cob", ".cbl", ".cobol")),
    # Data formats & markup
    Language("json", (".json", ".jsonc")),
    Language("yaml", (".yaml", ".yml")),
    Language("toml", (".toml",)),
    Language("xml", (".xml",)),
    Language("markdown", (".md", ".markdown")),
    Language("sql", (".sql",)),
    Language("graphql", (".graphql", ".gql")),
    Language("protobuf", (".proto",)),
    Language("solidity", (".sol",)),
    # DevOps & build
    Language("dockerfile", (".dockerfile",), ("Dockerfile", "Containerfile")),
    Language("hcl", (".hcl", ".tf")),
    Language("nix", (".nix",)),
    Language("make", (".make", ".mk"), ("Makefile", "GNUmakefile", "makefile")),
    Language("cmake", (".cmake",), ("CMakeLists.txt",)),
    Language("bazel", (".bzl", ".bazel"), ("BUILD", "WORKSPACE")),
    # Other
    Language("glsl", (".glsl", ".vert", ".frag")),
    Language("verilog", (".v", ".vh", ".sv")),
    Language("assembly", (".asm", ".s", ".S")),
    Language("vim", (".vim",)),
)

_BY_BASENAME: Final[dict[str, str]] = {
    basename: lang.name for lang in LANGUAGES for basename in lang.basenames
}
_BY_EXTENSION: Final[dict[str, str]] = {}
for _lang in LANGUAGES:
    for _ext in _lang.extensions:
        _BY_EXTENSION.setdefault(_ext, _lang.name)
        _BY_EXTENSION.setdefault(_ext.lower(), _lang.name)

BINARY_EXTENSIONS: Final[frozenset[str]] = frozenset(
    {
        # Executables & compiled
        ".exe", ".dll", ".so", ".dylib", ".bin", ".app",
        ".pyc", ".pyo", ".class", ".o", ".obj", ".a", ".lib", ".wasm",
        # Archives
        ".zip", ".tar", ".gz", ".tgz", ".7z", ".rar", ".bz2", ".xz", ".jar",
        # Images
        ".png", ".jpg", ".jpeg", ".gif", ".bmp", ".ico", ".webp", ".tiff", ".svg",
        # Audio / video
        ".mp3", ".mp4", ".avi", ".mov", ".wav", ".flac", ".ogg", ".mkv", ".webm",
        # Documents
        ".pdf", ".doc", ".docx", ".xls", ".xlsx", ".ppt", ".pptx",
        # Fonts
        ".ttf", ".otf", ".woff", ".woff2", ".eot",
        # Databases & serialized data
        ".db", ".sqlite", ".sqlite3", ".msgpack", ".npy", ".npz", ".pkl", ".lock",
    }
)


def language_for(path: str | PurePath) -> str | None:
    """Detect the language of a file from its basename or extension.

    Args:
        path: File path (absolute or relative).

    Returns:
        A language identifier, or None if the file type is unknown.
    """
    pure = PurePath(path)
    if pure.name in _BY_BASENAME:
        return _BY_BASENAME[pure.name]
    suffix = pure.suffix
    if not suffix:
        return None
    return _BY_EXTENSION.get(suffix) or _BY_EXTENSION.get(suffix.lower())


def is_potentially_text(path: str | PurePath) -> bool:
    """Return False for files whose extension marks them as binary."""
    return PurePath(path).suffix.lower() not in BINARY_EXTENSIONS
