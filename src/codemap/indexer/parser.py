"""Table-driven lexical symbol and import extraction.

Every language is described by an ExtractorSpec: a tuple of declaration
regexes, an import parser, an export rule and a block style used to find
where a declaration ends. Languages without an entry fall back to the generic
extractor. Nothing here builds a syntax tree; the goal is a fast, grammar-free
navigation aid across many languages.
"""

from __future__ import annotations

import re
from collections.abc import Callable, Mapping
from dataclasses import dataclass, field
from pathlib import Path
from typing import Final, Literal

SYMBOL_KINDS: Final[frozenset[str]] = frozenset(
    {"function", "class", "interface", "type", "const", "enum"}
)

BlockStyle = Literal["brace", "indent", "end"]

_MAX_SIGNATURE_LEN: Final[int] = 200
_WORD_RE: Final[re.Pattern[str]] = re.compile(r"[A-Za-z_$][\w$]*")

# Names that C-style declaration regexes pick up from control flow.
_NOT_A_NAME: Final[frozenset[str]] = frozenset(
    {
        "if", "for", "while", "switch", "catch", "return", "new", "else", "do",
        "try", "foreach", "using", "lock", "fixed", "when", "function", "sizeof",
        "elif", "until", "unless", "case", "with", "match", "throw", "await",
    }
)


@dataclass(frozen=True, slots=True)
class Symbol:
    """A single code symbol extracted from a source file.

    Attributes:
        name: Symbol identifier (e.g. function/class name).
        kind: One of "function", "class", "interface", "type", "const", "enum".
        file: Project-relative POSIX path of the defining file.
        start_line: 1-based starting line number.
        end_line: 1-based ending line number (inclusive).
        exported: Whether the symbol is visible outside its module.
        signature: Declaration signature text, or None.
    """

    name: str
    kind: str
    file: str
    start_line: int
    end_line: int
    exported: bool = True
    signature: str | None = None


@dataclass(frozen=True, slots=True)
class ImportEdge:
    """A reference from one file to a module.

    Attributes:
        source: Module specifier as written in the import statement.
        imported: Local identifiers bound by the import.
        used_by: Names of symbols in the same file that reference an imported identifier.
    """

    source: str
    imported: tuple[str, ...] = ()
    used_by: tuple[str, ...] = ()


@dataclass
class ParseResult:
    """Outcome of extracting one file.

    A failed extraction carries an error message and no symbols or imports;
    callers treat it exactly like a file without recognizable symbols.
    """

    symbols: list[Symbol] = field(default_factory=list)
    imports: list[ImportEdge] = field(default_factory=list)
    error: str | None = None

    @property
    def ok(self) -> bool:
        return self.error is None

    @property
    def is_empty(self) -> bool:
        return not self.symbols and not self.imports

    @classmethod
    def failed(cls, error: str | BaseException) -> ParseResult:
        """Build an empty result recording why extraction failed."""
        if isinstance(error, BaseException):
            error = f"{type(error).__name__}: {error}"
        return cls(error=error)


ExportRule = Callable[[str, str], bool]
ImportParser = Callable[[str], list[ImportEdge]]


@dataclass(frozen=True, slots=True)
class DeclPattern:
    """One declaration form of a language.

    The regex must define a ``name`` group and may define ``sig`` (signature
    text) and ``decl`` (declaration keyword, mapped to a kind via kind_map).

    Attributes:
        kind: Symbol kind used when kind_map does not apply.
        regex: Compiled MULTILINE pattern.
        kind_map: Maps the normalized ``decl`` group to a kind; unmapped keywords keep ``kind``.
        exported: Overrides the language export rule for this form.
        rename: Builds the symbol name from the match (e.g. Go receivers).
    """

    kind: str
    regex: re.Pattern[str]
    kind_map: Mapping[str, str] | None = None
    exported: ExportRule | None = None
    rename: Callable[[re.Match[str]], str] | None = None


@dataclass(frozen=True, slots=True)
class ExtractorSpec:
    """Extraction capability for one language.

    Attributes:
        declarations: Declaration forms, tried in order; the first hit at a
            given (name, line) wins.
        imports: Parser turning file content into import edges.
        exported: Default export rule, called with (name, matched text).
        block: How the end of a declaration is located.
    """

    declarations: tuple[DeclPattern, ...] = ()
    imports: ImportParser | None = None
    exported: ExportRule = lambda name, text: True
    block: BlockStyle | None = None

    @property
    def extracts_anything(self) -> bool:
        return bool(self.declarations) or self.imports is not None


def _rx(pattern: str) -> re.Pattern[str]:
    return re.compile(pattern, re.MULTILINE)


def _decl(kind: str, pattern: str, **kwargs: object) -> DeclPattern:
    return DeclPattern(kind=kind, regex=_rx(pattern), **kwargs)  # type: ignore[arg-type]


# Export rules


def _not_underscore(name: str, text: str) -> bool:
    return not name.startswith("_")


def _has_export_keyword(name: str, text: str) -> bool:
    return re.search(r"\bexport\b", text) is not None


def _capitalized(name: str, text: str) -> bool:
    last = name.rsplit(".", 1)[-1]
    return last[:1].isupper()


def _starts_with_pub(name: str, text: str) -> bool:
    return text.lstrip().startswith("pub")


def _has_public(name: str, text: str) -> bool:
    return re.search(r"\bpublic\b", text) is not None


def _not_private(name: str, text: str) -> bool:
    return re.search(r"\b(?:private|fileprivate|internal|protected)\b", text) is None


def _not_static(name: str, text: str) -> bool:
    return re.search(r"\bstatic\b", text) is None


# Import parsers


def _local_name(part: str) -> str:
    """Return the name an import binds locally (the alias if present)."""
    pieces = re.split(r"\s+as\s+", part.strip())
    return pieces[-1].strip()


def _split_names(text: str) -> tuple[str, ...]:
    names = []
    for part in text.strip().strip("()").split(","):
        part = part.strip()
        if part:
            names.append(_local_name(part))
    return tuple(names)


_PY_FROM_RE = _rx(r"^[ \t]*from[ \t]+(?P<source>[\w.]+)[ \t]+import[ \t]+(?P<names>\([^)]*\)|[^\n#]+)")
_PY_IMPORT_RE = _rx(r"^[ \t]*import[ \t]+(?P<names>[\w. \t,]+)")


def _python_imports(content: str) -> list[ImportEdge]:
    edges: list[tuple[int, ImportEdge]] = []
    for m in _PY_FROM_RE.finditer(content):
        edges.append((m.start(), ImportEdge(m.group("source"), _split_names(m.group("names")))))
    for m in _PY_IMPORT_RE.finditer(content):
        for part in m.group("names").split(","):
            part = part.strip()
            if not part:
                continue
            module = re.split(r"\s+as\s+", part)[0].strip()
            bound = _local_name(part) if module != part else module.split(".", 1)[0]
            edges.append((m.start(), ImportEdge(module, (bound,))))
    edges.sort(key=lambda pair: pair[0])
    return [edge for _, edge in edges]


_JS_FROM_RE = _rx(
    r"^[ \t]*import[ \t]+(?:type[ \t]+)?(?P<clause>[^'\";]*?)[ \t]*from[ \t]*['\"](?P<source>[^'\"]+)['\"]"
)
_JS_BARE_RE = _rx(r"^[ \t]*import[ \t]*['\"](?P<source>[^'\"]+)['\"]")
_JS_REQUIRE_RE = _rx(
    r"^[ \t]*(?:const|let|var)[ \t]+(?P<clause>\{[^}]*\}|\w+)[ \t]*=[ \t]*"
    r"require\([ \t]*['\"](?P<source>[^'\"]+)['\"][ \t]*\)"
)


def _js_clause_names(clause: str) -> tuple[str, ...]:
    names: list[str] = []
    braced = re.search(r"\{([^}]*)\}", clause)
    if braced:
        for part in braced.group(1).split(","):
            part = part.strip()
            if part:
                names.append(_local_name(part.removeprefix("type ")))
        clause = clause[: braced.start()] + clause[braced.end() :]
    for part in clause.split(","):
        part = part.strip()
        if not part:
            continue
        if part.startswith("*"):
            names.append(_local_name(part))
        else:
            names.append(part)
    return tuple(names)


def _js_imports(content: str) -> list[ImportEdge]:
    edges: list[tuple[int, ImportEdge]] = []
    for m in _JS_FROM_RE.finditer(content):
        edges.append((m.start(), ImportEdge(m.group("source"), _js_clause_names(m.group("clause")))))
    for m in _JS_BARE_RE.finditer(content):
        edges.append((m.start(), ImportEdge(m.group("source"))))
    for m in _JS_REQUIRE_RE.finditer(content):
        edges.append((m.start(), ImportEdge(m.group("source"), _js_clause_names(m.group("clause")))))
    edges.sort(key=lambda pair: pair[0])
    return [edge for _, edge in edges]


_GO_SINGLE_RE = _rx(r"^import[ \t]+(?:(?P<alias>[\w.]+)[ \t]+)?\"(?P<source>[^\"]+)\"")
_GO_BLOCK_RE = _rx(r"^import[ \t]*\((?P<block>[^)]*)\)")
_GO_SPEC_RE = re.compile(r"(?:(?P<alias>[\w.]+)[ \t]+)?\"(?P<source>[^\"]+)\"")


def _go_edge(alias: str | None, source: str) -> ImportEdge:
    return ImportEdge(source, (alias or source.rsplit("/", 1)[-1],))


def _go_imports(content: str) -> list[ImportEdge]:
    edges: list[tuple[int, ImportEdge]] = []
    for m in _GO_SINGLE_RE.finditer(content):
        edges.append((m.start(), _go_edge(m.group("alias"), m.group("source"))))
    for m in _GO_BLOCK_RE.finditer(content):
        for offset, line in enumerate(m.group("block").splitlines()):
            spec = _GO_SPEC_RE.search(line)
            if spec:
                edges.append((m.start() + offset, _go_edge(spec.group("alias"), spec.group("source"))))
    edges.sort(key=lambda pair: pair[0])
    return [edge for _, edge in edges]


_RUST_USE_RE = _rx(r"^[ \t]*(?:pub(?:\([^)]*\))?[ \t]+)?use[ \t]+(?P<path>[^;]+);")


def _rust_imports(content: str) -> list[ImportEdge]:
    edges: list[ImportEdge] = []
    for m in _RUST_USE_RE.finditer(content):
        path = " ".join(m.group("path").split())
        if "{" in path:
            prefix, _, rest = path.partition("{")
            names = tuple(
                _local_name(part).rsplit("::", 1)[-1]
                for part in rest.rstrip("}").split(",")
                if part.strip()
            )
            edges.append(ImportEdge(prefix.rstrip(":").strip(), names))
        elif "::" in path:
            source, _, last = re.split(r"\s+as\s+", path)[0].rpartition("::")
            edges.append(ImportEdge(source, (_local_name(path) if " as " in path else last,)))
        else:
            edges.append(ImportEdge(path, (_local_name(path),)))
    return edges


def _dotted_imports(pattern: re.Pattern[str], separator: str = ".") -> ImportParser:
    """Build a parser for ``import a.b.C`` style languages (Java, Kotlin, C#, PHP)."""

    def parse(content: str) -> list[ImportEdge]:
        edges: list[ImportEdge] = []
        for m in pattern.finditer(content):
            path = m.group("path")
            alias = m.groupdict().get("alias")
            source, _, last = path.rpartition(separator)
            edges.append(ImportEdge(source or path, (alias or last or path,)))
        return edges

    return parse


def _plain_imports(pattern: re.Pattern[str], bind_source: bool = False) -> ImportParser:
    """Build a parser for statements that name a module but bind nothing (include, require)."""

    def parse(content: str) -> list[ImportEdge]:
        return [
            ImportEdge(m.group("source"), (m.group("source"),) if bind_source else ())
            for m in pattern.finditer(content)
        ]

    return parse


def _combine(*parsers: ImportParser) -> ImportParser:
    def parse(content: str) -> list[ImportEdge]:
        edges: list[ImportEdge] = []
        for parser in parsers:
            edges.extend(parser(content))
        return edges

    return parse


def _go_receiver_name(m: re.Match[str]) -> str:
    receiver = m.group("recv")
    name = m.group("name")
    if not receiver:
        return name
    receiver_type = receiver.split()[-1].lstrip("*")
    receiver_type = receiver_type.split("[", 1)[0]
    return f"{receiver_type}.{name}"


_JAVA_MODS = r"(?:(?:public|protected|private|abstract|final|static|synchronized|native|default|strictfp|sealed|non-sealed)[ \t]+)*"
_CS_MODS = r"(?:(?:public|private|protected|internal|static|virtual|override|abstract|async|sealed|extern|unsafe|new|partial|readonly)[ \t]+)*"
_KT_MODS = r"(?:(?:public|private|protected|internal|open|override|abstract|final|suspend|inline|operator|infix|tailrec|external|data|sealed|inner|value|annotation|companion)[ \t]+)*"
_SWIFT_MODS = r"(?:(?:public|private|fileprivate|internal|open|static|class|final|override|mutating|nonmutating|@\w+)[ \t]+)*"
_RUST_VIS = r"(?:pub(?:\([^)]*\))?[ \t]+)?"

_PYTHON = ExtractorSpec(
    declarations=(
        _decl("function", r"^[ \t]*(?:async[ \t]+)?def[ \t]+(?P<name>\w+)[ \t]*(?P<sig>\([^)]*\)(?:[ \t]*->[ \t]*[^:\n]+)?)"),
        _decl("class", r"^[ \t]*class[ \t]+(?P<name>\w+)[ \t]*(?P<sig>\([^)]*\))?[ \t]*:"),
        _decl("const", r"^(?P<name>[A-Z][A-Z0-9_]*)[ \t]*(?::[^=\n]+)?=(?!=)"),
    ),
    imports=_python_imports,
    exported=_not_underscore,
    block="indent",
)

_JS_EXPORT = r"(?P<export>export[ \t]+(?:default[ \t]+)?)?"
_JAVASCRIPT = ExtractorSpec(
    declarations=(
        _decl("function", rf"^[ \t]*{_JS_EXPORT}(?:async[ \t]+)?function[ \t]*\*?[ \t]*(?P<name>\w+)[ \t]*(?P<sig>(?:<[^>]*>)?[ \t]*\([^)]*\))"),
        _decl("function", rf"^[ \t]*{_JS_EXPORT}(?:const|let|var)[ \t]+(?P<name>\w+)[ \t]*(?::[^=\n]+)?=[ \t]*(?:async[ \t]+)?(?P<sig>\([^)]*\)|\w+)[ \t]*(?::[^=\n]+)?=>"),
        _decl("class", rf"^[ \t]*{_JS_EXPORT}(?:abstract[ \t]+)?class[ \t]+(?P<name>\w+)(?P<sig>[^{{\n]*)"),
        _decl("interface", rf"^[ \t]*{_JS_EXPORT}(?:declare[ \t]+)?interface[ \t]+(?P<name>\w+)(?P<sig>[^{{\n]*)"),
        _decl("type", rf"^[ \t]*{_JS_EXPORT}(?:declare[ \t]+)?type[ \t]+(?P<name>\w+)[ \t]*(?P<sig><[^>\n]*>)?[ \t]*="),
        _decl("enum", rf"^[ \t]*{_JS_EXPORT}(?:declare[ \t]+)?(?:const[ \t]+)?enum[ \t]+(?P<name>\w+)"),
        _decl("const", r"^[ \t]*(?P<export>export[ \t]+)(?:const|let|var)[ \t]+(?P<name>\w+)"),
        _decl(
            "function",
            r"^[ \t]+(?:(?:public|private|protected|static|async|readonly|override|get|set)[ \t]+)*"
            r"(?P<name>\w+)[ \t]*(?P<sig>\([^)]*\))[ \t]*(?::[^{\n]+)?\{",
            exported=lambda name, text: re.search(r"\bprivate\b", text) is None,
        ),
    ),
    imports=_js_imports,
    exported=_has_export_keyword,
    block="brace",
)

_GO = ExtractorSpec(
    declarations=(
        _decl(
            "function",
            r"^func[ \t]+(?:\((?P<recv>[^)]*)\)[ \t]*)?(?P<name>\w+)[ \t]*(?P<sig>(?:\[[^\]]*\])?\([^)]*\)[^{\n]*)",
            rename=_go_receiver_name,
        ),
        _decl("type", r"^type[ \t]+(?P<name>\w+)(?:\[[^\]]*\])?[ \t]+(?P<decl>struct|interface|\w+)",
              kind_map={"struct": "class", "interface": "interface"}),
        _decl("const", r"^const[ \t]+(?P<name>\w+)"),
    ),
    imports=_go_imports,
    exported=_capitalized,
    block="brace",
)

_RUST = ExtractorSpec(
    declarations=(
        _decl(
            "function",
            rf"^[ \t]*{_RUST_VIS}(?:(?:const|async|unsafe|extern(?:[ \t]+\"[^\"]*\")?)[ \t]+)*fn[ \t]+(?P<name>\w+)"
            r"[ \t]*(?P<sig>(?:<[^>]*>)?[ \t]*\([^)]*\)[^{;\n]*)",
        ),
        _decl(
            "type",
            rf"^[ \t]*{_RUST_VIS}(?P<decl>struct|union|trait|enum|type|const|static)[ \t]+(?:mut[ \t]+)?(?P<name>\w+)",
            kind_map={"struct": "class", "union": "class", "trait": "interface", "enum": "enum",
                      "type": "type", "const": "const", "static": "const"},
        ),
    ),
    imports=_rust_imports,
    exported=_starts_with_pub,
    block="brace",
)

_JAVA = ExtractorSpec(
    declarations=(
        _decl("class", rf"^[ \t]*{_JAVA_MODS}(?P<decl>class|interface|enum|record|@interface)[ \t]+(?P<name>\w+)(?P<sig>[^{{\n]*)",
              kind_map={"class": "class", "record": "class", "interface": "interface",
                        "@interface": "interface", "enum": "enum"}),
        _decl("const", rf"^[ \t]*(?:(?:public|protected|private)[ \t]+)?(?:static[ \t]+final|final[ \t]+static)[ \t]+[\w<>\[\],.? ]+?[ \t]+(?P<name>[A-Z][A-Z0-9_]*)[ \t]*="),
        _decl("function", rf"^[ \t]*{_JAVA_MODS}(?!(?:return|new|else|throw)\b)(?:<[^>]+>[ \t]+)?[\w<>\[\],.?]+[ \t]+(?P<name>\w+)[ \t]*(?P<sig>\([^)]*\))[ \t]*(?:throws[ \t]+[\w., ]+)?[ \t]*\{{"),
    ),
    imports=_dotted_imports(_rx(r"^[ \t]*import[ \t]+(?:static[ \t]+)?(?P<path>[\w.]+(?:\.\*)?)[ \t]*;")),
    exported=_has_public,
    block="brace",
)

_KOTLIN = ExtractorSpec(
    declarations=(
        _decl("function", rf"^[ \t]*{_KT_MODS}fun[ \t]+(?:<[^>]*>[ \t]*)?(?:[\w.]+\.)?(?P<name>\w+)[ \t]*(?P<sig>\([^)]*\)(?:[ \t]*:[ \t]*[^{{=\n]+)?)"),
        _decl("class", rf"^[ \t]*{_KT_MODS}(?P<decl>enum[ \t]+class|class|interface|object)[ \t]+(?P<name>\w+)(?P<sig>[^{{\n]*)",
              kind_map={"enum class": "enum", "class": "class", "interface": "interface", "object": "class"}),
        _decl("type", rf"^[ \t]*{_KT_MODS}typealias[ \t]+(?P<name>\w+)"),
        _decl("const", rf"^[ \t]*{_KT_MODS}const[ \t]+val[ \t]+(?P<name>\w+)"),
    ),
    imports=_dotted_imports(_rx(r"^[ \t]*import[ \t]+(?P<path>[\w.]+(?:\.\*)?)(?:[ \t]+as[ \t]+(?P<alias>\w+))?")),
    exported=_not_private,
    block="brace",
)

_CSHARP = ExtractorSpec(
    declarations=(
        _decl("class", rf"^[ \t]*{_CS_MODS}(?P<decl>class|interface|enum|struct|record)[ \t]+(?P<name>\w+)(?P<sig>[^{{\n]*)",
              kind_map={"class": "class", "struct": "class", "record": "class",
                        "interface": "interface", "enum": "enum"}),
        _decl("const", rf"^[ \t]*{_CS_MODS}const[ \t]+[\w<>\[\],.?]+[ \t]+(?P<name>\w+)[ \t]*="),
        _decl("function", rf"^[ \t]*{_CS_MODS}(?!(?:return|new|else|throw|await)\b)(?:[\w<>\[\],.?]+[ \t]+)?(?P<name>\w+)[ \t]*(?:<[^>]*>)?[ \t]*(?P<sig>\([^)]*\))[ \t]*(?::[^{{\n]*)?\{{"),
    ),
    imports=_dotted_imports(_rx(r"^[ \t]*using[ \t]+(?:static[ \t]+)?(?:(?P<alias>\w+)[ \t]*=[ \t]*)?(?P<path>[\w.]+)[ \t]*;")),
    exported=_has_public,
    block="brace",
)

_C_CPP = ExtractorSpec(
    declarations=(
        _decl("class", r"^[ \t]*(?:template[ \t]*<[^>]*>[ \t]*)?(?:typedef[ \t]+)?(?P<decl>struct|class|union|enum[ \t]+class|enum)[ \t]+(?P<name>\w+)[ \t]*(?P<sig>:[^{;\n]*)?\{",
              kind_map={"struct": "class", "class": "class", "union": "class",
                        "enum class": "enum", "enum": "enum"}),
        _decl("type", r"^typedef[ \t]+[^;{(]*?[ \t*](?P<name>\w+)[ \t]*;"),
        _decl("const", r"^[ \t]*#[ \t]*define[ \t]+(?P<name>[A-Z_][A-Z0-9_]*)[ \t]+\S"),
        _decl("function", r"^(?:(?:static|inline|extern|virtual|constexpr)[ \t]+)*(?!(?:return|else|typedef)\b)[\w:<>,]+(?:[ \t*&]+[\w:<>,]+)*[ \t*&]+(?P<name>[\w:~]+)[ \t]*(?P<sig>\([^;{)]*\))[ \t]*(?:const[ \t]*)?(?:noexcept[ \t]*)?(?:override[ \t]*)?(?=\n?\{)"),
    ),
    imports=_plain_imports(_rx(r"^[ \t]*#[ \t]*include[ \t]*[<\"](?P<source>[^>\"]+)[>\"]")),
    exported=_not_static,
    block="brace",
)

_RUBY = ExtractorSpec(
    declarations=(
        _decl("function", r"^[ \t]*def[ \t]+(?:self\.)?(?P<name>[\w]+[?!=]?)[ \t]*(?P<sig>\([^)]*\))?"),
        _decl("class", r"^[ \t]*(?P<decl>class|module)[ \t]+(?P<name>[\w:]+)(?P<sig>[ \t]*<[ \t]*[\w:]+)?"),
        _decl("const", r"^[ \t]*(?P<name>[A-Z][A-Z0-9_]*)[ \t]*=(?![=~])"),
    ),
    imports=_plain_imports(_rx(r"^[ \t]*require(?:_relative)?[ \t(]*['\"](?P<source>[^'\"]+)['\"]")),
    exported=_not_underscore,
    block="end",
)

_PHP = ExtractorSpec(
    declarations=(
        _decl("class", r"^[ \t]*(?:(?:abstract|final|readonly)[ \t]+)*(?P<decl>class|interface|trait|enum)[ \t]+(?P<name>\w+)(?P<sig>[^{\n]*)",
              kind_map={"class": "class", "interface": "interface", "trait": "interface", "enum": "enum"}),
        _decl("function", r"^[ \t]*(?:(?:public|private|protected|static|abstract|final)[ \t]+)*function[ \t]+&?(?P<name>\w+)[ \t]*(?P<sig>\([^)]*\))"),
        _decl("const", r"^[ \t]*(?:(?:public|private|protected|final)[ \t]+)*const[ \t]+(?P<name>\w+)[ \t]*="),
    ),
    imports=_combine(
        _dotted_imports(_rx(r"^[ \t]*use[ \t]+(?P<path>[\w\\]+)(?:[ \t]+as[ \t]+(?P<alias>\w+))?[ \t]*;"), separator="\\"),
        _plain_imports(_rx(r"^[ \t]*(?:require|include)(?:_once)?[ \t(]*['\"](?P<source>[^'\"]+)['\"]")),
    ),
    exported=_not_private,
    block="brace",
)

_SWIFT = ExtractorSpec(
    declarations=(
        _decl("function", rf"^[ \t]*{_SWIFT_MODS}func[ \t]+(?P<name>\w+)[ \t]*(?P<sig>(?:<[^>]*>)?\([^)]*\)[^{{\n]*)"),
        _decl("class", rf"^[ \t]*{_SWIFT_MODS}(?P<decl>class|struct|actor|protocol|enum)[ \t]+(?P<name>\w+)(?P<sig>[^{{\n]*)",
              kind_map={"class": "class", "struct": "class", "actor": "class",
                        "protocol": "interface", "enum": "enum"}),
        _decl("type", rf"^[ \t]*{_SWIFT_MODS}typealias[ \t]+(?P<name>\w+)"),
        _decl("const", r"^(?:(?:public|internal|fileprivate|private)[ \t]+)?let[ \t]+(?P<name>\w+)"),
    ),
    imports=_plain_imports(
        _rx(r"^[ \t]*import[ \t]+(?:(?:class|struct|enum|protocol|func|var|let|typealias)[ \t]+)?(?P<source>[\w.]+)"),
        bind_source=True,
    ),
    exported=_not_private,
    block="brace",
)

_BASH = ExtractorSpec(
    declarations=(
        _decl("function", r"^[ \t]*function[ \t]+(?P<name>[\w:.-]+)[ \t]*(?:\(\))?[ \t]*\{?"),
        _decl("function", r"^[ \t]*(?P<name>[\w:.-]+)[ \t]*\(\)[ \t]*\{?"),
        _decl("const", r"^(?:readonly|declare[ \t]+-r|export)[ \t]+(?P<name>[A-Za-z_]\w*)="),
    ),
    imports=_plain_imports(_rx(r"^[ \t]*(?:source|\.)[ \t]+['\"]?(?P<source>[^'\"\s;]+)")),
    exported=_not_underscore,
    block="brace",
)

GENERIC: Final[ExtractorSpec] = ExtractorSpec(
    declarations=(
        _decl(
            "class",
            r"^[ \t]*(?:(?:export|pub|public|abstract)[ \t]+)*(?P<decl>class|struct|trait|protocol|interface|module)[ \t]+(?P<name>\w+)",
            kind_map={"class": "class", "struct": "class", "module": "class",
                      "trait": "interface", "protocol": "interface", "interface": "interface"},
        ),
        _decl("function", r"^[ \t]*(?:(?:export|pub|public|static|async)[ \t]+)*(?:def|fn|func|fun|function|sub|proc|defn)[ \t]+(?P<name>[\w.?!-]+)"),
        _decl("function", r"^[ \t]*(?:(?:public|private|protected|static|export)[ \t]+)*(?:\w+[ \t]+)?(?P<name>\w+)[ \t]*(?P<sig>\([^)\n]*\))[ \t]*\{"),
    ),
    block="brace",
)

# Data and markup formats carry no symbols worth indexing.
NO_SYMBOLS: Final[ExtractorSpec] = ExtractorSpec()

EXTRACTORS: Final[dict[str, ExtractorSpec]] = {
    "python": _PYTHON,
    "javascript": _JAVASCRIPT,
    "typescript": _JAVASCRIPT,
    "go": _GO,
    "rust": _RUST,
    "java": _JAVA,
    "kotlin": _KOTLIN,
    "csharp": _CSHARP,
    "c": _C_CPP,
    "cpp": _C_CPP,
    "ruby": _RUBY,
    "php": _PHP,
    "swift": _SWIFT,
    "bash": _BASH,
    **{
        lang: NO_SYMBOLS
        for lang in ("json", "yaml", "toml", "xml", "markdown", "html", "css")
    },
}


class ExtractorRegistry:
    """Maps language identifiers to extractor specs and runs them safely.

    Usage::

        registry = ExtractorRegistry()
        result = registry.extract("python", content, content.split("\n"), "app.py")
    """

    def __init__(
        self,
        extractors: Mapping[str, ExtractorSpec] | None = None,
        fallback: ExtractorSpec = GENERIC,
    ) -> None:
        self._extractors: dict[str, ExtractorSpec] = dict(
            EXTRACTORS if extractors is None else extractors
        )
        self._fallback = fallback

    def register(self, language: str, spec: ExtractorSpec) -> None:
        """Add or replace the extractor for a language."""
        self._extractors[language] = spec

    def spec_for(self, language: str | None) -> ExtractorSpec:
        if language is None:
            return self._fallback
        return self._extractors.get(language, self._fallback)

    def extracts(self, language: str | None) -> bool:
        """Return False when files of this language can never yield symbols."""
        return self.spec_for(language).extracts_anything

    def extract(
        self, language: str | None, content: str, lines: list[str], file: str = ""
    ) -> ParseResult:
        """Extract symbols and imports from already-loaded file content.

        Never raises: any failure inside an extractor becomes a failed
        ParseResult.

        Args:
            language: Language identifier, or None for unknown files.
            content: Full file text.
            lines: content split into lines.
            file: Project-relative path stamped onto each symbol.

        Returns:
            The extraction outcome.
        """
        try:
            return _run(self.spec_for(language), content, lines, file)
        except Exception as exc:  # noqa: BLE001
            return ParseResult.failed(exc)

    def extract_file(self, path: Path, language: str | None, file: str) -> ParseResult:
        """Read a file from disk and extract it.

        Args:
            path: Absolute path to read.
            language: Language identifier, or None.
            file: Project-relative path stamped onto each symbol.

        Returns:
            The extraction outcome; unreadable files yield a failed result.
        """
        try:
            content = path.read_text(encoding="utf-8", errors="replace")
        except OSError as exc:
            return ParseResult.failed(exc)
        return self.extract(language, content, content.split("\n"), file)


def _run(spec: ExtractorSpec, content: str, lines: list[str], file: str) -> ParseResult:
    """Apply every declaration pattern, then resolve spans and import usage."""
    found: dict[tuple[str, int], Symbol] = {}

    for decl in spec.declarations:
        for m in decl.regex.finditer(content):
            name = decl.rename(m) if decl.rename else m.group("name")
            if not name or name in _NOT_A_NAME:
                continue

            kind = decl.kind
            groups = m.groupdict()
            if decl.kind_map is not None and groups.get("decl"):
                kind = decl.kind_map.get(" ".join(groups["decl"].split()), decl.kind)

            start_line = content.count("\n", 0, m.start()) + 1
            if (name, start_line) in found:
                continue

            text = m.group(0)
            is_exported = (decl.exported or spec.exported)(name, text)
            found[(name, start_line)] = Symbol(
                name=name,
                kind=kind,
                file=file,
                start_line=start_line,
                end_line=_block_end(spec.block, content, lines, m, start_line),
                exported=is_exported,
                signature=_clean_signature(groups.get("sig")),
            )

    symbols = sorted(found.values(), key=lambda s: s.start_line)
    imports = spec.imports(content) if spec.imports is not None else []
    if imports and symbols:
        imports = _resolve_usage(imports, symbols, lines)
    return ParseResult(symbols=symbols, imports=imports)


def _clean_signature(raw: str | None) -> str | None:
    if not raw:
        return None
    sig = " ".join(raw.split())
    if not sig:
        return None
    if len(sig) > _MAX_SIGNATURE_LEN:
        sig = sig[: _MAX_SIGNATURE_LEN - 3] + "..."
    return sig


def _block_end(
    style: BlockStyle | None,
    content: str,
    lines: list[str],
    m: re.Match[str],
    start_line: int,
) -> int:
    if style == "brace":
        return _brace_block_end(content, m.start(), start_line)
    if style == "indent":
        return _indent_block_end(lines, start_line)
    if style == "end":
        return _keyword_block_end(lines, start_line)
    return start_line


def _brace_block_end(content: str, offset: int, start_line: int) -> int:
    """Find the line closing the first brace block opened near offset.

    The opening brace must appear on the declaration line or the one after
    it; otherwise the declaration is treated as a single line.
    """
    depth = 0
    line = start_line
    opened = False
    quote: str | None = None
    i = offset
    n = len(content)
    while i < n:
        ch = content[i]
        if ch == "\n":
            line += 1
            quote = None
            if not opened and line > start_line + 1:
                return start_line
        elif quote is not None:
            if ch == "\\":
                i += 1
            elif ch == quote:
                quote = None
        elif ch in "\"'`":
            quote = ch
        elif ch == "/" and content.startswith("//", i):
            nl = content.find("\n", i)
            if nl == -1:
                break
            i = nl
            continue
        elif ch == "{":
            depth += 1
            opened = True
        elif ch == "}":
            depth -= 1
            if opened and depth <= 0:
                return line
        elif ch == ";" and not opened:
            return line
        i += 1
    return line if opened else start_line


def _indent_of(line: str) -> int:
    return len(line) - len(line.lstrip(" \t"))


def _indent_block_end(lines: list[str], start_line: int) -> int:
    """Find the last line of an indentation-delimited (Python) block."""
    idx = start_line - 1
    if idx >= len(lines):
        return start_line
    base = _indent_of(lines[idx])

    # Skip past a signature that spans several lines.
    depth = 0
    header_end = idx
    for j in range(idx, len(lines)):
        depth += lines[j].count("(") + lines[j].count("[") - lines[j].count(")") - lines[j].count("]")
        header_end = j
        if depth <= 0:
            break

    end = header_end
    for j in range(header_end + 1, len(lines)):
        stripped = lines[j].strip()
        if not stripped:
            continue
        if _indent_of(lines[j]) <= base:
            break
        end = j
    return end + 1


_END_OPENER_RE = re.compile(
    r"^(?:def|class|module|if|unless|case|while|until|for|begin)\b|\bdo(?:[ \t]*\|[^|]*\|)?[ \t]*$"
)
_END_CLOSER_RE = re.compile(r"^end\b")


def _keyword_block_end(lines: list[str], start_line: int) -> int:
    """Match ``def``/``class`` against its closing ``end`` (Ruby)."""
    idx = start_line - 1
    if idx >= len(lines):
        return start_line
    if re.search(r"\bend\b", lines[idx].split("#", 1)[0]) and not lines[idx].strip().startswith("end"):
        return start_line
    depth = 1
    for j in range(idx + 1, len(lines)):
        stripped = lines[j].strip()
        if not stripped or stripped.startswith("#"):
            continue
        if _END_CLOSER_RE.match(stripped):
            depth -= 1
            if depth == 0:
                return j + 1
        elif _END_OPENER_RE.search(stripped) and not re.search(r"\bend\b", stripped):
            depth += 1
    return start_line


def _resolve_usage(
    imports: list[ImportEdge], symbols: list[Symbol], lines: list[str]
) -> list[ImportEdge]:
    """Fill ImportEdge.used_by with the symbols whose body mentions an imported name."""
    words_by_symbol: list[tuple[str, set[str]]] = []
    for sym in symbols:
        body = "\n".join(lines[sym.start_line - 1 : sym.end_line])
        words_by_symbol.append((sym.name, set(_WORD_RE.findall(body))))

    resolved: list[ImportEdge] = []
    for edge in imports:
        wanted = {name for name in edge.imported if name and name != "*"}
        users: list[str] = []
        if wanted:
            for name, words in words_by_symbol:
                if name not in users and not wanted.isdisjoint(words):
                    users.append(name)
        resolved.append(ImportEdge(edge.source, edge.imported, tuple(users)))
    return resolved
