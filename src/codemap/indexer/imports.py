"""Import graph queries over a CodeIndex."""

from __future__ import annotations

from dataclasses import asdict, dataclass, field
from typing import Any

from codemap.indexer.index import CodeIndex
from codemap.indexer.parser import ImportEdge


@dataclass
class FileImports:
    """Import edges of one file."""

    file: str
    imports: list[ImportEdge] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {"file": self.file, "imports": [asdict(edge) for edge in self.imports]}


def file_imports(index: CodeIndex, file: str) -> FileImports | None:
    """All import edges of file, or None if the file has none indexed."""
    edges = index.imports_by_file.get(file)
    if edges is None:
        return None
    return FileImports(file=file, imports=list(edges))


def imports_module(source: str, module: str) -> bool:
    """Whether an import specifier refers to module (exactly, or as a path suffix)."""
    return (
        source == module
        or source.endswith(f"/{module}")
        or source.endswith(f"/{module}.js")
        or source.endswith(f"/{module}.ts")
    )


def find_importers(index: CodeIndex, module: str) -> list[FileImports]:
    """Files importing module, each with only the matching edges."""
    results: list[FileImports] = []
    for file, edges in index.imports_by_file.items():
        matching = [edge for edge in edges if imports_module(edge.source, module)]
        if matching:
            results.append(FileImports(file=file, imports=matching))
    return results


def symbol_import_usage(index: CodeIndex, file: str, symbol: str) -> FileImports | None:
    """Edges of file whose imported names are used by symbol, or None."""
    edges = index.imports_by_file.get(file)
    if not edges:
        return None
    relevant = [edge for edge in edges if symbol in edge.used_by]
    if not relevant:
        return None
    return FileImports(file=file, imports=relevant)
