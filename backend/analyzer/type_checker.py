"""
Type resolution for Go packages.
Builds a TypeOracle over a package's resolved symbols: every identifier
occurrence maps to its declaration handle and declared container kind.
A package with syntax errors cannot be resolved; that failure is fatal for it.
"""
from __future__ import annotations
import logging
from dataclasses import dataclass
from typing import NewType, Optional

from tree_sitter import Node

from parser.go_types import ContainerKind
from parser.symbol_extractor import (
    PackageSymbols,
    SourceFile,
    Symbol,
    extract_package_symbols,
    find_syntax_error,
)

log = logging.getLogger(__name__)

# Opaque declaration handle; equal for every occurrence of one declared variable.
VariableIdentity = NewType("VariableIdentity", int)


@dataclass
class Diagnostic:
    file: str
    line: int
    severity: str  # ERROR, WARNING
    message: str
    code: str = ""
    column: int = 0

    def to_dict(self) -> dict:
        return {
            "file": self.file,
            "line": self.line,
            "column": self.column,
            "severity": self.severity,
            "message": self.message,
            "code": self.code or "",
        }

    def __str__(self) -> str:
        return f"{self.file}:{self.line}:{self.column}: {self.message}"


class ResolutionError(Exception):
    """Type information could not be built for a compilation unit."""

    def __init__(self, message: str, file: str = "", line: int = 0, column: int = 0):
        super().__init__(message)
        self.file = file
        self.line = line
        self.column = column


class TypeOracle:
    """Read-only answers about identifier occurrences of one package."""

    def __init__(self, package_symbols: PackageSymbols):
        self._symbols = package_symbols

    def symbol(self, file_path: str, node: Node) -> Optional[Symbol]:
        if node.type != "identifier":
            return None
        return self._symbols.symbol_at(file_path, node)

    def resolve(self, file_path: str, node: Node) -> ContainerKind:
        sym = self.symbol(file_path, node)
        if sym is None or sym.type is None:
            return ContainerKind.UNKNOWN
        if sym.kind not in ("variable", "parameter"):
            return ContainerKind.OTHER
        return sym.type.kind

    def identity(self, file_path: str, node: Node) -> Optional[VariableIdentity]:
        sym = self.symbol(file_path, node)
        if sym is None:
            return None
        return VariableIdentity(sym.decl_id)

    def is_builtin(self, file_path: str, node: Node) -> bool:
        """True when the identifier is not shadowed by any package or local declaration."""
        return node.type == "identifier" and self.symbol(file_path, node) is None


def check_types(files: list[SourceFile]) -> TypeOracle:
    """Resolve a compilation unit; raises ResolutionError when it is malformed."""
    if not files:
        raise ResolutionError("no Go files in package")
    for f in files:
        err = find_syntax_error(f)
        if err is not None:
            line, column = err.start_point[0] + 1, err.start_point[1] + 1
            raise ResolutionError(
                f"{f.path}:{line}:{column}: syntax error",
                file=f.path, line=line, column=column,
            )
    names = {f.package_name for f in files}
    if len(names) > 1:
        raise ResolutionError(
            f"found packages {', '.join(sorted(names))} in {files[0].path}",
            file=files[0].path,
        )
    return TypeOracle(extract_package_symbols(files))
