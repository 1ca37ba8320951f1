"""
Slice/array length-check verification.
Flags index (x[i]) and slice (x[lo:hi]) expressions on slice- and array-typed
variables that are not textually preceded, within the same function, by a guard
on the variable's length:

- if len(x) <op> N { ... }            any comparison, either operand order
- for i := 0; i <op> len(x); i++ {}   counted-loop condition
- for ... := range x { ... }          iterating the container itself

Guards are flow-insensitive: once registered, a variable stays guarded for the
rest of the function, whichever branch the access sits in.
"""
from __future__ import annotations
import logging
from dataclasses import dataclass
from typing import Optional

from tree_sitter import Node

from parser.go_types import ContainerKind
from parser.symbol_extractor import SourceFile
from analyzer.guard_registry import GuardRegistry
from analyzer.type_checker import Diagnostic, TypeOracle

log = logging.getLogger(__name__)

LEN_FUNCTION_NAME = "len"

_COMPARISON_OPERATORS = {"==", "!=", "<", "<=", ">", ">="}


@dataclass(frozen=True)
class Checker:
    name: str
    doc: str

    @property
    def code(self) -> str:
        return f"{self.name.upper()}_UNCHECKED_LENGTH"


ARLEN = Checker("arlen", "verifies if array len was checked before accessing the array")
SLEN = Checker("slen", "verifies if slice len was checked before accessing the slice")
CHECKERS: dict[str, Checker] = {c.name: c for c in (ARLEN, SLEN)}


class LengthCheckAnalyzer:
    """Walks one file; each function body gets its own GuardRegistry."""

    def __init__(self, file: SourceFile, oracle: TypeOracle, checker: Checker = SLEN):
        self.file = file
        self.oracle = oracle
        self.checker = checker
        self.diagnostics: list[Diagnostic] = []

    def run(self) -> list[Diagnostic]:
        package_level = GuardRegistry()
        for decl in self.file.root.children:
            if decl.type in ("function_declaration", "method_declaration"):
                self.inspect(decl, GuardRegistry())
            else:
                self.inspect(decl, package_level)
        return self.diagnostics

    def inspect(self, root: Node, registry: GuardRegistry) -> None:
        # explicit pre-order stack; long operator chains nest deeper than the recursion limit
        stack = [root]
        while stack:
            node = stack.pop()
            t = node.type
            if t in ("index_expression", "slice_expression"):
                self.verify_access(node, registry)
            elif t == "if_statement":
                self.register_condition(node.child_by_field_name("condition"), registry)
            elif t == "for_statement":
                self.register_loop(node, registry)
            stack.extend(reversed(node.children))

    # ------------------------------------------------------------------
    # Guard recognition
    # ------------------------------------------------------------------

    def register_loop(self, stmt: Node, registry: GuardRegistry) -> None:
        for header in stmt.named_children:
            if header.type in ("block", "comment"):
                continue
            if header.type == "range_clause":
                self.register_range(header.child_by_field_name("right"), registry)
            elif header.type == "for_clause":
                self.register_condition(header.child_by_field_name("condition"), registry)
            else:
                # for <condition> { ... }
                self.register_condition(header, registry)
            return

    def register_range(self, expr: Optional[Node], registry: GuardRegistry) -> None:
        if expr is not None and expr.type == "identifier":
            self._register(expr, registry)

    def register_condition(self, cond: Optional[Node], registry: GuardRegistry) -> None:
        if cond is None or cond.type != "binary_expression":
            return
        operator = cond.child_by_field_name("operator")
        if operator is None or self.file.text(operator) not in _COMPARISON_OPERATORS:
            return
        left = self.get_len_expr(cond.child_by_field_name("left"))
        right = self.get_len_expr(cond.child_by_field_name("right"))
        if left is not None and right is not None:
            # len(a) == len(b) bounds neither container
            return
        len_expr = left if left is not None else right
        if len_expr is None:
            return
        args = len_expr.child_by_field_name("arguments")
        if args is None:
            return
        for arg in args.named_children:
            if arg.type == "identifier":
                self._register(arg, registry)

    def get_len_expr(self, expr: Optional[Node]) -> Optional[Node]:
        if expr is None or expr.type != "call_expression":
            return None
        fn = expr.child_by_field_name("function")
        if fn is None or fn.type != "identifier":
            return None
        if self.file.text(fn).strip() != LEN_FUNCTION_NAME:
            return None
        if not self.oracle.is_builtin(self.file.path, fn):
            return None
        return expr

    def _register(self, ident: Node, registry: GuardRegistry) -> None:
        identity = self.oracle.identity(self.file.path, ident)
        if identity is not None:
            registry.register(identity)

    # ------------------------------------------------------------------
    # Access verification
    # ------------------------------------------------------------------

    def verify_access(self, expr: Node, registry: GuardRegistry) -> None:
        ident = expr.child_by_field_name("operand")
        if ident is None or ident.type != "identifier":
            return
        kind = self.oracle.resolve(self.file.path, ident)
        if kind not in (ContainerKind.SLICE, ContainerKind.ARRAY):
            return
        identity = self.oracle.identity(self.file.path, ident)
        if identity is None or identity in registry:
            return
        name = self.file.text(ident).strip()
        self.report(ident, "check %s %s length before accessing", kind.value, name)

    def report(self, node: Node, fmt: str, *args: object) -> None:
        self.diagnostics.append(Diagnostic(
            file=self.file.path,
            line=node.start_point[0] + 1,
            column=node.start_point[1] + 1,
            severity="WARNING",
            code=self.checker.code,
            message=f"{self.checker.name}: {fmt % args}",
        ))


def check_length_guards(
    files: list[SourceFile],
    oracle: TypeOracle,
    checker: Checker = SLEN,
) -> list[Diagnostic]:
    diagnostics: list[Diagnostic] = []
    for f in files:
        file_diagnostics = LengthCheckAnalyzer(f, oracle, checker).run()
        log.debug("%s: %d unchecked accesses", f.path, len(file_diagnostics))
        diagnostics.extend(file_diagnostics)
    return diagnostics
