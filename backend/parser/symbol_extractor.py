"""
Go symbol extraction using Tree-sitter.
Extracts functions, methods, variables, parameters, constants, types and imports
with metadata (name, type, file, line, scope) and resolves every identifier
occurrence of a package to the declaration it refers to, following Go's block
scoping rules.
"""
from __future__ import annotations
import logging
from dataclasses import dataclass, field
from typing import Optional

import tree_sitter_go
from tree_sitter import Language, Node, Parser, Tree

from .go_types import (
    GoType,
    OTHER_TYPE,
    UNKNOWN_TYPE,
    ContainerKind,
    element_of,
    range_types,
    slice_of,
    type_from_node,
)

log = logging.getLogger(__name__)

GO_LANGUAGE = Language(tree_sitter_go.language())

# Builtins whose result is never a slice or array
_SCALAR_BUILTINS = {"len", "cap", "copy", "new", "complex", "real", "imag", "min", "max", "recover"}

_LITERAL_NODES = {
    "int_literal", "float_literal", "imaginary_literal", "rune_literal",
    "interpreted_string_literal", "raw_string_literal", "true", "false",
    "nil", "iota", "binary_expression", "func_literal",
}

_TYPE_NODES = {
    "slice_type", "array_type", "implicit_length_array_type", "map_type",
    "channel_type", "pointer_type", "parenthesized_type", "type_identifier",
    "generic_type", "qualified_type", "function_type", "struct_type",
    "interface_type",
}

# Statements that open an implicit block around their own clauses
_SCOPED_STATEMENTS = {
    "if_statement", "for_statement", "expression_switch_statement",
    "select_statement", "expression_case", "default_case", "communication_case",
}


def _get_parser() -> Parser:
    return Parser(GO_LANGUAGE)


def _source_at(node: Node, source: bytes) -> str:
    return source[node.start_byte:node.end_byte].decode("utf-8", errors="replace")


def _line_of(node: Node) -> int:
    return node.start_point[0] + 1


def _column_of(node: Node) -> int:
    return node.start_point[1] + 1


def _expressions(node: Optional[Node]) -> list[Node]:
    """Expressions of an expression_list (or a lone expression), skipping comments."""
    if node is None:
        return []
    if node.type != "expression_list":
        return [node]
    return [c for c in node.named_children if c.type != "comment"]


@dataclass
class SourceFile:
    path: str
    source: bytes
    tree: Tree

    @property
    def root(self) -> Node:
        return self.tree.root_node

    @property
    def package_name(self) -> str:
        for c in self.root.children:
            if c.type == "package_clause":
                for sub in c.named_children:
                    return _source_at(sub, self.source).strip()
        return ""

    @property
    def is_test(self) -> bool:
        return self.path.endswith("_test.go")

    def text(self, node: Node) -> str:
        return _source_at(node, self.source)


def parse_go_source(source: bytes, file_path: str) -> SourceFile:
    tree = _get_parser().parse(source)
    return SourceFile(path=file_path, source=source, tree=tree)


def find_syntax_error(file: SourceFile) -> Optional[Node]:
    """Return the first ERROR or missing node of the tree, if any."""
    if not file.root.has_error:
        return None
    stack = [file.root]
    while stack:
        node = stack.pop()
        if node.type == "ERROR" or node.is_missing:
            return node
        stack.extend(c for c in reversed(node.children) if c.has_error or c.is_missing)
    return file.root


@dataclass
class Symbol:
    name: str
    kind: str  # variable, parameter, constant, function, method, type, package
    file_path: str = ""
    line: int = 0
    column: int = 0
    scope: str = ""
    decl_id: int = -1
    type: Optional[GoType] = None
    results: list[GoType] = field(default_factory=list)  # function / method results


class Scope:
    def __init__(self, parent: Optional["Scope"] = None, name: str = ""):
        self.parent = parent
        self.name = name
        self.names: dict[str, Symbol] = {}
        # local type names: alias target, or None for a defined type
        self.aliases: dict[str, Optional[tuple[Node, bytes]]] = {}

    def lookup(self, name: str) -> Optional[Symbol]:
        scope: Optional[Scope] = self
        while scope is not None:
            sym = scope.names.get(name)
            if sym is not None:
                return sym
            scope = scope.parent
        return None

    def child(self, name: Optional[str] = None) -> "Scope":
        return Scope(self, self.name if name is None else name)


@dataclass
class PackageSymbols:
    """Declarations of one package plus the identifier -> declaration map."""
    symbols: list[Symbol]
    uses: dict[tuple[str, int], int]  # (file path, identifier start byte) -> decl_id

    def symbol_at(self, file_path: str, node: Node) -> Optional[Symbol]:
        decl_id = self.uses.get((file_path, node.start_byte))
        if decl_id is None:
            return None
        return self.symbols[decl_id]


class _PackageResolver:
    def __init__(self, files: list[SourceFile]):
        self.files = files
        self.symbols: list[Symbol] = []
        self.uses: dict[tuple[str, int], int] = {}
        self.package_scope = Scope()
        self.file_scopes: dict[str, Scope] = {}
        self.aliases: dict[str, tuple[Node, bytes]] = {}
        self.struct_fields: dict[str, dict[str, tuple[Node, bytes]]] = {}
        self.methods: dict[tuple[Optional[str], str], Symbol] = {}
        # package-level vars without an explicit type: (file, value list, index, count)
        self._pending: dict[int, tuple[SourceFile, Optional[Node], int, int]] = {}

    def run(self) -> None:
        for f in self.files:
            self.file_scopes[f.path] = self.package_scope.child()
        for f in self.files:
            self._collect_types(f)
        for f in self.files:
            self._collect_declarations(f)
        for f in self.files:
            self._walk_file(f)
        for sym in self.symbols:
            if sym.kind == "variable" and sym.type is None:
                self.type_of(sym)

    # ------------------------------------------------------------------
    # Declarations
    # ------------------------------------------------------------------

    def _declare(self, scope: Scope, node: Node, kind: str, file: SourceFile,
                 go_type: Optional[GoType] = None, name: Optional[str] = None) -> Optional[Symbol]:
        name = name if name is not None else file.text(node).strip()
        if not name or name == "_":
            return None
        sym = Symbol(
            name=name, kind=kind, file_path=file.path,
            line=_line_of(node), column=_column_of(node), scope=scope.name,
            decl_id=len(self.symbols), type=go_type,
        )
        self.symbols.append(sym)
        self.uses[(file.path, node.start_byte)] = sym.decl_id
        scope.names[name] = sym
        return sym

    def _aliases_in(self, scope: Optional[Scope]) -> dict[str, tuple[Node, bytes]]:
        chain: list[Scope] = []
        while scope is not None:
            chain.append(scope)
            scope = scope.parent
        aliases = dict(self.aliases)
        for s in reversed(chain):
            for name, target in s.aliases.items():
                if target is None:
                    aliases.pop(name, None)
                else:
                    aliases[name] = target
        return aliases

    def _type(self, node: Optional[Node], file: SourceFile, scope: Optional[Scope] = None) -> GoType:
        aliases = self.aliases if scope is None else self._aliases_in(scope)
        return type_from_node(node, file.source, aliases)

    def _collect_types(self, file: SourceFile) -> None:
        for decl in file.root.children:
            if decl.type != "type_declaration":
                continue
            for spec in decl.named_children:
                if spec.type not in ("type_spec", "type_alias"):
                    continue
                name_node = spec.child_by_field_name("name")
                type_node = spec.child_by_field_name("type")
                if name_node is None or type_node is None:
                    continue
                name = file.text(name_node).strip()
                if spec.type == "type_alias":
                    self.aliases[name] = (type_node, file.source)
                elif type_node.type == "struct_type":
                    self.struct_fields[name] = self._struct_fields(type_node, file)
                self._declare(self.package_scope, name_node, "type", file, OTHER_TYPE)

    def _struct_fields(self, struct_node: Node, file: SourceFile) -> dict[str, tuple[Node, bytes]]:
        fields: dict[str, tuple[Node, bytes]] = {}
        for body in struct_node.named_children:
            if body.type != "field_declaration_list":
                continue
            for fd in body.named_children:
                if fd.type != "field_declaration":
                    continue
                type_node = fd.child_by_field_name("type")
                for name_node in fd.children_by_field_name("name"):
                    if type_node is not None:
                        fields[file.text(name_node).strip()] = (type_node, file.source)
        return fields

    def _result_types(self, result: Optional[Node], file: SourceFile,
                      scope: Optional[Scope] = None) -> list[GoType]:
        if result is None:
            return []
        if result.type != "parameter_list":
            return [self._type(result, file, scope)]
        types: list[GoType] = []
        for p in result.named_children:
            if p.type != "parameter_declaration":
                continue
            t = self._type(p.child_by_field_name("type"), file, scope)
            types.extend([t] * max(1, len(p.children_by_field_name("name"))))
        return types

    def _receiver_type_name(self, decl: Node, file: SourceFile) -> Optional[str]:
        receiver = decl.child_by_field_name("receiver")
        if receiver is None:
            return None
        for p in receiver.named_children:
            if p.type == "parameter_declaration":
                return self._type(p.child_by_field_name("type"), file).name
        return None

    @staticmethod
    def _specs(decl: Node, spec_type: str) -> list[Node]:
        specs: list[Node] = []
        for c in decl.named_children:
            if c.type == spec_type:
                specs.append(c)
            elif c.type.endswith("_spec_list"):
                specs.extend(s for s in c.named_children if s.type == spec_type)
        return specs

    def _collect_declarations(self, file: SourceFile) -> None:
        file_scope = self.file_scopes[file.path]
        for decl in file.root.children:
            t = decl.type
            if t == "function_declaration":
                name_node = decl.child_by_field_name("name")
                if name_node is None:
                    continue
                sym = self._declare(self.package_scope, name_node, "function", file, OTHER_TYPE)
                if sym is not None:
                    sym.results = self._result_types(decl.child_by_field_name("result"), file)
            elif t == "method_declaration":
                name_node = decl.child_by_field_name("name")
                if name_node is None:
                    continue
                recv = self._receiver_type_name(decl, file)
                name = file.text(name_node).strip()
                sym = Symbol(
                    name=name, kind="method", file_path=file.path,
                    line=_line_of(name_node), column=_column_of(name_node),
                    scope=recv or "", decl_id=len(self.symbols), type=OTHER_TYPE,
                    results=self._result_types(decl.child_by_field_name("result"), file),
                )
                self.symbols.append(sym)
                self.methods[(recv, name)] = sym
            elif t == "var_declaration":
                for spec in self._specs(decl, "var_spec"):
                    type_node = spec.child_by_field_name("type")
                    names = spec.children_by_field_name("name")
                    for i, name_node in enumerate(names):
                        go_type = self._type(type_node, file) if type_node is not None else None
                        sym = self._declare(self.package_scope, name_node, "variable", file, go_type)
                        if sym is not None and go_type is None:
                            self._pending[sym.decl_id] = (file, spec.child_by_field_name("value"), i, len(names))
            elif t == "const_declaration":
                for spec in self._specs(decl, "const_spec"):
                    for name_node in spec.children_by_field_name("name"):
                        self._declare(self.package_scope, name_node, "constant", file, OTHER_TYPE)
            elif t == "import_declaration":
                for spec in self._specs(decl, "import_spec"):
                    self._declare_import(spec, file_scope, file)

    def _declare_import(self, spec: Node, scope: Scope, file: SourceFile) -> None:
        name_node = spec.child_by_field_name("name")
        path_node = spec.child_by_field_name("path")
        if name_node is not None:
            if name_node.type != "package_identifier":
                return  # dot and blank imports
            self._declare(scope, name_node, "package", file, OTHER_TYPE)
        elif path_node is not None:
            path = file.text(path_node).strip().strip('"`')
            self._declare(scope, path_node, "package", file, OTHER_TYPE, name=path.rsplit("/", 1)[-1])

    def _declare_params(self, params: Optional[Node], scope: Scope, file: SourceFile) -> None:
        if params is None:
            return
        for p in params.named_children:
            if p.type == "parameter_declaration":
                go_type = self._type(p.child_by_field_name("type"), file, scope)
                for name_node in p.children_by_field_name("name"):
                    self._declare(scope, name_node, "parameter", file, go_type)
            elif p.type == "variadic_parameter_declaration":
                name_node = p.child_by_field_name("name")
                if name_node is not None:
                    element = self._type(p.child_by_field_name("type"), file, scope)
                    self._declare(scope, name_node, "parameter", file,
                                  GoType(ContainerKind.SLICE, element=element))

    # ------------------------------------------------------------------
    # Types of expressions
    # ------------------------------------------------------------------

    def type_of(self, sym: Symbol) -> GoType:
        if sym.type is not None:
            return sym.type
        pending = self._pending.pop(sym.decl_id, None)
        if pending is None:
            # still being computed: an initialization cycle
            return UNKNOWN_TYPE
        file, value, index, count = pending
        types = self._assigned_types(_expressions(value), count, self.file_scopes[file.path], file)
        sym.type = types[index]
        return sym.type

    def _infer(self, node: Node, scope: Scope, file: SourceFile) -> GoType:
        t = node.type
        if t == "identifier":
            sym = scope.lookup(file.text(node).strip())
            if sym is None:
                return UNKNOWN_TYPE
            if sym.kind in ("variable", "parameter"):
                return self.type_of(sym)
            return OTHER_TYPE
        if t == "parenthesized_expression":
            inner = [c for c in node.named_children if c.type != "comment"]
            return self._infer(inner[0], scope, file) if inner else UNKNOWN_TYPE
        if t in ("composite_literal", "type_conversion_expression", "type_assertion_expression"):
            return self._type(node.child_by_field_name("type"), file, scope)
        if t == "call_expression":
            return self._infer_call(node, scope, file, 0)
        if t == "index_expression":
            return element_of(self._infer(node.child_by_field_name("operand"), scope, file))
        if t == "slice_expression":
            return slice_of(self._infer(node.child_by_field_name("operand"), scope, file))
        if t == "selector_expression":
            base = self._infer(node.child_by_field_name("operand"), scope, file)
            fields = self.struct_fields.get(base.name or "")
            field_node = node.child_by_field_name("field")
            if fields and field_node is not None:
                entry = fields.get(file.text(field_node).strip())
                if entry is not None:
                    return type_from_node(entry[0], entry[1], self.aliases)
            return UNKNOWN_TYPE
        if t == "unary_expression":
            op = node.child_by_field_name("operator")
            if op is not None and file.text(op) in ("*", "<-"):
                return UNKNOWN_TYPE
            return OTHER_TYPE
        if t in _LITERAL_NODES:
            return OTHER_TYPE
        return UNKNOWN_TYPE

    def _infer_call(self, node: Node, scope: Scope, file: SourceFile, index: int) -> GoType:
        fn = node.child_by_field_name("function")
        args = node.child_by_field_name("arguments")
        arg_nodes = [c for c in args.named_children if c.type != "comment"] if args is not None else []
        if fn is None:
            return UNKNOWN_TYPE
        results: list[GoType] = []
        if fn.type == "identifier":
            name = file.text(fn).strip()
            sym = scope.lookup(name)
            if sym is None:
                if name == "make" and arg_nodes:
                    return self._type(arg_nodes[0], file, scope) if index == 0 else UNKNOWN_TYPE
                if name == "append" and arg_nodes:
                    return self._infer(arg_nodes[0], scope, file) if index == 0 else UNKNOWN_TYPE
                return OTHER_TYPE if name in _SCALAR_BUILTINS else UNKNOWN_TYPE
            if sym.kind == "function":
                results = sym.results
            elif sym.kind == "type":
                # conversion to a declared type
                aliases = self._aliases_in(scope)
                if name in aliases:
                    target, source = aliases[name]
                    return type_from_node(target, source, aliases)
                return GoType(ContainerKind.OTHER, name=name)
        elif fn.type == "selector_expression":
            base = self._infer(fn.child_by_field_name("operand"), scope, file)
            field_node = fn.child_by_field_name("field")
            if field_node is not None:
                method = self.methods.get((base.name, file.text(field_node).strip()))
                if method is not None and base.name is not None:
                    results = method.results
        elif fn.type == "func_literal":
            results = self._result_types(fn.child_by_field_name("result"), file, scope)
        elif fn.type in _TYPE_NODES:
            return self._type(fn, file, scope)
        return results[index] if index < len(results) else UNKNOWN_TYPE

    def _assigned_types(self, right: list[Node], count: int, scope: Scope, file: SourceFile) -> list[GoType]:
        if len(right) == count:
            return [self._infer(r, scope, file) for r in right]
        if len(right) == 1:
            r = right[0]
            if r.type == "call_expression":
                return [self._infer_call(r, scope, file, i) for i in range(count)]
            if count == 2:
                # v, ok := m[k] / x.(T) / <-ch
                return [self._infer(r, scope, file), OTHER_TYPE]
        return [UNKNOWN_TYPE] * count

    # ------------------------------------------------------------------
    # Scoped walk over bodies
    # ------------------------------------------------------------------

    def _walk_file(self, file: SourceFile) -> None:
        file_scope = self.file_scopes[file.path]
        for decl in file.root.children:
            t = decl.type
            if t in ("function_declaration", "method_declaration"):
                self._walk_function(decl, file_scope, file)
            elif t in ("var_declaration", "const_declaration"):
                spec_type = "var_spec" if t == "var_declaration" else "const_spec"
                for spec in self._specs(decl, spec_type):
                    for value in spec.children_by_field_name("value"):
                        self._walk(value, file_scope, file)

    def _walk_function(self, node: Node, parent: Scope, file: SourceFile) -> None:
        name = ""
        name_node = node.child_by_field_name("name")
        if name_node is not None:
            name = file.text(name_node).strip()
            if node.type == "method_declaration":
                recv = self._receiver_type_name(node, file)
                name = f"{recv}.{name}" if recv else name
        scope = parent.child(name) if name else parent.child()
        if node.type == "method_declaration":
            self._declare_params(node.child_by_field_name("receiver"), scope, file)
        self._declare_params(node.child_by_field_name("parameters"), scope, file)
        result = node.child_by_field_name("result")
        if result is not None and result.type == "parameter_list":
            self._declare_params(result, scope, file)
        body = node.child_by_field_name("body")
        if body is not None:
            for c in body.children:
                self._walk(c, scope, file)

    def _walk(self, root: Node, scope: Scope, file: SourceFile) -> None:
        # pre-order over an explicit stack; each entry carries the scope it is resolved in
        stack: list[tuple[Node, Scope]] = [(root, scope)]
        while stack:
            node, scope = stack.pop()
            t = node.type
            if t == "identifier":
                sym = scope.lookup(file.text(node).strip())
                if sym is not None:
                    self.uses[(file.path, node.start_byte)] = sym.decl_id
            elif t == "func_literal":
                self._walk_function(node, scope, file)
            elif t == "block" or t in _SCOPED_STATEMENTS:
                inner = scope.child()
                stack.extend((c, inner) for c in reversed(node.children))
            elif t == "short_var_declaration":
                self._walk_define(node.child_by_field_name("left"), node.child_by_field_name("right"), scope, file)
            elif t == "var_declaration":
                for spec in self._specs(node, "var_spec"):
                    self._walk_var_spec(spec, scope, file)
            elif t == "const_declaration":
                for spec in self._specs(node, "const_spec"):
                    for value in spec.children_by_field_name("value"):
                        self._walk(value, scope, file)
                    for name_node in spec.children_by_field_name("name"):
                        self._declare(scope, name_node, "constant", file, OTHER_TYPE)
            elif t == "type_declaration":
                self._walk_type_declaration(node, scope, file)
            elif t == "range_clause":
                self._walk_range(node, scope, file)
            elif t == "receive_statement" and any(c.type == ":=" for c in node.children):
                right = node.child_by_field_name("right")
                if right is not None:
                    self._walk(right, scope, file)
                for ident in _expressions(node.child_by_field_name("left")):
                    self._declare(scope, ident, "variable", file, UNKNOWN_TYPE)
            elif t == "type_switch_statement":
                self._walk_type_switch(node, scope, file)
            else:
                stack.extend((c, scope) for c in reversed(node.children))

    def _walk_type_declaration(self, node: Node, scope: Scope, file: SourceFile) -> None:
        for spec in node.named_children:
            name_node = spec.child_by_field_name("name")
            if name_node is None:
                continue
            type_node = spec.child_by_field_name("type")
            # a local defined type hides any alias of the same name from outer scopes
            if spec.type == "type_alias" and type_node is not None:
                scope.aliases[file.text(name_node).strip()] = (type_node, file.source)
            else:
                scope.aliases[file.text(name_node).strip()] = None
            self._declare(scope, name_node, "type", file, OTHER_TYPE)

    def _walk_define(self, left: Optional[Node], right: Optional[Node], scope: Scope, file: SourceFile) -> None:
        rhs = _expressions(right)
        for r in rhs:
            self._walk(r, scope, file)
        lhs = _expressions(left)
        types = self._assigned_types(rhs, len(lhs), scope, file)
        for ident, go_type in zip(lhs, types):
            if ident.type != "identifier":
                self._walk(ident, scope, file)
                continue
            existing = scope.names.get(file.text(ident).strip())
            if existing is not None:
                # redeclaration in the same scope assigns the existing variable
                self.uses[(file.path, ident.start_byte)] = existing.decl_id
            else:
                self._declare(scope, ident, "variable", file, go_type)

    def _walk_var_spec(self, spec: Node, scope: Scope, file: SourceFile) -> None:
        value = spec.child_by_field_name("value")
        rhs = _expressions(value)
        for r in rhs:
            self._walk(r, scope, file)
        names = spec.children_by_field_name("name")
        type_node = spec.child_by_field_name("type")
        if type_node is not None:
            types = [self._type(type_node, file, scope)] * len(names)
        else:
            types = self._assigned_types(rhs, len(names), scope, file)
        for name_node, go_type in zip(names, types):
            self._declare(scope, name_node, "variable", file, go_type)

    def _walk_range(self, node: Node, scope: Scope, file: SourceFile) -> None:
        right = node.child_by_field_name("right")
        if right is not None:
            self._walk(right, scope, file)
        left = node.child_by_field_name("left")
        if left is None:
            return
        if not any(c.type == ":=" for c in node.children):
            self._walk(left, scope, file)
            return
        lhs = _expressions(left)
        iterated = self._infer(right, scope, file) if right is not None else UNKNOWN_TYPE
        for ident, go_type in zip(lhs, range_types(iterated, len(lhs))):
            self._declare(scope, ident, "variable", file, go_type)

    def _walk_type_switch(self, node: Node, scope: Scope, file: SourceFile) -> None:
        switch_scope = scope.child()
        initializer = node.child_by_field_name("initializer")
        if initializer is not None:
            self._walk(initializer, switch_scope, file)
        value = node.child_by_field_name("value")
        if value is not None:
            self._walk(value, switch_scope, file)
        aliases = _expressions(node.child_by_field_name("alias"))
        for case in node.named_children:
            if case.type not in ("type_case", "default_case"):
                continue
            case_scope = switch_scope.child()
            case_types: list[Node] = []
            for c in case.children:
                if c.type == ":":
                    break
                if c.type in _TYPE_NODES:
                    case_types.append(c)
            go_type = self._type(case_types[0], file, switch_scope) if len(case_types) == 1 else UNKNOWN_TYPE
            for ident in aliases:
                self._declare(case_scope, ident, "variable", file, go_type)
            for c in case.children:
                self._walk(c, case_scope, file)


def extract_package_symbols(files: list[SourceFile]) -> PackageSymbols:
    """Resolve the declarations and identifier uses of one package."""
    resolver = _PackageResolver(files)
    resolver.run()
    log.debug("Resolved %d symbols, %d identifier uses over %d files",
              len(resolver.symbols), len(resolver.uses), len(files))
    return PackageSymbols(symbols=resolver.symbols, uses=resolver.uses)


def extract_symbols_from_source(source: bytes, file_path: str) -> list[Symbol]:
    """Symbols of a single Go file treated as its own package."""
    return extract_package_symbols([parse_go_source(source, file_path)]).symbols
