"""
Structural summaries of Go types built from tree-sitter type nodes.
Only the shape matters here: slice, fixed-size array, or anything else.
Element/key types are kept so indexing, slicing and range can be followed.
"""
from __future__ import annotations
import enum
from dataclasses import dataclass
from typing import Mapping, Optional

from tree_sitter import Node


class ContainerKind(enum.Enum):
    SLICE = "slice"
    ARRAY = "array"
    OTHER = "other"
    UNKNOWN = "unknown"


@dataclass(frozen=True)
class GoType:
    kind: ContainerKind
    element: Optional["GoType"] = None
    key: Optional["GoType"] = None  # map key type
    name: Optional[str] = None  # defined type name, for field/method lookup

    @property
    def is_container(self) -> bool:
        return self.kind in (ContainerKind.SLICE, ContainerKind.ARRAY)


UNKNOWN_TYPE = GoType(ContainerKind.UNKNOWN)
OTHER_TYPE = GoType(ContainerKind.OTHER)

# Alias chains deeper than this are treated as unresolvable.
_MAX_ALIAS_DEPTH = 16


def _text(node: Node, source: bytes) -> str:
    return source[node.start_byte:node.end_byte].decode("utf-8", errors="replace")


def type_from_node(
    node: Optional[Node],
    source: bytes,
    aliases: Optional[Mapping[str, tuple[Node, bytes]]] = None,
    _depth: int = 0,
) -> GoType:
    """Summarize a tree-sitter type node.

    ``aliases`` maps alias names (``type Ints = []int``) to their target type
    node and the source it lives in; aliases are transparent, defined types
    are not.
    """
    if node is None or _depth > _MAX_ALIAS_DEPTH:
        return UNKNOWN_TYPE
    t = node.type
    if t == "slice_type":
        return GoType(ContainerKind.SLICE, element=type_from_node(
            node.child_by_field_name("element"), source, aliases, _depth + 1))
    if t in ("array_type", "implicit_length_array_type"):
        return GoType(ContainerKind.ARRAY, element=type_from_node(
            node.child_by_field_name("element"), source, aliases, _depth + 1))
    if t == "map_type":
        return GoType(
            ContainerKind.OTHER,
            key=type_from_node(node.child_by_field_name("key"), source, aliases, _depth + 1),
            element=type_from_node(node.child_by_field_name("value"), source, aliases, _depth + 1),
        )
    if t == "channel_type":
        return GoType(ContainerKind.OTHER, element=type_from_node(
            node.child_by_field_name("value"), source, aliases, _depth + 1))
    if t in ("parenthesized_type", "pointer_type"):
        inner = node.named_children[0] if node.named_children else None
        inner_type = type_from_node(inner, source, aliases, _depth + 1)
        if t == "parenthesized_type":
            return inner_type
        # pointers auto-dereference for selectors but are never indexed as containers
        return GoType(ContainerKind.OTHER, name=inner_type.name)
    if t == "type_identifier":
        name = _text(node, source).strip()
        if aliases and name in aliases:
            target, target_source = aliases[name]
            return type_from_node(target, target_source, aliases, _depth + 1)
        return GoType(ContainerKind.OTHER, name=name)
    if t == "generic_type":
        base = node.child_by_field_name("type")
        name = _text(base, source).strip() if base is not None else None
        return GoType(ContainerKind.OTHER, name=name)
    return OTHER_TYPE


def element_of(go_type: GoType) -> GoType:
    """Type produced by indexing a value of ``go_type``."""
    if go_type.element is not None and (go_type.is_container or go_type.key is not None):
        return go_type.element
    return UNKNOWN_TYPE


def slice_of(go_type: GoType) -> GoType:
    """Type produced by ``x[lo:hi]``: arrays slice to slices, slices and strings keep their type."""
    if go_type.kind == ContainerKind.ARRAY:
        return GoType(ContainerKind.SLICE, element=go_type.element)
    return go_type


def range_types(go_type: GoType, count: int) -> list[GoType]:
    """Types of the (key, value) iteration variables of ``for k, v := range x``."""
    if go_type.is_container:
        types = [OTHER_TYPE, go_type.element or UNKNOWN_TYPE]
    elif go_type.key is not None:
        types = [go_type.key, go_type.element or UNKNOWN_TYPE]
    elif go_type.kind == ContainerKind.OTHER and go_type.element is not None:
        # channel: the only iteration variable is the received element
        types = [go_type.element, UNKNOWN_TYPE]
    elif go_type.kind == ContainerKind.OTHER:
        types = [OTHER_TYPE, OTHER_TYPE]
    else:
        types = [UNKNOWN_TYPE, UNKNOWN_TYPE]
    return types[:count] + [UNKNOWN_TYPE] * max(0, count - 2)
