"""
Set of variables whose length has been checked so far in one traversal.
Append-only: a guarded variable stays guarded until the traversal ends.
"""
from __future__ import annotations

from analyzer.type_checker import VariableIdentity


class GuardRegistry:
    def __init__(self) -> None:
        self._guarded: set[VariableIdentity] = set()

    def register(self, identity: VariableIdentity) -> None:
        self._guarded.add(identity)

    def __contains__(self, identity: object) -> bool:
        return identity in self._guarded

    def __len__(self) -> int:
        return len(self._guarded)
