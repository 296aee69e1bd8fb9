"""
Selection Set - codes picked from catalog results, in pick order.
"""
from typing import Iterable, List

from .schemas import CodeMapping


class SelectionSet:
    """
    Order-preserving set of CodeMappings keyed by `id` alone.

    Two mappings from different queries that share an `id` occupy the same
    slot even when their terms differ.
    """

    def __init__(self, mappings: Iterable[CodeMapping] = ()):
        self._items: List[CodeMapping] = []
        for mapping in mappings:
            self.add(mapping)

    def contains(self, mapping: CodeMapping) -> bool:
        return any(item.id == mapping.id for item in self._items)

    def add(self, mapping: CodeMapping) -> None:
        """Select `mapping` unless its id is already selected."""
        if not self.contains(mapping):
            self._items.append(mapping)

    def toggle(self, mapping: CodeMapping) -> bool:
        """
        Select or deselect `mapping`.

        Returns:
            True if the mapping is selected after the call
        """
        if self.contains(mapping):
            self._items = [item for item in self._items if item.id != mapping.id]
            return False
        self._items.append(mapping)
        return True

    def clear(self) -> None:
        self._items = []

    def all(self) -> List[CodeMapping]:
        return list(self._items)

    def __len__(self) -> int:
        return len(self._items)

    def __iter__(self):
        return iter(list(self._items))

    def __contains__(self, mapping: CodeMapping) -> bool:
        return self.contains(mapping)
