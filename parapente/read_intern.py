"""Interning of read names to dense integer ids."""

from __future__ import annotations

from typing import Iterable, Optional


class ReadInterner:
    """Maps read names to stable, dense ids and back."""

    def __init__(self) -> None:
        self._forward: dict[str, int] = {}
        self._backward: list[str] = []

    def intern(self, name: str) -> int:
        """Id for ``name``, assigning the next free id on first sight."""
        existing = self._forward.get(name)
        if existing is not None:
            return existing
        new_id = len(self._backward)
        self._backward.append(name)
        self._forward[name] = new_id
        return new_id

    def id_to_string(self, id_: int) -> Optional[str]:
        if 0 <= id_ < len(self._backward):
            return self._backward[id_]
        return None

    def __len__(self) -> int:
        return len(self._backward)

    def bitmap_to_set(self, ids: Iterable[int]) -> set[str]:
        """Names for a collection of ids; unknown ids are skipped."""
        return {name for name in map(self.id_to_string, ids) if name is not None}