"""State index map — which slice of the state vector belongs to which leaf."""

from __future__ import annotations

from collections.abc import Iterator
from dataclasses import dataclass

from switchts.errors import DuplicatePathError
from switchts.expansion import Expansion, LeafPath


@dataclass(frozen=True)
class IndexEntry:
    """One contiguous block ``[offset, offset + length)`` of the state."""

    path: LeafPath
    offset: int
    length: int

    @property
    def stop(self) -> int:
        return self.offset + self.length

    @property
    def slice(self) -> slice:
        return slice(self.offset, self.stop)

    def __repr__(self) -> str:
        return f"IndexEntry({str(self.path)!r}, [{self.offset}:{self.stop}])"


class StateIndexMap:
    """Ordered, contiguous assignment of state slices to leaf paths.

    Offsets start at zero, never overlap, and their lengths sum to the
    total state dimension.

    Examples
    --------
    ```python
    imap = build_index_map(expand(daytype % (poly(1) + fourier(4, 2))))
    imap.state_dim                # 10
    [str(p) for p in imap.paths]  # ['daytype=A/poly(1)', 'daytype=A/fourier(4,2)', ...]
    ```
    """

    def __init__(self, entries: list[IndexEntry] | tuple[IndexEntry, ...]) -> None:
        self._entries: tuple[IndexEntry, ...] = tuple(entries)
        self._by_path: dict[LeafPath, IndexEntry] = {}
        expected = 0
        for entry in self._entries:
            if entry.path in self._by_path:
                raise DuplicatePathError(
                    f"leaf path {str(entry.path)!r} appears more than once; give one "
                    f"of the repeated terms a distinct name"
                )
            if entry.offset != expected or entry.length < 1:
                raise ValueError(
                    f"index map is not contiguous at {entry!r}; expected offset {expected}"
                )
            self._by_path[entry.path] = entry
            expected = entry.stop
        self._state_dim = expected

    # -- queries ---------------------------------------------------------------

    @property
    def state_dim(self) -> int:
        return self._state_dim

    @property
    def paths(self) -> list[LeafPath]:
        return [e.path for e in self._entries]

    def entry(self, path: LeafPath) -> IndexEntry:
        """Return the entry for *path*.  Raises ``KeyError`` if unknown."""
        try:
            return self._by_path[path]
        except KeyError:
            raise KeyError(f"Leaf path not found: {str(path)!r}") from None

    def slice(self, path: LeafPath) -> slice:
        return self.entry(path).slice

    def by_term_key(self) -> dict[str, list[IndexEntry]]:
        """Group entries by the original term they were expanded from."""
        groups: dict[str, list[IndexEntry]] = {}
        for entry in self._entries:
            groups.setdefault(entry.path.term_key, []).append(entry)
        return groups

    # -- dunder ----------------------------------------------------------------

    def __iter__(self) -> Iterator[IndexEntry]:
        return iter(self._entries)

    def __len__(self) -> int:
        return len(self._entries)

    def __getitem__(self, i: int) -> IndexEntry:
        return self._entries[i]

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, StateIndexMap):
            return NotImplemented
        return self._entries == other._entries

    def __hash__(self) -> int:
        return hash(self._entries)

    def __repr__(self) -> str:
        return f"StateIndexMap(leaves={len(self)}, state_dim={self.state_dim})"


def build_index_map(expansion: Expansion) -> StateIndexMap:
    """Assign contiguous offsets to the expanded leaves, in expansion order.

    Raises :class:`DuplicatePathError` when two leaves share a path.
    """
    entries: list[IndexEntry] = []
    offset = 0
    for leaf in expansion.leaves:
        entries.append(IndexEntry(path=leaf.path, offset=offset, length=leaf.dim))
        offset += leaf.dim
    return StateIndexMap(entries)
