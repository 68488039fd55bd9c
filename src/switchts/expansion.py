"""Switch expansion — flatten a component tree into regime-replicated leaves.

Every ``Switch`` over *L* levels becomes *L* independent copies of its
branch, each with its full state.  All copies evolve at every time step;
only the observation row decides which copy is visible.  This keeps the
state dimension and the transition matrix constant over time.
"""

from __future__ import annotations

import logging
from collections.abc import Hashable, Mapping
from dataclasses import dataclass, field
from functools import cached_property

import numpy as np

from switchts.errors import DuplicateDriverError
from switchts.terms import TermBlocks, TermSpec, term_blocks
from switchts.tree import ComponentTree, Leaf, RegimeDriver, Sum, Switch

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# LeafPath
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class LeafPath:
    """Identity of an expanded leaf: its regime selections plus its label.

    Examples
    --------
    ```python
    path = LeafPath((("daytype", "weekend"),), "fourier(24,3)")
    str(path)       # 'daytype=weekend/fourier(24,3)'
    path.term_key   # 'daytype%S%fourier(24,3)'
    ```
    """

    selections: tuple[tuple[str, Hashable], ...]
    label: str

    @property
    def term_key(self) -> str:
        """Name of the original term, with regime levels stripped."""
        return "".join(f"{driver}%S%" for driver, _ in self.selections) + self.label

    @property
    def switched(self) -> bool:
        return bool(self.selections)

    def __str__(self) -> str:
        prefix = "".join(f"{driver}={level}/" for driver, level in self.selections)
        return prefix + self.label


# ---------------------------------------------------------------------------
# Expanded leaves
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class ExpandedLeaf:
    """A term copy owned by one chain of regime selections."""

    term: TermSpec
    path: LeafPath

    @cached_property
    def blocks(self) -> TermBlocks:
        return term_blocks(self.term)

    @property
    def dim(self) -> int:
        return self.term.dim

    @property
    def conditions(self) -> tuple[tuple[str, Hashable], ...]:
        return self.path.selections

    @property
    def term_key(self) -> str:
        return self.path.term_key


@dataclass(frozen=True)
class Expansion:
    """Flattened additive model: ordered leaves plus the drivers they use."""

    leaves: tuple[ExpandedLeaf, ...]
    drivers: dict[str, RegimeDriver] = field(default_factory=dict)

    @property
    def state_dim(self) -> int:
        return sum(leaf.dim for leaf in self.leaves)

    @property
    def term_keys(self) -> list[str]:
        """Distinct term keys in first-appearance order."""
        return list(dict.fromkeys(leaf.term_key for leaf in self.leaves))

    def __len__(self) -> int:
        return len(self.leaves)


def expand(tree: ComponentTree) -> Expansion:
    """Eliminate ``Switch`` nodes from *tree*.

    Leaves are emitted in document order of ``Sum`` children, and in the
    driver's level order within each former ``Switch``.  Nested switches
    are distributed: each copy of an outer branch carries its own copies
    of the inner switch's branches.

    Raises :class:`DuplicateDriverError` if two distinct drivers share a
    name, since leaf paths would then be ambiguous.
    """
    leaves: list[ExpandedLeaf] = []
    drivers: dict[str, RegimeDriver] = {}

    def _register(driver: RegimeDriver) -> None:
        known = drivers.get(driver.name)
        if known is None:
            drivers[driver.name] = driver
        elif not known.same_as(driver):
            raise DuplicateDriverError(
                f"two different drivers are named {driver.name!r}; "
                f"driver names must be unique within a model"
            )

    def _walk(node: ComponentTree, selections: tuple[tuple[str, Hashable], ...]) -> None:
        if isinstance(node, Leaf):
            leaves.append(ExpandedLeaf(node.term, LeafPath(selections, node.label)))
        elif isinstance(node, Sum):
            for child in node.children:
                _walk(child, selections)
        elif isinstance(node, Switch):
            _register(node.driver)
            for level, branch in node.branches:
                _walk(branch, selections + ((node.driver.name, level),))
        else:
            raise TypeError(f"Not a component tree node: {node!r}")

    _walk(tree, ())
    expansion = Expansion(leaves=tuple(leaves), drivers=drivers)
    logger.debug(
        "Expanded tree into %d leaves over %d driver(s), state_dim=%d",
        len(expansion), len(drivers), expansion.state_dim,
    )
    return expansion


def activation_mask(
    leaves: tuple[ExpandedLeaf, ...] | list[ExpandedLeaf],
    driver_values: Mapping[str, np.ndarray],
    n_steps: int,
) -> np.ndarray:
    """Return a ``(n_leaves, n_steps)`` boolean activity mask.

    A leaf is active at *t* when the level of every enclosing switch
    equals its driver's value at *t*.  Unswitched leaves are always
    active.  *driver_values* maps driver names to arrays of length
    ``n_steps``.
    """
    mask = np.ones((len(leaves), n_steps), dtype=bool)
    for i, leaf in enumerate(leaves):
        for driver_name, level in leaf.conditions:
            values = driver_values[driver_name]
            mask[i] &= np.fromiter(
                (v == level for v in values[:n_steps]), dtype=bool, count=n_steps,
            )
    return mask
