"""Component tree — the typed expression a switching model is built from.

A model is an owned, acyclic tree of three node kinds:

* :class:`Leaf` wraps one :class:`~switchts.terms.TermSpec`;
* :class:`Sum` adds its children in document order;
* :class:`Switch` selects one branch per level of a :class:`RegimeDriver`.

The formula helpers mirror the textual grammar::

    daytype = RegimeDriver("daytype", ("weekday", "weekend"), values)
    model = poly(2) + daytype % (poly(1) + fourier(24, 3)) + reg("temp")

Insertion order of ``Sum`` children and of driver levels is significant:
it fixes the layout of the compiled state vector.
"""

from __future__ import annotations

from collections.abc import Hashable, Mapping, Sequence
from dataclasses import dataclass, field
from typing import Any

import numpy as np
import pandas as pd

from switchts.errors import CompileError, UndefinedRegimeLevel
from switchts.terms import (
    Polynomial,
    Regressor,
    SeasonalFactor,
    SeasonalHarmonic,
    TermSpec,
)


# ---------------------------------------------------------------------------
# RegimeDriver
# ---------------------------------------------------------------------------


@dataclass(frozen=True, eq=False)
class RegimeDriver:
    """A categorical series that selects the active regime at each step.

    Parameters
    ----------
    name : str
        Identifier used in leaf paths (``daytype=weekend/poly(1)``).
    levels : sequence
        Ordered, distinct level labels (at least two).  The order fixes
        the state layout of every switch over this driver.
    values : array-like
        Level label per time step.  Values may run past the historical
        range; the surplus is treated as the known future.
    index : pandas.Index, optional
        Time stamps of *values*.  A ``DatetimeIndex`` lets
        :func:`~switchts.model.compile` line the driver up with the
        model's time scope; without one, values are matched by position.

    Examples
    --------
    ```python
    daytype = RegimeDriver("daytype", ("weekday", "weekend"), labels)
    daytype % fourier(24, 3)  # Switch over both levels
    ```
    """

    name: str
    levels: tuple[Hashable, ...]
    values: np.ndarray = field(repr=False)
    index: pd.Index | None = field(default=None, repr=False)

    def __post_init__(self) -> None:
        levels = tuple(self.levels)
        if len(levels) < 2:
            raise CompileError(
                f"driver {self.name!r} needs at least 2 levels, got {list(levels)}"
            )
        if len(set(levels)) != len(levels):
            raise CompileError(f"driver {self.name!r} has duplicate levels: {list(levels)}")
        values = np.asarray(self.values, dtype=object).reshape(-1).copy()
        values.flags.writeable = False
        if self.index is not None:
            index = pd.Index(self.index)
            if len(index) != len(values):
                raise CompileError(
                    f"driver {self.name!r} has {len(values)} values but an index "
                    f"of length {len(index)}"
                )
            object.__setattr__(self, "index", index)
        object.__setattr__(self, "levels", levels)
        object.__setattr__(self, "values", values)

    @classmethod
    def from_series(
        cls,
        name: str,
        series: pd.Series | Sequence[Any],
        levels: Sequence[Hashable] | None = None,
    ) -> RegimeDriver:
        """Build a driver from a pandas Series (or any 1-D sequence).

        When *levels* is omitted, a categorical series contributes its
        categories in order; otherwise the sorted distinct non-null
        values are used.  A Series keeps its index.
        """
        s = pd.Series(series)
        if levels is None:
            if isinstance(s.dtype, pd.CategoricalDtype):
                levels = list(s.cat.categories)
            else:
                levels = sorted(s.dropna().unique().tolist(), key=str)
        values = s.astype(object).where(s.notna(), None).to_numpy()
        index = series.index if isinstance(series, pd.Series) else None
        return cls(name=name, levels=tuple(levels), values=values, index=index)

    def __len__(self) -> int:
        return len(self.values)

    def validate(self, n_steps: int, *, start: int = 0) -> None:
        """Check that positions ``start .. n_steps-1`` hold defined levels.

        Raises :class:`UndefinedRegimeLevel` naming the first offending
        position.
        """
        level_set = set(self.levels)
        for t in range(start, n_steps):
            value = self.values[t]
            if value not in level_set:
                raise UndefinedRegimeLevel(
                    f"driver {self.name!r} has undefined level {value!r} at "
                    f"position {t}; expected one of {list(self.levels)}"
                )

    def same_as(self, other: RegimeDriver) -> bool:
        """``True`` if *other* carries the same name, levels and values."""
        if self is other:
            return True
        return (
            self.name == other.name
            and self.levels == other.levels
            and len(self.values) == len(other.values)
            and all(a == b for a, b in zip(self.values, other.values))
            and (self.index is None) == (other.index is None)
            and (self.index is None or self.index.equals(other.index))
        )

    def __mod__(self, tree: ComponentTree) -> Switch:
        return switch(self, tree)

    def __repr__(self) -> str:
        return f"RegimeDriver({self.name!r}, levels={list(self.levels)}, n={len(self)})"


# ---------------------------------------------------------------------------
# Tree nodes
# ---------------------------------------------------------------------------


class _TreeOps:
    """Shared ``+`` behaviour: sums are flattened on construction."""

    def __add__(self, other: ComponentTree) -> Sum:
        if not isinstance(other, (Leaf, Sum, Switch)):
            return NotImplemented
        left = self.children if isinstance(self, Sum) else (self,)
        right = other.children if isinstance(other, Sum) else (other,)
        return Sum(tuple(left) + tuple(right))


@dataclass(frozen=True)
class Leaf(_TreeOps):
    """A single structural term.

    ``name`` overrides the default label, which is how a term used twice
    at the same nesting level is made unambiguous.
    """

    term: TermSpec
    name: str | None = None

    @property
    def label(self) -> str:
        return self.name or self.term.label

    @property
    def dim(self) -> int:
        return self.term.dim

    def __str__(self) -> str:
        return self.label


@dataclass(frozen=True)
class Sum(_TreeOps):
    """Additive combination of sub-trees (order preserved)."""

    children: tuple[ComponentTree, ...]

    def __post_init__(self) -> None:
        children = tuple(self.children)
        if not children:
            raise CompileError("Sum needs at least one child")
        object.__setattr__(self, "children", children)

    @property
    def dim(self) -> int:
        return sum(child.dim for child in self.children)

    def __str__(self) -> str:
        return " + ".join(
            f"({c})" if isinstance(c, Sum) else str(c) for c in self.children
        )


@dataclass(frozen=True)
class Switch(_TreeOps):
    """One branch per driver level; only the matching branch is observed.

    ``branches`` holds ``(level, tree)`` pairs in the driver's level
    order.  Use :func:`switch` (or ``driver % tree``) to build one.
    """

    driver: RegimeDriver
    branches: tuple[tuple[Hashable, ComponentTree], ...]

    def __post_init__(self) -> None:
        branches = tuple(self.branches)
        given = [level for level, _ in branches]
        if tuple(given) != self.driver.levels:
            extra = [lv for lv in given if lv not in self.driver.levels]
            if extra:
                raise UndefinedRegimeLevel(
                    f"switch over {self.driver.name!r} has branches for unknown "
                    f"levels {extra}; driver levels are {list(self.driver.levels)}"
                )
            raise CompileError(
                f"switch over {self.driver.name!r} must have exactly one branch per "
                f"level in order {list(self.driver.levels)}, got {given}"
            )
        object.__setattr__(self, "branches", branches)

    def branch(self, level: Hashable) -> ComponentTree:
        for lv, tree in self.branches:
            if lv == level:
                return tree
        raise KeyError(level)

    @property
    def levels(self) -> tuple[Hashable, ...]:
        return self.driver.levels

    @property
    def dim(self) -> int:
        return sum(tree.dim for _, tree in self.branches)

    def __str__(self) -> str:
        trees = [tree for _, tree in self.branches]
        if all(tree == trees[0] for tree in trees):
            return f"{self.driver.name} %S% ({trees[0]})"
        arms = ", ".join(f"{lv}: {tree}" for lv, tree in self.branches)
        return f"{self.driver.name} %S% {{{arms}}}"


ComponentTree = Leaf | Sum | Switch


# ---------------------------------------------------------------------------
# Formula helpers
# ---------------------------------------------------------------------------


def poly(order: int, *, name: str | None = None) -> Leaf:
    """``poly(n)`` — integrated random-walk trend of order *n*."""
    return Leaf(Polynomial(order), name=name)


def seas(period: int, *, name: str | None = None) -> Leaf:
    """``seas(p)`` — sum-to-zero seasonal factors."""
    return Leaf(SeasonalFactor(period), name=name)


def fourier(period: float, harmonics: int, *, name: str | None = None) -> Leaf:
    """``fourier(p, K)`` — *K* trigonometric harmonics of period *p*."""
    return Leaf(SeasonalHarmonic(period, harmonics), name=name)


def reg(covariate: str, *, dynamic: bool = False, name: str | None = None) -> Leaf:
    """Regression on the covariate column *covariate*."""
    return Leaf(Regressor(covariate, dynamic=dynamic), name=name)


def switch(
    driver: RegimeDriver,
    branches: ComponentTree | Mapping[Hashable, ComponentTree],
) -> Switch:
    """``driver %S% A`` — replicate *branches* once per driver level.

    Pass a mapping ``{level: tree}`` to give each level its own
    sub-model; every level must be present.
    """
    if isinstance(branches, Mapping):
        missing = [lv for lv in driver.levels if lv not in branches]
        if missing:
            raise CompileError(
                f"switch over {driver.name!r} is missing branches for levels {missing}"
            )
        extra = [lv for lv in branches if lv not in driver.levels]
        if extra:
            raise UndefinedRegimeLevel(
                f"switch over {driver.name!r} has branches for unknown levels "
                f"{extra}; driver levels are {list(driver.levels)}"
            )
        pairs = tuple((lv, branches[lv]) for lv in driver.levels)
    else:
        pairs = tuple((lv, branches) for lv in driver.levels)
    return Switch(driver=driver, branches=pairs)


def iter_drivers(tree: ComponentTree) -> list[RegimeDriver]:
    """Return every driver referenced by *tree* (outermost first, no repeats)."""
    seen: list[RegimeDriver] = []

    def _walk(node: ComponentTree) -> None:
        if isinstance(node, Switch):
            if not any(d is node.driver for d in seen):
                seen.append(node.driver)
            for _, child in node.branches:
                _walk(child)
        elif isinstance(node, Sum):
            for child in node.children:
                _walk(child)

    _walk(tree)
    return seen
