"""Tests for the component tree, switch expansion and state index map."""

from __future__ import annotations

import numpy as np
import pandas as pd
import pytest

from switchts.errors import (
    CompileError,
    DuplicateDriverError,
    DuplicatePathError,
    UndefinedRegimeLevel,
)
from switchts.expansion import LeafPath, activation_mask, expand
from switchts.index_map import IndexEntry, StateIndexMap, build_index_map
from switchts.tree import (
    Leaf,
    RegimeDriver,
    Sum,
    Switch,
    fourier,
    iter_drivers,
    poly,
    reg,
    seas,
    switch,
)


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def daytype():
    return RegimeDriver("daytype", ("A", "B"), ["A", "B"] * 4)


@pytest.fixture
def switched(daytype):
    return daytype % (poly(1) + fourier(4, 2))


# ---------------------------------------------------------------------------
# RegimeDriver
# ---------------------------------------------------------------------------


class TestRegimeDriver:
    def test_needs_two_levels(self):
        with pytest.raises(CompileError, match="at least 2 levels"):
            RegimeDriver("d", ("A",), ["A", "A"])

    def test_duplicate_levels(self):
        with pytest.raises(CompileError, match="duplicate"):
            RegimeDriver("d", ("A", "A"), ["A"])

    def test_values_read_only(self, daytype):
        assert not daytype.values.flags.writeable
        with pytest.raises(ValueError):
            daytype.values[0] = "B"

    def test_len(self, daytype):
        assert len(daytype) == 8

    def test_from_series_sorted_levels(self):
        d = RegimeDriver.from_series("d", pd.Series(["we", "wd", "wd", "we"]))
        assert d.levels == ("wd", "we")

    def test_from_series_categorical_order(self):
        s = pd.Series(pd.Categorical(["b", "a"], categories=["b", "a", "c"]))
        d = RegimeDriver.from_series("d", s)
        assert d.levels == ("b", "a", "c")

    def test_from_series_explicit_levels(self):
        d = RegimeDriver.from_series("d", ["x", "y"], levels=["y", "x"])
        assert d.levels == ("y", "x")

    def test_validate_undefined_level(self):
        d = RegimeDriver("d", ("A", "B"), ["A", "B", "C"])
        d.validate(2)
        with pytest.raises(UndefinedRegimeLevel, match="position 2"):
            d.validate(3)

    def test_same_as(self, daytype):
        twin = RegimeDriver("daytype", ("A", "B"), ["A", "B"] * 4)
        other = RegimeDriver("daytype", ("A", "B"), ["B", "A"] * 4)
        assert daytype.same_as(twin)
        assert not daytype.same_as(other)


# ---------------------------------------------------------------------------
# Tree construction
# ---------------------------------------------------------------------------


class TestTree:
    def test_helpers_build_leaves(self):
        assert isinstance(poly(1), Leaf)
        assert seas(7).dim == 6
        assert reg("temp").label == "temp"

    def test_sum_flattens(self):
        tree = (poly(1) + seas(4)) + (fourier(12, 2) + reg("x"))
        assert isinstance(tree, Sum)
        assert len(tree.children) == 4

    def test_sum_dimension(self):
        tree = poly(2) + seas(4) + fourier(12, 2)
        assert tree.dim == 2 + 3 + 4

    def test_empty_sum(self):
        with pytest.raises(CompileError):
            Sum(())

    def test_switch_dimension(self, switched):
        assert isinstance(switched, Switch)
        assert switched.dim == 2 * (1 + 4)

    def test_switch_str(self, switched):
        assert str(switched) == "daytype %S% (poly(1) + fourier(4,2))"

    def test_switch_mapping(self, daytype):
        sw = switch(daytype, {"A": poly(1), "B": poly(2)})
        assert sw.branch("B") == poly(2)
        assert sw.dim == 3

    def test_switch_mapping_missing_level(self, daytype):
        with pytest.raises(CompileError, match="missing"):
            switch(daytype, {"A": poly(1)})

    def test_switch_mapping_unknown_level(self, daytype):
        with pytest.raises(UndefinedRegimeLevel, match="'C'"):
            switch(daytype, {"A": poly(1), "B": poly(1), "C": poly(1)})

    def test_named_leaf(self):
        assert poly(1, name="base").label == "base"

    def test_iter_drivers(self, daytype):
        other = RegimeDriver("season", ("S", "W"), ["S"] * 8)
        tree = poly(1) + daytype % seas(4) + other % (daytype % poly(1))
        assert [d.name for d in iter_drivers(tree)] == ["daytype", "season"]


# ---------------------------------------------------------------------------
# Expansion
# ---------------------------------------------------------------------------


class TestExpansion:
    def test_replicates_per_level(self, switched):
        exp = expand(switched)
        assert [str(leaf.path) for leaf in exp.leaves] == [
            "daytype=A/poly(1)",
            "daytype=A/fourier(4,2)",
            "daytype=B/poly(1)",
            "daytype=B/fourier(4,2)",
        ]
        assert exp.state_dim == 10

    def test_term_keys(self, switched):
        exp = expand(switched)
        assert exp.term_keys == ["daytype%S%poly(1)", "daytype%S%fourier(4,2)"]

    def test_unswitched_leaf_path(self):
        exp = expand(poly(2) + seas(4))
        assert [leaf.path for leaf in exp.leaves] == [
            LeafPath((), "poly(2)"),
            LeafPath((), "seas(4)"),
        ]
        assert not exp.leaves[0].path.switched

    def test_nested_switch(self, daytype):
        season = RegimeDriver("season", ("S", "W"), ["S", "W"] * 4)
        exp = expand(season % (daytype % poly(1)))
        assert [str(leaf.path) for leaf in exp.leaves] == [
            "season=S/daytype=A/poly(1)",
            "season=S/daytype=B/poly(1)",
            "season=W/daytype=A/poly(1)",
            "season=W/daytype=B/poly(1)",
        ]
        assert exp.leaves[0].term_key == "season%S%daytype%S%poly(1)"

    def test_duplicate_driver_name(self, daytype):
        impostor = RegimeDriver("daytype", ("A", "B"), ["B"] * 8)
        with pytest.raises(DuplicateDriverError, match="daytype"):
            expand(daytype % poly(1) + impostor % seas(4))

    def test_same_driver_reused(self, daytype):
        exp = expand(daytype % poly(1) + daytype % seas(4))
        assert list(exp.drivers) == ["daytype"]
        assert len(exp) == 4

    def test_activation_mask(self, switched, daytype):
        exp = expand(switched)
        mask = activation_mask(exp.leaves, {"daytype": daytype.values}, 8)
        assert mask.shape == (4, 8)
        even = np.arange(8) % 2 == 0
        np.testing.assert_array_equal(mask[0], even)
        np.testing.assert_array_equal(mask[2], ~even)

    def test_unswitched_always_active(self):
        exp = expand(poly(1))
        mask = activation_mask(exp.leaves, {}, 5)
        assert mask.all()


# ---------------------------------------------------------------------------
# State index map
# ---------------------------------------------------------------------------


class TestStateIndexMap:
    def test_contiguous_offsets(self, switched):
        imap = build_index_map(expand(switched))
        assert [(e.offset, e.length) for e in imap] == [(0, 1), (1, 4), (5, 1), (6, 4)]
        assert imap.state_dim == 10
        assert len(imap) == 4

    def test_slice_lookup(self, switched):
        imap = build_index_map(expand(switched))
        path = LeafPath((("daytype", "B"),), "fourier(4,2)")
        assert imap.slice(path) == slice(6, 10)

    def test_unknown_path(self, switched):
        imap = build_index_map(expand(switched))
        with pytest.raises(KeyError):
            imap.entry(LeafPath((), "poly(3)"))

    def test_by_term_key(self, switched):
        groups = build_index_map(expand(switched)).by_term_key()
        assert [e.offset for e in groups["daytype%S%poly(1)"]] == [0, 5]

    def test_duplicate_path(self):
        with pytest.raises(DuplicatePathError, match="poly\\(1\\)"):
            build_index_map(expand(poly(1) + poly(1)))

    def test_duplicate_resolved_by_name(self):
        imap = build_index_map(expand(poly(1) + poly(1, name="poly(1)#2")))
        assert imap.state_dim == 2

    def test_non_contiguous_rejected(self):
        with pytest.raises(ValueError, match="contiguous"):
            StateIndexMap([
                IndexEntry(LeafPath((), "a"), 0, 1),
                IndexEntry(LeafPath((), "b"), 2, 1),
            ])

    def test_equality(self, switched):
        assert build_index_map(expand(switched)) == build_index_map(expand(switched))


class TestDriverIndex:
    def test_from_series_keeps_index(self):
        idx = pd.date_range("2024-01-01", periods=3, freq="D")
        d = RegimeDriver.from_series("d", pd.Series(["a", "b", "a"], index=idx))
        assert d.index.equals(idx)

    def test_from_sequence_has_no_index(self):
        assert RegimeDriver.from_series("d", ["a", "b"]).index is None

    def test_index_length_must_match(self):
        with pytest.raises(CompileError, match="index"):
            RegimeDriver("d", ("a", "b"), ["a", "b"], index=pd.RangeIndex(3))

    def test_same_as_compares_index(self):
        values = ["a", "b", "a"]
        dated = RegimeDriver(
            "d", ("a", "b"), values, index=pd.date_range("2024-01-01", periods=3),
        )
        shifted = RegimeDriver(
            "d", ("a", "b"), values, index=pd.date_range("2024-01-02", periods=3),
        )
        assert dated.same_as(dated)
        assert not dated.same_as(shifted)
        assert not dated.same_as(RegimeDriver("d", ("a", "b"), values))
