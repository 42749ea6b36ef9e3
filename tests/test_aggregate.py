"""Tests for aggregate.py (AggregateStat and model usage helpers)."""

from __future__ import annotations

import logging
import math

import pytest

from aggregate import (
    AggregateStat,
    add_model_usage,
    merge_model_usage,
    remove_model_usage,
    unmerge_model_usage,
)
from stats_errors import AccumulatorConsistencyError

from helpers import aggregate_state


def _assert_empty(agg: AggregateStat) -> None:
    assert agg.count == 0
    assert agg.total == 0
    assert agg.avg == 0
    assert agg.min is None
    assert agg.max == 0
    assert agg.values == []


# ── add ───────────────────────────────────────


class TestAdd:
    def test_new_stat_is_empty(self):
        _assert_empty(AggregateStat())

    def test_single_value(self):
        agg = AggregateStat()
        agg.add(7)
        assert agg.count == 1
        assert agg.total == 7
        assert agg.min == 7
        assert agg.max == 7
        assert agg.avg == 7

    def test_many_values(self):
        values = [4, 9, 1, 9, 6]
        agg = AggregateStat(values)
        assert agg.count == len(values)
        assert agg.total == sum(values)
        assert agg.min == min(values)
        assert agg.max == max(values)
        assert agg.avg == pytest.approx(sum(values) / len(values))
        assert agg.values == values

    def test_floats(self):
        agg = AggregateStat([0.5, 1.25])
        assert agg.total == pytest.approx(1.75)
        assert agg.avg == pytest.approx(0.875)

    def test_zero_is_a_value(self):
        agg = AggregateStat()
        agg.add(0)
        assert agg.count == 1
        assert agg.min == 0

    def test_negative_values_keep_true_max(self):
        agg = AggregateStat([-5, -2])
        assert agg.max == -2
        assert agg.min == -5

    @pytest.mark.parametrize("value", [None, math.nan, "12", True])
    def test_non_numbers_ignored(self, value):
        agg = AggregateStat()
        agg.add(value)
        _assert_empty(agg)


# ── remove ────────────────────────────────────


class TestRemove:
    def test_remove_only_value_returns_to_empty(self):
        agg = AggregateStat([3])
        agg.remove(3)
        _assert_empty(agg)

    def test_remove_everything_in_any_order(self):
        values = [3, 8, 1, 8, 5]
        agg = AggregateStat(values)
        for value in [8, 1, 5, 3, 8]:
            agg.remove(value)
        _assert_empty(agg)

    def test_remove_float_values_resets_total(self):
        agg = AggregateStat([0.1, 0.2, 0.3])
        for value in [0.2, 0.1, 0.3]:
            agg.remove(value)
        _assert_empty(agg)

    def test_remove_min_recomputes_min(self):
        agg = AggregateStat([2, 5, 9])
        agg.remove(2)
        assert agg.min == 5
        assert agg.max == 9

    def test_remove_max_recomputes_max(self):
        agg = AggregateStat([2, 5, 9])
        agg.remove(9)
        assert agg.max == 5
        assert agg.min == 2

    def test_remove_middle_keeps_extrema(self):
        agg = AggregateStat([2, 5, 9])
        agg.remove(5)
        assert (agg.min, agg.max) == (2, 9)
        assert agg.avg == pytest.approx(5.5)

    def test_remove_one_of_duplicate_extremum(self):
        agg = AggregateStat([9, 1, 9])
        agg.remove(9)
        assert agg.count == 2
        assert agg.max == 9
        assert agg.values.count(9) == 1

    def test_remove_duplicates_decrements_per_occurrence(self):
        agg = AggregateStat([4, 4, 4])
        agg.remove(4)
        agg.remove(4)
        assert agg.count == 1
        assert agg.total == 4
        assert agg.values == [4]

    def test_remove_then_readd_round_trip(self):
        agg = AggregateStat([3, 1, 4, 1, 5])
        before = aggregate_state(agg)
        agg.remove(1)
        agg.add(1)
        assert aggregate_state(agg) == before

    def test_remove_absent_value_warns_and_keeps_state(self, caplog):
        agg = AggregateStat([1, 2])
        before = aggregate_state(agg)
        with caplog.at_level(logging.WARNING, logger="aggregate"):
            agg.remove(42)
        assert aggregate_state(agg) == before
        assert "42" in caplog.text

    def test_remove_absent_value_strict_raises(self):
        agg = AggregateStat([1, 2])
        with pytest.raises(AccumulatorConsistencyError):
            agg.remove(42, strict=True)
        assert agg.count == 2

    def test_remove_none_is_noop(self):
        agg = AggregateStat([1])
        agg.remove(None)
        assert agg.count == 1

    def test_count_matches_values_after_mixed_operations(self):
        agg = AggregateStat()
        for value in [5, 3, 5, 7]:
            agg.add(value)
        agg.remove(5)
        agg.remove(99)
        agg.add(2)
        assert agg.count == len(agg.values)
        assert agg.total == sum(agg.values)
        assert agg.min == min(agg.values)
        assert agg.max == max(agg.values)


# ── merge / unmerge ───────────────────────────


class TestMerge:
    def test_merge_adds_every_value(self):
        a = AggregateStat([1, 2])
        b = AggregateStat([2, 10])
        a.merge(b)
        assert a.count == 4
        assert a.total == 15
        assert a.max == 10
        assert sorted(a.values) == [1, 2, 2, 10]

    def test_merge_leaves_other_untouched(self):
        a = AggregateStat([1])
        b = AggregateStat([5, 6])
        a.merge(b)
        assert b.values == [5, 6]
        assert b.count == 2

    def test_merge_empty_is_noop(self):
        a = AggregateStat([1, 2])
        before = aggregate_state(a)
        a.merge(AggregateStat())
        assert aggregate_state(a) == before

    def test_merge_then_unmerge_restores(self):
        a = AggregateStat([4, 8, 8, 1])
        b = AggregateStat([8, 0, 3, 3])
        before = aggregate_state(a)
        a.merge(b)
        a.unmerge(b)
        assert aggregate_state(a) == before

    def test_unmerge_repeated_values_removes_exact_occurrences(self):
        a = AggregateStat([3, 3, 3])
        a.unmerge(AggregateStat([3, 3]))
        assert a.count == 1
        assert a.values == [3]

    def test_unmerge_into_empty(self):
        a = AggregateStat([2, 7])
        a.unmerge(AggregateStat([7, 2]))
        _assert_empty(a)

    def test_unmerge_self(self):
        a = AggregateStat([2, 7, 7])
        a.unmerge(a)
        _assert_empty(a)


# ── serialisation ─────────────────────────────


class TestSerialisation:
    def test_to_dict_fields(self):
        data = AggregateStat([1, 3]).to_dict()
        assert data == {"count": 2, "total": 4, "min": 1, "max": 3, "avg": 2, "values": [1, 3]}

    def test_from_dict_rebuilds_derived_fields(self):
        restored = AggregateStat.from_dict({"count": 99, "values": [5, 2]})
        assert restored.count == 2
        assert restored.min == 2
        assert restored.max == 5

    def test_from_dict_none(self):
        _assert_empty(AggregateStat.from_dict(None))

    def test_reset(self):
        agg = AggregateStat([1, 2, 3])
        agg.reset()
        _assert_empty(agg)


# ── model usage ───────────────────────────────


class TestModelUsage:
    def test_add_creates_entry(self):
        usage = {}
        add_model_usage(usage, "model-a", 10)
        assert usage == {"model-a": {"count": 1, "tokens": 10}}

    def test_add_accumulates(self):
        usage = {}
        add_model_usage(usage, "model-a", 10)
        add_model_usage(usage, "model-a", None, 2)
        assert usage["model-a"] == {"count": 3, "tokens": 10}

    def test_add_without_model_ignored(self):
        usage = {}
        add_model_usage(usage, None, 10)
        add_model_usage(usage, "", 10)
        assert usage == {}

    def test_remove_drops_spent_entry(self):
        usage = {"model-a": {"count": 1, "tokens": 10}}
        remove_model_usage(usage, "model-a", 10)
        assert usage == {}

    def test_remove_unknown_model_ignored(self):
        usage = {"model-a": {"count": 1, "tokens": 10}}
        remove_model_usage(usage, "model-b", 5)
        assert usage == {"model-a": {"count": 1, "tokens": 10}}

    def test_merge_then_unmerge_restores(self):
        target = {"model-a": {"count": 2, "tokens": 40}}
        source = {"model-a": {"count": 1, "tokens": 5}, "model-b": {"count": 3, "tokens": 9}}
        merge_model_usage(target, source)
        assert target["model-a"] == {"count": 3, "tokens": 45}
        assert target["model-b"] == {"count": 3, "tokens": 9}
        unmerge_model_usage(target, source)
        assert target == {"model-a": {"count": 2, "tokens": 40}}
