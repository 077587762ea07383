"""Tests for the break-even solver."""

import numpy as np
import pytest

from strategy_engine.breakeven import find_break_evens, profit_region
from strategy_engine.models import InvalidInput


def test_interpolated_crossing():
    assert find_break_evens([0.0, 1.0], [-1.0, 3.0]) == [pytest.approx(0.25)]


def test_exact_zero_sample_reported_once():
    prices = np.arange(100.0, 111.0)
    pnl = (prices - 105.0) * 100.0
    assert find_break_evens(prices, pnl) == [105.0]


def test_straddle_has_two_break_evens():
    prices = np.linspace(50, 150, 201)
    pnl = (np.abs(prices - 100.0) - 12.3) * 100.0
    bes = find_break_evens(prices, pnl)
    assert bes == [pytest.approx(87.7), pytest.approx(112.3)]
    assert profit_region(prices, pnl, bes) == "outside"


def test_plateau_reports_both_edges():
    prices = [0.0, 1.0, 2.0, 3.0, 4.0, 5.0]
    pnl = [-1.0, 0.0, 0.0, 0.0, 1.0, 2.0]
    assert find_break_evens(prices, pnl) == [1.0, 3.0]


def test_plateau_running_to_the_end():
    assert find_break_evens([1.0, 2.0, 3.0, 4.0], [-2.0, -1.0, 0.0, 0.0]) == [3.0, 4.0]


def test_tangent_point_counts_once():
    prices = [1.0, 2.0, 3.0]
    assert find_break_evens(prices, [-1.0, 0.0, -1.0]) == [2.0]


def test_no_crossing():
    assert find_break_evens([1.0, 2.0, 3.0], [1.0, 2.0, 3.0]) == []
    assert find_break_evens([], []) == []
    assert find_break_evens([5.0], [0.0]) == [5.0]


def test_tiny_values_are_not_zero_for_large_curves():
    # 1e-9 counts as zero only relative to the curve's magnitude
    prices = [1.0, 2.0, 3.0]
    assert find_break_evens(prices, [-1e6, 1e-7, 1e6]) == [2.0]


def test_mismatched_lengths_raise():
    with pytest.raises(InvalidInput):
        find_break_evens([1.0, 2.0], [1.0])


def test_profit_region_orientation():
    prices = np.linspace(80, 120, 41)
    long_call = np.maximum(prices - 100.0, 0.0) - 5.0
    assert profit_region(prices, long_call, find_break_evens(prices, long_call)) == "above"
    long_put = np.maximum(100.0 - prices, 0.0) - 5.0
    assert profit_region(prices, long_put, find_break_evens(prices, long_put)) == "below"
    condor = 2.0 - np.clip(np.abs(prices - 100.0) - 5.0, 0.0, 5.0)
    assert profit_region(prices, condor, find_break_evens(prices, condor)) == "inside"
    assert profit_region(prices, np.ones_like(prices), []) == "always"
    assert profit_region(prices, -np.ones_like(prices), []) == "never"


def test_dedupe_tolerance_follows_grid_width():
    # Two crossings 1e-4 apart on a 1000-wide grid collapse into one
    prices = [0.0, 500.0, 500.0001, 500.0002, 1000.0]
    values = [-1.0, -1.0, 1.0, -1.0, -1.0]
    out = find_break_evens(prices, values)
    assert len(out) == 1
    assert out[0] == pytest.approx(500.00005, abs=1e-6)
