"""Tests for payoff aggregation, sanitising and position Greeks."""

import math

import numpy as np
import pandas as pd
import pytest

from strategy_engine.breakeven import find_break_evens
from strategy_engine.models import InvalidInput, Leg, MarketParams, PayoffSeries, StrategyBundle
from strategy_engine.payoff import (
    build_series,
    default_price_grid,
    entry_price,
    gross_premium,
    net_premium,
    payoff_at_expiry,
    sanitize_series,
    strategy_greeks,
)
from strategy_engine.pricing import greeks, price


@pytest.fixture
def market():
    return MarketParams(spot=100.0, risk_free_rate=0.05, volatility=0.2, time_horizon_years=0.25)


def iron_condor_legs():
    return [
        Leg("put", "long", strike=85, premium=0.8),
        Leg("put", "short", strike=90, premium=1.9),
        Leg("call", "short", strike=110, premium=2.1),
        Leg("call", "long", strike=115, premium=0.9),
    ]


def test_long_call_expiration_curve(market):
    bundle = StrategyBundle.of(Leg("call", "long", strike=100, premium=5.0))
    grid = np.arange(80.0, 131.0, 1.0)
    series = build_series(bundle, grid, market)
    pnl = dict(zip(series.prices, series.expiration_pnl))
    assert pnl[120.0] == pytest.approx(1500.0)
    assert pnl[90.0] == pytest.approx(-500.0)
    assert pnl[105.0] == pytest.approx(0.0)
    assert len(series) == grid.size


def test_current_curve_at_expiry_matches_expiration(market):
    bundle = StrategyBundle.of(Leg("put", "short", strike=95, premium=2.0))
    grid = np.linspace(60, 140, 81)
    series = build_series(bundle, grid, market, elapsed_years=1.0)
    assert np.allclose(series.current_pnl, series.expiration_pnl)


def test_current_curve_uses_black_scholes(market):
    bundle = StrategyBundle.of(Leg("call", "long", strike=100, premium=5.0))
    series = build_series(bundle, [100.0], market)
    expected = (price("call", 100, 100, 0.05, 0.0, 0.2, 0.25) - 5.0) * 100
    assert series.current_pnl[0] == pytest.approx(expected)


def test_leg_order_does_not_change_curves(market):
    legs = iron_condor_legs()
    grid = np.linspace(70, 130, 241)
    reference = build_series(StrategyBundle.of(*legs), grid, market)
    for order in ([3, 1, 0, 2], [2, 3, 1, 0], [1, 0, 3, 2]):
        permuted = build_series(StrategyBundle.of(*[legs[i] for i in order]), grid, market)
        assert np.array_equal(permuted.expiration_pnl, reference.expiration_pnl)
        assert np.array_equal(permuted.current_pnl, reference.current_pnl)


def test_iron_condor_max_profit_and_loss(market):
    bundle = StrategyBundle.of(*iron_condor_legs())
    credit = (1.9 + 2.1 - 0.8 - 0.9) * 100
    assert net_premium(bundle, market) == pytest.approx(-credit)
    assert gross_premium(bundle, market) == pytest.approx((0.8 + 1.9 + 2.1 + 0.9) * 100)
    pnl = payoff_at_expiry(bundle, [100.0, 70.0, 130.0], market=market)
    assert pnl[0] == pytest.approx(credit)
    assert pnl[1] == pytest.approx(credit - 500.0)
    assert pnl[2] == pytest.approx(credit - 500.0)


def test_missing_premium_uses_fair_value(market):
    bundle = StrategyBundle.of(
        Leg("call", "long", strike=105),
        Leg("stock", "long", quantity=1),
        default_days=30,
    )
    call, stock = bundle.legs
    years = 30 / 365.0
    assert entry_price(call, bundle, market) == pytest.approx(price("call", 100, 105, 0.05, 0.0, 0.2, years))
    assert entry_price(stock, bundle, market) == 100.0


def test_stock_leg_is_linear(market):
    bundle = StrategyBundle.of(Leg("stock", "long", quantity=2, premium=100.0))
    pnl = payoff_at_expiry(bundle, [90.0, 110.0], market=market)
    assert list(pnl) == pytest.approx([-2000.0, 2000.0])


def test_payoff_at_expiry_requires_bases_or_market():
    bundle = StrategyBundle.of(Leg("call", "long", strike=100, premium=1.0))
    with pytest.raises(InvalidInput):
        payoff_at_expiry(bundle, [100.0])


def test_invalid_grids_are_rejected(market):
    bundle = StrategyBundle.of(Leg("call", "long", strike=100, premium=1.0))
    with pytest.raises(InvalidInput):
        build_series(bundle, [], market)
    with pytest.raises(InvalidInput):
        build_series(bundle, [100.0, 90.0], market)
    with pytest.raises(InvalidInput):
        build_series(bundle, [-1.0, 100.0], market)


def test_sanitize_replaces_non_finite_samples():
    out = sanitize_series([0.0, 1.0, float("nan"), 3.0, float("inf")])
    assert out[2] == pytest.approx(2.0)
    assert out[4] == pytest.approx(3.0)
    assert np.all(np.isfinite(out))
    assert np.array_equal(sanitize_series([float("nan")] * 3), np.zeros(3))


def test_sanitize_clamps_isolated_spikes():
    out = sanitize_series([0.0, 1.0, 2.0, 1000.0, 4.0, 5.0, 6.0])
    assert out[3] == pytest.approx(3.0)
    assert out[2] == 2.0 and out[4] == 4.0


def test_sanitize_keeps_kinks():
    values = [-500.0] * 10 + [-400.0, -300.0, 0.0, 300.0]
    assert np.array_equal(sanitize_series(values), np.array(values))


def test_default_grid_contains_strikes_and_spot(market):
    bundle = StrategyBundle.of(*iron_condor_legs())
    grid = default_price_grid(bundle, market)
    for value in (85.0, 90.0, 100.0, 110.0, 115.0):
        assert value in grid
    assert np.all(np.diff(grid) > 0)
    assert grid[0] < 85.0 and grid[-1] > 115.0


def test_payoff_series_is_read_only_and_exports_frame(market):
    bundle = StrategyBundle.of(Leg("call", "long", strike=100, premium=5.0))
    series = build_series(bundle, [90.0, 100.0, 110.0], market)
    with pytest.raises(ValueError):
        series.expiration_pnl[0] = 1.0
    frame = series.to_frame()
    assert isinstance(frame, pd.DataFrame)
    assert list(frame.columns) == ["price", "expiration_pnl", "current_pnl"]
    assert frame["expiration_pnl"].tolist() == pytest.approx([-500.0, -500.0, 500.0])
    with pytest.raises(InvalidInput):
        PayoffSeries(prices=[1.0, 2.0], expiration_pnl=[0.0], current_pnl=[0.0, 0.0])


def test_strategy_greeks_scale_by_side_and_multiplier(market):
    bundle = StrategyBundle.of(
        Leg("call", "long", quantity=2, strike=100, premium=4.0),
        Leg("stock", "short", quantity=50),
    )
    single = greeks("call", 100, 100, 0.05, 0.0, 0.2, 0.25)
    net = strategy_greeks(bundle, market)
    assert net.delta == pytest.approx(2 * 100 * single.delta - 50 * 100)
    assert net.gamma == pytest.approx(200 * single.gamma)
    assert net.theta == pytest.approx(200 * single.theta)
    assert math.isfinite(net.vega) and net.vega > 0


def test_butterfly_peak_survives_coarse_grid(market):
    # Grid spacing equals the wing width: the peak is a single sample
    bundle = StrategyBundle.of(
        Leg("call", "long", strike=95, premium=6.0),
        Leg("call", "short", strike=100, premium=3.0, quantity=2),
        Leg("call", "long", strike=105, premium=1.0),
    )
    grid = np.arange(80.0, 121.0, 5.0)
    series = build_series(bundle, grid, market)
    raw = payoff_at_expiry(bundle, grid, market=market)
    assert np.array_equal(series.expiration_pnl, raw)
    assert series.expiration_pnl[list(grid).index(100.0)] == pytest.approx(400.0)
    assert find_break_evens(series.prices, series.expiration_pnl) == [
        pytest.approx(96.0), pytest.approx(104.0)]


def test_straddle_vertex_survives_three_point_grid(market):
    bundle = StrategyBundle.of(
        Leg("call", "long", strike=100, premium=2.0),
        Leg("put", "long", strike=100, premium=2.0),
    )
    series = build_series(bundle, [90.0, 100.0, 110.0], market)
    assert list(series.expiration_pnl) == pytest.approx([600.0, -400.0, 600.0])
    assert find_break_evens(series.prices, series.expiration_pnl) == [
        pytest.approx(96.0), pytest.approx(104.0)]


def test_sanitize_with_slope_bound_still_clamps_noise():
    prices = [1.0, 2.0, 3.0, 4.0, 5.0]
    out = sanitize_series([0.0, 0.0, 1e12, 0.0, 0.0], prices=prices, max_slope=100.0)
    assert out[2] == 0.0
    # a move the slope bound allows is kept
    kink = [0.0, 0.0, 100.0, 0.0, 0.0]
    assert np.array_equal(sanitize_series(kink, prices=prices, max_slope=100.0), np.array(kink))
