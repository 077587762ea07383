"""Tests for the GBM Monte Carlo simulator."""

import math

import pytest

from strategy_engine.models import InvalidInput
from strategy_engine.monte_carlo import default_step_count, simulate


def test_default_step_count():
    assert default_step_count(1.0) == 252
    assert default_step_count(0.0) == 1
    assert default_step_count(30 / 365) == 21


def test_converges_to_analytic_moments():
    result = simulate(100.0, 0.2, 0.05, 1.0, path_count=20000, step_count=4, seed=42)
    assert result.path_count == 20000
    assert result.mean == pytest.approx(100.0 * math.exp(0.05), rel=0.01)
    z = 1.959963984540054
    assert result.low == pytest.approx(100.0 * math.exp(0.03 - z * 0.2), rel=0.03)
    assert result.high == pytest.approx(100.0 * math.exp(0.03 + z * 0.2), rel=0.03)
    assert result.low < result.mean < result.high


def test_reproducible_for_a_seed():
    a = simulate(50.0, 0.3, 0.02, 0.5, path_count=500, step_count=10, seed=7)
    b = simulate(50.0, 0.3, 0.02, 0.5, path_count=500, step_count=10, seed=7)
    c = simulate(50.0, 0.3, 0.02, 0.5, path_count=500, step_count=10, seed=8)
    assert a == b
    assert a != c


def test_zero_horizon_stays_at_spot():
    result = simulate(80.0, 0.4, 0.05, 0.0, path_count=100, seed=1)
    assert result.mean == pytest.approx(80.0)
    assert result.low == result.high == pytest.approx(80.0)


def test_zero_volatility_grows_at_rate():
    result = simulate(100.0, 0.0, 0.04, 1.0, path_count=50, step_count=12, seed=3)
    assert result.mean == pytest.approx(100.0 * math.exp(0.04), rel=1e-12)
    assert result.low == pytest.approx(result.high)


def test_dividend_yield_reduces_drift():
    plain = simulate(100.0, 0.2, 0.05, 1.0, path_count=2000, step_count=2, seed=11)
    paying = simulate(100.0, 0.2, 0.05, 1.0, path_count=2000, step_count=2, seed=11,
                      dividend_yield=0.03)
    assert paying.mean < plain.mean


def test_invalid_inputs():
    with pytest.raises(InvalidInput):
        simulate(0.0, 0.2, 0.05, 1.0, path_count=10)
    with pytest.raises(InvalidInput):
        simulate(100.0, 0.2, 0.05, 1.0, path_count=0)
    with pytest.raises(InvalidInput):
        simulate(100.0, 0.2, 0.05, 1.0, path_count=10, step_count=0)
    with pytest.raises(InvalidInput):
        simulate(100.0, float("nan"), 0.05, 1.0, path_count=10)


def test_path_count_defaults_to_config(monkeypatch):
    from strategy_engine import config

    monkeypatch.setattr(config, "DEFAULT_PATH_COUNT", 50)
    result = simulate(100.0, 0.2, 0.05, 0.1, seed=5)
    assert result.path_count == 50
    assert result.low <= result.mean <= result.high
