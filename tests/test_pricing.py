"""Tests for Black-Scholes-Merton pricing, Greeks and implied volatility."""

import math

import numpy as np
import pytest

from strategy_engine.models import InvalidInput
from strategy_engine.pricing import (
    bs_call_price,
    bs_put_price,
    greeks,
    implied_volatility,
    norm_cdf,
    norm_pdf,
    price,
    price_curve,
)


def test_norm_cdf_reference_values():
    assert norm_cdf(0.0) == pytest.approx(0.5, abs=1e-7)
    assert norm_cdf(1.959963984540054) == pytest.approx(0.975, abs=1e-6)
    assert norm_cdf(-1.0) == pytest.approx(0.158655, abs=1e-6)
    assert norm_pdf(0.0) == pytest.approx(1.0 / math.sqrt(2.0 * math.pi))
    arr = norm_cdf(np.array([-1.0, 0.0, 1.0]))
    assert arr.shape == (3,)
    assert arr[0] + arr[2] == pytest.approx(1.0, abs=1e-7)


def test_atm_reference_prices():
    call = bs_call_price(100, 100, 0.05, 0.0, 0.20, 1.0)
    put = bs_put_price(100, 100, 0.05, 0.0, 0.20, 1.0)
    assert call == pytest.approx(10.4506, abs=1e-3)
    assert put == pytest.approx(5.5735, abs=1e-3)


@pytest.mark.parametrize("S,K,r,q,sigma,T", [
    (100, 100, 0.05, 0.0, 0.2, 1.0),
    (120, 100, 0.03, 0.02, 0.35, 0.5),
    (80, 110, 0.01, 0.04, 0.5, 2.0),
])
def test_put_call_parity(S, K, r, q, sigma, T):
    call = price("call", S, K, r, q, sigma, T)
    put = price("put", S, K, r, q, sigma, T)
    assert call - put == pytest.approx(S * math.exp(-q * T) - K * math.exp(-r * T), abs=1e-4)


def test_degenerate_inputs_collapse_to_intrinsic():
    assert price("call", 110, 100, 0.05, 0.0, 0.0, 1.0) == pytest.approx(10.0)
    assert price("put", 90, 100, 0.05, 0.0, 0.2, 0.0) == pytest.approx(10.0)
    assert price("put", 110, 100, 0.05, 0.0, -0.1, 1.0) == 0.0


def test_price_curve_handles_zero_price():
    values = price_curve("call", np.array([0.0, 50.0, 100.0]), 100, 0.05, 0.0, 0.2, 1.0)
    assert values[0] == 0.0
    assert np.all(np.isfinite(values))
    puts = price_curve("put", np.array([0.0]), 100, 0.05, 0.0, 0.2, 1.0)
    assert puts[0] == pytest.approx(100 * math.exp(-0.05), abs=1e-6)


def test_invalid_pricing_inputs():
    with pytest.raises(InvalidInput):
        price("call", 0.0, 100, 0.05, 0.0, 0.2, 1.0)
    with pytest.raises(InvalidInput):
        price("call", 100, -5, 0.05, 0.0, 0.2, 1.0)
    with pytest.raises(InvalidInput):
        price("straddle", 100, 100, 0.05, 0.0, 0.2, 1.0)


def test_greeks_conventions():
    g = greeks("call", 100, 100, 0.05, 0.0, 0.2, 1.0)
    assert 0.6 < g.delta < 0.7
    assert g.delta == pytest.approx(0.6368, abs=1e-3)
    assert g.gamma == pytest.approx(0.018762, abs=1e-4)
    # per vol point
    assert g.vega == pytest.approx(0.3752, abs=1e-3)
    # per calendar day
    assert g.theta == pytest.approx(-6.414 / 365.0, abs=1e-4)
    assert g.rho == pytest.approx(53.23, abs=0.05)

    p = greeks("put", 100, 100, 0.05, 0.0, 0.2, 1.0)
    assert p.delta == pytest.approx(g.delta - 1.0, abs=1e-9)
    assert p.gamma == pytest.approx(g.gamma)
    assert p.vega == pytest.approx(g.vega)
    assert p.rho < 0


def test_degenerate_greeks_step_delta():
    assert greeks("call", 110, 100, 0.05, 0.0, 0.0, 1.0).delta == 1.0
    assert greeks("call", 90, 100, 0.05, 0.0, 0.2, 0.0).delta == 0.0
    put = greeks("put", 90, 100, 0.05, 0.0, 0.2, 0.0)
    assert put.delta == -1.0
    assert put.gamma == put.vega == put.theta == put.rho == 0.0
    assert greeks("put", 110, 100, 0.05, 0.0, 0.0, 1.0).delta == 0.0


@pytest.mark.parametrize("kind", ["call", "put"])
def test_implied_volatility_recovers_sigma(kind):
    premium = price(kind, 100, 105, 0.03, 0.01, 0.27, 0.75)
    iv = implied_volatility(kind, premium, 100, 105, 0.03, 0.01, 0.75)
    assert iv == pytest.approx(0.27, abs=1e-6)


def test_implied_volatility_outside_bounds():
    # Below intrinsic and above the spot are both arbitrage
    assert implied_volatility("call", 5.0, 120, 100, 0.0, 0.0, 1.0) is None
    assert implied_volatility("call", 150.0, 120, 100, 0.0, 0.0, 1.0) is None
    assert implied_volatility("put", 3.0, 100, 100, 0.0, 0.0, 0.0) is None
