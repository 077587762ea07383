"""Payoff Aggregator - expiration and mark-to-market P&L curves.

Combines the legs of a StrategyBundle into two curves over a price grid:
- expiration P&L: intrinsic value at expiry minus entry price
- current P&L: Black-Scholes value with each leg's remaining time minus entry price

Legs missing a premium are entered at their theoretical value at the initial
spot (stock legs at the spot itself). Contributions are summed in a canonical
order so that permuting legs yields bit-identical curves.

Author: Options Strategy Lab
Created: 2025-11-15
"""

from __future__ import annotations

import logging
from typing import List, Optional, Sequence

import numpy as np

from . import config
from .models import (
    CALL,
    STOCK,
    Greeks,
    InvalidInput,
    Leg,
    MarketParams,
    PayoffSeries,
    StrategyBundle,
)
from .pricing import greeks, price, price_curve

logger = logging.getLogger(__name__)

# Isolated samples deviating this many local steps from their neighbours are noise
SPIKE_FACTOR = 50.0


# ----------------------------- Entry prices -----------------------------

def entry_price(leg: Leg, bundle: StrategyBundle, market: MarketParams) -> float:
    """Cost basis per unit: stated premium, else fair value at the initial spot."""
    if leg.premium is not None:
        return leg.premium
    if leg.kind == STOCK:
        return market.spot
    return price(
        leg.kind,
        market.spot,
        leg.strike,
        market.risk_free_rate,
        market.dividend_yield,
        market.volatility,
        bundle.leg_years(leg, market),
    )


def entry_prices(bundle: StrategyBundle, market: MarketParams) -> List[float]:
    return [entry_price(leg, bundle, market) for leg in bundle.legs]


def net_premium(bundle: StrategyBundle, market: MarketParams) -> float:
    """Net option premium for the whole position. Positive = debit paid, negative = credit."""
    total = 0.0
    for leg, basis in zip(bundle.legs, entry_prices(bundle, market)):
        if leg.is_option:
            total += leg.sign * leg.quantity * basis
    return total * bundle.contract_multiplier


def gross_premium(bundle: StrategyBundle, market: MarketParams) -> float:
    """Sum of absolute option premiums (scale for consistency checks)."""
    total = 0.0
    for leg, basis in zip(bundle.legs, entry_prices(bundle, market)):
        if leg.is_option:
            total += leg.quantity * abs(basis)
    return total * bundle.contract_multiplier


# ----------------------------- Leg values -----------------------------

def _intrinsic(leg: Leg, S: np.ndarray) -> np.ndarray:
    if leg.kind == CALL:
        return np.maximum(S - leg.strike, 0.0)
    return np.maximum(leg.strike - S, 0.0)


def leg_expiration_pnl(leg: Leg, basis: float, S, multiplier: float) -> np.ndarray:
    """Signed expiration P&L of one leg over prices S (scaled by the multiplier)."""
    S = np.asarray(S, dtype=float)
    if leg.kind == STOCK:
        value = S - basis
    else:
        value = _intrinsic(leg, S) - basis
    return leg.sign * leg.quantity * value * multiplier


def leg_current_pnl(leg: Leg, basis: float, S, market: MarketParams,
                    remaining_years: float, multiplier: float) -> np.ndarray:
    """Signed mark-to-market P&L of one leg with `remaining_years` to expiry."""
    S = np.asarray(S, dtype=float)
    if leg.kind == STOCK:
        value = S - basis
    else:
        value = price_curve(
            leg.kind,
            S,
            leg.strike,
            market.risk_free_rate,
            market.dividend_yield,
            market.volatility,
            remaining_years,
        ) - basis
    return leg.sign * leg.quantity * value * multiplier


def _canonical_sum(rows: Sequence[np.ndarray], size: int) -> np.ndarray:
    """Column sums independent of row order."""
    if not rows:
        return np.zeros(size, dtype=float)
    stacked = np.sort(np.vstack(rows), axis=0)
    return stacked.sum(axis=0)


def payoff_at_expiry(bundle: StrategyBundle, S, bases: Optional[Sequence[float]] = None,
                     market: Optional[MarketParams] = None) -> np.ndarray:
    """Total expiration P&L at prices S. Pass `bases` or `market` to resolve entry prices."""
    if bases is None:
        if market is None:
            raise InvalidInput("payoff_at_expiry needs entry prices or market params")
        bases = entry_prices(bundle, market)
    S = np.atleast_1d(np.asarray(S, dtype=float))
    rows = [
        leg_expiration_pnl(leg, basis, S, bundle.contract_multiplier)
        for leg, basis in zip(bundle.legs, bases)
    ]
    return _canonical_sum(rows, S.size)


# ----------------------------- Sanitising -----------------------------

def _max_slope(bundle: StrategyBundle) -> float:
    """Largest |dP&L/dS| any leg combination can reach (option deltas and stock are bounded by 1)."""
    return sum(leg.quantity for leg in bundle.legs) * bundle.contract_multiplier


def _others_scale(y: np.ndarray) -> np.ndarray:
    """
    Per interior sample: the larger of the biggest step elsewhere on the curve
    and the range of the remaining samples (sample i and its two steps excluded).
    """
    n = y.size
    steps = np.abs(np.diff(y))
    step_pre = np.maximum.accumulate(steps)
    step_suf = np.maximum.accumulate(steps[::-1])[::-1]
    hi_pre, lo_pre = np.maximum.accumulate(y), np.minimum.accumulate(y)
    hi_suf = np.maximum.accumulate(y[::-1])[::-1]
    lo_suf = np.minimum.accumulate(y[::-1])[::-1]

    out = np.zeros(n)
    for i in range(1, n - 1):
        step = max(step_pre[i - 2] if i >= 2 else 0.0, step_suf[i + 1] if i + 1 < n - 1 else 0.0)
        spread = max(hi_pre[i - 1], hi_suf[i + 1]) - min(lo_pre[i - 1], lo_suf[i + 1])
        out[i] = max(step, spread)
    return out


def sanitize_series(values, prices=None, max_slope: Optional[float] = None) -> np.ndarray:
    """
    Return a finite copy of a sampled curve.

    Non-finite samples become the average of their finite neighbours (or 0
    when none exists). An interior sample is clamped to its neighbour average
    only when it deviates by more than SPIKE_FACTOR times the largest move the
    rest of the curve shows (biggest other step, spread of the other samples).

    When `prices` and `max_slope` are given, a genuine curve cannot move more
    than max_slope * spacing between samples, so that move is also tolerated.
    A payoff kink (butterfly peak, straddle vertex) is never clamped.
    """
    y = np.array(values, dtype=float)
    n = y.size
    if n == 0:
        return y

    bad = ~np.isfinite(y)
    if bad.any():
        finite_idx = np.flatnonzero(~bad)
        for i in np.flatnonzero(bad):
            if finite_idx.size == 0:
                y[i] = 0.0
                continue
            pos = np.searchsorted(finite_idx, i)
            neighbours = []
            if pos > 0:
                neighbours.append(y[finite_idx[pos - 1]])
            if pos < finite_idx.size:
                neighbours.append(y[finite_idx[pos]])
            y[i] = float(np.mean(neighbours))
        logger.debug(f"sanitize_series replaced {int(bad.sum())} non-finite samples")

    if n < 3:
        return y

    scale = _others_scale(y)
    if prices is not None and max_slope is not None:
        xs = np.asarray(prices, dtype=float)
        if xs.shape != y.shape:
            raise InvalidInput("prices and values must be equally long")
        gaps = np.diff(xs)
        reach = np.zeros(n)
        reach[1:-1] = float(max_slope) * np.maximum(gaps[:-1], gaps[1:])
        scale = np.maximum(scale, reach)
    floor = 1e-9 * max(1.0, float(np.median(np.abs(y))))

    snapshot = y.copy()
    clamped = 0
    for i in range(1, n - 1):
        local = 0.5 * (snapshot[i - 1] + snapshot[i + 1])
        if abs(snapshot[i] - local) > SPIKE_FACTOR * max(scale[i], floor):
            y[i] = local
            clamped += 1
    if clamped:
        logger.debug(f"sanitize_series clamped {clamped} isolated spikes")
    return y


# ----------------------------- Aggregation -----------------------------

def build_series(bundle: StrategyBundle, price_grid, market: MarketParams,
                 elapsed_years: float = 0.0) -> PayoffSeries:
    """
    Expiration and current P&L curves over `price_grid`.

    Args:
        bundle: Strategy legs and contract multiplier
        price_grid: Ascending underlying prices (spacing is free)
        market: Market inputs (spot is the entry spot for missing premiums)
        elapsed_years: Time already elapsed when valuing the current curve

    Returns:
        PayoffSeries with sanitised curves
    """
    grid = np.asarray(price_grid, dtype=float)
    if grid.ndim != 1 or grid.size == 0:
        raise InvalidInput("price_grid must be a non-empty one-dimensional sequence")
    if not np.all(np.isfinite(grid)) or np.any(grid < 0):
        raise InvalidInput("price_grid must contain finite non-negative prices")

    bases = entry_prices(bundle, market)
    mult = bundle.contract_multiplier
    expiration_rows = []
    current_rows = []
    for leg, basis in zip(bundle.legs, bases):
        expiration_rows.append(leg_expiration_pnl(leg, basis, grid, mult))
        remaining = max(bundle.leg_years(leg, market) - float(elapsed_years), 0.0)
        current_rows.append(leg_current_pnl(leg, basis, grid, market, remaining, mult))

    slope = _max_slope(bundle)
    expiration = sanitize_series(_canonical_sum(expiration_rows, grid.size), grid, slope)
    current = sanitize_series(_canonical_sum(current_rows, grid.size), grid, slope)
    return PayoffSeries(prices=grid, expiration_pnl=expiration, current_pnl=current)


def default_price_grid(bundle: StrategyBundle, market: MarketParams,
                       points: int = config.GRID_POINTS,
                       margin: float = config.GRID_MARGIN) -> np.ndarray:
    """Grid covering every strike plus `margin` around spot; strikes and spot sampled exactly."""
    spot = market.spot
    strikes = bundle.strikes
    lo = spot * (1.0 - margin)
    hi = spot * (1.0 + margin)
    if strikes:
        lo = min(lo, strikes[0] * (1.0 - margin / 2.0))
        hi = max(hi, strikes[-1] * (1.0 + margin / 2.0))
    lo = max(lo, spot * 1e-3)
    grid = np.linspace(lo, hi, max(int(points), 2))
    return np.unique(np.concatenate([grid, np.asarray(strikes, dtype=float), [spot]]))


# ----------------------------- Position Greeks -----------------------------

def strategy_greeks(bundle: StrategyBundle, market: MarketParams,
                    spot: Optional[float] = None) -> Greeks:
    """Net position Greeks (sign x quantity x multiplier). Stock contributes delta 1 per share."""
    S = market.spot if spot is None else float(spot)
    total = Greeks()
    for leg in sorted(bundle.legs, key=Leg.sort_key):
        scale = leg.sign * leg.quantity * bundle.contract_multiplier
        if leg.kind == STOCK:
            total = total + Greeks(delta=scale)
            continue
        g = greeks(
            leg.kind,
            S,
            leg.strike,
            market.risk_free_rate,
            market.dividend_yield,
            market.volatility,
            bundle.leg_years(leg, market),
        )
        total = total + g.scaled(scale)
    return total
