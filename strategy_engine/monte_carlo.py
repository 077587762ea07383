"""Monte Carlo Simulator - GBM terminal-price distribution.

Each path sums `step_count` log increments
    (r - q - sigma^2/2) dt + sigma sqrt(dt) Z
with Z from the xorshift32 RandomSource, then exponentiates once:
S_T = S0 * exp(sum). A running mean is kept across paths;
the 2.5th/97.5th percentiles of the terminal prices come from quickselect on
the same buffer (the second call reuses the partially ordered buffer).

Deterministic for a given (inputs, seed). No cancellation: a run always
completes; staleness is handled by the task layer (see tasks.py).
"""

from __future__ import annotations

import logging
import math
from array import array
from typing import Optional

from . import config
from .models import InvalidInput, SimulationResult
from .random_source import RandomSource
from .selection import percentile

logger = logging.getLogger(__name__)

LOW_PERCENTILE = 0.025
HIGH_PERCENTILE = 0.975


def _finite(name, value) -> float:
    try:
        v = float(value)
    except (TypeError, ValueError):
        raise InvalidInput(f"{name} must be a number, got {value!r}")
    if not math.isfinite(v):
        raise InvalidInput(f"{name} must be finite, got {value!r}")
    return v


def default_step_count(horizon_years: float) -> int:
    """Trading-day granularity: round(252 * T), at least one step."""
    return max(1, int(round(config.TRADING_DAYS_PER_YEAR * max(float(horizon_years), 0.0))))


def simulate(spot: float, volatility: float, risk_free_rate: float, horizon_years: float,
             path_count: Optional[int] = None, step_count: Optional[int] = None,
             seed: Optional[int] = None, dividend_yield: float = 0.0) -> SimulationResult:
    """
    Simulate terminal prices under geometric Brownian motion.

    Args:
        spot: Initial price (> 0)
        volatility: Annualized volatility (negative values are treated as 0)
        risk_free_rate: Annualized drift rate
        horizon_years: Horizon in years (non-positive => paths stay at spot)
        path_count: Number of paths (default config.DEFAULT_PATH_COUNT)
        step_count: Steps per path (default round(252 * horizon_years))
        seed: 32-bit seed (default config.DEFAULT_SEED)
        dividend_yield: Continuous yield subtracted from the drift

    Returns:
        SimulationResult(mean, low, high, path_count)
    """
    S0 = _finite("spot", spot)
    if S0 <= 0:
        raise InvalidInput(f"spot must be positive, got {spot!r}")
    vol = max(_finite("volatility", volatility), 0.0)
    rate = _finite("risk_free_rate", risk_free_rate) - _finite("dividend_yield", dividend_yield)
    T = max(_finite("horizon_years", horizon_years), 0.0)

    n_paths = config.DEFAULT_PATH_COUNT if path_count is None else int(path_count)
    if n_paths < 1:
        raise InvalidInput(f"path_count must be at least 1, got {path_count!r}")
    n_steps = default_step_count(T) if step_count is None else int(step_count)
    if n_steps < 1:
        raise InvalidInput(f"step_count must be at least 1, got {step_count!r}")

    rng = RandomSource(config.DEFAULT_SEED if seed is None else seed)
    dt = T / n_steps
    drift = (rate - 0.5 * vol * vol) * dt
    vol_step = vol * math.sqrt(dt)
    gauss = rng.next_gaussian
    exp = math.exp

    terminal = array("d", bytes(8 * n_paths))
    mean = 0.0
    for p in range(n_paths):
        log_return = 0.0
        for _ in range(n_steps):
            log_return += drift + vol_step * gauss()
        S = S0 * exp(log_return)
        terminal[p] = S
        mean += (S - mean) / (p + 1)

    low = percentile(terminal, LOW_PERCENTILE)
    high = percentile(terminal, HIGH_PERCENTILE)
    logger.debug(
        f"MC run: paths={n_paths}, steps={n_steps}, mean={mean:.4f}, "
        f"p2.5={low:.4f}, p97.5={high:.4f}"
    )
    return SimulationResult(mean=mean, low=low, high=high, path_count=n_paths)
