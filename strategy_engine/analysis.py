"""
Strategy Analysis - one-call evaluation of an options strategy.

Runs the pipeline
    payoff aggregator -> sanitiser -> break-even solver -> probability engine
over a price grid and attaches the net position Greeks, the entry cost and the
analytic terminal-price moments. Monte Carlo output (computed separately,
usually in the background via tasks.SimulationRunner) is checked against
the same analytic lognormal moments with reconcile_simulation.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import List, Optional, Tuple

import numpy as np
from scipy.stats import norm

from .breakeven import find_break_evens, profit_region
from .models import (
    Greeks,
    MarketParams,
    PayoffSeries,
    ProbabilityResult,
    SimulationResult,
    StrategyBundle,
)
from .monte_carlo import HIGH_PERCENTILE, LOW_PERCENTILE
from .payoff import build_series, default_price_grid, net_premium, strategy_greeks
from .probability import evaluate, gbm_interval, gbm_mean
from .strategies import Classification, classify

logger = logging.getLogger(__name__)

DEFAULT_RECONCILE_TOLERANCE = 0.02


@dataclass(frozen=True)
class StrategyReport:
    series: PayoffSeries
    break_evens: List[float]
    probability: ProbabilityResult
    greeks: Greeks
    net_premium: float  # positive = debit paid
    expected_price: float  # E[S_T] under the selected drift
    price_interval: Tuple[float, float]  # central 95% lognormal interval of S_T
    profit_region: str
    strategy: Optional[Classification] = None  # recognised strategy name

    @property
    def is_debit(self) -> bool:
        return self.net_premium > 0

    @property
    def max_profit_on_grid(self) -> float:
        return float(np.max(self.series.expiration_pnl))

    @property
    def max_loss_on_grid(self) -> float:
        return float(np.min(self.series.expiration_pnl))


def analyze_strategy(bundle: StrategyBundle, market: MarketParams,
                     grid=None, elapsed_years: float = 0.0) -> StrategyReport:
    """
    Evaluate a strategy end to end.

    Args:
        bundle: Strategy legs
        market: Market inputs (drift mode applies to probabilities and moments)
        grid: Price grid; default_price_grid(bundle, market) when omitted
        elapsed_years: Time already elapsed for the current P&L curve

    Returns:
        StrategyReport
    """
    prices = default_price_grid(bundle, market) if grid is None else grid
    series = build_series(bundle, prices, market, elapsed_years=elapsed_years)
    break_evens = find_break_evens(series.prices, series.expiration_pnl)
    probability = evaluate(bundle, break_evens, market)

    mu = market.drift
    T = max(market.time_horizon_years, 0.0)
    return StrategyReport(
        series=series,
        break_evens=break_evens,
        probability=probability,
        greeks=strategy_greeks(bundle, market),
        net_premium=net_premium(bundle, market),
        expected_price=gbm_mean(market.spot, mu, T),
        price_interval=gbm_interval(market.spot, mu, max(market.volatility, 0.0), T),
        profit_region=profit_region(series.prices, series.expiration_pnl, break_evens),
        strategy=classify(bundle),
    )


# ----------------------------- Monte Carlo reconciliation -----------------------------

@dataclass(frozen=True)
class Reconciliation:
    """Monte Carlo summary vs analytic lognormal moments (relative errors)."""

    analytic_mean: float
    analytic_low: float
    analytic_high: float
    mean_error: float
    low_error: float
    high_error: float
    tolerance: float
    details: dict = field(default_factory=dict, compare=False)

    @property
    def consistent(self) -> bool:
        return max(self.mean_error, self.low_error, self.high_error) <= self.tolerance


def _rel_error(value: float, reference: float) -> float:
    return abs(value - reference) / max(abs(reference), 1e-12)


def reconcile_simulation(result: SimulationResult, market: MarketParams,
                         tolerance: float = DEFAULT_RECONCILE_TOLERANCE,
                         drift: Optional[float] = None) -> Reconciliation:
    """
    Compare a SimulationResult with the analytic GBM mean and percentiles.

    The simulator grows paths at r - q, so that is the default drift here;
    pass `drift` to compare against a different one.
    """
    mu = market.risk_free_rate - market.dividend_yield if drift is None else float(drift)
    sigma = max(market.volatility, 0.0)
    T = max(market.time_horizon_years, 0.0)

    mean = gbm_mean(market.spot, mu, T)
    low, _ = gbm_interval(market.spot, mu, sigma, T, z=-float(norm.ppf(LOW_PERCENTILE)))
    _, high = gbm_interval(market.spot, mu, sigma, T, z=float(norm.ppf(HIGH_PERCENTILE)))

    rec = Reconciliation(
        analytic_mean=mean,
        analytic_low=low,
        analytic_high=high,
        mean_error=_rel_error(result.mean, mean),
        low_error=_rel_error(result.low, low),
        high_error=_rel_error(result.high, high),
        tolerance=float(tolerance),
        details={"path_count": result.path_count, "drift": mu},
    )
    if not rec.consistent:
        logger.warning(
            f"Monte Carlo disagrees with analytic GBM moments "
            f"(paths={result.path_count}): mean {result.mean:.4f} vs {mean:.4f}, "
            f"p2.5 {result.low:.4f} vs {low:.4f}, p97.5 {result.high:.4f} vs {high:.4f}"
        )
    return rec
