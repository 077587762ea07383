"""
Options strategy engine: payoff curves, break-evens, probability of profit,
Greeks and Monte Carlo terminal-price ranges for multi-leg option strategies.
"""

from .analysis import Reconciliation, StrategyReport, analyze_strategy, reconcile_simulation
from .breakeven import find_break_evens, profit_region
from .models import (
    CALL,
    CAPM,
    CUSTOM,
    LONG,
    PUT,
    RISK_NEUTRAL,
    SHORT,
    STOCK,
    Greeks,
    InvalidInput,
    Leg,
    MarketParams,
    PayoffSeries,
    ProbabilityResult,
    SimulationResult,
    StrategyBundle,
    capm_expected_return,
    years_from_days,
)
from .monte_carlo import simulate
from .payoff import (
    build_series,
    default_price_grid,
    net_premium,
    payoff_at_expiry,
    sanitize_series,
    strategy_greeks,
)
from .pricing import greeks, implied_volatility, norm_cdf, norm_pdf, price
from .probability import LegMetrics, evaluate, gbm_interval, gbm_mean, single_leg_metrics
from .random_source import RandomSource
from .selection import percentile
from .strategies import (
    BreakEvenEstimate,
    Classification,
    classify,
    normalize_strategy_key,
    strategy_break_evens,
)
from .tasks import SimulationHandle, SimulationRequest, SimulationResponse, SimulationRunner

__version__ = "0.1.0"

__all__ = [
    "CALL", "PUT", "STOCK", "LONG", "SHORT", "RISK_NEUTRAL", "CAPM", "CUSTOM",
    "InvalidInput", "Leg", "StrategyBundle", "MarketParams", "Greeks",
    "PayoffSeries", "SimulationResult", "ProbabilityResult", "LegMetrics",
    "capm_expected_return", "years_from_days",
    "RandomSource", "percentile",
    "norm_cdf", "norm_pdf", "price", "greeks", "implied_volatility",
    "build_series", "payoff_at_expiry", "net_premium", "sanitize_series",
    "default_price_grid", "strategy_greeks",
    "find_break_evens", "profit_region",
    "Classification", "BreakEvenEstimate", "classify", "normalize_strategy_key",
    "strategy_break_evens",
    "evaluate", "single_leg_metrics", "gbm_mean", "gbm_interval",
    "simulate",
    "SimulationRequest", "SimulationResponse", "SimulationHandle", "SimulationRunner",
    "StrategyReport", "Reconciliation", "analyze_strategy", "reconcile_simulation",
]
