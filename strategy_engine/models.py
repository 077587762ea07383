"""Strategy data model.

Plain immutable records passed between the engine components:
- Leg / StrategyBundle describe the position being evaluated
- MarketParams carries spot, rates, volatility, horizon and drift selection
- PayoffSeries, SimulationResult, Greeks and ProbabilityResult are outputs

Every record is built fresh per evaluation request and never mutated.

Author: Options Strategy Lab
Created: 2025-11-15
"""

from __future__ import annotations

import math
from dataclasses import dataclass, field
from typing import Iterable, Optional, Tuple

import numpy as np
import pandas as pd

from . import config

CALL = "call"
PUT = "put"
STOCK = "stock"
KINDS = (CALL, PUT, STOCK)

LONG = "long"
SHORT = "short"
SIDES = (LONG, SHORT)

RISK_NEUTRAL = "risk-neutral"
CAPM = "capm"
CUSTOM = "custom"
DRIFT_MODES = (RISK_NEUTRAL, CAPM, CUSTOM)


class InvalidInput(ValueError):
    """Raised for inputs with no sensible degenerate value (e.g. spot <= 0)."""


def _finite(x) -> bool:
    try:
        return math.isfinite(float(x))
    except (TypeError, ValueError):
        return False


def years_from_days(days, basis: float = config.DAY_COUNT_BASIS) -> float:
    """Convert calendar days to a year fraction (ACT/basis). Non-positive days give 0."""
    d = float(days)
    if not math.isfinite(d) or d <= 0:
        return 0.0
    return d / float(basis)


@dataclass(frozen=True)
class Leg:
    """One option or stock position within a strategy."""

    kind: str  # 'call', 'put' or 'stock'
    side: str  # 'long' or 'short'
    quantity: float = 1.0  # always positive; direction comes from side
    strike: Optional[float] = None  # required for options, unused for stock

    # Entry price per unit. None => theoretical value at the initial spot
    # (options) or the initial spot itself (stock)
    premium: Optional[float] = None

    # Falls back to the bundle default, then to the market horizon
    days_to_expiry: Optional[float] = None

    def __post_init__(self):
        kind = str(self.kind).strip().lower()
        side = str(self.side).strip().lower()
        if kind not in KINDS:
            raise InvalidInput(f"Unknown leg kind: {self.kind!r}")
        if side not in SIDES:
            raise InvalidInput(f"Unknown leg side: {self.side!r}")
        object.__setattr__(self, "kind", kind)
        object.__setattr__(self, "side", side)

        if not _finite(self.quantity) or float(self.quantity) <= 0:
            raise InvalidInput(f"Leg quantity must be positive, got {self.quantity!r}")
        object.__setattr__(self, "quantity", float(self.quantity))

        if kind != STOCK:
            if self.strike is None or not _finite(self.strike) or float(self.strike) <= 0:
                raise InvalidInput(f"Option leg strike must be positive, got {self.strike!r}")
            object.__setattr__(self, "strike", float(self.strike))

        if self.premium is not None:
            if not _finite(self.premium):
                raise InvalidInput(f"Leg premium must be finite, got {self.premium!r}")
            object.__setattr__(self, "premium", float(self.premium))

        if self.days_to_expiry is not None and not _finite(self.days_to_expiry):
            raise InvalidInput(f"days_to_expiry must be finite, got {self.days_to_expiry!r}")

    @property
    def sign(self) -> float:
        return 1.0 if self.side == LONG else -1.0

    @property
    def is_option(self) -> bool:
        return self.kind != STOCK

    def sort_key(self) -> tuple:
        return (
            self.kind,
            self.side,
            self.strike if self.strike is not None else -1.0,
            self.quantity,
            self.premium if self.premium is not None else float("-inf"),
            self.days_to_expiry if self.days_to_expiry is not None else float("-inf"),
        )


@dataclass(frozen=True)
class StrategyBundle:
    """Ordered legs plus the contract multiplier (shares per contract)."""

    legs: Tuple[Leg, ...]
    contract_multiplier: float = config.CONTRACT_MULTIPLIER
    default_days: Optional[float] = None  # strategy-level days-to-expiry fallback

    def __post_init__(self):
        legs = tuple(self.legs)
        for leg in legs:
            if not isinstance(leg, Leg):
                raise InvalidInput(f"Expected Leg, got {type(leg).__name__}")
        object.__setattr__(self, "legs", legs)
        if not _finite(self.contract_multiplier) or float(self.contract_multiplier) <= 0:
            raise InvalidInput(
                f"contract_multiplier must be positive, got {self.contract_multiplier!r}"
            )
        object.__setattr__(self, "contract_multiplier", float(self.contract_multiplier))

    @classmethod
    def of(cls, *legs: Leg, contract_multiplier: float = config.CONTRACT_MULTIPLIER,
           default_days: Optional[float] = None) -> "StrategyBundle":
        return cls(tuple(legs), contract_multiplier=contract_multiplier, default_days=default_days)

    @property
    def option_legs(self) -> Tuple[Leg, ...]:
        return tuple(leg for leg in self.legs if leg.is_option)

    @property
    def strikes(self) -> Tuple[float, ...]:
        """Sorted unique strikes of the option legs."""
        return tuple(sorted({leg.strike for leg in self.legs if leg.is_option}))

    def leg_years(self, leg: Leg, market: "MarketParams") -> float:
        """Time to expiry of a leg in years, resolving the fallbacks."""
        days = leg.days_to_expiry if leg.days_to_expiry is not None else self.default_days
        if days is None:
            return max(market.time_horizon_years, 0.0)
        return years_from_days(days, market.day_basis)


def capm_expected_return(risk_free_rate: float, beta: float = 1.0,
                         equity_risk_premium: float = 0.0) -> float:
    """CAPM expected return: rf + beta * ERP."""
    return float(risk_free_rate) + float(beta) * float(equity_risk_premium)


@dataclass(frozen=True)
class MarketParams:
    """Market inputs; passed explicitly on every call."""

    spot: float
    risk_free_rate: float = 0.0
    dividend_yield: float = 0.0
    volatility: float = 0.0  # annualized, decimal
    time_horizon_years: float = 0.0
    drift_mode: str = RISK_NEUTRAL
    expected_return: Optional[float] = None  # used by CAPM and custom modes
    day_basis: float = config.DAY_COUNT_BASIS

    def __post_init__(self):
        if not _finite(self.spot) or float(self.spot) <= 0:
            raise InvalidInput(f"spot must be positive, got {self.spot!r}")
        for name in ("risk_free_rate", "dividend_yield", "volatility", "time_horizon_years"):
            value = getattr(self, name)
            if not _finite(value):
                raise InvalidInput(f"{name} must be finite, got {value!r}")
            object.__setattr__(self, name, float(value))
        object.__setattr__(self, "spot", float(self.spot))
        mode = str(self.drift_mode).strip().lower()
        if mode not in DRIFT_MODES:
            raise InvalidInput(f"Unknown drift mode: {self.drift_mode!r}")
        object.__setattr__(self, "drift_mode", mode)
        if mode != RISK_NEUTRAL and (self.expected_return is None or not _finite(self.expected_return)):
            raise InvalidInput(f"drift mode {mode!r} requires a finite expected_return")

    @classmethod
    def from_days(cls, spot: float, days: float, basis: float = config.DAY_COUNT_BASIS,
                  **kwargs) -> "MarketParams":
        """Build params with the horizon given in calendar days (at least one day)."""
        d = max(1, int(math.floor(float(days) or 0)))
        return cls(spot=spot, time_horizon_years=d / float(basis), day_basis=basis, **kwargs)

    @property
    def drift(self) -> float:
        """Drift used for probabilities and simulation."""
        if self.drift_mode == RISK_NEUTRAL:
            return self.risk_free_rate - self.dividend_yield
        if self.drift_mode == CAPM:
            # CAPM return is a total return; the underlying grows net of its yield
            return float(self.expected_return) - self.dividend_yield
        return float(self.expected_return)


@dataclass(frozen=True)
class Greeks:
    """Option sensitivities. Vega is per vol point, theta per calendar day."""

    delta: float = 0.0
    gamma: float = 0.0
    vega: float = 0.0
    theta: float = 0.0
    rho: float = 0.0

    def scaled(self, factor: float) -> "Greeks":
        return Greeks(
            delta=self.delta * factor,
            gamma=self.gamma * factor,
            vega=self.vega * factor,
            theta=self.theta * factor,
            rho=self.rho * factor,
        )

    def __add__(self, other: "Greeks") -> "Greeks":
        return Greeks(
            delta=self.delta + other.delta,
            gamma=self.gamma + other.gamma,
            vega=self.vega + other.vega,
            theta=self.theta + other.theta,
            rho=self.rho + other.rho,
        )


def _frozen_array(values: Iterable[float]) -> np.ndarray:
    arr = np.array(values, dtype=float)
    arr.setflags(write=False)
    return arr


@dataclass(frozen=True)
class PayoffSeries:
    """Price grid with expiration and current P&L curves of equal length."""

    prices: np.ndarray
    expiration_pnl: np.ndarray
    current_pnl: np.ndarray

    def __post_init__(self):
        prices = _frozen_array(self.prices)
        expiration = _frozen_array(self.expiration_pnl)
        current = _frozen_array(self.current_pnl)
        if prices.ndim != 1 or expiration.shape != prices.shape or current.shape != prices.shape:
            raise InvalidInput("PayoffSeries arrays must be one-dimensional and equally long")
        if prices.size > 1 and np.any(np.diff(prices) <= 0):
            raise InvalidInput("PayoffSeries prices must be strictly ascending")
        object.__setattr__(self, "prices", prices)
        object.__setattr__(self, "expiration_pnl", expiration)
        object.__setattr__(self, "current_pnl", current)

    def __len__(self) -> int:
        return int(self.prices.size)

    def to_frame(self) -> pd.DataFrame:
        return pd.DataFrame({
            "price": self.prices,
            "expiration_pnl": self.expiration_pnl,
            "current_pnl": self.current_pnl,
        })


@dataclass(frozen=True)
class SimulationResult:
    """Monte Carlo terminal-price summary (low/high = 2.5th/97.5th percentiles)."""

    mean: float
    low: float
    high: float
    path_count: int


@dataclass(frozen=True)
class ProbabilityResult:
    """Risk metrics of the expiration payoff under the lognormal model."""

    probability_of_profit: float
    expected_profit: float  # E[payoff * 1{payoff > 0}]
    expected_loss: float  # E[-payoff * 1{payoff < 0}], reported positive
    expected_net: float  # expected_profit - expected_loss
    method: str = "numerical"  # 'closed_form', 'numerical' or 'degenerate'
    details: dict = field(default_factory=dict, compare=False)
