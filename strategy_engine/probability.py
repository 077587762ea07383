"""Probability/Expectation Engine - PoP and one-sided expectations at expiry.

Terminal price model (GBM):
    ln S_T ~ N( ln S0 + (mu - sigma^2/2) T , sigma^2 T )
with mu selected by MarketParams.drift (risk-neutral r - q by default).

General path: the break-evens partition [0, inf); every partition is checked
for sign constancy (probing each strike inside it, splitting at any extra
root), the sign of each piece is read at its midpoint, and
    PoP            = sum of lognormal mass over positive pieces
    expectedProfit = E[payoff * 1{payoff > 0}]   (scipy quad per piece)
    expectedLoss   = E[-payoff * 1{payoff < 0}]
    expectedNet    = expectedProfit - expectedLoss
The net is cross-checked against the closed-form E[payoff] of every leg and a
warning is logged when they disagree by more than CONSISTENCY_TOLERANCE of
premium.

Single option legs use closed forms built from Phi, d1 and d2.

Author: Options Strategy Lab
Created: 2025-11-15
"""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass
from typing import Callable, List, Optional, Sequence, Tuple

import numpy as np
from scipy.integrate import quad
from scipy.optimize import brentq

from . import config
from .models import (
    CALL,
    LONG,
    STOCK,
    MarketParams,
    ProbabilityResult,
    StrategyBundle,
)
from .payoff import entry_prices, gross_premium, payoff_at_expiry
from .pricing import norm_cdf, norm_pdf

logger = logging.getLogger(__name__)

Z_975 = 1.959963984540054
_Z_CUTOFF = 40.0  # phi(z) underflows beyond this


# ----------------------------- Lognormal helpers -----------------------------

def lognormal_params(S0: float, mu: float, sigma: float, T: float) -> Tuple[float, float]:
    """Mean and standard deviation of ln S_T."""
    sigma = max(float(sigma), 0.0)
    T = max(float(T), 0.0)
    return math.log(S0) + (mu - 0.5 * sigma * sigma) * T, sigma * math.sqrt(T)


def lognormal_cdf(x: float, S0: float, mu: float, sigma: float, T: float) -> float:
    """P[S_T <= x]. Degenerates to a point mass at the forward when sigma*sqrt(T) == 0."""
    if x <= 0:
        return 0.0
    if math.isinf(x):
        return 1.0
    m, s = lognormal_params(S0, mu, sigma, T)
    if s <= 0:
        return 1.0 if x >= gbm_mean(S0, mu, max(T, 0.0)) else 0.0
    return norm_cdf((math.log(x) - m) / s)


def lognormal_pdf(x: float, S0: float, mu: float, sigma: float, T: float) -> float:
    """Density of S_T (0 in the degenerate case)."""
    if not (x > 0):
        return 0.0
    m, s = lognormal_params(S0, mu, sigma, T)
    if s <= 0:
        return 0.0
    return norm_pdf((math.log(x) - m) / s) / (x * s)


def gbm_mean(S0: float, mu: float = 0.0, T: float = 0.0) -> float:
    """E[S_T] = S0 * e^(mu T)."""
    return float(S0) * math.exp(float(mu) * float(T))


def gbm_interval(S0: float, mu: float = 0.0, sigma: float = 0.0, T: float = 0.0,
                 z: float = Z_975) -> Tuple[float, float]:
    """Central lognormal interval of S_T (95% by default)."""
    m, s = lognormal_params(max(float(S0), 1e-12), mu, sigma, T)
    return math.exp(m - z * s), math.exp(m + z * s)


# ----------------------------- Single-leg closed forms -----------------------------

@dataclass(frozen=True)
class LegMetrics:
    """Per-share metrics of one option position at expiry."""

    break_even: Optional[float]
    probability_of_profit: float
    expected_profit: float  # E[P&L+]
    expected_loss: float  # E[P&L-], positive
    expected_net: float
    expected_payoff: float  # E[intrinsic value at expiry]
    payoff_stdev: float
    expected_return: Optional[float]  # expected_net / premium
    sharpe: Optional[float]  # expected_net / payoff_stdev


def _expected_payoff(kind: str, F: float, K: float, d1k: float, dbk: float) -> float:
    if kind == CALL:
        return F * norm_cdf(d1k) - K * norm_cdf(dbk)
    return K * norm_cdf(-dbk) - F * norm_cdf(-d1k)


def single_leg_metrics(kind: str, side: str, S0: float, K: float, premium: float,
                       sigma: float, T: float, mu: float) -> LegMetrics:
    """
    Closed-form expectations for a single long/short call or put (per share).

    Uses lognormal moments under drift `mu`:
        d1(a)   = (ln(S0/a) + (mu + sigma^2/2) T) / (sigma sqrt T)
        dbar(a) = d1(a) - sigma sqrt T
    E[(S_T - a)+] = F Phi(d1(a)) - a Phi(dbar(a)),  F = S0 e^(mu T)

    Requires sigma > 0 and T > 0.
    """
    s = sigma * math.sqrt(T)
    F = S0 * math.exp(mu * T)

    def d1(a):
        return (math.log(S0 / a) + (mu + 0.5 * sigma * sigma) * T) / s

    d1k = d1(K)
    dbk = d1k - s
    e_pay = _expected_payoff(kind, F, K, d1k, dbk)

    # Long P&L X = payoff - premium; positive part E[X+] and PoP
    if kind == CALL:
        a = K + premium
        if a <= 0:
            ep_long, pop_long = e_pay - premium, 1.0
        else:
            d1a = d1(a)
            ep_long = F * norm_cdf(d1a) - a * norm_cdf(d1a - s)
            pop_long = norm_cdf(d1a - s)
    else:
        a = K - premium
        if a <= 0:
            ep_long, pop_long = 0.0, 0.0
        else:
            d1a = d1(a)
            ep_long = a * norm_cdf(-(d1a - s)) - F * norm_cdf(-d1a)
            pop_long = norm_cdf(-(d1a - s))
    net_long = e_pay - premium
    el_long = ep_long - net_long  # E[X-] = E[X+] - E[X]

    if side == LONG:
        ep, el, net, pop = ep_long, el_long, net_long, pop_long
    else:
        ep, el, net, pop = el_long, ep_long, -net_long, 1.0 - pop_long

    # Variance of the payoff (premium is a constant)
    s2_exp = S0 * S0 * math.exp((2.0 * mu + sigma * sigma) * T)
    if kind == CALL:
        e2 = s2_exp * norm_cdf(d1k + s) - 2.0 * K * F * norm_cdf(d1k) + K * K * norm_cdf(dbk)
    else:
        e2 = K * K * norm_cdf(-dbk) - 2.0 * K * F * norm_cdf(-d1k) + s2_exp * norm_cdf(-(d1k + s))
    sd = math.sqrt(max(0.0, e2 - e_pay * e_pay))

    be = K + premium if kind == CALL else K - premium
    return LegMetrics(
        break_even=be if be > 0 else None,
        probability_of_profit=min(max(pop, 0.0), 1.0),
        expected_profit=ep,
        expected_loss=el,
        expected_net=ep - el,
        expected_payoff=e_pay,
        payoff_stdev=sd,
        expected_return=net / premium if premium > 0 else None,
        sharpe=net / sd if sd > 0 else None,
    )


def closed_form_net(bundle: StrategyBundle, market: MarketParams,
                    bases: Optional[Sequence[float]] = None) -> float:
    """E[expiration P&L] summed leg by leg from closed-form payoff moments."""
    if bases is None:
        bases = entry_prices(bundle, market)
    mu = market.drift
    sigma = max(market.volatility, 0.0)
    T = max(market.time_horizon_years, 0.0)
    S0 = market.spot
    F = gbm_mean(S0, mu, T)
    s = sigma * math.sqrt(T)
    total = 0.0
    for leg, basis in zip(bundle.legs, bases):
        if leg.kind == STOCK:
            value = F
        elif s <= 0:
            value = max(F - leg.strike, 0.0) if leg.kind == CALL else max(leg.strike - F, 0.0)
        else:
            d1k = (math.log(S0 / leg.strike) + (mu + 0.5 * sigma * sigma) * T) / s
            value = _expected_payoff(leg.kind, F, leg.strike, d1k, d1k - s)
        total += leg.sign * leg.quantity * (value - basis)
    return total * bundle.contract_multiplier


# ----------------------------- Partitioning -----------------------------

def _pairs(seq):
    return zip(seq[:-1], seq[1:])


def _probe_points(lo: float, hi: float, strikes: Sequence[float], spot: float) -> List[float]:
    pts = [k for k in strikes if lo < k < hi]
    if math.isinf(hi):
        base = max([lo, spot] + list(strikes))
        start = lo * (1.0 + 1e-6) if lo > 0 else spot * 1e-6
        pts += [start, 2.0 * base, 10.0 * base]
    else:
        width = hi - lo
        pts += [lo + 1e-6 * width, lo + 0.5 * width, hi - 1e-6 * width]
    return sorted(set(pts))


def _piece_midpoint(lo: float, hi: float, spot: float) -> float:
    if math.isinf(hi):
        return 2.0 * lo if lo > 0 else spot
    return 0.5 * (lo + hi)


def signed_partition(payoff: Callable[[np.ndarray], np.ndarray], break_evens: Sequence[float],
                     strikes: Sequence[float], spot: float) -> List[Tuple[float, float, int]]:
    """
    Split [0, inf) at the break-evens into (lo, hi, sign) pieces.

    Each partition is validated for sign constancy; an unexpected root (the
    break-evens came from a coarse grid, or were not supplied) splits it.
    """
    edges = sorted({float(b) for b in break_evens if b is not None and 0 < b < math.inf})
    bounds = [0.0] + edges + [math.inf]
    pieces: List[Tuple[float, float, int]] = []

    def scalar(x):
        return float(payoff(np.array([x]))[0])

    for lo, hi in _pairs(bounds):
        if not hi > lo:
            continue
        probes = _probe_points(lo, hi, strikes, spot)
        values = payoff(np.asarray(probes, dtype=float))
        cuts = []
        last = None  # last probe with a non-zero value
        zeros = []  # zero-valued probes since then
        for x, y in zip(probes, values):
            if y == 0:
                zeros.append(x)
                continue
            if last is not None and (last[1] > 0) != (y > 0):
                if zeros:
                    cuts.append(zeros[0])
                else:
                    cuts.append(brentq(scalar, last[0], x, xtol=1e-12 * max(1.0, x)))
            last = (x, y)
            zeros = []
        if cuts:
            logger.debug(f"Partition [{lo:.4f}, {hi:.4f}] not sign-constant; split at {cuts}")
        points = [lo] + cuts + [hi]
        for a, b in _pairs(points):
            mid = _piece_midpoint(a, b, spot)
            value = scalar(mid)
            pieces.append((a, b, 1 if value > 0 else (-1 if value < 0 else 0)))
    return pieces


def _integrate_piece(payoff, lo: float, hi: float, strikes: Sequence[float],
                     m: float, s: float) -> float:
    """E[payoff(S_T) * 1{lo < S_T < hi}] integrated in standard-normal space."""

    def z_of(x):
        if x <= 0:
            return -math.inf
        if math.isinf(x):
            return math.inf
        return (math.log(x) - m) / s

    def integrand(z):
        if abs(z) > _Z_CUTOFF:
            return 0.0
        S = math.exp(m + s * z)
        return float(payoff(np.array([S]))[0]) * norm_pdf(z)

    # Kinks at strikes: integrate smooth segments separately
    knots = [lo] + [k for k in strikes if lo < k < hi] + [hi]
    total = 0.0
    for a, b in _pairs(knots):
        za = max(z_of(a), -_Z_CUTOFF)
        zb = min(z_of(b), _Z_CUTOFF)
        if zb <= za:
            continue
        value, _err = quad(integrand, za, zb, limit=200, epsabs=1e-8, epsrel=1e-8)
        total += value
    return total


# ----------------------------- Engine -----------------------------

def evaluate(bundle: StrategyBundle, break_evens: Sequence[float], market: MarketParams,
             force_numeric: bool = False) -> ProbabilityResult:
    """
    Probability of profit and one-sided expectations of the expiration P&L.

    Args:
        bundle: Strategy legs
        break_evens: Break-even prices from the solver (partition edges)
        market: Market inputs; horizon is market.time_horizon_years
        force_numeric: Skip the single-leg closed form

    Returns:
        ProbabilityResult (amounts scaled by quantity and contract multiplier)
    """
    bases = entry_prices(bundle, market)
    mu = market.drift
    sigma = max(market.volatility, 0.0)
    T = max(market.time_horizon_years, 0.0)
    S0 = market.spot

    def payoff(S):
        return payoff_at_expiry(bundle, S, bases)

    if not bundle.legs:
        return ProbabilityResult(0.0, 0.0, 0.0, 0.0, method="degenerate")

    if sigma <= 0 or T <= 0:
        ST = gbm_mean(S0, mu, T)
        value = float(payoff(np.array([ST]))[0])
        ep, el = max(value, 0.0), max(-value, 0.0)
        return ProbabilityResult(
            probability_of_profit=1.0 if value > 0 else 0.0,
            expected_profit=ep,
            expected_loss=el,
            expected_net=ep - el,
            method="degenerate",
            details={"terminal_price": ST},
        )

    legs = bundle.legs
    if not force_numeric and len(legs) == 1 and legs[0].is_option:
        leg = legs[0]
        metrics = single_leg_metrics(leg.kind, leg.side, S0, leg.strike, bases[0], sigma, T, mu)
        scale = leg.quantity * bundle.contract_multiplier
        ep = metrics.expected_profit * scale
        el = metrics.expected_loss * scale
        return ProbabilityResult(
            probability_of_profit=metrics.probability_of_profit,
            expected_profit=ep,
            expected_loss=el,
            expected_net=ep - el,
            method="closed_form",
            details={"leg_metrics": metrics},
        )

    strikes = bundle.strikes
    m, s = lognormal_params(S0, mu, sigma, T)
    pieces = signed_partition(payoff, break_evens, strikes, S0)

    pop = 0.0
    ep = 0.0
    el = 0.0
    for lo, hi, sign in pieces:
        if sign == 0:
            continue
        integral = _integrate_piece(payoff, lo, hi, strikes, m, s)
        if sign > 0:
            pop += lognormal_cdf(hi, S0, mu, sigma, T) - lognormal_cdf(lo, S0, mu, sigma, T)
            ep += max(integral, 0.0)
        else:
            el += max(-integral, 0.0)
    pop = min(max(pop, 0.0), 1.0)
    net = ep - el

    reference = closed_form_net(bundle, market, bases)
    gap = abs(net - reference)
    allowed = max(config.CONSISTENCY_TOLERANCE * gross_premium(bundle, market),
                  1e-4 * max(1.0, abs(reference)))
    if gap > allowed:
        logger.warning(
            f"Expectation decomposition inconsistent: E+ - E- = {net:.4f}, "
            f"closed-form E[P&L] = {reference:.4f} (gap {gap:.4f} > {allowed:.4f})"
        )

    return ProbabilityResult(
        probability_of_profit=pop,
        expected_profit=ep,
        expected_loss=el,
        expected_net=net,
        method="numerical",
        details={
            "closed_form_net": reference,
            "consistency_gap": gap,
            "pieces": pieces,
        },
    )
