"""
Closed-Form Pricer - Black-Scholes-Merton price and Greeks

European calls and puts under a continuous dividend yield q.

Conventions (consumed by the display layer, keep them stable):
- vega is per 1 percentage point of volatility (raw vega / 100)
- theta is per calendar day (raw annual theta / 365)
- rho is annualized (per 1.00 change in rate)

Degenerate inputs (sigma <= 0 or T <= 0) collapse to intrinsic value with a
step-function delta and zero for every other Greek. They never raise.
"""

import math

import numpy as np
from scipy.optimize import brentq

from .models import CALL, PUT, Greeks, InvalidInput

# Abramowitz & Stegun 7.1.26 (max abs error ~1.5e-7)
_A1 = 0.254829592
_A2 = -0.284496736
_A3 = 1.421413741
_A4 = -1.453152027
_A5 = 1.061405429
_P = 0.3275911

_INV_SQRT_2PI = 1.0 / math.sqrt(2.0 * math.pi)


# ----------------------------- Helper Functions -----------------------------

def _erf(x):
    """Error function approximation. Accepts scalars or numpy arrays."""
    x = np.asarray(x, dtype=float)
    sign = np.sign(x)
    ax = np.abs(x)
    t = 1.0 / (1.0 + _P * ax)
    poly = ((((_A5 * t + _A4) * t + _A3) * t + _A2) * t + _A1) * t
    return sign * (1.0 - poly * np.exp(-ax * ax))


def norm_cdf(x):
    """Standard normal cumulative distribution function."""
    out = 0.5 * (1.0 + _erf(np.asarray(x, dtype=float) / math.sqrt(2.0)))
    return float(out) if out.shape == () else out


def norm_pdf(x):
    """Standard normal density."""
    x = np.asarray(x, dtype=float)
    out = _INV_SQRT_2PI * np.exp(-0.5 * x * x)
    return float(out) if out.shape == () else out


def _check_kind(kind):
    k = str(kind).strip().lower()
    if k not in (CALL, PUT):
        raise InvalidInput(f"Closed-form pricing supports calls and puts, got {kind!r}")
    return k


def _bs_d1_d2(S, K, r, q, sigma, T):
    """d1 and d2 (Merton form with dividend yield q)."""
    vol_sqrt_t = sigma * math.sqrt(T)
    with np.errstate(divide="ignore"):
        d1 = (np.log(np.asarray(S, dtype=float) / K) + (r - q + 0.5 * sigma * sigma) * T) / vol_sqrt_t
    return d1, d1 - vol_sqrt_t


def _intrinsic(kind, S, K):
    if kind == CALL:
        return np.maximum(S - K, 0.0)
    return np.maximum(K - S, 0.0)


# ----------------------------- Black-Scholes -----------------------------

def price_curve(kind, S, K, r, q, sigma, T):
    """Vectorized option value over an array of underlying prices S >= 0."""
    kind = _check_kind(kind)
    S = np.asarray(S, dtype=float)
    if np.any(S < 0):
        raise InvalidInput("Underlying prices must be non-negative")
    if not (K > 0):
        raise InvalidInput(f"Strike must be positive, got {K!r}")
    if sigma <= 0 or T <= 0:
        return _intrinsic(kind, S, K)

    d1, d2 = _bs_d1_d2(S, K, r, q, sigma, T)
    disc_q = math.exp(-q * T)
    disc_r = math.exp(-r * T)
    if kind == CALL:
        return S * disc_q * norm_cdf(d1) - K * disc_r * norm_cdf(d2)
    return K * disc_r * norm_cdf(-d2) - S * disc_q * norm_cdf(-d1)


def price(kind, S, K, r, q, sigma, T):
    """
    Black-Scholes price of a European call or put.

    Args:
        kind: 'call' or 'put'
        S: Underlying price (> 0)
        K: Strike price (> 0)
        r: Risk-free rate (annualized, decimal)
        q: Dividend yield (annualized, decimal)
        sigma: Volatility (annualized, decimal)
        T: Time to expiration (years)

    Returns:
        Option price per share
    """
    if not (S > 0):
        raise InvalidInput(f"Spot must be positive, got {S!r}")
    return float(price_curve(kind, S, K, r, q, sigma, T))


def bs_call_price(S, K, r, q, sigma, T):
    return price(CALL, S, K, r, q, sigma, T)


def bs_put_price(S, K, r, q, sigma, T):
    return price(PUT, S, K, r, q, sigma, T)


# ----------------------------- Greeks -----------------------------

def greeks(kind, S, K, r, q, sigma, T) -> Greeks:
    """Delta, gamma, vega (per vol point), theta (per day) and rho for one option."""
    kind = _check_kind(kind)
    if not (S > 0):
        raise InvalidInput(f"Spot must be positive, got {S!r}")
    if not (K > 0):
        raise InvalidInput(f"Strike must be positive, got {K!r}")

    if sigma <= 0 or T <= 0:
        if kind == CALL:
            return Greeks(delta=1.0 if S > K else 0.0)
        return Greeks(delta=-1.0 if S < K else 0.0)

    d1, d2 = _bs_d1_d2(S, K, r, q, sigma, T)
    d1, d2 = float(d1), float(d2)
    sqrt_t = math.sqrt(T)
    disc_q = math.exp(-q * T)
    disc_r = math.exp(-r * T)
    phi_d1 = norm_pdf(d1)

    gamma = (disc_q * phi_d1) / (S * sigma * sqrt_t)
    # Vega = S * phi(d1) * sqrt(T) * e^(-q*T), quoted per 1% change in IV
    vega = (S * disc_q * phi_d1 * sqrt_t) / 100.0
    decay = -(S * disc_q * phi_d1 * sigma) / (2.0 * sqrt_t)

    if kind == CALL:
        delta = disc_q * norm_cdf(d1)
        theta_annual = decay - r * K * disc_r * norm_cdf(d2) + q * S * disc_q * norm_cdf(d1)
        rho = K * T * disc_r * norm_cdf(d2)
    else:
        delta = disc_q * (norm_cdf(d1) - 1.0)
        theta_annual = decay + r * K * disc_r * norm_cdf(-d2) - q * S * disc_q * norm_cdf(-d1)
        rho = -K * T * disc_r * norm_cdf(-d2)

    return Greeks(delta=delta, gamma=gamma, vega=vega, theta=theta_annual / 365.0, rho=rho)


# ----------------------------- Implied Volatility -----------------------------

def implied_volatility(kind, option_price, S, K, r, q, T, low=1e-6, high=5.0):
    """
    Volatility that reproduces `option_price` under Black-Scholes.

    Returns:
        sigma, or None when the price sits outside the no-arbitrage bounds
        or no root exists in [low, high]
    """
    kind = _check_kind(kind)
    if not (S > 0) or not (K > 0) or T <= 0 or not math.isfinite(option_price):
        return None
    disc_q = math.exp(-q * T)
    disc_r = math.exp(-r * T)
    if kind == CALL:
        lower, upper = max(S * disc_q - K * disc_r, 0.0), S * disc_q
    else:
        lower, upper = max(K * disc_r - S * disc_q, 0.0), K * disc_r
    if not (lower < option_price < upper):
        return None

    def objective(sigma):
        return price(kind, S, K, r, q, sigma, T) - option_price

    f_low, f_high = objective(low), objective(high)
    if f_low * f_high > 0:
        return None
    return float(brentq(objective, low, high, xtol=1e-10, maxiter=200))
