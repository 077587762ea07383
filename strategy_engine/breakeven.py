"""Break-Even Solver - zero crossings of a sampled expiration P&L curve.

Walks adjacent samples:
- strict sign change  -> linear interpolation of the root
- single zero sample  -> that sample (a tangent point yields one break-even)
- run of zero samples -> both plateau edges

Results are sorted and de-duplicated with a tolerance proportional to the
span of the price grid, since spacing scales with the underlying's price.
"""

from __future__ import annotations

from typing import List, Optional

import numpy as np

from .models import InvalidInput

DEFAULT_ZERO_EPS = 1e-9
DEDUPE_REL = 1e-6


def _dedupe_sorted(values: List[float], eps: float) -> List[float]:
    out: List[float] = []
    for v in values:
        if not out or abs(v - out[-1]) > eps:
            out.append(v)
    return out


def find_break_evens(prices, expiration_pnl, zero_eps: float = DEFAULT_ZERO_EPS) -> List[float]:
    """
    Break-even prices of a sampled expiration curve.

    Args:
        prices: Ascending underlying prices
        expiration_pnl: P&L samples aligned with `prices` (finite; see sanitize_series)
        zero_eps: Absolute tolerance for a sample to count as zero. Scaled up
            for curves with large magnitudes.

    Returns:
        Sorted, de-duplicated break-even prices (possibly empty)
    """
    xs = np.asarray(prices, dtype=float)
    ys = np.asarray(expiration_pnl, dtype=float)
    if xs.shape != ys.shape or xs.ndim != 1:
        raise InvalidInput("prices and expiration_pnl must be equally long 1-D sequences")
    n = xs.size
    if n == 0:
        return []

    finite = ys[np.isfinite(ys)]
    scale = float(np.max(np.abs(finite))) if finite.size else 0.0
    eps = max(float(zero_eps), 1e-12 * scale)
    is_zero = np.abs(ys) <= eps

    if n == 1:
        return [float(xs[0])] if is_zero[0] else []

    crosses: List[float] = []
    plateau_start: Optional[int] = None

    for i in range(1, n):
        xa, xb = float(xs[i - 1]), float(xs[i])
        ya, yb = float(ys[i - 1]), float(ys[i])
        if not (np.isfinite(ya) and np.isfinite(yb)):
            continue
        a_zero, b_zero = bool(is_zero[i - 1]), bool(is_zero[i])

        if a_zero and b_zero:
            if plateau_start is None:
                plateau_start = i - 1
            continue
        if plateau_start is not None:
            # plateau ended at i-1
            crosses.extend((float(xs[plateau_start]), xa))
            plateau_start = None
            continue

        if a_zero:
            crosses.append(xa)
        elif b_zero:
            crosses.append(xb)
        elif (ya > 0) != (yb > 0):
            t = ya / (ya - yb)
            crosses.append(xa + t * (xb - xa))

    if plateau_start is not None:
        crosses.extend((float(xs[plateau_start]), float(xs[n - 1])))

    if not crosses:
        return []
    crosses.sort()
    span = float(np.max(xs) - np.min(xs))
    return _dedupe_sorted(crosses, max(eps, span * DEDUPE_REL))


def profit_region(prices, expiration_pnl, break_evens) -> str:
    """
    Orientation of the profitable region around the break-evens.

    Returns:
        'above' or 'below' for a single break-even, 'inside' or 'outside' for
        two or more (judged at the midpoint of the outer pair), 'always',
        'never' without break-evens.
    """
    xs = np.asarray(prices, dtype=float)
    ys = np.asarray(expiration_pnl, dtype=float)
    if not len(break_evens):
        return "always" if ys.size and np.all(ys > 0) else "never"
    if len(break_evens) == 1:
        return "above" if ys[-1] > ys[0] else "below"
    mid = 0.5 * (break_evens[0] + break_evens[-1])
    inside = float(np.interp(mid, xs, ys))
    return "inside" if inside > 0 else "outside"
