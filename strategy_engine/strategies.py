"""Strategy Recognition - named strategies and their closed-form break-evens.

classify() recognises the common shapes (single legs, stock combos,
verticals, ratio spreads and backspreads, straddles, strangles, straps and
strips, butterflies, iron condors and flies, boxes, calendars). Legs with the
same kind, side, strike and expiry are merged first, and quantities are
compared as ratios so that 3 lots of a vertical are still a vertical.

strategy_break_evens() evaluates the textbook break-even formula of the
recognised strategy and cross-checks it against the numeric solver on the
sampled expiration curve. A disagreement is logged and the numeric answer
wins. Calendar formulas are rough by nature and are reported as approximate.

Author: Options Strategy Lab
Created: 2025-11-15
"""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass, field
from typing import Callable, Dict, List, Optional, Sequence, Tuple

import numpy as np

from .breakeven import find_break_evens
from .models import CALL, LONG, PUT, SHORT, STOCK, InvalidInput, MarketParams, StrategyBundle
from .payoff import build_series, default_price_grid, entry_prices

logger = logging.getLogger(__name__)

UNKNOWN = "unknown"

# Formula and numeric break-evens agree within this fraction of the grid width
CROSS_CHECK_REL = 1e-6

CLOSED_FORM = "closed_form"
APPROXIMATE = "approximate"
NUMERIC = "numeric"


@dataclass(frozen=True)
class Classification:
    strategy: str
    confidence: float  # 0 for unknown, up to 0.95 for unambiguous shapes

    @property
    def known(self) -> bool:
        return self.strategy != UNKNOWN


@dataclass(frozen=True)
class BreakEvenEstimate:
    """Break-evens of a strategy and where they came from."""

    strategy: str
    confidence: float
    break_evens: List[float]
    method: str  # 'closed_form', 'approximate' or 'numeric'
    numeric: List[float]  # numeric solver result on the grid
    details: dict = field(default_factory=dict, compare=False)


# ----------------------------- Leg grouping -----------------------------

@dataclass(frozen=True)
class _Position:
    kind: str
    side: str
    strike: Optional[float]
    days: Optional[float]
    quantity: float
    basis: float  # quantity-weighted entry price per unit

    @property
    def sign(self) -> float:
        return 1.0 if self.side == LONG else -1.0


def _same(a: float, b: float) -> bool:
    return math.isclose(a, b, rel_tol=1e-9, abs_tol=1e-12)


class _Shape:
    """Merged positions of a bundle, indexed by (kind, side)."""

    def __init__(self, bundle: StrategyBundle, bases: Optional[Sequence[float]] = None):
        if bases is None:
            bases = [0.0] * len(bundle.legs)
        merged: Dict[tuple, List[float]] = {}
        for leg, basis in zip(bundle.legs, bases):
            days = leg.days_to_expiry if leg.days_to_expiry is not None else bundle.default_days
            key = (leg.kind, leg.side, leg.strike, days)
            qty_cost = merged.setdefault(key, [0.0, 0.0])
            qty_cost[0] += leg.quantity
            qty_cost[1] += leg.quantity * float(basis)

        self.positions: List[_Position] = [
            _Position(kind, side, strike, days, qty, cost / qty)
            for (kind, side, strike, days), (qty, cost) in merged.items()
        ]
        self.positions.sort(key=lambda p: (p.kind, p.side, p.strike or 0.0, p.days or 0.0))
        self.lot = min((p.quantity for p in self.positions), default=1.0)

    def of(self, kind: str, side: str) -> List[_Position]:
        return sorted(
            (p for p in self.positions if p.kind == kind and p.side == side),
            key=lambda p: p.strike or 0.0,
        )

    @property
    def options(self) -> List[_Position]:
        return [p for p in self.positions if p.kind != STOCK]

    @property
    def stocks(self) -> List[_Position]:
        return [p for p in self.positions if p.kind == STOCK]

    def units(self, p: _Position) -> float:
        return p.quantity / self.lot

    def equal_units(self, *ps: _Position) -> bool:
        return all(_same(p.quantity, ps[0].quantity) for p in ps)

    def ratio(self, p: _Position, q: _Position) -> float:
        return p.quantity / q.quantity

    @property
    def debit(self) -> float:
        """Net option premium per share per lot (positive = debit)."""
        return sum(p.sign * self.units(p) * p.basis for p in self.options)


# ----------------------------- Classification -----------------------------

_UNKNOWN = (UNKNOWN, 0.0)


def _classify_stock_combo(shape: _Shape) -> Tuple[str, float]:
    stock = shape.stocks[0]
    options = shape.options
    if not shape.equal_units(stock, *options):
        return _UNKNOWN
    long_stock = stock.side == LONG
    if len(options) == 1:
        opt = options[0]
        if long_stock and opt.kind == PUT and opt.side == LONG:
            return "protective_put", 0.9
        if long_stock and opt.kind == CALL and opt.side == SHORT:
            return "covered_call", 0.9
        if not long_stock and opt.kind == PUT and opt.side == SHORT:
            return "covered_put", 0.8
        return _UNKNOWN
    lp, sc = shape.of(PUT, LONG), shape.of(CALL, SHORT)
    if long_stock and len(options) == 2 and len(lp) == 1 and len(sc) == 1:
        if lp[0].strike < sc[0].strike:
            return "collar", 0.85
    return _UNKNOWN


def _classify_same_kind_pair(shape: _Shape, kind: str) -> Tuple[str, float]:
    longs, shorts = shape.of(kind, LONG), shape.of(kind, SHORT)
    if len(longs) != 1 or len(shorts) != 1:
        return _UNKNOWN
    lo, sh = longs[0], shorts[0]
    if shape.equal_units(lo, sh):
        if _same(lo.strike, sh.strike):
            if lo.days is not None and sh.days is not None and not _same(lo.days, sh.days):
                return f"{kind}_calendar_spread", 0.7
            return _UNKNOWN
        if kind == CALL:
            return ("bull_call_spread" if lo.strike < sh.strike else "bear_call_spread"), 0.85
        # long the higher strike => bear put (debit); long the lower => bull put (credit)
        return ("bear_put_spread" if lo.strike > sh.strike else "bull_put_spread"), 0.85

    short_heavy = _same(shape.ratio(sh, lo), 2.0)
    long_heavy = _same(shape.ratio(lo, sh), 2.0)
    if kind == CALL:
        if short_heavy and lo.strike < sh.strike:
            return "call_ratio_spread", 0.7
        if long_heavy and sh.strike < lo.strike:
            return "call_backspread", 0.7
    else:
        if short_heavy and lo.strike > sh.strike:
            return "put_ratio_spread", 0.7
        if long_heavy and sh.strike > lo.strike:
            return "put_backspread", 0.7
    return _UNKNOWN


def _classify_call_put(shape: _Shape) -> Tuple[str, float]:
    call = next(p for p in shape.options if p.kind == CALL)
    put = next(p for p in shape.options if p.kind == PUT)
    if call.side != put.side:
        return _UNKNOWN
    prefix = "long" if call.side == LONG else "short"
    if _same(call.strike, put.strike):
        if shape.equal_units(call, put):
            return f"{prefix}_straddle", 0.9
        if call.side == LONG and _same(shape.ratio(call, put), 2.0):
            return "strap", 0.6
        if call.side == LONG and _same(shape.ratio(put, call), 2.0):
            return "strip", 0.6
        return _UNKNOWN
    if put.strike < call.strike and shape.equal_units(call, put):
        return f"{prefix}_strangle", 0.8
    return _UNKNOWN


def _classify_three(shape: _Shape) -> Tuple[str, float]:
    kinds = {p.kind for p in shape.options}
    if len(kinds) != 1:
        return _UNKNOWN
    kind = kinds.pop()
    wing_lo, body, wing_hi = sorted(shape.options, key=lambda p: p.strike)
    if wing_lo.side != wing_hi.side or body.side == wing_lo.side:
        return _UNKNOWN
    if not shape.equal_units(wing_lo, wing_hi) or not _same(shape.ratio(body, wing_lo), 2.0):
        return _UNKNOWN
    if not _same(body.strike - wing_lo.strike, wing_hi.strike - body.strike):
        return _UNKNOWN
    if wing_lo.side == LONG:
        return f"{kind}_butterfly", 0.8
    return "reverse_butterfly", 0.7


def _classify_four(shape: _Shape) -> Tuple[str, float]:
    groups = [shape.of(CALL, LONG), shape.of(CALL, SHORT), shape.of(PUT, LONG), shape.of(PUT, SHORT)]
    if any(len(g) != 1 for g in groups):
        return _UNKNOWN
    lc, sc, lp, sp = (g[0] for g in groups)
    if not shape.equal_units(lc, sc, lp, sp):
        return _UNKNOWN
    if _same(lc.strike, sp.strike) and _same(sc.strike, lp.strike) and not _same(lc.strike, sc.strike):
        return ("long_box" if lc.strike < sc.strike else "short_box"), 0.8
    if lp.strike < sp.strike <= sc.strike < lc.strike:
        return ("iron_butterfly" if _same(sp.strike, sc.strike) else "iron_condor"), 0.75
    if sp.strike < lp.strike <= lc.strike < sc.strike:
        return "reverse_iron_condor", 0.7
    return _UNKNOWN


def _classify_shape(shape: _Shape) -> Tuple[str, float]:
    options, stocks = shape.options, shape.stocks
    if not shape.positions:
        return _UNKNOWN
    if not options:
        if len(stocks) == 1:
            return ("long_stock" if stocks[0].side == LONG else "short_stock"), 0.95
        return _UNKNOWN
    if stocks:
        return _classify_stock_combo(shape) if len(stocks) == 1 else _UNKNOWN
    if len(options) == 1:
        opt = options[0]
        return f"{opt.side}_{opt.kind}", 0.9
    if len(options) == 2:
        kinds = {p.kind for p in options}
        if len(kinds) == 2:
            return _classify_call_put(shape)
        return _classify_same_kind_pair(shape, kinds.pop())
    if len(options) == 3:
        return _classify_three(shape)
    if len(options) == 4:
        return _classify_four(shape)
    return _UNKNOWN


def classify(bundle: StrategyBundle) -> Classification:
    """Name the strategy formed by `bundle`, with a confidence in [0, 1]."""
    name, confidence = _classify_shape(_Shape(bundle))
    return Classification(strategy=name, confidence=confidence)


# ----------------------------- Formulas -----------------------------
# Prices are per share per lot; D is the net debit, C = -D the net credit.

def _one(shape: _Shape, kind: str, side: str) -> _Position:
    return shape.of(kind, side)[0]


def _single(shape: _Shape) -> List[float]:
    opt = shape.options[0]
    # long call / short call break above K, puts below
    return [opt.strike + opt.basis] if opt.kind == CALL else [opt.strike - opt.basis]


def _stock_only(shape: _Shape) -> List[float]:
    return [shape.stocks[0].basis]


def _protective_put(shape: _Shape) -> List[float]:
    return [shape.stocks[0].basis + _one(shape, PUT, LONG).basis]


def _covered_call(shape: _Shape) -> List[float]:
    return [shape.stocks[0].basis - _one(shape, CALL, SHORT).basis]


def _covered_put(shape: _Shape) -> List[float]:
    return [shape.stocks[0].basis + _one(shape, PUT, SHORT).basis]


def _collar(shape: _Shape) -> List[float]:
    return [shape.stocks[0].basis + shape.debit]


def _bull_call(shape: _Shape) -> List[float]:
    return [_one(shape, CALL, LONG).strike + shape.debit]


def _bear_call(shape: _Shape) -> List[float]:
    return [_one(shape, CALL, SHORT).strike - shape.debit]


def _bear_put(shape: _Shape) -> List[float]:
    return [_one(shape, PUT, LONG).strike - shape.debit]


def _bull_put(shape: _Shape) -> List[float]:
    return [_one(shape, PUT, SHORT).strike + shape.debit]


def _straddle(shape: _Shape) -> List[float]:
    K = shape.options[0].strike
    D = shape.debit
    return [K - abs(D), K + abs(D)]


def _strangle(shape: _Shape) -> List[float]:
    kp = next(p.strike for p in shape.options if p.kind == PUT)
    kc = next(p.strike for p in shape.options if p.kind == CALL)
    D = shape.debit
    return [kp - abs(D), kc + abs(D)]


def _strap(shape: _Shape) -> List[float]:
    K = shape.options[0].strike
    D = shape.debit
    return [K - D, K + D / 2.0]


def _strip(shape: _Shape) -> List[float]:
    K = shape.options[0].strike
    D = shape.debit
    return [K - D / 2.0, K + D]


def _butterfly(shape: _Shape) -> List[float]:
    strikes = [p.strike for p in shape.options]
    D = shape.debit
    return [min(strikes) + D, max(strikes) - D]


def _reverse_butterfly(shape: _Shape) -> List[float]:
    strikes = [p.strike for p in shape.options]
    C = -shape.debit
    return [min(strikes) + C, max(strikes) - C]


def _iron_condor(shape: _Shape) -> List[float]:
    C = -shape.debit
    return [_one(shape, PUT, SHORT).strike - C, _one(shape, CALL, SHORT).strike + C]


def _reverse_iron_condor(shape: _Shape) -> List[float]:
    D = shape.debit
    return [_one(shape, PUT, LONG).strike - D, _one(shape, CALL, LONG).strike + D]


def _box(shape: _Shape) -> List[float]:
    return []


def _call_ratio(shape: _Shape) -> List[float]:
    # long 1 x K1, short 2 x K2 (K1 < K2)
    k1, k2 = _one(shape, CALL, LONG).strike, _one(shape, CALL, SHORT).strike
    D = shape.debit
    if D <= 0:
        return [2.0 * k2 - k1 - D]
    if D >= k2 - k1:
        return []
    return [k1 + D, 2.0 * k2 - k1 - D]


def _call_backspread(shape: _Shape) -> List[float]:
    # short 1 x K1, long 2 x K2 (K1 < K2)
    k1, k2 = _one(shape, CALL, SHORT).strike, _one(shape, CALL, LONG).strike
    D = shape.debit
    if D > 0:
        return [2.0 * k2 - k1 + D]
    C = -D
    if C >= k2 - k1:
        return []
    return [k1 + C, 2.0 * k2 - k1 - C]


def _put_ratio(shape: _Shape) -> List[float]:
    # long 1 x K1, short 2 x K2 (K2 < K1)
    k1, k2 = _one(shape, PUT, LONG).strike, _one(shape, PUT, SHORT).strike
    D = shape.debit
    if D <= 0:
        return [2.0 * k2 - k1 + D]
    if D >= k1 - k2:
        return []
    return [2.0 * k2 - k1 + D, k1 - D]


def _put_backspread(shape: _Shape) -> List[float]:
    # short 1 x K1, long 2 x K2 (K2 < K1)
    k1, k2 = _one(shape, PUT, SHORT).strike, _one(shape, PUT, LONG).strike
    D = shape.debit
    if D > 0:
        return [2.0 * k2 - k1 - D]
    C = -D
    if C >= k1 - k2:
        return []
    return [2.0 * k2 - k1 + C, k1 - C]


def _call_calendar(shape: _Shape) -> List[float]:
    return [shape.options[0].strike + shape.debit]


def _put_calendar(shape: _Shape) -> List[float]:
    return [shape.options[0].strike - shape.debit]


_FORMULAS: Dict[str, Callable[[_Shape], List[float]]] = {
    "long_call": _single,
    "short_call": _single,
    "long_put": _single,
    "short_put": _single,
    "long_stock": _stock_only,
    "short_stock": _stock_only,
    "protective_put": _protective_put,
    "covered_call": _covered_call,
    "covered_put": _covered_put,
    "collar": _collar,
    "bull_call_spread": _bull_call,
    "bear_call_spread": _bear_call,
    "bear_put_spread": _bear_put,
    "bull_put_spread": _bull_put,
    "long_straddle": _straddle,
    "short_straddle": _straddle,
    "long_strangle": _strangle,
    "short_strangle": _strangle,
    "strap": _strap,
    "strip": _strip,
    "call_butterfly": _butterfly,
    "put_butterfly": _butterfly,
    "reverse_butterfly": _reverse_butterfly,
    "iron_condor": _iron_condor,
    "iron_butterfly": _iron_condor,
    "reverse_iron_condor": _reverse_iron_condor,
    "long_box": _box,
    "short_box": _box,
    "call_ratio_spread": _call_ratio,
    "call_backspread": _call_backspread,
    "put_ratio_spread": _put_ratio,
    "put_backspread": _put_backspread,
    "call_calendar_spread": _call_calendar,
    "put_calendar_spread": _put_calendar,
}

# Break-even depends on the far leg's time value at the near expiry
_APPROXIMATE = frozenset({"call_calendar_spread", "put_calendar_spread"})

STRATEGIES = tuple(_FORMULAS)


# ----------------------------- Names -----------------------------

_ALIASES: Dict[str, str] = {name.replace("_", ""): name for name in STRATEGIES}
_ALIASES.update({
    "leaps": "long_call",
    "buywrite": "covered_call",
    "marriedput": "protective_put",
    "callratio": "call_ratio_spread",
    "ratiocallspread": "call_ratio_spread",
    "putratio": "put_ratio_spread",
    "ratioputspread": "put_ratio_spread",
    "backspreadcall": "call_backspread",
    "backspreadput": "put_backspread",
    "callcalendar": "call_calendar_spread",
    "calendarcall": "call_calendar_spread",
    "putcalendar": "put_calendar_spread",
    "calendarput": "put_calendar_spread",
    "butterflycall": "call_butterfly",
    "butterflyput": "put_butterfly",
    "ironfly": "iron_butterfly",
    "longironcondor": "reverse_iron_condor",
    "reversecondor": "reverse_iron_condor",
    "box": "long_box",
})


def normalize_strategy_key(name) -> Optional[str]:
    """Canonical strategy name for a user-supplied label ('Iron Condor', 'bull-call-spread'...)."""
    if not name:
        return None
    compact = "".join(str(name).lower().split()).replace("-", "").replace("_", "")
    return _ALIASES.get(compact)


# ----------------------------- Break-evens -----------------------------

def _tolerance(grid: np.ndarray, strikes: Sequence[float]) -> float:
    span = float(grid[-1] - grid[0]) if grid.size > 1 else 0.0
    tol = max(CROSS_CHECK_REL * span, 1e-9)
    # the solver interpolates linearly, so a kink between samples can move the root
    if grid.size > 1 and any(np.min(np.abs(grid - k)) > tol for k in strikes):
        tol = max(tol, float(np.max(np.diff(grid))))
    return tol


def _agrees(formula: List[float], numeric: List[float], tol: float) -> bool:
    return len(formula) == len(numeric) and all(
        abs(a - b) <= tol for a, b in zip(formula, numeric)
    )


def strategy_break_evens(bundle: StrategyBundle, market: MarketParams, grid=None,
                         strategy: Optional[str] = None) -> BreakEvenEstimate:
    """
    Break-even prices via the strategy's closed form, verified numerically.

    Args:
        bundle: Strategy legs
        market: Market inputs (entry prices for legs without a premium)
        grid: Price grid for the numeric check; default_price_grid when omitted
        strategy: Optional strategy label; must name a known strategy and
            is only honoured when the legs actually form it

    Returns:
        BreakEvenEstimate. method is 'closed_form' when the formula matches
        the numeric roots inside the grid, 'approximate' for calendars and
        'numeric' otherwise.
    """
    bases = entry_prices(bundle, market)
    shape = _Shape(bundle, bases)
    name, confidence = _classify_shape(shape)

    if strategy is not None:
        key = normalize_strategy_key(strategy)
        if key is None:
            raise InvalidInput(f"Unknown strategy: {strategy!r}")
        if key != name:
            logger.warning(f"Legs do not form a {key} (recognised {name}); using numeric break-evens")
            name, confidence = key, 0.0

    prices = default_price_grid(bundle, market) if grid is None else grid
    series = build_series(bundle, prices, market)
    numeric = find_break_evens(series.prices, series.expiration_pnl)

    formula = _FORMULAS.get(name) if confidence > 0 else None
    if formula is None:
        return BreakEvenEstimate(name, confidence, numeric, NUMERIC, numeric)

    D = shape.debit
    values = sorted(v for v in formula(shape) if v > 0)
    details = {"debit": D, "formula": values}
    if name in _APPROXIMATE:
        return BreakEvenEstimate(name, confidence, values, APPROXIMATE, numeric, details)

    xs = series.prices
    tol = _tolerance(xs, bundle.strikes)
    inside = [v for v in values if xs[0] - tol <= v <= xs[-1] + tol]
    if _agrees(inside, numeric, tol):
        return BreakEvenEstimate(name, confidence, values, CLOSED_FORM, numeric, details)

    logger.warning(
        f"{name} formula break-evens {values} disagree with the payoff curve {numeric}; "
        f"using numeric values"
    )
    return BreakEvenEstimate(name, confidence, numeric, NUMERIC, numeric, details)
