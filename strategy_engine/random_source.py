"""Deterministic pseudo-random source for the Monte Carlo simulator.

xorshift32 core (Marsaglia 13/17/5) normalised to [0, 1), with standard
normals from the polar Box-Muller method. Each polar draw yields two
independent normals; the second is kept as a spare for the next call.

Author: Options Strategy Lab
Created: 2025-11-15
"""

from __future__ import annotations

from math import log, sqrt
from typing import Optional

from . import config

_MASK32 = 0xFFFFFFFF
_TWO_32 = 4294967296.0
_WARMUP_DRAWS = 8


class RandomSource:
    """xorshift32 generator with a cached Box-Muller spare."""

    __slots__ = ("_state", "_spare")

    def __init__(self, seed: Optional[int] = None):
        if seed is None:
            seed = config.DEFAULT_SEED
        state = int(seed) & _MASK32
        if state == 0:
            # xorshift has a fixed point at zero
            state = config.DEFAULT_SEED & _MASK32 or 1
        self._state = state
        self._spare = None
        for _ in range(_WARMUP_DRAWS):
            self.next_u32()

    def next_u32(self) -> int:
        x = self._state
        x ^= (x << 13) & _MASK32
        x ^= x >> 17
        x ^= (x << 5) & _MASK32
        self._state = x
        return x

    def next_uniform(self) -> float:
        """Uniform draw in [0, 1)."""
        return self.next_u32() / _TWO_32

    def next_gaussian(self) -> float:
        """Standard normal draw."""
        spare = self._spare
        if spare is not None:
            self._spare = None
            return spare
        while True:
            u = self.next_uniform() * 2.0 - 1.0
            v = self.next_uniform() * 2.0 - 1.0
            s = u * u + v * v
            if 0.0 < s < 1.0:
                break
        f = sqrt(-2.0 * log(s) / s)
        self._spare = v * f
        return u * f


def seed(value: Optional[int] = None) -> RandomSource:
    """Create a generator seeded with a 32-bit value (0 is coerced to the default)."""
    return RandomSource(value)
