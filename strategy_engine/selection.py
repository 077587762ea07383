"""Order-statistic selection (quickselect) for percentile extraction.

Percentiles of large Monte Carlo samples are pulled with an in-place
Hoare-partition quickselect instead of a full sort: average O(n).
The buffer is reordered; callers hand over a single-use buffer.
"""

from __future__ import annotations

import math

from .models import InvalidInput


def _select(buf, k: int):
    left, right = 0, len(buf) - 1
    while left < right:
        pivot = buf[(left + right) // 2]
        i, j = left, right
        while i <= j:
            while buf[i] < pivot:
                i += 1
            while buf[j] > pivot:
                j -= 1
            if i <= j:
                buf[i], buf[j] = buf[j], buf[i]
                i += 1
                j -= 1
        # [left..j] <= pivot, [i..right] >= pivot, anything between equals pivot
        if k <= j:
            right = j
        elif k >= i:
            left = i
        else:
            return buf[k]
    return buf[k]


def rank_for(p: float, n: int) -> int:
    """Target rank floor(p * (n - 1)), clamped into [0, n - 1]."""
    return max(0, min(n - 1, int(math.floor(p * (n - 1)))))


def percentile(buffer, p: float) -> float:
    """Value at rank floor(p * (n - 1)) of `buffer` as if it were sorted.

    Args:
        buffer: Mutable sequence of floats (list, array.array or numpy array).
            Its order is modified.
        p: Percentile as a fraction in [0, 1]

    Returns:
        The selected order statistic
    """
    n = len(buffer)
    if n == 0:
        raise InvalidInput("percentile of an empty buffer")
    p = float(p)
    if not (0.0 <= p <= 1.0):
        raise InvalidInput(f"percentile fraction must be in [0, 1], got {p!r}")
    return float(_select(buffer, rank_for(p, n)))
