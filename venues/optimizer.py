"""
Input-size search.

Net profit as a function of trade size is concave for every impact model we
use (fees are linear, impact grows faster than linearly), so a fixed number
of ternary-search iterations brackets the optimum without any I/O.
"""

import time
from decimal import Decimal
from typing import Callable

from .types import SearchResult

DEFAULT_ITERATIONS = 5
MIN_ITERATIONS = 1
MAX_ITERATIONS = 64


def ternary_search(
    f: Callable[[Decimal], Decimal],
    lo: Decimal,
    hi: Decimal,
    iterations: int = DEFAULT_ITERATIONS,
) -> SearchResult:
    """
    Maximize f on [lo, hi] with a fixed iteration budget.

    Each iteration discards the outer third on the worse side. The final
    candidate is the best of the bracket midpoint and both original endpoints,
    so a monotone f still returns its boundary optimum.

    Args:
        f: Objective, evaluated on Decimal sizes
        lo: Lower bound (inclusive)
        hi: Upper bound (inclusive); hi < lo is treated as [hi, hi]
        iterations: Iteration budget, clamped to [1, 64]

    Returns:
        SearchResult. converged is True when the best point is interior to
        the original interval (or the interval is a single point);
        fallback_reason is "no_profitable_size" when the best value is <= 0.
    """
    started = time.perf_counter()
    iterations = max(MIN_ITERATIONS, min(MAX_ITERATIONS, int(iterations)))

    lo = Decimal(lo)
    hi = Decimal(hi)
    if hi < lo:
        lo = hi

    if lo == hi:
        value = f(lo)
        return SearchResult(
            amount=lo,
            value=value,
            iterations=0,
            converged=True,
            fallback_reason=None if value > 0 else "no_profitable_size",
            duration_ms=(time.perf_counter() - started) * 1000,
        )

    a, b = lo, hi
    for _ in range(iterations):
        third = (b - a) / 3
        m1 = a + third
        m2 = b - third
        if f(m1) < f(m2):
            a = m1
        else:
            b = m2

    mid = (a + b) / 2
    candidates = [(f(mid), mid, True), (f(lo), lo, False), (f(hi), hi, False)]
    # max() keeps the first of equal values, so the interior point wins ties
    value, amount, interior = max(candidates, key=lambda c: c[0])

    return SearchResult(
        amount=amount,
        value=value,
        iterations=iterations,
        converged=interior,
        fallback_reason=None if value > 0 else "no_profitable_size",
        duration_ms=(time.perf_counter() - started) * 1000,
    )
