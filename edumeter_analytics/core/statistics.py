"""
Descriptive statistics shared by the estimators.

Every helper defines its degenerate case explicitly (empty input, single
value, zero denominator) instead of raising, because insufficient data is
never an error for a batch run.
"""
import statistics
from typing import Iterable, List, Optional, Sequence


def mean(values: Sequence[float]) -> float:
    """Arithmetic mean; 0.0 for an empty sequence."""
    if not values:
        return 0.0
    return float(statistics.fmean(values))


def sample_stdev(values: Sequence[float]) -> float:
    """Bessel-corrected (n - 1) standard deviation; 0.0 for fewer than two values."""
    if len(values) <= 1:
        return 0.0
    return float(statistics.stdev(values))


def proportion(numerator: int, denominator: int) -> float:
    """numerator / denominator, or 0.0 when the denominator is zero."""
    if denominator == 0:
        return 0.0
    return numerator / denominator


def positive_times(values: Iterable[Optional[int]]) -> List[int]:
    """Keep strictly positive response times; null and zero mean "not recorded"."""
    return [v for v in values if v is not None and v > 0]
