"""Statistical aggregation of iteration results.

Conventions (chosen once, used everywhere):
- Standard deviation is the POPULATION formula (divide by N): it describes
  the spread of this exact run, and N=1 gives 0.
- Percentiles use NEAREST RANK without interpolation:
      index = ceil(p / 100 * N) - 1, clamped to [0, N - 1]
  so every percentile is an observed value and N=1 returns that value.
- The median is percentile(50) under the same convention.
- Confidence intervals trim (1 - level) / 2 from each tail of the empirical
  distribution using the same percentile function, never a normal
  approximation.
- Sums use math.fsum, so means do not drift with N.

Inputs are never mutated; sorting always works on a copy.
"""

from __future__ import annotations

import math
from collections import Counter
from dataclasses import dataclass, field
from typing import Any, Iterable, Mapping, NamedTuple, Sequence

from simforge.defaults import DEFAULT_CONFIDENCE_LEVEL, HISTOGRAM_BINS

# Decimal places kept when converting p * N to a rank, so that
# (1 - 0.95) / 2 * 100 = 2.5000000000000022 ranks like 2.5.
RANK_PRECISION = 9


def is_numeric(value: Any) -> bool:
    """True for int/float values (bools count as categorical, not numeric)."""
    return isinstance(value, (int, float)) and not isinstance(value, bool)


def rank_index(count: int, p: float) -> int:
    """Nearest-rank index of percentile p in a sorted list of `count` values.

    Examples:
        >>> rank_index(100, 50)
        49
        >>> rank_index(1, 90)
        0
        >>> rank_index(1000, 2.5)
        24
    """
    if not 0 <= p <= 100:
        raise ValueError(f"Percentile must be between 0 and 100, got {p}")
    if count <= 0:
        raise ValueError("Cannot take a percentile of an empty list")
    rank = math.ceil(round(p * count / 100.0, RANK_PRECISION))
    return min(max(rank - 1, 0), count - 1)


def percentile(values: Sequence[float], p: float, presorted: bool = False) -> float:
    """Nearest-rank percentile of values.

    Args:
        values: Numeric values (not modified)
        p: Percentile in [0, 100]
        presorted: Skip sorting when values are already ascending

    Raises:
        ValueError: If values is empty or p is outside [0, 100]
    """
    ordered = values if presorted else sorted(values)
    return ordered[rank_index(len(ordered), p)]


class ConfidenceInterval(NamedTuple):
    """Empirical interval holding `level` of the simulated outcomes."""

    lower: float
    upper: float
    level: float


@dataclass(frozen=True)
class Statistics:
    """Summary statistics for one numeric output.

    Attributes:
        count: Number of values
        mean: Arithmetic mean
        median: percentile(50)
        standard_deviation: Population standard deviation
        min: Smallest value
        max: Largest value
        p10, p25, p75, p90: Precomputed percentiles
    """

    count: int
    mean: float
    median: float
    standard_deviation: float
    min: float
    max: float
    p10: float
    p25: float
    p75: float
    p90: float
    sorted_values: tuple[float, ...] = field(repr=False)

    def percentile(self, p: float) -> float:
        """Nearest-rank percentile p in [0, 100]."""
        return percentile(self.sorted_values, p, presorted=True)

    def confidence_interval(self, level: float = DEFAULT_CONFIDENCE_LEVEL) -> ConfidenceInterval:
        """Empirical interval trimming (1 - level) / 2 from each tail.

        Raises:
            ValueError: If level is not in (0, 1)
        """
        if not 0 < level < 1:
            raise ValueError(f"Confidence level must be in (0, 1), got {level}")
        tail = (1.0 - level) / 2.0 * 100.0
        return ConfidenceInterval(
            lower=self.percentile(tail),
            upper=self.percentile(100.0 - tail),
            level=level,
        )

    def to_dict(self) -> dict:
        """Convert to dictionary for JSON serialization."""
        interval = self.confidence_interval()
        return {
            "count": self.count,
            "mean": self.mean,
            "median": self.median,
            "standard_deviation": self.standard_deviation,
            "min": self.min,
            "max": self.max,
            "p10": self.p10,
            "p25": self.p25,
            "p75": self.p75,
            "p90": self.p90,
            "ci95_lower": interval.lower,
            "ci95_upper": interval.upper,
        }


@dataclass(frozen=True)
class CategoricalSummary:
    """Tally for a non-numeric output.

    Attributes:
        count: Number of values
        counts: {value: occurrences}, most common first
        mode: Most common value (first seen wins ties)
    """

    count: int
    counts: dict[str, int]
    mode: str

    def frequency(self, value: str) -> float:
        """Share of iterations that produced value."""
        return self.counts.get(value, 0) / self.count if self.count else 0.0

    def to_dict(self) -> dict:
        """Convert to dictionary for JSON serialization."""
        return {"count": self.count, "counts": dict(self.counts), "mode": self.mode}


def summarize_values(values: Iterable[float]) -> Statistics:
    """Compute Statistics over numeric values.

    Raises:
        ValueError: If there are no values
    """
    ordered = tuple(sorted(values))
    n = len(ordered)
    if n == 0:
        raise ValueError("Cannot calculate statistics for empty array")

    mean = math.fsum(ordered) / n
    variance = math.fsum((value - mean) ** 2 for value in ordered) / n

    return Statistics(
        count=n,
        mean=mean,
        median=percentile(ordered, 50, presorted=True),
        standard_deviation=math.sqrt(variance),
        min=ordered[0],
        max=ordered[-1],
        p10=percentile(ordered, 10, presorted=True),
        p25=percentile(ordered, 25, presorted=True),
        p75=percentile(ordered, 75, presorted=True),
        p90=percentile(ordered, 90, presorted=True),
        sorted_values=ordered,
    )


def _columns(results: Sequence[Mapping[str, Any]]) -> dict[str, list[Any]]:
    columns: dict[str, list[Any]] = {}
    for result in results:
        for key, value in result.items():
            columns.setdefault(key, []).append(value)
    return columns


def summarize_columns(columns: Mapping[str, Sequence[Any]]) -> dict[str, Statistics]:
    """Summarize every all-numeric column of {key: values}."""
    return {
        key: summarize_values(column)
        for key, column in columns.items()
        if column and all(is_numeric(value) for value in column)
    }


def tally_columns(columns: Mapping[str, Sequence[Any]]) -> dict[str, CategoricalSummary]:
    """Tally every column of {key: values} that holds a non-numeric value.

    Values are compared by their string form, so a key that mixes numbers
    and strings is tallied as text.
    """
    tallies: dict[str, CategoricalSummary] = {}
    for key, column in columns.items():
        if all(is_numeric(value) for value in column):
            continue
        counter = Counter(str(value) for value in column)
        counts = dict(counter.most_common())
        tallies[key] = CategoricalSummary(count=len(column), counts=counts, mode=next(iter(counts)))
    return tallies


def summarize(results: Sequence[Mapping[str, Any]]) -> dict[str, Statistics]:
    """Summarize every numeric output across iteration results.

    A key is numeric when every value it takes is an int or float. Keys
    with any string or bool value are excluded here and tallied by
    tally_categories(). A key missing from some results is summarized over
    the results that have it.

    The input list and its mappings are not modified.
    """
    return summarize_columns(_columns(results))


def tally_categories(results: Sequence[Mapping[str, Any]]) -> dict[str, CategoricalSummary]:
    """Tally every non-numeric output across iteration results."""
    return tally_columns(_columns(results))


def histogram(values: Sequence[float], bins: int = HISTOGRAM_BINS) -> list[dict[str, float]]:
    """Equal-width histogram; the last bin includes the maximum.

    Returns:
        [{bin_start, bin_end, count, percentage}], empty for no values
    """
    if bins <= 0:
        raise ValueError(f"bins must be positive, got {bins}")
    if not values:
        return []
    low, high = min(values), max(values)
    width = (high - low) / bins
    counts = [0] * bins
    for value in values:
        if width == 0:
            index = 0
        else:
            index = min(int((value - low) / width), bins - 1)
        counts[index] += 1
    n = len(values)
    return [
        {
            "bin_start": low + i * width,
            "bin_end": low + (i + 1) * width,
            "count": counts[i],
            "percentage": counts[i] / n * 100.0,
        }
        for i in range(bins)
    ]


def risk_metrics(values: Sequence[float], threshold: float = 0.0) -> dict[str, float]:
    """Downside risk metrics over simulated outcomes.

    Value at risk is the nearest-rank 5th / 1st percentile; expected
    shortfall is the mean of values at or below it.

    Returns:
        {probability_of_loss (percent below threshold), value_at_risk_95,
         value_at_risk_99, expected_shortfall_95, expected_shortfall_99}
    """
    if not values:
        raise ValueError("Cannot calculate risk metrics for empty array")
    ordered = sorted(values)
    n = len(ordered)

    def shortfall(p: float) -> tuple[float, float]:
        index = rank_index(n, p)
        tail = ordered[: index + 1]
        return ordered[index], math.fsum(tail) / len(tail)

    var95, es95 = shortfall(5)
    var99, es99 = shortfall(1)
    losses = sum(1 for value in ordered if value < threshold)
    return {
        "probability_of_loss": losses / n * 100.0,
        "value_at_risk_95": var95,
        "value_at_risk_99": var99,
        "expected_shortfall_95": es95,
        "expected_shortfall_99": es99,
    }
