"""Function library exposed inside the scenario sandbox.

Scenario calculations see only the names built here plus their own
parameters and local variables. The library has three parts:
- Math: the closed set of numeric helpers
- Randomness: uniform and derived distributions bound to the run's
  RandomSource
- Business: pure KPI helpers (ROI, NPV, CAGR, CAC, ...) and the
  stochastic market modifiers built on the random source

Business helpers replace subclassing a base simulation: a calculation calls
roi(investment, returns) instead of inheriting it.
"""

from __future__ import annotations

import math
from typing import Any, Callable, Iterable, Sequence

from simforge.defaults import (
    DEFAULT_CONFIDENCE_LEVEL,
    MAX_INT_BITS,
    MAX_RANGE_LENGTH,
    MAX_ROUND_DECIMALS,
    NEVER_PAYS_BACK,
)
from simforge.engine.random_source import RandomSource
from simforge.engine.statistics import percentile

COMPETITION_MULTIPLIERS = {
    "low": 1.2,
    "moderate": 1.0,
    "high": 0.8,
    "saturated": 0.6,
}

ECONOMIC_CYCLE_MULTIPLIERS = {
    "recession": 0.7,
    "recovery": 0.9,
    "expansion": 1.1,
    "peak": 1.0,
}


# =============================================================================
# Math
# =============================================================================


def round_half_up(value: float, decimals: int = 0) -> float:
    """Round half away from zero, the way spreadsheet users expect.

    Python's round() uses banker's rounding (round(2.5) == 2), which
    surprises scenario authors; this helper does not.

    Examples:
        >>> round_half_up(2.5)
        3
        >>> round_half_up(-2.5)
        -3
        >>> round_half_up(2.345, 1)
        2.3
    """
    if isinstance(decimals, bool) or not isinstance(decimals, int):
        raise TypeError(f"round() decimals must be an integer, got {type(decimals).__name__}")
    if abs(decimals) > MAX_ROUND_DECIMALS:
        raise ValueError(f"round() decimals must be within +/-{MAX_ROUND_DECIMALS}, got {decimals}")
    factor = 10 ** decimals
    scaled = abs(value) * factor
    rounded = math.floor(scaled + 0.5)
    result = math.copysign(rounded / factor, value)
    if decimals <= 0:
        return int(result)
    return result


def clamp(value: float, min_val: float, max_val: float) -> float:
    """Clamp a value to [min_val, max_val]."""
    return max(min_val, min(max_val, value))


def safe_pow(base: float, exponent: float) -> float:
    """Power with a guard against huge exact integer results.

    Integer powers whose result would exceed MAX_INT_BITS are evaluated in
    floating point, so pow(10, 10**9) overflows quickly instead of building
    a giant int.
    """
    if (
        isinstance(base, int)
        and isinstance(exponent, int)
        and exponent > 0
        and base.bit_length() * exponent > MAX_INT_BITS
    ):
        return math.pow(base, exponent)
    result = base ** exponent
    if isinstance(result, complex):
        raise ValueError(f"pow({base}, {exponent}) has no real result")
    return result


def bounded_range(*args: int) -> range:
    """range() limited to MAX_RANGE_LENGTH elements.

    A single host call such as sum(range(10**12)) cannot be interrupted by
    the step budget, so its size is capped up front.
    """
    values = range(*args)
    if len(values) > MAX_RANGE_LENGTH:
        raise ValueError(f"range of {len(values)} elements exceeds limit of {MAX_RANGE_LENGTH}")
    return values


def log(value: float, base: float | None = None) -> float:
    """Natural logarithm, or logarithm in the given base."""
    if base is None:
        return math.log(value)
    return math.log(value, base)


def numeric_sum(values: Iterable[float], start: float = 0) -> float:
    """sum() over numbers only.

    The builtin also concatenates lists (sum(rows, [])), quadratically and
    inside a single host call, so non-numeric items and starts are rejected.
    """
    items = list(values)
    for item in [start, *items]:
        if not isinstance(item, (int, float)):
            raise TypeError(f"sum() accepts numbers only, got {type(item).__name__}")
    return sum(items, start)


def scalar_str(value: Any = "") -> str:
    """str() of a number, string, bool or None.

    Containers are rejected; rendering a nested structure is unbounded work.
    """
    if not isinstance(value, (int, float, str, bool, type(None))):
        raise TypeError(f"str() accepts scalars only, got {type(value).__name__}")
    return str(value)


MATH_FUNCTIONS: dict[str, Callable[..., Any]] = {
    "round": round_half_up,
    "min": min,
    "max": max,
    "abs": abs,
    "sqrt": math.sqrt,
    "pow": safe_pow,
    "log": log,
    "exp": math.exp,
    "floor": math.floor,
    "ceil": math.ceil,
    "clamp": clamp,
    "sum": numeric_sum,
    "len": len,
    "range": bounded_range,
    "int": int,
    "float": float,
    "str": scalar_str,
    "bool": bool,
}

CONSTANTS: dict[str, float] = {
    "pi": math.pi,
    "e": math.e,
}


# =============================================================================
# Business helpers (pure)
# =============================================================================


def roi(investment: float, returns: float, timeframe: float = 1) -> float:
    """Return on investment in percent per period.

    Examples:
        >>> roi(1000, 1500)
        50.0
        >>> roi(0, 1500)
        0.0
    """
    if investment <= 0:
        return 0.0
    return ((returns - investment) / investment) * 100.0 / timeframe


def payback_period(investment: float, monthly_returns: float) -> float:
    """Months until an investment is recovered (999 if never)."""
    if monthly_returns <= 0:
        return NEVER_PAYS_BACK
    return investment / monthly_returns


def break_even(fixed_costs: float, unit_price: float, unit_cost: float, monthly_volume: float) -> float:
    """Months until fixed costs are covered by unit margin (999 if never)."""
    monthly_margin = (unit_price - unit_cost) * monthly_volume
    if monthly_margin <= 0:
        return NEVER_PAYS_BACK
    return fixed_costs / monthly_margin


def cac(marketing_spend: float, customers_acquired: float) -> float:
    """Customer acquisition cost (0 when no customers were acquired)."""
    if customers_acquired <= 0:
        return 0.0
    return marketing_spend / customers_acquired


def clv(
    avg_order_value: float,
    purchase_frequency: float,
    customer_lifespan: float,
    gross_margin: float = 0.3,
) -> float:
    """Customer lifetime value."""
    return float(avg_order_value) * purchase_frequency * customer_lifespan * gross_margin


def npv(cash_flows: Iterable[float], discount_rate: float) -> float:
    """Net present value; cash_flows[0] is undiscounted (year 0).

    Examples:
        >>> round(npv([-1000, 600, 600], 0.1), 2)
        41.32
    """
    return math.fsum(
        cash_flow / (1.0 + discount_rate) ** year for year, cash_flow in enumerate(cash_flows)
    )


def cagr(starting_value: float, ending_value: float, periods: float) -> float:
    """Compound annual growth rate in percent (0 for non-positive inputs)."""
    if starting_value <= 0 or ending_value <= 0 or periods <= 0:
        return 0.0
    return ((ending_value / starting_value) ** (1.0 / periods) - 1.0) * 100.0


def runway(current_cash: float, monthly_burn_rate: float) -> float:
    """Months of runway at the current burn (999 if not burning)."""
    if monthly_burn_rate <= 0:
        return NEVER_PAYS_BACK
    return current_cash / monthly_burn_rate


def economic_cycle_impact(base_value: float, economic_cycle: str) -> float:
    """Scale a value by the economic cycle multiplier.

    Raises:
        ValueError: If the cycle is not recession, recovery, expansion or peak
    """
    if economic_cycle not in ECONOMIC_CYCLE_MULTIPLIERS:
        raise ValueError(
            f"economic cycle must be one of {', '.join(ECONOMIC_CYCLE_MULTIPLIERS)}, got {economic_cycle!r}"
        )
    return base_value * ECONOMIC_CYCLE_MULTIPLIERS[economic_cycle]


def confidence_interval(values: Sequence[float], level: float = DEFAULT_CONFIDENCE_LEVEL) -> dict[str, float]:
    """Empirical confidence interval of a list of values.

    Uses the same nearest-rank convention as run summaries.

    Returns:
        {"lower": ..., "upper": ..., "mean": ...}
    """
    if not values:
        raise ValueError("confidence_interval() needs at least one value")
    if not 0 < level < 1:
        raise ValueError(f"confidence level must be in (0, 1), got {level}")
    ordered = sorted(values)
    tail = (1.0 - level) / 2.0 * 100.0
    return {
        "lower": percentile(ordered, tail, presorted=True),
        "upper": percentile(ordered, 100.0 - tail, presorted=True),
        "mean": math.fsum(ordered) / len(ordered),
    }


BUSINESS_FUNCTIONS: dict[str, Callable[..., Any]] = {
    "roi": roi,
    "payback_period": payback_period,
    "break_even": break_even,
    "cac": cac,
    "clv": clv,
    "npv": npv,
    "cagr": cagr,
    "runway": runway,
    "economic_cycle_impact": economic_cycle_impact,
    "confidence_interval": confidence_interval,
}


# =============================================================================
# Randomness (bound to a RandomSource per run)
# =============================================================================


def _random_functions(source: RandomSource) -> dict[str, Callable[..., Any]]:
    def seasonal_variation(base_value: float, seasonal_variation_percent: float) -> float:
        """Apply +/- half the given percentage of uniform seasonal noise."""
        variation = (source.random() - 0.5) * (seasonal_variation_percent / 100.0)
        return base_value * (1.0 + variation)

    def competition_impact(base_value: float, competition_level: str) -> float:
        """Scale by competition multiplier and +/-20% execution variance."""
        if competition_level not in COMPETITION_MULTIPLIERS:
            raise ValueError(
                f"competition level must be one of {', '.join(COMPETITION_MULTIPLIERS)}, "
                f"got {competition_level!r}"
            )
        variance = 0.8 + source.random() * 0.4
        return base_value * COMPETITION_MULTIPLIERS[competition_level] * variance

    return {
        "random": source.random,
        "uniform": source.uniform,
        "normal": source.normal,
        "triangular": source.triangular,
        "log_normal": source.log_normal,
        "chance": source.chance,
        "choice": source.choice,
        "seasonal_variation": seasonal_variation,
        "competition_impact": competition_impact,
    }


RANDOM_FUNCTION_NAMES = frozenset(
    {
        "random",
        "uniform",
        "normal",
        "triangular",
        "log_normal",
        "chance",
        "choice",
        "seasonal_variation",
        "competition_impact",
    }
)

LIBRARY_NAMES = frozenset(MATH_FUNCTIONS) | frozenset(CONSTANTS) | frozenset(BUSINESS_FUNCTIONS) | RANDOM_FUNCTION_NAMES


def build_namespace(source: RandomSource) -> dict[str, Any]:
    """Build the sandbox library namespace for one random source.

    Returns a fresh dict each call; the sandbox never shares it between runs.
    """
    namespace: dict[str, Any] = {}
    namespace.update(MATH_FUNCTIONS)
    namespace.update(CONSTANTS)
    namespace.update(BUSINESS_FUNCTIONS)
    namespace.update(_random_functions(source))
    return namespace
