"""simforge simulation engine.

Leaf components are exported here. The evaluator and runner depend on the
configuration models and are imported from their own modules:

    from simforge.engine.evaluator import ScenarioEvaluator
    from simforge.engine.runner import MonteCarloRunner
"""

from .library import LIBRARY_NAMES, build_namespace
from .random_source import RandomSource, derive_seed
from .sandbox import NO_RETURN, CompiledScenario, compile_scenario, execute
from .statistics import (
    CategoricalSummary,
    ConfidenceInterval,
    Statistics,
    histogram,
    percentile,
    risk_metrics,
    summarize,
    summarize_values,
    tally_categories,
)

__all__ = [
    # Randomness
    "RandomSource",
    "derive_seed",
    # Sandbox
    "CompiledScenario",
    "NO_RETURN",
    "compile_scenario",
    "execute",
    "LIBRARY_NAMES",
    "build_namespace",
    # Statistics
    "CategoricalSummary",
    "ConfidenceInterval",
    "Statistics",
    "histogram",
    "percentile",
    "risk_metrics",
    "summarize",
    "summarize_values",
    "tally_categories",
]
