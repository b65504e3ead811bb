"""simforge: configuration-driven Monte Carlo business simulations.

A ScenarioConfig declares parameters, outputs and a calculation written in a
restricted Python-like language. run_simulation() evaluates it many times
in a sandbox with an injectable random source and returns summary
statistics.
"""

from .api import (
    compare_scenarios,
    run_simulation,
    run_simulation_async,
    simulate_scenario,
    validate_configuration,
)
from .config import EngineSettings, FailurePolicy
from .engine.random_source import RandomSource
from .engine.runner import CancellationToken, MonteCarloRunner
from .engine.statistics import (
    CategoricalSummary,
    ConfidenceInterval,
    Statistics,
    histogram,
    percentile,
    risk_metrics,
    summarize,
    tally_categories,
)
from .errors import (
    ConfigurationError,
    EvaluationError,
    EvaluationTimeoutError,
    ForbiddenConstructError,
    InvalidIterationCountError,
    MissingReturnError,
    OutputMismatchError,
    ParameterChoiceError,
    ParameterError,
    ParameterRangeError,
    ParameterStepError,
    ParameterTypeError,
    ScenarioSyntaxError,
    SimforgeError,
    SimulationAbortedError,
    UnknownParameterError,
)
from .models import (
    IterationFailure,
    IterationResult,
    OutputDefinition,
    ParameterDefinition,
    ParameterGroup,
    ParameterType,
    RunStatus,
    ScenarioConfig,
    SimulationResults,
    grouped_parameters,
    load_scenario_config,
    resolve_values,
    save_scenario_config,
)
from .registry import SimulationRegistry, get_registry
from .validation import ValidationResult

__version__ = "0.1.0"

__all__ = [
    # Entry points
    "run_simulation",
    "run_simulation_async",
    "simulate_scenario",
    "validate_configuration",
    "compare_scenarios",
    # Configuration models
    "ParameterType",
    "ParameterDefinition",
    "ParameterGroup",
    "OutputDefinition",
    "ScenarioConfig",
    "load_scenario_config",
    "save_scenario_config",
    "resolve_values",
    "grouped_parameters",
    # Engine
    "EngineSettings",
    "FailurePolicy",
    "RandomSource",
    "MonteCarloRunner",
    "CancellationToken",
    # Results
    "RunStatus",
    "IterationFailure",
    "IterationResult",
    "SimulationResults",
    "ValidationResult",
    # Statistics
    "Statistics",
    "CategoricalSummary",
    "ConfidenceInterval",
    "summarize",
    "tally_categories",
    "percentile",
    "histogram",
    "risk_metrics",
    # Registry
    "SimulationRegistry",
    "get_registry",
    # Errors
    "SimforgeError",
    "ConfigurationError",
    "ParameterError",
    "ParameterRangeError",
    "ParameterChoiceError",
    "ParameterTypeError",
    "ParameterStepError",
    "UnknownParameterError",
    "MissingReturnError",
    "OutputMismatchError",
    "InvalidIterationCountError",
    "EvaluationError",
    "ScenarioSyntaxError",
    "ForbiddenConstructError",
    "EvaluationTimeoutError",
    "SimulationAbortedError",
]
