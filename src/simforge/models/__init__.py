"""simforge data models.

This module exports the configuration schema and run result structures.
"""

from .parameters import (
    ParameterDefinition,
    ParameterGroup,
    ParameterType,
    ParameterValue,
    ValueMap,
    default_values,
    grouped_parameters,
    is_valid_key,
    resolve_values,
)
from .results import (
    IterationFailure,
    IterationResult,
    RunStatus,
    SimulationResults,
)
from .scenario import (
    BUSINESS_CONTEXT_NAMES,
    OutputDefinition,
    ScenarioConfig,
    business_context_values,
    load_scenario_config,
    save_scenario_config,
    slugify,
)

__all__ = [
    # Enums
    "ParameterType",
    "RunStatus",
    # Configuration models
    "ParameterDefinition",
    "ParameterGroup",
    "OutputDefinition",
    "ScenarioConfig",
    # Result models
    "IterationFailure",
    "IterationResult",
    "SimulationResults",
    # Type aliases
    "ParameterValue",
    "ValueMap",
    # Parameter functions
    "default_values",
    "grouped_parameters",
    "is_valid_key",
    "resolve_values",
    # Scenario functions
    "BUSINESS_CONTEXT_NAMES",
    "business_context_values",
    "load_scenario_config",
    "save_scenario_config",
    "slugify",
]
