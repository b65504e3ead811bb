"""Public entry points for simforge.

Usage:
    from simforge import ScenarioConfig, run_simulation, validate_configuration

    config = ScenarioConfig.from_dict(data)
    check = validate_configuration(config)
    if check.valid:
        results = run_simulation(config, {"investment": 5000}, iterations=1000, seed=42)
        print(results.summary["roi"].mean)
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Iterable, Mapping, Optional, Union

from simforge.config import EngineSettings, get_default_iterations
from simforge.engine.evaluator import ScenarioEvaluator
from simforge.engine.random_source import RandomSource
from simforge.engine.runner import CancellationToken, MonteCarloRunner, ProgressCallback
from simforge.models.parameters import resolve_values
from simforge.models.results import IterationResult, SimulationResults
from simforge.models.scenario import ScenarioConfig
from simforge.validation.validator import ValidationResult
from simforge.validation.validator import validate_configuration as _validate

logger = logging.getLogger(__name__)

ConfigLike = Union[ScenarioConfig, Mapping[str, Any]]


def _as_config(config: ConfigLike) -> ScenarioConfig:
    if isinstance(config, ScenarioConfig):
        return config
    return ScenarioConfig.from_dict(dict(config))


def run_simulation(
    config: ConfigLike,
    overrides: Optional[Mapping[str, Any]] = None,
    iterations: Optional[int] = None,
    on_progress: Optional[ProgressCallback] = None,
    *,
    seed: Optional[int] = None,
    random_source: Optional[RandomSource] = None,
    settings: Optional[EngineSettings] = None,
    cancel_token: Optional[CancellationToken] = None,
) -> SimulationResults:
    """Run a Monte Carlo simulation of a configuration.

    Args:
        config: ScenarioConfig or a mapping validated into one
        overrides: {parameter_key: value} replacing defaults
        iterations: Iteration count (default: SIMFORGE_ITERATIONS or 1000)
        on_progress: on_progress(fraction, iteration_index) callback
        seed: Seed for reproducible runs
        random_source: Explicit source (takes precedence over seed)
        settings: Engine settings (default: from environment)
        cancel_token: Cancellation flag checked between iterations

    Returns:
        SimulationResults owned by the caller

    Raises:
        See MonteCarloRunner.run()
    """
    if iterations is None:
        iterations = get_default_iterations()
    runner = MonteCarloRunner(_as_config(config), settings=settings)
    return runner.run(
        overrides,
        iterations,
        on_progress,
        seed=seed,
        random_source=random_source,
        cancel_token=cancel_token,
    )


async def run_simulation_async(
    config: ConfigLike,
    overrides: Optional[Mapping[str, Any]] = None,
    iterations: Optional[int] = None,
    on_progress: Optional[ProgressCallback] = None,
    *,
    seed: Optional[int] = None,
    random_source: Optional[RandomSource] = None,
    settings: Optional[EngineSettings] = None,
    cancel_token: Optional[CancellationToken] = None,
) -> SimulationResults:
    """Async wrapper around run_simulation().

    The run executes in a worker thread so the event loop stays responsive;
    on_progress is therefore called from that thread. Cancel with a
    CancellationToken, not by cancelling the awaiting task.
    """
    return await asyncio.to_thread(
        run_simulation,
        config,
        overrides,
        iterations,
        on_progress,
        seed=seed,
        random_source=random_source,
        settings=settings,
        cancel_token=cancel_token,
    )


def simulate_scenario(
    config: ConfigLike,
    overrides: Optional[Mapping[str, Any]] = None,
    *,
    seed: Optional[int] = None,
    random_source: Optional[RandomSource] = None,
    settings: Optional[EngineSettings] = None,
) -> IterationResult:
    """Evaluate a configuration once ("quick test").

    Unlike a run, any evaluation error propagates directly.

    Raises:
        ParameterError: An override is invalid
        EvaluationError: The calculation failed or timed out
        MissingReturnError, OutputMismatchError: The declared outputs were
            not returned
    """
    config = _as_config(config)
    settings = settings if settings is not None else EngineSettings.from_env()
    values = resolve_values(config.effective_parameters(), overrides)
    evaluator = ScenarioEvaluator(config, max_steps=settings.max_steps, timeout=settings.iteration_timeout)
    source = random_source if random_source is not None else RandomSource(seed)
    result = evaluator.evaluate(values, source, iteration=0)
    evaluator.check_outputs(result, iteration=0)
    return result


def validate_configuration(
    config: ConfigLike,
    settings: Optional[EngineSettings] = None,
) -> ValidationResult:
    """Pre-flight check of a configuration.

    Returns:
        ValidationResult with `valid`, `errors` and `warnings`
    """
    return _validate(config, settings=settings)


def compare_scenarios(
    config: ConfigLike,
    scenarios: Union[Mapping[str, Mapping[str, Any]], Iterable[tuple[str, Mapping[str, Any]]]],
    iterations: Optional[int] = None,
    seed: Optional[int] = None,
    settings: Optional[EngineSettings] = None,
) -> dict[str, SimulationResults]:
    """Run one configuration under several override sets.

    Every scenario runs with the same seed (common random numbers), so
    differences between results come from the overrides, not from noise.

    Args:
        config: Configuration to run
        scenarios: {name: overrides} or [(name, overrides)]
        iterations: Iterations per scenario
        seed: Shared seed (drawn once from the OS if not given)
        settings: Engine settings

    Returns:
        {name: SimulationResults} in the given order

    Raises:
        ValueError: If two scenarios share a name
    """
    config = _as_config(config)
    items = list(scenarios.items()) if isinstance(scenarios, Mapping) else list(scenarios)
    names = [name for name, _ in items]
    duplicates = sorted({n for n in names if names.count(n) > 1})
    if duplicates:
        raise ValueError(f"Duplicate scenario names: {', '.join(duplicates)}")

    shared_seed = seed if seed is not None else RandomSource().seed
    logger.info(f"Comparing {len(items)} scenarios of '{config.name}' (seed={shared_seed})")

    compared: dict[str, SimulationResults] = {}
    for name, overrides in items:
        compared[name] = run_simulation(
            config,
            overrides,
            iterations,
            seed=shared_seed,
            settings=settings,
        )
    return compared
