"""Scenario evaluator: one sandboxed execution of a calculation.

The evaluator binds resolved parameter values and the function library,
runs the calculation in the restricted interpreter and normalizes the
returned mapping into an IterationResult:
- int, float and bool values become floats (True -> 1.0)
- str values are kept as categorical outputs
- anything else, or a non-finite number, raises EvaluationError

The evaluator never checks declared outputs against the result on its own;
ScenarioEvaluator.check_outputs() does that for the runner and validator.
"""

from __future__ import annotations

import logging
import math
from functools import lru_cache
from typing import Any, Mapping

from simforge.defaults import DEFAULT_ITERATION_TIMEOUT, DEFAULT_MAX_STEPS
from simforge.engine.library import LIBRARY_NAMES, build_namespace
from simforge.engine.random_source import RandomSource
from simforge.engine.sandbox import NO_RETURN, CompiledScenario, compile_scenario, execute
from simforge.errors import EvaluationError, MissingReturnError, OutputMismatchError
from simforge.models.results import IterationResult
from simforge.models.scenario import (
    BUSINESS_CONTEXT_NAMES,
    ScenarioConfig,
    business_context_values,
)

logger = logging.getLogger(__name__)


@lru_cache(maxsize=64)
def _compile_cached(source: str, reserved: frozenset[str]) -> CompiledScenario:
    return compile_scenario(source, reserved)


def normalize_output(key: str, value: Any, source: str = "") -> float | str:
    """Convert one returned value to a numeric or categorical output.

    Raises:
        EvaluationError: If the value is not a number, bool or string, or
            is NaN or infinite
    """
    if isinstance(value, str):
        return value
    if isinstance(value, bool):
        return 1.0 if value else 0.0
    if isinstance(value, (int, float)):
        try:
            number = float(value)
        except OverflowError as exc:
            raise EvaluationError(f"Output '{key}' is too large to represent", source=source) from exc
        if not math.isfinite(number):
            raise EvaluationError(f"Output '{key}' is not a finite number: {number}", source=source)
        return number
    raise EvaluationError(
        f"Output '{key}' must be a number, bool or string, got {type(value).__name__}",
        source=source,
    )


def normalize_result(raw: Any, source: str = "") -> IterationResult:
    """Turn the calculation's return value into an IterationResult.

    Raises:
        MissingReturnError: The calculation did not return a dict with
            string keys
        EvaluationError: An output value is unusable
    """
    if raw is NO_RETURN:
        raise MissingReturnError("Calculation finished without a return statement", source=source)
    if not isinstance(raw, dict):
        raise MissingReturnError(
            f"Calculation must return a dict of named outputs, got {type(raw).__name__}",
            source=source,
        )
    bad_keys = [key for key in raw if not isinstance(key, str)]
    if bad_keys:
        raise MissingReturnError(
            f"Output names must be strings, got {bad_keys[0]!r}",
            source=source,
        )
    return {key: normalize_output(key, value, source) for key, value in raw.items()}


def evaluate(
    calculation_logic: str,
    value_map: Mapping[str, Any],
    random_source: RandomSource,
    max_steps: int = DEFAULT_MAX_STEPS,
    timeout: float | None = DEFAULT_ITERATION_TIMEOUT,
) -> IterationResult:
    """Execute calculation logic once against a value map.

    Args:
        calculation_logic: Calculation text ending in `return {...}`
        value_map: Resolved parameter values, bound read-only
        random_source: Source of every random draw
        max_steps: Interpreter step budget
        timeout: Wall-clock budget in seconds

    Returns:
        IterationResult with every returned key

    Raises:
        ScenarioSyntaxError, ForbiddenConstructError: Logic is rejected
            before execution
        EvaluationTimeoutError: Step or time budget exceeded
        EvaluationError: Runtime failure, chained to its cause
        MissingReturnError: No dict of named outputs was returned
    """
    compiled = _compile_cached(calculation_logic, frozenset(value_map) | LIBRARY_NAMES)
    raw = execute(
        compiled,
        dict(value_map),
        build_namespace(random_source),
        max_steps=max_steps,
        timeout=timeout,
    )
    return normalize_result(raw, calculation_logic)


class ScenarioEvaluator:
    """Evaluates one ScenarioConfig repeatedly.

    The calculation is parsed and checked once at construction, so syntax
    and forbidden constructs fail before any iteration runs.

    Usage:
        evaluator = ScenarioEvaluator(config)
        source = RandomSource(seed=42)
        result = evaluator.evaluate(values, source)

    Args:
        config: Configuration to evaluate
        max_steps: Interpreter step budget per evaluation
        timeout: Wall-clock budget per evaluation in seconds
    """

    def __init__(
        self,
        config: ScenarioConfig,
        max_steps: int = DEFAULT_MAX_STEPS,
        timeout: float | None = DEFAULT_ITERATION_TIMEOUT,
    ):
        self.config = config
        self.max_steps = max_steps
        self.timeout = timeout
        reserved = {p.key for p in config.effective_parameters()} | LIBRARY_NAMES
        if config.business_context:
            reserved |= set(BUSINESS_CONTEXT_NAMES)
        self.compiled = _compile_cached(config.calculation_logic, frozenset(reserved))
        self._library_source: RandomSource | None = None
        self._library: dict[str, Any] = {}
        logger.debug(f"Prepared evaluator for '{config.name}'")

    def bindings(self, values: Mapping[str, Any]) -> dict[str, Any]:
        """Read-only names for one evaluation: parameters plus derived context."""
        bound = dict(values)
        if self.config.business_context:
            bound.update(business_context_values(bound))
        return bound

    def library(self, random_source: RandomSource) -> dict[str, Any]:
        """Library namespace bound to random_source (reused while it is unchanged)."""
        if self._library_source is not random_source:
            self._library = build_namespace(random_source)
            self._library_source = random_source
        return self._library

    def evaluate(
        self,
        values: Mapping[str, Any],
        random_source: RandomSource,
        iteration: int | None = None,
    ) -> IterationResult:
        """Run the calculation once.

        Args:
            values: Resolved parameter values (see resolve_values)
            random_source: Source of every random draw
            iteration: Iteration index attached to evaluation errors

        Raises:
            EvaluationError: Runtime failure or timeout, with iteration set
            MissingReturnError: No dict of named outputs was returned
        """
        try:
            raw = execute(
                self.compiled,
                self.bindings(values),
                self.library(random_source),
                max_steps=self.max_steps,
                timeout=self.timeout,
            )
            return normalize_result(raw, self.compiled.source)
        except EvaluationError as exc:
            if exc.iteration is None:
                exc.iteration = iteration
            raise

    def check_outputs(self, result: Mapping[str, Any], iteration: int | None = None) -> None:
        """Ensure every declared output is present.

        Raises:
            OutputMismatchError: Declared outputs are missing from result
        """
        missing = [key for key in self.config.output_keys if key not in result]
        if missing:
            extra = [key for key in result if key not in self.config.output_keys]
            raise OutputMismatchError(missing, extra, iteration=iteration)
