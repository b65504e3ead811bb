"""Exception hierarchy for simforge.

Configuration errors are always fatal to a call. Evaluation errors happen per
iteration and follow the runner's failure policy. Every error carries enough
context (parameter key, iteration index, calculation excerpt) to fix the
configuration without reading a stack trace.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from simforge.models.results import SimulationResults


def excerpt(source: str, line: int | None = None, width: int = 80) -> str:
    """Return a short excerpt of calculation source for error messages.

    With a line number, returns that line (1-based). Otherwise returns the
    first non-blank line.
    """
    lines = source.splitlines()
    if line is not None and 1 <= line <= len(lines):
        text = lines[line - 1].strip()
    else:
        text = next((ln.strip() for ln in lines if ln.strip()), "")
    if len(text) > width:
        text = text[: width - 3] + "..."
    return text


def _restore(cls: type, args: tuple, state: dict) -> "SimforgeError":
    error = cls.__new__(cls)
    error.args = args
    error.__dict__.update(state)
    return error


class SimforgeError(Exception):
    """Base class for all simforge errors.

    Errors keep their attributes when pickled, so failures raised in
    worker processes reach the caller intact.
    """

    def __reduce__(self):
        return (_restore, (type(self), self.args, self.__dict__))


# =============================================================================
# Configuration errors
# =============================================================================


class ConfigurationError(SimforgeError, ValueError):
    """The configuration or its overrides cannot be used as given."""


class ParameterError(ConfigurationError):
    """A parameter value is invalid."""

    def __init__(self, key: str, message: str):
        self.key = key
        super().__init__(message)


class ParameterRangeError(ParameterError):
    """A number parameter value lies outside its [min, max] bounds."""

    def __init__(self, key: str, value: float, bound: str, limit: float):
        self.value = value
        self.bound = bound
        self.limit = limit
        relation = "below minimum" if bound == "min" else "above maximum"
        super().__init__(key, f"Parameter '{key}' value {value} is {relation} {limit}")


class ParameterChoiceError(ParameterError):
    """A select parameter value is not one of its options."""

    def __init__(self, key: str, value: Any, options: list[str]):
        self.value = value
        self.options = list(options)
        super().__init__(
            key,
            f"Parameter '{key}' value {value!r} is not one of: {', '.join(options)}",
        )


class ParameterTypeError(ParameterError):
    """A parameter value has the wrong type and cannot be coerced."""

    def __init__(self, key: str, value: Any, expected: str):
        self.value = value
        self.expected = expected
        super().__init__(
            key,
            f"Parameter '{key}' expects {expected}, got {type(value).__name__} {value!r}",
        )


class ParameterStepError(ParameterError):
    """A number parameter value is not aligned to its step."""

    def __init__(self, key: str, value: float, step: float):
        self.value = value
        self.step = step
        super().__init__(key, f"Parameter '{key}' value {value} must be in steps of {step}")


class UnknownParameterError(ParameterError):
    """An override names a parameter the configuration does not declare."""

    def __init__(self, key: str, known: list[str]):
        self.known = list(known)
        super().__init__(
            key,
            f"Unknown parameter '{key}' (declared: {', '.join(known) or 'none'})",
        )


class MissingReturnError(ConfigurationError):
    """The calculation did not return a mapping of named outputs."""

    def __init__(self, message: str, source: str = ""):
        self.source = source
        if source:
            message = f"{message} (logic starts: {excerpt(source)!r})"
        super().__init__(message)


class OutputMismatchError(ConfigurationError):
    """The calculation result is missing declared output keys."""

    def __init__(self, missing: list[str], extra: list[str] | None = None, iteration: int | None = None):
        self.missing = list(missing)
        self.extra = list(extra or [])
        self.iteration = iteration
        message = f"Missing expected outputs: {', '.join(self.missing)}"
        if self.extra:
            message += f" (returned undeclared: {', '.join(self.extra)})"
        if iteration is not None:
            message += f" at iteration {iteration}"
        super().__init__(message)


# =============================================================================
# Invocation errors
# =============================================================================


class InvalidIterationCountError(SimforgeError, ValueError):
    """The requested iteration count is not a positive integer."""

    def __init__(self, iterations: Any):
        self.iterations = iterations
        super().__init__(f"Iteration count must be a positive integer, got {iterations!r}")


# =============================================================================
# Evaluation errors
# =============================================================================


class EvaluationError(SimforgeError):
    """Executing the calculation failed.

    Attributes:
        source: The calculation source that failed
        line: 1-based line of the failing statement, if known
        iteration: Iteration index, filled in by the runner
    """

    def __init__(self, message: str, source: str = "", line: int | None = None, iteration: int | None = None):
        self.detail = message
        self.source = source
        self.line = line
        self.iteration = iteration
        super().__init__(message)

    def __str__(self) -> str:
        parts = [self.detail]
        if self.line is not None:
            parts.append(f"line {self.line}: {excerpt(self.source, self.line)!r}")
        if self.iteration is not None:
            parts.append(f"iteration {self.iteration}")
        return " | ".join(parts)


class ScenarioSyntaxError(EvaluationError):
    """The calculation does not parse."""


class ForbiddenConstructError(EvaluationError):
    """The calculation uses a construct outside the sandbox allowlist."""


class EvaluationTimeoutError(EvaluationError):
    """The calculation exceeded its step or wall-clock budget."""

    def __init__(self, message: str, source: str = "", line: int | None = None, budget: float | None = None):
        self.budget = budget
        super().__init__(message, source=source, line=line)


# =============================================================================
# Run errors
# =============================================================================


class SimulationAbortedError(SimforgeError):
    """A run stopped because of iteration failures.

    Attributes:
        iteration: Index of the iteration that triggered the abort
        results: Partial SimulationResults gathered before the abort,
            including the failure count
    """

    def __init__(self, message: str, iteration: int | None = None, results: SimulationResults | None = None):
        self.iteration = iteration
        self.results = results
        super().__init__(message)
