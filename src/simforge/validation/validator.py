"""Configuration validator for simforge.

Pre-flight checks a caller runs before handing a configuration to the
runner. All checks are deterministic.

What is validated:
1. Schema: structure, identifier keys, defaults against type and bounds,
   unique keys, group references (via the pydantic models)
2. Parameters: defaults aligned to their step, parameters left out of groups
3. Logic: parses, uses only allowed constructs, contains a return statement
   and mentions at least one declared output
4. Trial run: one evaluation with default values and a fixed seed returns
   every declared output

Missing outputs are errors; undeclared extra outputs are warnings.
"""

from __future__ import annotations

import ast
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Mapping

from pydantic import ValidationError

from simforge.config import EngineSettings
from simforge.engine.evaluator import ScenarioEvaluator
from simforge.engine.random_source import RandomSource
from simforge.errors import ConfigurationError, EvaluationError, ParameterError
from simforge.models.parameters import ParameterType, default_values
from simforge.models.scenario import ScenarioConfig

TRIAL_SEED = 0
"""Seed of the trial evaluation, so validation is repeatable."""


class ValidationSeverity(Enum):
    """Severity level for validation issues."""

    CRITICAL = "critical"  # The run cannot work
    WARNING = "warning"  # The run works but is probably not what was meant
    INFO = "info"  # Informational only


@dataclass
class ValidationIssue:
    """A single validation issue found."""

    check_name: str
    severity: ValidationSeverity
    message: str
    details: dict | None = None


@dataclass
class CheckResult:
    """Result of a single validation check."""

    check_name: str
    passed: bool = True
    issues: list[ValidationIssue] = field(default_factory=list)

    def add_issue(
        self,
        severity: ValidationSeverity,
        message: str,
        details: dict | None = None,
    ) -> None:
        """Add an issue to this check result."""
        self.issues.append(
            ValidationIssue(
                check_name=self.check_name,
                severity=severity,
                message=message,
                details=details,
            )
        )
        if severity == ValidationSeverity.CRITICAL:
            self.passed = False


@dataclass
class ValidationResult:
    """Complete validation result for a configuration.

    Attributes:
        valid: True when no check found a critical issue
        errors: Messages of critical issues
        warnings: Messages of warning issues
        checks: Every check that ran, in order
        outputs: Result of the trial evaluation, when it ran
    """

    valid: bool = True
    errors: list[str] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)
    checks: list[CheckResult] = field(default_factory=list)
    outputs: dict[str, Any] | None = None

    def add_check(self, check: CheckResult) -> None:
        self.checks.append(check)
        for issue in check.issues:
            if issue.severity == ValidationSeverity.CRITICAL:
                self.errors.append(issue.message)
            elif issue.severity == ValidationSeverity.WARNING:
                self.warnings.append(issue.message)
        if not check.passed:
            self.valid = False

    def get_all_issues(self) -> list[ValidationIssue]:
        """Get all issues from all checks."""
        return [issue for check in self.checks for issue in check.issues]

    def to_dict(self) -> dict:
        """Convert to dictionary for JSON serialization."""
        return {
            "valid": self.valid,
            "errors": list(self.errors),
            "warnings": list(self.warnings),
            "checks": {
                check.check_name: {
                    "passed": check.passed,
                    "issues": [
                        {"severity": i.severity.value, "message": i.message, "details": i.details}
                        for i in check.issues
                    ],
                }
                for check in self.checks
            },
        }


def check_schema(data: Mapping[str, Any]) -> tuple[CheckResult, ScenarioConfig | None]:
    """Validate a raw configuration mapping against the schema."""
    result = CheckResult(check_name="schema")
    try:
        config = ScenarioConfig.model_validate(dict(data))
    except ValidationError as exc:
        for error in exc.errors():
            location = ".".join(str(part) for part in error["loc"]) or "configuration"
            result.add_issue(ValidationSeverity.CRITICAL, f"{location}: {error['msg']}")
        return result, None
    return result, config


def check_parameters(config: ScenarioConfig) -> CheckResult:
    """Check defaults against steps and group coverage."""
    result = CheckResult(check_name="parameters")

    for parameter in config.effective_parameters():
        if parameter.type != ParameterType.NUMBER:
            continue
        try:
            parameter.check(parameter.default)
        except ParameterError as exc:
            result.add_issue(ValidationSeverity.WARNING, f"Default value: {exc}", {"key": parameter.key})

    groups = config.effective_groups()
    if groups:
        grouped = {key for group in groups for key in group.parameters}
        for parameter in config.effective_parameters():
            if parameter.key not in grouped:
                result.add_issue(
                    ValidationSeverity.INFO,
                    f"Parameter '{parameter.key}' is not in any group",
                    {"key": parameter.key},
                )
    return result


def check_logic(config: ScenarioConfig, settings: EngineSettings) -> tuple[CheckResult, ScenarioEvaluator | None]:
    """Compile the logic and check it returns declared outputs."""
    result = CheckResult(check_name="logic")
    try:
        evaluator = ScenarioEvaluator(config, max_steps=settings.max_steps, timeout=settings.iteration_timeout)
    except EvaluationError as exc:
        result.add_issue(ValidationSeverity.CRITICAL, f"Simulation logic is rejected: {exc}")
        return result, None

    nodes = [node for statement in evaluator.compiled.body for node in ast.walk(statement)]
    if not any(isinstance(node, ast.Return) for node in nodes):
        result.add_issue(ValidationSeverity.CRITICAL, "Simulation logic must contain a return statement")

    mentioned = {node.value for node in nodes if isinstance(node, ast.Constant) and isinstance(node.value, str)}
    if not mentioned.intersection(config.output_keys):
        result.add_issue(
            ValidationSeverity.WARNING,
            "Simulation logic should return at least one of the defined outputs",
        )
    return result, evaluator


def check_trial_run(config: ScenarioConfig, evaluator: ScenarioEvaluator) -> tuple[CheckResult, dict | None]:
    """Evaluate once with default values and a fixed seed."""
    result = CheckResult(check_name="trial_run")
    values = default_values(config.effective_parameters())
    try:
        outputs = evaluator.evaluate(values, RandomSource(TRIAL_SEED), iteration=0)
    except (EvaluationError, ConfigurationError) as exc:
        result.add_issue(ValidationSeverity.CRITICAL, f"Simulation logic validation failed: {exc}")
        return result, None

    missing = [key for key in config.output_keys if key not in outputs]
    if missing:
        result.add_issue(
            ValidationSeverity.CRITICAL,
            f"Simulation doesn't return expected outputs: {', '.join(missing)}",
            {"missing": missing},
        )
    extra = [key for key in outputs if key not in config.output_keys]
    if extra:
        result.add_issue(
            ValidationSeverity.WARNING,
            f"Simulation returns undeclared outputs: {', '.join(extra)}",
            {"extra": extra},
        )
    return result, outputs


def validate_configuration(
    config: ScenarioConfig | Mapping[str, Any],
    settings: EngineSettings | None = None,
) -> ValidationResult:
    """Validate a configuration before running it.

    Args:
        config: A ScenarioConfig, or a raw mapping to validate against the
            schema first
        settings: Budgets for the trial evaluation (default: from env)

    Returns:
        ValidationResult; `valid` is False when any critical issue was found
    """
    settings = settings if settings is not None else EngineSettings.from_env()
    result = ValidationResult()

    if not isinstance(config, ScenarioConfig):
        schema_check, parsed = check_schema(config)
        result.add_check(schema_check)
        if parsed is None:
            return result
        config = parsed

    result.add_check(check_parameters(config))

    logic_check, evaluator = check_logic(config, settings)
    result.add_check(logic_check)
    if evaluator is None:
        return result

    trial_check, outputs = check_trial_run(config, evaluator)
    result.add_check(trial_check)
    result.outputs = outputs
    return result
