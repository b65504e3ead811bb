"""Configuration validation for simforge."""

from .validator import (
    CheckResult,
    ValidationIssue,
    ValidationResult,
    ValidationSeverity,
    check_logic,
    check_parameters,
    check_schema,
    check_trial_run,
    validate_configuration,
)

__all__ = [
    "CheckResult",
    "ValidationIssue",
    "ValidationResult",
    "ValidationSeverity",
    "check_logic",
    "check_parameters",
    "check_schema",
    "check_trial_run",
    "validate_configuration",
]
