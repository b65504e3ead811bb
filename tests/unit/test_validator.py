"""Tests for the configuration validator.

Tests verify:
1. A well-formed configuration passes with its trial outputs attached
2. Schema problems are reported per field without raising
3. Logic that is rejected, has no return or misses outputs is an error
4. Undeclared outputs, misaligned defaults and ungrouped parameters are
   warnings or info, never errors
5. Validation is deterministic
"""

from simforge.config import EngineSettings
from simforge.validation import (
    ValidationResult,
    ValidationSeverity,
    check_parameters,
    validate_configuration,
)


def raw_config(**overrides):
    data = {
        "name": "Investment ROI",
        "category": "Finance",
        "parameters": [
            {"key": "investment", "label": "Investment", "type": "number", "default": 1000, "min": 0, "max": 1000000}
        ],
        "outputs": [{"key": "roi", "label": "ROI"}],
        "calculation_logic": 'return {"roi": investment * (0.8 + random() * 0.4)}',
    }
    data.update(overrides)
    return data


class TestValidConfiguration:
    """Tests for configurations that pass."""

    def test_valid(self, roi_config, settings):
        result = validate_configuration(roi_config, settings)
        assert result.valid
        assert result.errors == []
        assert 800.0 <= result.outputs["roi"] <= 1200.0
        assert [check.check_name for check in result.checks] == ["parameters", "logic", "trial_run"]

    def test_raw_mapping_runs_schema_check(self, settings):
        result = validate_configuration(raw_config(), settings)
        assert result.valid
        assert result.checks[0].check_name == "schema"

    def test_deterministic(self, roi_config, settings):
        first = validate_configuration(roi_config, settings)
        second = validate_configuration(roi_config, settings)
        assert first.outputs == second.outputs

    def test_to_dict(self, roi_config, settings):
        data = validate_configuration(roi_config, settings).to_dict()
        assert data["valid"] is True
        assert data["checks"]["trial_run"]["passed"] is True

    def test_settings_default_from_env(self, roi_config, monkeypatch):
        monkeypatch.setenv("SIMFORGE_MAX_STEPS", "5")
        result = validate_configuration(roi_config)
        assert not result.valid
        assert any("step budget" in error for error in result.errors)


class TestSchemaErrors:
    """Tests for schema failures reported as issues."""

    def test_missing_outputs(self, settings):
        data = raw_config()
        del data["outputs"]
        result = validate_configuration(data, settings)
        assert not result.valid
        assert any(error.startswith("outputs") for error in result.errors)
        assert result.outputs is None
        assert len(result.checks) == 1

    def test_bad_parameter_key(self, settings):
        data = raw_config(
            parameters=[{"key": "my-key", "label": "Bad", "type": "number", "default": 1}],
        )
        result = validate_configuration(data, settings)
        assert not result.valid
        assert any("parameters.0" in error for error in result.errors)

    def test_duplicate_output_keys(self, settings):
        data = raw_config(outputs=[{"key": "roi", "label": "ROI"}, {"key": "roi", "label": "ROI again"}])
        result = validate_configuration(data, settings)
        assert any("Duplicate output keys: roi" in error for error in result.errors)


class TestLogicErrors:
    """Tests for rejected or incomplete calculation logic."""

    def test_syntax_error(self, config_factory, settings):
        result = validate_configuration(config_factory(logic="return {"), settings)
        assert not result.valid
        assert result.errors[0].startswith("Simulation logic is rejected:")
        assert [check.check_name for check in result.checks] == ["parameters", "logic"]

    def test_forbidden_construct(self, config_factory, settings):
        result = validate_configuration(config_factory(logic='import os\nreturn {"roi": 1}'), settings)
        assert not result.valid
        assert "import statements" in result.errors[0]

    def test_no_return(self, config_factory, settings):
        result = validate_configuration(config_factory(logic="value = investment"), settings)
        assert not result.valid
        assert "Simulation logic must contain a return statement" in result.errors
        assert any("validation failed" in error for error in result.errors)

    def test_missing_output(self, config_factory, settings):
        config = config_factory(
            logic='return {"roi": investment}',
            outputs=[{"key": "roi", "label": "ROI"}, {"key": "payback", "label": "Payback"}],
        )
        result = validate_configuration(config, settings)
        assert not result.valid
        assert "Simulation doesn't return expected outputs: payback" in result.errors

    def test_no_declared_output_mentioned(self, config_factory, settings):
        config = config_factory(logic='key = "other"\nreturn {key: investment}')
        result = validate_configuration(config, settings)
        assert "Simulation logic should return at least one of the defined outputs" in result.warnings
        assert "Simulation doesn't return expected outputs: roi" in result.errors

    def test_runtime_error(self, config_factory, settings):
        result = validate_configuration(config_factory(logic='return {"roi": investment / 0}'), settings)
        assert not result.valid
        assert "ZeroDivisionError" in result.errors[0]


class TestWarnings:
    """Tests for non-fatal findings."""

    def test_extra_output_is_warning(self, config_factory, settings):
        config = config_factory(logic='return {"roi": investment, "bonus": 1}')
        result = validate_configuration(config, settings)
        assert result.valid
        assert "Simulation returns undeclared outputs: bonus" in result.warnings

    def test_default_off_step_is_warning(self, config_factory, settings):
        config = config_factory(
            parameters=[
                {"key": "investment", "label": "Investment", "type": "number",
                 "default": 1050, "min": 0, "max": 10000, "step": 100}
            ],
        )
        result = validate_configuration(config, settings)
        assert result.valid
        assert any("Default value" in warning for warning in result.warnings)

    def test_ungrouped_parameter_is_info(self, config_factory):
        config = config_factory(
            parameters=[
                {"key": "investment", "label": "Investment", "type": "number", "default": 1000},
                {"key": "months", "label": "Months", "type": "number", "default": 12},
            ],
            groups=[{"name": "Money", "parameters": ["investment"]}],
        )
        check = check_parameters(config)
        assert check.passed
        assert [issue.severity for issue in check.issues] == [ValidationSeverity.INFO]
        assert "'months'" in check.issues[0].message

    def test_business_context_group_covers_injected(self, config_factory):
        config = config_factory(business_context=True, groups=[{"name": "Money", "parameters": ["investment"]}])
        assert check_parameters(config).issues == []


class TestValidationResult:
    """Tests for ValidationResult bookkeeping."""

    def test_get_all_issues(self, config_factory):
        config = config_factory(logic='return {"roi": investment, "bonus": 1}')
        result = validate_configuration(config, EngineSettings())
        issues = result.get_all_issues()
        assert [issue.check_name for issue in issues] == ["trial_run"]
        assert issues[0].details == {"extra": ["bonus"]}

    def test_empty_result_valid(self):
        assert ValidationResult().valid
