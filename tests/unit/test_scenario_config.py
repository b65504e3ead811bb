"""Tests for the scenario configuration schema.

Tests verify:
1. Valid configurations load; ids are slugs of the name
2. Logic is accepted under its document spellings
3. Duplicate keys, shadowed built-ins and bad group references are rejected
4. Business context injects the ARR parameters, group and budget values
5. JSON round trip through files
"""

import pytest
from pydantic import ValidationError

from simforge.models.scenario import (
    ScenarioConfig,
    business_context_values,
    load_scenario_config,
    save_scenario_config,
    slugify,
)


class TestSlugify:
    """Tests for slugify()."""

    @pytest.mark.parametrize(
        "text,expected",
        [
            ("AI Investment ROI", "ai-investment-roi"),
            ("Team Scaling: 2025", "team-scaling-2025"),
            ("  spaced__out  ", "spaced-out"),
            ("a -- b", "a-b"),
        ],
    )
    def test_slugify(self, text, expected):
        assert slugify(text) == expected


class TestScenarioConfig:
    """Tests for schema validation."""

    def test_basic(self, roi_config):
        assert roi_config.id == "investment-roi"
        assert roi_config.version == "1.0.0"
        assert roi_config.output_keys == ["roi"]
        assert roi_config.get_parameter("investment").default == 1000
        assert roi_config.get_parameter("missing") is None

    @pytest.mark.parametrize("spelling", ["calculationLogic", "logic"])
    def test_logic_aliases(self, config_factory, spelling):
        data = config_factory().to_dict()
        data[spelling] = data.pop("calculation_logic")
        assert ScenarioConfig.from_dict(data).calculation_logic.startswith("return")

    def test_nested_simulation_logic(self, roi_config):
        data = roi_config.to_dict()
        data["simulation"] = {"logic": data.pop("calculation_logic")}
        assert ScenarioConfig.from_dict(data).calculation_logic == roi_config.calculation_logic

    def test_missing_logic(self, roi_config):
        data = roi_config.to_dict()
        del data["calculation_logic"]
        with pytest.raises(ValidationError):
            ScenarioConfig.from_dict(data)

    def test_outputs_required(self, config_factory):
        with pytest.raises(ValidationError):
            config_factory(outputs=[])

    def test_bad_version(self, config_factory):
        with pytest.raises(ValidationError):
            config_factory(version="1.0")

    def test_unknown_field(self, config_factory):
        with pytest.raises(ValidationError):
            config_factory(owner="finance-team")

    def test_duplicate_parameter_keys(self, config_factory):
        param = {"key": "investment", "label": "Investment", "type": "number", "default": 1}
        with pytest.raises(ValidationError, match="Duplicate parameter keys: investment"):
            config_factory(parameters=[param, param])

    def test_parameter_shadows_library(self, config_factory):
        with pytest.raises(ValidationError, match="shadow built-in"):
            config_factory(parameters=[{"key": "random", "label": "R", "type": "number", "default": 1}])

    def test_parameter_shadows_context_name(self, config_factory):
        with pytest.raises(ValidationError, match="shadow built-in"):
            config_factory(parameters=[{"key": "arr_budget", "label": "B", "type": "number", "default": 1}])

    def test_group_unknown_parameter(self, config_factory):
        with pytest.raises(ValidationError, match="non-existent parameter 'headcount'"):
            config_factory(groups=[{"name": "Team", "parameters": ["headcount"]}])

    def test_frozen(self, roi_config):
        with pytest.raises(ValidationError):
            roi_config.name = "Changed"

    def test_metadata(self, config_factory):
        metadata = config_factory(tags=["ai"]).metadata()
        assert metadata["id"] == "investment-roi"
        assert metadata["tags"] == ["ai"]


class TestBusinessContext:
    """Tests for ARR parameter injection."""

    def test_off_by_default(self, roi_config):
        assert roi_config.effective_parameters() == roi_config.parameters
        assert roi_config.effective_groups() == ()

    def test_injected_parameters(self, config_factory):
        config = config_factory(business_context=True)
        keys = [p.key for p in config.effective_parameters()]
        assert keys == ["annualRecurringRevenue", "budgetPercent", "investment"]
        arr = config.get_parameter("annualRecurringRevenue")
        assert arr.default == 5_000_000
        assert (arr.min, arr.max, arr.step) == (100_000, 1_000_000_000, 50_000)
        budget = config.get_parameter("budgetPercent")
        assert (budget.default, budget.min, budget.max, budget.step) == (10.0, 1, 50, 0.5)

    def test_declared_parameter_not_duplicated(self, config_factory):
        config = config_factory(
            business_context=True,
            parameters=[
                {"key": "investment", "label": "Investment", "type": "number", "default": 1},
                {"key": "budgetPercent", "label": "Budget", "type": "number", "default": 20},
            ],
        )
        keys = [p.key for p in config.effective_parameters()]
        assert keys == ["annualRecurringRevenue", "investment", "budgetPercent"]
        assert config.get_parameter("budgetPercent").default == 20

    def test_context_group_first(self, config_factory):
        config = config_factory(
            business_context=True,
            groups=[{"name": "Money", "parameters": ["investment", "annualRecurringRevenue"]}],
        )
        names = [g.name for g in config.effective_groups()]
        assert names == ["Business Context", "Money"]

    def test_budget_values(self):
        values = business_context_values({"annualRecurringRevenue": 1_200_000, "budgetPercent": 5})
        assert values["arr_budget"] == pytest.approx(60_000.0)
        assert values["monthly_budget"] == pytest.approx(5_000.0)
        assert values["quarterly_budget"] == pytest.approx(15_000.0)


class TestSerialization:
    """Tests for dict, JSON and file persistence."""

    def test_json_round_trip(self, roi_config):
        assert ScenarioConfig.from_json(roi_config.to_json()) == roi_config

    def test_save_and_load(self, tmp_path, roi_config):
        path = tmp_path / "nested" / "roi.json"
        save_scenario_config(roi_config, path)
        assert load_scenario_config(path) == roi_config

    def test_load_missing_file(self, tmp_path):
        with pytest.raises(FileNotFoundError):
            load_scenario_config(tmp_path / "missing.json")
