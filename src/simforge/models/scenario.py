"""Scenario configuration schema for simforge.

A ScenarioConfig is the validated, immutable input to a simulation run:
metadata, typed parameters, declared outputs and the calculation logic.
It is produced by an external loader (YAML, forms, agents) or by
ScenarioConfig.from_dict / load_scenario_config for JSON files.
"""

from __future__ import annotations

import json
import re
from pathlib import Path
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from simforge.defaults import (
    ARR_PARAMETER_KEY,
    BUDGET_PARAMETER_KEY,
    DEFAULT_ARR,
    DEFAULT_BUDGET_PERCENT,
)
from simforge.engine.library import LIBRARY_NAMES
from simforge.models.parameters import (
    ParameterDefinition,
    ParameterGroup,
    ParameterType,
    is_valid_key,
)

BUSINESS_CONTEXT_GROUP = "Business Context"
BUSINESS_CONTEXT_NAMES = ("arr_budget", "monthly_budget", "quarterly_budget")
"""Derived names bound into the calculation when business context is on."""


def slugify(text: str) -> str:
    """Convert a simulation name to an id.

    Examples:
        >>> slugify("AI Investment ROI")
        'ai-investment-roi'
        >>> slugify("Team Scaling: 2025")
        'team-scaling-2025'
    """
    text = text.lower()
    text = re.sub(r"[\s_]+", "-", text)
    text = re.sub(r"[^a-z0-9-]", "", text)
    text = re.sub(r"-+", "-", text)
    return text.strip("-")


class OutputDefinition(BaseModel):
    """A named metric the calculation is expected to return."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    key: str = Field(min_length=1)
    label: str = Field(min_length=1)
    description: str = ""

    @field_validator("key")
    @classmethod
    def validate_key(cls, v: str) -> str:
        if not is_valid_key(v):
            raise ValueError(f"Output key '{v}' is not a valid identifier")
        return v


class ScenarioConfig(BaseModel):
    """Complete simulation configuration.

    The model validates structure only (keys, types, defaults, groups).
    Whether the calculation actually runs and returns the declared outputs
    is checked by simforge.validation.validate_configuration().

    Attributes:
        name: Human-readable name; its slug is the registry id
        category: Free-form grouping such as "Finance" or "Operations"
        description: What the scenario models
        version: Semantic version "x.y.z"
        tags: Search tags
        parameters: Declared inputs (unique keys)
        outputs: Declared metrics (unique keys)
        calculation_logic: Calculation text, ending in `return {...}`
        groups: Optional parameter groups
        business_context: Inject ARR parameters and budget values
    """

    model_config = ConfigDict(frozen=True, extra="forbid")

    name: str = Field(min_length=1, max_length=100)
    category: str = Field(min_length=1)
    description: str = ""
    version: str = Field(default="1.0.0", pattern=r"^\d+\.\d+\.\d+$")
    tags: tuple[str, ...] = ()
    parameters: tuple[ParameterDefinition, ...] = ()
    outputs: tuple[OutputDefinition, ...] = Field(min_length=1)
    calculation_logic: str = Field(min_length=1)
    groups: tuple[ParameterGroup, ...] = ()
    business_context: bool = False

    @model_validator(mode="before")
    @classmethod
    def accept_logic_aliases(cls, data: Any) -> Any:
        """Accept `calculationLogic`, `logic` and `simulation: {logic: ...}`.

        These are the spellings used by YAML documents and web forms.
        """
        if not isinstance(data, dict) or "calculation_logic" in data:
            return data
        data = dict(data)
        if "calculationLogic" in data:
            data["calculation_logic"] = data.pop("calculationLogic")
        elif "logic" in data:
            data["calculation_logic"] = data.pop("logic")
        elif isinstance(data.get("simulation"), dict) and "logic" in data["simulation"]:
            data["calculation_logic"] = data.pop("simulation")["logic"]
        return data

    @model_validator(mode="after")
    def validate_keys(self) -> "ScenarioConfig":
        """Validate key uniqueness, reserved names and group references."""
        parameter_keys = [p.key for p in self.parameters]
        duplicates = sorted({k for k in parameter_keys if parameter_keys.count(k) > 1})
        if duplicates:
            raise ValueError(f"Duplicate parameter keys: {', '.join(duplicates)}")

        output_keys = [o.key for o in self.outputs]
        duplicates = sorted({k for k in output_keys if output_keys.count(k) > 1})
        if duplicates:
            raise ValueError(f"Duplicate output keys: {', '.join(duplicates)}")

        reserved = LIBRARY_NAMES | set(BUSINESS_CONTEXT_NAMES)
        clashes = [k for k in parameter_keys if k in reserved]
        if clashes:
            raise ValueError(
                f"Parameter keys shadow built-in calculation names: {', '.join(clashes)}"
            )

        for group in self.groups:
            for key in group.parameters:
                if key not in parameter_keys and not (
                    self.business_context and key in (ARR_PARAMETER_KEY, BUDGET_PARAMETER_KEY)
                ):
                    raise ValueError(f"Group '{group.name}' references non-existent parameter '{key}'")
        return self

    @property
    def id(self) -> str:
        """Slug of the name, used as registry id."""
        return slugify(self.name)

    @property
    def output_keys(self) -> list[str]:
        return [output.key for output in self.outputs]

    def get_parameter(self, key: str) -> ParameterDefinition | None:
        """Get a declared parameter (including injected ones) by key."""
        for parameter in self.effective_parameters():
            if parameter.key == key:
                return parameter
        return None

    def effective_parameters(self) -> tuple[ParameterDefinition, ...]:
        """Parameters as the engine sees them.

        With business_context on, ARR and budget parameters are prepended
        unless the configuration already declares them.
        """
        if not self.business_context:
            return self.parameters
        declared = {p.key for p in self.parameters}
        injected = []
        if ARR_PARAMETER_KEY not in declared:
            injected.append(
                ParameterDefinition(
                    key=ARR_PARAMETER_KEY,
                    label="Annual Recurring Revenue (ARR)",
                    type=ParameterType.NUMBER,
                    default=DEFAULT_ARR,
                    min=100_000,
                    max=1_000_000_000,
                    step=50_000,
                    description=f"Company's annual recurring revenue for {self.category} investment planning",
                )
            )
        if BUDGET_PARAMETER_KEY not in declared:
            injected.append(
                ParameterDefinition(
                    key=BUDGET_PARAMETER_KEY,
                    label="Budget Allocation (% of ARR)",
                    type=ParameterType.NUMBER,
                    default=DEFAULT_BUDGET_PERCENT,
                    min=1,
                    max=50,
                    step=0.5,
                    description="Budget as percentage of ARR for this analysis",
                )
            )
        return tuple(injected) + self.parameters

    def effective_groups(self) -> tuple[ParameterGroup, ...]:
        """Groups as the engine sees them (Business Context first when on)."""
        if not self.business_context:
            return self.groups
        context_group = ParameterGroup(
            name=BUSINESS_CONTEXT_GROUP,
            description="Company financial context for strategic decision-making",
            parameters=(ARR_PARAMETER_KEY, BUDGET_PARAMETER_KEY),
        )
        return (context_group,) + tuple(g for g in self.groups if g.name != BUSINESS_CONTEXT_GROUP)

    def metadata(self) -> dict[str, Any]:
        """Identifying metadata for listings and result headers."""
        return {
            "id": self.id,
            "name": self.name,
            "category": self.category,
            "description": self.description,
            "version": self.version,
            "tags": list(self.tags),
        }

    def to_dict(self) -> dict:
        """Serialize configuration to dictionary."""
        return self.model_dump(mode="json")

    def to_json(self, indent: int = 2) -> str:
        """Serialize configuration to JSON string."""
        return self.model_dump_json(indent=indent)

    @classmethod
    def from_dict(cls, data: dict) -> "ScenarioConfig":
        """Deserialize and validate a configuration dictionary.

        Raises:
            pydantic.ValidationError: If schema validation fails
        """
        return cls.model_validate(data)

    @classmethod
    def from_json(cls, json_str: str) -> "ScenarioConfig":
        """Deserialize and validate a configuration from JSON.

        Raises:
            pydantic.ValidationError: If JSON is invalid or validation fails
        """
        return cls.model_validate_json(json_str)


def business_context_values(values: dict[str, Any]) -> dict[str, float]:
    """Derived budget values for a resolved value map.

    Returns:
        {arr_budget, monthly_budget, quarterly_budget}
    """
    arr = float(values[ARR_PARAMETER_KEY])
    percent = float(values.get(BUDGET_PARAMETER_KEY) or DEFAULT_BUDGET_PERCENT)
    arr_budget = arr * percent / 100.0
    return {
        "arr_budget": arr_budget,
        "monthly_budget": arr_budget / 12.0,
        "quarterly_budget": arr_budget / 4.0,
    }


def load_scenario_config(config_path: str | Path) -> ScenarioConfig:
    """Load and validate a configuration from a JSON file.

    Raises:
        FileNotFoundError: If the file doesn't exist
        pydantic.ValidationError: If schema validation fails
    """
    path = Path(config_path)
    with path.open() as f:
        data = json.load(f)
    return ScenarioConfig.model_validate(data)


def save_scenario_config(config: ScenarioConfig, config_path: str | Path) -> None:
    """Save a configuration to a JSON file."""
    path = Path(config_path)
    path.parent.mkdir(parents=True, exist_ok=True)
    with path.open("w") as f:
        json.dump(config.to_dict(), f, indent=2)
