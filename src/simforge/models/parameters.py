"""Parameter model for simforge.

Parameters are typed inputs to a scenario calculation. Each definition is
validated once when the configuration loads and is immutable afterwards.
resolve_values() merges caller overrides with defaults and raises a typed
ParameterError naming the key and the offending value.
"""

from __future__ import annotations

import keyword
import math
from enum import Enum
from typing import Any, Mapping, Sequence, Union

from pydantic import BaseModel, ConfigDict, Field, ValidationInfo, field_validator, model_validator

from simforge.errors import (
    ParameterChoiceError,
    ParameterRangeError,
    ParameterStepError,
    ParameterTypeError,
    UnknownParameterError,
)

ParameterValue = Union[bool, int, float, str]
ValueMap = dict[str, ParameterValue]

STEP_TOLERANCE = 1e-4

_TRUE_STRINGS = {"true", "yes", "on", "1"}
_FALSE_STRINGS = {"false", "no", "off", "0"}


def is_valid_key(key: str) -> bool:
    """Check that a key can be bound as a variable inside a calculation.

    Examples:
        >>> is_valid_key("monthlyRevenue")
        True
        >>> is_valid_key("for")
        False
        >>> is_valid_key("__class__")
        False
    """
    return key.isidentifier() and not keyword.iskeyword(key) and not key.startswith("__")


def _is_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


def _is_finite(value: int | float) -> bool:
    # ints beyond the float range overflow in isfinite()
    try:
        return math.isfinite(value)
    except OverflowError:
        return False


class ParameterType(str, Enum):
    """Declared type of a parameter.

    Inherits from str for proper JSON serialization.
    """

    NUMBER = "number"
    BOOLEAN = "boolean"
    STRING = "string"
    SELECT = "select"


class ParameterDefinition(BaseModel):
    """A typed scenario input.

    Attributes:
        key: Identifier bound inside the calculation
        label: Human-readable name
        type: number, boolean, string or select
        default: Value used when no override is given
        min: Inclusive lower bound (number only)
        max: Inclusive upper bound (number only)
        step: Increment that values must align to, counted from min
        options: Allowed values (select only)
        description: Free-text help
    """

    model_config = ConfigDict(frozen=True, extra="forbid")

    key: str = Field(min_length=1)
    label: str = Field(min_length=1)
    type: ParameterType
    default: ParameterValue
    min: float | None = None
    max: float | None = None
    step: float | None = Field(default=None, gt=0)
    options: tuple[str, ...] | None = None
    description: str = ""

    @field_validator("key")
    @classmethod
    def validate_key(cls, v: str) -> str:
        if not is_valid_key(v):
            raise ValueError(f"Parameter key '{v}' is not a valid identifier")
        return v

    @field_validator("default", mode="before")
    @classmethod
    def normalize_select_default(cls, v: Any, info: ValidationInfo) -> Any:
        """Store a numeric select default as the option text it names."""
        if info.data.get("type") == ParameterType.SELECT and _is_number(v):
            return str(v)
        return v

    @model_validator(mode="after")
    def validate_default(self) -> "ParameterDefinition":
        """Validate that the default satisfies the declared type and bounds."""
        if self.type == ParameterType.NUMBER:
            if not _is_number(self.default) or not _is_finite(self.default):
                raise ValueError(f"Default for number parameter '{self.key}' must be a finite number")
            if self.min is not None and self.max is not None and self.min > self.max:
                raise ValueError(
                    f"Parameter '{self.key}' has invalid range: min ({self.min}) > max ({self.max})"
                )
            if self.min is not None and self.default < self.min:
                raise ValueError(f"Default {self.default} for '{self.key}' is below minimum {self.min}")
            if self.max is not None and self.default > self.max:
                raise ValueError(f"Default {self.default} for '{self.key}' is above maximum {self.max}")
        elif self.type == ParameterType.BOOLEAN:
            if not isinstance(self.default, bool):
                raise ValueError(f"Default for boolean parameter '{self.key}' must be true or false")
        elif self.type == ParameterType.STRING:
            if not isinstance(self.default, str):
                raise ValueError(f"Default for string parameter '{self.key}' must be a string")
        elif self.type == ParameterType.SELECT:
            if not self.options:
                raise ValueError(f"Select parameter '{self.key}' must have options")
            if self.default not in self.options:
                raise ValueError(
                    f"Default {self.default!r} for '{self.key}' must be one of: {', '.join(self.options)}"
                )
        return self

    def coerce(self, value: Any) -> ParameterValue:
        """Coerce an override to this parameter's type.

        Numeric strings are accepted for number parameters and
        "true"/"false" style strings for booleans, since overrides often
        arrive as command-line text.

        Raises:
            ParameterTypeError: If the value cannot be coerced
        """
        if value is None:
            raise ParameterTypeError(self.key, value, self.type.value)

        if self.type == ParameterType.NUMBER:
            if _is_number(value):
                number = value
            elif isinstance(value, str):
                try:
                    number = float(value.strip())
                except ValueError:
                    raise ParameterTypeError(self.key, value, "number") from None
            else:
                raise ParameterTypeError(self.key, value, "number")
            if not _is_finite(number):
                raise ParameterTypeError(self.key, value, "finite number")
            return number

        if self.type == ParameterType.BOOLEAN:
            if isinstance(value, bool):
                return value
            if isinstance(value, int) and value in (0, 1):
                return bool(value)
            if isinstance(value, str):
                lowered = value.strip().lower()
                if lowered in _TRUE_STRINGS:
                    return True
                if lowered in _FALSE_STRINGS:
                    return False
            raise ParameterTypeError(self.key, value, "boolean")

        # string and select
        if isinstance(value, str):
            return value
        if _is_number(value):
            return str(value)
        raise ParameterTypeError(self.key, value, "string")

    def check(self, value: Any) -> ParameterValue:
        """Coerce a value and verify it against bounds, step and options.

        Returns:
            The coerced value

        Raises:
            ParameterTypeError: Wrong, non-coercible type
            ParameterRangeError: Number outside [min, max]
            ParameterStepError: Number not aligned to step
            ParameterChoiceError: Select value not in options
        """
        coerced = self.coerce(value)

        if self.type == ParameterType.NUMBER:
            if self.min is not None and coerced < self.min:
                raise ParameterRangeError(self.key, coerced, "min", self.min)
            if self.max is not None and coerced > self.max:
                raise ParameterRangeError(self.key, coerced, "max", self.max)
            if self.step is not None and self.min is not None:
                steps = round((coerced - self.min) / self.step)
                if abs(coerced - (self.min + steps * self.step)) > STEP_TOLERANCE:
                    raise ParameterStepError(self.key, coerced, self.step)

        elif self.type == ParameterType.SELECT:
            if coerced not in (self.options or ()):
                raise ParameterChoiceError(self.key, coerced, list(self.options or ()))

        return coerced


class ParameterGroup(BaseModel):
    """A named set of parameters shown together."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    name: str = Field(min_length=1)
    description: str = ""
    parameters: tuple[str, ...] = Field(min_length=1)


def default_values(definitions: Sequence[ParameterDefinition]) -> ValueMap:
    """Return {key: default} for every definition."""
    return {definition.key: definition.default for definition in definitions}


def resolve_values(
    definitions: Sequence[ParameterDefinition],
    overrides: Mapping[str, Any] | None = None,
) -> ValueMap:
    """Merge overrides with defaults and validate the result.

    Pure function: neither the definitions nor the overrides are modified.

    Args:
        definitions: Declared parameters
        overrides: Optional {key: value} supplied by the caller

    Returns:
        {key: value} for every declared parameter, in declaration order

    Raises:
        UnknownParameterError: An override names an undeclared key
        ParameterTypeError, ParameterRangeError, ParameterStepError,
        ParameterChoiceError: An override is invalid
    """
    overrides = dict(overrides or {})
    by_key = {definition.key: definition for definition in definitions}

    for key in overrides:
        if key not in by_key:
            raise UnknownParameterError(key, list(by_key))

    values: ValueMap = {}
    for definition in definitions:
        if definition.key in overrides:
            values[definition.key] = definition.check(overrides[definition.key])
        else:
            values[definition.key] = definition.default
    return values


def grouped_parameters(
    definitions: Sequence[ParameterDefinition],
    groups: Sequence[ParameterGroup] = (),
) -> dict[str, Any]:
    """Lay parameters out by group for forms and listings.

    Returns:
        {"groups": [{name, description, parameters: [ParameterDefinition]}],
         "ungrouped": [ParameterDefinition]}

    Raises:
        ValueError: If a group references an undeclared parameter
    """
    by_key = {definition.key: definition for definition in definitions}
    grouped_keys: set[str] = set()
    layout_groups = []
    for group in groups:
        members = []
        for key in group.parameters:
            if key not in by_key:
                raise ValueError(f"Parameter '{key}' in group '{group.name}' does not exist")
            grouped_keys.add(key)
            members.append(by_key[key])
        layout_groups.append(
            {"name": group.name, "description": group.description, "parameters": members}
        )

    ungrouped = [definition for definition in definitions if definition.key not in grouped_keys]
    return {"groups": layout_groups, "ungrouped": ungrouped}
