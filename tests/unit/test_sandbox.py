"""Tests for the restricted calculation interpreter.

Tests verify:
1. Allowed statements and expressions evaluate like Python
2. Forbidden constructs are rejected before anything runs
3. Undeclared names and runtime failures raise EvaluationError with a line
4. Step and time budgets stop runaway calculations
5. Resource guards stop memory blow-ups and unbounded host calls
"""

import contextlib
import time

import pytest

from simforge.engine.library import LIBRARY_NAMES, build_namespace
from simforge.engine.random_source import RandomSource
from simforge.engine.sandbox import NO_RETURN, compile_scenario, execute, footprint
from simforge.errors import (
    EvaluationError,
    EvaluationTimeoutError,
    ForbiddenConstructError,
    ScenarioSyntaxError,
)


def run(source, bindings=None, max_steps=100_000, timeout=1.0, seed=1):
    bindings = bindings or {}
    compiled = compile_scenario(source, frozenset(bindings) | LIBRARY_NAMES)
    return execute(compiled, bindings, build_namespace(RandomSource(seed)), max_steps=max_steps, timeout=timeout)


class TestAllowedLanguage:
    """Tests for the supported subset."""

    def test_return_dict(self):
        assert run('return {"x": 1 + 2 * 3}') == {"x": 7}

    def test_bindings_visible(self):
        assert run('return {"y": investment * 2}', {"investment": 500}) == {"y": 1000}

    def test_locals_and_if(self):
        source = """
revenue = price * units
if revenue > 1000:
    tier = "high"
elif revenue > 100:
    tier = "mid"
else:
    tier = "low"
return {"revenue": revenue, "tier": tier}
"""
        assert run(source, {"price": 10, "units": 50}) == {"revenue": 500, "tier": "mid"}

    def test_for_loop_with_break_and_else(self):
        source = """
total = 0
for month in range(12):
    if month == 6:
        break
    total += month
else:
    total = -1
return {"total": total}
"""
        assert run(source) == {"total": 15}

    def test_while_continue(self):
        source = """
i = 0
odd = 0
while i < 10:
    i += 1
    if i % 2 == 0:
        continue
    odd += 1
return {"odd": odd}
"""
        assert run(source) == {"odd": 5}

    def test_tuple_unpacking_and_subscripts(self):
        source = """
low, high = 10, 20
values = [low, high]
values[0] = 5
lookup = {"a": 1}
lookup["b"] = 2
return {"first": values[0], "b": lookup["b"], "tail": values[-1:][0]}
"""
        assert run(source) == {"first": 5, "b": 2, "tail": 20}

    def test_comprehension_and_library(self):
        source = """
flows = [-1000] + [300 for year in range(5)]
return {"npv": round(npv(flows, 0.1), 2), "n": len(flows)}
"""
        result = run(source)
        assert result["n"] == 6
        assert result["npv"] == pytest.approx(137.24, abs=0.01)

    def test_comprehension_scope_does_not_leak(self):
        source = """
squares = [k * k for k in range(3)]
return {"k_defined": len(squares)}
"""
        assert run(source) == {"k_defined": 3}
        with pytest.raises(EvaluationError, match="Undeclared identifier 'k'"):
            run('squares = [k for k in range(3)]\nreturn {"k": k}')

    def test_boolean_ops_and_ternary(self):
        source = 'return {"v": 1 if (flag and not False) or 0 < 1 < 2 else 0}'
        assert run(source, {"flag": True}) == {"v": 1}

    def test_keyword_arguments(self):
        assert run('return {"r": roi(1000, 1500, timeframe=2)}') == {"r": pytest.approx(25.0)}

    def test_indented_source_dedented(self):
        source = """
            x = 1
            return {"x": x}
        """
        assert run(source) == {"x": 1}

    def test_no_return(self):
        assert run("x = 1") is NO_RETURN

    def test_blank_logic(self):
        assert run("   ") is NO_RETURN

    def test_random_is_deterministic(self):
        assert run('return {"u": random()}', seed=3) == run('return {"u": random()}', seed=3)


class TestForbiddenConstructs:
    """Tests for constructs rejected before execution."""

    @pytest.mark.parametrize(
        "source",
        [
            "import os",
            "from os import path",
            'x = "a".upper()',
            "def f():\n    return 1",
            "class A:\n    pass",
            "f = lambda: 1",
            "global x",
            "x = 1\ndel x",
            "with open('f') as fh:\n    pass",
            "try:\n    x = 1\nexcept Exception:\n    pass",
            "raise ValueError()",
            "x = {1, 2}",
            'x = f"{1}"',
            "x = [*range(3)]",
            "x = (y := 1)",
            "x = 1 << 2",
            "x = __builtins__",
            "x = {k: k for k in range(3)}",
        ],
    )
    def test_rejected(self, source):
        with pytest.raises(ForbiddenConstructError):
            compile_scenario(source)

    def test_rejected_is_evaluation_error(self):
        with pytest.raises(EvaluationError):
            compile_scenario("import os")

    def test_message_names_construct_and_line(self):
        with pytest.raises(ForbiddenConstructError) as exc_info:
            compile_scenario('x = 1\ny = "a".join([])')
        assert "attribute access" in str(exc_info.value)
        assert exc_info.value.line == 2

    def test_assigning_parameter_rejected(self):
        with pytest.raises(ForbiddenConstructError, match="read-only"):
            compile_scenario("investment = 5", frozenset({"investment"}))

    def test_assigning_library_name_rejected(self):
        with pytest.raises(ForbiddenConstructError, match="read-only"):
            compile_scenario("random = 5", LIBRARY_NAMES)

    def test_syntax_error(self):
        with pytest.raises(ScenarioSyntaxError) as exc_info:
            compile_scenario("x = = 1")
        assert exc_info.value.line == 1
        assert exc_info.value.__cause__ is not None


class TestRuntimeErrors:
    """Tests for failures during execution."""

    def test_undeclared_identifier(self):
        with pytest.raises(EvaluationError, match="Undeclared identifier 'secret'") as exc_info:
            run('return {"x": secret}')
        assert exc_info.value.line == 1

    def test_open_is_not_available(self):
        with pytest.raises(EvaluationError, match="Undeclared identifier 'open'"):
            run('open("/etc/passwd")')

    def test_division_by_zero_chained(self):
        with pytest.raises(EvaluationError, match="ZeroDivisionError") as exc_info:
            run('x = 1\nreturn {"x": x / 0}')
        assert isinstance(exc_info.value.__cause__, ZeroDivisionError)
        assert exc_info.value.line == 2
        assert "x / 0" in str(exc_info.value)

    def test_calling_non_callable(self):
        with pytest.raises(EvaluationError, match="not callable"):
            run("x = 5\nx()")

    def test_string_formatting_rejected(self):
        with pytest.raises(EvaluationError, match="String formatting"):
            run('x = "%s" % 5')

    def test_numeric_modulo_allowed(self):
        assert run('return {"m": 7 % 3}') == {"m": 1}


class TestBudgets:
    """Tests for step and time budgets."""

    def test_infinite_loop_step_budget(self):
        with pytest.raises(EvaluationTimeoutError, match="step budget") as exc_info:
            run("while True:\n    pass", max_steps=10_000, timeout=None)
        assert exc_info.value.budget == 10_000

    def test_infinite_loop_time_budget(self):
        with pytest.raises(EvaluationTimeoutError, match="time budget"):
            run("while True:\n    pass", max_steps=10 ** 12, timeout=0.05)

    def test_timeout_is_evaluation_error(self):
        with pytest.raises(EvaluationError):
            run("while True:\n    pass", max_steps=1000)


class TestResourceGuards:
    """Tests for memory guards and bounded library calls."""

    def test_sequence_repetition_limit(self):
        with pytest.raises(EvaluationError, match="repetition"):
            run('x = "a" * 10 ** 9')

    def test_huge_power_becomes_overflow(self):
        with pytest.raises(EvaluationError, match="OverflowError"):
            run("x = 10 ** 10 ** 9")

    def test_huge_range_rejected(self):
        with pytest.raises(EvaluationError, match="exceeds limit"):
            run("x = sum(range(10 ** 12))")

    def test_nested_repetition_counts_inner_items(self):
        with pytest.raises(EvaluationError, match="repetition"):
            run("rows = [[0] * 4000] * 4000")

    def test_nested_doubling_rejected(self):
        source = """
x = [0]
for i in range(40):
    x = [x, x]
"""
        with pytest.raises(EvaluationError, match="Container exceeds limit"):
            run(source)

    def test_comprehension_counts_nested_items(self):
        with pytest.raises(EvaluationError, match="Comprehension exceeds limit"):
            run("a = [0] * 100000\nb = [a for i in range(10)]")

    def test_item_assignment_counts_nested_items(self):
        with pytest.raises(EvaluationError, match="Container exceeds limit"):
            run("a = [0] * 100000\nb = [0, 0]\nb[0] = a\nb[1] = a")

    def test_self_reference_rejected(self):
        with pytest.raises(EvaluationError, match="Container exceeds limit"):
            run("a = [0]\na[0] = a")

    def test_round_decimals_bounded(self):
        with pytest.raises(EvaluationError, match="decimals must be within"):
            run('return {"x": round(1.5, 3000000)}', timeout=0.1)

    def test_sum_of_lists_rejected(self):
        with pytest.raises(EvaluationError, match="numbers only"):
            run('return {"x": len(sum([[0] * 10] * 10, []))}', timeout=0.1)

    def test_str_of_container_rejected(self):
        with pytest.raises(EvaluationError, match="scalars only"):
            run('return {"x": len(str([[0] * 300] * 300))}', timeout=0.1)

    @pytest.mark.parametrize(
        "expression",
        [
            "round(1.5, 10 ** 6)",
            "sum([[0] * 300] * 300, [])",
            "str([[0] * 300] * 300)",
            "min([[0] * 300] * 300)",
            "max(range(10 ** 6))",
            "len(range(10 ** 7))",
            "pow(10, 10 ** 9)",
            "clv(2 ** 49000, 2 ** 49000, 2 ** 49000, 2 ** 49000)",
            "npv([1] * 100000, 0.1)",
            "confidence_interval([[0] * 300] * 300)",
            "choice([0] * 100000)",
            "[0] * 100000 == [0] * 100000",
        ],
    )
    def test_single_library_call_stays_bounded(self, expression):
        started = time.monotonic()
        with contextlib.suppress(EvaluationError):
            run(f'x = {expression}\nreturn {{"x": 1}}', timeout=0.1)
        assert time.monotonic() - started < 1.0


class TestFootprint:
    """Tests for footprint()."""

    def test_counts_nested_items(self):
        assert footprint(5) == 0
        assert footprint("abc") == 3
        assert footprint([1, [2, 3], "ab"]) == 7
        assert footprint({"k": [1, 2]}) == 4

    def test_shared_items_count_each_time(self):
        inner = [0] * 10
        assert footprint([inner, inner]) == 22

    def test_walk_stops_past_limit(self):
        looped = [0]
        looped[0] = looped
        assert footprint(looped, limit=100) == 101
