"""Restricted interpreter for scenario calculations.

Calculation text is parsed with the standard `ast` module and executed by a
small tree-walking interpreter. Nothing is ever handed to exec(), eval() or
compile(): the interpreter only knows how to run the node types in
ALLOWED_NODES, so anything else (imports, attribute access, function or
class definitions, ...) is rejected before the first step runs.

Capabilities are an allowlist:
- names bound by the caller (read-only parameters and library functions)
- local variables assigned by the calculation itself
- arithmetic, comparisons, containers, loops and calls to library callables

Every evaluated node costs one step. Exceeding the step budget or the
wall-clock deadline raises EvaluationTimeoutError.
"""

from __future__ import annotations

import ast
import logging
import operator
import textwrap
import time
from dataclasses import dataclass, field
from typing import Any, Callable, Mapping

from simforge.defaults import (
    DEFAULT_ITERATION_TIMEOUT,
    DEFAULT_MAX_STEPS,
    MAX_INT_BITS,
    MAX_SEQUENCE_LENGTH,
)
from simforge.engine.library import safe_pow
from simforge.errors import (
    EvaluationError,
    EvaluationTimeoutError,
    ForbiddenConstructError,
    ScenarioSyntaxError,
)

logger = logging.getLogger(__name__)

WRAPPER_NAME = "scenario"
LINE_OFFSET = 1  # the wrapper "def" line
DEADLINE_CHECK_INTERVAL = 64


ALLOWED_NODES: tuple[type[ast.AST], ...] = (
    # statements
    ast.Assign,
    ast.AugAssign,
    ast.If,
    ast.For,
    ast.While,
    ast.Break,
    ast.Continue,
    ast.Pass,
    ast.Return,
    ast.Expr,
    # expressions
    ast.BinOp,
    ast.UnaryOp,
    ast.BoolOp,
    ast.Compare,
    ast.IfExp,
    ast.Call,
    ast.keyword,
    ast.Name,
    ast.Constant,
    ast.List,
    ast.Tuple,
    ast.Dict,
    ast.Subscript,
    ast.Slice,
    ast.ListComp,
    ast.GeneratorExp,
    ast.comprehension,
    # contexts
    ast.Load,
    ast.Store,
    # operators
    ast.Add,
    ast.Sub,
    ast.Mult,
    ast.Div,
    ast.FloorDiv,
    ast.Mod,
    ast.Pow,
    ast.UAdd,
    ast.USub,
    ast.Not,
    ast.And,
    ast.Or,
    ast.Eq,
    ast.NotEq,
    ast.Lt,
    ast.LtE,
    ast.Gt,
    ast.GtE,
    ast.In,
    ast.NotIn,
    ast.Is,
    ast.IsNot,
)

CONSTANT_TYPES = (int, float, str, bool, type(None))

BINARY_OPERATORS: dict[type[ast.operator], Callable[[Any, Any], Any]] = {
    ast.Add: operator.add,
    ast.Sub: operator.sub,
    ast.Mult: operator.mul,
    ast.Div: operator.truediv,
    ast.FloorDiv: operator.floordiv,
    ast.Mod: operator.mod,
    ast.Pow: safe_pow,
}

UNARY_OPERATORS: dict[type[ast.unaryop], Callable[[Any], Any]] = {
    ast.UAdd: operator.pos,
    ast.USub: operator.neg,
    ast.Not: operator.not_,
}

COMPARE_OPERATORS: dict[type[ast.cmpop], Callable[[Any, Any], Any]] = {
    ast.Eq: operator.eq,
    ast.NotEq: operator.ne,
    ast.Lt: operator.lt,
    ast.LtE: operator.le,
    ast.Gt: operator.gt,
    ast.GtE: operator.ge,
    ast.In: lambda a, b: a in b,
    ast.NotIn: lambda a, b: a not in b,
    ast.Is: operator.is_,
    ast.IsNot: operator.is_not,
}

FRIENDLY_NAMES = {
    ast.Import: "import statements",
    ast.ImportFrom: "import statements",
    ast.Attribute: "attribute access",
    ast.FunctionDef: "function definitions",
    ast.AsyncFunctionDef: "function definitions",
    ast.Lambda: "lambda expressions",
    ast.ClassDef: "class definitions",
    ast.Global: "global declarations",
    ast.Nonlocal: "nonlocal declarations",
    ast.Delete: "del statements",
    ast.With: "with statements",
    ast.Try: "try statements",
    ast.Raise: "raise statements",
    ast.Yield: "yield",
    ast.YieldFrom: "yield",
    ast.Await: "await",
    ast.Starred: "star unpacking",
    ast.NamedExpr: "assignment expressions",
    ast.JoinedStr: "f-strings",
    ast.Set: "set displays",
    ast.SetComp: "set comprehensions",
    ast.DictComp: "dict comprehensions",
    ast.AnnAssign: "annotated assignments",
}


class _Return(Exception):
    def __init__(self, value: Any):
        self.value = value


class _Break(Exception):
    pass


class _Continue(Exception):
    pass


class _NoReturn:
    def __repr__(self) -> str:
        return "NO_RETURN"


NO_RETURN = _NoReturn()
"""Returned by execute() when the calculation finishes without `return`."""


@dataclass(frozen=True)
class CompiledScenario:
    """A parsed and allowlist-checked calculation.

    Compiling once per run and executing per iteration keeps parsing out of
    the hot loop. Instances hold only AST nodes and strings, so they pickle
    cleanly into worker processes.
    """

    source: str
    body: tuple[ast.stmt, ...]
    reserved: frozenset[str] = field(default_factory=frozenset)


def _line(node: ast.AST) -> int | None:
    lineno = getattr(node, "lineno", None)
    return None if lineno is None else max(lineno - LINE_OFFSET, 1)


def footprint(value: Any, limit: int = MAX_SEQUENCE_LENGTH) -> int:
    """Count the elements of a value through nested containers.

    Scalars count 0, strings their length, and lists, tuples and dicts their
    length plus the footprint of every item (shared items count each time
    they appear). Counting stops once the total passes `limit`, so the walk
    itself stays bounded even for self-referencing lists.

    Examples:
        >>> footprint([1, [2, 3], "ab"])
        7
    """
    total = 0
    pending = [value]
    while pending and total <= limit:
        item = pending.pop()
        if isinstance(item, str):
            total += len(item)
        elif isinstance(item, (list, tuple)):
            total += len(item)
            pending.extend(item)
        elif isinstance(item, dict):
            total += len(item)
            pending.extend(item.keys())
            pending.extend(item.values())
    return total


def compile_scenario(source: str, reserved: frozenset[str] | set[str] = frozenset()) -> CompiledScenario:
    """Parse calculation text and check it against the allowlist.

    Args:
        source: Calculation text (Python statement syntax ending in return)
        reserved: Names the calculation may read but never assign
            (parameter keys and library functions)

    Returns:
        CompiledScenario ready for execute()

    Raises:
        ScenarioSyntaxError: The text does not parse
        ForbiddenConstructError: The text uses a construct outside the
            allowlist, a dunder name, or assigns to a reserved name
    """
    dedented = textwrap.dedent(source)
    body = dedented if dedented.strip() else "pass"
    wrapped = f"def {WRAPPER_NAME}():\n" + textwrap.indent(body, "    ") + "\n"
    try:
        module = ast.parse(wrapped, mode="exec")
    except SyntaxError as exc:
        line = None if exc.lineno is None else max(exc.lineno - LINE_OFFSET, 1)
        raise ScenarioSyntaxError(
            f"Calculation does not parse: {exc.msg}", source=source, line=line
        ) from exc
    except (RecursionError, MemoryError) as exc:
        raise ScenarioSyntaxError("Calculation is nested too deeply to parse", source=source) from exc

    function = module.body[0]
    assert isinstance(function, ast.FunctionDef)
    reserved = frozenset(reserved)

    for node in (child for statement in function.body for child in ast.walk(statement)):
        if not isinstance(node, ALLOWED_NODES):
            what = FRIENDLY_NAMES.get(type(node), type(node).__name__)
            raise ForbiddenConstructError(
                f"Calculation uses {what}, which is not allowed", source=source, line=_line(node)
            )
        if isinstance(node, ast.Constant) and not isinstance(node.value, CONSTANT_TYPES):
            raise ForbiddenConstructError(
                f"Literal {node.value!r} is not allowed", source=source, line=_line(node)
            )
        if isinstance(node, ast.Name):
            if node.id.startswith("__"):
                raise ForbiddenConstructError(
                    f"Name '{node.id}' is not allowed", source=source, line=_line(node)
                )
            if isinstance(node.ctx, ast.Store) and node.id in reserved:
                raise ForbiddenConstructError(
                    f"Cannot assign to '{node.id}': parameters and library functions are read-only",
                    source=source,
                    line=_line(node),
                )
        if isinstance(node, ast.Call) and any(kw.arg is None for kw in node.keywords):
            raise ForbiddenConstructError(
                "Calculation uses keyword unpacking, which is not allowed", source=source, line=_line(node)
            )
        if isinstance(node, ast.Dict) and any(key is None for key in node.keys):
            raise ForbiddenConstructError(
                "Calculation uses dict unpacking, which is not allowed", source=source, line=_line(node)
            )
        if isinstance(node, ast.comprehension) and node.is_async:
            raise ForbiddenConstructError(
                "Calculation uses async comprehensions, which are not allowed", source=source, line=_line(node)
            )

    logger.debug(f"Compiled calculation: {len(function.body)} statements")
    return CompiledScenario(source=source, body=tuple(function.body), reserved=reserved)


class Interpreter:
    """Executes one CompiledScenario against bound names.

    A fresh Interpreter is created per iteration so no local variable or
    step count leaks between iterations.

    Args:
        compiled: Output of compile_scenario()
        bindings: Read-only names (parameters, derived context values)
        library: Read-only library callables and constants
        max_steps: Step budget
        timeout: Wall-clock budget in seconds (None disables it)
    """

    def __init__(
        self,
        compiled: CompiledScenario,
        bindings: Mapping[str, Any],
        library: Mapping[str, Any],
        max_steps: int = DEFAULT_MAX_STEPS,
        timeout: float | None = DEFAULT_ITERATION_TIMEOUT,
    ):
        self.compiled = compiled
        self.bindings = bindings
        self.library = library
        self.max_steps = max_steps
        self.timeout = timeout
        self.locals: dict[str, Any] = {}
        self.steps = 0
        self.line: int | None = None
        self._deadline: float | None = None
        self._started = 0.0

    # ------------------------------------------------------------------
    # Entry point
    # ------------------------------------------------------------------

    def execute(self) -> Any:
        """Run the calculation.

        Returns:
            The value of the first executed `return`, or NO_RETURN

        Raises:
            EvaluationTimeoutError: Step or wall-clock budget exceeded
            EvaluationError: Any runtime failure, chained to its cause
        """
        self._started = time.monotonic()
        if self.timeout is not None:
            self._deadline = self._started + self.timeout
        try:
            self._run_block(self.compiled.body)
        except _Return as ret:
            return ret.value
        except (_Break, _Continue):
            raise self._error("'break' or 'continue' outside a loop")
        except EvaluationError:
            raise
        except Exception as exc:
            raise self._error(f"{type(exc).__name__}: {exc}") from exc
        return NO_RETURN

    # ------------------------------------------------------------------
    # Budget
    # ------------------------------------------------------------------

    def _tick(self) -> None:
        self.steps += 1
        if self.steps > self.max_steps:
            raise EvaluationTimeoutError(
                f"Calculation exceeded step budget of {self.max_steps}",
                source=self.compiled.source,
                line=self.line,
                budget=self.max_steps,
            )
        if self._deadline is not None and self.steps % DEADLINE_CHECK_INTERVAL == 0:
            if time.monotonic() > self._deadline:
                raise EvaluationTimeoutError(
                    f"Calculation exceeded time budget of {self.timeout}s",
                    source=self.compiled.source,
                    line=self.line,
                    budget=self.timeout,
                )

    def _error(self, message: str) -> EvaluationError:
        return EvaluationError(message, source=self.compiled.source, line=self.line)

    def _bounded(self, value: Any) -> Any:
        if footprint(value) > MAX_SEQUENCE_LENGTH:
            raise self._error(f"Container exceeds limit of {MAX_SEQUENCE_LENGTH} items")
        return value

    # ------------------------------------------------------------------
    # Statements
    # ------------------------------------------------------------------

    def _run_block(self, statements) -> None:
        for statement in statements:
            self._run(statement)

    def _run(self, node: ast.stmt) -> None:
        self.line = _line(node)
        self._tick()

        if isinstance(node, ast.Assign):
            value = self._eval(node.value)
            for target in node.targets:
                self._assign(target, value)
        elif isinstance(node, ast.AugAssign):
            self._augassign(node)
        elif isinstance(node, ast.Expr):
            self._eval(node.value)
        elif isinstance(node, ast.If):
            if self._eval(node.test):
                self._run_block(node.body)
            else:
                self._run_block(node.orelse)
        elif isinstance(node, ast.For):
            self._for(node)
        elif isinstance(node, ast.While):
            self._while(node)
        elif isinstance(node, ast.Return):
            raise _Return(None if node.value is None else self._eval(node.value))
        elif isinstance(node, ast.Break):
            raise _Break()
        elif isinstance(node, ast.Continue):
            raise _Continue()
        elif isinstance(node, ast.Pass):
            pass
        else:
            raise self._error(f"Unsupported statement {type(node).__name__}")

    def _for(self, node: ast.For) -> None:
        iterable = self._eval(node.iter)
        for item in iterable:
            self._tick()
            self._assign(node.target, item)
            try:
                self._run_block(node.body)
            except _Break:
                return
            except _Continue:
                continue
        self._run_block(node.orelse)

    def _while(self, node: ast.While) -> None:
        while self._eval(node.test):
            try:
                self._run_block(node.body)
            except _Break:
                return
            except _Continue:
                continue
        self._run_block(node.orelse)

    def _assign(self, target: ast.expr, value: Any) -> None:
        if isinstance(target, ast.Name):
            if target.id in self.bindings or target.id in self.library:
                raise self._error(f"Cannot assign to read-only name '{target.id}'")
            self.locals[target.id] = value
        elif isinstance(target, (ast.Tuple, ast.List)):
            items = list(value)
            if len(items) != len(target.elts):
                raise self._error(
                    f"Cannot unpack {len(items)} values into {len(target.elts)} names"
                )
            for element, item in zip(target.elts, items):
                self._assign(element, item)
        elif isinstance(target, ast.Subscript):
            container = self._eval(target.value)
            if not isinstance(container, (list, dict)):
                raise self._error(f"Cannot assign items of {type(container).__name__}")
            container[self._eval(target.slice)] = value
            if isinstance(value, (list, tuple, dict)):
                self._bounded(container)
        else:
            raise self._error(f"Cannot assign to {type(target).__name__}")

    def _augassign(self, node: ast.AugAssign) -> None:
        op = BINARY_OPERATORS[type(node.op)]
        if isinstance(node.target, ast.Name):
            current = self._lookup(node.target.id)
            self._assign(node.target, self._binop(op, current, self._eval(node.value)))
        elif isinstance(node.target, ast.Subscript):
            container = self._eval(node.target.value)
            if not isinstance(container, (list, dict)):
                raise self._error(f"Cannot assign items of {type(container).__name__}")
            key = self._eval(node.target.slice)
            container[key] = self._binop(op, container[key], self._eval(node.value))
            if isinstance(container[key], (list, tuple, dict)):
                self._bounded(container)
        else:
            raise self._error(f"Cannot assign to {type(node.target).__name__}")

    # ------------------------------------------------------------------
    # Expressions
    # ------------------------------------------------------------------

    def _lookup(self, name: str) -> Any:
        if name in self.locals:
            return self.locals[name]
        if name in self.bindings:
            return self.bindings[name]
        if name in self.library:
            return self.library[name]
        raise self._error(f"Undeclared identifier '{name}'")

    def _eval(self, node: ast.expr) -> Any:
        self._tick()

        if isinstance(node, ast.Constant):
            return node.value
        if isinstance(node, ast.Name):
            return self._lookup(node.id)
        if isinstance(node, ast.BinOp):
            return self._binop(BINARY_OPERATORS[type(node.op)], self._eval(node.left), self._eval(node.right))
        if isinstance(node, ast.UnaryOp):
            return UNARY_OPERATORS[type(node.op)](self._eval(node.operand))
        if isinstance(node, ast.BoolOp):
            return self._boolop(node)
        if isinstance(node, ast.Compare):
            return self._compare(node)
        if isinstance(node, ast.IfExp):
            return self._eval(node.body) if self._eval(node.test) else self._eval(node.orelse)
        if isinstance(node, ast.Call):
            return self._call(node)
        if isinstance(node, ast.List):
            return self._bounded([self._eval(element) for element in node.elts])
        if isinstance(node, ast.Tuple):
            return self._bounded(tuple(self._eval(element) for element in node.elts))
        if isinstance(node, ast.Dict):
            return self._bounded({self._eval(key): self._eval(value) for key, value in zip(node.keys, node.values)})
        if isinstance(node, ast.Subscript):
            return self._eval(node.value)[self._eval(node.slice)]
        if isinstance(node, ast.Slice):
            return slice(
                None if node.lower is None else self._eval(node.lower),
                None if node.upper is None else self._eval(node.upper),
                None if node.step is None else self._eval(node.step),
            )
        if isinstance(node, (ast.ListComp, ast.GeneratorExp)):
            return self._comprehension(node)
        raise self._error(f"Unsupported expression {type(node).__name__}")

    def _binop(self, op: Callable[[Any, Any], Any], left: Any, right: Any) -> Any:
        if op is operator.mul:
            if isinstance(left, (str, list, tuple)) or isinstance(right, (str, list, tuple)):
                sequence, times = (left, right) if isinstance(left, (str, list, tuple)) else (right, left)
                if isinstance(times, int) and footprint(sequence) * max(times, 0) > MAX_SEQUENCE_LENGTH:
                    raise self._error(f"Sequence repetition exceeds limit of {MAX_SEQUENCE_LENGTH}")
            elif (
                isinstance(left, int)
                and isinstance(right, int)
                and left.bit_length() + right.bit_length() > MAX_INT_BITS
            ):
                return float(left) * float(right)
        elif op is operator.add:
            if isinstance(left, (str, list, tuple)) and isinstance(right, (str, list, tuple)):
                if footprint(left) + footprint(right) > MAX_SEQUENCE_LENGTH:
                    raise self._error(f"Sequence concatenation exceeds limit of {MAX_SEQUENCE_LENGTH}")
        elif op is operator.mod:
            if isinstance(left, str):
                raise self._error("String formatting with '%' is not allowed")
        return op(left, right)

    def _boolop(self, node: ast.BoolOp) -> Any:
        value: Any = None
        if isinstance(node.op, ast.And):
            for operand in node.values:
                value = self._eval(operand)
                if not value:
                    return value
            return value
        for operand in node.values:
            value = self._eval(operand)
            if value:
                return value
        return value

    def _compare(self, node: ast.Compare) -> bool:
        left = self._eval(node.left)
        for op, comparator in zip(node.ops, node.comparators):
            right = self._eval(comparator)
            if not COMPARE_OPERATORS[type(op)](left, right):
                return False
            left = right
        return True

    def _call(self, node: ast.Call) -> Any:
        function = self._eval(node.func)
        if not callable(function):
            raise self._error(f"'{type(function).__name__}' value is not callable")
        args = [self._eval(arg) for arg in node.args]
        kwargs = {keyword.arg: self._eval(keyword.value) for keyword in node.keywords}
        return function(*args, **kwargs)

    def _comprehension(self, node: ast.ListComp | ast.GeneratorExp) -> list[Any]:
        saved = self.locals
        self.locals = dict(saved)
        results: list[Any] = []
        try:
            self._generate(node.generators, 0, node.elt, results)
        finally:
            self.locals = saved
        return results

    def _generate(
        self, generators: list[ast.comprehension], index: int, element: ast.expr, out: list[Any], size: int = 0
    ) -> int:
        """Append matching elements to `out`; returns its running footprint."""
        if index == len(generators):
            value = self._eval(element)
            out.append(value)
            size += 1 + footprint(value)
            if size > MAX_SEQUENCE_LENGTH:
                raise self._error(f"Comprehension exceeds limit of {MAX_SEQUENCE_LENGTH} items")
            return size
        generator = generators[index]
        for item in self._eval(generator.iter):
            self._tick()
            self._assign(generator.target, item)
            if all(self._eval(condition) for condition in generator.ifs):
                size = self._generate(generators, index + 1, element, out, size)
        return size


def execute(
    compiled: CompiledScenario,
    bindings: Mapping[str, Any],
    library: Mapping[str, Any],
    max_steps: int = DEFAULT_MAX_STEPS,
    timeout: float | None = DEFAULT_ITERATION_TIMEOUT,
) -> Any:
    """Execute a compiled calculation once. See Interpreter.execute()."""
    return Interpreter(compiled, bindings, library, max_steps=max_steps, timeout=timeout).execute()
