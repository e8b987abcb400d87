"""Restricted formula evaluation for formula-type components.

Formulas are arithmetic expressions over context variables, written either
as bare names (``base_salary * 0.05``) or braced (``{hours} * {rate}``).
They are parsed with Python's ``ast`` module in eval mode and checked
against a fixed node set before evaluation, so nothing outside plain
arithmetic can run.

Allowed:
  - Arithmetic: +, -, *, /, %, unary +/-
  - Comparisons: <, <=, >, >=, ==, !=
  - Logical: and, or, not
  - Conditional: ternary (a if cond else b) and IF(cond, a, b)
  - Functions: MIN, MAX, ABS, ROUND, FLOOR, CEIL (case-insensitive)
  - Literals: numbers, True, False

All arithmetic is done in Decimal.
"""

from __future__ import annotations

import ast
import re
from collections.abc import Mapping
from dataclasses import dataclass, field
from decimal import ROUND_CEILING, ROUND_FLOOR, ROUND_HALF_UP, Decimal, InvalidOperation
from functools import lru_cache
from typing import Any

from compensation_engine.errors import FormulaError

ALLOWED_FUNCTIONS: frozenset[str] = frozenset(
    {"min", "max", "abs", "round", "floor", "ceil", "if"}
)

_BRACED_VARIABLE = re.compile(r"\{\s*([A-Za-z_][A-Za-z0-9_]*)\s*\}")

_BIN_OPS = (ast.Add, ast.Sub, ast.Mult, ast.Div, ast.Mod)
_COMPARE_OPS = (ast.Eq, ast.NotEq, ast.Lt, ast.LtE, ast.Gt, ast.GtE)


@dataclass(frozen=True)
class ParsedFormula:
    """A validated formula ready for evaluation."""

    expression: str
    source: str
    tree: ast.Expression
    variables: tuple[str, ...]


@dataclass
class FormulaValidation:
    """Result of validating a formula."""

    valid: bool
    errors: list[str] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)
    variables: list[str] = field(default_factory=list)


def _normalize(expression: Any) -> str:
    if not isinstance(expression, str) or not expression.strip():
        raise FormulaError(str(expression), "Formula must be a non-empty string")

    source = _BRACED_VARIABLE.sub(r"\1", expression.strip())
    if "{" in source or "}" in source:
        raise FormulaError(expression, "Unbalanced braces")

    depth = 0
    for char in source:
        if char == "(":
            depth += 1
        elif char == ")":
            depth -= 1
            if depth < 0:
                break
    if depth != 0:
        raise FormulaError(expression, "Unbalanced parentheses")
    return source


def _check_node(node: ast.AST, errors: list[str], names: list[str]) -> None:
    """Recursively validate an AST node against the allowed set."""

    if isinstance(node, ast.BinOp):
        if not isinstance(node.op, _BIN_OPS):
            errors.append(f"Disallowed binary operator: {type(node.op).__name__}")
        _check_node(node.left, errors, names)
        _check_node(node.right, errors, names)

    elif isinstance(node, ast.UnaryOp):
        if not isinstance(node.op, (ast.UAdd, ast.USub, ast.Not)):
            errors.append(f"Disallowed unary operator: {type(node.op).__name__}")
        _check_node(node.operand, errors, names)

    elif isinstance(node, ast.BoolOp):
        for value in node.values:
            _check_node(value, errors, names)

    elif isinstance(node, ast.Compare):
        for op in node.ops:
            if not isinstance(op, _COMPARE_OPS):
                errors.append(f"Disallowed comparison: {type(op).__name__}")
        _check_node(node.left, errors, names)
        for comparator in node.comparators:
            _check_node(comparator, errors, names)

    elif isinstance(node, ast.IfExp):
        _check_node(node.test, errors, names)
        _check_node(node.body, errors, names)
        _check_node(node.orelse, errors, names)

    elif isinstance(node, ast.Call):
        if not isinstance(node.func, ast.Name) or node.func.id.lower() not in ALLOWED_FUNCTIONS:
            errors.append(f"Disallowed function call: {ast.unparse(node.func)}")
            return
        if node.keywords:
            errors.append(f"Keyword arguments are not allowed in {node.func.id}()")
        for arg in node.args:
            _check_node(arg, errors, names)

    elif isinstance(node, ast.Name):
        if node.id not in names:
            names.append(node.id)

    elif isinstance(node, ast.Constant):
        if not isinstance(node.value, (int, float, bool)):
            errors.append(f"Disallowed constant type: {type(node.value).__name__}")

    else:
        errors.append(f"Disallowed expression: {type(node).__name__}")


@lru_cache(maxsize=512)
def _parse_cached(expression: str) -> ParsedFormula:
    source = _normalize(expression)
    try:
        tree = ast.parse(source, mode="eval")
    except SyntaxError as e:
        raise FormulaError(expression, f"Syntax error: {e.msg}") from e

    errors: list[str] = []
    names: list[str] = []
    _check_node(tree.body, errors, names)
    if errors:
        raise FormulaError(expression, errors[0])

    return ParsedFormula(
        expression=expression,
        source=source,
        tree=tree,
        variables=tuple(names),
    )


def parse(expression: str) -> ParsedFormula:
    """Parse and validate a formula.

    Raises:
        FormulaError: If the formula is empty, unbalanced, has a syntax error
            or uses anything outside the allowed node set.
    """
    if not isinstance(expression, str):
        raise FormulaError(str(expression), "Formula must be a non-empty string")
    return _parse_cached(expression)


def extract_variables(expression: str) -> list[str]:
    """Return the unique variable names referenced by a formula, in order."""
    return list(parse(expression).variables)


def validate(formula: ParsedFormula | str) -> FormulaValidation:
    """Validate a formula without evaluating it."""
    try:
        parsed = formula if isinstance(formula, ParsedFormula) else parse(formula)
    except FormulaError as e:
        return FormulaValidation(valid=False, errors=[e.message])

    warnings: list[str] = []
    if not parsed.variables:
        warnings.append("Formula references no variables; a fixed component may be simpler")
    for node in ast.walk(parsed.tree):
        if (
            isinstance(node, ast.BinOp)
            and isinstance(node.op, (ast.Div, ast.Mod))
            and isinstance(node.right, ast.Constant)
            and node.right.value == 0
        ):
            warnings.append("Formula divides by a literal zero")
            break

    return FormulaValidation(
        valid=True,
        warnings=warnings,
        variables=list(parsed.variables),
    )


def _to_number(name: str, value: Any, expression: str) -> Decimal:
    if value is None:
        raise FormulaError(expression, f"Variable '{name}' is not defined")
    if isinstance(value, bool):
        return Decimal(int(value))
    try:
        return value if isinstance(value, Decimal) else Decimal(str(value))
    except (InvalidOperation, ValueError):
        raise FormulaError(expression, f"Variable '{name}' has invalid numeric value") from None


class _Evaluator:
    def __init__(self, parsed: ParsedFormula, variables: Mapping[str, Any]):
        self.parsed = parsed
        self.variables = variables

    def fail(self, message: str) -> FormulaError:
        return FormulaError(self.parsed.expression, message)

    def eval(self, node: ast.AST) -> Decimal:
        if isinstance(node, ast.Constant):
            return Decimal(int(node.value)) if isinstance(node.value, bool) else Decimal(str(node.value))

        if isinstance(node, ast.Name):
            if node.id not in self.variables:
                raise self.fail(f"Variable '{node.id}' is not defined")
            return _to_number(node.id, self.variables[node.id], self.parsed.expression)

        if isinstance(node, ast.UnaryOp):
            operand = self.eval(node.operand)
            if isinstance(node.op, ast.USub):
                return -operand
            if isinstance(node.op, ast.Not):
                return Decimal(0) if operand else Decimal(1)
            return operand

        if isinstance(node, ast.BinOp):
            left = self.eval(node.left)
            right = self.eval(node.right)
            if isinstance(node.op, ast.Add):
                return left + right
            if isinstance(node.op, ast.Sub):
                return left - right
            if isinstance(node.op, ast.Mult):
                return left * right
            if right == 0:
                raise self.fail("Division by zero")
            if isinstance(node.op, ast.Div):
                return left / right
            return left % right

        if isinstance(node, ast.BoolOp):
            if isinstance(node.op, ast.And):
                result = Decimal(1)
                for value in node.values:
                    result = self.eval(value)
                    if not result:
                        return result
                return result
            result = Decimal(0)
            for value in node.values:
                result = self.eval(value)
                if result:
                    return result
            return result

        if isinstance(node, ast.Compare):
            left = self.eval(node.left)
            for op, comparator in zip(node.ops, node.comparators):
                right = self.eval(comparator)
                if not _compare(op, left, right):
                    return Decimal(0)
                left = right
            return Decimal(1)

        if isinstance(node, ast.IfExp):
            return self.eval(node.body) if self.eval(node.test) else self.eval(node.orelse)

        if isinstance(node, ast.Call):
            return self.call(node)

        raise self.fail(f"Disallowed expression: {type(node).__name__}")

    def call(self, node: ast.Call) -> Decimal:
        name = node.func.id.lower()  # type: ignore[attr-defined]
        if name == "if":
            if len(node.args) != 3:
                raise self.fail("IF() takes exactly 3 arguments")
            test, body, orelse = node.args
            return self.eval(body) if self.eval(test) else self.eval(orelse)

        args = [self.eval(arg) for arg in node.args]
        if name in ("min", "max"):
            if not args:
                raise self.fail(f"{name.upper()}() requires at least one argument")
            return min(args) if name == "min" else max(args)
        if name == "abs":
            self._arity(name, args, 1)
            return abs(args[0])
        if name == "round":
            if len(args) not in (1, 2):
                raise self.fail("ROUND() takes 1 or 2 arguments")
            places = int(args[1]) if len(args) == 2 else 0
            return args[0].quantize(Decimal(1).scaleb(-places), rounding=ROUND_HALF_UP)
        if name == "floor":
            self._arity(name, args, 1)
            return args[0].to_integral_value(rounding=ROUND_FLOOR)
        self._arity(name, args, 1)
        return args[0].to_integral_value(rounding=ROUND_CEILING)

    def _arity(self, name: str, args: list[Decimal], expected: int) -> None:
        if len(args) != expected:
            raise self.fail(f"{name.upper()}() takes exactly {expected} argument(s)")


def _compare(op: ast.cmpop, left: Decimal, right: Decimal) -> bool:
    if isinstance(op, ast.Eq):
        return left == right
    if isinstance(op, ast.NotEq):
        return left != right
    if isinstance(op, ast.Lt):
        return left < right
    if isinstance(op, ast.LtE):
        return left <= right
    if isinstance(op, ast.Gt):
        return left > right
    return left >= right


def evaluate(formula: ParsedFormula | str, variables: Mapping[str, Any]) -> Decimal:
    """Evaluate a formula against a variable mapping.

    Raises:
        FormulaError: On parse errors, undefined or non-numeric variables,
            or division by zero.
    """
    parsed = formula if isinstance(formula, ParsedFormula) else parse(formula)
    try:
        return _Evaluator(parsed, variables).eval(parsed.tree.body)
    except InvalidOperation as e:
        raise FormulaError(parsed.expression, f"Arithmetic error: {e}") from e
