"""
Restricted formula grammar for recurring template amounts.

Template lines store debit/credit amounts as small expressions.  They are
parsed with ``ast`` and walked by a whitelist interpreter; nothing is ever
passed to ``eval``.

Allowed:
  - Numeric literals (converted to Decimal through their text form)
  - Binary operators: +, -, *, /
  - Unary + and -
  - Parentheses
  - Period variables: day, month, year, quarter, days_in_month, days_in_year

Rejected:
  - Names outside the period variables, attribute access, calls, subscripts,
    comparisons, boolean operators, lambda, strings, anything else
"""

import ast
import calendar
from dataclasses import dataclass
from datetime import date
from decimal import ROUND_HALF_UP, Decimal, DivisionByZero, InvalidOperation

from journal_kernel.exceptions import FormulaError

PERIOD_VARIABLES: frozenset[str] = frozenset({
    "day", "month", "year", "quarter", "days_in_month", "days_in_year",
})

CENT = Decimal("0.01")

_MAX_FORMULA_LENGTH = 200


@dataclass(frozen=True)
class FormulaIssue:
    """A validation problem found in a formula."""

    formula: str
    message: str
    node_type: str = ""


def period_variables(run_date: date) -> dict[str, Decimal]:
    """Variables bound for a template run on ``run_date``."""
    return {
        "day": Decimal(run_date.day),
        "month": Decimal(run_date.month),
        "year": Decimal(run_date.year),
        "quarter": Decimal((run_date.month - 1) // 3 + 1),
        "days_in_month": Decimal(calendar.monthrange(run_date.year, run_date.month)[1]),
        "days_in_year": Decimal(366 if calendar.isleap(run_date.year) else 365),
    }


def validate_formula(formula: str | None) -> list[FormulaIssue]:
    """Check ``formula`` against the grammar.  Empty list means valid."""
    if formula is None or not str(formula).strip():
        return []
    text = str(formula).strip()
    if len(text) > _MAX_FORMULA_LENGTH:
        return [FormulaIssue(text, f"Formula longer than {_MAX_FORMULA_LENGTH} characters")]
    try:
        tree = ast.parse(text, mode="eval")
    except SyntaxError as e:
        return [FormulaIssue(text, f"Syntax error: {e.msg}")]

    issues: list[FormulaIssue] = []
    _validate_node(tree.body, text, issues)
    return issues


def _validate_node(node: ast.AST, formula: str, issues: list[FormulaIssue]) -> None:
    if isinstance(node, ast.BinOp):
        if isinstance(node.op, (ast.Add, ast.Sub, ast.Mult, ast.Div)):
            _validate_node(node.left, formula, issues)
            _validate_node(node.right, formula, issues)
        else:
            issues.append(FormulaIssue(
                formula,
                f"Disallowed binary operator: {type(node.op).__name__}",
                type(node.op).__name__,
            ))

    elif isinstance(node, ast.UnaryOp):
        if isinstance(node.op, (ast.UAdd, ast.USub)):
            _validate_node(node.operand, formula, issues)
        else:
            issues.append(FormulaIssue(
                formula,
                f"Disallowed unary operator: {type(node.op).__name__}",
                type(node.op).__name__,
            ))

    elif isinstance(node, ast.Constant):
        # bool is an int subclass; reject it explicitly
        if isinstance(node.value, bool) or not isinstance(node.value, (int, float)):
            issues.append(FormulaIssue(
                formula,
                f"Disallowed constant: {node.value!r}",
                "Constant",
            ))

    elif isinstance(node, ast.Name):
        if node.id not in PERIOD_VARIABLES:
            issues.append(FormulaIssue(formula, f"Unknown variable: {node.id}", "Name"))

    else:
        issues.append(FormulaIssue(
            formula,
            f"Disallowed expression: {type(node).__name__}",
            type(node).__name__,
        ))


class FormulaEvaluator:
    """Evaluates validated formulas to non-negative Decimal amounts."""

    def __init__(self, variables: dict[str, Decimal] | None = None):
        self._variables = dict(variables or {})

    @classmethod
    def for_run_date(cls, run_date: date) -> "FormulaEvaluator":
        return cls(period_variables(run_date))

    def evaluate(self, formula: str | None) -> Decimal:
        """Evaluate ``formula`` and round to cents.

        None or blank evaluates to zero.

        Raises:
            FormulaError: Grammar violation, unbound variable, division by
                zero or a negative result.
        """
        if formula is None or not str(formula).strip():
            return Decimal("0.00")
        text = str(formula).strip()

        issues = validate_formula(text)
        if issues:
            raise FormulaError(text, issues[0].message)

        tree = ast.parse(text, mode="eval")
        try:
            value = self._eval(tree.body, text)
            result = value.quantize(CENT, rounding=ROUND_HALF_UP)
        except (DivisionByZero, InvalidOperation, ZeroDivisionError):
            raise FormulaError(text, "division by zero or invalid arithmetic")

        if result < 0:
            raise FormulaError(text, f"evaluates to a negative amount ({result})")
        return result

    def _eval(self, node: ast.AST, formula: str) -> Decimal:
        if isinstance(node, ast.Constant):
            # str() keeps 0.1 as Decimal("0.1") rather than its binary float value
            return Decimal(str(node.value))
        if isinstance(node, ast.Name):
            if node.id not in self._variables:
                raise FormulaError(formula, f"variable {node.id} is not bound")
            return self._variables[node.id]
        if isinstance(node, ast.UnaryOp):
            operand = self._eval(node.operand, formula)
            return -operand if isinstance(node.op, ast.USub) else operand
        if isinstance(node, ast.BinOp):
            left = self._eval(node.left, formula)
            right = self._eval(node.right, formula)
            if isinstance(node.op, ast.Add):
                return left + right
            if isinstance(node.op, ast.Sub):
                return left - right
            if isinstance(node.op, ast.Mult):
                return left * right
            if right == 0:
                raise FormulaError(formula, "division by zero")
            return left / right
        raise FormulaError(formula, f"unsupported node {type(node).__name__}")
