"""Condition evaluation using simpleeval for safe expression evaluation.

Survey items may carry a condition deciding whether they are displayed, e.g.
``"mood > 5 AND (sleep == SKIPPED or sleep < 6)"``. Each clause compares an
earlier item's validated response with a literal.
"""

import ast
import operator
import re
from typing import Any, Callable, Mapping, Set

from simpleeval import InvalidExpression, NameNotDefined, SimpleEval

from sensing.errors import MalformedConditionError
from sensing.logging_config import get_logger
from sensing.no_response import NoResponse

logger = get_logger(__name__)

# Quoted literals are matched first so keywords inside them are left alone.
_TOKEN_PATTERN = re.compile(r"""('[^']*'|"[^"]*")|\b(and|or)\b""", re.IGNORECASE)

_ORDERING = {"<", "<=", ">", ">="}


class _SentinelLiteral:
    """A NoResponse name written in a condition, as opposed to a response."""

    __slots__ = ("value",)

    def __init__(self, value: NoResponse):
        self.value = value


_SENTINEL_NAMES = {member.name: _SentinelLiteral(member) for member in NoResponse}


def _is_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


def _comparison(symbol: str, compare: Callable[[Any, Any], bool]) -> Callable[[Any, Any], bool]:
    """Build a comparator enforcing the condition typing rules."""

    def apply(left: Any, right: Any) -> bool:
        if isinstance(left, _SentinelLiteral) or isinstance(right, _SentinelLiteral):
            if symbol in _ORDERING:
                raise TypeError(f"'{symbol}' cannot be applied to a no-response value")
            left = left.value if isinstance(left, _SentinelLiteral) else left
            right = right.value if isinstance(right, _SentinelLiteral) else right
            return compare(left, right)

        if isinstance(left, NoResponse) or isinstance(right, NoResponse):
            # An unanswered item never satisfies an ordering clause.
            if symbol in _ORDERING:
                return False
            return compare(left, right)

        # Multiple-choice responses: '==' tests membership.
        if isinstance(left, list) or isinstance(right, list):
            if symbol in _ORDERING:
                raise TypeError(f"'{symbol}' cannot be applied to a list of choices")
            values, item = (left, right) if isinstance(left, list) else (right, left)
            return (item in values) if symbol == "==" else (item not in values)

        if symbol in _ORDERING:
            comparable = (
                (_is_number(left) and _is_number(right))
                or (isinstance(left, str) and isinstance(right, str))
            )
            if not comparable:
                raise TypeError(
                    f"cannot compare {type(left).__name__} with "
                    f"{type(right).__name__} using '{symbol}'"
                )
        return compare(left, right)

    return apply


_OPERATORS = {
    ast.Eq: _comparison("==", operator.eq),
    ast.NotEq: _comparison("!=", operator.ne),
    ast.Lt: _comparison("<", operator.lt),
    ast.LtE: _comparison("<=", operator.le),
    ast.Gt: _comparison(">", operator.gt),
    ast.GtE: _comparison(">=", operator.ge),
    ast.USub: operator.neg,
    ast.UAdd: operator.pos,
}


_COMPARISONS = (ast.Eq, ast.NotEq, ast.Lt, ast.LtE, ast.Gt, ast.GtE)


def _check_operand(condition: str, node: ast.expr) -> None:
    if isinstance(node, ast.Name):
        return
    if isinstance(node, ast.UnaryOp) and isinstance(node.op, (ast.USub, ast.UAdd)):
        node = node.operand
        if isinstance(node, ast.Constant) and _is_number(node.value):
            return
    elif isinstance(node, ast.Constant) and (_is_number(node.value) or isinstance(node.value, str)):
        return
    raise MalformedConditionError(
        condition, f"unsupported expression: {ast.unparse(node)}"
    )


def _check_clause(condition: str, node: ast.expr) -> None:
    """Accept only AND/OR over single comparisons of item ids and literals."""
    if isinstance(node, ast.BoolOp):
        for value in node.values:
            _check_clause(condition, value)
        return

    if not isinstance(node, ast.Compare):
        raise MalformedConditionError(condition, "expression is not a comparison")
    if len(node.ops) != 1:
        raise MalformedConditionError(condition, "chained comparisons are not supported")
    if not isinstance(node.ops[0], _COMPARISONS):
        raise MalformedConditionError(
            condition, f"unsupported operator: {type(node.ops[0]).__name__}"
        )
    _check_operand(condition, node.left)
    _check_operand(condition, node.comparators[0])


def _parse(condition: str) -> ast.Expression:
    try:
        tree = ast.parse(ConditionEvaluator.normalize(condition), mode="eval")
    except SyntaxError as e:
        raise MalformedConditionError(condition, f"syntax error: {e.msg}")

    _check_clause(condition, tree.body)
    return tree


class ConditionEvaluator:
    """Evaluates survey item conditions against earlier responses."""

    @staticmethod
    def normalize(condition: str) -> str:
        """Lower-case the AND/OR keywords so the expression parses as Python.

        Example:
            >>> ConditionEvaluator.normalize("a == 1 AND b == 'OR'")
            "a == 1 and b == 'OR'"
        """
        def replace(match: re.Match) -> str:
            if match.group(1) is not None:
                return match.group(1)
            return match.group(2).lower()

        return _TOKEN_PATTERN.sub(replace, condition.strip())

    @staticmethod
    def referenced_items(condition: str) -> Set[str]:
        """Return the item ids a condition refers to.

        Raises:
            MalformedConditionError: If the condition cannot be parsed or
                uses syntax other than comparisons joined by AND/OR
        """
        tree = _parse(condition)

        return {
            node.id
            for node in ast.walk(tree)
            if isinstance(node, ast.Name) and node.id not in _SENTINEL_NAMES
        }

    @staticmethod
    def evaluate(condition: str, prior_responses: Mapping[str, Any]) -> bool:
        """Evaluate a condition against previously validated responses.

        Supported syntax:
        - Comparison: ==, !=, <, <=, >, >=
        - Boolean: AND, OR (either case), evaluated left to right
        - Parentheses for grouping
        - Literals: numbers, quoted strings, and the no-response names
          (SKIPPED, NOT_DISPLAYED, PROMPT_NOT_ENABLED, MEDIA_NOT_UPLOADED)

        Args:
            condition: Condition expression
            prior_responses: Validated responses of the items preceding the
                one carrying the condition

        Returns:
            Boolean result of expression

        Raises:
            MalformedConditionError: If the expression cannot be parsed, is
                not comparisons of item ids and literals joined by AND/OR,
                references an item not in ``prior_responses``, or compares
                incompatible values

        Example:
            >>> ConditionEvaluator.evaluate("p1 > 5", {"p1": 7})
            True
            >>> ConditionEvaluator.evaluate("p1 == SKIPPED", {"p1": NoResponse.SKIPPED})
            True
        """
        try:
            _parse(condition)
        except MalformedConditionError as e:
            logger.error(f"Invalid expression '{condition}': {e.message}")
            raise

        names = dict(_SENTINEL_NAMES)
        names.update(prior_responses)
        evaluator = SimpleEval(operators=_OPERATORS, names=names)
        # SimpleEval substitutes its default functions for an empty mapping.
        evaluator.functions = {}

        try:
            result = evaluator.eval(ConditionEvaluator.normalize(condition))
        except NameNotDefined as e:
            logger.error(f"Condition '{condition}' references an unknown item: {e}")
            raise MalformedConditionError(
                condition, f"references an item that has not been answered yet: {e}"
            )
        except (InvalidExpression, SyntaxError, KeyError) as e:
            logger.error(f"Invalid expression '{condition}': {e}")
            raise MalformedConditionError(condition, f"unsupported expression: {e}")
        except TypeError as e:
            raise MalformedConditionError(condition, str(e))

        logger.debug(f"Evaluated condition '{condition}' = {result}")
        return result
