"""Expression interpreter for validation rules, measures and transition conditions.

The language is deliberately small and is recognized by a fixed-priority
sequence of substring tests rather than a precedence-aware grammar:

1. literals (``true``, ``false``, ``null``, quoted strings, numbers)
2. an exact context key
3. comparisons ``== != <= >= < >`` (split once, both sides simple values)
4. logical ``&&`` / ``||`` (split on every occurrence, operands recursive)
5. arithmetic ``+ - * /`` over simple values
6. ``sum(array.field)`` / ``sum(array)``
7. a simple value: literal, context key, dotted path, or the text itself

Expressions already stored in metadata rely on this order, so the quirks are
kept: ``a == 1 && b == 2`` splits on the first ``==`` and compares ``a`` with
the text ``1 && b == 2``.

Only the logical operators recurse, and each split removes its operator, so
evaluation is at most three levels deep (``&&``, then ``||``, then operands).
``max_depth`` therefore only bites when configured below 3; the expression
length limit is what bounds the work done per call.
"""

from typing import Any, Dict, Optional

from .exceptions import EvaluationError, InvalidExpressionError, RecordflowError
from .logging import get_logger
from .values import ValueKind, kind_of, parse_literal, to_boolean, to_number, values_equal

logger = get_logger(__name__)

DEFAULT_MAX_EXPRESSION_LENGTH = 4096
DEFAULT_MAX_EXPRESSION_DEPTH = 32

_COMPARISON_OPERATORS = ("==", "!=", "<=", ">=", "<", ">")


class ExpressionInterpreter:
    """Evaluates expression strings against a context map."""

    def __init__(
        self,
        max_length: int = DEFAULT_MAX_EXPRESSION_LENGTH,
        max_depth: int = DEFAULT_MAX_EXPRESSION_DEPTH
    ):
        self.max_length = max_length
        self.max_depth = max_depth

    @classmethod
    def from_config(cls, config) -> "ExpressionInterpreter":
        """Create an interpreter using the limits from an AppConfig."""
        return cls(
            max_length=config.max_expression_length,
            max_depth=config.max_expression_depth
        )

    def evaluate(self, expression: str, context: Optional[Dict[str, Any]] = None) -> Any:
        """
        Evaluate an expression.

        Args:
            expression: Expression text
            context: Variable-name-to-value map; missing means empty

        Returns:
            None, bool, number, str, list or dict

        Raises:
            InvalidExpressionError: If the expression is empty or exceeds the limits
            EvaluationError: If evaluation fails at runtime
        """
        if expression is None or not str(expression).strip():
            raise InvalidExpressionError("Expression cannot be null or empty", expression=expression)

        if len(expression) > self.max_length:
            raise InvalidExpressionError(
                f"Expression length {len(expression)} exceeds maximum of {self.max_length}",
                expression=expression
            )

        context = context if context is not None else {}
        trimmed = expression.strip()

        try:
            matched, literal = parse_literal(trimmed)
            if matched:
                return literal
            if trimmed in context:
                return context[trimmed]
            return self._evaluate_expression(trimmed, context, depth=1)
        except RecordflowError:
            raise
        except Exception as e:
            logger.error(f"Error evaluating expression '{trimmed[:200]}': {e}", exc_info=True)
            raise EvaluationError(f"Failed to evaluate expression: {e}", expression=trimmed)

    def evaluate_boolean(self, expression: str, context: Optional[Dict[str, Any]] = None) -> bool:
        """Evaluate an expression as a boolean. Never raises; any error yields False."""
        try:
            return to_boolean(self.evaluate(expression, context))
        except RecordflowError as e:
            logger.warning(f"Expression evaluation error: {e.message}")
            return False
        except Exception as e:
            logger.warning(f"Unexpected expression evaluation error: {e}")
            return False

    def _evaluate_expression(self, expression: str, context: Dict[str, Any], depth: int) -> Any:
        if depth > self.max_depth:
            raise InvalidExpressionError(
                f"Expression nesting exceeds maximum depth of {self.max_depth}",
                expression=expression
            )

        for operator in _COMPARISON_OPERATORS:
            if operator in expression:
                left_text, right_text = expression.split(operator, 1)
                left = self._simple_value(left_text.strip(), context)
                right = self._simple_value(right_text.strip(), context)
                return self._compare(operator, left, right)

        if "&&" in expression:
            for part in expression.split("&&"):
                if not to_boolean(self._evaluate_expression(part.strip(), context, depth + 1)):
                    return False
            return True

        if "||" in expression:
            for part in expression.split("||"):
                if to_boolean(self._evaluate_expression(part.strip(), context, depth + 1)):
                    return True
            return False

        if "+" in expression:
            total = 0.0
            for part in expression.split("+"):
                total += self._operand(part, context, "Cannot add non-numeric value", expression)
            return total

        if "-" in expression and not expression.startswith("-"):
            left_text, right_text = expression.split("-", 1)
            left = self._operand(left_text, context, "Cannot subtract non-numeric values", expression)
            right = self._operand(right_text, context, "Cannot subtract non-numeric values", expression)
            return left - right

        if "*" in expression:
            product = 1.0
            for part in expression.split("*"):
                product *= self._operand(part, context, "Cannot multiply non-numeric value", expression)
            return product

        if "/" in expression:
            left_text, right_text = expression.split("/", 1)
            left = self._operand(left_text, context, "Cannot divide non-numeric values", expression)
            right = self._operand(right_text, context, "Cannot divide non-numeric values", expression)
            if right == 0.0:
                raise EvaluationError("Division by zero", expression=expression)
            return left / right

        if "(" in expression and ")" in expression:
            open_paren = expression.index("(")
            close_paren = expression.rindex(")")
            if open_paren < close_paren:
                function_name = expression[:open_paren].strip()
                argument = expression[open_paren + 1:close_paren].strip()
                if function_name == "sum":
                    return self._sum(argument, context)

        return self._simple_value(expression, context)

    @staticmethod
    def _compare(operator: str, left: Any, right: Any) -> bool:
        if operator == "==":
            return values_equal(left, right)
        if operator == "!=":
            return not values_equal(left, right)

        left_number = to_number(left)
        right_number = to_number(right)
        if left_number is None or right_number is None:
            return False
        if operator == "<=":
            return left_number <= right_number
        if operator == ">=":
            return left_number >= right_number
        if operator == "<":
            return left_number < right_number
        return left_number > right_number

    def _operand(self, text: str, context: Dict[str, Any], message: str, expression: str) -> float:
        number = to_number(self._simple_value(text.strip(), context))
        if number is None:
            raise EvaluationError(message, expression=expression)
        return number

    def _sum(self, argument: str, context: Dict[str, Any]) -> float:
        """sum(array) over numbers, or sum(array.field) over a list of maps."""
        items = self._simple_value(argument, context)
        kind = kind_of(items)
        if kind is ValueKind.LIST:
            return sum(
                (number for number in (to_number(item) for item in items) if number is not None),
                0.0
            )

        if "." in argument:
            array_name, field_name = argument.rsplit(".", 1)
            items = self._simple_value(array_name.strip(), context)
            kind = kind_of(items)
            if kind is not ValueKind.LIST:
                raise EvaluationError(f"sum() expects an array, got {kind.value}: {items!r}", expression=argument)
            total = 0.0
            for item in items:
                if isinstance(item, dict):
                    number = to_number(item.get(field_name.strip()))
                    if number is not None:
                        total += number
            return total

        raise EvaluationError(f"sum() expects an array, got {kind.value}: {items!r}", expression=argument)

    @staticmethod
    def _simple_value(text: str, context: Dict[str, Any]) -> Any:
        """Resolve a literal, context key or dotted path; otherwise the text itself."""
        matched, literal = parse_literal(text)
        if matched:
            return literal
        if text in context:
            return context[text]

        if "." in text:
            head, *path = text.split(".")
            if head in context:
                current = context[head]
                for segment in path:
                    if not isinstance(current, dict) or segment not in current:
                        return text
                    current = current[segment]
                return current

        return text


_default_interpreter = ExpressionInterpreter()


def evaluate(expression: str, context: Optional[Dict[str, Any]] = None) -> Any:
    """Evaluate an expression with the default interpreter."""
    return _default_interpreter.evaluate(expression, context)


def evaluate_boolean(expression: str, context: Optional[Dict[str, Any]] = None) -> bool:
    """Evaluate an expression as a boolean with the default interpreter."""
    return _default_interpreter.evaluate_boolean(expression, context)
