"""Value kinds and coercion rules shared by the expression interpreter."""

import re
from enum import Enum
from typing import Any, Optional, Tuple

from .exceptions import EvaluationError


class ValueKind(str, Enum):
    """Kinds of values an expression can produce."""
    NULL = "null"
    BOOLEAN = "boolean"
    NUMBER = "number"
    STRING = "string"
    LIST = "list"
    MAP = "map"


_INTEGER_PATTERN = re.compile(r"^-?\d+$")
_DECIMAL_PATTERN = re.compile(r"^-?\d+\.\d+$")


def kind_of(value: Any) -> ValueKind:
    """Classify a Python value.

    Raises:
        EvaluationError: If the value is not representable in an expression
    """
    if value is None:
        return ValueKind.NULL
    # bool is a subclass of int and must be checked first
    if isinstance(value, bool):
        return ValueKind.BOOLEAN
    if isinstance(value, (int, float)):
        return ValueKind.NUMBER
    if isinstance(value, str):
        return ValueKind.STRING
    if isinstance(value, (list, tuple)):
        return ValueKind.LIST
    if isinstance(value, dict):
        return ValueKind.MAP
    raise EvaluationError(f"Unsupported value type: {type(value).__name__}")


def to_number(value: Any) -> Optional[float]:
    """Coerce a value to a number, or None when it has no numeric reading."""
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        return float(value)
    if isinstance(value, str):
        try:
            return float(value.strip())
        except ValueError:
            return None
    return None


def to_boolean(value: Any) -> bool:
    """Truthiness used by logical operators and boolean evaluation."""
    if value is None:
        return False
    if isinstance(value, bool):
        return value
    if isinstance(value, (int, float)):
        return value != 0
    if isinstance(value, str):
        return len(value) > 0
    return False


def values_equal(left: Any, right: Any) -> bool:
    """Equality used by the == and != operators."""
    if left is None or right is None:
        return left is None and right is None
    left_is_bool = isinstance(left, bool)
    right_is_bool = isinstance(right, bool)
    if left_is_bool or right_is_bool:
        return left_is_bool and right_is_bool and left == right
    if isinstance(left, (int, float)) and isinstance(right, (int, float)):
        return float(left) == float(right)
    return left == right


def parse_literal(text: str) -> Tuple[bool, Any]:
    """Recognize a literal token.

    Args:
        text: Trimmed expression text

    Returns:
        Tuple of (matched, value). ``matched`` is False when the text is not
        a literal, in which case ``value`` is None.
    """
    if text == "true":
        return True, True
    if text == "false":
        return True, False
    if text == "null":
        return True, None

    if len(text) >= 2 and text[0] == text[-1] and text[0] in ("'", '"'):
        inner = text[1:-1]
        if text[0] not in inner:
            return True, inner
        return False, None

    if _INTEGER_PATTERN.match(text):
        return True, int(text)
    if _DECIMAL_PATTERN.match(text):
        return True, float(text)

    return False, None
