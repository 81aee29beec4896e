"""Tests for value kinds and coercion rules."""

import pytest

from recordflow.core.exceptions import EvaluationError
from recordflow.core.values import (
    ValueKind,
    kind_of,
    parse_literal,
    to_boolean,
    to_number,
    values_equal,
)


class TestKindOf:
    """Test cases for value classification."""

    @pytest.mark.parametrize("value,expected", [
        (None, ValueKind.NULL),
        (True, ValueKind.BOOLEAN),
        (0, ValueKind.NUMBER),
        (2.5, ValueKind.NUMBER),
        ("text", ValueKind.STRING),
        ([1, 2], ValueKind.LIST),
        ((1, 2), ValueKind.LIST),
        ({"a": 1}, ValueKind.MAP),
    ])
    def test_classifies_supported_values(self, value, expected):
        assert kind_of(value) == expected

    def test_bool_is_not_a_number(self):
        """Booleans are classified before the int check."""
        assert kind_of(False) == ValueKind.BOOLEAN

    def test_unsupported_type_raises(self):
        with pytest.raises(EvaluationError):
            kind_of(object())


class TestCoercion:
    """Test cases for numeric and boolean coercion."""

    def test_to_number(self):
        assert to_number(3) == 3.0
        assert to_number(" 4.5 ") == 4.5
        assert to_number("abc") is None
        assert to_number(None) is None
        assert to_number(True) is None
        assert to_number([1]) is None

    def test_to_boolean(self):
        assert to_boolean(None) is False
        assert to_boolean(True) is True
        assert to_boolean(0) is False
        assert to_boolean(-1) is True
        assert to_boolean("") is False
        assert to_boolean("x") is True
        assert to_boolean([1]) is False
        assert to_boolean({"a": 1}) is False


class TestValuesEqual:
    """Test cases for equality used by == and !=."""

    def test_numbers_compare_numerically(self):
        assert values_equal(1, 1.0)

    def test_null_only_equals_null(self):
        assert values_equal(None, None)
        assert not values_equal(None, 0)
        assert not values_equal("", None)

    def test_bools_only_equal_bools(self):
        assert values_equal(True, True)
        assert not values_equal(True, 1)
        assert not values_equal(0, False)

    def test_strings_and_collections(self):
        assert values_equal("OPEN", "OPEN")
        assert not values_equal("1", 1)
        assert values_equal([1, 2], [1, 2])


class TestParseLiteral:
    """Test cases for literal recognition."""

    @pytest.mark.parametrize("text,expected", [
        ("true", True),
        ("false", False),
        ("null", None),
        ("'hello'", "hello"),
        ('"hello world"', "hello world"),
        ("''", ""),
        ("42", 42),
        ("-7", -7),
        ("3.25", 3.25),
        ("-0.5", -0.5),
    ])
    def test_recognizes_literals(self, text, expected):
        matched, value = parse_literal(text)
        assert matched
        assert value == expected
        assert type(value) is type(expected)

    @pytest.mark.parametrize("text", ["amount", "1.", ".5", "'it's'", "'unterminated", "True"])
    def test_rejects_non_literals(self, text):
        assert parse_literal(text) == (False, None)
