"""Tests for calculated field computation."""

from recordflow.core.calculated_fields import build_calculation_context, compute_calculated_fields
from recordflow.models import EntityDefinition, PropertyDefinition, PropertyType


def _calculated(name, expression=None, metadata=None):
    return PropertyDefinition(
        property_name=name,
        property_type=PropertyType.CALCULATED,
        calculation_expression=expression,
        metadata=metadata or {}
    )


def test_computes_calculated_properties(metadata_store):
    entity = metadata_store.get_entity("order")
    result = compute_calculated_fields(entity, {"quantity": 4, "amount": 2.5})

    assert result == {"quantity": 4, "amount": 2.5, "total": 10.0}


def test_input_is_not_modified():
    entity = EntityDefinition(entity_id="line", name="Line", properties=[_calculated("double", "value * 2")])
    data = {"value": 3}

    result = compute_calculated_fields(entity, data)

    assert result["double"] == 6.0
    assert data == {"value": 3}


def test_parent_values_are_visible():
    entity = EntityDefinition(
        entity_id="line",
        name="Line",
        properties=[_calculated("net", "parent.rate * amount"), _calculated("gross", "$parent.rate * 2")]
    )
    result = compute_calculated_fields(entity, {"amount": 10}, parent_data={"rate": 0.5})

    assert result["net"] == 5.0
    assert result["gross"] == 1.0


def test_failing_expression_leaves_property_unset():
    entity = EntityDefinition(
        entity_id="line",
        name="Line",
        properties=[_calculated("ratio", "amount / zero"), _calculated("label", "'fixed'")]
    )
    result = compute_calculated_fields(entity, {"amount": 1, "zero": 0})

    assert "ratio" not in result
    assert result["label"] == "fixed"


def test_calculated_values_are_not_chained():
    """Each expression sees the input data, not earlier calculated values."""
    entity = EntityDefinition(
        entity_id="line",
        name="Line",
        properties=[_calculated("total", "amount * 2"), _calculated("total_plus_one", "total + 1")]
    )
    result = compute_calculated_fields(entity, {"amount": 2})

    assert result["total"] == 4.0
    assert "total_plus_one" not in result


def test_expression_from_metadata():
    entity = EntityDefinition(
        entity_id="line",
        name="Line",
        properties=[_calculated("sum_of_lines", metadata={"expression": "sum(lines.qty)"})]
    )
    result = compute_calculated_fields(entity, {"lines": [{"qty": 1}, {"qty": 2}]})

    assert result["sum_of_lines"] == 3.0


def test_build_calculation_context():
    context = build_calculation_context({"a": 1}, {"b": 2})

    assert context["a"] == 1
    assert context["this"] == {"a": 1}
    assert context["parent"] == {"b": 2}
    assert context["$parent"] == {"b": 2}
    assert "parent" not in build_calculation_context({"a": 1})
