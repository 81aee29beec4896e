"""Computation of calculated property values."""

from typing import Any, Dict, Optional

from ..models.core import EntityDefinition, PropertyType
from .exceptions import RecordflowError
from .expression import ExpressionInterpreter
from .logging import get_logger

logger = get_logger(__name__)


def build_calculation_context(
    data: Dict[str, Any],
    parent_data: Optional[Dict[str, Any]] = None
) -> Dict[str, Any]:
    context: Dict[str, Any] = dict(data)
    context["this"] = data
    if parent_data is not None:
        context["parent"] = parent_data
        context["$parent"] = parent_data
    return context


def compute_calculated_fields(
    entity: EntityDefinition,
    data: Optional[Dict[str, Any]],
    parent_data: Optional[Dict[str, Any]] = None,
    interpreter: Optional[ExpressionInterpreter] = None
) -> Dict[str, Any]:
    """
    Compute every calculated property of an entity for one record.

    Properties are computed in declaration order against a context built from
    the input data, so a calculated value is not visible to later expressions.

    Args:
        entity: Entity definition declaring the calculated properties
        data: Record data; not modified
        parent_data: Optional master record data, exposed as ``parent``/``$parent``
        interpreter: Interpreter to use; a default one is created if omitted

    Returns:
        A copy of ``data`` with calculated values set. A property whose
        expression fails is logged and left unset.
    """
    interpreter = interpreter or ExpressionInterpreter()
    source = dict(data or {})
    result = dict(source)
    context = build_calculation_context(source, parent_data)

    for prop in entity.properties:
        if prop.property_type != PropertyType.CALCULATED:
            continue
        expression = prop.effective_expression
        if not expression:
            continue

        try:
            value = interpreter.evaluate(expression, context)
        except RecordflowError as e:
            logger.warning(
                f"Failed to compute calculated field: {entity.entity_id}.{prop.property_name}, "
                f"expression: {expression}, error: {e.message}"
            )
            continue

        result[prop.property_name] = value
        logger.debug(f"Computed calculated field: {entity.entity_id}.{prop.property_name} = {value!r}")

    return result
