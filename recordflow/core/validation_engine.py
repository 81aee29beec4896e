"""Validation rule engine.

Evaluates FIELD, ENTITY, CROSS_ENTITY and WORKFLOW_TRANSITION rules against
record data. Rule failures, including rules that raise, are reported as
``ValidationIssue`` entries; they never abort evaluation of sibling rules.
"""

import logging
import re
from datetime import date, datetime
from typing import Any, Callable, Dict, List, Optional

from ..models.core import (
    EntityDefinition,
    PropertyDefinition,
    PropertyType,
    RuleScope,
    RuleType,
    ValidationIssue,
    ValidationRule,
    WorkflowTransition,
)
from .exceptions import NotFoundError, RecordflowError
from .expression import ExpressionInterpreter
from .interfaces import MetadataStore
from .logging import get_logger, log_with_context
from .validator_registry import ValidatorRegistry
from .values import to_number

logger = get_logger(__name__)

UPDATE_EVENT = "UPDATE"
TRANSITION_EVENT = "TRANSITION"


def build_evaluation_context(
    entity: EntityDefinition,
    data: Optional[Dict[str, Any]],
    previous_data: Optional[Dict[str, Any]],
    trigger_event: Optional[str]
) -> Dict[str, Any]:
    """Build the context map rule expressions are evaluated against."""
    context: Dict[str, Any] = {}
    if data is not None:
        context.update(data)
        context["this"] = data
    if previous_data is not None:
        context["previous"] = previous_data
    context["triggerEvent"] = trigger_event
    context["entityId"] = entity.entity_id
    context["entityName"] = entity.name
    return context


def is_valid_type(value: Any, property_type: PropertyType) -> bool:
    """Check a runtime value against a declared property type."""
    if property_type == PropertyType.STRING:
        return isinstance(value, str)
    if property_type == PropertyType.NUMBER:
        return isinstance(value, (int, float)) and not isinstance(value, bool)
    if property_type == PropertyType.DATE:
        return isinstance(value, (str, date, datetime))
    if property_type == PropertyType.BOOLEAN:
        return isinstance(value, bool)
    if property_type in (PropertyType.SINGLE_SELECT, PropertyType.MULTI_SELECT):
        return isinstance(value, (str, list))
    if property_type == PropertyType.REFERENCE:
        return isinstance(value, str)
    return True


class ValidationEngine:
    """Evaluates validation rules loaded from a metadata store."""

    def __init__(
        self,
        metadata_store: MetadataStore,
        interpreter: Optional[ExpressionInterpreter] = None,
        validator_registry: Optional[ValidatorRegistry] = None
    ):
        self.metadata_store = metadata_store
        self.interpreter = interpreter or ExpressionInterpreter()
        self.validator_registry = validator_registry or ValidatorRegistry()

        self._field_checks: Dict[RuleType, Callable] = {
            RuleType.REQUIRED: self._check_required,
            RuleType.TYPE: self._check_type,
            RuleType.RANGE: self._check_range,
            RuleType.LENGTH: self._check_length,
            RuleType.PATTERN: self._check_pattern,
            RuleType.EXPRESSION: self._check_expression,
            RuleType.CUSTOM: self._check_custom,
        }

    def validate_record(
        self,
        entity_id: str,
        data: Dict[str, Any],
        trigger_event: str,
        previous_data: Optional[Dict[str, Any]] = None
    ) -> List[ValidationIssue]:
        """
        Validate a record against all applicable rules.

        Args:
            entity_id: Entity the record belongs to
            data: Record data to validate
            trigger_event: Event that triggered validation (CREATE, UPDATE, DELETE, TRANSITION)
            previous_data: Previous record data, if any

        Returns:
            Issues in evaluation order; empty means valid

        Raises:
            NotFoundError: If the entity does not exist
        """
        entity = self._get_entity(entity_id)
        data = data or {}
        context = build_evaluation_context(entity, data, previous_data, trigger_event)
        issues: List[ValidationIssue] = []

        for prop in entity.properties:
            for rule in self.metadata_store.get_field_rules(entity_id, prop.property_name):
                if rule.applies_to(trigger_event):
                    issue = self._evaluate_field_rule(rule, prop, data.get(prop.property_name), context)
                    if issue is not None:
                        issues.append(issue)

        for scope, default_message in (
            (RuleScope.ENTITY, "Entity validation failed"),
            (RuleScope.CROSS_ENTITY, "Cross-entity validation failed"),
        ):
            for rule in self.metadata_store.get_rules_by_scope(entity_id, scope):
                if rule.applies_to(trigger_event):
                    issue = self._evaluate_expression_rule(rule, context, scope, default_message)
                    if issue is not None:
                        issues.append(issue)

        log_with_context(
            logger, logging.INFO,
            f"Validated record of entity {entity_id}: {len(issues)} issue(s)",
            entity_id=entity_id,
            trigger_event=trigger_event,
            issue_count=len(issues)
        )
        return issues

    def validate_field(
        self,
        entity_id: str,
        property_name: str,
        value: Any,
        full_record_data: Optional[Dict[str, Any]] = None
    ) -> List[ValidationIssue]:
        """
        Validate a single field value against its FIELD rules.

        Args:
            entity_id: Entity the field belongs to
            property_name: Property to validate
            value: Candidate value
            full_record_data: Rest of the record; not modified

        Returns:
            Issues in rule order; empty means valid

        Raises:
            NotFoundError: If the entity or property does not exist
        """
        entity = self._get_entity(entity_id)
        prop = entity.get_property(property_name)
        if prop is None:
            raise NotFoundError(
                f"Property not found: {property_name}",
                resource_type="property",
                resource_id=property_name
            ).add_context(entity_id=entity_id)

        snapshot = dict(full_record_data or {})
        snapshot[property_name] = value
        context = build_evaluation_context(entity, snapshot, None, UPDATE_EVENT)

        issues = []
        for rule in self.metadata_store.get_field_rules(entity_id, property_name):
            if rule.applies_to(UPDATE_EVENT):
                issue = self._evaluate_field_rule(rule, prop, value, context)
                if issue is not None:
                    issues.append(issue)

        logger.debug(f"Validated field {entity_id}.{property_name}: {len(issues)} issue(s)")
        return issues

    def validate_transition(
        self,
        entity_id: str,
        data: Dict[str, Any],
        transition: WorkflowTransition,
        actor: Optional[str] = None,
        previous_data: Optional[Dict[str, Any]] = None
    ) -> List[ValidationIssue]:
        """
        Evaluate a transition's conditions and WORKFLOW_TRANSITION rules.

        Args:
            entity_id: Entity the record belongs to
            data: Record data
            transition: Transition about to execute
            actor: Actor executing the transition
            previous_data: Previous record data, if any

        Returns:
            Issues at WORKFLOW_TRANSITION level; empty means the transition may proceed
        """
        entity = self._get_entity(entity_id)
        context = build_evaluation_context(entity, data or {}, previous_data, TRANSITION_EVENT)
        context.update({
            "fromState": transition.from_state,
            "toState": transition.to_state,
            "transitionId": transition.transition_id,
            "actor": actor,
        })

        issues = []
        for condition in transition.conditions or []:
            if not self.interpreter.evaluate_boolean(condition, context):
                issues.append(ValidationIssue(
                    rule_id=None,
                    property_name=None,
                    message=f"Transition condition not met: {condition}",
                    level=RuleScope.WORKFLOW_TRANSITION
                ))

        for rule in self.metadata_store.get_rules_by_scope(entity_id, RuleScope.WORKFLOW_TRANSITION):
            if not rule.applies_to(TRANSITION_EVENT):
                continue
            rule_transition = rule.metadata.get("transitionId")
            if rule_transition and rule_transition != transition.transition_id:
                continue
            issue = self._evaluate_expression_rule(
                rule, context, RuleScope.WORKFLOW_TRANSITION, "Transition validation failed"
            )
            if issue is not None:
                issues.append(issue)

        return issues

    def _get_entity(self, entity_id: str) -> EntityDefinition:
        entity = self.metadata_store.get_entity(entity_id)
        if entity is None:
            raise NotFoundError(f"Entity not found: {entity_id}", resource_type="entity", resource_id=entity_id)
        return entity

    def _evaluate_field_rule(
        self,
        rule: ValidationRule,
        prop: PropertyDefinition,
        value: Any,
        context: Dict[str, Any]
    ) -> Optional[ValidationIssue]:
        check = self._field_checks.get(rule.rule_type)
        if check is None:
            logger.warning(f"Unsupported rule type: {rule.rule_type}")
            return None

        try:
            failure = check(rule, prop, value, context)
        except Exception as e:
            message = e.message if isinstance(e, RecordflowError) else str(e)
            logger.error(f"Error evaluating validation rule: rule_id={rule.rule_id}, error={message}", exc_info=True)
            return ValidationIssue(
                rule_id=rule.rule_id,
                property_name=prop.property_name,
                message=f"Validation error: {message}",
                level=RuleScope.FIELD
            )

        if failure is None:
            return None
        return ValidationIssue(
            rule_id=rule.rule_id,
            property_name=prop.property_name,
            message=rule.error_message or failure,
            message_key=rule.error_message_key,
            level=RuleScope.FIELD
        )

    def _evaluate_expression_rule(
        self,
        rule: ValidationRule,
        context: Dict[str, Any],
        level: RuleScope,
        default_message: str
    ) -> Optional[ValidationIssue]:
        if not rule.expression:
            return None
        try:
            passed = self.interpreter.evaluate_boolean(rule.expression, context)
        except Exception as e:
            logger.error(f"Error evaluating {level.value} rule: rule_id={rule.rule_id}, error={e}", exc_info=True)
            return ValidationIssue(
                rule_id=rule.rule_id,
                message=f"Validation error: {e}",
                level=level
            )
        if passed:
            return None
        return ValidationIssue(
            rule_id=rule.rule_id,
            property_name=None,
            message=rule.error_message or default_message,
            message_key=rule.error_message_key,
            level=level
        )

    # Each check returns None on success or the default failure message.

    @staticmethod
    def _check_required(rule, prop, value, context) -> Optional[str]:
        if value is None or (isinstance(value, str) and not value.strip()):
            return f"{prop.display_name} is required"
        return None

    @staticmethod
    def _check_type(rule, prop, value, context) -> Optional[str]:
        if value is not None and not is_valid_type(value, prop.property_type):
            return f"{prop.display_name} has invalid type"
        return None

    @staticmethod
    def _check_range(rule, prop, value, context) -> Optional[str]:
        if value is None or not rule.metadata:
            return None
        number = to_number(value)
        if number is None:
            return None
        minimum = rule.metadata.get("min")
        maximum = rule.metadata.get("max")
        if minimum is not None and number < _required_number(minimum, "min"):
            return f"{prop.display_name} is below minimum"
        if maximum is not None and number > _required_number(maximum, "max"):
            return f"{prop.display_name} is above maximum"
        return None

    @staticmethod
    def _check_length(rule, prop, value, context) -> Optional[str]:
        if not isinstance(value, str) or not rule.metadata:
            return None
        min_length = rule.metadata.get("minLength")
        max_length = rule.metadata.get("maxLength")
        if min_length is not None and len(value) < int(_required_number(min_length, "minLength")):
            return f"{prop.display_name} is too short"
        if max_length is not None and len(value) > int(_required_number(max_length, "maxLength")):
            return f"{prop.display_name} is too long"
        return None

    @staticmethod
    def _check_pattern(rule, prop, value, context) -> Optional[str]:
        if not isinstance(value, str) or not rule.metadata:
            return None
        pattern = rule.metadata.get("pattern")
        if isinstance(pattern, str) and re.fullmatch(pattern, value) is None:
            return f"{prop.display_name} does not match required pattern"
        return None

    def _check_expression(self, rule, prop, value, context) -> Optional[str]:
        if not rule.expression:
            return None
        field_context = dict(context)
        field_context[prop.property_name] = value
        field_context["value"] = value
        if not self.interpreter.evaluate_boolean(rule.expression, field_context):
            return f"{prop.display_name} validation failed"
        return None

    def _check_custom(self, rule, prop, value, context) -> Optional[str]:
        validator_name = rule.metadata.get("validator")
        if not validator_name:
            logger.warning(f"Custom rule {rule.rule_id} does not name a validator")
            return None
        field_context = dict(context)
        field_context["value"] = value
        result = self.validator_registry.call(validator_name, value, field_context)
        if isinstance(result, str):
            return result
        if not result:
            return f"{prop.display_name} validation failed"
        return None


def _required_number(raw: Any, key: str) -> float:
    number = to_number(raw)
    if number is None:
        raise ValueError(f"Rule metadata '{key}' is not numeric: {raw!r}")
    return number
