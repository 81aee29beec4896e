"""Tests for the validation rule engine."""

import pytest

from recordflow.core.exceptions import NotFoundError
from recordflow.core.validation_engine import ValidationEngine, build_evaluation_context, is_valid_type
from recordflow.models import (
    EntityDefinition,
    PropertyType,
    RuleScope,
    RuleType,
    ValidationRule,
    WorkflowTransition,
)


def _messages(issues):
    return [issue.message for issue in issues]


class TestValidateRecord:
    """Test cases for whole-record validation."""

    def test_required_rule(self, validation_engine):
        """A blank name yields exactly one field issue."""
        issues = validation_engine.validate_record("order", {"name": ""}, "CREATE")

        assert len(issues) == 1
        issue = issues[0]
        assert issue.rule_id == "order-name-required"
        assert issue.property_name == "name"
        assert issue.level == RuleScope.FIELD
        assert issue.message == "Name is required"

    def test_valid_record(self, validation_engine):
        issues = validation_engine.validate_record(
            "order",
            {"name": "x", "amount": 10, "quantity": 2, "code": "ABC-1", "email": "a@b.c"},
            "CREATE"
        )
        assert issues == []

    def test_range_rule(self, validation_engine):
        assert _messages(validation_engine.validate_record("order", {"name": "x", "amount": 5000}, "CREATE")) == [
            "amount is above maximum"
        ]
        assert _messages(validation_engine.validate_record("order", {"name": "x", "amount": -1}, "CREATE")) == [
            "amount is below minimum"
        ]

    def test_rules_on_one_property_run_in_rule_name_order(self, validation_engine):
        issues = validation_engine.validate_record("order", {"name": "x", "quantity": 0}, "CREATE")
        assert _messages(issues) == ["Quantity cannot be zero"]

        issues = validation_engine.validate_record("order", {"name": "x", "quantity": "three"}, "CREATE")
        assert [issue.rule_id for issue in issues] == ["order-quantity-type"]
        assert issues[0].message == "quantity has invalid type"

    def test_field_issues_precede_entity_issues(self, validation_engine):
        issues = validation_engine.validate_record("order", {"name": "x", "code": "VOID"}, "CREATE")

        assert [issue.level for issue in issues] == [RuleScope.FIELD, RuleScope.ENTITY]
        assert issues[0].message == "Code must look like ABC-123"
        assert issues[1].message == "Voided orders cannot be saved"
        assert issues[1].property_name is None

    def test_trigger_event_filtering(self, validation_engine):
        long_name = {"name": "x" * 30}
        assert validation_engine.validate_record("order", long_name, "CREATE") == []
        assert _messages(validation_engine.validate_record("order", long_name, "UPDATE")) == ["Name is too long"]

    def test_cross_entity_rule_uses_previous_data(self, validation_engine):
        issues = validation_engine.validate_record(
            "order", {"name": "x"}, "DELETE", previous_data={"status": "LOCKED"}
        )
        assert len(issues) == 1
        assert issues[0].level == RuleScope.CROSS_ENTITY
        assert issues[0].message == "Cross-entity validation failed"

        assert validation_engine.validate_record(
            "order", {"name": "x"}, "DELETE", previous_data={"status": "OPEN"}
        ) == []

    def test_custom_validator_message(self, validation_engine):
        issues = validation_engine.validate_record("order", {"name": "x", "email": "bad"}, "CREATE")
        assert _messages(issues) == ["Email must contain @"]

    def test_failing_rule_becomes_issue(self, validation_engine):
        """A rule that raises is reported without aborting the others."""
        issues = validation_engine.validate_record("order", {"name": "", "email": "a@b.c"}, "IMPORT")

        assert [issue.rule_id for issue in issues] == ["order-name-required", "order-email-import"]
        assert issues[1].message.startswith("Validation error: ")
        assert "missing_validator" in issues[1].message

    def test_inactive_rules_are_ignored(self, validation_engine, metadata_store):
        assert all(rule.rule_id != "order-retired"
                   for rule in metadata_store.get_rules_by_scope("order", RuleScope.ENTITY))
        assert validation_engine.validate_record("order", {"name": "x"}, "CREATE") == []

    def test_identical_inputs_give_identical_results(self, validation_engine):
        data = {"name": "", "amount": 5000, "quantity": "three", "code": "VOID", "email": "bad"}
        first = validation_engine.validate_record("order", data, "UPDATE")
        second = validation_engine.validate_record("order", data, "UPDATE")

        assert len(first) == 6
        assert first == second

    def test_unknown_entity(self, validation_engine):
        with pytest.raises(NotFoundError):
            validation_engine.validate_record("missing", {}, "CREATE")


class TestValidateField:
    """Test cases for single-field validation."""

    def test_field_rules_only(self, validation_engine):
        issues = validation_engine.validate_field("order", "name", "", {"code": "VOID"})
        assert _messages(issues) == ["Name is required"]

    def test_runs_update_rules(self, validation_engine):
        issues = validation_engine.validate_field("order", "name", "x" * 30)
        assert _messages(issues) == ["Name is too long"]

    def test_does_not_modify_record_data(self, validation_engine):
        data = {"name": "old"}
        validation_engine.validate_field("order", "name", "", data)
        assert data == {"name": "old"}

    def test_unknown_property(self, validation_engine):
        with pytest.raises(NotFoundError) as exc_info:
            validation_engine.validate_field("order", "missing", 1)
        assert exc_info.value.context["entity_id"] == "order"

    def test_unknown_entity(self, validation_engine):
        with pytest.raises(NotFoundError):
            validation_engine.validate_field("missing", "name", 1)


class TestValidateTransition:
    """Test cases for transition conditions and transition rules."""

    def _transition(self, transition_id="approve", conditions=None):
        return WorkflowTransition(
            transition_id=transition_id,
            workflow_id="order-flow",
            from_state="SUBMITTED",
            to_state="APPROVED",
            conditions=conditions
        )

    def test_rule_scoped_to_transition(self, validation_engine):
        issues = validation_engine.validate_transition("order", {"amount": 5}, self._transition())

        assert len(issues) == 1
        assert issues[0].level == RuleScope.WORKFLOW_TRANSITION
        assert issues[0].message == "Amount too small to approve"

        assert validation_engine.validate_transition("order", {"amount": 5}, self._transition("other")) == []

    def test_conditions_see_transition_context(self, validation_engine):
        transition = self._transition(conditions=["toState == 'APPROVED'", "actor == 'alice'"])
        issues = validation_engine.validate_transition("order", {"amount": 50}, transition, actor="bob")

        assert _messages(issues) == ["Transition condition not met: actor == 'alice'"]


class TestHelpers:
    """Test cases for module helpers."""

    def test_build_evaluation_context(self):
        entity = EntityDefinition(entity_id="order", name="Order")
        context = build_evaluation_context(entity, {"a": 1}, {"a": 0}, "UPDATE")

        assert context["a"] == 1
        assert context["this"] == {"a": 1}
        assert context["previous"] == {"a": 0}
        assert context["triggerEvent"] == "UPDATE"
        assert context["entityId"] == "order"
        assert context["entityName"] == "Order"

    @pytest.mark.parametrize("value,property_type,expected", [
        ("x", PropertyType.STRING, True),
        (1, PropertyType.STRING, False),
        (1.5, PropertyType.NUMBER, True),
        (True, PropertyType.NUMBER, False),
        (False, PropertyType.BOOLEAN, True),
        ("2024-01-01", PropertyType.DATE, True),
        (["a"], PropertyType.MULTI_SELECT, True),
        (3, PropertyType.REFERENCE, False),
        (object(), PropertyType.CALCULATED, True),
    ])
    def test_is_valid_type(self, value, property_type, expected):
        assert is_valid_type(value, property_type) is expected


class _InMemoryMetadata:
    """Minimal metadata store for engine tests that do not need a database."""

    def __init__(self, entity, rules):
        self.entity = entity
        self.rules = rules

    def get_entity(self, entity_id):
        return self.entity if entity_id == self.entity.entity_id else None

    def get_field_rules(self, entity_id, property_name):
        return [rule for rule in self.rules
                if rule.scope == RuleScope.FIELD and rule.property_name == property_name]

    def get_rules_by_scope(self, entity_id, scope):
        return [rule for rule in self.rules if rule.scope == scope]


class TestRuleConfiguration:
    """Test cases for rule metadata handling."""

    def _engine(self, rule):
        entity = EntityDefinition(entity_id="item", name="Item", properties=[{"property_name": "size"}])
        return ValidationEngine(_InMemoryMetadata(entity, [rule]))

    def test_non_numeric_range_bound_reports_validation_error(self):
        rule = ValidationRule(
            rule_id="r1", entity_id="item", property_name="size", rule_name="size_range",
            scope=RuleScope.FIELD, rule_type=RuleType.RANGE, metadata={"min": "small"}
        )
        issues = self._engine(rule).validate_record("item", {"size": 3}, "CREATE")

        assert len(issues) == 1
        assert issues[0].message.startswith("Validation error: ")

    def test_length_rule_min(self):
        rule = ValidationRule(
            rule_id="r2", entity_id="item", property_name="size", rule_name="size_length",
            scope=RuleScope.FIELD, rule_type=RuleType.LENGTH, metadata={"minLength": 3}
        )
        assert _messages(self._engine(rule).validate_record("item", {"size": "ab"}, "CREATE")) == [
            "size is too short"
        ]

    def test_error_message_overrides_custom_validator_message(self):
        from recordflow.core.validator_registry import ValidatorRegistry

        registry = ValidatorRegistry()
        registry.register("always_fails", lambda value, context: "validator text")
        rule = ValidationRule(
            rule_id="r3", entity_id="item", property_name="size", rule_name="size_custom",
            scope=RuleScope.FIELD, rule_type=RuleType.CUSTOM, error_message="Rule text",
            metadata={"validator": "always_fails"}
        )
        entity = EntityDefinition(entity_id="item", name="Item", properties=[{"property_name": "size"}])
        engine = ValidationEngine(_InMemoryMetadata(entity, [rule]), validator_registry=registry)

        assert _messages(engine.validate_record("item", {"size": 1}, "CREATE")) == ["Rule text"]
