"""Pytest configuration and fixtures."""

import os
import tempfile
from datetime import datetime, timedelta
from itertools import count

import pytest
from sqlalchemy.orm import sessionmaker

from recordflow.core.expression import ExpressionInterpreter
from recordflow.core.measure_evaluator import MeasureEvaluator
from recordflow.core.validation_engine import ValidationEngine
from recordflow.core.validator_registry import ValidatorRegistry
from recordflow.core.workflow_engine import WorkflowEngine
from recordflow.models import (
    EntityDefinition,
    Measure,
    MeasureParameter,
    PropertyDefinition,
    PropertyType,
    RuleScope,
    RuleType,
    ValidationRule,
    WorkflowDefinition,
    WorkflowStateDefinition,
    WorkflowTransition,
)
from recordflow.storage.database import create_database_engine, create_tables
from recordflow.storage.repositories import (
    SqlAuditSink,
    SqlAuthorizationService,
    SqlMetadataStore,
    SqlRecordStore,
)


@pytest.fixture(scope="function")
def session_factory():
    """Create a temporary file-backed test database."""
    db_fd, db_path = tempfile.mkstemp(suffix=".db")
    os.close(db_fd)

    engine = create_database_engine(f"sqlite:///{db_path}")
    create_tables(engine)
    TestingSessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)

    yield TestingSessionLocal

    engine.dispose()
    try:
        os.unlink(db_path)
    except OSError:
        pass


@pytest.fixture
def metadata_store(session_factory):
    """Metadata store seeded with the order and note entities."""
    store = SqlMetadataStore(session_factory)
    seed_metadata(store)
    return store


@pytest.fixture
def audit_sink(session_factory):
    return SqlAuditSink(session_factory)


@pytest.fixture
def record_store(session_factory, audit_sink, metadata_store):
    return SqlRecordStore(session_factory, audit_sink)


@pytest.fixture
def authorization(session_factory):
    """Authorization service where alice is an approver."""
    service = SqlAuthorizationService(session_factory)
    service.assign_role("alice", "approver")
    return service


@pytest.fixture
def interpreter():
    return ExpressionInterpreter()


@pytest.fixture
def validator_registry():
    """Registry with an email format validator."""
    registry = ValidatorRegistry()
    registry.register("email_format", email_format, "Checks that an email contains @")
    return registry


@pytest.fixture
def validation_engine(metadata_store, interpreter, validator_registry):
    return ValidationEngine(metadata_store, interpreter, validator_registry)


@pytest.fixture
def measure_evaluator(metadata_store, interpreter):
    return MeasureEvaluator(metadata_store, interpreter)


@pytest.fixture
def clock():
    """Deterministic clock advancing one second per call."""
    ticks = count()
    start = datetime(2024, 1, 1, 12, 0, 0)
    return lambda: start + timedelta(seconds=next(ticks))


@pytest.fixture
def workflow_engine(metadata_store, record_store, audit_sink, authorization, validation_engine, clock):
    return WorkflowEngine(
        metadata_store=metadata_store,
        record_store=record_store,
        audit_sink=audit_sink,
        authorization=authorization,
        validation_engine=validation_engine,
        clock=clock
    )


def email_format(value, context):
    """Custom validator used by the order entity's email rule."""
    if value is None or "@" in value:
        return True
    return "Email must contain @"


def seed_metadata(store: SqlMetadataStore) -> None:
    """Load the order workflow, entities, rules and measures."""
    store.save_workflow(WorkflowDefinition(
        workflow_id="order-flow",
        name="Order flow",
        initial_state="DRAFT",
        states=[
            WorkflowStateDefinition(name="DRAFT", is_initial=True),
            WorkflowStateDefinition(name="SUBMITTED"),
            WorkflowStateDefinition(name="APPROVED", is_final=True),
        ],
        transitions=[
            WorkflowTransition(
                transition_id="submit",
                workflow_id="order-flow",
                from_state="DRAFT",
                to_state="SUBMITTED",
                action_label="Submit",
                conditions=["amount > 0"]
            ),
            WorkflowTransition(
                transition_id="approve",
                workflow_id="order-flow",
                from_state="SUBMITTED",
                to_state="APPROVED",
                action_label="Approve",
                allowed_roles=["approver"]
            ),
        ]
    ))
    store.save_workflow(WorkflowDefinition(
        workflow_id="archive-flow",
        name="Archive flow",
        initial_state="ACTIVE",
        states=[WorkflowStateDefinition(name="ACTIVE"), WorkflowStateDefinition(name="ARCHIVED")],
        transitions=[
            WorkflowTransition(
                transition_id="archive",
                workflow_id="archive-flow",
                from_state="ACTIVE",
                to_state="ARCHIVED"
            ),
        ]
    ))

    store.save_entity(EntityDefinition(
        entity_id="order",
        name="Order",
        workflow_id="order-flow",
        properties=[
            PropertyDefinition(property_name="name", label="Name", property_type=PropertyType.STRING, required=True),
            PropertyDefinition(property_name="amount", property_type=PropertyType.NUMBER),
            PropertyDefinition(property_name="quantity", property_type=PropertyType.NUMBER),
            PropertyDefinition(property_name="code", property_type=PropertyType.STRING),
            PropertyDefinition(property_name="email", property_type=PropertyType.STRING),
            PropertyDefinition(
                property_name="total",
                property_type=PropertyType.CALCULATED,
                read_only=True,
                calculation_expression="quantity * amount"
            ),
        ]
    ))
    store.save_entity(EntityDefinition(
        entity_id="note",
        name="Note",
        properties=[PropertyDefinition(property_name="text")]
    ))

    rules = [
        ValidationRule(
            rule_id="order-name-required", entity_id="order", property_name="name",
            rule_name="name_required", scope=RuleScope.FIELD, rule_type=RuleType.REQUIRED
        ),
        ValidationRule(
            rule_id="order-name-length", entity_id="order", property_name="name",
            rule_name="name_length", scope=RuleScope.FIELD, rule_type=RuleType.LENGTH,
            trigger_events=["UPDATE"], metadata={"maxLength": 20}
        ),
        ValidationRule(
            rule_id="order-amount-range", entity_id="order", property_name="amount",
            rule_name="amount_range", scope=RuleScope.FIELD, rule_type=RuleType.RANGE,
            metadata={"min": 0, "max": 1000}
        ),
        ValidationRule(
            rule_id="order-quantity-nonzero", entity_id="order", property_name="quantity",
            rule_name="quantity_nonzero", scope=RuleScope.FIELD, rule_type=RuleType.EXPRESSION,
            expression="value != 0", error_message="Quantity cannot be zero"
        ),
        ValidationRule(
            rule_id="order-quantity-type", entity_id="order", property_name="quantity",
            rule_name="quantity_type", scope=RuleScope.FIELD, rule_type=RuleType.TYPE
        ),
        ValidationRule(
            rule_id="order-code-pattern", entity_id="order", property_name="code",
            rule_name="code_pattern", scope=RuleScope.FIELD, rule_type=RuleType.PATTERN,
            error_message="Code must look like ABC-123", metadata={"pattern": r"[A-Z]{3}-\d+"}
        ),
        ValidationRule(
            rule_id="order-email-format", entity_id="order", property_name="email",
            rule_name="email_format", scope=RuleScope.FIELD, rule_type=RuleType.CUSTOM,
            metadata={"validator": "email_format"}
        ),
        ValidationRule(
            rule_id="order-email-import", entity_id="order", property_name="email",
            rule_name="email_import", scope=RuleScope.FIELD, rule_type=RuleType.CUSTOM,
            trigger_events=["IMPORT"], metadata={"validator": "missing_validator"}
        ),
        ValidationRule(
            rule_id="order-not-void", entity_id="order", rule_name="not_void",
            scope=RuleScope.ENTITY, rule_type=RuleType.EXPRESSION,
            expression="code != 'VOID'", error_message="Voided orders cannot be saved"
        ),
        ValidationRule(
            rule_id="order-unlocked", entity_id="order", rule_name="unlocked",
            scope=RuleScope.CROSS_ENTITY, rule_type=RuleType.EXPRESSION,
            expression="previous.status != 'LOCKED'", trigger_events=["DELETE"]
        ),
        ValidationRule(
            rule_id="order-approve-minimum", entity_id="order", rule_name="approve_minimum",
            scope=RuleScope.WORKFLOW_TRANSITION, rule_type=RuleType.EXPRESSION,
            expression="amount >= 10", error_message="Amount too small to approve",
            metadata={"transitionId": "approve"}
        ),
    ]
    for rule in rules:
        store.save_rule(rule)
    store.save_rule(
        ValidationRule(
            rule_id="order-retired", entity_id="order", rule_name="retired",
            scope=RuleScope.ENTITY, rule_type=RuleType.EXPRESSION, expression="false"
        ),
        is_active=False
    )

    store.save_measure(Measure(
        identifier="discounted",
        version=1,
        parameters=[MeasureParameter(name="amount"), MeasureParameter(name="rate", default=0.2)],
        expression="amount * rate"
    ))
    store.save_measure(Measure(
        identifier="discounted",
        version=2,
        parameters=[MeasureParameter(name="amount"), MeasureParameter(name="rate", default=0.2)],
        expression="amount * rate * 2"
    ))
    store.save_measure(Measure(
        identifier="ratio",
        version=1,
        parameters=[MeasureParameter(name="amount"), MeasureParameter(name="divisor")],
        expression="$amount / $divisor"
    ))
