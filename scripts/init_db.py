#!/usr/bin/env python3
"""Database initialization script.

Creates the tables and, with ``--seed``, loads a small invoice example:
an entity with field rules, a calculated total, a discount measure and an
approval workflow.
"""

import argparse
import sys

from recordflow.config import load_config
from recordflow.core.exceptions import StorageError
from recordflow.core.logging import setup_logging
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
from recordflow.storage.database import configure_database, create_tables, SessionLocal
from recordflow.storage.migrations import run_migrations
from recordflow.storage.repositories import SqlAuthorizationService, SqlMetadataStore, SqlRecordStore


def seed_sample_data(logger) -> None:
    """Load the invoice example into the configured database."""
    metadata_store = SqlMetadataStore(SessionLocal)
    record_store = SqlRecordStore(SessionLocal)
    authorization = SqlAuthorizationService(SessionLocal)

    metadata_store.save_workflow(WorkflowDefinition(
        workflow_id="invoice-approval",
        name="Invoice approval",
        initial_state="DRAFT",
        states=[
            WorkflowStateDefinition(name="DRAFT", is_initial=True),
            WorkflowStateDefinition(name="SUBMITTED"),
            WorkflowStateDefinition(name="APPROVED", is_final=True),
        ],
        transitions=[
            WorkflowTransition(
                transition_id="submit",
                workflow_id="invoice-approval",
                from_state="DRAFT",
                to_state="SUBMITTED",
                action_label="Submit",
                conditions=["total > 0"]
            ),
            WorkflowTransition(
                transition_id="approve",
                workflow_id="invoice-approval",
                from_state="SUBMITTED",
                to_state="APPROVED",
                action_label="Approve",
                allowed_roles=["approver"]
            ),
        ]
    ))

    metadata_store.save_entity(EntityDefinition(
        entity_id="invoice",
        name="Invoice",
        workflow_id="invoice-approval",
        properties=[
            PropertyDefinition(property_name="customer", property_type=PropertyType.STRING, required=True),
            PropertyDefinition(property_name="quantity", property_type=PropertyType.NUMBER),
            PropertyDefinition(property_name="price", property_type=PropertyType.NUMBER),
            PropertyDefinition(
                property_name="total",
                property_type=PropertyType.CALCULATED,
                read_only=True,
                calculation_expression="quantity * price"
            ),
        ]
    ))

    rules = [
        ValidationRule(
            rule_id="invoice-customer-required",
            entity_id="invoice",
            property_name="customer",
            rule_name="customer_required",
            scope=RuleScope.FIELD,
            rule_type=RuleType.REQUIRED,
            error_message="Customer is required"
        ),
        ValidationRule(
            rule_id="invoice-quantity-range",
            entity_id="invoice",
            property_name="quantity",
            rule_name="quantity_range",
            scope=RuleScope.FIELD,
            rule_type=RuleType.RANGE,
            metadata={"min": 1, "max": 1000}
        ),
        ValidationRule(
            rule_id="invoice-approval-price",
            entity_id="invoice",
            rule_name="approval_price",
            scope=RuleScope.WORKFLOW_TRANSITION,
            rule_type=RuleType.EXPRESSION,
            expression="price >= 1",
            error_message="Invoices under 1.00 cannot be approved",
            metadata={"transitionId": "approve"}
        ),
    ]
    for rule in rules:
        metadata_store.save_rule(rule)

    metadata_store.save_measure(Measure(
        identifier="discounted-total",
        version=1,
        name="Discounted total",
        parameters=[MeasureParameter(name="amount"), MeasureParameter(name="rate", default=0.2)],
        expression="amount * rate"
    ))

    record_store.create_record(
        "invoice",
        {"customer": "ACME", "quantity": 3, "price": 12.5, "total": 37.5},
        actor="seed",
        record_id="invoice-1"
    )
    authorization.assign_role("manager", "approver")

    logger.info("Sample data loaded")


def main():
    """Initialize the database."""
    parser = argparse.ArgumentParser(description="Initialize the recordflow database")
    parser.add_argument("--config", help="Path to a .env configuration file")
    parser.add_argument("--seed", action="store_true", help="Load the invoice example")
    args = parser.parse_args()

    config = load_config(args.config)
    logger = setup_logging(level=config.log_level.value)

    try:
        logger.info("Initializing database...")

        engine = configure_database(config.database_url, echo=config.database_echo)
        create_tables(engine)
        logger.info("Database tables created successfully")

        run_migrations(engine)
        logger.info("Database migrations completed successfully")

        if args.seed:
            seed_sample_data(logger)

        logger.info("Database initialization completed")

    except StorageError as e:
        logger.error(f"Database initialization failed: {e.message}")
        sys.exit(1)


if __name__ == "__main__":
    main()
