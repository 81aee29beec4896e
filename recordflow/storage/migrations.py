"""Database migrations for lookup indexes and SQLite tuning."""

from typing import Optional

from sqlalchemy import Engine, text
from .database import get_database_engine
from ..core.logging import get_logger

logger = get_logger(__name__)


def create_lookup_indexes(engine: Optional[Engine] = None):
    """Create indexes used by rule, measure, record and audit lookups."""
    engine = engine or get_database_engine()
    try:
        with engine.connect() as connection:
            # Field rules are fetched per entity/property and ordered by rule name
            connection.execute(text("""
                CREATE INDEX IF NOT EXISTS idx_validation_rules_entity_property
                ON validation_rules(entity_id, property_name, scope, rule_name)
            """))

            # Entity, cross-entity and transition rules are fetched per scope
            connection.execute(text("""
                CREATE INDEX IF NOT EXISTS idx_validation_rules_entity_scope
                ON validation_rules(entity_id, scope, rule_name)
            """))

            # Latest measure version lookup
            connection.execute(text("""
                CREATE INDEX IF NOT EXISTS idx_measures_identifier_version
                ON measures(identifier, version DESC)
            """))

            # Transitions by workflow and source state
            connection.execute(text("""
                CREATE INDEX IF NOT EXISTS idx_workflow_transitions_from_state
                ON workflow_transitions(workflow_id, from_state)
            """))

            # Records by entity
            connection.execute(text("""
                CREATE INDEX IF NOT EXISTS idx_entity_records_entity_record
                ON entity_records(entity_id, record_id)
            """))

            # Audit log newest-first per record
            connection.execute(text("""
                CREATE INDEX IF NOT EXISTS idx_workflow_audit_entity_record
                ON workflow_audit_log(entity_id, record_id, sequence DESC)
            """))

            connection.commit()
            logger.info("Successfully created lookup indexes")

    except Exception as e:
        logger.error(f"Failed to create database indexes: {str(e)}")
        raise


def optimize_sqlite(engine: Optional[Engine] = None):
    """Apply SQLite pragmas that help concurrent readers."""
    engine = engine or get_database_engine()
    if "sqlite" not in str(engine.url) or ":memory:" in str(engine.url):
        return

    try:
        with engine.connect() as connection:
            # Enable WAL mode for better concurrent read performance
            connection.execute(text("PRAGMA journal_mode=WAL"))
            connection.execute(text("PRAGMA optimize"))
            connection.commit()
            logger.info("Applied SQLite optimizations")
    except Exception as e:
        logger.error(f"Failed to optimize database: {str(e)}")
        raise


def run_migrations(engine: Optional[Engine] = None):
    """Run all migrations."""
    try:
        logger.info("Starting database migrations")
        create_lookup_indexes(engine)
        optimize_sqlite(engine)
        logger.info("Database migrations completed successfully")
    except Exception as e:
        logger.error(f"Database migrations failed: {str(e)}")
        raise


if __name__ == "__main__":
    run_migrations()
