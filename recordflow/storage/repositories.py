"""SQLAlchemy implementations of the engine collaborators."""

import uuid
from contextlib import contextmanager
from datetime import datetime
from typing import Any, Dict, Iterator, List, Optional

from sqlalchemy import desc
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.orm.exc import StaleDataError

from ..core.exceptions import ConflictError, StorageError
from ..core.logging import get_logger
from ..models.core import (
    EntityDefinition,
    Measure,
    MeasureParameter,
    PropertyDefinition,
    Record,
    RuleScope,
    ValidationRule,
    WorkflowAuditLogEntry,
    WorkflowDefinition,
    WorkflowStateDefinition,
    WorkflowTransition,
)
from .database import SessionLocal
from .models import (
    ActorRoleModel,
    EntityDefinitionModel,
    EntityRecordModel,
    MeasureModel,
    PropertyDefinitionModel,
    ValidationRuleModel,
    WorkflowAuditLogModel,
    WorkflowDefinitionModel,
    WorkflowStateModel,
    WorkflowTransitionModel,
)

logger = get_logger(__name__)


def _entity_from_model(model: EntityDefinitionModel) -> EntityDefinition:
    return EntityDefinition(
        entity_id=model.entity_id,
        name=model.name,
        workflow_id=model.workflow_id,
        properties=[
            PropertyDefinition(
                property_name=prop.property_name,
                property_type=prop.property_type,
                label=prop.label,
                required=bool(prop.required),
                read_only=bool(prop.read_only),
                denormalize=bool(prop.denormalize),
                calculation_expression=prop.calculation_expression,
                metadata=prop.metadata_json or {}
            )
            for prop in model.properties
        ]
    )


def _rule_from_model(model: ValidationRuleModel) -> ValidationRule:
    return ValidationRule(
        rule_id=model.rule_id,
        entity_id=model.entity_id,
        property_name=model.property_name,
        rule_name=model.rule_name,
        scope=model.scope,
        rule_type=model.rule_type,
        expression=model.expression,
        error_message=model.error_message,
        error_message_key=model.error_message_key,
        trigger_events=model.trigger_events or [],
        metadata=model.metadata_json or {}
    )


def _measure_from_model(model: MeasureModel) -> Measure:
    return Measure(
        measure_id=model.measure_id,
        identifier=model.identifier,
        version=model.version,
        name=model.name,
        description=model.description,
        parameters=[MeasureParameter(**parameter) for parameter in (model.parameters or [])],
        expression=model.expression,
        return_type=model.return_type
    )


def _transition_from_model(model: WorkflowTransitionModel) -> WorkflowTransition:
    return WorkflowTransition(
        transition_id=model.transition_id,
        workflow_id=model.workflow_id,
        from_state=model.from_state,
        to_state=model.to_state,
        action_label=model.action_label,
        label_key=model.label_key,
        description=model.description,
        allowed_roles=model.allowed_roles,
        conditions=model.conditions,
        metadata=model.metadata_json
    )


def _workflow_from_model(model: WorkflowDefinitionModel) -> WorkflowDefinition:
    return WorkflowDefinition(
        workflow_id=model.workflow_id,
        name=model.name,
        initial_state=model.initial_state,
        states=[
            WorkflowStateDefinition(
                name=state.name,
                label=state.label,
                is_initial=bool(state.is_initial),
                is_final=bool(state.is_final)
            )
            for state in model.states
        ],
        transitions=[_transition_from_model(transition) for transition in model.transitions]
    )


def _record_from_model(model: EntityRecordModel) -> Record:
    return Record(
        record_id=model.record_id,
        entity_id=model.entity_id,
        data=dict(model.data or {}),
        state=model.state,
        version=model.version,
        created_by=model.created_by,
        updated_by=model.updated_by,
        created_at=model.created_at,
        updated_at=model.updated_at
    )


def _audit_from_model(model: WorkflowAuditLogModel) -> WorkflowAuditLogEntry:
    return WorkflowAuditLogEntry(
        audit_id=model.audit_id,
        entity_id=model.entity_id,
        record_id=model.record_id,
        workflow_id=model.workflow_id,
        from_state=model.from_state,
        to_state=model.to_state,
        transition_id=model.transition_id,
        transition_label=model.transition_label,
        performed_by=model.performed_by,
        performed_at=model.performed_at,
        comments=model.comments,
        metadata=model.metadata_json
    )


class _SqlRepository:
    """Shared session handling for the SQL repositories."""

    def __init__(self, session_factory: Optional[sessionmaker] = None):
        self._session_factory = session_factory or SessionLocal

    def _read(self, operation: str, table: str, query):
        session = self._session_factory()
        try:
            return query(session)
        except SQLAlchemyError as e:
            logger.error(f"Database error during {operation}: {e}")
            raise StorageError(f"Failed to {operation}: {str(e)}", operation=operation, table=table)
        finally:
            session.close()

    def _write(self, operation: str, table: str, action):
        session = self._session_factory()
        try:
            result = action(session)
            session.commit()
            return result
        except IntegrityError as e:
            session.rollback()
            raise StorageError(f"Failed to {operation}: integrity violation: {e.orig}", operation=operation, table=table)
        except SQLAlchemyError as e:
            session.rollback()
            raise StorageError(f"Failed to {operation}: {str(e)}", operation=operation, table=table)
        finally:
            session.close()


class SqlMetadataStore(_SqlRepository):
    """Metadata store backed by the metadata tables."""

    def get_entity(self, entity_id: str) -> Optional[EntityDefinition]:
        def query(session: Session):
            model = session.query(EntityDefinitionModel).filter_by(entity_id=entity_id).first()
            return _entity_from_model(model) if model else None
        return self._read("get entity", "entity_definitions", query)

    def get_field_rules(self, entity_id: str, property_name: str) -> List[ValidationRule]:
        def query(session: Session):
            models = (
                session.query(ValidationRuleModel)
                .filter_by(entity_id=entity_id, property_name=property_name,
                           scope=RuleScope.FIELD.value, is_active=True)
                .order_by(ValidationRuleModel.rule_name, ValidationRuleModel.rule_id)
                .all()
            )
            return [_rule_from_model(model) for model in models]
        return self._read("get field rules", "validation_rules", query)

    def get_rules_by_scope(self, entity_id: str, scope: RuleScope) -> List[ValidationRule]:
        def query(session: Session):
            models = (
                session.query(ValidationRuleModel)
                .filter_by(entity_id=entity_id, scope=RuleScope(scope).value, is_active=True)
                .order_by(ValidationRuleModel.rule_name, ValidationRuleModel.rule_id)
                .all()
            )
            return [_rule_from_model(model) for model in models]
        return self._read("get rules by scope", "validation_rules", query)

    def get_measure(self, identifier: str, version: int) -> Optional[Measure]:
        def query(session: Session):
            model = session.query(MeasureModel).filter_by(identifier=identifier, version=version).first()
            return _measure_from_model(model) if model else None
        return self._read("get measure", "measures", query)

    def get_latest_measure(self, identifier: str) -> Optional[Measure]:
        def query(session: Session):
            model = (
                session.query(MeasureModel)
                .filter_by(identifier=identifier)
                .order_by(desc(MeasureModel.version))
                .first()
            )
            return _measure_from_model(model) if model else None
        return self._read("get latest measure", "measures", query)

    def get_workflow(self, workflow_id: str) -> Optional[WorkflowDefinition]:
        def query(session: Session):
            model = session.query(WorkflowDefinitionModel).filter_by(workflow_id=workflow_id).first()
            return _workflow_from_model(model) if model else None
        return self._read("get workflow", "workflow_definitions", query)

    def get_transition(self, transition_id: str) -> Optional[WorkflowTransition]:
        def query(session: Session):
            model = session.query(WorkflowTransitionModel).filter_by(transition_id=transition_id).first()
            return _transition_from_model(model) if model else None
        return self._read("get transition", "workflow_transitions", query)

    # Loading helpers used by seeding scripts and tests

    def save_entity(self, entity: EntityDefinition) -> None:
        """Insert an entity definition with its properties."""
        def action(session: Session):
            model = EntityDefinitionModel(
                entity_id=entity.entity_id,
                name=entity.name,
                workflow_id=entity.workflow_id
            )
            for position, prop in enumerate(entity.properties):
                model.properties.append(PropertyDefinitionModel(
                    property_name=prop.property_name,
                    property_type=prop.property_type.value,
                    label=prop.label,
                    required=prop.required,
                    read_only=prop.read_only,
                    denormalize=prop.denormalize,
                    calculation_expression=prop.calculation_expression,
                    metadata_json=prop.metadata,
                    position=position
                ))
            session.add(model)
        self._write("save entity", "entity_definitions", action)
        logger.info(f"Saved entity definition {entity.entity_id}")

    def save_rule(self, rule: ValidationRule, is_active: bool = True) -> None:
        """Insert a validation rule."""
        def action(session: Session):
            session.add(ValidationRuleModel(
                rule_id=rule.rule_id,
                entity_id=rule.entity_id,
                property_name=rule.property_name,
                rule_name=rule.rule_name,
                scope=rule.scope.value,
                rule_type=rule.rule_type.value,
                expression=rule.expression,
                error_message=rule.error_message,
                error_message_key=rule.error_message_key,
                trigger_events=list(rule.trigger_events),
                metadata_json=rule.metadata,
                is_active=is_active
            ))
        self._write("save rule", "validation_rules", action)

    def save_measure(self, measure: Measure) -> Measure:
        """Insert a measure version."""
        measure_id = measure.measure_id or str(uuid.uuid4())

        def action(session: Session):
            session.add(MeasureModel(
                measure_id=measure_id,
                identifier=measure.identifier,
                version=measure.version,
                name=measure.name,
                description=measure.description,
                parameters=[parameter.model_dump(mode="json") for parameter in measure.parameters],
                expression=measure.expression,
                return_type=measure.return_type.value
            ))
        self._write("save measure", "measures", action)
        return measure.model_copy(update={"measure_id": measure_id})

    def save_workflow(self, workflow: WorkflowDefinition) -> None:
        """Insert a workflow with its states and transitions."""
        def action(session: Session):
            model = WorkflowDefinitionModel(
                workflow_id=workflow.workflow_id,
                name=workflow.name,
                initial_state=workflow.initial_state
            )
            for position, state in enumerate(workflow.states):
                model.states.append(WorkflowStateModel(
                    name=state.name,
                    label=state.label,
                    is_initial=state.is_initial,
                    is_final=state.is_final,
                    position=position
                ))
            for transition in workflow.transitions:
                model.transitions.append(WorkflowTransitionModel(
                    transition_id=transition.transition_id,
                    from_state=transition.from_state,
                    to_state=transition.to_state,
                    action_label=transition.action_label,
                    label_key=transition.label_key,
                    description=transition.description,
                    allowed_roles=transition.allowed_roles,
                    conditions=transition.conditions,
                    metadata_json=transition.metadata
                ))
            session.add(model)
        self._write("save workflow", "workflow_definitions", action)
        logger.info(f"Saved workflow {workflow.workflow_id} with {len(workflow.transitions)} transition(s)")


class SqlAuditSink(_SqlRepository):
    """Audit sink writing to the workflow_audit_log table."""

    def add_to_session(self, session: Session, entry: WorkflowAuditLogEntry) -> WorkflowAuditLogEntry:
        """Add an entry to the caller's session; it commits with the caller's transaction."""
        audit_id = entry.audit_id or str(uuid.uuid4())
        session.add(WorkflowAuditLogModel(
            audit_id=audit_id,
            entity_id=entry.entity_id,
            record_id=entry.record_id,
            workflow_id=entry.workflow_id,
            from_state=entry.from_state,
            to_state=entry.to_state,
            transition_id=entry.transition_id,
            transition_label=entry.transition_label,
            performed_by=entry.performed_by,
            performed_at=entry.performed_at,
            comments=entry.comments,
            metadata_json=entry.metadata
        ))
        session.flush()
        return entry.model_copy(update={"audit_id": audit_id})

    def list_for_record(self, entity_id: str, record_id: str) -> List[WorkflowAuditLogEntry]:
        def query(session: Session):
            models = (
                session.query(WorkflowAuditLogModel)
                .filter_by(entity_id=entity_id, record_id=record_id)
                .order_by(desc(WorkflowAuditLogModel.sequence))
                .all()
            )
            return [_audit_from_model(model) for model in models]
        return self._read("list audit log", "workflow_audit_log", query)


class SqlRecordTransaction:
    """Record transaction bound to one SQLAlchemy session."""

    def __init__(self, session: Session, audit_sink: SqlAuditSink):
        self.session = session
        self._audit_sink = audit_sink
        self._rows: Dict[str, EntityRecordModel] = {}
        self.entity_id: Optional[str] = None
        self.record_id: Optional[str] = None

    def load_record(self, entity_id: str, record_id: str) -> Optional[Record]:
        row = self.session.query(EntityRecordModel).filter_by(entity_id=entity_id, record_id=record_id).first()
        if row is None:
            return None
        self._rows[record_id] = row
        self.entity_id = entity_id
        self.record_id = record_id
        return _record_from_model(row)

    def save_state(self, record: Record, state: str, actor: Optional[str]) -> Record:
        row = self._rows.get(record.record_id)
        if row is None:
            raise StorageError(
                f"Record {record.record_id} was not loaded in this transaction",
                operation="save_state",
                table="entity_records"
            )
        row.state = state
        row.updated_by = actor
        row.updated_at = datetime.utcnow()
        # Flush now so a stale version is detected before anything else is written
        self.session.flush()
        return _record_from_model(row)

    def append_audit(self, entry: WorkflowAuditLogEntry) -> WorkflowAuditLogEntry:
        return self._audit_sink.add_to_session(self.session, entry)


class SqlRecordStore(_SqlRepository):
    """Record store backed by the entity_records table."""

    def __init__(self, session_factory: Optional[sessionmaker] = None, audit_sink: Optional[SqlAuditSink] = None):
        super().__init__(session_factory)
        self._audit_sink = audit_sink or SqlAuditSink(self._session_factory)

    def get_record(self, entity_id: str, record_id: str) -> Optional[Record]:
        def query(session: Session):
            model = session.query(EntityRecordModel).filter_by(entity_id=entity_id, record_id=record_id).first()
            return _record_from_model(model) if model else None
        return self._read("get record", "entity_records", query)

    def create_record(
        self,
        entity_id: str,
        data: Dict[str, Any],
        actor: Optional[str] = None,
        record_id: Optional[str] = None,
        state: Optional[str] = None
    ) -> Record:
        """Insert a record (used by seeding scripts and tests)."""
        record_id = record_id or str(uuid.uuid4())
        now = datetime.utcnow()

        def action(session: Session):
            model = EntityRecordModel(
                record_id=record_id,
                entity_id=entity_id,
                data=data,
                state=state,
                created_by=actor,
                updated_by=actor,
                created_at=now,
                updated_at=now
            )
            session.add(model)
            session.flush()
            return _record_from_model(model)
        return self._write("create record", "entity_records", action)

    @contextmanager
    def transaction(self) -> Iterator[SqlRecordTransaction]:
        """Open a transaction; commit on clean exit, roll back on any error.

        Raises:
            ConflictError: If the optimistic version check fails
            StorageError: If any other database error occurs
        """
        session = self._session_factory()
        tx = SqlRecordTransaction(session, self._audit_sink)
        try:
            yield tx
            session.commit()
        except StaleDataError as e:
            session.rollback()
            logger.warning(f"Concurrent update detected on record {tx.record_id}: {e}")
            raise ConflictError(
                "Record was modified by a concurrent transition; retry the request",
                entity_id=tx.entity_id,
                record_id=tx.record_id
            )
        except SQLAlchemyError as e:
            session.rollback()
            logger.error(f"Record transaction failed: {e}")
            raise StorageError(f"Record transaction failed: {str(e)}", operation="transaction", table="entity_records")
        except Exception:
            session.rollback()
            raise
        finally:
            session.close()


class SqlAuthorizationService(_SqlRepository):
    """Role lookups against the actor_roles table."""

    def has_any_role(self, actor: Optional[str], roles: List[str]) -> bool:
        if not actor or not roles:
            return False

        def query(session: Session):
            match = (
                session.query(ActorRoleModel)
                .filter(ActorRoleModel.actor == actor, ActorRoleModel.role.in_(list(roles)))
                .first()
            )
            return match is not None
        return self._read("check roles", "actor_roles", query)

    def assign_role(self, actor: str, role: str) -> None:
        """Grant a role to an actor."""
        def action(session: Session):
            if session.get(ActorRoleModel, (actor, role)) is None:
                session.add(ActorRoleModel(actor=actor, role=role))
        self._write("assign role", "actor_roles", action)
