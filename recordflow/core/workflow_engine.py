"""Workflow transition engine with an append-only audit trail."""

from datetime import datetime
from typing import Callable, List, Optional

from ..models.core import (
    AvailableTransition,
    CurrentState,
    EntityDefinition,
    Record,
    TransitionResult,
    WorkflowAuditLogEntry,
    WorkflowDefinition,
    WorkflowTransition,
)
from .exceptions import (
    ForbiddenError,
    IllegalStateError,
    InvalidTransitionError,
    NoWorkflowError,
    NotFoundError,
    TransitionValidationError,
)
from .interfaces import AuditSink, AuthorizationService, MetadataStore, RecordStore
from .logging import get_logger, set_logging_context, clear_logging_context
from .validation_engine import ValidationEngine

logger = get_logger(__name__)


def resolve_current_state(record: Record, workflow: WorkflowDefinition) -> CurrentState:
    """Resolve a record's workflow position, substituting the initial state when unset."""
    if record.state:
        return CurrentState(state=record.state, defaulted=False)
    return CurrentState(state=workflow.initial_state, defaulted=True)


class WorkflowEngine:
    """Executes workflow transitions on entity records."""

    def __init__(
        self,
        metadata_store: MetadataStore,
        record_store: RecordStore,
        audit_sink: AuditSink,
        authorization: AuthorizationService,
        validation_engine: ValidationEngine,
        clock: Optional[Callable[[], datetime]] = None
    ):
        self.metadata_store = metadata_store
        self.record_store = record_store
        self.audit_sink = audit_sink
        self.authorization = authorization
        self.validation_engine = validation_engine
        self.clock = clock or datetime.utcnow

    def execute_transition(
        self,
        entity_id: str,
        record_id: str,
        transition_id: str,
        comments: Optional[str],
        actor: Optional[str]
    ) -> TransitionResult:
        """
        Execute a transition on a record.

        The state change and its audit entry are written in one record-store
        transaction; either both commit or neither does.

        Args:
            entity_id: Entity the record belongs to
            record_id: Record to transition
            transition_id: Transition to execute
            comments: Optional free-text comments stored on the audit entry
            actor: Actor performing the transition

        Returns:
            TransitionResult describing the executed transition

        Raises:
            NotFoundError: If the entity, record, workflow or transition is missing
            NoWorkflowError: If the entity has no workflow assigned
            InvalidTransitionError: If the transition belongs to another workflow
            IllegalStateError: If the record is not in the transition's source state
            ForbiddenError: If the actor holds none of the allowed roles
            TransitionValidationError: If conditions or transition rules fail
            ConflictError: If a concurrent transition updated the record first
        """
        set_logging_context(entity_id=entity_id, record_id=record_id, transition_id=transition_id)
        try:
            entity = self._get_entity(entity_id)
            if not entity.workflow_id:
                raise NoWorkflowError("Entity does not have a workflow assigned", entity_id=entity_id)

            if self.record_store.get_record(entity_id, record_id) is None:
                raise NotFoundError(f"Record not found: {record_id}", resource_type="record", resource_id=record_id)

            workflow = self._get_workflow(entity.workflow_id)
            transition = self.metadata_store.get_transition(transition_id)
            if transition is None:
                raise NotFoundError(
                    f"Transition not found: {transition_id}",
                    resource_type="transition",
                    resource_id=transition_id
                )

            if transition.workflow_id != workflow.workflow_id:
                raise InvalidTransitionError(
                    "Transition does not belong to the entity's workflow",
                    transition_id=transition_id,
                    workflow_id=workflow.workflow_id
                )

            with self.record_store.transaction() as tx:
                record = tx.load_record(entity_id, record_id)
                if record is None:
                    raise NotFoundError(f"Record not found: {record_id}", resource_type="record", resource_id=record_id)

                current = resolve_current_state(record, workflow)
                if current.defaulted:
                    record = tx.save_state(record, current.state, actor)
                    logger.debug(f"Record {record_id} had no state; initialized to '{current.state}'")

                if transition.from_state != current.state:
                    raise IllegalStateError(
                        f"Cannot execute transition from state '{transition.from_state}'. "
                        f"Current state is '{current.state}'",
                        current_state=current.state,
                        transition_id=transition_id
                    )

                self._authorize(transition, actor)
                self._validate(entity, record, transition, actor)

                performed_at = self.clock()
                tx.save_state(record, transition.to_state, actor)
                tx.append_audit(WorkflowAuditLogEntry(
                    entity_id=entity_id,
                    record_id=record_id,
                    workflow_id=workflow.workflow_id,
                    from_state=current.state,
                    to_state=transition.to_state,
                    transition_id=transition.transition_id,
                    transition_label=transition.action_label,
                    performed_by=actor,
                    performed_at=performed_at,
                    comments=comments,
                    metadata={}
                ))

            logger.info(
                f"Workflow transition executed: entity_id={entity_id}, record_id={record_id}, "
                f"from_state={current.state}, to_state={transition.to_state}, "
                f"transition_id={transition_id}, actor={actor}"
            )

            return TransitionResult(
                entity_id=entity_id,
                record_id=record_id,
                from_state=current.state,
                to_state=transition.to_state,
                transition_id=transition.transition_id,
                transition_label=transition.action_label,
                performed_by=actor,
                performed_at=performed_at,
                comments=comments
            )
        finally:
            clear_logging_context()

    def get_available_transitions(self, entity_id: str, record_id: str) -> List[AvailableTransition]:
        """
        List transitions executable from a record's current state.

        Read-only: a record without a state is treated as being in the
        workflow's initial state, but nothing is persisted.

        Raises:
            NotFoundError: If the entity or record is missing
        """
        entity = self._get_entity(entity_id)
        if not entity.workflow_id:
            return []

        record = self.record_store.get_record(entity_id, record_id)
        if record is None:
            raise NotFoundError(f"Record not found: {record_id}", resource_type="record", resource_id=record_id)

        workflow = self.metadata_store.get_workflow(entity.workflow_id)
        if workflow is None:
            return []

        current = resolve_current_state(record, workflow)
        return [
            AvailableTransition(
                transition_id=transition.transition_id,
                from_state=transition.from_state,
                to_state=transition.to_state,
                action_label=transition.action_label,
                label_key=transition.label_key,
                description=transition.description,
                allowed_roles=transition.allowed_roles
            )
            for transition in workflow.transitions
            if transition.from_state == current.state
        ]

    def get_audit_log(self, entity_id: str, record_id: str) -> List[WorkflowAuditLogEntry]:
        """Audit entries for a record, newest first."""
        return self.audit_sink.list_for_record(entity_id, record_id)

    def _get_entity(self, entity_id: str) -> EntityDefinition:
        entity = self.metadata_store.get_entity(entity_id)
        if entity is None:
            raise NotFoundError(f"Entity not found: {entity_id}", resource_type="entity", resource_id=entity_id)
        return entity

    def _get_workflow(self, workflow_id: str) -> WorkflowDefinition:
        workflow = self.metadata_store.get_workflow(workflow_id)
        if workflow is None:
            raise NotFoundError(f"Workflow not found: {workflow_id}", resource_type="workflow", resource_id=workflow_id)
        return workflow

    def _authorize(self, transition: WorkflowTransition, actor: Optional[str]) -> None:
        if not transition.has_role_restriction:
            return
        if not self.authorization.has_any_role(actor, transition.allowed_roles):
            raise ForbiddenError(
                f"Actor is not allowed to execute transition '{transition.transition_id}'",
                actor=actor,
                allowed_roles=transition.allowed_roles
            )

    def _validate(
        self,
        entity: EntityDefinition,
        record: Record,
        transition: WorkflowTransition,
        actor: Optional[str]
    ) -> None:
        issues = self.validation_engine.validate_transition(entity.entity_id, record.data, transition, actor=actor)
        if not issues:
            return

        parts = []
        for issue in issues:
            prefix = f"{issue.property_name}: " if issue.property_name else ""
            parts.append(f"{prefix}{issue.message}")
        raise TransitionValidationError(
            "Validation failed: " + "; ".join(parts),
            issues=issues,
            current_state=record.state,
            transition_id=transition.transition_id
        )
