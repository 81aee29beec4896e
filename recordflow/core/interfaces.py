"""Collaborator contracts consumed by the engines.

The engines only depend on these Protocols; ``recordflow.storage`` provides
SQLAlchemy implementations and tests may substitute their own.
"""

from typing import ContextManager, List, Optional, Protocol

from ..models.core import (
    EntityDefinition,
    Measure,
    Record,
    RuleScope,
    ValidationRule,
    WorkflowAuditLogEntry,
    WorkflowDefinition,
    WorkflowTransition,
)


class MetadataStore(Protocol):
    """Read-only access to admin-authored metadata."""

    def get_entity(self, entity_id: str) -> Optional[EntityDefinition]: ...

    def get_field_rules(self, entity_id: str, property_name: str) -> List[ValidationRule]:
        """FIELD rules for one property, ordered by rule name."""
        ...

    def get_rules_by_scope(self, entity_id: str, scope: RuleScope) -> List[ValidationRule]: ...

    def get_measure(self, identifier: str, version: int) -> Optional[Measure]: ...

    def get_latest_measure(self, identifier: str) -> Optional[Measure]: ...

    def get_workflow(self, workflow_id: str) -> Optional[WorkflowDefinition]:
        """Workflow with its states and transitions."""
        ...

    def get_transition(self, transition_id: str) -> Optional[WorkflowTransition]: ...


class RecordTransaction(Protocol):
    """Unit of work over one record; commits on clean exit, rolls back otherwise."""

    def load_record(self, entity_id: str, record_id: str) -> Optional[Record]: ...

    def save_state(self, record: Record, state: str, actor: Optional[str]) -> Record:
        """Persist a new state, bumping the record version."""
        ...

    def append_audit(self, entry: WorkflowAuditLogEntry) -> WorkflowAuditLogEntry: ...


class RecordStore(Protocol):
    """Access to entity records."""

    def get_record(self, entity_id: str, record_id: str) -> Optional[Record]: ...

    def transaction(self) -> ContextManager[RecordTransaction]:
        """Open a transaction.

        Raises:
            ConflictError: If a concurrent writer updated the record first
        """
        ...


class AuthorizationService(Protocol):
    """Role checks for role-restricted transitions."""

    def has_any_role(self, actor: Optional[str], roles: List[str]) -> bool: ...


class AuditSink(Protocol):
    """Read side of the append-only workflow audit trail.

    Entries are written only through ``RecordTransaction.append_audit`` so they
    commit together with the state change.
    """

    def list_for_record(self, entity_id: str, record_id: str) -> List[WorkflowAuditLogEntry]:
        """Entries for a record, newest first."""
        ...
