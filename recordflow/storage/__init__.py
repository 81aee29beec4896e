"""Database models and storage layer."""

from .database import Base, SessionLocal, create_tables, drop_tables
from .models import (
    EntityDefinitionModel,
    PropertyDefinitionModel,
    ValidationRuleModel,
    MeasureModel,
    WorkflowDefinitionModel,
    WorkflowStateModel,
    WorkflowTransitionModel,
    EntityRecordModel,
    WorkflowAuditLogModel,
    ActorRoleModel,
)
from .repositories import (
    SqlMetadataStore,
    SqlRecordStore,
    SqlRecordTransaction,
    SqlAuditSink,
    SqlAuthorizationService,
)

__all__ = [
    "Base",
    "SessionLocal",
    "create_tables",
    "drop_tables",
    "EntityDefinitionModel",
    "PropertyDefinitionModel",
    "ValidationRuleModel",
    "MeasureModel",
    "WorkflowDefinitionModel",
    "WorkflowStateModel",
    "WorkflowTransitionModel",
    "EntityRecordModel",
    "WorkflowAuditLogModel",
    "ActorRoleModel",
    "SqlMetadataStore",
    "SqlRecordStore",
    "SqlRecordTransaction",
    "SqlAuditSink",
    "SqlAuthorizationService",
]
