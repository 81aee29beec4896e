"""SQLAlchemy database models for metadata, records and the workflow audit log."""

from datetime import datetime
from sqlalchemy import (
    Boolean, Column, DateTime, ForeignKey, Index, Integer, JSON, String, Text, UniqueConstraint
)
from sqlalchemy.orm import relationship
from .database import Base


class EntityDefinitionModel(Base):
    """Database model for entity definitions."""
    __tablename__ = "entity_definitions"

    entity_id = Column(String, primary_key=True)
    name = Column(String, nullable=False)
    workflow_id = Column(String, ForeignKey("workflow_definitions.workflow_id"), nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    # Properties in declaration order
    properties = relationship(
        "PropertyDefinitionModel",
        back_populates="entity",
        order_by="PropertyDefinitionModel.position",
        cascade="all, delete-orphan"
    )


class PropertyDefinitionModel(Base):
    """Database model for entity properties."""
    __tablename__ = "property_definitions"
    __table_args__ = (UniqueConstraint("entity_id", "property_name", name="uq_property_entity_name"),)

    id = Column(Integer, primary_key=True, autoincrement=True)
    entity_id = Column(String, ForeignKey("entity_definitions.entity_id"), nullable=False)
    property_name = Column(String, nullable=False)
    property_type = Column(String, nullable=False)  # string, number, boolean, date, singleSelect, ...
    label = Column(String)
    required = Column(Boolean, default=False)
    read_only = Column(Boolean, default=False)
    denormalize = Column(Boolean, default=False)
    calculation_expression = Column(Text)
    metadata_json = Column(JSON)
    position = Column(Integer, nullable=False, default=0)

    entity = relationship("EntityDefinitionModel", back_populates="properties")


class ValidationRuleModel(Base):
    """Database model for validation rules."""
    __tablename__ = "validation_rules"

    rule_id = Column(String, primary_key=True)
    entity_id = Column(String, ForeignKey("entity_definitions.entity_id"), nullable=False)
    property_name = Column(String)
    rule_name = Column(String, nullable=False)
    scope = Column(String, nullable=False)  # FIELD, ENTITY, CROSS_ENTITY, WORKFLOW_TRANSITION
    rule_type = Column(String, nullable=False)  # REQUIRED, TYPE, RANGE, LENGTH, PATTERN, EXPRESSION, CUSTOM
    expression = Column(Text)
    error_message = Column(Text)
    error_message_key = Column(String)
    trigger_events = Column(JSON)  # List of events; empty means always
    metadata_json = Column(JSON)
    is_active = Column(Boolean, default=True, nullable=False)
    created_at = Column(DateTime, default=datetime.utcnow)


class MeasureModel(Base):
    """Database model for versioned measures."""
    __tablename__ = "measures"
    __table_args__ = (UniqueConstraint("identifier", "version", name="uq_measure_identifier_version"),)

    measure_id = Column(String, primary_key=True)
    identifier = Column(String, nullable=False, index=True)
    version = Column(Integer, nullable=False)
    name = Column(String)
    description = Column(Text)
    parameters = Column(JSON)  # Ordered list of {name, default, type}
    expression = Column(Text, nullable=False)
    return_type = Column(String, nullable=False, default="number")
    created_at = Column(DateTime, default=datetime.utcnow)


class WorkflowDefinitionModel(Base):
    """Database model for workflow definitions."""
    __tablename__ = "workflow_definitions"

    workflow_id = Column(String, primary_key=True)
    name = Column(String, nullable=False)
    initial_state = Column(String, nullable=False)
    created_at = Column(DateTime, default=datetime.utcnow)

    states = relationship(
        "WorkflowStateModel",
        back_populates="workflow",
        order_by="WorkflowStateModel.position",
        cascade="all, delete-orphan"
    )
    transitions = relationship(
        "WorkflowTransitionModel",
        back_populates="workflow",
        order_by="WorkflowTransitionModel.transition_id",
        cascade="all, delete-orphan"
    )


class WorkflowStateModel(Base):
    """Database model for workflow states."""
    __tablename__ = "workflow_states"
    __table_args__ = (UniqueConstraint("workflow_id", "name", name="uq_workflow_state_name"),)

    id = Column(Integer, primary_key=True, autoincrement=True)
    workflow_id = Column(String, ForeignKey("workflow_definitions.workflow_id"), nullable=False)
    name = Column(String, nullable=False)
    label = Column(String)
    is_initial = Column(Boolean, default=False)
    is_final = Column(Boolean, default=False)
    position = Column(Integer, nullable=False, default=0)

    workflow = relationship("WorkflowDefinitionModel", back_populates="states")


class WorkflowTransitionModel(Base):
    """Database model for workflow transitions."""
    __tablename__ = "workflow_transitions"

    transition_id = Column(String, primary_key=True)
    workflow_id = Column(String, ForeignKey("workflow_definitions.workflow_id"), nullable=False)
    from_state = Column(String, nullable=False)
    to_state = Column(String, nullable=False)
    action_label = Column(String)
    label_key = Column(String)
    description = Column(Text)
    allowed_roles = Column(JSON)
    conditions = Column(JSON)  # List of boolean expressions
    metadata_json = Column(JSON)

    workflow = relationship("WorkflowDefinitionModel", back_populates="transitions")


class EntityRecordModel(Base):
    """Database model for entity records.

    ``version`` is the optimistic lock: every flush that updates the row
    checks and increments it, raising StaleDataError when another writer got
    there first.
    """
    __tablename__ = "entity_records"

    record_id = Column(String, primary_key=True)
    entity_id = Column(String, ForeignKey("entity_definitions.entity_id"), nullable=False, index=True)
    data = Column(JSON)
    state = Column(String)
    version = Column(Integer, nullable=False)
    created_by = Column(String)
    updated_by = Column(String)
    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow)

    __mapper_args__ = {"version_id_col": version}


class WorkflowAuditLogModel(Base):
    """Database model for workflow audit log entries. Rows are only ever inserted."""
    __tablename__ = "workflow_audit_log"
    __table_args__ = (Index("idx_workflow_audit_record_sequence", "record_id", "sequence"),)

    # Insertion order; newest-first listings sort on this, not on performed_at
    sequence = Column(Integer, primary_key=True, autoincrement=True)
    audit_id = Column(String, unique=True, nullable=False)
    entity_id = Column(String, nullable=False)
    record_id = Column(String, ForeignKey("entity_records.record_id"), nullable=False)
    workflow_id = Column(String, nullable=False)
    from_state = Column(String, nullable=False)
    to_state = Column(String, nullable=False)
    transition_id = Column(String, nullable=False)
    transition_label = Column(String)
    performed_by = Column(String)
    performed_at = Column(DateTime, nullable=False, default=datetime.utcnow)
    comments = Column(Text)
    metadata_json = Column(JSON)


class ActorRoleModel(Base):
    """Database model for actor role assignments."""
    __tablename__ = "actor_roles"

    actor = Column(String, primary_key=True)
    role = Column(String, primary_key=True)
