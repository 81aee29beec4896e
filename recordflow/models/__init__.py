"""Data models for entity metadata, records, measures and workflows."""

from .core import (
    PropertyType,
    RuleScope,
    RuleType,
    ReturnType,
    PropertyDefinition,
    EntityDefinition,
    ValidationRule,
    MeasureParameter,
    Measure,
    WorkflowStateDefinition,
    WorkflowTransition,
    WorkflowDefinition,
    Record,
    CurrentState,
    WorkflowAuditLogEntry,
    ValidationIssue,
    TransitionResult,
    AvailableTransition,
    MeasureRequest,
    MeasureResult,
)

__all__ = [
    "PropertyType",
    "RuleScope",
    "RuleType",
    "ReturnType",
    "PropertyDefinition",
    "EntityDefinition",
    "ValidationRule",
    "MeasureParameter",
    "Measure",
    "WorkflowStateDefinition",
    "WorkflowTransition",
    "WorkflowDefinition",
    "Record",
    "CurrentState",
    "WorkflowAuditLogEntry",
    "ValidationIssue",
    "TransitionResult",
    "AvailableTransition",
    "MeasureRequest",
    "MeasureResult",
]
