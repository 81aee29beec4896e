"""Core Pydantic models for entity metadata, records, measures and workflows."""

from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional
from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator


class PropertyType(str, Enum):
    """Enumeration of property value types."""
    STRING = "string"
    NUMBER = "number"
    BOOLEAN = "boolean"
    DATE = "date"
    SINGLE_SELECT = "singleSelect"
    MULTI_SELECT = "multiSelect"
    REFERENCE = "reference"
    CALCULATED = "calculated"


class RuleScope(str, Enum):
    """Where a validation rule applies."""
    FIELD = "FIELD"
    ENTITY = "ENTITY"
    CROSS_ENTITY = "CROSS_ENTITY"
    WORKFLOW_TRANSITION = "WORKFLOW_TRANSITION"


class RuleType(str, Enum):
    """How a validation rule is evaluated."""
    REQUIRED = "REQUIRED"
    TYPE = "TYPE"
    RANGE = "RANGE"
    LENGTH = "LENGTH"
    PATTERN = "PATTERN"
    EXPRESSION = "EXPRESSION"
    CUSTOM = "CUSTOM"


class ReturnType(str, Enum):
    """Declared result type of a measure."""
    NUMBER = "number"
    STRING = "string"
    BOOL = "bool"
    DATE = "date"
    REFERENCE = "reference"


class PropertyDefinition(BaseModel):
    """Definition of a single entity property."""
    property_name: str = Field(..., description="Property name, unique within its entity")
    property_type: PropertyType = Field(PropertyType.STRING, description="Value type")
    label: Optional[str] = Field(None, description="Display label")
    required: bool = Field(False, description="Whether a value must be present")
    read_only: bool = Field(False, description="Whether the value is system-managed")
    denormalize: bool = Field(False, description="Copy the value into the search index")
    calculation_expression: Optional[str] = Field(None, description="Expression for calculated properties")
    metadata: Dict[str, Any] = Field(default_factory=dict, description="Type-specific metadata")

    @field_validator('property_name')
    @classmethod
    def validate_property_name(cls, property_name):
        """Ensure property name is not empty."""
        if not property_name or not property_name.strip():
            raise ValueError("Property name cannot be empty")
        return property_name.strip()

    @model_validator(mode='after')
    def validate_calculation(self):
        """Calculated properties need an expression."""
        if self.property_type == PropertyType.CALCULATED and not self.effective_expression:
            raise ValueError(f"Calculated property '{self.property_name}' requires a calculation expression")
        return self

    @property
    def display_name(self) -> str:
        return self.label or self.property_name

    @property
    def effective_expression(self) -> Optional[str]:
        """Calculation expression, falling back to ``metadata['expression']``."""
        if self.calculation_expression:
            return self.calculation_expression
        expression = self.metadata.get("expression")
        return expression if isinstance(expression, str) else None


class EntityDefinition(BaseModel):
    """Definition of an entity and its properties."""
    entity_id: str = Field(..., description="Entity identifier")
    name: str = Field(..., description="Entity name")
    properties: List[PropertyDefinition] = Field(default_factory=list, description="Ordered properties")
    workflow_id: Optional[str] = Field(None, description="Workflow attached to this entity")

    @field_validator('properties')
    @classmethod
    def validate_unique_property_names(cls, properties):
        """Ensure all property names are unique."""
        names = [prop.property_name for prop in properties]
        if len(names) != len(set(names)):
            raise ValueError("All property names must be unique")
        return properties

    def get_property(self, property_name: str) -> Optional[PropertyDefinition]:
        for prop in self.properties:
            if prop.property_name == property_name:
                return prop
        return None


class ValidationRule(BaseModel):
    """Declarative check attached to a property, entity or transition."""
    rule_id: str = Field(..., description="Rule identifier")
    entity_id: str = Field(..., description="Entity the rule belongs to")
    property_name: Optional[str] = Field(None, description="Property for FIELD rules")
    rule_name: str = Field(..., description="Rule name, used for ordering")
    scope: RuleScope = Field(..., description="Rule scope")
    rule_type: RuleType = Field(..., description="Rule type")
    expression: Optional[str] = Field(None, description="Expression for EXPRESSION and non-field rules")
    error_message: Optional[str] = Field(None, description="Message reported on failure")
    error_message_key: Optional[str] = Field(None, description="Message key for localization")
    trigger_events: List[str] = Field(default_factory=list, description="Events the rule runs on; empty means always")
    metadata: Dict[str, Any] = Field(default_factory=dict, description="Type-specific metadata")

    @model_validator(mode='after')
    def validate_scope(self):
        """FIELD rules must name a property."""
        if self.scope == RuleScope.FIELD and not self.property_name:
            raise ValueError(f"Field rule '{self.rule_name}' must name a property")
        return self

    def applies_to(self, trigger_event: Optional[str]) -> bool:
        """Whether the rule runs for the given trigger event."""
        return not self.trigger_events or trigger_event in self.trigger_events


class MeasureParameter(BaseModel):
    """Declared measure parameter."""
    name: str = Field(..., description="Parameter name")
    default: Optional[Any] = Field(None, description="Default value")
    type: Optional[str] = Field(None, description="Declared type")

    @property
    def has_default(self) -> bool:
        return self.default is not None


class Measure(BaseModel):
    """Named, versioned, parameterized calculation."""
    measure_id: Optional[str] = Field(None, description="Storage identifier")
    identifier: str = Field(..., description="Measure identifier")
    version: int = Field(..., description="Version, unique per identifier")
    name: Optional[str] = Field(None, description="Display name")
    description: Optional[str] = Field(None, description="Measure description")
    parameters: List[MeasureParameter] = Field(default_factory=list, description="Ordered parameters")
    expression: str = Field(..., description="Measure expression")
    return_type: ReturnType = Field(ReturnType.NUMBER, description="Declared result type")

    @field_validator('version')
    @classmethod
    def validate_version(cls, version):
        """Versions start at 1."""
        if version < 1:
            raise ValueError("Measure version must be at least 1")
        return version

    @field_validator('parameters')
    @classmethod
    def validate_unique_parameters(cls, parameters):
        """Ensure parameter names are unique."""
        names = [parameter.name for parameter in parameters]
        if len(names) != len(set(names)):
            raise ValueError("All parameter names must be unique")
        return parameters


class WorkflowStateDefinition(BaseModel):
    """A state in a workflow."""
    name: str = Field(..., description="State name")
    label: Optional[str] = Field(None, description="Display label")
    is_initial: bool = Field(False, description="Whether this is the initial state")
    is_final: bool = Field(False, description="Whether this is a final state")


class WorkflowTransition(BaseModel):
    """Directed edge between two workflow states."""
    transition_id: str = Field(..., description="Transition identifier")
    workflow_id: str = Field(..., description="Owning workflow")
    from_state: str = Field(..., description="Source state")
    to_state: str = Field(..., description="Target state")
    action_label: Optional[str] = Field(None, description="Action label")
    label_key: Optional[str] = Field(None, description="Label key for localization")
    description: Optional[str] = Field(None, description="Transition description")
    allowed_roles: Optional[List[str]] = Field(None, description="Roles allowed to execute the transition")
    conditions: Optional[List[str]] = Field(None, description="Boolean expressions that must hold")
    metadata: Optional[Dict[str, Any]] = Field(None, description="Additional metadata")

    @field_validator('from_state', 'to_state')
    @classmethod
    def validate_state_names(cls, state):
        """Ensure state names are not empty."""
        if not state or not state.strip():
            raise ValueError("State name cannot be empty")
        return state.strip()

    @property
    def has_role_restriction(self) -> bool:
        return bool(self.allowed_roles)


class WorkflowDefinition(BaseModel):
    """Finite state machine attached to an entity."""
    workflow_id: str = Field(..., description="Workflow identifier")
    name: str = Field(..., description="Workflow name")
    initial_state: str = Field(..., description="State assigned to records that have none")
    states: List[WorkflowStateDefinition] = Field(default_factory=list, description="Workflow states")
    transitions: List[WorkflowTransition] = Field(default_factory=list, description="Workflow transitions")

    @model_validator(mode='after')
    def validate_states(self):
        """Validate that the initial state and transition endpoints are declared."""
        if not self.states:
            return self

        state_names = {state.name for state in self.states}
        if self.initial_state not in state_names:
            raise ValueError(f"Initial state '{self.initial_state}' is not a declared state")

        for transition in self.transitions:
            if transition.from_state not in state_names:
                raise ValueError(f"Transition '{transition.transition_id}' references unknown state: {transition.from_state}")
            if transition.to_state not in state_names:
                raise ValueError(f"Transition '{transition.transition_id}' references unknown state: {transition.to_state}")
        return self


class Record(BaseModel):
    """A schema-less entity record."""
    record_id: str = Field(..., description="Record identifier")
    entity_id: str = Field(..., description="Entity the record belongs to")
    data: Dict[str, Any] = Field(default_factory=dict, description="Record data")
    state: Optional[str] = Field(None, description="Workflow state")
    version: int = Field(1, description="Optimistic lock counter")
    created_by: Optional[str] = Field(None, description="Creating actor")
    updated_by: Optional[str] = Field(None, description="Last updating actor")
    created_at: Optional[datetime] = Field(None, description="Creation timestamp")
    updated_at: Optional[datetime] = Field(None, description="Last update timestamp")


class CurrentState(BaseModel):
    """Resolved workflow position of a record."""
    state: str = Field(..., description="Current state name")
    defaulted: bool = Field(False, description="True when the record had no state and the initial state was used")


class WorkflowAuditLogEntry(BaseModel):
    """Immutable record of one executed transition."""
    model_config = ConfigDict(frozen=True)

    audit_id: Optional[str] = Field(None, description="Audit entry identifier")
    entity_id: str = Field(..., description="Entity identifier")
    record_id: str = Field(..., description="Record identifier")
    workflow_id: str = Field(..., description="Workflow identifier")
    from_state: str = Field(..., description="State before the transition")
    to_state: str = Field(..., description="State after the transition")
    transition_id: str = Field(..., description="Executed transition")
    transition_label: Optional[str] = Field(None, description="Transition action label")
    performed_by: Optional[str] = Field(None, description="Actor that executed the transition")
    performed_at: datetime = Field(..., description="Execution timestamp")
    comments: Optional[str] = Field(None, description="Free-text comments")
    metadata: Optional[Dict[str, Any]] = Field(None, description="Additional metadata")


class ValidationIssue(BaseModel):
    """A single failed validation check."""
    rule_id: Optional[str] = Field(None, description="Failing rule")
    property_name: Optional[str] = Field(None, description="Property, None above field level")
    message: str = Field(..., description="Failure message")
    message_key: Optional[str] = Field(None, description="Message key for localization")
    level: RuleScope = Field(RuleScope.FIELD, description="Level the failure was raised at")


class TransitionResult(BaseModel):
    """Outcome of a successful transition."""
    entity_id: str = Field(..., description="Entity identifier")
    record_id: str = Field(..., description="Record identifier")
    from_state: str = Field(..., description="State before the transition")
    to_state: str = Field(..., description="State after the transition")
    transition_id: str = Field(..., description="Executed transition")
    transition_label: Optional[str] = Field(None, description="Transition action label")
    performed_by: Optional[str] = Field(None, description="Actor that executed the transition")
    performed_at: datetime = Field(..., description="Execution timestamp")
    comments: Optional[str] = Field(None, description="Free-text comments")


class AvailableTransition(BaseModel):
    """Transition that is legal from a record's current state."""
    transition_id: str = Field(..., description="Transition identifier")
    from_state: str = Field(..., description="Source state")
    to_state: str = Field(..., description="Target state")
    action_label: Optional[str] = Field(None, description="Action label")
    label_key: Optional[str] = Field(None, description="Label key for localization")
    description: Optional[str] = Field(None, description="Transition description")
    allowed_roles: Optional[List[str]] = Field(None, description="Roles allowed to execute the transition")


class MeasureRequest(BaseModel):
    """One measure evaluation request."""
    identifier: str = Field(..., description="Measure identifier")
    version: Optional[int] = Field(None, description="Measure version; latest when omitted")
    parameters: Dict[str, Any] = Field(default_factory=dict, description="Supplied parameter values")


class MeasureResult(BaseModel):
    """Value of an evaluated measure."""
    identifier: str = Field(..., description="Measure identifier")
    version: int = Field(..., description="Version that was evaluated")
    result: Any = Field(None, description="Evaluation result")
