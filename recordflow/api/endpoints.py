"""FastAPI REST endpoints for validation, measures and workflow transitions."""

from datetime import datetime
from typing import Any, Dict, Iterator, List, Optional
from fastapi import APIRouter, Depends, Header, HTTPException, Query, status
from pydantic import BaseModel, Field

from ..core.calculated_fields import compute_calculated_fields
from ..core.exceptions import NotFoundError, RecordflowError, create_error_response
from ..core.expression import ExpressionInterpreter
from ..core.interfaces import MetadataStore
from ..core.logging import get_logger
from ..core.measure_evaluator import MeasureCache, MeasureEvaluator, measure_unit_of_work
from ..core.middleware import status_code_for_error
from ..core.validation_engine import ValidationEngine
from ..core.workflow_engine import WorkflowEngine
from ..models.core import (
    AvailableTransition,
    MeasureRequest,
    MeasureResult,
    TransitionResult,
    ValidationIssue,
    WorkflowAuditLogEntry,
)

logger = get_logger(__name__)

# Create router
router = APIRouter(prefix="/api/v1", tags=["recordflow"])

# Global instances (initialized by the application factory)
_metadata_store: Optional[MetadataStore] = None
_interpreter: Optional[ExpressionInterpreter] = None
_validation_engine: Optional[ValidationEngine] = None
_measure_evaluator: Optional[MeasureEvaluator] = None
_workflow_engine: Optional[WorkflowEngine] = None


def init_dependencies(
    metadata_store: MetadataStore,
    interpreter: ExpressionInterpreter,
    validation_engine: ValidationEngine,
    measure_evaluator: MeasureEvaluator,
    workflow_engine: WorkflowEngine
):
    """Initialize the global dependencies."""
    global _metadata_store, _interpreter, _validation_engine, _measure_evaluator, _workflow_engine
    _metadata_store = metadata_store
    _interpreter = interpreter
    _validation_engine = validation_engine
    _measure_evaluator = measure_evaluator
    _workflow_engine = workflow_engine


def _require(component, name: str):
    if component is None:
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail=f"{name} not initialized"
        )
    return component


def get_metadata_store() -> MetadataStore:
    """Dependency to get the metadata store."""
    return _require(_metadata_store, "Metadata store")


def get_interpreter() -> ExpressionInterpreter:
    """Dependency to get the expression interpreter."""
    return _require(_interpreter, "Expression interpreter")


def get_validation_engine() -> ValidationEngine:
    """Dependency to get the validation engine."""
    return _require(_validation_engine, "Validation engine")


def get_measure_evaluator() -> MeasureEvaluator:
    """Dependency to get the measure evaluator."""
    return _require(_measure_evaluator, "Measure evaluator")


def get_workflow_engine() -> WorkflowEngine:
    """Dependency to get the workflow engine."""
    return _require(_workflow_engine, "Workflow engine")


def get_measure_cache() -> Iterator[MeasureCache]:
    """Dependency providing one measure cache per request."""
    with measure_unit_of_work() as cache:
        yield cache


def get_actor(x_actor_id: Optional[str] = Header(None, alias="X-Actor-Id")) -> Optional[str]:
    """Dependency reading the acting user from the X-Actor-Id header."""
    return x_actor_id


def _raise_http(error: RecordflowError, operation: str):
    status_code = status_code_for_error(error)
    if status_code >= 500:
        logger.error(f"Error during {operation}: {error.message}")
    else:
        logger.warning(f"{type(error).__name__} during {operation}: {error.message}")
    raise HTTPException(status_code=status_code, detail=create_error_response(error))


# Request/Response models
class ValidateRecordRequest(BaseModel):
    """Request model for record validation."""
    data: Dict[str, Any] = Field(default_factory=dict, description="Record data to validate")
    trigger_event: str = Field("CREATE", description="Event that triggered validation")
    previous_data: Optional[Dict[str, Any]] = Field(None, description="Previous record data")


class ValidateFieldRequest(BaseModel):
    """Request model for single-field validation."""
    property_name: str = Field(..., description="Property to validate")
    value: Any = Field(None, description="Candidate value")
    data: Dict[str, Any] = Field(default_factory=dict, description="Rest of the record")


class ValidationResponse(BaseModel):
    """Response model for validation."""
    valid: bool = Field(..., description="Whether no issues were found")
    errors: List[ValidationIssue] = Field(default_factory=list, description="Validation issues")


class CalculateRequest(BaseModel):
    """Request model for calculated field computation."""
    data: Dict[str, Any] = Field(default_factory=dict, description="Record data")
    parent_data: Optional[Dict[str, Any]] = Field(None, description="Master record data")


class CalculateResponse(BaseModel):
    """Response model for calculated field computation."""
    entity_id: str = Field(..., description="Entity identifier")
    data: Dict[str, Any] = Field(..., description="Record data with calculated values")


class EvaluateMeasureRequest(BaseModel):
    """Request model for measure evaluation."""
    parameters: Dict[str, Any] = Field(default_factory=dict, description="Supplied parameter values")


class BatchEvaluateRequest(BaseModel):
    """Request model for evaluating several measures in one request."""
    requests: List[MeasureRequest] = Field(..., description="Measures to evaluate, in order")


class ExecuteTransitionRequest(BaseModel):
    """Request model for executing a transition."""
    comments: Optional[str] = Field(None, description="Comments stored on the audit entry")


# Endpoints

@router.post(
    "/entities/{entity_id}/validate",
    response_model=ValidationResponse,
    summary="Validate a record",
    description="Run field, entity and cross-entity rules against record data"
)
def validate_record(
    entity_id: str,
    request: ValidateRecordRequest,
    engine: ValidationEngine = Depends(get_validation_engine)
) -> ValidationResponse:
    """
    Validate record data against the entity's rules.

    Raises:
        HTTPException: 404 if the entity does not exist
    """
    try:
        issues = engine.validate_record(entity_id, request.data, request.trigger_event, request.previous_data)
        return ValidationResponse(valid=not issues, errors=issues)
    except RecordflowError as e:
        _raise_http(e, "record validation")


@router.post(
    "/entities/{entity_id}/validate-field",
    response_model=ValidationResponse,
    summary="Validate a single field"
)
def validate_field(
    entity_id: str,
    request: ValidateFieldRequest,
    engine: ValidationEngine = Depends(get_validation_engine)
) -> ValidationResponse:
    """Validate one field value against its FIELD rules."""
    try:
        issues = engine.validate_field(entity_id, request.property_name, request.value, request.data)
        return ValidationResponse(valid=not issues, errors=issues)
    except RecordflowError as e:
        _raise_http(e, "field validation")


@router.post(
    "/entities/{entity_id}/calculate",
    response_model=CalculateResponse,
    summary="Compute calculated fields"
)
def calculate_fields(
    entity_id: str,
    request: CalculateRequest,
    metadata_store: MetadataStore = Depends(get_metadata_store),
    interpreter: ExpressionInterpreter = Depends(get_interpreter)
) -> CalculateResponse:
    """Return the record data with every calculated property computed."""
    try:
        entity = metadata_store.get_entity(entity_id)
        if entity is None:
            raise NotFoundError(f"Entity not found: {entity_id}", resource_type="entity", resource_id=entity_id)
        data = compute_calculated_fields(entity, request.data, request.parent_data, interpreter)
        return CalculateResponse(entity_id=entity_id, data=data)
    except RecordflowError as e:
        _raise_http(e, "calculated field computation")


@router.post(
    "/measures/{identifier}/evaluate",
    response_model=MeasureResult,
    summary="Evaluate a measure",
    description="Evaluate a measure version (latest when omitted) with the supplied parameters"
)
def evaluate_measure(
    identifier: str,
    request: Optional[EvaluateMeasureRequest] = None,
    version: Optional[int] = Query(None, description="Measure version"),
    evaluator: MeasureEvaluator = Depends(get_measure_evaluator),
    cache: MeasureCache = Depends(get_measure_cache)
) -> MeasureResult:
    """
    Evaluate one measure.

    Raises:
        HTTPException: 404 for unknown measures, 400 for missing parameters,
            422 when the expression fails
    """
    parameters = request.parameters if request else {}
    try:
        return evaluator.evaluate_measure(identifier, version, parameters, cache)
    except RecordflowError as e:
        _raise_http(e, f"measure evaluation of {identifier}")


@router.post(
    "/measures/evaluate-batch",
    response_model=List[MeasureResult],
    summary="Evaluate several measures",
    description="Evaluate measures in order within one unit of work, sharing one cache"
)
def evaluate_measures(
    request: BatchEvaluateRequest,
    evaluator: MeasureEvaluator = Depends(get_measure_evaluator),
    cache: MeasureCache = Depends(get_measure_cache)
) -> List[MeasureResult]:
    """Evaluate a batch of measures."""
    try:
        return evaluator.evaluate_many(request.requests, cache)
    except RecordflowError as e:
        _raise_http(e, "batch measure evaluation")


@router.get(
    "/entities/{entity_id}/records/{record_id}/transitions",
    response_model=List[AvailableTransition],
    summary="List available transitions"
)
def get_available_transitions(
    entity_id: str,
    record_id: str,
    engine: WorkflowEngine = Depends(get_workflow_engine)
) -> List[AvailableTransition]:
    """Transitions executable from the record's current state."""
    try:
        return engine.get_available_transitions(entity_id, record_id)
    except RecordflowError as e:
        _raise_http(e, "available transitions lookup")


@router.post(
    "/entities/{entity_id}/records/{record_id}/transitions/{transition_id}",
    response_model=TransitionResult,
    summary="Execute a workflow transition"
)
def execute_transition(
    entity_id: str,
    record_id: str,
    transition_id: str,
    request: Optional[ExecuteTransitionRequest] = None,
    actor: Optional[str] = Depends(get_actor),
    engine: WorkflowEngine = Depends(get_workflow_engine)
) -> TransitionResult:
    """
    Execute a transition on a record.

    Raises:
        HTTPException: 404/400/403/409/422 according to the failure kind
    """
    comments = request.comments if request else None
    try:
        return engine.execute_transition(entity_id, record_id, transition_id, comments, actor)
    except RecordflowError as e:
        _raise_http(e, f"transition {transition_id}")


@router.get(
    "/entities/{entity_id}/records/{record_id}/audit-log",
    response_model=List[WorkflowAuditLogEntry],
    summary="Get the workflow audit log"
)
def get_audit_log(
    entity_id: str,
    record_id: str,
    engine: WorkflowEngine = Depends(get_workflow_engine)
) -> List[WorkflowAuditLogEntry]:
    """Audit entries for a record, newest first."""
    try:
        return engine.get_audit_log(entity_id, record_id)
    except RecordflowError as e:
        _raise_http(e, "audit log lookup")


@router.get(
    "/health",
    summary="Health check"
)
def get_health() -> Dict[str, Any]:
    """Report whether the engines are wired."""
    components = {
        "metadata_store": _metadata_store is not None,
        "validation_engine": _validation_engine is not None,
        "measure_evaluator": _measure_evaluator is not None,
        "workflow_engine": _workflow_engine is not None,
    }
    return {
        "status": "healthy" if all(components.values()) else "degraded",
        "components": components,
        "timestamp": datetime.utcnow().isoformat()
    }
