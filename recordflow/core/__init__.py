"""Expression interpreter, validation, measure and workflow engines."""

from .exceptions import (
    RecordflowError,
    NotFoundError,
    InvalidArgumentError,
    InvalidExpressionError,
    MissingParameterError,
    InvalidTransitionError,
    IllegalStateError,
    NoWorkflowError,
    TransitionValidationError,
    ForbiddenError,
    EvaluationError,
    MeasureEvaluationError,
    ConflictError,
    StorageError,
    ConfigurationError,
    ValidatorRegistryError,
)
from .logging import setup_logging, get_logger
from .expression import ExpressionInterpreter, evaluate, evaluate_boolean
from .validator_registry import ValidatorRegistry
from .validation_engine import ValidationEngine
from .calculated_fields import compute_calculated_fields
from .measure_evaluator import MeasureCache, MeasureEvaluator, measure_unit_of_work
from .workflow_engine import WorkflowEngine, resolve_current_state

__all__ = [
    "RecordflowError",
    "NotFoundError",
    "InvalidArgumentError",
    "InvalidExpressionError",
    "MissingParameterError",
    "InvalidTransitionError",
    "IllegalStateError",
    "NoWorkflowError",
    "TransitionValidationError",
    "ForbiddenError",
    "EvaluationError",
    "MeasureEvaluationError",
    "ConflictError",
    "StorageError",
    "ConfigurationError",
    "ValidatorRegistryError",
    "setup_logging",
    "get_logger",
    "ExpressionInterpreter",
    "evaluate",
    "evaluate_boolean",
    "ValidatorRegistry",
    "ValidationEngine",
    "compute_calculated_fields",
    "MeasureCache",
    "MeasureEvaluator",
    "measure_unit_of_work",
    "WorkflowEngine",
    "resolve_current_state",
]
