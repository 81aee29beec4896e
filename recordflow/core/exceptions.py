"""Exception taxonomy for the record evaluation and workflow core."""

from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional


class ErrorSeverity(Enum):
    """Error severity levels for categorizing exceptions."""
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


class ErrorCategory(Enum):
    """Categories of errors, one per kind in the error taxonomy."""
    NOT_FOUND = "not_found"
    INVALID_ARGUMENT = "invalid_argument"
    ILLEGAL_STATE = "illegal_state"
    FORBIDDEN = "forbidden"
    EVALUATION = "evaluation"
    CONFLICT = "conflict"
    STORAGE = "storage"
    CONFIGURATION = "configuration"


class RecordflowError(Exception):
    """Base exception for all recordflow errors."""

    def __init__(
        self,
        message: str,
        error_code: Optional[str] = None,
        severity: ErrorSeverity = ErrorSeverity.MEDIUM,
        category: ErrorCategory = ErrorCategory.INVALID_ARGUMENT,
        details: Optional[Dict[str, Any]] = None,
        recoverable: bool = False,
        context: Optional[Dict[str, Any]] = None
    ):
        super().__init__(message)
        self.message = message
        self.error_code = error_code or self.__class__.__name__
        self.severity = severity
        self.category = category
        self.details = details or {}
        self.recoverable = recoverable
        self.context = context or {}
        self.timestamp = datetime.utcnow()

    def to_dict(self) -> Dict[str, Any]:
        """Convert exception to dictionary for logging and API responses."""
        return {
            "error_code": self.error_code,
            "message": self.message,
            "severity": self.severity.value,
            "category": self.category.value,
            "details": self.details,
            "recoverable": self.recoverable,
            "context": self.context,
            "timestamp": self.timestamp.isoformat(),
            "exception_type": self.__class__.__name__
        }

    def add_context(self, **kwargs):
        """Add additional context to the exception."""
        self.context.update(kwargs)
        return self

    def add_details(self, **kwargs):
        """Add additional details to the exception."""
        self.details.update(kwargs)
        return self


class NotFoundError(RecordflowError):
    """Raised when an entity, record, rule, measure, workflow or transition is missing."""

    def __init__(
        self,
        message: str,
        resource_type: Optional[str] = None,
        resource_id: Optional[str] = None,
        **kwargs
    ):
        super().__init__(
            message,
            severity=ErrorSeverity.LOW,
            category=ErrorCategory.NOT_FOUND,
            **kwargs
        )
        self.resource_type = resource_type
        self.resource_id = resource_id
        if resource_type:
            self.add_context(resource_type=resource_type)
        if resource_id is not None:
            self.add_context(resource_id=str(resource_id))


class InvalidArgumentError(RecordflowError):
    """Raised when a caller supplies an unusable argument."""

    def __init__(self, message: str, **kwargs):
        kwargs.setdefault("severity", ErrorSeverity.LOW)
        super().__init__(
            message,
            category=ErrorCategory.INVALID_ARGUMENT,
            **kwargs
        )


class InvalidExpressionError(InvalidArgumentError):
    """Raised when an expression is empty or exceeds the configured limits."""

    def __init__(self, message: str, expression: Optional[str] = None, **kwargs):
        super().__init__(message, **kwargs)
        if expression is not None:
            self.add_context(expression=expression[:200])


class MissingParameterError(InvalidArgumentError):
    """Raised when a measure parameter has neither a supplied value nor a default."""

    def __init__(
        self,
        message: str,
        measure_identifier: Optional[str] = None,
        version: Optional[int] = None,
        parameter_name: Optional[str] = None,
        **kwargs
    ):
        super().__init__(message, **kwargs)
        self.measure_identifier = measure_identifier
        self.version = version
        self.parameter_name = parameter_name
        if measure_identifier:
            self.add_context(measure_identifier=measure_identifier)
        if version is not None:
            self.add_context(version=version)
        if parameter_name:
            self.add_context(parameter_name=parameter_name)


class InvalidTransitionError(InvalidArgumentError):
    """Raised when a transition does not belong to the entity's workflow."""

    def __init__(
        self,
        message: str,
        transition_id: Optional[str] = None,
        workflow_id: Optional[str] = None,
        **kwargs
    ):
        super().__init__(message, **kwargs)
        if transition_id:
            self.add_context(transition_id=transition_id)
        if workflow_id:
            self.add_context(workflow_id=workflow_id)


class IllegalStateError(RecordflowError):
    """Raised when an operation is not legal from the record's current state."""

    def __init__(
        self,
        message: str,
        current_state: Optional[str] = None,
        transition_id: Optional[str] = None,
        **kwargs
    ):
        super().__init__(
            message,
            severity=ErrorSeverity.MEDIUM,
            category=ErrorCategory.ILLEGAL_STATE,
            **kwargs
        )
        self.current_state = current_state
        if current_state is not None:
            self.add_context(current_state=current_state)
        if transition_id:
            self.add_context(transition_id=transition_id)


class NoWorkflowError(IllegalStateError):
    """Raised when an entity has no workflow assigned."""

    def __init__(self, message: str, entity_id: Optional[str] = None, **kwargs):
        super().__init__(message, **kwargs)
        if entity_id:
            self.add_context(entity_id=entity_id)


class TransitionValidationError(IllegalStateError):
    """Raised when transition conditions or transition rules fail."""

    def __init__(self, message: str, issues: Optional[List[Any]] = None, **kwargs):
        super().__init__(message, **kwargs)
        self.issues = issues or []
        if self.issues:
            self.add_details(issues=[
                issue.model_dump(mode="json") if hasattr(issue, "model_dump") else issue
                for issue in self.issues
            ])


class ForbiddenError(RecordflowError):
    """Raised when the actor lacks every role a transition allows."""

    def __init__(
        self,
        message: str,
        actor: Optional[str] = None,
        allowed_roles: Optional[List[str]] = None,
        **kwargs
    ):
        super().__init__(
            message,
            severity=ErrorSeverity.MEDIUM,
            category=ErrorCategory.FORBIDDEN,
            **kwargs
        )
        if actor:
            self.add_context(actor=actor)
        if allowed_roles:
            self.add_details(allowed_roles=list(allowed_roles))


class EvaluationError(RecordflowError):
    """Raised when an expression fails at runtime."""

    def __init__(self, message: str, expression: Optional[str] = None, **kwargs):
        kwargs.setdefault("category", ErrorCategory.EVALUATION)
        super().__init__(
            message,
            severity=ErrorSeverity.MEDIUM,
            **kwargs
        )
        if expression is not None:
            self.add_context(expression=expression[:200])


class MeasureEvaluationError(EvaluationError):
    """Raised when a measure expression fails; carries identifier and version."""

    def __init__(
        self,
        message: str,
        measure_identifier: Optional[str] = None,
        version: Optional[int] = None,
        **kwargs
    ):
        super().__init__(message, **kwargs)
        self.measure_identifier = measure_identifier
        self.version = version
        if measure_identifier:
            self.add_context(measure_identifier=measure_identifier)
        if version is not None:
            self.add_context(version=version)


class ConflictError(RecordflowError):
    """Raised when a concurrent transition won the race on the same record."""

    def __init__(
        self,
        message: str,
        entity_id: Optional[str] = None,
        record_id: Optional[str] = None,
        **kwargs
    ):
        super().__init__(
            message,
            severity=ErrorSeverity.MEDIUM,
            category=ErrorCategory.CONFLICT,
            recoverable=True,
            **kwargs
        )
        if entity_id:
            self.add_context(entity_id=entity_id)
        if record_id:
            self.add_context(record_id=record_id)


class StorageError(RecordflowError):
    """Raised when storage operations fail."""

    def __init__(
        self,
        message: str,
        operation: Optional[str] = None,
        table: Optional[str] = None,
        **kwargs
    ):
        super().__init__(
            message,
            severity=ErrorSeverity.HIGH,
            category=ErrorCategory.STORAGE,
            recoverable=True,
            **kwargs
        )
        if operation:
            self.add_context(operation=operation)
        if table:
            self.add_context(table=table)


class ConfigurationError(RecordflowError):
    """Raised when configuration is invalid or missing."""

    def __init__(
        self,
        message: str,
        config_key: Optional[str] = None,
        **kwargs
    ):
        super().__init__(
            message,
            severity=ErrorSeverity.HIGH,
            category=ErrorCategory.CONFIGURATION,
            **kwargs
        )
        if config_key:
            self.add_context(config_key=config_key)


class ValidatorRegistryError(RecordflowError):
    """Raised when custom validator registry operations fail."""

    def __init__(
        self,
        message: str,
        validator_name: Optional[str] = None,
        **kwargs
    ):
        super().__init__(
            message,
            severity=ErrorSeverity.MEDIUM,
            category=ErrorCategory.CONFIGURATION,
            **kwargs
        )
        if validator_name:
            self.add_context(validator_name=validator_name)


def create_error_response(error: RecordflowError) -> Dict[str, Any]:
    """Create a standardized error response from a RecordflowError."""
    return {
        "error": error.error_code,
        "message": error.message,
        "details": {
            **error.details,
            "severity": error.severity.value,
            "category": error.category.value,
            "recoverable": error.recoverable,
            "timestamp": error.timestamp.isoformat()
        },
        "context": error.context
    }
