"""Custom exception classes for bulk dispatch operations.

Per-item errors (validation, reference, availability, conflict skip) are caught
at the item boundary inside the batch processor and recorded on the operation's
results. Engine control errors propagate and drive the owning operation to
``failed``.
"""

from typing import Any, Dict, Optional


class DispatchBulkError(Exception):
    """Base exception for bulk dispatch operations."""

    error_type = "error"

    def __init__(
        self,
        message: str,
        operation_id: Optional[str] = None,
        context: Optional[Dict[str, Any]] = None,
    ):
        """Initialize bulk dispatch error.

        Args:
            message: Error message
            operation_id: Operation ID related to the error
            context: Additional context information
        """
        super().__init__(message)
        self.message = message
        self.operation_id = operation_id
        self.context = context or {}


class ItemValidationError(DispatchBulkError):
    """Raised when an item is missing a required field or is malformed."""

    error_type = "validation_error"


class EntityReferenceError(DispatchBulkError):
    """Raised when an item references an id that does not exist."""

    error_type = "reference_error"

    def __init__(self, kind: str, entity_id: str):
        super().__init__(
            f"{kind.title()} not found: {entity_id}",
            context={"kind": kind, "entity_id": entity_id},
        )
        self.kind = kind
        self.entity_id = entity_id


class AvailabilityError(DispatchBulkError):
    """Raised when a referenced resource exists but cannot be used."""

    error_type = "availability_error"


class ConflictSkip(DispatchBulkError):
    """Signals a deliberate no-op: a duplicate exists and overwrite was not requested.

    Not a failure. The batch processor counts it as skipped.
    """

    error_type = "conflict_skip"


class TemplateNotFoundError(DispatchBulkError):
    """Raised when a referenced route template does not exist."""

    error_type = "template_not_found"

    def __init__(self, template_id: str):
        super().__init__(
            f"Template not found: {template_id}", context={"template_id": template_id}
        )
        self.template_id = template_id


class InvalidOperationError(DispatchBulkError):
    """Raised when an operation cannot be started with the given arguments."""

    error_type = "invalid_operation"


class OperationLimitError(DispatchBulkError):
    """Raised when starting an operation would exceed the concurrency bound."""

    error_type = "operation_limit"

    def __init__(self, max_concurrent: int):
        super().__init__(
            f"Maximum of {max_concurrent} concurrent operations reached",
            context={"max_concurrent": max_concurrent},
        )
        self.max_concurrent = max_concurrent


class OperationCancelledError(DispatchBulkError):
    """Raised when a running operation observes a cancellation request."""

    error_type = "cancelled"


class OperationTimeoutError(DispatchBulkError):
    """Raised when a running operation passes its deadline."""

    error_type = "timeout"


class ConfigurationError(DispatchBulkError):
    """Raised when configuration values are missing or invalid."""

    error_type = "configuration_error"


class ImportFormatError(DispatchBulkError):
    """Raised when an import file cannot be parsed."""

    error_type = "import_format_error"
