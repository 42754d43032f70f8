"""Custom exceptions for graph sync and execution coordination with detailed error information."""

import traceback
from datetime import datetime, timezone
from typing import Optional, Dict, Any
from enum import Enum


class ErrorSeverity(Enum):
    """Error severity levels for categorizing exceptions."""
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


class ErrorCategory(Enum):
    """Categories of errors for better classification."""
    VALIDATION = "validation"
    EXECUTION = "execution"
    STORAGE = "storage"
    NETWORK = "network"
    CONFIGURATION = "configuration"
    PRECONDITION = "precondition"


class FlowSyncError(Exception):
    """Base exception for all flowsync errors."""

    def __init__(
        self,
        message: str,
        error_code: Optional[str] = None,
        severity: ErrorSeverity = ErrorSeverity.MEDIUM,
        category: ErrorCategory = ErrorCategory.EXECUTION,
        details: Optional[Dict[str, Any]] = None,
        recoverable: bool = False,
        retry_after: Optional[int] = None,
        context: Optional[Dict[str, Any]] = None
    ):
        super().__init__(message)
        self.message = message
        self.error_code = error_code or self.__class__.__name__
        self.severity = severity
        self.category = category
        self.details = details or {}
        self.recoverable = recoverable
        self.retry_after = retry_after
        self.context = context or {}
        self.timestamp = datetime.now(timezone.utc)
        self.traceback_info = traceback.format_stack()

    def to_dict(self) -> Dict[str, Any]:
        """Convert exception to dictionary for logging and API responses."""
        return {
            "error_code": self.error_code,
            "message": self.message,
            "severity": self.severity.value,
            "category": self.category.value,
            "details": self.details,
            "recoverable": self.recoverable,
            "retry_after": self.retry_after,
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


class MappingDefect(FlowSyncError):
    """A malformed graph reference that the mapper healed instead of raising."""

    def __init__(
        self,
        message: str,
        node_id: Optional[str] = None,
        edge_id: Optional[str] = None,
        **kwargs
    ):
        super().__init__(
            message,
            severity=ErrorSeverity.LOW,
            category=ErrorCategory.VALIDATION,
            **kwargs
        )
        if node_id:
            self.add_context(node_id=node_id)
        if edge_id:
            self.add_context(edge_id=edge_id)


class NotSynced(FlowSyncError):
    """Raised when an operation needs an engine workflow id that was never recorded."""

    def __init__(self, message: str, workflow_id: Optional[str] = None, **kwargs):
        super().__init__(
            message,
            severity=ErrorSeverity.MEDIUM,
            category=ErrorCategory.PRECONDITION,
            recoverable=True,
            **kwargs
        )
        if workflow_id:
            self.add_context(workflow_id=workflow_id)


class NotActive(FlowSyncError):
    """Raised when a run is requested for a workflow that is not active."""

    def __init__(
        self,
        message: str,
        workflow_id: Optional[str] = None,
        status: Optional[str] = None,
        **kwargs
    ):
        super().__init__(
            message,
            severity=ErrorSeverity.MEDIUM,
            category=ErrorCategory.PRECONDITION,
            recoverable=True,
            **kwargs
        )
        if workflow_id:
            self.add_context(workflow_id=workflow_id)
        if status:
            self.add_details(status=status)


class RemoteUnavailable(FlowSyncError):
    """Raised when the workflow engine cannot be reached."""

    def __init__(
        self,
        message: str,
        url: Optional[str] = None,
        cause: Optional[str] = None,
        **kwargs
    ):
        super().__init__(
            message,
            severity=ErrorSeverity.HIGH,
            category=ErrorCategory.NETWORK,
            recoverable=True,
            retry_after=5,
            **kwargs
        )
        if url:
            self.add_context(url=url)
        if cause:
            self.add_details(cause=cause)


class RemoteRejected(FlowSyncError):
    """Raised when the workflow engine answers with a non-2xx response."""

    def __init__(
        self,
        message: str,
        status_code: int = 500,
        url: Optional[str] = None,
        body: Optional[str] = None,
        **kwargs
    ):
        super().__init__(
            message,
            severity=ErrorSeverity.MEDIUM,
            category=ErrorCategory.NETWORK,
            **kwargs
        )
        self.status_code = status_code
        self.body = body
        if url:
            self.add_context(url=url)
        self.add_details(status_code=status_code)
        if body:
            self.add_details(body=body[:2000])


class PollTimeout(FlowSyncError):
    """Raised when a remote execution did not finish within the poll budget."""

    def __init__(
        self,
        message: str = "Execution timeout",
        execution_id: Optional[str] = None,
        attempts: Optional[int] = None,
        **kwargs
    ):
        super().__init__(
            message,
            severity=ErrorSeverity.HIGH,
            category=ErrorCategory.EXECUTION,
            **kwargs
        )
        if execution_id:
            self.add_context(execution_id=execution_id)
        if attempts is not None:
            self.add_details(attempts=attempts)


class InvalidExecutionState(FlowSyncError):
    """Raised when a requested transition is not allowed from the current status."""

    def __init__(
        self,
        message: str,
        execution_id: Optional[str] = None,
        status: Optional[str] = None,
        **kwargs
    ):
        super().__init__(
            message,
            severity=ErrorSeverity.MEDIUM,
            category=ErrorCategory.PRECONDITION,
            **kwargs
        )
        if execution_id:
            self.add_context(execution_id=execution_id)
        if status:
            self.add_details(status=status)


class RetryLimitExceeded(FlowSyncError):
    """Raised when a failed execution already used all of its retries."""

    def __init__(
        self,
        message: str,
        execution_id: Optional[str] = None,
        retry_count: Optional[int] = None,
        max_retries: Optional[int] = None,
        **kwargs
    ):
        super().__init__(
            message,
            severity=ErrorSeverity.LOW,
            category=ErrorCategory.PRECONDITION,
            **kwargs
        )
        if execution_id:
            self.add_context(execution_id=execution_id)
        if retry_count is not None and max_retries is not None:
            self.add_details(retry_count=retry_count, max_retries=max_retries)


class StorageError(FlowSyncError):
    """Raised when storage operations fail."""

    def __init__(
        self,
        message: str,
        operation: Optional[str] = None,
        table: Optional[str] = None,
        **kwargs
    ):
        kwargs.setdefault("severity", ErrorSeverity.HIGH)
        kwargs.setdefault("recoverable", True)
        kwargs.setdefault("retry_after", 3)
        super().__init__(
            message,
            category=ErrorCategory.STORAGE,
            **kwargs
        )
        if operation:
            self.add_context(operation=operation)
        if table:
            self.add_context(table=table)


class WorkflowNotFound(StorageError):
    """Raised when a local workflow does not exist."""

    def __init__(self, workflow_id: str, **kwargs):
        super().__init__(
            f"Workflow '{workflow_id}' not found",
            table="workflows",
            severity=ErrorSeverity.LOW,
            recoverable=False,
            retry_after=None,
            **kwargs
        )
        self.add_context(workflow_id=workflow_id)


class WebhookNotFound(StorageError):
    """Raised when no workflow has a webhook node on the requested path."""

    def __init__(self, path: str, **kwargs):
        super().__init__(
            f"No workflow listens on webhook path '{path}'",
            table="workflows",
            severity=ErrorSeverity.LOW,
            recoverable=False,
            retry_after=None,
            **kwargs
        )
        self.add_context(webhook_path=path)


class ExecutionNotFound(StorageError):
    """Raised when an execution record does not exist."""

    def __init__(self, execution_id: str, **kwargs):
        super().__init__(
            f"Execution '{execution_id}' not found",
            table="executions",
            severity=ErrorSeverity.LOW,
            recoverable=False,
            retry_after=None,
            **kwargs
        )
        self.add_context(execution_id=execution_id)


class ConfigurationError(FlowSyncError):
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


def create_error_response(error: FlowSyncError) -> Dict[str, Any]:
    """Create a standardized error response from a FlowSyncError."""
    return {
        "error": error.error_code,
        "message": error.message,
        "details": {
            **error.details,
            "severity": error.severity.value,
            "category": error.category.value,
            "recoverable": error.recoverable,
            "retry_after": error.retry_after,
            "timestamp": error.timestamp.isoformat()
        },
        "context": error.context
    }


def get_status_code_for_error(error: FlowSyncError) -> int:
    """Map a flowsync error onto the HTTP status the API reports."""
    if isinstance(error, (WorkflowNotFound, ExecutionNotFound, WebhookNotFound)):
        return 404
    if isinstance(error, (NotSynced, NotActive, InvalidExecutionState, RetryLimitExceeded)):
        return 409
    if isinstance(error, RemoteUnavailable):
        return 503
    if isinstance(error, RemoteRejected):
        return 502
    return 500
