"""Core flowsync components."""

from .exceptions import (
    FlowSyncError,
    MappingDefect,
    NotSynced,
    NotActive,
    RemoteUnavailable,
    RemoteRejected,
    PollTimeout,
    InvalidExecutionState,
    RetryLimitExceeded,
    StorageError,
    WorkflowNotFound,
    ExecutionNotFound,
    WebhookNotFound,
    ConfigurationError,
)
from .logging import setup_logging, get_logger
from .mapper import map_graph, to_engine_document, MappingResult
from .engine_client import EngineClient, EngineCredentials
from .workflow_store import WorkflowStore
from .execution_store import ExecutionStore
from .poller import ExecutionPoller, PollHandle
from .sync_coordinator import SyncCoordinator
from .execution_coordinator import ExecutionCoordinator

__all__ = [
    "FlowSyncError",
    "MappingDefect",
    "NotSynced",
    "NotActive",
    "RemoteUnavailable",
    "RemoteRejected",
    "PollTimeout",
    "InvalidExecutionState",
    "RetryLimitExceeded",
    "StorageError",
    "WorkflowNotFound",
    "ExecutionNotFound",
    "WebhookNotFound",
    "ConfigurationError",
    "setup_logging",
    "get_logger",
    "map_graph",
    "to_engine_document",
    "MappingResult",
    "EngineClient",
    "EngineCredentials",
    "WorkflowStore",
    "ExecutionStore",
    "ExecutionPoller",
    "PollHandle",
    "SyncCoordinator",
    "ExecutionCoordinator",
]
