"""Data models for graph sync and execution tracking."""

from .core import (
    ExecutionStatusEnum,
    WorkflowStatus,
    LogLevel,
    GraphNode,
    GraphEdge,
    EngineNode,
    EngineConnectionTarget,
    EngineWorkflowDocument,
    TriggerResult,
    RemoteExecution,
    LocalWorkflow,
    Execution,
    ExecutionLogEntry,
    ExecutionWithLogs,
    ExecutionStats,
)

__all__ = [
    "ExecutionStatusEnum",
    "WorkflowStatus",
    "LogLevel",
    "GraphNode",
    "GraphEdge",
    "EngineNode",
    "EngineConnectionTarget",
    "EngineWorkflowDocument",
    "TriggerResult",
    "RemoteExecution",
    "LocalWorkflow",
    "Execution",
    "ExecutionLogEntry",
    "ExecutionWithLogs",
    "ExecutionStats",
]
