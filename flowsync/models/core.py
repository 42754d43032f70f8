"""Core Pydantic models for graph sync and execution tracking."""

from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional
from pydantic import AliasChoices, BaseModel, ConfigDict, Field, field_validator, model_validator


def utcnow() -> datetime:
    """Naive UTC timestamp, the form every stored datetime uses."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


class WorkflowStatus(str, Enum):
    """Enumeration of local workflow statuses."""
    DRAFT = "draft"
    ACTIVE = "active"
    INACTIVE = "inactive"
    ARCHIVED = "archived"


class ExecutionStatusEnum(str, Enum):
    """Enumeration of execution statuses."""
    PENDING = "pending"
    RUNNING = "running"
    SUCCESS = "success"
    FAILED = "failed"
    CANCELLED = "cancelled"


TERMINAL_STATUSES = frozenset({
    ExecutionStatusEnum.SUCCESS,
    ExecutionStatusEnum.FAILED,
    ExecutionStatusEnum.CANCELLED,
})

# pending -> failed covers a trigger call that never reached running
ALLOWED_TRANSITIONS: Dict[ExecutionStatusEnum, frozenset] = {
    ExecutionStatusEnum.PENDING: frozenset({
        ExecutionStatusEnum.RUNNING,
        ExecutionStatusEnum.FAILED,
    }),
    ExecutionStatusEnum.RUNNING: frozenset({
        ExecutionStatusEnum.SUCCESS,
        ExecutionStatusEnum.FAILED,
        ExecutionStatusEnum.CANCELLED,
    }),
    ExecutionStatusEnum.SUCCESS: frozenset(),
    ExecutionStatusEnum.FAILED: frozenset(),
    ExecutionStatusEnum.CANCELLED: frozenset(),
}


class LogLevel(str, Enum):
    """Enumeration of execution log levels."""
    DEBUG = "debug"
    INFO = "info"
    WARNING = "warning"
    ERROR = "error"


# ---------------------------------------------------------------------------
# Editor graph
# ---------------------------------------------------------------------------

class Position(BaseModel):
    """Canvas coordinates of a node; cosmetic only."""
    x: float = 0.0
    y: float = 0.0


class GraphNode(BaseModel):
    """A node of the editor graph.

    Accepts both the flat shape (``kind``, ``label``, ``config``) and the
    editor-native shape where ``type`` names the kind and label/config live
    under ``data``.
    """
    model_config = ConfigDict(populate_by_name=True)

    id: str = Field(..., description="Unique identifier of the node within its graph")
    kind: str = Field(
        "unknown",
        validation_alias=AliasChoices("kind", "type"),
        description="Semantic category such as webhook, http_request or conditional",
    )
    label: Optional[str] = Field(None, description="Human label; becomes the engine node name")
    position: Position = Field(default_factory=Position)
    config: Dict[str, Any] = Field(default_factory=dict, description="Kind-specific settings")
    disabled: bool = False
    notes: str = ""
    continue_on_fail: bool = Field(False, validation_alias=AliasChoices("continue_on_fail", "continueOnFail"))
    retry_on_fail: bool = Field(False, validation_alias=AliasChoices("retry_on_fail", "retryOnFail"))
    max_tries: int = Field(3, validation_alias=AliasChoices("max_tries", "maxTries"))
    wait_between_tries: int = Field(1000, validation_alias=AliasChoices("wait_between_tries", "waitBetweenTries"))

    @model_validator(mode='before')
    @classmethod
    def lift_editor_data(cls, values):
        """Flatten the editor's ``data`` envelope into top-level fields."""
        if isinstance(values, dict) and isinstance(values.get("data"), dict):
            values = dict(values)
            data = values.pop("data")
            for key, value in data.items():
                values.setdefault(key, value)
        return values

    @field_validator('id')
    @classmethod
    def validate_id(cls, node_id):
        """Ensure node ID is not empty."""
        if not node_id or not node_id.strip():
            raise ValueError("Node ID cannot be empty")
        return node_id.strip()

    @field_validator('kind', mode='before')
    @classmethod
    def default_kind(cls, kind):
        """Missing kinds are translated as unknown."""
        return kind or "unknown"


class GraphEdge(BaseModel):
    """A directed edge of the editor graph."""
    model_config = ConfigDict(populate_by_name=True)

    id: str = Field(..., description="Edge identifier")
    source: str = Field(..., validation_alias=AliasChoices("source", "sourceNodeId", "source_node_id"))
    target: str = Field(..., validation_alias=AliasChoices("target", "targetNodeId", "target_node_id"))
    source_handle: Optional[str] = Field(None, validation_alias=AliasChoices("source_handle", "sourceHandle"))
    target_handle: Optional[str] = Field(None, validation_alias=AliasChoices("target_handle", "targetHandle"))


# ---------------------------------------------------------------------------
# Engine document
# ---------------------------------------------------------------------------

class EngineConnectionTarget(BaseModel):
    """One connection from an output port to a target node input."""
    node: str = Field(..., description="Target node name")
    type: str = Field("main", description="Port type")
    index: int = Field(0, description="Target input index")


EngineConnections = Dict[str, Dict[str, List[List[EngineConnectionTarget]]]]


class EngineNode(BaseModel):
    """A node of the engine workflow document."""
    model_config = ConfigDict(populate_by_name=True)

    id: str
    name: str
    type: str
    type_version: float = Field(1, alias="typeVersion")
    position: List[float] = Field(default_factory=lambda: [0.0, 0.0])
    parameters: Dict[str, Any] = Field(default_factory=dict)
    disabled: bool = False
    notes: str = ""
    continue_on_fail: bool = Field(False, alias="continueOnFail")
    retry_on_fail: bool = Field(False, alias="retryOnFail")
    max_tries: int = Field(3, alias="maxTries")
    wait_between_tries: int = Field(1000, alias="waitBetweenTries")


class EngineWorkflowSettings(BaseModel):
    """Workflow-level settings sent with every document."""
    model_config = ConfigDict(populate_by_name=True)

    execution_order: str = Field("v1", alias="executionOrder")
    save_manual_executions: bool = Field(True, alias="saveManualExecutions")
    caller_policy: str = Field("workflowsFromSameOwner", alias="callerPolicy")
    save_data_error_execution: str = Field("all", alias="saveDataErrorExecution")
    save_data_success_execution: str = Field("all", alias="saveDataSuccessExecution")
    execution_timeout: int = Field(-1, alias="executionTimeout")


class EngineWorkflowDocument(BaseModel):
    """The engine's JSON representation of an automation."""
    model_config = ConfigDict(populate_by_name=True)

    name: str
    active: bool = False
    nodes: List[EngineNode] = Field(default_factory=list)
    connections: EngineConnections = Field(default_factory=dict)
    settings: EngineWorkflowSettings = Field(default_factory=EngineWorkflowSettings)
    static_data: Dict[str, Any] = Field(default_factory=dict, alias="staticData")

    def node_names(self) -> List[str]:
        """Names of all nodes in document order."""
        return [node.name for node in self.nodes]

    def to_payload(self) -> Dict[str, Any]:
        """Serialize to the wire shape the engine API accepts."""
        return self.model_dump(by_alias=True, mode="json")


# ---------------------------------------------------------------------------
# Remote execution
# ---------------------------------------------------------------------------

class TriggerResult(BaseModel):
    """Result of asking the engine to start a run."""
    external_execution_id: str


class RemoteExecution(BaseModel):
    """Status of a run as reported by the engine."""
    id: str
    finished: bool = False
    succeeded: bool = False
    status: Optional[str] = None
    output_data: Optional[Any] = None
    error_info: Optional[Any] = None
    started_at: Optional[datetime] = None
    stopped_at: Optional[datetime] = None

    @property
    def duration_ms(self) -> Optional[int]:
        """Remote run duration, when both timestamps are known."""
        if self.started_at and self.stopped_at:
            return int((self.stopped_at - self.started_at).total_seconds() * 1000)
        return None


# ---------------------------------------------------------------------------
# Local records
# ---------------------------------------------------------------------------

class LocalWorkflow(BaseModel):
    """A persisted workflow and its mirrored graph."""
    model_config = ConfigDict(from_attributes=True)

    id: str
    name: str
    description: Optional[str] = None
    status: WorkflowStatus = WorkflowStatus.DRAFT
    external_workflow_id: Optional[str] = None
    last_synced_at: Optional[datetime] = None
    last_run_at: Optional[datetime] = None
    nodes: List[GraphNode] = Field(default_factory=list)
    edges: List[GraphEdge] = Field(default_factory=list)
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    @property
    def is_synced(self) -> bool:
        """Whether an engine workflow id has been recorded."""
        return bool(self.external_workflow_id)


class Execution(BaseModel):
    """A single run of a workflow."""
    model_config = ConfigDict(from_attributes=True)

    id: str
    workflow_id: str
    status: ExecutionStatusEnum
    trigger_type: Optional[str] = "api"
    trigger_data: Dict[str, Any] = Field(default_factory=dict)
    input_data: Optional[Dict[str, Any]] = None
    output_data: Optional[Any] = None
    error_message: Optional[str] = None
    error_details: Optional[Dict[str, Any]] = None
    retry_count: int = 0
    max_retries: int = 3
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    duration_ms: Optional[int] = None

    @property
    def external_execution_id(self) -> Optional[str]:
        """Engine execution id, once the trigger succeeded."""
        return self.trigger_data.get("external_execution_id")

    @property
    def is_terminal(self) -> bool:
        """Whether no further transitions can occur."""
        return self.status in TERMINAL_STATUSES


class ExecutionLogEntry(BaseModel):
    """A single append-only log line of an execution."""
    model_config = ConfigDict(from_attributes=True)

    execution_id: str
    level: LogLevel
    message: str
    data: Optional[Dict[str, Any]] = None
    node_id: Optional[str] = None
    timestamp: datetime


class ExecutionWithLogs(Execution):
    """An execution together with its ordered logs."""
    logs: List[ExecutionLogEntry] = Field(default_factory=list)


class ExecutionStats(BaseModel):
    """Aggregate counts over executions."""
    total: int = 0
    pending: int = 0
    running: int = 0
    success: int = 0
    failed: int = 0
    cancelled: int = 0
    average_duration_ms: int = 0
