"""FastAPI REST endpoints for graph sync and execution tracking."""

import json
from dataclasses import asdict
from datetime import datetime, timezone
from typing import Dict, List, Any, Optional
from fastapi import APIRouter, HTTPException, Depends, Query, Request, status
from pydantic import BaseModel, Field

from ..core.engine_client import EngineClient
from ..core.exceptions import FlowSyncError, create_error_response, get_status_code_for_error
from ..core.execution_coordinator import ExecutionCoordinator
from ..core.logging import get_logger
from ..core.mapper import map_graph, summarize_defects
from ..core.sync_coordinator import SyncCoordinator
from ..core.workflow_store import WorkflowStore
from ..models.core import (
    Execution,
    ExecutionLogEntry,
    ExecutionStats,
    ExecutionStatusEnum,
    ExecutionWithLogs,
    GraphEdge,
    GraphNode,
    LocalWorkflow,
    WorkflowStatus,
)
from ..models.node_kinds import list_node_kinds

logger = get_logger(__name__)

router = APIRouter(prefix="/api/v1", tags=["flowsync"])

# Global instances (initialized by the application factory)
_workflow_store: Optional[WorkflowStore] = None
_sync_coordinator: Optional[SyncCoordinator] = None
_execution_coordinator: Optional[ExecutionCoordinator] = None
_engine_client: Optional[EngineClient] = None


def init_dependencies(
    workflow_store: WorkflowStore,
    sync_coordinator: SyncCoordinator,
    execution_coordinator: ExecutionCoordinator,
    engine_client: Optional[EngineClient] = None,
):
    """Initialize the global dependencies."""
    global _workflow_store, _sync_coordinator, _execution_coordinator, _engine_client
    _workflow_store = workflow_store
    _sync_coordinator = sync_coordinator
    _execution_coordinator = execution_coordinator
    _engine_client = engine_client


def _not_initialized(component: str) -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        detail=f"{component} not initialized"
    )


def get_workflow_store() -> WorkflowStore:
    """Dependency to get the workflow store."""
    if _workflow_store is None:
        raise _not_initialized("Workflow store")
    return _workflow_store


def get_sync_coordinator() -> SyncCoordinator:
    """Dependency to get the sync coordinator."""
    if _sync_coordinator is None:
        raise _not_initialized("Sync coordinator")
    return _sync_coordinator


def get_execution_coordinator() -> ExecutionCoordinator:
    """Dependency to get the execution coordinator."""
    if _execution_coordinator is None:
        raise _not_initialized("Execution coordinator")
    return _execution_coordinator


def _raise_http_error(error: Exception, action: str):
    """Re-raise a failure as an HTTPException with the matching status code."""
    if isinstance(error, FlowSyncError):
        logger.warning(f"FlowSync error while {action}: {error.error_code}: {error.message}")
        raise HTTPException(
            status_code=get_status_code_for_error(error),
            detail=create_error_response(error)
        ) from error

    logger.error(f"Unexpected error while {action}: {str(error)}", exc_info=True)
    raise HTTPException(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        detail={
            "error": "InternalError",
            "message": f"An unexpected error occurred while {action}",
            "details": {"original_error": str(error)},
            "timestamp": datetime.now(timezone.utc).isoformat()
        }
    ) from error


# Request/Response models

class CreateWorkflowRequest(BaseModel):
    """Request model for creating a local workflow."""
    name: str = Field(..., min_length=1, description="Workflow name")
    description: Optional[str] = Field(None, description="Workflow description")
    nodes: List[GraphNode] = Field(default_factory=list, description="Editor graph nodes")
    edges: List[GraphEdge] = Field(default_factory=list, description="Editor graph edges")


class SyncWorkflowRequest(BaseModel):
    """Graph to push; the stored graph is used when omitted."""
    nodes: Optional[List[GraphNode]] = Field(None, description="Editor graph nodes")
    edges: Optional[List[GraphEdge]] = Field(None, description="Editor graph edges")


class SyncWorkflowResponse(BaseModel):
    workflow_id: str
    external_workflow_id: str
    last_synced_at: Optional[datetime] = None
    message: str


class ExecuteWorkflowRequest(BaseModel):
    """Request model for running a workflow."""
    input_data: Dict[str, Any] = Field(default_factory=dict, description="Data handed to the run")
    start_node: Optional[str] = Field(None, description="Engine node name to start from")


class ExecutionStartedResponse(BaseModel):
    execution_id: str = Field(..., description="Local execution identifier")
    status: ExecutionStatusEnum
    message: str


class MappingPreviewResponse(BaseModel):
    document: Dict[str, Any]
    defects: Optional[List[Dict[str, Any]]] = None


# Workflows

@router.post(
    "/workflows",
    response_model=LocalWorkflow,
    status_code=status.HTTP_201_CREATED,
    summary="Create a local workflow"
)
async def create_workflow(
    request: CreateWorkflowRequest,
    store: WorkflowStore = Depends(get_workflow_store)
) -> LocalWorkflow:
    try:
        return store.create(request.name, request.description, request.nodes, request.edges)
    except Exception as e:
        _raise_http_error(e, "creating the workflow")


@router.get("/workflows", response_model=List[LocalWorkflow], summary="List local workflows")
async def list_workflows(
    workflow_status: Optional[WorkflowStatus] = Query(None, alias="status"),
    limit: int = Query(50, ge=1, le=500),
    offset: int = Query(0, ge=0),
    store: WorkflowStore = Depends(get_workflow_store)
) -> List[LocalWorkflow]:
    try:
        return store.list(status=workflow_status, limit=limit, offset=offset)
    except Exception as e:
        _raise_http_error(e, "listing workflows")


@router.get("/workflows/{workflow_id}", response_model=LocalWorkflow, summary="Get a local workflow")
async def get_workflow(
    workflow_id: str,
    store: WorkflowStore = Depends(get_workflow_store)
) -> LocalWorkflow:
    try:
        return store.get(workflow_id)
    except Exception as e:
        _raise_http_error(e, "loading the workflow")


@router.get(
    "/workflows/{workflow_id}/preview",
    response_model=MappingPreviewResponse,
    summary="Preview the engine document of a workflow",
    description="Translate the stored graph without contacting the engine"
)
async def preview_workflow(
    workflow_id: str,
    store: WorkflowStore = Depends(get_workflow_store)
) -> MappingPreviewResponse:
    try:
        workflow = store.get(workflow_id)
        result = map_graph(
            workflow.name,
            workflow.nodes,
            workflow.edges,
            active=workflow.status == WorkflowStatus.ACTIVE,
        )
        return MappingPreviewResponse(
            document=result.document.to_payload(),
            defects=summarize_defects(result.defects),
        )
    except Exception as e:
        _raise_http_error(e, "previewing the workflow")


# Sync and activation

@router.post(
    "/workflows/{workflow_id}/sync",
    response_model=SyncWorkflowResponse,
    summary="Push a workflow graph to the engine"
)
async def sync_workflow(
    workflow_id: str,
    request: Optional[SyncWorkflowRequest] = None,
    coordinator: SyncCoordinator = Depends(get_sync_coordinator),
    store: WorkflowStore = Depends(get_workflow_store)
) -> SyncWorkflowResponse:
    """
    Create or update the engine's copy of a workflow.

    Raises:
        HTTPException: 404 for unknown workflows, 502/503 when the engine
            rejected the document or could not be reached
    """
    try:
        request = request or SyncWorkflowRequest()
        external_id = await coordinator.sync(workflow_id, request.nodes, request.edges)
        workflow = store.get(workflow_id)
        return SyncWorkflowResponse(
            workflow_id=workflow_id,
            external_workflow_id=external_id,
            last_synced_at=workflow.last_synced_at,
            message="Workflow synced successfully",
        )
    except Exception as e:
        _raise_http_error(e, "syncing the workflow")


@router.get("/workflows/{workflow_id}/sync", summary="Get the sync status of a workflow")
async def get_sync_status(
    workflow_id: str,
    coordinator: SyncCoordinator = Depends(get_sync_coordinator)
) -> Dict[str, Any]:
    try:
        return await coordinator.sync_status(workflow_id)
    except Exception as e:
        _raise_http_error(e, "reading the sync status")


@router.post("/workflows/{workflow_id}/activate", response_model=LocalWorkflow, summary="Activate a workflow")
async def activate_workflow(
    workflow_id: str,
    coordinator: SyncCoordinator = Depends(get_sync_coordinator)
) -> LocalWorkflow:
    try:
        return await coordinator.activate(workflow_id)
    except Exception as e:
        _raise_http_error(e, "activating the workflow")


@router.post("/workflows/{workflow_id}/deactivate", response_model=LocalWorkflow, summary="Deactivate a workflow")
async def deactivate_workflow(
    workflow_id: str,
    coordinator: SyncCoordinator = Depends(get_sync_coordinator)
) -> LocalWorkflow:
    try:
        return await coordinator.deactivate(workflow_id)
    except Exception as e:
        _raise_http_error(e, "deactivating the workflow")


# Executions

@router.post(
    "/workflows/{workflow_id}/execute",
    response_model=ExecutionStartedResponse,
    status_code=status.HTTP_202_ACCEPTED,
    summary="Run a workflow on the engine",
    description="Trigger a remote run; its outcome is tracked in the background"
)
async def execute_workflow(
    workflow_id: str,
    request: Optional[ExecuteWorkflowRequest] = None,
    coordinator: ExecutionCoordinator = Depends(get_execution_coordinator)
) -> ExecutionStartedResponse:
    try:
        request = request or ExecuteWorkflowRequest()
        execution_id = await coordinator.execute(workflow_id, request.input_data, request.start_node)
        execution = coordinator.execution_store.get(execution_id)
        return ExecutionStartedResponse(
            execution_id=execution_id,
            status=execution.status,
            message="Execution started",
        )
    except Exception as e:
        _raise_http_error(e, "starting the execution")


# Headers that carry credentials are not stored with the trigger data
_DROPPED_WEBHOOK_HEADERS = {"authorization", "cookie", "x-n8n-api-key"}


async def _read_webhook_body(request: Request) -> Any:
    raw = await request.body()
    if not raw:
        return {}
    try:
        return json.loads(raw)
    except ValueError:
        return raw.decode("utf-8", errors="replace")


@router.api_route(
    "/webhooks/{path:path}",
    methods=["GET", "POST", "PUT"],
    response_model=ExecutionStartedResponse,
    status_code=status.HTTP_202_ACCEPTED,
    summary="Run the workflow listening on a webhook path",
    description="Resolve the workflow whose webhook node uses the path and run it with the request body as input"
)
async def receive_webhook(
    path: str,
    request: Request,
    coordinator: ExecutionCoordinator = Depends(get_execution_coordinator),
    store: WorkflowStore = Depends(get_workflow_store)
) -> ExecutionStartedResponse:
    body = await _read_webhook_body(request)
    try:
        workflow = store.find_by_webhook_path(path)
        execution_id = await coordinator.execute(
            workflow.id,
            body if isinstance(body, dict) else {"body": body},
            trigger_type="webhook",
            trigger_data={
                "webhook_path": path.strip("/"),
                "method": request.method,
                "headers": {
                    name: value for name, value in request.headers.items()
                    if name.lower() not in _DROPPED_WEBHOOK_HEADERS
                },
                "query": dict(request.query_params),
                "body": body,
            },
        )
        execution = coordinator.execution_store.get(execution_id)
        return ExecutionStartedResponse(
            execution_id=execution_id,
            status=execution.status,
            message="Webhook received, execution started",
        )
    except Exception as e:
        _raise_http_error(e, "handling the webhook")


@router.get(
    "/workflows/{workflow_id}/executions",
    response_model=List[Execution],
    summary="List executions of a workflow"
)
async def list_workflow_executions(
    workflow_id: str,
    execution_status: Optional[ExecutionStatusEnum] = Query(None, alias="status"),
    limit: int = Query(50, ge=1, le=500),
    offset: int = Query(0, ge=0),
    coordinator: ExecutionCoordinator = Depends(get_execution_coordinator),
    store: WorkflowStore = Depends(get_workflow_store)
) -> List[Execution]:
    try:
        store.get(workflow_id)
        return coordinator.list_executions(workflow_id, execution_status, limit, offset)
    except Exception as e:
        _raise_http_error(e, "listing executions")


@router.get("/executions", response_model=List[Execution], summary="List executions")
async def list_executions(
    workflow_id: Optional[str] = Query(None),
    execution_status: Optional[ExecutionStatusEnum] = Query(None, alias="status"),
    limit: int = Query(50, ge=1, le=500),
    offset: int = Query(0, ge=0),
    coordinator: ExecutionCoordinator = Depends(get_execution_coordinator)
) -> List[Execution]:
    try:
        return coordinator.list_executions(workflow_id, execution_status, limit, offset)
    except Exception as e:
        _raise_http_error(e, "listing executions")


@router.get("/executions/stats", response_model=ExecutionStats, summary="Execution statistics")
async def get_execution_stats(
    workflow_id: Optional[str] = Query(None),
    coordinator: ExecutionCoordinator = Depends(get_execution_coordinator)
) -> ExecutionStats:
    try:
        return coordinator.get_execution_stats(workflow_id)
    except Exception as e:
        _raise_http_error(e, "computing execution statistics")


@router.get("/executions/{execution_id}", response_model=ExecutionWithLogs, summary="Get an execution with its logs")
async def get_execution(
    execution_id: str,
    coordinator: ExecutionCoordinator = Depends(get_execution_coordinator)
) -> ExecutionWithLogs:
    try:
        return coordinator.get_execution_with_logs(execution_id)
    except Exception as e:
        _raise_http_error(e, "loading the execution")


@router.get(
    "/executions/{execution_id}/logs",
    response_model=List[ExecutionLogEntry],
    summary="Get the logs of an execution"
)
async def get_execution_logs(
    execution_id: str,
    coordinator: ExecutionCoordinator = Depends(get_execution_coordinator)
) -> List[ExecutionLogEntry]:
    try:
        return coordinator.get_execution_with_logs(execution_id).logs
    except Exception as e:
        _raise_http_error(e, "loading execution logs")


@router.post("/executions/{execution_id}/stop", response_model=Execution, summary="Cancel a running execution")
async def stop_execution(
    execution_id: str,
    coordinator: ExecutionCoordinator = Depends(get_execution_coordinator)
) -> Execution:
    try:
        return await coordinator.cancel(execution_id)
    except Exception as e:
        _raise_http_error(e, "cancelling the execution")


@router.post(
    "/executions/{execution_id}/retry",
    response_model=ExecutionStartedResponse,
    status_code=status.HTTP_202_ACCEPTED,
    summary="Retry a failed execution"
)
async def retry_execution(
    execution_id: str,
    coordinator: ExecutionCoordinator = Depends(get_execution_coordinator)
) -> ExecutionStartedResponse:
    try:
        new_id = await coordinator.retry(execution_id)
        execution = coordinator.execution_store.get(new_id)
        return ExecutionStartedResponse(
            execution_id=new_id,
            status=execution.status,
            message=f"Retry of execution {execution_id} started",
        )
    except Exception as e:
        _raise_http_error(e, "retrying the execution")


# Catalogue

@router.get("/node-kinds", summary="List supported node kinds")
async def get_node_kinds() -> List[Dict[str, Any]]:
    return [asdict(entry) for entry in list_node_kinds()]
