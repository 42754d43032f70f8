"""Keeps the engine's copy of a workflow in step with the local graph."""

from typing import Any, Dict, Optional, Sequence

from ..models.core import GraphEdge, GraphNode, LocalWorkflow, WorkflowStatus
from .engine_client import EngineClient
from .exceptions import FlowSyncError, NotSynced, RemoteRejected
from .logging import get_logger
from .mapper import map_graph
from .workflow_store import WorkflowStore

logger = get_logger(__name__)

RECENT_EXECUTIONS_LIMIT = 5


class SyncCoordinator:
    """Creates, updates and (de)activates the remote mirror of a workflow."""

    def __init__(self, workflow_store: WorkflowStore, engine_client: EngineClient):
        self.workflow_store = workflow_store
        self.engine_client = engine_client

    async def sync(
        self,
        workflow_id: str,
        nodes: Optional[Sequence[GraphNode]] = None,
        edges: Optional[Sequence[GraphEdge]] = None,
    ) -> str:
        """
        Push a graph to the engine and return the engine workflow id.

        Without ``nodes``/``edges`` the stored graph is pushed. An update the
        engine rejects (typically because the remote copy was deleted) is
        retried once as a create, and the new id is adopted. Nothing is
        persisted unless the engine accepted the document.

        Raises:
            WorkflowNotFound: If the workflow does not exist
            RemoteUnavailable: If the engine cannot be reached
            RemoteRejected: If the engine refused the document
        """
        workflow = self.workflow_store.get(workflow_id)
        nodes = [
            n if isinstance(n, GraphNode) else GraphNode.model_validate(n)
            for n in (workflow.nodes if nodes is None else nodes)
        ]
        edges = [
            e if isinstance(e, GraphEdge) else GraphEdge.model_validate(e)
            for e in (workflow.edges if edges is None else edges)
        ]

        result = map_graph(
            workflow.name,
            nodes,
            edges,
            active=workflow.status == WorkflowStatus.ACTIVE,
        )
        for defect in result.defects:
            logger.warning(f"Workflow {workflow_id}: {defect.message} {defect.context}")

        if workflow.external_workflow_id:
            try:
                remote = await self.engine_client.update_workflow(workflow.external_workflow_id, result.document)
                external_id = str((remote or {}).get("id") or workflow.external_workflow_id)
            except RemoteRejected as e:
                logger.warning(
                    f"Update of engine workflow {workflow.external_workflow_id} rejected "
                    f"({e.status_code}), creating a new one"
                )
                external_id = await self._create(result.document)
        else:
            external_id = await self._create(result.document)

        self.workflow_store.record_sync(workflow_id, external_id, nodes, edges)
        logger.info(f"Synced workflow {workflow_id} to engine workflow {external_id}")
        return external_id

    async def _create(self, document) -> str:
        remote = await self.engine_client.create_workflow(document)
        external_id = remote.get("id") if isinstance(remote, dict) else None
        if not external_id:
            raise RemoteRejected(
                "Workflow engine did not return a workflow id",
                status_code=502,
                body=str(remote),
            )
        return str(external_id)

    def _require_synced(self, workflow_id: str) -> LocalWorkflow:
        workflow = self.workflow_store.get(workflow_id)
        if not workflow.external_workflow_id:
            raise NotSynced(
                f"Workflow '{workflow_id}' has not been synced to the engine",
                workflow_id=workflow_id,
            )
        return workflow

    async def activate(self, workflow_id: str) -> LocalWorkflow:
        workflow = self._require_synced(workflow_id)
        await self.engine_client.set_active(workflow.external_workflow_id, True)
        logger.info(f"Activated workflow {workflow_id}")
        return self.workflow_store.set_status(workflow_id, WorkflowStatus.ACTIVE)

    async def deactivate(self, workflow_id: str) -> LocalWorkflow:
        workflow = self._require_synced(workflow_id)
        await self.engine_client.set_active(workflow.external_workflow_id, False)
        logger.info(f"Deactivated workflow {workflow_id}")
        return self.workflow_store.set_status(workflow_id, WorkflowStatus.INACTIVE)

    async def sync_status(self, workflow_id: str) -> Dict[str, Any]:
        """Describe the remote mirror; never raises for remote failures."""
        workflow = self.workflow_store.get(workflow_id)
        status: Dict[str, Any] = {
            "synced": False,
            "workflow_id": workflow_id,
            "external_workflow_id": workflow.external_workflow_id,
            "last_synced_at": workflow.last_synced_at,
            "node_count": len(workflow.nodes),
        }
        if not workflow.external_workflow_id:
            return status

        try:
            remote = await self.engine_client.get_workflow(workflow.external_workflow_id)
            executions = await self.engine_client.list_executions(
                workflow.external_workflow_id,
                limit=RECENT_EXECUTIONS_LIMIT,
            )
        except FlowSyncError as e:
            logger.warning(f"Could not read sync status of workflow {workflow_id}: {e.message}")
            status["error"] = e.message
            return status

        status.update(
            synced=True,
            active=bool((remote or {}).get("active")),
            node_count=len((remote or {}).get("nodes") or workflow.nodes),
            recent_executions=[e.model_dump(mode="json") for e in executions],
        )
        return status
