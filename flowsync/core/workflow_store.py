"""Persistence of local workflows and their mirrored graphs."""

import uuid
from typing import Any, Dict, List, Optional, Sequence

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from ..models.core import GraphEdge, GraphNode, LocalWorkflow, WorkflowStatus, utcnow
from ..models.node_kinds import is_webhook_kind, parse_config
from ..storage.database import get_db
from ..storage.models import WorkflowModel
from .exceptions import StorageError, WebhookNotFound, WorkflowNotFound
from .logging import get_logger

logger = get_logger(__name__)


def _dump_graph(items: Sequence[Any]) -> List[Dict[str, Any]]:
    return [item.model_dump(mode="json") if hasattr(item, "model_dump") else dict(item) for item in items]


def _webhook_paths(nodes: Sequence[GraphNode]) -> List[str]:
    paths = []
    for node in nodes:
        if is_webhook_kind(node.kind):
            config, _ = parse_config(node.kind, node.config)
            paths.append(config.path.strip("/"))
    return paths


class WorkflowStore:
    """CRUD over the ``workflows`` table."""

    def __init__(self, db_session: Optional[Session] = None):
        self._db_session = db_session

    def _session(self):
        if self._db_session is not None:
            return self._db_session, False
        return next(get_db()), True

    def _load(self, db: Session, workflow_id: str) -> WorkflowModel:
        model = db.query(WorkflowModel).filter(WorkflowModel.id == workflow_id).first()
        if model is None:
            raise WorkflowNotFound(workflow_id)
        return model

    def create(
        self,
        name: str,
        description: Optional[str] = None,
        nodes: Sequence[GraphNode] = (),
        edges: Sequence[GraphEdge] = (),
    ) -> LocalWorkflow:
        """Create a draft workflow holding the given graph."""
        workflow_id = str(uuid.uuid4())
        db, owned = self._session()
        try:
            model = WorkflowModel(
                id=workflow_id,
                name=name,
                description=description,
                status=WorkflowStatus.DRAFT.value,
                nodes=_dump_graph(nodes),
                edges=_dump_graph(edges),
            )
            db.add(model)
            db.commit()
            db.refresh(model)
            logger.info(f"Created workflow '{name}' with ID: {workflow_id}")
            return LocalWorkflow.model_validate(model)
        except SQLAlchemyError as e:
            db.rollback()
            logger.error(f"Database error while creating workflow: {str(e)}")
            raise StorageError(f"Failed to create workflow: {str(e)}", operation="create", table="workflows")
        finally:
            if owned:
                db.close()

    def get(self, workflow_id: str) -> LocalWorkflow:
        db, owned = self._session()
        try:
            return LocalWorkflow.model_validate(self._load(db, workflow_id))
        except SQLAlchemyError as e:
            logger.error(f"Database error while loading workflow {workflow_id}: {str(e)}")
            raise StorageError(f"Failed to load workflow: {str(e)}", operation="get", table="workflows")
        finally:
            if owned:
                db.close()

    def list(
        self,
        status: Optional[WorkflowStatus] = None,
        limit: int = 50,
        offset: int = 0,
    ) -> List[LocalWorkflow]:
        db, owned = self._session()
        try:
            query = db.query(WorkflowModel)
            if status is not None:
                query = query.filter(WorkflowModel.status == WorkflowStatus(status).value)
            models = query.order_by(WorkflowModel.created_at.desc()).offset(offset).limit(limit).all()
            return [LocalWorkflow.model_validate(m) for m in models]
        except SQLAlchemyError as e:
            logger.error(f"Database error while listing workflows: {str(e)}")
            raise StorageError(f"Failed to list workflows: {str(e)}", operation="list", table="workflows")
        finally:
            if owned:
                db.close()

    def _update(self, workflow_id: str, operation: str, **values) -> LocalWorkflow:
        db, owned = self._session()
        try:
            model = self._load(db, workflow_id)
            for key, value in values.items():
                setattr(model, key, value)
            db.commit()
            db.refresh(model)
            return LocalWorkflow.model_validate(model)
        except SQLAlchemyError as e:
            db.rollback()
            logger.error(f"Database error during {operation} of workflow {workflow_id}: {str(e)}")
            raise StorageError(f"Failed to update workflow: {str(e)}", operation=operation, table="workflows")
        finally:
            if owned:
                db.close()

    def record_sync(
        self,
        workflow_id: str,
        external_workflow_id: str,
        nodes: Sequence[GraphNode],
        edges: Sequence[GraphEdge],
    ) -> LocalWorkflow:
        """Store the engine id, the sync time and the graph that was pushed."""
        return self._update(
            workflow_id,
            "record_sync",
            external_workflow_id=external_workflow_id,
            last_synced_at=utcnow(),
            nodes=_dump_graph(nodes),
            edges=_dump_graph(edges),
        )

    def set_status(self, workflow_id: str, status: WorkflowStatus) -> LocalWorkflow:
        return self._update(workflow_id, "set_status", status=WorkflowStatus(status).value)

    def touch_last_run(self, workflow_id: str) -> LocalWorkflow:
        return self._update(workflow_id, "touch_last_run", last_run_at=utcnow())

    def find_by_webhook_path(self, path: str) -> LocalWorkflow:
        """
        Find the workflow whose webhook node listens on ``path``.

        Paths compare without surrounding slashes. When several workflows
        share a path the oldest active one wins, then the oldest of any status.

        Raises:
            WebhookNotFound: If no webhook node uses the path
        """
        wanted = path.strip("/")
        db, owned = self._session()
        try:
            models = db.query(WorkflowModel).order_by(WorkflowModel.created_at.asc()).all()
            matches = [
                workflow for workflow in (LocalWorkflow.model_validate(m) for m in models)
                if wanted in _webhook_paths(workflow.nodes)
            ]
        except SQLAlchemyError as e:
            logger.error(f"Database error while resolving webhook path '{wanted}': {str(e)}")
            raise StorageError(f"Failed to resolve webhook: {str(e)}", operation="find_by_webhook_path", table="workflows")
        finally:
            if owned:
                db.close()

        if not matches:
            raise WebhookNotFound(wanted)
        active = [w for w in matches if w.status == WorkflowStatus.ACTIVE]
        return (active or matches)[0]
