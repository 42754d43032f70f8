"""Pytest configuration and fixtures."""

import asyncio
import json
import itertools
from typing import Any, Dict, List, Optional

import httpx
import pytest

from flowsync.core.engine_client import EngineClient, EngineCredentials
from flowsync.core.execution_coordinator import ExecutionCoordinator
from flowsync.core.execution_store import ExecutionStore
from flowsync.core.poller import ExecutionPoller
from flowsync.core.sync_coordinator import SyncCoordinator
from flowsync.core.workflow_store import WorkflowStore
from flowsync.models.core import ExecutionStatusEnum, GraphEdge, GraphNode
from flowsync.storage.database import configure_database, create_tables, drop_tables, reset_database_engine


ENGINE_URL = "http://engine.test"


def running_payload(execution_id: str, workflow_id: Optional[str] = None) -> Dict[str, Any]:
    return {"id": execution_id, "workflowId": workflow_id, "finished": False, "status": "running"}


def success_payload(execution_id: str, workflow_id: Optional[str] = None) -> Dict[str, Any]:
    return {
        "id": execution_id,
        "workflowId": workflow_id,
        "finished": True,
        "status": "success",
        "startedAt": "2024-01-01T10:00:00.000Z",
        "stoppedAt": "2024-01-01T10:00:01.500Z",
        "data": {"resultData": {"runData": {"Start": [{"data": {"ok": True}}]}}},
    }


def error_payload(execution_id: str, workflow_id: Optional[str] = None) -> Dict[str, Any]:
    return {
        "id": execution_id,
        "workflowId": workflow_id,
        "finished": False,
        "status": "error",
        "data": {"resultData": {"error": {"message": "Node 'Fetch' failed"}, "runData": {}}},
    }


class FakeEngine:
    """In-memory stand-in for the engine REST API, served through httpx.MockTransport."""

    def __init__(self):
        self.workflows: Dict[str, Dict[str, Any]] = {}
        self.executions: Dict[str, List[Dict[str, Any]]] = {}
        self.requests: List[tuple] = []
        self.failures: Dict[tuple, Any] = {}
        self.scripts: List[List[str]] = []
        self._ids = itertools.count(1)

    def fail(self, method: str, path: str, failure: Any):
        """Make ``method path`` answer with a status code, or raise when ``failure`` is "unavailable"."""
        self.failures[(method, path)] = failure

    def recover(self):
        self.failures.clear()

    def script_next_execution(self, *steps: str):
        """Queue the sequence of states ("running", "success", "error", "raise") for the next run."""
        self.scripts.append(list(steps))

    def calls(self, method: str, path: Optional[str] = None) -> List[tuple]:
        return [r for r in self.requests if r[0] == method and (path is None or r[1] == path)]

    def transport(self) -> httpx.MockTransport:
        return httpx.MockTransport(self.handler)

    def handler(self, request: httpx.Request) -> httpx.Response:
        method = request.method
        path = request.url.path
        body = json.loads(request.content) if request.content else None
        self.requests.append((method, path, body))

        failure = self.failures.get((method, path))
        if failure == "unavailable":
            raise httpx.ConnectError("Connection refused", request=request)
        if failure:
            return httpx.Response(failure, json={"message": "rejected by fake engine"})

        parts = path.strip("/").split("/")[2:]  # drop api/v1

        if parts == ["workflows"]:
            if method == "GET":
                return httpx.Response(200, json={"data": list(self.workflows.values()), "nextCursor": None})
            workflow_id = f"wf-{next(self._ids)}"
            self.workflows[workflow_id] = {**body, "id": workflow_id}
            return httpx.Response(200, json=self.workflows[workflow_id])

        if len(parts) >= 2 and parts[0] == "workflows":
            workflow = self.workflows.get(parts[1])
            if workflow is None:
                return httpx.Response(404, json={"message": "Not Found"})

            if len(parts) == 3 and parts[2] == "execute" and method == "POST":
                execution_id = f"ex-{next(self._ids)}"
                steps = self.scripts.pop(0) if self.scripts else ["running", "success"]
                self.executions[execution_id] = [(step, parts[1]) for step in steps]
                return httpx.Response(200, json={"data": {"executionId": execution_id}})

            if method == "GET":
                return httpx.Response(200, json=workflow)
            if method == "PUT":
                if set(body.keys()) == {"active"}:
                    workflow["active"] = body["active"]
                else:
                    workflow.update(body)
                return httpx.Response(200, json=workflow)

        if len(parts) == 2 and parts[0] == "executions" and method == "GET":
            steps = self.executions.get(parts[1])
            if steps is None:
                return httpx.Response(404, json={"message": "Not Found"})
            step, workflow_id = steps.pop(0) if len(steps) > 1 else steps[0]
            if step == "raise":
                raise httpx.ReadTimeout("timed out", request=request)
            return httpx.Response(200, json=self._payload(parts[1], step, workflow_id))

        if parts == ["executions"] and method == "GET":
            workflow_id = request.url.params.get("workflowId")
            limit = int(request.url.params.get("limit", 20))
            items = [
                self._payload(execution_id, steps[-1][0], steps[-1][1])
                for execution_id, steps in self.executions.items()
                if workflow_id is None or steps[-1][1] == workflow_id
            ]
            return httpx.Response(200, json={"data": items[-limit:]})

        return httpx.Response(404, json={"message": f"No route for {method} {path}"})

    def _payload(self, execution_id: str, step: str, workflow_id: str) -> Dict[str, Any]:
        if step == "success":
            return success_payload(execution_id, workflow_id)
        if step == "error":
            return error_payload(execution_id, workflow_id)
        return running_payload(execution_id, workflow_id)


async def wait_for_status(store: ExecutionStore, execution_id: str, *statuses, timeout: float = 2.0):
    """Wait until an execution reaches one of ``statuses`` and return it."""
    wanted = {ExecutionStatusEnum(s) for s in statuses}
    deadline = asyncio.get_running_loop().time() + timeout
    while True:
        execution = store.get(execution_id)
        if execution.status in wanted:
            return execution
        if asyncio.get_running_loop().time() > deadline:
            raise AssertionError(f"Execution stayed {execution.status.value}, expected {statuses}")
        await asyncio.sleep(0.01)


@pytest.fixture
def temp_db():
    """Fresh in-memory database bound to the global session factory."""
    configure_database("sqlite://")
    create_tables()
    yield
    drop_tables()
    reset_database_engine()


@pytest.fixture
def fake_engine():
    return FakeEngine()


@pytest.fixture
def engine_client(fake_engine):
    credentials = EngineCredentials(base_url=ENGINE_URL, api_key="test-key", timeout=5.0)
    return EngineClient(credentials, transport=fake_engine.transport())


@pytest.fixture
def workflow_store(temp_db):
    return WorkflowStore()


@pytest.fixture
def execution_store(temp_db):
    return ExecutionStore()


@pytest.fixture
def poller(engine_client, execution_store):
    return ExecutionPoller(engine_client, execution_store, interval=0.01, max_attempts=20)


@pytest.fixture
def sync_coordinator(workflow_store, engine_client):
    return SyncCoordinator(workflow_store, engine_client)


@pytest.fixture
def execution_coordinator(workflow_store, execution_store, engine_client, poller):
    return ExecutionCoordinator(workflow_store, execution_store, engine_client, poller, max_retries=2)


@pytest.fixture
def sample_graph():
    """Webhook -> HTTP request -> conditional with two branches."""
    nodes = [
        GraphNode(id="n1", kind="webhook", label="Start", config={"path": "orders"}),
        GraphNode(id="n2", kind="http_request", label="Fetch", config={"url": "https://api.example.com"}),
        GraphNode(id="n3", kind="conditional", label="Check", config={"value2": "ok"}),
        GraphNode(id="n4", kind="set", label="Yes"),
        GraphNode(id="n5", kind="set", label="No"),
    ]
    edges = [
        GraphEdge(id="e1", source="n1", target="n2"),
        GraphEdge(id="e2", source="n2", target="n3"),
        GraphEdge(id="e3", source="n3", target="n4", source_handle="true"),
        GraphEdge(id="e4", source="n3", target="n5", source_handle="false"),
    ]
    return nodes, edges


@pytest.fixture
def active_workflow(workflow_store, fake_engine, sample_graph):
    """A workflow that is synced and active, without going through the coordinators."""
    nodes, edges = sample_graph
    workflow = workflow_store.create("Orders", nodes=nodes, edges=edges)
    fake_engine.workflows["wf-remote"] = {"id": "wf-remote", "name": "Orders", "active": True, "nodes": []}
    workflow_store.record_sync(workflow.id, "wf-remote", nodes, edges)
    return workflow_store.set_status(workflow.id, "active")
