"""Tests for pushing graphs to the engine and toggling activation."""

import pytest

from flowsync.core.exceptions import NotSynced, RemoteRejected, RemoteUnavailable, WorkflowNotFound
from flowsync.models.core import GraphNode, WorkflowStatus


class TestSync:

    @pytest.mark.asyncio
    async def test_first_sync_creates_remote_workflow(self, sync_coordinator, workflow_store, fake_engine, sample_graph):
        nodes, edges = sample_graph
        workflow = workflow_store.create("Orders", nodes=nodes, edges=edges)

        external_id = await sync_coordinator.sync(workflow.id)

        assert external_id in fake_engine.workflows
        assert len(fake_engine.calls("POST", "/api/v1/workflows")) == 1
        stored = workflow_store.get(workflow.id)
        assert stored.external_workflow_id == external_id
        assert stored.last_synced_at is not None

        pushed = fake_engine.workflows[external_id]
        assert [n["name"] for n in pushed["nodes"]] == ["Start", "Fetch", "Check", "Yes", "No"]
        assert pushed["active"] is False

    @pytest.mark.asyncio
    async def test_second_sync_updates_in_place(self, sync_coordinator, workflow_store, fake_engine, sample_graph):
        nodes, edges = sample_graph
        workflow = workflow_store.create("Orders", nodes=nodes, edges=edges)
        first = await sync_coordinator.sync(workflow.id)

        new_nodes = nodes + [GraphNode(id="n6", kind="set", label="Extra")]
        second = await sync_coordinator.sync(workflow.id, new_nodes, edges)

        assert first == second
        assert len(fake_engine.calls("POST", "/api/v1/workflows")) == 1
        assert len(fake_engine.calls("PUT", f"/api/v1/workflows/{first}")) == 1
        assert len(workflow_store.get(workflow.id).nodes) == 6

    @pytest.mark.asyncio
    async def test_rejected_update_falls_back_to_create(self, sync_coordinator, workflow_store, fake_engine, sample_graph):
        nodes, edges = sample_graph
        workflow = workflow_store.create("Orders", nodes=nodes, edges=edges)
        workflow_store.record_sync(workflow.id, "deleted-remotely", nodes, edges)

        external_id = await sync_coordinator.sync(workflow.id)

        assert external_id != "deleted-remotely"
        assert external_id in fake_engine.workflows
        assert workflow_store.get(workflow.id).external_workflow_id == external_id

    @pytest.mark.asyncio
    async def test_unreachable_engine_leaves_workflow_unsynced(self, sync_coordinator, workflow_store, fake_engine, sample_graph):
        nodes, edges = sample_graph
        workflow = workflow_store.create("Orders", nodes=nodes, edges=edges)
        fake_engine.fail("POST", "/api/v1/workflows", "unavailable")

        with pytest.raises(RemoteUnavailable):
            await sync_coordinator.sync(workflow.id)

        stored = workflow_store.get(workflow.id)
        assert stored.external_workflow_id is None
        assert stored.last_synced_at is None

    @pytest.mark.asyncio
    async def test_unreachable_engine_does_not_trigger_fallback(self, sync_coordinator, workflow_store, active_workflow, fake_engine):
        fake_engine.fail("PUT", "/api/v1/workflows/wf-remote", "unavailable")

        with pytest.raises(RemoteUnavailable):
            await sync_coordinator.sync(active_workflow.id)

        assert fake_engine.calls("POST", "/api/v1/workflows") == []
        assert workflow_store.get(active_workflow.id).external_workflow_id == "wf-remote"

    @pytest.mark.asyncio
    async def test_rejected_create_raises(self, sync_coordinator, workflow_store, fake_engine):
        workflow = workflow_store.create("Empty")
        fake_engine.fail("POST", "/api/v1/workflows", 400)

        with pytest.raises(RemoteRejected) as exc_info:
            await sync_coordinator.sync(workflow.id)
        assert exc_info.value.status_code == 400

    @pytest.mark.asyncio
    async def test_active_workflow_pushed_as_active(self, sync_coordinator, active_workflow, fake_engine):
        await sync_coordinator.sync(active_workflow.id)
        assert fake_engine.calls("PUT", "/api/v1/workflows/wf-remote")[0][2]["active"] is True

    @pytest.mark.asyncio
    async def test_unknown_workflow(self, sync_coordinator):
        with pytest.raises(WorkflowNotFound):
            await sync_coordinator.sync("missing")


class TestActivation:

    @pytest.mark.asyncio
    async def test_activate_and_deactivate(self, sync_coordinator, workflow_store, fake_engine, sample_graph):
        nodes, edges = sample_graph
        workflow = workflow_store.create("Orders", nodes=nodes, edges=edges)
        external_id = await sync_coordinator.sync(workflow.id)

        activated = await sync_coordinator.activate(workflow.id)
        assert activated.status == WorkflowStatus.ACTIVE
        assert fake_engine.workflows[external_id]["active"] is True

        deactivated = await sync_coordinator.deactivate(workflow.id)
        assert deactivated.status == WorkflowStatus.INACTIVE
        assert fake_engine.workflows[external_id]["active"] is False

        bodies = [body for _, _, body in fake_engine.calls("PUT", f"/api/v1/workflows/{external_id}")]
        assert bodies == [{"active": True}, {"active": False}]

    @pytest.mark.asyncio
    async def test_activate_unsynced_makes_no_remote_call(self, sync_coordinator, workflow_store, fake_engine):
        workflow = workflow_store.create("Draft")

        with pytest.raises(NotSynced):
            await sync_coordinator.activate(workflow.id)

        assert fake_engine.requests == []
        assert workflow_store.get(workflow.id).status == WorkflowStatus.DRAFT

    @pytest.mark.asyncio
    async def test_failed_activation_keeps_local_status(self, sync_coordinator, workflow_store, fake_engine, sample_graph):
        nodes, edges = sample_graph
        workflow = workflow_store.create("Orders", nodes=nodes, edges=edges)
        external_id = await sync_coordinator.sync(workflow.id)
        fake_engine.fail("PUT", f"/api/v1/workflows/{external_id}", 500)

        with pytest.raises(RemoteRejected):
            await sync_coordinator.activate(workflow.id)
        assert workflow_store.get(workflow.id).status == WorkflowStatus.DRAFT


class TestSyncStatus:

    @pytest.mark.asyncio
    async def test_unsynced(self, sync_coordinator, workflow_store, fake_engine):
        workflow = workflow_store.create("Draft")
        status = await sync_coordinator.sync_status(workflow.id)

        assert status["synced"] is False
        assert status["external_workflow_id"] is None
        assert fake_engine.requests == []

    @pytest.mark.asyncio
    async def test_synced_reports_remote_state(self, sync_coordinator, active_workflow, fake_engine):
        status = await sync_coordinator.sync_status(active_workflow.id)

        assert status["synced"] is True
        assert status["active"] is True
        assert status["external_workflow_id"] == "wf-remote"
        assert status["recent_executions"] == []
        assert len(fake_engine.calls("GET", "/api/v1/executions")) == 1

    @pytest.mark.asyncio
    async def test_remote_failure_is_reported_not_raised(self, sync_coordinator, active_workflow, fake_engine):
        fake_engine.fail("GET", "/api/v1/workflows/wf-remote", "unavailable")
        status = await sync_coordinator.sync_status(active_workflow.id)

        assert status["synced"] is False
        assert "error" in status
