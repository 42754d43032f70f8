"""Tests for the workflow and execution stores."""

import pytest

from flowsync.core.exceptions import ExecutionNotFound, InvalidExecutionState, WebhookNotFound, WorkflowNotFound
from flowsync.models.core import ExecutionStatusEnum, LogLevel, WorkflowStatus


class TestWorkflowStore:

    def test_create_and_get(self, workflow_store, sample_graph):
        nodes, edges = sample_graph
        created = workflow_store.create("Orders", "desc", nodes, edges)

        loaded = workflow_store.get(created.id)
        assert loaded.status == WorkflowStatus.DRAFT
        assert [n.id for n in loaded.nodes] == ["n1", "n2", "n3", "n4", "n5"]
        assert loaded.edges[2].source_handle == "true"
        assert not loaded.is_synced

    def test_missing_workflow(self, workflow_store):
        with pytest.raises(WorkflowNotFound):
            workflow_store.get("nope")

    def test_list_filters_by_status(self, workflow_store):
        draft = workflow_store.create("Draft")
        active = workflow_store.create("Active")
        workflow_store.set_status(active.id, WorkflowStatus.ACTIVE)

        assert [w.id for w in workflow_store.list(status=WorkflowStatus.ACTIVE)] == [active.id]
        assert {w.id for w in workflow_store.list()} == {draft.id, active.id}

    def test_record_sync(self, workflow_store, sample_graph):
        nodes, edges = sample_graph
        workflow = workflow_store.create("Orders")

        synced = workflow_store.record_sync(workflow.id, "wf-9", nodes[:1], [])

        assert synced.external_workflow_id == "wf-9"
        assert synced.last_synced_at is not None
        assert len(synced.nodes) == 1

    def test_find_by_webhook_path_prefers_active(self, workflow_store, sample_graph):
        nodes, edges = sample_graph
        workflow_store.create("Draft copy", nodes=nodes, edges=edges)
        active = workflow_store.create("Orders", nodes=nodes, edges=edges)
        workflow_store.set_status(active.id, WorkflowStatus.ACTIVE)
        workflow_store.create("Other")

        assert workflow_store.find_by_webhook_path("orders").id == active.id
        assert workflow_store.find_by_webhook_path("/orders/").id == active.id

    def test_unknown_webhook_path(self, workflow_store, sample_graph):
        nodes, edges = sample_graph
        workflow_store.create("Orders", nodes=nodes, edges=edges)

        with pytest.raises(WebhookNotFound):
            workflow_store.find_by_webhook_path("fetch")


class TestExecutionStore:

    def test_new_execution_is_pending(self, execution_store, active_workflow):
        execution = execution_store.create(active_workflow.id, input_data={"a": 1})
        assert execution.status == ExecutionStatusEnum.PENDING
        assert execution.started_at is not None
        assert execution.completed_at is None

    def test_transition_is_compare_and_set(self, execution_store, active_workflow):
        execution = execution_store.create(active_workflow.id)
        assert execution_store.transition(execution.id, "running", expected="pending")
        assert execution_store.transition(execution.id, "cancelled", expected="running")

        # A second writer still expecting running loses.
        assert execution_store.transition(execution.id, "success", expected="running") is False
        assert execution_store.get(execution.id).status == ExecutionStatusEnum.CANCELLED

    def test_terminal_transition_stamps_completion(self, execution_store, active_workflow):
        execution = execution_store.create(active_workflow.id)
        execution_store.transition(execution.id, "failed", expected="pending", error_message="boom")

        failed = execution_store.get(execution.id)
        assert failed.completed_at is not None
        assert failed.duration_ms >= 0
        assert failed.error_message == "boom"

    def test_disallowed_transition_raises(self, execution_store, active_workflow):
        execution = execution_store.create(active_workflow.id)
        with pytest.raises(InvalidExecutionState):
            execution_store.transition(execution.id, "success", expected="pending")

    def test_trigger_data_is_merged(self, execution_store, active_workflow):
        execution = execution_store.create(active_workflow.id, trigger_data={"source": "api"})
        execution_store.transition(
            execution.id, "running", expected="pending",
            trigger_data_updates={"external_execution_id": "ex-1"},
        )

        running = execution_store.get(execution.id)
        assert running.trigger_data == {"source": "api", "external_execution_id": "ex-1"}
        assert running.external_execution_id == "ex-1"

    def test_missing_execution(self, execution_store):
        with pytest.raises(ExecutionNotFound):
            execution_store.get("nope")
        with pytest.raises(ExecutionNotFound):
            execution_store.transition("nope", "running", expected="pending")

    def test_logs_are_ordered(self, execution_store, active_workflow):
        execution = execution_store.create(active_workflow.id)
        for n in range(5):
            execution_store.append_log(execution.id, LogLevel.INFO, f"line {n}", data={"n": n})

        logs = execution_store.get_logs(execution.id)
        assert [log.message for log in logs] == [f"line {n}" for n in range(5)]
        assert logs[0].level == LogLevel.INFO

    def test_stats(self, execution_store, active_workflow):
        ok = execution_store.create(active_workflow.id)
        execution_store.transition(ok.id, "running", expected="pending")
        execution_store.transition(ok.id, "success", expected="running")
        execution_store.create(active_workflow.id)

        stats = execution_store.stats(active_workflow.id)
        assert stats.total == 2
        assert stats.success == 1
        assert stats.pending == 1
        assert execution_store.list_running() == []
