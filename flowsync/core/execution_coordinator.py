"""Execution lifecycle: trigger, monitor, reconcile, cancel and retry."""

from typing import Any, Dict, List, Optional

from ..models.core import (
    Execution,
    ExecutionStats,
    ExecutionStatusEnum,
    ExecutionWithLogs,
    LogLevel,
    RemoteExecution,
    WorkflowStatus,
)
from .engine_client import EngineClient
from .exceptions import (
    FlowSyncError,
    InvalidExecutionState,
    NotActive,
    NotSynced,
    RetryLimitExceeded,
)
from .execution_store import ExecutionStore
from .logging import get_logger, log_context
from .poller import ExecutionPoller
from .workflow_store import WorkflowStore

logger = get_logger(__name__)

TRIGGER_FAILURE_MESSAGE = "Failed to trigger remote execution"
REMOTE_FAILURE_MESSAGE = "Workflow execution failed"
CANCELLED_MESSAGE = "Execution cancelled by user"


def _error_details(error: Exception) -> Dict[str, Any]:
    if isinstance(error, FlowSyncError):
        return {
            "error_code": error.error_code,
            "message": error.message,
            "category": error.category.value,
            "details": error.details,
        }
    return {"error_code": type(error).__name__, "message": str(error)}


class ExecutionCoordinator:
    """
    Drives each execution through pending -> running -> terminal.

    Status changes are compare-and-set writes on the execution store, so a
    poll result that arrives after a cancellation is dropped instead of
    overwriting the cancelled record.
    """

    def __init__(
        self,
        workflow_store: WorkflowStore,
        execution_store: ExecutionStore,
        engine_client: EngineClient,
        poller: ExecutionPoller,
        max_retries: int = 3,
    ):
        self.workflow_store = workflow_store
        self.execution_store = execution_store
        self.engine_client = engine_client
        self.poller = poller
        self.max_retries = max_retries

    async def execute(
        self,
        workflow_id: str,
        input_data: Optional[Dict[str, Any]] = None,
        start_node: Optional[str] = None,
        retry_of: Optional[str] = None,
        retry_count: int = 0,
        trigger_type: str = "api",
        trigger_data: Optional[Dict[str, Any]] = None,
    ) -> str:
        """
        Start a remote run of a workflow and return the local execution id.

        The call returns once the engine accepted the trigger; the outcome is
        reconciled later by the poller. ``trigger_type`` records what started
        the run ("api", "webhook") and ``trigger_data`` adds caller details,
        such as the inbound request of a webhook, to the stored trigger data.

        Raises:
            WorkflowNotFound: If the workflow does not exist
            NotActive: If the workflow is not active
            NotSynced: If the workflow has no engine id
            RemoteUnavailable, RemoteRejected: If the trigger call failed; the
                execution is then recorded as failed
        """
        workflow = self.workflow_store.get(workflow_id)
        if workflow.status != WorkflowStatus.ACTIVE:
            raise NotActive(
                f"Workflow '{workflow_id}' must be active to execute",
                workflow_id=workflow_id,
                status=workflow.status.value,
            )
        if not workflow.external_workflow_id:
            raise NotSynced(
                f"Workflow '{workflow_id}' has not been synced to the engine",
                workflow_id=workflow_id,
            )

        stored_trigger: Dict[str, Any] = dict(trigger_data or {})
        stored_trigger.update(source=trigger_type, external_workflow_id=workflow.external_workflow_id)
        if start_node:
            stored_trigger["start_node"] = start_node
        if retry_of:
            stored_trigger["retry_of"] = retry_of

        execution = self.execution_store.create(
            workflow_id,
            input_data=input_data,
            trigger_type=trigger_type,
            trigger_data=stored_trigger,
            max_retries=self.max_retries,
            retry_count=retry_count,
        )
        with log_context(execution_id=execution.id, workflow_id=workflow_id):
            await self._start(execution, workflow.external_workflow_id, start_node, retry_of)
        return execution.id

    async def _start(
        self,
        execution: Execution,
        external_workflow_id: str,
        start_node: Optional[str],
        retry_of: Optional[str],
    ):
        execution_id = execution.id
        self.execution_store.append_log(
            execution_id,
            LogLevel.INFO,
            "Execution created",
            data={"retry_of": retry_of} if retry_of else None,
        )
        self.workflow_store.touch_last_run(execution.workflow_id)
        logger.info(f"Execution created ({execution.trigger_type} trigger)")

        try:
            result = await self.engine_client.trigger_execution(
                external_workflow_id,
                execution.input_data,
                start_node,
            )
        except Exception as e:
            details = _error_details(e)
            self.execution_store.transition(
                execution_id,
                ExecutionStatusEnum.FAILED,
                expected=ExecutionStatusEnum.PENDING,
                error_message=TRIGGER_FAILURE_MESSAGE,
                error_details=details,
            )
            self.execution_store.append_log(execution_id, LogLevel.ERROR, TRIGGER_FAILURE_MESSAGE, data=details)
            logger.error(f"{TRIGGER_FAILURE_MESSAGE}: {e}")
            if isinstance(e, FlowSyncError):
                e.add_context(execution_id=execution_id)
            raise

        started = self.execution_store.transition(
            execution_id,
            ExecutionStatusEnum.RUNNING,
            expected=ExecutionStatusEnum.PENDING,
            trigger_data_updates={"external_execution_id": result.external_execution_id},
        )
        if not started:
            return

        self.execution_store.append_log(
            execution_id,
            LogLevel.INFO,
            "Remote execution started",
            data={"external_execution_id": result.external_execution_id},
        )
        logger.info(f"Running as remote execution {result.external_execution_id}")

        # The poll task inherits the bound log context
        self.poller.start(
            execution_id,
            result.external_execution_id,
            on_finished=self._reconcile,
            on_failure=self._fail_running,
        )

    async def _reconcile(self, execution_id: str, remote: RemoteExecution):
        """Apply a finished remote run to a running execution."""
        if remote.succeeded:
            applied = self.execution_store.transition(
                execution_id,
                ExecutionStatusEnum.SUCCESS,
                expected=ExecutionStatusEnum.RUNNING,
                output_data=remote.output_data,
            )
            if applied:
                self.execution_store.append_log(
                    execution_id,
                    LogLevel.INFO,
                    "Execution completed successfully",
                    data={"remote_duration_ms": remote.duration_ms, "remote_status": remote.status},
                )
                logger.info(f"Execution {execution_id} succeeded")
            return

        details = {
            "error_code": "RemoteExecutionFailed",
            "remote_status": remote.status,
            "error": remote.error_info,
        }
        applied = self.execution_store.transition(
            execution_id,
            ExecutionStatusEnum.FAILED,
            expected=ExecutionStatusEnum.RUNNING,
            output_data=remote.output_data,
            error_message=REMOTE_FAILURE_MESSAGE,
            error_details=details,
        )
        if applied:
            self.execution_store.append_log(execution_id, LogLevel.ERROR, REMOTE_FAILURE_MESSAGE, data=details)
            logger.warning(f"Execution {execution_id} failed remotely")

    async def _fail_running(self, execution_id: str, message: str, error: Exception):
        """Record a monitoring failure or timeout on a running execution."""
        details = _error_details(error)
        applied = self.execution_store.transition(
            execution_id,
            ExecutionStatusEnum.FAILED,
            expected=ExecutionStatusEnum.RUNNING,
            error_message=message,
            error_details=details,
        )
        if applied:
            self.execution_store.append_log(execution_id, LogLevel.ERROR, message, data=details)
            logger.error(f"Execution {execution_id} failed: {message} ({details['error_code']})")

    async def cancel(self, execution_id: str) -> Execution:
        """
        Cancel a running execution locally and stop its poll task.

        Raises:
            ExecutionNotFound: If the execution does not exist
            InvalidExecutionState: If the execution is not running
        """
        execution = self.execution_store.get(execution_id)
        if execution.status != ExecutionStatusEnum.RUNNING:
            raise InvalidExecutionState(
                f"Execution '{execution_id}' is {execution.status.value} and cannot be cancelled",
                execution_id=execution_id,
                status=execution.status.value,
            )

        cancelled = self.execution_store.transition(
            execution_id,
            ExecutionStatusEnum.CANCELLED,
            expected=ExecutionStatusEnum.RUNNING,
            error_message=CANCELLED_MESSAGE,
        )
        if not cancelled:
            current = self.execution_store.get(execution_id)
            raise InvalidExecutionState(
                f"Execution '{execution_id}' is {current.status.value} and cannot be cancelled",
                execution_id=execution_id,
                status=current.status.value,
            )

        self.poller.cancel(execution_id)
        self.execution_store.append_log(execution_id, LogLevel.WARNING, CANCELLED_MESSAGE)
        logger.warning(f"Execution {execution_id} cancelled by user")
        return self.execution_store.get(execution_id)

    async def retry(self, execution_id: str) -> str:
        """
        Start a fresh execution with the input of a failed one.

        Raises:
            ExecutionNotFound: If the execution does not exist
            InvalidExecutionState: If the execution did not fail
            RetryLimitExceeded: If all retries were used
        """
        execution = self.execution_store.get(execution_id)
        if execution.status != ExecutionStatusEnum.FAILED:
            raise InvalidExecutionState(
                f"Only failed executions can be retried, '{execution_id}' is {execution.status.value}",
                execution_id=execution_id,
                status=execution.status.value,
            )
        if execution.retry_count >= execution.max_retries:
            raise RetryLimitExceeded(
                f"Execution '{execution_id}' already retried {execution.retry_count} time(s)",
                execution_id=execution_id,
                retry_count=execution.retry_count,
                max_retries=execution.max_retries,
            )

        logger.info(f"Retrying execution {execution_id} (attempt {execution.retry_count + 1})")
        carried = {
            key: value for key, value in execution.trigger_data.items()
            if key not in ("external_execution_id", "retry_of")
        }
        return await self.execute(
            execution.workflow_id,
            execution.input_data,
            start_node=execution.trigger_data.get("start_node"),
            retry_of=execution_id,
            retry_count=execution.retry_count + 1,
            trigger_type=execution.trigger_type or "api",
            trigger_data=carried,
        )

    def get_execution_with_logs(self, execution_id: str) -> ExecutionWithLogs:
        execution = self.execution_store.get(execution_id)
        logs = self.execution_store.get_logs(execution_id)
        return ExecutionWithLogs(**execution.model_dump(), logs=logs)

    def list_executions(
        self,
        workflow_id: Optional[str] = None,
        status: Optional[ExecutionStatusEnum] = None,
        limit: int = 50,
        offset: int = 0,
    ) -> List[Execution]:
        return self.execution_store.list(workflow_id=workflow_id, status=status, limit=limit, offset=offset)

    def get_execution_stats(self, workflow_id: Optional[str] = None) -> ExecutionStats:
        return self.execution_store.stats(workflow_id)

    async def resume_running(self) -> int:
        """Re-attach pollers to executions left running by a previous process."""
        resumed = 0
        for execution in self.execution_store.list_running():
            external_id = execution.external_execution_id
            if not external_id:
                logger.warning(f"Running execution {execution.id} has no remote execution id, not resumed")
                continue
            if self.poller.is_polling(execution.id):
                continue
            with log_context(execution_id=execution.id, workflow_id=execution.workflow_id):
                self.poller.start(
                    execution.id,
                    external_id,
                    on_finished=self._reconcile,
                    on_failure=self._fail_running,
                )
            self.execution_store.append_log(execution.id, LogLevel.INFO, "Monitoring resumed")
            resumed += 1

        if resumed:
            logger.info(f"Resumed polling of {resumed} running execution(s)")
        return resumed

    async def shutdown(self):
        """Stop every outstanding poll task."""
        await self.poller.cancel_all()
