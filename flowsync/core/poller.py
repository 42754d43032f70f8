"""Bounded polling of remote executions on the event loop."""

import asyncio
from typing import Awaitable, Callable, Dict, Optional

from ..models.core import ExecutionStatusEnum, LogLevel, RemoteExecution
from .engine_client import EngineClient
from .exceptions import PollTimeout
from .execution_store import ExecutionStore
from .logging import get_logger, log_context

logger = get_logger(__name__)

FinishedCallback = Callable[[str, RemoteExecution], Awaitable[None]]
FailureCallback = Callable[[str, str, Exception], Awaitable[None]]

MONITOR_FAILURE_MESSAGE = "Failed to monitor execution"
TIMEOUT_MESSAGE = "Execution timeout"


class PollHandle:
    """Handle on one scheduled poll task."""

    def __init__(self, execution_id: str, external_execution_id: str, task: asyncio.Task):
        self.execution_id = execution_id
        self.external_execution_id = external_execution_id
        self.task = task

    def cancel(self) -> bool:
        """Stop future checks; returns False if the task already ended."""
        return self.task.cancel()

    def done(self) -> bool:
        return self.task.done()

    async def wait(self):
        """Wait for the task to end, whether it finished or was cancelled."""
        try:
            await self.task
        except asyncio.CancelledError:
            pass


class ExecutionPoller:
    """Starts one polling task per running execution.

    Each task sleeps ``interval`` seconds before every check and performs at
    most ``max_attempts`` checks. Before a check it re-reads the local record
    and stops quietly once the execution is no longer running. Up to
    ``tolerated_errors`` consecutive check errors are logged and skipped; the
    next one fails the execution.
    """

    def __init__(
        self,
        engine_client: EngineClient,
        execution_store: ExecutionStore,
        interval: float = 1.0,
        max_attempts: int = 60,
        tolerated_errors: int = 0,
    ):
        self.engine_client = engine_client
        self.execution_store = execution_store
        self.interval = interval
        self.max_attempts = max_attempts
        self.tolerated_errors = tolerated_errors
        self._handles: Dict[str, PollHandle] = {}

    def start(
        self,
        execution_id: str,
        external_execution_id: str,
        on_finished: FinishedCallback,
        on_failure: FailureCallback,
    ) -> PollHandle:
        """Schedule polling of a remote run; must be called from the event loop."""
        existing = self._handles.get(execution_id)
        if existing and not existing.done():
            return existing

        task = asyncio.get_running_loop().create_task(
            self._run(execution_id, external_execution_id, on_finished, on_failure),
            name=f"poll-{execution_id}",
        )
        handle = PollHandle(execution_id, external_execution_id, task)
        self._handles[execution_id] = handle
        task.add_done_callback(lambda t: self._on_task_done(execution_id, t))

        logger.debug(f"Started polling execution {execution_id} (remote {external_execution_id})")
        return handle

    def _on_task_done(self, execution_id: str, task: asyncio.Task):
        handle = self._handles.get(execution_id)
        if handle is not None and handle.task is task:
            del self._handles[execution_id]
        if not task.cancelled() and task.exception() is not None:
            logger.error(
                f"Polling of execution {execution_id} crashed",
                exc_info=task.exception(),
            )

    def get_handle(self, execution_id: str) -> Optional[PollHandle]:
        return self._handles.get(execution_id)

    def is_polling(self, execution_id: str) -> bool:
        handle = self._handles.get(execution_id)
        return handle is not None and not handle.done()

    @property
    def active_count(self) -> int:
        return sum(1 for handle in self._handles.values() if not handle.done())

    def cancel(self, execution_id: str) -> bool:
        handle = self._handles.get(execution_id)
        if handle is None:
            return False
        logger.debug(f"Cancelling poll task of execution {execution_id}")
        return handle.cancel()

    async def cancel_all(self):
        """Cancel every outstanding task and wait for them to unwind."""
        handles = list(self._handles.values())
        for handle in handles:
            handle.cancel()
        for handle in handles:
            await handle.wait()
        if handles:
            logger.info(f"Cancelled {len(handles)} poll task(s)")

    async def _run(
        self,
        execution_id: str,
        external_execution_id: str,
        on_finished: FinishedCallback,
        on_failure: FailureCallback,
    ):
        with log_context(execution_id=execution_id, external_execution_id=external_execution_id):
            try:
                await self._poll(execution_id, external_execution_id, on_finished, on_failure)
            except asyncio.CancelledError:
                logger.debug("Polling cancelled")
                raise

    async def _poll(
        self,
        execution_id: str,
        external_execution_id: str,
        on_finished: FinishedCallback,
        on_failure: FailureCallback,
    ):
        consecutive_errors = 0

        for attempt in range(1, self.max_attempts + 1):
            await asyncio.sleep(self.interval)

            current = self.execution_store.get(execution_id)
            if current.status != ExecutionStatusEnum.RUNNING:
                logger.debug(f"Execution is {current.status.value}, polling stopped")
                return

            try:
                remote = await self.engine_client.get_execution(external_execution_id)
            except Exception as e:
                consecutive_errors += 1
                if consecutive_errors <= self.tolerated_errors:
                    logger.warning(f"Status check {attempt} failed, will retry: {e}")
                    self.execution_store.append_log(
                        execution_id,
                        LogLevel.WARNING,
                        "Status check failed",
                        data={"attempt": attempt, "error": str(e)},
                    )
                    continue
                await on_failure(execution_id, MONITOR_FAILURE_MESSAGE, e)
                return

            consecutive_errors = 0
            if remote.finished:
                await on_finished(execution_id, remote)
                return

            logger.debug(f"Still running after check {attempt}")

        await on_failure(
            execution_id,
            TIMEOUT_MESSAGE,
            PollTimeout(TIMEOUT_MESSAGE, execution_id=execution_id, attempts=self.max_attempts),
        )
