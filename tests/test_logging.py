"""Tests for log context binding and the log formatters."""

import json
import logging

import pytest

from flowsync.core.logging import (
    ContextFilter,
    JsonFormatter,
    current_log_context,
    log_context,
    setup_logging,
)

from .conftest import wait_for_status


class RecordingHandler(logging.Handler):
    def __init__(self):
        super().__init__(logging.DEBUG)
        self.records = []
        self.addFilter(ContextFilter())

    def emit(self, record):
        self.records.append(record)


@pytest.fixture
def records():
    handler = RecordingHandler()
    flowsync_logger = logging.getLogger("flowsync")
    previous_level = flowsync_logger.level
    flowsync_logger.addHandler(handler)
    flowsync_logger.setLevel(logging.DEBUG)
    yield handler.records
    flowsync_logger.removeHandler(handler)
    flowsync_logger.setLevel(previous_level)


class TestLogContext:

    def test_fields_are_bound_for_the_block(self):
        with log_context(execution_id="ex-1", workflow_id=None):
            with log_context(workflow_id="wf-1"):
                assert current_log_context() == {"execution_id": "ex-1", "workflow_id": "wf-1"}
            assert current_log_context() == {"execution_id": "ex-1"}
        assert current_log_context() == {}

    def test_filter_renders_context(self, records):
        logger = logging.getLogger("flowsync.test")
        with log_context(execution_id="ex-1"):
            logger.info("inside")
        logger.info("outside")

        inside, outside = records
        assert inside.log_context == {"execution_id": "ex-1"}
        assert inside.context == "[execution_id=ex-1] "
        assert outside.log_context == {}
        assert outside.context == ""

    @pytest.mark.asyncio
    async def test_execution_logs_carry_ids(self, records, execution_coordinator, execution_store, active_workflow):
        execution_id = await execution_coordinator.execute(active_workflow.id)
        await wait_for_status(execution_store, execution_id, "success")

        coordinator_records = [r for r in records if r.name == "flowsync.core.execution_coordinator"]
        assert coordinator_records
        for record in coordinator_records:
            assert record.log_context["execution_id"] == execution_id
            assert record.log_context["workflow_id"] == active_workflow.id

        # Records written from the poll task, including the reconcile step
        succeeded = next(r for r in coordinator_records if r.getMessage().endswith("succeeded"))
        assert succeeded.log_context["external_execution_id"].startswith("ex-")
        assert current_log_context() == {}


class TestFormatting:

    def test_json_lines_include_context_and_fields(self):
        record = logging.LogRecord("flowsync.core.poller", logging.WARNING, __file__, 1, "check failed", None, None)
        record.log_fields = {"attempt": 2}
        with log_context(execution_id="ex-9"):
            ContextFilter().filter(record)

        entry = json.loads(JsonFormatter().format(record))

        assert entry["message"] == "check failed"
        assert entry["level"] == "WARNING"
        assert entry["execution_id"] == "ex-9"
        assert entry["attempt"] == 2

    def test_setup_replaces_only_its_own_handlers(self):
        root = logging.getLogger()
        foreign = logging.NullHandler()
        root.addHandler(foreign)
        before = list(root.handlers)
        previous_level = root.level
        try:
            setup_logging(level="DEBUG")
            setup_logging(level="INFO")

            added = [h for h in root.handlers if h not in before]
            assert len(added) == 1
            assert foreign in root.handlers
            assert any(isinstance(f, ContextFilter) for f in added[0].filters)
        finally:
            for handler in root.handlers[:]:
                if handler not in before:
                    root.removeHandler(handler)
            root.removeHandler(foreign)
            root.setLevel(previous_level)
