"""Persistence of executions and their append-only logs."""

import uuid
from typing import Any, Dict, Iterable, List, Optional, Union

from sqlalchemy import func
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from ..models.core import (
    ALLOWED_TRANSITIONS,
    TERMINAL_STATUSES,
    Execution,
    ExecutionLogEntry,
    ExecutionStats,
    ExecutionStatusEnum,
    LogLevel,
    utcnow,
)
from ..storage.database import get_db
from ..storage.models import ExecutionLogModel, ExecutionModel
from .exceptions import ExecutionNotFound, InvalidExecutionState, StorageError
from .logging import get_logger

logger = get_logger(__name__)

StatusLike = Union[ExecutionStatusEnum, str]


class ExecutionStore:
    """CRUD over ``executions`` and ``execution_logs``.

    Every status write goes through ``transition``, a single conditional
    UPDATE that only succeeds while the row still holds an expected status.
    """

    def __init__(self, db_session: Optional[Session] = None):
        self._db_session = db_session

    def _session(self):
        if self._db_session is not None:
            return self._db_session, False
        return next(get_db()), True

    def create(
        self,
        workflow_id: str,
        input_data: Optional[Dict[str, Any]] = None,
        trigger_data: Optional[Dict[str, Any]] = None,
        max_retries: int = 3,
        retry_count: int = 0,
        trigger_type: str = "api",
    ) -> Execution:
        """Create a pending execution."""
        execution_id = str(uuid.uuid4())
        db, owned = self._session()
        try:
            model = ExecutionModel(
                id=execution_id,
                workflow_id=workflow_id,
                status=ExecutionStatusEnum.PENDING.value,
                trigger_type=trigger_type,
                trigger_data=trigger_data or {},
                input_data=input_data,
                retry_count=retry_count,
                max_retries=max_retries,
                started_at=utcnow(),
            )
            db.add(model)
            db.commit()
            db.refresh(model)
            logger.debug(f"Created execution {execution_id} for workflow {workflow_id}")
            return Execution.model_validate(model)
        except SQLAlchemyError as e:
            db.rollback()
            logger.error(f"Database error while creating execution: {str(e)}")
            raise StorageError(f"Failed to create execution: {str(e)}", operation="create", table="executions")
        finally:
            if owned:
                db.close()

    def get(self, execution_id: str) -> Execution:
        db, owned = self._session()
        try:
            model = db.query(ExecutionModel).filter(ExecutionModel.id == execution_id).first()
            if model is None:
                raise ExecutionNotFound(execution_id)
            return Execution.model_validate(model)
        except SQLAlchemyError as e:
            logger.error(f"Database error while loading execution {execution_id}: {str(e)}")
            raise StorageError(f"Failed to load execution: {str(e)}", operation="get", table="executions")
        finally:
            if owned:
                db.close()

    def transition(
        self,
        execution_id: str,
        new_status: StatusLike,
        expected: Union[StatusLike, Iterable[StatusLike]],
        trigger_data_updates: Optional[Dict[str, Any]] = None,
        **fields,
    ) -> bool:
        """Move an execution to ``new_status`` if it is still in ``expected``.

        Returns ``False`` when the row has moved on in the meantime; the
        write is then discarded. Terminal statuses also stamp
        ``completed_at`` and ``duration_ms``.
        """
        new_status = ExecutionStatusEnum(new_status)
        if isinstance(expected, (str, ExecutionStatusEnum)):
            expected = [expected]
        expected = [ExecutionStatusEnum(s) for s in expected]

        for current in expected:
            if new_status not in ALLOWED_TRANSITIONS[current]:
                raise InvalidExecutionState(
                    f"Transition {current.value} -> {new_status.value} is not allowed",
                    execution_id=execution_id,
                    status=current.value,
                )

        db, owned = self._session()
        try:
            model = db.query(ExecutionModel).filter(ExecutionModel.id == execution_id).first()
            if model is None:
                raise ExecutionNotFound(execution_id)

            values: Dict[str, Any] = dict(fields)
            values["status"] = new_status.value
            if trigger_data_updates:
                values["trigger_data"] = {**(model.trigger_data or {}), **trigger_data_updates}
            if new_status in TERMINAL_STATUSES:
                completed_at = utcnow()
                values["completed_at"] = completed_at
                if model.started_at is not None:
                    values["duration_ms"] = int((completed_at - model.started_at).total_seconds() * 1000)

            updated = (
                db.query(ExecutionModel)
                .filter(
                    ExecutionModel.id == execution_id,
                    ExecutionModel.status.in_([s.value for s in expected]),
                )
                .update(values, synchronize_session=False)
            )
            db.commit()

            if updated != 1:
                logger.info(
                    f"Discarded transition of execution {execution_id} to {new_status.value}: "
                    f"status is no longer {', '.join(s.value for s in expected)}"
                )
                return False
            return True
        except SQLAlchemyError as e:
            db.rollback()
            logger.error(f"Database error while updating execution {execution_id}: {str(e)}")
            raise StorageError(f"Failed to update execution: {str(e)}", operation="transition", table="executions")
        finally:
            if owned:
                db.close()

    def append_log(
        self,
        execution_id: str,
        level: Union[LogLevel, str],
        message: str,
        data: Optional[Dict[str, Any]] = None,
        node_id: Optional[str] = None,
    ) -> None:
        db, owned = self._session()
        try:
            db.add(ExecutionLogModel(
                execution_id=execution_id,
                level=LogLevel(level).value,
                message=message,
                data=data,
                node_id=node_id,
                timestamp=utcnow(),
            ))
            db.commit()
        except SQLAlchemyError as e:
            db.rollback()
            logger.error(f"Database error while logging for execution {execution_id}: {str(e)}")
            raise StorageError(f"Failed to append execution log: {str(e)}", operation="append_log", table="execution_logs")
        finally:
            if owned:
                db.close()

    def get_logs(self, execution_id: str) -> List[ExecutionLogEntry]:
        db, owned = self._session()
        try:
            models = (
                db.query(ExecutionLogModel)
                .filter(ExecutionLogModel.execution_id == execution_id)
                .order_by(ExecutionLogModel.timestamp.asc(), ExecutionLogModel.id.asc())
                .all()
            )
            return [ExecutionLogEntry.model_validate(m) for m in models]
        except SQLAlchemyError as e:
            logger.error(f"Database error while reading logs of {execution_id}: {str(e)}")
            raise StorageError(f"Failed to read execution logs: {str(e)}", operation="get_logs", table="execution_logs")
        finally:
            if owned:
                db.close()

    def list(
        self,
        workflow_id: Optional[str] = None,
        status: Optional[StatusLike] = None,
        limit: int = 50,
        offset: int = 0,
    ) -> List[Execution]:
        """Executions newest first, optionally filtered."""
        db, owned = self._session()
        try:
            query = db.query(ExecutionModel)
            if workflow_id:
                query = query.filter(ExecutionModel.workflow_id == workflow_id)
            if status:
                query = query.filter(ExecutionModel.status == ExecutionStatusEnum(status).value)
            models = query.order_by(ExecutionModel.started_at.desc()).offset(offset).limit(limit).all()
            return [Execution.model_validate(m) for m in models]
        except SQLAlchemyError as e:
            logger.error(f"Database error while listing executions: {str(e)}")
            raise StorageError(f"Failed to list executions: {str(e)}", operation="list", table="executions")
        finally:
            if owned:
                db.close()

    def list_running(self) -> List[Execution]:
        return self.list(status=ExecutionStatusEnum.RUNNING, limit=10000)

    def stats(self, workflow_id: Optional[str] = None) -> ExecutionStats:
        db, owned = self._session()
        try:
            query = db.query(ExecutionModel.status, func.count(ExecutionModel.id))
            if workflow_id:
                query = query.filter(ExecutionModel.workflow_id == workflow_id)
            counts = dict(query.group_by(ExecutionModel.status).all())

            avg_query = db.query(func.avg(ExecutionModel.duration_ms)).filter(ExecutionModel.duration_ms.isnot(None))
            if workflow_id:
                avg_query = avg_query.filter(ExecutionModel.workflow_id == workflow_id)
            average = avg_query.scalar()

            return ExecutionStats(
                total=sum(counts.values()),
                pending=counts.get(ExecutionStatusEnum.PENDING.value, 0),
                running=counts.get(ExecutionStatusEnum.RUNNING.value, 0),
                success=counts.get(ExecutionStatusEnum.SUCCESS.value, 0),
                failed=counts.get(ExecutionStatusEnum.FAILED.value, 0),
                cancelled=counts.get(ExecutionStatusEnum.CANCELLED.value, 0),
                average_duration_ms=int(average or 0),
            )
        except SQLAlchemyError as e:
            logger.error(f"Database error while computing execution stats: {str(e)}")
            raise StorageError(f"Failed to compute execution stats: {str(e)}", operation="stats", table="executions")
        finally:
            if owned:
                db.close()
